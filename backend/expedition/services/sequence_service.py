# Overview: Service-layer operations for closing numbers; atomic per-org/per-channel counters.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import ClosingSequence
from .errors import ValidationError


class ClosingSequenceError(ValidationError):
    """Raised when closing sequence operations fail."""
    code = "invalid_closing_sequence"


def _bump(org_id: int, closing_type: str) -> int | None:
    stmt = (
        update(ClosingSequence)
        .where(
            ClosingSequence.org_id == org_id,
            ClosingSequence.closing_type == closing_type,
        )
        .values(next_number=ClosingSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(ClosingSequence.next_number)
        .filter_by(org_id=org_id, closing_type=closing_type)
        .scalar()
    )
    return current - 1


def next_closing_number(*, org_id: int, closing_type: str) -> int:
    """
    Allocate the next closing number for an (organization, closing_type).

    The counter row is bumped with a single UPDATE, so two concurrent
    callers serialize on the row lock instead of both reading the same
    max(). First use inserts the row; if another transaction inserted it
    first, the unique constraint fires and we fall back to the UPDATE.

    Runs inside the caller's transaction: the number is only consumed if
    the caller commits. Numbers are monotonic, not guaranteed gapless.
    """
    if not org_id:
        raise ClosingSequenceError("org_id is required")
    if not closing_type:
        raise ClosingSequenceError("closing_type is required")

    number = _bump(org_id, closing_type)
    if number is not None:
        return number

    try:
        with db.session.begin_nested():
            db.session.add(ClosingSequence(org_id=org_id, closing_type=closing_type, next_number=2))
        return 1
    except IntegrityError:
        number = _bump(org_id, closing_type)
        if number is None:
            raise
        return number
