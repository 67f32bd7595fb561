"""
Closing number allocation.
"""

import pytest

from expedition.models import ClosingSequence
from expedition.services.errors import ValidationError
from expedition.services.sequence_service import ClosingSequenceError, next_closing_number


def test_first_number_creates_counter(org, db_session):
    assert next_closing_number(org_id=org.id, closing_type="pickup") == 1
    db_session.commit()

    row = db_session.query(ClosingSequence).filter_by(org_id=org.id, closing_type="pickup").one()
    assert row.next_number == 2


def test_numbers_are_monotonic(org, db_session):
    numbers = []
    for _ in range(4):
        numbers.append(next_closing_number(org_id=org.id, closing_type="motoboy"))
        db_session.commit()
    assert numbers == [1, 2, 3, 4]


def test_counters_are_independent(org, other_org, db_session):
    next_closing_number(org_id=org.id, closing_type="pickup")
    next_closing_number(org_id=org.id, closing_type="pickup")
    db_session.commit()

    assert next_closing_number(org_id=org.id, closing_type="carrier") == 1
    assert next_closing_number(org_id=other_org.id, closing_type="pickup") == 1
    assert next_closing_number(org_id=org.id, closing_type="pickup") == 3
    db_session.commit()


def test_rolled_back_number_is_reused(org, db_session):
    next_closing_number(org_id=org.id, closing_type="pickup")
    db_session.commit()

    assert next_closing_number(org_id=org.id, closing_type="pickup") == 2
    db_session.rollback()

    assert next_closing_number(org_id=org.id, closing_type="pickup") == 2


@pytest.mark.parametrize("kwargs", [
    {"org_id": None, "closing_type": "pickup"},
    {"org_id": 1, "closing_type": ""},
])
def test_requires_org_and_type(db_session, kwargs):
    with pytest.raises(ClosingSequenceError):
        next_closing_number(**kwargs)


def test_sequence_error_is_a_validation_error(db_session):
    with pytest.raises(ValidationError) as exc:
        next_closing_number(org_id=None, closing_type="pickup")
    assert exc.value.http_status == 400
    assert exc.value.to_dict()["error"] == "invalid_closing_sequence"
