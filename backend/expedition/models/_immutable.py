from __future__ import annotations

from sqlalchemy import event


class ImmutableRecordError(Exception):
    """Raised when an append-only row is updated or deleted through the ORM."""
    pass


def make_append_only(model) -> None:
    """
    Reject ORM-level UPDATE and DELETE on an append-only model.

    Bulk Core statements bypass this (test fixtures and `flask system reset-db`).
    """
    name = model.__name__

    @event.listens_for(model, "before_update")
    def _prevent_update(mapper, connection, target):
        raise ImmutableRecordError(f"{name} rows are immutable - cannot modify id={target.id}")

    @event.listens_for(model, "before_delete")
    def _prevent_delete(mapper, connection, target):
        raise ImmutableRecordError(f"{name} rows are immutable - cannot delete id={target.id}")
