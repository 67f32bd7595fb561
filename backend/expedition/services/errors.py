# Overview: Domain errors shared by the confirmation ledger and closing services.

"""
WORKFLOW ERRORS

Four families, each mapped to one HTTP status by the routes:

- ValidationError    (400): bad input (empty selection, mixed channels...)
- AuthorizationError (403): the role gate refused the actor
- StateError         (409): the record is not in the required stage
- NotFoundError      (404): unknown sale or closing in this organization

Every error carries a stable `code` for API clients and a `details` dict.
Authorization errors name what is missing; state errors name the current
and the required stage, so the two read differently to the operator.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base exception for all closing/confirmation workflow failures."""

    code = "workflow_error"
    http_status = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        data = {"error": self.code, "message": self.message}
        data.update(self.details)
        return data


# -- Validation ---------------------------------------------------------------

class ValidationError(WorkflowError):
    code = "validation_error"
    http_status = 400


class EmptySelection(ValidationError):
    code = "empty_selection"


class MixedDeliveryType(ValidationError):
    code = "mixed_delivery_type"


class InvalidClosingType(ValidationError):
    code = "invalid_closing_type"


class InvalidConfirmationType(ValidationError):
    code = "invalid_confirmation_type"


class InvalidStage(ValidationError):
    code = "invalid_stage"


class CashAcknowledgementRequired(ValidationError):
    code = "cash_acknowledgement_required"


# -- Authorization ------------------------------------------------------------

class AuthorizationError(WorkflowError):
    code = "unauthorized"
    http_status = 403


Unauthorized = AuthorizationError


# -- State --------------------------------------------------------------------

class StateError(WorkflowError):
    code = "invalid_state"
    http_status = 409


class OutOfOrderConfirmation(StateError):
    code = "out_of_order_confirmation"


class AlreadyFinalized(StateError):
    code = "already_finalized"


class AlreadyConfirmed(StateError):
    code = "already_confirmed"


class SaleAlreadyClosed(StateError):
    code = "sale_already_closed"


class SaleCancelled(StateError):
    code = "sale_cancelled"


class SaleNotDelivered(StateError):
    code = "sale_not_delivered"


# -- Not found ----------------------------------------------------------------

class NotFoundError(WorkflowError):
    code = "not_found"
    http_status = 404


class SaleNotFound(NotFoundError):
    code = "sale_not_found"


class ClosingNotFound(NotFoundError):
    code = "closing_not_found"
