"""
errors.py — AppError base class and error code registry.

Every error returned by the SplitCredit API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).

Two failure kinds get their own subclasses because callers treat them
differently from a plain AppError:
  ConcurrencyConflict   — retried by run_in_transaction() with fresh reads.
  ReconciliationFailure — hard failure after a full rollback; logged for
                          manual follow-up because it touches money history.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_SPLIT_MODE         = "INVALID_SPLIT_MODE"
    SPLITS_SENT_FOR_EQUAL_MODE = "SPLITS_SENT_FOR_EQUAL_MODE"
    DUPLICATE_SPLIT_PARTICIPANT = "DUPLICATE_SPLIT_PARTICIPANT"
    INVALID_CATEGORY           = "INVALID_CATEGORY"
    INVALID_CREDIT_REASON      = "INVALID_CREDIT_REASON"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    SETTLEMENT_NOT_FOUND       = "SETTLEMENT_NOT_FOUND"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    CONCURRENCY_CONFLICT       = "CONCURRENCY_CONFLICT"

    # ── Business Rule Violations (422) ────────────────────────────────────
    PARTICIPANT_NOT_IN_GROUP   = "PARTICIPANT_NOT_IN_GROUP"
    SPLIT_SUM_MISMATCH         = "SPLIT_SUM_MISMATCH"
    RECIPIENT_NOT_MEMBER       = "RECIPIENT_NOT_MEMBER"
    SELF_SETTLEMENT            = "SELF_SETTLEMENT"
    SETTLEMENT_ALREADY_COMPLETED = "SETTLEMENT_ALREADY_COMPLETED"
    EXPENSE_NOT_IN_GROUP       = "EXPENSE_NOT_IN_GROUP"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"
    RECONCILIATION_FAILED      = "RECONCILIATION_FAILED"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # Settlement amount exceeds what the debtor owes / the creditor is owed.
    # The settlement is still recorded.
    OVERPAYMENT = "OVERPAYMENT"


class ConcurrencyConflict(AppError):
    """Lost-update detected on a credit state row or a dedupe key race."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.CONCURRENCY_CONFLICT, message, 409)


class ReconciliationFailure(AppError):
    """A pending-participant reconciliation was rolled back."""

    def __init__(self, phone_number: str, user_id: int) -> None:
        super().__init__(
            ErrorCode.RECONCILIATION_FAILED,
            "Registration succeeded, but some of your group history could not "
            "be linked to your account. Please contact support.",
            500,
        )
        self.phone_number = phone_number
        self.user_id      = user_id
