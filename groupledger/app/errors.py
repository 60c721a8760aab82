"""
errors.py — AppError base class, split-policy errors and the error code registry.

Every error returned by the GroupLedger API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - New error codes require: add constant here + add a test that triggers it.
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).
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
            f"{type(self).__name__}(code={self.code!r}, "
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
    MISSING_FIELD               = "MISSING_FIELD"
    INVALID_FIELD               = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION    = "INVALID_AMOUNT_PRECISION"
    INVALID_SPLIT_TYPE          = "INVALID_SPLIT_TYPE"
    SPLITS_SENT_FOR_EQUAL_SPLIT = "SPLITS_SENT_FOR_EQUAL_SPLIT"
    SPLITS_REQUIRED             = "SPLITS_REQUIRED"

    # ── Split Policy Errors (400) ──────────────────────────────────────────
    # Raised by services/split_calculator.py before any persistence happens.
    EMPTY_PARTICIPANT_SET       = "EMPTY_PARTICIPANT_SET"
    WEIGHT_SUM_MISMATCH         = "WEIGHT_SUM_MISMATCH"
    UNKNOWN_PARTICIPANT         = "UNKNOWN_PARTICIPANT"
    DUPLICATE_PARTICIPANT       = "DUPLICATE_PARTICIPANT"
    INVALID_WEIGHT              = "INVALID_WEIGHT"
    UNSUPPORTED_POLICY          = "UNSUPPORTED_POLICY"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    ALREADY_MEMBER              = "ALREADY_MEMBER"
    ALREADY_INACTIVE            = "ALREADY_INACTIVE"
    GROUP_NOT_DELETED           = "GROUP_NOT_DELETED"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND              = "USER_NOT_FOUND"
    GROUP_NOT_FOUND             = "GROUP_NOT_FOUND"
    EXPENSE_NOT_FOUND           = "EXPENSE_NOT_FOUND"
    MEMBER_NOT_FOUND            = "MEMBER_NOT_FOUND"

    # ── Business Rule Violations (422) ────────────────────────────────────
    PAYER_NOT_MEMBER            = "PAYER_NOT_MEMBER"
    PAYEE_NOT_MEMBER            = "PAYEE_NOT_MEMBER"
    SELF_PAYMENT                = "SELF_PAYMENT"
    EXPENSE_DELETED             = "EXPENSE_DELETED"
    GROUP_NOT_SETTLED           = "GROUP_NOT_SETTLED"
    OWNER_CANNOT_LEAVE          = "OWNER_CANNOT_LEAVE"
    OWNER_CANNOT_BE_REMOVED     = "OWNER_CANNOT_BE_REMOVED"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed (unauthorized)
    TOKEN_MISSING               = "TOKEN_MISSING"          # 401
    TOKEN_INVALID               = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED               = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                   = "FORBIDDEN"              # 403

    # ── System Errors (5xx) ────────────────────────────────────────────────
    INTERNAL_ERROR              = "INTERNAL_ERROR"         # 500
    PERSISTENCE_ERROR           = "PERSISTENCE_ERROR"      # 503, transient


# ── Split policy errors ────────────────────────────────────────────────────
#
# Caller input problems detected by the split calculator. They always map to
# 400: the request was wrong, the server is fine. Each subclass pins its code
# so callers can catch a specific failure without comparing strings.
# ──────────────────────────────────────────────────────────────────────────

class SplitPolicyError(AppError):
    code_value: str = ErrorCode.INVALID_WEIGHT

    def __init__(self, message: str, field: str | None = "splits") -> None:
        super().__init__(self.code_value, message, 400, field=field)


class EmptyParticipantSet(SplitPolicyError):
    code_value = ErrorCode.EMPTY_PARTICIPANT_SET


class WeightSumMismatch(SplitPolicyError):
    code_value = ErrorCode.WEIGHT_SUM_MISMATCH


class UnknownParticipant(SplitPolicyError):
    code_value = ErrorCode.UNKNOWN_PARTICIPANT


class DuplicateParticipant(SplitPolicyError):
    code_value = ErrorCode.DUPLICATE_PARTICIPANT


class InvalidWeight(SplitPolicyError):
    code_value = ErrorCode.INVALID_WEIGHT


class UnsupportedPolicy(SplitPolicyError):
    code_value = ErrorCode.UNSUPPORTED_POLICY

    def __init__(self, message: str, field: str | None = "split_type") -> None:
        super().__init__(message, field=field)
