"""Error taxonomy for payout settlement operations.

Every error carries a stable ``code`` so calling layers can map failures to
user-facing messages without matching on text.
"""


class PayoutError(Exception):
    """Base exception for payout engine errors."""

    code = "payout_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(PayoutError):
    """Input rejected before any write (bad banks, negative cost, etc.)."""

    code = "validation_error"


class PrerequisiteNotMet(PayoutError):
    """Operation requires an earlier step, e.g. marking paid before first save."""

    code = "prerequisite_not_met"


class StoreUnavailable(PayoutError):
    """Remote store failed during a query or persist. Safe to retry."""

    code = "store_unavailable"


class NotFoundError(PayoutError):
    """Referenced slot does not exist."""

    code = "not_found"


class ConcurrentEditError(PayoutError):
    """Stored payout record changed since the caller loaded it."""

    code = "concurrent_edit"

    def __init__(self, slot_id: int, expected_version: int, actual_version: int):
        self.slot_id = slot_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Payout for slot {slot_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


__all__ = [
    "PayoutError",
    "ValidationError",
    "PrerequisiteNotMet",
    "StoreUnavailable",
    "NotFoundError",
    "ConcurrentEditError",
]
