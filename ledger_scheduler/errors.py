"""
Error types raised by the scheduling engine
"""


class LedgerSchedulerError(Exception):
    """Base class for engine errors"""


class ValidationError(LedgerSchedulerError, ValueError):
    """Malformed input to a calculator (unknown period kind, frequency, ...)"""


class NotFoundError(LedgerSchedulerError, LookupError):
    """A referenced account, category, budget or debt does not exist"""

    def __init__(self, kind: str, entity_id):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} not found: {entity_id}")


class IdempotencyViolation(LedgerSchedulerError):
    """
    Raised by a store when an operation was already applied.

    The engines treat this as a no-op: retries must be safe.
    """
