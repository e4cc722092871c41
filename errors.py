"""Failures a reconciliation request can end in."""


class ReconciliationError(Exception):
    status_code = 500
    retryable = False

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationError(ReconciliationError):
    """Neither email nor phoneNumber was supplied. Raised before the store is touched."""
    status_code = 400


class StorageUnavailable(ReconciliationError):
    """The database could not be reached or stayed locked past the timeout."""
    status_code = 503
    retryable = True


class StoreMisconfigured(ReconciliationError):
    """The database answers but the Contact schema is missing or malformed."""
    status_code = 500


class MergeConflict(ReconciliationError):
    """The unit of work could not be committed; nothing was written, retry from the top."""
    status_code = 409
    retryable = True


class IntegrityViolation(ReconciliationError):
    """A write would leave a secondary linked to something other than a live primary."""
    status_code = 500
