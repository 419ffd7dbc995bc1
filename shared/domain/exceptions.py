"""
Scheduling Error Taxonomy

Three families, each telling the caller what to do next:
- InputError: the request or the catalog configuration is invalid; never retry
- ConflictError: the ledger state moved under the caller; re-query and pick again
- SchedulingSystemError: storage trouble or timeout; retry with backoff
"""


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling core"""

    code = 'SCHEDULING_ERROR'
    retryable = False
    default_message = 'Scheduling request failed.'

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


# ===== Input errors =====

class InputError(SchedulingError):
    code = 'INVALID_INPUT'
    default_message = 'The request is invalid.'


class EmptyBundle(InputError):
    code = 'EMPTY_BUNDLE'
    default_message = 'The bundle has no services.'


class UnknownService(InputError):
    code = 'UNKNOWN_SERVICE'
    default_message = 'The service does not exist or is not active.'


class IncompatibleSameHuman(InputError):
    code = 'INCOMPATIBLE_SAME_HUMAN'
    default_message = 'No single staff member can perform every service of the bundle.'


class InvalidOffering(InputError):
    code = 'INVALID_OFFERING'
    default_message = 'The offering reference is malformed or unknown.'


# ===== Conflict errors =====

class ConflictError(SchedulingError):
    code = 'CONFLICT'
    retryable = True
    default_message = 'The schedule changed, please pick another slot.'


class SlotUnavailable(ConflictError):
    code = 'SLOT_UNAVAILABLE'
    default_message = 'The requested slot is no longer available.'


class HoldExpired(ConflictError):
    code = 'HOLD_EXPIRED'
    default_message = 'The hold has expired.'


class HoldNotFound(ConflictError):
    code = 'HOLD_NOT_FOUND'
    default_message = 'The hold does not exist or was already used.'


class BookingNotFound(ConflictError):
    code = 'BOOKING_NOT_FOUND'
    default_message = 'The booking does not exist.'


class InvalidBookingState(ConflictError):
    code = 'INVALID_BOOKING_STATE'
    retryable = False
    default_message = 'The booking cannot change to the requested state.'


# ===== System errors =====

class SchedulingSystemError(SchedulingError):
    code = 'SYSTEM_ERROR'
    retryable = True
    default_message = 'The scheduling service is temporarily unavailable.'


class StorageUnavailable(SchedulingSystemError):
    code = 'STORAGE_UNAVAILABLE'


class LockTimeout(SchedulingSystemError):
    code = 'LOCK_TIMEOUT'
    default_message = 'Timed out waiting for the schedule, please retry.'
