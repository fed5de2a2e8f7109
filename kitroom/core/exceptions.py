class KitroomError(Exception):
    """Base for every error the lending core reports to its callers."""

class ValidationError(KitroomError): pass

class NotFoundError(KitroomError): pass

class ForbiddenError(KitroomError): pass

class ConflictError(KitroomError): pass

class UnitUnavailableError(ConflictError): pass

class AlreadyDecidedError(ConflictError): pass

class DuplicatePenaltyError(KitroomError): pass

class IntegrityRecoverableError(KitroomError):
    """Malformed stored data that the core can usually work around."""

class UserBlockedError(KitroomError):

    def __init__(self, strikes, reason=None):
        self.strikes = strikes
        self.reason = reason
        super().__init__(
            f"User is blocked from borrowing ({strikes} strikes): {reason or 'no reason recorded'}")
