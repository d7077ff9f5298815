from typing import List, Optional


class SigningError(Exception):
    status_code = 500

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        return {"detail": self.message, **self.extra}


class Unauthorized(SigningError):
    status_code = 401


class Forbidden(SigningError):
    status_code = 403


class NotFound(SigningError):
    status_code = 404


class OtpRejected(SigningError):
    status_code = 400


class OtpNotFound(OtpRejected):
    pass


class OtpExpired(OtpRejected):
    pass


class OtpMismatch(OtpRejected):
    pass


class Conflict(SigningError):
    status_code = 409


class SignatureConflict(Conflict):
    pass


class ReservationConflict(Conflict):
    pass


class InvitationConflict(Conflict):
    pass


class ValidationFailed(SigningError):
    status_code = 400


class PreconditionFailed(SigningError):
    """Raised with every violated precondition, never just the first."""

    status_code = 400

    def __init__(self, reasons: List[str], status_code: Optional[int] = None):
        super().__init__("; ".join(reasons), reasons=list(reasons))
        self.reasons = list(reasons)
        if status_code is not None:
            self.status_code = status_code


class SigningIncomplete(SigningError):
    status_code = 409


class IntegrityFailure(SigningError):
    status_code = 422


class ExportFailed(SigningError):
    status_code = 500
