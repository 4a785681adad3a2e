"""
Core domain exceptions for the account lifecycle.

Used to distinguish business failures from system failures. Every error
kind carries the HTTP status it is reported with at the API boundary;
collaborator failures (database, mail, redis) are not wrapped and surface
as unexpected errors.
"""


class AccountServiceError(Exception):
    """Base exception for account service errors"""
    status_code = 500


class BadRequest(AccountServiceError):
    """Raised when input has an invalid shape or cannot be used"""
    status_code = 400


class Unauthorized(AccountServiceError):
    """Raised when a receipt or captcha cannot be trusted (bad signer, expired, too fresh)"""
    status_code = 401


class Forbidden(AccountServiceError):
    """Raised when a valid receipt asserts the wrong operation type"""
    status_code = 403


class NotFound(AccountServiceError):
    """Raised by storage when an account or referral code does not exist"""
    status_code = 404


class Conflict(AccountServiceError):
    """Raised when the requested state transition collides with existing state"""
    status_code = 409


class Teapot(AccountServiceError):
    """Raised when a specific referral code has no allowance left"""
    status_code = 418


class EnhanceYourCalm(AccountServiceError):
    """Raised when the global signup allowance is exhausted"""
    status_code = 420


class ReceiptError(Exception):
    """Raised when a receipt cannot be decoded, has an unknown type or a bad signature.

    The session guard translates it into Unauthorized.
    """
    pass


class ReceiptSigningError(ReceiptError):
    """Raised when a receipt cannot be signed (missing or invalid private key)."""
    pass
