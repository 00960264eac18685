"""Error taxonomy shared by the core services and the HTTP layer."""
from __future__ import annotations


class SecureFMSError(Exception):
    status_code = 500
    detail = "Internal server error"
    # opaque errors are logged in full but only `detail` reaches the caller
    opaque = False

    def __init__(self, message: str | None = None):
        super().__init__(message or self.detail)
        if message and not self.opaque:
            self.detail = message


class ValidationError(SecureFMSError):
    status_code = 400
    detail = "Invalid request"


class DuplicateIdentityError(ValidationError):
    status_code = 409
    detail = "User already exists"


class AuthenticationError(SecureFMSError):
    status_code = 401
    detail = "Could not validate credentials"


class ChallengeNotFound(AuthenticationError):
    detail = "Invalid or expired code"


class ChallengeExpired(AuthenticationError):
    detail = "Invalid or expired code"


class CodeMismatch(AuthenticationError):
    detail = "Invalid code"

    def __init__(self, attempts_remaining: int):
        super().__init__()
        self.attempts_remaining = attempts_remaining


class TooManyAttempts(AuthenticationError):
    detail = "Too many attempts, request a new code"


class TokenExpired(AuthenticationError):
    detail = "Token has expired"


class TokenMalformed(AuthenticationError):
    pass


class TokenRevoked(AuthenticationError):
    pass


class InactiveAccountError(AuthenticationError):
    status_code = 403
    detail = "Account is inactive"


class AuthorizationError(SecureFMSError):
    status_code = 403
    detail = "Access denied"


class NotFoundError(SecureFMSError):
    status_code = 404
    detail = "Not found"


class IdentityNotFound(NotFoundError):
    detail = "User not found"


class FileNotFound(NotFoundError):
    detail = "File not found"


class ReferentialIntegrityError(SecureFMSError):
    status_code = 422
    detail = "Associated user does not exist"


class RateLimitError(SecureFMSError):
    status_code = 429
    detail = "Please wait before requesting another code"

    def __init__(self, retry_after: int):
        super().__init__(f"Please wait {retry_after}s before requesting another code")
        self.retry_after = retry_after


class CryptoError(SecureFMSError):
    status_code = 500
    detail = "File could not be decrypted"
    opaque = True


class DeliveryError(SecureFMSError):
    status_code = 502
    detail = "Could not deliver verification code"
    opaque = True


class BlobStorageError(SecureFMSError):
    status_code = 502
    detail = "Storage backend failure"
    opaque = True
