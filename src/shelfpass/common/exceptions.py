"""Shelfpass exception hierarchy.

Scan-path errors carry a short ``reason`` that is shown to the admin at the
scanner and stored on the scan log entry.
"""


class ShelfpassError(Exception):
    """Base exception for all Shelfpass errors."""

    reason = "error"

    def __init__(self, message: str = "", code: str = "SHELFPASS_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ConfigurationError(ShelfpassError):
    """Raised when key material or settings cannot be used."""

    def __init__(self, message: str = "Invalid configuration"):
        super().__init__(message, code="CONFIG_ERROR")


# ── Scan path ──


class InvalidFormatError(ShelfpassError):
    """Raised when a scanned payload is not a well-formed envelope."""

    reason = "invalid format"

    def __init__(self, message: str = "QR payload is not a valid envelope"):
        super().__init__(message, code="INVALID_FORMAT")


class IntegrityError(ShelfpassError):
    """Raised when the envelope hash does not match its ciphertext."""

    reason = "integrity check failed"

    def __init__(self, message: str = "QR code verification failed"):
        super().__init__(message, code="INTEGRITY_FAILED")


class DecryptError(ShelfpassError):
    """Raised when the ciphertext cannot be decrypted."""

    reason = "decryption failed"

    def __init__(self, message: str = "QR data could not be decrypted"):
        super().__init__(message, code="DECRYPT_FAILED")


class MalformedClaimError(ShelfpassError):
    """Raised when decrypted plaintext is not a valid claim."""

    reason = "malformed claim"

    def __init__(self, message: str = "QR claim is malformed"):
        super().__init__(message, code="MALFORMED_CLAIM")


class ExpiredTokenError(ShelfpassError):
    reason = "expired token"

    def __init__(self, message: str = "QR code has expired"):
        super().__init__(message, code="EXPIRED_TOKEN")


class UserNotFoundError(ShelfpassError):
    reason = "user not found"

    def __init__(self, message: str = "User not found"):
        super().__init__(message, code="USER_NOT_FOUND")


class AccountNotVerifiedError(ShelfpassError):
    reason = "account not verified"

    def __init__(self, message: str = "User account is not verified"):
        super().__init__(message, code="NOT_VERIFIED")


class SubscriptionExpiredError(ShelfpassError):
    reason = "subscription expired"

    def __init__(self, message: str = "User subscription has expired"):
        super().__init__(message, code="SUBSCRIPTION_EXPIRED")


class ServiceUnavailableError(ShelfpassError):
    """Raised when the live store cannot be reached in time."""

    reason = "service unavailable"

    def __init__(self, message: str = "Member lookup is unavailable"):
        super().__init__(message, code="SERVICE_UNAVAILABLE")


class SupersededTokenError(ShelfpassError):
    """Raised when a newer token has been issued for the same member."""

    reason = "superseded token"

    def __init__(self, message: str = "A newer QR code has been generated"):
        super().__init__(message, code="SUPERSEDED")


# ── Issuance path ──


class IneligibleError(ShelfpassError):
    """Raised when a member may not be issued an access code."""

    reason = "ineligible"

    def __init__(self, message: str = "Cannot generate access code"):
        super().__init__(message, code="INELIGIBLE")


class MemberNotFoundError(ShelfpassError):
    reason = "member not found"

    def __init__(self, message: str = "Member not found"):
        super().__init__(message, code="NOT_FOUND")
