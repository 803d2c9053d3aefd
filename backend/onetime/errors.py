"""
Error taxonomy for the secret lifecycle.

Every error carries the HTTP status it maps to and the message shown to the
client. The three "gone" conditions share one status and one message so a
caller cannot tell a never-existing key from an expired or consumed one.
"""

NOT_FOUND_MESSAGE = "Secret not found or has expired"


class SecretServiceError(Exception):
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class SecretValidationError(SecretServiceError):
    """Malformed or out-of-range input."""

    status_code = 400
    message = "Invalid request data"

    def __init__(self, details: list[dict] | None = None, message: str | None = None):
        self.details = details or []
        super().__init__(message)


class RateLimited(SecretServiceError):
    status_code = 429
    message = "Rate limit exceeded. Please try again later."

    def __init__(self, remaining: int, reset_at: float, message: str | None = None):
        self.remaining = remaining
        self.reset_at = reset_at
        super().__init__(message)


class SecretNotFound(SecretServiceError):
    status_code = 404
    message = NOT_FOUND_MESSAGE


class SecretExpired(SecretNotFound):
    pass


class SecretAlreadyViewed(SecretNotFound):
    pass


class PassphraseError(SecretServiceError):
    status_code = 401


class PassphraseRequired(PassphraseError):
    message = "Passphrase required"


class InvalidPassphrase(PassphraseError):
    message = "Invalid passphrase"


class DecryptionError(SecretServiceError):
    """Ciphertext is corrupt or the derived key does not match."""

    message = "Failed to decrypt secret"


class StoreUnavailable(SecretServiceError):
    """The store timed out or refused the call. Safe to retry."""

    message = "Service temporarily unavailable, please retry"
