from onetime.schemas.secret import (
    ErrorResponse,
    PassphraseSuggestionResponse,
    SecretCreate,
    SecretCreateResponse,
    SecretRevealRequest,
    SecretRevealResponse,
    SecretStatusResponse,
)

__all__ = [
    "ErrorResponse",
    "PassphraseSuggestionResponse",
    "SecretCreate",
    "SecretCreateResponse",
    "SecretRevealRequest",
    "SecretRevealResponse",
    "SecretStatusResponse",
]
