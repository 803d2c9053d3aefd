from fastapi import APIRouter, Depends, Query, Request

from onetime.dependencies import CREATE_BUCKET, VIEW_BUCKET, get_lifecycle, rate_limit
from onetime.middleware.rate_limit import get_client_identifier
from onetime.schemas.secret import (
    ErrorResponse,
    PassphraseSuggestionResponse,
    SecretCreate,
    SecretCreateResponse,
    SecretRevealRequest,
    SecretRevealResponse,
    SecretStatusResponse,
)
from onetime.services.crypto import MAX_PASSPHRASE_LENGTH, MIN_PASSPHRASE_LENGTH
from onetime.services.secret_service import SecretLifecycle

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


@router.post(
    "/secrets",
    response_model=SecretCreateResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    dependencies=[Depends(rate_limit(CREATE_BUCKET))],
)
def create_new_secret(
    request: Request,
    secret_data: SecretCreate,
    lifecycle: SecretLifecycle = Depends(get_lifecycle),
):
    """
    Create a one-time secret.

    Returns the share link; the plaintext is never returned by this call.
    """
    created = lifecycle.create(
        secret_data.secret,
        passphrase=secret_data.passphrase,
        ttl_seconds=secret_data.ttl,
        max_views=secret_data.max_views,
        recipient_email=secret_data.recipient_email,
        created_ip=get_client_identifier(request),
    )
    return SecretCreateResponse(key=created.key, url=created.url, expires_at=created.expires_at)


@router.get(
    "/secrets/{key}",
    response_model=SecretStatusResponse,
    responses=ERROR_RESPONSES,
    dependencies=[Depends(rate_limit(VIEW_BUCKET))],
)
def get_status(key: str, lifecycle: SecretLifecycle = Depends(get_lifecycle)):
    """
    Check whether a secret exists and needs a passphrase.

    Does not count as a view.
    """
    status = lifecycle.status(key)
    return SecretStatusResponse(
        needs_passphrase=status.needs_passphrase,
        expires_at=status.expires_at,
        views_remaining=status.views_remaining,
    )


@router.post(
    "/secrets/{key}",
    response_model=SecretRevealResponse,
    responses={401: {"model": ErrorResponse}, **ERROR_RESPONSES},
    dependencies=[Depends(rate_limit(VIEW_BUCKET))],
)
def reveal_secret(
    key: str,
    request: Request,
    reveal_data: SecretRevealRequest | None = None,
    lifecycle: SecretLifecycle = Depends(get_lifecycle),
):
    """
    Reveal a secret.

    Each successful call uses up one view; the secret is destroyed when
    the last view is taken.
    """
    passphrase = reveal_data.passphrase if reveal_data else None
    revealed = lifecycle.reveal(key, passphrase, viewer_ip=get_client_identifier(request))
    return SecretRevealResponse(
        secret=revealed.secret,
        expires_at=revealed.expires_at,
        views_remaining=revealed.views_remaining,
    )


@router.get(
    "/passphrase",
    response_model=PassphraseSuggestionResponse,
    dependencies=[Depends(rate_limit(VIEW_BUCKET))],
)
def suggest_passphrase(
    request: Request,
    length: int = Query(16, ge=MIN_PASSPHRASE_LENGTH, le=MAX_PASSPHRASE_LENGTH),
):
    """Suggest a strong random passphrase."""
    return PassphraseSuggestionResponse(
        passphrase=request.app.state.crypto.generate_passphrase(length)
    )
