"""Provider connection endpoints: OAuth authorize, callback, manual code entry, status."""

import logging
from datetime import datetime, timedelta
from urllib.parse import urlencode

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, get_optional_user_id, get_provider, get_state_signer
from app.api.errors import ERROR_RESPONSES
from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.schemas.responses import (
    ConnectResponse,
    ConnectUrlResponse,
    DisconnectResponse,
    ManualCodeRequest,
    StatusResponse,
)
from app.services.auth_keys import UsedAuthKeyStore
from app.services.errors import ErrorType, InvalidRequestError, SyncError
from app.services.oauth import InvalidStateError, OAuthState, OAuthStateSigner
from app.services.registry import Provider
from app.services.summary import provider_summary
from app.services.token_store import Credential, TokenStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["connect"], responses=ERROR_RESPONSES)


def _result_redirect(settings: Settings, **params: str) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.result_page_path}?{urlencode(params)}", status_code=302)


async def _connect(
    db: AsyncSession,
    provider: Provider,
    state: OAuthState,
    code: str,
    settings: Settings,
) -> Credential:
    """Consume the state nonce, exchange the code and store the credential."""
    keys = UsedAuthKeyStore(db, timedelta(minutes=settings.oauth_state_ttl_minutes))
    await keys.consume("state", provider.name, state.user_id, state.nonce)

    grant = await provider.oauth.exchange_code(code, provider.redirect_uri)
    if not grant.refresh_token:
        raise SyncError(ErrorType.CLIENT_ERROR, f"{provider.name} did not return a refresh token")

    credential = Credential(
        user_id=state.user_id,
        provider=provider.name,
        access_token=grant.access_token,
        refresh_token=grant.refresh_token,
        expires_at=grant.expires_at(datetime.utcnow()),
    )
    stored = await TokenStore(db).upsert(credential)
    logger.info(f"Connected {provider.name} for user {state.user_id}")
    return stored


@router.get("/{provider}/connect-url", response_model=ConnectUrlResponse)
async def get_connect_url(
    provider: Provider = Depends(get_provider),
    user_id: str = Depends(get_current_user_id),
    signer: OAuthStateSigner = Depends(get_state_signer),
):
    """Build the provider authorization URL with a signed, short-lived state."""
    state = signer.issue(user_id, provider.name, manual=provider.manual_code)
    auth_url = provider.oauth.authorize_url(state, provider.redirect_uri)
    return ConnectUrlResponse(auth_url=auth_url, state=state, manual_code_required=provider.manual_code)


@router.get("/{provider}/callback")
async def oauth_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    provider: Provider = Depends(get_provider),
    user_id: str | None = Depends(get_optional_user_id),
    signer: OAuthStateSigner = Depends(get_state_signer),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    """
    Provider redirect target.

    The user is identified by the signed state, so this works as a plain
    browser redirect. Always answers with a redirect to the result page.
    """
    if error:
        logger.error(f"{provider.name} OAuth error: {error}")
        return _result_redirect(settings, error=f"{provider.name}_auth_failed")
    if not code:
        return _result_redirect(settings, error="missing_code")
    if not state:
        return _result_redirect(settings, error="invalid_state")

    try:
        verified = signer.verify(state, provider.name, user_id)
        await _connect(db, provider, verified, code, settings)
    except InvalidStateError as e:
        logger.warning(f"{provider.name} callback rejected: {e.message}")
        return _result_redirect(settings, error=e.reason)
    except InvalidRequestError as e:
        logger.warning(f"{provider.name} callback rejected: {e.message}")
        return _result_redirect(settings, error="invalid_state")
    except SyncError as e:
        logger.error(f"{provider.name} token exchange failed: {e.message}")
        return _result_redirect(settings, error="token_exchange_failed")

    return _result_redirect(settings, success=f"{provider.name}_connected")


@router.post("/{provider}/manual-code", response_model=ConnectResponse)
async def submit_manual_code(
    request: ManualCodeRequest,
    provider: Provider = Depends(get_provider),
    user_id: str = Depends(get_current_user_id),
    signer: OAuthStateSigner = Depends(get_state_signer),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    """
    Finish the connection with a code copied from the provider's success page.

    A code is accepted once; resubmitting it within the state lifetime is
    rejected without contacting the provider.
    """
    verified = signer.verify(request.state, provider.name, user_id)

    keys = UsedAuthKeyStore(db, timedelta(minutes=settings.oauth_state_ttl_minutes))
    await keys.consume("code", provider.name, user_id, request.code)

    credential = await _connect(db, provider, verified, request.code, settings)
    return ConnectResponse(success=True, provider=provider.name, expires_at=credential.expires_at)


@router.get("/{provider}/status", response_model=StatusResponse)
async def get_status(
    provider: Provider = Depends(get_provider),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Connection state and a summary of the last 30 days of this provider's data."""
    credential = await TokenStore(db).get(user_id, provider.name)
    if credential is None:
        return StatusResponse(
            provider=provider.name,
            configured=provider.oauth.configured,
            connected=False,
        )

    summary = await provider_summary(db, user_id, provider.client.categories)
    return StatusResponse(
        provider=provider.name,
        configured=provider.oauth.configured,
        connected=True,
        token_expired=credential.is_expired(datetime.utcnow()),
        expires_at=credential.expires_at,
        last_sync=credential.last_synced_at,
        token_updated_at=credential.updated_at,
        summary=summary,
    )


@router.post("/{provider}/disconnect", response_model=DisconnectResponse)
async def disconnect(
    provider: Provider = Depends(get_provider),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Forget the credential. Synced records are kept."""
    deleted = await TokenStore(db).delete(user_id, provider.name)
    if deleted:
        logger.info(f"Disconnected {provider.name} for user {user_id}")
        message = f"{provider.name} disconnected"
    else:
        message = f"{provider.name} was not connected"
    return DisconnectResponse(success=deleted, provider=provider.name, message=message)
