"""Keeps the single Graph bearer credential valid across every outbound call."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

import msal

from .config import Settings
from .errors import CredentialExpired, RefreshFailed, Unauthenticated
from .interfaces import CredentialStore, TokenClient
from .models import Credential, TokenGrant
from .utils import epoch_millis, utc_now_iso

logger = logging.getLogger(__name__)


class MsalTokenClient:
    """Delegated token exchanges against the Microsoft identity platform."""

    def __init__(self, settings: Settings) -> None:
        self.scopes = settings.graph_scopes
        self.app = msal.PublicClientApplication(
            client_id=settings.graph_client_id,
            authority=settings.authority_url,
        )

    def refresh(self, refresh_token: str) -> TokenGrant:
        result = self.app.acquire_token_by_refresh_token(refresh_token, scopes=self.scopes)
        return self._to_grant(result, "refresh access token")

    def authorize(self) -> TokenGrant:
        flow = self.app.initiate_device_flow(scopes=self.scopes)
        if "user_code" not in flow:
            raise RuntimeError(f"Unable to start device code flow: {flow}")
        logger.info(flow.get("message"))
        result = self.app.acquire_token_by_device_flow(flow)
        return self._to_grant(result, "obtain Graph token")

    @staticmethod
    def _to_grant(result: dict[str, Any], action: str) -> TokenGrant:
        if not result or "access_token" not in result:
            detail = (result or {}).get("error_description") or (result or {}).get("error")
            raise RuntimeError(f"Unable to {action}: {detail}")
        return TokenGrant.from_response(result)


class CredentialManager:
    """Hands out a non-expired credential, refreshing and persisting transparently.

    The load -> check -> refresh -> save sequence runs under one lock so two
    callers never race on the single stored record.
    """

    def __init__(
        self,
        store: CredentialStore,
        token_client: TokenClient,
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        self.store = store
        self.token_client = token_client
        self.clock = clock
        self._lock = threading.Lock()

    def get_valid(self) -> Credential:
        with self._lock:
            credential = self.store.load()
            if credential is None:
                raise Unauthenticated("No authentication tokens found")

            if not credential.is_expired(self.clock()):
                return credential

            if not credential.refresh_token:
                raise CredentialExpired(
                    "Stored credential expired and no refresh token is available"
                )
            return self._refresh(credential)

    def authorize(self) -> Credential:
        """Run the interactive authorization and store the resulting tokens."""
        grant = self.token_client.authorize()
        with self._lock:
            credential = self._persist(grant)
        logger.info("Tokens obtained and saved successfully")
        return credential

    def is_authenticated(self) -> bool:
        try:
            self.get_valid()
        except (Unauthenticated, CredentialExpired, RefreshFailed) as exc:
            logger.info("Not authenticated: %s", exc)
            return False
        return True

    def token_info(self) -> Optional[dict[str, Any]]:
        credential = self.store.load()
        if credential is None:
            return None
        return {
            "principal": self.store.principal,
            "scope": credential.scope,
            "token_type": credential.token_type,
            "expiry_epoch_ms": credential.expiry_epoch_ms,
            "has_refresh_token": bool(credential.refresh_token),
            "created_at": credential.created_at,
            "updated_at": credential.updated_at,
        }

    def revoke(self) -> None:
        with self._lock:
            self.store.clear()
        logger.info("Tokens cleared")

    def _refresh(self, credential: Credential) -> Credential:
        try:
            grant = self.token_client.refresh(credential.refresh_token)
        except Exception as exc:
            logger.error("Failed to refresh tokens: %s", exc)
            raise RefreshFailed(f"Failed to refresh authentication tokens: {exc}") from exc

        refreshed = self._persist(grant)
        logger.info("Tokens refreshed successfully")
        return refreshed

    def _persist(self, grant: TokenGrant) -> Credential:
        now_ms = self.clock()
        expiry = now_ms + grant.expires_in * 1000 if grant.expires_in is not None else None
        timestamp = utc_now_iso()

        credential = self.store.load()
        if credential is not None:
            credential.access_token = grant.access_token
            credential.refresh_token = grant.refresh_token or credential.refresh_token
            credential.scope = grant.scope
            credential.token_type = grant.token_type
            credential.expiry_epoch_ms = expiry
            credential.updated_at = timestamp
        else:
            credential = Credential(
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                scope=grant.scope,
                token_type=grant.token_type,
                expiry_epoch_ms=expiry,
                created_at=timestamp,
                updated_at=timestamp,
            )

        self.store.save(credential)
        return credential
