import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from app.application.services.credential_store import CredentialStore
from app.core.config import settings
from app.domain.credentials import CredentialKind, SubCredential
from app.infrastructure.db.types import utcnow
from app.infrastructure.observability.metrics import TOKEN_REFRESH_TOTAL
from app.integrations.messaging.base_gateway import GatewayError, MessagingGateway

logger = logging.getLogger(__name__)


class TokenUnavailableError(RuntimeError):
    reason: str = "token_unavailable"


class NoInstallationError(TokenUnavailableError):
    reason = "no_installation"


class NoTokenError(TokenUnavailableError):
    reason = "no_token"


class CredentialLifecycleManager:
    """Hands out access tokens, refreshing them shortly before they expire.

    A failed refresh degrades to the current access token instead of raising;
    the send that follows decides whether the token still works.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        gateway: MessagingGateway,
        *,
        refresh_margin: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._credential_store = credential_store
        self._gateway = gateway
        self._refresh_margin = (
            refresh_margin
            if refresh_margin is not None
            else timedelta(seconds=settings.token_refresh_margin_seconds)
        )
        self._clock = clock

    async def resolve_token(self, tenant_id: UUID, *, as_user: bool = False) -> str:
        stored = self._credential_store.get(tenant_id)
        if stored is None:
            raise NoInstallationError(f"No installation for tenant {tenant_id}")

        kind = CredentialKind.USER if as_user else CredentialKind.BOT
        credential = stored.credentials.select(kind)
        if credential is None or not credential.is_usable:
            raise NoTokenError(f"No {kind} token for tenant {tenant_id}")

        if not credential.is_refreshable:
            return credential.access_token

        now = self._clock()
        if credential.expires_at > now + self._refresh_margin:
            return credential.access_token

        return await self._refresh(tenant_id, kind, credential, now)

    async def _refresh(
        self,
        tenant_id: UUID,
        kind: CredentialKind,
        credential: SubCredential,
        now: datetime,
    ) -> str:
        try:
            refreshed = await self._gateway.refresh_token(credential.refresh_token)
        except GatewayError as exc:
            TOKEN_REFRESH_TOTAL.labels(outcome="failed").inc()
            logger.warning(
                "token_refresh_failed tenant_id=%s kind=%s error_code=%s error=%s",
                tenant_id,
                kind,
                exc.error_code,
                exc,
            )
            return credential.access_token
        except Exception:
            TOKEN_REFRESH_TOTAL.labels(outcome="failed").inc()
            logger.exception("token_refresh_failed tenant_id=%s kind=%s", tenant_id, kind)
            return credential.access_token

        renewed = SubCredential(
            access_token=refreshed.access_token,
            refresh_token=refreshed.refresh_token or credential.refresh_token,
            expires_at=now + timedelta(seconds=refreshed.expires_in),
        )
        try:
            self._credential_store.update_sub_credential(tenant_id, kind, renewed)
        except Exception:
            # The new token is valid either way; the next resolve refreshes again.
            logger.exception("token_refresh_persist_failed tenant_id=%s kind=%s", tenant_id, kind)
        TOKEN_REFRESH_TOTAL.labels(outcome="refreshed").inc()
        logger.info(
            "token_refreshed tenant_id=%s kind=%s expires_at=%s",
            tenant_id,
            kind,
            renewed.expires_at.isoformat(),
        )
        return renewed.access_token
