import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.application.services.credential_store import CredentialStore, StoredCredential
from app.application.services.message_store import ScheduledMessageStore
from app.application.services.token_service import CredentialLifecycleManager
from app.core.security import decode_token
from app.domain.credentials import TenantKey
from app.infrastructure.db.session import Database, get_database
from app.integrations.messaging.base_gateway import MessagingGateway

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_tenant_key(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> TenantKey:
    if credentials is None:
        raise _unauthorized("Missing bearer token")
    try:
        claims = decode_token(credentials.credentials)
    except jwt.PyJWTError as exc:
        raise _unauthorized("Invalid token") from exc

    if claims.get("type") != "access":
        raise _unauthorized("Invalid token type")

    workspace_id = claims.get("workspace_id")
    user_id = claims.get("sub")
    if not isinstance(workspace_id, str) or not workspace_id or not isinstance(user_id, str) or not user_id:
        raise _unauthorized("Invalid token payload")
    return TenantKey(workspace_id=workspace_id, user_id=user_id)


def get_credential_store(database: Database = Depends(get_database)) -> CredentialStore:
    return CredentialStore(database)


def get_message_store(database: Database = Depends(get_database)) -> ScheduledMessageStore:
    return ScheduledMessageStore(database)


def get_gateway(request: Request) -> MessagingGateway:
    return request.app.state.gateway


def get_token_manager(
    credential_store: CredentialStore = Depends(get_credential_store),
    gateway: MessagingGateway = Depends(get_gateway),
) -> CredentialLifecycleManager:
    return CredentialLifecycleManager(credential_store, gateway)


def get_current_installation(
    tenant_key: TenantKey = Depends(get_tenant_key),
    credential_store: CredentialStore = Depends(get_credential_store),
) -> StoredCredential:
    installation = credential_store.get_by_key(tenant_key)
    if installation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error_code": "installation_not_found",
                "message": "Installation not found. Connect your Slack workspace first.",
            },
        )
    return installation
