import os
from datetime import timedelta

import pytest

from app.application.services.credential_store import CredentialStore, StoredCredential
from app.application.services.message_store import ScheduledMessageStore
from app.domain import models  # noqa: F401
from app.domain.credentials import CredentialBundle, SubCredential, TenantKey
from app.infrastructure.db.session import Database
from app.infrastructure.db.types import utcnow
from app.integrations.messaging.base_gateway import GatewayAPIError, MessagingGateway, RefreshedToken

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite://")


class FakeGateway(MessagingGateway):
    def __init__(self) -> None:
        self.posted: list[dict] = []
        self.refresh_calls: list[str] = []
        self.failing_channels: set[str] = set()
        self.refresh_result = RefreshedToken(access_token="xoxb-refreshed", refresh_token="xoxe-rotated", expires_in=43200)
        self.refresh_error: Exception | None = None
        self.channels: list[dict] = []
        self.list_channels_tokens: list[str] = []
        self.on_post = None

    async def post_message(self, *, token: str, channel_id: str, text: str, as_user: bool = False) -> dict:
        self.posted.append({"token": token, "channel_id": channel_id, "text": text, "as_user": as_user})
        if self.on_post is not None:
            await self.on_post()
        if channel_id in self.failing_channels:
            raise GatewayAPIError("Slack chat.postMessage error: channel_not_found", error_code="channel_not_found")
        return {"channel": channel_id, "ts": f"{len(self.posted)}.000100"}

    async def refresh_token(self, refresh_token: str) -> RefreshedToken:
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.refresh_result

    async def list_channels(self, *, token: str) -> list[dict]:
        self.list_channels_tokens.append(token)
        return self.channels


@pytest.fixture
def database():
    database = Database(TEST_DATABASE_URL).open()
    database.drop_all()
    database.create_all()
    yield database
    database.drop_all()
    database.close()


@pytest.fixture
def credential_store(database) -> CredentialStore:
    return CredentialStore(database)


@pytest.fixture
def message_store(database) -> ScheduledMessageStore:
    return ScheduledMessageStore(database)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def make_tenant(credential_store):
    def _make_tenant(
        workspace_id: str = "T0001",
        user_id: str = "U0001",
        *,
        bot: SubCredential | None = SubCredential(access_token="xoxb-bot"),
        user: SubCredential | None = SubCredential(access_token="xoxp-user"),
    ) -> StoredCredential:
        return credential_store.save(
            TenantKey(workspace_id=workspace_id, user_id=user_id),
            CredentialBundle(bot=bot, user=user),
        )

    return _make_tenant


@pytest.fixture
def tenant(make_tenant) -> StoredCredential:
    return make_tenant()


@pytest.fixture
def past():
    return utcnow() - timedelta(minutes=5)


@pytest.fixture
def future():
    return utcnow() + timedelta(hours=1)
