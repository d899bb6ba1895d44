from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

CREDENTIAL_SCHEMA_VERSION = 1


class CredentialKind(StrEnum):
    BOT = "bot"
    USER = "user"


@dataclass(frozen=True)
class TenantKey:
    workspace_id: str
    user_id: str


@dataclass(frozen=True)
class SubCredential:
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None

    @property
    def is_usable(self) -> bool:
        return bool(self.access_token)

    @property
    def is_refreshable(self) -> bool:
        # Without both an expiry and a refresh token the credential is treated as non-expiring.
        return self.expires_at is not None and bool(self.refresh_token)


@dataclass(frozen=True)
class CredentialBundle:
    bot: SubCredential | None = None
    user: SubCredential | None = None

    def select(self, kind: CredentialKind) -> SubCredential | None:
        return self.user if kind == CredentialKind.USER else self.bot

    @property
    def is_usable(self) -> bool:
        return any(item is not None and item.is_usable for item in (self.bot, self.user))
