"""One-time conversion of stored Slack installation blobs into credential records.

Older installations were persisted as whatever the OAuth library or the raw
``oauth.v2.access`` response looked like at the time, so token fields appear
under several names. Everything is read here once; the rest of the service
only ever sees ``CredentialBundle``.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Iterable

from app.application.services.credential_store import CredentialStore
from app.domain.credentials import CredentialBundle, SubCredential, TenantKey
from app.infrastructure.db.types import utcnow

logger = logging.getLogger(__name__)

# Epoch values above this are milliseconds.
_EPOCH_MILLIS_THRESHOLD = 10_000_000_000


class LegacyInstallationError(ValueError):
    pass


@dataclass
class LegacyMigrationReport:
    migrated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


def _first_text(*values: Any) -> str | None:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _parse_expiry(value: Any) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.isdigit():
            value = int(text)
        else:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError as exc:
                raise LegacyInstallationError(f"Unreadable expiry value: {value!r}") from exc
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > _EPOCH_MILLIS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError) as exc:
            raise LegacyInstallationError(f"Expiry out of range: {value!r}") from exc
    raise LegacyInstallationError(f"Unreadable expiry value: {value!r}")


def _sub_credential(
    *,
    access_token: str | None,
    refresh_token: str | None,
    expires_at: Any,
    expires_in: Any,
    now: datetime,
) -> SubCredential | None:
    if not access_token:
        return None
    parsed_expiry = _parse_expiry(expires_at)
    if parsed_expiry is None and expires_in not in (None, "") and refresh_token:
        # A relative lifetime without its issue time cannot be trusted; refresh on first use.
        parsed_expiry = now
    return SubCredential(access_token=access_token, refresh_token=refresh_token, expires_at=parsed_expiry)


def normalize_legacy_installation(data: dict, *, now: datetime | None = None) -> CredentialBundle:
    if not isinstance(data, dict):
        raise LegacyInstallationError("Installation blob must be a JSON object")
    now = now or utcnow()

    bot = _as_dict(data.get("bot"))
    bot_credential = _sub_credential(
        access_token=_first_text(
            bot.get("token"),
            bot.get("botToken"),
            bot.get("bot_token"),
            bot.get("access_token"),
            data.get("bot_token"),
            data.get("botToken"),
            data.get("access_token") if data.get("token_type", "bot") == "bot" else None,
        ),
        refresh_token=_first_text(
            bot.get("refreshToken"),
            bot.get("refresh_token"),
            data.get("refresh_token") if data.get("token_type", "bot") == "bot" else None,
        ),
        expires_at=bot.get("expiresAt", bot.get("expires_at")),
        expires_in=bot.get("expires_in", data.get("expires_in")),
        now=now,
    )

    user = _as_dict(data.get("user"))
    authed_user = _as_dict(data.get("authed_user"))
    user_credential = _sub_credential(
        access_token=_first_text(
            user.get("token"),
            user.get("access_token"),
            authed_user.get("access_token"),
            data.get("user_token"),
        ),
        refresh_token=_first_text(
            user.get("refreshToken"),
            user.get("refresh_token"),
            authed_user.get("refresh_token"),
        ),
        expires_at=user.get("expiresAt", user.get("expires_at")),
        expires_in=authed_user.get("expires_in"),
        now=now,
    )

    bundle = CredentialBundle(bot=bot_credential, user=user_credential)
    if not bundle.is_usable:
        raise LegacyInstallationError("Installation blob carries no access token")
    return bundle


def legacy_installation_key(data: dict) -> TenantKey:
    if not isinstance(data, dict):
        raise LegacyInstallationError("Installation blob must be a JSON object")
    team = _as_dict(data.get("team"))
    user = _as_dict(data.get("user"))
    authed_user = _as_dict(data.get("authed_user"))
    workspace_id = _first_text(team.get("id"), data.get("teamId"), data.get("team_id"))
    user_id = _first_text(user.get("id"), authed_user.get("id"), data.get("userId"), data.get("user_id"))
    if not workspace_id or not user_id:
        raise LegacyInstallationError("Installation blob is missing the team or user id")
    return TenantKey(workspace_id=workspace_id, user_id=user_id)


def migrate_legacy_installations(
    credential_store: CredentialStore,
    records: Iterable[dict],
    *,
    now: datetime | None = None,
) -> LegacyMigrationReport:
    report = LegacyMigrationReport()
    for index, record in enumerate(records):
        try:
            key = legacy_installation_key(record)
            bundle = normalize_legacy_installation(record, now=now)
        except LegacyInstallationError as exc:
            report.skipped += 1
            report.errors.append(f"record {index}: {exc}")
            logger.warning("legacy_installation_skipped index=%s error=%s", index, exc)
            continue
        credential_store.save(key, bundle)
        report.migrated += 1
    logger.info("legacy_installation_migration_completed migrated=%s skipped=%s", report.migrated, report.skipped)
    return report
