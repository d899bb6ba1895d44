import json
import sys
from pathlib import Path

from app.application.services.credential_store import CredentialStore
from app.application.services.legacy_installation_migration import migrate_legacy_installations
from app.core.config import settings
from app.infrastructure.db.session import Database


def load_records(path: Path) -> list[dict]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        # Exports keyed by team id, or a single installation.
        if "records" in payload and isinstance(payload["records"], list):
            return payload["records"]
        if any(key in payload for key in ("bot", "team", "authed_user", "access_token")):
            return [payload]
        return list(payload.values())
    if isinstance(payload, list):
        return payload
    raise ValueError("Export must be a JSON list or object")


def main() -> int:
    if len(sys.argv) < 2:
        print("usage: python -m scripts.migrate_legacy_installations <export.json>")
        return 2

    records = load_records(Path(sys.argv[1]))
    database = Database(settings.sqlalchemy_database_uri).open()
    try:
        report = migrate_legacy_installations(CredentialStore(database), records)
    finally:
        database.close()

    print(f"Migrated {report.migrated} installation(s), skipped {report.skipped}.")
    for error in report.errors:
        print(f"- {error}")
    return 0 if report.skipped == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
