from app.application.services.credential_store import CredentialStore
from app.application.services.message_store import ScheduledMessageStore
from app.application.services.tenant_service import clear_all_installations
from app.core.config import settings
from app.infrastructure.db.session import Database


def main() -> int:
    database = Database(settings.sqlalchemy_database_uri).open()
    try:
        print("Deleting all scheduled messages and installations...")
        result = clear_all_installations(
            message_store=ScheduledMessageStore(database),
            credential_store=CredentialStore(database),
        )
    finally:
        database.close()
    print(f"Deleted {result.messages_deleted} message(s).")
    print("Installations removed." if result.credential_deleted else "No installations to remove.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
