from app.domain.models.scheduled_message import ScheduledMessage
from app.domain.models.tenant_credential import TenantCredential

__all__ = [
    "ScheduledMessage",
    "TenantCredential",
]
