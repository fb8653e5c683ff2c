from qa_portal.models.qa_record import QARecord
from qa_portal.models.app_document import AppDocument
from qa_portal.models.notification_outbox import NotificationIntent

__all__ = [
    "QARecord",
    "AppDocument",
    "NotificationIntent",
]
