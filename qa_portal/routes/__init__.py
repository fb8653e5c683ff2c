from qa_portal.routes.auth import router as auth_router
from qa_portal.routes.qa import router as qa_router
from qa_portal.routes.admin import router as admin_router
from qa_portal.routes.export import router as export_router
from qa_portal.routes.line import router as line_router
from qa_portal.routes.notifications import router as notifications_router
from qa_portal.routes.cron import router as cron_router

__all__ = [
    'auth_router',
    'qa_router',
    'admin_router',
    'export_router',
    'line_router',
    'notifications_router',
    'cron_router',
]
