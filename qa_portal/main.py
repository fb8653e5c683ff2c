import os
import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

load_dotenv()

from qa_portal.routes import (
    auth_router,
    qa_router,
    admin_router,
    export_router,
    line_router,
    notifications_router,
    cron_router,
)
from qa_portal.background_jobs import scheduler
from qa_portal.database import init_db, DATABASE_URL
from qa_portal.errors import QAError

logger = logging.getLogger(__name__)

SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"

# Create FastAPI app
app = FastAPI(
    title="QA Indicator Portal",
    description="Monthly quality indicators for hospital departments",
    version="1.0.0"
)

# Include routers
app.include_router(auth_router)
app.include_router(qa_router)
app.include_router(admin_router)
app.include_router(export_router)
app.include_router(line_router)
app.include_router(notifications_router)
app.include_router(cron_router)


@app.on_event("startup")
def on_startup():
    """Ensure DB is reachable and initialized at startup, then start the
    background jobs. If initialization fails the app will raise and stop
    with a clear error message.
    """
    try:
        # init_db will raise RuntimeError on failure
        init_db()
    except Exception as e:
        # Re-raise as RuntimeError so the server fails loudly
        raise RuntimeError(
            f"Database initialization failed for DATABASE_URL={DATABASE_URL}: {e}"
        ) from e

    if SCHEDULER_ENABLED:
        scheduler.start()


@app.on_event("shutdown")
def on_shutdown():
    scheduler.stop()


# Error handlers
@app.exception_handler(QAError)
async def qa_error_handler(request: Request, exc: QAError):
    """Render service errors as {"success": false, "message": ...}."""
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.http_status,
        content={"success": False, "message": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors (400), not 422."""
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()) if part != 'body')}: {err.get('msg')}"
        for err in errors
    ) or "Invalid request"
    return JSONResponse(status_code=400, content={"success": False, "message": message})


@app.get("/healthz")
async def healthz():
    return {"success": True, "status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000, reload=True)
