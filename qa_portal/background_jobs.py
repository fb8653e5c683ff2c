"""
Background job scheduler for periodic tasks.
Uses APScheduler for the hourly reminder check and the notification outbox.
"""
import os
import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from qa_portal.database import SessionLocal
from qa_portal.services.outbox import drain_outbox, outbox_sender
from qa_portal.services.reminder import run_reminder_check
from qa_portal.services.settings_store import get_access_token
from qa_portal.time_config import get_app_tz

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class BackgroundJobScheduler:
    """Manages background jobs for the application."""

    def __init__(self):
        self.scheduler = BackgroundScheduler(timezone=get_app_tz())
        self.reminder_enabled = os.getenv('REMINDER_JOB_ENABLED', 'true').lower() == 'true'
        self.outbox_interval = int(os.getenv('OUTBOX_DRAIN_INTERVAL_SECONDS', '60'))

    def start(self):
        """Start the background job scheduler."""
        if not self.scheduler.running:
            if self.reminder_enabled:
                # Top of every hour; the job itself checks the configured day and time
                self.scheduler.add_job(
                    func=reminder_job,
                    trigger=CronTrigger(minute=0, timezone=get_app_tz()),
                    id='reminder_job',
                    name='Remind departments with missing QA data',
                    replace_existing=True
                )
                logger.info("Reminder job scheduled to run hourly")

            self.scheduler.add_job(
                func=outbox_job,
                trigger=IntervalTrigger(seconds=self.outbox_interval),
                id='outbox_job',
                name='Deliver queued LINE notifications',
                replace_existing=True,
                max_instances=1,
                coalesce=True
            )
            logger.info(f"Outbox job scheduled every {self.outbox_interval} seconds")

            self.scheduler.start()
            logger.info("Background job scheduler started")

    def stop(self):
        """Stop the background job scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Background job scheduler stopped")


def reminder_job():
    """Hourly reminder check against the configured day and time."""
    logger.info("Starting reminder job...")

    db = SessionLocal()
    try:
        outcome = run_reminder_check(db)
        logger.info(f"Reminder job finished: {outcome.state} ({outcome.message})")
    except Exception as e:
        logger.error(f"Reminder job failed: {str(e)}")
    finally:
        db.close()


def outbox_job(client_factory=None):
    """Deliver pending notification intents."""
    db = SessionLocal()
    try:
        client = None
        if client_factory is not None:
            client = client_factory(get_access_token(db))
        drain_outbox(db, sender=outbox_sender(db, client))
    except Exception as e:
        logger.error(f"Outbox job failed: {str(e)}")
    finally:
        db.close()


# Global scheduler instance
scheduler = BackgroundJobScheduler()
