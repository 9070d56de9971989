"""
Background jobs (APScheduler). Only started when ENABLE_BACKGROUND_JOBS=true,
so test runs and one-off commands never spawn the scheduler thread.
"""

import logging
import os

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

scheduler = None

EXPIRE_CHARGES_EVERY_MINUTES = 5


def setup_scheduler(app):
    """Start the scheduler and register the payment expiry job."""
    global scheduler

    if os.environ.get("ENABLE_BACKGROUND_JOBS") != "true":
        logger.info("Background jobs disabled (ENABLE_BACKGROUND_JOBS != true)")
        return None

    try:
        scheduler = BackgroundScheduler(daemon=True)
        scheduler.add_job(
            func=run_expire_stale_transactions,
            args=[app],
            trigger=IntervalTrigger(minutes=EXPIRE_CHARGES_EVERY_MINUTES),
            id='expire_stale_transactions',
            name='Expire abandoned QRIS charges',
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=300
        )
        scheduler.start()
        logger.info(f"Background scheduler started: charge expiry every {EXPIRE_CHARGES_EVERY_MINUTES} min")
    except Exception as e:
        logger.error(f"Error setting up scheduler: {str(e)}", exc_info=True)
    return scheduler


def stop_scheduler():
    """Stop the background scheduler gracefully."""
    global scheduler
    if scheduler and scheduler.running:
        try:
            scheduler.shutdown()
            logger.info("Scheduler shut down successfully")
        except Exception as e:
            logger.error(f"Error shutting down scheduler: {str(e)}")


def run_expire_stale_transactions(app):
    """Job wrapper: run the expiry inside an app context."""
    from app import db
    from services_payments import expire_stale_transactions

    try:
        with app.app_context():
            count = expire_stale_transactions(db.session)
            logger.info(f"Scheduled charge expiry finished: {count} cancelled")
    except Exception as e:
        logger.error(f"Error in scheduled charge expiry: {str(e)}", exc_info=True)
