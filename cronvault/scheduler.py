"""
APScheduler configuration for cronvault.

Runs the backup pipeline on the BACKUP_SCHEDULE_CRON expression (UTC).
"""

import logging

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from cronvault.backup.executor import run_backup
from cronvault.models import record_run


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'scheduled_backup'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone='UTC'
    )

    cron_expression = app.config['BACKUP_SCHEDULE_CRON']
    scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=CronTrigger.from_crontab(cron_expression, timezone='UTC'),
        id=BACKUP_JOB_ID,
        name='Scheduled Backup',
        replace_existing=True
    )
    logger.info(f"Scheduled backup job ({cron_expression} UTC)")

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")

        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def _execute_backup_wrapper():
    """
    Run a scheduled backup inside the app context and record it.
    """
    with flask_app.app_context():
        logger.info("Scheduler executing backup")
        result = run_backup(flask_app.config)
        record_run(result, 'scheduler')
        logger.info(f"Scheduled backup finished (success={result.success})")


def get_next_run_time():
    """
    Next scheduled run as an ISO string, or None when not scheduled.
    """
    if scheduler is None:
        return None

    job = scheduler.get_job(BACKUP_JOB_ID)
    if job is None or job.next_run_time is None:
        return None
    return job.next_run_time.isoformat()
