# Gunicorn configuration for cronvault
# Only one worker may own the backup schedule

import os
import logging

logger = logging.getLogger('gunicorn.error')

# A backup run is synchronous; give the trigger request room to finish
timeout = int(os.environ.get('GUNICORN_TIMEOUT', 300))


def post_fork(server, worker):
    """
    Designate the first worker (worker.age == 1) as the scheduler owner.

    Runs before the worker loads the app, so create_app() sees the flag.

    Every other worker serves HTTP only, so a scheduled backup never runs
    twice from the same deployment.

    Args:
        server: Gunicorn arbiter
        worker: Gunicorn worker instance (the arbiter numbers workers from 1)
    """
    if worker.age == 1:
        os.environ['SCHEDULER_WORKER'] = 'true'
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): Designated as SCHEDULER OWNER")
    else:
        os.environ['SCHEDULER_WORKER'] = 'false'
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): HTTP worker (scheduler disabled)")
