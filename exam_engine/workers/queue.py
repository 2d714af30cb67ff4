# exam_engine/workers/queue.py

import logging
from datetime import timedelta

from redis import Redis
from rq import Queue

from exam_engine.core.config import settings

logger = logging.getLogger(__name__)

NOTIFICATION_QUEUE_NAME = "notifications"
MAINTENANCE_QUEUE_NAME = "maintenance"

_redis_conn: Redis | None = None


def get_redis_connection() -> Redis:
    global _redis_conn
    if _redis_conn is None:
        redis_url = settings.REDIS_URL
        _redis_conn = Redis.from_url(redis_url)
    return _redis_conn


def get_queue(name: str) -> Queue:
    return Queue(name, connection=get_redis_connection())


def enqueue_notification(event: str, payload: dict) -> str:
    from exam_engine.workers.tasks import notification_task

    q = get_queue(NOTIFICATION_QUEUE_NAME)
    job = q.enqueue(notification_task, event, payload)
    return job.id


def pending_deadline_sweep(q: Queue) -> str | None:
    """Id of a sweep already waiting in ``q`` (scheduled or queued), if any."""
    from exam_engine.workers.tasks import deadline_sweep_task

    func_name = f"{deadline_sweep_task.__module__}.{deadline_sweep_task.__qualname__}"
    for job_id in list(q.scheduled_job_registry.get_job_ids()) + list(q.get_job_ids()):
        job = q.fetch_job(job_id)
        if job is not None and job.func_name == func_name:
            return job.id
    return None


def schedule_deadline_sweep(delay_seconds: int | None = None) -> str:
    """
    Queue the next sweep; needs a worker started with the RQ scheduler.

    At most one sweep waits at a time: if one is already scheduled or queued
    its id is returned and nothing new is enqueued, so worker restarts and
    parallel workers share a single chain.
    """
    from exam_engine.workers.tasks import deadline_sweep_task

    q = get_queue(MAINTENANCE_QUEUE_NAME)
    existing = pending_deadline_sweep(q)
    if existing is not None:
        logger.info(f"Deadline sweep {existing} already pending; not scheduling another")
        return existing

    delay = settings.DEADLINE_SWEEP_INTERVAL_SECONDS if delay_seconds is None else delay_seconds
    job = q.enqueue_in(timedelta(seconds=delay), deadline_sweep_task)
    logger.info(f"Deadline sweep {job.id} scheduled in {delay}s")
    return job.id
