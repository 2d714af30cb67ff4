# exam_engine/workers/worker_main.py

from rq import Queue, SimpleWorker

from exam_engine.core.config import settings
from exam_engine.core.logging_config import configure_logging
from exam_engine.workers.queue import (
    MAINTENANCE_QUEUE_NAME,
    NOTIFICATION_QUEUE_NAME,
    get_redis_connection,
    schedule_deadline_sweep,
)


QUEUE_NAMES = [NOTIFICATION_QUEUE_NAME, MAINTENANCE_QUEUE_NAME]


def bootstrap():
    """Start-up work before the worker loop; repeating it (restarts) is harmless."""
    configure_logging()
    if settings.ENFORCE_SUBMISSION_DEADLINE:
        schedule_deadline_sweep(delay_seconds=0)


def main():
    bootstrap()
    redis_conn = get_redis_connection()

    queues = [Queue(name, connection=redis_conn) for name in QUEUE_NAMES]
    worker = SimpleWorker(queues, connection=redis_conn)

    # the scheduler releases enqueue_in jobs (deadline sweeps)
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()
