"""
Background worker using RQ (Redis Queue).
"""
from rq import Worker, Queue

from app.core.logging import setup_logging, get_logger
from app.workers.jobs import get_redis

setup_logging()
logger = get_logger(__name__)


def run_worker():
    """Start the RQ worker."""
    redis_conn = get_redis()

    worker = Worker(
        queues=[
            Queue("high", connection=redis_conn),
            Queue("default", connection=redis_conn),
            Queue("low", connection=redis_conn),
        ],
        connection=redis_conn,
        name="compliance-connect-worker",
    )
    logger.info("Starting Compliance Connect worker...")
    worker.work()


if __name__ == "__main__":
    run_worker()
