"""
Background job definitions.
"""
from redis import Redis
from rq import Queue

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def get_redis() -> Redis:
    return Redis.from_url(settings.REDIS_URL, socket_connect_timeout=2)


def get_queue(name: str = "default") -> Queue:
    """Get RQ queue."""
    return Queue(name, connection=get_redis())


# ============= JOB FUNCTIONS =============

def send_email_job(message: dict):
    """
    Background job to deliver one email.

    Failures are logged and the job ends; lost notifications are not retried.
    """
    from app.services.email_provider import EmailMessage, EmailDeliveryError, send_email

    email = EmailMessage.from_dict(message)
    logger.info(f"Sending email to {email.to}: {email.subject!r}")
    try:
        return send_email(email)
    except EmailDeliveryError as e:
        logger.error(f"Email delivery to {email.to} failed: {e}")
        return {"error": str(e), "status": e.status_code}


# ============= QUEUE HELPERS =============

def enqueue_email(message: dict):
    """Queue an email for delivery."""
    queue = get_queue("high")
    return queue.enqueue(send_email_job, message)
