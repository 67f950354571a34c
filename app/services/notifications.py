"""
Notification dispatcher: turns PIR lifecycle events into outbound emails.

Delivery is best-effort. Messages are queued for the email worker and a
failure anywhere on this path is logged, never raised to the caller, so a
committed status change is never undone by a lost email.
"""
from enum import Enum
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger
from app.db.models import Company, Product, PIRStatus
from app.services.email_provider import EmailMessage

logger = get_logger(__name__)


class NotificationType(str, Enum):
    """Event discriminator accepted by the notification endpoint."""
    PIR_STATUS_UPDATE = "PIR_STATUS_UPDATE"
    PIR_RESPONSE_SUBMITTED = "PIR_RESPONSE_SUBMITTED"
    REVIEW_COMPLETED = "REVIEW_COMPLETED"
    SUPPLIER_INVITATION = "SUPPLIER_INVITATION"


class PIRLike(Protocol):
    id: int
    status: object
    customer_id: int
    supplier_company_id: int
    product_id: Optional[int]
    suggested_product_name: Optional[str]


def get_company_details(db: Session, company_id: Optional[int]) -> Optional[Company]:
    if company_id is None:
        return None
    company = db.query(Company).filter(Company.id == company_id).first()
    if company is None:
        logger.error(f"Company {company_id} not found while building notification")
    return company


def get_product_name(db: Session, product_id: Optional[int], suggested_name: Optional[str]) -> str:
    if suggested_name:
        return suggested_name
    if not product_id:
        return "Unknown Product"
    product = db.query(Product).filter(Product.id == product_id).first()
    if product is None:
        logger.error(f"Product {product_id} not found while building notification")
        return "Unknown Product"
    return product.name


def _status_value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


def _pir_link(pir_id: int) -> str:
    return f"{settings.APP_BASE_URL.rstrip('/')}/pirs/{pir_id}"


def build_pir_email(db: Session, pir: PIRLike, status=None) -> Optional[EmailMessage]:
    """
    Build the email for a PIR that just entered `status` (defaults to its
    current status).

    Returns None when the status has no notification or when the recipient
    company has no contact email on file.
    """
    new_status = _status_value(status if status is not None else pir.status)

    product_name = get_product_name(db, pir.product_id, pir.suggested_product_name)
    customer = get_company_details(db, pir.customer_id)
    supplier = get_company_details(db, pir.supplier_company_id)

    customer_name = customer.name if customer else "Your Customer"
    supplier_name = supplier.name if supplier else "Your Supplier"
    supplier_email = supplier.contact_email if supplier else None
    customer_email = customer.contact_email if customer else None
    link = _pir_link(pir.id)

    if new_status == PIRStatus.SENT.value:
        to, subject, body = (
            supplier_email,
            f"Action Required: Product Information Request for {product_name}",
            f"Hello {supplier_name},\n\n{customer_name} has requested product information "
            f"for \"{product_name}\". Please log in to provide the details.\n\n{link}\n\nPIR ID: {pir.id}",
        )
    elif new_status == PIRStatus.SUBMITTED.value:
        to, subject, body = (
            customer_email,
            f"Response Submitted: PIR for {product_name} from {supplier_name}",
            f"Hello {customer_name},\n\n{supplier_name} has submitted responses for the Product "
            f"Information Request regarding \"{product_name}\". Please log in to review.\n\n{link}\n\nPIR ID: {pir.id}",
        )
    elif new_status == PIRStatus.RESUBMITTED.value:
        to, subject, body = (
            customer_email,
            f"Response Resubmitted: PIR for {product_name} from {supplier_name}",
            f"Hello {customer_name},\n\n{supplier_name} has addressed the flagged answers for "
            f"\"{product_name}\" and resubmitted. Please log in to review.\n\n{link}\n\nPIR ID: {pir.id}",
        )
    elif new_status == PIRStatus.FLAGGED.value:
        to, subject, body = (
            supplier_email,
            f"Revision Requested: {product_name}",
            f"Hello {supplier_name},\n\n{customer_name} reviewed your answers for \"{product_name}\" "
            f"and flagged some of them for revision. Please log in to update them.\n\n{link}\n\nPIR ID: {pir.id}",
        )
    elif new_status == PIRStatus.APPROVED.value:
        to, subject, body = (
            supplier_email,
            f"PIR Approved: {product_name}",
            f"Hello {supplier_name},\n\nThe Product Information Request for \"{product_name}\" "
            f"submitted to {customer_name} has been approved.\n\nPIR ID: {pir.id}",
        )
    elif new_status == PIRStatus.REJECTED.value:
        to, subject, body = (
            supplier_email,
            f"PIR Rejected: {product_name}",
            f"Hello {supplier_name},\n\nThe Product Information Request for \"{product_name}\" "
            f"submitted to {customer_name} has been rejected. Please check the platform for "
            f"details.\n\n{link}\n\nPIR ID: {pir.id}",
        )
    else:
        logger.info(f"No email notification configured for status: {new_status}")
        return None

    if not to:
        logger.warning(
            f"No recipient email found for PIR {pir.id} (status {new_status}); skipping notification",
            extra={"pir_id": pir.id},
        )
        return None

    return EmailMessage(to=to, subject=subject, text=body)


def build_invitation_email(
    invite_email: str,
    inviter_name: str,
    inviter_company_name: str,
    invitation_token: Optional[str] = None,
) -> Optional[EmailMessage]:
    if not invite_email:
        logger.warning("Supplier invitation without an email address; skipping notification")
        return None

    link = f"{settings.APP_BASE_URL.rstrip('/')}/invite"
    if invitation_token:
        link += f"?token={invitation_token}"

    return EmailMessage(
        to=invite_email,
        subject=f"Invitation to join {inviter_company_name} on {settings.APP_NAME}",
        text=(
            f"Hello,\n\n{inviter_name} from {inviter_company_name} has invited you to collaborate "
            f"on product compliance information. Please sign up to get started:\n\n{link}"
        ),
    )


class Notifier:
    """
    Default dispatcher: builds the message and queues it for the email worker.
    """

    def notify(self, db: Session, event: NotificationType, pir: PIRLike) -> Optional[EmailMessage]:
        try:
            message = build_pir_email(db, pir)
            if message is None:
                return None
            self.dispatch(message)
            logger.info(
                f"Queued {event.value} notification for PIR {pir.id} to {message.to}",
                extra={"pir_id": pir.id},
            )
            return message
        except Exception as e:
            logger.error(f"Failed to dispatch {event.value} notification for PIR {pir.id}: {e}")
            return None

    def notify_message(self, message: Optional[EmailMessage]) -> Optional[EmailMessage]:
        if message is None:
            return None
        try:
            self.dispatch(message)
            return message
        except Exception as e:
            logger.error(f"Failed to dispatch email to {message.to}: {e}")
            return None

    def dispatch(self, message: EmailMessage):
        from app.workers.jobs import enqueue_email
        enqueue_email(message.to_dict())


def get_notifier() -> Notifier:
    """FastAPI dependency for the notification dispatcher."""
    return Notifier()
