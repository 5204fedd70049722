"""
Notification Service - outbound collaborators

Notifications raised by a command are queued on the SQLAlchemy session and
sent only once that session commits. A rollback discards them, and a
failing sender is logged without affecting the committed transaction.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import event
from sqlalchemy.orm import Session

from crm_sales.core.config import settings

logger = logging.getLogger(__name__)

PENDING_KEY = "crm_sales.pending_notifications"

# (aggregate type, new status) -> template key
STATUS_TEMPLATES = {
    ("Quote", "sent"): "quote_sent",
    ("Quote", "accepted"): "quote_accepted",
    ("Quote", "rejected"): "quote_rejected",
    ("Invoice", "sent"): "invoice_sent",
    ("Invoice", "paid"): "invoice_paid",
    ("Invoice", "overdue"): "invoice_overdue",
    ("DeliveryNote", "in_transit"): "delivery_shipped",
    ("DeliveryNote", "delivered"): "delivery_delivered",
}


class Notifier:
    """Sends a templated message; delivery is someone else's concern"""

    def notify(self, template_key: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    def notify(self, template_key: str, payload: Dict[str, Any]) -> None:
        logger.info(f"Notification '{template_key}': {payload}")


class DocumentRenderer:
    """Renders a document (e.g. to PDF); storage is someone else's concern"""

    def render(self, kind: str, document: Dict[str, Any]) -> bytes:
        raise NotImplementedError


class LoggingRenderer(DocumentRenderer):
    def render(self, kind: str, document: Dict[str, Any]) -> bytes:
        logger.info(f"Render requested for {kind} {document.get('number')}")
        return b""


default_notifier = LoggingNotifier()
default_renderer = LoggingRenderer()


def template_for(aggregate_type: str, status: str) -> Optional[str]:
    return STATUS_TEMPLATES.get((aggregate_type, status))


def enqueue(db: Session, notifier: Notifier, template_key: str, payload: Dict[str, Any]) -> None:
    """Queue a notification to be sent after ``db`` commits"""
    pending: List[Tuple[Notifier, str, Dict[str, Any]]] = db.info.setdefault(PENDING_KEY, [])
    pending.append((notifier, template_key, payload))


def pending_notifications(db: Session) -> List[Tuple[Notifier, str, Dict[str, Any]]]:
    return list(db.info.get(PENDING_KEY, []))


@event.listens_for(Session, "after_commit")
def _dispatch_after_commit(session: Session):
    pending = session.info.pop(PENDING_KEY, [])
    if not pending or not settings.NOTIFICATIONS_ENABLED:
        return
    for notifier, template_key, payload in pending:
        try:
            notifier.notify(template_key, payload)
        except Exception as e:
            logger.error(f"Notification '{template_key}' failed: {e}", exc_info=True)


@event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session: Session):
    dropped = session.info.pop(PENDING_KEY, [])
    if dropped:
        logger.info(f"Discarded {len(dropped)} notification(s) after rollback")
