"""Webhook Ingestor: verify, journal, dispatch, acknowledge.

Handlers are registered per event type with :func:`register`. The ingestor
stays generic and owns the single commit for each event, so a handler failure
leaves nothing behind and the gateway redelivers the whole event later.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from minerpay.config import Settings, get_settings
from minerpay.core.exceptions import DuplicateEvent, PersistenceError
from minerpay.models import WebhookEvent
from minerpay.services.gateway import verify_webhook_payload
from minerpay.utils.time import utcnow

logger = logging.getLogger(__name__)

PROVIDER = "stripe"

EventHandler = Callable[[Session, Dict[str, Any]], None]

_HANDLERS: dict[str, EventHandler] = {}


def register(*event_types: str) -> Callable[[EventHandler], EventHandler]:
    """Decorator binding a handler to one or more gateway event types."""

    def decorator(fn: EventHandler) -> EventHandler:
        for event_type in event_types:
            if event_type in _HANDLERS and _HANDLERS[event_type] is not fn:
                raise RuntimeError(f"Handler already registered for {event_type}")
            _HANDLERS[event_type] = fn
        return fn

    return decorator


def get_handler(event_type: str) -> EventHandler | None:
    return _HANDLERS.get(event_type)


def registered_event_types() -> list[str]:
    return sorted(_HANDLERS)


@dataclass
class IngestResult:
    event_id: str
    kind: str
    handled: bool
    duplicate: bool = False


def _find_journal(db: Session, event_id: str) -> WebhookEvent | None:
    stmt = (
        select(WebhookEvent)
        .where(WebhookEvent.provider == PROVIDER, WebhookEvent.event_id == event_id)
        .execution_options(populate_existing=True)
    )
    return db.scalars(stmt).first()


def _ensure_not_processed(db: Session, event_id: str) -> WebhookEvent | None:
    journal = _find_journal(db, event_id)
    if journal is not None and journal.processed_at is not None:
        logger.info("Duplicate webhook delivery", extra={"event_id": event_id, "kind": journal.kind})
        raise DuplicateEvent(event_id, handled=bool(journal.handled))
    return journal


def process_event(db: Session, event: Dict[str, Any]) -> IngestResult:
    """Dispatch an already verified event exactly once.

    Raises :class:`DuplicateEvent` when the event id was processed before.
    """

    event_id, kind = event["id"], event["type"]
    journal = _ensure_not_processed(db, event_id)
    handler = get_handler(kind)

    try:
        if journal is None:
            journal = WebhookEvent(
                provider=PROVIDER,
                event_id=event_id,
                kind=kind,
                raw_json=event,
                received_at=utcnow(),
            )
            db.add(journal)
            db.flush()

        if handler is None:
            logger.info("Unhandled webhook event type", extra={"event_id": event_id, "kind": kind})
        else:
            handler(db, event)

        journal.handled = handler is not None
        journal.processed_at = utcnow()
        db.add(journal)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        # A concurrent delivery of the same event may have won the race.
        _ensure_not_processed(db, event_id)
        logger.error(
            "Webhook event could not be recorded",
            extra={"event_id": event_id, "kind": kind, "reconciliation_candidate": True},
        )
        raise PersistenceError(
            "Webhook event could not be recorded.", external_ids={"event_id": event_id}
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "Webhook event could not be recorded",
            extra={"event_id": event_id, "kind": kind, "reconciliation_candidate": True},
        )
        raise PersistenceError(
            "Webhook event could not be recorded.", external_ids={"event_id": event_id}
        ) from exc
    except Exception:
        db.rollback()
        logger.exception("Webhook handler failed", extra={"event_id": event_id, "kind": kind})
        raise

    logger.info(
        "Webhook processed",
        extra={"event_id": event_id, "kind": kind, "handled": journal.handled, "status": "success"},
    )
    return IngestResult(event_id=event_id, kind=kind, handled=journal.handled)


def ingest_webhook(
    db: Session,
    payload: bytes,
    sig_header: str | None,
    *,
    settings: Settings | None = None,
) -> IngestResult:
    """Verify the signature, then process the event.

    Verification happens before anything touches the database.
    """

    event = verify_webhook_payload(payload, sig_header, settings or get_settings())
    logger.info("Webhook received", extra={"event_id": event["id"], "kind": event["type"]})
    return process_event(db, event)


__all__ = [
    "EventHandler",
    "IngestResult",
    "PROVIDER",
    "get_handler",
    "ingest_webhook",
    "process_event",
    "register",
    "registered_event_types",
]
