"""Audit logging helper utilities."""
from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.orm import Session

from minerpay.models.audit import AuditLog
from minerpay.utils.time import utcnow


SENSITIVE_KEYS = {
    "email",
    "payer_email",
    "client_secret",
    "onboarding_url",
    "destination_account_id",
}


def _mask_value(key: str, value: Any) -> Any:
    if value is None:
        return None

    if key in {"email", "payer_email"}:
        text = str(value)
        if "@" in text:
            _, domain = text.split("@", 1)
            return f"***@{domain}"
        return "***"

    if key in {"client_secret", "onboarding_url"}:
        return "***"

    text = str(value)
    if len(text) <= 6:
        return "***"
    return f"***{text[-4:]}"


def sanitize_payload_for_audit(data: Any) -> Any:
    """Return a copy of ``data`` with obvious PII fields masked."""

    if isinstance(data, Mapping):
        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            masked_value = _mask_value(key, value) if key in SENSITIVE_KEYS else value
            sanitized[key] = sanitize_payload_for_audit(masked_value)
        return sanitized

    if isinstance(data, list):
        return [sanitize_payload_for_audit(item) for item in data]

    return data


def log_audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity: str,
    entity_id: int | None,
    data: dict | None = None,
) -> None:
    """Persist an audit entry in the shared AuditLog table."""

    db.add(
        AuditLog(
            actor=actor,
            action=action,
            entity=entity,
            entity_id=entity_id if entity_id is not None else 0,
            data_json=sanitize_payload_for_audit(data or {}),
            at=utcnow(),
        )
    )


__all__ = ["SENSITIVE_KEYS", "sanitize_payload_for_audit", "log_audit"]
