from minerpay.models.audit import AuditLog
from minerpay.utils.audit import log_audit, sanitize_payload_for_audit


def test_audit_log_masks_sensitive_fields(db_session):
    payload = {
        "payer_email": "buyer@example.com",
        "client_secret": "pi_123_secret_abc",
        "destination_account_id": "acct_1234567890",
        "nested": [{"email": "owner@example.org"}],
        "amount": "52.50",
    }

    log_audit(db_session, actor="test", action="MASK_TEST", entity="Rental", entity_id=1, data=payload)
    db_session.commit()

    entry = (
        db_session.query(AuditLog)
        .filter(AuditLog.action == "MASK_TEST")
        .order_by(AuditLog.id.desc())
        .first()
    )
    assert entry is not None
    assert entry.data_json["payer_email"] == "***@example.com"
    assert entry.data_json["client_secret"] == "***"
    assert entry.data_json["destination_account_id"] == "***7890"
    assert entry.data_json["nested"][0]["email"] == "***@example.org"
    assert entry.data_json["amount"] == "52.50"


def test_sanitize_leaves_input_untouched():
    payload = {"email": "a@b.io"}

    sanitize_payload_for_audit(payload)

    assert payload == {"email": "a@b.io"}
