from decimal import Decimal

import pytest
from sqlalchemy import select

from minerpay.core.exceptions import LedgerInvariantError
from minerpay.models import LedgerEntry, LedgerEntryStatus, LedgerEntryType, PayeeAccount
from minerpay.services import ledger


def _entries(db_session, rental_id):
    return db_session.scalars(
        select(LedgerEntry).where(LedgerEntry.rental_id == rental_id).order_by(LedgerEntry.id)
    ).all()


def test_settlement_writes_payment_and_pending_payout(db_session, make_rental):
    rental = make_rental(daily_rate="25.00", days=2, flat_fee_per_day="1.25")
    db_session.add(
        PayeeAccount(
            owner_id=rental.owner_id,
            external_account_id="acct_owner_ledger",
            email="owner@example.com",
            country="US",
        )
    )
    db_session.flush()

    result = ledger.record_settlement(
        db_session, rental, amount_received=Decimal("52.50"), external_payment_id="pi_ledger_1"
    )
    db_session.commit()

    assert result.created is True
    assert result.payment_entry.amount == Decimal("52.50")
    assert result.payment_entry.status == LedgerEntryStatus.COMPLETED
    assert result.payout_entry.amount == Decimal("50.00")
    assert result.payout_entry.status == LedgerEntryStatus.PENDING
    assert result.payout_entry.destination_account_id == "acct_owner_ledger"


def test_settlement_is_idempotent(db_session, make_rental):
    rental = make_rental()

    first = ledger.record_settlement(db_session, rental, amount_received=Decimal("50.00"), external_payment_id="pi_x")
    db_session.commit()
    second = ledger.record_settlement(db_session, rental, amount_received=Decimal("50.00"), external_payment_id="pi_x")
    db_session.commit()

    assert first.created is True
    assert second.created is False
    entries = _entries(db_session, rental.id)
    assert [entry.entry_type for entry in entries] == [LedgerEntryType.RENTAL_PAYMENT, LedgerEntryType.OWNER_PAYOUT]


def test_settlement_refuses_unbalanced_split():
    with pytest.raises(LedgerInvariantError):
        ledger.assert_split_balances(Decimal("100.00"), Decimal("3.50"), Decimal("96.00"))
    with pytest.raises(LedgerInvariantError):
        ledger.assert_split_balances(Decimal("100.00"), None, None)


def test_captured_split_cannot_be_rewritten(db_session, make_rental):
    rental = make_rental(daily_rate="50.00", days=2)
    assert rental.platform_fee == Decimal("3.50")

    rental.platform_fee = Decimal("1.75")
    rental.owner_payout = Decimal("98.25")
    with pytest.raises(LedgerInvariantError):
        db_session.flush()
    db_session.rollback()


def test_ledger_entry_amount_is_immutable(db_session, make_rental):
    rental = make_rental()
    result = ledger.record_settlement(db_session, rental, amount_received=Decimal("50.00"), external_payment_id="pi_y")
    db_session.commit()

    result.payment_entry.amount = Decimal("1.00")
    with pytest.raises(LedgerInvariantError):
        db_session.flush()
    db_session.rollback()


def test_payout_completion_happens_once(db_session, make_rental):
    rental = make_rental()
    ledger.record_settlement(db_session, rental, amount_received=Decimal("50.00"), external_payment_id="pi_z")
    db_session.commit()

    entry = ledger.mark_payout_completed(db_session, rental_id=rental.id, transfer_id="tr_1")
    db_session.commit()
    assert entry.status == LedgerEntryStatus.COMPLETED
    assert entry.external_transfer_id == "tr_1"
    completed_at = entry.completed_at

    again = ledger.mark_payout_completed(db_session, rental_id=rental.id, transfer_id="tr_1")
    db_session.commit()
    assert again.id == entry.id
    assert again.completed_at == completed_at


def test_completed_entry_cannot_return_to_pending(db_session, make_rental):
    rental = make_rental()
    result = ledger.record_settlement(db_session, rental, amount_received=Decimal("50.00"), external_payment_id="pi_w")
    db_session.commit()

    result.payment_entry.status = LedgerEntryStatus.PENDING
    with pytest.raises(LedgerInvariantError):
        db_session.flush()
    db_session.rollback()


def test_payout_completion_without_entry_is_noop(db_session, make_rental):
    rental = make_rental()

    assert ledger.mark_payout_completed(db_session, rental_id=rental.id, transfer_id="tr_missing") is None
