from datetime import datetime
from decimal import Decimal

import pytest

from stationledger.errors import PersistenceError, ValidationError
from stationledger.models import Invoice
from stationledger.services import billing_service, credit_service, transaction_service


def _credit_sale(station, owner, liters, occurred_at, payment_type="CREDIT"):
    return transaction_service.record_transaction(
        station_id=station.id,
        payment_type=payment_type,
        liters=liters,
        price_per_liter="30.00",
        owner_id=owner.id,
        occurred_at=occurred_at,
    )


def test_batch_invoices_every_eligible_owner(db_session, station, owner):
    truck = credit_service.create_owner("Box Truck Co", credit_limit=50000, group_type="BOX_TRUCK")
    idle = credit_service.create_owner("Idle Owner", credit_limit=1000)
    _credit_sale(station, owner, "10", datetime(2024, 4, 2))
    _credit_sale(station, truck, "20", datetime(2024, 4, 5), payment_type="BOX_TRUCK")

    result = billing_service.generate_all_monthly_invoices(4, 2024)

    assert result.succeeded == 2
    assert result.skipped == 0
    assert result.failures == []
    assert len(result.invoice_ids) == 2
    totals = sorted(db_session.get(Invoice, i).total_amount for i in result.invoice_ids)
    assert totals == [Decimal("300.00"), Decimal("600.00")]
    assert db_session.query(Invoice).filter_by(owner_id=idle.id).count() == 0


def test_rerun_skips_already_billed_owners(db_session, station, owner):
    _credit_sale(station, owner, "10", datetime(2024, 4, 2))
    billing_service.generate_all_monthly_invoices(4, 2024)

    again = billing_service.generate_all_monthly_invoices(4, 2024)

    assert again.succeeded == 0
    assert again.skipped == 1
    assert db_session.query(Invoice).count() == 1


def test_deleted_owner_not_billed(db_session, station, owner):
    _credit_sale(station, owner, "10", datetime(2024, 4, 2))
    credit_service.soft_delete_owner(owner.id)

    result = billing_service.generate_all_monthly_invoices(4, 2024)

    assert result.to_dict()["succeeded"] == 0
    assert db_session.query(Invoice).count() == 0


def test_one_owner_failure_does_not_stop_the_run(db_session, station, owner, monkeypatch):
    second = credit_service.create_owner("Second Owner", credit_limit=5000)
    third = credit_service.create_owner("Third Owner", credit_limit=5000)
    for o in (owner, second, third):
        _credit_sale(station, o, "5", datetime(2024, 6, 10))

    real_generate = billing_service.generate_monthly_invoice

    def flaky_generate(owner_id, month, year):
        if owner_id == second.id:
            raise PersistenceError("persistence failure: OperationalError")
        return real_generate(owner_id, month, year)

    monkeypatch.setattr(billing_service, "generate_monthly_invoice", flaky_generate)

    result = billing_service.generate_all_monthly_invoices(6, 2024)

    assert result.succeeded == 2
    assert result.failures == [{"owner_id": second.id, "reason": "persistence failure: OperationalError"}]
    assert db_session.query(Invoice).filter_by(owner_id=second.id).count() == 0
    assert db_session.query(Invoice).filter_by(owner_id=third.id).count() == 1


def test_voided_period_reported_as_failure(db_session, station, owner):
    _credit_sale(station, owner, "10", datetime(2024, 7, 1))
    invoice = credit_service.generate_monthly_invoice(owner.id, 7, 2024)
    credit_service.void_invoice(invoice.id, "billing error")
    _credit_sale(station, owner, "4", datetime(2024, 7, 20))

    result = billing_service.generate_all_monthly_invoices(7, 2024)

    assert result.succeeded == 0
    assert [f["owner_id"] for f in result.failures] == [owner.id]


def test_invalid_month_rejected(db_session):
    with pytest.raises(ValidationError):
        billing_service.generate_all_monthly_invoices(0, 2024)
