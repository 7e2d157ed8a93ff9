from datetime import datetime
from decimal import Decimal

import pytest

from stationledger.errors import (
    CreditLimitExceededError,
    InsufficientStockError,
    NotFoundError,
    ShiftLockedError,
    ValidationError,
)
from stationledger.models import InventoryAdjustment, Owner, SaleTransaction
from stationledger.services import credit_service, inventory_service, shift_service, transaction_service


def _stock(station, product):
    return inventory_service.find_item(station.id, product.id).quantity


def test_cash_sale_deducts_tracked_stock(db_session, station, nozzles, diesel, diesel_stock):
    n1, _ = nozzles

    tx = transaction_service.record_transaction(
        station_id=station.id,
        nozzle_id=n1.id,
        payment_type="CASH",
        liters="40.5",
        price_per_liter="32.49",
    )

    assert tx.product_id == diesel.id
    assert tx.amount == Decimal("1315.85")
    assert _stock(station, diesel) == Decimal("4959.5")
    adj = db_session.query(InventoryAdjustment).filter_by(transaction_id=tx.id).one()
    assert adj.reason == "SALE"


def test_untracked_product_is_not_deducted(db_session, station, nozzles):
    n1, _ = nozzles

    tx = transaction_service.record_transaction(
        station_id=station.id, nozzle_id=n1.id, payment_type="CASH", liters="10", price_per_liter="30.00"
    )

    assert tx.id is not None
    assert db_session.query(InventoryAdjustment).count() == 0


def test_amount_tolerance(db_session, station):
    transaction_service.record_transaction(
        station_id=station.id, payment_type="CASH", liters="10", price_per_liter="30.00", amount="300.01"
    )

    with pytest.raises(ValidationError):
        transaction_service.record_transaction(
            station_id=station.id, payment_type="CASH", liters="10", price_per_liter="30.00", amount="300.02"
        )


@pytest.mark.parametrize(
    "overrides",
    [
        {"payment_type": "BITCOIN"},
        {"liters": "0"},
        {"liters": "-3"},
        {"price_per_liter": "0"},
        {"payment_type": "CREDIT"},  # no owner
        {"occurred_at": "not-a-date"},
    ],
)
def test_invalid_sales_rejected(db_session, station, overrides):
    fields = dict(station_id=station.id, payment_type="CASH", liters="10", price_per_liter="30.00")
    fields.update(overrides)

    with pytest.raises(ValidationError):
        transaction_service.record_transaction(**fields)

    assert db_session.query(SaleTransaction).count() == 0


def test_unknown_station_or_foreign_nozzle(db_session, station, other_station, nozzles):
    n1, _ = nozzles
    with pytest.raises(NotFoundError):
        transaction_service.record_transaction(
            station_id=9999, payment_type="CASH", liters="1", price_per_liter="30.00"
        )
    with pytest.raises(NotFoundError):
        transaction_service.record_transaction(
            station_id=other_station.id, nozzle_id=n1.id, payment_type="CASH", liters="1", price_per_liter="30.00"
        )


def test_credit_sale_accrues_balance(db_session, station, owner):
    transaction_service.record_transaction(
        station_id=station.id, payment_type="CREDIT", liters="100", price_per_liter="30.00", owner_id=owner.id
    )

    assert db_session.get(Owner, owner.id).current_credit == Decimal("3000.00")


def test_credit_payment_type_must_match_owner_group(db_session, station, owner):
    with pytest.raises(ValidationError):
        transaction_service.record_transaction(
            station_id=station.id, payment_type="BOX_TRUCK", liters="10", price_per_liter="30.00", owner_id=owner.id
        )


def test_over_limit_sale_rejected_whole(db_session, station, nozzles, diesel, diesel_stock, owner):
    n1, _ = nozzles
    credit_service.accrue_credit(owner.id, "9800")

    with pytest.raises(CreditLimitExceededError):
        transaction_service.record_transaction(
            station_id=station.id, nozzle_id=n1.id, payment_type="CREDIT",
            liters="10", price_per_liter="30.00", owner_id=owner.id,
        )

    assert db_session.query(SaleTransaction).count() == 0
    assert _stock(station, diesel) == Decimal("5000")
    assert db_session.get(Owner, owner.id).current_credit == Decimal("9800")


def test_insufficient_stock_rejects_sale(db_session, station, nozzles, diesel, owner):
    n1, _ = nozzles
    inventory_service.provision_item(station.id, diesel.id, quantity=5)

    with pytest.raises(InsufficientStockError):
        transaction_service.record_transaction(
            station_id=station.id, nozzle_id=n1.id, payment_type="CREDIT",
            liters="10", price_per_liter="30.00", owner_id=owner.id,
        )

    assert db_session.get(Owner, owner.id).current_credit == Decimal("0")
    assert db_session.query(SaleTransaction).count() == 0


def test_soft_delete_reverses_stock_and_credit(db_session, station, nozzles, diesel, diesel_stock, owner):
    n1, _ = nozzles
    tx = transaction_service.record_transaction(
        station_id=station.id, nozzle_id=n1.id, payment_type="CREDIT",
        liters="100", price_per_liter="30.00", owner_id=owner.id,
    )
    tx_id = tx.id

    deleted = transaction_service.soft_delete_transaction(tx_id, "pump test")

    assert deleted.deleted_at is not None
    assert _stock(station, diesel) == Decimal("5000")
    assert db_session.get(Owner, owner.id).current_credit == Decimal("0")
    assert SaleTransaction.live().filter_by(id=tx_id).first() is None
    assert db_session.get(SaleTransaction, tx_id) is not None

    with pytest.raises(NotFoundError):
        transaction_service.soft_delete_transaction(tx_id, "again")


def test_billed_sale_cannot_be_deleted(db_session, station, owner):
    tx = transaction_service.record_transaction(
        station_id=station.id, payment_type="CREDIT", liters="10", price_per_liter="30.00",
        owner_id=owner.id, occurred_at=datetime(2024, 1, 5),
    )
    tx_id = tx.id
    credit_service.generate_monthly_invoice(owner.id, 1, 2024)

    with pytest.raises(ValidationError):
        transaction_service.soft_delete_transaction(tx_id, "oops")

    assert db_session.get(Owner, owner.id).current_credit == Decimal("300.00")


def test_delete_requires_reason(db_session, station):
    tx = transaction_service.record_transaction(
        station_id=station.id, payment_type="CASH", liters="1", price_per_liter="30.00"
    )
    with pytest.raises(ValidationError):
        transaction_service.soft_delete_transaction(tx.id, "")


def test_string_ids_from_json_are_accepted(db_session, station, nozzles, diesel, diesel_stock, owner):
    n1, _ = nozzles

    tx = transaction_service.record_transaction(
        station_id=str(station.id),
        nozzle_id=str(n1.id),
        owner_id=str(owner.id),
        payment_type="CREDIT",
        liters="10",
        price_per_liter="30.00",
    )

    assert tx.station_id == station.id
    assert tx.product_id == diesel.id
    assert _stock(station, diesel) == Decimal("4990.000")

    with pytest.raises(ValidationError):
        transaction_service.record_transaction(
            station_id="abc", payment_type="CASH", liters="1", price_per_liter="30.00"
        )


def test_locked_shift_rejects_new_and_deleted_sales(db_session, station, shift, nozzles, diesel, diesel_stock):
    n1, _ = nozzles
    tx = transaction_service.record_transaction(
        station_id=station.id, shift_id=shift.id, nozzle_id=n1.id,
        payment_type="CASH", liters="10", price_per_liter="30.00",
    )
    shift_service.close_shift(shift.id)

    # late sales still land on a closed shift
    transaction_service.record_transaction(
        station_id=station.id, shift_id=shift.id, nozzle_id=n1.id,
        payment_type="CASH", liters="5", price_per_liter="30.00",
    )

    shift_service.lock_shift(shift.id, "supervisor-1")

    with pytest.raises(ShiftLockedError):
        transaction_service.record_transaction(
            station_id=station.id, shift_id=shift.id, nozzle_id=n1.id,
            payment_type="CASH", liters="5", price_per_liter="30.00",
        )
    with pytest.raises(ShiftLockedError):
        transaction_service.soft_delete_transaction(tx.id, "typo")

    assert SaleTransaction.live().filter_by(shift_id=shift.id).count() == 2
    assert _stock(station, diesel) == Decimal("4985.000")
