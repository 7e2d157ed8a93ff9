"""
Thread-based concurrency tests on a temporary file database.

Each worker pushes its own app context and removes its session when done,
the way request handlers would.
"""
import threading
from decimal import Decimal

import pytest

from stationledger import create_app
from stationledger.errors import CreditLimitExceededError, InsufficientStockError
from stationledger.extensions import db
from stationledger.models import InventoryAdjustment, InventoryItem, Owner, Product, Station
from stationledger.services import credit_service, inventory_service


@pytest.fixture
def file_app(tmp_path):
    db_path = tmp_path / "concurrency.db"
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30, "check_same_thread": False}},
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    with file_app.app_context():
        station = Station(code="CC", name="Concurrency Station")
        diesel = Product(code="DSL", name="Diesel")
        gasohol = Product(code="G95", name="Gasohol 95")
        db.session.add_all([station, diesel, gasohol])
        db.session.commit()
        ids = {"station": station.id, "diesel": diesel.id, "gasohol": gasohol.id}
        inventory_service.provision_item(ids["station"], ids["diesel"], quantity=100)
        inventory_service.provision_item(ids["station"], ids["gasohol"], quantity=100)
        ids["owner"] = credit_service.create_owner("Racer", credit_limit=1000).id
        db.session.remove()
    return ids


def _run_threads(app, count, work):
    results = []
    lock = threading.Lock()
    start = threading.Barrier(count)

    def worker(i):
        with app.app_context():
            start.wait()
            try:
                outcome = work(i)
            except Exception as exc:
                outcome = exc
            finally:
                db.session.remove()
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


def test_same_key_adjustments_never_oversell(file_app, seeded):
    def work(_):
        return inventory_service.adjust(seeded["station"], seeded["diesel"], -15, reason="SALE")

    results = _run_threads(file_app, 10, work)

    successes = [r for r in results if isinstance(r, dict)]
    rejected = [r for r in results if isinstance(r, InsufficientStockError)]
    assert len(successes) == 6
    assert len(rejected) == 4

    with file_app.app_context():
        item = db.session.query(InventoryItem).filter_by(product_id=seeded["diesel"]).one()
        assert item.quantity == Decimal("10")
        journal = db.session.query(InventoryAdjustment).filter_by(inventory_item_id=item.id).count()
        assert journal == 6


def test_different_keys_both_complete(file_app, seeded):
    def work(i):
        product = seeded["diesel"] if i % 2 == 0 else seeded["gasohol"]
        return inventory_service.adjust(seeded["station"], product, -5, reason="SALE")

    results = _run_threads(file_app, 8, work)

    assert all(isinstance(r, dict) for r in results), results
    with file_app.app_context():
        quantities = {
            item.product_id: item.quantity
            for item in db.session.query(InventoryItem).all()
        }
        assert quantities[seeded["diesel"]] == Decimal("80")
        assert quantities[seeded["gasohol"]] == Decimal("80")


def test_concurrent_accruals_respect_credit_limit(file_app, seeded):
    def work(_):
        return credit_service.accrue_credit(seeded["owner"], "100").id

    results = _run_threads(file_app, 15, work)

    accepted = [r for r in results if isinstance(r, int)]
    rejected = [r for r in results if isinstance(r, CreditLimitExceededError)]
    assert len(accepted) == 10
    assert len(rejected) == 5

    with file_app.app_context():
        assert db.session.get(Owner, seeded["owner"]).current_credit == Decimal("1000")
