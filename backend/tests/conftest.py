"""
Pytest fixtures for Station Ledger backend tests.

Provides the in-memory app, per-test table wipe, station/owner fixtures and
the test client.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from stationledger import create_app
from stationledger.extensions import db
from stationledger.models import Nozzle, Product, Station, Tank
from stationledger.models.owners import OWNER_GROUP_GENERAL_CREDIT
from stationledger.services import credit_service, inventory_service, shift_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def station(db_session):
    st = Station(code="ST1", name="Station One")
    db_session.add(st)
    db_session.commit()
    return st


@pytest.fixture(scope='function')
def other_station(db_session):
    st = Station(code="ST2", name="Station Two")
    db_session.add(st)
    db_session.commit()
    return st


@pytest.fixture(scope='function')
def diesel(db_session):
    product = Product(code="DSL", name="Diesel", unit="L", is_fuel=True)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def engine_oil(db_session):
    product = Product(code="OIL", name="Engine Oil", unit="bottle", is_fuel=False)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def tank(db_session, station, diesel):
    t = Tank(station_id=station.id, number=1, product_id=diesel.id, capacity_liters=Decimal("20000"))
    db_session.add(t)
    db_session.commit()
    return t


@pytest.fixture(scope='function')
def nozzles(db_session, station, diesel, tank):
    """Two diesel nozzles fed by the same tank."""
    n1 = Nozzle(station_id=station.id, number=1, product_id=diesel.id, tank_id=tank.id)
    n2 = Nozzle(station_id=station.id, number=2, product_id=diesel.id, tank_id=tank.id)
    db_session.add_all([n1, n2])
    db_session.commit()
    return n1, n2


@pytest.fixture(scope='function')
def diesel_stock(db_session, station, diesel):
    """Diesel tracked at the station: 5000 L on hand, threshold 1000 L."""
    return inventory_service.provision_item(station.id, diesel.id, threshold=1000, quantity=5000)


@pytest.fixture(scope='function')
def owner(db_session):
    """General credit owner with a 10000 limit and nothing outstanding."""
    return credit_service.create_owner(
        "Sompong Transport",
        credit_limit=Decimal("10000"),
        group_type=OWNER_GROUP_GENERAL_CREDIT,
    )


@pytest.fixture(scope='function')
def shift(db_session, station):
    return shift_service.open_shift(station.id, date(2024, 1, 15), 1, opened_at=datetime(2024, 1, 15, 6, 0))
