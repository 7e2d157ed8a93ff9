from __future__ import annotations

from ..extensions import db
from ..money import decimal_str
from ..time_utils import to_utc_z


class Station(db.Model):
    """
    Fuel station.

    Stations own nozzles, tanks, shifts and per-product inventory rows.
    """
    __tablename__ = "stations"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_stations_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Station id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """Fuel grade or shop product (diesel, gasohol 95, engine oil...)."""
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_products_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="L")
    is_fuel = db.Column(db.Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "unit": self.unit,
            "is_fuel": self.is_fuel,
        }


class Tank(db.Model):
    """Underground storage tank, read by gauge at shift start and end."""
    __tablename__ = "tanks"
    __table_args__ = (
        db.UniqueConstraint("station_id", "number", name="uq_tanks_station_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    number = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    capacity_liters = db.Column(db.Numeric(14, 3), nullable=True)

    station = db.relationship("Station", backref=db.backref("tanks", lazy=True))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "number": self.number,
            "product_id": self.product_id,
            "capacity_liters": decimal_str(self.capacity_liters),
        }


class Nozzle(db.Model):
    """
    Dispenser nozzle with a monotonic liter counter (meter).

    A nozzle draws from at most one tank; tank_id is optional for stations
    that do not gauge their tanks.
    """
    __tablename__ = "nozzles"
    __table_args__ = (
        db.UniqueConstraint("station_id", "number", name="uq_nozzles_station_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    number = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    tank_id = db.Column(db.Integer, db.ForeignKey("tanks.id"), nullable=True, index=True)

    station = db.relationship("Station", backref=db.backref("nozzles", lazy=True))
    product = db.relationship("Product")
    tank = db.relationship("Tank", backref=db.backref("nozzles", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "number": self.number,
            "product_id": self.product_id,
            "tank_id": self.tank_id,
        }
