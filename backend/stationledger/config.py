# backend/stationledger/config.py
from __future__ import annotations
import os
from decimal import Decimal


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_decimal(name: str, default: str) -> Decimal:
    return Decimal(os.environ.get(name, default))


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stationledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stationledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Variance cutoffs. Money in baht, volume in liters.
    MONEY_VARIANCE_YELLOW = _env_decimal("MONEY_VARIANCE_YELLOW", "200")
    MONEY_VARIANCE_RED = _env_decimal("MONEY_VARIANCE_RED", "500")
    VOLUME_VARIANCE_YELLOW = _env_decimal("VOLUME_VARIANCE_YELLOW", "10")
    VOLUME_VARIANCE_RED = _env_decimal("VOLUME_VARIANCE_RED", "50")

    # Payment types that accrue against an owner's credit balance
    CREDIT_PAYMENT_TYPES = ("CREDIT", "BOX_TRUCK", "OIL_TRUCK_SUPACHAI")
    # Payment types settled in the cash drawer at the station
    CASH_PAYMENT_TYPES = ("CASH",)
    # Owner group -> credit payment types it may accrue.
    # Groups missing from this map accept every credit payment type.
    CREDIT_TYPES_BY_GROUP = {
        "GENERAL_CREDIT": ("CREDIT",),
        "SUGAR_FACTORY": ("CREDIT",),
        "BOX_TRUCK": ("BOX_TRUCK", "CREDIT"),
        "OIL_TRUCK": ("OIL_TRUCK_SUPACHAI", "CREDIT"),
    }

    ALLOW_OVERPAYMENT = _env_bool("ALLOW_OVERPAYMENT", False)
    ALLOW_NEGATIVE_MANUAL_ADJUST = _env_bool("ALLOW_NEGATIVE_MANUAL_ADJUST", True)

    DEFAULT_LOW_STOCK_THRESHOLD = _env_decimal("DEFAULT_LOW_STOCK_THRESHOLD", "10")

    # amount vs liters * price_per_liter
    AMOUNT_TOLERANCE = Decimal("0.01")

    # Invoices fall due on this day of the month after the billing month
    INVOICE_DUE_DAY = int(os.environ.get("INVOICE_DUE_DAY", "15"))
