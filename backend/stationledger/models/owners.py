from __future__ import annotations

from ..extensions import db
from ..money import decimal_str
from ..time_utils import to_utc_z


OWNER_GROUP_GENERAL_CREDIT = "GENERAL_CREDIT"
OWNER_GROUP_SUGAR_FACTORY = "SUGAR_FACTORY"
OWNER_GROUP_BOX_TRUCK = "BOX_TRUCK"
OWNER_GROUP_OIL_TRUCK = "OIL_TRUCK"

VALID_OWNER_GROUPS = [
    OWNER_GROUP_GENERAL_CREDIT,
    OWNER_GROUP_SUGAR_FACTORY,
    OWNER_GROUP_BOX_TRUCK,
    OWNER_GROUP_OIL_TRUCK,
]


class Owner(db.Model):
    """
    Credit customer (fleet / truck owner).

    INVARIANTS:
    - current_credit is the outstanding balance and is only mutated by
      credit_service (accrual, payment, invoice void, reconciliation fix).
    - current_credit may sit above credit_limit only when the limit was
      lowered afterwards or an explicit override was used; it is never
      silently corrected.
    - Soft-deleted owners (deleted_at set) are invisible to Owner.live().
    """
    __tablename__ = "owners"
    __table_args__ = (
        db.Index("ix_owners_group_deleted", "group_type", "deleted_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    group_type = db.Column(db.String(32), nullable=False, default=OWNER_GROUP_GENERAL_CREDIT, index=True)

    credit_limit = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    current_credit = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @classmethod
    def live(cls):
        """Query over owners that are not soft-deleted."""
        return cls.query.filter(cls.deleted_at.is_(None))

    @property
    def is_over_limit(self) -> bool:
        return (self.current_credit or 0) > (self.credit_limit or 0)

    def __repr__(self) -> str:
        return f"<Owner id={self.id} name={self.name!r} credit={self.current_credit}/{self.credit_limit}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "group_type": self.group_type,
            "credit_limit": decimal_str(self.credit_limit),
            "current_credit": decimal_str(self.current_credit),
            "remaining_credit": decimal_str((self.credit_limit or 0) - (self.current_credit or 0)),
            "is_over_limit": self.is_over_limit,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "version_id": self.version_id,
        }
