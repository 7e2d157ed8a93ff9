# Overview: Service-layer operations for owner credit; encapsulates business logic and database work.

# backend/stationledger/services/credit_service.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import (
    CreditLimitExceededError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from ..extensions import db
from ..models import Invoice, InvoicePayment, Owner, SaleTransaction
from ..models.billing import (
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_PARTIAL,
    INVOICE_STATUS_PENDING,
    INVOICE_STATUS_VOIDED,
)
from ..models.owners import OWNER_GROUP_GENERAL_CREDIT, VALID_OWNER_GROUPS
from ..money import ZERO, decimal_str, decimal_sum, quantize_money, to_decimal
from ..time_utils import month_window, normalize_datetime, utcnow
from .audit_service import append_audit_event
from .concurrency import invoice_key, lock_for_update, owner_key, run_atomic
"""
Credit Ledger Invariants (authoritative)

Balance:
- Owner.current_credit is the outstanding balance. It rises when a
  credit-bearing sale is ingested and falls when a payment is applied or an
  invoice is voided (outstanding written off). Nothing else writes it.
- For every owner:
    current_credit == sum(credit-bearing live sales)
                      - sum(payments)
                      - sum(outstanding written off by voids)
  reconcile_owner_credit() replays this and reports drift.

Credit limit:
- accrue_credit() refuses to go above credit_limit unless the caller passes
  allow_over_limit=True. Rejection changes nothing.
- Lowering credit_limit below current_credit is allowed; the owner is then
  reported over limit, never silently clamped.

Invoices:
- One invoice per (owner, year, month). A sale is linked to at most one
  invoice and is never unlinked, even when the invoice is voided.
- total_amount is the exact Decimal sum of linked sale amounts.
- Status: PENDING (nothing paid) -> PARTIAL -> PAID; VOIDED is terminal.
- Overpayment is rejected unless ALLOW_OVERPAYMENT is enabled.
"""

INVOICE_PREFIX = "INV"


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


@dataclass
class OwnerUpdate:
    """Partial owner update; fields left as UNSET are not touched."""
    name: object = UNSET
    phone: object = UNSET
    group_type: object = UNSET
    credit_limit: object = UNSET

    @classmethod
    def from_dict(cls, data: dict) -> "OwnerUpdate":
        allowed = {"name", "phone", "group_type", "credit_limit"}
        unknown = set(data) - allowed
        if unknown:
            raise ValidationError(f"Unknown owner fields: {sorted(unknown)}")
        return cls(**{k: data[k] for k in allowed if k in data})


@dataclass
class OwnerUpdateResult:
    owner: Owner
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"owner": self.owner.to_dict(), "warnings": list(self.warnings)}


@dataclass
class CreditReconciliation:
    owner_id: int
    stored_balance: Decimal
    replayed_balance: Decimal
    accrued: Decimal
    payments: Decimal
    written_off: Decimal
    fixed: bool = False

    @property
    def difference(self) -> Decimal:
        return self.stored_balance - self.replayed_balance

    @property
    def is_consistent(self) -> bool:
        return self.difference == 0

    def to_dict(self) -> dict:
        return {
            "owner_id": self.owner_id,
            "stored_balance": decimal_str(self.stored_balance),
            "replayed_balance": decimal_str(self.replayed_balance),
            "difference": decimal_str(self.difference),
            "accrued": decimal_str(self.accrued),
            "payments": decimal_str(self.payments),
            "written_off": decimal_str(self.written_off),
            "is_consistent": self.is_consistent,
            "fixed": self.fixed,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_amount(value, field_name: str = "amount") -> Decimal:
    amount = to_decimal(value, field_name)
    if amount <= 0:
        raise ValidationError(f"{field_name} must be positive", field=field_name)
    if quantize_money(amount) != amount:
        raise ValidationError(f"{field_name} supports at most 2 decimal places", field=field_name)
    return amount


def validate_period(month, year) -> tuple[int, int]:
    try:
        month = int(month)
        year = int(year)
    except (TypeError, ValueError):
        raise ValidationError("month and year must be integers")
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12", field="month")
    if year < 2000 or year > 9999:
        raise ValidationError("year out of range", field="year")
    return month, year


def _get_owner_locked(owner_id: int) -> Owner:
    owner = lock_for_update(Owner.live().filter(Owner.id == owner_id)).first()
    if owner is None:
        raise NotFoundError(f"Owner {owner_id} not found", owner_id=owner_id)
    return owner


def get_owner(owner_id: int) -> Owner:
    owner = Owner.live().filter(Owner.id == owner_id).first()
    if owner is None:
        raise NotFoundError(f"Owner {owner_id} not found", owner_id=owner_id)
    return owner


def credit_types_for_group(group_type: str | None) -> tuple[str, ...]:
    """Credit payment types an owner group may accrue."""
    cfg = current_app.config
    credit_types = tuple(cfg.get("CREDIT_PAYMENT_TYPES", ()))
    by_group = cfg.get("CREDIT_TYPES_BY_GROUP") or {}
    if group_type in by_group:
        return tuple(t for t in by_group[group_type] if t in credit_types)
    return credit_types


def is_credit_bearing(payment_type: str | None, group_type: str | None) -> bool:
    """True when a sale of this payment type accrues against the owner's balance."""
    if payment_type is None:
        return False
    return payment_type in credit_types_for_group(group_type)


def _credit_bearing_query(owner: Owner):
    return SaleTransaction.live().filter(
        SaleTransaction.owner_id == owner.id,
        SaleTransaction.payment_type.in_(credit_types_for_group(owner.group_type)),
    )


def _invoice_sequence_key(year: int, month: int) -> str:
    return f"invoice-seq:{year:04d}{month:02d}"


def _next_invoice_number(year: int, month: int) -> str:
    """
    Allocate INV-YYYYMM-NNNN for the billing period.

    Callers hold the period's sequence key; the unique constraint on
    invoice_number backs it up across processes.
    """
    prefix = f"{INVOICE_PREFIX}-{year:04d}{month:02d}-"
    last = (
        db.session.query(func.max(Invoice.invoice_number))
        .filter(Invoice.invoice_number.like(f"{prefix}%"))
        .scalar()
    )
    next_num = int(last[len(prefix):]) + 1 if last else 1
    return f"{prefix}{next_num:04d}"


def _statement_dates(year: int, month: int) -> tuple[date, date]:
    _, period_end = month_window(year, month)
    due_day = int(current_app.config.get("INVOICE_DUE_DAY", 15))
    statement = period_end.date()
    return statement, statement.replace(day=due_day)


def _status_for(total: Decimal, paid: Decimal) -> str:
    if paid <= 0:
        return INVOICE_STATUS_PENDING
    if paid >= total:
        return INVOICE_STATUS_PAID
    return INVOICE_STATUS_PARTIAL


# ---------------------------------------------------------------------------
# Owners
# ---------------------------------------------------------------------------

def create_owner(
    name: str,
    *,
    credit_limit=0,
    group_type: str = OWNER_GROUP_GENERAL_CREDIT,
    phone: str | None = None,
) -> Owner:
    if not name or not str(name).strip():
        raise ValidationError("name is required", field="name")
    if group_type not in VALID_OWNER_GROUPS:
        raise ValidationError(f"Invalid group_type: {group_type}. Must be one of {VALID_OWNER_GROUPS}")
    limit = to_decimal(credit_limit, "credit_limit")
    if limit < 0:
        raise ValidationError("credit_limit cannot be negative", field="credit_limit")

    def _op():
        owner = Owner(
            name=str(name).strip(),
            phone=phone,
            group_type=group_type,
            credit_limit=quantize_money(limit),
            current_credit=ZERO,
        )
        db.session.add(owner)
        db.session.flush()
        return owner

    return run_atomic(_op)


def soft_delete_owner(owner_id: int) -> Owner:
    def _op():
        owner = _get_owner_locked(owner_id)
        owner.deleted_at = utcnow()
        return owner

    return run_atomic(_op, keys=[owner_key(owner_id)])


def update_owner(owner_id: int, update: OwnerUpdate) -> OwnerUpdateResult:
    """
    Apply a partial update to an owner.

    A credit_limit lowered below current_credit is accepted and reported as
    an "over_limit" warning.
    """
    changes: dict = {}
    if update.name is not UNSET:
        if not update.name or not str(update.name).strip():
            raise ValidationError("name cannot be empty", field="name")
        changes["name"] = str(update.name).strip()
    if update.phone is not UNSET:
        changes["phone"] = update.phone
    if update.group_type is not UNSET:
        if update.group_type not in VALID_OWNER_GROUPS:
            raise ValidationError(
                f"Invalid group_type: {update.group_type}. Must be one of {VALID_OWNER_GROUPS}"
            )
        changes["group_type"] = update.group_type
    if update.credit_limit is not UNSET:
        limit = to_decimal(update.credit_limit, "credit_limit")
        if limit < 0:
            raise ValidationError("credit_limit cannot be negative", field="credit_limit")
        changes["credit_limit"] = quantize_money(limit)

    def _op():
        owner = _get_owner_locked(owner_id)
        old_limit = owner.credit_limit

        for attr, value in changes.items():
            setattr(owner, attr, value)

        warnings: list[str] = []
        if "credit_limit" in changes and changes["credit_limit"] != old_limit:
            append_audit_event(
                event_type="owner.credit_limit_changed",
                entity_type="owner",
                entity_id=owner.id,
                owner_id=owner.id,
                payload={"old": old_limit, "new": changes["credit_limit"]},
            )
            if owner.is_over_limit:
                warnings.append("over_limit")
                current_app.logger.warning(
                    "Owner %s credit limit lowered to %s below outstanding balance %s",
                    owner.id, owner.credit_limit, owner.current_credit,
                )
        db.session.flush()
        return OwnerUpdateResult(owner=owner, warnings=warnings)

    return run_atomic(_op, keys=[owner_key(owner_id)])


# ---------------------------------------------------------------------------
# Accrual
# ---------------------------------------------------------------------------

def _accrue_inner(owner: Owner, amount: Decimal, *, allow_over_limit: bool = False) -> Owner:
    """Core ACCRUE logic on an already locked owner; no commit."""
    current = owner.current_credit if owner.current_credit is not None else ZERO
    new_balance = current + amount
    if amount > 0 and new_balance > owner.credit_limit and not allow_over_limit:
        raise CreditLimitExceededError(
            f"Owner {owner.id} credit limit exceeded "
            f"(limit {owner.credit_limit}, outstanding {current}, requested {amount})",
            owner_id=owner.id,
            credit_limit=owner.credit_limit,
            current_credit=current,
            requested=amount,
        )
    owner.current_credit = new_balance
    if amount > 0 and new_balance > owner.credit_limit:
        current_app.logger.warning(
            "Owner %s accrued over credit limit by override (%s > %s)",
            owner.id, new_balance, owner.credit_limit,
        )
    return owner


def _release_inner(owner: Owner, amount: Decimal) -> Owner:
    """Reverse an earlier accrual (sale soft-deleted before billing)."""
    owner.current_credit = (owner.current_credit or ZERO) - amount
    return owner


def accrue_credit(owner_id: int, amount, *, allow_over_limit: bool = False) -> Owner:
    """
    Add amount to the owner's outstanding balance.

    Raises:
        ValidationError: non-positive amount
        NotFoundError: owner missing or soft-deleted
        CreditLimitExceededError: balance would exceed credit_limit
    """
    value = _parse_amount(amount)

    def _op():
        owner = _get_owner_locked(owner_id)
        return _accrue_inner(owner, value, allow_over_limit=allow_over_limit)

    return run_atomic(_op, keys=[owner_key(owner_id)])


def check_credit(owner_id: int, amount) -> dict:
    """Read-only headroom check for a prospective credit sale."""
    value = _parse_amount(amount)
    owner = get_owner(owner_id)
    available = owner.credit_limit - owner.current_credit
    return {
        "owner_id": owner.id,
        "credit_limit": decimal_str(owner.credit_limit),
        "current_credit": decimal_str(owner.current_credit),
        "available": decimal_str(available),
        "requested": decimal_str(value),
        "allowed": value <= available,
    }


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------

def generate_monthly_invoice(owner_id: int, month, year) -> Invoice | None:
    """
    Bill the owner's unlinked credit-bearing sales for one calendar month.

    Returns the created or extended invoice, or None when no sale qualifies.
    Running it twice for the same month links nothing the second time.

    Raises:
        ValidationError: bad period, or the period's invoice is voided
        NotFoundError: owner missing or soft-deleted
    """
    month, year = validate_period(month, year)
    start, end = month_window(year, month)

    def _op():
        owner = _get_owner_locked(owner_id)

        sales = (
            _credit_bearing_query(owner)
            .filter(
                SaleTransaction.invoice_id.is_(None),
                SaleTransaction.occurred_at >= start,
                SaleTransaction.occurred_at < end,
            )
            .order_by(SaleTransaction.occurred_at, SaleTransaction.id)
            .all()
        )
        if not sales:
            return None

        added = quantize_money(decimal_sum(tx.amount for tx in sales))

        invoice = lock_for_update(
            db.session.query(Invoice).filter_by(owner_id=owner.id, period_year=year, period_month=month)
        ).first()

        if invoice is not None:
            if invoice.status == INVOICE_STATUS_VOIDED:
                raise ValidationError(
                    f"Invoice {invoice.invoice_number} for {year}-{month:02d} is voided",
                    invoice_id=invoice.id,
                )
            invoice.total_amount = invoice.total_amount + added
            invoice.status = _status_for(invoice.total_amount, invoice.paid_amount)
            event_type = "invoice.extended"
        else:
            statement_date, due_date = _statement_dates(year, month)
            invoice = Invoice(
                owner_id=owner.id,
                invoice_number=_next_invoice_number(year, month),
                period_year=year,
                period_month=month,
                total_amount=added,
                paid_amount=ZERO,
                status=INVOICE_STATUS_PENDING,
                statement_date=statement_date,
                due_date=due_date,
            )
            db.session.add(invoice)
            db.session.flush()
            event_type = "invoice.generated"

        for tx in sales:
            tx.invoice_id = invoice.id
        db.session.flush()

        append_audit_event(
            event_type=event_type,
            entity_type="invoice",
            entity_id=invoice.id,
            owner_id=owner.id,
            payload={
                "invoice_number": invoice.invoice_number,
                "period": f"{year:04d}-{month:02d}",
                "added_amount": added,
                "transaction_count": len(sales),
            },
        )
        return invoice

    return run_atomic(_op, keys=[owner_key(owner_id), _invoice_sequence_key(year, month)])


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found", invoice_id=invoice_id)
    return invoice


def apply_payment(
    invoice_id: int,
    amount,
    payment_date=None,
    *,
    payment_method: str | None = None,
    notes: str | None = None,
) -> Invoice:
    """
    Record a payment against an invoice and reduce the owner's balance by
    the same amount.

    Raises:
        ValidationError: non-positive amount or voided invoice
        NotFoundError: invoice missing
        OverpaymentError: amount above outstanding while ALLOW_OVERPAYMENT is off
    """
    value = _parse_amount(amount)
    try:
        paid_at = normalize_datetime(payment_date)
    except ValueError:
        raise ValidationError("payment_date must be an ISO-8601 datetime", field="payment_date")
    allow_over = bool(current_app.config.get("ALLOW_OVERPAYMENT", False))

    owner_id = get_invoice(invoice_id).owner_id

    def _op():
        # lock order: owner, then invoice
        owner = lock_for_update(db.session.query(Owner).filter_by(id=owner_id)).first()
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", invoice_id=invoice_id)
        if invoice.status == INVOICE_STATUS_VOIDED:
            raise ValidationError(f"Cannot apply payment to voided invoice {invoice.invoice_number}")

        outstanding = invoice.total_amount - invoice.paid_amount
        if value > outstanding and not allow_over:
            raise OverpaymentError(
                f"Payment {value} exceeds outstanding {outstanding} on {invoice.invoice_number}",
                invoice_id=invoice.id,
                outstanding=outstanding,
                amount=value,
            )

        payment = InvoicePayment(
            invoice_id=invoice.id,
            amount=value,
            payment_date=paid_at,
            payment_method=payment_method,
            notes=notes,
        )
        db.session.add(payment)

        invoice.paid_amount = invoice.paid_amount + value
        invoice.status = _status_for(invoice.total_amount, invoice.paid_amount)
        owner.current_credit = owner.current_credit - value
        db.session.flush()

        append_audit_event(
            event_type="invoice.payment_applied",
            entity_type="invoice",
            entity_id=invoice.id,
            owner_id=owner.id,
            occurred_at=paid_at,
            note=notes,
            payload={"payment_id": payment.id, "amount": value, "status": invoice.status},
        )
        return invoice

    return run_atomic(_op, keys=[invoice_key(invoice_id), owner_key(owner_id)])


def void_invoice(invoice_id: int, reason: str) -> Invoice:
    """
    Void an unpaid or partially paid invoice.

    The outstanding amount is written off the owner's balance. Linked sales
    stay linked and are never billed again.
    """
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required", field="reason")

    owner_id = get_invoice(invoice_id).owner_id

    def _op():
        # lock order: owner, then invoice
        owner = lock_for_update(db.session.query(Owner).filter_by(id=owner_id)).first()
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", invoice_id=invoice_id)
        if invoice.status == INVOICE_STATUS_VOIDED:
            raise ValidationError(f"Invoice {invoice.invoice_number} is already voided")
        if invoice.status == INVOICE_STATUS_PAID:
            raise ValidationError(f"Cannot void paid invoice {invoice.invoice_number}")
        written_off = invoice.total_amount - invoice.paid_amount
        owner.current_credit = owner.current_credit - written_off

        now = utcnow()
        invoice.status = INVOICE_STATUS_VOIDED
        invoice.voided_at = now
        invoice.void_reason = str(reason).strip()
        db.session.flush()

        append_audit_event(
            event_type="invoice.voided",
            entity_type="invoice",
            entity_id=invoice.id,
            owner_id=owner.id,
            occurred_at=now,
            note=invoice.void_reason,
            payload={"written_off": written_off},
        )
        return invoice

    return run_atomic(_op, keys=[invoice_key(invoice_id), owner_key(owner_id)])


def list_owner_invoices(owner_id: int) -> list[Invoice]:
    return (
        db.session.query(Invoice)
        .filter_by(owner_id=owner_id)
        .order_by(Invoice.period_year.desc(), Invoice.period_month.desc())
        .all()
    )


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def _replay_balance(owner: Owner) -> tuple[Decimal, Decimal, Decimal]:
    accrued = decimal_sum(tx.amount for tx in _credit_bearing_query(owner).all())
    invoices = db.session.query(Invoice).filter_by(owner_id=owner.id).all()
    payments = decimal_sum(p.amount for inv in invoices for p in inv.payments)
    written_off = decimal_sum(
        inv.total_amount - inv.paid_amount for inv in invoices if inv.status == INVOICE_STATUS_VOIDED
    )
    return accrued, payments, written_off


def reconcile_owner_credit(owner_id: int, *, fix: bool = False) -> CreditReconciliation:
    """
    Replay the owner's balance from sales, payments and voids and compare it
    with the stored current_credit. fix=True overwrites the stored value.
    """
    def _op():
        owner = _get_owner_locked(owner_id)
        accrued, payments, written_off = _replay_balance(owner)
        replayed = quantize_money(accrued - payments - written_off)
        result = CreditReconciliation(
            owner_id=owner.id,
            stored_balance=owner.current_credit,
            replayed_balance=replayed,
            accrued=accrued,
            payments=payments,
            written_off=written_off,
        )
        if not result.is_consistent:
            current_app.logger.warning(
                "Owner %s credit drift: stored %s, replayed %s",
                owner.id, result.stored_balance, replayed,
            )
            if fix:
                owner.current_credit = replayed
                result.fixed = True
                append_audit_event(
                    event_type="owner.credit_reconciled",
                    entity_type="owner",
                    entity_id=owner.id,
                    owner_id=owner.id,
                    payload={"stored": result.stored_balance, "replayed": replayed},
                )
        return result

    return run_atomic(_op, keys=[owner_key(owner_id)], commit=fix)


def get_outstanding_owners(min_amount=0) -> list[Owner]:
    """Live owners whose balance is above min_amount, largest first."""
    threshold = to_decimal(min_amount, "min_amount")
    return (
        Owner.live()
        .filter(Owner.current_credit > threshold)
        .order_by(Owner.current_credit.desc(), Owner.id)
        .all()
    )


# ---------------------------------------------------------------------------
# Receivables aging
# ---------------------------------------------------------------------------

AGING_CURRENT = "current"
AGING_BUCKETS = [AGING_CURRENT, "1-30", "31-60", "61-90", "over_90"]


def aging_days(due_date: date | None, as_of: date) -> int:
    """Whole days past due; zero or negative means not yet due."""
    if due_date is None:
        return 0
    return (as_of - due_date).days


def aging_bucket(days: int) -> str:
    if days <= 0:
        return AGING_CURRENT
    if days <= 30:
        return "1-30"
    if days <= 60:
        return "31-60"
    if days <= 90:
        return "61-90"
    return "over_90"


@dataclass
class ReceivablesAging:
    as_of: date
    rows: list[dict] = field(default_factory=list)

    @property
    def totals(self) -> dict[str, Decimal]:
        totals = {bucket: ZERO for bucket in AGING_BUCKETS}
        for row in self.rows:
            totals[row["bucket"]] += row["outstanding"]
        return totals

    def to_dict(self) -> dict:
        return {
            "as_of": self.as_of.isoformat(),
            "totals": {k: decimal_str(v) for k, v in self.totals.items()},
            "invoices": [
                {
                    "invoice_id": row["invoice"].id,
                    "invoice_number": row["invoice"].invoice_number,
                    "owner_id": row["invoice"].owner_id,
                    "due_date": row["invoice"].due_date.isoformat() if row["invoice"].due_date else None,
                    "outstanding": decimal_str(row["outstanding"]),
                    "aging_days": row["aging_days"],
                    "bucket": row["bucket"],
                }
                for row in self.rows
            ],
        }


def get_receivables_aging(as_of=None, owner_id: int | None = None) -> ReceivablesAging:
    """
    Group the outstanding amount of PENDING and PARTIAL invoices by days
    past their due date, oldest first.
    """
    if as_of is None:
        as_of = utcnow().date()
    elif isinstance(as_of, str):
        try:
            as_of = date.fromisoformat(as_of)
        except ValueError:
            raise ValidationError("as_of must be an ISO date (YYYY-MM-DD)", field="as_of")

    q = db.session.query(Invoice).filter(
        Invoice.status.in_([INVOICE_STATUS_PENDING, INVOICE_STATUS_PARTIAL])
    )
    if owner_id is not None:
        q = q.filter(Invoice.owner_id == owner_id)

    result = ReceivablesAging(as_of=as_of)
    for invoice in q.order_by(Invoice.due_date, Invoice.id).all():
        outstanding = invoice.total_amount - invoice.paid_amount
        if outstanding <= 0:
            continue
        days = aging_days(invoice.due_date, as_of)
        result.rows.append({
            "invoice": invoice,
            "outstanding": outstanding,
            "aging_days": days,
            "bucket": aging_bucket(days),
        })
    return result
