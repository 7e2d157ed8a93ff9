# backend/stationledger/services/anomaly_service.py
"""
Shift anomaly detection.

Compares what the meters, gauges and cash drawer say against what the
recorded sales say, per shift, and keeps one pending Anomaly per
(shift, metric, subject) for every deviation above the "ok" cutoff.

METRICS:
- NOZZLE_LITERS: expected = END meter - START meter; actual = sum of sale
  liters on the nozzle
- TANK_LITERS: expected = START gauge - END gauge; actual = sum of sale
  liters through nozzles fed by the tank
- CASH_VARIANCE: expected = sum of cash-settled sale amounts; actual = the
  physical cash count recorded at close (skipped while no count exists)

delta = expected - actual, classified by the volume or money ThresholdPolicy.

RE-EVALUATION:
- non-ok: create the pending anomaly or refresh it in place
- ok: the pending anomaly for that key is cleared
- a reviewed anomaly with unchanged values is kept as the finding; no new
  row is created for it
- a reading that goes backwards or an incomplete START/END pair is a
  critical finding, never zero

All reads happen before any write inside one unit; a read failure aborts the
whole check with PersistenceError and records nothing.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from sqlalchemy import case

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Anomaly, Nozzle, SaleTransaction, Shift, ShiftReading
from ..models.anomalies import (
    METRIC_CASH_VARIANCE,
    METRIC_NOZZLE_LITERS,
    METRIC_TANK_LITERS,
    REVIEW_PENDING,
    REVIEW_REVIEWED,
)
from ..models.shifts import (
    READING_KIND_GAUGE,
    READING_KIND_METER,
    READING_PHASE_END,
    READING_PHASE_START,
)
from ..money import decimal_sum, quantize_liters
from ..time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_atomic, shift_key
from .thresholds import (
    SEVERITY_CRITICAL,
    SEVERITY_OK,
    SEVERITY_WARNING,
    ThresholdPolicy,
    money_policy,
    volume_policy,
)


@dataclass(frozen=True)
class Finding:
    """One evaluated metric for a shift, ok or not."""
    metric: str
    subject_ref: str
    expected: Decimal | None
    actual: Decimal | None
    delta: Decimal | None
    severity: str
    note: str | None = None

    @property
    def identity(self) -> tuple[str, str]:
        return (self.metric, self.subject_ref)


def _q(value: Decimal | None) -> Decimal | None:
    return quantize_liters(value) if value is not None else None


def _pair_readings(readings: list[ShiftReading], kind: str, subject_attr: str) -> dict[int, dict[str, Decimal]]:
    pairs: dict[int, dict[str, Decimal]] = defaultdict(dict)
    for r in readings:
        if r.reading_kind != kind:
            continue
        pairs[getattr(r, subject_attr)][r.phase] = r.value
    return pairs


def _counter_finding(
    *,
    metric: str,
    subject_ref: str,
    start: Decimal | None,
    end: Decimal | None,
    actual: Decimal,
    policy: ThresholdPolicy,
    descending: bool,
    label: str,
) -> Finding:
    """
    Build the finding for one START/END pair.

    descending=False: meters count up, expected = end - start
    descending=True: gauges drain, expected = start - end
    """
    if start is None or end is None:
        missing = READING_PHASE_START if start is None else READING_PHASE_END
        return Finding(
            metric=metric,
            subject_ref=subject_ref,
            expected=None,
            actual=_q(actual),
            delta=None,
            severity=SEVERITY_CRITICAL,
            note=f"incomplete {label} readings: missing {missing}",
        )

    expected = (start - end) if descending else (end - start)
    if expected < 0:
        if descending:
            note = f"{label} level rose during shift ({start} -> {end}); delivery or data error"
        else:
            note = f"{label} went backwards ({start} -> {end}); rollover or data error"
        return Finding(
            metric=metric,
            subject_ref=subject_ref,
            expected=_q(expected),
            actual=_q(actual),
            delta=_q(expected - actual),
            severity=SEVERITY_CRITICAL,
            note=note,
        )

    delta = expected - actual
    return Finding(
        metric=metric,
        subject_ref=subject_ref,
        expected=_q(expected),
        actual=_q(actual),
        delta=_q(delta),
        severity=policy.classify(delta),
    )


def evaluate_shift(
    *,
    readings: list[ShiftReading],
    transactions: list[SaleTransaction],
    nozzles: list[Nozzle],
    cash_counted: Decimal | None,
    cash_payment_types,
    volume: ThresholdPolicy,
    money: ThresholdPolicy,
) -> list[Finding]:
    """
    Pure evaluation of one shift. Returns a finding (ok included) for every
    metric that could be evaluated.
    """
    findings: list[Finding] = []

    liters_by_nozzle: dict[int, list[Decimal]] = defaultdict(list)
    for tx in transactions:
        if tx.nozzle_id is not None:
            liters_by_nozzle[tx.nozzle_id].append(tx.liters)

    # Nozzle meters
    meter_pairs = _pair_readings(readings, READING_KIND_METER, "nozzle_id")
    for nozzle_id in sorted(set(meter_pairs) | set(liters_by_nozzle)):
        pair = meter_pairs.get(nozzle_id, {})
        findings.append(_counter_finding(
            metric=METRIC_NOZZLE_LITERS,
            subject_ref=f"nozzle:{nozzle_id}",
            start=pair.get(READING_PHASE_START),
            end=pair.get(READING_PHASE_END),
            actual=decimal_sum(liters_by_nozzle.get(nozzle_id, [])),
            policy=volume,
            descending=False,
            label="meter",
        ))

    # Tank gauges
    tank_by_nozzle = {n.id: n.tank_id for n in nozzles if n.tank_id is not None}
    liters_by_tank: dict[int, list[Decimal]] = defaultdict(list)
    for nozzle_id, liters in liters_by_nozzle.items():
        tank_id = tank_by_nozzle.get(nozzle_id)
        if tank_id is not None:
            liters_by_tank[tank_id].extend(liters)

    gauge_pairs = _pair_readings(readings, READING_KIND_GAUGE, "tank_id")
    for tank_id in sorted(gauge_pairs):
        pair = gauge_pairs[tank_id]
        findings.append(_counter_finding(
            metric=METRIC_TANK_LITERS,
            subject_ref=f"tank:{tank_id}",
            start=pair.get(READING_PHASE_START),
            end=pair.get(READING_PHASE_END),
            actual=decimal_sum(liters_by_tank.get(tank_id, [])),
            policy=volume,
            descending=True,
            label="gauge",
        ))

    # Cash drawer
    if cash_counted is not None:
        expected_cash = decimal_sum(tx.amount for tx in transactions if tx.payment_type in cash_payment_types)
        delta = expected_cash - cash_counted
        findings.append(Finding(
            metric=METRIC_CASH_VARIANCE,
            subject_ref="cash",
            expected=_q(expected_cash),
            actual=_q(cash_counted),
            delta=_q(delta),
            severity=money.classify(delta),
        ))

    return findings


def _same_values(anomaly: Anomaly, finding: Finding) -> bool:
    return (
        _q(anomaly.expected_value) == finding.expected
        and _q(anomaly.actual_value) == finding.actual
        and anomaly.severity == finding.severity
    )


def check_shift_anomalies(shift_id: int) -> list[Anomaly]:
    """
    Evaluate a shift and persist its anomalies.

    Returns the non-ok anomalies for the shift after evaluation.

    Raises:
        NotFoundError: shift does not exist
        PersistenceError: a read or write failed; nothing was recorded
    """
    cash_types = tuple(current_app.config.get("CASH_PAYMENT_TYPES", ("CASH",)))
    volume = volume_policy()
    money = money_policy()

    def _op():
        shift = lock_for_update(db.session.query(Shift).filter_by(id=shift_id)).first()
        if shift is None:
            raise NotFoundError(f"Shift {shift_id} not found", shift_id=shift_id)

        # Reads
        readings = db.session.query(ShiftReading).filter_by(shift_id=shift_id).all()
        transactions = SaleTransaction.live().filter_by(shift_id=shift_id).all()
        nozzles = db.session.query(Nozzle).filter_by(station_id=shift.station_id).all()
        existing = db.session.query(Anomaly).filter_by(shift_id=shift_id).all()

        findings = evaluate_shift(
            readings=readings,
            transactions=transactions,
            nozzles=nozzles,
            cash_counted=shift.cash_counted,
            cash_payment_types=cash_types,
            volume=volume,
            money=money,
        )

        pending_by_key = {}
        reviewed_by_key = defaultdict(list)
        for a in existing:
            key = (a.metric, a.subject_ref)
            if a.review_state == REVIEW_PENDING:
                pending_by_key[key] = a
            else:
                reviewed_by_key[key].append(a)

        # Writes
        found: list[Anomaly] = []
        now = utcnow()
        for finding in findings:
            pending = pending_by_key.get(finding.identity)

            if finding.severity == SEVERITY_OK:
                if pending is not None:
                    current_app.logger.info(
                        "Clearing anomaly %s (%s %s) on shift %s: variance back within cutoffs",
                        pending.id, pending.metric, pending.subject_ref, shift_id,
                    )
                    db.session.delete(pending)
                continue

            if pending is not None:
                pending.expected_value = finding.expected
                pending.actual_value = finding.actual
                pending.delta = finding.delta
                pending.severity = finding.severity
                pending.note = finding.note
                pending.updated_at = now
                found.append(pending)
                continue

            reviewed = next(
                (a for a in reviewed_by_key.get(finding.identity, []) if _same_values(a, finding)),
                None,
            )
            if reviewed is not None:
                found.append(reviewed)
                continue

            anomaly = Anomaly(
                station_id=shift.station_id,
                shift_id=shift.id,
                shift_date=shift.shift_date,
                metric=finding.metric,
                subject_ref=finding.subject_ref,
                expected_value=finding.expected,
                actual_value=finding.actual,
                delta=finding.delta,
                severity=finding.severity,
                note=finding.note,
                review_state=REVIEW_PENDING,
                created_at=now,
                updated_at=now,
            )
            db.session.add(anomaly)
            found.append(anomaly)
            if finding.severity == SEVERITY_CRITICAL:
                current_app.logger.warning(
                    "Critical %s anomaly on shift %s (%s): expected=%s actual=%s %s",
                    finding.metric, shift_id, finding.subject_ref,
                    finding.expected, finding.actual, finding.note or "",
                )

        db.session.flush()
        return found

    return run_atomic(_op, keys=[shift_key(shift_id)])


def get_pending_anomalies(station_id: int | None = None, limit: int | None = None) -> list[Anomaly]:
    """
    Pending anomalies across stations: critical first, then warning, then
    most recent shift date first.
    """
    severity_order = case(
        {SEVERITY_CRITICAL: 0, SEVERITY_WARNING: 1},
        value=Anomaly.severity,
        else_=2,
    )
    q = db.session.query(Anomaly).filter(Anomaly.review_state == REVIEW_PENDING)
    if station_id is not None:
        q = q.filter(Anomaly.station_id == station_id)
    q = q.order_by(severity_order, Anomaly.shift_date.desc(), Anomaly.id.desc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def get_shift_anomalies(shift_id: int) -> list[Anomaly]:
    return (
        db.session.query(Anomaly)
        .filter_by(shift_id=shift_id)
        .order_by(Anomaly.id)
        .all()
    )


def mark_anomaly_reviewed(anomaly_id: int, reviewer_id) -> Anomaly:
    """
    Transition a pending anomaly to reviewed.

    Re-marking an already reviewed anomaly is a no-op: the first reviewer
    and timestamp are kept.

    Raises:
        ValidationError: reviewer_id missing
        NotFoundError: anomaly does not exist
    """
    if reviewer_id is None or not str(reviewer_id).strip():
        raise ValidationError("reviewer_id is required", field="reviewer_id")
    reviewer = str(reviewer_id).strip()

    anomaly = db.session.get(Anomaly, anomaly_id)
    if anomaly is None:
        raise NotFoundError(f"Anomaly {anomaly_id} not found", anomaly_id=anomaly_id)
    shift_id = anomaly.shift_id

    def _op():
        locked = lock_for_update(db.session.query(Anomaly).filter_by(id=anomaly_id)).first()
        if locked is None:
            # cleared by a concurrent re-evaluation
            raise NotFoundError(f"Anomaly {anomaly_id} not found", anomaly_id=anomaly_id)
        if locked.review_state == REVIEW_REVIEWED:
            return locked

        now = utcnow()
        locked.review_state = REVIEW_REVIEWED
        locked.reviewed_by = reviewer
        locked.reviewed_at = now

        append_audit_event(
            event_type="anomaly.reviewed",
            entity_type="anomaly",
            entity_id=locked.id,
            station_id=locked.station_id,
            actor_id=reviewer,
            occurred_at=now,
            payload={"metric": locked.metric, "subject_ref": locked.subject_ref, "severity": locked.severity},
        )
        return locked

    return run_atomic(_op, keys=[shift_key(shift_id)])
