"""Read-only KPI rollups over the stock ledger for the dashboard."""
import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import Date, func, select
from sqlalchemy.orm import Session

from larder.errors import ValidationError
from larder.models.core import (
    Lot, MealPlan, MealPlanStatus, MovementType, Product, StockMovement, REASON_EXPIRED,
)
from larder.schemas.dashboard import (
    DashboardOverview, ExpiredRowOut, ExpiringLotOut, KpisOut, LowStockOut, MovementTotalsOut,
    PlanCountsOut, SeriesPointOut, TopProductOut,
)
from larder.services.stock import product_stock
from larder.util.numeric import ZERO, money, q3, ratio3

logger = logging.getLogger(__name__)

# series / totals classes, in display order
MOVEMENT_CLASSES = ("IN", "OUT", "ADJUSTMENT", "LOSS", "EXPIRED")

TOP_PRODUCTS_LIMIT = 8
EXPIRING_HORIZON_DAYS = 21
EXPIRING_LOTS_LIMIT = 20
EXPIRED_ROWS_LIMIT = 100
LOW_STOCK_LIMIT = 20
MAX_WINDOW_DAYS = 366


def classify_movement(type: MovementType | str, reason: str | None) -> str:
    """Bucket a movement for reporting: LOSS splits into EXPIRED and LOSS by reason."""
    t = type.value if isinstance(type, MovementType) else str(type)
    if t == MovementType.LOSS.value:
        return "EXPIRED" if reason == REASON_EXPIRED else "LOSS"
    return t


def loss_rates(totals: dict[str, Decimal]) -> tuple[float, float]:
    """(loss rate, expired share of loss), each 0 when its denominator is 0."""
    lost = totals["LOSS"] + totals["EXPIRED"]
    loss_rate = ratio3(lost, totals["OUT"] + lost)
    expired_share = ratio3(totals["EXPIRED"], lost)
    return loss_rate, expired_share


def window_start(today: date, days: int) -> datetime:
    return datetime.combine(today - timedelta(days=days), time.min).replace(tzinfo=timezone.utc)


def movement_series(db: Session, since: datetime) -> tuple[list[tuple[date, str, Decimal]], dict[str, Decimal]]:
    """Daily quantities per class and the window totals, from the same rows.

    Both sides go through ``classify_movement`` so the series always sums
    to the totals.
    """
    day = func.date(StockMovement.moved_at, type_=Date)
    rows = db.execute(
        select(day, StockMovement.type, StockMovement.reason, func.sum(StockMovement.quantity))
        .where(StockMovement.moved_at >= since)
        .group_by(day, StockMovement.type, StockMovement.reason)
    ).all()

    by_day: dict[tuple[date, str], Decimal] = {}
    totals = {c: ZERO for c in MOVEMENT_CLASSES}
    for d, mtype, reason, qty in rows:
        cls = classify_movement(mtype, reason)
        qty = q3(qty or 0)
        by_day[(d, cls)] = by_day.get((d, cls), ZERO) + qty
        totals[cls] += qty

    series = [
        (d, cls, q3(qty))
        for (d, cls), qty in sorted(by_day.items(), key=lambda kv: (kv[0][0], MOVEMENT_CLASSES.index(kv[0][1])))
    ]
    return series, {c: q3(v) for c, v in totals.items()}


def _count_lots(db: Session, *conds) -> int:
    return db.execute(
        select(func.count()).select_from(Lot).where(Lot.archived.is_(False), Lot.quantity > 0, *conds)
    ).scalar_one()


def overview(db: Session, days: int, today: date) -> DashboardOverview:
    if not (1 <= days <= MAX_WINDOW_DAYS):
        raise ValidationError(f"days must be between 1 and {MAX_WINDOW_DAYS}")
    since = window_start(today, days)

    stock_value = db.execute(
        select(func.coalesce(func.sum(Lot.quantity * Product.cost), 0))
        .select_from(Lot)
        .join(Product, Product.id == Lot.product_id)
        .where(Lot.archived.is_(False), Lot.expiry_date >= today)
    ).scalar_one()

    lots_7 = _count_lots(db, Lot.expiry_date.between(today, today + timedelta(days=7)))
    lots_14 = _count_lots(db, Lot.expiry_date.between(today, today + timedelta(days=14)))
    lots_expired = _count_lots(db, Lot.expiry_date < today)

    plans = {s.value: 0 for s in MealPlanStatus}
    for status, c in db.execute(select(MealPlan.status, func.count()).group_by(MealPlan.status)).all():
        plans[status.value] = c

    series, totals = movement_series(db, since)
    loss_rate, expired_share = loss_rates(totals)

    out_sum = func.sum(StockMovement.quantity)
    top = db.execute(
        select(Product.id, Product.name, Product.unit, out_sum)
        .select_from(StockMovement)
        .join(Lot, Lot.id == StockMovement.lot_id)
        .join(Product, Product.id == Lot.product_id)
        .where(StockMovement.type == MovementType.OUT, StockMovement.moved_at >= since)
        .group_by(Product.id, Product.name, Product.unit)
        .order_by(out_sum.desc(), Product.name)
        .limit(TOP_PRODUCTS_LIMIT)
    ).all()

    expiring = db.execute(
        select(Lot, Product.name, Product.unit)
        .join(Product, Product.id == Lot.product_id)
        .where(Lot.archived.is_(False), Lot.quantity > 0,
               Lot.expiry_date.between(today, today + timedelta(days=EXPIRING_HORIZON_DAYS)))
        .order_by(Lot.expiry_date, Lot.id)
        .limit(EXPIRING_LOTS_LIMIT)
    ).all()

    expired_rows = db.execute(
        select(StockMovement, Lot.batch_number, Lot.expiry_date, Product.name, Product.unit)
        .join(Lot, Lot.id == StockMovement.lot_id)
        .join(Product, Product.id == Lot.product_id)
        .where(StockMovement.type == MovementType.LOSS, StockMovement.reason == REASON_EXPIRED,
               StockMovement.moved_at >= since)
        .order_by(StockMovement.moved_at.desc(), StockMovement.id.desc())
        .limit(EXPIRED_ROWS_LIMIT)
    ).all()

    low = [
        s for s in product_stock(db, today)
        if s.alert_threshold > 0 and s.available <= s.alert_threshold
    ]
    low.sort(key=lambda s: (s.available / s.alert_threshold, s.name))

    logger.debug("dashboard overview: %d day(s), %d series point(s)", days, len(series))
    return DashboardOverview(
        kpis=KpisOut(
            stock_value=float(money(stock_value or 0)),
            lots_expiring_7=lots_7,
            lots_expiring_14=lots_14,
            lots_expired_now=lots_expired,
            plans=PlanCountsOut(**plans),
            totals_30d=MovementTotalsOut(**{c: float(v) for c, v in totals.items()}),
            loss_rate_30d=loss_rate,
            expired_share_of_loss_30d=expired_share,
        ),
        series=[SeriesPointOut(d=d, t=t, qty=float(qty)) for d, t, qty in series],
        top_products=[TopProductOut(id=pid, name=name, unit=unit, qty=float(q3(qty or 0)))
                      for pid, name, unit, qty in top],
        expiring_lots=[
            ExpiringLotOut(id=l.id, batch_number=l.batch_number, expiry_date=l.expiry_date,
                           quantity=float(q3(l.quantity)), product_name=name, unit=unit)
            for l, name, unit in expiring
        ],
        expired_rows=[
            ExpiredRowOut(id=m.id, moved_date=m.moved_at.date(), qty=float(q3(m.quantity)), lot_id=m.lot_id,
                          batch_number=batch, expiry_date=expiry, product_name=name, unit=unit)
            for m, batch, expiry, name, unit in expired_rows
        ],
        low_stock=[
            LowStockOut(id=s.product_id, name=s.name, unit=s.unit,
                        alert_threshold=float(s.alert_threshold), available=float(s.available))
            for s in low[:LOW_STOCK_LIMIT]
        ],
        days=days,
    )
