"""Stock accounting: lot quantities and the movement ledger.

Every function here works inside the caller's transaction (see
``larder.db.run_in_transaction``); nothing commits. A lot row is always read
``FOR UPDATE`` and written back with a version guard, so a writer that lost a
race gets a ``ConflictError`` and the whole unit of work is retried.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable

from sqlalchemy import select, update, delete
from sqlalchemy import func
from sqlalchemy.orm import Session

from larder.config import settings
from larder.errors import ConflictError, InsufficientStock, NotFound, ValidationError, WriteConflict
from larder.models.common import utcnow
from larder.models.core import (
    Lot, Product, Reservation, StockMovement, MovementType, REASON_EXPIRED,
)
from larder.util.numeric import ZERO, q3

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExpirySummary:
    lots_processed: int
    total_loss: Decimal
    lots_skipped: int = 0


@dataclass(frozen=True)
class ProductStock:
    product_id: str
    name: str
    unit: str
    alert_threshold: Decimal
    quantity: Decimal
    reserved: Decimal
    available: Decimal


def to_quantity(value, field: str = "quantity") -> Decimal:
    try:
        qty = q3(value)
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a number")
    if not qty.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return qty


def to_movement_type(value) -> MovementType:
    if isinstance(value, MovementType):
        return value
    try:
        return MovementType(str(value).upper())
    except ValueError:
        raise ValidationError(f"unknown movement type: {value}")


# ── data access ─────────────────────────────────────────────────────────────

def reserved_by_lot(db: Session, lot_ids: Iterable[str]) -> dict[str, Decimal]:
    """Total reserved quantity per lot; lots without reservations are absent."""
    ids = list(lot_ids)
    if not ids:
        return {}
    db.flush()
    rows = db.execute(
        select(Reservation.lot_id, func.sum(Reservation.reserved_qty))
        .where(Reservation.lot_id.in_(ids))
        .group_by(Reservation.lot_id)
    ).all()
    return {lot_id: q3(total or 0) for lot_id, total in rows}


def lot_available(lot: Lot, reserved: Decimal) -> Decimal:
    return max(ZERO, q3(lot.quantity) - reserved)


def lock_lot(db: Session, lot_id: str) -> Lot:
    lot = db.execute(
        select(Lot)
        .where(Lot.id == lot_id)
        .with_for_update(of=Lot)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if lot is None:
        raise NotFound(f"lot {lot_id} not found")
    return lot


def write_lot(db: Session, lot: Lot, *, quantity: Decimal, archived: bool) -> bool:
    """Write a lot back only if its version is still the one we read.

    Returns False when another transaction got there first. The instance is
    expired either way so the next attribute access reloads it.
    """
    res = db.execute(
        update(Lot)
        .where(Lot.id == lot.id, Lot.version == lot.version)
        .values(quantity=q3(quantity), archived=archived, version=lot.version + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.expire(lot)
    return res.rowcount == 1


def assert_reservations_covered(db: Session, lot_ids: Iterable[str]) -> None:
    """Post-condition of every reservation write: quantity >= reserved on each lot."""
    ids = list(lot_ids)
    reserved = reserved_by_lot(db, ids)
    for lot_id, quantity in db.execute(select(Lot.id, Lot.quantity).where(Lot.id.in_(ids))).all():
        if reserved.get(lot_id, ZERO) > q3(quantity):
            raise WriteConflict(f"lot {lot_id} over-reserved by a concurrent request")


# ── movements ───────────────────────────────────────────────────────────────

def apply_movement(
    db: Session,
    lot_id: str,
    type: MovementType | str,
    quantity,
    reason: str | None = None,
    *,
    moved_at: datetime | None = None,
    ref_meal_plan_item_id: str | None = None,
    auto_archive: bool | None = None,
) -> StockMovement:
    """Change a lot's quantity and append the matching ledger row.

    IN adds and OUT/LOSS remove a positive quantity. ADJUSTMENT takes a signed
    delta. The lot may never drop below zero nor below what is reserved on it.
    """
    mtype = to_movement_type(type)
    qty = to_quantity(quantity)
    if mtype is MovementType.ADJUSTMENT:
        if qty == 0:
            raise ValidationError("adjustment delta must be non-zero")
        delta = qty
    else:
        if qty <= 0:
            raise ValidationError("quantity must be greater than zero")
        delta = qty if mtype is MovementType.IN else -qty

    lot = lock_lot(db, lot_id)
    batch, current = lot.batch_number, q3(lot.quantity)
    if lot.archived:
        raise ConflictError(f"lot {batch} is archived")

    new_qty = q3(current + delta)
    if new_qty < 0:
        raise InsufficientStock(f"lot {batch} holds {current}, cannot remove {-delta}")
    reserved = reserved_by_lot(db, [lot_id]).get(lot_id, ZERO)
    if new_qty < reserved:
        raise InsufficientStock(f"lot {batch} has {reserved} reserved, only {current - reserved} free")

    if auto_archive is None:
        auto_archive = settings.AUTO_ARCHIVE_EMPTY_LOTS
    archive = bool(auto_archive and new_qty == 0)
    if not write_lot(db, lot, quantity=new_qty, archived=archive):
        raise WriteConflict(f"lot {batch} was modified concurrently")

    mv = StockMovement(
        lot_id=lot_id,
        type=mtype,
        reason=reason,
        quantity=qty,
        moved_at=moved_at or utcnow(),
        ref_meal_plan_item_id=ref_meal_plan_item_id,
    )
    db.add(mv)
    db.flush()
    logger.info("movement %s %s on lot %s: %s -> %s%s", mtype.value, qty, batch, current, new_qty,
                " (archived)" if archive else "")
    return mv


def receive_lot(db: Session, product_id: str, batch_number: str, quantity, expiry_date: date) -> Lot:
    """Create a lot and book its opening quantity as an IN movement."""
    product = db.get(Product, product_id)
    if product is None:
        raise NotFound(f"product {product_id} not found")
    if not product.active:
        raise ValidationError(f"product {product.name} is inactive")
    if not (batch_number or "").strip():
        raise ValidationError("batch_number is required")
    if expiry_date is None:
        raise ValidationError("expiry_date is required")
    qty = to_quantity(quantity)
    if qty <= 0:
        raise ValidationError("quantity must be greater than zero")

    lot = Lot(product_id=product_id, batch_number=batch_number.strip(), quantity=ZERO,
              expiry_date=expiry_date, archived=False, version=1)
    db.add(lot)
    db.flush()
    apply_movement(db, lot.id, MovementType.IN, qty, "RECEIPT")
    return lot


def archive_lot(db: Session, lot_id: str) -> Lot:
    """Manually close a lot. Lots still holding reservations cannot be closed."""
    lot = lock_lot(db, lot_id)
    if lot.archived:
        return lot
    if reserved_by_lot(db, [lot_id]):
        raise ConflictError(f"lot {lot.batch_number} has active reservations")
    if not write_lot(db, lot, quantity=lot.quantity, archived=True):
        raise WriteConflict(f"lot {lot_id} was modified concurrently")
    logger.info("lot %s archived manually", lot_id)
    return lot


def expire_lots(db: Session, as_of: date) -> ExpirySummary:
    """Write off every open lot whose expiry date is before ``as_of``.

    Each lot is zeroed, archived and gets one LOSS/EXPIRED movement for what
    it still held. Lots already taken by a concurrent sweep are skipped, so
    running this twice for the same day books nothing the second time.
    """
    candidates = db.execute(
        select(Lot)
        .where(Lot.archived.is_(False), Lot.quantity > 0, Lot.expiry_date < as_of)
        .order_by(Lot.expiry_date, Lot.id)
        .with_for_update(of=Lot, skip_locked=True)
        .execution_options(populate_existing=True)
    ).scalars().all()

    now = utcnow()
    processed = skipped = 0
    total = ZERO
    for lot in candidates:
        lot_id, batch, remaining = lot.id, lot.batch_number, q3(lot.quantity)
        if not write_lot(db, lot, quantity=ZERO, archived=True):
            skipped += 1
            logger.info("lot %s already expired by a concurrent sweep, skipping", batch)
            continue
        released = db.execute(delete(Reservation).where(Reservation.lot_id == lot_id)).rowcount
        if released:
            logger.warning("lot %s expired with %d reservation(s) still held; released", batch, released)
        db.add(StockMovement(lot_id=lot_id, type=MovementType.LOSS, reason=REASON_EXPIRED,
                             quantity=remaining, moved_at=now))
        processed += 1
        total += remaining
    db.flush()
    logger.info("expiry sweep as of %s: %d lot(s), loss %s, %d skipped", as_of, processed, total, skipped)
    return ExpirySummary(lots_processed=processed, total_loss=q3(total), lots_skipped=skipped)


# ── read models ─────────────────────────────────────────────────────────────

def product_stock(db: Session, today: date, *, include_inactive: bool = False) -> list[ProductStock]:
    """Quantity, reserved and available per product over open, unexpired lots.

    Available is clamped at zero per lot before summing.
    """
    q = select(Product).order_by(Product.name, Product.id)
    if not include_inactive:
        q = q.where(Product.active.is_(True))
    products = db.execute(q).scalars().all()
    lots = db.execute(
        select(Lot).where(Lot.archived.is_(False), Lot.expiry_date >= today)
    ).scalars().all()
    reserved = reserved_by_lot(db, [l.id for l in lots])

    sums: dict[str, list[Decimal]] = {}
    for l in lots:
        r = reserved.get(l.id, ZERO)
        acc = sums.setdefault(l.product_id, [ZERO, ZERO, ZERO])
        acc[0] += q3(l.quantity)
        acc[1] += r
        acc[2] += lot_available(l, r)

    out = []
    for p in products:
        quantity, res, available = sums.get(p.id, [ZERO, ZERO, ZERO])
        out.append(ProductStock(
            product_id=p.id, name=p.name, unit=p.unit,
            alert_threshold=q3(p.alert_threshold or 0),
            quantity=q3(quantity), reserved=q3(res), available=q3(available),
        ))
    return out
