"""Soft holds on lot quantity for confirmed meal-plan items."""
import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from larder.errors import ConflictError, InsufficientAvailableStock, NotFound, ValidationError, WriteConflict
from larder.models.core import Lot, MealPlanItem, Product, Reservation, StockMovement, MovementType, REASON_PRODUCTION
from larder.services.stock import (
    apply_movement, assert_reservations_covered, lot_available, reserved_by_lot, to_quantity, write_lot,
)
from larder.util import clock
from larder.util.numeric import ZERO, q3

logger = logging.getLogger(__name__)


def item_requirements(item: MealPlanItem) -> dict[str, Decimal]:
    """Quantity needed per product: qty_per_portion x portions x (1 + waste_rate)."""
    recipe = item.recipe
    factor = Decimal(1) + Decimal(recipe.waste_rate or 0)
    needs: dict[str, Decimal] = {}
    for ri in recipe.items:
        needs[ri.product_id] = needs.get(ri.product_id, ZERO) + Decimal(ri.qty_per_portion) * item.portions * factor
    return {pid: q3(qty) for pid, qty in needs.items()}


def reserve_for_item(db: Session, meal_plan_item_id: str, product_id: str, needed_qty, *,
                     today: date | None = None) -> list[Reservation]:
    """Hold ``needed_qty`` of a product for a meal-plan item, first-expired-first-out.

    Either the whole quantity is reserved or nothing is.
    """
    needed = to_quantity(needed_qty, "needed_qty")
    if needed <= 0:
        raise ValidationError("needed_qty must be greater than zero")
    if db.get(MealPlanItem, meal_plan_item_id) is None:
        raise NotFound(f"meal plan item {meal_plan_item_id} not found")
    if db.get(Product, product_id) is None:
        raise NotFound(f"product {product_id} not found")
    today = today or clock.today()

    lots = db.execute(
        select(Lot)
        .where(Lot.product_id == product_id, Lot.archived.is_(False),
               Lot.expiry_date >= today, Lot.quantity > 0)
        .order_by(Lot.expiry_date, Lot.created_at, Lot.id)
        .with_for_update(of=Lot)
        .execution_options(populate_existing=True)
    ).scalars().all()
    reserved = reserved_by_lot(db, [l.id for l in lots])

    allocation: list[tuple[Lot, Decimal]] = []
    remaining = needed
    for lot in lots:
        if remaining <= 0:
            break
        free = lot_available(lot, reserved.get(lot.id, ZERO))
        if free <= 0:
            continue
        take = min(free, remaining)
        allocation.append((lot, take))
        remaining -= take
    if remaining > 0:
        raise InsufficientAvailableStock(
            f"product {product_id}: need {needed}, only {q3(needed - remaining)} available"
        )

    touched_ids = [lot.id for lot, _ in allocation]
    existing = {
        r.lot_id: r
        for r in db.execute(
            select(Reservation).where(Reservation.meal_plan_item_id == meal_plan_item_id,
                                      Reservation.lot_id.in_(touched_ids))
        ).scalars()
    }

    out = []
    for lot, take in allocation:
        lot_id = lot.id
        # claim the lot: a concurrent writer that read the same version now loses
        if not write_lot(db, lot, quantity=lot.quantity, archived=False):
            raise WriteConflict(f"lot {lot_id} was modified concurrently")
        r = existing.get(lot_id)
        if r is not None:
            r.reserved_qty = q3(r.reserved_qty + take)
        else:
            r = Reservation(lot_id=lot_id, meal_plan_item_id=meal_plan_item_id, reserved_qty=take)
            db.add(r)
        out.append(r)
        logger.info("reserved %s on lot %s for item %s", take, lot_id, meal_plan_item_id)
    db.flush()
    assert_reservations_covered(db, touched_ids)
    return out


def release_for_item(db: Session, meal_plan_item_id: str) -> Decimal:
    rows = db.execute(
        select(Reservation).where(Reservation.meal_plan_item_id == meal_plan_item_id)
    ).scalars().all()
    total = ZERO
    for r in rows:
        total += q3(r.reserved_qty)
        db.delete(r)
    db.flush()
    if rows:
        logger.info("released %s over %d lot(s) for item %s", total, len(rows), meal_plan_item_id)
    return q3(total)


def fulfill_for_item(db: Session, meal_plan_item_id: str, produced_portions: int) -> list[StockMovement]:
    """Turn an item's reservations into OUT movements and record what was produced."""
    if produced_portions is None or int(produced_portions) < 0:
        raise ValidationError("produced_portions must be zero or more")
    item = db.execute(
        select(MealPlanItem)
        .where(MealPlanItem.id == meal_plan_item_id)
        .with_for_update(of=MealPlanItem)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if item is None:
        raise NotFound(f"meal plan item {meal_plan_item_id} not found")
    if item.produced_portions is not None:
        raise ConflictError(f"meal plan item {meal_plan_item_id} was already produced")

    held = db.execute(
        select(Reservation, Lot.product_id)
        .join(Lot, Lot.id == Reservation.lot_id)
        .where(Reservation.meal_plan_item_id == meal_plan_item_id)
        .order_by(Lot.expiry_date, Lot.id)
    ).all()
    rows = [r for r, _ in held]

    # holds released by the expiry sweep leave nothing to consume; the plan
    # has to be cancelled and planned again
    covered: dict[str, Decimal] = {}
    for r, product_id in held:
        covered[product_id] = covered.get(product_id, ZERO) + q3(r.reserved_qty)
    short = sorted(pid for pid, qty in item_requirements(item).items() if covered.get(pid, ZERO) < qty)
    if short:
        raise ConflictError(
            f"meal plan item {meal_plan_item_id} is no longer covered by reservations "
            f"(product(s) {', '.join(short)}); cancel the plan and confirm a new one"
        )

    movements = []
    for r in rows:
        lot_id, qty = r.lot_id, q3(r.reserved_qty)
        # the hold goes first so the OUT is not blocked by its own reservation
        db.delete(r)
        db.flush()
        movements.append(apply_movement(db, lot_id, MovementType.OUT, qty, REASON_PRODUCTION,
                                        ref_meal_plan_item_id=meal_plan_item_id))
    item.produced_portions = int(produced_portions)
    db.flush()
    return movements
