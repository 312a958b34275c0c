"""Meal-plan lifecycle: DRAFT -> CONFIRMED -> EXECUTED.

Confirming reserves stock for every item, executing turns those
reservations into consumption. A plan that has not been executed can be
cancelled, which gives its reservations back.
"""
import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import select, delete
from sqlalchemy.orm import Session

from larder.errors import ConflictError, NotFound, ValidationError
from larder.models.core import MealPlan, MealPlanItem, MealPlanStatus, Recipe
from larder.services.reservations import fulfill_for_item, item_requirements, release_for_item, reserve_for_item
from larder.util.numeric import ZERO, q3

logger = logging.getLogger(__name__)


def get_plan(db: Session, plan_id: str, *, lock: bool = False) -> MealPlan:
    q = select(MealPlan).where(MealPlan.id == plan_id)
    if lock:
        q = q.with_for_update(of=MealPlan).execution_options(populate_existing=True)
    plan = db.execute(q).scalar_one_or_none()
    if plan is None:
        raise NotFound(f"meal plan {plan_id} not found")
    return plan


def create_plan(db: Session, *, name: str, period_start: date, period_end: date,
                items: list[dict], note: str | None = None) -> MealPlan:
    if not (name or "").strip():
        raise ValidationError("name is required")
    if period_end < period_start:
        raise ValidationError("period_end must not be before period_start")
    if not items:
        raise ValidationError("a meal plan needs at least one item")

    plan = MealPlan(name=name.strip(), period_start=period_start, period_end=period_end,
                    status=MealPlanStatus.DRAFT, note=note)
    db.add(plan)
    db.flush()
    for pos, it in enumerate(items):
        recipe_id = it.get("recipe_id")
        if db.get(Recipe, recipe_id) is None:
            raise NotFound(f"recipe {recipe_id} not found")
        portions = int(it.get("portions") or 0)
        if portions <= 0:
            raise ValidationError("portions must be greater than zero")
        service_date = it.get("service_date")
        if service_date is not None and not (period_start <= service_date <= period_end):
            raise ValidationError(f"service_date {service_date} is outside the plan period")
        db.add(MealPlanItem(meal_plan_id=plan.id, recipe_id=recipe_id, portions=portions,
                            service_date=service_date, position=pos))
    db.flush()
    return plan


def confirm_plan(db: Session, plan_id: str, *, today: date | None = None) -> MealPlan:
    plan = get_plan(db, plan_id, lock=True)
    if plan.status is not MealPlanStatus.DRAFT:
        raise ConflictError(f"meal plan is {plan.status.value}, only DRAFT plans can be confirmed")
    for item in plan.items:
        for product_id, qty in item_requirements(item).items():
            if qty > 0:
                reserve_for_item(db, item.id, product_id, qty, today=today)
    plan.status = MealPlanStatus.CONFIRMED
    db.flush()
    logger.info("meal plan %s confirmed (%d item(s))", plan.id, len(plan.items))
    return plan


def execute_plan(db: Session, plan_id: str, produced: dict[str, int] | None = None) -> MealPlan:
    """Consume the reserved stock. ``produced`` maps item id to portions actually made."""
    plan = get_plan(db, plan_id, lock=True)
    if plan.status is not MealPlanStatus.CONFIRMED:
        raise ConflictError(f"meal plan is {plan.status.value}, only CONFIRMED plans can be executed")
    produced = produced or {}
    unknown = set(produced) - {item.id for item in plan.items}
    if unknown:
        raise ValidationError(f"items not in this plan: {', '.join(sorted(unknown))}")
    for item in plan.items:
        fulfill_for_item(db, item.id, produced.get(item.id, item.portions))
    plan.status = MealPlanStatus.EXECUTED
    db.flush()
    logger.info("meal plan %s executed", plan.id)
    return plan


def cancel_plan(db: Session, plan_id: str) -> Decimal:
    """Delete a plan that was not executed, releasing whatever it held."""
    plan = get_plan(db, plan_id, lock=True)
    if plan.status is MealPlanStatus.EXECUTED:
        raise ConflictError("executed meal plans cannot be cancelled")
    released = ZERO
    item_ids = [item.id for item in plan.items]
    for item_id in item_ids:
        released += release_for_item(db, item_id)
    db.execute(delete(MealPlanItem).where(MealPlanItem.meal_plan_id == plan.id))
    db.execute(delete(MealPlan).where(MealPlan.id == plan.id))
    logger.info("meal plan %s cancelled, released %s", plan_id, released)
    return q3(released)
