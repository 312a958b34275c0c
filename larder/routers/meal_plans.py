from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from larder.db import get_db, run_in_transaction
from larder.deps import require_role
from larder.errors import ValidationError
from larder.models.core import MealPlan, MealPlanStatus, Reservation, Role
from larder.schemas.planning import ExecuteIn, MealPlanIn, MealPlanItemOut, MealPlanOut
from larder.services.meal_plans import cancel_plan, confirm_plan, create_plan, execute_plan, get_plan
from larder.util.numeric import q3

router = APIRouter(prefix="/meal-plans", tags=["meal-plans"])

PLANNERS = (Role.ADMIN, Role.KITCHEN)

def plan_out(db: Session, plan: MealPlan) -> MealPlanOut:
    item_ids = [i.id for i in plan.items]
    held = {}
    if item_ids:
        held = dict(db.execute(
            select(Reservation.meal_plan_item_id, func.sum(Reservation.reserved_qty))
            .where(Reservation.meal_plan_item_id.in_(item_ids))
            .group_by(Reservation.meal_plan_item_id)
        ).all())
    return MealPlanOut(
        id=plan.id, name=plan.name, period_start=plan.period_start, period_end=plan.period_end,
        status=plan.status.value, note=plan.note,
        items=[
            MealPlanItemOut(id=i.id, recipe_id=i.recipe_id, recipe_name=i.recipe.name, portions=i.portions,
                            produced_portions=i.produced_portions, service_date=i.service_date,
                            reserved=float(q3(held.get(i.id) or 0)))
            for i in plan.items
        ],
    )

@router.get("", response_model=list[MealPlanOut])
def list_plans(status: str | None = Query(None), db: Session = Depends(get_db), sub: str = Depends(require_role())):
    q = select(MealPlan).order_by(MealPlan.period_start.desc(), MealPlan.created_at.desc())
    if status:
        try:
            q = q.where(MealPlan.status == MealPlanStatus(status.upper()))
        except ValueError:
            raise ValidationError(f"unknown meal plan status: {status}")
    return [plan_out(db, p) for p in db.execute(q).scalars().all()]

@router.get("/{plan_id}", response_model=MealPlanOut)
def read_plan(plan_id: str, db: Session = Depends(get_db), sub: str = Depends(require_role())):
    return plan_out(db, get_plan(db, plan_id))

@router.post("", response_model=MealPlanOut, status_code=201)
def add_plan(body: MealPlanIn, db: Session = Depends(get_db), sub: str = Depends(require_role(*PLANNERS))):
    items = [it.model_dump() for it in body.items]
    plan = run_in_transaction(db, lambda db: create_plan(
        db, name=body.name, period_start=body.period_start, period_end=body.period_end,
        items=items, note=body.note,
    ))
    return plan_out(db, plan)

@router.post("/{plan_id}/confirm", response_model=MealPlanOut)
def confirm(plan_id: str, db: Session = Depends(get_db), sub: str = Depends(require_role(*PLANNERS))):
    plan = run_in_transaction(db, lambda db: confirm_plan(db, plan_id))
    return plan_out(db, plan)

@router.post("/{plan_id}/execute", response_model=MealPlanOut)
def execute(plan_id: str, body: ExecuteIn | None = None, db: Session = Depends(get_db),
            sub: str = Depends(require_role(*PLANNERS))):
    produced = body.produced if body else {}
    plan = run_in_transaction(db, lambda db: execute_plan(db, plan_id, produced))
    return plan_out(db, plan)

@router.delete("/{plan_id}", status_code=204)
def cancel(plan_id: str, db: Session = Depends(get_db), sub: str = Depends(require_role(*PLANNERS))):
    run_in_transaction(db, lambda db: cancel_plan(db, plan_id))
