from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from larder.db import get_db, run_in_transaction
from larder.deps import require_role
from larder.models.core import Role, StockMovement
from larder.schemas.stock import MovementIn, MovementOut
from larder.services.dashboard import window_start
from larder.services.stock import apply_movement, to_movement_type
from larder.util import clock
from larder.util.numeric import q3

router = APIRouter(prefix="/movements", tags=["movements"])

def movement_out(m: StockMovement) -> MovementOut:
    return MovementOut(id=m.id, lot_id=m.lot_id, type=m.type.value, reason=m.reason,
                       quantity=float(q3(m.quantity)), moved_at=m.moved_at,
                       ref_meal_plan_item_id=m.ref_meal_plan_item_id)

@router.post("", response_model=MovementOut, status_code=201)
def create_movement(body: MovementIn, db: Session = Depends(get_db),
                    sub: str = Depends(require_role(Role.ADMIN, Role.KITCHEN))):
    mv = run_in_transaction(
        db, lambda db: apply_movement(db, body.lot_id, body.type, body.quantity, body.reason)
    )
    return movement_out(mv)

@router.get("", response_model=list[MovementOut])
def list_movements(lot_id: str | None = None, type: str | None = None,
                   days: int = Query(30, ge=1, le=366), limit: int = Query(200, ge=1, le=1000),
                   db: Session = Depends(get_db), sub: str = Depends(require_role())):
    q = (select(StockMovement)
         .where(StockMovement.moved_at >= window_start(clock.today(), days))
         .order_by(StockMovement.moved_at.desc(), StockMovement.id.desc())
         .limit(limit))
    if lot_id:
        q = q.where(StockMovement.lot_id == lot_id)
    if type:
        q = q.where(StockMovement.type == to_movement_type(type))
    return [movement_out(m) for m in db.execute(q).scalars().all()]
