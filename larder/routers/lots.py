from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from larder.db import get_db, run_in_transaction
from larder.deps import require_role
from larder.models.core import Lot, Role
from larder.schemas.stock import ExpireOut, LotIn, LotOut
from larder.services.stock import archive_lot, expire_lots, lot_available, receive_lot, reserved_by_lot
from larder.util import clock
from larder.util.numeric import ZERO, q3

router = APIRouter(prefix="/lots", tags=["lots"])

def lot_out(lot: Lot, reserved=ZERO) -> LotOut:
    return LotOut(
        id=lot.id, product_id=lot.product_id, batch_number=lot.batch_number,
        quantity=float(q3(lot.quantity)), reserved=float(reserved),
        available=float(lot_available(lot, reserved)),
        expiry_date=lot.expiry_date, archived=lot.archived, created_at=lot.created_at,
    )

@router.get("", response_model=list[LotOut])
def list_lots(product_id: str | None = None, include_archived: bool = False,
              db: Session = Depends(get_db), sub: str = Depends(require_role())):
    q = select(Lot).order_by(Lot.expiry_date, Lot.id)
    if product_id:
        q = q.where(Lot.product_id == product_id)
    if not include_archived:
        q = q.where(Lot.archived.is_(False))
    rows = db.execute(q).scalars().all()
    reserved = reserved_by_lot(db, [l.id for l in rows])
    return [lot_out(l, reserved.get(l.id, ZERO)) for l in rows]

@router.post("", response_model=LotOut, status_code=201)
def create_lot(body: LotIn, db: Session = Depends(get_db), sub: str = Depends(require_role(Role.ADMIN, Role.KITCHEN))):
    lot = run_in_transaction(
        db, lambda db: receive_lot(db, body.product_id, body.batch_number, body.quantity, body.expiry_date)
    )
    return lot_out(lot)

# admin-triggered sweep; there is no background timer
@router.post("/expire", response_model=ExpireOut)
def expire(db: Session = Depends(get_db), sub: str = Depends(require_role(Role.ADMIN))):
    summary = run_in_transaction(db, lambda db: expire_lots(db, clock.today()))
    return ExpireOut(lotsProcessed=summary.lots_processed, totalLoss=float(summary.total_loss),
                     lotsSkipped=summary.lots_skipped)

@router.post("/{lot_id}/archive", response_model=LotOut)
def close_lot(lot_id: str, db: Session = Depends(get_db), sub: str = Depends(require_role(Role.ADMIN))):
    lot = run_in_transaction(db, lambda db: archive_lot(db, lot_id))
    return lot_out(lot)
