from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from larder.db import get_db
from larder.deps import require_role
from larder.schemas.stock import ProductStockOut
from larder.services.stock import product_stock
from larder.util import clock

router = APIRouter(prefix="/stock", tags=["stock"])

@router.get("", response_model=list[ProductStockOut])
def stock_levels(db: Session = Depends(get_db), sub: str = Depends(require_role())):
    return [
        ProductStockOut(product_id=s.product_id, name=s.name, unit=s.unit,
                        alert_threshold=float(s.alert_threshold), quantity=float(s.quantity),
                        reserved=float(s.reserved), available=float(s.available))
        for s in product_stock(db, clock.today())
    ]
