from fastapi import APIRouter, Depends
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from larder.db import get_db, run_in_transaction
from larder.deps import require_role
from larder.errors import ConflictError, NotFound
from larder.models.core import Product, Role
from larder.schemas.stock import ProductIn, ProductOut, ProductPatch
from larder.util.numeric import money, q3

router = APIRouter(prefix="/products", tags=["products"])

def _out(p: Product) -> ProductOut:
    return ProductOut(id=p.id, name=p.name, unit=p.unit, cost=float(money(p.cost or 0)),
                      alert_threshold=float(q3(p.alert_threshold or 0)), active=p.active)

@router.get("", response_model=list[ProductOut])
def list_products(include_inactive: bool = False, db: Session = Depends(get_db), sub: str = Depends(require_role())):
    q = select(Product).order_by(Product.name)
    if not include_inactive:
        q = q.where(Product.active.is_(True))
    return [_out(p) for p in db.execute(q).scalars().all()]

@router.post("", response_model=ProductOut, status_code=201)
def create_product(body: ProductIn, db: Session = Depends(get_db), sub: str = Depends(require_role(Role.ADMIN))):
    def work(db: Session) -> Product:
        p = Product(name=body.name.strip(), unit=body.unit.strip(), cost=money(body.cost),
                    alert_threshold=q3(body.alert_threshold), active=body.active)
        db.add(p); db.flush()
        return p
    return _out(run_in_transaction(db, work))

@router.patch("/{product_id}", response_model=ProductOut)
def update_product(product_id: str, body: ProductPatch, db: Session = Depends(get_db),
                   sub: str = Depends(require_role(Role.ADMIN))):
    def work(db: Session) -> Product:
        p = db.get(Product, product_id)
        if not p:
            raise NotFound(f"product {product_id} not found")
        data = body.model_dump(exclude_unset=True)
        if "cost" in data:
            data["cost"] = money(data["cost"])
        if "alert_threshold" in data:
            data["alert_threshold"] = q3(data["alert_threshold"])
        for k, v in data.items():
            setattr(p, k, v)
        db.flush()
        return p
    return _out(run_in_transaction(db, work))

@router.delete("/{product_id}", status_code=204)
def delete_product(product_id: str, db: Session = Depends(get_db), sub: str = Depends(require_role(Role.ADMIN))):
    def work(db: Session) -> None:
        if db.get(Product, product_id) is None:
            raise NotFound(f"product {product_id} not found")
        try:
            db.execute(delete(Product).where(Product.id == product_id))
            db.flush()
        except IntegrityError as e:
            raise ConflictError("Cannot delete: product in use, deactivate it instead.") from e
    run_in_transaction(db, work)
