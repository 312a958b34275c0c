from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

class ProductIn(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    unit: str = Field(min_length=1, max_length=20)
    cost: Decimal = Field(default=Decimal("0"), ge=0)
    alert_threshold: Decimal = Field(default=Decimal("0"), ge=0)
    active: bool = True

class ProductPatch(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=160)
    unit: Optional[str] = Field(default=None, min_length=1, max_length=20)
    cost: Optional[Decimal] = Field(default=None, ge=0)
    alert_threshold: Optional[Decimal] = Field(default=None, ge=0)
    active: Optional[bool] = None

class ProductOut(BaseModel):
    id: str
    name: str
    unit: str
    cost: float
    alert_threshold: float
    active: bool

class LotIn(BaseModel):
    product_id: str
    batch_number: str
    quantity: Decimal
    expiry_date: date

class LotOut(BaseModel):
    id: str
    product_id: str
    batch_number: str
    quantity: float
    reserved: float = 0.0
    available: float = 0.0
    expiry_date: date
    archived: bool
    created_at: Optional[datetime] = None

class MovementIn(BaseModel):
    lot_id: str
    type: str
    # positive for IN/OUT/LOSS, signed delta for ADJUSTMENT
    quantity: Decimal
    reason: Optional[str] = Field(default=None, max_length=60)

class MovementOut(BaseModel):
    id: str
    lot_id: str
    type: str
    reason: Optional[str] = None
    quantity: float
    moved_at: datetime
    ref_meal_plan_item_id: Optional[str] = None

class ExpireOut(BaseModel):
    lotsProcessed: int
    totalLoss: float
    lotsSkipped: int = 0

class ProductStockOut(BaseModel):
    product_id: str
    name: str
    unit: str
    alert_threshold: float
    quantity: float
    reserved: float
    available: float
