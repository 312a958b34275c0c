from pydantic import BaseModel, ConfigDict, Field
from datetime import date

class MovementTotalsOut(BaseModel):
    IN: float = 0.0
    OUT: float = 0.0
    ADJUSTMENT: float = 0.0
    LOSS: float = 0.0
    EXPIRED: float = 0.0

class PlanCountsOut(BaseModel):
    DRAFT: int = 0
    CONFIRMED: int = 0
    EXECUTED: int = 0

class KpisOut(BaseModel):
    stock_value: float
    lots_expiring_7: int
    lots_expiring_14: int
    lots_expired_now: int
    plans: PlanCountsOut
    totals_30d: MovementTotalsOut
    loss_rate_30d: float
    expired_share_of_loss_30d: float

class SeriesPointOut(BaseModel):
    d: date
    t: str  # IN | OUT | ADJUSTMENT | LOSS | EXPIRED
    qty: float

class TopProductOut(BaseModel):
    id: str
    name: str
    unit: str
    qty: float

class ExpiringLotOut(BaseModel):
    id: str
    batch_number: str
    expiry_date: date
    quantity: float
    product_name: str
    unit: str

class ExpiredRowOut(BaseModel):
    id: str
    moved_date: date
    qty: float
    lot_id: str
    batch_number: str
    expiry_date: date
    product_name: str
    unit: str

class LowStockOut(BaseModel):
    id: str
    name: str
    unit: str
    alert_threshold: float
    available: float

class DashboardOverview(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kpis: KpisOut
    series: list[SeriesPointOut]
    top_products: list[TopProductOut] = Field(alias="topProducts")
    expiring_lots: list[ExpiringLotOut] = Field(alias="expiringLots")
    expired_rows: list[ExpiredRowOut] = Field(alias="expiredRows")
    low_stock: list[LowStockOut] = Field(alias="lowStock")
    days: int
