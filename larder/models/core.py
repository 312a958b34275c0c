from sqlalchemy import (
    String, ForeignKey, Boolean, Numeric, Enum, Text, DateTime, Date, Integer, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from enum import Enum as PyEnum
from datetime import datetime, date
from decimal import Decimal
from larder.db import Base
from larder.models.common import IdMixin, TSMMixin, VersionMixin, utcnow

# ── Enums ───────────────────────────────────────────────────────────────────
class MovementType(PyEnum):
    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"
    LOSS = "LOSS"

class MealPlanStatus(PyEnum):
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"
    EXECUTED = "EXECUTED"

class Role(PyEnum):
    ADMIN = "ADMIN"
    KITCHEN = "KITCHEN"
    DIRECTOR = "DIRECTOR"

# reason stamped on LOSS movements written by the expiry sweep
REASON_EXPIRED = "EXPIRED"
# reason stamped on OUT movements written when a meal-plan item is produced
REASON_PRODUCTION = "PRODUCTION"

# ── Catalogue ───────────────────────────────────────────────────────────────
class Product(Base, IdMixin, TSMMixin):
    __tablename__ = "product"
    name: Mapped[str] = mapped_column(String(160))
    unit: Mapped[str] = mapped_column(String(20))  # e.g. kg, l, pcs
    cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    alert_threshold: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=Decimal("0"))
    active: Mapped[bool] = mapped_column(Boolean, default=True)

# ── Stock ───────────────────────────────────────────────────────────────────
class Lot(Base, IdMixin, TSMMixin, VersionMixin):
    __tablename__ = "lot"
    __table_args__ = (Index("ix_lot_product_expiry", "product_id", "expiry_date"),)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("product.id", ondelete="RESTRICT"))
    batch_number: Mapped[str] = mapped_column(String(80))
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=Decimal("0"))
    expiry_date: Mapped[date] = mapped_column(Date)
    archived: Mapped[bool] = mapped_column(Boolean, default=False)

    product: Mapped[Product] = relationship()

class StockMovement(Base, IdMixin):
    """Ledger entry. Rows are only ever inserted."""
    __tablename__ = "stock_movement"
    __table_args__ = (Index("ix_stock_movement_moved_at", "moved_at"),)
    lot_id: Mapped[str] = mapped_column(String(36), ForeignKey("lot.id", ondelete="RESTRICT"))
    type: Mapped[MovementType] = mapped_column(Enum(MovementType))
    reason: Mapped[str | None] = mapped_column(String(60))
    # IN/OUT/LOSS are always stored positive, the type giving the direction.
    # ADJUSTMENT is the one exception: it stores its signed delta (a recount
    # down is negative), and reports sum it as-is.
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3))
    moved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    ref_meal_plan_item_id: Mapped[str | None] = mapped_column(String(36))

class Reservation(Base, IdMixin):
    __tablename__ = "reservation"
    __table_args__ = (UniqueConstraint("lot_id", "meal_plan_item_id", name="uq_reservation_lot_item"),)
    lot_id: Mapped[str] = mapped_column(String(36), ForeignKey("lot.id", ondelete="RESTRICT"))
    meal_plan_item_id: Mapped[str] = mapped_column(String(36), ForeignKey("meal_plan_item.id", ondelete="CASCADE"))
    reserved_qty: Mapped[Decimal] = mapped_column(Numeric(12, 3))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

# ── Recipes ─────────────────────────────────────────────────────────────────
class Recipe(Base, IdMixin, TSMMixin):
    __tablename__ = "recipe"
    name: Mapped[str] = mapped_column(String(160))
    base_portions: Mapped[int] = mapped_column(Integer, default=1)
    waste_rate: Mapped[Decimal] = mapped_column(Numeric(5, 3), default=Decimal("0"))

    items: Mapped[list["RecipeItem"]] = relationship(order_by="RecipeItem.position", viewonly=True)

class RecipeItem(Base, IdMixin):
    __tablename__ = "recipe_item"
    recipe_id: Mapped[str] = mapped_column(String(36), ForeignKey("recipe.id", ondelete="CASCADE"))
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("product.id", ondelete="RESTRICT"))
    qty_per_portion: Mapped[Decimal] = mapped_column(Numeric(12, 3))
    position: Mapped[int] = mapped_column(Integer, default=0)

    product: Mapped[Product] = relationship(lazy="joined")

# ── Meal plans ──────────────────────────────────────────────────────────────
class MealPlan(Base, IdMixin, TSMMixin):
    __tablename__ = "meal_plan"
    name: Mapped[str] = mapped_column(String(160))
    period_start: Mapped[date] = mapped_column(Date)
    period_end: Mapped[date] = mapped_column(Date)
    status: Mapped[MealPlanStatus] = mapped_column(Enum(MealPlanStatus), default=MealPlanStatus.DRAFT)
    note: Mapped[str | None] = mapped_column(Text)

    items: Mapped[list["MealPlanItem"]] = relationship(order_by="MealPlanItem.position", viewonly=True)

class MealPlanItem(Base, IdMixin):
    __tablename__ = "meal_plan_item"
    meal_plan_id: Mapped[str] = mapped_column(String(36), ForeignKey("meal_plan.id", ondelete="CASCADE"))
    recipe_id: Mapped[str] = mapped_column(String(36), ForeignKey("recipe.id", ondelete="RESTRICT"))
    portions: Mapped[int] = mapped_column(Integer)
    produced_portions: Mapped[int | None] = mapped_column(Integer)
    service_date: Mapped[date | None] = mapped_column(Date)
    position: Mapped[int] = mapped_column(Integer, default=0)

    recipe: Mapped[Recipe] = relationship()
