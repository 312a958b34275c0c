from datetime import date
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

class RecipeItemIn(BaseModel):
    product_id: str
    qty_per_portion: Decimal

class RecipeIn(BaseModel):
    name: str
    base_portions: int = 1
    waste_rate: Decimal = Decimal("0")
    items: list[RecipeItemIn] = []

class RecipePatch(BaseModel):
    name: Optional[str] = None
    base_portions: Optional[int] = None
    waste_rate: Optional[Decimal] = None
    # when present the item list is replaced wholesale
    items: Optional[list[RecipeItemIn]] = None

class RecipeItemOut(BaseModel):
    id: str
    product_id: str
    product_name: str
    unit: str
    qty_per_portion: float

class RecipeOut(BaseModel):
    id: str
    name: str
    base_portions: int
    waste_rate: float
    items_count: int = 0

class MealPlanItemIn(BaseModel):
    recipe_id: str
    portions: int = Field(gt=0)
    service_date: Optional[date] = None

class MealPlanIn(BaseModel):
    name: str
    period_start: date
    period_end: date
    note: Optional[str] = None
    items: list[MealPlanItemIn]

class MealPlanItemOut(BaseModel):
    id: str
    recipe_id: str
    recipe_name: str
    portions: int
    produced_portions: Optional[int] = None
    service_date: Optional[date] = None
    reserved: float = 0.0

class MealPlanOut(BaseModel):
    id: str
    name: str
    period_start: date
    period_end: date
    status: str
    note: Optional[str] = None
    items: list[MealPlanItemOut] = []

class ExecuteIn(BaseModel):
    # item id -> portions actually produced; items left out count as planned
    produced: dict[str, int] = {}
