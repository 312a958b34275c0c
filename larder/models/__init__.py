# Importing the module registers tables with Base for create_all()
from .core import (  # noqa: F401
    # Enums
    MovementType, MealPlanStatus, Role, REASON_EXPIRED, REASON_PRODUCTION,

    # Catalogue & stock
    Product, Lot, StockMovement, Reservation,

    # Recipes & meal plans
    Recipe, RecipeItem, MealPlan, MealPlanItem,
)

__all__ = [
    "MovementType", "MealPlanStatus", "Role", "REASON_EXPIRED", "REASON_PRODUCTION",
    "Product", "Lot", "StockMovement", "Reservation",
    "Recipe", "RecipeItem", "MealPlan", "MealPlanItem",
]
