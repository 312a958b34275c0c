import logging
from decimal import Decimal

from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from larder.errors import ConflictError, NotFound, ValidationError
from larder.models.core import MealPlanItem, Product, Recipe, RecipeItem
from larder.services.stock import to_quantity

logger = logging.getLogger(__name__)

_UNSET = object()


def _check_waste_rate(value) -> Decimal:
    rate = Decimal(str(value))
    if not (Decimal(0) <= rate < Decimal(1)):
        raise ValidationError("waste_rate must be in [0, 1)")
    return rate


def _replace_items(db: Session, recipe: Recipe, items: list[dict]) -> None:
    # items are never diffed: drop them all and insert the new list
    db.execute(delete(RecipeItem).where(RecipeItem.recipe_id == recipe.id))
    for pos, it in enumerate(items):
        product_id = it.get("product_id")
        if db.get(Product, product_id) is None:
            raise NotFound(f"product {product_id} not found")
        qty = to_quantity(it.get("qty_per_portion"), "qty_per_portion")
        if qty <= 0:
            raise ValidationError("qty_per_portion must be greater than zero")
        db.add(RecipeItem(recipe_id=recipe.id, product_id=product_id, qty_per_portion=qty, position=pos))
    db.flush()
    db.expire(recipe, ["items"])


def create_recipe(db: Session, *, name: str, base_portions: int, waste_rate=0, items: list[dict] | None = None) -> Recipe:
    if not (name or "").strip():
        raise ValidationError("name is required")
    if int(base_portions or 0) <= 0:
        raise ValidationError("base_portions must be greater than zero")
    recipe = Recipe(name=name.strip(), base_portions=int(base_portions), waste_rate=_check_waste_rate(waste_rate))
    db.add(recipe)
    db.flush()
    _replace_items(db, recipe, items or [])
    return recipe


def update_recipe(db: Session, recipe_id: str, *, name=_UNSET, base_portions=_UNSET, waste_rate=_UNSET,
                  items=_UNSET) -> Recipe:
    """Patch a recipe. Passing ``items`` replaces the whole item list."""
    recipe = db.get(Recipe, recipe_id)
    if recipe is None:
        raise NotFound(f"recipe {recipe_id} not found")
    if name is not _UNSET:
        if not (name or "").strip():
            raise ValidationError("name is required")
        recipe.name = name.strip()
    if base_portions is not _UNSET:
        if int(base_portions or 0) <= 0:
            raise ValidationError("base_portions must be greater than zero")
        recipe.base_portions = int(base_portions)
    if waste_rate is not _UNSET:
        recipe.waste_rate = _check_waste_rate(waste_rate)
    db.flush()
    if items is not _UNSET and items is not None:
        _replace_items(db, recipe, items)
    return recipe


def delete_recipe(db: Session, recipe_id: str) -> None:
    if db.get(Recipe, recipe_id) is None:
        raise NotFound(f"recipe {recipe_id} not found")
    in_use = db.execute(
        select(func.count()).select_from(MealPlanItem).where(MealPlanItem.recipe_id == recipe_id)
    ).scalar_one()
    if in_use:
        raise ConflictError("Cannot delete: recipe in use.")
    try:
        db.execute(delete(RecipeItem).where(RecipeItem.recipe_id == recipe_id))
        db.execute(delete(Recipe).where(Recipe.id == recipe_id))
        db.flush()
    except IntegrityError as e:
        # a plan item referencing the recipe was committed after the check above
        logger.info("recipe %s delete blocked by foreign key: %s", recipe_id, e.orig)
        raise ConflictError("Cannot delete: recipe in use.") from e
