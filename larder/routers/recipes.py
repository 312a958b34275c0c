from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from larder.db import get_db, run_in_transaction
from larder.deps import require_role
from larder.errors import NotFound
from larder.models.core import Recipe, RecipeItem, Role
from larder.schemas.planning import RecipeIn, RecipeItemOut, RecipeOut, RecipePatch
from larder.services.recipes import create_recipe, delete_recipe, update_recipe
from larder.util.numeric import q3

router = APIRouter(prefix="/recipes", tags=["recipes"])

def recipe_out(r: Recipe, items_count: int | None = None) -> RecipeOut:
    if items_count is None:
        items_count = len(r.items)
    return RecipeOut(id=r.id, name=r.name, base_portions=r.base_portions,
                     waste_rate=float(q3(r.waste_rate or 0)), items_count=items_count)

@router.get("", response_model=list[RecipeOut])
def list_recipes(db: Session = Depends(get_db), sub: str = Depends(require_role())):
    n_items = (
        select(RecipeItem.recipe_id, func.count(RecipeItem.id).label("n"))
        .group_by(RecipeItem.recipe_id)
        .subquery()
    )
    rows = db.execute(
        select(Recipe, func.coalesce(n_items.c.n, 0))
        .outerjoin(n_items, n_items.c.recipe_id == Recipe.id)
        .order_by(Recipe.name, Recipe.id)
    ).all()
    return [recipe_out(r, n) for r, n in rows]

@router.get("/{recipe_id}/items", response_model=list[RecipeItemOut])
def recipe_items(recipe_id: str, db: Session = Depends(get_db), sub: str = Depends(require_role())):
    recipe = db.get(Recipe, recipe_id)
    if recipe is None:
        raise NotFound(f"recipe {recipe_id} not found")
    return [
        RecipeItemOut(id=ri.id, product_id=ri.product_id, product_name=ri.product.name,
                      unit=ri.product.unit, qty_per_portion=float(q3(ri.qty_per_portion)))
        for ri in recipe.items
    ]

@router.post("", response_model=RecipeOut, status_code=201)
def add_recipe(body: RecipeIn, db: Session = Depends(get_db), sub: str = Depends(require_role(Role.ADMIN))):
    items = [it.model_dump() for it in body.items]
    recipe = run_in_transaction(db, lambda db: create_recipe(
        db, name=body.name, base_portions=body.base_portions, waste_rate=body.waste_rate, items=items,
    ))
    return recipe_out(recipe)

@router.patch("/{recipe_id}", response_model=RecipeOut)
def patch_recipe(recipe_id: str, body: RecipePatch, db: Session = Depends(get_db),
                 sub: str = Depends(require_role(Role.ADMIN))):
    data = body.model_dump(exclude_unset=True)
    # an explicit null leaves the field alone
    data = {k: v for k, v in data.items() if v is not None}
    recipe = run_in_transaction(db, lambda db: update_recipe(db, recipe_id, **data))
    return recipe_out(recipe)

@router.delete("/{recipe_id}", status_code=204)
def remove_recipe(recipe_id: str, db: Session = Depends(get_db), sub: str = Depends(require_role(Role.ADMIN))):
    run_in_transaction(db, lambda db: delete_recipe(db, recipe_id))
