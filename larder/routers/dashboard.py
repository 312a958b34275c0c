from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from larder.config import settings
from larder.db import get_db
from larder.deps import require_role
from larder.models.core import Role
from larder.schemas.dashboard import DashboardOverview
from larder.services.dashboard import MAX_WINDOW_DAYS, overview
from larder.util import clock

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/overview", response_model=DashboardOverview, response_model_by_alias=True)
def dashboard_overview(
    days: int = Query(settings.DASHBOARD_DEFAULT_DAYS, ge=1, le=MAX_WINDOW_DAYS),
    db: Session = Depends(get_db),
    sub: str = Depends(require_role(Role.ADMIN, Role.KITCHEN, Role.DIRECTOR)),
):
    return overview(db, days, clock.today())
