# larder/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from larder.middleware import RequestIdMiddleware
from larder.db import Base, engine
from larder.config import settings
from larder.errors import DomainError
from larder.schemas.common import ErrorOut
from larder import models  # noqa: F401  (registers tables)

from larder.routers import products, lots, movements, stock, recipes, meal_plans, dashboard

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("larder API started (env=%s)", settings.APP_ENV)
    yield


app = FastAPI(
    title="Larder API",
    version="1.0.0",
    lifespan=lifespan,
    responses={404: {"model": ErrorOut}, 409: {"model": ErrorOut}},
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    log = logger.warning if exc.status_code == 409 else logger.info
    log("%s %s rejected: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content=ErrorOut(detail=exc.message, code=exc.code).model_dump())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    req_id = getattr(request.state, "request_id", None)
    logger.exception("unhandled error on %s %s [%s]", request.method, request.url.path, req_id)
    return JSONResponse(status_code=500, content=ErrorOut(detail="Server error", code="SERVER_ERROR").model_dump())


# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(products.router)
app.include_router(lots.router)
app.include_router(movements.router)
app.include_router(stock.router)
app.include_router(recipes.router)
app.include_router(meal_plans.router)
app.include_router(dashboard.router)

@app.get("/healthz")
def healthz():
    return {"ok": True}
