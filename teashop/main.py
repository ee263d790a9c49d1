import logging
import os
import time

from fastapi import FastAPI, APIRouter, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.exc import SQLAlchemyError

from . import admin, cart, catalog, orders
from .db import init_db
from .errors import ShopError

APP_NAME = "teashop"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Optional prefix for routes, e.g. "/shop" when served behind a gateway that
# does not strip it. The storefront API itself always lives under /api.
API_PREFIX = os.getenv("API_PREFIX", "").strip()
if API_PREFIX and not API_PREFIX.startswith("/"):
    API_PREFIX = "/" + API_PREFIX
API_PREFIX = API_PREFIX.rstrip("/")

app = FastAPI(title=APP_NAME)
router = APIRouter(prefix=f"{API_PREFIX}/api")
router.include_router(catalog.router)
router.include_router(orders.router)
router.include_router(cart.router)
router.include_router(admin.router)


# ---- Startup: ensure schema + tables exist (idempotent) ----
@app.on_event("startup")
def on_startup():
    init_db()


# ---- Prometheus metrics ----
REQS = Counter("http_requests_total", "Total HTTP requests", ["service", "path", "method", "status"])
LAT = Histogram("http_request_duration_seconds", "Request latency", ["service", "path", "method"])


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    REQS.labels(APP_NAME, request.url.path, request.method, response.status_code).inc()
    LAT.labels(APP_NAME, request.url.path, request.method).observe(time.time() - start)
    return response


# ---- Errors: every failure leaves as {"error", "details"} ----
@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.details)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.error, "details": exc.details})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": "invalid input", "details": details})


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("storage failure on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "storage failure", "details": str(exc)})


@app.get("/health", response_class=PlainTextResponse)
def health():
    return "ok"


@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(router)
