import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import jurisdictions, notifications, offers, payments, transactions
from .config import Base, engine, settings
from .core.errors import register_exception_handlers
from .core.logging import configure_logging
from .core.request_context import request_id_middleware
from .core.version import get_version_info

configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)

app = FastAPI(title="Real Estate Direct - Offers and Transactions")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(request_id_middleware)
register_exception_handlers(app)


@app.on_event("startup")
def startup() -> None:
    # In dev we make sure tables exist. Alembic migrations should be used for real schema evolution.
    Base.metadata.create_all(bind=engine)
    logger.info("Estate Direct API started", extra=get_version_info())


app.include_router(offers.router, prefix="/offers", tags=["offers"])
app.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
app.include_router(jurisdictions.router, prefix="/jurisdictions", tags=["jurisdictions"])
app.include_router(payments.router, prefix="/payments", tags=["payments"])
app.include_router(notifications.router, prefix="/notifications", tags=["notifications"])


@app.get("/health", tags=["system"])
def health() -> dict:
    return {"status": "ok", **get_version_info()}
