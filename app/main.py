import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import models so they're registered with SQLAlchemy Base
from . import models  # noqa: F401
from .config import (
    APPOINTMENT_SLOT_MINUTES,
    CASHFREE_APP_ID,
    CASHFREE_ENV,
    CASHFREE_SECRET_KEY,
    FRONTEND_URL,
    PAYMENT_PENDING_GRACE_MINUTES,
)
from .database import Base, engine
from .domain.booking.router import router as appointments_router
from .domain.payments.router import router as payments_router
from .errors import BookingError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", FRONTEND_URL).split(",")
    if origin.strip()
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"Consultations API starting: {APPOINTMENT_SLOT_MINUTES}-minute slots, "
        f"{PAYMENT_PENDING_GRACE_MINUTES}-minute payment hold, Cashfree {CASHFREE_ENV}"
    )
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
    except Exception as e:
        # Parallel workers may race on table creation
        if "already exists" not in str(e):
            logger.error(f"Failed to create database tables: {e}")
            raise
        logger.info("Database tables already exist")

    if not (CASHFREE_APP_ID and CASHFREE_SECRET_KEY):
        logger.warning("Checkout disabled until CASHFREE_APP_ID and CASHFREE_SECRET_KEY are set")

    yield
    logger.info("Consultations API shutting down")


app = FastAPI(title="Naman Hospital Consultations API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    """Map the booking error taxonomy onto HTTP responses"""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.detail}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.detail}")

    content = {"detail": exc.detail}
    if exc.reason:
        content["reason"] = exc.reason
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed booking requests; nothing was written"""
    # pydantic error contexts may carry exception objects
    errors = [{k: v for k, v in error.items() if k != "ctx"} for error in exc.errors()]
    fields = ", ".join(".".join(str(part) for part in e.get("loc", ())) for e in errors)
    logger.info(f"Rejected {request.method} {request.url.path}: invalid {fields}")
    return JSONResponse(status_code=422, content={"detail": errors})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} in {elapsed_ms:.0f}ms")
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(appointments_router)
app.include_router(payments_router)


@app.get("/")
def root():
    return {"message": "Naman Hospital Consultations API"}


@app.get("/health")
def health():
    return {"status": "healthy"}
