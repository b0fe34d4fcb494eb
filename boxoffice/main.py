from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from boxoffice.database import init_db
from boxoffice.config import get_settings
from boxoffice.errors import (
    BoxOfficeError, CapacityError, ConflictError, ErrorCode, GatewayError, NotFoundError,
    ValidationError
)
from boxoffice.middleware.security import limiter, setup_security_middleware
from boxoffice.services.scheduler import ReservationSweeper
from boxoffice.routers import (
    events_router,
    reservations_router,
    payments_router,
    discounts_router,
    admin_router
)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    sweeper = None
    if settings.scheduler_enabled:
        sweeper = ReservationSweeper(
            interval_minutes=settings.sweep_interval_minutes,
            jobstore_url=settings.database_url
        )
        sweeper.start()
    app.state.sweeper = sweeper
    yield
    if sweeper:
        sweeper.stop()


app = FastAPI(
    title="BoxOffice",
    description="Event ticket reservations with payment reconciliation",
    version="1.0.0",
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

setup_security_middleware(app, allowed_hosts=settings.allowed_hosts)

app.include_router(events_router)
app.include_router(reservations_router)
app.include_router(payments_router)
app.include_router(discounts_router)
app.include_router(admin_router)

STATUS_BY_ERROR = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (CapacityError, 409),
    (ConflictError, 409),
    (GatewayError, 502),
]
UNTRUSTED_PAYLOAD_CODES = {ErrorCode.SIGNATURE_INVALID, ErrorCode.MALFORMED_PAYLOAD}


def status_for(exc: BoxOfficeError) -> int:
    if isinstance(exc, GatewayError) and exc.code in UNTRUSTED_PAYLOAD_CODES:
        return 400
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


@app.exception_handler(BoxOfficeError)
async def boxoffice_error_handler(request: Request, exc: BoxOfficeError):
    return JSONResponse(
        status_code=status_for(exc),
        content={"code": exc.code.value, "message": exc.message}
    )


@app.get("/")
async def health():
    return {"status": "ok", "service": "boxoffice"}
