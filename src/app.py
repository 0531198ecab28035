"""FoodStream ordering FastAPI application.

Places orders synchronously over HTTP and serves customer, owner and admin
order views. Each request runs inside the ordering domain context.

Usage:
    uvicorn src.app:app --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV selects the config overlay of ordering/domain.toml.
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from ordering.config import OrderingSettings
from ordering.domain import ordering
from ordering.services import OrderingServices
from ordering.utils.logging import bind_request_context, clear_context, configure_logging
from protean.integrations.fastapi import register_exception_handlers

configure_logging()
ordering.init()

services = OrderingServices.build(OrderingSettings.from_env())


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    app.state.services.close()


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="FoodStream Ordering API",
    description="Order placement, pricing and payment reconciliation",
    lifespan=lifespan,
)
app.state.services = services

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the ordering domain context and bind request fields to the log context."""
    clear_context()
    bind_request_context(method=request.method, path=request.url.path)
    with ordering.domain_context():
        response = await call_next(request)
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from ordering.api import admin_router, customer_router, owner_router, register_forbidden_handler  # noqa: E402

app.include_router(customer_router)
app.include_router(owner_router)
app.include_router(admin_router)
register_exception_handlers(app)
register_forbidden_handler(app)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    connection = app.state.services.connection
    return JSONResponse(
        content={
            "status": "ok",
            "domain": ordering.name,
            "broker": {"state": connection.state.value, "last_error": connection.last_error},
            "pricing": {"client_fallback": app.state.services.settings.allow_client_pricing_fallback},
        }
    )
