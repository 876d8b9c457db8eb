from sqlalchemy import text

from stockflow.core.observability import (
    http_exception_handler,
    request_logging_middleware,
    setup_observability,
    stockflow_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from stockflow.core.config import settings
from stockflow.core.errors import StockFlowError
from stockflow.db.session import engine
from stockflow.routers import (
    audit,
    auth,
    categories,
    cron,
    dashboard,
    loans,
    locations,
    movements,
    products,
    sales,
    users,
)

app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description=(
        "StockFlow inventory ledger API.\n\n"
        "Swagger quick test flow:\n"
        "1. On an empty database call `POST /auth/register` once to create the first admin.\n"
        "2. Click **Authorize** and use your email + password "
        "(OAuth token URL: `/auth/token`).\n"
        "3. Test protected endpoints (`/products`, `/movements`, `/loans`, `/sales`)."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "auth", "description": "Login, tokens and first-admin registration."},
        {"name": "dashboard", "description": "Headline stock, sales and loan figures with a 7-day chart."},
        {"name": "users", "description": "Admin user management and viewer category visibility."},
        {"name": "categories", "description": "Product categories and SKU prefixes."},
        {"name": "products", "description": "Product catalog, stock status, direct stock edits and consumption."},
        {"name": "locations", "description": "Physical and virtual stock locations."},
        {"name": "movements", "description": "Stock-in, stock-out and transfers between locations."},
        {"name": "loans", "description": "Borrowing stock, returns and WhatsApp reminders."},
        {"name": "sales", "description": "Multi-line sales with invoice codes."},
        {"name": "audit", "description": "Audit trail of ledger changes."},
        {"name": "cron", "description": "Scheduler hooks secured by the cron key."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(StockFlowError, stockflow_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    # Local dev servers pick dynamic localhost ports.
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(dashboard.router)
app.include_router(categories.router)
app.include_router(products.router)
app.include_router(locations.router)
app.include_router(movements.router)
app.include_router(loans.router)
app.include_router(sales.router)
app.include_router(audit.router)
app.include_router(cron.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        return {"ok": False}
    return {"ok": True}
