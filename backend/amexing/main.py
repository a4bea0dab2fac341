# backend/amexing/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.errors import register_exception_handlers
from .core.logging import setup_logging

# ---- Routers ----
# Access control
from .api import auth, users, roles, permissions, delegations

# Organizations
from .api import clients, departments

# Fleet & pricing catalog
from .api import vehicle_types, vehicles, rates, service_types, pois, services, tours, client_prices

# Sales
from .api import quotes, invoices, experiences

from .api import system

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Amexing API")

# ---------------------------
# CORS (frontend dev servers)
# ---------------------------
DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def _resolve_allowed_origins() -> list[str]:
    raw = settings.CORS_ALLOW_ORIGINS
    if isinstance(raw, (list, tuple)):
        vals = [str(x).strip().rstrip("/") for x in raw if str(x).strip()]
    else:
        vals = [s.strip().rstrip("/") for s in str(raw).split(",") if s.strip()]
    # wildcard is not allowed together with credentials
    if len(vals) == 1 and vals[0] == "*":
        return DEFAULT_CORS_ORIGINS
    return vals or DEFAULT_CORS_ORIGINS


ALLOW_ORIGINS = _resolve_allowed_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


# ---------------------------
# Routers
# ---------------------------
app.include_router(system.router)

# Auth & access control
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(roles.router)
app.include_router(permissions.router)
app.include_router(delegations.router)

# Clients & departments
app.include_router(clients.router)
app.include_router(departments.router)

# Fleet & catalog
app.include_router(vehicle_types.router)
app.include_router(vehicles.router)
app.include_router(rates.router)
app.include_router(service_types.router)
app.include_router(pois.router)
app.include_router(services.router)
app.include_router(tours.router)
app.include_router(client_prices.router)

# Quotes, invoices & experiences
app.include_router(quotes.router)
app.include_router(quotes.public_router)           # no auth
app.include_router(invoices.router)
app.include_router(experiences.router)

logger.info("Amexing API ready (%d CORS origins)", len(ALLOW_ORIGINS))
