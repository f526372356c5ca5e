import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

# Import shared dependencies and routers
from dependencies import limiter
from routers import admin, billing, webhooks
from settings import get_settings

# --- 1. SETUP ---
settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format='[%(asctime)s] %(levelname)s %(name)s: %(message)s',
)

app = FastAPI(
    title="Fast! API",
    description="Billing, subscription webhooks and admin endpoints for the Fast! fasting tracker.",
    version="0.3.0"
)

# --- 2. MIDDLEWARE (CORS) ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add rate limiter to app state
app.state.limiter = limiter


# Custom rate limit error handler with CORS headers
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    response = _rate_limit_exceeded_handler(request, exc)
    origin = request.headers.get("origin", "")
    if origin in settings.cors_origins:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
    return response

app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

# --- 3. INCLUDE ROUTERS ---
app.include_router(webhooks.router)
app.include_router(billing.router)
app.include_router(admin.router)


# --- 4. PUBLIC ENDPOINTS ---
@app.get("/")
def read_root():
    return {"status": "Fast! API is alive and well!"}
