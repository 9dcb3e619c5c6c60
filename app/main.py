"""
Tour Back Office
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from contextlib import asynccontextmanager

from app.config import get_settings
from app.utils.logger import log
from app import __version__

# Import routers
from app.api import health, auth, orders, webhooks, bookings, email, ad_spend, maintenance
from app.middleware.security_middleware import SecurityMiddleware

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    # Initialize database
    try:
        from app.models.base import init_db, session_scope
        init_db()
        log.info("Database initialized")

        # Seed initial admin user if configured
        from app.services import auth_service
        with session_scope() as db:
            auth_service.seed_initial_user(db)
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    # Start the scheduler for WooCommerce sync and duplicate cleanup
    from app.scheduler import start_scheduler, stop_scheduler
    try:
        start_scheduler()
    except Exception as e:
        log.error(f"Scheduler startup error: {str(e)}")

    yield

    # Shutdown
    stop_scheduler()
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Tour ticket back office

    - Reconciles orders from every WooCommerce storefront (scheduled sync + webhooks)
    - Computes per-order ticket cost and projected profit
    - Sends ticket and reservation emails through SendGrid
    - Takes direct landing-page bookings through Stripe
    - Records ad spend pushed from ad platforms
    """,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Anti-crawl and cache headers
app.add_middleware(SecurityMiddleware)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(auth.router)
app.include_router(orders.router)
app.include_router(webhooks.router)
app.include_router(bookings.router)
app.include_router(email.router)
app.include_router(ad_spend.router)
app.include_router(maintenance.router)


@app.get("/robots.txt", response_class=PlainTextResponse)
async def robots_txt():
    """Block all crawlers"""
    return "User-agent: *\nDisallow: /\n"


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "app": settings.app_name,
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "status": "/status",
        "endpoints": {
            "login": "POST /auth/login",
            "sync_orders": "POST /orders/sync",
            "resolve_duplicates": "POST /orders/resolve-duplicates",
            "calculate_profits": "POST /orders/calculate-profits",
            "send_ticket_email": "POST /orders/send-ticket-email",
            "send_reserved_email": "POST /orders/send-reserved-email",
            "get_order": "GET /orders/{order_id}",
            "woocommerce_webhook": "POST /webhooks/woocommerce?site={site_name}",
            "sendgrid_webhook": "POST /webhooks/sendgrid",
            "inbound_email_webhook": "POST /webhooks/email",
            "ad_spend_webhook": "POST /webhooks/ad-spend",
            "create_booking": "POST /bookings",
            "stripe_key": "GET /bookings/stripe-key",
            "send_email": "POST /email/send",
            "ad_spend": "GET /ad-spend",
            "maintenance": "POST /maintenance/*",
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1
    )
