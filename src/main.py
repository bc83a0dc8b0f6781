import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from create_tables import create_tables
from database import SessionLocal
from errors import register_error_handlers
from logging_config import configure_logging

from modules.auth.models.user import User, UserRole
from modules.auth.services.auth_service import AuthService
from modules.contracts.job import start_token_sweep_job, stop_token_sweep_job
from modules.admin.controllers.admin_controller import router as admin_router
from modules.auth.controllers.auth_controller import router as auth_router
from modules.contracts.controllers.contract_controller import router as contract_router
from modules.contracts.controllers.sign_redirect_controller import router as sign_redirect_router
from modules.notifications.controllers.notification_controller import router as notification_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    configure_logging()
    create_tables()
    _seed_admin()
    if settings.enable_token_sweep:
        start_token_sweep_job()
    logger.info("Contract service started")
    yield
    # --- Shutdown ---
    stop_token_sweep_job()
    logger.info("Contract service stopped")


def _seed_admin():
    """Create the configured admin account on first start."""
    if not settings.admin_email or not settings.admin_password:
        return
    email = AuthService.normalize_email(settings.admin_email)
    with SessionLocal() as session:
        if session.query(User).filter(User.email == email).first():
            return
        session.add(User(
            name="Administrator",
            email=email,
            password_hash=AuthService.get_password_hash(settings.admin_password),
            role=UserRole.ADMIN,
            is_active=True,
        ))
        session.commit()
        logger.info("Seeded admin account %s", email)


app = FastAPI(
    title="Contract Signing API",
    description="Contract lifecycle with tokenized e-signature links",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=[
        "Accept",
        "Accept-Language",
        "Content-Language",
        "Content-Type",
        "Authorization",
        "X-Requested-With",
        "X-Forwarded-For",
        "Origin",
    ],
    max_age=86400,
)

register_error_handlers(app)

# Routers
app.include_router(auth_router)
app.include_router(contract_router)
app.include_router(sign_redirect_router)
app.include_router(notification_router, prefix="/notifications", tags=["notifications"])
app.include_router(admin_router)


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
