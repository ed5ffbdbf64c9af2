import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from crm_intake import models  # noqa: F401  registers tables on Base
from crm_intake.config import settings
from crm_intake.database import Base, engine
from crm_intake.logging_config import get_logger, setup_logging
from crm_intake.routers import telegram_webhook

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="CRM Intake",
    description="Turns forwarded Telegram conversations into confirmed CRM records",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(telegram_webhook.router)


@app.on_event("startup")
def create_tables() -> None:
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")


@app.get("/health")
async def health():
    return {"status": "ok"}
