from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from listingbot import __version__
from listingbot.config import get_settings
from listingbot.database import init_db
from listingbot.logging_config import get_logger, setup_logging
from listingbot.routers import media, telegram_webhook

settings = get_settings()

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="Listing Bot",
    description="Telegram bot collecting property listings",
    version=__version__,
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
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
app.include_router(media.router)


@app.on_event("startup")
async def on_startup() -> None:
    get_settings().validate_required()
    if get_settings().auto_create_tables:
        init_db()
    logger.info("Listing bot started")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/")
async def root():
    return {"status": "ok", "message": "Listing bot is running"}
