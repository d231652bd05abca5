import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.driver import router as driver_router
from api.live import router as live_router
from api.reminders import router as reminders_router
from config import config
from db.database import is_database_available
from services.reminder_scheduler import reminder_loop
from services.sms_gateway import close_sms_gateway

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Celery beat owns the schedule when enabled
    if config.REMINDER_LOOP_ENABLED and not config.CELERY_ENABLED:
        reminder_loop.start()
    else:
        logger.info("[Reminders] In-process loop disabled")

    yield

    await reminder_loop.stop()
    await close_sms_gateway()


app = FastAPI(title="Shuttle Tracking API", lifespan=lifespan)

# Enable CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(driver_router)
app.include_router(live_router)
app.include_router(reminders_router)


@app.get("/")
def read_root():
    return {"message": "Welcome to Shuttle Tracking API"}


@app.get("/health")
def health():
    database_ok = is_database_available()
    return {
        "status": "ok" if database_ok else "degraded",
        "database": database_ok,
        "sms_gateway": config.SMS_GATEWAY,
        "twilio_configured": config.is_twilio_configured(),
        "scheduler": {
            "mode": "celery" if config.CELERY_ENABLED else "loop",
            "running": reminder_loop.running or config.CELERY_ENABLED,
        },
    }
