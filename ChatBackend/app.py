import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ChatBackend.database import init_db
from ChatBackend.errors import register_exception_handlers
from ChatBackend.services.chat_stream import CHAT_ID_HEADER
from ChatBackend.subapps.chat_routes import router as chat_router
from ChatBackend.subapps.image_routes import router as image_router


_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(_ROOT / ".env", override=False)


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS") or "*"
    return [o.strip() for o in raw.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    init_db()
    yield


_configure_logging()

app = FastAPI(lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
    expose_headers=[CHAT_ID_HEADER],
)
register_exception_handlers(app)
app.include_router(chat_router)
app.include_router(image_router)
