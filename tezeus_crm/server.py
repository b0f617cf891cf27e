from fastapi import FastAPI, APIRouter
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from .config import load_crm_settings  # noqa: E402
from .container import get_crm_container  # noqa: E402
from .routes import (  # noqa: E402
    pipeline_cards_router,
    conversations_router,
    contacts_router,
    users_router,
)
from .schema import ensure_schema  # noqa: E402

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

settings = load_crm_settings()

# Create the main app
app = FastAPI(title="Tezeus CRM API")

CORS_ALLOW_ORIGIN_REGEX = os.getenv("CORS_ALLOW_ORIGIN_REGEX") or None

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allow_origins),
    allow_origin_regex=CORS_ALLOW_ORIGIN_REGEX,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "x-workspace-id"],
)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "tezeus-crm"}


@app.get("/")
async def root():
    return {"message": "Tezeus CRM API", "status": "running"}


@app.on_event("startup")
async def ensure_pipeline_schema():
    if not settings.ensure_schema_on_startup:
        return
    ensure_schema(get_crm_container().client)


api_router = APIRouter(prefix="/api")
api_router.include_router(pipeline_cards_router)
api_router.include_router(conversations_router)
api_router.include_router(contacts_router)
api_router.include_router(users_router)

app.include_router(api_router)
