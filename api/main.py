import sys, os, uvicorn, logging
from contextlib import asynccontextmanager
from typing import Optional, Protocol, cast

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from config.settings import settings
from repositories.procurement_store import ProcurementStore
from services.conversation_review import ConversationReviewService
from services.email_poll_scheduler import EmailPollingScheduler
from services.ingestion_orchestrator import IngestionOrchestrator
from api.routers import conversations, email

os.makedirs(settings.log_dir, exist_ok=True)
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
                    handlers=[logging.StreamHandler(), logging.FileHandler(os.path.join(settings.log_dir, "rfpmail.log"))])
logger = logging.getLogger(__name__)


class RFPMailAppState(Protocol):
    store: Optional[ProcurementStore]
    ingestion: Optional[IngestionOrchestrator]
    email_scheduler: Optional[EmailPollingScheduler]
    review_service: Optional[ConversationReviewService]

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("API starting up...")
    state = cast(RFPMailAppState, app.state)
    store = ProcurementStore()
    store.migrate_legacy_statuses()
    state.store = store
    state.ingestion = IngestionOrchestrator(store)
    state.email_scheduler = EmailPollingScheduler(state.ingestion)
    state.review_service = ConversationReviewService(store)
    if settings.email_poll_enabled:
        state.email_scheduler.start()
    else:
        logger.info("Email monitoring disabled by configuration")
    yield
    scheduler = state.email_scheduler
    if scheduler is not None:
        try:
            scheduler.stop()
        except Exception:
            logger.exception("Failed to stop email scheduler during shutdown")
    state.email_scheduler = None
    state.ingestion = None
    state.review_service = None
    store.close()
    state.store = None
    logger.info("API shutting down.")

app = FastAPI(title="RFP Mail Ingestion API", version="1.0", lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

app.include_router(email.router)
app.include_router(conversations.router)

@app.get("/", tags=["General"])
def read_root(): return {"message": "RFP vendor reply ingestion service"}

if __name__ == "__main__":
    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=True)
