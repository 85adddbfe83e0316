"""
Service Write-Off Portal - Main Application
"""
import os
import logging
from contextlib import asynccontextmanager
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

# Import after env loaded
from writeoff_portal import __version__
from writeoff_portal.api import router
from writeoff_portal.config import get_settings
from writeoff_portal.database import get_db
from writeoff_portal.database.seed import seed_demo_data
from writeoff_portal.reports.views import render_index


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    # Startup
    logger.info("=" * 60)
    logger.info("🚀 Service Write-Off Portal Starting...")
    logger.info("=" * 60)

    settings = get_settings()
    db = get_db()
    db.create_tables()
    logger.info("✅ Database initialized")

    if settings.seed_demo_data:
        if db.has_transactions():
            logger.info("Ledger already has transactions, skipping demo data")
        else:
            with db.get_session() as session:
                seed_demo_data(session, settings.cbsi_entity_id, settings.service_department_id)
            logger.info("✅ Demo data loaded")

    logger.info(f"Governance budget per request: {settings.governance_limit or 'unlimited'}")
    logger.info("✅ Application ready")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI app
app = FastAPI(
    title="Service Write-Off Portal",
    description="""
    ## Service Department Write-Off

    - **Master List** - open invoices and unapplied credits for the service population as of a date
    - **Portal** - unbilled service sales orders with queue, close, auto-bill and research-note actions
    - **CBSI Bill and JE** - bills a sales order to CBSI and offsets it with a write-off journal entry
    - **Bulk actions** - stop cleanly when the per-request governance budget runs low
    """,
    version=__version__,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include report and portal routes
app.include_router(router, tags=["Service Write-Off"])


@app.get("/", response_class=HTMLResponse)
async def root():
    """Landing page with links to both reports"""
    return render_index()


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "service-writeoff-portal"}


if __name__ == "__main__":
    import uvicorn
    print("\n" + "=" * 60)
    print("🌐 Open in browser: http://localhost:8000")
    print("📊 Master List: http://localhost:8000/master-list")
    print("🧾 Write-Off Portal: http://localhost:8000/portal")
    print("📖 API Docs: http://localhost:8000/docs")
    print("=" * 60 + "\n")
    uvicorn.run(app, host="127.0.0.1", port=8000)
