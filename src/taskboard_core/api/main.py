"""Taskboard Core FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..analysis_jobs import shutdown_analysis_dispatcher
from ..config import get_settings
from .routers import comments, dependencies, lists, projects, requirements, tasks, tracking, users, workspaces

# Configure logging
settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("taskboard-core")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} v{__version__}")
    yield
    # Drain queued quality analyses
    shutdown_analysis_dispatcher()
    logger.info(f"Stopped {settings.app_name}")


# Create FastAPI app
app = FastAPI(
    title="Taskboard Core API",
    description="Multi-tenant task board: ordering, dependencies, requirements and access control",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include all business logic routers with /api/v1 prefix
app.include_router(users.router, prefix="/api/v1/users")
app.include_router(workspaces.router, prefix="/api/v1/workspaces")
app.include_router(projects.router, prefix="/api/v1/projects")
app.include_router(lists.router, prefix="/api/v1/lists")
app.include_router(tasks.router, prefix="/api/v1/tasks")
app.include_router(dependencies.router, prefix="/api/v1")
app.include_router(tracking.router, prefix="/api/v1")
app.include_router(comments.router, prefix="/api/v1")
app.include_router(requirements.router, prefix="/api/v1/requirements")


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": "Taskboard Core API",
        "version": __version__,
        "docs": "/docs",
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}
