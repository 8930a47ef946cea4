import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from approvalhub import __version__
from approvalhub.api.deps import registry
from approvalhub.api.routers import approvals, notifications, workflows
from approvalhub.core.config import get_settings
from approvalhub.core.logger import configure_from_settings
from approvalhub.db.session import unit_of_work
from approvalhub.services.workflows import WorkflowAdmin

settings = get_settings()

configure_from_settings(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.workflow_definitions_path:
        with unit_of_work() as db:
            WorkflowAdmin(db, registry).provision_from_yaml(settings.workflow_definitions_path)
        registry.invalidate()
    logger.info("%s %s started", settings.app_name, __version__)
    yield


app = FastAPI(
    title=settings.app_name,
    description="Multi-level approval workflow engine",
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(workflows.router, prefix="/api")
app.include_router(approvals.router, prefix="/api")
app.include_router(notifications.router, prefix="/api")


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": __version__}


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": __version__,
        "docs": "/docs" if settings.debug else None,
    }
