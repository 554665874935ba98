"""Ticketflow Core FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ticketflow_core.config import get_settings
from ticketflow_core.database import init_db

from .routers import tickets, projects, users, snapshot, events

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("ticketflow-core")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and seed the well-known projects on startup."""
    logger.info("Starting Ticketflow Core API")
    init_db()
    yield


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Ticket tracking with a consistent parent/blocker graph",
    version="1.0.0",
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
app.include_router(tickets.router, prefix="/api/v1/tickets")
app.include_router(projects.router, prefix="/api/v1/projects")
app.include_router(users.router, prefix="/api/v1/users")
app.include_router(snapshot.router, prefix="/api/v1/snapshot")
app.include_router(events.router, prefix="/api/v1/events")


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "docs": "/docs",
        "description": "Ticket tracking with a consistent parent/blocker graph",
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("ticketflow_core.api.main:app", host="0.0.0.0", port=8000)
