"""
FastAPI application entry point.

Local control plane for grant jobs, with optional API key authentication.
"""

from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI

from src import __version__
from src.infra.config import load_app_settings
from .routers import jobs
from ._service_state import init_grant_service, shutdown_grant_service
from .dependencies.auth import verify_api_key, API_AUTH_ENABLED


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Creates the grant service on startup and drops it on shutdown.
    """
    settings = load_app_settings()
    init_grant_service(
        db_path=settings.state_db_path,
        access_token=settings.google_access_token,
    )

    yield

    shutdown_grant_service()

# Tag metadata for Swagger UI
tags_metadata = [
    {
        "name": "jobs",
        "description": "Grant job control - run one slice, start/stop continuous mode, inspect checkpoints",
    },
]

app = FastAPI(
    title="Roster Grants API",
    lifespan=lifespan,
    description="""
## Roster Grants API

Local control plane for the roster access-grant batch processor.

### Authentication
When `API_AUTH_ENABLED=true`, all endpoints except `/health` require
an `X-API-Key` header matching the `API_KEY` environment variable.

### Usage
```bash
# Start server
uvicorn src.api.main:app --host 127.0.0.1 --port 8000

# Run one slice
curl -X POST http://localhost:8000/jobs/share_planning_folders/run \\
  -H "X-API-Key: your-api-key"
```
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=tags_metadata,
)

# Health check - NO authentication (operational endpoint)
@app.get("/health")
async def health_check():
    """Health check endpoint. Not authenticated."""
    return {"status": "ok", "version": __version__}


# Include routers WITH authentication dependency (when enabled)
auth_dependency = [Depends(verify_api_key)] if API_AUTH_ENABLED else []

app.include_router(
    jobs.router, prefix="/jobs", tags=["jobs"], dependencies=auth_dependency
)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
