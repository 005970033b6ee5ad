"""Health check endpoint with optional workspace storage check."""

from fastapi import APIRouter, Depends

from app.core.config import settings
from app.core.storage import check_storage_writable, get_store
from app.schemas.health import HealthResponse
from app.services.workspace_store import WorkspaceStore

router = APIRouter()


@router.get("/", response_model=HealthResponse)
def get_health(store: WorkspaceStore = Depends(get_store)) -> HealthResponse:
    """
    Return service health status and workspace storage status.
    Used by load balancers and monitoring.
    """
    storage_status = "writable" if check_storage_writable(store) else "unavailable"

    return HealthResponse(
        status="ok",
        environment=settings.APP_ENV,
        storage=storage_status,
    )
