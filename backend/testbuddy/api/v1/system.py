"""
Test Buddy - System API Routes
Store health and query cache statistics
"""
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from testbuddy.api.deps import CurrentUser, Services

router = APIRouter(prefix="/system", tags=["System"])


@router.get("/health", summary="Store health")
async def store_health(services: Services) -> JSONResponse:
    result = await services.firebase.health_check()
    code = status.HTTP_200_OK if result["status"] == "healthy" else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=code, content=result)


@router.get("/cache", summary="Query cache statistics")
async def cache_stats(user: CurrentUser, services: Services) -> dict:
    optimizer = services.query_optimizer
    return {
        "size": optimizer.cache_size,
        "maxSize": optimizer.max_size,
        "stats": optimizer.get_stats().to_dict(),
    }
