# storefront/api/routers/health.py
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from storefront.api.deps import get_cache, get_uow
from storefront.domain.schemas import HealthOut
from storefront.repos.unit_of_work import UnitOfWork
from storefront.services.cache_service import RedisCache
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthOut)
def health(uow: UnitOfWork = Depends(get_uow), cache: RedisCache = Depends(get_cache)):
    try:
        uow.db.execute(text("SELECT 1"))
        database = True
    except SQLAlchemyError as e:
        logger.warning(f"Database health check failed: {e}")
        database = False

    checks = {"database": database, "cache": cache.ping()}
    return HealthOut(status="ok" if all(checks.values()) else "degraded", checks=checks)
