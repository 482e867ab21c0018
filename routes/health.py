import logging

from fastapi import APIRouter, Depends
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from routes.deps import get_container
from services.errors import TransientInfrastructureError

logger = logging.getLogger("api.health")

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health(container=Depends(get_container)):
    try:
        container.redis.ping()
    except RedisError as exc:
        logger.error("health_redis_failed error=%s", exc.__class__.__name__)
        raise TransientInfrastructureError("redis", exc.__class__.__name__) from exc

    try:
        with container.db_engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("health_db_failed error=%s", exc.__class__.__name__)
        raise TransientInfrastructureError("database", exc.__class__.__name__) from exc

    return {
        "status": "OK",
        "redis": "connected",
        "database": "connected",
    }
