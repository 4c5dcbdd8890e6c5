from fastapi import APIRouter, Response, status
from sqlmodel import literal, select

from settlement.api.routes import buyer_orders, checkout, notifications, seller_orders, webhooks
from settlement.deps import RedisDep, SessionDep

api_router = APIRouter()

api_router.include_router(checkout.router)
api_router.include_router(buyer_orders.router)
api_router.include_router(seller_orders.router)
api_router.include_router(notifications.router)
api_router.include_router(webhooks.router)


@api_router.get("/health/live")
async def liveness():
    return {"status": "alive"}


@api_router.get("/health/ready")
async def readiness(response: Response, session: SessionDep, redis: RedisDep):
    """Ready when the database answers and Redis (consumer dedup) responds."""
    checks: dict[str, str] = {}

    try:
        session.exec(select(literal(1)))
        checks["database"] = "connected"
    except Exception as e:
        checks["database"] = f"error: {e}"

    try:
        checks["redis"] = "connected" if await redis.ping() else "disconnected"
    except Exception as e:
        checks["redis"] = f"error: {e}"

    ready = all(value == "connected" for value in checks.values())
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"status": "ready" if ready else "not ready", "checks": checks}
