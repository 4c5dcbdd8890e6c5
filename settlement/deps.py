from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, Header
from sqlmodel import Session, select

from settlement.clients.tsara import PaymentGateway, tsara_client
from settlement.core.db import engine
from settlement.core.redis import RedisClient, redis_client
from settlement.errors import ErrorCode, SettlementError
from settlement.models import Buyer, Seller


def get_db() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


def get_redis() -> RedisClient:
    return redis_client


def get_gateway() -> PaymentGateway:
    return tsara_client


def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Caller identity as forwarded by the auth gateway in front of this service."""
    if not x_user_id:
        raise SettlementError(ErrorCode.UNAUTHORIZED, "Authentication required")
    return x_user_id


RedisDep = Annotated[RedisClient, Depends(get_redis)]
SessionDep = Annotated[Session, Depends(get_db)]
GatewayDep = Annotated[PaymentGateway, Depends(get_gateway)]
CurrentUserDep = Annotated[str, Depends(get_current_user_id)]


def get_current_buyer(session: SessionDep, user_id: CurrentUserDep) -> Buyer:
    buyer = session.exec(select(Buyer).where(Buyer.user_id == user_id)).first()
    if buyer is None:
        raise SettlementError(ErrorCode.NOT_FOUND, "Buyer profile not found")
    return buyer


def get_current_seller(session: SessionDep, user_id: CurrentUserDep) -> Seller:
    seller = session.exec(select(Seller).where(Seller.user_id == user_id)).first()
    if seller is None:
        raise SettlementError(ErrorCode.NOT_FOUND, "Seller profile not found")
    return seller


BuyerDep = Annotated[Buyer, Depends(get_current_buyer)]
SellerDep = Annotated[Seller, Depends(get_current_seller)]
