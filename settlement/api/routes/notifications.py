import uuid
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import select

from settlement.deps import CurrentUserDep, SessionDep
from settlement.errors import ErrorCode, SettlementError
from settlement.models import Buyer, NotificationPublic, NotificationsPublic, Seller
from settlement.services.notification_service import NotificationService, Recipient

router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_recipient(
    session: SessionDep,
    user_id: CurrentUserDep,
    role: Literal["buyer", "seller"] = "buyer",
) -> Recipient:
    """Notifications are addressed to a buyer or seller profile, not to the raw user."""
    if role == "seller":
        seller = session.exec(select(Seller).where(Seller.user_id == user_id)).first()
        if seller is None:
            raise SettlementError(ErrorCode.NOT_FOUND, "Seller profile not found")
        return Recipient(seller_id=seller.id)

    buyer = session.exec(select(Buyer).where(Buyer.user_id == user_id)).first()
    if buyer is None:
        raise SettlementError(ErrorCode.NOT_FOUND, "Buyer profile not found")
    return Recipient(buyer_id=buyer.id)


RecipientDep = Annotated[Recipient, Depends(get_recipient)]


@router.get("/", response_model=NotificationsPublic)
async def read_notifications(
    session: SessionDep,
    recipient: RecipientDep,
    unread_only: bool = False,
    skip: int = 0,
    limit: int = Query(default=50, le=200),
):
    notifications, count, unread_count = NotificationService.list_notifications(
        session, recipient, unread_only, skip, limit
    )
    return NotificationsPublic(
        data=[NotificationPublic.model_validate(n) for n in notifications],
        count=count,
        unread_count=unread_count,
    )


@router.post("/read-all")
async def mark_all_read(session: SessionDep, recipient: RecipientDep):
    updated = NotificationService.mark_all_as_read(session, recipient)
    return {"success": True, "updated": updated}


@router.post("/{notification_id}/read", response_model=NotificationPublic)
async def mark_read(session: SessionDep, recipient: RecipientDep, notification_id: uuid.UUID):
    return NotificationService.mark_as_read(session, recipient, notification_id)


@router.put("/{notification_id}/star", response_model=NotificationPublic)
async def set_star(
    session: SessionDep,
    recipient: RecipientDep,
    notification_id: uuid.UUID,
    starred: bool = True,
):
    return NotificationService.toggle_star(session, recipient, notification_id, starred)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    session: SessionDep, recipient: RecipientDep, notification_id: uuid.UUID
) -> None:
    NotificationService.delete_notification(session, recipient, notification_id)
