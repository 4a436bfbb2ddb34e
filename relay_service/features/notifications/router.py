"""Debug inbox for the notifications feature."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from relay_service.core.dependencies.database import get_db_session
from relay_service.features.notifications.repository import (
    NotificationRepository,
    get_notification_repository,
)
from relay_service.features.notifications.schemas import NotificationInbox, NotificationSummary

router = APIRouter(tags=["notifications"])


@router.get(
    "/users/{user_id}/notifications",
    response_model=NotificationInbox,
    summary="List a user's notifications",
    description="Debug view of the delivery queue for one user, newest first.",
)
async def list_user_notifications(
    user_id: str,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    repo: Annotated[NotificationRepository, Depends(get_notification_repository)],
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> NotificationInbox:
    notifications = await repo.list_for_user(session, user_id, limit=limit)
    return NotificationInbox(
        user_id=user_id,
        notifications=[NotificationSummary.from_model(item) for item in notifications],
    )
