"""Base service class for business logic."""

from __future__ import annotations

import logging


class BaseService:
    """Base class for all service classes.

    Services own the transaction boundary: repositories flush, services
    commit.

    Example:
        class EntitlementService(BaseService):
            def __init__(self, repository: EntitlementRepository):
                super().__init__()
                self.repository = repository

            async def list_by_user(self, session, user_id):
                self.logger.debug("Listing entitlements", extra={"user_id": user_id})
                return await self.repository.list_for_user(session, user_id)
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(f"service.{self.__class__.__name__}")
