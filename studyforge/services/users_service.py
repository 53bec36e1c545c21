from __future__ import annotations

import logging

from studyforge.core.errors import ValidationError
from studyforge.models.events import USER_CREATE, UserCreatePayload
from studyforge.models.user import User
from studyforge.services.dispatcher import EventBus
from studyforge.services.ledger import CreditLedger, normalize_email
from studyforge.services.notifier import Notifier, notify_quietly

logger = logging.getLogger(__name__)


class UserService:
    """Sign-up goes through the user.create job; the ledger owns the row."""

    def __init__(self, ledger: CreditLedger, bus: EventBus, notifier: Notifier) -> None:
        self._ledger = ledger
        self._bus = bus
        self._notifier = notifier

    async def request_provisioning(self, email: str, name: str = "") -> str:
        email = normalize_email(email)
        if "@" not in email:
            logger.warning("Rejected malformed email=%s", email)
            raise ValidationError("email must be a valid address")
        task = await self._bus.send(USER_CREATE, UserCreatePayload(email=email, name=name))
        return task.id

    async def handle_create(self, payload: UserCreatePayload) -> None:
        user, created = await self._ledger.provision_user(payload.email, payload.name)
        if created:
            await self._welcome(user)

    async def _welcome(self, user: User) -> None:
        await notify_quietly(
            self._notifier,
            "welcome",
            user.email,
            {"name": user.name, "credits": user.credits},
        )
