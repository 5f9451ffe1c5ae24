"""Outbound registration events for the external consumer."""
from __future__ import annotations

from typing import Optional, Protocol

import httpx
from pydantic import BaseModel

from affiliation.models import Registration


class RegistrationEvent(BaseModel):
    """One-way push of a registration's current state."""

    registration_id: int
    tournament_id: int
    competitor_id: int
    partner_id: Optional[int] = None
    status: str

    @classmethod
    def from_registration(cls, registration: Registration) -> "RegistrationEvent":
        return cls(
            registration_id=registration.id,
            tournament_id=registration.tournament_id,
            competitor_id=registration.competitor_id,
            partner_id=registration.partner_id,
            status=registration.status,
        )


class RegistrationPublisher(Protocol):
    async def publish(self, event: RegistrationEvent) -> None:
        """Deliver the event or raise. No response payload is interpreted."""
        ...


class HttpRegistrationPublisher:
    """POSTs registration events as JSON. Any non-2xx response is a failure."""

    def __init__(
        self,
        url: str,
        secret: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self._secret = secret
        self._timeout = timeout
        self._transport = transport

    async def publish(self, event: RegistrationEvent) -> None:
        headers = {"Authorization": f"Bearer {self._secret}"} if self._secret else {}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            r = await client.post(self.url, json=event.model_dump(mode="json"), headers=headers)
            r.raise_for_status()
