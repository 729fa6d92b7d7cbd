from abc import ABC, abstractmethod
from datetime import datetime

from ..core.errors import ProviderError
from . import transport


class CalendarService(ABC):
    @abstractmethod
    def create_event(self, title: str, starts_at: datetime, phone_number: str, lead_id: str | None = None) -> str | None:
        """Create a callback appointment; returns the calendar's event id when it has one."""

    @abstractmethod
    def schedule_reminder(self, phone_number: str, message: str, send_at: datetime) -> None: ...


class HttpCalendarService(CalendarService):
    def __init__(self, base_url: str, api_key: str = "", timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _post(self, path: str, body: dict) -> dict:
        if not self.base_url:
            raise ProviderError("Calendar service is not configured")
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        return transport.send("POST", f"{self.base_url}{path}", timeout=self.timeout, json_body=body, headers=headers)

    def create_event(self, title: str, starts_at: datetime, phone_number: str, lead_id: str | None = None) -> str | None:
        payload = self._post(
            "/events",
            {
                "title": title,
                "starts_at": starts_at.isoformat(),
                "phone_number": phone_number,
                "lead_id": lead_id,
            },
        )
        return payload.get("id")

    def schedule_reminder(self, phone_number: str, message: str, send_at: datetime) -> None:
        self._post("/reminders", {"phone_number": phone_number, "message": message, "send_at": send_at.isoformat()})
