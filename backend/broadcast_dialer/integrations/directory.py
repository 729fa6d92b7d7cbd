"""Lead Directory and Phone Number Directory clients."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from ..core.errors import ProviderError
from . import transport


@dataclass
class LeadRecord:
    lead_id: str
    phone_number: str
    name: str | None = None


@dataclass
class DirectoryNumber:
    number: str
    on_trunk: bool = False
    rotation_enabled: bool = True
    is_spam: bool = False
    quarantine_until: datetime | None = None
    reserved_for_inbound: bool = False
    max_daily_calls: int | None = None


class LeadDirectory(ABC):
    @abstractmethod
    def get_leads(self, lead_ids: list[str]) -> list[LeadRecord]: ...

    @abstractmethod
    def flag_do_not_call(self, lead_id: str | None, phone_number: str) -> None: ...


class PhoneNumberDirectory(ABC):
    @abstractmethod
    def list_numbers(self, account_id: str) -> list[DirectoryNumber]: ...


class _DirectoryClient:
    def __init__(self, base_url: str, api_key: str = "", timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _call(self, method: str, path: str, **kwargs) -> dict:
        if not self.base_url:
            raise ProviderError(f"{type(self).__name__} is not configured")
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        return transport.send(method, f"{self.base_url}{path}", timeout=self.timeout, headers=headers, **kwargs)


class HttpLeadDirectory(_DirectoryClient, LeadDirectory):
    def get_leads(self, lead_ids: list[str]) -> list[LeadRecord]:
        if not lead_ids:
            return []
        payload = self._call("POST", "/leads/lookup", json_body={"lead_ids": lead_ids})
        return [
            LeadRecord(lead_id=str(row["id"]), phone_number=row["phone_number"], name=row.get("name"))
            for row in payload.get("leads", [])
            if row.get("phone_number")
        ]

    def flag_do_not_call(self, lead_id: str | None, phone_number: str) -> None:
        self._call("POST", "/leads/do-not-call", json_body={"lead_id": lead_id, "phone_number": phone_number})


class HttpPhoneNumberDirectory(_DirectoryClient, PhoneNumberDirectory):
    def list_numbers(self, account_id: str) -> list[DirectoryNumber]:
        payload = self._call("GET", f"/accounts/{account_id}/phone-numbers")
        numbers = []
        for row in payload.get("numbers", []):
            quarantine = row.get("quarantine_until")
            numbers.append(
                DirectoryNumber(
                    number=row["number"],
                    on_trunk=bool(row.get("on_trunk", False)),
                    rotation_enabled=bool(row.get("rotation_enabled", True)),
                    is_spam=bool(row.get("is_spam", False)),
                    quarantine_until=datetime.fromisoformat(quarantine) if quarantine else None,
                    reserved_for_inbound=bool(row.get("reserved_for_inbound", False)),
                    max_daily_calls=row.get("max_daily_calls"),
                )
            )
        return numbers
