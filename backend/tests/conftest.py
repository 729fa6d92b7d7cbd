import os

# settings are read at import time, so the test database must be set first
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["API_TOKEN"] = "test-token"
os.environ["WEBHOOK_TOKEN"] = ""
os.environ["PUBLIC_BASE_URL"] = "https://dialer.test"

from datetime import time  # noqa: E402

import pytest  # noqa: E402

from broadcast_dialer.core.db import Base, SessionLocal, engine  # noqa: E402
from broadcast_dialer.core.errors import ProviderError  # noqa: E402
from broadcast_dialer.integrations import Collaborators, get_collaborators  # noqa: E402
from broadcast_dialer.integrations.calendar import CalendarService  # noqa: E402
from broadcast_dialer.integrations.directory import (  # noqa: E402
    DirectoryNumber,
    LeadDirectory,
    LeadRecord,
    PhoneNumberDirectory,
)
from broadcast_dialer.integrations.speech import SpeechSynthesizer  # noqa: E402
from broadcast_dialer.integrations.telephony import ProviderCallStatus, TwilioTelephonyAdapter  # noqa: E402
from broadcast_dialer.models.broadcast import Broadcast, BroadcastStatus  # noqa: E402
from broadcast_dialer.models.caller_id import CallerId  # noqa: E402
from broadcast_dialer.schemas.queue import EnqueueRequest  # noqa: E402
from broadcast_dialer.services import queue_service  # noqa: E402
from broadcast_dialer.services.phone_service import area_code  # noqa: E402
import broadcast_dialer.models  # noqa: F401,E402


class FakeTelephony(TwilioTelephonyAdapter):
    """Records calls instead of sending them; TwiML rendering is the real one."""

    def __init__(self):
        super().__init__("https://telephony.test", "AC-test", "secret")
        self.placed = []
        self.hung_up = []
        self.fail_place = False
        self.fail_trunk = False
        self.fail_hangup: set[str] = set()
        self.statuses: dict[str, ProviderCallStatus] = {}
        self._seq = 0

    def place_call(self, call):
        if self.fail_place:
            raise ProviderError("provider unavailable", provider_status=503)
        if call.via_trunk and self.fail_trunk:
            raise ProviderError("trunk rejected the call", provider_status=400)
        self._seq += 1
        self.placed.append(call)
        return f"CA{self._seq:04d}"

    def get_call_status(self, call_id):
        return self.statuses.get(call_id, ProviderCallStatus(call_id=call_id, status="in-progress"))

    def hangup(self, call_id):
        if call_id in self.fail_hangup:
            raise ProviderError(f"could not hang up {call_id}")
        self.hung_up.append(call_id)


class FakeSpeech(SpeechSynthesizer):
    def __init__(self):
        self.requests = []

    def synthesize(self, text, voice_id):
        self.requests.append((text, voice_id))
        return f"https://audio.test/{len(self.requests)}.mp3"


class FakeLeads(LeadDirectory):
    def __init__(self):
        self.records: dict[str, LeadRecord] = {}
        self.flagged = []
        self.fail_flag = False

    def get_leads(self, lead_ids):
        return [self.records[lead_id] for lead_id in lead_ids if lead_id in self.records]

    def flag_do_not_call(self, lead_id, phone_number):
        if self.fail_flag:
            raise ProviderError("lead directory unavailable")
        self.flagged.append((lead_id, phone_number))


class FakeCalendar(CalendarService):
    def __init__(self):
        self.events = []
        self.reminders = []
        self.fail_events = False

    def create_event(self, title, starts_at, phone_number, lead_id=None):
        if self.fail_events:
            raise ProviderError("calendar unavailable")
        self.events.append({"title": title, "starts_at": starts_at, "phone_number": phone_number})
        return f"evt-{len(self.events)}"

    def schedule_reminder(self, phone_number, message, send_at):
        self.reminders.append({"phone_number": phone_number, "message": message, "send_at": send_at})


class FakePhoneDirectory(PhoneNumberDirectory):
    def __init__(self):
        self.numbers: dict[str, list[DirectoryNumber]] = {}

    def list_numbers(self, account_id):
        return list(self.numbers.get(account_id, []))


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def collaborators():
    return Collaborators(
        telephony=FakeTelephony(),
        speech=FakeSpeech(),
        leads=FakeLeads(),
        calendar=FakeCalendar(),
        phone_directory=FakePhoneDirectory(),
    )


@pytest.fixture
def client(collaborators):
    from fastapi.testclient import TestClient

    from broadcast_dialer.main import app

    app.dependency_overrides[get_collaborators] = lambda: collaborators
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": "Bearer test-token"}


def make_broadcast(db, **overrides) -> Broadcast:
    values = dict(
        account_id="acct-1",
        name="Spring promo",
        status=BroadcastStatus.DRAFT,
        message_text="Hello from the spring promo.",
        audio_url="https://audio.test/promo.mp3",
        dtmf_actions=[
            {"action": "transfer", "digit": "1", "transfer_to": "+15550001111", "destination_type": "phone"},
            {"action": "callback", "digit": "2", "delay_hours": 24},
            {"action": "dnc", "digit": "9"},
            {"action": "replay", "digit": "0"},
        ],
        calls_per_minute=60,
        max_attempts=1,
        timezone="America/New_York",
        calling_hours_start=time(0, 0),
        calling_hours_end=time(23, 59),
        bypass_calling_hours=True,
    )
    values.update(overrides)
    broadcast = Broadcast(**values)
    db.add(broadcast)
    db.commit()
    db.refresh(broadcast)
    return broadcast


def add_caller_ids(db, account_id: str = "acct-1", numbers=("+12125550100",), **overrides) -> list[CallerId]:
    rows = []
    for number in numbers:
        row = CallerId(account_id=account_id, number=number, area_code=area_code(number), **overrides)
        db.add(row)
        rows.append(row)
    db.commit()
    return rows


def add_leads(db, broadcast_id: int, numbers) -> dict:
    return queue_service.enqueue(db, broadcast_id, EnqueueRequest(phone_numbers=list(numbers)))


def lead_numbers(count: int, prefix: str = "+1415555") -> list[str]:
    return [f"{prefix}{index:04d}" for index in range(count)]
