"""Telephony provider adapter.

The dialer only talks to ``TelephonyAdapter``; ``TwilioTelephonyAdapter``
speaks the Twilio-compatible REST API and renders IVR instructions as TwiML.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from xml.etree import ElementTree

from ..core.errors import ProviderError
from . import transport


# provider statuses that mean the call is still up
LIVE_CALL_STATUSES = frozenset({"queued", "initiated", "ringing", "in-progress", "answered"})


@dataclass
class CallRequest:
    to_number: str
    from_number: str
    answer_url: str
    status_callback_url: str
    amd_callback_url: str | None = None
    via_trunk: bool = False


@dataclass
class ProviderCallStatus:
    call_id: str
    status: str
    duration: int | None = None
    answered_by: str | None = None
    error: str | None = None

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_CALL_STATUSES


@dataclass
class IvrInstruction:
    """What the caller hears next, independent of the provider's markup."""

    play_url: str | None = None
    say_text: str | None = None
    voice_id: str | None = None
    gather_action_url: str | None = None
    gather_timeout_seconds: int = 8
    transfer_to: str | None = None
    notice: str | None = None
    hangup: bool = False
    extra: dict = field(default_factory=dict)


class TelephonyAdapter(ABC):
    @abstractmethod
    def place_call(self, call: CallRequest) -> str:
        """Start an outbound call and return the provider call id."""

    @abstractmethod
    def get_call_status(self, call_id: str) -> ProviderCallStatus: ...

    @abstractmethod
    def hangup(self, call_id: str) -> None: ...

    @abstractmethod
    def render_instruction(self, instruction: IvrInstruction) -> tuple[str, str]:
        """Return ``(body, media_type)`` for a webhook response."""


class TwilioTelephonyAdapter(TelephonyAdapter):
    def __init__(self, api_url: str, account_sid: str, auth_token: str, trunk_sid: str = "", timeout: float = 10.0):
        self.api_url = api_url.rstrip("/")
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.trunk_sid = trunk_sid
        self.timeout = timeout

    def _calls_url(self, call_id: str | None = None) -> str:
        base = f"{self.api_url}/Accounts/{self.account_sid}/Calls"
        return f"{base}/{call_id}.json" if call_id else f"{base}.json"

    def _headers(self) -> dict:
        return {"Authorization": transport.basic_auth(self.account_sid, self.auth_token)}

    def place_call(self, call: CallRequest) -> str:
        form = [
            ("To", call.to_number),
            ("From", call.from_number),
            ("Url", call.answer_url),
            ("StatusCallback", call.status_callback_url),
            ("StatusCallbackMethod", "POST"),
        ]
        for event in ("initiated", "ringing", "answered", "completed"):
            form.append(("StatusCallbackEvent", event))
        if call.amd_callback_url:
            form += [
                ("MachineDetection", "DetectMessageEnd"),
                ("AsyncAmd", "true"),
                ("AsyncAmdStatusCallback", call.amd_callback_url),
            ]
        if call.via_trunk:
            if not self.trunk_sid:
                raise ProviderError("Trunk routing requested but no trunk is configured")
            form.append(("Byoc", self.trunk_sid))

        payload = transport.send("POST", self._calls_url(), timeout=self.timeout, form_body=form, headers=self._headers())
        call_id = payload.get("sid")
        if not call_id:
            raise ProviderError("Provider accepted the call but returned no call id")
        return call_id

    def get_call_status(self, call_id: str) -> ProviderCallStatus:
        payload = transport.send("GET", self._calls_url(call_id), timeout=self.timeout, headers=self._headers())
        duration = payload.get("duration")
        return ProviderCallStatus(
            call_id=call_id,
            status=payload.get("status") or "unknown",
            duration=int(duration) if duration not in (None, "") else None,
            answered_by=payload.get("answered_by"),
            error=payload.get("error_message") or (str(payload["error_code"]) if payload.get("error_code") else None),
        )

    def hangup(self, call_id: str) -> None:
        transport.send(
            "POST",
            self._calls_url(call_id),
            timeout=self.timeout,
            form_body={"Status": "completed"},
            headers=self._headers(),
        )

    def render_instruction(self, instruction: IvrInstruction) -> tuple[str, str]:
        root = ElementTree.Element("Response")
        if instruction.notice:
            ElementTree.SubElement(root, "Say").text = instruction.notice

        if instruction.gather_action_url:
            target = ElementTree.SubElement(
                root,
                "Gather",
                {
                    "numDigits": "1",
                    "action": instruction.gather_action_url,
                    "method": "POST",
                    "timeout": str(instruction.gather_timeout_seconds),
                },
            )
        else:
            target = root
        _append_message(target, instruction)

        if instruction.transfer_to:
            ElementTree.SubElement(root, "Dial").text = instruction.transfer_to
        if instruction.hangup:
            ElementTree.SubElement(root, "Hangup")
        body = ElementTree.tostring(root, encoding="unicode")
        return '<?xml version="1.0" encoding="UTF-8"?>' + body, "application/xml"


def _append_message(parent: ElementTree.Element, instruction: IvrInstruction) -> None:
    if instruction.play_url:
        ElementTree.SubElement(parent, "Play").text = instruction.play_url
    elif instruction.say_text:
        attrs = {"voice": instruction.voice_id} if instruction.voice_id else {}
        ElementTree.SubElement(parent, "Say", attrs).text = instruction.say_text
