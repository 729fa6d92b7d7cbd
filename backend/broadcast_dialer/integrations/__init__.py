from dataclasses import dataclass

from ..core.config import get_settings
from .telephony import TelephonyAdapter, TwilioTelephonyAdapter, IvrInstruction, CallRequest, ProviderCallStatus
from .speech import SpeechSynthesizer, HttpSpeechSynthesizer
from .directory import (
    LeadDirectory,
    PhoneNumberDirectory,
    HttpLeadDirectory,
    HttpPhoneNumberDirectory,
    LeadRecord,
    DirectoryNumber,
)
from .calendar import CalendarService, HttpCalendarService


@dataclass
class Collaborators:
    telephony: TelephonyAdapter
    speech: SpeechSynthesizer
    leads: LeadDirectory
    calendar: CalendarService
    phone_directory: PhoneNumberDirectory


def build_collaborators(settings=None) -> Collaborators:
    settings = settings or get_settings()
    timeout = settings.collaborator_timeout_seconds
    return Collaborators(
        telephony=TwilioTelephonyAdapter(
            api_url=settings.telephony_api_url,
            account_sid=settings.telephony_account_sid,
            auth_token=settings.telephony_auth_token,
            trunk_sid=settings.telephony_trunk_sid,
            timeout=settings.telephony_timeout_seconds,
        ),
        speech=HttpSpeechSynthesizer(settings.speech_api_url, settings.speech_api_key, settings.speech_timeout_seconds),
        leads=HttpLeadDirectory(settings.lead_directory_url, settings.directory_api_key, timeout),
        calendar=HttpCalendarService(settings.calendar_api_url, settings.directory_api_key, timeout),
        phone_directory=HttpPhoneNumberDirectory(settings.phone_directory_url, settings.directory_api_key, timeout),
    )


_collaborators: Collaborators | None = None


def get_collaborators() -> Collaborators:
    """FastAPI dependency; tests replace it through ``app.dependency_overrides``."""
    global _collaborators
    if _collaborators is None:
        _collaborators = build_collaborators()
    return _collaborators


__all__ = [
    "Collaborators",
    "build_collaborators",
    "get_collaborators",
    "TelephonyAdapter",
    "IvrInstruction",
    "CallRequest",
    "ProviderCallStatus",
    "SpeechSynthesizer",
    "LeadDirectory",
    "PhoneNumberDirectory",
    "LeadRecord",
    "DirectoryNumber",
    "CalendarService",
]
