from abc import ABC, abstractmethod

from ..core.errors import ProviderError
from . import transport


class SpeechSynthesizer(ABC):
    @abstractmethod
    def synthesize(self, text: str, voice_id: str) -> str:
        """Render ``text`` and return a publicly reachable audio URL."""


class HttpSpeechSynthesizer(SpeechSynthesizer):
    def __init__(self, api_url: str, api_key: str = "", timeout: float = 30.0):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout

    def synthesize(self, text: str, voice_id: str) -> str:
        if not self.api_url:
            raise ProviderError("Speech synthesis is not configured")
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        payload = transport.send(
            "POST",
            self.api_url,
            timeout=self.timeout,
            json_body={"text": text, "voice_id": voice_id},
            headers=headers,
        )
        audio_url = payload.get("audio_url")
        if not audio_url:
            raise ProviderError("Speech synthesis returned no audio_url")
        return audio_url
