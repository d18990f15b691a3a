import base64
import logging
import math
from dataclasses import dataclass

import httpx
import openai
from openai import AsyncOpenAI
from echopages.config import (
    ELEVENLABS_API_KEY,
    GOOGLE_CLOUD_API_KEY,
    OPENAI_API_KEY,
    TTS_REQUEST_TIMEOUT,
)
from echopages.helpers.voices import (
    DEFAULT_NARRATOR,
    get_voice_by_voice_id,
    known_voice_ids,
    translate_voice,
)

logger = logging.getLogger(__name__)

# Created on first use by get_openai_client()
client: AsyncOpenAI | None = None

ELEVENLABS_API_URL = "https://api.elevenlabs.io/v1"
GOOGLE_TTS_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"


class TTSError(Exception):
    """Base class for synthesis failures."""

    retryable = True

    def __init__(self, message: str, provider: str):
        super().__init__(message)
        self.provider = provider


class TTSAuthenticationError(TTSError):
    retryable = False


class TTSQuotaError(TTSError):
    """Rate limit or exhausted quota."""


class TTSTransientError(TTSError):
    """Network failure, timeout or server-side error."""


class TTSInvalidRequestError(TTSError):
    retryable = False


def error_for_status(status_code: int, message: str, provider: str) -> TTSError:
    if status_code in (401, 403):
        return TTSAuthenticationError(message, provider)
    if status_code == 429:
        return TTSQuotaError(message, provider)
    if status_code >= 500:
        return TTSTransientError(message, provider)
    return TTSInvalidRequestError(message, provider)


@dataclass(frozen=True)
class SynthesisOptions:
    emotion_hint: str | None = None
    stability: float | None = None
    similarity_boost: float | None = None
    model: str | None = None


class SpeechProvider:
    """Uniform synthesis interface; subclasses implement `_synthesize`."""

    name = ""
    cost_per_million_chars = 0.0

    @property
    def voices(self) -> frozenset[str]:
        return known_voice_ids(self.name)

    @property
    def default_voice(self) -> str:
        return DEFAULT_NARRATOR[self.name]

    def resolve_voice(self, voice_id: str | None) -> str:
        """Return a voice this provider accepts, substituting rather than failing."""
        if voice_id and voice_id in self.voices:
            return voice_id
        substitute = translate_voice(voice_id, self.name) if voice_id else self.default_voice
        if substitute not in self.voices:
            substitute = self.default_voice
        logger.warning("[%s] Unknown voice %r, using %s", self.name, voice_id, substitute)
        return substitute

    async def synthesize(
        self,
        text: str,
        voice_id: str | None,
        options: SynthesisOptions | None = None,
    ) -> bytes:
        text = (text or "").strip()
        if not text:
            raise TTSInvalidRequestError("Cannot synthesize empty text", self.name)

        voice = self.resolve_voice(voice_id)
        audio = await self._synthesize(text, voice, options or SynthesisOptions())
        if not audio:
            raise TTSTransientError(f"{self.name} returned empty audio data", self.name)

        logger.debug("[%s] Generated %d bytes with voice %s", self.name, len(audio), voice)
        return audio

    async def _synthesize(self, text: str, voice: str, options: SynthesisOptions) -> bytes:
        raise NotImplementedError

    def estimate_cost(self, text: str) -> float:
        return len(text) / 1_000_000 * self.cost_per_million_chars


def get_openai_client() -> AsyncOpenAI:
    global client
    if client is None:
        client = AsyncOpenAI(api_key=OPENAI_API_KEY, timeout=TTS_REQUEST_TIMEOUT)
    return client


class OpenAIProvider(SpeechProvider):
    """Standard provider: fixed set of nine voices, no tuning parameters."""

    name = "openai"
    cost_per_million_chars = 15.0

    async def _synthesize(self, text: str, voice: str, options: SynthesisOptions) -> bytes:
        if not OPENAI_API_KEY:
            raise TTSAuthenticationError("OPENAI_API_KEY is not set", self.name)
        openai_client = get_openai_client()
        try:
            response = await openai_client.audio.speech.create(
                model=options.model or "tts-1",
                voice=voice,
                input=text,
                response_format="mp3",
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise TTSAuthenticationError(f"OpenAI TTS failed: {e}", self.name) from e
        except openai.RateLimitError as e:
            raise TTSQuotaError(f"OpenAI TTS failed: {e}", self.name) from e
        except (openai.APITimeoutError, openai.APIConnectionError) as e:
            raise TTSTransientError(f"OpenAI TTS failed: {e}", self.name) from e
        except openai.APIStatusError as e:
            raise error_for_status(e.status_code, f"OpenAI TTS failed: {e}", self.name) from e

        return response.content


# ElevenLabs voice settings per emotion: (stability, similarity_boost)
EMOTION_SETTINGS = {
    "joyful": (0.4, 0.8),
    "excited": (0.3, 0.75),
    "angry": (0.35, 0.7),
    "fearful": (0.4, 0.75),
    "tense": (0.35, 0.8),
    "sad": (0.45, 0.8),
    "romantic": (0.5, 0.85),
    "mysterious": (0.4, 0.75),
    "contemplative": (0.55, 0.8),
    "warm": (0.5, 0.85),
    "cold": (0.6, 0.8),
    "neutral": (0.5, 0.75),
}


def voice_settings_for(options: SynthesisOptions) -> dict:
    stability, similarity_boost = EMOTION_SETTINGS.get(
        options.emotion_hint or "neutral", EMOTION_SETTINGS["neutral"]
    )
    if options.stability is not None:
        stability = options.stability
    if options.similarity_boost is not None:
        similarity_boost = options.similarity_boost
    return {"stability": stability, "similarity_boost": similarity_boost}


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if not isinstance(body, dict):
        return str(body)[:200]
    detail = body.get("detail") or body.get("error")
    if isinstance(detail, dict):
        return str(detail.get("message") or detail.get("status") or detail)
    return str(detail)


class ElevenLabsProvider(SpeechProvider):
    """Premium expressive provider; stability/similarity follow the emotion hint."""

    name = "elevenlabs"
    cost_per_million_chars = 500.0

    async def _synthesize(self, text: str, voice: str, options: SynthesisOptions) -> bytes:
        if not ELEVENLABS_API_KEY:
            raise TTSAuthenticationError("ELEVENLABS_API_KEY is not set", self.name)

        payload = {
            "text": text,
            "model_id": options.model or "eleven_monolingual_v1",
            "voice_settings": voice_settings_for(options),
        }
        headers = {
            "Accept": "audio/mpeg",
            "Content-Type": "application/json",
            "xi-api-key": ELEVENLABS_API_KEY,
        }
        try:
            async with httpx.AsyncClient(timeout=TTS_REQUEST_TIMEOUT) as http:
                response = await http.post(
                    f"{ELEVENLABS_API_URL}/text-to-speech/{voice}", json=payload, headers=headers
                )
        except httpx.RequestError as e:
            raise TTSTransientError(f"ElevenLabs TTS failed: {e}", self.name) from e

        if response.status_code >= 400:
            message = f"ElevenLabs TTS failed ({response.status_code}): {_error_detail(response)}"
            if "quota" in message.lower():
                raise TTSQuotaError(message, self.name)
            raise error_for_status(response.status_code, message, self.name)

        return response.content


class GoogleProvider(SpeechProvider):
    name = "google"
    cost_per_million_chars = 16.0

    async def _synthesize(self, text: str, voice: str, options: SynthesisOptions) -> bytes:
        if not GOOGLE_CLOUD_API_KEY:
            raise TTSAuthenticationError("GOOGLE_CLOUD_API_KEY is not set", self.name)

        option = get_voice_by_voice_id(voice)
        payload = {
            "input": {"text": text},
            "voice": {
                # 'en-US-Neural2-C' -> 'en-US'
                "languageCode": "-".join(voice.split("-")[:2]),
                "name": voice,
                "ssmlGender": "FEMALE" if option and option.gender == "female" else "MALE",
            },
            "audioConfig": {"audioEncoding": "MP3", "speakingRate": 1.0, "pitch": 0},
        }
        try:
            async with httpx.AsyncClient(timeout=TTS_REQUEST_TIMEOUT) as http:
                response = await http.post(
                    GOOGLE_TTS_URL, params={"key": GOOGLE_CLOUD_API_KEY}, json=payload
                )
        except httpx.RequestError as e:
            raise TTSTransientError(f"Google Cloud TTS failed: {e}", self.name) from e

        if response.status_code >= 400:
            message = f"Google Cloud TTS failed ({response.status_code}): {_error_detail(response)}"
            raise error_for_status(response.status_code, message, self.name)

        try:
            body = response.json()
            audio_content = body.get("audioContent") if isinstance(body, dict) else None
            audio = base64.b64decode(audio_content) if audio_content else b""
        except (ValueError, TypeError) as e:
            raise TTSTransientError(f"Google Cloud TTS returned malformed audio: {e}", self.name) from e
        if not audio:
            raise TTSTransientError("Google Cloud TTS returned no audio content", self.name)
        return audio


PROVIDERS: dict[str, type[SpeechProvider]] = {
    "openai": OpenAIProvider,
    "elevenlabs": ElevenLabsProvider,
    "google": GoogleProvider,
}


def get_provider(name: str | None) -> SpeechProvider:
    try:
        return PROVIDERS[name or "openai"]()
    except KeyError:
        raise ValueError(f"Unsupported TTS provider: {name}") from None


def estimate_cost(text: str, provider: str) -> float:
    """Dollar cost of synthesizing `text` with `provider`."""
    return get_provider(provider).estimate_cost(text)


def estimate_duration_seconds(text: str, words_per_minute: int = 150) -> int:
    words = len(text.split())
    return math.ceil(words / words_per_minute * 60)
