import base64
import importlib
import os
import sys
from contextlib import contextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest
from echopages.helpers.tts import (
    ElevenLabsProvider,
    GoogleProvider,
    OpenAIProvider,
    SynthesisOptions,
    TTSAuthenticationError,
    TTSInvalidRequestError,
    TTSQuotaError,
    TTSTransientError,
    error_for_status,
    estimate_cost,
    estimate_duration_seconds,
    get_provider,
    voice_settings_for,
)


def create_mock_httpx_response(status_code=200, content=b"", json_data=None):
    mock_response = MagicMock()
    mock_response.status_code = status_code
    mock_response.content = content
    mock_response.text = ""
    mock_response.json.return_value = json_data or {}
    return mock_response


@contextmanager
def reimported(*names: str):
    """Drop modules so the next import re-runs them; restore the originals afterwards."""
    originals = {name: sys.modules[name] for name in names if name in sys.modules}
    try:
        with patch.dict(sys.modules):
            for name in names:
                sys.modules.pop(name, None)
            yield
    finally:
        for name, module in originals.items():
            parent, _, child = name.rpartition(".")
            setattr(sys.modules[parent], child, module)


def mock_async_client(mock_client_class, response=None, side_effect=None):
    mock_client = AsyncMock()
    mock_client.post.return_value = response
    if side_effect is not None:
        mock_client.post.side_effect = side_effect
    mock_client_class.return_value.__aenter__.return_value = mock_client
    return mock_client


@pytest.mark.asyncio
@patch("echopages.helpers.tts.OPENAI_API_KEY", "sk-test")
@patch("echopages.helpers.tts.client")
async def test_openai_synthesize(mock_client):
    # Arrange
    mock_response = MagicMock()
    mock_response.content = b"fake_mp3"
    mock_client.audio.speech.create = AsyncMock(return_value=mock_response)

    # Act
    result = await OpenAIProvider().synthesize("  Hello world ", "onyx")

    # Assert
    mock_client.audio.speech.create.assert_awaited_once_with(
        model="tts-1",
        voice="onyx",
        input="Hello world",
        response_format="mp3",
    )
    assert result == b"fake_mp3"


@pytest.mark.asyncio
@patch("echopages.helpers.tts.OPENAI_API_KEY", "sk-test")
@patch("echopages.helpers.tts.client")
async def test_openai_substitutes_unknown_voice(mock_client):
    mock_response = MagicMock()
    mock_response.content = b"fake_mp3"
    mock_client.audio.speech.create = AsyncMock(return_value=mock_response)

    # ElevenLabs "Adam" has no exact OpenAI counterpart
    await OpenAIProvider().synthesize("Hello", "pNInz6obpgDQGcFmaJgB")
    voice = mock_client.audio.speech.create.call_args.kwargs["voice"]
    assert voice in OpenAIProvider().voices

    await OpenAIProvider().synthesize("Hello", "made-up-voice")
    assert mock_client.audio.speech.create.call_args.kwargs["voice"] == "nova"


@pytest.mark.asyncio
@patch("echopages.helpers.tts.OPENAI_API_KEY", "sk-test")
@patch("echopages.helpers.tts.client")
async def test_openai_error_mapping(mock_client):
    request = httpx.Request("POST", "https://api.openai.com/v1/audio/speech")

    mock_client.audio.speech.create = AsyncMock(
        side_effect=openai.AuthenticationError(
            "bad key", response=httpx.Response(401, request=request), body=None
        )
    )
    with pytest.raises(TTSAuthenticationError) as exc_info:
        await OpenAIProvider().synthesize("Hello", "nova")
    assert exc_info.value.provider == "openai"
    assert not exc_info.value.retryable

    mock_client.audio.speech.create = AsyncMock(
        side_effect=openai.RateLimitError(
            "slow down", response=httpx.Response(429, request=request), body=None
        )
    )
    with pytest.raises(TTSQuotaError):
        await OpenAIProvider().synthesize("Hello", "nova")

    mock_client.audio.speech.create = AsyncMock(
        side_effect=openai.APIConnectionError(request=request)
    )
    with pytest.raises(TTSTransientError) as exc_info:
        await OpenAIProvider().synthesize("Hello", "nova")
    assert exc_info.value.retryable


@pytest.mark.asyncio
@patch("echopages.helpers.tts.OPENAI_API_KEY", None)
async def test_openai_missing_key():
    with pytest.raises(TTSAuthenticationError, match="OPENAI_API_KEY"):
        await OpenAIProvider().synthesize("Hello", "nova")


@pytest.mark.asyncio
async def test_synthesize_rejects_empty_text():
    with pytest.raises(TTSInvalidRequestError):
        await OpenAIProvider().synthesize("   ", "nova")


@pytest.mark.asyncio
@patch("echopages.helpers.tts.OPENAI_API_KEY", "sk-test")
@patch("echopages.helpers.tts.client")
async def test_synthesize_empty_audio_is_transient(mock_client):
    mock_response = MagicMock()
    mock_response.content = b""
    mock_client.audio.speech.create = AsyncMock(return_value=mock_response)

    with pytest.raises(TTSTransientError, match="empty audio"):
        await OpenAIProvider().synthesize("Hello", "nova")


@pytest.mark.asyncio
@patch("echopages.helpers.tts.ELEVENLABS_API_KEY", "xi-test")
@patch("echopages.helpers.tts.httpx.AsyncClient")
async def test_elevenlabs_synthesize_uses_emotion_settings(mock_client_class):
    # Arrange
    mock_client = mock_async_client(
        mock_client_class, create_mock_httpx_response(200, content=b"fake_mp3")
    )

    # Act
    result = await ElevenLabsProvider().synthesize(
        "Run!", "21m00Tcm4TlvDq8ikWAM", SynthesisOptions(emotion_hint="excited")
    )

    # Assert
    assert result == b"fake_mp3"
    url = mock_client.post.call_args.args[0]
    kwargs = mock_client.post.call_args.kwargs
    assert url.endswith("/text-to-speech/21m00Tcm4TlvDq8ikWAM")
    assert kwargs["headers"]["xi-api-key"] == "xi-test"
    assert kwargs["json"]["voice_settings"] == {"stability": 0.3, "similarity_boost": 0.75}
    assert kwargs["json"]["model_id"] == "eleven_monolingual_v1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status_code, body, expected",
    [
        (401, {"detail": {"status": "invalid_api_key"}}, TTSAuthenticationError),
        (401, {"detail": {"status": "quota_exceeded", "message": "Quota exceeded"}}, TTSQuotaError),
        (429, {"detail": "Too many requests"}, TTSQuotaError),
        (503, {"detail": "Service unavailable"}, TTSTransientError),
        (422, {"detail": "Invalid voice settings"}, TTSInvalidRequestError),
    ],
)
@patch("echopages.helpers.tts.ELEVENLABS_API_KEY", "xi-test")
@patch("echopages.helpers.tts.httpx.AsyncClient")
async def test_elevenlabs_error_mapping(mock_client_class, status_code, body, expected):
    mock_async_client(mock_client_class, create_mock_httpx_response(status_code, json_data=body))

    with pytest.raises(expected) as exc_info:
        await ElevenLabsProvider().synthesize("Hello", "21m00Tcm4TlvDq8ikWAM")
    assert exc_info.value.provider == "elevenlabs"


@pytest.mark.asyncio
@patch("echopages.helpers.tts.ELEVENLABS_API_KEY", "xi-test")
@patch("echopages.helpers.tts.httpx.AsyncClient")
async def test_elevenlabs_network_error_is_transient(mock_client_class):
    mock_async_client(mock_client_class, side_effect=httpx.ConnectTimeout("timed out"))

    with pytest.raises(TTSTransientError):
        await ElevenLabsProvider().synthesize("Hello", "21m00Tcm4TlvDq8ikWAM")


@pytest.mark.asyncio
@patch("echopages.helpers.tts.GOOGLE_CLOUD_API_KEY", "g-test")
@patch("echopages.helpers.tts.httpx.AsyncClient")
async def test_google_synthesize(mock_client_class):
    audio = base64.b64encode(b"fake_mp3").decode()
    mock_client = mock_async_client(
        mock_client_class, create_mock_httpx_response(200, json_data={"audioContent": audio})
    )

    result = await GoogleProvider().synthesize("Hello", "en-GB-Neural2-B")

    assert result == b"fake_mp3"
    kwargs = mock_client.post.call_args.kwargs
    assert kwargs["params"] == {"key": "g-test"}
    assert kwargs["json"]["voice"] == {
        "languageCode": "en-GB",
        "name": "en-GB-Neural2-B",
        "ssmlGender": "MALE",
    }


def test_error_for_status():
    assert isinstance(error_for_status(403, "x", "google"), TTSAuthenticationError)
    assert isinstance(error_for_status(429, "x", "google"), TTSQuotaError)
    assert isinstance(error_for_status(500, "x", "google"), TTSTransientError)
    assert isinstance(error_for_status(400, "x", "google"), TTSInvalidRequestError)


def test_voice_settings_overrides():
    options = SynthesisOptions(emotion_hint="sad", stability=0.9)
    assert voice_settings_for(options) == {"stability": 0.9, "similarity_boost": 0.8}
    assert voice_settings_for(SynthesisOptions(emotion_hint="unknown")) == {
        "stability": 0.5,
        "similarity_boost": 0.75,
    }


def test_get_provider():
    assert isinstance(get_provider("elevenlabs"), ElevenLabsProvider)
    assert isinstance(get_provider(None), OpenAIProvider)
    with pytest.raises(ValueError, match="Unsupported TTS provider"):
        get_provider("acme")


def test_estimates():
    text = "word " * 300
    assert estimate_duration_seconds(text) == 120
    assert estimate_duration_seconds("one two three") == 2
    assert estimate_cost("a" * 1_000_000, "elevenlabs") == 500.0
    assert estimate_cost("a" * 2_000_000, "openai") == 30.0


@pytest.mark.asyncio
async def test_import_without_openai_key():
    """Only the OpenAI provider needs the OpenAI key; importing must not."""
    modules = (
        "echopages.config",
        "echopages.helpers.llm",
        "echopages.helpers.tts",
        "echopages.helpers.chapter_ai",
        "echopages.helpers.chapters",
    )
    with patch.dict(os.environ, {"OPENAI_API_KEY": ""}), reimported(*modules):
        tts = importlib.import_module("echopages.helpers.tts")
        chapters = importlib.import_module("echopages.helpers.chapters")

        assert tts.client is None
        with pytest.raises(tts.TTSAuthenticationError, match="OPENAI_API_KEY"):
            await tts.get_provider("openai").synthesize("Hello", "nova")
        # chapter detection degrades to the single-chapter fallback
        result = await chapters.detect_chapters("Just a few words.")
        assert [c.title for c in result] == ["Full Book"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status_code, body, expected",
    [
        (502, ["upstream", "unavailable"], TTSTransientError),
        (400, "bad request", TTSInvalidRequestError),
    ],
)
@patch("echopages.helpers.tts.ELEVENLABS_API_KEY", "xi-test")
@patch("echopages.helpers.tts.httpx.AsyncClient")
async def test_elevenlabs_non_object_error_body(mock_client_class, status_code, body, expected):
    mock_async_client(mock_client_class, create_mock_httpx_response(status_code, json_data=body))

    with pytest.raises(expected):
        await ElevenLabsProvider().synthesize("Hello", "21m00Tcm4TlvDq8ikWAM")


@pytest.mark.asyncio
@patch("echopages.helpers.tts.GOOGLE_CLOUD_API_KEY", "g-test")
@patch("echopages.helpers.tts.httpx.AsyncClient")
async def test_google_malformed_success_body(mock_client_class):
    response = create_mock_httpx_response(200, json_data=["audioContent"])
    mock_async_client(mock_client_class, response)

    with pytest.raises(TTSTransientError):
        await GoogleProvider().synthesize("Hello", "en-GB-Neural2-B")

    response.json.side_effect = ValueError("Expecting value")
    with pytest.raises(TTSTransientError, match="malformed"):
        await GoogleProvider().synthesize("Hello", "en-GB-Neural2-B")
