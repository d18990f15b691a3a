from dataclasses import asdict

from fastapi import APIRouter, HTTPException
from echopages.helpers.voices import NARRATOR_VOICES, voices_for_provider
from echopages.schemas.api_book import VoiceInfo

router = APIRouter(prefix="/voices", tags=["voices"])


@router.get(
    "",
    response_model=list[VoiceInfo],
    status_code=200,
    responses={400: {"description": "Unsupported provider"}},
)
async def get_voices(provider: str | None = None):
    """
    Get the narrator voice catalog, optionally for a single provider.
    """
    if provider is None:
        voices = NARRATOR_VOICES
    else:
        voices = voices_for_provider(provider)
        if not voices:
            raise HTTPException(status_code=400, detail=f"Unsupported TTS provider: {provider}")
    return [asdict(voice) for voice in voices]
