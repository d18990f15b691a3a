"""Voice catalog and per-book voice assignment.

Narrator voices are chosen by the user from the catalog; character voices are
picked from small curated pools per provider by gender and age bracket. A
voice chosen for one provider is translated to the closest-sounding voice of
another provider by gender, accent and style keywords.
"""

import logging
import re
from dataclasses import dataclass

from echopages.models import DIALOGUE, NARRATOR, CharacterInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoiceOption:
    id: str
    voice_id: str
    name: str
    gender: str
    accent: str
    style: str
    provider: str

    @property
    def style_keywords(self) -> set[str]:
        return set(re.findall(r"[a-z]+", self.style.lower()))


def _voice(id, voice_id, name, gender, accent, style, provider) -> VoiceOption:
    return VoiceOption(id, voice_id, name, gender, accent, style, provider)


ELEVENLABS_VOICES = [
    _voice("rachel", "21m00Tcm4TlvDq8ikWAM", "Rachel", "female", "American", "Storytelling, warm, engaging", "elevenlabs"),
    _voice("charlotte", "XB0fDUnXU5powFXDhCwa", "Charlotte", "female", "British", "Refined, articulate, classic", "elevenlabs"),
    _voice("bella", "EXAVITQu4vr4xnSDxMaL", "Bella", "female", "American", "Friendly, relatable, youthful", "elevenlabs"),
    _voice("elli", "MF3mGyEYCl7XYWbV9V6O", "Elli", "female", "American", "Professional, clear, neutral", "elevenlabs"),
    _voice("grace", "oWAxZDx7w5VEj9dCyTzz", "Grace", "female", "American", "Warm, maternal, soothing", "elevenlabs"),
    _voice("domi", "AZnzlk1XvdvUeBnXmlld", "Domi", "female", "American", "Strong, assertive, dynamic", "elevenlabs"),
    _voice("serena", "pMsXgVXv3BLzUgSXRplE", "Serena", "female", "American", "Calming, gentle, intimate", "elevenlabs"),
    _voice("adam", "pNInz6obpgDQGcFmaJgB", "Adam", "male", "American", "Authoritative, clear, trustworthy", "elevenlabs"),
    _voice("josh", "TxGEqnHWrfWFTfGW9XjX", "Josh", "male", "American", "Narrator, documentary style", "elevenlabs"),
    _voice("arnold", "VR6AewLTigWG4xSOukaG", "Arnold", "male", "American", "Dramatic, powerful, resonant", "elevenlabs"),
    _voice("sam", "yoZ06aMxZJJ28mfd3POQ", "Sam", "male", "American", "Casual, friendly, conversational", "elevenlabs"),
    _voice("callum", "N2lVS1w4EtoT3dr4eOWO", "Callum", "male", "British", "Wise, gentle, storytelling", "elevenlabs"),
    _voice("daniel", "onwK4e9ZLuTAKqWW03F9", "Daniel", "male", "British", "Distinguished, articulate, classic", "elevenlabs"),
    _voice("clyde", "2EiwWnXFnvU5JabPnv8n", "Clyde", "male", "American", "Rich, smooth, baritone", "elevenlabs"),
    _voice("fin", "D38z5RcWu1voky8WS1ja", "Fin", "male", "Irish", "Warm, friendly, engaging", "elevenlabs"),
]

OPENAI_VOICES = [
    _voice("nova-openai", "nova", "Nova", "female", "American", "Warm, expressive", "openai"),
    _voice("shimmer-openai", "shimmer", "Shimmer", "female", "American", "Soft, gentle", "openai"),
    _voice("coral-openai", "coral", "Coral", "female", "American", "Warm, friendly", "openai"),
    _voice("onyx-openai", "onyx", "Onyx", "male", "American", "Deep, authoritative", "openai"),
    _voice("echo-openai", "echo", "Echo", "male", "American", "Deep, clear", "openai"),
    _voice("ash-openai", "ash", "Ash", "male", "American", "Clear, professional", "openai"),
    _voice("sage-openai", "sage", "Sage", "male", "American", "Wise, calm", "openai"),
    _voice("fable-openai", "fable", "Fable", "male", "British", "Narrator, storytelling", "openai"),
    _voice("alloy-openai", "alloy", "Alloy", "male", "American", "Neutral, versatile", "openai"),
]

GOOGLE_VOICES = [
    _voice("aria-google", "en-US-Neural2-F", "Aria", "female", "American", "Friendly, expressive", "google"),
    _voice("luna-google", "en-US-Neural2-E", "Luna", "female", "American", "Soft, calm", "google"),
    _voice("clara-google", "en-US-Neural2-G", "Clara", "female", "American", "Clear, natural", "google"),
    _voice("olivia-google", "en-US-Neural2-H", "Olivia", "female", "American", "Warm, engaging", "google"),
    _voice("emma-google", "en-GB-Neural2-A", "Emma", "female", "British", "Elegant, refined", "google"),
    _voice("sophie-google", "en-GB-Neural2-C", "Sophie", "female", "British", "Soft, sophisticated", "google"),
    _voice("studio-f-google", "en-US-Studio-O", "Studio F", "female", "American", "Studio quality, narrator", "google"),
    _voice("james-google", "en-US-Neural2-A", "James", "male", "American", "Deep, authoritative", "google"),
    _voice("noah-google", "en-US-Neural2-D", "Noah", "male", "American", "Clear, professional", "google"),
    _voice("ethan-google", "en-US-Neural2-I", "Ethan", "male", "American", "Warm, friendly", "google"),
    _voice("liam-google", "en-US-Neural2-J", "Liam", "male", "American", "Calm, steady", "google"),
    _voice("oliver-google", "en-GB-Neural2-B", "Oliver", "male", "British", "Distinguished, narrator", "google"),
    _voice("henry-google", "en-GB-Neural2-D", "Henry", "male", "British", "Warm, storytelling", "google"),
    _voice("studio-m-google", "en-US-Studio-Q", "Studio M", "male", "American", "Studio quality, narrator", "google"),
]

NARRATOR_VOICES = ELEVENLABS_VOICES + OPENAI_VOICES + GOOGLE_VOICES

DEFAULT_NARRATOR = {
    "openai": "nova",
    "elevenlabs": "21m00Tcm4TlvDq8ikWAM",
    "google": "en-US-Neural2-F",
}

# Character pools: (gender, age bracket) -> voices, preferred first
CHARACTER_POOLS = {
    "openai": {
        ("male", "young"): ["echo", "ash"],
        ("male", "adult"): ["echo", "onyx", "ash", "fable"],
        ("male", "elderly"): ["sage", "fable"],
        ("female", "young"): ["coral", "nova"],
        ("female", "adult"): ["nova", "coral", "shimmer"],
        ("female", "elderly"): ["shimmer"],
    },
    "google": {
        ("male", "young"): ["en-US-Neural2-I"],
        ("male", "adult"): ["en-US-Neural2-D", "en-US-Neural2-A", "en-GB-Neural2-B"],
        ("male", "elderly"): ["en-US-Neural2-J", "en-GB-Neural2-D"],
        ("female", "young"): ["en-US-Neural2-G"],
        ("female", "adult"): ["en-US-Neural2-F", "en-US-Neural2-H", "en-GB-Neural2-A"],
        ("female", "elderly"): ["en-US-Neural2-E", "en-GB-Neural2-C"],
    },
    "elevenlabs": {
        ("male", "child"): ["iP95p4xoKVk53GoZ742B"],
        ("male", "young"): ["SOYHLrjzK2X1ezoPC6cr", "TX3LPaxmHKxFdv7VOQHJ"],
        ("male", "adult"): ["VR6AewLTigWG4xSOukaG", "pNInz6obpgDQGcFmaJgB"],
        ("male", "elderly"): ["N2lVS1w4EtoT3dr4eOWO"],
        ("female", "child"): ["jsCqWAovK2LkecY7zXl4"],
        ("female", "young"): ["EXAVITQu4vr4xnSDxMaL", "jBpfuIE2acCO8z3wKNLl"],
        ("female", "adult"): ["XB0fDUnXU5powFXDhCwa", "oWAxZDx7w5VEj9dCyTzz"],
        ("female", "elderly"): ["pqHfZKP75CvOlQylNhV4"],
    },
}

# Adult voices picked by personality keyword before falling back to the pool
PERSONALITY_VOICES = {
    "openai": {
        "male": [(("authoritative", "deep"), "onyx"), (("warm",), "fable"), (("energetic",), "ash")],
        "female": [(("warm", "expressive"), "nova"), (("soft", "gentle"), "shimmer"), (("bright", "energetic"), "coral")],
    },
    "google": {
        "male": [(("authoritative", "deep"), "en-US-Neural2-A"), (("warm",), "en-US-Neural2-I")],
        "female": [(("warm", "expressive"), "en-US-Neural2-F"), (("soft", "gentle"), "en-US-Neural2-E")],
    },
    "elevenlabs": {
        "male": [(("authoritative", "deep", "commanding"), "VR6AewLTigWG4xSOukaG")],
        "female": [(("gentle", "mature"), "oWAxZDx7w5VEj9dCyTzz")],
    },
}

# Used for characters with no demographic hint
ROTATIONS = {
    "openai": ["nova", "shimmer", "onyx", "echo", "fable", "coral", "ash", "sage", "alloy"],
    "google": [
        "en-US-Neural2-F", "en-US-Neural2-D", "en-US-Neural2-E", "en-US-Neural2-A",
        "en-GB-Neural2-A", "en-GB-Neural2-B", "en-US-Neural2-G", "en-US-Neural2-I",
    ],
    "elevenlabs": [
        "EXAVITQu4vr4xnSDxMaL", "SOYHLrjzK2X1ezoPC6cr", "XB0fDUnXU5powFXDhCwa", "VR6AewLTigWG4xSOukaG",
        "jBpfuIE2acCO8z3wKNLl", "TX3LPaxmHKxFdv7VOQHJ", "oWAxZDx7w5VEj9dCyTzz", "pNInz6obpgDQGcFmaJgB",
    ],
}

EXTRA_VOICE_METADATA = {
    # ElevenLabs pool voices that are not offered as narrators
    "jBpfuIE2acCO8z3wKNLl": ("female", "American", "Animated, bright"),
    "pqHfZKP75CvOlQylNhV4": ("female", "British", "Wise, soft"),
    "SOYHLrjzK2X1ezoPC6cr": ("male", "American", "Young, energetic"),
    "TX3LPaxmHKxFdv7VOQHJ": ("male", "American", "Casual, friendly"),
    "jsCqWAovK2LkecY7zXl4": ("female", "British", "Young girl"),
    "iP95p4xoKVk53GoZ742B": ("male", "American", "Young boy"),
}


def get_voice_by_id(option_id: str) -> VoiceOption | None:
    return next((v for v in NARRATOR_VOICES if v.id == option_id), None)


def get_voice_by_voice_id(voice_id: str) -> VoiceOption | None:
    return next((v for v in NARRATOR_VOICES if v.voice_id == voice_id), None)


def voices_for_provider(provider: str) -> list[VoiceOption]:
    return [v for v in NARRATOR_VOICES if v.provider == provider]


def known_voice_ids(provider: str) -> frozenset[str]:
    ids = {v.voice_id for v in voices_for_provider(provider)}
    for pool in CHARACTER_POOLS.get(provider, {}).values():
        ids.update(pool)
    ids.update(ROTATIONS.get(provider, []))
    return frozenset(ids)


def _describe(voice_id: str) -> VoiceOption | None:
    option = get_voice_by_voice_id(voice_id) or get_voice_by_id(voice_id)
    if option is not None:
        return option
    if voice_id in EXTRA_VOICE_METADATA:
        gender, accent, style = EXTRA_VOICE_METADATA[voice_id]
        return VoiceOption(voice_id, voice_id, voice_id, gender, accent, style, "elevenlabs")
    return None


def translate_voice(voice: str, provider: str) -> str:
    """
    Map a catalog id or voice ID to the closest voice of `provider`.

    Gender must match; accent and shared style keywords ("warm", "deep", ...)
    rank the candidates. Unknown voices map to the provider default.
    """
    if voice in known_voice_ids(provider):
        return voice

    source = _describe(voice)
    if source is None:
        return DEFAULT_NARRATOR[provider]
    if source.provider == provider:
        return source.voice_id

    candidates = [v for v in voices_for_provider(provider) if v.gender == source.gender]
    if not candidates:
        return DEFAULT_NARRATOR[provider]

    def score(candidate: VoiceOption) -> int:
        accent = 2 if candidate.accent.split()[0] == source.accent.split()[0] else 0
        return accent + len(candidate.style_keywords & source.style_keywords)

    # max() keeps catalog order on ties
    return max(candidates, key=score).voice_id


def narrator_voice_for(provider: str, narrator_voice: str | None) -> str:
    if not narrator_voice:
        return DEFAULT_NARRATOR[provider]
    return translate_voice(narrator_voice, provider)


def is_narration(speaker: str | None) -> bool:
    if speaker is None:
        return True
    label = speaker.strip().lower()
    return label in ("", NARRATOR, DIALOGUE, "null", "none", "undefined")


class VoiceAssigner:
    """
    Character -> voice map for one book and one provider.

    Assignments are made in the order characters are first seen and never
    change afterwards, so the same character list always yields the same map.
    """

    def __init__(self, provider: str, characters: list[CharacterInfo] | None = None):
        if provider not in CHARACTER_POOLS:
            raise ValueError(f"Unsupported TTS provider: {provider}")
        self.provider = provider
        self._characters: dict[str, CharacterInfo] = {}
        self._assignments: dict[str, str] = {}
        self.add_characters(characters or [])

    def add_characters(self, characters: list[CharacterInfo]):
        """Register newly detected characters; existing assignments are kept."""
        for character in characters:
            self._characters.setdefault(character.name.lower(), character)
        for character in characters:
            self.voice_for_character(character.name)

    @property
    def assignments(self) -> dict[str, str]:
        return dict(self._assignments)

    def voice_for(self, speaker: str | None, narrator_voice: str | None) -> str:
        """Resolve a chunk's speaker label to a concrete voice ID."""
        if is_narration(speaker):
            return narrator_voice_for(self.provider, narrator_voice)
        return self.voice_for_character(speaker)

    def voice_for_character(self, name: str) -> str:
        key = name.strip().lower()
        if key in self._assignments:
            return self._assignments[key]

        info = self._characters.get(key)
        voice_id = self._pick_by_demographics(info) if info else self._pick_round_robin()
        self._assignments[key] = voice_id
        logger.info("Assigned voice for %r: %s", name, voice_id)
        return voice_id

    def _usage(self, voice_id: str) -> int:
        return sum(1 for assigned in self._assignments.values() if assigned == voice_id)

    def _pick_by_demographics(self, info: CharacterInfo) -> str:
        gender = info.gender
        if gender == "unknown":
            gender = "female" if len(self._assignments) % 2 == 0 else "male"
        age = "adult" if info.age == "unknown" else info.age

        pools = CHARACTER_POOLS[self.provider]
        if (gender, age) not in pools:
            age = "young" if age == "child" else "adult"

        if age == "adult" and info.personality:
            personality = info.personality.lower()
            for keywords, voice_id in PERSONALITY_VOICES[self.provider][gender]:
                if any(word in personality for word in keywords):
                    return voice_id

        pool = pools[(gender, age)]
        return min(pool, key=self._usage)

    def _pick_round_robin(self) -> str:
        rotation = ROTATIONS[self.provider]
        return rotation[len(self._assignments) % len(rotation)]
