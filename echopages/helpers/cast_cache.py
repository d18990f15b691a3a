import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from echopages.helpers.voices import VoiceAssigner
from echopages.models import CharacterInfo

logger = logging.getLogger(__name__)


@dataclass
class BookCast:
    book_id: int
    characters: list[CharacterInfo] = field(default_factory=list)
    _assigners: dict[str, VoiceAssigner] = field(default_factory=dict)

    def assigner(self, provider: str) -> VoiceAssigner:
        """One assigner per provider, so switching provider re-maps voices independently."""
        if provider not in self._assigners:
            self._assigners[provider] = VoiceAssigner(provider, self.characters)
        return self._assigners[provider]

    def add_characters(self, characters: list[CharacterInfo]):
        known = {c.name.lower() for c in self.characters}
        new = [c for c in characters if c.name.lower() not in known]
        self.characters.extend(new)
        for assigner in self._assigners.values():
            assigner.add_characters(new)


class CastCache:
    """
    Per-book characters and voice assignments shared by all chapter jobs.

    Population is single-flight: concurrent jobs for the same book wait on
    one lock while the first computes the cast. A cast with no characters
    is kept (its round-robin assignments must stay stable) but detection is
    re-run for the next chapter until it finds someone.
    """

    def __init__(self):
        self._casts: dict[int, BookCast] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    def get(self, book_id: int) -> BookCast | None:
        return self._casts.get(book_id)

    def __contains__(self, book_id: int) -> bool:
        return book_id in self._casts

    def invalidate(self, book_id: int):
        self._casts.pop(book_id, None)
        lock = self._locks.get(book_id)
        if lock is not None and not lock.locked():
            del self._locks[book_id]

    async def get_or_create(
        self,
        book_id: int,
        loader: Callable[[], Awaitable[list[CharacterInfo]]],
    ) -> BookCast:
        cast = self._casts.get(book_id)
        if cast is not None and cast.characters:
            return cast

        lock = self._locks.setdefault(book_id, asyncio.Lock())
        async with lock:
            cast = self._casts.get(book_id)
            if cast is not None and cast.characters:
                return cast

            characters = await loader()
            if cast is None:
                cast = BookCast(book_id=book_id)
                self._casts[book_id] = cast
            cast.add_characters(characters)
            logger.info("Cast for book %d: %d characters", book_id, len(cast.characters))
            return cast
