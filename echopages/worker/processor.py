import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from echopages.config import CHUNK_BATCH_SIZE, CHUNK_STALE_SECONDS
from echopages.database_con import get_session
from echopages.db_models import AudioChunk, Book, Chapter, utc_now
from echopages.helpers.cast_cache import BookCast, CastCache
from echopages.helpers.characters import detect_characters
from echopages.helpers.chunking import structure_chapter_text
from echopages.helpers import storage
from echopages.helpers.retry import RetryPolicy
from echopages.helpers.tts import (
    SpeechProvider,
    SynthesisOptions,
    estimate_duration_seconds,
    get_provider,
)

logger = logging.getLogger(__name__)


class ChapterNotFoundError(Exception):
    pass


class ChapterEmptyError(Exception):
    pass


@dataclass
class ChapterSummary:
    chapter_id: int
    book_id: int | None = None
    total: int = 0
    done: int = 0
    error: int = 0
    pending: int = 0

    @property
    def complete(self) -> bool:
        return self.total > 0 and self.done == self.total


@dataclass
class ChapterContext:
    chapter_id: int
    book_id: int
    text: str
    provider: str
    narrator_voice: str | None


class ChunkJobProcessor:
    """
    Turns one chapter into audio, chunk by chunk.

    Chunk rows are created on the first pass only. Any later pass for the
    same chapter works on the chunks that are not `done` yet, so a redelivered
    job never redoes finished audio. A chunk in `processing` is only taken over
    once it has not been touched for `stale_after` seconds.
    """

    def __init__(
        self,
        cast_cache: CastCache | None = None,
        retry_policy: RetryPolicy | None = None,
        batch_size: int = CHUNK_BATCH_SIZE,
        provider_factory: Callable[[str], SpeechProvider] = get_provider,
        stale_after: float = CHUNK_STALE_SECONDS,
    ):
        self.cast_cache = cast_cache or CastCache()
        self.retry_policy = retry_policy or RetryPolicy()
        self.batch_size = batch_size
        self.provider_factory = provider_factory
        self.stale_after = stale_after

    async def process(
        self,
        chapter_id: int,
        user_id: str | None = None,
        heartbeat: Callable[[], object] | None = None,
    ) -> ChapterSummary:
        """Run one chapter job. `heartbeat` is called after each unit of progress."""
        beat = heartbeat or (lambda: None)
        context = self._load_context(chapter_id)
        logger.info(
            "Processing chapter %d of book %d with %s (user %s)",
            chapter_id, context.book_id, context.provider, user_id,
        )

        chunks = self._load_chunks(chapter_id)
        cast = None
        if not chunks:
            if not context.text.strip():
                raise ChapterEmptyError(f"Chapter {chapter_id} has no text")
            cast = await self._load_cast(context)
            chunks = await self._create_chunks(context, cast)
            beat()
        else:
            logger.info("Resuming chapter %d: %d existing chunks", chapter_id, len(chunks))

        todo = [chunk for chunk in chunks if chunk.status != "done"]
        if todo:
            cast = cast or await self._load_cast(context)
            provider = self.provider_factory(context.provider)
            assigner = cast.assigner(provider.name)
            for start in range(0, len(todo), self.batch_size):
                batch = todo[start:start + self.batch_size]
                await asyncio.gather(
                    *(
                        self._process_chunk(
                            chunk, provider, assigner.voice_for(chunk.voice, context.narrator_voice)
                        )
                        for chunk in batch
                    )
                )
                beat()

        summary = self.summarize(chapter_id)
        summary.book_id = context.book_id
        logger.info(
            "Chapter %d: %d/%d done, %d error, %d pending",
            chapter_id, summary.done, summary.total, summary.error, summary.pending,
        )
        return summary

    def _load_context(self, chapter_id: int) -> ChapterContext:
        with get_session() as session:
            chapter = session.get(Chapter, chapter_id)
            if not chapter:
                raise ChapterNotFoundError(f"Chapter {chapter_id} not found")
            book = session.get(Book, chapter.book_id)
            if not book:
                raise ChapterNotFoundError(f"Book {chapter.book_id} of chapter {chapter_id} not found")
            return ChapterContext(
                chapter_id=chapter.id,
                book_id=book.id,
                text=chapter.text_content or "",
                provider=book.tts_provider,
                narrator_voice=book.narrator_voice,
            )

    def _load_chunks(self, chapter_id: int) -> list[AudioChunk]:
        with get_session() as session:
            chunks = session.exec(
                select(AudioChunk).where(AudioChunk.chapter_id == chapter_id).order_by(AudioChunk.idx)
            ).all()
            return [AudioChunk(**chunk.model_dump()) for chunk in chunks]

    async def _load_cast(self, context: ChapterContext) -> BookCast:
        return await self.cast_cache.get_or_create(
            context.book_id, lambda: detect_characters(context.text)
        )

    async def _create_chunks(self, context: ChapterContext, cast: BookCast) -> list[AudioChunk]:
        specs = await structure_chapter_text(context.text, cast.characters)

        try:
            with get_session() as session:
                for spec in specs:
                    session.add(
                        AudioChunk(
                            chapter_id=context.chapter_id,
                            idx=spec.idx,
                            voice=spec.speaker,
                            provider=context.provider,
                            text=spec.text,
                            emotion_hint=spec.emotion_hint,
                        )
                    )
        except IntegrityError:
            # Another delivery of this job created them first
            logger.warning("Chunks for chapter %d already exist, resuming", context.chapter_id)

        logger.info("Created %d chunks for chapter %d", len(specs), context.chapter_id)
        return self._load_chunks(context.chapter_id)

    def _claim_chunk(self, chunk: AudioChunk) -> bool:
        """
        Move a chunk to `processing` unless it changed since we read it.

        A `processing` chunk is only taken when its last update is older than
        `stale_after`; before that it belongs to a live worker.
        """
        stale_before = utc_now() - timedelta(seconds=self.stale_after)
        with get_session() as session:
            result = session.execute(
                update(AudioChunk)
                .where(
                    AudioChunk.id == chunk.id,
                    AudioChunk.status == chunk.status,
                    AudioChunk.updated_at == chunk.updated_at,
                    or_(AudioChunk.status != "processing", AudioChunk.updated_at < stale_before),
                )
                .values(status="processing", updated_at=utc_now())
            )
            return result.rowcount == 1

    def _finish_chunk(self, chunk_id: int, **values) -> bool:
        with get_session() as session:
            result = session.execute(
                update(AudioChunk)
                .where(AudioChunk.id == chunk_id, AudioChunk.status == "processing")
                .values(updated_at=utc_now(), **values)
            )
            return result.rowcount == 1

    async def _synthesize_and_upload(
        self, chunk: AudioChunk, provider: SpeechProvider, voice_id: str
    ) -> str:
        audio = await provider.synthesize(
            chunk.text, voice_id, SynthesisOptions(emotion_hint=chunk.emotion_hint)
        )
        return await storage.upload(audio, storage.audio_chunk_path(chunk.chapter_id, chunk.idx))

    async def _process_chunk(self, chunk: AudioChunk, provider: SpeechProvider, voice_id: str):
        if not self._claim_chunk(chunk):
            logger.info("Chunk %d of chapter %d was claimed elsewhere, skipping", chunk.idx, chunk.chapter_id)
            return

        try:
            audio_url = await self.retry_policy.run(
                lambda: self._synthesize_and_upload(chunk, provider, voice_id)
            )
        except Exception as e:
            logger.error(
                "Chunk %d of chapter %d failed after %d attempts: %s",
                chunk.idx, chunk.chapter_id, self.retry_policy.max_attempts, e,
            )
            self._finish_chunk(chunk.id, status="error", error_message=str(e))
            return

        self._finish_chunk(
            chunk.id,
            status="done",
            audio_url=audio_url,
            duration_seconds=estimate_duration_seconds(chunk.text),
            error_message=None,
        )
        logger.debug("Chunk %d of chapter %d done (%s)", chunk.idx, chunk.chapter_id, voice_id)

    def summarize(self, chapter_id: int) -> ChapterSummary:
        chunks = self._load_chunks(chapter_id)
        summary = ChapterSummary(chapter_id=chapter_id, total=len(chunks))
        for chunk in chunks:
            if chunk.status == "done":
                summary.done += 1
            elif chunk.status == "error":
                summary.error += 1
            else:
                summary.pending += 1
        return summary
