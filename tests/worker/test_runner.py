import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from echopages.db_models import Job
from echopages.worker.processor import ChapterNotFoundError, ChapterSummary
from echopages.worker.runner import Worker


def make_job(job_id: int = 1, chapter_id: int = 10) -> Job:
    return Job(id=job_id, chapter_id=chapter_id, user_id="user-1", status="running", attempts=1)


def make_worker(process: AsyncMock) -> Worker:
    processor = MagicMock()
    processor.process = process
    return Worker(processor=processor, concurrency=1, poll_interval=0.01)


@pytest.mark.asyncio
@patch("echopages.worker.runner.update_book_completion")
@patch("echopages.worker.runner.queue")
async def test_handle_acknowledges_and_aggregates(mock_queue, mock_update):
    # Arrange
    summary = ChapterSummary(chapter_id=10, book_id=3, total=4, done=3, error=1)
    worker = make_worker(AsyncMock(return_value=summary))

    # Act
    result = await worker.handle(make_job())

    # Assert
    assert result == summary
    assert worker.processor.process.await_args.args == (10, "user-1")
    # the heartbeat keeps the claimed job from being redelivered
    worker.processor.process.await_args.kwargs["heartbeat"]()
    mock_queue.touch.assert_called_once_with(1)
    mock_update.assert_called_once_with(3)
    mock_queue.mark_done.assert_called_once_with(1)
    mock_queue.mark_failed.assert_not_called()


@pytest.mark.asyncio
@patch("echopages.worker.runner.update_book_completion")
@patch("echopages.worker.runner.queue")
async def test_handle_marks_failed_job(mock_queue, mock_update):
    worker = make_worker(AsyncMock(side_effect=ChapterNotFoundError("Chapter 10 not found")))

    result = await worker.handle(make_job())

    assert result is None
    mock_queue.mark_failed.assert_called_once_with(1, "Chapter 10 not found")
    mock_queue.mark_done.assert_not_called()
    mock_update.assert_not_called()


@pytest.mark.asyncio
@patch("echopages.worker.runner.update_book_completion")
@patch("echopages.worker.runner.queue")
async def test_consume_stops_claiming_after_stop(mock_queue, mock_update):
    # Arrange
    worker = make_worker(AsyncMock())
    jobs = [make_job(1), make_job(2)]

    async def process(chapter_id, user_id, heartbeat=None):
        worker.stop()
        return ChapterSummary(chapter_id=chapter_id, book_id=3, total=1, done=1)

    worker.processor.process.side_effect = process
    mock_queue.claim_next.side_effect = jobs

    # Act
    await worker.consume()

    # Assert
    assert mock_queue.claim_next.call_count == 1
    mock_queue.mark_done.assert_called_once_with(1)


@pytest.mark.asyncio
@patch("echopages.worker.runner.queue")
async def test_run_polls_until_stopped(mock_queue):
    mock_queue.claim_next.return_value = None
    worker = make_worker(AsyncMock())

    with patch.object(Worker, "install_signal_handlers"):
        task = asyncio.create_task(worker.run())
        await asyncio.sleep(0.05)
        worker.stop()
        await asyncio.wait_for(task, timeout=1)

    assert mock_queue.claim_next.call_count >= 2
    worker.processor.process.assert_not_awaited()
