from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from echopages.helpers.retry import RetryPolicy


@pytest.mark.asyncio
async def test_run_returns_first_success():
    operation = AsyncMock(side_effect=[Exception("boom"), "ok"])
    on_retry = MagicMock()

    result = await RetryPolicy.no_wait().run(operation, on_retry)

    assert result == "ok"
    assert operation.await_count == 2
    on_retry.assert_called_once()
    assert on_retry.call_args.args[0] == 1


@pytest.mark.asyncio
async def test_run_reraises_last_error():
    operation = AsyncMock(side_effect=[Exception("first"), Exception("second"), Exception("third")])

    with pytest.raises(Exception, match="third"):
        await RetryPolicy.no_wait(max_attempts=3).run(operation)
    assert operation.await_count == 3


@pytest.mark.asyncio
@patch("echopages.helpers.retry.asyncio.sleep", new_callable=AsyncMock)
async def test_run_waits_between_attempts(mock_sleep):
    operation = AsyncMock(side_effect=[Exception("a"), Exception("b"), "ok"])

    await RetryPolicy(max_attempts=3, backoff_seconds=2.0).run(operation)

    assert [call.args[0] for call in mock_sleep.await_args_list] == [2.0, 2.0]


@pytest.mark.asyncio
@patch("echopages.helpers.retry.asyncio.sleep", new_callable=AsyncMock)
async def test_no_wait_policy_never_sleeps(mock_sleep):
    operation = AsyncMock(side_effect=Exception("down"))

    with pytest.raises(Exception):
        await RetryPolicy.no_wait().run(operation)
    mock_sleep.assert_not_awaited()


def test_delay_strategies():
    assert RetryPolicy(backoff_seconds=2.0).delay(3) == 2.0
    exponential = RetryPolicy(backoff_seconds=1.0, strategy="exponential")
    assert [exponential.delay(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


def test_invalid_policy():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(backoff_seconds=-1)
