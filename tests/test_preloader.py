import asyncio
import itertools

import pytest

from preload.errors import DecodeFailed, FetchFailed, InitialBatchFailed, PreviouslyFailed
from preload.scheduler import AudioPreloader
from tests.fakes import FakeFetcher, fake_decode


def _preloader(fetcher, **kwargs) -> AudioPreloader:
    kwargs.setdefault("total_stimuli", 10)
    kwargs.setdefault("window_size", 2)
    return AudioPreloader(fetcher, decoder=fake_decode, **kwargs)


def test_concurrent_loads_share_one_fetch():
    async def scenario():
        fetcher = FakeFetcher()
        fetcher.hold(5)
        pre = _preloader(fetcher)
        waiters = [asyncio.create_task(pre.load_one(5)) for _ in range(4)]
        await asyncio.sleep(0)
        assert pre.is_loading(5)
        fetcher.release(5)
        buffers = await asyncio.gather(*waiters)
        return fetcher, pre, buffers

    fetcher, pre, buffers = asyncio.run(scenario())
    assert fetcher.calls[5] == 1
    assert all(b is buffers[0] for b in buffers)
    assert pre.is_cached(5)
    assert not pre.is_loading(5)


def test_concurrent_waiters_see_the_same_error():
    async def scenario():
        fetcher = FakeFetcher(fail={7: 500})
        fetcher.hold(7)
        pre = _preloader(fetcher)
        waiters = [asyncio.create_task(pre.load_one(7)) for _ in range(3)]
        await asyncio.sleep(0)
        fetcher.release(7)
        return fetcher, await asyncio.gather(*waiters, return_exceptions=True)

    fetcher, errors = asyncio.run(scenario())
    assert fetcher.calls[7] == 1
    assert isinstance(errors[0], FetchFailed)
    assert all(e is errors[0] for e in errors)


def test_404_then_previously_failed_without_refetch():
    async def scenario():
        fetcher = FakeFetcher(fail={7: 404})
        pre = _preloader(fetcher)
        with pytest.raises(FetchFailed) as first:
            await pre.load_one(7)
        with pytest.raises(PreviouslyFailed) as second:
            await pre.load_one(7)
        with pytest.raises(PreviouslyFailed):
            await pre.get_buffer(7)
        return fetcher, pre, first.value, second.value

    fetcher, pre, first, second = asyncio.run(scenario())
    assert first.status_code == 404
    assert second.original is first
    assert fetcher.calls[7] == 1
    assert pre.failed_ids == [7]
    assert pre.progress().failed == 1


def test_decode_failure_is_a_load_failure():
    async def scenario():
        fetcher = FakeFetcher()
        fetcher.corrupt.add(3)
        pre = _preloader(fetcher)
        with pytest.raises(DecodeFailed):
            await pre.load_one(3)
        with pytest.raises(PreviouslyFailed):
            await pre.load_one(3)
        return pre

    pre = asyncio.run(scenario())
    assert not pre.is_cached(3)
    assert pre.failed_ids == [3]


def test_unexpected_errors_become_load_failures():
    async def broken_decode(stimulus_id, data):
        raise ValueError("bad header")

    async def scenario():
        fetcher = FakeFetcher(disk_errors={4: 1})
        pre = _preloader(fetcher)
        with pytest.raises(FetchFailed) as fetch_exc:
            await pre.load_one(4)
        pre.decoder = broken_decode
        with pytest.raises(DecodeFailed) as decode_exc:
            await pre.load_one(5)
        return pre, fetch_exc.value, decode_exc.value

    pre, fetch_err, decode_err = asyncio.run(scenario())
    assert isinstance(fetch_err.__cause__, OSError)
    assert fetch_err.stimulus_id == 4
    assert isinstance(decode_err.__cause__, ValueError)
    assert pre.failed_ids == [4, 5]


def test_initial_batch_is_cached_and_returned_without_suspending():
    async def scenario():
        fetcher = FakeFetcher()
        pre = _preloader(fetcher)
        await pre.preload_initial([3, 1, 4])
        return fetcher, pre

    fetcher, pre = asyncio.run(scenario())
    assert set(fetcher.calls) == {3, 1}
    for sid in (3, 1):
        coro = pre.get_buffer(sid)
        with pytest.raises(StopIteration) as done:
            coro.send(None)
        assert done.value.value.stimulus_id == sid


def test_initial_batch_failure_is_aggregated():
    async def scenario():
        fetcher = FakeFetcher(fail={1: 404})
        pre = _preloader(fetcher, window_size=3)
        await pre.preload_initial([3, 1, 4, 5])

    with pytest.raises(InitialBatchFailed) as exc:
        asyncio.run(scenario())
    assert exc.value.failed_ids == [1]
    assert isinstance(exc.value.errors[1], FetchFailed)


def test_look_ahead_scenario():
    sequence = [3, 1, 4, 1, 5, 9, 2, 6]

    async def scenario():
        fetcher = FakeFetcher()
        pre = _preloader(fetcher)
        await pre.preload_initial(sequence)
        started = pre.preload_ahead(sequence, 0)
        in_flight = pre.is_loading(4)
        waited = await pre.ensure_ready(sequence, 2)
        again = await pre.ensure_ready(sequence, 2)
        return fetcher, pre, started, in_flight, waited, again

    fetcher, pre, started, in_flight, waited, again = asyncio.run(scenario())
    assert started == [4]
    assert in_flight
    assert waited is True
    assert again is False
    assert pre.is_cached(4)
    assert fetcher.calls[1] == 1


def test_preload_ahead_is_noop_when_window_is_covered():
    async def scenario():
        fetcher = FakeFetcher(fail={5: 404})
        pre = _preloader(fetcher)
        sequence = [1, 2, 3, 4, 5]
        await pre.load_one(3)
        await pre.load_one(4)
        first = pre.preload_ahead(sequence, 0)
        past_end = pre.preload_ahead(sequence, 4)
        started = pre.preload_ahead(sequence, 2)
        await pre.drain()
        retry = pre.preload_ahead(sequence, 2)
        return first, past_end, started, retry, pre

    first, past_end, started, retry, pre = asyncio.run(scenario())
    assert first == []
    assert past_end == []
    assert started == [5]
    assert retry == []
    assert pre.failed_ids == [5]


def test_get_buffer_announces_once_for_many_waiters():
    events = []

    async def scenario():
        fetcher = FakeFetcher()
        fetcher.hold(9)
        pre = _preloader(
            fetcher,
            on_wait=lambda sid: events.append(f"wait:{sid}"),
            on_resume=lambda: events.append("resume"),
        )
        pre.preload_ahead([0, 0, 9], 0)
        announced = asyncio.create_task(pre.get_buffer(9, announce=True))
        others = [asyncio.create_task(pre.load_one(9)) for _ in range(2)]
        others.append(asyncio.create_task(pre.get_buffer(9, announce=False)))
        await asyncio.sleep(0)
        fetcher.release(9)
        await asyncio.gather(announced, *others)
        return fetcher

    fetcher = asyncio.run(scenario())
    assert events == ["wait:9", "resume"]
    assert fetcher.calls[9] == 1


def test_emergency_load_notifies_around_fresh_fetch():
    events = []

    async def scenario():
        fetcher = FakeFetcher()
        pre = _preloader(fetcher)
        pre.set_wait_callbacks(lambda sid: events.append(f"wait:{sid}"), lambda: events.append("resume"))
        buffer = await pre.get_buffer(6)
        return fetcher, buffer

    fetcher, buffer = asyncio.run(scenario())
    assert buffer.stimulus_id == 6
    assert fetcher.calls[6] == 1
    assert events == ["wait:6", "resume"]


def test_ensure_ready_blocks_until_buffer_is_cached():
    async def scenario():
        fetcher = FakeFetcher()
        fetcher.hold(2)
        pre = _preloader(fetcher)
        task = asyncio.create_task(pre.ensure_ready([1, 2], 1))
        for _ in range(5):
            await asyncio.sleep(0)
        blocked = not task.done()
        fetcher.release(2)
        waited = await task
        return pre, blocked, waited

    pre, blocked, waited = asyncio.run(scenario())
    assert blocked
    assert waited is True
    assert pre.is_cached(2)


def test_ensure_ready_failure_still_ends_the_wait():
    events = []

    async def scenario():
        fetcher = FakeFetcher(fail={2: 404})
        pre = _preloader(
            fetcher,
            on_wait=lambda sid: events.append(f"wait:{sid}"),
            on_resume=lambda: events.append("resume"),
        )
        with pytest.raises(FetchFailed):
            await pre.ensure_ready([1, 2], 1)

    asyncio.run(scenario())
    assert events == ["wait:2", "resume"]


def test_ensure_ready_past_end_is_noop():
    async def scenario():
        fetcher = FakeFetcher()
        pre = _preloader(fetcher)
        return fetcher, await pre.ensure_ready([1, 2], 2)

    fetcher, waited = asyncio.run(scenario())
    assert waited is False
    assert not fetcher.calls


def test_evict_behind_keeps_only_the_retention_window():
    sequence = list(range(1, 11))

    async def scenario():
        pre = _preloader(FakeFetcher(), window_size=2, margin=1)
        for sid in sequence:
            await pre.load_one(sid)
        evicted = pre.evict_behind(sequence, 5, keep_behind=2)
        return pre, evicted

    pre, evicted = asyncio.run(scenario())
    assert evicted == 5
    assert sorted(pre.cached_ids) == [4, 5, 6, 7, 8]


def test_evict_behind_leaves_uncached_ids_alone():
    async def scenario():
        pre = _preloader(FakeFetcher(), window_size=2, margin=1)
        await pre.load_one(6)
        await pre.load_one(1)
        evicted = pre.evict_behind(list(range(1, 11)), 5, keep_behind=2)
        return pre, evicted

    pre, evicted = asyncio.run(scenario())
    assert evicted == 1
    assert pre.cached_ids == [6]


def test_progress_tracks_loaded_and_latency():
    ticks = itertools.count(0.0, 0.5)

    async def scenario():
        pre = _preloader(FakeFetcher(fail={3: 404}), total_stimuli=4, clock=lambda: next(ticks))
        await pre.load_one(1)
        await pre.load_one(2)
        with pytest.raises(FetchFailed):
            await pre.load_one(3)
        return pre.progress()

    progress = asyncio.run(scenario())
    assert progress.loaded == 2
    assert progress.total == 4
    assert progress.percent == 50.0
    assert progress.loading == 0
    assert progress.failed == 1
    assert progress.mean_load_ms == pytest.approx(500.0)


def test_forget_failure_allows_a_fresh_attempt():
    async def scenario():
        fetcher = FakeFetcher(fail_once={4})
        pre = _preloader(fetcher)
        with pytest.raises(FetchFailed):
            await pre.load_one(4)
        forgotten = pre.forget_failure(4)
        buffer = await pre.load_one(4)
        return fetcher, forgotten, buffer

    fetcher, forgotten, buffer = asyncio.run(scenario())
    assert forgotten is True
    assert buffer.stimulus_id == 4
    assert fetcher.calls[4] == 2


def test_background_failure_is_recorded_not_raised():
    async def scenario():
        fetcher = FakeFetcher(fail={3: 500})
        pre = _preloader(fetcher)
        started = pre.preload_ahead([1, 2, 3, 4], 0)
        await pre.drain()
        return pre, started

    pre, started = asyncio.run(scenario())
    assert started == [3, 4]
    assert pre.failed_ids == [3]
    assert pre.is_cached(4)
