import asyncio

import pytest

from conftest import ManualClock, settle
from factorybridge.errors import JobBusy
from factorybridge.jobs import OUTCOME_CANCELLED, OUTCOME_COMPLETED, OUTCOME_EMPTY, JobPoller
from factorybridge.models import JobHandle


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)
        await asyncio.sleep(0)


def _run(poller, client):
    return asyncio.run(poller.run(lambda: client.submit_video_job(b"img", "orbit"), client.poll_video_job))


def test_polls_until_done_and_returns_result(client, log):
    sleep = RecordingSleep()
    client.poll_script = [
        JobHandle("op-1", done=False),
        JobHandle("op-1", done=False),
        JobHandle("op-1", done=True, result_ref="https://video/1"),
    ]

    outcome = _run(JobPoller(log, sleep=sleep), client)

    assert outcome.status == OUTCOME_COMPLETED
    assert outcome.result_ref == "https://video/1"
    assert outcome.produced
    assert client.count("submit") == 1
    assert client.count("poll") == 3
    assert sleep.calls == [5.0, 5.0, 5.0]


def test_interval_override(client, log):
    sleep = RecordingSleep()
    client.poll_script = [JobHandle("op-1", done=True, result_ref="uri")]
    poller = JobPoller(log, sleep=sleep)

    asyncio.run(
        poller.run(lambda: client.submit_video_job(b"img", "orbit"), client.poll_video_job, interval_seconds=1.5)
    )

    assert sleep.calls == [1.5]


def test_already_done_on_submit_skips_polling(client, log):
    client.submit_handle = JobHandle("op-1", done=True, result_ref="uri")

    outcome = _run(JobPoller(log, sleep=RecordingSleep()), client)

    assert outcome.result_ref == "uri"
    assert client.count("poll") == 0


def test_done_without_result_is_not_an_error(client, log):
    client.poll_script = [JobHandle("op-1", done=True)]

    outcome = _run(JobPoller(log, sleep=RecordingSleep()), client)

    assert outcome.status == OUTCOME_EMPTY
    assert outcome.result_ref is None
    assert not outcome.produced


def test_submit_error_propagates(client, log):
    client.submit_error = PermissionError("API key not allowed for Veo")

    with pytest.raises(PermissionError):
        _run(JobPoller(log, sleep=RecordingSleep()), client)
    assert client.count("poll") == 0


def test_poll_error_propagates(client, log):
    client.poll_error = ConnectionError("reset")

    with pytest.raises(ConnectionError):
        _run(JobPoller(log, sleep=RecordingSleep()), client)


def test_cancel_during_wait_abandons_quietly(client, log):
    async def scenario():
        clock = ManualClock()
        poller = JobPoller(log, sleep=clock.sleep)
        client.poll_script = [JobHandle("op-1", done=False)] * 10
        task = asyncio.ensure_future(
            poller.run(lambda: client.submit_video_job(b"img", "orbit"), client.poll_video_job)
        )
        await settle()
        await clock.advance(5.0)
        assert client.count("poll") == 1
        assert poller.running

        poller.cancel()
        poller.cancel()
        outcome = await task

        await clock.advance(60.0)
        return poller, outcome

    poller, outcome = asyncio.run(scenario())

    assert outcome.status == OUTCOME_CANCELLED
    assert outcome.result_ref is None
    assert client.count("poll") == 1
    assert not poller.running


def test_cancel_while_poll_in_flight_suppresses_error(client, log):
    async def scenario():
        gate = asyncio.Event()
        poller = JobPoller(log, sleep=RecordingSleep())

        async def failing_poll(handle):
            await gate.wait()
            raise ConnectionError("socket closed")

        task = asyncio.ensure_future(poller.run(lambda: client.submit_video_job(b"img", "p"), failing_poll))
        await settle()
        poller.cancel()
        gate.set()
        return await task

    outcome = asyncio.run(scenario())

    assert outcome.status == OUTCOME_CANCELLED


def test_cancel_without_running_job_is_noop(log):
    poller = JobPoller(log)
    poller.cancel()
    assert not poller.running


def test_poller_is_reusable_after_completion(client, log):
    poller = JobPoller(log, sleep=RecordingSleep())
    client.poll_script = [JobHandle("op-1", done=True, result_ref="a"), JobHandle("op-1", done=True, result_ref="b")]

    first = _run(poller, client)
    second = _run(poller, client)

    assert (first.result_ref, second.result_ref) == ("a", "b")


def test_second_run_while_busy_is_rejected(client, log):
    async def scenario():
        clock = ManualClock()
        poller = JobPoller(log, sleep=clock.sleep)
        client.poll_script = [JobHandle("op-1", done=True, result_ref="uri")]
        first = asyncio.ensure_future(
            poller.run(lambda: client.submit_video_job(b"img", "orbit"), client.poll_video_job)
        )
        await settle()

        with pytest.raises(JobBusy):
            await poller.run(lambda: client.submit_video_job(b"img", "flyover"), client.poll_video_job)

        await clock.advance(5.0)
        return await first

    outcome = asyncio.run(scenario())

    assert outcome.result_ref == "uri"
    assert client.count("submit") == 1
