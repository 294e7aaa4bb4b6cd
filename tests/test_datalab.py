import asyncio

import pytest

from conftest import make_item, settle
from factorybridge.datalab import DataLab
from factorybridge.errors import EmptyDataset
from factorybridge.inference import REPORT_UNAVAILABLE
from factorybridge.jobs import OUTCOME_CANCELLED, JobPoller
from factorybridge.models import JobHandle


async def _no_wait(seconds):
    await asyncio.sleep(0)


@pytest.fixture
def lab(client, store, log):
    return DataLab(client, store, JobPoller(log, sleep=_no_wait), log)


def test_report_requires_items(lab):
    with pytest.raises(EmptyDataset):
        asyncio.run(lab.generate_report())


def test_report_passes_items_in_order(lab, client, store):
    first, second = make_item("Rust"), make_item("Crack")
    store.commit(first)
    store.commit(second)

    text = asyncio.run(lab.generate_report())

    assert text == "Dataset looks balanced."
    assert client.calls[-1] == ("report", (first, second))


def test_report_failure_returns_apology(lab, client, store):
    store.commit(make_item())
    client.report_error = RuntimeError("model overloaded")

    assert asyncio.run(lab.generate_report()) == REPORT_UNAVAILABLE


def test_component_video_uses_latest_matching_item(lab, client, store):
    store.commit(make_item("Crack", component="Wing"))
    wing = make_item("Surface Rust", component="Wing")
    store.commit(wing)
    store.commit(make_item("Crack", component="Engine"))
    client.poll_script = [JobHandle("op-1", done=True, result_ref="https://video/wing")]

    outcome = asyncio.run(lab.generate_component_video("Wing"))

    assert outcome.result_ref == "https://video/wing"
    _, image, prompt = client.calls[0]
    assert image == wing.image_bytes
    assert prompt.startswith("Cinematic drone orbit shot of Wing, showing Surface Rust")


def test_component_video_for_pristine_item(lab, client, store):
    store.commit(make_item("None", component="Tail"))
    client.poll_script = [JobHandle("op-1", done=True, result_ref="uri")]

    asyncio.run(lab.generate_component_video())

    assert "pristine condition" in client.calls[0][2]


def test_dashboard_video_targets_most_severe(lab, client, store):
    store.commit(make_item(severity="Low", component="Fuselage"))
    critical = make_item(severity="Critical", component="Engine")
    store.commit(critical)
    client.poll_script = [JobHandle("op-1", done=True, result_ref="uri")]

    asyncio.run(lab.generate_dashboard_video())

    _, image, prompt = client.calls[0]
    assert image == critical.image_bytes
    assert prompt.startswith("Cinematic flyover of industrial Engine")


def test_video_errors_propagate(lab, client, store):
    store.commit(make_item())
    client.poll_error = RuntimeError("Video job failed: safety filter")

    with pytest.raises(RuntimeError, match="safety filter"):
        asyncio.run(lab.generate_dashboard_video())


def test_video_requires_items(lab):
    with pytest.raises(EmptyDataset):
        asyncio.run(lab.generate_component_video("Wing"))
    with pytest.raises(EmptyDataset):
        asyncio.run(lab.generate_dashboard_video())


def test_cancel_stops_waiting_video_job(client, store, log):
    async def never(seconds):
        await asyncio.Event().wait()

    lab = DataLab(client, store, JobPoller(log, sleep=never), log)
    store.commit(make_item())

    async def scenario():
        task = asyncio.ensure_future(lab.generate_dashboard_video())
        await settle()
        lab.cancel()
        return await task

    outcome = asyncio.run(scenario())

    assert outcome.status == OUTCOME_CANCELLED
    assert not outcome.produced
    assert [call[0] for call in client.calls] == ["submit"]
