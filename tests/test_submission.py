import asyncio
import json

import httpx

from experiments.session import ExperimentSession, TrialResult
from experiments.submission import HttpTrialSink, PendingTrialQueue, StoreTrialSink
from records.store import InMemoryTrialStore


class FlakyServer:
    def __init__(self, up: bool = True):
        self.up = up
        self.trials = []
        self.completions = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if not self.up:
            return httpx.Response(503)
        body = json.loads(request.content)
        if request.url.path == "/api/trial":
            self.trials.append(body)
            return httpx.Response(200, json={"success": True, "trialNumber": body["trial"]["trialNumber"], "sessionId": body["sessionId"]})
        if request.url.path == "/api/complete":
            self.completions.append(body)
            return httpx.Response(200, json={"success": True, "sessionId": body["sessionId"]})
        return httpx.Response(404)


def _result(n: int) -> TrialResult:
    return TrialResult(trial_number=n, stimulus_id=n + 10, reaction_time_ms=300.0 + n, timestamp=1000 + n, was_paused=False)


def _sink(server, tmp_path) -> HttpTrialSink:
    client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    return HttpTrialSink("https://api.test/", PendingTrialQueue(tmp_path / "pending"), client=client)


def test_http_sink_posts_trials(tmp_path):
    server = FlakyServer()
    sink = _sink(server, tmp_path)
    session = ExperimentSession(sequence=[11, 12])

    ok = asyncio.run(sink.submit_trial(session, _result(1)))

    assert ok is True
    assert server.trials[0]["sessionId"] == session.session_id
    assert server.trials[0]["trial"]["stimulusId"] == 11
    assert sink.queue.count() == 0


def test_failed_trial_is_queued_and_resent_before_completion(tmp_path):
    server = FlakyServer(up=False)
    sink = _sink(server, tmp_path)
    session = ExperimentSession(sequence=[11, 12])

    async def scenario():
        for n in (1, 2):
            result = _result(n)
            session.record(result)
            assert await sink.submit_trial(session, result) is False
        queued = sink.queue.count(session.session_id)
        server.up = True
        completed = await sink.mark_complete(session)
        return queued, completed

    queued, completed = asyncio.run(scenario())
    assert queued == 2
    assert completed is True
    assert [t["trial"]["trialNumber"] for t in server.trials] == [1, 2]
    assert server.completions[0]["totalTrials"] == 2
    assert sink.queue.count() == 0


def test_completion_failure_is_not_fatal(tmp_path):
    server = FlakyServer(up=False)
    sink = _sink(server, tmp_path)
    session = ExperimentSession(sequence=[11])
    assert asyncio.run(sink.mark_complete(session)) is False


def test_pending_queue_files_are_keyed_by_session_and_trial(tmp_path):
    queue = PendingTrialQueue(tmp_path)
    session = ExperimentSession(sequence=[11])
    path = queue.save(session.submission_for(_result(1)))
    assert path.name == f"experiment_{session.session_id}_trial_1.json"
    raw = json.loads(path.read_text())
    assert raw["needsSync"] is True
    assert queue.load_all(session.session_id)[0].trial.stimulus_id == 11
    (tmp_path / "experiment_broken_trial_1.json").write_text("{not json")
    assert len(queue.load_all()) == 1
    queue.remove(session.session_id, 1)
    assert queue.count(session.session_id) == 0


def test_store_sink_writes_directly():
    store = InMemoryTrialStore()
    sink = StoreTrialSink(store)
    session = ExperimentSession(sequence=[11])
    session.record(_result(1))

    async def scenario():
        await sink.submit_trial(session, session.results[0])
        await sink.mark_complete(session)

    asyncio.run(scenario())
    assert store.list_trials(session.session_id)[0].stimulus_id == 11
    assert store.get_session(session.session_id).total_trials == 1
