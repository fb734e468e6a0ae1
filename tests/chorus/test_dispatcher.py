import asyncio
import itertools
import time

import httpx
import pytest

import chorus.dispatcher
from chorus.adapters import ChatGPTAdapter, ClaudeAdapter
from chorus.aggregator import Aggregator
from chorus.dispatcher import Dispatcher
from chorus.registry import StaticRegistry
from chorus.sessions import SessionManager
from chorus.targets import TargetKind
from chorus.types import AdapterError, ErrorKind, PromptRequest, TargetStatus

from tests.chorus.fakes import CountingBackend, FakeAdapter, make_target


def _registry(disabled=()):
    return StaticRegistry(
        make_target(kind.value, enabled=kind.value not in disabled) for kind in TargetKind
    )


def _adapters(**overrides):
    adapters = {kind: FakeAdapter(kind) for kind in TargetKind}
    for name, adapter in overrides.items():
        adapters[TargetKind(name)] = adapter
    return adapters


def _dispatcher(adapters=None, backend=None, registry=None, call_timeout=1.0, global_timeout=2.0):
    backend = backend or CountingBackend()
    return Dispatcher(
        registry or _registry(),
        SessionManager(backend),
        adapter_overrides=adapters or _adapters(),
        aggregator=Aggregator(timeout=global_timeout),
        call_timeout=call_timeout,
    )


@pytest.mark.asyncio
async def test_two_chatbots_answer_in_request_order():
    dispatcher = _dispatcher()

    bundle = await dispatcher.dispatch(PromptRequest.create("hi", ["chatgpt", "claude"]))

    assert [r.target_id for r in bundle.results] == ["chatgpt", "claude"]
    assert [r.status for r in bundle.results] == [TargetStatus.SUCCESS, TargetStatus.SUCCESS]
    assert [r.response for r in bundle.results] == ["hello", "hello"]
    assert bundle.results[0].name == "Chatgpt"


@pytest.mark.asyncio
async def test_unknown_chatbot_is_an_error_result():
    bundle = await _dispatcher().dispatch(PromptRequest.create("hi", ["unknown"]))

    assert len(bundle.results) == 1
    result = bundle.results[0]
    assert result.status == TargetStatus.FAILURE
    assert result.error == ErrorKind.UNKNOWN_TARGET
    assert result.to_dict()["status"] == "error"
    assert result.to_dict()["error"] == "unknown_target"


@pytest.mark.asyncio
async def test_disabled_chatbot_is_reported_not_skipped():
    adapters = _adapters()
    dispatcher = _dispatcher(adapters=adapters, registry=_registry(disabled={"gemini"}))

    bundle = await dispatcher.dispatch(PromptRequest.create("hi", ["gemini", "claude"]))

    assert bundle.results[0].error == ErrorKind.DISABLED
    assert bundle.results[1].status == TargetStatus.SUCCESS
    assert adapters[TargetKind.GEMINI].prompts == []


@pytest.mark.asyncio
async def test_failing_adapter_does_not_affect_siblings():
    adapters = _adapters(claude=FakeAdapter(TargetKind.CLAUDE, error=AdapterError(ErrorKind.BACKEND, "HTTP 500")))
    dispatcher = _dispatcher(adapters=adapters)

    bundle = await dispatcher.dispatch(
        PromptRequest.create("hi", ["chatgpt", "claude", "gemini", "perplexity"])
    )

    statuses = {r.target_id: r.status for r in bundle.results}
    assert statuses == {
        "chatgpt": TargetStatus.SUCCESS,
        "claude": TargetStatus.FAILURE,
        "gemini": TargetStatus.SUCCESS,
        "perplexity": TargetStatus.SUCCESS,
    }
    assert bundle.result_for("claude").error == ErrorKind.BACKEND
    assert bundle.result_for("claude").detail == "HTTP 500"


@pytest.mark.asyncio
async def test_crashing_adapter_is_contained():
    adapters = _adapters(chatgpt=FakeAdapter(TargetKind.CHATGPT, error=KeyError("oops")))

    bundle = await _dispatcher(adapters=adapters).dispatch(PromptRequest.create("hi", ["chatgpt", "claude"]))

    assert bundle.results[0].error == ErrorKind.UNKNOWN
    assert "KeyError" in bundle.results[0].detail
    assert bundle.results[1].status == TargetStatus.SUCCESS


@pytest.mark.asyncio
async def test_slow_adapter_times_out_within_call_deadline():
    adapters = _adapters(gemini=FakeAdapter(TargetKind.GEMINI, delay=5.0))
    dispatcher = _dispatcher(adapters=adapters, call_timeout=0.05, global_timeout=2.0)

    started = time.monotonic()
    bundle = await dispatcher.dispatch(PromptRequest.create("hi", ["gemini", "chatgpt"]))

    assert time.monotonic() - started < 1.0
    assert bundle.results[0].status == TargetStatus.TIMEOUT
    assert bundle.results[0].error == ErrorKind.TIMEOUT
    assert bundle.results[1].status == TargetStatus.SUCCESS
    assert adapters[TargetKind.GEMINI].timeouts == [0.05]


@pytest.mark.asyncio
async def test_global_deadline_bounds_the_bundle():
    adapters = _adapters(claude=FakeAdapter(TargetKind.CLAUDE, delay=5.0))
    dispatcher = _dispatcher(adapters=adapters, call_timeout=10.0, global_timeout=0.05)

    started = time.monotonic()
    bundle = await dispatcher.dispatch(PromptRequest.create("hi", ["claude", "chatgpt"]))

    assert time.monotonic() - started < 1.0
    assert [r.status for r in bundle.results] == [TargetStatus.TIMEOUT, TargetStatus.SUCCESS]
    assert bundle.results[0].name == "Claude"


@pytest.mark.asyncio
async def test_adapter_timeout_error_is_a_timeout():
    adapters = _adapters(perplexity=FakeAdapter(TargetKind.PERPLEXITY, error=AdapterError(ErrorKind.TIMEOUT, "read timeout")))

    bundle = await _dispatcher(adapters=adapters).dispatch(PromptRequest.create("hi", ["perplexity"]))

    assert bundle.results[0].status == TargetStatus.TIMEOUT


@pytest.mark.asyncio
async def test_session_failure_is_isolated():
    dispatcher = _dispatcher(backend=CountingBackend(fail={"claude"}))

    bundle = await dispatcher.dispatch(PromptRequest.create("hi", ["claude", "chatgpt"]))

    assert bundle.results[0].error == ErrorKind.SESSION_ERROR
    assert bundle.results[0].detail == "login rejected"
    assert bundle.results[1].status == TargetStatus.SUCCESS


@pytest.mark.asyncio
async def test_rejected_session_is_invalidated():
    backend = CountingBackend()
    adapters = _adapters(chatgpt=FakeAdapter(TargetKind.CHATGPT, error=AdapterError(ErrorKind.SESSION_INVALID, "HTTP 401", status_code=401)))
    dispatcher = _dispatcher(adapters=adapters, backend=backend)
    request = PromptRequest.create("hi", ["chatgpt"])

    await dispatcher.dispatch(request)
    assert dispatcher.sessions.cached("chatgpt") is None
    await dispatcher.dispatch(request)

    assert backend.calls == {"chatgpt": 2}


@pytest.mark.asyncio
async def test_missing_adapter_is_an_error_result():
    adapters = _adapters()
    dispatcher = _dispatcher(adapters=adapters)
    del dispatcher.adapters[TargetKind.GEMINI]

    bundle = await dispatcher.dispatch(PromptRequest.create("hi", ["gemini"]))

    assert bundle.results[0].error == ErrorKind.UNKNOWN


@pytest.mark.asyncio
@pytest.mark.parametrize("delays", list(itertools.permutations([0.0, 0.01, 0.02, 0.03])))
async def test_order_is_independent_of_completion_timing(delays):
    kinds = list(TargetKind)
    adapters = {kind: FakeAdapter(kind, reply=kind.value, delay=d) for kind, d in zip(kinds, delays)}
    ids = [k.value for k in kinds]

    bundle = await _dispatcher(adapters=adapters).dispatch(PromptRequest.create("hi", ids))

    assert [r.target_id for r in bundle.results] == ids
    assert [r.response for r in bundle.results] == ids


@pytest.mark.asyncio
async def test_result_count_matches_request():
    ids = ["chatgpt", "nope", "claude", "missing", "gemini"]

    bundle = await _dispatcher().dispatch(PromptRequest.create("hi", ids))

    assert len(bundle.results) == len(ids)
    assert [r.target_id for r in bundle.results] == ids


@pytest.mark.asyncio
async def test_targets_run_concurrently():
    adapters = {kind: FakeAdapter(kind, delay=0.1) for kind in TargetKind}
    dispatcher = _dispatcher(adapters=adapters)

    started = time.monotonic()
    await dispatcher.dispatch(PromptRequest.create("hi", [k.value for k in TargetKind]))

    assert time.monotonic() - started < 0.35


@pytest.mark.asyncio
async def test_concurrent_dispatches_acquire_each_session_once():
    backend = CountingBackend(delay=0.05)
    dispatcher = _dispatcher(backend=backend)
    request = PromptRequest.create("hi", ["chatgpt", "claude"])

    bundles = await asyncio.gather(*(dispatcher.dispatch(request) for _ in range(8)))

    assert all(b.success_count == 2 for b in bundles)
    assert backend.calls == {"chatgpt": 1, "claude": 1}


@pytest.mark.asyncio
async def test_prompt_reaches_adapter():
    adapters = _adapters()
    await _dispatcher(adapters=adapters).dispatch(PromptRequest.create("what is 2+2?", ["claude"]))
    assert adapters[TargetKind.CLAUDE].prompts == ["what is 2+2?"]


@pytest.mark.asyncio
async def test_injected_logger_receives_events(mock_logger):
    dispatcher = Dispatcher(
        _registry(),
        SessionManager(CountingBackend(), log=mock_logger),
        adapter_overrides=_adapters(),
        log=mock_logger,
    )

    await dispatcher.dispatch(PromptRequest.create("hi", ["unknown"]))

    mock_logger.bind.assert_any_call(component="dispatcher")
    mock_logger.bind.assert_any_call(target_id="unknown")
    assert "target_unknown" in [c.args[0] for c in mock_logger.warning.call_args_list]


@pytest.mark.asyncio
async def test_cancelling_dispatch_cancels_target_tasks():
    adapters = _adapters(chatgpt=FakeAdapter(TargetKind.CHATGPT, delay=0.3))
    dispatcher = _dispatcher(adapters=adapters, call_timeout=5.0, global_timeout=5.0)

    outer = asyncio.create_task(dispatcher.dispatch(PromptRequest.create("hi", ["chatgpt"])))
    await asyncio.sleep(0.05)
    outer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await outer
    await asyncio.sleep(0.01)

    pending = [
        t.get_name()
        for t in asyncio.all_tasks()
        if t.get_name().startswith("chorus:") and not t.done()
    ]
    assert pending == []


@pytest.mark.asyncio
async def test_timed_out_attempt_is_retried_within_call_deadline():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, json={"choices": [{"message": {"content": "second try"}}]})

    adapter = ChatGPTAdapter(
        transport=httpx.MockTransport(handler), timeout=0.3, max_retries=3, retry_delay=0
    )
    dispatcher = _dispatcher(adapters=_adapters(chatgpt=adapter), call_timeout=0.3)

    bundle = await dispatcher.dispatch(PromptRequest.create("hi", ["chatgpt"]))

    result = bundle.results[0]
    assert result.status == TargetStatus.SUCCESS
    assert result.response == "second try"
    assert result.attempts == 2
    assert calls[0].extensions["timeout"]["read"] < 0.3


class _RefreshingRejectAdapter(FakeAdapter):
    """Rejects its session after another caller has already replaced it."""

    def __init__(self, kind, sessions):
        super().__init__(kind)
        self.sessions = sessions

    async def send(self, target, prompt, session, timeout=None):
        self.sessions.invalidate(target.id)
        await self.sessions.get_session(target)
        raise AdapterError(ErrorKind.SESSION_INVALID, "HTTP 401", status_code=401)


@pytest.mark.asyncio
async def test_late_rejection_keeps_refreshed_session():
    backend = CountingBackend()
    sessions = SessionManager(backend)
    adapter = _RefreshingRejectAdapter(TargetKind.CLAUDE, sessions)
    dispatcher = Dispatcher(_registry(), sessions, adapter_overrides=_adapters(claude=adapter))

    bundle = await dispatcher.dispatch(PromptRequest.create("hi", ["claude"]))

    assert bundle.results[0].error == ErrorKind.SESSION_INVALID
    assert sessions.cached("claude") is not None
    assert backend.calls == {"claude": 2}


def test_default_adapters_built_only_for_missing_kinds(monkeypatch):
    requested = []
    real = chorus.dispatcher.default_adapters

    def recording(log=None, kinds=None, **options):
        requested.append(list(kinds))
        return real(log=log, kinds=kinds, **options)

    monkeypatch.setattr(chorus.dispatcher, "default_adapters", recording)

    full = Dispatcher(_registry(), SessionManager(CountingBackend()), adapter_overrides=_adapters())
    partial = Dispatcher(
        _registry(),
        SessionManager(CountingBackend()),
        adapter_overrides={TargetKind.CHATGPT: FakeAdapter(TargetKind.CHATGPT)},
    )

    assert requested[0] == []
    assert TargetKind.CHATGPT not in requested[1]
    assert all(isinstance(a, FakeAdapter) for a in full.adapters.values())
    assert isinstance(partial.adapters[TargetKind.CHATGPT], FakeAdapter)
    assert isinstance(partial.adapters[TargetKind.CLAUDE], ClaudeAdapter)
