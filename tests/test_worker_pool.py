"""
Unit tests for the bounded worker pool.
"""

import asyncio
import threading

import pytest
import pytest_asyncio

from conftest import FakeClientFactory
from thumbgate.errors import DispatchFailure, FailureCode
from thumbgate.modules.dispatch import DispatchBus
from thumbgate.modules.api import ThumbnailCtx
from thumbgate.modules.omero import PermissionDeniedError
from thumbgate.modules.thumbnail import prepare_render_thumbnail
from thumbgate.modules.worker import Job, WorkerPool

ENDPOINT = "test.work"


def prepare(body) -> Job:
    return Job(omero_session_key=body["key"], unit_of_work=body["work"])


class Gate:
    """Units of work that block until released, tracking concurrency."""

    def __init__(self):
        self.release = threading.Event()
        self.calls = 0
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def work(self, result="done"):
        def unit_of_work(client):
            with self._lock:
                self.calls += 1
                self.active += 1
                self.peak = max(self.peak, self.active)
            try:
                self.release.wait(5)
            finally:
                with self._lock:
                    self.active -= 1
            return result

        return unit_of_work


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def gate():
    gate = Gate()
    yield gate
    gate.release.set()


@pytest_asyncio.fixture
async def make_pool():
    """Build started pools bound to ENDPOINT; stopped at teardown."""
    created = []

    async def _make(factory=None, size=2, max_pending=0, timeout=2.0):
        bus = DispatchBus(default_timeout=timeout)
        pool = WorkerPool(
            bus,
            "omero.example.org",
            4064,
            factory or FakeClientFactory(),
            size=size,
            max_pending=max_pending,
        )
        pool.bind(ENDPOINT, prepare)
        await pool.start()
        created.append((bus, pool))
        return bus, pool

    yield _make

    for bus, pool in created:
        await pool.stop()
        await bus.close()


async def send_code(bus, body, **kwargs) -> int:
    with pytest.raises(DispatchFailure) as exc_info:
        await bus.send(ENDPOINT, body, **kwargs)
    return exc_info.value.code


@pytest.mark.asyncio
async def test_reply_from_unit_of_work(make_pool):
    """Test a job result is replied to the sender."""
    factory = FakeClientFactory()
    bus, pool = await make_pool(factory)

    result = await bus.send(ENDPOINT, {"key": "sess-123", "work": lambda client: b"jpeg"})

    assert result == b"jpeg"
    assert factory.clients[0].joined_with == "sess-123"
    assert factory.clients[0].close_calls == 1
    assert pool.health().processed == 1


@pytest.mark.asyncio
async def test_bounded_concurrency(make_pool, gate):
    """Test no more than `size` sessions are open at once."""
    factory = FakeClientFactory()
    bus, pool = await make_pool(factory, size=2)

    senders = [
        asyncio.create_task(bus.send(ENDPOINT, {"key": f"sess-{i}", "work": gate.work(i)}))
        for i in range(3)
    ]
    await wait_until(lambda: gate.active == 2)
    await asyncio.sleep(0.05)

    health = pool.health()
    assert health.busy == 2
    assert health.pending == 1
    assert gate.active == 2

    gate.release.set()
    results = await asyncio.gather(*senders)

    assert sorted(results) == [0, 1, 2]
    assert gate.peak == 2
    assert len(factory.clients) == 3
    assert all(client.close_calls == 1 for client in factory.clients)


@pytest.mark.asyncio
async def test_timeout_discards_late_reply(make_pool, gate):
    """Test a late result is dropped but its session is still closed."""
    factory = FakeClientFactory()
    bus, pool = await make_pool(factory, size=1)

    code = await send_code(bus, {"key": "sess-123", "work": gate.work()}, timeout=0.05)
    assert code == FailureCode.TIMEOUT

    gate.release.set()
    await wait_until(lambda: pool.health().processed == 1)

    assert factory.clients[0].close_calls == 1
    assert pool.health().busy == 0


@pytest.mark.asyncio
async def test_expired_queued_message_is_skipped(make_pool, gate):
    """Test work whose sender gave up is never started."""
    factory = FakeClientFactory()
    bus, pool = await make_pool(factory, size=1)

    first = asyncio.create_task(bus.send(ENDPOINT, {"key": "sess-1", "work": gate.work()}))
    await wait_until(lambda: gate.active == 1)

    code = await send_code(bus, {"key": "sess-2", "work": gate.work()}, timeout=0.05)
    assert code == FailureCode.TIMEOUT

    gate.release.set()
    assert await first == "done"
    await wait_until(lambda: pool.health().pending == 0)
    await asyncio.sleep(0.05)

    assert gate.calls == 1
    assert len(factory.clients) == 1


@pytest.mark.asyncio
async def test_undecodable_body_is_bad_request(make_pool):
    factory = FakeClientFactory()
    bus, pool = await make_pool(factory)

    assert await send_code(bus, "not a job") == FailureCode.BAD_REQUEST
    assert factory.clients == []


@pytest.mark.asyncio
async def test_missing_session_key_is_forbidden(make_pool):
    factory = FakeClientFactory()
    bus, pool = await make_pool(factory)

    assert await send_code(bus, {"key": "", "work": lambda client: 1}) == FailureCode.FORBIDDEN
    assert factory.clients == []


@pytest.mark.asyncio
async def test_thumbnail_payload_without_session_key_is_forbidden(make_pool):
    """Test an empty session key in a thumbnail payload fails with 403."""
    factory = FakeClientFactory()
    bus, pool = await make_pool(factory)
    pool.bind("test.render_thumbnail", prepare_render_thumbnail)
    body = ThumbnailCtx(omero_session_key="", image_id=42).to_json()

    with pytest.raises(DispatchFailure) as exc_info:
        await bus.send("test.render_thumbnail", body)

    assert exc_info.value.failure_code is FailureCode.FORBIDDEN
    assert factory.clients == []


@pytest.mark.asyncio
async def test_join_failure_is_forbidden(make_pool):
    """Test a rejected session key fails with 403 after one close."""
    factory = FakeClientFactory(join_error=PermissionDeniedError("denied"))
    bus, pool = await make_pool(factory)
    calls = []

    code = await send_code(bus, {"key": "bad-key", "work": calls.append})

    assert code == FailureCode.FORBIDDEN
    assert calls == []
    assert factory.clients[0].close_calls == 1


@pytest.mark.asyncio
async def test_none_result_is_not_found(make_pool):
    factory = FakeClientFactory()
    bus, pool = await make_pool(factory)

    assert await send_code(bus, {"key": "sess-123", "work": lambda client: None}) == 404
    assert factory.clients[0].close_calls == 1


@pytest.mark.asyncio
async def test_unit_of_work_exception_is_internal_error(make_pool):
    """Test unit of work errors fail with 500 and still close the session."""
    factory = FakeClientFactory()
    bus, pool = await make_pool(factory)

    def broken(client):
        raise RuntimeError("boom")

    assert await send_code(bus, {"key": "sess-123", "work": broken}) == 500
    assert factory.clients[0].close_calls == 1
    assert pool.health().failed == 1


@pytest.mark.asyncio
async def test_unit_of_work_dispatch_failure_keeps_code(make_pool):
    bus, pool = await make_pool()

    def forbidden(client):
        raise DispatchFailure(FailureCode.FORBIDDEN, "not yours")

    assert await send_code(bus, {"key": "sess-123", "work": forbidden}) == 403


@pytest.mark.asyncio
async def test_full_queue_rejects(make_pool, gate):
    """Test messages beyond max_pending are rejected as unavailable."""
    bus, pool = await make_pool(size=1, max_pending=1)

    first = asyncio.create_task(bus.send(ENDPOINT, {"key": "sess-1", "work": gate.work()}))
    await wait_until(lambda: gate.active == 1)
    second = asyncio.create_task(bus.send(ENDPOINT, {"key": "sess-2", "work": gate.work()}))
    await wait_until(lambda: pool.health().pending == 1)

    code = await send_code(bus, {"key": "sess-3", "work": gate.work()})
    assert code == FailureCode.UNAVAILABLE

    gate.release.set()
    assert await asyncio.gather(first, second) == ["done", "done"]


@pytest.mark.asyncio
async def test_stop_fails_queued_messages(make_pool, gate):
    """Test stopping the pool answers everything still waiting."""
    bus, pool = await make_pool(size=1)

    first = asyncio.create_task(bus.send(ENDPOINT, {"key": "sess-1", "work": gate.work()}))
    await wait_until(lambda: gate.active == 1)
    second = asyncio.create_task(bus.send(ENDPOINT, {"key": "sess-2", "work": gate.work()}))
    await wait_until(lambda: pool.health().pending == 1)

    await pool.stop()

    for sender in (first, second):
        with pytest.raises(DispatchFailure) as exc_info:
            await sender
        assert exc_info.value.failure_code is FailureCode.UNAVAILABLE
    assert not pool.running
    assert not bus.has_consumer(ENDPOINT)


@pytest.mark.asyncio
async def test_stop_reports_idle_while_work_finishes(make_pool, gate):
    """Test work still running in a thread after stop does not count as busy."""
    factory = FakeClientFactory()
    bus, pool = await make_pool(factory, size=1)

    sender = asyncio.create_task(bus.send(ENDPOINT, {"key": "sess-1", "work": gate.work()}))
    await wait_until(lambda: gate.active == 1)

    await pool.stop()
    assert pool.health().busy == 0

    gate.release.set()
    await wait_until(lambda: factory.clients[0].close_calls == 1)
    await asyncio.sleep(0.05)

    assert pool.health().busy == 0
    with pytest.raises(DispatchFailure):
        await sender


def test_pool_size_must_be_positive():
    with pytest.raises(ValueError):
        WorkerPool(DispatchBus(), "localhost", 4064, FakeClientFactory(), size=0)
