"""
Bounded worker pool for blocking OMERO work.

``size`` slots consume messages from every bound endpoint. A slot takes one
message, decodes it, joins the OMERO session, runs the unit of work,
closes the session and answers the message before it takes the next one.
The pool size is therefore the maximum number of OMERO sessions open at
once.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ...errors import DispatchFailure, FailureCode, JoinFailedError
from ...logging_config import redact
from ..dispatch.bus import DispatchBus, Message
from ..omero.client import ClientFactory, RemoteClient
from ..request.context import OmeroRequest

logger = logging.getLogger(__name__)

DEFAULT_POOL_SIZE = 4


def _identity(value: Any) -> Any:
    return value


@dataclass
class Job:
    """A decoded message: which session to join and what to run in it."""
    omero_session_key: str
    unit_of_work: Callable[[RemoteClient], Any]
    encode: Callable[[Any], Any] = _identity


Prepare = Callable[[Any], Job]


class SlotState(str, Enum):
    """What a worker slot is doing."""

    IDLE = "idle"
    DECODING = "decoding"
    SESSION_JOINING = "session_joining"
    EXECUTING = "executing"
    SESSION_CLOSING = "session_closing"


@dataclass(frozen=True)
class PoolHealth:
    """Immutable snapshot of pool state for monitoring."""

    size: int
    busy: int
    pending: int
    processed: int
    failed: int
    running: bool


@dataclass(frozen=True)
class _Outcome:
    ok: bool
    body: Any = None
    code: int = FailureCode.INTERNAL_ERROR
    message: str = ""

    def apply(self, message: Message) -> bool:
        if self.ok:
            return message.reply(self.body)
        return message.fail(self.code, self.message)


def _failure(code: int, message: str) -> _Outcome:
    return _Outcome(ok=False, code=code, message=message)


class WorkerPool:
    def __init__(
        self,
        bus: DispatchBus,
        host: str,
        port: int,
        client_factory: ClientFactory,
        size: int = DEFAULT_POOL_SIZE,
        max_pending: int = 0,
    ):
        """
        Initialize worker pool.

        Args:
            bus: Dispatch bus to consume from
            host: OMERO server host
            port: OMERO server port
            client_factory: Creates OMERO clients
            size: Number of worker slots
            max_pending: Max queued messages (0 = unbounded)
        """
        if size < 1:
            raise ValueError(f"Worker pool size must be at least 1, got {size}")
        self.bus = bus
        self.host = host
        self.port = port
        self.client_factory = client_factory
        self.size = size
        self.max_pending = max_pending

        self._endpoints: Dict[str, Prepare] = {}
        self._queue: Optional[asyncio.Queue] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._slots: List[asyncio.Task] = []
        self._states: List[SlotState] = [SlotState.IDLE] * size
        self._processed = 0
        self._failed = 0

    @property
    def running(self) -> bool:
        return bool(self._slots)

    @property
    def endpoints(self) -> List[str]:
        return sorted(self._endpoints)

    def bind(self, endpoint: str, prepare: Prepare) -> None:
        """
        Consume an endpoint with this pool.

        Args:
            endpoint: Endpoint name on the dispatch bus
            prepare: Decodes a message body into a Job; raising marks the
                message as a bad request
        """
        self._endpoints[endpoint] = prepare
        self.bus.consumer(endpoint, self._accept)

    async def _accept(self, message: Message) -> None:
        if self._queue is None or not self.running:
            message.fail(FailureCode.UNAVAILABLE, "Worker pool not running")
            return
        if self.max_pending and self._queue.qsize() >= self.max_pending:
            logger.warning(f"Worker pool queue full, rejecting {message!r}")
            message.fail(FailureCode.UNAVAILABLE, "Worker pool queue full")
            return
        self._queue.put_nowait(message)

    async def start(self) -> None:
        """Start the worker slots."""
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._states = [SlotState.IDLE] * self.size
        self._executor = ThreadPoolExecutor(
            max_workers=self.size, thread_name_prefix="thumbgate-worker"
        )
        self._slots = [
            asyncio.create_task(self._run_slot(index), name=f"worker-slot-{index}")
            for index in range(self.size)
        ]
        logger.info(f"Started worker pool with {self.size} slots for {sorted(self._endpoints)}")

    async def stop(self) -> None:
        """
        Stop the worker slots.

        Queued messages are failed as unavailable. Work already running in a
        thread finishes (and closes its session) but its outcome is dropped.
        """
        if not self.running:
            return
        for endpoint in self._endpoints:
            self.bus.unregister(endpoint)

        slots, self._slots = self._slots, []
        for slot in slots:
            slot.cancel()
        await asyncio.gather(*slots, return_exceptions=True)

        while self._queue is not None and not self._queue.empty():
            message = self._queue.get_nowait()
            message.fail(FailureCode.UNAVAILABLE, "Worker pool stopped")

        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        # Threads still finishing write to the list they started with
        self._states = [SlotState.IDLE] * self.size
        logger.info("Stopped worker pool")

    def health(self) -> PoolHealth:
        return PoolHealth(
            size=self.size,
            busy=sum(1 for state in self._states if state is not SlotState.IDLE),
            pending=self._queue.qsize() if self._queue is not None else 0,
            processed=self._processed,
            failed=self._failed,
            running=self.running,
        )

    async def _run_slot(self, slot: int) -> None:
        loop = asyncio.get_running_loop()
        states = self._states
        while True:
            message: Message = await self._queue.get()
            try:
                if message.expired:
                    logger.debug(f"Skipping expired {message!r}")
                    continue
                prepare = self._endpoints[message.endpoint]
                outcome = await loop.run_in_executor(
                    self._executor, self._process, states, slot, prepare, message.body
                )
                if not outcome.ok:
                    self._failed += 1
                self._processed += 1
                outcome.apply(message)
            except asyncio.CancelledError:
                message.fail(FailureCode.UNAVAILABLE, "Worker pool stopped")
                raise
            except Exception:
                logger.error(f"Worker slot {slot} failed handling {message!r}", exc_info=True)
                self._failed += 1
                message.fail(FailureCode.INTERNAL_ERROR, "Internal error")
            finally:
                states[slot] = SlotState.IDLE
                self._queue.task_done()

    def _process(
        self, states: List[SlotState], slot: int, prepare: Prepare, body: Any
    ) -> _Outcome:
        """Handle one message body in a worker thread; never raises."""
        states[slot] = SlotState.DECODING
        try:
            job = prepare(body)
        except Exception as e:
            logger.warning(f"Unable to decode message body: {e}")
            return _failure(FailureCode.BAD_REQUEST, "Bad request")

        if not job.omero_session_key:
            return _failure(FailureCode.FORBIDDEN, "Missing session key")

        states[slot] = SlotState.SESSION_JOINING
        try:
            with OmeroRequest(
                self.host, self.port, job.omero_session_key, self.client_factory
            ) as request:
                states[slot] = SlotState.EXECUTING
                try:
                    result = request.handler(job.unit_of_work)
                finally:
                    states[slot] = SlotState.SESSION_CLOSING
        except JoinFailedError as e:
            logger.info(f"{e} on slot {slot}")
            return _failure(FailureCode.FORBIDDEN, "Unable to join session")
        except DispatchFailure as e:
            return _failure(e.code, e.message)
        except Exception:
            logger.error(
                f"Exception while handling request for session "
                f"{redact(job.omero_session_key)}",
                exc_info=True,
            )
            return _failure(FailureCode.INTERNAL_ERROR, "Internal error")

        if result is None:
            return _failure(FailureCode.NOT_FOUND, "Not found")

        try:
            return _Outcome(ok=True, body=job.encode(result))
        except Exception:
            logger.error("Exception while encoding reply", exc_info=True)
            return _failure(FailureCode.INTERNAL_ERROR, "Internal error")
