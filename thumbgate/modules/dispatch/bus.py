import asyncio
import inspect
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from ...errors import DispatchFailure, FailureCode

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class Message:
    """
    An addressed unit of work with an implicit reply channel.

    Exactly one of ``reply()`` or ``fail()`` takes effect; later calls are
    ignored. Replies to a message whose sender stopped waiting are discarded.
    """

    def __init__(self, message_id: int, endpoint: str, body: Any, future: asyncio.Future):
        self.message_id = message_id
        self.endpoint = endpoint
        self.body = body
        self._future = future

    @property
    def replied(self) -> bool:
        """True once the message has been replied to or failed."""
        return self._future.done() and not self._future.cancelled()

    @property
    def expired(self) -> bool:
        """True if the sender stopped waiting for an outcome."""
        return self._future.cancelled()

    def reply(self, body: Any) -> bool:
        """
        Reply to the message.

        Returns:
            True if the reply was delivered, False if it was discarded
        """
        if self._future.done():
            self._discard("reply")
            return False
        self._future.set_result(body)
        return True

    def fail(self, code: int, message: str = "") -> bool:
        """
        Fail the message with a failure code.

        Returns:
            True if the failure was delivered, False if it was discarded
        """
        if self._future.done():
            self._discard(f"failure {int(code)}")
            return False
        self._future.set_exception(DispatchFailure(code, message))
        return True

    def expire(self) -> None:
        """Stop waiting for an outcome; any later reply is discarded."""
        if not self._future.done():
            self._future.cancel()

    def _discard(self, what: str) -> None:
        if self._future.cancelled():
            logger.debug(
                f"Discarding {what} for message {self.message_id} to "
                f"{self.endpoint}: sender no longer waiting"
            )
        else:
            logger.warning(
                f"Discarding {what} for message {self.message_id} to "
                f"{self.endpoint}: already replied"
            )

    def __repr__(self) -> str:
        return f"Message(id={self.message_id}, endpoint={self.endpoint!r})"


Handler = Callable[[Message], Union[Awaitable[None], None]]


class DispatchBus:
    """
    In-process asynchronous request/reply bus with named endpoints.

    Each endpoint has exactly one logical consumer. A consumer may hand
    messages to several workers (competing consumers); each message is
    still answered once.
    """

    def __init__(self, default_timeout: float = DEFAULT_TIMEOUT):
        """
        Initialize dispatch bus.

        Args:
            default_timeout: Seconds a sender waits for an outcome
        """
        self.default_timeout = default_timeout
        self._consumers: Dict[str, Handler] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._ids = itertools.count(1)

    def consumer(self, endpoint: str, handler: Handler) -> None:
        """
        Register the consumer for an endpoint.

        Raises:
            ValueError: If the endpoint already has a consumer
        """
        if endpoint in self._consumers:
            raise ValueError(f"Endpoint already has a consumer: {endpoint}")
        self._consumers[endpoint] = handler
        logger.debug(f"Registered consumer for {endpoint}")

    def unregister(self, endpoint: str) -> None:
        """Remove the consumer for an endpoint, if any."""
        self._consumers.pop(endpoint, None)

    def has_consumer(self, endpoint: str) -> bool:
        return endpoint in self._consumers

    @property
    def endpoints(self):
        return sorted(self._consumers)

    async def send(self, endpoint: str, body: Any, timeout: Optional[float] = None) -> Any:
        """
        Send a message and wait for its outcome.

        Args:
            endpoint: Endpoint name
            body: Message body (JSON text by convention)
            timeout: Seconds to wait (defaults to the bus timeout)

        Returns:
            The reply body

        Raises:
            DispatchFailure: If the consumer failed the message, no consumer
                is registered, or no outcome arrived in time (TIMEOUT)
        """
        handler = self._consumers.get(endpoint)
        if handler is None:
            raise DispatchFailure(FailureCode.UNAVAILABLE, f"No consumer for endpoint {endpoint}")

        loop = asyncio.get_running_loop()
        message = Message(next(self._ids), endpoint, body, loop.create_future())

        task = loop.create_task(self._deliver(handler, message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        timeout = self.default_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(asyncio.shield(message._future), timeout)
        except asyncio.TimeoutError:
            message.expire()
            logger.warning(f"No reply from {endpoint} within {timeout}s for {message!r}")
            raise DispatchFailure(FailureCode.TIMEOUT, f"Timed out waiting for {endpoint}")
        except asyncio.CancelledError:
            message.expire()
            raise

    async def _deliver(self, handler: Handler, message: Message) -> None:
        """Run a consumer, converting uncaught exceptions into failures."""
        try:
            result = handler(message)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            message.fail(FailureCode.UNAVAILABLE, "Dispatch bus closed")
            raise
        except DispatchFailure as e:
            message.fail(e.code, e.message)
        except Exception:
            logger.error(f"Unhandled exception in consumer for {message.endpoint}", exc_info=True)
            message.fail(FailureCode.INTERNAL_ERROR, "Internal error")

    async def close(self) -> None:
        """Cancel in-flight deliveries and drop all consumers."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._consumers.clear()
