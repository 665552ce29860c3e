"""
Single-consumer mailbox that serializes access to a state machine.
"""

import asyncio
import logging
from typing import Any, Optional

from .errors import MailboxClosedError, ReplyError
from .hierarchical import HierarchicalStateMachine
from .messages import Color, FutureReply, GetColor

logger = logging.getLogger(__name__)

_STOP = object()


class Mailbox:
    """
    Queue in front of one machine.

    Any number of tasks may send(); a single consumer task started by
    start() (or ``async with``) is the only caller of the machine's
    process(), so exactly one dispatch is ever in flight.

    If process() raises anything but ReplyError the consumer stops. Queued
    requests are failed with MailboxClosedError, later send() calls raise
    it, and stop() re-raises the original exception.
    """

    def __init__(self, machine: HierarchicalStateMachine, maxsize: int = 0):
        self.machine = machine
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._task: Optional[asyncio.Task] = None
        self._failure: Optional[BaseException] = None

    @property
    def failure(self) -> Optional[BaseException]:
        """The exception that stopped the consumer, if any"""
        return self._failure

    def _check_open(self):
        if self._failure is not None:
            raise self._closed_error() from self._failure

    def _closed_error(self) -> MailboxClosedError:
        return MailboxClosedError(
            f"[SM:{self.machine.name}] consumer stopped: {self._failure!r}"
        )

    async def send(self, message: Any):
        self._check_open()
        await self._queue.put(message)
        # The consumer may have failed while put() waited for room
        self._check_open()

    def send_nowait(self, message: Any):
        self._check_open()
        self._queue.put_nowait(message)

    async def join(self):
        """Wait until every message sent so far has been processed or failed"""
        await self._queue.join()

    async def get_color(self, timeout: Optional[float] = None) -> Color:
        """Request the current color and wait for the reply"""
        reply = FutureReply()
        await self.send(GetColor(reply_to=reply))
        response = await asyncio.wait_for(reply.future, timeout)
        return response.color

    async def run(self):
        """Consume messages until stop() is called or process() fails"""
        while True:
            message = await self._queue.get()
            try:
                if message is _STOP:
                    return
                try:
                    self.machine.process(message)
                except ReplyError as e:
                    # The requester gave up, e.g. get_color() timed out
                    logger.warning(f"[SM:{self.machine.name}] Reply to {type(message).__name__} dropped: {e}")
                except Exception as e:
                    logger.exception(f"[SM:{self.machine.name}] Consumer stopped on {type(message).__name__}")
                    self._fail(message, e)
                    raise
            finally:
                self._queue.task_done()

    def _fail(self, message: Any, error: Exception):
        """Record the failure and fail the request in flight and everything queued behind it"""
        self._failure = error
        self._fail_reply(message)
        while True:
            try:
                queued = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._fail_reply(queued)
            self._queue.task_done()

    def _fail_reply(self, message: Any):
        if isinstance(message, GetColor) and isinstance(message.reply_to, FutureReply):
            closed = self._closed_error()
            closed.__cause__ = self._failure
            message.reply_to.fail(closed)

    def start(self) -> asyncio.Task:
        self._check_open()
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        """Drain queued messages, then stop the consumer. Re-raises a consumer failure"""
        if self._task is None:
            return
        if not self._task.done():
            await self._queue.put(_STOP)
        try:
            await self._task
        finally:
            self._task = None

    async def __aenter__(self) -> "Mailbox":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
