"""
Messages accepted by the traffic light and the sinks replies are sent on.
"""

import asyncio
import math
import queue
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Union

from typing_extensions import Protocol

from .errors import ReplyError


class Color(Enum):
    """Traffic light colors"""
    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"

    @classmethod
    def parse(cls, value: Union["Color", str]) -> "Color":
        """Accept a Color or a case-insensitive color name"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown color {value!r}, expected one of {[c.value for c in cls]}"
            ) from None


@dataclass(frozen=True)
class GetColorResponse:
    """Reply to GetColor. Only valid coming out of the machine"""
    color: Color


class ReplySink(Protocol):
    """Single-use destination for a reply"""

    def send(self, response: GetColorResponse) -> None:
        ...


@dataclass(frozen=True)
class Initialize:
    """Reconfigure all durations (seconds) and switch to ``color``"""
    color: Color
    red_duration: float
    yellow_duration: float
    green_duration: float

    def __post_init__(self):
        for color, seconds in self.durations().items():
            if not math.isfinite(seconds) or seconds < 0:
                raise ValueError(f"{color.name} duration must be a finite, non-negative number, got {seconds}")

    @classmethod
    def from_durations(cls, color: Color, durations: Mapping[Color, float]) -> "Initialize":
        return cls(
            color=color,
            red_duration=durations[Color.RED],
            yellow_duration=durations[Color.YELLOW],
            green_duration=durations[Color.GREEN],
        )

    def durations(self) -> Dict[Color, float]:
        return {
            Color.RED: self.red_duration,
            Color.YELLOW: self.yellow_duration,
            Color.GREEN: self.green_duration,
        }


@dataclass(frozen=True)
class GetColor:
    """Ask for the current color, answered on ``reply_to`` within the dispatch"""
    reply_to: ReplySink


class ReplyChannel:
    """
    Thread-safe reply sink backed by a queue.

    The requesting side keeps the channel and reads the response with
    recv() once dispatch() has returned.
    """

    def __init__(self):
        self._queue: "queue.SimpleQueue[GetColorResponse]" = queue.SimpleQueue()
        self._closed = False

    def send(self, response: GetColorResponse) -> None:
        if self._closed:
            raise ReplyError("reply channel is closed")
        self._queue.put(response)

    def recv(self, timeout: Optional[float] = None) -> GetColorResponse:
        """Block for the next response. Raises queue.Empty on timeout"""
        return self._queue.get(timeout=timeout)

    def try_recv(self) -> Optional[GetColorResponse]:
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def close(self):
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed


class FutureReply:
    """Reply sink that resolves an asyncio future; ``await`` it for the response"""

    def __init__(self, future: Optional[asyncio.Future] = None):
        self.future = future if future is not None else asyncio.get_running_loop().create_future()

    def send(self, response: GetColorResponse) -> None:
        if self.future.done():
            raise ReplyError("reply future is already done or cancelled")
        self.future.set_result(response)

    def fail(self, error: BaseException) -> None:
        """Resolve the future with ``error`` unless it is already done"""
        if not self.future.done():
            self.future.set_exception(error)

    def __await__(self):
        return self.future.__await__()
