"""
Timed traffic light built on the hierarchical state machine.

Hierarchy::

    BASE
     +-- INITIAL   picks the color state matching the configured color
     +-- RED       -> GREEN when its dwell time has passed
     +-- YELLOW    -> RED
     +-- GREEN     -> YELLOW

Color states only declare their successor with set_destination() and
return Handled.NO, so BASE answers every GetColor, including one that
arrives just as a dwell expires. No state calls BASE's handler directly:
doing so would duplicate the walk up the hierarchy outside the dispatcher.
"""

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry

from .config import TrafficLightConfig
from .core import Handled, StateType
from .errors import MissingDurationError
from .hierarchical import HierarchicalStateMachine
from .messages import Color, GetColor, GetColorResponse, Initialize
from .timer import Clock, Deadline

logger = logging.getLogger(__name__)


class StateId(StateType):
    INITIAL = "initial"
    BASE = "base"
    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"


COLOR_STATES: Dict[Color, StateId] = {
    Color.RED: StateId.RED,
    Color.YELLOW: StateId.YELLOW,
    Color.GREEN: StateId.GREEN,
}

SUCCESSORS: Dict[Color, Color] = {
    Color.RED: Color.GREEN,
    Color.GREEN: Color.YELLOW,
    Color.YELLOW: Color.RED,
}


@dataclass
class LightContext:
    """Domain data, changed only by entry actions and Initialize"""
    color: Color = Color.RED
    deadline: Optional[Deadline] = None
    durations: Dict[Color, float] = field(default_factory=dict)

    def duration_for(self, color: Color) -> float:
        try:
            return self.durations[color]
        except KeyError:
            raise MissingDurationError(color) from None


class TrafficLight(HierarchicalStateMachine):
    """
    Traffic light controller.

    Send Initialize to reconfigure, GetColor to read the color. Color
    changes are only noticed when a message arrives, so the driver's
    polling cadence bounds how promptly a change becomes visible.
    """

    def __init__(self,
                 config: Optional[TrafficLightConfig] = None,
                 name: str = "traffic_light",
                 clock: Optional[Clock] = None,
                 registry: Optional[CollectorRegistry] = None):
        super().__init__(name, StateId, clock=clock, registry=registry)
        self.config = config or TrafficLightConfig()
        self.context = LightContext()

        self.define_state(StateId.BASE, self._base)
        self.define_state(StateId.INITIAL, self._initial,
                          parent=StateId.BASE,
                          entry_action=self._initial_enter)
        for color, state in COLOR_STATES.items():
            self.define_state(state, partial(self._color_state, SUCCESSORS[color]),
                              parent=StateId.BASE,
                              entry_action=partial(self._color_enter, color))

        self.build(StateId.INITIAL)

    @property
    def color(self) -> Color:
        return self.context.color

    @property
    def deadline(self) -> Optional[Deadline]:
        return self.context.deadline

    @property
    def durations(self) -> Dict[Color, float]:
        return dict(self.context.durations)

    def _initial_enter(self):
        self.context.durations = dict(self.config.durations)
        self.context.color = self.config.start_color
        self.context.deadline = None

    def _initial(self, message: Any) -> Handled:
        self.set_destination(COLOR_STATES[self.context.color])
        return Handled.NO

    def _color_enter(self, color: Color):
        self.context.color = color
        self.context.deadline = Deadline.after(self.clock(), self.context.duration_for(color))
        logger.debug(f"[SM:{self.name}] {color.name} until {self.context.deadline.at:.3f}")

    def _color_state(self, successor: Color, message: Any) -> Handled:
        deadline = self.context.deadline
        if deadline is not None and deadline.expired(self.clock()):
            self.set_destination(COLOR_STATES[successor])
        return Handled.NO

    def _base(self, message: Any) -> Handled:
        if isinstance(message, Initialize):
            self.context.durations = message.durations()
            self.context.color = message.color
            self.context.deadline = Deadline.after(self.clock(), self.context.duration_for(message.color))
            self.set_destination(COLOR_STATES[message.color])
            durations = ", ".join(f"{c.name}={s}" for c, s in self.context.durations.items())
            logger.info(f"[SM:{self.name}] Initialize color={message.color.name} {durations}")
            return Handled.YES

        if isinstance(message, GetColor):
            message.reply_to.send(GetColorResponse(color=self.context.color))
            return Handled.YES

        if isinstance(message, GetColorResponse):
            logger.warning(
                f"[SM:{self.name}] GetColorResponse({message.color.name}) sent to the machine, ignoring"
            )
            return Handled.YES

        return Handled.NO
