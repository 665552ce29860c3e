"""
traffic-hsm

A hierarchical state machine with deferred transitions, driving a timed
traffic light.
"""

__version__ = "0.1.0"

from .core import (
    Handled,
    StateType,
    StateMachine,
    StateDefinition,
)

from .hierarchical import HierarchicalStateMachine
from .messages import Color, GetColor, GetColorResponse, Initialize, ReplyChannel, FutureReply
from .config import TrafficLightConfig, DEFAULT_DURATIONS
from .traffic_light import TrafficLight, StateId
from .mailbox import Mailbox
from .errors import HsmError, ReplyError

__all__ = [
    "Handled",
    "StateType",
    "StateMachine",
    "StateDefinition",
    "HierarchicalStateMachine",
    "Color",
    "GetColor",
    "GetColorResponse",
    "Initialize",
    "ReplyChannel",
    "FutureReply",
    "TrafficLightConfig",
    "DEFAULT_DURATIONS",
    "TrafficLight",
    "StateId",
    "Mailbox",
    "HsmError",
    "ReplyError",
]
