"""
Core state machine types and the state registry, with Prometheus metrics.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Type

from prometheus_client import CollectorRegistry, Counter, Histogram, Enum as PrometheusEnum
from typing_extensions import TypeAlias

from .errors import (
    HsmError,
    HierarchyCycleError,
    InvalidTransitionError,
    StateNotRegisteredError,
)
from .timer import Clock, monotonic_clock

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20


class StateType(Enum):
    """Base class for state enums"""
    pass


class Handled(Enum):
    """Outcome of a state handler"""
    YES = "handled"
    NO = "not_handled"


Handler: TypeAlias = Callable[[Any], Handled]
Action: TypeAlias = Callable[[], None]


@dataclass
class StateDefinition:
    """Defines a state: its parent, handler and optional actions"""
    name: str
    handler: Handler
    parent: Optional[StateType] = None
    entry_action: Optional[Action] = None
    exit_action: Optional[Action] = None
    enter_count: int = 0
    handle_count: int = 0
    exit_count: int = 0


class StateMachine:
    """
    State registry with built-in observability.

    States are registered with define_state() and the table is frozen by
    build(), which also validates the hierarchy and enters the initial state.
    Subclasses supply the dispatch algorithm.

    Features:
    - Type-safe state ids using Enums
    - Parent links, entry and exit actions per state
    - Prometheus metrics in a per-instance registry
    - Bounded transition history
    """

    def __init__(self,
                 name: str,
                 states: Type[StateType],
                 clock: Optional[Clock] = None,
                 registry: Optional[CollectorRegistry] = None):
        """
        Initialize state machine.

        Args:
            name: Name of the state machine, also the metric prefix
            states: Enum class defining all states
            clock: Time source in seconds, defaults to time.monotonic
            registry: Prometheus registry, a private one is created if omitted
        """
        self.name = name
        self.states = states
        self.clock = clock or monotonic_clock
        self.current_state: Optional[StateType] = None
        self._state_definitions: Dict[StateType, StateDefinition] = {}
        self._children: Dict[StateType, Set[StateType]] = {}
        self._built = False

        # Development mode logs every dispatch at INFO
        self.dev_mode = os.getenv('TRAFFIC_HSM_DEV_MODE', 'false').lower() == 'true'

        self._history: List[Dict[str, Any]] = []
        self._state_entry_time = self.clock()

        self.registry = registry if registry is not None else CollectorRegistry()
        self._init_metrics()

    def _init_metrics(self):
        """Initialize Prometheus metrics"""
        metric_name = self.name.lower().replace('-', '_').replace(' ', '_')

        state_names = [s.name.lower() for s in self.states]
        self.state_metric = PrometheusEnum(
            f'{metric_name}_state',
            f'Current state of {self.name}',
            states=state_names,
            registry=self.registry
        )

        # Time spent in each leaf state
        self.state_duration = Histogram(
            f'{metric_name}_state_duration_seconds',
            'Time spent in each state',
            labelnames=['state'],
            buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120),
            registry=self.registry
        )

        self.transition_counter = Counter(
            f'{metric_name}_transitions_total',
            'Total state transitions',
            labelnames=['from_state', 'to_state', 'trigger'],
            registry=self.registry
        )

        self.message_counter = Counter(
            f'{metric_name}_messages_total',
            'Messages dispatched, by outcome',
            labelnames=['message', 'outcome'],
            registry=self.registry
        )

    def define_state(self,
                     state: StateType,
                     handler: Handler,
                     parent: Optional[StateType] = None,
                     entry_action: Optional[Action] = None,
                     exit_action: Optional[Action] = None):
        """Register a state. Only allowed before build()"""
        if self._built:
            raise HsmError(f"{self.name}: cannot define {state.name} after build()")
        if state in self._state_definitions:
            raise HsmError(f"{self.name}: state {state.name} is already defined")

        self._state_definitions[state] = StateDefinition(
            name=state.name,
            handler=handler,
            parent=parent,
            entry_action=entry_action,
            exit_action=exit_action
        )

        logger.debug(f"Defined state {state.name} parent={parent.name if parent else None}")

    def build(self, initial_state: StateType):
        """
        Freeze the state table, validate it and enter the initial state.

        Raises:
            StateNotRegisteredError: a parent or the initial state is unknown
            HierarchyCycleError: parent links form a cycle
            InvalidTransitionError: the initial state is not a leaf
        """
        if self._built:
            raise HsmError(f"{self.name}: build() called twice")

        for state, definition in self._state_definitions.items():
            if definition.parent is None:
                continue
            if definition.parent not in self._state_definitions:
                raise StateNotRegisteredError(definition.parent)
            self._children.setdefault(definition.parent, set()).add(state)

        for state in self._state_definitions:
            seen = {state}
            parent = self._state_definitions[state].parent
            while parent is not None:
                if parent in seen:
                    raise HierarchyCycleError(
                        f"{self.name}: cycle through {parent.name} reached from {state.name}"
                    )
                seen.add(parent)
                parent = self._state_definitions[parent].parent

        self._require_leaf(initial_state)
        self._built = True
        self._start(initial_state)

    def _start(self, initial_state: StateType):
        """Enter the initial state"""
        self._enter_state(initial_state)
        self.current_state = initial_state
        self.state_metric.state(initial_state.name.lower())
        logger.info(f"[SM:{self.name}] INIT: state={initial_state.name}")

    def _state(self, state: StateType) -> StateDefinition:
        try:
            return self._state_definitions[state]
        except KeyError:
            raise StateNotRegisteredError(state) from None

    def _require_built(self):
        if not self._built:
            raise HsmError(f"{self.name}: build() has not been called")

    def _require_leaf(self, state: StateType):
        """Only leaf states may be the current state or a transition target"""
        if not self.is_leaf(state):
            raise InvalidTransitionError(
                f"{state.name} is not a valid transition target, only "
                f"{[s.name for s in self.transition_targets]} are allowed"
            )

    def is_leaf(self, state: StateType) -> bool:
        self._state(state)
        return not self._children.get(state)

    @property
    def transition_targets(self) -> List[StateType]:
        """Leaf states, in definition order"""
        return [s for s in self._state_definitions if not self._children.get(s)]

    def parent_of(self, state: StateType) -> Optional[StateType]:
        return self._state(state).parent

    def _enter_state(self, state: StateType):
        """Run a state's entry action"""
        definition = self._state(state)
        definition.enter_count += 1
        if definition.entry_action:
            definition.entry_action()

    def _exit_state(self, state: StateType):
        """Run a state's exit action"""
        definition = self._state(state)
        definition.exit_count += 1
        if definition.exit_action:
            definition.exit_action()

    def _record_transition(self,
                           from_state: StateType,
                           to_state: StateType,
                           trigger: str):
        """Record transition in metrics and history"""
        now = self.clock()
        dwell = now - self._state_entry_time
        self._state_entry_time = now

        self.state_duration.labels(state=from_state.name).observe(dwell)
        self.transition_counter.labels(
            from_state=from_state.name,
            to_state=to_state.name,
            trigger=trigger
        ).inc()
        self.state_metric.state(to_state.name.lower())

        self._history.append({
            'timestamp': now,
            'from': from_state.name,
            'to': to_state.name,
            'trigger': trigger,
            'dwell_seconds': dwell,
        })
        if len(self._history) > HISTORY_LIMIT:
            self._history.pop(0)

        logger.info(f"[SM:{self.name}] TRANSITION: {from_state.name} -> {to_state.name} | trigger={trigger}")

    # Public API for introspection
    def get_state(self) -> StateType:
        """Get current state"""
        return self.current_state

    def get_state_definition(self, state: StateType) -> StateDefinition:
        return self._state(state)

    def get_history(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Get state transition history"""
        return self._history[-limit:]
