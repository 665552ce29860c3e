"""
Hierarchical state machine: parent-chain dispatch with deferred transitions.
"""

import logging
from collections import deque
from typing import Any, Deque, List, Optional, Set

from .core import Handled, StateMachine, StateType
from .errors import ReplyError

logger = logging.getLogger(__name__)


class HierarchicalStateMachine(StateMachine):
    """
    State machine whose states form a tree.

    dispatch() offers a message to the current leaf state's handler. A
    handler that returns Handled.NO passes the message on to its parent,
    and so on up to the root. Independently of that outcome a handler may
    call set_destination() to request a transition; the switch happens once
    the walk is over, so ancestors still see the message. transition_to()
    records the destination and returns Handled.YES, ending the walk.

    Supports:
    - Arbitrary nesting depth
    - Exit and entry actions run from the least common ancestor
    - Deferring messages until the next transition

    Not thread safe. Exactly one dispatch may be in flight per instance;
    producers on other threads or tasks must go through a single consumer
    such as traffic_hsm.mailbox.Mailbox.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._active_states: Set[StateType] = set()
        self._pending_transition: Optional[StateType] = None
        self._deferred: Deque[Any] = deque()

    def _start(self, initial_state: StateType):
        """Enter the initial leaf and all of its ancestors, root first"""
        for state in self._path_from_root(initial_state):
            self._enter_state(state)
        self.current_state = initial_state
        self.state_metric.state(initial_state.name.lower())
        logger.info(f"[SM:{self.name}] INIT: state={initial_state.name}")

    def _enter_state(self, state: StateType):
        super()._enter_state(state)
        self._active_states.add(state)

    def _exit_state(self, state: StateType):
        super()._exit_state(state)
        self._active_states.discard(state)

    def set_destination(self, state: StateType):
        """
        Request a transition to be taken after the current dispatch.

        Does not end the walk up the hierarchy. When several handlers in
        one walk request a destination the last request wins, so an
        ancestor can override what a child asked for.
        """
        self._require_leaf(state)
        self._pending_transition = state

    def transition_to(self, state: StateType) -> Handled:
        """Request a transition and end the walk: ``return self.transition_to(X)``"""
        self.set_destination(state)
        return Handled.YES

    def defer(self, message: Any):
        """Hold a message back until the machine next changes state"""
        self._deferred.append(message)

    @property
    def deferred_count(self) -> int:
        return len(self._deferred)

    def dispatch(self, message: Any) -> None:
        """
        Deliver one message to the current state.

        Raises:
            ReplyError: a handler could not deliver its reply. Any transition
                requested during the dispatch has been applied already.
        """
        self._require_built()
        self._dispatch(message)

    def process(self, message: Any) -> None:
        """
        Dispatch a message, then replay deferred messages after each transition.

        Messages deferred before a transition are replayed once, in order.
        Messages deferred during that replay wait for the following
        transition. A ReplyError from a dispatch that changed state is
        raised after the replay.
        """
        self._require_built()
        source = self.current_state
        try:
            self._dispatch(message)
        finally:
            if self.current_state != source:
                self._replay_deferred()

    def _replay_deferred(self):
        transitioned = True
        while transitioned:
            transitioned = False
            replay, self._deferred = self._deferred, deque()
            try:
                while replay:
                    source = self.current_state
                    try:
                        self._dispatch(replay.popleft())
                    finally:
                        transitioned |= self.current_state != source
            finally:
                # Anything not replayed stays ahead of newly deferred messages
                replay.extend(self._deferred)
                self._deferred = replay

    def _dispatch(self, message: Any):
        """Walk the parent chain then apply the pending transition"""
        self._pending_transition = None
        trigger = type(message).__name__

        log = logger.info if self.dev_mode else logger.debug
        log(f"[SM:{self.name}] DISPATCH: trigger={trigger} state={self.current_state.name}")

        try:
            handled_by = self._walk(message, trigger)
        except ReplyError:
            self._complete_transition(trigger)
            raise

        self.message_counter.labels(
            message=trigger,
            outcome='handled' if handled_by is not None else 'unhandled'
        ).inc()
        self._complete_transition(trigger)

    def _walk(self, message: Any, trigger: str) -> Optional[StateType]:
        """Offer the message from the current leaf upwards. Returns the state that handled it"""
        state = self.current_state
        while state is not None:
            definition = self._state(state)
            definition.handle_count += 1
            if definition.handler(message) is Handled.YES:
                return state
            state = definition.parent

        logger.debug(
            f"[SM:{self.name}] IGNORED: trigger='{trigger}' "
            f"state={self.current_state.name} reason=no_handler"
        )
        return None

    def _complete_transition(self, trigger: str):
        destination, self._pending_transition = self._pending_transition, None
        if destination is not None and destination != self.current_state:
            self._switch_state(destination, trigger)

    def _switch_state(self, destination: StateType, trigger: str):
        """Exit up to the least common ancestor, then enter down to the destination"""
        source = self.current_state
        destination_path = self._path_from_root(destination)

        for state in reversed(self._path_from_root(source)):
            if state in destination_path:
                break
            self._exit_state(state)

        for state in destination_path:
            if state not in self._active_states:
                self._enter_state(state)

        self.current_state = destination
        self._record_transition(source, destination, trigger)

    def _path_from_root(self, state: StateType) -> List[StateType]:
        path = [state]
        parent = self.parent_of(state)
        while parent is not None:
            path.append(parent)
            parent = self.parent_of(parent)
        path.reverse()
        return path

    def is_in_state(self, state: StateType) -> bool:
        """
        Check if state machine is in a particular state.

        This includes parent states - if we're in a child state,
        we're also considered to be in its parent state.
        """
        return state in self._active_states

    def get_active_states(self) -> Set[StateType]:
        """Get all currently active states (including parents)"""
        return self._active_states.copy()

    def get_state_path(self, state: Optional[StateType] = None) -> str:
        """Get full hierarchical path of a state, e.g. "BASE.RED" """
        if state is None:
            state = self.current_state
        return ".".join(s.name for s in self._path_from_root(state))

    def get_state_depth(self, state: Optional[StateType] = None) -> int:
        """Get the hierarchical depth of a state, roots are 0"""
        if state is None:
            state = self.current_state
        return len(self._path_from_root(state)) - 1

    def visualize(self) -> str:
        """Generate hierarchical state diagram in PlantUML format"""
        lines = ["@startuml", f"title {self.name} Hierarchical State Machine", ""]

        roots = [s for s, d in self._state_definitions.items() if d.parent is None]
        for root in roots:
            self._visualize_state(root, lines, indent="")

        lines.append("@enduml")
        return "\n".join(lines)

    def _visualize_state(self, state: StateType, lines: List[str], indent: str):
        children = [s for s in self._state_definitions if s in self._children.get(state, ())]
        if children:
            lines.append(f"{indent}state {state.name} {{")
            for child in children:
                self._visualize_state(child, lines, indent + "  ")
            lines.append(f"{indent}}}")
        elif state == self.current_state:
            lines.append(f"{indent}state {state.name} #yellow : Current State")
        else:
            lines.append(f"{indent}state {state.name}")
