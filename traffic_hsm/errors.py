"""
Exception hierarchy for the hierarchical state machine and its payloads.
"""


class HsmError(Exception):
    """Base class for all errors raised by traffic_hsm"""


class StateNotRegisteredError(HsmError, KeyError):
    """A state id was used that has no StateDefinition. Always a programming error."""

    def __init__(self, state):
        super().__init__(f"State {state!r} is not registered")
        self.state = state


class InvalidTransitionError(HsmError):
    """A transition targeted a state that is not a leaf of the hierarchy"""


class HierarchyCycleError(HsmError):
    """The parent links of the registered states form a cycle"""


class MissingDurationError(HsmError, KeyError):
    """A color has no entry in the duration table"""

    def __init__(self, color):
        super().__init__(f"No duration configured for {color!r}")
        self.color = color


class ReplyError(HsmError):
    """A reply could not be delivered because the reply sink is closed"""


class ConfigError(HsmError, ValueError):
    """Configuration could not be loaded or failed validation"""


class MailboxClosedError(HsmError):
    """The mailbox consumer stopped after a failure and accepts no more messages"""
