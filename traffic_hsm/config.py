"""
Traffic light configuration: defaults, YAML files and environment overrides.

Example file::

    traffic_light:
      start_color: green
      poll_interval: 1.0
      durations:
        red: 10
        yellow: 3
        green: 8
"""

import logging
import math
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from .errors import ConfigError
from .messages import Color, Initialize

logger = logging.getLogger(__name__)

DEFAULT_DURATIONS: Dict[Color, float] = {
    Color.RED: 10.0,
    Color.YELLOW: 3.0,
    Color.GREEN: 8.0,
}
DEFAULT_START_COLOR = Color.RED
DEFAULT_POLL_INTERVAL = 1.0

ENV_PREFIX = "TRAFFIC_LIGHT_"


@dataclass
class TrafficLightConfig:
    """Durations are in seconds"""
    start_color: Color = DEFAULT_START_COLOR
    durations: Dict[Color, float] = field(default_factory=lambda: dict(DEFAULT_DURATIONS))
    poll_interval: float = DEFAULT_POLL_INTERVAL

    def __post_init__(self):
        missing = [c.name for c in Color if c not in self.durations]
        if missing:
            raise ConfigError(f"Missing durations for {missing}")
        for color, seconds in self.durations.items():
            if not math.isfinite(seconds) or seconds < 0:
                raise ConfigError(f"{color.name} duration must be a finite, non-negative number, got {seconds}")
        if not math.isfinite(self.poll_interval) or self.poll_interval <= 0:
            raise ConfigError(f"poll_interval must be a finite, positive number, got {self.poll_interval}")

    def initialize_message(self) -> Initialize:
        """The Initialize message that applies this configuration"""
        return Initialize.from_durations(self.start_color, self.durations)

    def with_overrides(self,
                       start_color: Optional[Union[Color, str]] = None,
                       durations: Optional[Mapping[Color, Optional[float]]] = None,
                       poll_interval: Optional[float] = None) -> "TrafficLightConfig":
        """Copy with every non-None argument applied"""
        merged = dict(self.durations)
        for color, seconds in (durations or {}).items():
            if seconds is not None:
                merged[color] = float(seconds)

        try:
            color = Color.parse(start_color) if start_color is not None else self.start_color
        except ValueError as e:
            raise ConfigError(str(e)) from None

        return replace(
            self,
            start_color=color,
            durations=merged,
            poll_interval=self.poll_interval if poll_interval is None else float(poll_interval),
        )

    @staticmethod
    def from_file(filepath: Union[str, Path]) -> "TrafficLightConfig":
        """Load configuration from a YAML file"""
        filepath = Path(filepath)

        try:
            with open(filepath, 'r') as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read {filepath}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {filepath}: {e}") from e

        logger.debug(f"Loaded configuration from {filepath}")
        return TrafficLightConfig.from_dict(data or {})

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "TrafficLightConfig":
        """Parse configuration from a dictionary, optionally nested under ``traffic_light``"""
        if isinstance(data, Mapping) and 'traffic_light' in data:
            data = data['traffic_light'] or {}
        if not isinstance(data, Mapping):
            raise ConfigError(f"Configuration must be a mapping, got {type(data).__name__}")

        raw_durations = data.get('durations') or {}
        if not isinstance(raw_durations, Mapping):
            raise ConfigError(
                f"durations must map color names to seconds, got {type(raw_durations).__name__}"
            )

        durations = {}
        for name, seconds in raw_durations.items():
            try:
                durations[Color.parse(name)] = float(seconds)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid duration {name}={seconds!r}: {e}") from None

        try:
            poll_interval = data.get('poll_interval')
            return TrafficLightConfig().with_overrides(
                start_color=data.get('start_color'),
                durations=durations,
                poll_interval=float(poll_interval) if poll_interval is not None else None,
            )
        except ConfigError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigError(str(e)) from None

    @classmethod
    def from_env(cls,
                 environ: Optional[Mapping[str, str]] = None,
                 base: Optional["TrafficLightConfig"] = None) -> "TrafficLightConfig":
        """
        Apply TRAFFIC_LIGHT_* environment variables on top of ``base``.

        Recognised: TRAFFIC_LIGHT_RED_SECONDS, TRAFFIC_LIGHT_YELLOW_SECONDS,
        TRAFFIC_LIGHT_GREEN_SECONDS, TRAFFIC_LIGHT_START_COLOR,
        TRAFFIC_LIGHT_POLL_INTERVAL.
        """
        environ = os.environ if environ is None else environ
        base = base or cls()

        def number(key: str) -> Optional[float]:
            raw = environ.get(f"{ENV_PREFIX}{key}")
            if raw is None:
                return None
            try:
                return float(raw)
            except ValueError:
                raise ConfigError(f"{ENV_PREFIX}{key} must be a number, got {raw!r}") from None

        return base.with_overrides(
            start_color=environ.get(f"{ENV_PREFIX}START_COLOR"),
            durations={color: number(f"{color.name}_SECONDS") for color in Color},
            poll_interval=number("POLL_INTERVAL"),
        )
