import pytest

from traffic_hsm.config import TrafficLightConfig
from traffic_hsm.messages import Color
from traffic_hsm.traffic_light import TrafficLight

from tests.helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    """Distinct durations per color"""
    return TrafficLightConfig(
        start_color=Color.RED,
        durations={Color.RED: 10.0, Color.YELLOW: 2.0, Color.GREEN: 7.0},
    )


@pytest.fixture
def light(config, clock):
    return TrafficLight(config, clock=clock)
