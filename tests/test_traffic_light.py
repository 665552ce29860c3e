import logging

import pytest

from traffic_hsm.config import DEFAULT_DURATIONS
from traffic_hsm.errors import MissingDurationError, ReplyError
from traffic_hsm.messages import Color, GetColor, GetColorResponse, Initialize, ReplyChannel
from traffic_hsm.timer import Deadline
from traffic_hsm.traffic_light import StateId, TrafficLight

from tests.helpers import FakeClock, get_color


def initialize(color, red=1.0, yellow=1.0, green=1.0):
    return Initialize(color=color, red_duration=red, yellow_duration=yellow, green_duration=green)


def test_starts_in_initial_with_configured_defaults(light, config):
    assert light.get_state() == StateId.INITIAL
    assert light.get_active_states() == {StateId.BASE, StateId.INITIAL}
    assert light.color == Color.RED
    assert light.durations == config.durations
    assert light.deadline is None


def test_default_durations_are_used_without_config():
    light = TrafficLight(clock=FakeClock())
    assert light.durations == DEFAULT_DURATIONS


def test_first_message_enters_configured_color(light):
    assert get_color(light) == Color.RED
    assert light.get_state() == StateId.RED
    assert light.get_state_path() == "BASE.RED"
    assert light.deadline == Deadline(at=10.0)


def test_initial_state_follows_start_color(config, clock):
    config.start_color = Color.GREEN
    light = TrafficLight(config, clock=clock)

    assert get_color(light) == Color.GREEN
    assert light.get_state() == StateId.GREEN


@pytest.mark.parametrize("color", list(Color))
def test_entering_a_color_sets_color_and_deadline(light, clock, color):
    clock.advance(4.0)
    light.dispatch(initialize(color, red=10.0, yellow=2.0, green=7.0))

    assert light.get_state().value == color.value
    assert light.color == color
    assert light.deadline == Deadline.after(4.0, light.durations[color])


def test_color_is_stable_before_deadline(light, clock):
    colors = []
    for _ in range(9):
        colors.append(get_color(light))
        clock.advance(1.0)

    assert set(colors) == {Color.RED}
    assert light.get_state() == StateId.RED


@pytest.mark.parametrize("start,successor,dwell", [
    (Color.RED, Color.GREEN, 10.0),
    (Color.GREEN, Color.YELLOW, 7.0),
    (Color.YELLOW, Color.RED, 2.0),
])
def test_expired_dwell_moves_to_successor_and_still_replies(light, clock, start, successor, dwell):
    light.dispatch(initialize(start, red=10.0, yellow=2.0, green=7.0))
    clock.advance(dwell)

    # Reply is produced by BASE before the switch happens
    assert get_color(light) == start
    assert light.color == successor
    assert get_color(light) == successor


def test_any_message_triggers_the_dwell_check(light, clock):
    get_color(light)
    clock.advance(10.0)
    light.dispatch(object())

    assert light.get_state() == StateId.GREEN


def test_deadline_is_not_recomputed_mid_dwell(light, clock):
    get_color(light)
    deadline = light.deadline
    for _ in range(5):
        clock.advance(1.0)
        get_color(light)

    assert light.deadline == deadline


def test_initialize_mid_dwell_discards_remaining_time(light, clock):
    get_color(light)
    clock.advance(3.0)
    light.dispatch(initialize(Color.GREEN, red=5.0, yellow=1.0, green=4.0))

    assert light.get_state() == StateId.GREEN
    assert light.durations == {Color.RED: 5.0, Color.YELLOW: 1.0, Color.GREEN: 4.0}
    assert light.deadline == Deadline(at=7.0)


def test_initialize_to_current_color_restarts_dwell(light, clock):
    get_color(light)
    clock.advance(5.0)
    light.dispatch(initialize(Color.RED, red=10.0))

    assert light.get_state() == StateId.RED
    assert light.deadline == Deadline(at=15.0)
    assert [h["to"] for h in light.get_history()] == ["RED"]


def test_initialize_overrides_an_expired_dwell(light, clock):
    get_color(light)
    clock.advance(11.0)
    light.dispatch(initialize(Color.YELLOW))

    assert light.get_state() == StateId.YELLOW


def test_zero_duration_leaves_on_next_check(light):
    light.dispatch(initialize(Color.YELLOW, yellow=0.0))
    assert light.get_state() == StateId.YELLOW

    get_color(light)
    assert light.get_state() == StateId.RED


def test_response_sent_into_machine_is_ignored(light, caplog):
    get_color(light)

    with caplog.at_level(logging.WARNING, logger="traffic_hsm.traffic_light"):
        light.dispatch(GetColorResponse(color=Color.GREEN))

    assert light.color == Color.RED
    assert light.get_state() == StateId.RED
    assert "GetColorResponse(GREEN) sent to the machine" in caplog.text
    assert light.registry.get_sample_value(
        "traffic_light_messages_total", {"message": "GetColorResponse", "outcome": "handled"}
    ) == 1.0


def test_exactly_one_reply_per_request(light):
    channel = ReplyChannel()
    light.dispatch(GetColor(reply_to=channel))

    assert channel.try_recv() == GetColorResponse(color=Color.RED)
    assert channel.try_recv() is None


def test_closed_reply_channel_surfaces_error_after_transition(light, clock):
    get_color(light)
    clock.advance(10.0)
    channel = ReplyChannel()
    channel.close()

    with pytest.raises(ReplyError):
        light.dispatch(GetColor(reply_to=channel))
    assert light.get_state() == StateId.GREEN


def test_missing_duration_is_fatal(light):
    del light.context.durations[Color.RED]

    with pytest.raises(MissingDurationError):
        get_color(light)


def test_full_cycle_order(clock):
    light = TrafficLight(clock=clock)
    light.dispatch(initialize(Color.RED))

    observed = []
    while True:
        clock.advance(0.5)
        color = get_color(light)
        if not observed or observed[-1] != color:
            observed.append(color)
        if len(observed) == 4:
            break

    assert observed == [Color.RED, Color.GREEN, Color.YELLOW, Color.RED]


def test_polling_scenario(clock):
    light = TrafficLight(clock=clock)
    light.dispatch(initialize(Color.GREEN))

    observed = []
    for _ in range(5):
        clock.advance(1.1)
        observed.append(get_color(light))

    assert observed == [Color.GREEN, Color.YELLOW, Color.RED, Color.GREEN, Color.YELLOW]


def test_transitions_are_recorded(light, clock):
    get_color(light)
    clock.advance(10.0)
    get_color(light)

    assert [(h["from"], h["to"]) for h in light.get_history()] == [
        ("INITIAL", "RED"),
        ("RED", "GREEN"),
    ]
    assert light.registry.get_sample_value(
        "traffic_light_transitions_total",
        {"from_state": "RED", "to_state": "GREEN", "trigger": "GetColor"},
    ) == 1.0
    assert light.get_state_definition(StateId.INITIAL).exit_count == 1
    assert light.get_state_definition(StateId.BASE).exit_count == 0
