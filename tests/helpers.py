from traffic_hsm.messages import Color, GetColor, ReplyChannel


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def get_color(machine) -> Color:
    """Dispatch a GetColor and return the reply"""
    channel = ReplyChannel()
    machine.dispatch(GetColor(reply_to=channel))
    response = channel.try_recv()
    assert response is not None, "GetColor produced no reply"
    return response.color
