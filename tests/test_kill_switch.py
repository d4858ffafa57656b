from types import SimpleNamespace

from kill_switch import GlobalKillSwitch


class StepClock:
    def __init__(self, *times: float):
        self.times = list(times)

    def __call__(self) -> float:
        return self.times.pop(0)


def test_double_escape_within_window_fires() -> None:
    fired = []
    switch = GlobalKillSwitch(on_kill=lambda: fired.append(True), clock=StepClock(0.0, 0.3, 1.0, 1.2))

    assert switch.handle_escape() is False
    assert switch.handle_escape() is True
    assert switch.handle_escape() is False
    assert switch.handle_escape() is True
    assert fired == [True, True]


def test_slow_presses_do_not_fire() -> None:
    fired = []
    switch = GlobalKillSwitch(on_kill=lambda: fired.append(True), clock=StepClock(0.0, 0.6))
    switch.handle_escape()
    assert switch.handle_escape() is False
    assert fired == []


def test_callback_errors_are_contained() -> None:
    def boom():
        raise RuntimeError("stop failed")

    switch = GlobalKillSwitch(on_kill=boom, clock=StepClock(0.0, 0.1))
    switch.handle_escape()
    assert switch.handle_escape() is True


def test_only_escape_counts() -> None:
    fired = []
    switch = GlobalKillSwitch(on_kill=lambda: fired.append(True), clock=StepClock(0.0, 0.1))
    switch._on_key_press(SimpleNamespace(name="esc"))
    switch._on_key_press(SimpleNamespace(name="space"))
    switch._on_key_press("a")
    switch._on_key_press(SimpleNamespace(name="esc"))
    assert fired == [True]
