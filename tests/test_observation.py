from PIL import Image

from action_models import ERROR_PARAM, ExecutionResult
from conftest import FakeWindows
from geometry import GridSpec
from observation import ObservationService, downscale, draw_grid_overlay, encode_jpeg_data_url


class FakeClock:
    def __init__(self, t: float = 100.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


def test_grid_overlay_keeps_size_and_draws() -> None:
    img = Image.new("RGB", (320, 240), "white")
    out = draw_grid_overlay(img, GridSpec(rows=3, cols=4))
    assert out.size == (320, 240)
    assert out.mode == "RGB"
    assert out.tobytes() != img.tobytes()


def test_jpeg_data_url() -> None:
    url = encode_jpeg_data_url(Image.new("RGB", (10, 10), "black"), quality=200)
    assert url.startswith("data:image/jpeg;base64,")


def test_downscale() -> None:
    assert downscale(Image.new("RGB", (1280, 720)), 640).size == (640, 360)
    small = Image.new("RGB", (320, 200))
    assert downscale(small, 640) is small


def test_observe_reports_foreground_and_last_result() -> None:
    windows = FakeWindows(process="TextEdit", title="Untitled", image=Image.new("RGB", (800, 600), "white"))
    service = ObservationService(windows, windows, clock=FakeClock())

    obs = service.observe(ExecutionResult.fail(ERROR_PARAM, "bad cell"))
    assert obs.active_process == "TextEdit"
    assert obs.active_window_title == "Untitled"
    assert obs.last_action_success is False
    assert obs.error_message == "bad cell"
    assert obs.screenshot_data_url.startswith("data:image/jpeg;base64,")

    assert service.observe().last_action_success is None


def test_screenshot_is_throttled() -> None:
    windows = FakeWindows(image=Image.new("RGB", (800, 600), "white"))
    clock = FakeClock()
    service = ObservationService(windows, windows, capture_interval_s=3.0, clock=clock)

    first = service.observe().screenshot_data_url
    clock.t += 1.0
    second = service.observe().screenshot_data_url
    assert second == first
    assert len(windows.capture_calls) == 1

    clock.t += 2.5
    service.observe()
    assert len(windows.capture_calls) == 2


def test_no_window_rect_means_no_screenshot() -> None:
    windows = FakeWindows(rect=None, image=Image.new("RGB", (10, 10)))
    service = ObservationService(windows, windows, clock=FakeClock())
    assert service.observe().screenshot_data_url is None
    assert windows.capture_calls == []
