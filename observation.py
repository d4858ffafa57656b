from __future__ import annotations

"""
observation.py

Observation provider: foreground window info plus a throttled, downscaled
screenshot of the foreground client area with the numbered execution grid
drawn on top, encoded as a JPEG data URL for the vision oracle.
"""

import base64
import io
import threading
import time
from typing import Callable, Optional

from PIL import Image, ImageDraw, ImageFont

from action_models import ExecutionResult, Observation
from agent_config import setup_logger
from desktop_io import ScreenCapture, WindowProvider
from geometry import EXECUTION_GRID, GridSpec

logger = setup_logger("Observation")


# -----------------------------
# Drawing helpers
# -----------------------------
def _load_font(size: int = 16) -> ImageFont.ImageFont:
    for name in ["Arial Bold.ttf", "DejaVuSans-Bold.ttf", "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"]:
        try:
            return ImageFont.truetype(name, size)
        except Exception:
            pass
    return ImageFont.load_default()


def draw_grid_overlay(img: Image.Image, grid: GridSpec = EXECUTION_GRID) -> Image.Image:
    """Draw grid lines and 1-based row-major cell numbers onto a copy of `img`."""
    out = img.convert("RGBA")
    layer = Image.new("RGBA", out.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)

    W, H = out.size
    cw = W / float(grid.cols)
    ch = H / float(grid.rows)
    font = _load_font(max(8, int(min(cw, ch) / 3)))

    for row in range(grid.rows + 1):
        y = int(round(row * ch))
        draw.line([(0, y), (W, y)], fill=(255, 0, 0, 180), width=1)
    for col in range(grid.cols + 1):
        x = int(round(col * cw))
        draw.line([(x, 0), (x, H)], fill=(255, 0, 0, 180), width=1)

    cell = 1
    for row in range(grid.rows):
        for col in range(grid.cols):
            label = str(cell)
            tb = draw.textbbox((0, 0), label, font=font)
            tw, th = tb[2] - tb[0], tb[3] - tb[1]
            tx = int(col * cw + 2)
            ty = int(row * ch + 1)
            draw.rectangle([tx - 1, ty, tx + tw + 1, ty + th + 2], fill=(0, 0, 0, 140))
            draw.text((tx, ty - tb[1]), label, font=font, fill=(255, 255, 0, 220))
            cell += 1

    return Image.alpha_composite(out, layer).convert("RGB")


def encode_jpeg_data_url(img: Image.Image, quality: int = 70) -> str:
    buf = io.BytesIO()
    img.convert("RGB").save(buf, format="JPEG", quality=max(30, min(90, int(quality))))
    return "data:image/jpeg;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def downscale(img: Image.Image, max_width: int) -> Image.Image:
    w, h = img.size
    if w <= max_width:
        return img
    scale = max_width / float(w)
    return img.resize((max(1, int(round(w * scale))), max(1, int(round(h * scale)))), Image.BILINEAR)


# -----------------------------
# Service
# -----------------------------
class ObservationService:
    def __init__(
        self,
        windows: WindowProvider,
        capture: ScreenCapture,
        *,
        capture_interval_s: float = 3.0,
        max_width: int = 640,
        jpeg_quality: int = 70,
        grid: GridSpec = EXECUTION_GRID,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.windows = windows
        self.capture = capture
        self.capture_interval_s = float(capture_interval_s)
        self.max_width = int(max_width)
        self.jpeg_quality = int(jpeg_quality)
        self.grid = grid
        self._clock = clock

        self._gate = threading.Lock()
        self._last_capture_at: Optional[float] = None
        self._last_data_url: Optional[str] = None

    def observe(self, last_result: Optional[ExecutionResult] = None) -> Observation:
        info = self.windows.get_foreground_window_info()
        return Observation(
            active_window_title=info.title,
            active_process=info.process,
            last_action_success=last_result.success if last_result is not None else None,
            error_message=last_result.error_message if last_result is not None else None,
            screenshot_data_url=self._throttled_screenshot(),
        )

    def _throttled_screenshot(self) -> Optional[str]:
        with self._gate:
            now = self._clock()
            if (
                self._last_data_url is not None
                and self._last_capture_at is not None
                and (now - self._last_capture_at) < self.capture_interval_s
            ):
                return self._last_data_url

            self._last_capture_at = now
            self._last_data_url = self._capture_foreground()
            return self._last_data_url

    def _capture_foreground(self) -> Optional[str]:
        rect = self.windows.try_get_foreground_client_rect()
        if rect is None:
            return None
        try:
            img = self.capture.capture_region(rect)
            if img is None:
                return None
            img = downscale(img.convert("RGB"), self.max_width)
            img = draw_grid_overlay(img, self.grid)
            return encode_jpeg_data_url(img, self.jpeg_quality)
        except Exception as e:
            logger.warning("[observe] capture failed: %s", e)
            return None
