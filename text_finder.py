from __future__ import annotations

"""
text_finder.py

On-screen text location for ClickText.

OcrTextFinder captures the searched rectangle, posts it to the OCR gateway's
/observe endpoint and ranks the returned elements against the query:

- 1.0: element text contains the query, or contains every query word
- 0.8: element text is itself part of the query (OCR split one label in two)
- 0.6: fuzzy match (rapidfuzz partial ratio) at or above the threshold

Ties break top-to-bottom, then left-to-right.
"""

import asyncio
import io
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests
from PIL import Image
from rapidfuzz import fuzz

from agent_config import setup_logger
from desktop_io import ScreenCapture
from geometry import Point, Rect

logger = setup_logger("TextFinder")

DEFAULT_FUZZY_THRESHOLD = 85.0


@dataclass
class TextMatch:
    text: str
    bounds: Rect
    confidence: float

    @property
    def center(self) -> Point:
        return (self.bounds.left + self.bounds.right) // 2, (self.bounds.top + self.bounds.bottom) // 2


class TextFinder(Protocol):
    async def find_text(self, rect: Rect, query: str) -> List[TextMatch]: ...


# -----------------------------
# Ranking
# -----------------------------
def _normalize_text(s: Any) -> str:
    s = str(s or "").replace("\n", " ").strip().lower()
    return re.sub(r"\s+", " ", s)


def _bbox_to_rect(bbox_norm: Sequence[Any], rect: Rect) -> Optional[Rect]:
    try:
        x1, y1, x2, y2 = (max(0.0, min(1.0, float(v))) for v in bbox_norm)
    except (TypeError, ValueError):
        return None
    return Rect(
        left=rect.left + int(round(x1 * rect.width)),
        top=rect.top + int(round(y1 * rect.height)),
        right=rect.left + int(round(x2 * rect.width)),
        bottom=rect.top + int(round(y2 * rect.height)),
    )


def _score(text_n: str, query_n: str, words: List[str], fuzzy_threshold: float) -> float:
    if query_n in text_n or all(w in text_n for w in words):
        return 1.0
    if len(text_n) >= 2 and text_n in query_n:
        return 0.8
    if fuzz.partial_ratio(query_n, text_n) >= fuzzy_threshold:
        return 0.6
    return 0.0


def rank_text_matches(
    elements: Sequence[Dict[str, Any]],
    rect: Rect,
    query: str,
    fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> List[TextMatch]:
    query_n = _normalize_text(query)
    if not query_n:
        return []
    words = query_n.split(" ")

    matches: List[TextMatch] = []
    for el in elements or []:
        text_n = _normalize_text(el.get("text"))
        if not text_n:
            continue
        bounds = _bbox_to_rect(el.get("bbox_norm") or [], rect)
        if bounds is None:
            continue
        conf = _score(text_n, query_n, words, fuzzy_threshold)
        if conf <= 0:
            continue
        matches.append(TextMatch(text=str(el.get("text") or "").strip(), bounds=bounds, confidence=conf))

    matches.sort(key=lambda m: (-m.confidence, m.bounds.top, m.bounds.left))
    return matches


# -----------------------------
# OCR gateway client
# -----------------------------
class OcrTextFinder:
    def __init__(
        self,
        capture: ScreenCapture,
        base_url: str,
        timeout_s: int = 60,
        fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
    ):
        self.capture = capture
        self.base_url = (base_url or "").strip()
        self.timeout_s = int(timeout_s)
        self.fuzzy_threshold = float(fuzzy_threshold)

    def _call_observe_on_pil(self, image: Image.Image) -> Dict[str, Any]:
        endpoint = self.base_url.rstrip("/") + "/observe"
        buf = io.BytesIO()
        image.save(buf, format="PNG")
        buf.seek(0)
        files = {"file": ("screenshot.png", buf, "image/png")}
        resp = requests.post(endpoint, files=files, timeout=self.timeout_s)
        resp.raise_for_status()
        return resp.json()

    async def find_text(self, rect: Rect, query: str) -> List[TextMatch]:
        if not self.base_url:
            logger.warning("[ocr] no OCR gateway configured; cannot search for %r", query)
            return []

        image = await asyncio.to_thread(self.capture.capture_region, rect)
        if image is None:
            logger.warning("[ocr] capture failed for %s", rect)
            return []

        payload = await asyncio.to_thread(self._call_observe_on_pil, image.convert("RGB"))
        elements = payload.get("elements") or []
        matches = rank_text_matches(elements, rect, query, self.fuzzy_threshold)
        logger.info("[ocr] query=%r elements=%d matches=%d", query, len(elements), len(matches))
        return matches
