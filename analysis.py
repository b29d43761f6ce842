from __future__ import annotations

import logging
import os
import threading
from typing import Optional

from google import genai
from google.genai import types

from errors import AnalysisFailure
from ingest import ImagePayload

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_TIMEOUT_MS = 120_000

PATTERN_PROMPT = (
    "Analyze this crochet image and create a detailed pattern with the following information:\n"
    "1. Pattern Information (name, difficulty level, approximate size, time to complete)\n"
    "2. Materials Needed (yarn type/weight/color, hook size, notions, yardage)\n"
    "3. Abbreviations (standard crochet abbreviations used in the pattern)\n"
    "4. Gauge (if applicable)\n"
    "5. Pattern Instructions (detailed step-by-step instructions with stitch counts for each row/round)\n"
    "6. Finishing Instructions (weaving in ends, blocking, etc.)\n"
    "7. Variations & Tips (suggestions for customization, helpful tips)\n"
    "8. Care Instructions (washing, drying, storing)\n"
    "\n"
    "Format the pattern in a clear, organized way that would be easy for a crocheter to follow. "
    "Be as specific and detailed as possible based on what you can see in the image."
)


def failure_from_exception(exc: BaseException) -> AnalysisFailure:
    """Keep the service's own message when it gave one."""
    if isinstance(exc, AnalysisFailure):
        return exc
    message = getattr(exc, "message", None) or str(exc).strip()
    return AnalysisFailure(message or None)


class GeminiAnalyzer:
    """Sends a photo plus instructions to Gemini and returns the text reply.

    The client is built on first use so the app can start (and serve the
    bundled example) without credentials configured.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ) -> None:
        self.api_key = api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
        self.model = model or os.environ.get("GEMINI_MODEL", DEFAULT_MODEL)
        self.timeout_ms = timeout_ms or int(os.environ.get("GEMINI_TIMEOUT_MS", DEFAULT_TIMEOUT_MS))
        self._client: Optional[genai.Client] = None
        self._client_lock = threading.Lock()

    def _get_client(self) -> genai.Client:
        with self._client_lock:
            if self._client is None:
                if not self.api_key:
                    raise AnalysisFailure("Gemini API key is not configured")
                self._client = genai.Client(
                    api_key=self.api_key,
                    http_options=types.HttpOptions(timeout=self.timeout_ms),
                )
            return self._client

    def analyze(self, image: ImagePayload, prompt: str = PATTERN_PROMPT) -> str:
        try:
            client = self._get_client()
            response = client.models.generate_content(
                model=self.model,
                contents=[
                    types.Part.from_bytes(data=image.data, mime_type=image.media_type),
                    prompt,
                ],
            )
        except AnalysisFailure:
            raise
        except Exception as exc:
            failure = failure_from_exception(exc)
            logger.warning("gemini request failed: %s", failure.message)
            raise failure from exc

        text = (response.text or "").strip()
        if not text:
            raise AnalysisFailure()
        return text
