from __future__ import annotations

import io
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import List, Optional, Tuple

import pytest
from PIL import Image
from werkzeug.datastructures import FileStorage

from ingest import ImagePayload


class FakeAnalyzer:
    """Stands in for Gemini. Each call may wait on a gate before answering."""

    def __init__(
        self,
        reply: str = "1. Materials\n- Hook: 5mm",
        error: Optional[Exception] = None,
        gate: Optional[threading.Event] = None,
    ) -> None:
        self.reply = reply
        self.error = error
        self.gate = gate
        self.calls: List[Tuple[ImagePayload, str]] = []

    def analyze(self, image: ImagePayload, prompt: str) -> str:
        self.calls.append((image, prompt))
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.reply


class ImmediateExecutor(Executor):
    """Runs submitted work inline so request handlers finish deterministically."""

    def submit(self, fn, *args, **kwargs):
        fut: Future = Future()
        try:
            fut.set_result(fn(*args, **kwargs))
        except Exception as exc:
            fut.set_exception(exc)
        return fut


def make_png(size: Tuple[int, int] = (8, 8), color: str = "white") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def make_upload(data: bytes, content_type: str = "image/png", filename: str = "photo.png") -> FileStorage:
    return FileStorage(stream=io.BytesIO(data), filename=filename, content_type=content_type)


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def pool():
    executor = ThreadPoolExecutor(max_workers=2)
    yield executor
    executor.shutdown(wait=True)


@pytest.fixture
def immediate() -> ImmediateExecutor:
    return ImmediateExecutor()
