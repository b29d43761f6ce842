import io
import threading

import pytest

from app import create_app
from conftest import FakeAnalyzer, ImmediateExecutor, make_png


def make_client(analyzer=None, executor=None, **kwargs):
    app = create_app(
        analyzer=analyzer or FakeAnalyzer(),
        executor=executor or ImmediateExecutor(),
        **kwargs,
    )
    app.config["TESTING"] = True
    return app, app.test_client()


def upload(client, data, content_type="image/png", filename="photo.png", **kwargs):
    return client.post(
        "/upload",
        data={"file": (io.BytesIO(data), filename, content_type)},
        content_type="multipart/form-data",
        **kwargs,
    )


def test_first_visit_shows_sample_pattern():
    analyzer = FakeAnalyzer()
    _, client = make_client(analyzer)
    resp = client.get("/")
    assert resp.status_code == 200
    page = resp.get_data(as_text=True)
    assert "Simple Circular Crochet Coaster" in page
    assert "Create Pattern" in page
    assert analyzer.calls == []


def test_state_endpoint():
    _, client = make_client()
    data = client.get("/api/state").get_json()
    assert data["status"] == "ready"
    assert data["loading"] is False
    assert data["error"] is None
    assert data["has_image"] is True
    assert data["blocks"][0] == {"kind": "header", "title": "Pattern Information:"}
    assert data["blocks"][1] == {"kind": "labeled", "label": "Name", "value": "Simple Circular Crochet Coaster"}


def test_upload_runs_analysis():
    analyzer = FakeAnalyzer(reply="1. Materials\n- Hook: 5mm\n- just a bullet\nplain text")
    _, client = make_client(analyzer)
    client.get("/")
    png = make_png(color="purple")

    resp = upload(client, png)
    assert resp.status_code == 302
    assert len(analyzer.calls) == 1

    data = client.get("/api/state").get_json()
    assert data["status"] == "ready"
    assert [b["kind"] for b in data["blocks"]] == ["header", "labeled", "bullet", "paragraph"]
    assert client.get("/image").data == png

    page = client.get("/").get_data(as_text=True)
    assert "Hook:" in page and "just a bullet" in page


def test_upload_without_file():
    _, client = make_client()
    resp = client.post("/upload", data={}, content_type="multipart/form-data")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "missing_file"}


def test_wrong_type_shows_inline_error():
    analyzer = FakeAnalyzer()
    _, client = make_client(analyzer)
    resp = upload(client, b"hello", "text/plain", "notes.txt")
    assert resp.status_code == 302
    assert "Please upload a valid image file" in client.get("/").get_data(as_text=True)
    assert client.get("/api/state").get_json()["has_image"] is True
    assert analyzer.calls == []


def test_analysis_failure_message_is_shown():
    _, client = make_client(FakeAnalyzer(error=RuntimeError("rate limited")))
    upload(client, make_png())
    data = client.get("/api/state").get_json()
    assert data["status"] == "failed"
    assert data["error"] == "rate limited"


def test_create_pattern_reanalyses_current_image():
    analyzer = FakeAnalyzer(reply="1. Gauge")
    _, client = make_client(analyzer)
    client.get("/")
    resp = client.post("/analyze")
    assert resp.status_code == 302
    assert len(analyzer.calls) == 1
    assert client.get("/api/state").get_json()["text"] == "1. Gauge"


def test_create_pattern_refused_while_loading(pool):
    gate = threading.Event()
    analyzer = FakeAnalyzer(gate=gate)
    _, client = make_client(analyzer, executor=pool)
    client.get("/")
    assert client.post("/analyze").status_code == 302
    assert client.get("/api/state").get_json()["loading"] is True
    page = client.get("/").get_data(as_text=True)
    assert "Generating..." in page and "/api/state" in page

    resp = client.post("/analyze")
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "analysis_in_progress"
    gate.set()


def test_create_pattern_without_image(tmp_path):
    _, client = make_client(default_image_path=str(tmp_path / "missing.jpg"))
    assert "Failed to load default image" in client.get("/").get_data(as_text=True)
    resp = client.post("/analyze")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "missing_image"
    assert client.get("/image").status_code == 404
    assert client.get("/pattern.txt").status_code == 404


def test_pattern_download():
    _, client = make_client()
    resp = client.get("/pattern.txt")
    assert resp.status_code == 200
    assert resp.mimetype == "text/plain"
    assert "Simple Circular Crochet Coaster" in resp.get_data(as_text=True)


def test_oversized_request_is_rejected():
    _, client = make_client(config={"MAX_CONTENT_LENGTH": 1024})
    resp = upload(client, b"\0" * 4096)
    assert resp.status_code == 413
    assert resp.get_json() == {"error": "file_too_large", "limit_mb": 20}


def test_oversized_browser_upload_shows_inline_error():
    analyzer = FakeAnalyzer()
    _, client = make_client(analyzer)
    client.get("/")
    resp = upload(client, b"\0" * (26 * 1024 * 1024), headers={"Accept": "text/html"})
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/")

    page = client.get("/").get_data(as_text=True)
    assert "Image size should be less than 20MB" in page
    assert "Simple Circular Crochet Coaster" in page
    assert analyzer.calls == []


def test_page_checks_file_before_submitting():
    _, client = make_client()
    page = client.get("/").get_data(as_text=True)
    assert 'onchange="pickFile(this)"' in page
    assert "file.size > 20971520" in page
    assert "file.type.startsWith('image/')" in page
    assert '"Image size should be less than 20MB"' in page
    assert 'id="uploadError" class="error" hidden' in page


def test_sessions_are_separate():
    analyzer = FakeAnalyzer(reply="1. Mine")
    app, first = make_client(analyzer)
    second = app.test_client()
    upload(first, make_png())
    assert first.get("/api/state").get_json()["text"] == "1. Mine"
    assert second.get("/api/state").get_json()["text"].startswith("1. Pattern Information")


def test_health_and_404():
    _, client = make_client()
    assert client.get("/health").get_json() == {"ok": True}
    resp = client.get("/no-such-page")
    assert resp.status_code == 404
    assert "Page not found" in resp.get_data(as_text=True)
