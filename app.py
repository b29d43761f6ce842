from __future__ import annotations

import io
import logging
import os
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Optional

from flask import (
    Flask,
    current_app,
    jsonify,
    make_response,
    redirect,
    render_template_string,
    request,
    send_file,
    session,
    url_for,
)
from werkzeug.exceptions import RequestEntityTooLarge

from analysis import GeminiAnalyzer
from bootstrap import DEFAULT_IMAGE_PATH
from errors import AnalysisInProgress, FileTooLarge, InvalidFileType, MissingImage
from ingest import ACCEPTED_MEDIA_TYPES, MAX_IMAGE_BYTES
from pattern_format import blocks_to_json, format_pattern
from pattern_session import SESSION_TTL_HOURS, Analyzer, PatternSession, SessionStore

# -------------------------------------------------------------------
# App + config
# -------------------------------------------------------------------

MAX_REQUEST_BYTES = 25 * 1024 * 1024  # multipart overhead on top of the 20 MiB image cap
ANALYSIS_WORKERS = 4
POLL_INTERVAL_MS = 1500


def create_app(
    analyzer: Optional[Analyzer] = None,
    executor: Optional[Executor] = None,
    default_image_path: Optional[str] = None,
    config: Optional[dict] = None,
) -> Flask:
    app = Flask(__name__)
    app.secret_key = os.environ.get("FLASK_SECRET_KEY", "dev-secret-change-me")
    app.config["MAX_CONTENT_LENGTH"] = MAX_REQUEST_BYTES
    app.config["ANALYSIS_WORKERS"] = int(os.environ.get("ANALYSIS_WORKERS", ANALYSIS_WORKERS))
    app.config["SESSION_TTL_HOURS"] = float(os.environ.get("SESSION_TTL_HOURS", SESSION_TTL_HOURS))
    app.config["DEFAULT_IMAGE_PATH"] = os.environ.get("DEFAULT_IMAGE_PATH", DEFAULT_IMAGE_PATH)
    if config:
        app.config.update(config)

    if executor is None:
        executor = ThreadPoolExecutor(
            max_workers=app.config["ANALYSIS_WORKERS"],
            thread_name_prefix="analysis",
        )
    app.extensions["pattern_sessions"] = SessionStore(
        analyzer=analyzer or GeminiAnalyzer(),
        executor=executor,
        default_image_path=default_image_path or app.config["DEFAULT_IMAGE_PATH"],
        ttl_hours=app.config["SESSION_TTL_HOURS"],
    )
    register_routes(app)
    return app


def current_pattern_session() -> PatternSession:
    store: SessionStore = current_app.extensions["pattern_sessions"]
    sid = session.get("sid")
    if not sid:
        sid = store.new_id()
        session["sid"] = sid
    return store.get(sid)


# -------------------------------------------------------------------
# Routes
# -------------------------------------------------------------------


def register_routes(app: Flask) -> None:
    @app.get("/")
    def index() -> str:
        state = current_pattern_session().state
        return render_template_string(
            INDEX_HTML,
            state=state,
            blocks=format_pattern(state.text),
            accept=",".join(ACCEPTED_MEDIA_TYPES),
            max_mb=MAX_IMAGE_BYTES // (1024 * 1024),
            max_bytes=MAX_IMAGE_BYTES,
            type_message=InvalidFileType.default_message,
            size_message=FileTooLarge.default_message,
            poll_ms=POLL_INTERVAL_MS,
        )

    @app.post("/upload")
    def upload():
        file = request.files.get("file")
        if not file or not file.filename:
            return jsonify({"error": "missing_file"}), 400
        current_pattern_session().upload_requested(file)
        return redirect(url_for("index"))

    @app.post("/analyze")
    def analyze():
        try:
            current_pattern_session().retry_requested()
        except AnalysisInProgress as e:
            return jsonify({"error": e.code, "message": e.message}), 409
        except MissingImage as e:
            return jsonify({"error": e.code, "message": e.message}), 400
        return redirect(url_for("index"))

    @app.get("/api/state")
    def api_state():
        state = current_pattern_session().state
        return jsonify(
            {
                "status": state.analysis.status,
                "loading": state.loading,
                "error": state.error,
                "has_image": state.image is not None,
                "media_type": state.image.media_type if state.image else None,
                "text": state.text,
                "blocks": blocks_to_json(format_pattern(state.text)),
            }
        )

    @app.get("/image")
    def image():
        img = current_pattern_session().state.image
        if img is None:
            return jsonify({"error": "missing_image"}), 404
        resp = send_file(io.BytesIO(img.data), mimetype=img.media_type)
        resp.headers["Cache-Control"] = "no-store"
        return resp

    @app.get("/pattern.txt")
    def pattern_text():
        text = current_pattern_session().state.text
        if not text:
            return jsonify({"error": "missing_pattern"}), 404
        return send_file(
            io.BytesIO(text.encode("utf-8")),
            mimetype="text/plain",
            as_attachment=True,
            download_name="crochet-pattern.txt",
        )

    @app.get("/health")
    def health() -> dict:
        return {"ok": True}

    @app.errorhandler(RequestEntityTooLarge)
    def too_large(_e):
        # a browser form post gets the inline message, API clients get JSON
        if request.path == "/upload" and request.accept_mimetypes.accept_html:
            current_pattern_session().reject(FileTooLarge())
            return redirect(url_for("index"))
        return jsonify({"error": "file_too_large", "limit_mb": MAX_IMAGE_BYTES // (1024 * 1024)}), 413

    @app.errorhandler(404)
    def not_found(_e):
        return make_response(render_template_string(ERROR_HTML, title="Page not found"), 404)

    @app.errorhandler(500)
    def on_error(e):
        app.logger.error("unhandled error: %s", e)
        return make_response(render_template_string(ERROR_HTML, title="We hit a snag"), 500)


# -------------------------------------------------------------------
# Inline HTML templates
# -------------------------------------------------------------------

ERROR_HTML = r"""
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>{{ title }} | AI Crochet Pattern Generator</title>
  <meta name="viewport" content="width=device-width,initial-scale=1">
  <style>
    body{margin:0;background:#f9fafb;font:16px/1.6 system-ui,-apple-system,Segoe UI,Roboto,Inter;color:#111827}
    .wrap{max-width:520px;margin:0 auto;padding:32px 16px 40px}
    .card{background:#fff;border-radius:14px;border:1px solid #e9d5ff;padding:24px;box-shadow:0 12px 35px rgba(15,23,42,.12)}
    h1{margin:0 0 8px;font-size:1.7rem}
    p{margin:6px 0;font-size:14px;color:#4b5563}
    a{color:#7e22ce;text-decoration:none;font-weight:600}
    a:hover{text-decoration:underline}
  </style>
</head>
<body>
  <div class="wrap">
    <div class="card">
      <h1>{{ title }}</h1>
      <p>Something went wrong while handling your request.</p>
      <p>Head back to the <a href="/">pattern generator</a> and try again.</p>
    </div>
  </div>
</body>
</html>
"""

INDEX_HTML = r"""
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>AI Crochet Pattern Generator | Turn photos into patterns</title>
  <meta name="viewport" content="width=device-width,initial-scale=1">
  <style>
    :root{
      --bg:#f9fafb;--fg:#111827;--muted:#6b7280;--text:#374151;
      --accent:#9333ea;--accent-dark:#7e22ce;--radius:14px;
      --shadow:0 14px 40px rgba(15,23,42,.12);
    }
    *{box-sizing:border-box;}
    body{margin:0;font:16px/1.55 system-ui,-apple-system,Segoe UI,Roboto,Inter;color:var(--fg);background:var(--bg);}
    .wrap{max-width:900px;margin:0 auto;padding:32px 16px 48px}
    .intro{text-align:center;margin-bottom:28px;}
    h1{font-size:2.2rem;margin:0 0 6px;}
    .tagline{color:var(--muted);font-size:17px;margin:0;}
    .card{background:#fff;border-radius:var(--radius);box-shadow:var(--shadow);padding:22px;}
    .picker{display:flex;flex-direction:column;align-items:center;margin-bottom:20px;}
    .btn{
      display:inline-flex;align-items:center;justify-content:center;gap:8px;
      padding:11px 22px;border-radius:10px;border:none;cursor:pointer;
      background:var(--accent);color:#fff;font-size:15px;font-weight:600;
    }
    .btn:hover{background:var(--accent-dark);}
    .btn[disabled]{opacity:.5;cursor:not-allowed;}
    .btn.secondary{background:#fff;color:var(--text);border:1px solid #d1d5db;}
    .btn.secondary:hover{background:#f9fafb;}
    .picker input{display:none;}
    .hint{margin-top:8px;font-size:13px;color:var(--muted);}
    .error{margin-bottom:20px;padding:14px;background:#fef2f2;border-radius:8px;color:#b91c1c;}
    .spinner{width:22px;height:22px;border:3px solid #e9d5ff;border-top-color:var(--accent);border-radius:50%;animation:spin 1s linear infinite;}
    @keyframes spin{to{transform:rotate(360deg)}}
    .preview{border-radius:10px;overflow:hidden;background:#f3f4f6;margin-bottom:14px;}
    .preview img{display:block;width:100%;height:auto;max-height:500px;object-fit:contain;margin:0 auto;}
    .actions{display:grid;grid-template-columns:1fr 1fr;gap:14px;margin-bottom:22px;}
    .actions form{margin:0;}
    .actions .btn{width:100%;}
    .pattern{background:#f9fafb;border-radius:10px;padding:26px;color:var(--text);}
    .pattern h2{font-size:1.8rem;margin:0 0 18px;color:var(--fg);}
    .pattern h3{font-size:1.4rem;margin:30px 0 14px;color:var(--fg);}
    .pattern h3:first-of-type{margin-top:0;}
    .row{display:flex;gap:8px;margin:0 0 10px 16px;}
    .row .label{font-weight:600;color:#1f2937;min-width:120px;}
    .row .dot{color:#9ca3af;}
    .pattern p{margin:0 0 10px;}
    .download{margin-top:16px;font-size:14px;}
    .download a{color:var(--accent-dark);font-weight:600;text-decoration:none;}
  </style>
</head>
<body>
<div class="wrap">
  <div class="intro">
    <h1>AI Crochet Pattern Generator</h1>
    <p class="tagline">Upload a crochet photo and get a detailed pattern to make it yourself</p>
  </div>

  <div class="card">
    <form class="picker" method="POST" action="/upload" enctype="multipart/form-data">
      <label class="btn">
        Upload Crochet Photo
        <input id="fileInput" type="file" name="file" accept="{{ accept }}" onchange="pickFile(this)">
      </label>
      <noscript><button class="btn secondary" type="submit" style="margin-top:8px">Send photo</button></noscript>
      <p class="hint">PNG, JPG, JPEG or WEBP (MAX. {{ max_mb }}MB)</p>
    </form>

    <div id="uploadError" class="error"{% if not state.error %} hidden{% endif %}>{{ state.error or "" }}</div>

    {% if state.image %}
    <div class="preview">
      <img src="/image" alt="Crochet preview">
    </div>
    <div class="actions">
      <form method="POST" action="/analyze">
        <button class="btn" type="submit" {% if state.loading %}disabled{% endif %}>
          {% if state.loading %}<span class="spinner"></span> Generating...{% else %}Create Pattern{% endif %}
        </button>
      </form>
      <button class="btn secondary" type="button" onclick="document.getElementById('fileInput').click()">
        Upload Another Photo
      </button>
    </div>
    {% endif %}

    {% if blocks %}
    <div class="pattern">
      <h2>Crochet Pattern</h2>
      {% for b in blocks %}
        {% if b.kind == "header" %}
          <h3>{{ b.title }}</h3>
        {% elif b.kind == "labeled" %}
          <div class="row"><span class="label">{{ b.label }}:</span><span>{{ b.value }}</span></div>
        {% elif b.kind == "bullet" %}
          <div class="row"><span class="dot">&bull;</span><span>{{ b.text }}</span></div>
        {% else %}
          <p>{{ b.text }}</p>
        {% endif %}
      {% endfor %}
      <p class="download"><a href="/pattern.txt">Download pattern as text</a></p>
    </div>
    {% endif %}
  </div>
</div>
<script>
  function pickFile(input) {
    const file = input.files[0];
    if (!file) return;
    let problem = null;
    if (!file.type.startsWith('image/')) {
      problem = {{ type_message|tojson }};
    } else if (file.size > {{ max_bytes }}) {
      problem = {{ size_message|tojson }};
    }
    if (problem) {
      const box = document.getElementById('uploadError');
      box.textContent = problem;
      box.hidden = false;
      input.value = '';
      return;
    }
    input.form.submit();
  }
</script>
{% if state.loading %}
<script>
  const timer = setInterval(async () => {
    try {
      const res = await fetch('/api/state', {cache: 'no-store'});
      const data = await res.json();
      if (!data.loading) {
        clearInterval(timer);
        window.location.reload();
      }
    } catch (err) {
      console.error('state poll failed', err);
    }
  }, {{ poll_ms }});
</script>
{% endif %}
</body>
</html>
"""

# -------------------------------------------------------------------

app = create_app()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.run(debug=True)
