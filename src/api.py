"""
SmartDoc HTTP API (Flask).

    GET/POST          /api/norms                 GET/PUT/DELETE /api/norms/<id>
    GET/POST          /api/test-procedures       GET/PUT/DELETE /api/test-procedures/<id>
    GET/POST          /api/failure-analyses      GET/PUT/DELETE /api/failure-analyses/<id>
    GET               /api/failure-analyses/summary
    GET               /api/search?q=&type=all|edps|dvp|dfmea
    GET               /api/export/failure-analysis/<id>/<xlsx|pdf|html>
    GET               /api/export/failure-analysis/all/<xlsx|html>
    POST              /api/ai-tools/<edps|dvp|dfmea>     body: {"description": "..."}
    GET               /api/ai-tools/status
    POST              /api/auth/login
    GET               /api/health

Every JSON answer carries a boolean "success" plus "data" or "error".
"""

from __future__ import annotations

import hmac
import logging
from typing import Any, Optional

from flask import Blueprint, Flask, Response, current_app, jsonify, request, send_file
from flask_cors import CORS
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from doc_schema import RiskSummary, utc_now
from document_service import DocumentService
from draft_agent import build_generator
from errors import MissingRequiredField, PersistenceFault, SmartDocError, UpstreamServiceError
from exporter import (
    PDF_MIMETYPE,
    XLSX_MIMETYPE,
    failure_analyses_xlsx,
    failure_analysis_pdf,
    failure_analysis_xlsx,
)
from extraction import extract_draft
from record_store import StoreSet
from settings import Settings, load_settings
from ui.renderer import render_html_report

logger = logging.getLogger(__name__)

API_NAME = "PD-SmartDoc API"
API_VERSION = "1.0.0"
MAX_BODY_BYTES = 50 * 1024 * 1024  # base64 images travel inside norm bodies

DOC_KINDS = ("edps", "dvp", "dfmea")
SEARCH_SCOPES = ("all",) + DOC_KINDS

api_bp = Blueprint("api", __name__, url_prefix="/api")


def _service() -> DocumentService:
    return current_app.extensions["smartdoc.service"]


def _generator():
    return current_app.extensions["smartdoc.generator"]


def _settings() -> Settings:
    return current_app.extensions["smartdoc.settings"]


def _body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise MissingRequiredField(["JSON object body"])
    return data


def _ok(data: Any = None, status: int = 200, **extra: Any):
    payload: dict[str, Any] = {"success": True}
    if data is not None:
        payload["data"] = data
    payload.update(extra)
    return jsonify(payload), status


def _records(models: list) -> list[dict[str, Any]]:
    return [m.to_record() for m in models]


# ── EDPS norms ───────────────────────────────────────────────────────────────

@api_bp.route("/norms", methods=["GET"])
def list_norms():
    norms = _records(_service().list_norms())
    return _ok(norms, count=len(norms))


@api_bp.route("/norms", methods=["POST"])
def create_norm():
    return _ok(_service().create_norm(_body()).to_record(), 201)


@api_bp.route("/norms/<norm_id>", methods=["GET"])
def get_norm(norm_id: str):
    return _ok(_service().get_norm(norm_id).to_record())


@api_bp.route("/norms/<norm_id>", methods=["PUT"])
def update_norm(norm_id: str):
    return _ok(_service().update_norm(norm_id, _body()).to_record())


@api_bp.route("/norms/<norm_id>", methods=["DELETE"])
def delete_norm(norm_id: str):
    _service().delete_norm(norm_id)
    return _ok(message="Norm deleted successfully")


# ── DVP test procedures ──────────────────────────────────────────────────────

@api_bp.route("/test-procedures", methods=["GET"])
def list_test_procedures():
    procedures = _records(_service().list_test_procedures())
    return _ok(procedures, count=len(procedures))


@api_bp.route("/test-procedures", methods=["POST"])
def create_test_procedure():
    return _ok(_service().create_test_procedure(_body()).to_record(), 201)


@api_bp.route("/test-procedures/<procedure_id>", methods=["GET"])
def get_test_procedure(procedure_id: str):
    return _ok(_service().get_test_procedure(procedure_id).to_record())


@api_bp.route("/test-procedures/<procedure_id>", methods=["PUT"])
def update_test_procedure(procedure_id: str):
    return _ok(_service().update_test_procedure(procedure_id, _body()).to_record())


@api_bp.route("/test-procedures/<procedure_id>", methods=["DELETE"])
def delete_test_procedure(procedure_id: str):
    _service().delete_test_procedure(procedure_id)
    return _ok(message="Procedure deleted successfully")


# ── DFMEA failure analyses ───────────────────────────────────────────────────

@api_bp.route("/failure-analyses", methods=["GET"])
def list_failure_analyses():
    analyses = _records(_service().list_failure_analyses())
    return _ok(analyses, count=len(analyses))


@api_bp.route("/failure-analyses/summary", methods=["GET"])
def failure_analysis_summary():
    return _ok(_service().failure_analysis_summary().model_dump())


@api_bp.route("/failure-analyses", methods=["POST"])
def create_failure_analysis():
    return _ok(_service().create_failure_analysis(_body()).to_record(), 201)


@api_bp.route("/failure-analyses/<analysis_id>", methods=["GET"])
def get_failure_analysis(analysis_id: str):
    return _ok(_service().get_failure_analysis(analysis_id).to_record())


@api_bp.route("/failure-analyses/<analysis_id>", methods=["PUT"])
def update_failure_analysis(analysis_id: str):
    return _ok(_service().update_failure_analysis(analysis_id, _body()).to_record())


@api_bp.route("/failure-analyses/<analysis_id>", methods=["DELETE"])
def delete_failure_analysis(analysis_id: str):
    _service().delete_failure_analysis(analysis_id)
    return _ok(message="DFMEA entry deleted successfully")


# ── Search ───────────────────────────────────────────────────────────────────

@api_bp.route("/search", methods=["GET"])
def search():
    scope = request.args.get("type", "all").lower()
    if scope not in SEARCH_SCOPES:
        return jsonify({"success": False, "error": f"Unsupported type. Supported values: {', '.join(SEARCH_SCOPES)}."}), 400
    results = [r.to_record() for r in _service().search(request.args.get("q", ""), scope)]
    return _ok(results, count=len(results))


# ── Export ───────────────────────────────────────────────────────────────────

def _unsupported_format(fmt: str, supported: tuple[str, ...]):
    return jsonify({
        "success": False,
        "error": f"Unsupported format '{fmt}'. Supported values: {', '.join(supported)}.",
    }), 400


@api_bp.route("/export/failure-analysis/all/<fmt>", methods=["GET"])
def export_all_failure_analyses(fmt: str):
    fmt = fmt.lower()
    if fmt not in ("xlsx", "html"):
        return _unsupported_format(fmt, ("xlsx", "html"))

    service = _service()
    entries = service.list_failure_analyses()
    summary = service.failure_analysis_summary()
    logger.info("Exporting %d DFMEA entries as %s", len(entries), fmt)

    if fmt == "xlsx":
        return send_file(
            failure_analyses_xlsx(entries, summary),
            mimetype=XLSX_MIMETYPE,
            as_attachment=True,
            download_name="DFMEA_All.xlsx",
        )
    resolved = [service.risk.resolve_links(e) for e in entries]
    html = render_html_report(resolved, summary)
    return Response(html, mimetype="text/html", headers={"Content-Disposition": "attachment; filename=DFMEA_All.html"})


@api_bp.route("/export/failure-analysis/<analysis_id>/<fmt>", methods=["GET"])
def export_failure_analysis(analysis_id: str, fmt: str):
    fmt = fmt.lower()
    if fmt not in ("xlsx", "pdf", "html"):
        return _unsupported_format(fmt, ("xlsx", "pdf", "html"))

    service = _service()
    entry = service.get_failure_analysis(analysis_id)
    logger.info("Exporting DFMEA %s as %s", analysis_id, fmt)

    if fmt == "xlsx":
        return send_file(
            failure_analysis_xlsx(entry),
            mimetype=XLSX_MIMETYPE,
            as_attachment=True,
            download_name=f"DFMEA_{entry.id}.xlsx",
        )
    if fmt == "pdf":
        return send_file(
            failure_analysis_pdf(entry),
            mimetype=PDF_MIMETYPE,
            as_attachment=True,
            download_name=f"DFMEA_{entry.id}.pdf",
        )
    html = render_html_report([entry], RiskSummary.from_entries([entry]))
    return Response(html, mimetype="text/html", headers={"Content-Disposition": f"attachment; filename=DFMEA_{entry.id}.html"})


# ── AI tools ─────────────────────────────────────────────────────────────────

@api_bp.route("/ai-tools/status", methods=["GET"])
def ai_tools_status():
    return _ok(**_generator().status())


@api_bp.route("/ai-tools/<kind>", methods=["POST"])
def generate_draft(kind: str):
    if kind not in DOC_KINDS:
        return jsonify({"success": False, "error": f"Unknown document kind '{kind}'"}), 404
    body = _body()
    description = body.get("description") or body.get("norma")
    if not description:
        raise MissingRequiredField(["description"])

    raw = _generator().execute(kind, description)
    draft = extract_draft(kind, raw)
    return _ok(
        raw,
        draft=draft.fields,
        missing=draft.missing,
        message=f"{kind.upper()} draft generated successfully using AI",
    )


# ── Auth & health ────────────────────────────────────────────────────────────

@api_bp.route("/auth/login", methods=["POST"])
def login():
    body = _body()
    settings = _settings()
    username = str(body.get("username", ""))
    password = str(body.get("password", ""))
    if hmac.compare_digest(username, settings.username) and hmac.compare_digest(password, settings.password):
        return _ok({"user": username})
    logger.warning("Rejected login for %r", username)
    return jsonify({"success": False, "error": "Invalid username or password"}), 401


@api_bp.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok", "timestamp": utc_now()}), 200


# ── Error handling ───────────────────────────────────────────────────────────

def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(SmartDocError)
    def handle_smartdoc_error(e: SmartDocError):
        if isinstance(e, PersistenceFault) or type(e) is SmartDocError:
            logger.error("Internal error: %s", e, exc_info=e)
            return jsonify({"success": False, "error": "Internal server error"}), 500
        payload: dict[str, Any] = {"success": False, "error": e.message}
        if isinstance(e, UpstreamServiceError) and e.details is not None:
            payload["details"] = e.details
        return jsonify(payload), e.status_code

    @app.errorhandler(ValidationError)
    def handle_validation_error(e: ValidationError):
        return jsonify({
            "success": False,
            "error": "Invalid field values",
            "details": e.errors(include_url=False, include_context=False),
        }), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        message = "Endpoint not found" if e.code == 404 else e.description
        return jsonify({"success": False, "error": message}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"success": False, "error": "Internal server error"}), 500


# ── App factory ──────────────────────────────────────────────────────────────

def create_app(
    settings: Optional[Settings] = None,
    service: Optional[DocumentService] = None,
    generator=None,
) -> Flask:
    """
    Build the Flask app. The document service (and the stores behind it) is
    created once here and shared by every request.
    """
    settings = settings or load_settings()
    if service is None:
        service = DocumentService(StoreSet.from_directory(settings.data_dir))
    if generator is None:
        generator = build_generator(settings)

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = MAX_BODY_BYTES
    app.json.sort_keys = False
    app.extensions["smartdoc.settings"] = settings
    app.extensions["smartdoc.service"] = service
    app.extensions["smartdoc.generator"] = generator

    origins = "*" if settings.cors_origins.strip() == "*" else [
        o.strip() for o in settings.cors_origins.split(",") if o.strip()
    ]
    CORS(app, resources={r"/api/*": {"origins": origins}})

    @app.before_request
    def log_request():
        logger.info("%s %s", request.method, request.path)

    @app.route("/")
    def index():
        return jsonify({
            "name": API_NAME,
            "version": API_VERSION,
            "endpoints": {
                "norms": "/api/norms",
                "testProcedures": "/api/test-procedures",
                "failureAnalyses": "/api/failure-analyses",
                "search": "/api/search",
                "export": "/api/export",
                "aiTools": "/api/ai-tools",
            },
        })

    app.register_blueprint(api_bp)
    _register_error_handlers(app)
    return app
