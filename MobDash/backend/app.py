import io
import logging
import os
from typing import Any

from flask import Flask, abort, jsonify, render_template, request, send_file
from flask_cors import CORS
from werkzeug.utils import secure_filename

from config import Config
import mobsf_client
from mobsf_client import MobsfClientError
from models import NormalizedReport, ScanStatus
from report_view import build_human_report
from scan_controller import ScanController, ScanInputError

logger = logging.getLogger(__name__)


def _client_error(msg: str, exc: MobsfClientError, status: int = 502):
    return jsonify({"msg": msg, "error": exc.user_message()}), status


def create_app(config_class: type = Config, api: Any = None, scheduler: Any = None) -> Flask:
    """
    Application factory for the MobDash backend.

    ``api`` and ``scheduler`` are handed to the ScanController; tests pass
    fakes for both.
    """
    app = Flask(__name__, instance_relative_config=True)

    # Load configuration
    app.config.from_object(config_class)

    # Ensure the saved-report folder exists
    try:
        os.makedirs(app.config["REPORTS_DIR"], exist_ok=True)
    except OSError as exc:
        logger.warning("Could not create reports dir %s: %s", app.config["REPORTS_DIR"], exc)

    CORS(
        app,
        resources={r"/api/*": {"origins": app.config.get("FRONTEND_ORIGIN", "*")}},
        supports_credentials=True,
    )

    client = api if api is not None else mobsf_client
    # scheduler threads have no app context, so hand over a plain dict
    controller = ScanController(dict(app.config), api=client, scheduler=scheduler)
    app.extensions["scan_controller"] = controller

    def normalized_for_session() -> NormalizedReport:
        _, _, normalized = controller.loaded_report()
        if normalized is None:
            abort(404, description="No report loaded for the selected scan")
        return normalized

    @app.errorhandler(ScanInputError)
    def handle_input_error(exc: ScanInputError):
        return jsonify({"msg": str(exc)}), 400

    @app.errorhandler(404)
    def handle_not_found(exc):
        if request.path.startswith("/api/"):
            return jsonify({"msg": exc.description}), 404
        return exc.get_response()

    # Pages
    @app.route("/", methods=["GET"])
    def index():
        return render_template("index.html", scan=controller.snapshot())

    @app.route("/reports/<file_hash>", methods=["GET"])
    def report_page(file_hash: str):
        selected, _, _ = controller.loaded_report()
        if selected != file_hash:
            controller.select(file_hash)
        # a scan still in progress for this hash renders the status only
        _, status, normalized = controller.loaded_report()
        if normalized is None:
            code = 502 if status == ScanStatus.ERROR else 200
            return render_template("report.html", report=None, scan=controller.snapshot()), code
        return render_template(
            "report.html",
            report=build_human_report(normalized),
            scan=controller.snapshot(),
        )

    @app.route("/reports/json/<file_hash>", methods=["GET"])
    def saved_report(file_hash: str):
        try:
            data = client.load_saved_report(file_hash, app.config)
        except MobsfClientError as exc:
            return _client_error("Failed to read saved report", exc, 500)
        if data is None:
            return jsonify({"msg": "No saved report for this hash"}), 404
        return jsonify(data), 200

    # Health check endpoint
    @app.route("/api/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok"})

    # Scans: list previously uploaded scans on the service
    @app.route("/api/scans", methods=["GET"])
    def list_scans():
        page = request.args.get("page", 1, type=int)
        page_size = request.args.get("page_size", 10, type=int)
        try:
            scans = client.list_recent_scans(app.config, page=page, page_size=page_size)
        except MobsfClientError as exc:
            return _client_error("Failed to list scans", exc)
        return jsonify(scans), 200

    # Scans: upload a package and start the lifecycle
    @app.route("/api/scans", methods=["POST"])
    def upload_scan():
        upload = request.files.get("file")
        if upload is None or not upload.filename:
            raise ScanInputError("Choose an APK first.")
        filename = secure_filename(upload.filename)
        session = controller.start_upload(upload.stream, filename)
        status = 500 if session["status"] == "error" else 202
        return jsonify(session), status

    @app.route("/api/scans/<file_hash>/summary", methods=["GET"])
    def scan_summary(file_hash: str):
        try:
            summary = controller.fetch_summary(file_hash)
        except MobsfClientError as exc:
            return _client_error("Summary failed", exc)
        return jsonify(summary), 200

    @app.route("/api/scans/<file_hash>/pdf", methods=["GET"])
    def scan_pdf(file_hash: str):
        try:
            document = controller.download_document(file_hash)
        except MobsfClientError as exc:
            return _client_error("Download failed", exc)
        return send_file(
            io.BytesIO(document),
            mimetype="application/pdf",
            as_attachment=True,
            download_name=f"{secure_filename(file_hash)}.pdf",
        )

    # Session: the scan currently selected on the dashboard
    @app.route("/api/session", methods=["GET"])
    def get_session():
        return jsonify(controller.snapshot()), 200

    @app.route("/api/session/select", methods=["POST"])
    def select_scan():
        data = request.get_json(silent=True) or {}
        session = controller.select(data.get("hash"))
        status = 502 if session["status"] == "error" else 200
        return jsonify(session), status

    @app.route("/api/session/reset", methods=["POST"])
    def reset_session():
        return jsonify(controller.reset()), 200

    @app.route("/api/session/report", methods=["GET"])
    def session_report():
        return jsonify(build_human_report(normalized_for_session())), 200

    @app.route("/api/session/normalized", methods=["GET"])
    def session_normalized():
        return jsonify(normalized_for_session().to_dict()), 200

    @app.route("/api/session/document", methods=["POST"])
    def preview_document():
        try:
            controller.preview_document()
        except MobsfClientError as exc:
            return _client_error("PDF fetch failed", exc)
        return jsonify(controller.snapshot()), 200

    @app.route("/api/session/document", methods=["GET"])
    def get_document():
        document = controller.current_document()
        if document is None:
            abort(404, description="No PDF preview loaded")
        return send_file(io.BytesIO(document), mimetype="application/pdf")

    @app.route("/api/session/document", methods=["DELETE"])
    def close_document():
        controller.close_document()
        return jsonify(controller.snapshot()), 200

    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    application = create_app()
    try:
        application.run(host="0.0.0.0", port=5000, debug=True)
    finally:
        application.extensions["scan_controller"].shutdown()
