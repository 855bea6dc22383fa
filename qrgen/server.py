"""Flask HTTP surface over a QRCodeService."""

from flask import Flask, Response, abort, jsonify, redirect, request

from qrgen.batch import MAX_CSV_ROWS, BatchCoordinator
from qrgen.errors import LengthExceeded, PayloadError, QRGenError, RenderError
from qrgen.logging import audit, get_logger, trace
from qrgen.models import ImageFormat, request_from_dict

log = get_logger("server")

ACTOR_HEADER = "X-Actor-Id"


def error_status(exc: QRGenError) -> int:
    if isinstance(exc, (LengthExceeded, RenderError)):
        return 422
    if isinstance(exc, PayloadError):
        return 400
    if exc.retryable:
        return 503
    return 500


def _actor() -> str:
    return request.headers.get(ACTOR_HEADER, "anonymous")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, description="request body must be a JSON object")
    return data


@trace
def create_app(service, batch_max_concurrency: int = 10, batch_timeout: float = 30.0) -> Flask:
    """Create the Flask app serving generation, images and short-code redirects."""
    app = Flask(__name__)
    batches = BatchCoordinator(service, batch_max_concurrency, batch_timeout)

    @app.errorhandler(QRGenError)
    def handle_qrgen_error(exc):
        status = error_status(exc)
        if status >= 500:
            log.error("request failed: %s", exc)
        body = {"error": str(exc), "code": exc.code, "retryable": exc.retryable}
        return jsonify(body), status

    @app.route("/api/qr/generate", methods=["POST"])
    def generate():
        qr_request = request_from_dict(_json_body())
        result = service.generate(qr_request, _actor())
        return jsonify(result.to_dict()), 201

    @app.route("/api/qr/batch", methods=["POST"])
    def generate_batch():
        data = _json_body()
        items = data.get("requests")
        if not isinstance(items, list) or not items:
            return jsonify({"error": "Missing 'requests' list"}), 400
        if len(items) > MAX_CSV_ROWS:
            return jsonify({"error": f"at most {MAX_CSV_ROWS} requests per batch"}), 400
        try:
            outcome = batches.generate_batch(
                items,
                _actor(),
                max_concurrency=data.get("maxConcurrency", data.get("max_concurrency")),
                timeout=data.get("timeout"),
            )
        except (TypeError, ValueError) as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify(outcome.to_dict())

    @app.route("/api/qr/image/<image_id>.<fmt>")
    def image(image_id, fmt):
        record = service.record(image_id)
        if record is None or record.style.get("format", ImageFormat.PNG.value) != fmt:
            abort(404)
        data = service.image_bytes(image_id)
        if data is None:
            abort(404)
        return Response(data, mimetype=ImageFormat(fmt).mime_type)

    @app.route("/q/<code>")
    def resolve(code):
        record = service.resolve(code)
        if record is None:
            audit("redirect.404", logger=log, code=code)
            abort(404)
        destination = service.destination(record)
        if destination is None:
            return jsonify({"type": record.type, "name": record.name, "data": record.data})
        audit("redirect.302", logger=log, code=code, destination=destination[:80])
        return redirect(destination, code=302)

    @app.route("/api/qr/stats")
    def stats():
        return jsonify(service.stats())

    return app
