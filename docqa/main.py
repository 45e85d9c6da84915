"""Quart application for docqa."""
import json
from pathlib import Path
from typing import Optional, Type, TypeVar

import httpx
import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from quart import Blueprint, Quart, current_app, jsonify, make_response, request, send_file

from docqa import config
from docqa.errors import (
    CapabilityUnavailable,
    DocQAError,
    StorageUnavailable,
    ValidationError,
)
from docqa.log_config import configure_logging
from docqa.rag.extract import SUPPORTED_SUFFIXES
from docqa.rag.orchestrator import StreamDone
from docqa.schemas import IngestTextRequest, QueryRequest, check_source_id
from docqa.service import DocumentQAService

logger = structlog.get_logger()

SERVICE_KEY = "docqa"
RequestModel = TypeVar("RequestModel", bound=BaseModel)

api = Blueprint("api", __name__)


def error_status(error: DocQAError) -> int:
    """HTTP status for a pipeline error."""
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, (CapabilityUnavailable, StorageUnavailable)):
        return 503
    # StorageCorruption and anything unclassified
    return 500


def _service() -> DocumentQAService:
    return current_app.extensions[SERVICE_KEY]


def _uploads_dir() -> Path:
    return Path(current_app.config["UPLOADS_DIR"])


async def _parse_body(model: Type[RequestModel]) -> RequestModel:
    data = await request.get_json(silent=True)
    if data is None:
        raise ValidationError("Request body must be JSON", field="body")
    return model.model_validate(data)


@api.route("/api")
async def index():
    """List available endpoints."""
    return jsonify({
        "name": "docqa",
        "endpoints": {
            "config": "GET /api/config",
            "upload": "POST /api/documents",
            "ingest_text": "POST /api/documents/text",
            "documents": "GET /api/documents",
            "document": "GET /api/documents/<source_id>",
            "remove": "DELETE /api/documents/<source_id>",
            "query": "POST /api/query",
            "query_stream": "POST /api/query-stream",
            "history": "GET /api/history, DELETE /api/history",
            "health": "GET /health/live, GET /health/ready",
        },
    })


@api.route("/api/config")
async def get_config():
    """Current retrieval and generation settings."""
    service = _service()
    return jsonify({
        "strict_mode": service.strict,
        "top_k": service.top_k,
        "similarity_floor": service.similarity_floor,
        "fragment_max_size": service.ingest_pipeline.segmenter.max_size,
        "fragment_overlap_units": service.ingest_pipeline.segmenter.overlap_units,
        "max_query_length": service.retriever.max_query_length,
        "chat_model": config.CHAT_MODEL,
        "embedding_model": config.EMBEDDING_MODEL,
    })


@api.route("/api/documents", methods=["POST"])
async def upload_document():
    """Upload a document and index it.

    Expects multipart form data with a 'file' field (.pdf, .md or .txt).
    """
    files = await request.files
    upload = files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("No file provided", field="file")

    source_id = check_source_id(upload.filename)
    if Path(source_id).suffix.lower() not in SUPPORTED_SUFFIXES:
        raise ValidationError(
            f"Unsupported file type. Supported: {', '.join(SUPPORTED_SUFFIXES)}",
            field="file",
        )

    uploads_dir = _uploads_dir()
    uploads_dir.mkdir(parents=True, exist_ok=True)
    path = uploads_dir / source_id
    await upload.save(path)

    logger.info("document_uploaded", source_id=source_id, path=str(path))

    try:
        result = await _service().ingest_file(path, source_id=source_id)
    except DocQAError:
        path.unlink(missing_ok=True)
        raise

    return jsonify({"message": "Document processed successfully", **result.to_dict()}), 201


@api.route("/api/documents/text", methods=["POST"])
async def ingest_text():
    """Index raw text under a source id.

    Expects JSON body: {"source_id": "...", "text": "..."}
    """
    body = await _parse_body(IngestTextRequest)
    result = await _service().ingest(body.source_id, body.text)
    return jsonify(result.to_dict()), 201


@api.route("/api/documents", methods=["GET"])
async def list_documents():
    """Indexed sources and their fragment counts."""
    stats = _service().get_stats()
    documents = [
        {"source_id": source_id, "fragments": count}
        for source_id, count in stats.per_source.items()
    ]
    return jsonify({
        "documents": documents,
        "total_fragments": stats.total_fragments,
        "dimension": stats.dimension,
    })


@api.route("/api/documents/<source_id>", methods=["GET"])
async def get_document(source_id: str):
    """Serve an uploaded file. Citation links point here."""
    source_id = check_source_id(source_id)
    path = _uploads_dir() / source_id
    if not path.is_file():
        return jsonify({"error": "Document not found"}), 404
    return await send_file(path)


@api.route("/api/documents/<source_id>", methods=["DELETE"])
async def delete_document(source_id: str):
    """Remove a source's fragments and its uploaded file."""
    source_id = check_source_id(source_id)
    result = await _service().remove_source(source_id)

    path = _uploads_dir() / source_id
    file_removed = path.is_file()
    if file_removed:
        path.unlink()

    if result.removed_count == 0 and not file_removed:
        return jsonify({"error": "Document not found"}), 404

    return jsonify({**result.to_dict(), "file_removed": file_removed})


@api.route("/api/query", methods=["POST"])
async def query():
    """Answer a question from the indexed documents.

    Expects JSON body:
    {
        "query": "question text",
        "top_k": 3,               // optional
        "similarity_floor": 0.3,  // optional
        "strict": true,           // optional
        "source_id": "doc.pdf"    // optional
    }
    """
    body = await _parse_body(QueryRequest)
    answer = await _service().query(
        body.query,
        top_k=body.top_k,
        similarity_floor=body.similarity_floor,
        strict=body.strict,
        source_filter=body.source_id,
    )
    return jsonify(answer.to_dict())


@api.route("/api/query-stream", methods=["POST"])
async def query_stream():
    """Answer a question as server-sent events.

    Each event is a 'data: {json}' line with a type of citations, token,
    completion or error. The stream ends with 'data: [DONE]'.
    """
    body = await _parse_body(QueryRequest)
    events = _service().query_stream(
        body.query,
        top_k=body.top_k,
        similarity_floor=body.similarity_floor,
        strict=body.strict,
        source_filter=body.source_id,
    )

    async def send_events():
        try:
            async for event in events:
                if isinstance(event, StreamDone):
                    yield b"data: [DONE]\n\n"
                else:
                    yield f"data: {json.dumps(event.to_payload())}\n\n".encode("utf-8")
        finally:
            await events.aclose()

    response = await make_response(
        send_events(),
        200,
        {
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )
    response.timeout = None
    return response


@api.route("/api/history", methods=["GET"])
async def history():
    """Recently completed answers, newest first."""
    limit = request.args.get("limit", default=50, type=int)
    answers = await _service().recent_answers(min(max(limit, 1), 200))
    return jsonify({"answers": answers})


@api.route("/api/history", methods=["DELETE"])
async def clear_history():
    """Delete the answer history."""
    removed = await _service().clear_history()
    return jsonify({"removed_count": removed})


@api.route("/health/ready")
async def health_ready():
    """Readiness check: report if app can serve requests.

    Checks:
    - Ollama service is reachable
    - Chat and embedding models are available
    """
    checks = {
        "status": "healthy",
        "ollama": False,
        "models": False,
    }

    list_models = getattr(_service().generator, "list_models", None)
    if list_models is None:
        checks["ollama"] = checks["models"] = True
        return jsonify(checks), 200

    try:
        models = await list_models()
    except httpx.HTTPError as e:
        logger.error("health_check_failed", error=str(e))
        checks["status"] = "unhealthy"
        checks["error"] = str(e)
        return jsonify(checks), 503

    checks["ollama"] = True
    missing = [
        name
        for name in (config.CHAT_MODEL, config.EMBEDDING_MODEL)
        if not any(m == name or m.startswith(f"{name}:") for m in models)
    ]
    if missing:
        checks["status"] = "unhealthy"
        checks["error"] = f"Missing models: {', '.join(missing)}"
        return jsonify(checks), 503

    checks["models"] = True
    return jsonify(checks), 200


@api.route("/health/live")
async def health_live():
    """Liveness check: report if app is running."""
    return jsonify({"status": "alive"}), 200


def create_app(
    service: Optional[DocumentQAService] = None,
    uploads_dir: Optional[Path] = None,
) -> Quart:
    """Create the Quart application.

    Args:
        service: Started service to use. When omitted, one is built from
            configuration and started before the app begins serving.
        uploads_dir: Where uploaded files are stored (default from config)
    """
    configure_logging()

    app = Quart(__name__)
    app.config["UPLOADS_DIR"] = str(uploads_dir or config.UPLOADS_DIR)
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_MB * 1024 * 1024

    if service is not None:
        app.extensions[SERVICE_KEY] = service

    app.register_blueprint(api)

    @app.before_serving
    async def startup():
        if SERVICE_KEY in app.extensions:
            return

        for warning in config.validate_config():
            logger.warning("config_warning", message=warning)
        config.ensure_directories()

        built = DocumentQAService.build()
        await built.start()
        app.extensions[SERVICE_KEY] = built

    @app.errorhandler(DocQAError)
    async def handle_pipeline_error(error: DocQAError):
        status = error_status(error)
        log = logger.warning if status < 500 else logger.error
        log("request_failed", status=status, path=request.path, **error.log_context())

        body = {"error": error.message}
        if isinstance(error, ValidationError) and error.field:
            body["field"] = error.field
        return jsonify(body), status

    @app.errorhandler(PydanticValidationError)
    async def handle_bad_body(error: PydanticValidationError):
        logger.warning("invalid_request_body", path=request.path, errors=error.error_count())
        return jsonify({
            "error": "Invalid request body",
            "details": error.errors(include_url=False, include_context=False),
        }), 400

    @app.errorhandler(404)
    async def not_found(error):
        """Handle 404 errors."""
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    async def internal_error(error):
        """Handle 500 errors."""
        logger.error("internal_server_error", error=str(error))
        return jsonify({"error": "Internal server error"}), 500

    logger.info("app_created", uploads_dir=app.config["UPLOADS_DIR"])
    return app
