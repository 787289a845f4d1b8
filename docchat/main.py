"""Quart application exposing document ingestion and RAG chat."""
import logging
import uuid
from pathlib import Path
from typing import List, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError
from quart import Quart, jsonify, request

from docchat import config
from docchat.errors import DocChatError, InvalidRequestError, NotFoundError
from docchat.services import Services, build_services

# Configure structured logging
logging.basicConfig(level=config.LOG_LEVEL, format="%(message)s")
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

MAX_MESSAGE_CHARS = 2000


class ChatRequest(BaseModel):
    session_id: str = Field(min_length=1)
    message: str = Field(min_length=1, max_length=MAX_MESSAGE_CHARS)
    document_ids: Optional[List[str]] = None


class SessionCreateRequest(BaseModel):
    user_id: str = Field(min_length=1)
    title: Optional[str] = None
    document_ids: List[str] = Field(default_factory=list)


def _parse(model: type[BaseModel], data) -> BaseModel:
    """Validate a JSON body, raising InvalidRequestError on failure."""
    if not isinstance(data, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    if isinstance(data.get("message"), str):
        data = {**data, "message": data["message"].strip()}
    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise InvalidRequestError(f"Invalid or missing fields: {fields}") from None


def create_app(services: Optional[Services] = None) -> Quart:
    """Create the Quart app around explicitly built services."""
    services = services or build_services()

    app = Quart(__name__)
    app.config["SERVICES"] = services

    db = services.db
    conversations = services.conversations

    @app.errorhandler(DocChatError)
    async def handle_docchat_error(error: DocChatError):
        logger.warning(
            "request_failed",
            error=error.message,
            error_type=type(error).__name__,
            status=error.http_status,
        )
        return jsonify({"error": error.message}), error.http_status

    @app.route("/api/documents", methods=["POST"])
    async def upload_document():
        """Store an uploaded file and create its document in pending status.

        Expects multipart form data: file, user_id, optional name.
        """
        files = await request.files
        form = await request.form

        upload = files.get("file")
        user_id = (form.get("user_id") or "").strip()
        if upload is None or not upload.filename or not user_id:
            raise InvalidRequestError("Missing 'file' or 'user_id'")

        file_name = Path(upload.filename).name
        data = upload.read()
        document_id = str(uuid.uuid4())
        file_path = f"{user_id}/{document_id}/{file_name}"

        await services.storage.upload(file_path, data)
        document = db.create_document(
            user_id=user_id,
            name=(form.get("name") or "").strip() or Path(file_name).stem,
            file_name=file_name,
            file_type=Path(file_name).suffix.lstrip(".").lower(),
            file_size=len(data),
            file_path=file_path,
            document_id=document_id,
        )
        return jsonify(document.to_dict()), 201

    @app.route("/api/documents", methods=["GET"])
    async def list_documents():
        documents = db.list_documents(user_id=request.args.get("user_id"))
        return jsonify({"documents": [d.to_dict() for d in documents]})

    @app.route("/api/documents/<document_id>", methods=["GET"])
    async def get_document(document_id: str):
        document = db.get_document(document_id)
        if document is None:
            raise NotFoundError(f"Document not found: {document_id}")
        return jsonify(document.to_dict())

    @app.route("/api/documents/<document_id>/chunks", methods=["GET"])
    async def get_document_chunks(document_id: str):
        """Stored chunks of a document in sequence order."""
        if db.get_document(document_id) is None:
            raise NotFoundError(f"Document not found: {document_id}")
        chunks = db.get_chunks_for_document(document_id)
        return jsonify({
            "document_id": document_id,
            "chunks": [
                {
                    "chunk_index": c.chunk_index,
                    "content": c.content,
                    "token_count": c.token_count,
                    "embedding_id": c.embedding_id,
                }
                for c in chunks
            ],
        })

    @app.route("/api/documents/<document_id>/process", methods=["POST"])
    async def process_document(document_id: str):
        """Start ingestion for a document.

        Returns 202 with the document once the run is submitted, or, with
        `?wait=true`, the outcome after the run finishes.
        """
        if db.get_document(document_id) is None:
            raise NotFoundError(f"Document not found: {document_id}")
        if services.tasks.is_running(document_id):
            return jsonify({"error": "Document is already being processed"}), 409

        task = services.tasks.submit(document_id)

        if request.args.get("wait", "").lower() not in ("1", "true", "yes"):
            return jsonify({"document_id": document_id, "status": "processing"}), 202

        try:
            result = await task
        except DocChatError:
            raise
        except Exception as e:
            logger.error("document_processing_endpoint_error", document_id=document_id, error=str(e))
            return jsonify({"success": False, "error": str(e)}), 500

        return jsonify({
            "success": True,
            "document_id": document_id,
            "chunk_count": result.chunk_count,
        })

    @app.route("/api/sessions", methods=["POST"])
    async def create_session():
        body = _parse(SessionCreateRequest, await request.get_json(silent=True))
        session = conversations.create_session(body.user_id, body.title, body.document_ids)
        return jsonify(session.to_dict()), 201

    @app.route("/api/sessions", methods=["GET"])
    async def list_sessions():
        sessions = conversations.list_sessions(user_id=request.args.get("user_id"))
        return jsonify({"sessions": [s.to_dict() for s in sessions]})

    @app.route("/api/sessions/<session_id>", methods=["DELETE"])
    async def delete_session(session_id: str):
        if not conversations.delete_session(session_id):
            raise NotFoundError(f"Session not found: {session_id}")
        return "", 204

    @app.route("/api/sessions/<session_id>/messages", methods=["GET"])
    async def get_session_messages(session_id: str):
        if conversations.get_session(session_id) is None:
            raise NotFoundError(f"Session not found: {session_id}")
        messages = conversations.get_all_messages(session_id)
        return jsonify({"messages": [m.to_dict() for m in messages]})

    @app.route("/api/chat", methods=["POST"])
    async def chat():
        """Answer one chat turn; messages are stored only after success.

        Expects JSON body:
        {
            "session_id": "session-id",
            "message": "user message text",
            "document_ids": ["optional", "scope"]
        }
        """
        body = _parse(ChatRequest, await request.get_json(silent=True))

        session = conversations.get_session(body.session_id)
        if session is None:
            raise NotFoundError(f"Session not found: {body.session_id}")

        logger.info(
            "chat_request_received",
            session_id=session.id,
            message_length=len(body.message),
        )

        document_ids = body.document_ids if body.document_ids is not None else session.document_ids
        result = await services.query_pipeline.query(
            session.id, body.message, document_ids=document_ids or None
        )

        conversations.add_message(session.id, "user", body.message)
        assistant_message = conversations.add_message(
            session.id, "assistant", result.content, result.sources
        )
        conversations.update_session_title(session.id, body.message)

        return jsonify(assistant_message.to_dict())

    @app.route("/health/ready")
    async def health_ready():
        """Readiness probe: chat model service and vector index reachable."""
        checks = {"status": "healthy", "ollama": False, "vector_index": False}

        try:
            models = await services.llm.list_models()
            checks["ollama"] = services.settings.chat_model in models
        except DocChatError as e:
            checks["error"] = e.message

        checks["vector_index"] = await services.vector_index.health_check()

        if not (checks["ollama"] and checks["vector_index"]):
            checks["status"] = "unhealthy"
            return jsonify(checks), 503
        return jsonify(checks), 200

    @app.route("/health/live")
    async def health_live():
        """Liveness probe - check if app is running."""
        return jsonify({"status": "alive"}), 200

    @app.after_serving
    async def shutdown():
        await services.tasks.shutdown()

    return app


if __name__ == "__main__":
    # For development - use `hypercorn "docchat.main:create_app()"` in production
    create_app().run(host="0.0.0.0", port=5000, debug=True)
