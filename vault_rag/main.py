"""Quart application exposing the retrieval engine over HTTP."""
from typing import Optional

import structlog
from quart import Quart, jsonify, request

from vault_rag import config
from vault_rag.errors import ProviderError, ProviderErrorKind
from vault_rag.llm_client import OllamaClient
from vault_rag.log import configure_logging
from vault_rag.rag.engine import RetrievalEngine
from vault_rag.rag.types import Chunk
from vault_rag.rag.vault import MarkdownVault
from vault_rag.rag.watcher import NotesWatcher
from vault_rag.settings import load_settings

logger = structlog.get_logger()

MAX_QUERY_LENGTH = 2000

ERROR_STATUS = {
    ProviderErrorKind.AUTH: 502,
    ProviderErrorKind.RATE_LIMITED: 429,
    ProviderErrorKind.TRANSIENT_UNAVAILABLE: 503,
    ProviderErrorKind.SERVICE_UNAVAILABLE: 503,
    ProviderErrorKind.OTHER: 502,
}


def _source_json(chunk: Chunk) -> dict:
    content = chunk.content
    return {
        "source_id": chunk.source_id,
        "source": chunk.source_label,
        "content_preview": content[:200] + "..." if len(content) > 200 else content,
        "relevance": round(chunk.score, 3) if chunk.score is not None else None,
    }


def _provider_error_response(error: ProviderError):
    return jsonify({"error": error.user_message, "kind": error.kind.value}), ERROR_STATUS[error.kind]


async def _read_query():
    """Return (query, None) or (None, error_response) for a JSON request body."""
    data = await request.get_json(silent=True)

    if not data or not isinstance(data.get("query"), str):
        return None, (jsonify({"error": "Missing 'query' in request body"}), 400)

    query = data["query"].strip()
    if not query:
        return None, (jsonify({"error": "Query cannot be empty"}), 400)

    if len(query) > MAX_QUERY_LENGTH:
        return None, (
            jsonify({"error": f"Query too long (max {MAX_QUERY_LENGTH} characters)"}),
            400,
        )

    return query, None


def build_engine(client: OllamaClient) -> tuple:
    """Build the default engine over the configured notes directory."""
    vault = MarkdownVault()
    engine = RetrievalEngine(
        settings=load_settings(),
        embedder=client,
        generator=client,
        source=vault,
    )
    return engine, vault


def create_app(
    engine: Optional[RetrievalEngine] = None,
    client: Optional[OllamaClient] = None,
    vault: Optional[MarkdownVault] = None,
) -> Quart:
    """Create the Quart app.

    Args:
        engine: Engine to serve (built from config if omitted)
        client: Ollama client used for health checks and the default engine
        vault: Vault to watch when WATCH_NOTES is enabled
    """
    client = client or OllamaClient()
    if engine is None:
        engine, vault = build_engine(client)

    app = Quart(__name__)
    watcher: Optional[NotesWatcher] = None

    @app.before_serving
    async def startup():
        nonlocal watcher
        await engine.load()

        if config.WATCH_NOTES and vault is not None:
            watcher = NotesWatcher(engine, vault)
            await watcher.start()

    @app.after_serving
    async def shutdown():
        if watcher is not None:
            watcher.stop()

    @app.route("/api/ask", methods=["POST"])
    async def ask():
        """Answer a question from the notes.

        Expects JSON body: {"query": "question text"}
        """
        query, error = await _read_query()
        if error:
            return error

        logger.info("ask_request_received", query_length=len(query))

        try:
            answer = await engine.answer(query)
        except ProviderError as e:
            return _provider_error_response(e)

        return jsonify({
            "answer": answer.text,
            "state": answer.state.value,
            "model": answer.model,
            "attempts": answer.attempts,
            "sources": [_source_json(c) for c in answer.sources],
        })

    @app.route("/api/search", methods=["POST"])
    async def search():
        """Return the most relevant chunks without generating an answer."""
        query, error = await _read_query()
        if error:
            return error

        try:
            results = await engine.search(query)
        except ProviderError as e:
            return _provider_error_response(e)

        return jsonify({"results": [_source_json(c) for c in results]})

    @app.route("/api/rebuild", methods=["POST"])
    async def rebuild():
        """Rebuild the embedding cache from the whole vault."""
        if engine.is_rebuilding:
            return jsonify({"error": "A rebuild is already in progress"}), 409

        try:
            report = await engine.rebuild()
        except FileNotFoundError as e:
            logger.error("rebuild_failed", error=str(e))
            return jsonify({"error": "Notes directory not found"}), 500

        return jsonify(report.as_dict())

    @app.route("/api/stats")
    async def stats():
        return jsonify(engine.get_stats())

    @app.route("/health/ready")
    async def health_ready():
        """Readiness check - Ollama must be reachable with both models installed."""
        checks = {"status": "healthy", "ollama": False, "models": False}

        try:
            models = await client.list_models()
        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            checks["status"] = "unhealthy"
            checks["error"] = "Ollama is not reachable"
            return jsonify(checks), 503

        checks["ollama"] = True
        missing = [
            m for m in (engine.settings.generative_model, engine.settings.embedding_model)
            if m not in models
        ]
        if missing:
            checks["status"] = "unhealthy"
            checks["error"] = f"Missing models: {', '.join(missing)}"
            return jsonify(checks), 503

        checks["models"] = True

        if watcher is not None:
            checks["watcher"] = watcher.is_alive()
            if not checks["watcher"]:
                checks["status"] = "unhealthy"
                checks["error"] = "Notes watcher is not running"
                return jsonify(checks), 503

        return jsonify(checks), 200

    @app.route("/health/live")
    async def health_live():
        return jsonify({"status": "alive"}), 200

    @app.errorhandler(404)
    async def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    async def internal_error(error):
        logger.error("internal_server_error", error=str(error))
        return jsonify({"error": "Internal server error"}), 500

    return app


if __name__ == "__main__":
    configure_logging()
    # For development - use hypercorn in production
    create_app().run(host="0.0.0.0", port=5000, debug=True)
