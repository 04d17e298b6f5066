"""Ollama client implementing the embedding and generation capabilities.

HTTP failures are mapped to ProviderError kinds so the orchestrator can
decide what to retry without looking at provider-specific details.
"""
from typing import Dict, List, Optional

import httpx
import structlog

from vault_rag import config
from vault_rag.errors import ProviderError, ProviderErrorKind

logger = structlog.get_logger()

AUTH_STATUSES = {401, 403}
RATE_LIMIT_STATUSES = {429}
TRANSIENT_STATUSES = {502, 503, 504}


def classify_status(status_code: int) -> ProviderErrorKind:
    """Map an HTTP status from the provider to a failure kind."""
    if status_code in AUTH_STATUSES:
        return ProviderErrorKind.AUTH
    if status_code in RATE_LIMIT_STATUSES:
        return ProviderErrorKind.RATE_LIMITED
    if status_code in TRANSIENT_STATUSES:
        return ProviderErrorKind.TRANSIENT_UNAVAILABLE
    return ProviderErrorKind.OTHER


class OllamaClient:
    """Async client for interacting with Ollama API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds (defaults to config.REQUEST_TIMEOUT)
            api_key: Bearer token sent when Ollama sits behind an auth proxy
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url or config.OLLAMA_BASE_URL
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.api_key = api_key if api_key is not None else config.OLLAMA_API_KEY
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            headers=headers,
            transport=self._transport,
        )

    async def _post(self, path: str, payload: Dict, model: str) -> Dict:
        """POST a JSON payload and translate failures into ProviderError."""
        try:
            async with self._client() as client:
                response = await client.post(path, json=payload)
                response.raise_for_status()
                return response.json()

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            kind = classify_status(status_code)
            logger.error(
                "ollama_http_error",
                path=path,
                model=model,
                status_code=status_code,
                kind=kind.value,
            )
            raise ProviderError(kind, str(e), model=model, status_code=status_code) from e
        except httpx.TimeoutException as e:
            logger.error("ollama_timeout", path=path, model=model, error=str(e))
            raise ProviderError(
                ProviderErrorKind.TRANSIENT_UNAVAILABLE, str(e), model=model
            ) from e
        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise ProviderError(ProviderErrorKind.OTHER, str(e), model=model) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("ollama_request_failed", path=path, model=model, error=str(e))
            raise ProviderError(ProviderErrorKind.OTHER, str(e), model=model) from e

    async def embed(self, model: str, text: str) -> List[float]:
        """Generate an embedding for a text.

        Args:
            model: Embedding model to use
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            ProviderError: On API errors or an empty embedding
        """
        logger.debug("ollama_embedding_request", model=model, prompt_length=len(text))

        data = await self._post("/api/embeddings", {"model": model, "prompt": text}, model)
        embedding = data.get("embedding") or []

        if not embedding:
            raise ProviderError(
                ProviderErrorKind.OTHER, "Empty embedding returned", model=model
            )

        logger.debug("ollama_embedding_response", model=model, dimension=len(embedding))
        return embedding

    async def generate(self, model: str, prompt: str) -> str:
        """Send a single-turn chat request and return the reply text.

        Args:
            model: Chat model to use
            prompt: Full prompt, sent as one user message

        Returns:
            Assistant reply text

        Raises:
            ProviderError: On API errors or an empty reply
        """
        payload = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
        }

        logger.info("ollama_chat_request", model=model, prompt_length=len(prompt))

        data = await self._post("/api/chat", payload, model)
        content = data.get("message", {}).get("content", "")

        if not content:
            raise ProviderError(ProviderErrorKind.OTHER, "Empty response from LLM", model=model)

        logger.info("ollama_chat_response", model=model, response_length=len(content))
        return content

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get("/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise
