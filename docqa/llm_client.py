"""Ollama client for embeddings and grounded generation."""
import json
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

import httpx
import structlog

from docqa import config
from docqa.errors import EmbeddingUnavailable, GenerationUnavailable

logger = structlog.get_logger()


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...


class Generator(Protocol):
    async def generate(self, prompt: str) -> str:
        ...

    def generate_stream(self, prompt: str) -> AsyncIterator[str]:
        ...


class OllamaClient:
    """Async client for the Ollama embedding and generation endpoints."""

    def __init__(
        self,
        base_url: str = None,
        chat_model: str = None,
        embedding_model: str = None,
        timeout: float = None,
        options: Optional[Dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            chat_model: Generation model (defaults to config.CHAT_MODEL)
            embedding_model: Embedding model (defaults to config.EMBEDDING_MODEL)
            timeout: Per-request timeout in seconds (defaults to config.OLLAMA_TIMEOUT)
            options: Sampling options sent with every generation request
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.chat_model = chat_model or config.CHAT_MODEL
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.timeout = timeout or config.OLLAMA_TIMEOUT
        self.options = options if options is not None else {
            "temperature": config.OLLAMA_TEMPERATURE,
            "top_p": config.OLLAMA_TOP_P,
            "top_k": config.OLLAMA_TOP_K,
        }
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or self.timeout),
            transport=self._transport,
        )

    async def embed(self, text: str) -> List[float]:
        """Generate an embedding vector for a text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            EmbeddingUnavailable: On transport errors, timeouts, an unreadable
                body or an empty vector
        """
        payload = {"model": self.embedding_model, "prompt": text}

        try:
            async with self._client() as client:
                logger.debug(
                    "ollama_embedding_request",
                    model=self.embedding_model,
                    prompt_length=len(text),
                )

                response = await client.post(f"{self.base_url}/api/embeddings", json=payload)
                response.raise_for_status()
                data = response.json()

        except httpx.TimeoutException as e:
            logger.error("ollama_embedding_timeout", error=str(e), timeout=self.timeout)
            raise EmbeddingUnavailable(
                f"Embedding request timed out after {self.timeout}s",
                operation="embed",
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e), base_url=self.base_url)
            raise EmbeddingUnavailable(
                f"Embedding service unavailable: {e}",
                operation="embed",
                cause=e,
            ) from e
        except ValueError as e:
            logger.error("ollama_embedding_invalid_json", error=str(e))
            raise EmbeddingUnavailable(
                f"Invalid JSON from embedding service: {e}",
                operation="embed",
                cause=e,
            ) from e

        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not embedding or not isinstance(embedding, list):
            logger.error("ollama_empty_embedding", model=self.embedding_model)
            raise EmbeddingUnavailable("Empty embedding returned from Ollama", operation="embed")

        try:
            vector = [float(v) for v in embedding]
        except (TypeError, ValueError) as e:
            raise EmbeddingUnavailable(
                f"Non-numeric embedding returned from Ollama: {e}",
                operation="embed",
                cause=e,
            ) from e

        logger.debug(
            "ollama_embedding_response",
            model=self.embedding_model,
            dimension=len(vector),
        )
        return vector

    async def generate(self, prompt: str) -> str:
        """Generate a complete answer for a prompt.

        Raises:
            GenerationUnavailable: On transport errors, timeouts or an
                unreadable body
        """
        payload = {
            "model": self.chat_model,
            "prompt": prompt,
            "stream": False,
            "options": self.options,
        }

        try:
            async with self._client() as client:
                logger.info(
                    "ollama_generate_request",
                    model=self.chat_model,
                    prompt_length=len(prompt),
                    stream=False,
                )

                response = await client.post(f"{self.base_url}/api/generate", json=payload)
                response.raise_for_status()
                data = response.json()

        except httpx.TimeoutException as e:
            logger.error("ollama_generate_timeout", error=str(e), timeout=self.timeout)
            raise GenerationUnavailable(
                f"Generation request timed out after {self.timeout}s",
                operation="generate",
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            logger.error("ollama_generate_error", error=str(e), base_url=self.base_url)
            raise GenerationUnavailable(
                f"Generation service unavailable: {e}",
                operation="generate",
                cause=e,
            ) from e
        except ValueError as e:
            logger.error("ollama_generate_invalid_json", error=str(e))
            raise GenerationUnavailable(
                f"Invalid JSON from generation service: {e}",
                operation="generate",
                cause=e,
            ) from e

        if not isinstance(data, dict):
            raise GenerationUnavailable(
                f"Unexpected response from Ollama: {type(data).__name__}",
                operation="generate",
            )

        if data.get("error"):
            raise GenerationUnavailable(f"Ollama error: {data['error']}", operation="generate")

        text = data.get("response", "")
        logger.info("ollama_generate_response", model=self.chat_model, response_length=len(text))
        return text

    async def generate_stream(self, prompt: str) -> AsyncIterator[str]:
        """Stream answer increments for a prompt.

        The read timeout bounds the wait for each increment. Closing the
        iterator closes the underlying HTTP response.

        Yields:
            Text increments in arrival order

        Raises:
            GenerationUnavailable: On transport errors, timeouts, an in-band
                error line or a stream that ends without a done signal
        """
        payload = {
            "model": self.chat_model,
            "prompt": prompt,
            "stream": True,
            "options": self.options,
        }

        try:
            async with self._client() as client:
                logger.info(
                    "ollama_generate_request",
                    model=self.chat_model,
                    prompt_length=len(prompt),
                    stream=True,
                )

                async with client.stream(
                    "POST", f"{self.base_url}/api/generate", json=payload
                ) as response:
                    response.raise_for_status()

                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue

                        try:
                            data = json.loads(line)
                        except ValueError:
                            logger.warning("ollama_stream_malformed_line", line_preview=line[:100])
                            continue

                        if not isinstance(data, dict):
                            logger.warning("ollama_stream_malformed_line", line_preview=line[:100])
                            continue

                        if data.get("error"):
                            raise GenerationUnavailable(
                                f"Ollama error: {data['error']}",
                                operation="generate_stream",
                            )

                        token = data.get("response")
                        if token:
                            yield token

                        if data.get("done"):
                            logger.info("ollama_stream_completed", model=self.chat_model)
                            return

        except httpx.TimeoutException as e:
            logger.error("ollama_stream_timeout", error=str(e), timeout=self.timeout)
            raise GenerationUnavailable(
                f"Generation stream timed out after {self.timeout}s",
                operation="generate_stream",
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            logger.error("ollama_stream_error", error=str(e), base_url=self.base_url)
            raise GenerationUnavailable(
                f"Generation service unavailable: {e}",
                operation="generate_stream",
                cause=e,
            ) from e

        raise GenerationUnavailable(
            "Generation stream ended before completion",
            operation="generate_stream",
        )

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise
