"""Ollama server access: the fixed set of calls the chat client makes.

Model listing, show, pull, embed and the two completion endpoints go
through the ``ollama`` library. Heartbeat and version have no wrapper
there, so they are plain ``httpx`` requests against the same host.
Every failure surfaces as ServerError.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Iterator
from urllib.parse import urlsplit

import httpx
import ollama

from .errors import CompletionTimeout, ConfigError, ServerError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "http://127.0.0.1:11434"
DEFAULT_PORT = 11434

_TRANSPORT_ERRORS = (ollama.ResponseError, httpx.HTTPError, ConnectionError)


@dataclass
class Fragment:
    """One incremental piece of a streamed reply."""

    content: str = ""
    thinking: str = ""
    done: bool = False
    done_reason: str | None = None


@dataclass
class ModelInfo:
    name: str
    size: int | None = None
    family: str | None = None
    parameter_size: str | None = None


@dataclass
class PullProgress:
    status: str
    completed: int | None = None
    total: int | None = None


def resolve_host(host: str | None = None) -> str:
    """Normalize a host string to ``scheme://host:port``.

    Falls back to $OLLAMA_HOST, then to the local default. A bare
    ``host`` or ``host:port`` gets an http scheme.
    """
    raw = (host or os.environ.get("OLLAMA_HOST") or "").strip()
    if not raw:
        return DEFAULT_HOST
    if "://" not in raw:
        raw = "http://" + raw

    parts = urlsplit(raw)
    if parts.scheme not in ("http", "https"):
        raise ConfigError(f"unsupported scheme in host {raw!r}")
    try:
        port = parts.port
    except ValueError as e:
        raise ConfigError(f"invalid host {raw!r}: {e}") from e
    hostname = parts.hostname
    if not hostname:
        raise ConfigError(f"invalid host {raw!r}: missing hostname")

    if port is None:
        port = 443 if parts.scheme == "https" else DEFAULT_PORT
    if ":" in hostname:
        hostname = f"[{hostname}]"
    path = parts.path.rstrip("/")
    return f"{parts.scheme}://{hostname}:{port}{path}"


def _describe(exc: BaseException) -> str:
    if isinstance(exc, ollama.ResponseError):
        return f"{exc.error} (HTTP {exc.status_code})"
    return str(exc) or type(exc).__name__


def _chat_fragment(chunk) -> Fragment:
    message = chunk.message
    return Fragment(
        content=message.content or "",
        thinking=message.thinking or "",
        done=bool(chunk.done),
        done_reason=chunk.done_reason,
    )


def _generate_fragment(chunk) -> Fragment:
    return Fragment(
        content=chunk.response or "",
        thinking=chunk.thinking or "",
        done=bool(chunk.done),
        done_reason=chunk.done_reason,
    )


class OllamaClient:
    """Client for one Ollama server.

    `timeout` bounds every library call (it becomes the httpx timeout of
    the underlying client); completion streams also get a wall-clock
    deadline per call.
    """

    def __init__(
        self,
        host: str | None = None,
        *,
        timeout: float | None = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.host = resolve_host(host)
        self.timeout = timeout
        http_kwargs = {"transport": transport} if transport is not None else {}
        try:
            self._http = httpx.Client(
                base_url=self.host, timeout=timeout, **http_kwargs
            )
            self._client = ollama.Client(host=self.host, timeout=timeout, **http_kwargs)
        except (ValueError, TypeError, httpx.HTTPError) as e:
            raise ConfigError(f"could not create client for {self.host}: {e}") from e
        logger.debug("client created for %s (timeout=%s)", self.host, timeout)

    def close(self) -> None:
        self._http.close()
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    # -- Simple request/response calls ---------------------------------------

    def heartbeat(self, timeout: float | None = None) -> None:
        """Raise ServerError unless the server answers ``HEAD /``."""
        try:
            resp = self._http.head("/", timeout=timeout or self.timeout)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ServerError("heartbeat", _describe(e)) from e

    def version(self) -> str:
        try:
            resp = self._http.get("/api/version")
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise ServerError("version", _describe(e)) from e
        except ValueError as e:
            raise ServerError("version", f"invalid JSON: {e}") from e
        version = data.get("version") if isinstance(data, dict) else None
        if not version:
            raise ServerError("version", "response has no version field")
        return str(version)

    def list_models(self) -> list[ModelInfo]:
        try:
            resp = self._client.list()
        except _TRANSPORT_ERRORS as e:
            raise ServerError("list", _describe(e)) from e
        models = []
        for m in resp.models:
            details = m.details
            models.append(
                ModelInfo(
                    name=m.model or "",
                    size=m.size,
                    family=details.family if details else None,
                    parameter_size=details.parameter_size if details else None,
                )
            )
        return models

    def capabilities(self, model: str) -> list[str]:
        try:
            resp = self._client.show(model)
        except _TRANSPORT_ERRORS as e:
            raise ServerError("show", _describe(e)) from e
        return [str(c) for c in (resp.capabilities or [])]

    def pull(self, model: str) -> Iterator[PullProgress]:
        """Pull `model`, yielding progress updates as the server reports them."""
        logger.debug("pulling %s", model)
        try:
            for update in self._client.pull(model, stream=True):
                yield PullProgress(
                    status=update.status or "",
                    completed=update.completed,
                    total=update.total,
                )
        except _TRANSPORT_ERRORS as e:
            raise ServerError("pull", _describe(e)) from e

    def embed(self, model: str, text: str) -> list[float]:
        try:
            resp = self._client.embed(model=model, input=text)
        except _TRANSPORT_ERRORS as e:
            raise ServerError("embed", _describe(e)) from e
        if not resp.embeddings:
            raise ServerError("embed", "server returned no embeddings")
        return list(resp.embeddings[0])

    # -- Streaming completions -----------------------------------------------

    def chat_stream(
        self,
        model: str,
        messages: list[dict],
        *,
        think=None,
        timeout: float | None = None,
    ) -> Iterator[Fragment]:
        """Stream a chat reply for the full role-tagged `messages` list."""
        kwargs = {"think": think} if think is not None else {}
        logger.debug("chat %s with %d messages", model, len(messages))
        return self._drain(
            "chat",
            lambda: self._client.chat(
                model=model, messages=messages, stream=True, **kwargs
            ),
            _chat_fragment,
            timeout,
        )

    def generate_stream(
        self,
        model: str,
        prompt: str,
        *,
        system: str | None = None,
        think=None,
        timeout: float | None = None,
    ) -> Iterator[Fragment]:
        """Stream a reply for a single prompt with a separate system message."""
        kwargs = {"think": think} if think is not None else {}
        if system is not None:
            kwargs["system"] = system
        logger.debug("generate %s (%d chars)", model, len(prompt))
        return self._drain(
            "generate",
            lambda: self._client.generate(
                model=model, prompt=prompt, stream=True, **kwargs
            ),
            _generate_fragment,
            timeout,
        )

    def _drain(self, operation, open_stream, convert, timeout) -> Iterator[Fragment]:
        """Yield converted fragments in arrival order until the stream ends.

        The deadline starts when iteration starts and is checked as each
        chunk arrives; the underlying stream is always closed on exit.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        stream = None
        try:
            stream = open_stream()
            for chunk in stream:
                if deadline is not None and time.monotonic() > deadline:
                    raise CompletionTimeout(operation, timeout)
                yield convert(chunk)
        except httpx.TimeoutException as e:
            raise CompletionTimeout(operation, timeout or self.timeout or 0) from e
        except _TRANSPORT_ERRORS as e:
            raise ServerError(operation, _describe(e)) from e
        except (ValueError, httpx.StreamError) as e:
            # Undecodable line or unexpected chunk shape
            raise ServerError(operation, f"malformed reply: {e}") from e
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                try:
                    close()
                except httpx.HTTPError as e:
                    logger.warning("error closing %s stream: %s", operation, e)
