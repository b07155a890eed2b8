"""
aiswitch.adapters.base — Client contract shared by every vendor adapter.

``AIClient`` is the capability set callers program against.  ``BaseAdapter``
implements the parts of it that are identical across vendors:

  - credential lifecycle (set key → live probe → availability → change event),
    delegated to a composed ``CredentialState``
  - conversation validation and credential gating before any network call
  - the plain and streaming HTTP round-trips, including error normalisation
    into ``CompletionResult.error``

Subclasses only describe their wire format: how to build the request body and
``httpx.Request``, how to read the answer out of the response envelope, and
where the incremental text lives in a stream frame.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import aclosing
from typing import (
    Any,
    Awaitable,
    Callable,
    ClassVar,
    Protocol,
    Sequence,
    runtime_checkable,
)

import httpx

from aiswitch.adapters.sse import iter_lines_until, iter_sse_json
from aiswitch.core.errors import (
    AISwitchError,
    ConfigurationError,
    ParseError,
    TransportError,
    ValidationError,
    VendorError,
)
from aiswitch.core.events import Emitter
from aiswitch.core.models import (
    CompletionError,
    CompletionOptions,
    CompletionResult,
    ConversationTurn,
    utc_timestamp,
)

logger = logging.getLogger("aiswitch.adapters")

ChunkCallback = Callable[[str], None]

DEFAULT_TEMPERATURE = 0.7
MIN_API_KEY_LENGTH = 30

# Connectivity probe: one tiny turn with a tiny output budget
PROBE_PROMPT = "Hello"
PROBE_MAX_TOKENS = 5


@runtime_checkable
class AIClient(Protocol):
    """The vendor-agnostic client contract."""

    vendor_id: ClassVar[str]

    @property
    def on_did_change_status(self) -> Emitter[bool]: ...

    @property
    def api_key(self) -> str | None: ...

    @property
    def model(self) -> str: ...

    def is_available(self) -> bool: ...

    def model_name(self) -> str: ...

    def token_limit(self) -> int: ...

    async def set_api_key(self, api_key: str) -> bool: ...

    async def test_connection(self) -> bool: ...

    async def complete(
        self,
        turns: Sequence[ConversationTurn],
        options: CompletionOptions | None = None,
    ) -> CompletionResult: ...

    async def stream_complete(
        self,
        turns: Sequence[ConversationTurn],
        on_chunk: ChunkCallback,
        options: CompletionOptions | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> CompletionResult: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Shared rules
# ---------------------------------------------------------------------------

def validate_turns(turns: Sequence[ConversationTurn]) -> None:
    """Reject empty conversations and same-role adjacent turns."""
    if not turns:
        raise ValidationError("At least one message is required")
    for previous, current in zip(turns, turns[1:]):
        if current.role == previous.role:
            raise ValidationError(
                f"Consecutive messages from the same role ({current.role}) are not allowed"
            )


def error_result(exc: BaseException, **metadata: Any) -> CompletionResult:
    """Normalise any caught failure into an error ``CompletionResult``."""
    if isinstance(exc, AISwitchError):
        code, message = exc.code, exc.message
    else:
        raw_code = getattr(exc, "code", None)
        code = raw_code if isinstance(raw_code, str) and raw_code else "unknown_error"
        message = str(exc)
    return CompletionResult(
        content="",
        error=CompletionError(
            code=code or "unknown_error",
            message=message or "An unknown error occurred",
        ),
        metadata={"timestamp": utc_timestamp(), **metadata},
    )


class CredentialState:
    """
    Credential + availability pair with change notification.

    ``apply()`` probes the candidate key *before* committing it, then commits
    key and availability together under one lock, so concurrent callers never
    observe a half-applied state and never see a stale or duplicate event.
    """

    def __init__(self, api_key: str | None = None) -> None:
        self._api_key = api_key or None
        self._available = False
        self._lock = asyncio.Lock()
        self.on_did_change: Emitter[bool] = Emitter()

    @property
    def api_key(self) -> str | None:
        return self._api_key

    @property
    def available(self) -> bool:
        return self._available and bool(self._api_key)

    async def apply(
        self,
        api_key: str | None,
        probe: Callable[[str | None], Awaitable[bool]],
    ) -> bool:
        async with self._lock:
            previous = self.available
            try:
                ok = await probe(api_key)
            except BaseException:
                self._api_key = api_key or None
                self._available = False
                if previous:
                    self.on_did_change.fire(False)
                raise
            self._api_key = api_key or None
            self._available = ok
            current = self.available
            if current != previous:
                self.on_did_change.fire(current)
            return current


# ---------------------------------------------------------------------------
# Base adapter
# ---------------------------------------------------------------------------

class BaseAdapter(ABC):
    """
    Shared implementation of :class:`AIClient`.

    Subclasses set the class-level descriptors and implement the wire hooks.
    """

    vendor_id: ClassVar[str]
    display_vendor: ClassVar[str]
    base_url: ClassVar[str]
    default_model: ClassVar[str]
    default_max_tokens: ClassVar[int]
    key_prefix: ClassVar[str]

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        *,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: httpx.Timeout | float | None = None,
    ) -> None:
        self._model = model or self.default_model
        self._credentials = CredentialState(api_key)
        # No implicit timeout: callers bring their own deadline / cancellation
        self._client = httpx.AsyncClient(
            base_url=base_url or self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} model={self._model!r} available={self.is_available()}>"

    # ------------------------------------------------------------------
    # Descriptive metadata
    # ------------------------------------------------------------------

    @property
    def model(self) -> str:
        return self._model

    def model_name(self) -> str:
        return f"{self.display_vendor} {self._model}"

    def token_limit(self) -> int:
        """Maximum context size of the configured model, in tokens."""
        return self.token_limit_for(self._model)

    @classmethod
    @abstractmethod
    def token_limit_for(cls, model: str) -> int:
        ...

    @classmethod
    def is_plausible_api_key(cls, api_key: str | None) -> bool:
        """Cheap local syntax gate; not a substitute for the live probe."""
        return bool(api_key) and api_key.startswith(cls.key_prefix) and len(api_key) > MIN_API_KEY_LENGTH

    # ------------------------------------------------------------------
    # Credential lifecycle
    # ------------------------------------------------------------------

    @property
    def on_did_change_status(self) -> Emitter[bool]:
        return self._credentials.on_did_change

    @property
    def api_key(self) -> str | None:
        return self._credentials.api_key

    def is_available(self) -> bool:
        return self._credentials.available

    async def set_api_key(self, api_key: str) -> bool:
        """Set the credential, probe it, and return the fresh availability."""
        return await self._credentials.apply(api_key, self._probe)

    async def test_connection(self) -> bool:
        return await self._probe(self.api_key)

    async def _probe(self, api_key: str | None) -> bool:
        if not api_key:
            return False
        try:
            request = self._build_request(self._probe_body(), api_key, stream=False)
            try:
                resp = await self._client.send(request)
            except httpx.RequestError as exc:
                raise TransportError(f"{self.display_vendor} connection failed: {exc}") from exc
            await self._raise_for_status(resp)
            self._decode_json(resp)
        except Exception as exc:
            logger.warning("%s connection test failed: %s", self.display_vendor, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def complete(
        self,
        turns: Sequence[ConversationTurn],
        options: CompletionOptions | None = None,
    ) -> CompletionResult:
        turns = list(turns)
        validate_turns(turns)
        api_key = self._require_api_key()
        body = self._build_body(turns, options or CompletionOptions(), stream=False)

        logger.debug(
            "%s request: model=%s turns=%d", self.display_vendor, self._model, len(turns)
        )

        try:
            request = self._build_request(body, api_key, stream=False)
            try:
                resp = await self._client.send(request)
            except httpx.RequestError as exc:
                raise TransportError(f"{self.display_vendor} request failed: {exc}") from exc
            await self._raise_for_status(resp)
            text, extra = self._parse_completion(self._decode_json(resp))
        except Exception as exc:
            logger.error("%s completion error: %s", self.display_vendor, exc)
            return error_result(exc, model=self._model)

        return CompletionResult(content=text, metadata=self._metadata(extra))

    async def stream_complete(
        self,
        turns: Sequence[ConversationTurn],
        on_chunk: ChunkCallback,
        options: CompletionOptions | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> CompletionResult:
        """
        Stream a completion, handing each text fragment to *on_chunk* as it
        arrives.  The final ``content`` is the concatenation of every fragment
        that was delivered.  Setting *cancel* stops reading and returns the
        partial content with ``metadata["cancelled"] = True``.
        """
        turns = list(turns)
        validate_turns(turns)
        api_key = self._require_api_key()
        body = self._build_body(turns, options or CompletionOptions(), stream=True)

        logger.debug(
            "%s stream request: model=%s turns=%d", self.display_vendor, self._model, len(turns)
        )

        chunks: list[str] = []
        extra: dict[str, Any] = {}
        try:
            request = self._build_request(body, api_key, stream=True)
            try:
                resp = await self._client.send(request, stream=True)
            except httpx.RequestError as exc:
                raise TransportError(f"{self.display_vendor} stream failed: {exc}") from exc
            try:
                await self._raise_for_status(resp)
                async with aclosing(iter_lines_until(resp.aiter_lines(), cancel)) as lines, \
                        aclosing(iter_sse_json(lines, source=self.vendor_id)) as frames:
                    async for frame in frames:
                        if cancel is not None and cancel.is_set():
                            break
                        self._raise_for_frame_error(frame)
                        extra.update(self._stream_metadata(frame))
                        delta = self._stream_delta(frame)
                        if delta:
                            chunks.append(delta)
                            on_chunk(delta)
            except httpx.RequestError as exc:
                raise TransportError(f"{self.display_vendor} stream interrupted: {exc}") from exc
            finally:
                await resp.aclose()
        except Exception as exc:
            logger.error("%s stream error: %s", self.display_vendor, exc)
            partial = "".join(chunks)
            if partial:
                return error_result(exc, model=self._model, partial_content=partial)
            return error_result(exc, model=self._model)

        metadata = self._metadata(extra)
        if cancel is not None and cancel.is_set():
            metadata["cancelled"] = True
        return CompletionResult(content="".join(chunks), metadata=metadata)

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_api_key(self) -> str:
        api_key = self.api_key
        if not api_key:
            raise ConfigurationError(f"{self.display_vendor} API key is not set")
        return api_key

    def _metadata(self, extra: dict[str, Any]) -> dict[str, Any]:
        return {"model": self._model, "timestamp": utc_timestamp(), **extra}

    def _decode_json(self, resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise ParseError(f"{self.display_vendor} returned a non-JSON response") from exc
        if not isinstance(data, dict):
            raise ParseError(f"Failed to parse {self.display_vendor} API response")
        return data

    async def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.is_success:
            return
        await resp.aread()
        error: dict[str, Any] = {}
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            error = payload["error"]
        message = error.get("message") or (
            f"{self.display_vendor} request failed with HTTP {resp.status_code}"
        )
        raise VendorError(
            message,
            code=self._error_code(error) or f"http_{resp.status_code}",
            status_code=resp.status_code,
        )

    def _raise_for_frame_error(self, frame: dict[str, Any]) -> None:
        error = frame.get("error")
        if isinstance(error, dict):
            raise VendorError(
                error.get("message") or f"{self.display_vendor} reported an error mid-stream",
                code=self._error_code(error),
            )

    def _stream_metadata(self, frame: dict[str, Any]) -> dict[str, Any]:
        return {}

    # ------------------------------------------------------------------
    # Wire hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _build_body(
        self,
        turns: list[ConversationTurn],
        options: CompletionOptions,
        *,
        stream: bool,
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    def _build_request(self, body: dict[str, Any], api_key: str, *, stream: bool) -> httpx.Request:
        ...

    @abstractmethod
    def _probe_body(self) -> dict[str, Any]:
        ...

    @abstractmethod
    def _parse_completion(self, data: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Return (text, extra metadata); raise ParseError on an unexpected shape."""
        ...

    @abstractmethod
    def _stream_delta(self, frame: dict[str, Any]) -> str:
        ...

    @abstractmethod
    def _error_code(self, error: dict[str, Any]) -> str | None:
        ...
