"""
aiswitch.adapters.sse — Server-sent-event line framing.

Both vendors stream ``data: {json}`` lines.  This module turns an async
iterator of text lines into an async iterator of decoded JSON objects:

  - lines without the ``data:`` marker (comments, ``event:``, blanks) are dropped
  - the ``[DONE]`` sentinel ends the stream without being treated as an error
  - a frame that fails to decode is logged and skipped; one corrupt frame
    never aborts an otherwise healthy stream
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator

logger = logging.getLogger("aiswitch.adapters.sse")

DATA_MARKER = "data:"
DONE_SENTINEL = "[DONE]"


def decode_frame(line: str, *, marker: str = DATA_MARKER) -> str | None:
    """Return the payload text of a marker line, or None for any other line."""
    line = line.rstrip("\r\n")
    if not line.startswith(marker):
        return None
    payload = line[len(marker):]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload


async def iter_lines_until(
    lines: AsyncIterator[str],
    cancel: asyncio.Event | None,
) -> AsyncIterator[str]:
    """
    Relay *lines* until *cancel* is set.

    A pending read is raced against the cancel signal, so a stalled stream
    still stops promptly once cancellation is requested.
    """
    if cancel is None:
        async for line in lines:
            yield line
        return

    cancelled = asyncio.ensure_future(cancel.wait())
    pending: asyncio.Future[str] | None = None
    try:
        while not cancel.is_set():
            pending = asyncio.ensure_future(anext(lines))
            done, _ = await asyncio.wait(
                {pending, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
            if pending not in done:
                break
            try:
                line = pending.result()
            except StopAsyncIteration:
                break
            yield line
    finally:
        cancelled.cancel()
        # A read still in flight after a cancel signal or task cancellation
        if pending is not None and not pending.done():
            pending.cancel()
            with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                await pending


async def iter_sse_json(
    lines: AsyncIterable[str],
    *,
    marker: str = DATA_MARKER,
    sentinel: str = DONE_SENTINEL,
    source: str = "stream",
) -> AsyncIterator[dict[str, Any]]:
    """Yield each well-formed JSON object carried by a marker line."""
    async for line in lines:
        payload = decode_frame(line, marker=marker)
        if payload is None:
            continue
        payload = payload.strip()
        if not payload:
            continue
        if payload == sentinel:
            break
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Skipping malformed %s frame: %.120s", source, payload)
            continue
        if not isinstance(data, dict):
            logger.warning("Skipping non-object %s frame: %.120s", source, payload)
            continue
        yield data
