# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Producer/consumer channel for object bodies.

``ObjectStream`` moves byte chunks from a producer (a caller-supplied
upload source, or an HTTP response body) to a consumer through a bounded
``asyncio.Queue``. The producer runs as its own task and suspends when the
queue is full, so neither side ever holds more than ``max_chunks`` chunks
of the object in memory.

Upload sources may be ``bytes``, a sync or async iterable of chunks, or a
file-like object whose ``read(n)`` is sync or async.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from collections.abc import Iterable

import httpx

from s3lite.errors import RequestTimeout, S3Error, TransferError


logger = logging.getLogger(__name__)

#: Chunk size used when reading file-like sources.
DEFAULT_CHUNK_SIZE = 64 * 1024

#: Default number of chunks buffered between producer and consumer.
DEFAULT_MAX_CHUNKS = 4

#: Accepted upload body types.
UploadSource = bytes | Iterable[bytes] | AsyncIterable[bytes]


class _End:
    """End-of-stream marker."""


_END = _End()


class _Failure:
    """Producer-side exception forwarded to the consumer."""

    __slots__ = ("exc",)

    def __init__(self, exc: Exception) -> None:
        self.exc = exc


async def iter_source(
    source: UploadSource, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> AsyncIterator[bytes]:
    """Adapt any accepted upload source into an async chunk iterator."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        data = bytes(source)
        for offset in range(0, len(data), chunk_size):
            yield data[offset : offset + chunk_size]
        return

    read = getattr(source, "read", None)
    if callable(read):
        while True:
            chunk = read(chunk_size)
            if inspect.isawaitable(chunk):
                chunk = await chunk
            if not chunk:
                return
            yield bytes(chunk)

    if isinstance(source, AsyncIterable):
        async for chunk in source:
            yield bytes(chunk)
        return

    if isinstance(source, Iterable):
        for chunk in source:
            yield bytes(chunk)
        return

    raise TypeError(f"Unsupported body source: {type(source).__name__}")


def _as_s3_error(exc: Exception) -> S3Error:
    if isinstance(exc, S3Error):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeout(f"Timed out while streaming body: {exc}")
    return TransferError(f"Stream failed: {exc}")


class ObjectStream:
    """Async iterator of object body chunks with backpressure.

    The producer task is started on first iteration. Consumers should
    either exhaust the stream or call ``aclose()``; using the stream as an
    async context manager does the latter automatically.

    Attributes:
        expected_length: Declared body length, checked when the producer
            finishes. None disables the check.
        bytes_transferred: Bytes handed to the consumer so far.
    """

    def __init__(
        self,
        source: UploadSource,
        *,
        expected_length: int | None = None,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        if max_chunks < 1:
            raise ValueError("max_chunks must be at least 1")
        self._source = source
        self._chunk_size = chunk_size
        self._queue: asyncio.Queue[bytes | _End | _Failure] = asyncio.Queue(
            maxsize=max_chunks
        )
        self._task: asyncio.Task[None] | None = None
        self._on_close = on_close
        self._done = False
        self._closed = False
        self.expected_length = expected_length
        self.bytes_transferred = 0

    async def _produce(self) -> None:
        try:
            async for chunk in iter_source(self._source, self._chunk_size):
                if chunk:
                    await self._queue.put(chunk)
        except Exception as exc:
            await self._queue.put(_Failure(exc))
            return
        await self._queue.put(_END)

    def __aiter__(self) -> ObjectStream:
        return self

    async def __anext__(self) -> bytes:
        if self._done or self._closed:
            raise StopAsyncIteration
        if self._task is None:
            self._task = asyncio.create_task(self._produce())

        item = await self._queue.get()
        if isinstance(item, _End):
            self._done = True
            await self._release()
            self._check_length()
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            self._done = True
            await self._release()
            raise _as_s3_error(item.exc) from item.exc

        self.bytes_transferred += len(item)
        if (
            self.expected_length is not None
            and self.bytes_transferred > self.expected_length
        ):
            self._done = True
            await self.aclose()
            raise TransferError(
                f"Body exceeds declared length of "
                f"{self.expected_length} bytes"
            )
        return item

    def _check_length(self) -> None:
        if (
            self.expected_length is not None
            and self.bytes_transferred != self.expected_length
        ):
            raise TransferError(
                f"Body length mismatch: declared {self.expected_length} "
                f"bytes, got {self.bytes_transferred}"
            )

    async def _release(self) -> None:
        if self._on_close is not None:
            on_close, self._on_close = self._on_close, None
            await on_close()

    async def aclose(self) -> None:
        """Stop the producer and release the underlying source."""
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            logger.debug(
                "Cancelling stream producer after %d bytes",
                self.bytes_transferred,
            )
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        await self._release()

    async def read_all(self) -> bytes:
        """Drain the remaining chunks into one buffer."""
        chunks = [chunk async for chunk in self]
        return b"".join(chunks)

    async def __aenter__(self) -> ObjectStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
