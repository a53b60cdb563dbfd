"""Stream classification and non-destructive peeking.

Upload sources are resolved once, at the call boundary, into one of
``BufferSource``, ``StringSource`` or ``StreamSource``. Streams are wrapped
in a ``PeekableStream``: a small prefix buffer composed in front of the real
source, so bytes inspected with ``peek`` are still delivered to readers.
"""

from __future__ import annotations

import asyncio
import inspect
import io
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Union

from cloudstore.common.errors import StreamEndedError, ValidationError

DEFAULT_READ_SIZE = 64 * 1024


class PeekableStream:
    """Async byte stream with a lookahead buffer.

    ``source`` may be an object with a sync or async ``read(n)`` method, or
    an async iterable of byte chunks. Sync readers are called inline unless
    ``blocking`` is set, in which case each read runs in a worker thread.

    Unlike a raw stream, ``read(n)`` only returns fewer than ``n`` bytes at
    end of stream.
    """

    def __init__(self, source: Any, *, blocking: bool = False) -> None:
        if not hasattr(source, "read") and not hasattr(source, "__aiter__"):
            raise ValidationError(
                "source must provide read() or be an async iterable of bytes"
            )
        self._source = source
        self._blocking = blocking
        self._iterator: Any = None
        self._buffer = bytearray()
        self._lookahead = 0
        self._source_ended = False

    @property
    def consumed(self) -> bool:
        """True once every byte of the source has been delivered to a reader."""
        return self._source_ended and not self._buffer

    async def peek(self, n: int) -> bytes:
        """Return up to ``n`` bytes past the previous peek without consuming them."""
        if n < 0:
            raise ValidationError("peek size must not be negative")
        if self.consumed:
            raise StreamEndedError("Stream has ended already")
        if n == 0:
            return b""
        await self._fill(self._lookahead + n)
        start = self._lookahead
        data = bytes(self._buffer[start : start + n])
        self._lookahead += len(data)
        return data

    async def available(self, n: int) -> int:
        """Buffer up to ``n`` unread bytes and return how many are available.

        Counts from the read position, regardless of earlier peeks.
        """
        await self._fill(n)
        return min(len(self._buffer), n)

    async def read(self, n: int = -1) -> bytes:
        """Read ``n`` bytes, or everything that is left when ``n`` is negative."""
        if n == 0:
            return b""
        if n < 0:
            while not self._source_ended:
                await self._read_source(DEFAULT_READ_SIZE)
            n = len(self._buffer)
        else:
            await self._fill(n)
        data = bytes(self._buffer[:n])
        del self._buffer[:n]
        self._lookahead = max(0, self._lookahead - len(data))
        return data

    def __aiter__(self) -> "PeekableStream":
        return self

    async def __anext__(self) -> bytes:
        data = await self.read(DEFAULT_READ_SIZE)
        if not data:
            raise StopAsyncIteration
        return data

    async def _fill(self, size: int) -> None:
        while len(self._buffer) < size and not self._source_ended:
            await self._read_source(size - len(self._buffer))

    async def _read_source(self, size: int) -> None:
        if hasattr(self._source, "read"):
            if self._blocking:
                chunk = await asyncio.to_thread(self._source.read, size)
            else:
                chunk = self._source.read(size)
                if inspect.isawaitable(chunk):
                    chunk = await chunk
        else:
            if self._iterator is None:
                self._iterator = self._source.__aiter__()
            try:
                chunk = await self._iterator.__anext__()
            except StopAsyncIteration:
                chunk = b""
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        if not chunk:
            self._source_ended = True
            return
        self._buffer.extend(chunk)


class ObjectStream(PeekableStream):
    """Readable stream returned by ``get_object``.

    ``on_close`` releases the backend resource (an HTTP body, for example);
    it may be a plain function or a coroutine function.
    """

    def __init__(
        self,
        source: Any,
        *,
        blocking: bool = False,
        on_close: Callable[[], Any] | None = None,
    ) -> None:
        super().__init__(source, blocking=blocking)
        self._on_close = on_close
        self._closed = False

    async def read_all(self) -> bytes:
        try:
            return await self.read()
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_close is None:
            return
        result = self._on_close()
        if inspect.isawaitable(result):
            await result

    async def __aenter__(self) -> "ObjectStream":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


async def peek(source: PeekableStream, n: int) -> bytes:
    """Return the next ``n`` unpeeked bytes of ``source`` without consuming them."""
    return await source.peek(n)


@dataclass(frozen=True, slots=True)
class BufferSource:
    data: bytes

    @property
    def length(self) -> int:
        return len(self.data)


@dataclass(frozen=True, slots=True)
class StringSource:
    text: str
    data: bytes

    @property
    def length(self) -> int:
        return len(self.data)


@dataclass(frozen=True, slots=True)
class StreamSource:
    stream: PeekableStream
    declared_length: int | None = None


Source = Union[BufferSource, StringSource, StreamSource]


def classify_source(data: Any, length: int | None = None) -> Source:
    """Resolve upload data into its source variant.

    Args:
        data: bytes-like object, str, or readable stream.
        length: Caller-declared length; only meaningful for streams.

    Raises:
        ValidationError: If the data type is not supported or the declared
            length is negative.
    """
    if length is not None and length < 0:
        raise ValidationError("length must not be negative")
    if isinstance(data, str):
        return StringSource(text=data, data=data.encode("utf-8"))
    if isinstance(data, (bytes, bytearray, memoryview)):
        return BufferSource(data=bytes(data))
    if isinstance(data, PeekableStream):
        return StreamSource(stream=data, declared_length=length)
    if hasattr(data, "read") or hasattr(data, "__aiter__"):
        return StreamSource(stream=PeekableStream(data), declared_length=length)
    raise ValidationError("data must be bytes, a string or a readable stream")


class UploadStrategy(str, Enum):
    SINGLE_SHOT = "single_shot"
    CHUNKED = "chunked"


@dataclass(frozen=True, slots=True)
class StrategyDecision:
    """Outcome of strategy selection.

    Single-shot decisions carry the full ``payload``; chunked decisions carry
    the ``stream`` to slice, with nothing consumed from it yet.
    """

    strategy: UploadStrategy
    payload: bytes | None = None
    stream: PeekableStream | None = None
    length: int | None = None


async def select_strategy(
    source: Source, *, chunk_size: int, single_object_max: int
) -> StrategyDecision:
    """Decide between a single-shot upload and the chunked engine."""
    if isinstance(source, (BufferSource, StringSource)):
        if source.length <= single_object_max:
            return StrategyDecision(
                UploadStrategy.SINGLE_SHOT, payload=source.data, length=source.length
            )
        return StrategyDecision(
            UploadStrategy.CHUNKED,
            stream=PeekableStream(io.BytesIO(source.data)),
            length=source.length,
        )

    stream = source.stream
    declared = source.declared_length
    if declared is not None and declared <= chunk_size:
        payload = await stream.read()
        return StrategyDecision(
            UploadStrategy.SINGLE_SHOT, payload=payload, length=len(payload)
        )

    # One byte past a full chunk tells an exact-chunk stream from a longer one.
    if await stream.available(chunk_size + 1) <= chunk_size:
        payload = await stream.read()
        return StrategyDecision(
            UploadStrategy.SINGLE_SHOT, payload=payload, length=len(payload)
        )
    return StrategyDecision(UploadStrategy.CHUNKED, stream=stream, length=declared)
