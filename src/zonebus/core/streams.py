"""Lazy, one-shot record sources for broadcasts and query responses."""

import inspect
from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable, Iterator
from typing import Any


class RecordStream(ABC):
    """A finite sequence of records that can be read exactly once.

    Readers call ``release()`` when they are done, whether the stream was
    exhausted or reading failed; release runs ``close()`` at most once.
    ``read()`` may raise ``RecordError`` to report one broken record and
    keep the rest of the stream readable.
    """

    def __init__(self) -> None:
        self._started = False
        self._released = False

    @abstractmethod
    async def read(self) -> Any:
        """Return the next record.

        Raises:
            StopAsyncIteration: When the stream is exhausted
            RecordError: If this record cannot be produced but later ones can
        """
        ...

    async def close(self) -> None:
        """Release whatever the stream holds (cursors, files, connections)."""

    @property
    def released(self) -> bool:
        return self._released

    def __aiter__(self) -> "RecordStream":
        if self._started:
            raise RuntimeError(f"{type(self).__name__} cannot be restarted")
        self._started = True
        return self

    async def __anext__(self) -> Any:
        if self._released:
            raise StopAsyncIteration
        return await self.read()

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        await self.close()


class IterableRecordStream(RecordStream):
    """Adapts any sync or async iterable into a RecordStream."""

    def __init__(
        self,
        records: Iterable[Any] | AsyncIterable[Any],
        on_release: Callable[[], Any] | None = None,
    ):
        """Initialize the adapter.

        Args:
            records: Source records, consumed lazily
            on_release: Called (and awaited if it returns an awaitable) on release
        """
        super().__init__()
        self._source = records
        self._on_release = on_release
        self._iterator: Iterator[Any] | AsyncIterator[Any] | None = None

    async def read(self) -> Any:
        if self._iterator is None:
            if isinstance(self._source, AsyncIterable):
                self._iterator = aiter(self._source)
            else:
                self._iterator = iter(self._source)

        if isinstance(self._iterator, AsyncIterator):
            return await anext(self._iterator)

        try:
            return next(self._iterator)
        except StopIteration:
            raise StopAsyncIteration from None

    async def close(self) -> None:
        aclose = getattr(self._iterator, "aclose", None)
        close = getattr(self._iterator, "close", None)
        if aclose is not None:
            await aclose()
        elif close is not None:
            close()

        if self._on_release is not None:
            result = self._on_release()
            if inspect.isawaitable(result):
                await result


def as_record_stream(records: "RecordStream | Iterable[Any] | AsyncIterable[Any] | None") -> RecordStream:
    """Wrap whatever a data source returned so callers only see RecordStreams."""
    if isinstance(records, RecordStream):
        return records
    if records is None:
        return IterableRecordStream(())
    return IterableRecordStream(records)
