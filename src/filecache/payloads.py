"""Payload variants accepted by FileCache.add and how each is written."""

import json
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, BinaryIO, Iterable, Union

from filecache.errors import SerializationError

COPY_CHUNK_SIZE = 64 * 1024


class Payload(ABC):
    """A value that knows how to write itself to a binary file."""

    @abstractmethod
    def write_to(self, fp: BinaryIO) -> None:
        """Write the payload to an open binary file."""


@dataclass
class ByteStream(Payload):
    """A readable binary file object or an iterable of byte chunks.

    Consumed once; the source is read to exhaustion.
    """

    source: Union[BinaryIO, Iterable[bytes]]

    def write_to(self, fp: BinaryIO) -> None:
        if hasattr(self.source, "read"):
            shutil.copyfileobj(self.source, fp, COPY_CHUNK_SIZE)
            return
        for chunk in self.source:
            if isinstance(chunk, str):
                chunk = chunk.encode("utf-8")
            fp.write(chunk)


@dataclass
class ByteBuffer(Payload):
    """Raw bytes written unchanged."""

    data: Union[bytes, bytearray, memoryview]

    def write_to(self, fp: BinaryIO) -> None:
        fp.write(self.data)


@dataclass
class StructuredRecord(Payload):
    """A JSON-serializable record, written as compact UTF-8 JSON."""

    record: Any

    def encode(self) -> bytes:
        """Serialize the record.

        Raises:
            SerializationError: If the record cannot be represented as JSON
        """
        try:
            text = json.dumps(
                self.record, separators=(",", ":"), ensure_ascii=False, allow_nan=False
            )
        except (TypeError, ValueError, RecursionError) as e:
            raise SerializationError(f"Cannot serialize record: {e}") from e
        return text.encode("utf-8")

    def write_to(self, fp: BinaryIO) -> None:
        fp.write(self.encode())


@dataclass
class Scalar(Payload):
    """A string or number written as its text form.

    Booleans are written in their JSON spelling, ``true``/``false``.
    """

    value: Union[str, int, float, bool]

    def write_to(self, fp: BinaryIO) -> None:
        if isinstance(self.value, bool):
            text = json.dumps(self.value)
        else:
            text = str(self.value)
        fp.write(text.encode("utf-8"))


def as_payload(data: Any) -> Payload:
    """Pick the payload variant for a value.

    Payload instances are used as-is. Otherwise: objects with ``read`` are
    streams, bytes-like values are buffers, strings and numbers are scalars,
    iterators and generators are chunk streams, and anything else (dicts,
    lists, None) is a structured record.

    Examples:
        >>> as_payload(b"abc")
        ByteBuffer(data=b'abc')
        >>> as_payload({"a": 1})
        StructuredRecord(record={'a': 1})
    """
    if isinstance(data, Payload):
        return data
    if hasattr(data, "read"):
        return ByteStream(data)
    if isinstance(data, (bytes, bytearray, memoryview)):
        return ByteBuffer(data)
    if isinstance(data, (str, int, float, bool)):
        return Scalar(data)
    if hasattr(data, "__next__"):
        return ByteStream(data)
    return StructuredRecord(data)
