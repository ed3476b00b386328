"""Stream bridge between caller I/O objects and libCZI streams."""

from czibridge.streams.adapter import NativeStream, StreamAdapter
from czibridge.streams.inbound import InputStream, InputStreamAdapter
from czibridge.streams.outbound import OutputStream, OutputStreamAdapter
from czibridge.streams.sources import (
    BytesSource,
    FileSink,
    FileSource,
    MemoryBuffer,
    PositionedReader,
    PositionedWriter,
    as_sink,
    as_source,
)

__all__ = [
    "BytesSource",
    "FileSink",
    "FileSource",
    "InputStream",
    "InputStreamAdapter",
    "MemoryBuffer",
    "NativeStream",
    "OutputStream",
    "OutputStreamAdapter",
    "PositionedReader",
    "PositionedWriter",
    "StreamAdapter",
    "as_sink",
    "as_source",
]
