"""czibridge: a safety layer over the libCZIApi native library.

Calling code opens, queries, decodes and writes CZI containers through
owned, lifetime-checked wrappers. Native handles, untyped buffers and raw
status codes never leave the package.

Example:
    from czibridge import CziReader

    with CziReader.open("experiment.czi") as reader:
        print(reader.sub_block_count())
        bitmap = reader.decode_sub_block(0)
"""

from czibridge.czi.reader import CziReader
from czibridge.czi.types import (
    AttachmentInfo,
    Bitmap,
    CompressionMode,
    Coordinate,
    Dimension,
    IntRect,
    IntSize,
    PixelType,
    SubBlockDescriptor,
)
from czibridge.czi.writer import CziWriter, WriterOptions
from czibridge.native.exceptions import CziError
from czibridge.native.status import ErrorKind, ErrorRecord
from czibridge.streams.inbound import InputStream
from czibridge.streams.outbound import OutputStream
from czibridge.streams.sources import MemoryBuffer

__version__ = "0.1.0"

__all__ = [
    "AttachmentInfo",
    "Bitmap",
    "CompressionMode",
    "Coordinate",
    "CziError",
    "CziReader",
    "CziWriter",
    "Dimension",
    "ErrorKind",
    "ErrorRecord",
    "InputStream",
    "IntRect",
    "IntSize",
    "MemoryBuffer",
    "OutputStream",
    "PixelType",
    "SubBlockDescriptor",
    "WriterOptions",
    "__version__",
]
