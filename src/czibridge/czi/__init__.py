"""Typed wrappers over libCZIApi readers, writers and their segments."""

from czibridge.czi.reader import CziReader
from czibridge.czi.segments import Attachment, MetadataSegment, SubBlock
from czibridge.czi.types import (
    AttachmentInfo,
    Bitmap,
    CompressionMode,
    Coordinate,
    Dimension,
    FileHeaderInfo,
    IntRect,
    IntSize,
    PixelType,
    PyramidLayerInfo,
    PyramidLayerStatistics,
    PyramidStatistics,
    SceneBoundingBoxes,
    SubBlockDescriptor,
    SubBlockStatistics,
    SubBlockStatisticsEx,
)
from czibridge.czi.writer import CziWriter, WriterOptions

__all__ = [
    "Attachment",
    "AttachmentInfo",
    "Bitmap",
    "CompressionMode",
    "Coordinate",
    "CziReader",
    "CziWriter",
    "Dimension",
    "FileHeaderInfo",
    "IntRect",
    "IntSize",
    "MetadataSegment",
    "PixelType",
    "PyramidLayerInfo",
    "PyramidLayerStatistics",
    "PyramidStatistics",
    "SceneBoundingBoxes",
    "SubBlock",
    "SubBlockDescriptor",
    "SubBlockStatistics",
    "SubBlockStatisticsEx",
    "WriterOptions",
]
