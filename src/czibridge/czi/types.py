"""Value types for the CZI wrappers.

Everything here is an immutable host-side copy of data reported by the
native library. Conversions to and from the ctypes interop structures live
beside each type so the wrappers never touch raw struct fields.
"""

from __future__ import annotations

import enum
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

import numpy as np
from PIL import Image
from pydantic import BaseModel, ConfigDict, Field

from czibridge.native.exceptions import make_error
from czibridge.native.interop import (
    MAX_DIMENSIONS,
    AttachmentInfoInterop,
    BitmapInfoInterop,
    CoordinateInterop,
    DimBoundsInterop,
    FileHeaderInfoInterop,
    IntRectInterop,
    IntSizeInterop,
    SubBlockInfoInterop,
    SubBlockStatisticsInterop,
)
from czibridge.native.status import ErrorKind, NativeStatus

# libCZI reports an absent M-index as INT32_MIN.
M_INDEX_INVALID = -(2**31)


class Dimension(enum.IntEnum):
    """Non-spatial dimensions of a CZI document."""

    Z = 1  # focus
    C = 2  # channel
    T = 3  # time
    R = 4  # rotation
    S = 5  # scene
    I = 6  # illumination  # noqa: E741
    H = 7  # phase
    V = 8  # view
    B = 9  # block, deprecated

    @property
    def bit(self) -> int:
        """Flag of this dimension in a ``dimensions_valid`` bit set."""
        return 1 << (self.value - 1)

    @classmethod
    def from_bitflags(cls, flags: int) -> tuple[Dimension, ...]:
        """Dimensions whose bit is set, in ascending order."""
        return tuple(d for d in cls if flags & d.bit)

    @staticmethod
    def to_bitflags(dimensions: Iterable[Dimension]) -> int:
        flags = 0
        for d in dimensions:
            flags |= d.bit
        return flags


class PixelType(enum.IntEnum):
    GRAY8 = 0
    GRAY16 = 1
    GRAY32_FLOAT = 2
    BGR24 = 3
    BGR48 = 4
    BGR96_FLOAT = 8
    BGRA32 = 9
    GRAY64_COMPLEX_FLOAT = 10
    BGR192_COMPLEX_FLOAT = 11
    GRAY32 = 12
    GRAY64_FLOAT = 13

    @property
    def bytes_per_pixel(self) -> int:
        return _PIXEL_LAYOUT[self][2] * np.dtype(_PIXEL_LAYOUT[self][0]).itemsize

    @property
    def numpy_dtype(self) -> np.dtype:
        return np.dtype(_PIXEL_LAYOUT[self][0])

    @property
    def channels(self) -> int:
        return _PIXEL_LAYOUT[self][2]

    @classmethod
    def parse(cls, raw: int, operation: str) -> PixelType:
        """Convert a native pixel type value.

        Raises:
            UnsupportedError: If the value names no known pixel type.
        """
        try:
            return cls(raw)
        except ValueError:
            raise make_error(
                ErrorKind.UNSUPPORTED,
                f"unknown pixel type {raw}",
                operation,
                code=NativeStatus.INVALID_ARGUMENT,
            ) from None


# dtype, PIL source mode (None if Pillow has no matching mode), channels
_PIXEL_LAYOUT: dict[PixelType, tuple[str, str | None, int]] = {
    PixelType.GRAY8: ("<u1", "L", 1),
    PixelType.GRAY16: ("<u2", "I;16", 1),
    PixelType.GRAY32_FLOAT: ("<f4", None, 1),
    PixelType.BGR24: ("<u1", "RGB", 3),
    PixelType.BGR48: ("<u2", None, 3),
    PixelType.BGR96_FLOAT: ("<f4", None, 3),
    PixelType.BGRA32: ("<u1", "RGBA", 4),
    PixelType.GRAY64_COMPLEX_FLOAT: ("<c8", None, 1),
    PixelType.BGR192_COMPLEX_FLOAT: ("<c8", None, 3),
    PixelType.GRAY32: ("<i4", None, 1),
    PixelType.GRAY64_FLOAT: ("<f8", None, 1),
}


class CompressionMode(enum.IntEnum):
    """Compression of a sub-block payload, from its raw identifier."""

    INVALID = -1
    UNCOMPRESSED = 0
    JPG = 1
    LZW = 2
    JPGXR = 4
    ZSTD0 = 5
    ZSTD1 = 6

    @classmethod
    def from_raw(cls, raw: int) -> CompressionMode:
        """Map a raw identifier; unknown identifiers are INVALID."""
        try:
            return cls(raw)
        except ValueError:
            return cls.INVALID

    @property
    def decodable(self) -> bool:
        """Whether the native library has a decoder for this mode at all."""
        return self in _DECODABLE

    def can_decode(self, pixel_type: PixelType) -> bool:
        """Whether the native decoder for this mode produces ``pixel_type``."""
        return pixel_type in _DECODABLE.get(self, frozenset())


_ALL_PIXEL_TYPES = frozenset(PixelType)

# Pixel types each native decoder can produce. JPG-XR only has codecs for
# these five layouts; the other modes are plain byte layouts.
_DECODABLE: dict[CompressionMode, frozenset[PixelType]] = {
    CompressionMode.UNCOMPRESSED: _ALL_PIXEL_TYPES,
    CompressionMode.JPGXR: frozenset(
        {
            PixelType.GRAY8,
            PixelType.GRAY16,
            PixelType.GRAY32_FLOAT,
            PixelType.BGR24,
            PixelType.BGR48,
        }
    ),
    CompressionMode.ZSTD0: _ALL_PIXEL_TYPES,
    CompressionMode.ZSTD1: _ALL_PIXEL_TYPES,
}


@dataclass(frozen=True)
class Coordinate:
    """A point in the non-spatial dimensions, e.g. ``C=1, T=3``.

    Values in the interop structure are packed in ascending dimension order,
    one slot per bit set in ``dimensions_valid``.
    """

    items: tuple[tuple[Dimension, int], ...] = ()

    def __post_init__(self) -> None:
        ordered = tuple(sorted((Dimension(d), int(v)) for d, v in self.items))
        dims = [d for d, _ in ordered]
        if len(set(dims)) != len(dims):
            raise make_error(
                ErrorKind.INVALID_ARGUMENT,
                f"duplicate dimension in coordinate {self.items!r}",
                "build coordinate",
            )
        object.__setattr__(self, "items", ordered)

    @classmethod
    def of(cls, **values: int) -> Coordinate:
        """Build from keyword arguments named after dimensions: ``of(C=0, Z=2)``."""
        return cls(tuple((Dimension[name], value) for name, value in values.items()))

    @property
    def dimensions(self) -> tuple[Dimension, ...]:
        return tuple(d for d, _ in self.items)

    def get(self, dimension: Dimension, default: int | None = None) -> int | None:
        for d, v in self.items:
            if d == dimension:
                return v
        return default

    def __getitem__(self, dimension: Dimension) -> int:
        value = self.get(dimension)
        if value is None:
            raise KeyError(dimension)
        return value

    def __contains__(self, dimension: object) -> bool:
        return dimension in self.dimensions

    def as_dict(self) -> dict[str, int]:
        return {d.name: v for d, v in self.items}

    def __str__(self) -> str:
        return "".join(f"{d.name}{v}" for d, v in self.items) or "-"

    @classmethod
    def from_interop(cls, interop: CoordinateInterop) -> Coordinate:
        dims = Dimension.from_bitflags(interop.dimensions_valid)
        return cls(tuple((d, interop.value[i]) for i, d in enumerate(dims)))

    def to_interop(self) -> CoordinateInterop:
        interop = CoordinateInterop()
        interop.dimensions_valid = Dimension.to_bitflags(self.dimensions)
        for i, (_, v) in enumerate(self.items[:MAX_DIMENSIONS]):
            interop.value[i] = v
        return interop


@dataclass(frozen=True)
class IntRect:
    x: int
    y: int
    w: int
    h: int

    @classmethod
    def from_interop(cls, interop: IntRectInterop) -> IntRect:
        return cls(interop.x, interop.y, interop.w, interop.h)

    def to_interop(self) -> IntRectInterop:
        return IntRectInterop(x=self.x, y=self.y, w=self.w, h=self.h)


@dataclass(frozen=True)
class IntSize:
    w: int
    h: int

    @classmethod
    def from_interop(cls, interop: IntSizeInterop) -> IntSize:
        return cls(interop.w, interop.h)


@dataclass(frozen=True)
class SubBlockDescriptor:
    """Immutable description of one sub-block.

    Readers fill in ``index`` and ``materialized``; writers ignore both.
    The decoded payload is never cached here.

    Attributes:
        coordinate: Position in the non-spatial dimensions.
        logical_rect: Placement in the pixel plane.
        physical_size: Stored size of the payload in pixels.
        pixel_type: Pixel format of the payload.
        compression: Compression mode of the payload.
        compression_raw: Raw compression identifier if it differs from
            ``compression`` (e.g. a vendor-specific value).
        m_index: Mosaic index, or None if the sub-block has none.
        index: Position in the sub-block directory.
        materialized: True if the payload is currently held by a live
            :class:`~czibridge.czi.segments.SubBlock`.
    """

    coordinate: Coordinate
    logical_rect: IntRect
    physical_size: IntSize
    pixel_type: PixelType
    compression: CompressionMode = CompressionMode.UNCOMPRESSED
    compression_raw: int | None = None
    m_index: int | None = None
    index: int | None = None
    materialized: bool = False

    @property
    def raw_compression(self) -> int:
        if self.compression_raw is not None:
            return self.compression_raw
        return int(self.compression)

    def default_stride(self) -> int:
        return self.physical_size.w * self.pixel_type.bytes_per_pixel

    def uncompressed_length(self, stride: int | None = None) -> int:
        """Byte length of an uncompressed payload with the given row stride."""
        return (stride if stride is not None else self.default_stride()) * self.physical_size.h

    def with_materialized(self, materialized: bool) -> SubBlockDescriptor:
        return replace(self, materialized=materialized)

    @classmethod
    def from_interop(
        cls, interop: SubBlockInfoInterop, index: int | None, operation: str
    ) -> SubBlockDescriptor:
        compression = CompressionMode.from_raw(interop.compression_mode_raw)
        return cls(
            coordinate=Coordinate.from_interop(interop.coordinate),
            logical_rect=IntRect.from_interop(interop.logical_rect),
            physical_size=IntSize.from_interop(interop.physical_size),
            pixel_type=PixelType.parse(interop.pixel_type, operation),
            compression=compression,
            compression_raw=(
                None
                if compression is not CompressionMode.INVALID
                else interop.compression_mode_raw
            ),
            m_index=None if interop.m_index == M_INDEX_INVALID else interop.m_index,
            index=index,
        )


@dataclass(frozen=True)
class SubBlockStatistics:
    """Summary of the sub-block directory.

    ``dim_bounds`` holds ``(dimension, start, size)`` for every dimension
    present in the document.
    """

    sub_block_count: int
    min_m_index: int | None
    max_m_index: int | None
    bounding_box: IntRect
    bounding_box_layer0: IntRect
    dim_bounds: tuple[tuple[Dimension, int, int], ...] = field(default=())

    def bounds(self, dimension: Dimension) -> tuple[int, int] | None:
        """``(start, size)`` of ``dimension``, or None if absent."""
        for d, start, size in self.dim_bounds:
            if d == dimension:
                return start, size
        return None

    @classmethod
    def from_interop(cls, interop: SubBlockStatisticsInterop) -> SubBlockStatistics:
        return cls(
            sub_block_count=interop.sub_block_count,
            min_m_index=_m_index(interop.min_m_index),
            max_m_index=_m_index(interop.max_m_index),
            bounding_box=IntRect.from_interop(interop.bounding_box),
            bounding_box_layer0=IntRect.from_interop(interop.bounding_box_layer0),
            dim_bounds=_dim_bounds(interop.dim_bounds),
        )


@dataclass(frozen=True)
class SceneBoundingBoxes:
    """Bounding boxes of the sub-blocks belonging to one scene."""

    scene_index: int
    bounding_box: IntRect
    bounding_box_layer0: IntRect


@dataclass(frozen=True)
class SubBlockStatisticsEx(SubBlockStatistics):
    """:class:`SubBlockStatistics` plus bounding boxes per scene."""

    scene_bounding_boxes: tuple[SceneBoundingBoxes, ...] = field(default=())

    def scene(self, scene_index: int) -> SceneBoundingBoxes | None:
        for boxes in self.scene_bounding_boxes:
            if boxes.scene_index == scene_index:
                return boxes
        return None

    @classmethod
    def from_interop(
        cls, interop: SubBlockStatisticsInterop, count: int = 0
    ) -> SubBlockStatisticsEx:
        """Convert the first ``count`` entries of the trailing per-scene array."""
        base = super().from_interop(interop)
        scenes = tuple(
            SceneBoundingBoxes(
                scene_index=boxes.sceneIndex,
                bounding_box=IntRect.from_interop(boxes.bounding_box),
                bounding_box_layer0=IntRect.from_interop(boxes.bounding_box_layer0_only),
            )
            for boxes in interop.per_scenes_bounding_boxes[:count]  # type: ignore[attr-defined]
        )
        return replace(base, scene_bounding_boxes=scenes)


class PyramidLayerInfo(BaseModel):
    """Position of a sub-block in the image pyramid.

    Layer 0 (the full-resolution layer) has both values 0.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    minification_factor: int = Field(alias="minificationFactor", ge=0)
    pyramid_layer_no: int = Field(alias="pyramidLayerNo", ge=0)

    @property
    def is_layer0(self) -> bool:
        return self.minification_factor == 0 and self.pyramid_layer_no == 0


class PyramidLayerStatistics(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    layer_info: PyramidLayerInfo = Field(alias="layerInfo")
    count: int = Field(ge=0, description="Sub-blocks on this layer")


class PyramidStatistics(BaseModel):
    """Sub-block counts per pyramid layer, keyed by scene index.

    Documents without an S dimension report their layers under a single
    key chosen by libCZI.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    scenes: dict[int, list[PyramidLayerStatistics]] = Field(
        default_factory=dict, alias="scenePyramidStatistics"
    )

    def layers(self, scene_index: int) -> list[PyramidLayerStatistics]:
        return self.scenes.get(scene_index, [])


def _m_index(value: int) -> int | None:
    return None if value in (M_INDEX_INVALID, 2**31 - 1) else value


def _dim_bounds(interop: DimBoundsInterop) -> tuple[tuple[Dimension, int, int], ...]:
    dims = Dimension.from_bitflags(interop.dimensions_valid)
    return tuple((d, interop.start[i], interop.size[i]) for i, d in enumerate(dims))


@dataclass(frozen=True)
class FileHeaderInfo:
    guid: uuid.UUID
    major_version: int
    minor_version: int

    @classmethod
    def from_interop(cls, interop: FileHeaderInfoInterop) -> FileHeaderInfo:
        return cls(
            guid=uuid.UUID(bytes_le=bytes(interop.guid)),
            major_version=interop.majorVersion,
            minor_version=interop.minorVersion,
        )


@dataclass(frozen=True)
class AttachmentInfo:
    """Directory entry of an attachment.

    Attributes:
        guid: Unique identifier of the attachment.
        content_file_type: Short type tag such as ``"JPG"`` or ``"CZTIMS"``.
        name: Attachment name, e.g. ``"Thumbnail"``.
        index: Position in the attachment directory, if known.
    """

    guid: uuid.UUID
    content_file_type: str
    name: str
    index: int | None = None

    @classmethod
    def from_interop(
        cls,
        interop: AttachmentInfoInterop,
        index: int | None = None,
        overflow_name: str | None = None,
    ) -> AttachmentInfo:
        return cls(
            guid=uuid.UUID(bytes_le=bytes(interop.guid)),
            content_file_type=_c_string(bytes(interop.content_file_type)),
            name=overflow_name if overflow_name is not None else _c_string(interop.name),
            index=index,
        )


def _c_string(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("utf-8", errors="replace")


@dataclass(frozen=True)
class Bitmap:
    """A decoded sub-block copied into host memory.

    Rows are ``stride`` bytes apart; only the first
    ``width * pixel_type.bytes_per_pixel`` bytes of each row are pixels.
    """

    width: int
    height: int
    pixel_type: PixelType
    stride: int
    data: bytes = field(repr=False)

    @classmethod
    def layout_for(cls, interop: BitmapInfoInterop, operation: str) -> tuple[PixelType, int]:
        """Pixel type and tightly packed stride for a native bitmap."""
        pixel_type = PixelType.parse(interop.pixelType, operation)
        return pixel_type, interop.width * pixel_type.bytes_per_pixel

    def to_numpy(self) -> np.ndarray:
        """Pixels as an array of shape ``(height, width)`` or ``(height, width, channels)``.

        Channel order is the native BGR(A).
        """
        row_bytes = self.width * self.pixel_type.bytes_per_pixel
        rows = np.frombuffer(self.data, dtype=np.uint8).reshape(self.height, self.stride)
        pixels = np.ascontiguousarray(rows[:, :row_bytes]).view(self.pixel_type.numpy_dtype)
        if self.pixel_type.channels == 1:
            return pixels.reshape(self.height, self.width)
        return pixels.reshape(self.height, self.width, self.pixel_type.channels)

    def to_image(self) -> Image.Image:
        """Convert to a PIL image (Gray8, Gray16, Bgr24 and Bgra32 only).

        Raises:
            UnsupportedError: For pixel types Pillow cannot represent.
        """
        mode = _PIXEL_LAYOUT[self.pixel_type][1]
        if mode is None:
            raise make_error(
                ErrorKind.UNSUPPORTED,
                f"{self.pixel_type.name} has no Pillow image mode",
                "convert bitmap",
            )
        array = self.to_numpy()
        if self.pixel_type is PixelType.BGR24:
            array = np.ascontiguousarray(array[..., ::-1])
        elif self.pixel_type is PixelType.BGRA32:
            array = np.ascontiguousarray(array[..., [2, 1, 0, 3]])
        if mode == "I;16":
            return Image.frombuffer(
                mode, (self.width, self.height), array.astype("<u2").tobytes(), "raw", mode, 0, 1
            )
        return Image.fromarray(array)
