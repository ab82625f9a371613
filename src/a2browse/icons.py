"""
Apple IIgs Finder icon files (type $CA)
A 26-byte file header is followed by variable-length icon records, each
naming the files it applies to and carrying a large and a small QuickDraw II
icon.  An icon whose bitmap cannot cover its stated size is kept, with the
reason, so the rest of the file still decodes.
"""

import logging
import struct
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import TooShort, UnrecognizedFormat
from .graphics import IIGS_DEFAULT_PALETTE, RasterFormat, RasterImage

logger = logging.getLogger(__name__)

FILE_HEADER_SIZE = 0x1A
MIN_FILE_SIZE = 50
RECORD_MIN, RECORD_MAX = 0x60, 0x4000
BOSS_PATH_OFFSET = 0x02
NAME_FILTER_OFFSET = 0x42
FILE_TYPE_OFFSET = 0x52
LARGE_ICON_OFFSET = 0x56
ICON_HEADER_SIZE = 8


@dataclass(frozen=True)
class IconImage:
    width: int
    height: int
    icon_type: int
    raster: Optional[RasterImage] = None
    mask: Optional[bytes] = None
    problem: Optional[str] = None

    @property
    def decoded(self) -> bool:
        return self.raster is not None


@dataclass(frozen=True)
class IconResource:
    pathname: str
    file_type: int = 0
    aux_type: int = 0
    large: Optional[IconImage] = None
    small: Optional[IconImage] = None


def _printable_run(field: bytes) -> str:
    """Longest run of printable ASCII, for name fields with a bad length byte"""
    best = ""
    current = ""
    for byte in field:
        if 0x20 <= byte <= 0x7E:
            current += chr(byte)
            if len(current) > len(best):
                best = current
        else:
            current = ""
    return best if len(best) >= 2 else ""


def field_string(field: bytes) -> str:
    """Pascal string stored in a fixed-size field"""
    if not field:
        return ""
    length = field[0]
    text = field[1:1 + length]
    if 0 < length < len(field) and all(0x20 <= b <= 0x7E for b in text):
        return text.decode("ascii")
    return _printable_run(field)


def render_icon(width, height, pixels: bytes, mask_data: bytes) -> Tuple[RasterImage, bytes]:
    """Composite 4bpp colour and mask data; returns the image and a 1-per-pixel mask"""
    row_bytes = len(pixels) // height
    out = bytearray()
    mask = bytearray()
    for y in range(height):
        for x in range(width):
            index = y * row_bytes + x // 2
            shift = 4 if x % 2 == 0 else 0
            color = IIGS_DEFAULT_PALETTE[(pixels[index] >> shift) & 0x0F]
            opaque = (mask_data[index] >> shift) & 0x0F != 0
            mask.append(1 if opaque else 0)
            out += bytes((color[0], color[1], color[2], 255 if opaque else 0))
    raster = RasterImage(width, height, RasterFormat.ICON, bytes(out), IIGS_DEFAULT_PALETTE)
    return raster, bytes(mask)


def parse_icon(data, offset: int):
    """Decode the QuickDraw II icon at offset; returns (icon, end offset) or None"""
    if offset + ICON_HEADER_SIZE > len(data):
        return None
    icon_type, size, height, width = struct.unpack_from("<4H", data, offset)
    if not (4 <= width <= 128 and 4 <= height <= 128 and 0 < size < 32767):
        return None

    start = offset + ICON_HEADER_SIZE
    end = start + size * 2
    if end > len(data):
        problem = f"Icon data needs {size * 2} bytes, only {len(data) - start} remain"
        return IconImage(width, height, icon_type, problem=problem), len(data)
    # colour and mask planes are the same size, 4 bits per pixel
    needed = height * ((width + 1) // 2)
    if size < needed:
        problem = f"{size}-byte icon cannot hold {width}x{height} pixels"
        return IconImage(width, height, icon_type, problem=problem), end

    raster, mask = render_icon(width, height, data[start:start + size], data[start + size:end])
    return IconImage(width, height, icon_type, raster, mask), end


def _read_record(data, offset: int, length: int, number: int) -> Optional[IconResource]:
    boss = field_string(data[offset + BOSS_PATH_OFFSET:offset + BOSS_PATH_OFFSET + 64])
    name = field_string(data[offset + NAME_FILTER_OFFSET:offset + NAME_FILTER_OFFSET + 16])
    file_type, aux_type = struct.unpack_from("<2H", data, offset + FILE_TYPE_OFFSET)
    pathname = name or boss or f"Icon {number}"

    large = small = None
    parsed = parse_icon(data, offset + LARGE_ICON_OFFSET)
    if parsed:
        large, next_offset = parsed
        if next_offset + ICON_HEADER_SIZE < offset + length:
            parsed = parse_icon(data, next_offset)
            if parsed:
                small = parsed[0]

    if large is None and small is None:
        return None
    for label, icon in (("large", large), ("small", small)):
        if icon is not None and icon.problem:
            logger.warning(f"{pathname}: {label} icon undecodable: {icon.problem}")
    return IconResource(pathname, file_type, aux_type, large, small)


def decode_icons(data) -> Tuple[IconResource, ...]:
    """Decode every icon record in a Finder icon file"""
    data = bytes(data)
    if len(data) < MIN_FILE_SIZE:
        raise TooShort(f"Icon file of {len(data)} bytes")

    resources = []
    offset = FILE_HEADER_SIZE
    while offset + RECORD_MIN < len(data):
        length = struct.unpack_from("<H", data, offset)[0]
        if length == 0:
            break
        if not RECORD_MIN <= length <= RECORD_MAX or offset + length > len(data):
            logger.debug(f"Icon record at {offset} has length {length}, stopping")
            break
        resource = _read_record(data, offset, length, len(resources) + 1)
        if resource:
            resources.append(resource)
        offset += length

    if not resources:
        raise UnrecognizedFormat("No icon records found")
    logger.debug(f"Decoded {len(resources)} icon records")
    return tuple(resources)
