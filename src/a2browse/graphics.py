"""
Apple II raster graphics decoder
Hi-Res, Double Hi-Res and Super Hi-Res screens, the packed IIgs picture
formats (Apple Preferred, Paintworks, plain PackBytes) and MacPaint.  Every
decoder turns a byte buffer into an RGBA pixel buffer; nothing is cached.
"""

import enum
import functools
import logging
import struct
from collections import namedtuple
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image

from .errors import OutOfBounds, UnrecognizedFormat

logger = logging.getLogger(__name__)


class RasterFormat(enum.Enum):
    HGR = "Hi-Res (HGR)"
    DHGR = "Double Hi-Res (DHGR)"
    SHR = "Super Hi-Res (SHR)"
    SHR_3200 = "Super Hi-Res (3200 color)"
    APF = "Super Hi-Res (APF)"
    APF_3200 = "Super Hi-Res (APF 3200)"
    PAINTWORKS = "Super Hi-Res (Paintworks)"
    PACKED_SHR = "Super Hi-Res (Packed)"
    MACPAINT = "MacPaint"
    ICON = "IIgs icon"


RGB = Tuple[int, int, int]


@dataclass(frozen=True)
class RasterImage:
    width: int
    height: int
    format: RasterFormat
    pixels: bytes
    palette: Optional[Tuple[RGB, ...]] = None

    def to_pil(self) -> Image.Image:
        """Wrap the RGBA buffer in a Pillow image"""
        return Image.frombytes("RGBA", (self.width, self.height), self.pixels)

    def pixel(self, x: int, y: int) -> Tuple[int, int, int, int]:
        offset = (y * self.width + x) * 4
        return tuple(self.pixels[offset:offset + 4])


# Apple II low-res colours, also the IIgs Finder default palette
IIGS_DEFAULT_PALETTE = (
    (0x00, 0x00, 0x00), (0xDD, 0x00, 0x33), (0x00, 0x00, 0x99), (0xDD, 0x22, 0xDD),
    (0x00, 0x77, 0x22), (0x55, 0x55, 0x55), (0x22, 0x22, 0xFF), (0x66, 0xAA, 0xFF),
    (0x88, 0x55, 0x00), (0xFF, 0x66, 0x00), (0xAA, 0xAA, 0xAA), (0xFF, 0x99, 0x88),
    (0x11, 0xDD, 0x00), (0xFF, 0xFF, 0x00), (0x44, 0xFF, 0x99), (0xFF, 0xFF, 0xFF),
)

GRAY_PALETTE = tuple((i * 17, i * 17, i * 17) for i in range(16))

HGR_COLORS = (
    (0, 0, 0),        # black
    (255, 255, 255),  # white
    (32, 192, 32),    # green
    (160, 32, 240),   # violet
    (255, 100, 0),    # orange
    (60, 60, 255),    # blue
)

DHGR_PALETTE = (
    (0, 0, 0), (134, 18, 192), (0, 101, 43), (48, 48, 255),
    (165, 95, 0), (172, 172, 172), (0, 226, 0), (0, 255, 146),
    (224, 0, 39), (223, 17, 212), (81, 81, 81), (78, 158, 255),
    (255, 39, 0), (255, 150, 153), (255, 253, 0), (255, 255, 255),
)

HGR_WIDTH, HGR_HEIGHT = 280, 192
DHGR_WIDTH = 560
SHR_WIDTH, SHR_HEIGHT = 320, 200
SHR_BYTES_PER_LINE = 160
SHR_PIXEL_SIZE = 32000
SHR_SCB_OFFSET = 32000
SHR_PALETTE_OFFSET = 32256
HIRES_PAGE_SIZE = 8192

MACPAINT_WIDTH, MACPAINT_HEIGHT = 576, 720
MACPAINT_ROW_BYTES = 72
MACPAINT_HEADER_SIZE = 512
MACPAINT_VERSIONS = (0, 2, 3)

PAINTWORKS_DATA_OFFSET = 0x222
APF_BLOCK_NAMES = ("MAIN", "PATS", "SCIB", "PALETTES", "MASK", "MULTIPAL", "NOTE")

# (low, high, format) by file length when nothing better is known
SIZE_TABLE = (
    (8184, 8200, RasterFormat.HGR),
    (16384, 16384, RasterFormat.DHGR),
    (32000, 32768, RasterFormat.SHR),
    (38400, 39000, RasterFormat.SHR_3200),
)


def _rgba(color: RGB, alpha=255) -> bytes:
    return bytes((color[0], color[1], color[2], alpha))


def iigs_color(low: int, high: int) -> RGB:
    """Expand a little-endian $0RGB colour word"""
    return ((high & 0x0F) * 17, (low >> 4) * 17, (low & 0x0F) * 17)


def read_palette(data, offset: int, reverse=False) -> Tuple[RGB, ...]:
    colors = [iigs_color(data[offset + i * 2], data[offset + i * 2 + 1]) for i in range(16)]
    if reverse:
        colors.reverse()
    return tuple(colors)


@functools.lru_cache(maxsize=64)
def _nibble_table(palette):
    """RGBA bytes for both pixels of every possible 4bpp byte"""
    return tuple(_rgba(palette[b >> 4]) + _rgba(palette[b & 0x0F]) for b in range(256))


def _render_nibble_line(line, palette, width: int) -> bytes:
    table = _nibble_table(palette)
    row = b"".join(table[b] for b in line)[:width * 4]
    return row.ljust(width * 4, b"\x00")


def hires_line_offset(y: int) -> int:
    """Offset of screen line y within a hi-res page"""
    return ((y & 0x07) << 10) | (((y >> 3) & 0x07) << 7) | ((y >> 6) * 40)


def identify_raster(length: int, aux_type=None, file_type=None) -> Optional[RasterFormat]:
    """Best guess at a raster format from the file length and its type hints"""
    return _hinted_format(length, file_type, aux_type) or _sized_format(length)


def _sized_format(length):
    for low, high, raster_format in SIZE_TABLE:
        if low <= length <= high:
            return raster_format
    return None


def _hinted_format(length, file_type, aux_type):
    if file_type == 0x08:
        if aux_type == 0x4000:
            return RasterFormat.HGR
        if aux_type == 0x4001:
            return RasterFormat.DHGR
    elif file_type in (0xC0, 0xB3):
        return RasterFormat.PACKED_SHR
    elif file_type == 0xC1:
        return RasterFormat.SHR_3200 if aux_type == 0x0002 else RasterFormat.SHR
    elif file_type == 0x06 and aux_type is not None:
        if aux_type in (0x2000, 0x4000) and 8184 <= length <= 8200:
            return RasterFormat.HGR
        if 0x2000 <= aux_type <= 0x3FFF and length == 16384:
            return RasterFormat.DHGR
    return None


def decode_raster(data, file_type=None, aux_type=None) -> RasterImage:
    """Decode a picture file, trying the hinted format before guessing by size"""
    data = bytes(data)
    candidates = []
    hinted = _hinted_format(len(data), file_type, aux_type)
    if hinted:
        candidates.append(_DECODERS[hinted])
    sized = _sized_format(len(data))
    if sized and sized != hinted:
        candidates.append(_DECODERS[sized])
    candidates.append(_decode_macpaint)

    for decoder in candidates:
        image = decoder(data)
        if image is not None:
            logger.debug(f"Decoded {len(data)} bytes as {image.format.value}")
            return image
    raise UnrecognizedFormat(f"No picture format matches {len(data)} bytes")


def _decode_hgr(data) -> Optional[RasterImage]:
    if len(data) < 8184:
        return None
    colors = [_rgba(c) for c in HGR_COLORS]
    pixels = bytearray(HGR_WIDTH * HGR_HEIGHT * 4)
    for y in range(HGR_HEIGHT):
        offset = hires_line_offset(y)
        row = data[offset:offset + 40] + b"\x00"
        out = y * HGR_WIDTH * 4
        for x_byte in range(40):
            byte = row[x_byte]
            high_bit = byte >> 7
            for bit in range(7):
                x = x_byte * 7 + bit
                this = (byte >> bit) & 1
                if bit == 6:
                    right = row[x_byte + 1] & 1
                else:
                    right = (byte >> (bit + 1)) & 1
                if this == right:
                    index = this
                elif (this == 1) == (x % 2 == 0):
                    index = 5 if high_bit else 3
                else:
                    index = 4 if high_bit else 2
                pixels[out + x * 4:out + x * 4 + 4] = colors[index]
    return RasterImage(HGR_WIDTH, HGR_HEIGHT, RasterFormat.HGR, bytes(pixels))


def _decode_dhgr(data) -> Optional[RasterImage]:
    if len(data) < HIRES_PAGE_SIZE * 2:
        return None
    aux = data[:HIRES_PAGE_SIZE]
    main = data[HIRES_PAGE_SIZE:HIRES_PAGE_SIZE * 2]
    colors = [_rgba(c) * 4 for c in DHGR_PALETTE]
    rows = []
    for y in range(HGR_HEIGHT):
        offset = hires_line_offset(y)
        bits = []
        for x_byte in range(40):
            # aux memory is displayed first
            for bank in (aux, main):
                byte = bank[offset + x_byte]
                bits.extend((byte >> n) & 1 for n in range(7))
        rows.append(b"".join(
            colors[bits[i] | bits[i + 1] << 1 | bits[i + 2] << 2 | bits[i + 3] << 3]
            for i in range(0, len(bits), 4)))
    return RasterImage(DHGR_WIDTH, HGR_HEIGHT, RasterFormat.DHGR, b"".join(rows), DHGR_PALETTE)


def _decode_shr(data, raster_format=RasterFormat.SHR) -> Optional[RasterImage]:
    if len(data) < SHR_PIXEL_SIZE:
        return None
    palettes = []
    for i in range(16):
        offset = SHR_PALETTE_OFFSET + i * 32
        palettes.append(read_palette(data, offset) if offset + 32 <= len(data) else GRAY_PALETTE)
    rows = []
    for y in range(SHR_HEIGHT):
        scb = data[SHR_SCB_OFFSET + y] if SHR_SCB_OFFSET + y < len(data) else 0
        line = data[y * SHR_BYTES_PER_LINE:(y + 1) * SHR_BYTES_PER_LINE]
        rows.append(_render_nibble_line(line, palettes[scb & 0x0F], SHR_WIDTH))
    return RasterImage(SHR_WIDTH, SHR_HEIGHT, raster_format, b"".join(rows), palettes[0])


def _decode_shr_3200(data) -> Optional[RasterImage]:
    if len(data) < SHR_PIXEL_SIZE:
        return None
    rows = []
    for y in range(SHR_HEIGHT):
        offset = SHR_PIXEL_SIZE + y * 32
        # Brooks palettes are stored highest colour first
        if offset + 32 <= len(data):
            palette = read_palette(data, offset, reverse=True)
        else:
            palette = GRAY_PALETTE
        line = data[y * SHR_BYTES_PER_LINE:(y + 1) * SHR_BYTES_PER_LINE]
        rows.append(_render_nibble_line(line, palette, SHR_WIDTH))
    return RasterImage(SHR_WIDTH, SHR_HEIGHT, RasterFormat.SHR_3200, b"".join(rows))


def unpack_bytes(data, limit=65536) -> bytes:
    """Expand Apple IIgs PackBytes data, stopping at limit bytes of output"""
    out = bytearray()
    pos = 0
    while pos < len(data) and len(out) < limit:
        flag = data[pos]
        pos += 1
        count = (flag & 0x3F) + 1
        mode = flag & 0xC0
        room = limit - len(out)
        if mode == 0x00:
            chunk = data[pos:pos + min(count, room)]
            out += chunk
            pos += len(chunk)
        elif pos >= len(data):
            break
        elif mode == 0x40:
            out += bytes([data[pos]]) * min(count, room)
            pos += 1
        elif mode == 0x80:
            if pos + 4 > len(data):
                break
            out += (data[pos:pos + 4] * count)[:room]
            pos += 4
        else:
            out += bytes([data[pos]]) * min(count * 4, room)
            pos += 1
    return bytes(out)


def unpack_bits_row(data, offset: int, length: int) -> Tuple[bytes, int]:
    """Expand one PackBits row; returns the row and the next source offset"""
    out = bytearray()
    while len(out) < length and offset < len(data):
        flag = data[offset]
        offset += 1
        if flag == 0x80:
            continue
        if flag > 0x80:
            if offset >= len(data):
                raise OutOfBounds(f"PackBits run at offset {offset - 1} has no value")
            out += bytes([data[offset]]) * (257 - flag)
            offset += 1
        else:
            chunk = data[offset:offset + min(flag + 1, length - len(out))]
            out += chunk
            offset += len(chunk)
    return bytes(out[:length]).ljust(length, b"\x00"), offset


# Packed IIgs pictures

def _decode_packed(data) -> Optional[RasterImage]:
    if is_apf(data):
        image = _decode_apf(data)
        if image is not None:
            return image
    if is_paintworks(data):
        image = _decode_paintworks(data)
        if image is not None:
            return image
    unpacked = unpack_bytes(data, 65536)
    if len(unpacked) >= SHR_PIXEL_SIZE:
        return _decode_shr(unpacked, RasterFormat.PACKED_SHR)
    return None


def is_apf(data) -> bool:
    """Apple Preferred Format files open with a known block name"""
    if len(data) < 20:
        return False
    block_length, name_length = struct.unpack_from("<IB", data, 0)
    if not 10 <= block_length <= len(data) or not 4 <= name_length <= 15:
        return False
    return data[5:5 + name_length].decode("ascii", "replace") in APF_BLOCK_NAMES


def is_paintworks(data) -> bool:
    if len(data) < PAINTWORKS_DATA_OFFSET:
        return False
    return all(data[i * 2 + 1] & 0xF0 == 0 for i in range(16))


def _apf_blocks(data):
    blocks = {}
    pos = 0
    while pos + 5 <= len(data):
        block_length, name_length = struct.unpack_from("<IB", data, pos)
        if block_length < 5 or pos + block_length > len(data):
            break
        if not 0 < name_length <= 20 or pos + 5 + name_length > len(data):
            break
        name = data[pos + 5:pos + 5 + name_length].decode("ascii", "replace")
        body = data[pos + 5 + name_length:pos + block_length]
        if body:
            blocks.setdefault(name, body)
        pos += block_length
    return blocks


MainBlock = namedtuple("MainBlock", "master_mode width color_tables modes pixels")


def _parse_main_block(block) -> Optional[MainBlock]:
    if len(block) < 6:
        return None
    master_mode, width, table_count = struct.unpack_from("<3H", block, 0)
    if not 0 < width <= 1280:
        return None
    pos = 6
    tables = []
    for _ in range(table_count):
        if pos + 32 > len(block):
            break
        tables.append(read_palette(block, pos))
        pos += 32

    if pos + 2 > len(block):
        return None
    line_count = struct.unpack_from("<H", block, pos)[0]
    pos += 2
    if not 0 < line_count <= 400 or pos + line_count * 4 > len(block):
        return None
    directory = [struct.unpack_from("<2H", block, pos + i * 4) for i in range(line_count)]
    pos += line_count * 4

    bytes_per_line = width // 2
    lines = []
    for packed_length, _ in directory:
        if pos + packed_length > len(block):
            lines.append(bytes(bytes_per_line))
            continue
        line = unpack_bytes(block[pos:pos + packed_length], bytes_per_line)
        pos += packed_length
        lines.append(line.ljust(bytes_per_line, b"\x00"))
    return MainBlock(master_mode, width, tuple(tables), tuple(mode for _, mode in directory),
                     tuple(lines))


def _parse_multipal_block(block):
    if len(block) < 2:
        return ()
    count = struct.unpack_from("<H", block, 0)[0]
    if not 0 < count <= 400:
        return ()
    return tuple(read_palette(block, 2 + i * 32) for i in range(count)
                 if 2 + (i + 1) * 32 <= len(block))


def _decode_apf(data) -> Optional[RasterImage]:
    blocks = _apf_blocks(data)
    if "MAIN" not in blocks:
        return None
    main = _parse_main_block(blocks["MAIN"])
    if main is None:
        return None
    multipal = _parse_multipal_block(blocks.get("MULTIPAL", b""))
    height = len(main.pixels)

    rows = []
    if len(multipal) >= height:
        for y, line in enumerate(main.pixels):
            rows.append(_render_nibble_line(line, multipal[y], main.width))
        raster_format = RasterFormat.APF_3200
    else:
        fallback = main.color_tables[0] if main.color_tables else IIGS_DEFAULT_PALETTE
        for line, mode in zip(main.pixels, main.modes):
            index = mode & 0x0F
            palette = main.color_tables[index] if index < len(main.color_tables) else fallback
            rows.append(_render_nibble_line(line, palette, main.width))
        raster_format = RasterFormat.APF
    palette = main.color_tables[0] if main.color_tables else None
    return RasterImage(main.width, height, raster_format, b"".join(rows), palette)


def _decode_paintworks(data) -> Optional[RasterImage]:
    palette = read_palette(data, 0)
    body = data[PAINTWORKS_DATA_OFFSET:]
    unpacked = unpack_bytes(body, 64000)
    if len(unpacked) >= SHR_PIXEL_SIZE:
        height = min(len(unpacked) // SHR_BYTES_PER_LINE, 396)
    elif SHR_PIXEL_SIZE <= len(body) <= 33000:
        unpacked = body[:SHR_PIXEL_SIZE]
        height = SHR_HEIGHT
    else:
        return None
    rows = [_render_nibble_line(unpacked[y * SHR_BYTES_PER_LINE:(y + 1) * SHR_BYTES_PER_LINE],
                                palette, SHR_WIDTH)
            for y in range(height)]
    return RasterImage(SHR_WIDTH, height, RasterFormat.PAINTWORKS, b"".join(rows), palette)


# MacPaint

def is_macpaint(data) -> bool:
    """Version word is 0, 2 or 3 and the first rows unpack cleanly"""
    if len(data) < MACPAINT_HEADER_SIZE + 100:
        return False
    if struct.unpack_from(">I", data, 0)[0] not in MACPAINT_VERSIONS:
        return False
    offset = MACPAINT_HEADER_SIZE
    try:
        for _ in range(10):
            _, offset = unpack_bits_row(data, offset, MACPAINT_ROW_BYTES)
    except OutOfBounds:
        return False
    return True


_MONO_TABLE = tuple(
    b"".join(b"\x00\x00\x00\xff" if byte & (0x80 >> bit) else b"\xff\xff\xff\xff"
             for bit in range(8))
    for byte in range(256))


def _decode_macpaint(data) -> Optional[RasterImage]:
    if not is_macpaint(data):
        return None
    offset = MACPAINT_HEADER_SIZE
    rows = []
    for y in range(MACPAINT_HEIGHT):
        try:
            row, offset = unpack_bits_row(data, offset, MACPAINT_ROW_BYTES)
        except OutOfBounds as e:
            logger.warning(f"MacPaint data ends at row {y}: {e.diagnostic}")
            break
        rows.append(b"".join(_MONO_TABLE[b] for b in row))
    blank = _MONO_TABLE[0] * MACPAINT_ROW_BYTES
    rows.extend([blank] * (MACPAINT_HEIGHT - len(rows)))
    return RasterImage(MACPAINT_WIDTH, MACPAINT_HEIGHT, RasterFormat.MACPAINT, b"".join(rows))


_DECODERS = {
    RasterFormat.HGR: _decode_hgr,
    RasterFormat.DHGR: _decode_dhgr,
    RasterFormat.SHR: _decode_shr,
    RasterFormat.SHR_3200: _decode_shr_3200,
    RasterFormat.PACKED_SHR: _decode_packed,
}
