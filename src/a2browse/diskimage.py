"""
Disk image access and filesystem detection
Unwraps 2IMG containers, maps blocks and sectors for ProDOS-order and
DOS-order images, and tries each catalog walker in turn.
"""

import logging

from .bytereader import ByteReader
from .errors import OutOfBounds, UnrecognizedFormat

logger = logging.getLogger(__name__)

BLOCK_SIZE = 512
SECTOR_SIZE = 256
SECTORS_PER_TRACK = 16
TRACK_SIZE = SECTORS_PER_TRACK * SECTOR_SIZE

# Image sizes that may be stored in DOS 3.3 sector order
FLOPPY_SIZES = (143360, 163840, 819200)

# ProDOS logical sector -> DOS 3.3 logical sector within a track (self-inverse)
PRODOS_TO_DOS = (0, 14, 13, 12, 11, 10, 9, 8, 7, 6, 5, 4, 3, 2, 1, 15)

TWOIMG_MAGIC = b'2IMG'
TWOIMG_FORMATS = {0: "dos", 1: "prodos", 2: "nib"}


def unwrap_2img(data):
    """Strip a 2IMG header, returning (payload, order hint)

    Data without the 2IMG magic is returned unchanged with no hint.
    """
    if bytes(data[:4]) != TWOIMG_MAGIC:
        return data, None

    reader = ByteReader(data)
    header_size = reader.u16_at(8)
    image_format = reader.u32_at(12)
    data_offset = reader.u32_at(24)
    data_length = reader.u32_at(28)

    order = TWOIMG_FORMATS.get(image_format)
    if order is None or order == "nib":
        raise UnrecognizedFormat(f"Unsupported 2IMG image format {image_format}")

    if data_offset == 0:
        data_offset = header_size
    if data_length == 0:
        data_length = len(data) - data_offset

    logger.debug(f"2IMG: {order} order, {data_length} bytes at offset {data_offset}")
    return reader.bytes_at(data_offset, data_length), order


class BlockImage:
    """Block and sector addressing over an in-memory disk image"""

    def __init__(self, data, order="prodos"):
        if order not in ("prodos", "dos"):
            raise ValueError(f"Invalid sector order: {order}")
        self.data = data
        self.order = order

    def __len__(self):
        return len(self.data)

    @property
    def total_blocks(self) -> int:
        return len(self.data) // BLOCK_SIZE

    @property
    def total_tracks(self) -> int:
        return len(self.data) // TRACK_SIZE

    def block_extents(self, block: int):
        """Return the (offset, length) extents holding a 512-byte block"""
        if block < 0 or block >= self.total_blocks:
            raise OutOfBounds(f"Block {block} outside image of {self.total_blocks} blocks")

        if self.order == "prodos":
            return ((block * BLOCK_SIZE, BLOCK_SIZE),)

        track, index = divmod(block, 8)
        base = track * TRACK_SIZE
        first = base + PRODOS_TO_DOS[index * 2] * SECTOR_SIZE
        second = base + PRODOS_TO_DOS[index * 2 + 1] * SECTOR_SIZE
        if first + SECTOR_SIZE > len(self.data) or second + SECTOR_SIZE > len(self.data):
            raise OutOfBounds(f"Block {block} outside image")
        return ((first, SECTOR_SIZE), (second, SECTOR_SIZE))

    def read_block(self, block: int) -> bytes:
        return b''.join(bytes(self.data[offset:offset + length])
                        for offset, length in self.block_extents(block))

    def sector_offset(self, track: int, sector: int) -> int:
        """Byte offset of a DOS 3.3 logical sector"""
        if sector < 0 or sector >= SECTORS_PER_TRACK:
            raise OutOfBounds(f"Invalid sector: {sector}")
        if track < 0 or track >= self.total_tracks:
            raise OutOfBounds(f"Invalid track: {track}")

        if self.order == "dos":
            return (track * SECTORS_PER_TRACK + sector) * SECTOR_SIZE
        return track * TRACK_SIZE + PRODOS_TO_DOS[sector] * SECTOR_SIZE

    def read_sector(self, track: int, sector: int) -> bytes:
        offset = self.sector_offset(track, sector)
        return bytes(self.data[offset:offset + SECTOR_SIZE])


def _candidate_orders(data, native, hint):
    first = hint or native
    orders = [first]
    other = "dos" if first == "prodos" else "prodos"
    if len(data) in FLOPPY_SIZES:
        orders.append(other)
    return orders


def walk_catalog(data, order=None, name=""):
    """Detect the filesystem in a disk image and build its catalog

    ProDOS is tried first, then DOS 3.3, then UCSD Pascal.  ``order`` forces
    which sector order is tried first ("prodos" or "dos").  Raises
    UnrecognizedFormat when no filesystem matches.
    """
    from . import dos33, prodos, ucsd

    if not isinstance(data, bytes):
        data = bytes(data)

    data, container_order = unwrap_2img(data)
    hint = order or container_order

    for module, native in ((prodos, "prodos"), (dos33, "dos"), (ucsd, "prodos")):
        for candidate in _candidate_orders(data, native, hint):
            image = BlockImage(data, candidate)
            if module.detect(image):
                logger.info(f"Detected {module.FORMAT_NAME} ({candidate} order)")
                return module.read_catalog(image, name)

    raise UnrecognizedFormat(f"No known filesystem in {len(data)}-byte image")
