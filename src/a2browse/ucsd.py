"""
UCSD Pascal catalog walker
The directory occupies blocks 2-5: a volume header followed by up to 77
26-byte file entries, each describing a contiguous run of blocks.
"""

import logging
from datetime import datetime

from .catalog import CatalogEntry, ContentView, DiskCatalog, looks_like_disk_image
from .diskimage import BLOCK_SIZE
from .errors import OutOfBounds

logger = logging.getLogger(__name__)

FORMAT_NAME = "UCSD Pascal"

DIRECTORY_BLOCK = 2
DIRECTORY_BLOCKS = range(2, 6)
MAX_DIR_ENTRIES = 77
DIR_ENTRY_SIZE = 26
# Length byte of the volume and file name strings
NAME_OFFSET = 6
VOLUME_BLOCKS_OFFSET = 14
FILE_COUNT_OFFSET = 16

FILE_TYPES = {
    0: "XDSK",
    1: "CODE",
    2: "TEXT",
    3: "INFO",
    4: "DATA",
    5: "GRAF",
    6: "FOTO",
    7: "SDIR",
}

PRODOS_TYPES = {1: 0x02, 2: 0x03, 4: 0x05, 5: 0x08, 6: 0x08}


def decode_date(word):
    """Month in bits 0-3, day in bits 4-8, year-1900 in bits 9-15"""
    if word == 0:
        return None
    month = word & 0x0F
    day = (word >> 4) & 0x1F
    year = ((word >> 9) & 0x7F) + 1900
    try:
        return datetime(year, month, day)
    except ValueError:
        return None


def _valid_volume_header(block) -> bool:
    first_block = block[0] | (block[1] << 8)
    last_block = block[2] | (block[3] << 8)
    file_type = block[4]
    name_len = block[NAME_OFFSET]

    if first_block != 0 or last_block < 6 or file_type != 0:
        return False
    if name_len < 1 or name_len > 7:
        return False
    return all(0x20 <= c < 0x7F for c in block[NAME_OFFSET + 1:NAME_OFFSET + 1 + name_len])


def detect(image) -> bool:
    if image.total_blocks < 6:
        return False
    return _valid_volume_header(image.read_block(DIRECTORY_BLOCK))


def read_catalog(image, name=""):
    """Build the catalog of a UCSD Pascal volume"""
    directory = b''.join(image.read_block(b) for b in DIRECTORY_BLOCKS
                         if b < image.total_blocks)

    name_len = directory[NAME_OFFSET]
    volume_name = "".join(chr(c) for c in directory[NAME_OFFSET + 1:NAME_OFFSET + 1 + min(name_len, 7)])
    total_blocks = (directory[VOLUME_BLOCKS_OFFSET] | (directory[VOLUME_BLOCKS_OFFSET + 1] << 8)
                    or image.total_blocks)
    file_count = directory[FILE_COUNT_OFFSET] | (directory[FILE_COUNT_OFFSET + 1] << 8)
    if file_count >= MAX_DIR_ENTRIES:
        logger.warning(f"UCSD volume {volume_name} claims {file_count} files")
        file_count = MAX_DIR_ENTRIES - 1
    logger.debug(f"UCSD volume {volume_name}: {total_blocks} blocks")

    entries = []
    for index in range(1, file_count + 1):
        offset = index * DIR_ENTRY_SIZE
        if offset + DIR_ENTRY_SIZE > len(directory):
            break
        entry = _read_entry(image, directory[offset:offset + DIR_ENTRY_SIZE], total_blocks)
        if entry is not None:
            entries.append(entry)

    return DiskCatalog(
        volume_name=volume_name or name,
        disk_format=FORMAT_NAME,
        disk_size=len(image),
        entries=tuple(entries),
        order=image.order,
    )


def _read_entry(image, raw, total_blocks):
    first_block = raw[0] | (raw[1] << 8)
    last_block = raw[2] | (raw[3] << 8)
    file_type = raw[4] & 0x0F
    name_len = raw[NAME_OFFSET]

    if first_block == 0 and last_block == 0:
        return None
    if name_len == 0 or name_len > 15:
        return None
    if first_block >= last_block or last_block > total_blocks:
        return None

    filename = "".join(chr(c) for c in raw[NAME_OFFSET + 1:NAME_OFFSET + 1 + name_len] if 0x20 <= c < 0x7F)
    if not filename:
        return None

    bytes_in_last = raw[22] | (raw[23] << 8)
    block_count = last_block - first_block
    size = (block_count - 1) * BLOCK_SIZE + min(bytes_in_last, BLOCK_SIZE)

    extents = []
    for block in range(first_block, last_block):
        try:
            extents.extend(image.block_extents(block))
        except OutOfBounds:
            logger.warning(f"{filename}: block {block} outside image")
            break
    content = ContentView(image.data, extents).truncated(size)

    return CatalogEntry(
        name=filename,
        file_type=file_type,
        prodos_type=PRODOS_TYPES.get(file_type, 0x00),
        type_label=FILE_TYPES.get(file_type, f"${file_type:02X}"),
        size=size,
        blocks=block_count,
        length=len(content),
        content=content,
        is_image=looks_like_disk_image(content),
        modified=decode_date(raw[24] | (raw[25] << 8)),
        key_pointer=first_block,
    )
