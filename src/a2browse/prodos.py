"""
ProDOS catalog walker
Reads the volume directory and subdirectories of a ProDOS volume and
resolves each file's data blocks through its index structure.
"""

import logging
from datetime import datetime

from .catalog import CatalogEntry, ContentView, DiskCatalog, looks_like_disk_image
from .diskimage import BLOCK_SIZE
from .errors import CircularDirectory, DecodeError, OutOfBounds
from .filetypes import short_name

logger = logging.getLogger(__name__)

FORMAT_NAME = "ProDOS"

VOLUME_DIR_BLOCKS = (2, 1)
ENTRY_LENGTH = 0x27

# Storage types (high nibble of the first entry byte)
DELETED = 0x0
SEEDLING = 0x1
SAPLING = 0x2
TREE = 0x3
PASCAL_AREA = 0x4
EXTENDED = 0x5
SUBDIRECTORY = 0xD
SUBDIR_HEADER = 0xE
VOLUME_HEADER = 0xF

# Types whose aux type is a load address
LOAD_ADDRESS_TYPES = (0x06, 0xFC, 0xFF)


def decode_datetime(date_word, minute=0, hour=0):
    """Decode a ProDOS date word plus time bytes, None if unset or invalid"""
    if date_word == 0:
        return None

    year = (date_word >> 9) & 0x7F
    month = (date_word >> 5) & 0x0F
    day = date_word & 0x1F
    year += 2000 if year < 40 else 1900

    if hour > 23 or minute > 59:
        hour = minute = 0
    try:
        return datetime(year, month, day, hour, minute)
    except ValueError:
        return None


def apply_case_mask(name: str, mask: int) -> str:
    """Apply a GS/OS lowercase mask (bit 15 set, bit 14 = first character)"""
    if not mask & 0x8000:
        return name
    chars = list(name)
    for i in range(min(len(chars), 15)):
        if mask & (0x4000 >> i):
            chars[i] = chars[i].lower()
    return "".join(chars)


def _read_header(image, block):
    """Parse a directory key block header; returns None when implausible"""
    data = image.read_block(block)
    storage = data[4] >> 4
    name_len = data[4] & 0x0F
    entry_length = data[0x23]
    entries_per_block = data[0x24]

    if storage not in (VOLUME_HEADER, SUBDIR_HEADER):
        return None
    if name_len < 1 or name_len > 15:
        return None
    if entry_length < ENTRY_LENGTH or entries_per_block < 1:
        return None
    if 4 + entry_length * entries_per_block > BLOCK_SIZE:
        return None

    return {
        'storage': storage,
        'name': "".join(chr(b & 0x7F) for b in data[5:5 + name_len]),
        'created': decode_datetime(data[0x1C] | (data[0x1D] << 8), data[0x1E], data[0x1F]),
        'version': data[0x20],
        'min_version': data[0x21],
        'access': data[0x22],
        'entry_length': entry_length,
        'entries_per_block': entries_per_block,
        'file_count': data[0x25] | (data[0x26] << 8),
        'total_blocks': data[0x29] | (data[0x2A] << 8),
    }


def detect(image) -> bool:
    """True when a plausible volume directory header sits at block 2 (or 1)"""
    if image.total_blocks < 3:
        return False
    for block in VOLUME_DIR_BLOCKS:
        header = _read_header(image, block)
        if header is not None and header['storage'] == VOLUME_HEADER:
            return True
    return False


class ProDOSWalker:
    """Walks one ProDOS volume; visited blocks are shared across the whole tree"""

    def __init__(self, image):
        self.image = image
        self.visited = set()

    def _index_pointers(self, block, count=256):
        data = self.image.read_block(block)
        return [data[i] | (data[256 + i] << 8) for i in range(count)]

    def _data_extent(self, block):
        if block == 0:
            return ((-1, BLOCK_SIZE),)
        try:
            return self.image.block_extents(block)
        except OutOfBounds:
            logger.warning(f"Data block {block} outside image; reading as zeros")
            return ((-1, BLOCK_SIZE),)

    def file_content(self, storage, key_block, eof) -> ContentView:
        """Collect a file's data blocks, truncated to its EOF"""
        extents = []
        covered = 0
        try:
            if storage == SEEDLING:
                extents.extend(self.image.block_extents(key_block))
                covered = BLOCK_SIZE
            elif storage == SAPLING:
                for pointer in self._index_pointers(key_block):
                    if covered >= eof:
                        break
                    extents.extend(self._data_extent(pointer))
                    covered += BLOCK_SIZE
            elif storage == TREE:
                for index_block in self._index_pointers(key_block, 128):
                    if covered >= eof:
                        break
                    if index_block == 0:
                        pointers = [0] * 256
                    else:
                        try:
                            pointers = self._index_pointers(index_block)
                        except OutOfBounds:
                            logger.warning(f"Index block {index_block} outside image")
                            pointers = [0] * 256
                    for pointer in pointers:
                        if covered >= eof:
                            break
                        extents.extend(self._data_extent(pointer))
                        covered += BLOCK_SIZE
        except OutOfBounds as e:
            logger.warning(f"Key block {key_block} unreadable: {e.diagnostic}")
            return ContentView(self.image.data, ())

        return ContentView(self.image.data, extents).truncated(eof)

    def _block_range(self, first_block, count, name):
        """Contiguous blocks, as held by a Pascal area"""
        extents = []
        for block in range(first_block, first_block + count):
            try:
                extents.extend(self.image.block_extents(block))
            except OutOfBounds:
                logger.warning(f"{name}: block {block} outside image")
                break
        return ContentView(self.image.data, extents)

    def _extended_content(self, key_block):
        """Data fork of a GS/OS forked file"""
        data = self.image.read_block(key_block)
        storage = data[0] & 0x0F
        fork_key = data[1] | (data[2] << 8)
        eof = data[5] | (data[6] << 8) | (data[7] << 16)
        return self.file_content(storage, fork_key, eof), eof

    def read_directory(self, key_block, expected=SUBDIR_HEADER):
        """Return (header, entries, problem) for the directory starting at key_block

        A chain link outside the image ends the walk; the entries read so far
        are kept and problem describes the break.
        """
        if key_block in self.visited:
            raise CircularDirectory(f"Directory block {key_block} visited twice")

        header = _read_header(self.image, key_block)
        if header is None or header['storage'] != expected:
            raise DecodeError(f"Invalid directory header in block {key_block}")

        entries = []
        problem = None
        block = key_block
        first = True
        while block != 0:
            if block in self.visited:
                raise CircularDirectory(f"Directory block {block} visited twice")
            if block >= self.image.total_blocks:
                problem = f"Directory chain links to block {block} outside image"
                logger.warning(f"{header['name']}: {problem}; keeping {len(entries)} entries")
                break
            self.visited.add(block)

            data = self.image.read_block(block)
            for slot in range(header['entries_per_block']):
                if first and slot == 0:
                    continue
                offset = 4 + slot * header['entry_length']
                entry = self._read_entry(data[offset:offset + ENTRY_LENGTH])
                if entry is not None:
                    entries.append(entry)

            first = False
            block = data[2] | (data[3] << 8)

        return header, tuple(entries), problem

    def _read_entry(self, raw):
        storage = raw[0] >> 4
        name_len = raw[0] & 0x0F
        if storage in (DELETED, SUBDIR_HEADER, VOLUME_HEADER) or name_len == 0:
            return None

        name = "".join(chr(b & 0x7F) for b in raw[1:1 + name_len])
        file_type = raw[16]
        key_pointer = raw[17] | (raw[18] << 8)
        blocks_used = raw[19] | (raw[20] << 8)
        eof = raw[21] | (raw[22] << 8) | (raw[23] << 16)
        created = decode_datetime(raw[24] | (raw[25] << 8), raw[26], raw[27])
        version = raw[28]
        min_version = raw[29]
        access = raw[30]
        aux_type = raw[31] | (raw[32] << 8)
        modified = decode_datetime(raw[33] | (raw[34] << 8), raw[35], raw[36])
        header_pointer = raw[37] | (raw[38] << 8)

        if storage != SUBDIRECTORY:
            name = apply_case_mask(name, version | (min_version << 8))

        common = dict(
            name=name,
            created=created,
            modified=modified,
            storage_type=storage,
            key_pointer=key_pointer,
            access=access,
            version=version,
            min_version=min_version,
            header_pointer=header_pointer,
            blocks=blocks_used,
        )

        if storage == SUBDIRECTORY:
            return self._read_subdirectory(key_pointer, eof, common)

        size = eof
        if storage == EXTENDED:
            try:
                content, size = self._extended_content(key_pointer)
            except OutOfBounds:
                logger.warning(f"Extended key block {key_pointer} of {name} unreadable")
                content = ContentView(self.image.data, ())
        elif storage in (SEEDLING, SAPLING, TREE):
            content = self.file_content(storage, key_pointer, eof)
        elif storage == PASCAL_AREA:
            content = self._block_range(key_pointer, blocks_used, name)
            size = len(content)
        else:
            content = ContentView(self.image.data, ())

        load_address = aux_type if file_type in LOAD_ADDRESS_TYPES else None
        return CatalogEntry(
            file_type=file_type,
            prodos_type=file_type,
            type_label=short_name(file_type, aux_type),
            aux_type=aux_type,
            size=size,
            load_address=load_address,
            length=len(content),
            content=content,
            is_image=looks_like_disk_image(content),
            **common,
        )

    def _read_subdirectory(self, key_pointer, eof, common):
        damaged = None
        children = ()
        try:
            _, children, damaged = self.read_directory(key_pointer)
        except CircularDirectory:
            raise
        except DecodeError as e:
            damaged = e.diagnostic
            logger.warning(f"Skipping damaged subdirectory {common['name']}: {damaged}")

        return CatalogEntry(
            file_type=0x0F,
            prodos_type=0x0F,
            type_label="DIR",
            size=eof,
            is_directory=True,
            children=children,
            damaged=damaged,
            **common,
        )


def read_catalog(image, name=""):
    """Build the catalog of a ProDOS volume"""
    walker = ProDOSWalker(image)
    for block in VOLUME_DIR_BLOCKS:
        header = _read_header(image, block)
        if header is not None and header['storage'] == VOLUME_HEADER:
            break
    else:
        raise DecodeError("No ProDOS volume directory")

    header, entries, _ = walker.read_directory(block, VOLUME_HEADER)
    return DiskCatalog(
        volume_name=header['name'] or name,
        disk_format=FORMAT_NAME,
        disk_size=len(image),
        entries=entries,
        order=image.order,
    )
