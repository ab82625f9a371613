"""
Apple DOS 3.3 catalog walker
Reads the VTOC, follows the catalog sector chain and each file's
track/sector list, and strips the length headers DOS keeps in file data.
"""

import logging

from .catalog import CatalogEntry, ContentView, DiskCatalog, looks_like_disk_image
from .diskimage import SECTOR_SIZE, SECTORS_PER_TRACK
from .errors import CircularDirectory, OutOfBounds

logger = logging.getLogger(__name__)

FORMAT_NAME = "DOS 3.3"

VTOC_TRACK = 17
VTOC_SECTOR = 0
ENTRIES_PER_SECTOR = 7
ENTRY_SIZE = 35
TS_PAIRS_PER_SECTOR = 122

# DOS type byte -> (label, ProDOS equivalent)
FILE_TYPES = {
    0x00: ("T", 0x04),
    0x01: ("I", 0xFA),
    0x02: ("A", 0xFC),
    0x04: ("B", 0x06),
    0x08: ("S", 0x00),
    0x10: ("R", 0xFE),
    0x20: ("A", 0xFC),
    0x40: ("B", 0x06),
}


def detect(image) -> bool:
    """True when the sector at T17 S0 looks like a DOS 3.3 VTOC"""
    if image.total_tracks <= VTOC_TRACK:
        return False
    vtoc = image.read_sector(VTOC_TRACK, VTOC_SECTOR)
    catalog_track = vtoc[1]
    catalog_sector = vtoc[2]
    tracks = vtoc[0x34]
    sectors_per_track = vtoc[0x35]
    bytes_per_sector = vtoc[0x36] | (vtoc[0x37] << 8)

    if sectors_per_track != SECTORS_PER_TRACK or bytes_per_sector != SECTOR_SIZE:
        return False
    if catalog_track == 0 or catalog_track >= min(tracks or 35, image.total_tracks):
        return False
    return catalog_sector < SECTORS_PER_TRACK


class AppleDOS33Volume:
    """Catalog reader for an Apple DOS 3.3 disk image"""

    def __init__(self, image):
        self.image = image
        self.vtoc = self._read_sector(VTOC_TRACK, VTOC_SECTOR)

    def _read_sector(self, track, sector):
        """Read a 256-byte sector from the disk image"""
        return self.image.read_sector(track, sector)

    def _parse_catalog(self):
        """Parse the DOS 3.3 catalog sector chain into entries"""
        entries = []
        visited = set()
        current_track = self.vtoc[1]
        current_sector = self.vtoc[2]

        while current_track != 0:
            if (current_track, current_sector) in visited:
                raise CircularDirectory(
                    f"Catalog sector T{current_track} S{current_sector} visited twice")
            visited.add((current_track, current_sector))

            try:
                sector_data = self._read_sector(current_track, current_sector)
            except OutOfBounds:
                logger.warning(f"Catalog chain leaves the disk at T{current_track} S{current_sector}")
                break

            # Each catalog sector contains up to 7 file entries
            for i in range(ENTRIES_PER_SECTOR):
                offset = 11 + (i * ENTRY_SIZE)
                entry = self._parse_entry(sector_data[offset:offset + ENTRY_SIZE])
                if entry is not None:
                    entries.append(entry)

            current_track = sector_data[1]
            current_sector = sector_data[2]

        return tuple(entries)

    def _parse_entry(self, entry):
        ts_track = entry[0]
        if ts_track == 0 or ts_track == 0xFF:
            return None

        # Filename is 30 bytes with the high bit set
        filename = "".join([chr(b & 0x7F) for b in entry[3:33] if b != 0]).strip()
        if not filename:
            return None

        raw_type = entry[2] & 0x7F
        locked = bool(entry[2] & 0x80)
        sector_count = entry[33] | (entry[34] << 8)
        label, prodos_type = FILE_TYPES.get(raw_type, (f"${raw_type:02X}", 0x00))

        extents = self._read_file_extents(filename, ts_track, entry[1])
        content = ContentView(self.image.data, extents)
        content, load_address, length = self._strip_header(raw_type, content)

        return CatalogEntry(
            name=filename,
            file_type=raw_type,
            prodos_type=prodos_type,
            type_label=label,
            aux_type=load_address or 0,
            size=len(content),
            blocks=sector_count,
            load_address=load_address,
            length=length,
            content=content,
            is_image=looks_like_disk_image(content),
            locked=locked,
        )

    def _read_file_extents(self, filename, ts_track, ts_sector):
        """Follow the T/S list chain, returning data sector extents"""
        extents = []
        visited = set()

        while ts_track != 0:
            if (ts_track, ts_sector) in visited:
                logger.warning(f"{filename}: T/S list loops back to T{ts_track} S{ts_sector}")
                break
            visited.add((ts_track, ts_sector))

            try:
                ts_list = self._read_sector(ts_track, ts_sector)
            except OutOfBounds:
                logger.warning(f"{filename}: T/S list at T{ts_track} S{ts_sector} is off the disk")
                break

            # Each T/S list sector has up to 122 track/sector pairs
            for i in range(TS_PAIRS_PER_SECTOR):
                offset = 12 + (i * 2)
                track = ts_list[offset]
                sector = ts_list[offset + 1]
                if track == 0:
                    break
                try:
                    extents.append((self.image.sector_offset(track, sector), SECTOR_SIZE))
                except OutOfBounds:
                    logger.warning(f"{filename}: data sector T{track} S{sector} is off the disk")
                    return extents

            ts_track = ts_list[1]
            ts_sector = ts_list[2]

        return extents

    @staticmethod
    def _strip_header(raw_type, content):
        """Remove the length (and address) prefix DOS stores ahead of A, I and B files"""
        data = content.tobytes()
        if raw_type in (0x01, 0x02, 0x20) and len(data) >= 2:
            length = data[0] | (data[1] << 8)
            return content.sliced(2, length), None, length
        if raw_type in (0x04, 0x40) and len(data) >= 4:
            address = data[0] | (data[1] << 8)
            length = data[2] | (data[3] << 8)
            return content.sliced(4, length), address, length
        return content, None, len(data)


def read_catalog(image, name=""):
    """Build the catalog of a DOS 3.3 disk"""
    volume = AppleDOS33Volume(image)
    entries = volume._parse_catalog()
    volume_number = volume.vtoc[6]
    return DiskCatalog(
        volume_name=name or f"DISK VOLUME {volume_number}",
        disk_format=FORMAT_NAME,
        disk_size=len(image),
        entries=entries,
        order=image.order,
    )
