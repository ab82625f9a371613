"""
Catalog data model
Entry tree shared by the ProDOS, DOS 3.3 and UCSD Pascal walkers.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional, Tuple

# Sizes of the disk images commonly found nested inside archives
NESTED_IMAGE_SIZES = (143360, 163840, 409600, 819200)


class ContentView:
    """Lazy view of a file's bytes: the shared image buffer plus (offset, length) extents.

    A zero-length extent at offset -1 stands for a sparse block that reads as zeros.
    """

    __slots__ = ('_buffer', 'extents', '_length')

    def __init__(self, buffer, extents=()):
        self._buffer = buffer
        self.extents = tuple(extents)
        self._length = sum(length for _, length in self.extents)

    @classmethod
    def from_bytes(cls, data: bytes) -> 'ContentView':
        return cls(data, ((0, len(data)),))

    def __len__(self):
        return self._length

    def __bytes__(self):
        return self.tobytes()

    def tobytes(self) -> bytes:
        parts = []
        for offset, length in self.extents:
            if offset < 0:
                parts.append(bytes(length))
            else:
                parts.append(bytes(self._buffer[offset:offset + length]))
        return b''.join(parts)

    def truncated(self, size: int) -> 'ContentView':
        """Return a view clipped to the first ``size`` bytes"""
        kept = []
        left = size
        for offset, length in self.extents:
            if left <= 0:
                break
            take = min(length, left)
            kept.append((offset, take))
            left -= take
        return ContentView(self._buffer, kept)

    def sliced(self, start: int, length: int) -> 'ContentView':
        """Return a view of ``length`` bytes beginning ``start`` bytes in"""
        kept = []
        skip = start
        for offset, size in self.extents:
            if skip >= size:
                skip -= size
                continue
            kept.append((offset + skip if offset >= 0 else offset, size - skip))
            skip = 0
        return ContentView(self._buffer, kept).truncated(length)

    def __eq__(self, other):
        if isinstance(other, ContentView):
            return self.tobytes() == other.tobytes()
        if isinstance(other, (bytes, bytearray)):
            return self.tobytes() == bytes(other)
        return NotImplemented

    def __hash__(self):
        return hash(self.tobytes())

    def __repr__(self):
        return f"ContentView({self._length} bytes in {len(self.extents)} extents)"


EMPTY = ContentView(b'')


def looks_like_disk_image(data) -> bool:
    """True for content that is itself a disk image (by size or 2IMG magic)"""
    if len(data) in NESTED_IMAGE_SIZES:
        return True
    head = bytes(data[:4]) if not isinstance(data, ContentView) else data.truncated(4).tobytes()
    return head == b'2IMG'


@dataclass(frozen=True)
class CatalogEntry:
    name: str
    file_type: int
    type_label: str
    size: int
    prodos_type: int = 0
    aux_type: int = 0
    blocks: Optional[int] = None
    load_address: Optional[int] = None
    length: Optional[int] = None
    content: ContentView = EMPTY
    is_directory: bool = False
    is_image: bool = False
    children: Tuple['CatalogEntry', ...] = ()
    created: Optional[datetime] = None
    modified: Optional[datetime] = None
    locked: bool = False
    # ProDOS metadata
    storage_type: Optional[int] = None
    key_pointer: Optional[int] = None
    access: Optional[int] = None
    version: Optional[int] = None
    min_version: Optional[int] = None
    header_pointer: Optional[int] = None
    # Diagnostic for a directory that could not be read
    damaged: Optional[str] = None

    @property
    def data(self) -> bytes:
        return self.content.tobytes()

    @property
    def storage_type_description(self) -> str:
        names = {
            0x00: "Deleted",
            0x01: "Seedling",
            0x02: "Sapling",
            0x03: "Tree",
            0x04: "Pascal Area",
            0x05: "Extended",
            0x0D: "Subdirectory",
            0x0E: "Subdirectory Header",
            0x0F: "Volume Directory Header",
        }
        if self.storage_type is None:
            return "Unknown"
        return names.get(self.storage_type, f"${self.storage_type:02X}")

    @property
    def access_description(self) -> str:
        if self.access is None:
            return "Unknown"
        parts = []
        for bit, label in ((0x80, "destroy"), (0x40, "rename"), (0x20, "changed"),
                           (0x02, "write"), (0x01, "read")):
            if self.access & bit:
                parts.append(label)
        return ", ".join(parts) if parts else "none"

    @property
    def size_string(self) -> str:
        if self.size < 1024:
            return f"{self.size} B"
        if self.size < 1024 * 1024:
            return f"{self.size / 1024.0:.1f} KB"
        return f"{self.size / (1024.0 * 1024.0):.1f} MB"

    def walk(self) -> Iterator['CatalogEntry']:
        """Yield this entry and every descendant, depth first"""
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass(frozen=True)
class DiskCatalog:
    volume_name: str
    disk_format: str
    disk_size: int
    entries: Tuple[CatalogEntry, ...]
    order: str = "prodos"

    def all_entries(self):
        result = []
        for entry in self.entries:
            result.extend(entry.walk())
        return result

    @property
    def total_files(self) -> int:
        return sum(1 for entry in self.all_entries() if not entry.is_directory)

    @property
    def image_files(self) -> int:
        return sum(1 for entry in self.all_entries() if entry.is_image)

    def find(self, path: str) -> Optional[CatalogEntry]:
        """Look up an entry by slash-separated path, case-insensitively"""
        parts = [p for p in path.strip('/').split('/') if p]
        if not parts:
            return None
        level = self.entries
        found = None
        for part in parts:
            found = next((e for e in level if e.name.upper() == part.upper()), None)
            if found is None:
                return None
            level = found.children
        return found
