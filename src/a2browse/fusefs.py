"""
Read-only FUSE view of a disk image catalog
Works for every filesystem the catalog walker understands.  Subdirectories
become directories; file contents are served from the image buffer.
"""

import errno
import logging
import os
import time
import ctypes.util

from .archive import unwrap_archive
from .diskimage import walk_catalog

logger = logging.getLogger(__name__)

# Monkeypatch find_library to support fuse-t on macOS
_original_find_library = ctypes.util.find_library


def _find_library(name):
    if name == 'fuse':
        # Check for fuse-t
        if os.path.exists('/usr/local/lib/libfuse-t.dylib'):
            return '/usr/local/lib/libfuse-t.dylib'
    return _original_find_library(name)


ctypes.util.find_library = _find_library

from fuse import FUSE, FuseOSError, Operations  # noqa: E402


def _safe_name(name):
    return name.replace('/', '-') or '_'


class CatalogFS(Operations):
    """FUSE filesystem over a DiskCatalog"""

    def __init__(self, catalog):
        self.catalog = catalog
        self.mount_time = time.time()
        self.entries = {}   # path -> CatalogEntry
        self.listing = {'/': []}
        self._file_cache = {}
        self._add_level('/', catalog.entries)

    def _add_level(self, parent, entries):
        """Register a directory level, renaming duplicates"""
        seen = set()
        for entry in entries:
            name = _safe_name(entry.name)
            candidate = name
            count = 2
            while candidate in seen:
                candidate = f"{name} ({count})"
                count += 1
            seen.add(candidate)

            path = parent.rstrip('/') + '/' + candidate
            self.entries[path] = entry
            self.listing[parent].append(candidate)
            if entry.is_directory:
                self.listing[path] = []
                self._add_level(path, entry.children)

    def _timestamp(self, moment):
        return moment.timestamp() if moment else self.mount_time

    def _file_data(self, path):
        """Content of a file, cached after the first read"""
        if path not in self._file_cache:
            self._file_cache[path] = self.entries[path].data
        return self._file_cache[path]

    # FUSE Operations
    # ===============

    def getattr(self, path, fh=None):
        """Get file/directory attributes"""
        if path == '/':
            return dict(st_mode=(0o40555), st_nlink=2, st_mtime=self.mount_time,
                        st_ctime=self.mount_time, st_atime=self.mount_time)

        entry = self.entries.get(path)
        if entry is None:
            raise FuseOSError(errno.ENOENT)

        mtime = self._timestamp(entry.modified)
        ctime = self._timestamp(entry.created or entry.modified)
        if entry.is_directory:
            return dict(st_mode=(0o40555), st_nlink=2, st_mtime=mtime,
                        st_ctime=ctime, st_atime=mtime)
        return dict(st_mode=(0o100444), st_nlink=1, st_size=len(entry.content),
                    st_mtime=mtime, st_ctime=ctime, st_atime=mtime)

    def readdir(self, path, fh):
        """List directory contents"""
        if path not in self.listing:
            raise FuseOSError(errno.ENOTDIR if path in self.entries else errno.ENOENT)
        return ['.', '..'] + self.listing[path]

    def read(self, path, length, offset, fh):
        """Read data from file"""
        entry = self.entries.get(path)
        if entry is None:
            raise FuseOSError(errno.ENOENT)
        if entry.is_directory:
            raise FuseOSError(errno.EISDIR)
        data = self._file_data(path)
        return data[offset:offset + length]


def load_catalog(image_path: str, order=None):
    """Read an image file, unwrapping gzip/ZIP, and walk its catalog"""
    with open(image_path, 'rb') as f:
        data = f.read()
    return walk_catalog(unwrap_archive(data), order=order,
                        name=os.path.basename(image_path))


def mount(image_path: str, mount_point: str, foreground: bool = True, order=None):
    """Mount a disk image read-only"""
    if not os.path.exists(mount_point):
        os.makedirs(mount_point)

    catalog = load_catalog(image_path, order)
    logger.info(f"Mounting {catalog.volume_name} ({catalog.disk_format}) on {mount_point}")
    FUSE(CatalogFS(catalog), mount_point, nothreads=True, foreground=foreground, ro=True)
