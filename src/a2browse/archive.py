"""
gzip, ZIP and Binary II containers
Disk images are often distributed compressed, and single files in Binary II
wrappers.  Headers are walked by hand so damaged archives give a precise
diagnostic; the deflate step itself is a pluggable callable that defaults to
zlib.
"""

import datetime
import logging
import struct
import zlib
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import (CorruptArchive, DecodeError, MalformedHeader, TooShort,
                     UnrecognizedFormat, UnsupportedMethod)
from .prodos import decode_datetime

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
GZIP_HEADER_SIZE = 10
GZIP_TRAILER_SIZE = 8
METHOD_STORED = 0
METHOD_DEFLATE = 8

FHCRC = 0x02
FEXTRA = 0x04
FNAME = 0x08
FCOMMENT = 0x10

ZIP_LOCAL_HEADER = b"PK\x03\x04"
ZIP_LOCAL_HEADER_SIZE = 30

BINARY_II_MAGIC = b"\x0aGL"
BINARY_II_HEADER_SIZE = 128
BINARY_II_ID = 0x02
BINARY_II_NAME_SIZE = 64


@dataclass(frozen=True)
class GzipHeader:
    flags: int
    mtime: int
    filename: Optional[str]
    comment: Optional[str]
    data_offset: int


@dataclass(frozen=True)
class ArchiveEntry:
    filename: str
    compressed_size: int
    uncompressed_size: int
    method: int
    crc32: int
    data_offset: int
    modified: Optional[datetime.datetime] = None

    @property
    def is_directory(self) -> bool:
        return self.filename.endswith("/")


@dataclass(frozen=True)
class BinaryIIEntry:
    filename: str
    file_type: int
    aux_type: int
    access: int
    storage_type: int
    blocks: int
    length: int
    data_offset: int
    modified: Optional[datetime.datetime] = None
    created: Optional[datetime.datetime] = None

    @property
    def is_directory(self) -> bool:
        return self.file_type == 0x0F


def raw_inflate(data, expected_size: int) -> bytes:
    """Inflate a raw deflate stream (no zlib or gzip wrapper)"""
    decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
    try:
        out = decompressor.decompress(data) + decompressor.flush()
    except zlib.error as e:
        raise CorruptArchive(f"Deflate stream is damaged: {e}") from e
    if not decompressor.eof:
        raise CorruptArchive("Deflate stream ends early")
    # gzip stores the size modulo 2**32
    if len(out) & 0xFFFFFFFF != expected_size:
        logger.warning(f"Inflated {len(out)} bytes, expected {expected_size}")
    return out


def is_gzip(data) -> bool:
    return bytes(data[:2]) == GZIP_MAGIC


def is_zip(data) -> bool:
    return bytes(data[:4]) == ZIP_LOCAL_HEADER


def _cstring_end(data, offset, field):
    end = data.find(b"\x00", offset)
    if end < 0:
        raise MalformedHeader(f"gzip {field} is not terminated")
    return end


def read_gzip_header(data) -> GzipHeader:
    """Walk the gzip member header up to the start of the deflate data"""
    data = bytes(data)
    if not is_gzip(data):
        raise UnrecognizedFormat("Not gzip data")
    if len(data) < GZIP_HEADER_SIZE + GZIP_TRAILER_SIZE:
        raise TooShort(f"gzip data of {len(data)} bytes")
    method, flags, mtime = struct.unpack_from("<BBI", data, 2)
    if method != METHOD_DEFLATE:
        raise UnsupportedMethod(f"gzip compression method {method}")

    offset = GZIP_HEADER_SIZE
    filename = comment = None
    if flags & FEXTRA:
        if offset + 2 > len(data):
            raise MalformedHeader("gzip extra field length missing")
        offset += 2 + struct.unpack_from("<H", data, offset)[0]
        if offset > len(data):
            raise MalformedHeader("gzip extra field runs past end of data")
    if flags & FNAME:
        end = _cstring_end(data, offset, "filename")
        filename = data[offset:end].decode("latin-1")
        offset = end + 1
    if flags & FCOMMENT:
        end = _cstring_end(data, offset, "comment")
        comment = data[offset:end].decode("latin-1")
        offset = end + 1
    if flags & FHCRC:
        offset += 2
    if offset > len(data) - GZIP_TRAILER_SIZE:
        raise MalformedHeader("gzip header runs into the trailer")
    return GzipHeader(flags, mtime, filename, comment, offset)


def gunzip(data, inflate=raw_inflate) -> bytes:
    """Decompress a gzip member, checking the trailer CRC32"""
    data = bytes(data)
    header = read_gzip_header(data)
    crc, size = struct.unpack_from("<II", data, len(data) - GZIP_TRAILER_SIZE)
    out = inflate(data[header.data_offset:len(data) - GZIP_TRAILER_SIZE], size)
    if zlib.crc32(out) & 0xFFFFFFFF != crc:
        raise CorruptArchive(f"gzip CRC32 mismatch, expected {crc:08X}")
    logger.debug(f"gunzip {header.filename or '(unnamed)'}: {len(out)} bytes")
    return out


def dos_datetime(date: int, time: int) -> Optional[datetime.datetime]:
    """Unpack MS-DOS date and time words"""
    try:
        return datetime.datetime(
            ((date >> 9) & 0x7F) + 1980, (date >> 5) & 0x0F, date & 0x1F,
            (time >> 11) & 0x1F, (time >> 5) & 0x3F, (time & 0x1F) * 2)
    except ValueError:
        return None


def _zip_filename(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("cp437")


def list_zip(data) -> Tuple[ArchiveEntry, ...]:
    """Walk the local file headers from the start of the archive"""
    data = bytes(data)
    if not is_zip(data):
        raise UnrecognizedFormat("Not a ZIP archive")
    if len(data) < ZIP_LOCAL_HEADER_SIZE:
        raise TooShort(f"ZIP data of {len(data)} bytes")

    entries = []
    offset = 0
    while offset + ZIP_LOCAL_HEADER_SIZE <= len(data) and \
            data[offset:offset + 4] == ZIP_LOCAL_HEADER:
        (method, time, date, crc, compressed_size, uncompressed_size, name_length,
         extra_length) = struct.unpack_from("<HHHIIIHH", data, offset + 8)
        name_start = offset + ZIP_LOCAL_HEADER_SIZE
        data_offset = name_start + name_length + extra_length
        if data_offset > len(data):
            logger.warning(f"ZIP header at {offset} runs past end of data")
            break
        entries.append(ArchiveEntry(
            _zip_filename(data[name_start:name_start + name_length]),
            compressed_size, uncompressed_size, method, crc, data_offset,
            dos_datetime(date, time)))
        offset = data_offset + compressed_size
    return tuple(entries)


def extract_zip_entry(data, entry: ArchiveEntry, inflate=raw_inflate) -> bytes:
    end = entry.data_offset + entry.compressed_size
    if end > len(data):
        raise MalformedHeader(f"{entry.filename}: data runs past end of archive")
    payload = bytes(data[entry.data_offset:end])
    if entry.method == METHOD_STORED:
        out = payload
    elif entry.method == METHOD_DEFLATE:
        out = inflate(payload, entry.uncompressed_size)
    else:
        raise UnsupportedMethod(f"{entry.filename}: compression method {entry.method}")
    if zlib.crc32(out) & 0xFFFFFFFF != entry.crc32:
        raise CorruptArchive(f"{entry.filename}: CRC32 mismatch")
    return out


def extract_all(data, inflate=raw_inflate):
    """(filename, bytes) for every file entry that can be extracted"""
    results = []
    for entry in list_zip(data):
        if entry.is_directory:
            continue
        try:
            results.append((entry.filename, extract_zip_entry(data, entry, inflate)))
        except DecodeError as e:
            logger.warning(f"Skipping {entry.filename}: {e.diagnostic}")
    return results


def is_binary_ii(data) -> bool:
    return len(data) >= BINARY_II_HEADER_SIZE and bytes(data[:3]) == BINARY_II_MAGIC


def list_binary_ii(data) -> Tuple[BinaryIIEntry, ...]:
    """Walk the 128-byte headers of a Binary II archive"""
    data = bytes(data)
    if bytes(data[:3]) != BINARY_II_MAGIC:
        raise UnrecognizedFormat("Not a Binary II archive")
    if len(data) < BINARY_II_HEADER_SIZE:
        raise TooShort(f"Binary II data of {len(data)} bytes")

    entries = []
    offset = 0
    while offset + BINARY_II_HEADER_SIZE <= len(data) and \
            data[offset:offset + 3] == BINARY_II_MAGIC:
        header = data[offset:offset + BINARY_II_HEADER_SIZE]
        (access, file_type, aux_type, storage_type, blocks, modified_date, modified_time,
         created_date, created_time, id_byte) = struct.unpack_from("<BBHBHHHHHB", header, 3)
        if id_byte != BINARY_II_ID:
            logger.debug(f"Binary II header at {offset} has ID byte ${id_byte:02X}")
        length = header[20] | (header[21] << 8) | (header[22] << 16)
        name_length = min(header[23], BINARY_II_NAME_SIZE)
        filename = bytes(b & 0x7F for b in header[24:24 + name_length]).decode("latin-1")

        data_offset = offset + BINARY_II_HEADER_SIZE
        entries.append(BinaryIIEntry(
            filename, file_type, aux_type, access, storage_type, blocks, length,
            data_offset,
            decode_datetime(modified_date, modified_time & 0xFF, modified_time >> 8),
            decode_datetime(created_date, created_time & 0xFF, created_time >> 8)))
        # File data is padded to a whole number of headers
        padded = -(-length // BINARY_II_HEADER_SIZE) * BINARY_II_HEADER_SIZE
        offset = data_offset + padded
    return tuple(entries)


def extract_binary_ii_entry(data, entry: BinaryIIEntry) -> bytes:
    end = entry.data_offset + entry.length
    if end > len(data):
        raise MalformedHeader(f"{entry.filename}: data runs past end of archive")
    return bytes(data[entry.data_offset:end])


def unwrap_archive(data, inflate=raw_inflate) -> bytes:
    """Strip a gzip, ZIP or Binary II wrapper; anything else is returned unchanged"""
    if is_gzip(data):
        return gunzip(data, inflate)
    if is_zip(data):
        for entry in list_zip(data):
            if entry.is_directory or entry.uncompressed_size == 0:
                continue
            logger.info(f"Using {entry.filename} from ZIP archive")
            return extract_zip_entry(data, entry, inflate)
        raise UnrecognizedFormat("ZIP archive holds no files")
    if is_binary_ii(data):
        for entry in list_binary_ii(data):
            if entry.is_directory or entry.length == 0:
                continue
            logger.info(f"Using {entry.filename} from Binary II archive")
            return extract_binary_ii_entry(data, entry)
        raise UnrecognizedFormat("Binary II archive holds no files")
    return bytes(data)
