"""
Content classification
Picks a decoder for a file from its ProDOS type, aux type and a look at the
bytes themselves, then runs it.
"""

import enum
import logging
from collections import namedtuple

from . import appleworks, archive, basic, graphics, icons, textfile
from .catalog import looks_like_disk_image
from .diskimage import walk_catalog
from .errors import UnrecognizedFormat

logger = logging.getLogger(__name__)

TEXT_SAMPLE_SIZE = 256
TEXT_THRESHOLD = 0.8

# ProDOS file types
TXT = 0x04
BIN = 0x06
PTX = 0x03
FOT = 0x08
PNT = 0xC0
PIC = 0xC1
ICN = 0xCA
APP = 0xB3
INT = 0xFA
BAS = 0xFC


class ContentKind(enum.Enum):
    DISK_IMAGE = "disk image"
    GZIP = "gzip archive"
    ZIP = "ZIP archive"
    BINARY_II = "Binary II archive"
    APPLESOFT = "Applesoft BASIC"
    INTEGER_BASIC = "Integer BASIC"
    APPLEWORKS = "AppleWorks document"
    TEACH = "Teach document"
    GRAPHICS = "graphics"
    ICONS = "icons"
    PASCAL_TEXT = "Pascal text"
    TEXT = "text"
    BINARY = "binary"


Decoded = namedtuple("Decoded", "kind value")


def _likely_graphics(data, aux_type) -> bool:
    if graphics.is_apf(data):
        return True
    return graphics.identify_raster(len(data), aux_type, BIN) is not None


def _likely_text(data) -> bool:
    if not len(data):
        return False
    return textfile.printable_ratio(data[:TEXT_SAMPLE_SIZE]) > TEXT_THRESHOLD


def classify(file_type: int, aux_type: int, data) -> ContentKind:
    """Decide how a file should be decoded"""
    data = bytes(data)
    if archive.is_gzip(data):
        return ContentKind.GZIP
    if archive.is_zip(data):
        return ContentKind.ZIP
    if archive.is_binary_ii(data):
        return ContentKind.BINARY_II
    if looks_like_disk_image(data):
        return ContentKind.DISK_IMAGE

    if file_type == TXT:
        return ContentKind.TEXT
    if file_type == PTX:
        return ContentKind.PASCAL_TEXT
    if file_type == BAS:
        if basic.is_valid_program(data, basic.Dialect.APPLESOFT):
            return ContentKind.APPLESOFT
        return ContentKind.BINARY
    if file_type == INT:
        if basic.is_valid_program(data, basic.Dialect.INTEGER):
            return ContentKind.INTEGER_BASIC
        return ContentKind.BINARY
    document = appleworks.document_kind(file_type, aux_type)
    if document == appleworks.DocumentKind.TEACH:
        return ContentKind.TEACH
    if document is not None:
        return ContentKind.APPLEWORKS
    if file_type == ICN:
        return ContentKind.ICONS
    if file_type in (FOT, PNT, PIC):
        return ContentKind.GRAPHICS
    if file_type in (BIN, APP):
        if _likely_graphics(data, aux_type):
            return ContentKind.GRAPHICS
        return ContentKind.BINARY
    if _likely_text(data):
        return ContentKind.TEXT
    return ContentKind.BINARY


def decode_content(data, file_type: int, aux_type: int = 0, name="") -> Decoded:
    """Classify and decode a file's bytes

    gzip data is inflated and its payload decoded in turn, so the value of a
    GZIP result is itself a Decoded.
    """
    data = bytes(data)
    kind = classify(file_type, aux_type, data)
    logger.debug(f"{name or 'content'}: {len(data)} bytes, type ${file_type:02X}, "
                 f"aux ${aux_type:04X} -> {kind.value}")

    if kind == ContentKind.DISK_IMAGE:
        value = walk_catalog(data, name=name)
    elif kind == ContentKind.GZIP:
        value = decode_content(archive.gunzip(data), file_type, aux_type, name)
    elif kind == ContentKind.ZIP:
        value = archive.list_zip(data)
    elif kind == ContentKind.BINARY_II:
        value = archive.list_binary_ii(data)
    elif kind == ContentKind.APPLESOFT:
        value = basic.detokenize(data, basic.Dialect.APPLESOFT)
    elif kind == ContentKind.INTEGER_BASIC:
        value = basic.detokenize(data, basic.Dialect.INTEGER)
    elif kind in (ContentKind.APPLEWORKS, ContentKind.TEACH):
        value = appleworks.decode_document(data, file_type, aux_type)
    elif kind == ContentKind.GRAPHICS:
        value = graphics.decode_raster(data, file_type, aux_type)
    elif kind == ContentKind.ICONS:
        value = icons.decode_icons(data)
    elif kind == ContentKind.PASCAL_TEXT:
        value = textfile.expand_pascal_text(data)
    elif kind == ContentKind.TEXT:
        value = textfile.decode_apple_text(data)
    else:
        value = data
    return Decoded(kind, value)


def decode_entry(entry) -> Decoded:
    """Decode the content of a catalog entry"""
    if entry.is_directory:
        raise UnrecognizedFormat(f"{entry.name} is a directory")
    return decode_content(entry.content, entry.prodos_type, entry.aux_type, entry.name)
