"""
Apple II disk image browser
Decoders for ProDOS, DOS 3.3 and UCSD Pascal disk images and the files found
on them: BASIC programs, AppleWorks documents, graphics and icons.
"""

__version__ = "0.2.0"

from .errors import DecodeError, UnrecognizedFormat, TooShort, CircularDirectory  # noqa: E402
from .diskimage import walk_catalog  # noqa: E402
from .classify import ContentKind, classify, decode_content, decode_entry  # noqa: E402

__all__ = [
    "DecodeError", "UnrecognizedFormat", "TooShort", "CircularDirectory",
    "walk_catalog", "ContentKind", "classify", "decode_content", "decode_entry",
]
