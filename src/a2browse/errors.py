"""
Decode errors
Every decoder raises one of these on malformed input.  ``recognized`` tells a
caller whether the bytes looked like the format at all ("not recognized")
or were recognized but damaged ("corrupt").
"""


class DecodeError(Exception):
    """Base class for all decode failures"""

    recognized = True

    def __init__(self, diagnostic=None):
        if diagnostic is None:
            diagnostic = self.__class__.__doc__
        super().__init__(diagnostic)
        self.diagnostic = diagnostic


class OutOfBounds(DecodeError):
    """Read past end of data"""


class UnrecognizedFormat(DecodeError):
    """Format not recognized"""

    recognized = False


class TooShort(DecodeError):
    """Data too short"""

    recognized = False


class CircularDirectory(DecodeError):
    """Directory structure loops back on itself"""


class CorruptDocument(DecodeError):
    """Document structure is damaged"""


class CorruptProgram(DecodeError):
    """Program structure is damaged"""


class MalformedHeader(DecodeError):
    """Archive header is malformed"""


class UnsupportedMethod(DecodeError):
    """Unsupported compression method"""


class CorruptArchive(DecodeError):
    """Compressed data is damaged"""
