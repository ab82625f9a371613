"""
AppleWorks document decoder
Classic AppleWorks word processor, database and spreadsheet files, plus the
AppleWorks GS word processor.  Teach documents share the GWP file type and
are read from their data fork text.  Each decode is all-or-nothing: a
damaged body raises CorruptDocument instead of returning a partial document.
"""

import enum
import logging
import struct
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .bytereader import ByteReader
from .errors import CorruptDocument, OutOfBounds, TooShort, UnrecognizedFormat

logger = logging.getLogger(__name__)


class DocumentKind(enum.Enum):
    WORD_PROCESSOR = 0x1A
    DATABASE = 0x19
    SPREADSHEET = 0x1B
    GS_WORD_PROCESSOR = 0x50
    # GWP files with aux type 'TE'
    TEACH = 0x5445


class WPVariant(enum.Enum):
    CLASSIC = "classic"
    ENHANCED = "enhanced"
    TEACH = "teach"


class Alignment(enum.Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"
    JUSTIFIED = "justified"


@dataclass(frozen=True)
class TextStyle:
    bold: bool = False
    italic: bool = False
    underline: bool = False
    superscript: bool = False
    subscript: bool = False


PLAIN = TextStyle()


@dataclass(frozen=True)
class TextRun:
    """Run of text with no font of its own (classic AppleWorks, Teach)"""
    text: str
    style: TextStyle = PLAIN


@dataclass(frozen=True)
class FontedTextRun:
    """Run of AppleWorks GS text with its own font, size and palette colour"""
    text: str
    style: TextStyle
    font_family: int
    point_size: int
    color_index: int


@dataclass(frozen=True)
class Line:
    runs: Tuple[Union[TextRun, FontedTextRun], ...]
    alignment: Alignment = Alignment.LEFT

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


@dataclass(frozen=True)
class RGBColor:
    red: int
    green: int
    blue: int

    @classmethod
    def from_iigs(cls, word: int) -> 'RGBColor':
        """Expand a IIgs $0RGB colour word to 8 bits per channel"""
        return cls(((word >> 8) & 0x0F) * 17, ((word >> 4) & 0x0F) * 17, (word & 0x0F) * 17)


@dataclass(frozen=True)
class WordProcessorDoc:
    variant: WPVariant
    lines: Tuple[Line, ...]
    palette: Optional[Tuple[RGBColor, ...]] = None

    @property
    def fixed_pitch(self) -> bool:
        return self.variant == WPVariant.CLASSIC

    @property
    def plain_text(self) -> str:
        return "\n".join(line.text for line in self.lines)


@dataclass(frozen=True)
class DatabaseDoc:
    categories: Tuple[str, ...]
    records: Tuple[Tuple[str, ...], ...]

    @property
    def plain_text(self) -> str:
        rows = [self.categories] + list(self.records)
        return "\n".join("\t".join(row) for row in rows)


@dataclass(frozen=True)
class SpreadsheetDoc:
    max_column: int
    rows: Tuple[Tuple[str, ...], ...]

    @property
    def max_row(self) -> int:
        return len(self.rows)

    @property
    def plain_text(self) -> str:
        return "\n".join("\t".join(row) for row in self.rows)


AppleWorksDocument = Union[WordProcessorDoc, DatabaseDoc, SpreadsheetDoc]

PAGE_BREAK = "--- Page Break ---"

# Word processor
AWP_HEADER_SIZE = 300
AWP_SIGNATURE_OFFSET = 4
AWP_SIGNATURE = 0x4F
AWP_MIN_VERS_OFFSET = 183

CODE_TEXT = 0x00
CODE_CARRIAGE_RETURN = 0xD0
CMD_RIGHT_JUSTIFY = 0xD7
CMD_JUSTIFY = 0xDF
CMD_UNJUSTIFY = 0xE0
CMD_CENTER = 0xE1
CMD_NEW_PAGE = 0xE9

# Style toggles: code -> (attribute, on)
AWP_STYLE_CODES = {
    0x01: ('bold', True),
    0x02: ('bold', False),
    0x03: ('superscript', True),
    0x04: ('superscript', False),
    0x05: ('subscript', True),
    0x06: ('subscript', False),
    0x07: ('underline', True),
    0x08: ('underline', False),
}
AWP_SPECIAL_CODES = {
    0x09: "#",
    0x0B: " ",
    0x0E: "[DATE]",
    0x0F: "[TIME]",
    0x16: "\t",
    0x17: "\t",
}

# AppleWorks GS word processor
GWP_HEADER_SIZE = 282
GWP_GLOBALS_SIZE = 386
GWP_RULER_SIZE = 52
GWP_VERSIONS = (0x1011, 0x0006)
GWP_PALETTE_OFFSET = 0x38
GWP_SPECIAL_CODES = {0x05: "#", 0x06: "[DATE]", 0x07: "[TIME]", 0x09: "\t"}

# Database
ADB_HEADER_MIN_SIZE = 379
ADB_CATEGORY_OFFSET = 357
ADB_CATEGORY_SIZE = 22
ADB_REPORT_SIZE = 600
MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
          "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

# Spreadsheet
ASP_HEADER_SIZE = 300
ASP_MIN_VERS_OFFSET = 242

MOUSETEXT = (
    "@", "O", "v", ">", "?", "?", "|", "?",
    "<-", "...", "v", "^", "|", "CR", "?", "_",
    "->", "?", "-", "?", "?", "?", "+", "+",
    "{", "}", "[", "]", "|", "?", "?", " ",
)


def appleworks_char(byte: int) -> str:
    """Map an AppleWorks character byte, folding inverse text to normal"""
    if 0x20 <= byte < 0x80:
        return chr(byte)
    if 0x80 <= byte <= 0x9F:
        return chr(byte - 0x40)
    if 0xA0 <= byte <= 0xBF:
        return chr(byte - 0x80)
    if 0xC0 <= byte <= 0xDF:
        return MOUSETEXT[byte - 0xC0]
    if byte >= 0xE0:
        return chr(byte - 0x80)
    return "?"


def mac_roman_char(byte: int) -> str:
    if 0x20 <= byte < 0x80:
        return chr(byte)
    return bytes([byte]).decode('mac_roman')


def document_kind(file_type: int, aux_type: int = 0) -> Optional[DocumentKind]:
    """Document kind for a ProDOS file type, or None"""
    if file_type == 0x50:
        if aux_type == 0x8010:
            return DocumentKind.GS_WORD_PROCESSOR
        if aux_type == DocumentKind.TEACH.value:
            return DocumentKind.TEACH
        return None
    try:
        return DocumentKind(file_type)
    except ValueError:
        return None


class _RunBuilder:
    """Collects characters into runs, starting a new run whenever the attributes change"""

    def __init__(self, make_run):
        self.make_run = make_run
        self.runs = []
        self.text = []

    def append(self, text):
        self.text.append(text)

    def flush(self, *attributes):
        if self.text:
            self.runs.append(self.make_run("".join(self.text), *attributes))
            self.text = []


def _decode_awp(data):
    if len(data) < AWP_HEADER_SIZE:
        raise TooShort(f"Word processor file of {len(data)} bytes")
    if data[AWP_SIGNATURE_OFFSET] != AWP_SIGNATURE:
        raise UnrecognizedFormat("Missing AppleWorks word processor signature")

    reader = ByteReader(data, AWP_HEADER_SIZE)
    if data[AWP_MIN_VERS_OFFSET] >= 30:
        reader.skip(2)

    lines = []
    alignment = Alignment.LEFT
    while True:
        record_data = reader.read_u8()
        code = reader.read_u8()
        if record_data == 0xFF and code == 0xFF:
            break

        if code == CODE_TEXT:
            body = reader.read_bytes(record_data)
            line = _awp_text_record(body, alignment)
            if line is not None:
                lines.append(line)
        elif code == CODE_CARRIAGE_RETURN:
            lines.append(Line((), Alignment.LEFT))
        elif code == CMD_CENTER:
            alignment = Alignment.CENTER
        elif code == CMD_RIGHT_JUSTIFY:
            alignment = Alignment.RIGHT
        elif code == CMD_JUSTIFY:
            alignment = Alignment.JUSTIFIED
        elif code == CMD_UNJUSTIFY:
            alignment = Alignment.LEFT
        elif code == CMD_NEW_PAGE:
            lines.append(Line((TextRun(PAGE_BREAK),), Alignment.CENTER))

    return WordProcessorDoc(WPVariant.CLASSIC, tuple(lines))


def _awp_text_record(body, alignment):
    if len(body) < 2:
        raise CorruptDocument(f"Text record of {len(body)} bytes")
    if body[0] == 0xFF:
        # Ruler
        return None

    count = body[1] & 0x7F
    if 2 + count > len(body):
        raise CorruptDocument(f"Text record claims {count} bytes, holds {len(body) - 2}")

    style = {}
    builder = _RunBuilder(lambda text, s: TextRun(text, TextStyle(**s)))
    for byte in body[2:2 + count]:
        if byte in AWP_STYLE_CODES:
            builder.flush(dict(style))
            attribute, on = AWP_STYLE_CODES[byte]
            style[attribute] = on
        elif byte in AWP_SPECIAL_CODES:
            builder.append(AWP_SPECIAL_CODES[byte])
        elif byte < 0x20:
            continue
        else:
            builder.append(appleworks_char(byte))
    builder.flush(dict(style))

    return Line(tuple(builder.runs), alignment)


def _decode_gwp(data):
    if len(data) < GWP_HEADER_SIZE + GWP_GLOBALS_SIZE + 10:
        raise TooShort(f"GS word processor file of {len(data)} bytes")

    reader = ByteReader(data)
    version = reader.u16_at(0)
    if version not in GWP_VERSIONS:
        raise UnrecognizedFormat(f"Unknown AppleWorks GS version ${version:04X}")
    if reader.u16_at(2) != GWP_HEADER_SIZE:
        raise UnrecognizedFormat("Unexpected AppleWorks GS header size")

    palette = tuple(RGBColor.from_iigs(reader.u16_at(GWP_PALETTE_OFFSET + i * 2))
                    for i in range(16))

    reader.seek(GWP_HEADER_SIZE + GWP_GLOBALS_SIZE)
    lines = _gwp_chunk(reader)
    return WordProcessorDoc(WPVariant.ENHANCED, tuple(lines), palette)


def _gwp_chunk(reader):
    """Decode the document body chunk: SaveArray, rulers, then the text block"""
    count = reader.read_u16le()
    if count == 0 or count == 0xFFFF:
        raise CorruptDocument(f"Invalid SaveArray count {count}")

    paragraphs = []
    max_ruler = 0
    for _ in range(count):
        entry = reader.read_bytes(12)
        attributes = entry[4] | (entry[5] << 8)
        ruler = entry[6] | (entry[7] << 8)
        paragraphs.append((ruler, attributes == 1))
        max_ruler = max(max_ruler, ruler)

    rulers = []
    for _ in range(max_ruler + 1):
        ruler = reader.read_bytes(GWP_RULER_SIZE)
        status = ruler[2] | (ruler[3] << 8)
        if status & 0x80:
            rulers.append(Alignment.JUSTIFIED)
        elif status & 0x40:
            rulers.append(Alignment.RIGHT)
        elif status & 0x20:
            rulers.append(Alignment.CENTER)
        else:
            rulers.append(Alignment.LEFT)

    block_length = reader.read_u32le()
    reader.skip(4)
    text = ByteReader(reader.read_bytes(block_length))

    lines = []
    for ruler, page_break in paragraphs:
        if page_break:
            lines.append(Line((FontedTextRun(PAGE_BREAK, PLAIN, 0, 12, 0),), Alignment.CENTER))
            continue
        if not text.remaining():
            break
        lines.append(_gwp_paragraph(text, rulers[ruler]))
    return lines


def _gwp_style(flags):
    return TextStyle(
        bold=bool(flags & 0x01),
        italic=bool(flags & 0x02),
        underline=bool(flags & 0x04),
        superscript=bool(flags & 0x40),
        subscript=bool(flags & 0x80),
    )


def _gwp_paragraph(text, alignment):
    font = text.read_u16le()
    style = text.read_u8()
    size = text.read_u8() or 12
    color = text.read_u8()
    text.skip(2)

    builder = _RunBuilder(lambda s, f, st, sz, c: FontedTextRun(s, _gwp_style(st), f, sz, c))
    while text.remaining():
        byte = text.read_u8()
        if byte == 0x0D:
            break
        if byte in (0x01, 0x02, 0x03, 0x04):
            builder.flush(font, style, size, color)
            if byte == 0x01:
                font = text.read_u16le()
            elif byte == 0x02:
                style = text.read_u8()
            elif byte == 0x03:
                size = text.read_u8() or 12
            else:
                color = text.read_u8()
        elif byte in GWP_SPECIAL_CODES:
            builder.append(GWP_SPECIAL_CODES[byte])
        elif byte < 0x20:
            continue
        else:
            builder.append(mac_roman_char(byte))
    builder.flush(font, style, size, color)

    return Line(tuple(builder.runs), alignment)


def _adb_date(field):
    """Date fields are stored as 'C' yy M dd with the month as a letter"""
    year = chr(field[1] & 0x7F) + chr(field[2] & 0x7F)
    day = chr(field[4] & 0x7F) + chr(field[5] & 0x7F)
    index = field[3] - ord("A")
    month = MONTHS[index] if 0 <= index < 12 else "???"
    return f"{day}-{month}-{year}"


def _adb_time(field):
    hour = field[1] - ord("A")
    minutes = chr(field[2] & 0x7F) + chr(field[3] & 0x7F)
    hour12 = 12 if hour == 0 else (hour - 12 if hour > 12 else hour)
    return f"{hour12}:{minutes} {'AM' if hour < 12 else 'PM'}"


def _adb_record(body, category_count):
    fields = [""] * category_count
    reader = ByteReader(body)
    index = 0
    while reader.remaining() and index < category_count:
        control = reader.read_u8()
        if control == 0xFF:
            break
        if 0x81 <= control <= 0x9E:
            index += control - 0x80
        elif 0x01 <= control <= 0x7F:
            field = reader.read_bytes(control)
            if control == 6 and field[0] == 0xC0:
                fields[index] = _adb_date(field)
            elif control == 4 and field[0] == 0xD4:
                fields[index] = _adb_time(field)
            else:
                fields[index] = "".join(appleworks_char(b) for b in field)
            index += 1
        else:
            raise CorruptDocument(f"Invalid record control byte ${control:02X}")
    return tuple(fields)


def _decode_adb(data):
    if len(data) < ADB_HEADER_MIN_SIZE:
        raise TooShort(f"Database file of {len(data)} bytes")

    reader = ByteReader(data)
    header_length = reader.u16_at(0)
    category_count = data[35]
    record_count = reader.u16_at(36) & 0x7FFF
    report_count = data[38]
    if header_length < ADB_HEADER_MIN_SIZE or header_length > len(data):
        raise UnrecognizedFormat(f"Implausible database header length {header_length}")
    if category_count < 1 or category_count > 30:
        raise UnrecognizedFormat(f"Implausible category count {category_count}")

    categories = []
    for i in range(category_count):
        offset = ADB_CATEGORY_OFFSET + i * ADB_CATEGORY_SIZE
        name_length = reader.u8_at(offset)
        if 0 < name_length <= 20:
            name = "".join(appleworks_char(b) for b in reader.bytes_at(offset + 1, name_length))
        else:
            name = f"Category {i + 1}"
        categories.append(name)

    reader.seek(header_length + report_count * ADB_REPORT_SIZE)
    # Standard values record
    reader.skip(reader.read_u16le())

    records = []
    while len(records) < record_count:
        length = reader.read_u16le()
        if length == 0xFFFF:
            break
        records.append(_adb_record(reader.read_bytes(length), category_count))

    return DatabaseDoc(tuple(categories), tuple(records))


def format_number(value: float) -> str:
    """Spreadsheet number display: integers plainly, everything else to 6 significant digits"""
    if value.is_integer() and abs(value) < 1e10:
        return "%.0f" % value
    return "%.6g" % value


def _asp_cell(cell):
    flags = cell[0]
    if not flags & 0x80:
        if flags & 0x20:
            # Propagated label
            return appleworks_char(cell[1]) * 8 if len(cell) >= 2 else ""
        return "".join(appleworks_char(b) for b in cell[1:])

    if len(cell) < 2:
        return ""
    if flags & 0x20 or not cell[1] & 0x08:
        # Constant, or formula with a cached result
        if len(cell) >= 10:
            return format_number(struct.unpack('<d', cell[2:10])[0])
        return ""

    # Formula with a display string
    if len(cell) >= 3 and len(cell) >= 3 + cell[2]:
        return "".join(appleworks_char(b) for b in cell[3:3 + cell[2]])
    return ""


def _decode_asp(data):
    if len(data) < ASP_HEADER_SIZE:
        raise TooShort(f"Spreadsheet file of {len(data)} bytes")

    reader = ByteReader(data, ASP_HEADER_SIZE)
    if data[ASP_MIN_VERS_OFFSET] != 0:
        reader.skip(2)

    cells = {}
    max_row = 0
    max_column = 0
    while True:
        if reader.peek(2) == b'\xff\xff':
            break
        row_length = reader.read_u16le()
        if row_length < 2:
            raise CorruptDocument(f"Row record of length {row_length}")
        row_number = reader.read_u16le()
        if row_number == 0:
            raise CorruptDocument("Row number 0")

        row = cells.setdefault(row_number, {})
        body = ByteReader(reader.read_bytes(row_length - 2))
        column = 0
        while body.remaining():
            control = body.read_u8()
            if control == 0xFF:
                break
            if control > 0x80:
                column += control - 0x80
            elif 0x01 <= control <= 0x7F:
                row[column] = _asp_cell(body.read_bytes(control))
                max_column = max(max_column, column)
                column += 1
            else:
                raise CorruptDocument(f"Invalid cell control byte ${control:02X}")
        max_row = max(max_row, row_number)

    rows = []
    for number in range(1, max_row + 1):
        row = cells.get(number, {})
        rows.append(tuple(row.get(column, "") for column in range(max_column + 1)))
    return SpreadsheetDoc(max_column, tuple(rows))


def _decode_teach(data):
    """Teach data fork: Mac OS Roman text, one paragraph per CR"""
    lines = []
    for paragraph in data.split(b"\r"):
        text = "".join(mac_roman_char(byte) if byte >= 0x20 or byte == 0x09 else " "
                       for byte in paragraph)
        runs = (TextRun(text),) if text else ()
        lines.append(Line(runs))
    return WordProcessorDoc(WPVariant.TEACH, tuple(lines))


DECODERS = {
    DocumentKind.WORD_PROCESSOR: _decode_awp,
    DocumentKind.GS_WORD_PROCESSOR: _decode_gwp,
    DocumentKind.DATABASE: _decode_adb,
    DocumentKind.SPREADSHEET: _decode_asp,
    DocumentKind.TEACH: _decode_teach,
}


def decode_document(data, kind, aux_type: int = 0) -> AppleWorksDocument:
    """Decode an AppleWorks document

    ``kind`` is a DocumentKind or a ProDOS file type; ``aux_type`` selects the
    AppleWorks GS variant of GWP files.
    """
    if not isinstance(kind, DocumentKind):
        kind = document_kind(kind, aux_type)
        if kind is None:
            raise UnrecognizedFormat("Not an AppleWorks document type")

    data = bytes(data)
    try:
        document = DECODERS[kind](data)
    except OutOfBounds as e:
        raise CorruptDocument(f"Truncated document: {e.diagnostic}") from e

    logger.debug(f"Decoded {kind.name.lower()} document")
    return document
