"""
BASIC detokenizer
Turns tokenized Applesoft and Integer BASIC programs back into listings.
Applesoft defines 107 tokens, $80 (END) through $EA (MID$); any higher byte
is shown as [?XX].
"""

import enum
import logging
from dataclasses import dataclass
from typing import Tuple

from .bytereader import ByteReader
from .errors import CorruptProgram, DecodeError, TooShort

logger = logging.getLogger(__name__)


class Dialect(enum.Enum):
    APPLESOFT = "applesoft"
    INTEGER = "integer"


class LexState(enum.Enum):
    NORMAL = 0
    IN_QUOTE = 1
    IN_REM = 2
    IN_DATA = 3


class FragmentKind(enum.Enum):
    TEXT = "text"
    TOKEN = "token"
    STRING = "string"
    COMMENT = "comment"


@dataclass(frozen=True)
class Fragment:
    kind: FragmentKind
    text: str


@dataclass(frozen=True)
class TokenLine:
    line_number: int
    fragments: Tuple[Fragment, ...]

    @property
    def body(self) -> str:
        return "".join(f.text for f in self.fragments)

    @property
    def text(self) -> str:
        return f"{self.line_number} {self.body}"


MAX_APPLESOFT_LINE = 63999
MAX_INTEGER_LINE = 32767

# Prefix of the line listing() returns for an undecodable program
INVALID_PROGRAM = "// Invalid program"

# Load address some tools keep ahead of the first line
APPLESOFT_LOAD_ADDRESS = 0x0801

APPLESOFT_TOKENS = {
    0x80: "END", 0x81: "FOR", 0x82: "NEXT", 0x83: "DATA",
    0x84: "INPUT", 0x85: "DEL", 0x86: "DIM", 0x87: "READ",
    0x88: "GR", 0x89: "TEXT", 0x8A: "PR#", 0x8B: "IN#",
    0x8C: "CALL", 0x8D: "PLOT", 0x8E: "HLIN", 0x8F: "VLIN",
    0x90: "HGR2", 0x91: "HGR", 0x92: "HCOLOR=", 0x93: "HPLOT",
    0x94: "DRAW", 0x95: "XDRAW", 0x96: "HTAB", 0x97: "HOME",
    0x98: "ROT=", 0x99: "SCALE=", 0x9A: "SHLOAD", 0x9B: "TRACE",
    0x9C: "NOTRACE", 0x9D: "NORMAL", 0x9E: "INVERSE", 0x9F: "FLASH",
    0xA0: "COLOR=", 0xA1: "POP", 0xA2: "VTAB", 0xA3: "HIMEM:",
    0xA4: "LOMEM:", 0xA5: "ONERR", 0xA6: "RESUME", 0xA7: "RECALL",
    0xA8: "STORE", 0xA9: "SPEED=", 0xAA: "LET", 0xAB: "GOTO",
    0xAC: "RUN", 0xAD: "IF", 0xAE: "RESTORE", 0xAF: "&",
    0xB0: "GOSUB", 0xB1: "RETURN", 0xB2: "REM", 0xB3: "STOP",
    0xB4: "ON", 0xB5: "WAIT", 0xB6: "LOAD", 0xB7: "SAVE",
    0xB8: "DEF", 0xB9: "POKE", 0xBA: "PRINT", 0xBB: "CONT",
    0xBC: "LIST", 0xBD: "CLEAR", 0xBE: "GET", 0xBF: "NEW",
    0xC0: "TAB(", 0xC1: "TO", 0xC2: "FN", 0xC3: "SPC(",
    0xC4: "THEN", 0xC5: "AT", 0xC6: "NOT", 0xC7: "STEP",
    0xC8: "+", 0xC9: "-", 0xCA: "*", 0xCB: "/",
    0xCC: "^", 0xCD: "AND", 0xCE: "OR", 0xCF: ">",
    0xD0: "=", 0xD1: "<", 0xD2: "SGN", 0xD3: "INT",
    0xD4: "ABS", 0xD5: "USR", 0xD6: "FRE", 0xD7: "SCRN(",
    0xD8: "PDL", 0xD9: "POS", 0xDA: "SQR", 0xDB: "RND",
    0xDC: "LOG", 0xDD: "EXP", 0xDE: "COS", 0xDF: "SIN",
    0xE0: "TAN", 0xE1: "ATN", 0xE2: "PEEK", 0xE3: "LEN",
    0xE4: "STR$", 0xE5: "VAL", 0xE6: "ASC", 0xE7: "CHR$",
    0xE8: "LEFT$", 0xE9: "RIGHT$", 0xEA: "MID$",
}

COMPARISON_TOKENS = {"=", "<", ">", "AND", "OR", "NOT"}
TIGHT_TOKENS = {"+", "-", "*", "/", "^", "(", ")", ",", ";"}
SPACE_AFTER_TOKENS = {
    "GOTO", "GOSUB", "THEN", "IF", "FOR", "NEXT", "TO", "STEP",
    "LET", "DIM", "DEF", "ON", "PRINT", "INPUT", "READ", "DATA",
    "POKE", "CALL", "HTAB", "VTAB", "HCOLOR=", "COLOR=", "SPEED=",
    "HPLOT", "PLOT", "DRAW", "XDRAW", "AT", "ONERR", "RESUME",
    "HIMEM:", "LOMEM:", "WAIT", "GET", "HOME", "TEXT", "GR", "HGR", "HGR2",
    "LOAD", "SAVE", "DEL", "RUN", "LIST", "ROT=", "SCALE=", "PR#", "IN#",
}

# Integer BASIC tokens $00-$7F (after CiderPress II)
INTEGER_TOKENS = (
    "HIMEM:", "", "_ ", ":", "LOAD ", "SAVE ", "CON ", "RUN ",
    "RUN ", "DEL ", ",", "NEW ", "CLR ", "AUTO ", ",", "MAN ",
    "HIMEM:", "LOMEM:", "+", "-", "*", "/", "=", "#",
    ">=", ">", "<=", "<>", "<", "AND ", "OR ", "MOD ",
    "^ ", "+", "(", ",", "THEN ", "THEN ", ",", ",",
    "\"", "\"", "(", "!", "!", "(", "PEEK ", "RND ",
    "SGN ", "ABS ", "PDL ", "RNDX ", "(", "+", "-", "NOT ",
    "(", "=", "#", "LEN(", "ASC(", "SCRN(", ",", "(",
    "$", "$", "(", ",", ",", ";", ";", ";",
    ",", ",", ",", "TEXT ", "GR ", "CALL ", "DIM ", "DIM ",
    "TAB ", "END ", "INPUT ", "INPUT ", "INPUT ", "FOR ", "=", "TO ",
    "STEP ", "NEXT ", ",", "RETURN ", "GOSUB ", "REM ", "LET ", "GOTO ",
    "IF ", "PRINT ", "PRINT ", "PRINT ", "POKE ", ",", "COLOR=", "PLOT ",
    ",", "HLIN ", ",", "AT ", "VLIN ", ",", "AT ", "VTAB ",
    "=", "=", ")", ")", "LIST ", ",", "LIST ", "POP ",
    "NODSP ", "NODSP ", "NOTRACE ", "DSP ", "DSP ", "TRACE ", "PR#", "IN#",
)

INT_EOL = 0x01
INT_OPEN_QUOTE = 0x28
INT_CLOSE_QUOTE = 0x29
INT_REM = 0x5D


def printable(byte: int) -> str:
    """Strip the high bit; anything still unprintable becomes '.'"""
    c = byte & 0x7F
    if 0x20 <= c < 0x7F:
        return chr(c)
    return "."


class _LineBuilder:
    """Accumulates fragments, merging adjacent ones of the same kind"""

    def __init__(self):
        self.fragments = []

    def add(self, kind, text):
        if not text:
            return
        if self.fragments and self.fragments[-1][0] == kind:
            self.fragments[-1][1].append(text)
        else:
            self.fragments.append((kind, [text]))

    @property
    def last_char(self):
        if not self.fragments:
            return ""
        return self.fragments[-1][1][-1][-1]

    def build(self, line_number):
        return TokenLine(line_number, tuple(Fragment(kind, "".join(parts))
                                            for kind, parts in self.fragments))


def _applesoft_token(line, token):
    """Emit a keyword with the listing's spacing conventions"""
    last = line.last_char
    if token in COMPARISON_TOKENS:
        if last and last not in " (":
            line.add(FragmentKind.TEXT, " ")
        line.add(FragmentKind.TOKEN, token)
        line.add(FragmentKind.TEXT, " ")
        return

    tight = token in TIGHT_TOKENS or token.endswith("(")
    if not tight:
        if not last:
            line.add(FragmentKind.TEXT, " ")
        elif last.isalnum() and not token.endswith(("=", ":")):
            line.add(FragmentKind.TEXT, " ")
    line.add(FragmentKind.TOKEN, token)
    if token in SPACE_AFTER_TOKENS:
        line.add(FragmentKind.TEXT, " ")


def _applesoft_line(reader, line_number):
    line = _LineBuilder()
    state = LexState.NORMAL
    # State to return to when a quote closes
    after_quote = LexState.NORMAL

    while True:
        byte = reader.read_u8()
        if byte == 0x00:
            break

        if state == LexState.IN_QUOTE:
            line.add(FragmentKind.STRING, '"' if byte == 0x22 else printable(byte))
            if byte == 0x22:
                state = after_quote
        elif state == LexState.IN_REM:
            line.add(FragmentKind.COMMENT, printable(byte))
        elif state == LexState.IN_DATA:
            if byte == 0x3A:
                line.add(FragmentKind.TEXT, " : ")
                state = LexState.NORMAL
            elif byte == 0x22:
                line.add(FragmentKind.STRING, '"')
                after_quote = LexState.IN_DATA
                state = LexState.IN_QUOTE
            else:
                line.add(FragmentKind.TEXT, printable(byte))
        elif byte >= 0x80:
            token = APPLESOFT_TOKENS.get(byte)
            if token is None:
                line.add(FragmentKind.TEXT, f"[?{byte:02X}]")
                continue
            _applesoft_token(line, token)
            if token == "REM":
                state = LexState.IN_REM
            elif token == "DATA":
                state = LexState.IN_DATA
        elif byte == 0x22:
            line.add(FragmentKind.STRING, '"')
            after_quote = LexState.NORMAL
            state = LexState.IN_QUOTE
        elif byte == 0x3A:
            line.add(FragmentKind.TEXT, " : ")
        else:
            line.add(FragmentKind.TEXT, printable(byte))

    return line.build(line_number)


def detokenize_applesoft(data):
    """Decode an Applesoft program into TokenLines"""
    if len(data) < 2:
        raise TooShort(f"Applesoft program of {len(data)} bytes")

    reader = ByteReader(data)
    if reader.u16_at(0) == APPLESOFT_LOAD_ADDRESS:
        reader.skip(2)

    lines = []
    while reader.remaining() >= 2:
        next_pointer = reader.read_u16le()
        if next_pointer == 0:
            break
        line_number = reader.read_u16le()
        if line_number > MAX_APPLESOFT_LINE:
            raise CorruptProgram(f"Line number {line_number} out of range")
        lines.append(_applesoft_line(reader, line_number))

    logger.debug(f"Detokenized {len(lines)} Applesoft lines")
    return tuple(lines)


def _integer_line(body, line_number):
    line = _LineBuilder()
    reader = ByteReader(body)
    state = LexState.NORMAL
    trailing_space = True

    while reader.remaining():
        byte = reader.read_u8()
        new_trailing_space = False

        if state == LexState.IN_QUOTE:
            if byte == INT_CLOSE_QUOTE:
                line.add(FragmentKind.STRING, '"')
                state = LexState.NORMAL
            else:
                line.add(FragmentKind.STRING, printable(byte))
            continue
        if state == LexState.IN_REM:
            line.add(FragmentKind.COMMENT, printable(byte))
            continue

        if byte == INT_OPEN_QUOTE:
            line.add(FragmentKind.STRING, '"')
            state = LexState.IN_QUOTE
        elif byte == INT_REM:
            if not trailing_space:
                line.add(FragmentKind.TEXT, " ")
            line.add(FragmentKind.TOKEN, INTEGER_TOKENS[byte])
            state = LexState.IN_REM
        elif 0xB0 <= byte <= 0xB9:
            # Integer constant: marker byte then a 16-bit value
            line.add(FragmentKind.TEXT, str(reader.read_u16le()))
        elif 0xC1 <= byte <= 0xDA:
            name = [chr(byte & 0x7F)]
            while reader.remaining():
                nxt = reader.peek()[0]
                if 0xC1 <= nxt <= 0xDA or 0xB0 <= nxt <= 0xB9:
                    name.append(chr(reader.read_u8() & 0x7F))
                else:
                    break
            line.add(FragmentKind.TEXT, "".join(name))
        elif byte < 0x80:
            token = INTEGER_TOKENS[byte]
            if token:
                if not ("!" <= token[0] <= "?" or byte < 0x12) and not trailing_space:
                    line.add(FragmentKind.TEXT, " ")
                line.add(FragmentKind.TOKEN, token)
                new_trailing_space = token.endswith(" ")
        else:
            line.add(FragmentKind.TEXT, f"[?{byte:02X}]")

        trailing_space = new_trailing_space

    return line.build(line_number)


def detokenize_integer(data):
    """Decode an Integer BASIC program into TokenLines"""
    if len(data) < 4:
        raise TooShort(f"Integer BASIC program of {len(data)} bytes")

    reader = ByteReader(data)
    lines = []
    while reader.remaining():
        start = reader.tell()
        line_length = reader.read_u8()
        if line_length == 0:
            break
        if line_length < 4:
            raise CorruptProgram(f"Line length {line_length} at offset {start}")

        line_number = reader.read_u16le()
        if line_number > MAX_INTEGER_LINE:
            raise CorruptProgram(f"Line number {line_number} out of range")
        body = reader.read_bytes(line_length - 3)
        if body[-1] != INT_EOL:
            raise CorruptProgram(f"Line {line_number} does not end with an EOL token")
        lines.append(_integer_line(body[:-1], line_number))

    logger.debug(f"Detokenized {len(lines)} Integer BASIC lines")
    return tuple(lines)


def detokenize(data, dialect=Dialect.APPLESOFT):
    """Decode a tokenized program; all-or-nothing"""
    data = bytes(data)
    if dialect == Dialect.INTEGER:
        return detokenize_integer(data)
    return detokenize_applesoft(data)


def is_valid_program(data, dialect=Dialect.APPLESOFT) -> bool:
    """Cheap plausibility check used before a full decode"""
    data = bytes(data)
    if len(data) < 4:
        return False

    if dialect == Dialect.INTEGER:
        line_length = data[0]
        if line_length < 4 or line_length > len(data):
            return False
        if data[line_length - 1] != INT_EOL:
            return False
        return (data[1] | (data[2] << 8)) <= MAX_INTEGER_LINE

    offset = 0
    if data[0] | (data[1] << 8) == APPLESOFT_LOAD_ADDRESS:
        offset = 2
        if len(data) < 6:
            return False
    pointer = data[offset] | (data[offset + 1] << 8)
    if pointer < 0x0800 or pointer > 0xC000:
        return False
    return (data[offset + 2] | (data[offset + 3] << 8)) <= MAX_APPLESOFT_LINE


def listing(data, dialect=Dialect.APPLESOFT) -> str:
    """Render a program as text, or a diagnostic line when it cannot be decoded"""
    try:
        lines = detokenize(data, dialect)
    except DecodeError as e:
        return f"{INVALID_PROGRAM}: {e.diagnostic}"
    return "\n".join(line.text for line in lines)
