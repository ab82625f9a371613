"""
Plain text decoding for Apple II text files
"""

DLE = 0x10


def decode_apple_text(data) -> str:
    """Decode high-ASCII text, mapping CR to newline"""
    out = []
    for b in bytes(data):
        c = b & 0x7F
        if c == 0x0D:
            out.append("\n")
        elif c == 0x09 or 0x20 <= c < 0x7F:
            out.append(chr(c))
        elif c == 0:
            continue
        else:
            out.append(".")
    return "".join(out)


def expand_pascal_text(data) -> str:
    """Decode a UCSD Pascal TEXT file

    DLE followed by a count byte stands for count-32 spaces.  NUL page
    padding is dropped.
    """
    out = []
    data = bytes(data)
    i = 0
    while i < len(data):
        b = data[i]
        if b == DLE:
            i += 1
            if i < len(data) and data[i] >= 32:
                out.append(" " * (data[i] - 32))
        elif b == 0x0D:
            out.append("\n")
        elif b == 0x09 or 0x20 <= b < 0x7F:
            out.append(chr(b))
        i += 1
    return "".join(out)


def printable_ratio(sample) -> float:
    """Fraction of bytes that are printable once the high bit is stripped"""
    sample = bytes(sample)
    if not sample:
        return 0.0
    printable = sum(1 for b in sample if 0x20 <= (b & 0x7F) < 0x7F or (b & 0x7F) in (0x0D, 0x0A, 0x09))
    return printable / len(sample)
