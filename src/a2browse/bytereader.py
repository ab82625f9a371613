"""
Bounds-checked cursor over an immutable byte buffer
"""

import struct

from .errors import OutOfBounds


class ByteReader:
    """Sequential reader that never indexes past the end of its buffer"""

    def __init__(self, data, offset=0):
        self.data = data if isinstance(data, (bytes, memoryview)) else bytes(data)
        if offset < 0 or offset > len(self.data):
            raise OutOfBounds(f"Offset {offset} outside {len(self.data)} bytes")
        self.pos = offset

    def __len__(self):
        return len(self.data)

    def remaining(self) -> int:
        return len(self.data) - self.pos

    def tell(self) -> int:
        return self.pos

    def seek(self, offset: int):
        if offset < 0 or offset > len(self.data):
            raise OutOfBounds(f"Seek to {offset} outside {len(self.data)} bytes")
        self.pos = offset

    def skip(self, count: int):
        self.seek(self.pos + count)

    def _take(self, count):
        if count < 0 or self.pos + count > len(self.data):
            raise OutOfBounds(
                f"Read of {count} bytes at offset {self.pos} past end of {len(self.data)} bytes")
        chunk = self.data[self.pos:self.pos + count]
        self.pos += count
        return chunk

    def peek(self, count: int = 1) -> bytes:
        """Return the next bytes without moving the cursor"""
        if count < 0 or self.pos + count > len(self.data):
            raise OutOfBounds(f"Peek of {count} bytes at offset {self.pos} past end")
        return bytes(self.data[self.pos:self.pos + count])

    def read_bytes(self, count: int) -> bytes:
        return bytes(self._take(count))

    def read_u8(self) -> int:
        return self._take(1)[0]

    def read_u16le(self) -> int:
        return struct.unpack('<H', self._take(2))[0]

    def read_u16be(self) -> int:
        return struct.unpack('>H', self._take(2))[0]

    def read_u24(self) -> int:
        """Little-endian 24-bit value (ProDOS EOF)"""
        lo, mid, hi = self._take(3)
        return lo | (mid << 8) | (hi << 16)

    def read_u32le(self) -> int:
        return struct.unpack('<I', self._take(4))[0]

    def read_u32be(self) -> int:
        return struct.unpack('>I', self._take(4))[0]

    def read_cstring(self) -> bytes:
        """Read up to (not including) a NUL terminator, consuming the NUL"""
        end = bytes(self.data[self.pos:]).find(b'\x00')
        if end < 0:
            raise OutOfBounds(f"Unterminated string at offset {self.pos}")
        value = self.read_bytes(end)
        self.pos += 1
        return value

    # Absolute accessors, cursor is left untouched

    def u8_at(self, offset: int) -> int:
        if offset < 0 or offset >= len(self.data):
            raise OutOfBounds(f"Byte at offset {offset} past end of {len(self.data)} bytes")
        return self.data[offset]

    def u16_at(self, offset: int) -> int:
        if offset < 0 or offset + 2 > len(self.data):
            raise OutOfBounds(f"Word at offset {offset} past end of {len(self.data)} bytes")
        return self.data[offset] | (self.data[offset + 1] << 8)

    def u16be_at(self, offset: int) -> int:
        if offset < 0 or offset + 2 > len(self.data):
            raise OutOfBounds(f"Word at offset {offset} past end of {len(self.data)} bytes")
        return (self.data[offset] << 8) | self.data[offset + 1]

    def u24_at(self, offset: int) -> int:
        if offset < 0 or offset + 3 > len(self.data):
            raise OutOfBounds(f"Value at offset {offset} past end of {len(self.data)} bytes")
        return self.data[offset] | (self.data[offset + 1] << 8) | (self.data[offset + 2] << 16)

    def u32_at(self, offset: int) -> int:
        if offset < 0 or offset + 4 > len(self.data):
            raise OutOfBounds(f"Long at offset {offset} past end of {len(self.data)} bytes")
        return struct.unpack_from('<I', self.data, offset)[0]

    def bytes_at(self, offset: int, count: int) -> bytes:
        if offset < 0 or count < 0 or offset + count > len(self.data):
            raise OutOfBounds(
                f"Read of {count} bytes at offset {offset} past end of {len(self.data)} bytes")
        return bytes(self.data[offset:offset + count])
