"""Tests for the IIgs Finder icon file decoder."""

from __future__ import annotations

import struct
import unittest

from a2browse.errors import TooShort, UnrecognizedFormat
from a2browse.graphics import RasterFormat
from a2browse.icons import decode_icons, field_string, parse_icon


def pascal_field(text: str, size: int) -> bytes:
    return (bytes([len(text)]) + text.encode("ascii")).ljust(size, b"\x00")


def icon(width: int, height: int, size: int, pixels: bytes = b"", mask: bytes = b"") -> bytes:
    header = struct.pack("<4H", 0x8000, size, height, width)
    return header + pixels.ljust(size, b"\xff") + mask.ljust(size, b"\xff")


def record(boss: str, name: str, file_type: int, *icons: bytes) -> bytes:
    body = (pascal_field(boss, 64) + pascal_field(name, 16)
            + struct.pack("<2H", file_type, 0) + b"".join(icons))
    return struct.pack("<H", 2 + len(body)) + body


def build_icon_file() -> bytes:
    header = bytearray(0x1A)
    header[4] = 0x01
    large = icon(8, 4, 16, mask=b"\x0f")
    small = icon(4, 4, 8, pixels=b"\x12")
    broken = icon(8, 4, 4)
    first = record("*/SYSTEM/FINDER", "HELLO", 0xFF, large, small)
    second = record("", "", 0x04, broken)
    return bytes(header) + first + second + b"\x00\x00"


class IconFileTests(unittest.TestCase):
    def setUp(self) -> None:
        self.resources = decode_icons(build_icon_file())

    def test_records(self) -> None:
        self.assertEqual(len(self.resources), 2)
        first, second = self.resources
        self.assertEqual(first.pathname, "HELLO")
        self.assertEqual(first.file_type, 0xFF)
        self.assertEqual(second.pathname, "Icon 2")
        self.assertEqual(second.file_type, 0x04)

    def test_large_icon_mask(self) -> None:
        large = self.resources[0].large
        self.assertTrue(large.decoded)
        self.assertEqual((large.width, large.height), (8, 4))
        self.assertEqual(large.raster.format, RasterFormat.ICON)
        self.assertEqual(large.raster.pixel(0, 0), (255, 255, 255, 0))
        self.assertEqual(large.raster.pixel(1, 0), (255, 255, 255, 255))
        self.assertEqual(large.mask[:3], b"\x00\x01\x01")

    def test_small_icon_palette(self) -> None:
        small = self.resources[0].small
        self.assertTrue(small.decoded)
        self.assertEqual(small.raster.pixel(0, 0), (0xDD, 0x00, 0x33, 255))
        self.assertEqual(small.raster.pixel(1, 0), (0x00, 0x00, 0x99, 255))

    def test_undersized_bitmap_is_reported(self) -> None:
        broken = self.resources[1].large
        self.assertFalse(broken.decoded)
        self.assertIsNone(broken.raster)
        self.assertIn("cannot hold 8x4", broken.problem)
        self.assertIsNone(self.resources[1].small)

    def test_too_short(self) -> None:
        with self.assertRaises(TooShort):
            decode_icons(b"")
        with self.assertRaises(TooShort):
            decode_icons(bytes(49))

    def test_no_records(self) -> None:
        with self.assertRaises(UnrecognizedFormat):
            decode_icons(bytes(60))


class IconPartsTests(unittest.TestCase):
    def test_icon_data_overrun(self) -> None:
        data = struct.pack("<4H", 0x8000, 64, 8, 8) + bytes(10)
        image, end = parse_icon(data, 0)
        self.assertFalse(image.decoded)
        self.assertIn("needs 128 bytes", image.problem)
        self.assertEqual(end, len(data))

    def test_implausible_header(self) -> None:
        self.assertIsNone(parse_icon(struct.pack("<4H", 0, 16, 2, 300) + bytes(32), 0))
        self.assertIsNone(parse_icon(b"\x00\x00", 0))

    def test_field_string(self) -> None:
        self.assertEqual(field_string(pascal_field("NAME", 16)), "NAME")
        self.assertEqual(field_string(b"\x90WORD\x00\x00"), "WORD")
        self.assertEqual(field_string(bytes(16)), "")
        self.assertEqual(field_string(b""), "")


if __name__ == "__main__":
    unittest.main()
