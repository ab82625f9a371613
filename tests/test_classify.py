"""Tests for content classification and dispatch."""

from __future__ import annotations

import gzip
import io
import unittest
import zipfile

from a2browse.catalog import CatalogEntry, ContentView
from a2browse.classify import ContentKind, Decoded, classify, decode_content, decode_entry
from a2browse.errors import UnrecognizedFormat

PROGRAM = bytes([0x01, 0x08, 0x00, 0x08, 0x0A, 0x00, 0xBA, 0x22, 0x48, 0x49, 0x22,
                 0x00, 0x00, 0x00])
INTEGER_PROGRAM = bytes([0x09, 0x0A, 0x00, 0x61, 0x28, 0xC8, 0xC9, 0x29, 0x01, 0x00])
BINARY_II_HEADER = b"\x0aGL" + bytes(125)


def zip_of(name: str, payload: bytes) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr(name, payload)
    return buffer.getvalue()


class ClassifyTests(unittest.TestCase):
    def test_containers_win_over_file_type(self) -> None:
        self.assertEqual(classify(0x04, 0, gzip.compress(b"text")), ContentKind.GZIP)
        self.assertEqual(classify(0x06, 0, zip_of("A", b"a")), ContentKind.ZIP)
        self.assertEqual(classify(0x06, 0, bytes(143360)), ContentKind.DISK_IMAGE)
        self.assertEqual(classify(0x00, 0, b"2IMG" + bytes(60)), ContentKind.DISK_IMAGE)
        self.assertEqual(classify(0x00, 0, BINARY_II_HEADER), ContentKind.BINARY_II)

    def test_basic_programs(self) -> None:
        self.assertEqual(classify(0xFC, 0x0801, PROGRAM), ContentKind.APPLESOFT)
        self.assertEqual(classify(0xFC, 0x0801, b"\x00\x01\x02\x03"), ContentKind.BINARY)
        self.assertEqual(classify(0xFA, 0, INTEGER_PROGRAM), ContentKind.INTEGER_BASIC)
        self.assertEqual(classify(0xFA, 0, b"\x01\x02\x03\x04"), ContentKind.BINARY)

    def test_text_types(self) -> None:
        self.assertEqual(classify(0x04, 0, b"HELLO"), ContentKind.TEXT)
        self.assertEqual(classify(0x03, 0, b"\x10\x24HI"), ContentKind.PASCAL_TEXT)

    def test_documents_and_icons(self) -> None:
        self.assertEqual(classify(0x1A, 0, bytes(400)), ContentKind.APPLEWORKS)
        self.assertEqual(classify(0x50, 0x8010, bytes(700)), ContentKind.APPLEWORKS)
        self.assertEqual(classify(0x50, 0x5445, b"Hello\r"), ContentKind.TEACH)
        self.assertEqual(classify(0xCA, 0, bytes(100)), ContentKind.ICONS)

    def test_graphics(self) -> None:
        self.assertEqual(classify(0xC1, 0, bytes(32768)), ContentKind.GRAPHICS)
        self.assertEqual(classify(0x08, 0x4000, bytes(3000)), ContentKind.GRAPHICS)
        self.assertEqual(classify(0x06, 0x2000, bytes(8192)), ContentKind.GRAPHICS)
        self.assertEqual(classify(0x06, 0x0300, bytes(100)), ContentKind.BINARY)

    def test_untyped_content_sniffed(self) -> None:
        self.assertEqual(classify(0x00, 0, b"\xc8\xc5\xcc\xcc\xcf\x8d"), ContentKind.TEXT)
        self.assertEqual(classify(0x00, 0, bytes(range(256))), ContentKind.BINARY)
        self.assertEqual(classify(0x00, 0, b""), ContentKind.BINARY)

    def test_accepts_content_view(self) -> None:
        view = ContentView.from_bytes(PROGRAM)
        self.assertEqual(classify(0xFC, 0x0801, view), ContentKind.APPLESOFT)


class DecodeContentTests(unittest.TestCase):
    def test_applesoft(self) -> None:
        kind, lines = decode_content(PROGRAM, 0xFC, 0x0801)
        self.assertEqual(kind, ContentKind.APPLESOFT)
        self.assertEqual(lines[0].text, '10  PRINT "HI"')

    def test_integer(self) -> None:
        kind, lines = decode_content(INTEGER_PROGRAM, 0xFA)
        self.assertEqual(kind, ContentKind.INTEGER_BASIC)
        self.assertEqual(lines[0].text, '10 PRINT "HI"')

    def test_text_and_pascal(self) -> None:
        self.assertEqual(decode_content(b"\xc8\xc9\x8d", 0x04), Decoded(ContentKind.TEXT, "HI\n"))
        self.assertEqual(decode_content(b"\x10\x24HI\r", 0x03),
                         Decoded(ContentKind.PASCAL_TEXT, "    HI\n"))

    def test_gzip_payload_is_decoded(self) -> None:
        self.assertEqual(decode_content(gzip.compress(b"\xc8\xc9\x8d"), 0x04),
                         Decoded(ContentKind.GZIP, Decoded(ContentKind.TEXT, "HI\n")))
        self.assertEqual(decode_content(gzip.compress(b"\x00\x01\x02"), 0x06, 0x0300),
                         Decoded(ContentKind.GZIP, Decoded(ContentKind.BINARY, b"\x00\x01\x02")))

    def test_binary_ii_is_listed(self) -> None:
        header = bytearray(BINARY_II_HEADER)
        header[4] = 0x04
        header[20] = 3
        header[23:28] = b"\x04NOTE"
        kind, entries = decode_content(bytes(header) + b"abc" + bytes(125), 0x00)
        self.assertEqual(kind, ContentKind.BINARY_II)
        self.assertEqual([(entry.filename, entry.length) for entry in entries], [("NOTE", 3)])

    def test_teach_document(self) -> None:
        kind, doc = decode_content(b"Hello\rWorld", 0x50, 0x5445)
        self.assertEqual(kind, ContentKind.TEACH)
        self.assertEqual(doc.plain_text, "Hello\nWorld")

    def test_zip_is_listed(self) -> None:
        kind, entries = decode_content(zip_of("DISK.PO", b"abc"), 0x00)
        self.assertEqual(kind, ContentKind.ZIP)
        self.assertEqual([entry.filename for entry in entries], ["DISK.PO"])

    def test_graphics(self) -> None:
        kind, image = decode_content(bytes(8192), 0x06, 0x2000)
        self.assertEqual(kind, ContentKind.GRAPHICS)
        self.assertEqual((image.width, image.height), (280, 192))

    def test_binary_is_raw(self) -> None:
        self.assertEqual(decode_content(b"\x00\x01\x02", 0x06, 0x0300),
                         Decoded(ContentKind.BINARY, b"\x00\x01\x02"))


class DecodeEntryTests(unittest.TestCase):
    def test_file_entry(self) -> None:
        entry = CatalogEntry(name="HELLO", file_type=0x04, type_label="TXT", size=6,
                             prodos_type=0x04, content=ContentView.from_bytes(b"HELLO\r"))
        self.assertEqual(decode_entry(entry), (ContentKind.TEXT, "HELLO\n"))

    def test_directory_entry(self) -> None:
        entry = CatalogEntry(name="GAMES", file_type=0x0F, type_label="DIR", size=512,
                             prodos_type=0x0F, is_directory=True)
        with self.assertRaises(UnrecognizedFormat):
            decode_entry(entry)


if __name__ == "__main__":
    unittest.main()
