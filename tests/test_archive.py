"""Tests for the gzip, ZIP and Binary II container readers."""

from __future__ import annotations

import datetime
import gzip
import io
import unittest
import zipfile
import zlib

from a2browse.archive import (dos_datetime, extract_all, extract_binary_ii_entry,
                              extract_zip_entry, gunzip, is_binary_ii, list_binary_ii,
                              list_zip, raw_inflate, read_gzip_header, unwrap_archive)
from a2browse.errors import (CorruptArchive, MalformedHeader, TooShort, UnrecognizedFormat,
                             UnsupportedMethod)

PAYLOAD = bytes(range(256)) * 8


def gzip_bytes(payload: bytes, filename: str = "") -> bytes:
    buffer = io.BytesIO()
    with gzip.GzipFile(filename=filename, mode="wb", fileobj=buffer, mtime=0) as f:
        f.write(payload)
    return buffer.getvalue()


def zip_bytes(compression: int = zipfile.ZIP_STORED) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression) as archive:
        archive.writestr(zipfile.ZipInfo("DISKS/"), b"")
        info = zipfile.ZipInfo("DISKS/GAME.PO", date_time=(2024, 3, 15, 10, 30, 20))
        info.compress_type = compression
        archive.writestr(info, PAYLOAD)
        archive.writestr("README.TXT", b"hello")
    return buffer.getvalue()


MARCH_15_2024 = (24 << 9) | (3 << 5) | 15


def binary_ii(*files, id_byte: int = 0x02) -> bytes:
    """Wrap (name, file type, aux type, payload) tuples in Binary II headers"""
    out = bytearray()
    for name, file_type, aux_type, payload in files:
        header = bytearray(128)
        header[0:3] = b"\x0aGL"
        header[3] = 0xE3
        header[4] = file_type
        header[5:7] = aux_type.to_bytes(2, "little")
        header[7] = 0x0D if file_type == 0x0F else 0x01
        header[8:10] = (-(-len(payload) // 512)).to_bytes(2, "little")
        header[10:12] = MARCH_15_2024.to_bytes(2, "little")
        header[12:14] = ((10 << 8) | 30).to_bytes(2, "little")
        header[18] = id_byte
        header[20:23] = len(payload).to_bytes(3, "little")
        header[23] = len(name)
        header[24:24 + len(name)] = name.encode("ascii")
        out += header + payload + bytes(-len(payload) % 128)
    return bytes(out)


class GzipTests(unittest.TestCase):
    def test_round_trip(self) -> None:
        self.assertEqual(gunzip(gzip.compress(PAYLOAD)), PAYLOAD)

    def test_header_filename(self) -> None:
        header = read_gzip_header(gzip_bytes(PAYLOAD, "game.po"))
        self.assertEqual(header.filename, "game.po")
        self.assertIsNone(header.comment)
        self.assertEqual(header.mtime, 0)

    def test_crc_mismatch(self) -> None:
        data = bytearray(gzip.compress(PAYLOAD))
        data[-8] ^= 0xFF
        with self.assertRaises(CorruptArchive):
            gunzip(bytes(data))

    def test_truncated_stream(self) -> None:
        data = gzip.compress(PAYLOAD)
        with self.assertRaises(CorruptArchive):
            gunzip(data[:40])

    def test_header_errors(self) -> None:
        with self.assertRaises(UnrecognizedFormat):
            read_gzip_header(b"PK\x03\x04" + bytes(20))
        with self.assertRaises(TooShort):
            read_gzip_header(b"\x1f\x8b\x08\x00")
        with self.assertRaises(UnsupportedMethod):
            read_gzip_header(b"\x1f\x8b\x07\x00" + bytes(14))
        with self.assertRaises(MalformedHeader):
            read_gzip_header(b"\x1f\x8b\x08\x04" + bytes(6) + b"\xff\xff" + bytes(8))
        with self.assertRaises(MalformedHeader):
            read_gzip_header(b"\x1f\x8b\x08\x08" + bytes(6) + b"NAME" + b"\xff" * 8)

    def test_inflate_is_pluggable(self) -> None:
        calls = []

        def inflate(data, expected_size):
            calls.append(expected_size)
            return raw_inflate(data, expected_size)

        self.assertEqual(gunzip(gzip.compress(PAYLOAD), inflate=inflate), PAYLOAD)
        self.assertEqual(calls, [len(PAYLOAD)])


class ZipTests(unittest.TestCase):
    def test_list_stored(self) -> None:
        entries = list_zip(zip_bytes())
        self.assertEqual([entry.filename for entry in entries],
                         ["DISKS/", "DISKS/GAME.PO", "README.TXT"])
        self.assertTrue(entries[0].is_directory)
        game = entries[1]
        self.assertEqual(game.method, 0)
        self.assertEqual(game.uncompressed_size, len(PAYLOAD))
        self.assertEqual(game.modified, datetime.datetime(2024, 3, 15, 10, 30, 20))

    def test_extract_stored_and_deflated(self) -> None:
        for compression in (zipfile.ZIP_STORED, zipfile.ZIP_DEFLATED):
            data = zip_bytes(compression)
            game = list_zip(data)[1]
            self.assertEqual(extract_zip_entry(data, game), PAYLOAD)

    def test_extract_all_skips_directories(self) -> None:
        files = extract_all(zip_bytes(zipfile.ZIP_DEFLATED))
        self.assertEqual(files, [("DISKS/GAME.PO", PAYLOAD), ("README.TXT", b"hello")])

    def test_unsupported_method(self) -> None:
        data = bytearray(zip_bytes())
        game = list_zip(bytes(data))[1]
        header = game.data_offset - 30 - len(game.filename)
        data[header + 8] = 12
        data = bytes(data)
        game = list_zip(data)[1]
        with self.assertRaises(UnsupportedMethod):
            extract_zip_entry(data, game)
        self.assertEqual([name for name, _ in extract_all(data)], ["README.TXT"])

    def test_crc_mismatch(self) -> None:
        data = bytearray(zip_bytes())
        game = list_zip(bytes(data))[1]
        data[game.data_offset] ^= 0xFF
        with self.assertRaises(CorruptArchive):
            extract_zip_entry(bytes(data), game)

    def test_truncated_archive(self) -> None:
        data = zip_bytes()
        game = list_zip(data)[1]
        entries = list_zip(data[:game.data_offset + 10])
        self.assertEqual(len(entries), 2)
        with self.assertRaises(MalformedHeader):
            extract_zip_entry(data[:game.data_offset + 10], entries[1])

    def test_not_a_zip(self) -> None:
        with self.assertRaises(UnrecognizedFormat):
            list_zip(b"\x1f\x8b")
        with self.assertRaises(TooShort):
            list_zip(b"PK\x03\x04" + bytes(10))

    def test_dos_datetime(self) -> None:
        self.assertEqual(dos_datetime((44 << 9) | (3 << 5) | 15, (10 << 11) | (30 << 5) | 10),
                         datetime.datetime(2024, 3, 15, 10, 30, 20))
        self.assertIsNone(dos_datetime(0, 0))


class BinaryIITests(unittest.TestCase):
    def setUp(self) -> None:
        self.archive = binary_ii(("HELLO", 0x04, 0x0000, b"HELLO\r" * 20),
                                 ("GAME", 0x06, 0x0800, b"\x4c\x00\x08"))

    def test_list_entries(self) -> None:
        entries = list_binary_ii(self.archive)
        self.assertEqual([entry.filename for entry in entries], ["HELLO", "GAME"])
        hello, game = entries
        self.assertEqual((hello.file_type, hello.length, hello.data_offset), (0x04, 120, 128))
        self.assertEqual(hello.modified, datetime.datetime(2024, 3, 15, 10, 30))
        self.assertIsNone(hello.created)
        self.assertEqual((game.aux_type, game.length, game.data_offset), (0x0800, 3, 384))

    def test_extract_entries(self) -> None:
        hello, game = list_binary_ii(self.archive)
        self.assertEqual(extract_binary_ii_entry(self.archive, hello), b"HELLO\r" * 20)
        self.assertEqual(extract_binary_ii_entry(self.archive, game), b"\x4c\x00\x08")

    def test_nonstandard_id_byte_still_listed(self) -> None:
        archive = binary_ii(("A", 0x06, 0, b"x"), id_byte=0x00)
        self.assertEqual(len(list_binary_ii(archive)), 1)

    def test_truncated_data(self) -> None:
        archive = self.archive[:-130]
        hello = list_binary_ii(archive)[0]
        self.assertEqual(extract_binary_ii_entry(archive, hello), b"HELLO\r" * 20)
        game = list_binary_ii(self.archive)[1]
        with self.assertRaises(MalformedHeader):
            extract_binary_ii_entry(archive, game)

    def test_not_binary_ii(self) -> None:
        self.assertFalse(is_binary_ii(b"\x0aGL" + bytes(20)))
        self.assertTrue(is_binary_ii(self.archive))
        with self.assertRaises(TooShort):
            list_binary_ii(b"\x0aGL" + bytes(20))
        with self.assertRaises(UnrecognizedFormat):
            list_binary_ii(bytes(256))


class UnwrapTests(unittest.TestCase):
    def test_unwrap_gzip(self) -> None:
        self.assertEqual(unwrap_archive(gzip.compress(PAYLOAD)), PAYLOAD)

    def test_unwrap_zip_uses_first_file(self) -> None:
        self.assertEqual(unwrap_archive(zip_bytes(zipfile.ZIP_DEFLATED)), PAYLOAD)

    def test_unwrap_binary_ii_skips_directories(self) -> None:
        archive = binary_ii(("DISKS", 0x0F, 0, b""), ("GAME.PO", 0xE0, 0x0005, PAYLOAD))
        self.assertEqual(unwrap_archive(archive), PAYLOAD)
        with self.assertRaises(UnrecognizedFormat):
            unwrap_archive(binary_ii(("DISKS", 0x0F, 0, b"")))

    def test_unwrap_plain_data(self) -> None:
        self.assertEqual(unwrap_archive(bytearray(b"plain")), b"plain")

    def test_empty_zip(self) -> None:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr(zipfile.ZipInfo("EMPTY/"), b"")
        with self.assertRaises(UnrecognizedFormat):
            unwrap_archive(buffer.getvalue())

    def test_raw_inflate(self) -> None:
        compressor = zlib.compressobj(9, zlib.DEFLATED, -zlib.MAX_WBITS)
        stream = compressor.compress(PAYLOAD) + compressor.flush()
        self.assertEqual(raw_inflate(stream, len(PAYLOAD)), PAYLOAD)
        with self.assertRaises(CorruptArchive):
            raw_inflate(b"\xff\xff\xff", 10)


if __name__ == "__main__":
    unittest.main()
