"""Command-line behavior tests.

Runs ``a2browse.main.main`` against disk images written to a temporary
directory and checks output and exit codes.
"""

from __future__ import annotations

import contextlib
import gzip
import io
import json
import tempfile
import unittest
from pathlib import Path

from PIL import Image

from a2browse import main as cli

BLOCK = 512
ENTRY = 0x27
PROGRAM = bytes([0x01, 0x08, 0x00, 0x08, 0x0A, 0x00, 0xBA, 0x22, 0x48, 0x49, 0x22,
                 0x00, 0x00, 0x00])


def _entry(name: str, storage: int, file_type: int, key: int, eof: int, aux: int = 0) -> bytes:
    raw = bytearray(ENTRY)
    raw[0] = (storage << 4) | len(name)
    raw[1:1 + len(name)] = name.encode("ascii")
    raw[16] = file_type
    raw[17:19] = key.to_bytes(2, "little")
    raw[21:24] = eof.to_bytes(3, "little")
    raw[30] = 0xE3
    raw[31:33] = aux.to_bytes(2, "little")
    raw[33:35] = ((24 << 9) | (3 << 5) | 15).to_bytes(2, "little")
    return bytes(raw)


def build_image() -> bytes:
    """ProDOS volume holding a text file, an Applesoft program and a hi-res picture"""
    blocks = [bytearray(BLOCK) for _ in range(48)]
    volume = blocks[2]
    volume[4] = 0xF0 | 7
    volume[5:12] = b"TESTVOL"
    volume[0x23] = ENTRY
    volume[0x24] = 0x0D
    volume[0x25] = 3
    entries = (
        _entry("HELLO", 1, 0x04, 6, 6),
        _entry("STARTUP", 1, 0xFC, 7, len(PROGRAM), 0x0801),
        _entry("PICTURE", 2, 0x06, 8, 8192, 0x2000),
    )
    for slot, raw in enumerate(entries, start=1):
        volume[4 + slot * ENTRY:4 + (slot + 1) * ENTRY] = raw

    blocks[6][:6] = b"HELLO\r"
    blocks[7][:len(PROGRAM)] = PROGRAM
    for i in range(16):
        blocks[8][i] = 9 + i
    blocks[9][0] = 0x7F
    return b"".join(bytes(block) for block in blocks)


def add_file(image: bytes, slot: int, name: str, file_type: int, block: int,
             payload: bytes) -> bytes:
    """Put a seedling file holding payload into an empty volume directory slot"""
    image = bytearray(image)
    offset = 2 * BLOCK + 4 + slot * ENTRY
    image[offset:offset + ENTRY] = _entry(name, 1, file_type, block, len(payload))
    image[2 * BLOCK + 0x25] += 1
    image[block * BLOCK:block * BLOCK + len(payload)] = payload
    return bytes(image)


def run(*argv: str):
    stdout = io.StringIO()
    stderr = io.StringIO()
    with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
        code = cli.main(list(argv))
    return code, stdout.getvalue(), stderr.getvalue()


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.image = self.root / "test.po"
        self.image.write_bytes(build_image())

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_no_command_prints_help(self) -> None:
        code, out, _ = run()
        self.assertEqual(code, 2)
        self.assertIn("usage: a2browse", out)

    def test_version(self) -> None:
        with contextlib.redirect_stdout(io.StringIO()), self.assertRaises(SystemExit) as raised:
            cli.main(["--version"])
        self.assertEqual(raised.exception.code, 0)

    def test_catalog(self) -> None:
        code, out, _ = run("catalog", str(self.image))
        self.assertEqual(code, 0)
        lines = out.splitlines()
        self.assertIn("TESTVOL (ProDOS, prodos order", lines[0])
        self.assertIn("3 files", lines[0])
        self.assertNotIn("disk images", lines[0])
        self.assertTrue(any("HELLO" in line and "TXT" in line and "6 B" in line for line in lines))
        self.assertTrue(any("PICTURE" in line and "8.0 KB" in line for line in lines))

    def test_catalog_json(self) -> None:
        code, out, _ = run("catalog", "--json", str(self.image))
        self.assertEqual(code, 0)
        tree = json.loads(out)
        self.assertEqual(tree["volume_name"], "TESTVOL")
        self.assertEqual(tree["image_files"], 0)
        self.assertEqual([entry["name"] for entry in tree["entries"]],
                         ["HELLO", "STARTUP", "PICTURE"])
        self.assertEqual(tree["entries"][0]["modified"], "2024-03-15T00:00:00")
        self.assertEqual(tree["entries"][1]["aux_type"], 0x0801)
        self.assertEqual(tree["entries"][0]["description"], "Text File")
        self.assertEqual(tree["entries"][1]["description"], "Applesoft BASIC")

    def test_catalog_of_gzipped_image(self) -> None:
        packed = self.root / "test.po.gz"
        packed.write_bytes(gzip.compress(build_image()))
        code, out, _ = run("catalog", str(packed))
        self.assertEqual(code, 0)
        self.assertIn("TESTVOL", out)

    def test_show_text_and_program(self) -> None:
        code, out, _ = run("show", str(self.image), "hello")
        self.assertEqual(code, 0)
        self.assertEqual(out, "HELLO\n\n")
        code, out, _ = run("show", str(self.image), "STARTUP")
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), '10  PRINT "HI"')

    def test_show_gzipped_text(self) -> None:
        self.image.write_bytes(add_file(build_image(), 4, "NOTES", 0x04, 30,
                                        gzip.compress(b"\xc8\xc9\x8d")))
        code, out, _ = run("show", str(self.image), "NOTES")
        self.assertEqual(code, 0)
        self.assertEqual(out, "HI\n\n")

    def test_show_binary_ii_listing(self) -> None:
        header = bytearray(b"\x0aGL" + bytes(125))
        header[4] = 0x04
        header[20] = 3
        header[23:28] = b"\x04NOTE"
        archive = bytes(header) + b"abc" + bytes(125)
        self.image.write_bytes(add_file(build_image(), 4, "NOTE.BNY", 0xE0, 30, archive))
        code, out, _ = run("show", str(self.image), "NOTE.BNY")
        self.assertEqual(code, 0)
        self.assertTrue(out.startswith("NOTE "))
        self.assertIn("TXT   $0000         3", out)

    def test_show_picture_summary(self) -> None:
        code, out, _ = run("show", str(self.image), "PICTURE")
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), "Hi-Res (HGR): 280x192")

    def test_show_missing_entry(self) -> None:
        code, _, err = run("show", str(self.image), "NOPE")
        self.assertEqual(code, 1)
        self.assertIn("NOPE", err)

    def test_list_program_file(self) -> None:
        program = self.root / "startup.bas"
        program.write_bytes(PROGRAM)
        code, out, _ = run("list", str(program))
        self.assertEqual(code, 0)
        self.assertEqual(out, '10  PRINT "HI"\n')

    def test_list_invalid_program(self) -> None:
        program = self.root / "broken.bas"
        program.write_bytes(b"\x01")
        code, out, _ = run("list", str(program))
        self.assertEqual(code, 1)
        self.assertTrue(out.startswith("// Invalid program: "))

    def test_list_integer_program(self) -> None:
        program = self.root / "startup.int"
        program.write_bytes(bytes([0x09, 0x0A, 0x00, 0x61, 0x28, 0xC8, 0xC9, 0x29, 0x01, 0x00]))
        code, out, _ = run("list", "--integer", str(program))
        self.assertEqual(code, 0)
        self.assertEqual(out, '10 PRINT "HI"\n')

    def test_export_png(self) -> None:
        target = self.root / "picture.png"
        code, _, _ = run("export", str(self.image), "PICTURE", str(target))
        self.assertEqual(code, 0)
        with Image.open(target) as picture:
            self.assertEqual(picture.size, (280, 192))
            self.assertEqual(picture.convert("RGBA").getpixel((0, 0)), (255, 255, 255, 255))

    def test_export_rejects_non_picture(self) -> None:
        code, _, err = run("export", str(self.image), "HELLO", str(self.root / "x.png"))
        self.assertEqual(code, 1)
        self.assertIn("not a picture", err)
        self.assertFalse((self.root / "x.png").exists())

    def test_unrecognized_image(self) -> None:
        junk = self.root / "junk.bin"
        junk.write_bytes(b"\x01" * 1000)
        code, _, err = run("catalog", str(junk))
        self.assertEqual(code, 1)
        self.assertIn("a2browse:", err)

    def test_missing_file(self) -> None:
        code, _, err = run("catalog", str(self.root / "absent.po"))
        self.assertEqual(code, 1)
        self.assertIn("absent.po", err)


class HexdumpTests(unittest.TestCase):
    def test_hexdump_limit(self) -> None:
        text = cli.hexdump(bytes(range(32)) * 20, limit=32)
        lines = text.splitlines()
        self.assertEqual(len(lines), 3)
        self.assertTrue(lines[0].startswith("0000: 00 01 02"))
        self.assertEqual(lines[-1], "... 608 more bytes")


if __name__ == "__main__":
    unittest.main()
