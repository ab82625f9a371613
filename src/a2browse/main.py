#!/usr/bin/env python3
"""
Command-line entry point
"""

import argparse
import json
import logging
import os
import sys

from . import __version__
from .archive import ArchiveEntry, BinaryIIEntry, unwrap_archive
from .basic import INVALID_PROGRAM, Dialect, listing
from .catalog import DiskCatalog
from .classify import ContentKind, decode_entry
from .diskimage import walk_catalog
from .errors import DecodeError
from .filetypes import file_type_info, short_name

logger = logging.getLogger(__name__)

HEXDUMP_LIMIT = 512


def _read_file(path):
    with open(path, 'rb') as f:
        return f.read()


def _load_catalog(path, order=None):
    data = unwrap_archive(_read_file(path))
    return walk_catalog(data, order=order, name=os.path.basename(path))


def _entry_line(entry, depth):
    indent = "  " * depth
    if entry.is_directory:
        suffix = f"  [damaged: {entry.damaged}]" if entry.damaged else ""
        return f"{indent}{entry.name}/{suffix}"
    modified = entry.modified.strftime("%Y-%m-%d %H:%M") if entry.modified else ""
    lock = "*" if entry.locked else " "
    return (f"{indent}{lock}{entry.name:<{max(1, 32 - len(indent))}} {entry.type_label:<5} "
            f"${entry.aux_type:04X} {entry.size_string:>9}  {modified}")


def _catalog_lines(entries, depth=0):
    for entry in entries:
        yield _entry_line(entry, depth)
        if entry.is_directory:
            yield from _catalog_lines(entry.children, depth + 1)


def format_catalog(catalog: DiskCatalog) -> str:
    images = f", {catalog.image_files} disk images" if catalog.image_files else ""
    header = (f"{catalog.volume_name} ({catalog.disk_format}, {catalog.order} order, "
              f"{catalog.disk_size} bytes, {catalog.total_files} files{images})")
    return "\n".join([header] + list(_catalog_lines(catalog.entries)))


def entry_to_dict(entry) -> dict:
    result = {
        "name": entry.name,
        "type": entry.type_label,
        "file_type": entry.file_type,
        "aux_type": entry.aux_type,
        "size": entry.size,
        "modified": entry.modified.isoformat() if entry.modified else None,
        "locked": entry.locked,
    }
    if entry.is_directory:
        result["children"] = [entry_to_dict(child) for child in entry.children]
        if entry.damaged:
            result["damaged"] = entry.damaged
    else:
        result["description"] = file_type_info(entry.prodos_type, entry.aux_type).description
    if entry.is_image:
        result["is_image"] = True
    return result


def catalog_to_dict(catalog: DiskCatalog) -> dict:
    return {
        "volume_name": catalog.volume_name,
        "disk_format": catalog.disk_format,
        "disk_size": catalog.disk_size,
        "order": catalog.order,
        "image_files": catalog.image_files,
        "entries": [entry_to_dict(entry) for entry in catalog.entries],
    }


def hexdump(data, limit=HEXDUMP_LIMIT) -> str:
    lines = []
    for offset in range(0, min(len(data), limit), 16):
        chunk = data[offset:offset + 16]
        hex_part = " ".join(f"{b:02X}" for b in chunk)
        text = "".join(chr(b & 0x7F) if 0x20 <= (b & 0x7F) < 0x7F else "." for b in chunk)
        lines.append(f"{offset:04X}: {hex_part:<47}  {text}")
    if len(data) > limit:
        lines.append(f"... {len(data) - limit} more bytes")
    return "\n".join(lines)


def describe(decoded) -> str:
    """Render a decoded entry for the terminal"""
    kind, value = decoded
    if kind == ContentKind.DISK_IMAGE:
        return format_catalog(value)
    if kind in (ContentKind.APPLESOFT, ContentKind.INTEGER_BASIC):
        return "\n".join(line.text for line in value)
    if kind in (ContentKind.APPLEWORKS, ContentKind.TEACH):
        return value.plain_text
    if kind == ContentKind.GRAPHICS:
        return f"{value.format.value}: {value.width}x{value.height}"
    if kind == ContentKind.ICONS:
        lines = []
        for resource in value:
            sizes = []
            for icon in (resource.large, resource.small):
                if icon is None:
                    continue
                state = "" if icon.decoded else f" ({icon.problem})"
                sizes.append(f"{icon.width}x{icon.height}{state}")
            lines.append(f"{resource.pathname}: type ${resource.file_type:02X} "
                         f"aux ${resource.aux_type:04X} " + ", ".join(sizes))
        return "\n".join(lines)
    if kind == ContentKind.GZIP:
        return describe(value)
    if kind == ContentKind.ZIP:
        return "\n".join(_zip_line(entry) for entry in value)
    if kind == ContentKind.BINARY_II:
        return "\n".join(_binary_ii_line(entry) for entry in value)
    if kind == ContentKind.BINARY:
        return hexdump(value)
    return value


def _zip_line(entry: ArchiveEntry) -> str:
    modified = entry.modified.strftime("%Y-%m-%d %H:%M") if entry.modified else ""
    return f"{entry.filename:<40} {entry.uncompressed_size:>9} {modified}"


def _binary_ii_line(entry: BinaryIIEntry) -> str:
    modified = entry.modified.strftime("%Y-%m-%d %H:%M") if entry.modified else ""
    return (f"{entry.filename:<40} {short_name(entry.file_type, entry.aux_type):<5} "
            f"${entry.aux_type:04X} {entry.length:>9} {modified}")


def _find(catalog, path):
    entry = catalog.find(path)
    if entry is None:
        raise FileNotFoundError(f"{path}: not in catalog")
    return entry


def cmd_catalog(args):
    order = None if args.order == "auto" else args.order
    catalog = _load_catalog(args.image, order)
    if args.json:
        print(json.dumps(catalog_to_dict(catalog), indent=2))
    else:
        print(format_catalog(catalog))
    return 0


def cmd_list(args):
    dialect = Dialect.INTEGER if args.integer else Dialect.APPLESOFT
    text = listing(_read_file(args.file), dialect)
    print(text)
    return 1 if text.startswith(INVALID_PROGRAM) else 0


def cmd_show(args):
    entry = _find(_load_catalog(args.image), args.path)
    print(describe(decode_entry(entry)))
    return 0


def cmd_export(args):
    entry = _find(_load_catalog(args.image), args.path)
    kind, value = decode_entry(entry)
    while kind == ContentKind.GZIP:
        kind, value = value
    if kind == ContentKind.GRAPHICS:
        image = value
    elif kind == ContentKind.ICONS:
        icons = [icon for resource in value for icon in (resource.large, resource.small)
                 if icon is not None and icon.decoded]
        if not icons:
            raise DecodeError(f"{entry.name}: no decodable icons")
        image = icons[0].raster
    else:
        raise DecodeError(f"{entry.name} is {kind.value}, not a picture")
    image.to_pil().save(args.output, "PNG")
    logger.info(f"Wrote {image.width}x{image.height} {image.format.value} to {args.output}")
    return 0


def cmd_mount(args):
    from .fusefs import mount

    mount(args.image, args.mountpoint, foreground=not args.background)
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        prog="a2browse",
        description="Browse Apple II disk images and decode their files")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="More logging (repeat for debug output)")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    catalog_parser = subparsers.add_parser("catalog", help="Show the files on a disk image")
    catalog_parser.add_argument("image", help="Disk image (.po, .do, .dsk, .2mg, optionally gzip/ZIP)")
    catalog_parser.add_argument("--order", choices=("auto", "prodos", "dos"), default="auto",
                                help="Sector order to try first")
    catalog_parser.add_argument("--json", action="store_true", help="Print the tree as JSON")
    catalog_parser.set_defaults(func=cmd_catalog)

    list_parser = subparsers.add_parser("list", help="List a tokenized BASIC program")
    list_parser.add_argument("file", help="Program file extracted from a disk")
    list_parser.add_argument("--integer", action="store_true", help="Integer BASIC instead of Applesoft")
    list_parser.set_defaults(func=cmd_list)

    show_parser = subparsers.add_parser("show", help="Decode one file from a disk image")
    show_parser.add_argument("image", help="Disk image")
    show_parser.add_argument("path", help="Slash-separated path inside the image")
    show_parser.set_defaults(func=cmd_show)

    export_parser = subparsers.add_parser("export", help="Save a picture or icon as PNG")
    export_parser.add_argument("image", help="Disk image")
    export_parser.add_argument("path", help="Slash-separated path inside the image")
    export_parser.add_argument("output", help="PNG file to write")
    export_parser.set_defaults(func=cmd_export)

    mount_parser = subparsers.add_parser("mount", help="Mount a disk image read-only with FUSE")
    mount_parser.add_argument("image", help="Disk image")
    mount_parser.add_argument("mountpoint", help="Directory to mount on")
    mount_parser.add_argument("--background", action="store_true", help="Detach after mounting")
    mount_parser.set_defaults(func=cmd_mount)
    return parser


def main(argv=None):
    """Command-line entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    level = (logging.WARNING, logging.INFO, logging.DEBUG)[min(args.verbose, 2)]
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        return args.func(args)
    except DecodeError as e:
        print(f"a2browse: {e.diagnostic}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"a2browse: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
