"""
ProDOS file type names
Short names and descriptions from the Apple II File Type Notes.
"""

from collections import namedtuple

FileTypeInfo = namedtuple('FileTypeInfo', ['short_name', 'description', 'category', 'is_graphics'])

# code -> (short name, description, category)
FILE_TYPES = {
    0x00: ('NON', 'Unknown', 'General'),
    0x01: ('BAD', 'Bad Blocks', 'System'),
    0x02: ('PCD', 'Pascal Code', 'Code'),
    0x03: ('PTX', 'Pascal Text', 'Text'),
    0x04: ('TXT', 'Text File', 'Text'),
    0x05: ('PDA', 'Pascal Data', 'Data'),
    0x06: ('BIN', 'Binary', 'Code'),
    0x07: ('FNT', 'Apple III Font', 'Font'),
    0x08: ('FOT', 'Apple II Graphics', 'Graphics'),
    0x0F: ('DIR', 'Folder', 'System'),
    0x19: ('ADB', 'AppleWorks Database', 'Productivity'),
    0x1A: ('AWP', 'AppleWorks Word Proc', 'Productivity'),
    0x1B: ('ASP', 'AppleWorks Spreadsheet', 'Productivity'),
    0x2A: ('8SC', 'Apple II Source Code', 'Code'),
    0x2B: ('8OB', 'Apple II Object Code', 'Code'),
    0x2E: ('P8C', 'ProDOS 8 Module', 'Code'),
    0x50: ('GWP', 'GS Word Processing', 'Productivity'),
    0x51: ('GSS', 'GS Spreadsheet', 'Productivity'),
    0x52: ('GDB', 'GS Database', 'Productivity'),
    0x53: ('DRW', 'Drawing', 'Graphics'),
    0x54: ('GDP', 'Desktop Publishing', 'Productivity'),
    0xB0: ('SRC', 'Apple IIgs Source', 'Code'),
    0xB1: ('OBJ', 'Apple IIgs Object', 'Code'),
    0xB2: ('LIB', 'Apple IIgs Library', 'Code'),
    0xB3: ('S16', 'GS/OS Application', 'System'),
    0xB4: ('RTL', 'GS/OS Runtime Library', 'System'),
    0xB5: ('EXE', 'Shell Command', 'System'),
    0xB6: ('PIF', 'Permanent Init File', 'System'),
    0xB7: ('TIF', 'Temporary Init File', 'System'),
    0xB8: ('NDA', 'New Desk Accessory', 'System'),
    0xB9: ('CDA', 'Classic Desk Accessory', 'System'),
    0xBA: ('TOL', 'Tool', 'System'),
    0xBB: ('DRV', 'Device Driver', 'System'),
    0xBC: ('LDF', 'Load File', 'System'),
    0xBD: ('FST', 'File System Translator', 'System'),
    0xC0: ('PNT', 'Packed Super Hi-Res', 'Graphics'),
    0xC1: ('PIC', 'Super Hi-Res Picture', 'Graphics'),
    0xC2: ('ANI', 'Paintworks Animation', 'Graphics'),
    0xC3: ('PAL', 'Paintworks Palette', 'Graphics'),
    0xC5: ('OOG', 'Object Graphics', 'Graphics'),
    0xCA: ('ICN', 'Finder Icons', 'System'),
    0xD5: ('MUS', 'Music', 'Audio'),
    0xD6: ('INS', 'Instrument', 'Audio'),
    0xD7: ('MDI', 'MIDI', 'Audio'),
    0xD8: ('SND', 'Sound', 'Audio'),
    0xE0: ('LBR', 'Library', 'Archive'),
    0xE2: ('ATK', 'AppleTalk Data', 'Network'),
    0xFA: ('INT', 'Integer BASIC', 'Code'),
    0xFB: ('IVR', 'Integer Variables', 'Data'),
    0xFC: ('BAS', 'Applesoft BASIC', 'Code'),
    0xFD: ('VAR', 'Applesoft Variables', 'Data'),
    0xFE: ('REL', 'Relocatable', 'Code'),
    0xFF: ('SYS', 'ProDOS System', 'System'),
}

# (code, aux) -> (short name, description) where the aux type changes the meaning
AUX_VARIANTS = {
    (0x08, 0x2000): ('HGR', 'Hi-Res Graphics'),
    (0x08, 0x4000): ('HGR', 'Hi-Res Screen'),
    (0x08, 0x4001): ('DHGR', 'Double Hi-Res Screen'),
    (0x08, 0x8001): ('HGR', 'Printographer Packed HGR'),
    (0x08, 0x8002): ('DHGR', 'Printographer Packed DHGR'),
    (0xC0, 0x0000): ('PNT', 'Paintworks Packed'),
    (0xC0, 0x0001): ('SHR', 'Packed Super Hi-Res'),
    (0xC0, 0x0002): ('PIC', 'Apple Preferred Format'),
    (0xC0, 0x0003): ('PICT', 'Packed QuickDraw II PICT'),
    (0xC0, 0x8005): ('DGX', 'DreamGrafix'),
    (0xC0, 0x8006): ('GIF', 'GIF Image'),
    (0xC1, 0x0000): ('SHR', 'Super Hi-Res Screen'),
    (0xC1, 0x0001): ('PICT', 'QuickDraw PICT'),
    (0xC1, 0x0002): ('SHR', 'SHR 3200 Color'),
    (0xC1, 0x8001): ('IMG', 'Allison Raw Image'),
    (0x50, 0x8010): ('GWP', 'AppleWorks GS WP'),
    (0x53, 0x8010): ('DRW', 'AppleWorks GS Graphics'),
}

GRAPHICS_TYPES = {0x08, 0xC0, 0xC1, 0xC2, 0x53, 0xC5}


def file_type_info(file_type: int, aux_type=None) -> FileTypeInfo:
    """Look up the name of a ProDOS file type, refined by aux type when known"""
    base = FILE_TYPES.get(file_type)
    if base is None:
        return FileTypeInfo(f"${file_type:02X}", 'Unknown Type', 'Unknown', False)

    short_name, description, category = base
    if aux_type is not None and (file_type, aux_type) in AUX_VARIANTS:
        short_name, description = AUX_VARIANTS[(file_type, aux_type)]
    return FileTypeInfo(short_name, description, category, file_type in GRAPHICS_TYPES)


def short_name(file_type: int, aux_type=None) -> str:
    return file_type_info(file_type, aux_type).short_name
