"""Compound document (OLE2) writer for the legacy binary container.

Writes a version 3 compound file holding a single ``Workbook`` stream. The
stream is padded to the mini-stream cutoff so it always lives in regular
sectors and no mini FAT is needed.
"""

from __future__ import annotations

import math
import struct
from typing import List


SIGNATURE = bytes.fromhex("D0CF11E0A1B11AE1")
SECTOR_SIZE = 512
MINI_STREAM_CUTOFF = 4096
DIFAT_IN_HEADER = 109

FREESECT = 0xFFFFFFFF
ENDOFCHAIN = 0xFFFFFFFE
FATSECT = 0xFFFFFFFD
DIFSECT = 0xFFFFFFFC
NOSTREAM = 0xFFFFFFFF

ENTRIES_PER_SECTOR = SECTOR_SIZE // 4
DIR_ENTRY_SIZE = 128

STGTY_STREAM = 2
STGTY_ROOT = 5


def _sector_count(size: int) -> int:
    return math.ceil(size / SECTOR_SIZE)


def _dir_entry(name: str, entry_type: int, child: int, start: int, size: int) -> bytes:
    raw_name = (name + "\x00").encode("utf-16-le")
    entry = raw_name.ljust(64, b"\x00")
    entry += struct.pack("<HBB", len(raw_name), entry_type, 1)  # black node
    entry += struct.pack("<III", NOSTREAM, NOSTREAM, child)
    entry += b"\x00" * 16  # clsid
    entry += struct.pack("<I", 0)  # state bits
    entry += b"\x00" * 16  # creation and modification times
    entry += struct.pack("<IQ", start, size)
    return entry


def _empty_dir_entry() -> bytes:
    entry = b"\x00" * 64 + struct.pack("<HBB", 0, 0, 0)
    entry += struct.pack("<III", NOSTREAM, NOSTREAM, NOSTREAM)
    entry += b"\x00" * (DIR_ENTRY_SIZE - len(entry))
    return entry


def _layout(stream_sectors: int) -> tuple:
    """Smallest (FAT sectors, DIFAT sectors) that can map every sector."""
    fat_sectors = 1
    while True:
        difat_sectors = max(0, math.ceil((fat_sectors - DIFAT_IN_HEADER) / (ENTRIES_PER_SECTOR - 1)))
        total = stream_sectors + 1 + fat_sectors + difat_sectors
        if total <= fat_sectors * ENTRIES_PER_SECTOR:
            return fat_sectors, difat_sectors
        fat_sectors += 1


def write_compound_document(data: bytes, stream_name: str = "Workbook") -> bytes:
    """Wrap a workbook stream in a compound document."""
    if len(data) < MINI_STREAM_CUTOFF:
        data += b"\x00" * (MINI_STREAM_CUTOFF - len(data))

    stream_sectors = _sector_count(len(data))
    fat_sectors, difat_sectors = _layout(stream_sectors)

    # Sector order: stream, directory, FAT, DIFAT
    dir_sector = stream_sectors
    fat_start = dir_sector + 1
    difat_start = fat_start + fat_sectors

    fat: List[int] = list(range(1, stream_sectors)) + [ENDOFCHAIN]
    fat.append(ENDOFCHAIN)  # directory
    fat.extend([FATSECT] * fat_sectors)
    fat.extend([DIFSECT] * difat_sectors)
    fat.extend([FREESECT] * (fat_sectors * ENTRIES_PER_SECTOR - len(fat)))

    fat_locations = list(range(fat_start, fat_start + fat_sectors))
    header_difat = fat_locations[:DIFAT_IN_HEADER]
    header_difat += [FREESECT] * (DIFAT_IN_HEADER - len(header_difat))

    header = SIGNATURE + b"\x00" * 16
    header += struct.pack("<HHHHH", 0x003E, 0x0003, 0xFFFE, 9, 6)
    header += b"\x00" * 6
    header += struct.pack("<II", 0, fat_sectors)
    header += struct.pack("<II", dir_sector, 0)
    header += struct.pack("<I", MINI_STREAM_CUTOFF)
    header += struct.pack("<II", ENDOFCHAIN, 0)
    header += struct.pack("<II", difat_start if difat_sectors else ENDOFCHAIN, difat_sectors)
    header += struct.pack(f"<{DIFAT_IN_HEADER}I", *header_difat)

    body = data.ljust(stream_sectors * SECTOR_SIZE, b"\x00")

    directory = _dir_entry("Root Entry", STGTY_ROOT, 1, ENDOFCHAIN, 0)
    directory += _dir_entry(stream_name, STGTY_STREAM, NOSTREAM, 0, len(data))
    directory += _empty_dir_entry() * 2

    fat_bytes = struct.pack(f"<{len(fat)}I", *fat)

    difat_bytes = b""
    remaining = fat_locations[DIFAT_IN_HEADER:]
    for index in range(difat_sectors):
        chunk = remaining[:ENTRIES_PER_SECTOR - 1]
        remaining = remaining[ENTRIES_PER_SECTOR - 1:]
        chunk += [FREESECT] * (ENTRIES_PER_SECTOR - 1 - len(chunk))
        next_sector = difat_start + index + 1 if index + 1 < difat_sectors else ENDOFCHAIN
        difat_bytes += struct.pack(f"<{ENTRIES_PER_SECTOR}I", *chunk, next_sector)

    return header + body + directory + fat_bytes + difat_bytes
