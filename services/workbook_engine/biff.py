"""BIFF8 record codec.

Reads and writes the records of a legacy binary workbook stream:
- Record walking over the globals and worksheet substreams
- Data validation (DV/DVAL) records and their list operands
- Defined names (SUPBOOK/EXTERNSHEET/NAME)
- Cell and formatting records used by the writer
- Cell comments (NOTE/OBJ/TXO and their drawing records)
"""

from __future__ import annotations

import logging
import math
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterator, List, NamedTuple, Optional, Sequence, Tuple


logger = logging.getLogger(__name__)


MAX_RECORD_DATA = 8224  # Largest payload of a single record
BIFF8_VERSION = 0x0600


class RecordType(IntEnum):
    # Workbook/Worksheet Structure
    BOF = 0x0809
    EOF = 0x000A
    CONTINUE = 0x003C
    BOUNDSHEET = 0x0085
    DIMENSIONS = 0x0200
    WINDOW1 = 0x003D
    WINDOW2 = 0x023E

    # Globals
    CODEPAGE = 0x0042
    DATEMODE = 0x0022
    FONT = 0x0031
    FORMAT = 0x041E
    XF = 0x00E0
    STYLE = 0x0293
    SST = 0x00FC
    EXTSST = 0x00FF

    # Names
    SUPBOOK = 0x01AE
    EXTERNSHEET = 0x0017
    NAME = 0x0018

    # Cells
    BLANK = 0x0201
    LABELSST = 0x00FD
    FORMULA = 0x0006

    # Validation
    DVAL = 0x01B2
    DV = 0x01BE

    # Comments and drawings
    MSODRAWINGGROUP = 0x00EB
    MSODRAWING = 0x00EC
    OBJ = 0x005D
    TXO = 0x01B6
    NOTE = 0x001C


class Substream(IntEnum):
    GLOBALS = 0x0005
    WORKSHEET = 0x0010


# Formula tokens
PTG_ATTR = 0x19
PTG_STR = 0x17
PTG_NAME = (0x23, 0x43, 0x63)
PTG_FUNC = (0x21, 0x41, 0x61)
PTG_AREA3D = 0x3B
ATTR_VOLATILE = 0x01
FUNC_TODAY = 0x00DD

# DV flags
DV_TYPE_LIST = 0x00000003
DV_EXPLICIT_LIST = 0x00000080
DV_ALLOW_BLANK = 0x00000100
DV_SHOW_INPUT = 0x00040000
DV_SHOW_ERROR = 0x00080000

# Internal references in SUPBOOK
SUPBOOK_SELF = 0x0401

_HEADER = struct.Struct("<HH")


# =============================================================================
# RECORD WALKING
# =============================================================================

class Record(NamedTuple):
    offset: int
    type: int
    data: bytes


def iter_records(data: bytes, start: int = 0, end: Optional[int] = None) -> Iterator[Record]:
    """Yield every record between ``start`` and ``end``."""
    end = len(data) if end is None else end
    pos = start
    while pos + _HEADER.size <= end:
        rtype, length = _HEADER.unpack_from(data, pos)
        body_start = pos + _HEADER.size
        if body_start + length > end:
            logger.debug(f"[BIFF] Truncated record 0x{rtype:04X} at {pos}")
            return
        yield Record(pos, rtype, bytes(data[body_start:body_start + length]))
        pos = body_start + length


def iter_substream(data: bytes, start: int) -> Iterator[Record]:
    """Yield the records of the substream whose BOF is at ``start``.

    Embedded substreams (charts) are skipped along with their BOF/EOF pair.
    """
    depth = 0
    for record in iter_records(data, start):
        if record.type == RecordType.BOF:
            depth += 1
            continue
        if record.type == RecordType.EOF:
            depth -= 1
            if depth <= 0:
                return
            continue
        if depth == 1:
            yield record


def record(rtype: int, payload: bytes = b"") -> bytes:
    """Encode one record, spilling oversized payloads into CONTINUE records."""
    chunks = [payload[i:i + MAX_RECORD_DATA] for i in range(0, len(payload), MAX_RECORD_DATA)] or [b""]
    out = _HEADER.pack(rtype, len(chunks[0])) + chunks[0]
    for chunk in chunks[1:]:
        out += _HEADER.pack(RecordType.CONTINUE, len(chunk)) + chunk
    return out


# =============================================================================
# STRINGS
# =============================================================================

def encode_chars(text: str) -> Tuple[int, int, bytes]:
    """(high-byte flag, character count, raw bytes) for a BIFF8 string."""
    try:
        raw = text.encode("latin-1")
        return 0, len(raw), raw
    except UnicodeEncodeError:
        raw = text.encode("utf-16-le")
        return 1, len(raw) // 2, raw


def unicode_string(text: str, length_size: int = 2) -> bytes:
    """XLUnicodeString (2-byte count) or ShortXLUnicodeString (1-byte count)."""
    flag, count, raw = encode_chars(text)
    fmt = "<HB" if length_size == 2 else "<BB"
    return struct.pack(fmt, count, flag) + raw


def read_unicode_string(data: bytes, pos: int, length_size: int = 2) -> Tuple[str, int]:
    """Decode a BIFF8 string at ``pos``. Returns (text, position after it)."""
    fmt = "<H" if length_size == 2 else "<B"
    (count,) = struct.unpack_from(fmt, data, pos)
    pos += length_size
    flag = data[pos]
    pos += 1
    if flag & 0x01:
        end = pos + 2 * count
        return data[pos:end].decode("utf-16-le"), end
    end = pos + count
    return data[pos:end].decode("latin-1"), end


# =============================================================================
# DATA VALIDATION
# =============================================================================

Area = Tuple[int, int, int, int]  # (row_first, row_last, col_first, col_last)


@dataclass
class DvRecord:
    """The parts of a DV record the extractor needs."""
    flags: int
    formula1: bytes
    areas: List[Area]

    @property
    def validation_type(self) -> int:
        return self.flags & 0x0F


class DvOperand(NamedTuple):
    """First token of a list validation's formula."""
    name_index: Optional[int]  # 0-based index into the NAME table
    literal: Optional[str]  # Null-separated options


def parse_dv_record(data: bytes) -> DvRecord:
    """Decode a DV record. Raises struct.error/IndexError when truncated."""
    (flags,) = struct.unpack_from("<I", data, 0)
    pos = 4
    for _ in range(4):  # prompt title, error title, prompt, error
        _, pos = read_unicode_string(data, pos)

    (cce,) = struct.unpack_from("<H", data, pos)
    pos += 4
    formula1 = data[pos:pos + cce]
    pos += cce

    (cce2,) = struct.unpack_from("<H", data, pos)
    pos += 4 + cce2

    (count,) = struct.unpack_from("<H", data, pos)
    pos += 2
    areas = [struct.unpack_from("<HHHH", data, pos + 8 * i) for i in range(count)]
    return DvRecord(flags=flags, formula1=formula1, areas=areas)


def decode_list_operand(rgce: bytes) -> Optional[DvOperand]:
    """Classify the first token of a validation formula.

    A name token references the NAME table, a string token carries the
    literal options. Anything else is not a list source.
    """
    if not rgce:
        return None

    ptg = rgce[0]
    if ptg in PTG_NAME:
        (iname,) = struct.unpack_from("<H", rgce, 1)
        return DvOperand(name_index=iname - 1, literal=None)

    if ptg == PTG_STR:
        text, _ = read_unicode_string(rgce, 1, length_size=1)
        return DvOperand(name_index=None, literal=text)

    return None


def _empty_unicode_string() -> bytes:
    # Excel stores empty DV strings as a single null character
    return struct.pack("<HB", 1, 0) + b"\x00"


def build_dval(count: int) -> bytes:
    return record(RecordType.DVAL, struct.pack("<HIIII", 0x0004, 0, 0, 0xFFFFFFFF, count))


def build_dv(area: Area, name_index: Optional[int] = None, options: Optional[Sequence[str]] = None) -> bytes:
    """Encode a list validation over one area.

    ``name_index`` is the 0-based NAME table index of the source range;
    otherwise ``options`` are stored as a literal list.
    """
    flags = DV_TYPE_LIST | DV_ALLOW_BLANK | DV_SHOW_INPUT | DV_SHOW_ERROR
    if name_index is not None:
        rgce = struct.pack("<BHH", PTG_NAME[0], name_index + 1, 0)
    else:
        flags |= DV_EXPLICIT_LIST
        rgce = bytes([PTG_STR]) + unicode_string("\x00".join(options or []), length_size=1)

    payload = struct.pack("<I", flags)
    payload += _empty_unicode_string() * 4
    payload += struct.pack("<HH", len(rgce), 0) + rgce
    payload += struct.pack("<HH", 0, 0)
    payload += struct.pack("<H", 1) + struct.pack("<HHHH", *area)
    return record(RecordType.DV, payload)


# =============================================================================
# FORMULAS
# =============================================================================

def formula_tokens(data: bytes) -> bytes:
    """The parsed expression (rgce) of a FORMULA record."""
    (cce,) = struct.unpack_from("<H", data, 20)
    return data[22:22 + cce]


def is_today_formula(rgce: bytes) -> bool:
    """True when the expression is a lone TODAY() call."""
    if len(rgce) >= 4 and rgce[0] == PTG_ATTR and rgce[1] & ATTR_VOLATILE:
        rgce = rgce[4:]
    if len(rgce) != 3 or rgce[0] not in PTG_FUNC:
        return False
    (iftab,) = struct.unpack_from("<H", rgce, 1)
    return iftab == FUNC_TODAY


# =============================================================================
# DEFINED NAMES
# =============================================================================

def build_supbook(sheet_count: int) -> bytes:
    return record(RecordType.SUPBOOK, struct.pack("<HH", sheet_count, SUPBOOK_SELF))


def build_externsheet(sheet_count: int) -> bytes:
    """One XTI entry per sheet, so XTI index == sheet index."""
    payload = struct.pack("<H", sheet_count)
    for index in range(sheet_count):
        payload += struct.pack("<HHH", 0, index, index)
    return record(RecordType.EXTERNSHEET, payload)


def build_name(name: str, sheet_index: int, area: Area) -> bytes:
    """A workbook-level NAME referring to an absolute area of one sheet."""
    row_first, row_last, col_first, col_last = area
    rgce = struct.pack("<BHHHHH", PTG_AREA3D, sheet_index, row_first, row_last, col_first, col_last)
    flag, count, raw = encode_chars(name)
    payload = struct.pack("<HBBHHHBBBB", 0, 0, count, len(rgce), 0, 0, 0, 0, 0, 0)
    payload += bytes([flag]) + raw + rgce
    return record(RecordType.NAME, payload)


# =============================================================================
# GLOBALS AND CELLS
# =============================================================================

def build_bof(substream: Substream) -> bytes:
    return record(RecordType.BOF, struct.pack("<HHHHII", BIFF8_VERSION, substream, 0x0DBB, 0x07CC, 0x41, 0x06))


def build_eof() -> bytes:
    return record(RecordType.EOF)


def build_codepage() -> bytes:
    return record(RecordType.CODEPAGE, struct.pack("<H", 1200))


def build_window1(active_sheet: int) -> bytes:
    return record(RecordType.WINDOW1, struct.pack(
        "<HHHHHHHHH", 0, 0, 0x25BC, 0x1572, 0x0038, active_sheet, 0, 1, 0x0258,
    ))


def build_datemode(date_mode: int = 0) -> bytes:
    return record(RecordType.DATEMODE, struct.pack("<H", date_mode))


def build_font(name: str = "Arial", height: int = 200) -> bytes:
    payload = struct.pack("<HHHHHBBBB", height, 0, 0x7FFF, 400, 0, 0, 0, 0, 0)
    return record(RecordType.FONT, payload + unicode_string(name, length_size=1))


def build_format(key: int, pattern: str) -> bytes:
    return record(RecordType.FORMAT, struct.pack("<H", key) + unicode_string(pattern))


def build_xf(format_key: int = 0, is_style: bool = False, font_index: int = 0) -> bytes:
    type_prot = 0xFFF5 if is_style else 0x0001
    used = 0xF4 if is_style and font_index else 0x00
    if not is_style and format_key:
        used |= 0x04
    payload = struct.pack("<HHHBBBBIIH", font_index, format_key, type_prot, 0x20, 0, 0, used, 0, 0, 0x20C0)
    return record(RecordType.XF, payload)


def build_style() -> bytes:
    # Built-in "Normal" style on XF 0
    return record(RecordType.STYLE, struct.pack("<HBB", 0x8000, 0x00, 0xFF))


def build_boundsheet(name: str, position: int, hidden: bool) -> bytes:
    payload = struct.pack("<IBB", position, 1 if hidden else 0, 0)
    return record(RecordType.BOUNDSHEET, payload + unicode_string(name, length_size=1))


def build_sst(strings: Sequence[str], total: int, position: int) -> bytes:
    """SST (with CONTINUE records) followed by its EXTSST index.

    ``position`` is the stream offset the SST record will be written at.
    """
    records: List[bytearray] = [bytearray(struct.pack("<II", total, len(strings)))]
    bucket_size = max(8, len(strings) // 128 + 1)
    buckets: List[Tuple[int, int]] = []

    for index, text in enumerate(strings):
        flag, count, raw = encode_chars(text)
        char_size = 2 if flag else 1
        current = records[-1]
        if len(current) + 3 + char_size > MAX_RECORD_DATA:
            current = bytearray()
            records.append(current)
        if index % bucket_size == 0:
            buckets.append((len(records) - 1, len(current)))

        current += struct.pack("<HB", count, flag)
        pos = 0
        while pos < len(raw):
            room = (MAX_RECORD_DATA - len(current)) // char_size * char_size
            if room == 0:
                # A split character array restarts with its option flags
                current = bytearray([flag])
                records.append(current)
                continue
            chunk = raw[pos:pos + room]
            current += chunk
            pos += len(chunk)

    out = b""
    starts = []
    for index, payload in enumerate(records):
        starts.append(position + len(out))
        rtype = RecordType.SST if index == 0 else RecordType.CONTINUE
        out += _HEADER.pack(rtype, len(payload)) + bytes(payload)

    extsst = struct.pack("<H", bucket_size)
    for record_index, offset in buckets:
        extsst += struct.pack("<IHH", starts[record_index] + _HEADER.size + offset, _HEADER.size + offset, 0)
    return out + record(RecordType.EXTSST, extsst)


def build_dimensions(row_count: int, column_count: int) -> bytes:
    return record(RecordType.DIMENSIONS, struct.pack("<IIHHH", 0, row_count, 0, column_count, 0))


def build_labelsst(row: int, column: int, xf_index: int, sst_index: int) -> bytes:
    return record(RecordType.LABELSST, struct.pack("<HHHI", row, column, xf_index, sst_index))


def build_blank(row: int, column: int, xf_index: int) -> bytes:
    return record(RecordType.BLANK, struct.pack("<HHH", row, column, xf_index))


WINDOW2_DEFAULT = 0x00B6
WINDOW2_SELECTED = 0x0200
WINDOW2_PAGED = 0x0400


def build_window2(active: bool) -> bytes:
    grbit = WINDOW2_DEFAULT
    if active:
        grbit |= WINDOW2_SELECTED | WINDOW2_PAGED
    return record(RecordType.WINDOW2, struct.pack("<HHHHHHHI", grbit, 0, 0, 0x40, 0, 0, 0, 0))


# =============================================================================
# COMMENTS
# =============================================================================

SHAPES_PER_CLUSTER = 1024
TEXT_CHUNK = 4096  # Characters per CONTINUE record of comment text


@dataclass
class Note:
    """A cell comment to be written."""
    row: int
    column: int
    text: str
    author: str = ""


@dataclass
class Drawing:
    """The comment drawing of one sheet."""
    drawing_id: int
    spid_base: int
    notes: List[Note]

    @property
    def shape_count(self) -> int:
        return len(self.notes) + 1  # Group shape plus one per comment

    @property
    def max_spid(self) -> int:
        return self.spid_base + len(self.notes)


def escher(fbt: int, data: bytes = b"", version: int = 0, instance: int = 0, length: Optional[int] = None) -> bytes:
    """One Office Drawing record header plus its data."""
    header = struct.pack("<HHI", version | (instance << 4), fbt, len(data) if length is None else length)
    return header + data


def allocate_drawings(sheet_notes: Sequence[List[Note]]) -> List[Optional[Drawing]]:
    """Assign drawing ids and shape id ranges to every sheet with comments."""
    drawings: List[Optional[Drawing]] = []
    drawing_id = 0
    next_cluster = 1
    for notes in sheet_notes:
        if not notes:
            drawings.append(None)
            continue
        drawing_id += 1
        drawing = Drawing(drawing_id=drawing_id, spid_base=next_cluster * SHAPES_PER_CLUSTER, notes=list(notes))
        next_cluster += math.ceil(drawing.shape_count / SHAPES_PER_CLUSTER)
        drawings.append(drawing)
    return drawings


def build_drawing_group(drawings: Sequence[Drawing]) -> bytes:
    """MSODRAWINGGROUP for the workbook globals."""
    clusters = b""
    cluster_count = 0
    for drawing in drawings:
        remaining = drawing.shape_count
        while remaining > 0:
            used = min(remaining, SHAPES_PER_CLUSTER)
            clusters += struct.pack("<II", drawing.drawing_id, used + 1)
            cluster_count += 1
            remaining -= used

    spid_max = max(d.max_spid for d in drawings) + 1
    shapes_saved = sum(d.shape_count for d in drawings)
    dgg = escher(0xF006, struct.pack("<IIII", spid_max, cluster_count + 1, shapes_saved, len(drawings)) + clusters)
    opt = escher(0xF00B, bytes.fromhex("BF0008000800810109000008C00140000008"), version=3, instance=3)
    split_menu = escher(0xF11E, bytes.fromhex("0D0000080C00000817000008F7000010"), instance=4)
    body = dgg + opt + split_menu
    return record(RecordType.MSODRAWINGGROUP, escher(0xF000, body, version=15))


def _comment_shape(spid: int, note: Note, columns: int, rows: int) -> bytes:
    """Shape container of one comment, minus its trailing text box record."""
    sp = escher(0xF00A, struct.pack("<II", spid, 0x0A00), version=2, instance=202)
    options = (
        bytes.fromhex("800000000000BF0008000800580100000000" "8101")
        + bytes([0x50])
        + bytes.fromhex("000008830150000008BF0110001100010200000000" "3F0203000300BF03")
        + struct.pack("<H", 0x0002)  # Hidden until hovered
        + bytes.fromhex("0A00")
    )
    opt = escher(0xF00B, options, version=3, instance=9)
    anchor = escher(0xF010, struct.pack(
        "<H8H", 3, note.column, 0, note.row, 0, note.column + columns, 0, note.row + rows, 0,
    ))
    client_data = escher(0xF011)
    textbox = escher(0xF00D)
    body = sp + opt + anchor + client_data
    return escher(0xF004, body, version=15, length=len(body) + len(textbox))


def _obj(object_id: int) -> bytes:
    cmo = struct.pack("<HHHHH", 0x15, 0x12, 0x19, object_id, 0x4011) + b"\x00" * 12
    nts = struct.pack("<HH", 0x0D, 0x16) + b"\x00" * 22
    end = struct.pack("<HH", 0, 0)
    return record(RecordType.OBJ, cmo + nts + end)


def _txo(text: str) -> bytes:
    raw = text.encode("utf-16-le")
    count = len(raw) // 2
    out = record(RecordType.TXO, struct.pack("<HHIHHHI", 0x0212, 0, 0, 0, count, 16, 0))
    step = TEXT_CHUNK * 2
    for pos in range(0, len(raw), step):
        out += record(RecordType.CONTINUE, b"\x01" + raw[pos:pos + step])
    out += record(RecordType.CONTINUE, struct.pack("<HHI", 0, 0, 0) + struct.pack("<HHI", count, 0, 0))
    return out


def build_note(note: Note, object_id: int) -> bytes:
    flag, count, raw = encode_chars(note.author)
    payload = struct.pack("<HHHH", note.row, note.column, 0, object_id)
    payload += struct.pack("<HB", count, flag) + raw + b"\x00"
    return record(RecordType.NOTE, payload)


def build_sheet_drawing(drawing: Drawing, columns: int, rows: int) -> bytes:
    """MSODRAWING/OBJ/TXO records of every comment on one sheet.

    The NOTE records are built separately with ``build_note``; object ids
    are 1-based in comment order.
    """
    shapes = [
        _comment_shape(drawing.spid_base + i + 1, note, columns, rows)
        for i, note in enumerate(drawing.notes)
    ]
    textbox = escher(0xF00D)
    shapes_length = sum(len(shape) + len(textbox) for shape in shapes)

    group = escher(0xF009, b"\x00" * 16, version=1) + escher(
        0xF00A, struct.pack("<II", drawing.spid_base, 0x0005), version=2,
    )
    group_container = escher(0xF004, group, version=15)
    dg = escher(0xF008, struct.pack("<II", drawing.shape_count, drawing.max_spid), instance=drawing.drawing_id)
    spgr_length = len(group_container) + shapes_length
    spgr_header = escher(0xF003, version=15, length=spgr_length)
    dg_header = escher(0xF002, version=15, length=len(dg) + len(spgr_header) + spgr_length)

    out = b""
    for index, (note, shape) in enumerate(zip(drawing.notes, shapes)):
        head = dg_header + dg + spgr_header + group_container if index == 0 else b""
        out += record(RecordType.MSODRAWING, head + shape)
        out += _obj(index + 1)
        out += record(RecordType.MSODRAWING, textbox)
        out += _txo(note.text)
    return out
