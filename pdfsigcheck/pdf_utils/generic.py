"""
Minimal model of the PDF object syntax, sufficient to read signature
dictionaries and form fields out of a file without building the full document
object graph.

Values are mapped onto Python objects as follows:

* dictionaries become :class:`dict` instances keyed by name;
* arrays become :class:`list` instances;
* names become :class:`NameObject` (a ``str`` subclass, including the leading
  slash);
* strings (literal or hexadecimal) become :class:`StringObject` (a ``bytes``
  subclass with a :attr:`~StringObject.text` property);
* indirect references become :class:`Reference` values;
* numbers become ``int`` or ``float``, ``true``/``false`` become ``bool`` and
  ``null`` becomes ``None``.
"""

import binascii
import codecs
import re
from datetime import datetime, timedelta, timezone
from typing import NamedTuple, Tuple

from .misc import (
    PdfReadError,
    PdfStreamError,
    is_regular_character,
    skip_over_whitespace,
)

__all__ = [
    'Reference', 'NameObject', 'StringObject',
    'read_object', 'decode_text_string', 'parse_pdf_date',
]


class Reference(NamedTuple):
    """Reference to an indirect object."""

    idnum: int
    generation: int = 0


class NameObject(str):
    """PDF name, including the leading slash."""
    pass


class StringObject(bytes):
    """
    PDF string. The raw bytes are exposed through the ``bytes`` interface,
    the decoded text through :attr:`text`.
    """

    @property
    def text(self) -> str:
        return decode_text_string(self)


INDIRECT_PATTERN = re.compile(rb'(\d+)\s+(\d+)\s+R(?![^\s()<>\[\]{}/%])')
NUMBER_PATTERN = re.compile(rb'[+-]?(\d+\.?\d*|\.\d+)')
HEX_DIGITS = b'0123456789abcdefABCDEF'
OCTAL_DIGITS = b'01234567'

# PDFDocEncoding agrees with Latin-1 except in these positions
_PDFDOC_OVERRIDES = {
    0x18: '˘', 0x19: 'ˇ', 0x1a: 'ˆ', 0x1b: '˙',
    0x1c: '˝', 0x1d: '˛', 0x1e: '˚', 0x1f: '˜',
    0x80: '•', 0x81: '†', 0x82: '‡', 0x83: '…',
    0x84: '—', 0x85: '–', 0x86: 'ƒ', 0x87: '⁄',
    0x88: '‹', 0x89: '›', 0x8a: '−', 0x8b: '‰',
    0x8c: '„', 0x8d: '“', 0x8e: '”', 0x8f: '‘',
    0x90: '’', 0x91: '‚', 0x92: '™', 0x93: 'ﬁ',
    0x94: 'ﬂ', 0x95: 'Ł', 0x96: 'Œ', 0x97: 'Š',
    0x98: 'Ÿ', 0x99: 'Ž', 0x9a: 'ı', 0x9b: 'ł',
    0x9c: 'œ', 0x9d: 'š', 0x9e: 'ž', 0xa0: '€',
}


def decode_pdfdocencoding(byte_array: bytes) -> str:
    return ''.join(
        _PDFDOC_OVERRIDES.get(b, chr(b)) for b in byte_array
    )


def decode_text_string(byte_array: bytes) -> str:
    """
    Decode a PDF text string, autodetecting the encoding by its byte order
    mark. Strings without a BOM are taken to be in PDFDocEncoding.
    """
    if byte_array.startswith(codecs.BOM_UTF16_BE):
        return byte_array[2:].decode('utf-16be', errors='replace')
    elif byte_array.startswith(codecs.BOM_UTF8):
        return byte_array[3:].decode('utf-8', errors='replace')
    elif byte_array.startswith(codecs.BOM_UTF16_LE):
        # not allowed by the standard, but some authoring tools do this
        return byte_array[2:].decode('utf-16le', errors='replace')
    return decode_pdfdocencoding(byte_array)


def _read_name(data: bytes, pos: int) -> Tuple[NameObject, int]:
    start = pos
    pos += 1
    data_len = len(data)
    while pos < data_len and is_regular_character(data[pos]):
        pos += 1
    raw = data[start:pos]

    # resolve #xx escapes
    def _unescape(m):
        return bytes((int(m.group(1), 16),))

    unescaped = re.sub(rb'#([0-9a-fA-F]{2})', _unescape, raw)
    return NameObject(unescaped.decode('latin-1')), pos


def _read_hex_string(data: bytes, pos: int) -> Tuple[StringObject, int]:
    end = data.find(b'>', pos + 1)
    if end == -1:
        raise PdfStreamError("Unterminated hex string")
    digits = bytes(
        b for b in data[pos + 1:end] if b not in b' \n\r\t\f\x00'
    )
    if any(b not in HEX_DIGITS for b in digits):
        raise PdfStreamError("Unexpected token in hex string")
    if len(digits) % 2:
        digits += b'0'
    return StringObject(binascii.unhexlify(digits)), end + 1


def _read_string_literal(data: bytes, pos: int) -> Tuple[StringObject, int]:
    pos += 1
    parens = 1
    data_len = len(data)
    txt = bytearray()
    while True:
        if pos >= data_len:
            # stream has truncated prematurely
            raise PdfStreamError("Stream has ended unexpectedly")
        tok = data[pos:pos + 1]
        pos += 1
        if tok == b"(":
            parens += 1
        elif tok == b")":
            parens -= 1
            if parens == 0:
                break
        elif tok == b"\\":
            tok = data[pos:pos + 1]
            pos += 1
            if not tok:
                raise PdfStreamError("Stream has ended unexpectedly")
            elif tok == b"n":
                tok = b"\n"
            elif tok == b"r":
                tok = b"\r"
            elif tok == b"t":
                tok = b"\t"
            elif tok == b"b":
                tok = b"\b"
            elif tok == b"f":
                tok = b"\f"
            elif tok in OCTAL_DIGITS:
                # "The number ddd may consist of one, two, or three
                # octal digits; high-order overflow shall be ignored."
                for _ in range(2):
                    ntok = data[pos:pos + 1]
                    if ntok and ntok in OCTAL_DIGITS:
                        tok += ntok
                        pos += 1
                    else:
                        break
                tok = bytes((int(tok, base=8) & 0xff,))
            elif tok in (b"\n", b"\r"):
                # escaped line break, consume a CRLF pair as one
                if tok == b"\r" and data[pos:pos + 1] == b"\n":
                    pos += 1
                tok = b''
            # anything else: simply use the second byte we read
        txt += tok
    return StringObject(bytes(txt)), pos


def _read_number(data: bytes, pos: int):
    m = NUMBER_PATTERN.match(data, pos)
    if m is None:
        raise PdfReadError(f"Expected a number at offset {pos}")
    raw = m.group(0)
    if b'.' in raw:
        return float(raw), m.end()
    return int(raw), m.end()


def _read_keyword(data: bytes, pos: int):
    for keyword, value in ((b'true', True), (b'false', False),
                           (b'null', None)):
        if data.startswith(keyword, pos):
            return value, pos + len(keyword)
    raise PdfReadError(
        f"Unexpected token {data[pos:pos + 10]!r} at offset {pos}"
    )


def read_object(data: bytes, pos: int):
    """
    Read a PDF object from a byte buffer.

    :param data:
        The buffer to read from.
    :param pos:
        The offset at which to start reading. Leading whitespace and comments
        are skipped.
    :return:
        A tuple of the object read and the offset immediately after it.
    :raises PdfReadError:
        if the buffer does not contain a well-formed object at ``pos``.
    """
    pos = skip_over_whitespace(data, pos)
    if pos >= len(data):
        raise PdfStreamError("Unexpected end of data")
    tok = data[pos:pos + 1]
    if tok == b'/':
        return _read_name(data, pos)
    elif tok == b'<':
        if data[pos:pos + 2] == b'<<':
            return _read_dictionary(data, pos)
        return _read_hex_string(data, pos)
    elif tok == b'[':
        return _read_array(data, pos)
    elif tok == b'(':
        return _read_string_literal(data, pos)
    elif tok in b'+-.' or tok.isdigit():
        m = INDIRECT_PATTERN.match(data, pos)
        if m is not None:
            return Reference(int(m.group(1)), int(m.group(2))), m.end()
        return _read_number(data, pos)
    return _read_keyword(data, pos)


def _read_array(data: bytes, pos: int):
    pos += 1
    result = []
    while True:
        pos = skip_over_whitespace(data, pos)
        if pos >= len(data):
            raise PdfStreamError("Unterminated array")
        if data[pos:pos + 1] == b']':
            return result, pos + 1
        value, pos = read_object(data, pos)
        result.append(value)


def _read_dictionary(data: bytes, pos: int):
    pos += 2
    result = {}
    while True:
        pos = skip_over_whitespace(data, pos)
        if pos >= len(data):
            raise PdfStreamError("Unterminated dictionary")
        if data[pos:pos + 2] == b'>>':
            return result, pos + 2
        if data[pos:pos + 1] != b'/':
            raise PdfReadError(
                f"Dictionary key must be a name (offset {pos})"
            )
        key, pos = _read_name(data, pos)
        value, pos = read_object(data, pos)
        # the last occurrence of a duplicated key wins
        result[key] = value


# The year field is the only mandatory one
MIN_DATE_REGEX = re.compile(r'^D:(\d{4})')
TWO_DIGIT_START = re.compile(r'^(\d\d)')
UTC_OFFSET = re.compile(r"(\d\d)(?:'(\d\d))?'?")


def parse_pdf_date(date_str: str) -> datetime:
    """
    Parse a PDF date string (``D:YYYYMMDDHHmmSSOHH'mm'``).

    :raises PdfReadError:
        if the string is not a valid PDF date.
    """
    m = MIN_DATE_REGEX.match(date_str)
    if not m:
        raise PdfReadError(f"{date_str} does not appear to be a date string.")
    year = int(m.group(1))

    # now, there are a number of 2-digit groups (anywhere from 0 to 5)
    date_remaining = date_str[6:]
    lower_order = [1, 1, 0, 0, 0]

    for ix in range(5):
        m = TWO_DIGIT_START.match(date_remaining)
        if not m:
            break
        lower_order[ix] = int(m.group(1))
        date_remaining = date_remaining[2:]

    month, day, hour, minute, second = lower_order

    # finally, parse the timezone
    tz_info = None
    if date_remaining:
        sgn = date_remaining[0]
        if date_remaining in ('Z', "Z00'00'"):
            tz_offset = timedelta(0)
        elif sgn in ('+', '-'):
            tz_spec = date_remaining[1:]
            tz_match = UTC_OFFSET.fullmatch(tz_spec)
            if not tz_match:
                raise PdfReadError(
                    f"Improper timezone specification in {date_str}: {tz_spec}"
                )
            tz_hours = int(tz_match.group(1))
            tz_minutes = int(tz_match.group(2) or 0)
            tz_offset = timedelta(hours=tz_hours, minutes=tz_minutes)
            if sgn == '-':
                tz_offset = -tz_offset
        else:
            raise PdfReadError(f"Improper trailing characters in {date_str}.")
        tz_info = timezone(tz_offset)

    try:
        return datetime(
            year=year, month=month, day=day,
            hour=hour, minute=minute, second=second,
            microsecond=0, tzinfo=tz_info,
        )
    except ValueError as e:
        raise PdfReadError("Improper date value", e)
