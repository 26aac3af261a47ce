"""
Utilities to locate signature fields and their signature dictionaries in a
PDF file.

Two strategies are available. The structural strategy resolves signature
dictionaries through the document's objects and form fields, so a
signature's metadata is always read from the dictionary that carries its
byte range. The positional strategy scans the file for the textual markers
of signature dictionaries and pairs them up by index. It only serves as a
fallback for files that cannot be read structurally: fields that are
reordered or interleaved across marker types may end up mispaired.
"""

import enum
import logging
import re
import zlib
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from ..pdf_utils import generic
from ..pdf_utils.generic import Reference, StringObject
from ..pdf_utils.misc import PdfReadError, pair_iter
from ..pdf_utils.reader import PdfObjectScanner
from .general import ByteRangeError

__all__ = [
    'LocatorStrategy', 'SignatureFieldDescriptor',
    'locate_signature_fields', 'list_signature_field_names', 'count_pages',
    'scan_objects',
]

logger = logging.getLogger(__name__)


BYTE_RANGE_MARKER = re.compile(
    r'/ByteRange\s*\[\s*(\d+)\s+(\d+)\s+(\d+)\s+(\d+)\s*\]'
)
CONTENTS_MARKER = re.compile(r'/Contents\s*<([0-9a-fA-F]+)>')
REASON_MARKER = re.compile(r'/Reason\s*(?=\()')
LOCATION_MARKER = re.compile(r'/Location\s*(?=\()')
CONTACT_INFO_MARKER = re.compile(r'/ContactInfo\s*(?=\()')

# errors that may escape from the scanner on pathological input
_SCAN_ERRORS = (PdfReadError, ValueError, zlib.error, RecursionError)


@enum.unique
class LocatorStrategy(enum.Enum):
    STRUCTURAL = 'structural'
    POSITIONAL = 'positional'


@dataclass(frozen=True)
class SignatureFieldDescriptor:
    """
    Description of a signature found in a document, as far as it can be
    determined without looking at the signature itself.
    """

    field_name: str
    """
    Fully qualified name of the signature field, or a synthetic name if
    the signature could not be associated with a field.
    """

    byte_range: Optional[Tuple[int, ...]] = None
    """
    The ``/ByteRange`` entry in its flattened form, i.e.
    ``(offset1, length1, offset2, length2, ...)``.
    """

    contents_hex: Optional[str] = None
    """
    The ``/Contents`` entry (the CMS envelope), hex-encoded.
    """

    reason: Optional[str] = None
    location: Optional[str] = None
    contact_info: Optional[str] = None
    signer_name: Optional[str] = None
    """
    The ``/Name`` entry, if present.
    """

    signing_time: Optional[datetime] = None
    """
    The claimed signing time in the ``/M`` entry, if present.
    """

    sub_filter: Optional[str] = None

    @property
    def spans(self) -> List[Tuple[int, int]]:
        """
        The byte range as a list of ``(offset, length)`` pairs.

        :raises ByteRangeError:
            if the byte range is missing or has an odd number of entries.
        """
        if self.byte_range is None:
            raise ByteRangeError("Signature has no usable /ByteRange entry.")
        try:
            return list(pair_iter(self.byte_range))
        except ValueError:
            raise ByteRangeError(
                "/ByteRange must have an even number of entries."
            )


def _text(sig_dict: dict, key: str) -> Optional[str]:
    value = sig_dict.get(key)
    if isinstance(value, StringObject):
        return value.text
    return None


def _byte_range(value) -> Optional[Tuple[int, ...]]:
    if not isinstance(value, list):
        return None
    if not all(isinstance(x, int) and not isinstance(x, bool) for x in value):
        return None
    return tuple(value)


def _signing_time(sig_dict: dict) -> Optional[datetime]:
    value = _text(sig_dict, '/M')
    if value is None:
        return None
    try:
        return generic.parse_pdf_date(value)
    except PdfReadError as e:
        logger.debug(f"Ignoring malformed /M entry: {e.msg}")
        return None


def _descriptor_from_dict(field_name: str, sig_dict: dict) \
        -> SignatureFieldDescriptor:
    contents = sig_dict.get('/Contents')
    sub_filter = sig_dict.get('/SubFilter')
    return SignatureFieldDescriptor(
        field_name=field_name,
        byte_range=_byte_range(sig_dict.get('/ByteRange')),
        contents_hex=(
            bytes(contents).hex() if isinstance(contents, StringObject)
            else None
        ),
        reason=_text(sig_dict, '/Reason'),
        location=_text(sig_dict, '/Location'),
        contact_info=_text(sig_dict, '/ContactInfo'),
        signer_name=_text(sig_dict, '/Name'),
        signing_time=_signing_time(sig_dict),
        sub_filter=(
            sub_filter[1:] if isinstance(sub_filter, generic.NameObject)
            else None
        ),
    )


def _is_signature_dict(value) -> bool:
    if not isinstance(value, dict) or '/ByteRange' not in value:
        return False
    # document timestamps are not signatures
    return value.get('/Type') != '/DocTimeStamp' \
        and value.get('/SubFilter') != '/ETSI.RFC3161'


def _is_sig_field(scanner: PdfObjectScanner, value: dict) -> bool:
    return ('/T' in value or '/V' in value) \
        and scanner.field_type(value) == '/Sig'


def _structural_descriptors(scanner: PdfObjectScanner) \
        -> List[SignatureFieldDescriptor]:
    names_by_ref = {}
    # tuples of (document position, field name, signature dictionary)
    found: List[Tuple[int, Optional[str], dict]] = []
    for obj, value in scanner.dictionaries():
        if not _is_sig_field(scanner, value):
            continue
        sig_value = value.get('/V')
        name = scanner.qualified_field_name(value)
        if isinstance(sig_value, Reference):
            names_by_ref.setdefault(sig_value, name)
        elif _is_signature_dict(sig_value):
            found.append((obj.offset, name, sig_value))

    for obj, value in scanner.dictionaries():
        if _is_signature_dict(value):
            found.append((obj.offset, names_by_ref.get(obj.ref), value))

    found.sort(key=lambda t: t[0])
    return [
        _descriptor_from_dict(name or f'Signature {ix}', sig_dict)
        for ix, (_, name, sig_dict) in enumerate(found, start=1)
    ]


def _read_marker_string(data: bytes, m: re.Match) -> Optional[str]:
    try:
        value, _ = generic.read_object(data, m.end())
    except PdfReadError:
        return None
    return value.text if isinstance(value, StringObject) else None


def _positional_descriptors(data: bytes, field_names: List[str]) \
        -> List[SignatureFieldDescriptor]:
    # Latin-1 maps every byte to exactly one character, so string offsets
    # coincide with byte offsets
    text = data.decode('latin-1')

    def _strings(pattern):
        return [_read_marker_string(data, m) for m in pattern.finditer(text)]

    contents = [m.group(1) for m in CONTENTS_MARKER.finditer(text)]
    reasons = _strings(REASON_MARKER)
    locations = _strings(LOCATION_MARKER)
    contact_infos = _strings(CONTACT_INFO_MARKER)

    def _nth(lst, ix):
        return lst[ix] if ix < len(lst) else None

    result = []
    for ix, m in enumerate(BYTE_RANGE_MARKER.finditer(text)):
        name = _nth(field_names, ix) or f'Signature {ix + 1}'
        result.append(
            SignatureFieldDescriptor(
                field_name=name,
                byte_range=tuple(int(g) for g in m.groups()),
                contents_hex=_nth(contents, ix),
                reason=_nth(reasons, ix),
                location=_nth(locations, ix),
                contact_info=_nth(contact_infos, ix),
            )
        )
    return result


def scan_objects(data: bytes) -> Optional[PdfObjectScanner]:
    try:
        return PdfObjectScanner(data)
    except _SCAN_ERRORS as e:
        logger.warning(f"Failed to scan PDF objects: {e}")
        return None


def _field_names(scanner: Optional[PdfObjectScanner]) -> List[str]:
    if scanner is None:
        return []
    names = []
    for _, value in scanner.dictionaries():
        # skip non-terminal fields
        if '/Kids' in value and '/V' not in value:
            continue
        if '/T' in value and _is_sig_field(scanner, value):
            name = scanner.qualified_field_name(value)
            if name is not None and name not in names:
                names.append(name)
    return names


def list_signature_field_names(data: bytes) -> List[str]:
    """
    List the fully qualified names of all signature fields in a document,
    both filled and empty, in document order.
    """
    return _field_names(scan_objects(data))


def count_pages(data: bytes, *, scanner: PdfObjectScanner = None) -> int:
    """
    Count the pages in a document. Returns 0 if the document's page tree
    cannot be found.
    """
    scanner = scanner or scan_objects(data)
    return 0 if scanner is None else scanner.page_count()


def locate_signature_fields(
        data: bytes, strategy: LocatorStrategy = LocatorStrategy.STRUCTURAL,
        *, scanner: PdfObjectScanner = None) \
        -> List[SignatureFieldDescriptor]:
    """
    Locate the signatures in a document.

    This function does not raise errors on malformed input; it returns
    whatever it can find.

    :param data:
        The full contents of the document.
    :param strategy:
        The locator strategy to use. The structural strategy falls back to
        the positional one if it cannot find any signature dictionaries, but
        the file contains byte range markers.
    :param scanner:
        A :class:`.PdfObjectScanner` for ``data``, if one is available
        already.
    :return:
        A list of :class:`SignatureFieldDescriptor` objects, in document
        order.
    """
    scanner = scanner or scan_objects(data)
    if strategy == LocatorStrategy.STRUCTURAL and scanner is not None:
        descriptors = _structural_descriptors(scanner)
        if descriptors or not BYTE_RANGE_MARKER.search(
                data.decode('latin-1')):
            return descriptors
        logger.warning(
            "Found /ByteRange markers, but no signature dictionaries; "
            "falling back to positional signature matching."
        )
    return _positional_descriptors(data, _field_names(scanner))
