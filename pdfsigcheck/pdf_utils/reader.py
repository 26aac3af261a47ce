"""
Lightweight PDF object scanner.

Instead of following the cross-reference table, this module walks the file
front to back and picks up every ``N G obj ... endobj`` definition it can
parse. This is resilient against damaged or unconventional cross-reference
data, and it is all the signature locator needs: signature dictionaries are
never compressed (their ``/ByteRange`` refers to absolute file offsets), and
form fields are resolved through their object numbers.

Objects packed in Flate-compressed object streams are unpacked as well.
"""

import logging
import re
import zlib
from typing import Dict, Iterator, List, Optional, Tuple

from . import generic
from .generic import NameObject, Reference
from .misc import PdfReadError, skip_over_whitespace

__all__ = ['PdfObjectScanner', 'ScannedObject']

logger = logging.getLogger(__name__)

OBJ_HEADER = re.compile(rb'(?<![0-9])(\d+)\s+(\d+)\s+obj(?![^\s()<>\[\]{}/%])')
STREAM_KEYWORD = re.compile(rb'stream(\r\n|\n|\r)')
ENDSTREAM = b'endstream'


class ScannedObject:
    """
    An indirect object found while scanning.
    """

    def __init__(self, ref: Reference, value, offset: int,
                 stream_data: Optional[bytes] = None):
        self.ref = ref
        self.value = value
        self.offset = offset
        """
        Offset of the object header in the file. For objects unpacked from an
        object stream, this is the offset of the object stream.
        """

        self.stream_data = stream_data

    def __repr__(self):
        return f'<ScannedObject {self.ref.idnum} {self.ref.generation} ' \
               f'@ {self.offset}>'


def _is_flate(stream_dict: dict) -> bool:
    filters = stream_dict.get('/Filter')
    if isinstance(filters, list):
        filters = filters[0] if len(filters) == 1 else None
    return filters == '/FlateDecode'


class PdfObjectScanner:
    """
    Scan the raw bytes of a PDF file for indirect objects.

    Later definitions of an object override earlier ones (as is the case
    with incremental updates), but the object keeps the position at which it
    first appeared.

    :param data:
        The full contents of the PDF file.
    """

    def __init__(self, data: bytes):
        self.data = data
        self._objects: Dict[Reference, ScannedObject] = {}
        self._scan()

    def _read_stream_data(self, stream_dict: dict, pos: int) \
            -> Tuple[Optional[bytes], int]:
        data = self.data
        m = STREAM_KEYWORD.match(data, skip_over_whitespace(data, pos))
        if m is None:
            return None, pos
        start = m.end()
        length = stream_dict.get('/Length')
        if isinstance(length, int) and 0 <= length <= len(data) - start:
            after = skip_over_whitespace(data, start + length)
            if data.startswith(ENDSTREAM, after):
                return data[start:start + length], after + len(ENDSTREAM)
        # /Length is indirect or wrong, look for the keyword instead
        end = data.find(ENDSTREAM, start)
        if end == -1:
            raise PdfReadError("Stream without endstream keyword")
        raw = data[start:end]
        if raw.endswith(b'\r\n'):
            raw = raw[:-2]
        elif raw.endswith((b'\n', b'\r')):
            raw = raw[:-1]
        return raw, end + len(ENDSTREAM)

    def _register(self, obj: ScannedObject):
        try:
            first_seen = self._objects[obj.ref].offset
        except KeyError:
            first_seen = obj.offset
        obj.offset = first_seen
        # re-inserting an existing key keeps its place in the ordering
        self._objects[obj.ref] = obj

    def _scan(self):
        data = self.data
        pos = 0
        while True:
            m = OBJ_HEADER.search(data, pos)
            if m is None:
                break
            ref = Reference(int(m.group(1)), int(m.group(2)))
            try:
                value, end = generic.read_object(data, m.end())
                stream_data = None
                if isinstance(value, dict):
                    stream_data, end = self._read_stream_data(value, end)
            except PdfReadError as e:
                logger.debug(
                    f"Skipping unreadable object {ref.idnum} "
                    f"{ref.generation} at offset {m.start()}: {e.msg}"
                )
                pos = m.end()
                continue
            obj = ScannedObject(ref, value, m.start(), stream_data)
            self._register(obj)
            if isinstance(value, dict) and value.get('/Type') == '/ObjStm':
                self._unpack_object_stream(obj)
            pos = end

    def _unpack_object_stream(self, obj_stream: ScannedObject):
        stream_dict = obj_stream.value
        if obj_stream.stream_data is None or not _is_flate(stream_dict) \
                or '/DecodeParms' in stream_dict:
            logger.debug(
                f"Not unpacking object stream {obj_stream.ref.idnum}: "
                f"unsupported encoding"
            )
            return
        try:
            decoded = zlib.decompress(obj_stream.stream_data)
        except zlib.error as e:
            logger.debug(
                f"Failed to inflate object stream {obj_stream.ref.idnum}: {e}"
            )
            return
        count = stream_dict.get('/N')
        first = stream_dict.get('/First')
        if not isinstance(count, int) or not isinstance(first, int):
            return
        try:
            header = []
            pos = 0
            for _ in range(count):
                idnum, pos = generic.read_object(decoded, pos)
                offset, pos = generic.read_object(decoded, pos)
                header.append((idnum, offset))
            for idnum, offset in header:
                value, _ = generic.read_object(decoded, first + offset)
                # objects in object streams always have generation 0
                self._register(
                    ScannedObject(Reference(idnum, 0), value,
                                  obj_stream.offset)
                )
        except (PdfReadError, TypeError) as e:
            logger.debug(
                f"Malformed object stream {obj_stream.ref.idnum}: {e}"
            )

    def __iter__(self) -> Iterator[ScannedObject]:
        # document order
        return iter(sorted(self._objects.values(), key=lambda o: o.offset))

    def __len__(self):
        return len(self._objects)

    def get(self, ref: Reference) -> Optional[ScannedObject]:
        return self._objects.get(ref)

    def resolve(self, value):
        """
        Resolve a value if it is an indirect reference; return other values
        as-is. Dangling references resolve to ``None``.
        """
        if isinstance(value, Reference):
            obj = self._objects.get(value)
            return None if obj is None else obj.value
        return value

    def dictionaries(self) -> Iterator[Tuple[ScannedObject, dict]]:
        for obj in self:
            if isinstance(obj.value, dict):
                yield obj, obj.value

    def page_count(self) -> int:
        """
        Determine the number of pages in the document.

        The ``/Count`` entry of the root of the page tree is used if it can
        be found; otherwise, the page objects are counted.
        """
        page_objects = 0
        root_count = None
        for _, value in self.dictionaries():
            obj_type = value.get('/Type')
            if obj_type == '/Page':
                page_objects += 1
            elif obj_type == '/Pages' and '/Parent' not in value:
                count = value.get('/Count')
                if isinstance(count, int) and count >= 0:
                    root_count = count
        return root_count if root_count is not None else page_objects

    def qualified_field_name(self, field: dict) -> Optional[str]:
        """
        Compute the fully qualified name of a form field by walking up its
        ``/Parent`` chain. Returns ``None`` if none of the fields in the
        chain carries a partial name.
        """
        parts: List[str] = []
        seen = set()
        cur = field
        while isinstance(cur, dict):
            partial = cur.get('/T')
            if isinstance(partial, generic.StringObject):
                parts.append(partial.text)
            parent = cur.get('/Parent')
            if not isinstance(parent, Reference) or parent in seen:
                break
            seen.add(parent)
            cur = self.resolve(parent)
        if not parts:
            return None
        return '.'.join(reversed(parts))

    def field_type(self, field: dict) -> Optional[NameObject]:
        """
        Return the (possibly inherited) ``/FT`` entry of a form field.
        """
        seen = set()
        cur = field
        while isinstance(cur, dict):
            ft = cur.get('/FT')
            if ft is not None:
                return ft
            parent = cur.get('/Parent')
            if not isinstance(parent, Reference) or parent in seen:
                return None
            seen.add(parent)
            cur = self.resolve(parent)
        return None
