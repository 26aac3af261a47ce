"""
Utility functions for the PDF scanning code.

Generally, all of these constitute internal API, except for the exception
classes.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from dateutil.parser import isoparse as _isoparse

__all__ = [
    'PdfError', 'PdfReadError', 'PdfStreamError',
    'ValueErrorWithMessage',
    'get_and_apply', 'pair_iter', 'is_regular_character',
    'skip_over_whitespace', 'isoparse', 'aware_moment',
    'WHITESPACE', 'DELIMITERS',
]


WHITESPACE = b' \n\r\t\f\x00'
DELIMITERS = b'()<>[]{}/%'


class ValueErrorWithMessage(ValueError):
    """
    Value error with a failure message attribute that can be conveniently
    extracted, instead of having to rely on extracting exception args
    generically.
    """

    def __init__(self, failure_message):
        self.failure_message = str(failure_message)
        super().__init__(failure_message)


class PdfError(Exception):

    def __init__(self, msg: str, *args):
        self.msg = msg
        super().__init__(msg, *args)


class PdfReadError(PdfError):
    pass


class PdfStreamError(PdfReadError):
    pass


def pair_iter(lst):
    i = iter(lst)
    while True:
        try:
            x1 = next(i)
        except StopIteration:
            return
        try:
            x2 = next(i)
        except StopIteration:
            raise ValueError('List has odd number of elements')
        yield x1, x2


def is_regular_character(byte_value: int):
    return byte_value not in WHITESPACE and byte_value not in DELIMITERS


def skip_over_whitespace(data: bytes, pos: int) -> int:
    """
    Skip whitespace and comments, starting at ``pos``.

    :return:
        The position of the first byte that is neither whitespace nor part of
        a comment.
    """
    data_len = len(data)
    while pos < data_len:
        cur = data[pos]
        if cur in WHITESPACE:
            pos += 1
        elif cur == 0x25:  # '%'
            while pos < data_len and data[pos] not in b'\r\n':
                pos += 1
        else:
            break
    return pos


def get_and_apply(dictionary: dict, key, function: Callable, *, default=None):
    try:
        value = dictionary[key]
    except KeyError:
        return default
    return function(value)


def aware_moment(moment: Optional[datetime] = None) -> datetime:
    """
    Return a timezone-aware version of ``moment``, defaulting to the current
    time. Naive datetimes are taken to be in UTC.
    """
    if moment is None:
        return datetime.now(tz=timezone.utc)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def isoparse(dt_str: str) -> datetime:
    return aware_moment(_isoparse(dt_str))
