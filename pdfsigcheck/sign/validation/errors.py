from ...pdf_utils.misc import ValueErrorWithMessage

__all__ = [
    'SignatureValidationError',
    'EnvelopeDecodingError',
]


class EnvelopeDecodingError(ValueErrorWithMessage):
    """Error decoding the CMS envelope of a signature."""

    pass


class SignatureValidationError(ValueErrorWithMessage):
    """Error validating a signature."""

    pass
