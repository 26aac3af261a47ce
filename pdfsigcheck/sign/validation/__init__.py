"""
Signature verification functionality.
"""

from .envelope import IntegrityInfo, SignatureEnvelope, decode_envelope
from .errors import EnvelopeDecodingError, SignatureValidationError
from .pdf_embedded import (
    DocumentVerification,
    verify_pdf_batch,
    verify_pdf_signatures,
    verify_signature_field,
)
from .report import generate_report, report_to_json
from .settings import VerificationSettings
from .status import (
    OverallStatus,
    VerificationResult,
    classify,
    document_status,
)

__all__ = [
    'IntegrityInfo', 'SignatureEnvelope', 'decode_envelope',
    'EnvelopeDecodingError', 'SignatureValidationError',
    'DocumentVerification', 'verify_pdf_batch', 'verify_pdf_signatures',
    'verify_signature_field', 'generate_report', 'report_to_json',
    'VerificationSettings', 'OverallStatus', 'VerificationResult',
    'classify', 'document_status',
]
