"""
Summary reports of the verification of a document's signatures.

Reports are plain dictionaries that can be serialised as JSON; no trust
facts are recomputed here.
"""

import json
from datetime import datetime, timezone
from typing import Optional

from .pdf_embedded import DocumentVerification
from .status import VerificationResult

__all__ = ['generate_report', 'report_to_json']


def _signature_entry(sig: VerificationResult):
    return {
        'fieldName': sig.field_name,
        'signer': sig.signer_name,
        'email': sig.signer_email,
        'signingTime': sig.signing_time,
        'reason': sig.reason,
        'location': sig.location,
        'integrityValid': sig.integrity_valid,
        'certTrustValid': sig.cert_trust_valid,
        'isExpired': sig.is_expired,
        'isSelfSigned': sig.is_self_signed,
        'overallStatus': sig.status.value,
        'certificates': [c.as_dict() for c in sig.certificates],
        'errors': list(sig.errors),
        'warnings': list(sig.warnings),
    }


def generate_report(file_name: str, doc: DocumentVerification,
                    generated_at: Optional[datetime] = None) -> dict:
    """
    Generate a summary report for a verified document.

    :param file_name:
        The name of the document's file.
    :param doc:
        The verification results for the document.
    :param generated_at:
        Timestamp of the report. Defaults to the current time.
    :return:
        A dictionary.
    """
    if generated_at is None:
        generated_at = datetime.now(tz=timezone.utc)
    return {
        'reportGeneratedAt': generated_at,
        'file': file_name,
        'numPages': doc.num_pages,
        'signaturesFound': len(doc.signatures),
        'documentStatus': doc.status.value,
        'signatures': [_signature_entry(sig) for sig in doc.signatures],
    }


def _json_default(value):
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value)} is not JSON serializable")


def report_to_json(report: dict, indent: Optional[int] = 2) -> str:
    """
    Serialise a report (or any other result dictionary produced by this
    package) as JSON. Datetimes are rendered in ISO 8601 format.
    """
    return json.dumps(report, indent=indent, default=_json_default)
