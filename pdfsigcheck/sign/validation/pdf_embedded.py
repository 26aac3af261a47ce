"""
Verification of the signatures embedded in a PDF document.

The trust assessment performed here is local only: a signer's certificate
is considered trustworthy if it is neither expired nor self-signed. No
certification path to a trust anchor is built, and the revocation status
of certificates is never checked. Verification results always carry
warnings to that effect.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Union

from cryptography.exceptions import UnsupportedAlgorithm
from pyhanko_certvalidator.policy_decl import AlgorithmUsagePolicy

from ..certinfo import analyze_certificate
from ..fields import (
    SignatureFieldDescriptor,
    count_pages,
    locate_signature_fields,
    scan_objects,
)
from ..general import ByteRangeError, byte_range_coverage_gap, extract_byte_range
from ...pdf_utils.misc import aware_moment
from .envelope import decode_envelope
from .errors import EnvelopeDecodingError, SignatureValidationError
from .settings import DEFAULT_VERIFICATION_SETTINGS, VerificationSettings
from .status import OverallStatus, VerificationResult, document_status
from .utils import DEFAULT_ALGORITHM_USAGE_POLICY, algorithm_usage_warnings

__all__ = [
    'DocumentVerification',
    'verify_signature_field',
    'verify_pdf_signatures',
    'verify_pdf_batch',
    'NO_SIGNATURES_MESSAGE',
]

logger = logging.getLogger(__name__)

NO_SIGNATURES_MESSAGE = 'No digital signatures found in this document.'
MISSING_ENTRIES_ERROR = \
    'Missing ByteRange or Contents in signature dictionary.'
NO_CERTIFICATES_ERROR = 'No certificates found in signature.'
SELF_SIGNED_WARNING = 'Certificate is self-signed and may not be trusted.'
NO_CHAIN_VALIDATION_WARNING = (
    'The certificate chain was not validated against a trusted root store.'
)
NO_REVOCATION_CHECK_WARNING = (
    'The revocation status of the certificates (OCSP/CRL) was not checked.'
)

# subfilters for a detached CMS signature over the byte range
DETACHED_SUBFILTERS = frozenset({
    'adbe.pkcs7.detached', 'ETSI.CAdES.detached',
})

# errors that can be raised while checking a signature's integrity
_INTEGRITY_ERRORS = (
    SignatureValidationError, ValueError, TypeError,
    UnsupportedAlgorithm, NotImplementedError,
)


@dataclass
class DocumentVerification:
    """
    Outcome of the verification of all signatures in a document.
    """

    num_pages: int
    signatures: List[VerificationResult] = field(default_factory=list)
    """
    Verification results for the signatures in the document, in document
    order.
    """

    message: Optional[str] = None
    """
    Informational message about the document as a whole.
    """

    read_error: bool = False
    """
    Indicates that the document could not be read at all.
    """

    @property
    def has_signatures(self) -> bool:
        return bool(self.signatures)

    @property
    def status(self) -> OverallStatus:
        if self.read_error:
            return OverallStatus.INVALID
        return document_status(self.signatures)

    def as_dict(self):
        return {
            'numPages': self.num_pages,
            'signatures': [sig.as_dict() for sig in self.signatures],
            'hasSignatures': self.has_signatures,
            'message': self.message,
        }


def _error_message(e: Exception) -> str:
    return getattr(e, 'failure_message', None) or str(e)


def verify_signature_field(
    descriptor: SignatureFieldDescriptor,
    data: bytes,
    moment: Optional[datetime] = None,
    algorithm_policy: Optional[AlgorithmUsagePolicy] = None,
) -> VerificationResult:
    """
    Verify a single signature in a document.

    Problems with the signature are reported in the result's ``errors`` and
    ``warnings``; this function does not raise.

    :param descriptor:
        The signature to verify, as found by the signature locator.
    :param data:
        The full contents of the document.
    :param moment:
        The moment at which to evaluate the validity of the certificates.
        Defaults to the current time. A naive datetime is taken to be in
        UTC.
    :param algorithm_policy:
        Policy used to flag weak algorithms.
    :return:
        A :class:`.VerificationResult`.
    """
    moment = aware_moment(moment)
    algorithm_policy = algorithm_policy or DEFAULT_ALGORITHM_USAGE_POLICY
    result = VerificationResult(
        field_name=descriptor.field_name,
        reason=descriptor.reason,
        location=descriptor.location,
        contact_info=descriptor.contact_info,
        signing_time=descriptor.signing_time,
    )
    if not descriptor.byte_range or not descriptor.contents_hex:
        result.errors.append(MISSING_ENTRIES_ERROR)
        return result

    sub_filter = descriptor.sub_filter
    if sub_filter is not None and sub_filter not in DETACHED_SUBFILTERS:
        result.warnings.append(
            f'Signature subfilter /{sub_filter} is not a detached CMS '
            f'signature; it is verified as one.'
        )

    try:
        spans = descriptor.spans
        signed_bytes = extract_byte_range(data, spans)
    except ByteRangeError as e:
        result.errors.append(f'Invalid byte range: {e.failure_message}')
        return result

    try:
        envelope = decode_envelope(descriptor.contents_hex)
    except EnvelopeDecodingError as e:
        result.errors.append(
            f'Failed to parse signature CMS data: {e.failure_message}'
        )
        return result
    result.warnings.extend(envelope.warnings)
    result.digest_algorithm = envelope.digest_algorithm
    result.signature_mechanism = envelope.signature_mechanism

    certs = envelope.certificates
    if not certs:
        result.errors.append(NO_CERTIFICATES_ERROR)
        return result

    try:
        result.certificates = [
            analyze_certificate(cert, moment) for cert in certs
        ]
    except ValueError as e:
        result.errors.append(f'Failed to decode certificate: {e}')
        return result
    leaf = result.certificates[0]
    result.signer_name = \
        leaf.common_name or descriptor.signer_name or 'Unknown'
    result.signer_email = leaf.email
    result.is_expired = leaf.is_expired
    result.is_self_signed = leaf.is_self_signed
    if leaf.is_expired:
        result.warnings.append(
            f'Certificate expired on {leaf.valid_to.date().isoformat()}'
        )
    if leaf.is_self_signed:
        result.warnings.append(SELF_SIGNED_WARNING)

    try:
        integrity = envelope.verify(signed_bytes)
        result.integrity_valid = integrity.integrity_valid
        if not integrity.intact:
            result.warnings.append(
                'The digest of the signed bytes does not match the digest '
                'in the signature; the document was altered after signing.'
            )
        if not integrity.valid:
            result.warnings.append(
                "The signature value does not verify against the signer's "
                "public key."
            )
    except _INTEGRITY_ERRORS as e:
        result.integrity_valid = False
        result.errors.append(
            f'Integrity verification failed: {_error_message(e)}'
        )

    result.cert_trust_valid = not leaf.is_self_signed and not leaf.is_expired
    result.warnings.append(NO_CHAIN_VALIDATION_WARNING)
    result.warnings.append(NO_REVOCATION_CHECK_WARNING)

    try:
        reported_time = envelope.signing_time
    except ValueError as e:
        logger.debug(f"Malformed signingTime attribute: {e}")
        reported_time = None
    if reported_time is not None:
        result.signing_time = reported_time

    try:
        result.warnings.extend(
            algorithm_usage_warnings(
                algorithm_policy, envelope.signer_info,
                envelope.signer_cert.public_key, moment
            )
        )
    except ValueError as e:
        logger.debug(f"Could not evaluate algorithm usage: {e}")

    gap = byte_range_coverage_gap(data, spans)
    if gap:
        result.warnings.append(
            f'The signature does not cover the last {gap} bytes of the file; '
            f'the document was updated after signing.'
        )
    return result


def verify_pdf_signatures(
    data: bytes,
    settings: VerificationSettings = DEFAULT_VERIFICATION_SETTINGS,
    moment: Optional[datetime] = None,
) -> DocumentVerification:
    """
    Locate and verify all signatures in a PDF document.

    :param data:
        The full contents of the document.
    :param settings:
        Verification settings.
    :param moment:
        The moment at which to evaluate the validity of the certificates.
        Defaults to the current time. A naive datetime is taken to be in
        UTC.
    :return:
        A :class:`DocumentVerification` object.
    """
    moment = aware_moment(moment)
    scanner = scan_objects(data)
    num_pages = count_pages(data, scanner=scanner)
    descriptors = locate_signature_fields(
        data, settings.locator_strategy, scanner=scanner
    )
    if not descriptors:
        return DocumentVerification(
            num_pages=num_pages, message=NO_SIGNATURES_MESSAGE
        )
    policy = settings.algorithm_policy()
    results = []
    for descriptor in descriptors:
        logger.debug(f"Verifying signature field '{descriptor.field_name}'")
        results.append(
            verify_signature_field(
                descriptor, data, moment=moment, algorithm_policy=policy
            )
        )
    return DocumentVerification(num_pages=num_pages, signatures=results)


DocumentInput = Union[bytes, bytearray, memoryview, str, os.PathLike]


def _failed_document(message: str) -> DocumentVerification:
    return DocumentVerification(num_pages=0, message=message, read_error=True)


def _read_document(document: DocumentInput) -> bytes:
    if isinstance(document, (bytes, bytearray, memoryview)):
        return bytes(document)
    elif isinstance(document, (str, os.PathLike)):
        with open(document, 'rb') as inf:
            return inf.read()
    raise TypeError(
        f"Expected a file path or bytes-like object, not {type(document)}"
    )


def _verify_document(document: DocumentInput,
                     settings: VerificationSettings,
                     moment: Optional[datetime]) -> DocumentVerification:
    try:
        data = _read_document(document)
    except (OSError, TypeError) as e:
        logger.warning(f"Could not read document: {e}")
        return _failed_document(f'Failed to read document: {e}')
    try:
        return verify_pdf_signatures(data, settings=settings, moment=moment)
    except Exception as e:
        # one broken document must not take down the rest of the batch
        logger.error("Unexpected error while verifying document", exc_info=e)
        return _failed_document(f'Failed to verify document: {e}')


def verify_pdf_batch(
    documents: Sequence[DocumentInput],
    max_workers: Optional[int] = None,
    settings: VerificationSettings = DEFAULT_VERIFICATION_SETTINGS,
    moment: Optional[datetime] = None,
) -> List[DocumentVerification]:
    """
    Verify a number of independent documents in parallel.

    :param documents:
        The documents to verify, either as bytes-like objects or as file
        paths. Documents that cannot be read or verified result in a
        :class:`DocumentVerification` with status
        :attr:`.OverallStatus.INVALID`; the other documents are not
        affected.
    :param max_workers:
        Maximal number of worker threads. Defaults to the ``batch_workers``
        setting.
    :param settings:
        Verification settings, shared by all documents.
    :param moment:
        The moment at which to evaluate the validity of the certificates.
        Defaults to the current time, and is shared by all documents.
    :return:
        A list of :class:`DocumentVerification` objects, in input order.
    """
    moment = aware_moment(moment)
    if max_workers is None:
        max_workers = settings.batch_workers
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [
            executor.submit(_verify_document, doc, settings, moment)
            for doc in documents
        ]
        return [future.result() for future in futures]
