"""
Decoding and cryptographic verification of the CMS envelopes embedded in PDF
signatures.
"""

import binascii
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from asn1crypto import cms, core, x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes

from ..general import (
    CMSExtractionError,
    CMSStructuralError,
    MultivaluedAttributeError,
    NonexistentAttributeError,
    extract_signer_info,
    find_unique_cms_attribute,
    get_pyca_cryptography_hash,
    partition_certs,
)
from .errors import EnvelopeDecodingError, SignatureValidationError
from .utils import extract_message_digest, extract_self_reported_ts, validate_raw

__all__ = ['IntegrityInfo', 'SignatureEnvelope', 'decode_envelope']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntegrityInfo:
    """
    Outcome of the cryptographic integrity check of a signature.
    """

    intact: bool
    """
    Indicates whether the digest of the signed data matches the one embedded
    in the signature.
    """

    valid: bool
    """
    Indicates whether the signature value is valid for the signer's public
    key.
    """

    @property
    def integrity_valid(self) -> bool:
        return self.intact and self.valid


class SignatureEnvelope:
    """
    A decoded CMS ``SignedData`` envelope with a single signer.

    Use :func:`decode_envelope` to obtain instances of this class.
    """

    def __init__(self, signed_data: cms.SignedData,
                 signer_info: cms.SignerInfo,
                 signer_cert: Optional[x509.Certificate],
                 other_certs: List[x509.Certificate],
                 warnings: Optional[List[str]] = None):
        self.signed_data = signed_data
        self.signer_info = signer_info
        self.signer_cert = signer_cert
        self.other_certs = other_certs
        self.warnings = warnings or []

    @property
    def certificates(self) -> List[x509.Certificate]:
        """
        All embedded certificates, the signer's certificate first.
        """
        if self.signer_cert is None:
            return list(self.other_certs)
        return [self.signer_cert] + self.other_certs

    @property
    def digest_algorithm(self) -> str:
        return self.signer_info['digest_algorithm']['algorithm'].native

    @property
    def signature_mechanism(self) -> str:
        return self.signer_info['signature_algorithm']['algorithm'].native

    @property
    def signing_time(self) -> Optional[datetime]:
        """
        The signing time reported in the ``signingTime`` signed attribute.
        """
        return extract_self_reported_ts(self.signer_info)

    def verify(self, signed_bytes: bytes) -> IntegrityInfo:
        """
        Verify the signature over the bytes covered by it.

        :param signed_bytes:
            The bytes covered by the signature.
        :return:
            An :class:`IntegrityInfo` object. A signature that does not
            verify is reported there rather than raised.
        :raises SignatureValidationError:
            if the signature cannot be checked, e.g. because of unsupported
            algorithms or malformed signed attributes.
        """
        cert = self.signer_cert
        if cert is None:
            raise SignatureValidationError(
                "No signer certificate available to verify the signature."
            )
        signer_info = self.signer_info
        md_algorithm = self.digest_algorithm
        try:
            md_spec = get_pyca_cryptography_hash(md_algorithm)
        except AttributeError:
            raise SignatureValidationError(
                f"Digest algorithm {md_algorithm} is not supported."
            )
        md = hashes.Hash(md_spec)
        md.update(signed_bytes)
        actual_digest = md.finalize()

        signature = signer_info['signature'].native
        signed_attrs_orig = signer_info['signed_attrs']
        if isinstance(signed_attrs_orig, core.Void):
            embedded_digest = None
            prehashed = True
            signed_data = actual_digest
        else:
            # signed_attrs comes with context-specific tagging; the signature
            # is computed over the universal SET OF encoding.
            signed_attrs = signed_attrs_orig.untag()
            signed_data = signed_attrs.dump()
            prehashed = False
            expected_content_type = \
                self.signed_data['encap_content_info']['content_type'].native
            try:
                content_type = find_unique_cms_attribute(
                    signed_attrs, 'content_type'
                )
            except (NonexistentAttributeError, MultivaluedAttributeError,
                    CMSStructuralError):
                raise SignatureValidationError(
                    'Content type not found in signature, or multiple '
                    'content-type attributes present.'
                )
            content_type = content_type.native
            if content_type != expected_content_type:
                raise SignatureValidationError(
                    f'Content type {content_type} did not match expected '
                    f'value {expected_content_type}'
                )
            try:
                embedded_digest = extract_message_digest(signer_info)
            except CMSStructuralError as e:
                raise SignatureValidationError(e.failure_message)

        try:
            validate_raw(
                signature, signed_data, cert,
                signer_info['signature_algorithm'], md_algorithm,
                prehashed=prehashed,
            )
            valid = True
        except InvalidSignature:
            valid = False

        intact = (
            actual_digest == embedded_digest
            if embedded_digest is not None
            else valid
        )
        return IntegrityInfo(intact=intact, valid=valid)


def _embedded_certs(signed_data: cms.SignedData) -> List[x509.Certificate]:
    raw_certs = signed_data['certificates']
    if isinstance(raw_certs, core.Void):
        return []
    # attribute certificates and other exotic choices are not relevant here
    return [c.chosen for c in raw_certs if c.name == 'certificate']


def decode_envelope(hex_string: str) -> SignatureEnvelope:
    """
    Decode the hex-encoded CMS envelope of a PDF signature.

    Trailing zero bytes (left over from the placeholder reserved for the
    signature) are tolerated.

    :param hex_string:
        The envelope, hex-encoded.
    :return:
        A :class:`SignatureEnvelope`.
    :raises EnvelopeDecodingError:
        if the envelope is not a well-formed CMS ``SignedData`` value with
        exactly one signer.
    """
    if len(hex_string) % 2:
        hex_string += '0'
    try:
        der_bytes = binascii.unhexlify(hex_string)
    except (binascii.Error, ValueError) as e:
        raise EnvelopeDecodingError(f"Invalid hex data: {e}")

    try:
        content_info = cms.ContentInfo.load(der_bytes, strict=False)
        content_type = content_info['content_type'].native
        if content_type != 'signed_data':
            raise EnvelopeDecodingError(
                f"Expected signed_data content, but found {content_type}."
            )
        signed_data: cms.SignedData = content_info['content']
        signer_info = extract_signer_info(signed_data)
        # force the relevant parts of the signer info to be parsed
        _ = (
            signer_info['sid'].chosen,
            signer_info['digest_algorithm']['algorithm'].native,
            signer_info['signature_algorithm']['algorithm'].native,
            signer_info['signature'].native,
        )
        certs = _embedded_certs(signed_data)
    except EnvelopeDecodingError:
        raise
    except CMSExtractionError as e:
        raise EnvelopeDecodingError(e.failure_message)
    except (ValueError, TypeError, KeyError) as e:
        raise EnvelopeDecodingError(str(e))

    warnings = []
    signer_cert, other_certs = None, certs
    if certs:
        try:
            signer_cert, other_certs = partition_certs(certs, signer_info)
        except ValueError as e:
            logger.debug(f"Failed to match signer identifier: {e}")
        if signer_cert is None:
            warnings.append(
                "None of the embedded certificates matches the signer "
                "identifier; the first certificate is presumed to be the "
                "signer's."
            )
            signer_cert, other_certs = certs[0], certs[1:]
    return SignatureEnvelope(
        signed_data=signed_data, signer_info=signer_info,
        signer_cert=signer_cert, other_certs=other_certs,
        warnings=warnings,
    )
