"""
General tools related to Cryptographic Message Syntax (CMS) signatures and
the byte ranges they cover in a PDF file.

CMS is defined in :rfc:`5652`. To parse CMS messages, pdfsigcheck relies
heavily on `asn1crypto <https://github.com/wbond/asn1crypto>`_.
"""

import logging
from typing import List, Optional, Sequence, Tuple, Union

from asn1crypto import algos, cms, tsp, x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed

from ..pdf_utils.misc import ValueErrorWithMessage

__all__ = [
    'find_cms_attribute',
    'find_unique_cms_attribute',
    'NonexistentAttributeError',
    'MultivaluedAttributeError',
    'extract_signer_info',
    'partition_certs',
    'get_pyca_cryptography_hash',
    'get_pyca_cryptography_hash_for_signing',
    'process_pss_params',
    'match_issuer_serial',
    'CMSExtractionError',
    'ValueErrorWithMessage',
    'CMSStructuralError',
    'ByteRangeError',
    'extract_byte_range',
    'byte_range_coverage_gap',
]

logger = logging.getLogger(__name__)


class CMSStructuralError(ValueErrorWithMessage):
    """Structural error in a CMS object."""


class CMSExtractionError(ValueErrorWithMessage):
    pass


class ByteRangeError(ValueErrorWithMessage):
    """
    Signed byte range that is malformed or inconsistent with the document.
    """
    pass


class NonexistentAttributeError(KeyError):
    pass


class MultivaluedAttributeError(ValueError):
    pass


def find_cms_attribute(attrs, name):
    """
    Find and return CMS attribute values of a given type.

    .. note::
        This function will also check for duplicates, but not in the sense
        of multivalued attributes. In other words: multivalued attributes
        are allowed; listing the same attribute OID more than once is not.

    :param attrs:
        The :class:`.cms.CMSAttributes` object.
    :param name:
        The attribute type as a string (as defined in ``asn1crypto``).
    :return:
        The values associated with the requested type, if present.
    :raise NonexistentAttributeError:
        Raised when no such type entry could be found in the
        :class:`.cms.CMSAttributes` object.
    :raise CMSStructuralError:
        Raised if the given OID occurs more than once.
    """

    found_values = None
    if attrs:
        for attr in attrs:
            if attr['type'].native == name:
                if found_values is not None:
                    raise CMSStructuralError(
                        f"Attribute {name!r} was duplicated"
                    )
                found_values = attr['values']

    if found_values is not None:
        return found_values
    else:
        raise NonexistentAttributeError(f'Unable to locate attribute {name}.')


def find_unique_cms_attribute(attrs, name):
    """
    Find and return a unique CMS attribute value of a given type.

    :param attrs:
        The :class:`.cms.CMSAttributes` object.
    :param name:
        The attribute type as a string (as defined in ``asn1crypto``).
    :return:
        The value associated with the requested type, if present.
    :raise NonexistentAttributeError:
        Raised when no such type entry could be found in the
        :class:`.cms.CMSAttributes` object.
    :raise MultivaluedAttributeError:
        Raised when the attribute's cardinality is not 1.
    """
    values = find_cms_attribute(attrs, name)
    if len(values) != 1:
        raise MultivaluedAttributeError(
            f"Expected single-valued {name} attribute, but found "
            f"{len(values)} values"
        )
    return values[0]


def match_issuer_serial(
    expected_issuer_serial: Union[cms.IssuerAndSerialNumber, tsp.IssuerSerial],
    cert: x509.Certificate,
) -> bool:
    """
    Match the issuer and serial number of an X.509 certificate against some
    expected identifier.

    :param expected_issuer_serial:
        A certificate identifier, either :class:`cms.IssuerAndSerialNumber`
        or :class:`tsp.IssuerSerial`.
    :param cert:
        An :class:`x509.Certificate`.
    :return:
        ``True`` if there's a match, ``False`` otherwise.
    """
    serial_asn1 = cert['tbs_certificate']['serial_number']
    expected_issuer = expected_issuer_serial['issuer']

    if isinstance(expected_issuer, x509.GeneralNames):
        if (
            len(expected_issuer) != 1
            or expected_issuer[0].name != 'directory_name'
        ):
            return False
        expected_issuer = expected_issuer[0].chosen

    # Names that violate the stringprep profile can't be compared
    # semantically, so try a byte-for-byte comparison first.
    try:
        issuer_match = (
            expected_issuer.dump() == cert.issuer.dump()
            or expected_issuer == cert.issuer
        )
    except ValueError:
        issuer_match = False
    return (
        issuer_match and expected_issuer_serial['serial_number'] == serial_asn1
    )


def get_pyca_cryptography_hash(algorithm) -> hashes.HashAlgorithm:
    if algorithm.lower() == 'shake256':
        # force the output length to 64 bytes = 512 bits
        return hashes.SHAKE256(digest_size=64)
    else:
        return getattr(hashes, algorithm.upper())()


def get_pyca_cryptography_hash_for_signing(
    algorithm, prehashed=False
) -> Union[hashes.HashAlgorithm, Prehashed]:
    hash_algo = get_pyca_cryptography_hash(algorithm)
    return Prehashed(hash_algo) if prehashed else hash_algo


def process_pss_params(
    params: algos.RSASSAPSSParams, digest_algorithm, prehashed=False
):
    """
    Extract PSS padding settings and message digest from an
    ``RSASSAPSSParams`` value.

    Internal API.
    """

    hash_algo: algos.DigestAlgorithm = params['hash_algorithm']
    md_name = hash_algo['algorithm'].native
    if md_name.casefold() != digest_algorithm.casefold():
        raise ValueError(
            f"PSS MD '{md_name}' must agree with signature "
            f"MD '{digest_algorithm}'."
        )
    mga: algos.MaskGenAlgorithm = params['mask_gen_algorithm']
    if not mga['algorithm'].native == 'mgf1':
        raise NotImplementedError("Only MFG1 is supported")

    mgf_md_name = mga['parameters']['algorithm'].native

    if mgf_md_name != md_name:
        logger.warning(
            f"Message digest for MGF1 is {mgf_md_name}, and the one used for "
            f"signing is {md_name}. If these do not agree, some software may "
            f"refuse to validate the signature."
        )
    salt_len: int = params['salt_length'].native

    mgf_md = get_pyca_cryptography_hash(mgf_md_name)
    md = get_pyca_cryptography_hash_for_signing(md_name, prehashed=prehashed)
    pss_padding = padding.PSS(
        mgf=padding.MGF1(algorithm=mgf_md), salt_length=salt_len
    )
    return pss_padding, md


def _get_signer_predicate(sid: cms.SignerIdentifier):
    if sid.name == 'issuer_and_serial_number':
        return lambda c: match_issuer_serial(sid.chosen, c)
    elif sid.name == 'subject_key_identifier':
        ski = sid.chosen.native
        return lambda c: c.key_identifier == ski
    raise NotImplementedError


def partition_certs(certs: List[x509.Certificate],
                    signer_info: cms.SignerInfo) \
        -> Tuple[Optional[x509.Certificate], List[x509.Certificate]]:
    """
    Separate the signer's certificate from the other certificates embedded
    in a signature.

    The ``certificates`` entry of a ``SignedData`` value is a set, so we
    cannot make any assumptions about the order; the signer has to be
    identified through the signer identifier.

    :param certs:
        The embedded certificates.
    :param signer_info:
        The ``SignerInfo`` value of the signer.
    :return:
        The signer's certificate (or ``None`` if none of the certificates
        match), and the remaining certificates in their original order.
    """
    predicate = _get_signer_predicate(signer_info['sid'])
    cert = None
    other_certs = []
    for c in certs:
        if cert is None and predicate(c):
            cert = c
        else:
            other_certs.append(c)
    return cert, other_certs


def extract_signer_info(signed_data: cms.SignedData) -> cms.SignerInfo:
    """
    Extract the unique ``SignerInfo`` entry of a CMS signed data value, or
    throw a ``ValueError``.

    :param signed_data:
        A CMS ``SignedData`` value.
    :return:
        A CMS ``SignerInfo`` value.
    :raises ValueError:
        If the number of ``SignerInfo`` values is not exactly one.
    """
    try:
        (signer_info,) = signed_data['signer_infos']
        return signer_info
    except ValueError:
        raise CMSExtractionError(
            'signer_infos should contain exactly one entry'
        )


def _check_spans(data_len: int, spans: Sequence[Tuple[int, int]]):
    covered_until = 0
    for offset, length in spans:
        if not isinstance(offset, int) or not isinstance(length, int):
            raise ByteRangeError("Byte range entries must be integers.")
        if offset < 0 or length < 0:
            raise ByteRangeError(
                f"Byte range span ({offset}, {length}) has negative entries."
            )
        if offset + length > data_len:
            raise ByteRangeError(
                f"Byte range span ({offset}, {length}) exceeds the document "
                f"length of {data_len} bytes."
            )
        if offset < covered_until:
            raise ByteRangeError(
                f"Byte range span ({offset}, {length}) overlaps with "
                f"the previous span."
            )
        covered_until = offset + length


def extract_byte_range(data: bytes, spans: Sequence[Tuple[int, int]]) \
        -> bytes:
    """
    Materialise the bytes covered by a signature.

    :param data:
        The full contents of the document.
    :param spans:
        An ordered sequence of ``(offset, length)`` pairs.
    :return:
        The concatenation of the slices described by the spans, in order.
    :raises ByteRangeError:
        if a span has negative entries, runs past the end of the document,
        or overlaps with the span preceding it.
    """
    _check_spans(len(data), spans)
    return b''.join(data[offset:offset + length] for offset, length in spans)


def byte_range_coverage_gap(data: bytes,
                            spans: Sequence[Tuple[int, int]]) -> int:
    """
    Compute the number of bytes following the last span, i.e. the bytes
    that were appended to the document after it was signed.
    """
    if not spans:
        return len(data)
    offset, length = spans[-1]
    return max(len(data) - (offset + length), 0)

