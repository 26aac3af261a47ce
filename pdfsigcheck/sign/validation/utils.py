from datetime import datetime
from typing import List, Optional

from asn1crypto import algos, cms, keys, x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.asymmetric.dsa import DSAPublicKey
from cryptography.hazmat.primitives.asymmetric.ec import (
    ECDSA,
    EllipticCurvePublicKey,
)
from cryptography.hazmat.primitives.asymmetric.ed448 import Ed448PublicKey
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey
from pyhanko_certvalidator.policy_decl import (
    AlgorithmUsagePolicy,
    DisallowWeakAlgorithmsPolicy,
)

from ..general import (
    MultivaluedAttributeError,
    NonexistentAttributeError,
    find_unique_cms_attribute,
    get_pyca_cryptography_hash_for_signing,
    process_pss_params,
)
from .errors import SignatureValidationError

__all__ = [
    'DEFAULT_WEAK_HASH_ALGORITHMS',
    'DEFAULT_RSA_KEY_SIZE_THRESHOLD',
    'DEFAULT_DSA_KEY_SIZE_THRESHOLD',
    'DEFAULT_ALGORITHM_USAGE_POLICY',
    'validate_raw',
    'extract_message_digest',
    'extract_self_reported_ts',
    'algorithm_usage_warnings',
]


DEFAULT_WEAK_HASH_ALGORITHMS = frozenset({'sha1', 'md5', 'md2'})

DEFAULT_RSA_KEY_SIZE_THRESHOLD = 2048
DEFAULT_DSA_KEY_SIZE_THRESHOLD = 2048

DEFAULT_ALGORITHM_USAGE_POLICY = DisallowWeakAlgorithmsPolicy(
    DEFAULT_WEAK_HASH_ALGORITHMS,
    rsa_key_size_threshold=DEFAULT_RSA_KEY_SIZE_THRESHOLD,
    dsa_key_size_threshold=DEFAULT_DSA_KEY_SIZE_THRESHOLD,
)


def _expect_key_type(pub_key, key_type, sig_algo):
    if not isinstance(pub_key, key_type):
        raise SignatureValidationError(
            f"Signature mechanism {sig_algo} does not match the type of the "
            f"signer's public key."
        )


def validate_raw(
    signature: bytes,
    signed_data: bytes,
    cert: x509.Certificate,
    signature_algorithm: algos.SignedDigestAlgorithm,
    md_algorithm: str,
    prehashed=False,
):
    """
    Validate a raw signature. Internal API.

    :raises cryptography.exceptions.InvalidSignature:
        if the signature does not verify.
    :raises SignatureValidationError:
        if the signature mechanism is not supported, or not applicable to
        the signer's key.
    """
    try:
        verify_md_algo = signature_algorithm.hash_algo
    except ValueError:
        verify_md_algo = md_algorithm

    try:
        verify_md = get_pyca_cryptography_hash_for_signing(
            verify_md_algo, prehashed=prehashed
        )
    except AttributeError:
        raise SignatureValidationError(
            f"Digest algorithm {verify_md_algo} is not supported."
        )

    pub_key = serialization.load_der_public_key(cert.public_key.dump())

    try:
        sig_algo = signature_algorithm.signature_algo
    except ValueError:
        raise SignatureValidationError(
            f"Signature mechanism "
            f"{signature_algorithm['algorithm'].dotted} is not supported."
        )
    if sig_algo == 'rsassa_pkcs1v15':
        _expect_key_type(pub_key, RSAPublicKey, sig_algo)
        pub_key.verify(signature, signed_data, padding.PKCS1v15(), verify_md)
    elif sig_algo == 'rsassa_pss':
        _expect_key_type(pub_key, RSAPublicKey, sig_algo)
        pss_padding, hash_algo = process_pss_params(
            signature_algorithm['parameters'], md_algorithm, prehashed=prehashed
        )
        pub_key.verify(signature, signed_data, pss_padding, hash_algo)
    elif sig_algo == 'dsa':
        _expect_key_type(pub_key, DSAPublicKey, sig_algo)
        pub_key.verify(signature, signed_data, verify_md)
    elif sig_algo == 'ecdsa':
        _expect_key_type(pub_key, EllipticCurvePublicKey, sig_algo)
        pub_key.verify(signature, signed_data, ECDSA(verify_md))
    elif sig_algo == 'ed25519':
        _expect_key_type(pub_key, Ed25519PublicKey, sig_algo)
        pub_key.verify(signature, signed_data)
    elif sig_algo == 'ed448':
        _expect_key_type(pub_key, Ed448PublicKey, sig_algo)
        pub_key.verify(signature, signed_data)
    else:
        raise SignatureValidationError(
            f"Signature mechanism {sig_algo} is not supported."
        )


def extract_message_digest(signer_info: cms.SignerInfo):
    try:
        embedded_digest = find_unique_cms_attribute(
            signer_info['signed_attrs'], 'message_digest'
        )
        return embedded_digest.native
    except (NonexistentAttributeError, MultivaluedAttributeError):
        raise SignatureValidationError(
            'Message digest not found in signature, or multiple message '
            'digest attributes present.'
        )


def extract_self_reported_ts(signer_info: cms.SignerInfo) -> Optional[datetime]:
    """
    Extract self-reported timestamp (from the ``signingTime`` attribute)

    Internal API.

    :param signer_info:
        A ``SignerInfo`` value.
    :return:
        The value of the ``signingTime`` attribute as a ``datetime``, or
        ``None``.
    """
    try:
        sa = signer_info['signed_attrs']
        st = find_unique_cms_attribute(sa, 'signing_time')
        return st.native
    except (NonexistentAttributeError, MultivaluedAttributeError):
        return None


def algorithm_usage_warnings(
    policy: AlgorithmUsagePolicy,
    signer_info: cms.SignerInfo,
    public_key: Optional[keys.PublicKeyInfo],
    moment: Optional[datetime] = None,
) -> List[str]:
    """
    Evaluate the algorithms used in a signature against a usage policy.

    Policy violations do not invalidate a signature here, they are
    reported as warnings.

    :return:
        A list of human-readable warnings, empty if all algorithms
        are allowed.
    """
    warnings = []
    digest_algorithm: algos.DigestAlgorithm = signer_info['digest_algorithm']
    md_allowed = policy.digest_algorithm_allowed(digest_algorithm, moment)
    if not md_allowed:
        warnings.append(
            f"Digest algorithm {digest_algorithm['algorithm'].native} "
            f"is considered weak."
        )

    signature_algorithm: algos.SignedDigestAlgorithm = signer_info[
        'signature_algorithm'
    ]
    sig_allowed = policy.signature_algorithm_allowed(
        signature_algorithm, moment=moment, public_key=public_key
    )
    if not sig_allowed:
        msg = (
            f"Signature algorithm {signature_algorithm['algorithm'].native} "
            f"is considered weak."
        )
        if sig_allowed.failure_reason is not None:
            msg += f" Reason: {sig_allowed.failure_reason}."
        warnings.append(msg)
    return warnings
