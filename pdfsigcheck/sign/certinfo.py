"""
Local analysis of X.509 certificates.

This module extracts the facts that signature verification reports about a
certificate (identity, validity, key, extensions, fingerprint), and
implements the standalone certificate inspection feature.

No trust decisions are made here beyond the purely local ones: expiry with
respect to a given moment, and whether the certificate is self-signed.
"""

import enum
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple, Union

from asn1crypto import core, pem, x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.dsa import DSAPublicKey
from cryptography.hazmat.primitives.asymmetric.ec import (
    EllipticCurvePublicKey,
)
from cryptography.hazmat.primitives.asymmetric.ed448 import Ed448PublicKey
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from ..pdf_utils.misc import ValueErrorWithMessage, aware_moment

__all__ = [
    'DNAttribute', 'RSAKeyInfo', 'ECKeyInfo', 'OtherKeyInfo', 'KeyInfo',
    'ExtensionInfo', 'CertificateInfo', 'CertificateInspection',
    'CertificateInputError', 'analyze_certificate', 'inspect_certificate',
    'load_certificate_data',
]


class CertificateInputError(ValueErrorWithMessage):
    """
    Raised when certificate input data cannot be decoded.
    """
    pass


@enum.unique
class DNAttribute(enum.Enum):
    """
    Distinguished name attribute types, mapped to their conventional short
    names. The values are the attribute type names used by ``asn1crypto``.
    """

    COMMON_NAME = 'common_name'
    SURNAME = 'surname'
    SERIAL_NUMBER = 'serial_number'
    COUNTRY_NAME = 'country_name'
    LOCALITY_NAME = 'locality_name'
    STATE_OR_PROVINCE_NAME = 'state_or_province_name'
    STREET_ADDRESS = 'street_address'
    ORGANIZATION_NAME = 'organization_name'
    ORGANIZATIONAL_UNIT_NAME = 'organizational_unit_name'
    TITLE = 'title'
    GIVEN_NAME = 'given_name'
    INITIALS = 'initials'
    GENERATION_QUALIFIER = 'generation_qualifier'
    PSEUDONYM = 'pseudonym'
    ORGANIZATION_IDENTIFIER = 'organization_identifier'
    POSTAL_CODE = 'postal_code'
    DOMAIN_COMPONENT = 'domain_component'
    EMAIL_ADDRESS = 'email_address'

    @property
    def short_name(self) -> str:
        return _SHORT_NAMES[self]

    @classmethod
    def from_asn1_name(cls, name: str) -> Optional['DNAttribute']:
        try:
            return cls(name)
        except ValueError:
            return None


_SHORT_NAMES = {
    DNAttribute.COMMON_NAME: 'CN',
    DNAttribute.SURNAME: 'SN',
    DNAttribute.SERIAL_NUMBER: 'SERIALNUMBER',
    DNAttribute.COUNTRY_NAME: 'C',
    DNAttribute.LOCALITY_NAME: 'L',
    DNAttribute.STATE_OR_PROVINCE_NAME: 'ST',
    DNAttribute.STREET_ADDRESS: 'STREET',
    DNAttribute.ORGANIZATION_NAME: 'O',
    DNAttribute.ORGANIZATIONAL_UNIT_NAME: 'OU',
    DNAttribute.TITLE: 'T',
    DNAttribute.GIVEN_NAME: 'GN',
    DNAttribute.INITIALS: 'initials',
    DNAttribute.GENERATION_QUALIFIER: 'generationQualifier',
    DNAttribute.PSEUDONYM: 'pseudonym',
    DNAttribute.ORGANIZATION_IDENTIFIER: 'organizationIdentifier',
    DNAttribute.POSTAL_CODE: 'postalCode',
    DNAttribute.DOMAIN_COMPONENT: 'DC',
    DNAttribute.EMAIL_ADDRESS: 'E',
}


# An attribute key is either a known attribute type, or the dotted OID of an
# attribute type we don't recognise.
AttributeKey = Union[DNAttribute, str]


def _attr_key_label(key: AttributeKey) -> str:
    return key.short_name if isinstance(key, DNAttribute) else key


def _render_attr_value(value) -> str:
    if isinstance(value, str):
        return value
    elif isinstance(value, bytes):
        return value.hex()
    return str(value)


def _name_attributes(name: x509.Name) -> List[Tuple[AttributeKey, str]]:
    result = []
    for rdn in name.chosen:
        for type_and_value in rdn:
            attr_type = type_and_value['type']
            key = DNAttribute.from_asn1_name(attr_type.native)
            if key is None:
                key = attr_type.dotted
            try:
                value = type_and_value['value'].native
            except ValueError:
                # undecodable value, keep the raw encoding
                value = type_and_value['value'].contents
            result.append((key, _render_attr_value(value)))
    return result


def _display_name(attributes: List[Tuple[AttributeKey, str]]) -> str:
    for key, value in attributes:
        if key is DNAttribute.COMMON_NAME:
            return value
    return ', '.join(
        f'{_attr_key_label(key)}={value}' for key, value in attributes
    )


@dataclass(frozen=True)
class RSAKeyInfo:
    modulus: int
    public_exponent: int
    key_size: int

    @property
    def algorithm(self) -> str:
        return 'RSA'


@dataclass(frozen=True)
class ECKeyInfo:
    curve: str
    point: bytes
    """
    The public point, in uncompressed X9.62 form.
    """

    key_size: int

    @property
    def algorithm(self) -> str:
        return 'EC'


@dataclass(frozen=True)
class OtherKeyInfo:
    algorithm: str
    key_size: Optional[int] = None


KeyInfo = Union[RSAKeyInfo, ECKeyInfo, OtherKeyInfo]


def _key_info(cert: x509.Certificate) -> KeyInfo:
    public_key_info = cert.public_key
    algorithm = public_key_info.algorithm
    try:
        pub_key = serialization.load_der_public_key(public_key_info.dump())
    except (ValueError, UnsupportedAlgorithm):
        return OtherKeyInfo(algorithm=algorithm.upper())

    if isinstance(pub_key, RSAPublicKey):
        numbers = pub_key.public_numbers()
        return RSAKeyInfo(
            modulus=numbers.n, public_exponent=numbers.e,
            key_size=pub_key.key_size
        )
    elif isinstance(pub_key, EllipticCurvePublicKey):
        point = pub_key.public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.UncompressedPoint
        )
        return ECKeyInfo(
            curve=pub_key.curve.name, point=point,
            key_size=pub_key.key_size
        )
    elif isinstance(pub_key, DSAPublicKey):
        return OtherKeyInfo(algorithm='DSA', key_size=pub_key.key_size)
    elif isinstance(pub_key, Ed25519PublicKey):
        return OtherKeyInfo(algorithm='ED25519', key_size=256)
    elif isinstance(pub_key, Ed448PublicKey):
        return OtherKeyInfo(algorithm='ED448', key_size=456)
    return OtherKeyInfo(algorithm=algorithm.upper())


def _json_default(value):
    if isinstance(value, bytes):
        return value.hex()
    elif isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    elif isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def render_native_value(value) -> str:
    """
    Render a value produced by ``asn1crypto``'s ``.native`` API as
    displayable text. Strings are returned as-is, structured values are
    rendered as JSON.
    """
    if isinstance(value, str):
        return value
    return json.dumps(value, default=_json_default)


@dataclass(frozen=True)
class ExtensionInfo:
    name: str
    """
    Name of the extension type, or its dotted OID if the type is not known.
    """

    value: str
    """
    Displayable rendition of the extension value.
    """

    critical: bool = False

    def as_dict(self):
        return {
            'name': self.name, 'value': self.value, 'critical': self.critical
        }


def _extensions(cert: x509.Certificate) -> List[ExtensionInfo]:
    result = []
    extensions = cert['tbs_certificate']['extensions']
    if isinstance(extensions, core.Void):
        return result
    for ext in extensions:
        extn_id = ext['extn_id']
        try:
            parsed = ext['extn_value'].parsed
            value = parsed.native if parsed is not None \
                else ext['extn_value'].native
        except ValueError:
            value = ext['extn_value'].contents
        result.append(
            ExtensionInfo(
                name=extn_id.native,
                value=render_native_value(value),
                critical=bool(ext['critical'].native),
            )
        )
    return result


def _email_address(cert: x509.Certificate,
                   subject: List[Tuple[AttributeKey, str]]) -> Optional[str]:
    for key, value in subject:
        if key is DNAttribute.EMAIL_ADDRESS:
            return value
    try:
        san = cert.subject_alt_name_value
    except ValueError:
        return None
    if san is not None:
        for general_name in san:
            if general_name.name == 'rfc822_name':
                return general_name.native
    return None


@dataclass(frozen=True)
class CertificateInfo:
    """
    Facts about a single certificate, evaluated at a particular moment.
    """

    subject: List[Tuple[AttributeKey, str]]
    """
    The subject's distinguished name attributes, in encoding order.
    """

    issuer: List[Tuple[AttributeKey, str]]
    """
    The issuer's distinguished name attributes, in encoding order.
    """

    serial_number: int
    valid_from: datetime
    valid_to: datetime
    public_key: KeyInfo
    fingerprint: str
    """
    Hex-encoded SHA-256 digest of the certificate's DER encoding.
    """

    is_expired: bool
    is_self_signed: bool
    email: Optional[str] = None
    extensions: List[ExtensionInfo] = field(default_factory=list)

    @property
    def serial_number_hex(self) -> str:
        return format(self.serial_number, 'x')

    @property
    def subject_display(self) -> str:
        return _display_name(self.subject)

    @property
    def issuer_display(self) -> str:
        return _display_name(self.issuer)

    @property
    def common_name(self) -> Optional[str]:
        for key, value in self.subject:
            if key is DNAttribute.COMMON_NAME:
                return value
        return None

    def as_dict(self):
        return {
            'subject': self.subject_display,
            'issuer': self.issuer_display,
            'validFrom': self.valid_from,
            'validTo': self.valid_to,
            'serialNumber': self.serial_number_hex,
            'isExpired': self.is_expired,
            'fingerprint': self.fingerprint,
        }


def analyze_certificate(cert: x509.Certificate,
                        moment: Optional[datetime] = None) -> CertificateInfo:
    """
    Analyse a certificate.

    :param cert:
        The certificate to analyse.
    :param moment:
        The moment at which to evaluate the certificate's validity period.
        Defaults to the current time. A naive datetime is taken to be in
        UTC.
    :return:
        A :class:`CertificateInfo` object.
    """
    moment = aware_moment(moment)
    subject = _name_attributes(cert.subject)
    not_after = cert.not_valid_after
    return CertificateInfo(
        subject=subject,
        issuer=_name_attributes(cert.issuer),
        serial_number=cert.serial_number,
        valid_from=cert.not_valid_before,
        valid_to=not_after,
        public_key=_key_info(cert),
        fingerprint=cert.sha256.hex(),
        # a certificate is still valid at the very last second of its
        # validity period
        is_expired=moment > not_after,
        is_self_signed=cert.issuer.sha256 == cert.subject.sha256,
        email=_email_address(cert, subject),
        extensions=_extensions(cert),
    )


@dataclass(frozen=True)
class CertificateInspection:
    """
    Result of inspecting a standalone certificate file.
    """

    info: CertificateInfo

    @property
    def public_key_algorithm(self) -> str:
        return self.info.public_key.algorithm

    @property
    def key_size(self) -> Optional[int]:
        return self.info.public_key.key_size

    def as_dict(self):
        info = self.info
        return {
            'subject': {
                _attr_key_label(k): v for k, v in info.subject
            },
            'issuer': {
                _attr_key_label(k): v for k, v in info.issuer
            },
            'serialNumber': info.serial_number_hex,
            'validFrom': info.valid_from,
            'validTo': info.valid_to,
            'isExpired': info.is_expired,
            'isSelfSigned': info.is_self_signed,
            'fingerprint': info.fingerprint,
            'publicKeyAlgorithm': self.public_key_algorithm,
            'keySize': self.key_size,
            'extensions': [ext.as_dict() for ext in info.extensions],
        }


PEM_CERTIFICATE_LABELS = frozenset({
    'certificate', 'x509 certificate', 'trusted certificate',
})


def _load_cert(der_bytes: bytes, strict=True) -> x509.Certificate:
    cert = x509.Certificate.load(der_bytes, strict=strict)
    # asn1crypto parses lazily, so force the fields we need to be decoded
    # here
    _ = (
        cert.subject.native, cert.issuer.native, cert.serial_number,
        cert.not_valid_before, cert.not_valid_after,
        cert.public_key.algorithm,
    )
    return cert


def load_certificate_data(data: bytes) -> x509.Certificate:
    """
    Decode a certificate, trying PEM first and DER second.

    :param data:
        The contents of a certificate file.
    :return:
        The decoded certificate.
    :raises CertificateInputError:
        if the data cannot be decoded as either.
    """
    if pem.detect(data):
        try:
            labels = []
            for type_name, _, der in pem.unarmor(data, multiple=True):
                label = (type_name or '').lower()
                if not label or label in PEM_CERTIFICATE_LABELS:
                    # OpenSSL appends auxiliary trust settings to the
                    # certificate in TRUSTED CERTIFICATE blocks
                    return _load_cert(
                        der, strict=label != 'trusted certificate'
                    )
                labels.append(type_name)
            pem_error = (
                f"no certificate block found, only {', '.join(labels)}"
            )
        except (ValueError, TypeError) as e:
            pem_error = str(e)
    else:
        pem_error = "no PEM armor found"

    try:
        return _load_cert(data)
    except (ValueError, TypeError) as e:
        der_error = str(e)
    raise CertificateInputError(
        f"Failed to parse certificate: not a PEM certificate ({pem_error}), "
        f"and not a DER certificate ({der_error})."
    )


def inspect_certificate(data: bytes, moment: Optional[datetime] = None) \
        -> CertificateInspection:
    """
    Inspect a standalone certificate.

    :param data:
        The contents of a certificate file, PEM or DER encoded.
    :param moment:
        The moment at which to evaluate the certificate's validity period.
        Defaults to the current time.
    :return:
        A :class:`CertificateInspection` object.
    :raises CertificateInputError:
        if the data is not a certificate in either encoding.
    """
    cert = load_certificate_data(data)
    return CertificateInspection(info=analyze_certificate(cert, moment))

