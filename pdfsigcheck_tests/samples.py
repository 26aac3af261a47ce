import hashlib
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

from asn1crypto import algos, cms, core, pem, x509
from cryptography import x509 as pyca_x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.x509.oid import NameOID

# Test PKI
# All certificates are generated on the fly, with fixed serial numbers and
# validity periods.


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


FAR_PAST = _utc(2020, 1, 1)
FAR_FUTURE = _utc(2040, 1, 1)
SIGNING_TIME = _utc(2020, 6, 1, 12, 0, 0)
SIGNING_TIME_PDF = b'D:20200601120000Z'


def _name(common_name):
    attrs = [
        pyca_x509.NameAttribute(NameOID.COUNTRY_NAME, 'BE'),
        pyca_x509.NameAttribute(NameOID.ORGANIZATION_NAME, 'Example Inc'),
        pyca_x509.NameAttribute(
            NameOID.ORGANIZATIONAL_UNIT_NAME, 'Testing Authority'
        ),
    ]
    if common_name is not None:
        attrs.append(
            pyca_x509.NameAttribute(NameOID.COMMON_NAME, common_name)
        )
    return pyca_x509.Name(attrs)


def issue_cert(common_name, public_key, issuer_key, issuer_cn=None, *,
               serial, not_before=FAR_PAST, not_after=FAR_FUTURE,
               ca=False, email=None) -> x509.Certificate:
    subject = _name(common_name)
    issuer = _name(issuer_cn) if issuer_cn is not None else subject
    builder = pyca_x509.CertificateBuilder() \
        .subject_name(subject) \
        .issuer_name(issuer) \
        .public_key(public_key) \
        .serial_number(serial) \
        .not_valid_before(not_before) \
        .not_valid_after(not_after) \
        .add_extension(
            pyca_x509.BasicConstraints(ca=ca, path_length=None),
            critical=True
        )
    if email is not None:
        builder = builder.add_extension(
            pyca_x509.SubjectAlternativeName([pyca_x509.RFC822Name(email)]),
            critical=False
        )
    cert = builder.sign(issuer_key, hashes.SHA256())
    return x509.Certificate.load(
        cert.public_bytes(serialization.Encoding.DER)
    )


def _rsa_key(key_size=2048):
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


CA_CN = 'Example Testing CA'
CA_KEY = _rsa_key()
CA_CERT = issue_cert(
    CA_CN, CA_KEY.public_key(), CA_KEY, serial=0x1000, ca=True
)

SIGNER_KEY = _rsa_key()
SIGNER_CERT = issue_cert(
    'Alice Signer', SIGNER_KEY.public_key(), CA_KEY, CA_CN, serial=0x1001,
    email='alice@example.com'
)
EXPIRED_SIGNER_CERT = issue_cert(
    'Bob Expired', SIGNER_KEY.public_key(), CA_KEY, CA_CN, serial=0x1002,
    not_after=_utc(2021, 1, 1)
)

SELF_SIGNED_KEY = _rsa_key()
SELF_SIGNED_CERT = issue_cert(
    'Sam Selfsigned', SELF_SIGNED_KEY.public_key(), SELF_SIGNED_KEY,
    serial=0x2000
)

EC_SIGNER_KEY = ec.generate_private_key(ec.SECP256R1())
EC_SIGNER_CERT = issue_cert(
    'Eve Ecdsa', EC_SIGNER_KEY.public_key(), CA_KEY, CA_CN, serial=0x1003
)

WEAK_RSA_KEY = _rsa_key(1024)
WEAK_RSA_CERT = issue_cert(
    'Walter Weak', WEAK_RSA_KEY.public_key(), CA_KEY, CA_CN, serial=0x1004
)

# no common name in the subject
NO_CN_SIGNER_CERT = issue_cert(
    None, SIGNER_KEY.public_key(), CA_KEY, CA_CN, serial=0x1005
)


class CMSSigner:
    """
    Produce detached CMS signatures with signed attributes.
    """

    def __init__(self, key, cert: x509.Certificate,
                 chain: List[x509.Certificate] = ()):
        self.key = key
        self.cert = cert
        self.chain = list(chain)

    def _raw_sign(self, data: bytes, digest_algorithm: str) -> bytes:
        md = getattr(hashes, digest_algorithm.upper())()
        if isinstance(self.key, rsa.RSAPrivateKey):
            return self.key.sign(data, padding.PKCS1v15(), md)
        return self.key.sign(data, ec.ECDSA(md))

    def _signature_mechanism(self, digest_algorithm: str) -> str:
        if isinstance(self.key, rsa.RSAPrivateKey):
            return f'{digest_algorithm}_rsa'
        return f'{digest_algorithm}_ecdsa'

    def sign(self, signed_bytes: bytes, digest_algorithm='sha256',
             signing_time=SIGNING_TIME,
             certs: Optional[List[x509.Certificate]] = None) -> bytes:
        digest = hashlib.new(digest_algorithm, signed_bytes).digest()
        signed_attrs = cms.CMSAttributes([
            cms.CMSAttribute({'type': 'content_type', 'values': ['data']}),
            cms.CMSAttribute({'type': 'message_digest', 'values': [digest]}),
            cms.CMSAttribute({
                'type': 'signing_time',
                'values': [cms.Time({'utc_time': core.UTCTime(signing_time)})]
            }),
        ])
        signature = self._raw_sign(signed_attrs.dump(), digest_algorithm)
        sid = cms.SignerIdentifier({
            'issuer_and_serial_number': cms.IssuerAndSerialNumber({
                'issuer': self.cert.issuer,
                'serial_number': self.cert.serial_number,
            })
        })
        digest_algorithm_obj = algos.DigestAlgorithm(
            {'algorithm': digest_algorithm}
        )
        signer_info = cms.SignerInfo({
            'version': 'v1',
            'sid': sid,
            'digest_algorithm': digest_algorithm_obj,
            'signature_algorithm': algos.SignedDigestAlgorithm({
                'algorithm': self._signature_mechanism(digest_algorithm)
            }),
            'signed_attrs': signed_attrs,
            'signature': signature,
        })
        if certs is None:
            certs = [self.cert] + self.chain
        signed_data = {
            'version': 'v1',
            'digest_algorithms': [digest_algorithm_obj],
            'encap_content_info': {'content_type': 'data'},
            'signer_infos': [signer_info],
        }
        if certs:
            signed_data['certificates'] = certs
        return cms.ContentInfo({
            'content_type': 'signed_data',
            'content': cms.SignedData(signed_data),
        }).dump()


SIGNER = CMSSigner(SIGNER_KEY, SIGNER_CERT, [CA_CERT])
EXPIRED_SIGNER = CMSSigner(SIGNER_KEY, EXPIRED_SIGNER_CERT, [CA_CERT])
SELF_SIGNED_SIGNER = CMSSigner(SELF_SIGNED_KEY, SELF_SIGNED_CERT)
EC_SIGNER = CMSSigner(EC_SIGNER_KEY, EC_SIGNER_CERT, [CA_CERT])
WEAK_RSA_SIGNER = CMSSigner(WEAK_RSA_KEY, WEAK_RSA_CERT, [CA_CERT])
NO_CN_SIGNER = CMSSigner(SIGNER_KEY, NO_CN_SIGNER_CERT, [CA_CERT])


# PDF construction
# The files are written out by hand, so the tests control every byte.

PDF_HEADER = b'%PDF-1.7\n%\xe2\xe3\xcf\xd3\n'
BYTE_RANGE_PLACEHOLDER = b'[' + b' ' * 40 + b']'
CONTENTS_RESERVED = 8192
CONTENTS_PLACEHOLDER = b'<' + b'0' * (2 * CONTENTS_RESERVED) + b'>'
MEDIA_BOX = b'/MediaBox [0 0 300 144]'


def sig_dict(name=b'Alice Signer', reason=b'I approve this document',
             location=b'Leuven', contact_info=b'alice@example.com',
             signing_time=SIGNING_TIME_PDF, byte_range=BYTE_RANGE_PLACEHOLDER,
             contents=CONTENTS_PLACEHOLDER,
             sub_filter=b'adbe.pkcs7.detached', extra=b'') -> bytes:
    parts = [
        b'/Type /Sig', b'/Filter /Adobe.PPKLite',
        b'/SubFilter /' + sub_filter,
    ]
    for key, value in ((b'/Name', name), (b'/M', signing_time),
                       (b'/Reason', reason), (b'/Location', location),
                       (b'/ContactInfo', contact_info)):
        if value is not None:
            parts.append(key + b' (' + value + b')')
    if extra:
        parts.append(extra)
    if byte_range is not None:
        parts.append(b'/ByteRange ' + byte_range)
    if contents is not None:
        parts.append(b'/Contents ' + contents)
    return b'<< ' + b'\n'.join(parts) + b' >>'


def serialize(objects: Dict[int, bytes], base: bytes = b'') -> bytes:
    """
    Write out a PDF file (or an incremental update to ``base``) containing
    the given objects.
    """
    out = bytearray(base or PDF_HEADER)
    offsets = {}
    for idnum, body in sorted(objects.items()):
        offsets[idnum] = len(out)
        out += b'%d 0 obj\n%s\nendobj\n' % (idnum, body)
    xref_offset = len(out)
    out += b'xref\n'
    if not base:
        out += b'0 1\n0000000000 65535 f \n'
    for idnum in sorted(offsets):
        out += b'%d 1\n%010d 00000 n \n' % (idnum, offsets[idnum])
    size = max(offsets) + 1
    trailer = b'/Size %d /Root 1 0 R' % size
    if base:
        prev = re.search(rb'startxref\s+(\d+)\s+%%EOF\s*$', base)
        trailer += b' /Prev ' + prev.group(1)
    out += b'trailer\n<< %s >>\nstartxref\n%d\n%%%%EOF\n' % (
        trailer, xref_offset
    )
    return bytes(out)


def _document_objects(field_refs: List[bytes], page_count=1) -> dict:
    refs = b' '.join(field_refs)
    return {
        1: b'<< /Type /Catalog /Pages 2 0 R '
           b'/AcroForm << /Fields [%s] /SigFlags 3 >> >>' % refs,
        2: b'<< /Type /Pages /Kids [3 0 R] /Count %d >>' % page_count,
        3: b'<< /Type /Page /Parent 2 0 R ' + MEDIA_BOX
           + b' /Annots [%s] >>' % refs,
    }


def _field(name: bytes, value_ref: Optional[int] = None) -> bytes:
    body = b'<< /Type /Annot /Subtype /Widget /FT /Sig /T (' + name \
           + b') /Rect [0 0 0 0] /F 132 /P 3 0 R'
    if value_ref is not None:
        body += b' /V %d 0 R' % value_ref
    return body + b' >>'


def minimal_pdf(fields=((b'Signature1', None),)) -> bytes:
    """
    Build a one-page document with the given signature fields. Each field is
    specified as a pair of a name and a signature dictionary (or ``None``
    for an empty field).
    """
    objects = {}
    field_refs = []
    next_id = 4
    for name, sig_body in fields:
        field_id = next_id
        next_id += 1
        value_ref = None
        if sig_body is not None:
            value_ref = next_id
            objects[value_ref] = sig_body
            next_id += 1
        objects[field_id] = _field(name, value_ref)
        field_refs.append(b'%d 0 R' % field_id)
    objects.update(_document_objects(field_refs))
    return serialize(objects)


def add_signature_field(base: bytes, name: bytes, sig_body: bytes,
                        existing_fields: List[int], next_id: int) -> bytes:
    """
    Add a signature field with a signature dictionary in an incremental
    update.
    """
    field_id, sig_id = next_id, next_id + 1
    field_refs = [b'%d 0 R' % ix for ix in existing_fields + [field_id]]
    objects = _document_objects(field_refs)
    del objects[2]
    objects[field_id] = _field(name, sig_id)
    objects[sig_id] = sig_body
    return serialize(objects, base=base)


def fill_signature(data: bytes, signer: CMSSigner, **kwargs) -> bytes:
    """
    Fill in the byte range and contents placeholders of the last signature
    dictionary in the file.
    """
    br_start = data.rindex(BYTE_RANGE_PLACEHOLDER)
    contents_start = data.index(b'/Contents <', br_start) + len(b'/Contents ')
    contents_end = data.index(b'>', contents_start) + 1
    byte_range = b'[0 %d %d %d]' % (
        contents_start, contents_end, len(data) - contents_end
    )
    byte_range = byte_range.ljust(len(BYTE_RANGE_PLACEHOLDER))
    data = data[:br_start] + byte_range \
        + data[br_start + len(byte_range):]
    signed_bytes = data[:contents_start] + data[contents_end:]
    hex_value = signer.sign(signed_bytes, **kwargs).hex().encode('ascii')
    reserved = contents_end - contents_start - 2
    if len(hex_value) > reserved:
        raise ValueError("Not enough room reserved for the signature")
    return data[:contents_start + 1] + hex_value.ljust(reserved, b'0') \
        + data[contents_end - 1:]


def signed_pdf(signer: CMSSigner = None, sig_body: bytes = None,
               **kwargs) -> bytes:
    sig_body = sig_body or sig_dict()
    return fill_signature(
        minimal_pdf([(b'Signature1', sig_body)]), signer or SIGNER, **kwargs
    )


def tamper(data: bytes) -> bytes:
    # change the page size, without shifting any offsets
    return data.replace(MEDIA_BOX, b'/MediaBox [0 0 300 145]', 1)


UNSIGNED_PDF = minimal_pdf()
SIGNED_PDF = signed_pdf()
TWO_SIGNATURES_PDF = fill_signature(
    add_signature_field(
        SIGNED_PDF, b'Signature2',
        sig_dict(name=b'Sam Selfsigned', reason=b'Countersignature',
                 location=b'Brussels', contact_info=None),
        existing_fields=[4], next_id=6,
    ),
    SELF_SIGNED_SIGNER
)


def pem_armor(cert: x509.Certificate) -> bytes:
    return pem.armor('CERTIFICATE', cert.dump())
