from datetime import datetime, timezone

import pytest

from pdfsigcheck.sign.fields import (
    LocatorStrategy,
    SignatureFieldDescriptor,
    locate_signature_fields,
)
from pdfsigcheck.sign.validation import (
    EnvelopeDecodingError,
    OverallStatus,
    VerificationSettings,
    decode_envelope,
    verify_pdf_batch,
    verify_pdf_signatures,
    verify_signature_field,
)
from pdfsigcheck.sign.validation import pdf_embedded
from pdfsigcheck.sign.validation.pdf_embedded import (
    MISSING_ENTRIES_ERROR,
    NO_CERTIFICATES_ERROR,
    NO_CHAIN_VALIDATION_WARNING,
    NO_REVOCATION_CHECK_WARNING,
    NO_SIGNATURES_MESSAGE,
    SELF_SIGNED_WARNING,
)
from pdfsigcheck_tests.samples import (
    CA_CERT,
    EC_SIGNER,
    EXPIRED_SIGNER,
    NO_CN_SIGNER,
    SELF_SIGNED_SIGNER,
    SIGNED_PDF,
    SIGNER,
    SIGNER_CERT,
    SIGNING_TIME,
    TWO_SIGNATURES_PDF,
    UNSIGNED_PDF,
    WEAK_RSA_SIGNER,
    fill_signature,
    minimal_pdf,
    sig_dict,
    signed_pdf,
    tamper,
)

MOMENT = datetime(2022, 1, 1, tzinfo=timezone.utc)


def _verify_single(data, moment=MOMENT, **kwargs):
    doc = verify_pdf_signatures(data, moment=moment, **kwargs)
    (result,) = doc.signatures
    return result


def test_decode_envelope():
    envelope = decode_envelope(SIGNER.sign(b'data').hex())
    assert envelope.signer_cert.dump() == SIGNER_CERT.dump()
    assert [c.dump() for c in envelope.certificates] \
        == [SIGNER_CERT.dump(), CA_CERT.dump()]
    assert envelope.digest_algorithm == 'sha256'
    assert envelope.signature_mechanism == 'sha256_rsa'
    assert envelope.signing_time == SIGNING_TIME
    assert envelope.warnings == []


def test_decode_envelope_signer_cert_last():
    der = SIGNER.sign(b'data', certs=[CA_CERT, SIGNER_CERT])
    envelope = decode_envelope(der.hex())
    assert envelope.certificates[0].dump() == SIGNER_CERT.dump()


def test_decode_envelope_trailing_zeros():
    hex_str = SIGNER.sign(b'data').hex() + '0' * 101
    envelope = decode_envelope(hex_str)
    assert envelope.verify(b'data').integrity_valid


def test_decode_envelope_unmatched_signer():
    der = SIGNER.sign(b'data', certs=[CA_CERT])
    envelope = decode_envelope(der.hex())
    assert envelope.signer_cert.dump() == CA_CERT.dump()
    assert len(envelope.warnings) == 1


@pytest.mark.parametrize('hex_str', ['', 'deadbeef', 'zz', '3003020101'])
def test_decode_envelope_errors(hex_str):
    with pytest.raises(EnvelopeDecodingError):
        decode_envelope(hex_str)


def test_envelope_verify():
    envelope = decode_envelope(SIGNER.sign(b'data').hex())
    integrity = envelope.verify(b'data')
    assert integrity.intact and integrity.valid
    integrity = envelope.verify(b'date')
    assert not integrity.intact
    assert integrity.valid
    assert not integrity.integrity_valid


def test_verify_valid():
    result = _verify_single(SIGNED_PDF)
    assert result.status == OverallStatus.VALID
    assert result.field_name == 'Signature1'
    assert result.signer_name == 'Alice Signer'
    assert result.signer_email == 'alice@example.com'
    assert result.signing_time == SIGNING_TIME
    assert result.reason == 'I approve this document'
    assert result.location == 'Leuven'
    assert result.contact_info == 'alice@example.com'
    assert result.integrity_valid
    assert result.cert_trust_valid
    assert not result.is_expired
    assert not result.is_self_signed
    assert result.digest_algorithm == 'sha256'
    assert result.signature_mechanism == 'sha256_rsa'
    assert result.errors == []
    assert result.warnings == [
        NO_CHAIN_VALIDATION_WARNING, NO_REVOCATION_CHECK_WARNING
    ]
    assert [c.common_name for c in result.certificates] \
        == ['Alice Signer', 'Example Testing CA']


def test_verify_tampered():
    result = _verify_single(tamper(SIGNED_PDF))
    assert result.status == OverallStatus.TAMPERED
    assert not result.integrity_valid
    assert result.errors == []
    assert any('altered after signing' in w for w in result.warnings)


def test_verify_self_signed():
    result = _verify_single(signed_pdf(SELF_SIGNED_SIGNER))
    assert result.status == OverallStatus.SELF_SIGNED
    assert result.integrity_valid
    assert result.is_self_signed
    assert not result.cert_trust_valid
    assert SELF_SIGNED_WARNING in result.warnings


def test_verify_expired():
    result = _verify_single(signed_pdf(EXPIRED_SIGNER))
    assert result.status == OverallStatus.EXPIRED
    assert result.integrity_valid
    assert result.is_expired
    assert not result.cert_trust_valid
    assert 'Certificate expired on 2021-01-01' in result.warnings
    assert result.signer_name == 'Bob Expired'


def test_verify_expired_at_signing_time():
    result = _verify_single(signed_pdf(EXPIRED_SIGNER), moment=SIGNING_TIME)
    assert result.status == OverallStatus.VALID


def test_verify_naive_moment():
    doc = verify_pdf_signatures(SIGNED_PDF, moment=datetime(2022, 1, 1))
    (result,) = doc.signatures
    assert result.status == OverallStatus.VALID
    assert result.errors == []

    result = _verify_single(
        signed_pdf(EXPIRED_SIGNER), moment=datetime(2020, 12, 31, 23, 59)
    )
    assert result.status == OverallStatus.VALID
    result = _verify_single(
        signed_pdf(EXPIRED_SIGNER), moment=datetime(2021, 1, 1, 0, 0, 1)
    )
    assert result.status == OverallStatus.EXPIRED


def test_verify_ecdsa():
    result = _verify_single(signed_pdf(EC_SIGNER))
    assert result.status == OverallStatus.VALID
    assert result.signature_mechanism == 'sha256_ecdsa'
    assert result.certificates[0].public_key.algorithm == 'EC'


def test_verify_weak_digest_warning():
    result = _verify_single(signed_pdf(digest_algorithm='sha1'))
    assert result.status == OverallStatus.VALID
    assert result.digest_algorithm == 'sha1'
    assert 'Digest algorithm sha1 is considered weak.' in result.warnings


def test_verify_weak_digest_policy_from_settings():
    settings = VerificationSettings(weak_hash_algorithms=frozenset())
    result = _verify_single(
        signed_pdf(digest_algorithm='sha1'), settings=settings
    )
    assert not any('weak' in w for w in result.warnings)


def test_verify_small_rsa_key_warning():
    result = _verify_single(signed_pdf(WEAK_RSA_SIGNER))
    assert result.status == OverallStatus.VALID
    assert any(
        w.startswith('Signature algorithm sha256_rsa is considered weak.')
        for w in result.warnings
    )


def test_verify_no_signatures():
    doc = verify_pdf_signatures(UNSIGNED_PDF)
    assert not doc.has_signatures
    assert doc.signatures == []
    assert doc.message == NO_SIGNATURES_MESSAGE
    assert doc.num_pages == 1
    assert doc.status == OverallStatus.NONE


def test_verify_two_signatures():
    doc = verify_pdf_signatures(TWO_SIGNATURES_PDF, moment=MOMENT)
    first, second = doc.signatures
    assert first.field_name == 'Signature1'
    assert first.status == OverallStatus.VALID
    assert any('does not cover the last' in w for w in first.warnings)
    assert second.field_name == 'Signature2'
    assert second.status == OverallStatus.SELF_SIGNED
    assert not any('does not cover the last' in w for w in second.warnings)
    assert doc.status == OverallStatus.SELF_SIGNED


def test_verify_missing_contents():
    data = minimal_pdf([(b'Signature1', sig_dict(contents=None))])
    result = _verify_single(data)
    assert result.status == OverallStatus.INVALID
    assert result.errors == [MISSING_ENTRIES_ERROR]
    assert result.reason == 'I approve this document'


def test_verify_malformed_cms():
    data = minimal_pdf([(
        b'Signature1',
        sig_dict(byte_range=b'[0 10 20 30]', contents=b'<deadbeef>')
    )])
    result = _verify_single(data)
    assert result.status == OverallStatus.INVALID
    (err,) = result.errors
    assert err.startswith('Failed to parse signature CMS data')


def test_verify_no_certificates():
    result = _verify_single(signed_pdf(certs=[]))
    assert result.status == OverallStatus.INVALID
    assert result.errors == [NO_CERTIFICATES_ERROR]
    assert result.digest_algorithm == 'sha256'


def test_verify_byte_range_out_of_bounds():
    data = minimal_pdf([(
        b'Signature1', sig_dict(byte_range=b'[0 10 999999 10]')
    )])
    result = _verify_single(data)
    assert result.status == OverallStatus.INVALID
    (err,) = result.errors
    assert err.startswith('Invalid byte range')


def test_verify_odd_byte_range():
    descriptor = SignatureFieldDescriptor(
        'Signature1', byte_range=(0, 10, 20), contents_hex='3000'
    )
    result = verify_signature_field(descriptor, SIGNED_PDF, moment=MOMENT)
    assert result.status == OverallStatus.INVALID
    assert result.errors == [
        'Invalid byte range: /ByteRange must have an even number of entries.'
    ]


def test_verify_wrong_key():
    # the embedded certificate does not match the signer identifier
    result = _verify_single(signed_pdf(EXPIRED_SIGNER, certs=[SIGNER_CERT]))
    assert result.signer_name == 'Alice Signer'
    assert any('presumed' in w for w in result.warnings)


def test_verify_signer_name_from_signature_dictionary():
    result = _verify_single(
        signed_pdf(NO_CN_SIGNER, sig_body=sig_dict(name=b'Nora Noname'))
    )
    assert result.status == OverallStatus.VALID
    assert result.certificates[0].common_name is None
    assert result.signer_name == 'Nora Noname'

    result = _verify_single(
        signed_pdf(NO_CN_SIGNER, sig_body=sig_dict(name=None))
    )
    assert result.signer_name == 'Unknown'


def test_verify_non_detached_subfilter():
    result = _verify_single(
        signed_pdf(sig_body=sig_dict(sub_filter=b'adbe.pkcs7.sha1'))
    )
    assert result.status == OverallStatus.VALID
    assert any(
        w.startswith('Signature subfilter /adbe.pkcs7.sha1')
        for w in result.warnings
    )
    result = _verify_single(SIGNED_PDF)
    assert not any('subfilter' in w for w in result.warnings)


def test_verify_field_directly():
    (descriptor,) = locate_signature_fields(SIGNED_PDF)
    result = verify_signature_field(descriptor, SIGNED_PDF, moment=MOMENT)
    assert result.status == OverallStatus.VALID


def test_verify_positional_strategy():
    settings = VerificationSettings(
        locator_strategy=LocatorStrategy.POSITIONAL
    )
    result = _verify_single(SIGNED_PDF, settings=settings)
    assert result.status == OverallStatus.VALID
    assert result.field_name == 'Signature1'


def test_batch(tmp_path):
    signed_path = tmp_path / 'signed.pdf'
    signed_path.write_bytes(SIGNED_PDF)
    missing_path = tmp_path / 'missing.pdf'
    docs = verify_pdf_batch(
        [str(signed_path), UNSIGNED_PDF, tamper(SIGNED_PDF),
         str(missing_path)],
        max_workers=2, moment=MOMENT
    )
    assert [doc.status for doc in docs] == [
        OverallStatus.VALID, OverallStatus.NONE, OverallStatus.TAMPERED,
        OverallStatus.INVALID,
    ]
    assert docs[3].read_error
    assert docs[3].message.startswith('Failed to read document')


def test_batch_bytes_like_inputs():
    docs = verify_pdf_batch(
        [SIGNED_PDF, bytearray(SIGNED_PDF), memoryview(tamper(SIGNED_PDF)),
         12345, UNSIGNED_PDF],
        moment=datetime(2022, 1, 1),
    )
    assert [doc.status for doc in docs] == [
        OverallStatus.VALID, OverallStatus.VALID, OverallStatus.TAMPERED,
        OverallStatus.INVALID, OverallStatus.NONE,
    ]
    assert docs[3].read_error
    assert not docs[1].read_error


def test_batch_unexpected_error_is_isolated(monkeypatch):
    original = pdf_embedded.verify_pdf_signatures

    def _verify(data, **kwargs):
        if data == UNSIGNED_PDF:
            raise RuntimeError('boom')
        return original(data, **kwargs)

    monkeypatch.setattr(pdf_embedded, 'verify_pdf_signatures', _verify)
    docs = verify_pdf_batch([UNSIGNED_PDF, SIGNED_PDF], moment=MOMENT)
    assert docs[0].status == OverallStatus.INVALID
    assert docs[0].message == 'Failed to verify document: boom'
    assert docs[1].status == OverallStatus.VALID


def test_document_as_dict():
    doc = verify_pdf_signatures(SIGNED_PDF, moment=MOMENT)
    result = doc.as_dict()
    assert result['numPages'] == 1
    assert result['hasSignatures'] is True
    assert result['message'] is None
    (sig,) = result['signatures']
    assert sig['fieldName'] == 'Signature1'
    assert sig['integrityValid'] is True


def test_bad_field_does_not_affect_sibling():
    data = fill_signature(
        minimal_pdf([
            (b'Broken', sig_dict(byte_range=b'[0 10 999999 10]')),
            (b'Signature1', sig_dict()),
        ]),
        SIGNER
    )
    doc = verify_pdf_signatures(data, moment=MOMENT)
    broken, good = doc.signatures
    assert broken.field_name == 'Broken'
    assert broken.status == OverallStatus.INVALID
    assert good.field_name == 'Signature1'
    assert good.status == OverallStatus.VALID
    assert doc.status == OverallStatus.INVALID


def test_verification_is_deterministic():
    first = _verify_single(SIGNED_PDF)
    second = _verify_single(SIGNED_PDF)
    assert first.as_dict() == second.as_dict()
