import pytest
from asn1crypto import cms

from pdfsigcheck.sign import general
from pdfsigcheck.sign.general import ByteRangeError
from pdfsigcheck_tests.samples import CA_CERT, SIGNER, SIGNER_CERT

DATA = bytes(range(100))


def test_extract_byte_range():
    result = general.extract_byte_range(DATA, [(0, 10), (20, 5)])
    assert result == DATA[:10] + DATA[20:25]


def test_extract_byte_range_full_file():
    assert general.extract_byte_range(DATA, [(0, 100)]) == DATA


def test_extract_byte_range_empty_span():
    assert general.extract_byte_range(DATA, [(0, 0), (50, 0)]) == b''


@pytest.mark.parametrize('spans,err', [
    ([(0, 10), (95, 10)], 'exceeds the document length'),
    ([(-1, 10)], 'negative'),
    ([(0, -10)], 'negative'),
    ([(0, 50), (40, 10)], 'overlaps'),
    ([(50, 10), (0, 10)], 'overlaps'),
    ([(0, 1.5)], 'integers'),
])
def test_extract_byte_range_errors(spans, err):
    with pytest.raises(ByteRangeError, match=err):
        general.extract_byte_range(DATA, spans)


def test_coverage_gap():
    assert general.byte_range_coverage_gap(DATA, [(0, 10), (20, 80)]) == 0
    assert general.byte_range_coverage_gap(DATA, [(0, 10), (20, 30)]) == 50
    assert general.byte_range_coverage_gap(DATA, []) == 100


def _signer_info():
    content_info = cms.ContentInfo.load(SIGNER.sign(b'hello'))
    return content_info['content'], content_info['content']['signer_infos'][0]


def test_find_cms_attribute():
    _, signer_info = _signer_info()
    attrs = signer_info['signed_attrs']
    value = general.find_unique_cms_attribute(attrs, 'content_type')
    assert value.native == 'data'
    with pytest.raises(general.NonexistentAttributeError):
        general.find_cms_attribute(attrs, 'counter_signature')


def test_find_cms_attribute_duplicate():
    attrs = cms.CMSAttributes([
        cms.CMSAttribute({'type': 'content_type', 'values': ['data']}),
        cms.CMSAttribute({'type': 'content_type', 'values': ['data']}),
    ])
    with pytest.raises(general.CMSStructuralError):
        general.find_cms_attribute(attrs, 'content_type')


def test_find_unique_cms_attribute_multivalued():
    attrs = cms.CMSAttributes([
        cms.CMSAttribute(
            {'type': 'content_type', 'values': ['data', 'signed_data']}
        ),
    ])
    with pytest.raises(general.MultivaluedAttributeError):
        general.find_unique_cms_attribute(attrs, 'content_type')


def test_extract_signer_info():
    signed_data, signer_info = _signer_info()
    assert general.extract_signer_info(signed_data).dump() \
        == signer_info.dump()


def test_extract_signer_info_none():
    signed_data = cms.SignedData({
        'version': 'v1',
        'digest_algorithms': [],
        'encap_content_info': {'content_type': 'data'},
        'signer_infos': [],
    })
    with pytest.raises(general.CMSExtractionError):
        general.extract_signer_info(signed_data)


def test_partition_certs():
    _, signer_info = _signer_info()
    cert, others = general.partition_certs([CA_CERT, SIGNER_CERT], signer_info)
    assert cert.dump() == SIGNER_CERT.dump()
    assert [c.dump() for c in others] == [CA_CERT.dump()]


def test_partition_certs_no_match():
    _, signer_info = _signer_info()
    cert, others = general.partition_certs([CA_CERT], signer_info)
    assert cert is None
    assert len(others) == 1


def test_match_issuer_serial():
    sid = cms.IssuerAndSerialNumber({
        'issuer': SIGNER_CERT.issuer,
        'serial_number': SIGNER_CERT.serial_number,
    })
    assert general.match_issuer_serial(sid, SIGNER_CERT)
    assert not general.match_issuer_serial(sid, CA_CERT)
