import hashlib

import pytest
from asn1crypto import cms as asn1_cms

from pyhsm7 import cms, der
from pyhsm7.general import (
    CMSStructuralError,
    MalformedEncodingError,
    UnsupportedStructureError,
)
from pyhsm7_tests.samples import (
    HIGH_BIT_SERIAL,
    OTHER,
    ROOT,
    SIGNER,
    TEST_MESSAGE,
)

DUMMY_SIGNATURE = b'\x01' * 256
SHA1_OID = '1.3.14.3.2.26'


def _digest(data=TEST_MESSAGE):
    return hashlib.sha256(data).digest()


def _signer_info(signed_attrs=None, cert=SIGNER):
    return cms.SignerInfo.create(
        sid=cms.IssuerAndSerialNumber.for_certificate(cert),
        signature=DUMMY_SIGNATURE,
        signed_attrs=signed_attrs,
    )


def _signed_data_bytes(
    certs, signer_info_ders, econtent=None, version=3, extra_fields=()
):
    eci = [der.encode_oid(cms.ID_DATA)]
    if econtent is not None:
        eci.append(der.encode_explicit(0, der.encode_octet_string(econtent)))
    return der.encode_sequence(
        [
            der.encode_integer(version),
            der.encode_set([cms.DigestAlgorithm.SHA256.dump()]),
            der.encode_sequence(eci),
            der.encode_set((c.dump() for c in certs), tag=der.context_tag(0)),
            *extra_fields,
            der.encode_set(signer_info_ders),
        ]
    )


def _content_info_bytes(signed_data_bytes, content_type=cms.ID_SIGNED_DATA):
    return der.encode_sequence(
        [
            der.encode_oid(content_type),
            der.encode_explicit(0, signed_data_bytes),
        ]
    )


def test_signed_attributes_encoding():
    attrs = cms.SignedAttributes.for_content_digest(_digest())
    encoded = attrs.dump()
    implicit = attrs.dump_implicit()
    assert encoded[0] == der.SET
    assert implicit[0] == 0xA0
    assert encoded[1:] == implicit[1:]
    assert attrs.content_type == cms.ID_DATA
    assert attrs.message_digest == _digest()


def test_signed_attributes_order_independent():
    attrs = cms.SignedAttributes.for_content_digest(_digest())
    swapped = cms.SignedAttributes(tuple(reversed(attrs.attributes)))
    assert swapped.dump() == attrs.dump()
    assert swapped.dump_implicit() == attrs.dump_implicit()


def test_signed_attributes_interop():
    attrs = cms.SignedAttributes.for_content_digest(_digest())
    parsed = asn1_cms.CMSAttributes.load(attrs.dump())
    values = {a['type'].native: a['values'][0].native for a in parsed}
    assert values == {
        'content_type': 'data',
        'message_digest': _digest(),
    }


def test_signed_attributes_round_trip():
    attrs = cms.SignedAttributes.for_content_digest(_digest())
    loaded, rest = cms.SignedAttributes.load(attrs.dump_implicit())
    assert not rest
    assert loaded == attrs


def test_signed_attributes_missing_digest():
    with pytest.raises(CMSStructuralError, match='Unable to locate'):
        cms.SignedAttributes(
            (
                cms.Attribute(
                    cms.ID_CONTENT_TYPE, (der.encode_oid(cms.ID_DATA),)
                ),
            )
        )


def test_signed_attributes_duplicate():
    attrs = cms.SignedAttributes.for_content_digest(_digest())
    with pytest.raises(CMSStructuralError, match='duplicated'):
        cms.SignedAttributes(attrs.attributes + attrs.attributes[:1])


def test_signed_attributes_multivalued():
    values = (
        der.encode_octet_string(_digest()),
        der.encode_octet_string(_digest(b'other')),
    )
    with pytest.raises(CMSStructuralError, match='single-valued'):
        cms.SignedAttributes(
            (
                cms.Attribute(
                    cms.ID_CONTENT_TYPE, (der.encode_oid(cms.ID_DATA),)
                ),
                cms.Attribute(cms.ID_MESSAGE_DIGEST, values),
            )
        )


def test_attribute_without_values():
    encoded = der.encode_sequence(
        [der.encode_oid(cms.ID_MESSAGE_DIGEST), der.encode_set([])]
    )
    with pytest.raises(CMSStructuralError):
        cms.Attribute.from_tlv(der.load_single(encoded))


def test_issuer_and_serial_high_bit():
    sid = cms.IssuerAndSerialNumber.for_certificate(SIGNER)
    encoded = sid.dump()
    serial_encoding = der.encode_integer(HIGH_BIT_SERIAL)
    assert serial_encoding[:4] == b'\x02\x0b\x00\x8f'
    assert encoded.endswith(serial_encoding)
    assert sid.matches(SIGNER)
    assert not sid.matches(OTHER)
    loaded = cms.IssuerAndSerialNumber.from_tlv(der.load_single(encoded))
    assert loaded == sid


@pytest.mark.parametrize('with_attrs', [True, False])
def test_signer_info_version(with_attrs):
    attrs = (
        cms.SignedAttributes.for_content_digest(_digest())
        if with_attrs
        else None
    )
    si = _signer_info(attrs)
    assert si.version == (3 if with_attrs else 1)
    loaded = cms.SignerInfo.from_tlv(der.load_single(si.dump()))
    assert loaded == si


def test_signer_info_version_mismatch():
    sid = cms.IssuerAndSerialNumber.for_certificate(SIGNER)
    with pytest.raises(UnsupportedStructureError, match='version'):
        cms.SignerInfo(version=3, sid=sid, signature=DUMMY_SIGNATURE)
    with pytest.raises(UnsupportedStructureError, match='version'):
        cms.SignerInfo(
            version=1,
            sid=sid,
            signature=DUMMY_SIGNATURE,
            signed_attrs=cms.SignedAttributes.for_content_digest(_digest()),
        )


def test_signer_info_version_mismatch_decode():
    si = _signer_info()
    inner = der.load_single(si.dump()).contents
    _, rest = der.decode_integer(inner)
    tampered = der.encode_tlv(der.SEQUENCE, der.encode_integer(3) + rest)
    with pytest.raises(UnsupportedStructureError):
        cms.SignerInfo.from_tlv(der.load_single(tampered))


def test_signer_info_subject_key_identifier():
    encoded = der.encode_sequence(
        [
            der.encode_integer(3),
            der.encode_tlv(der.context_tag(0, constructed=False), b'abcd'),
            cms.DigestAlgorithm.SHA256.dump(),
            cms.SignatureAlgorithm.SHA256_WITH_RSA.dump(),
            der.encode_octet_string(DUMMY_SIGNATURE),
        ]
    )
    with pytest.raises(UnsupportedStructureError, match='subject key'):
        cms.SignerInfo.from_tlv(der.load_single(encoded))


def test_signer_info_unsigned_attrs_ignored():
    si = _signer_info(cms.SignedAttributes.for_content_digest(_digest()))
    unsigned = der.encode_set(
        [cms.Attribute('1.2.3.4', (der.encode_null(),)).dump()],
        tag=der.context_tag(1),
    )
    inner = der.load_single(si.dump()).contents
    encoded = der.encode_tlv(der.SEQUENCE, inner + unsigned)
    assert cms.SignerInfo.from_tlv(der.load_single(encoded)) == si


def test_rsa_encryption_signature_algorithm():
    tlv = der.load_single(cms.SignatureAlgorithm.RSA_ENCRYPTION.dump())
    alg = cms.SignatureAlgorithm.from_tlv(tlv)
    assert alg is cms.SignatureAlgorithm.RSA_ENCRYPTION


def test_algorithm_without_parameters():
    encoded = der.encode_sequence(
        [der.encode_oid(cms.DigestAlgorithm.SHA256.value)]
    )
    alg = cms.DigestAlgorithm.from_tlv(der.load_single(encoded))
    assert alg is cms.DigestAlgorithm.SHA256


def test_unsupported_digest_algorithm():
    encoded = der.encode_sequence(
        [der.encode_oid(SHA1_OID), der.encode_null()]
    )
    with pytest.raises(UnsupportedStructureError, match=SHA1_OID):
        cms.DigestAlgorithm.from_tlv(der.load_single(encoded))


def test_unsupported_algorithm_parameters():
    encoded = der.encode_sequence(
        [
            der.encode_oid(cms.SignatureAlgorithm.SHA256_WITH_RSA.value),
            der.encode_integer(1),
        ]
    )
    with pytest.raises(UnsupportedStructureError, match='Parameters'):
        cms.SignatureAlgorithm.from_tlv(der.load_single(encoded))


@pytest.mark.parametrize('with_attrs', [True, False])
def test_content_info_round_trip(with_attrs):
    attrs = (
        cms.SignedAttributes.for_content_digest(_digest())
        if with_attrs
        else None
    )
    signed_data = cms.SignedData(
        certificates=(SIGNER, ROOT), signer_infos=(_signer_info(attrs),)
    )
    encoded = cms.ContentInfo(signed_data).dump()
    loaded = cms.ContentInfo.load(encoded).content
    # certificates are a SET OF, so they come back in DER order
    assert set(loaded.certificates) == {SIGNER, ROOT}
    assert loaded.signer_infos == signed_data.signer_infos
    assert loaded.digest_algorithms == (cms.DigestAlgorithm.SHA256,)
    assert loaded.version == 3
    assert cms.ContentInfo(loaded).dump() == encoded


def test_content_info_asn1crypto_interop():
    attrs = cms.SignedAttributes.for_content_digest(_digest())
    signed_data = cms.SignedData(
        certificates=(SIGNER,), signer_infos=(_signer_info(attrs),)
    )
    parsed = asn1_cms.ContentInfo.load(cms.ContentInfo(signed_data).dump())
    assert parsed['content_type'].native == 'signed_data'
    sd = parsed['content']
    assert sd['version'].native == 'v3'
    assert sd['encap_content_info']['content_type'].native == 'data'
    assert sd['encap_content_info']['content'].native is None
    assert sd['certificates'][0].chosen.dump() == SIGNER.dump()
    si = sd['signer_infos'][0]
    assert si['version'].native == 'v3'
    assert si['sid'].name == 'issuer_and_serial_number'
    assert si['sid'].chosen['serial_number'].native == HIGH_BIT_SERIAL
    assert si['digest_algorithm']['algorithm'].native == 'sha256'
    assert si['signature_algorithm']['algorithm'].native == 'sha256_rsa'
    assert si['signed_attrs'].dump() == attrs.dump_implicit()
    assert si['signature'].native == DUMMY_SIGNATURE


def test_signed_data_missing_signer_cert():
    with pytest.raises(CMSStructuralError, match='not embedded'):
        cms.SignedData(certificates=(OTHER,), signer_infos=(_signer_info(),))


def test_signed_data_missing_signer_cert_decode():
    encoded = _content_info_bytes(
        _signed_data_bytes([OTHER], [_signer_info().dump()])
    )
    with pytest.raises(CMSStructuralError):
        cms.ContentInfo.load(encoded)


def test_signed_data_embedded_content():
    encoded = _content_info_bytes(
        _signed_data_bytes(
            [SIGNER], [_signer_info().dump()], econtent=TEST_MESSAGE
        )
    )
    with pytest.raises(UnsupportedStructureError, match='detached'):
        cms.ContentInfo.load(encoded)


def test_signed_data_version_1():
    si = _signer_info()
    encoded = _content_info_bytes(
        _signed_data_bytes([SIGNER], [si.dump()], version=1)
    )
    signed_data = cms.ContentInfo.load(encoded).content
    assert signed_data.version == 1
    assert signed_data.signer_infos == (si,)


def test_signed_data_unsupported_version():
    encoded = _content_info_bytes(
        _signed_data_bytes([SIGNER], [_signer_info().dump()], version=5)
    )
    with pytest.raises(UnsupportedStructureError):
        cms.ContentInfo.load(encoded)


def test_signed_data_crls_ignored():
    si = _signer_info()
    encoded = _content_info_bytes(
        _signed_data_bytes(
            [SIGNER],
            [si.dump()],
            extra_fields=[der.encode_set([], tag=der.context_tag(1))],
        )
    )
    signed_data = cms.ContentInfo.load(encoded).content
    assert signed_data.certificates == (SIGNER,)


def test_signed_data_bad_certificate():
    bogus_cert = der.encode_sequence([der.encode_integer(1)])
    encoded = _content_info_bytes(
        der.encode_sequence(
            [
                der.encode_integer(3),
                der.encode_set([cms.DigestAlgorithm.SHA256.dump()]),
                der.encode_sequence([der.encode_oid(cms.ID_DATA)]),
                der.encode_set([bogus_cert], tag=der.context_tag(0)),
                der.encode_set([_signer_info().dump()]),
            ]
        )
    )
    with pytest.raises(CMSStructuralError):
        cms.ContentInfo.load(encoded)


def test_content_info_wrong_type():
    encoded = _content_info_bytes(
        _signed_data_bytes([SIGNER], [_signer_info().dump()]),
        content_type=cms.ID_DATA,
    )
    with pytest.raises(UnsupportedStructureError):
        cms.ContentInfo.load(encoded)


def test_content_info_trailing_data():
    signed_data = cms.SignedData(
        certificates=(SIGNER,), signer_infos=(_signer_info(),)
    )
    encoded = cms.ContentInfo(signed_data).dump()
    with pytest.raises(MalformedEncodingError):
        cms.ContentInfo.load(encoded + b'\x00\x00')
