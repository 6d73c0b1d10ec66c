"""
Typed model of the CMS structures involved in a detached ``SignedData``
object (see :rfc:`5652`, §§ 5.1-5.4).

Every class in this module is an immutable value object that knows how
to render itself in DER (``dump()``) and how to parse itself from a
decoded TLV (``from_tlv()``), delegating the byte-level work to
:mod:`pyhsm7.der`.

Only the subset of CMS that pyhsm7 produces is supported: SHA-256 digests,
RSA PKCS#1 v1.5 signatures, ``issuerAndSerialNumber`` signer identifiers and
detached ``id-data`` content. Well-formed structures outside of that subset
are rejected with :class:`.UnsupportedStructureError`.
"""

import enum
from dataclasses import dataclass
from typing import Optional, Tuple

from . import der
from .general import (
    CertificateLoadError,
    CMSStructuralError,
    MalformedEncodingError,
    UnsupportedStructureError,
)
from .keys import SignerCertificate

__all__ = [
    'ID_DATA',
    'ID_SIGNED_DATA',
    'ID_CONTENT_TYPE',
    'ID_MESSAGE_DIGEST',
    'DigestAlgorithm',
    'SignatureAlgorithm',
    'Attribute',
    'SignedAttributes',
    'IssuerAndSerialNumber',
    'SignerIdentifier',
    'SignerInfo',
    'SignedData',
    'ContentInfo',
]

ID_DATA = '1.2.840.113549.1.7.1'
ID_SIGNED_DATA = '1.2.840.113549.1.7.2'
ID_CONTENT_TYPE = '1.2.840.113549.1.9.3'
ID_MESSAGE_DIGEST = '1.2.840.113549.1.9.4'


def _load_algorithm_oid(tlv: der.TLV) -> str:
    if tlv.tag != der.SEQUENCE:
        raise MalformedEncodingError("AlgorithmIdentifier must be a SEQUENCE")
    oid, rest = der.decode_oid(tlv.contents)
    if rest:
        if der.peek_tag(rest) != der.NULL:
            raise UnsupportedStructureError(
                f"Parameters for algorithm {oid} are not supported"
            )
        _, rest = der.decode_null(rest)
        if rest:
            raise MalformedEncodingError(
                "Trailing data in AlgorithmIdentifier"
            )
    return oid


def _dump_algorithm(oid: str) -> bytes:
    # parameters are encoded as an explicit NULL, as is customary for
    # SHA-2 and PKCS#1 v1.5 algorithm identifiers
    return der.encode_sequence([der.encode_oid(oid), der.encode_null()])


class DigestAlgorithm(enum.Enum):
    """Supported message digest algorithms."""

    SHA256 = '2.16.840.1.101.3.4.2.1'

    def dump(self) -> bytes:
        return _dump_algorithm(self.value)

    @classmethod
    def from_tlv(cls, tlv: der.TLV) -> 'DigestAlgorithm':
        oid = _load_algorithm_oid(tlv)
        try:
            return cls(oid)
        except ValueError:
            raise UnsupportedStructureError(
                f"Digest algorithm {oid} is not supported"
            )


class SignatureAlgorithm(enum.Enum):
    """Supported signature algorithms."""

    SHA256_WITH_RSA = '1.2.840.113549.1.1.11'

    # Plain rsaEncryption is what many CMS producers put into SignerInfo;
    # combined with the SHA-256 digest algorithm it means the same thing.
    RSA_ENCRYPTION = '1.2.840.113549.1.1.1'

    def dump(self) -> bytes:
        return _dump_algorithm(self.value)

    @classmethod
    def from_tlv(cls, tlv: der.TLV) -> 'SignatureAlgorithm':
        oid = _load_algorithm_oid(tlv)
        try:
            return cls(oid)
        except ValueError:
            raise UnsupportedStructureError(
                f"Signature algorithm {oid} is not supported"
            )


@dataclass(frozen=True)
class Attribute:
    """
    A CMS attribute: a type OID together with a set of DER-encoded values.
    """

    attr_type: str
    values: Tuple[bytes, ...]

    def dump(self) -> bytes:
        return der.encode_sequence(
            [der.encode_oid(self.attr_type), der.encode_set(self.values)]
        )

    @classmethod
    def from_tlv(cls, tlv: der.TLV) -> 'Attribute':
        if tlv.tag != der.SEQUENCE:
            raise MalformedEncodingError("Attribute must be a SEQUENCE")
        attr_type, rest = der.decode_oid(tlv.contents)
        values, rest = der.decode_set(rest)
        if rest:
            raise MalformedEncodingError("Trailing data in Attribute")
        if not values:
            raise CMSStructuralError(f"Attribute {attr_type} has no values")
        return cls(attr_type, tuple(v.encoded for v in values))


@dataclass(frozen=True)
class SignedAttributes:
    """
    The ``SignedAttributes`` set of a ``SignerInfo``.

    When present, the signature is computed over :meth:`dump`, i.e. the
    DER encoding of the set with the universal ``SET OF`` tag, rather than
    over the content itself. The same set appears in the ``SignerInfo``
    under an implicit ``[0]`` tag (see :meth:`dump_implicit`).

    The content-type and message-digest attributes are mandatory, and
    must occur exactly once with a single value each.
    """

    attributes: Tuple[Attribute, ...]

    def __post_init__(self):
        for attr_type in (ID_CONTENT_TYPE, ID_MESSAGE_DIGEST):
            self.single_value(attr_type)

    @classmethod
    def for_content_digest(cls, message_digest: bytes) -> 'SignedAttributes':
        return cls(
            (
                Attribute(ID_CONTENT_TYPE, (der.encode_oid(ID_DATA),)),
                Attribute(
                    ID_MESSAGE_DIGEST,
                    (der.encode_octet_string(message_digest),),
                ),
            )
        )

    def find(self, attr_type: str) -> Attribute:
        found = [a for a in self.attributes if a.attr_type == attr_type]
        if not found:
            raise CMSStructuralError(f"Unable to locate attribute {attr_type}")
        elif len(found) > 1:
            raise CMSStructuralError(f"Attribute {attr_type} was duplicated")
        return found[0]

    def single_value(self, attr_type: str) -> bytes:
        values = self.find(attr_type).values
        if len(values) != 1:
            raise CMSStructuralError(
                f"Expected single-valued {attr_type} attribute, but found "
                f"{len(values)} values"
            )
        return values[0]

    @property
    def content_type(self) -> str:
        oid, rest = der.decode_oid(self.single_value(ID_CONTENT_TYPE))
        if rest:
            raise MalformedEncodingError("Trailing data in content type")
        return oid

    @property
    def message_digest(self) -> bytes:
        digest, rest = der.decode_octet_string(
            self.single_value(ID_MESSAGE_DIGEST)
        )
        if rest:
            raise MalformedEncodingError("Trailing data in message digest")
        return digest

    def dump(self) -> bytes:
        return der.encode_set(a.dump() for a in self.attributes)

    def dump_implicit(self) -> bytes:
        return der.encode_set(
            (a.dump() for a in self.attributes), tag=der.context_tag(0)
        )

    @classmethod
    def load(cls, data: bytes) -> Tuple['SignedAttributes', bytes]:
        """
        Decode an implicitly tagged ``[0] SignedAttributes`` value from the
        front of ``data``.
        """
        elements, rest = der.decode_set(data, tag=der.context_tag(0))
        return cls(tuple(Attribute.from_tlv(e) for e in elements)), rest


@dataclass(frozen=True)
class IssuerAndSerialNumber:
    """
    Identifies a certificate by its issuer's distinguished name and its
    serial number.
    """

    issuer: bytes
    """
    DER encoding of the issuer's ``Name``.
    """

    serial_number: int

    @classmethod
    def for_certificate(
        cls, cert: SignerCertificate
    ) -> 'IssuerAndSerialNumber':
        return cls(issuer=cert.issuer, serial_number=cert.serial_number)

    def matches(self, cert: SignerCertificate) -> bool:
        return (
            self.issuer == cert.issuer
            and self.serial_number == cert.serial_number
        )

    def dump(self) -> bytes:
        return der.encode_sequence(
            [self.issuer, der.encode_integer(self.serial_number)]
        )

    @classmethod
    def from_tlv(cls, tlv: der.TLV) -> 'IssuerAndSerialNumber':
        issuer, rest = der.expect_tlv(tlv.contents, der.SEQUENCE)
        serial_number, rest = der.decode_integer(rest)
        if rest:
            raise MalformedEncodingError(
                "Trailing data in IssuerAndSerialNumber"
            )
        return cls(issuer=issuer.encoded, serial_number=serial_number)


# The SignerIdentifier CHOICE is restricted to its issuerAndSerialNumber
# alternative; subjectKeyIdentifier signers are rejected while decoding.
SignerIdentifier = IssuerAndSerialNumber


def _load_signer_identifier(data: bytes) -> Tuple[SignerIdentifier, bytes]:
    tag = der.peek_tag(data)
    if tag == der.context_tag(0, constructed=False):
        raise UnsupportedStructureError(
            "Signer identification by subject key identifier is not supported"
        )
    tlv, rest = der.expect_tlv(data, der.SEQUENCE)
    return IssuerAndSerialNumber.from_tlv(tlv), rest


@dataclass(frozen=True)
class SignerInfo:
    """
    A ``SignerInfo`` value. The version is tied to the presence of signed
    attributes: ``1`` without, ``3`` with.
    """

    version: int
    sid: SignerIdentifier
    signature: bytes
    signed_attrs: Optional[SignedAttributes] = None
    digest_algorithm: DigestAlgorithm = DigestAlgorithm.SHA256
    signature_algorithm: SignatureAlgorithm = (
        SignatureAlgorithm.SHA256_WITH_RSA
    )

    def __post_init__(self):
        expected_version = 1 if self.signed_attrs is None else 3
        if self.version != expected_version:
            raise UnsupportedStructureError(
                f"SignerInfo version must be {expected_version} "
                f"{'with' if self.signed_attrs else 'without'} signed "
                f"attributes, not {self.version}"
            )

    @classmethod
    def create(
        cls,
        sid: SignerIdentifier,
        signature: bytes,
        signed_attrs: Optional[SignedAttributes] = None,
    ) -> 'SignerInfo':
        return cls(
            version=1 if signed_attrs is None else 3,
            sid=sid,
            signature=signature,
            signed_attrs=signed_attrs,
        )

    def dump(self) -> bytes:
        parts = [
            der.encode_integer(self.version),
            self.sid.dump(),
            self.digest_algorithm.dump(),
        ]
        if self.signed_attrs is not None:
            parts.append(self.signed_attrs.dump_implicit())
        parts.append(self.signature_algorithm.dump())
        parts.append(der.encode_octet_string(self.signature))
        return der.encode_sequence(parts)

    @classmethod
    def from_tlv(cls, tlv: der.TLV) -> 'SignerInfo':
        if tlv.tag != der.SEQUENCE:
            raise MalformedEncodingError("SignerInfo must be a SEQUENCE")
        version, rest = der.decode_integer(tlv.contents)
        sid, rest = _load_signer_identifier(rest)
        digest_alg_tlv, rest = der.read_tlv(rest)
        digest_algorithm = DigestAlgorithm.from_tlv(digest_alg_tlv)

        signed_attrs = None
        if der.peek_tag(rest) == der.context_tag(0):
            signed_attrs, rest = SignedAttributes.load(rest)

        sig_alg_tlv, rest = der.read_tlv(rest)
        signature_algorithm = SignatureAlgorithm.from_tlv(sig_alg_tlv)
        signature, rest = der.decode_octet_string(rest)
        if der.peek_tag(rest) == der.context_tag(1):
            # unsigned attributes carry nothing we act upon
            _, rest = der.decode_set(rest, tag=der.context_tag(1))
        if rest:
            raise MalformedEncodingError("Trailing data in SignerInfo")

        return cls(
            version=version,
            sid=sid,
            signature=signature,
            signed_attrs=signed_attrs,
            digest_algorithm=digest_algorithm,
            signature_algorithm=signature_algorithm,
        )


@dataclass(frozen=True)
class SignedData:
    """
    A detached ``SignedData`` value: the encapsulated content info always
    has content type ``id-data`` and no content.

    Every signer must be identified by one of the embedded certificates.
    """

    certificates: Tuple[SignerCertificate, ...]
    signer_infos: Tuple[SignerInfo, ...]
    digest_algorithms: Tuple[DigestAlgorithm, ...] = (DigestAlgorithm.SHA256,)
    version: int = 3

    def __post_init__(self):
        for signer_info in self.signer_infos:
            self.signer_certificate(signer_info)

    def signer_certificate(self, signer_info: SignerInfo) -> SignerCertificate:
        for cert in self.certificates:
            if signer_info.sid.matches(cert):
                return cert
        raise CMSStructuralError(
            f"The certificate with serial number "
            f"{signer_info.sid.serial_number} is not embedded in the "
            f"SignedData structure"
        )

    def dump(self) -> bytes:
        return der.encode_sequence(
            [
                der.encode_integer(self.version),
                der.encode_set(d.dump() for d in self.digest_algorithms),
                # detached: eContent is absent
                der.encode_sequence([der.encode_oid(ID_DATA)]),
                der.encode_set(
                    (c.dump() for c in self.certificates),
                    tag=der.context_tag(0),
                ),
                der.encode_set(si.dump() for si in self.signer_infos),
            ]
        )

    @classmethod
    def from_tlv(cls, tlv: der.TLV) -> 'SignedData':
        if tlv.tag != der.SEQUENCE:
            raise MalformedEncodingError("SignedData must be a SEQUENCE")
        version, rest = der.decode_integer(tlv.contents)
        if version not in (1, 3):
            raise UnsupportedStructureError(
                f"SignedData version {version} is not supported"
            )

        digest_alg_tlvs, rest = der.decode_set(rest)
        digest_algorithms = tuple(
            DigestAlgorithm.from_tlv(t) for t in digest_alg_tlvs
        )

        eci_elements, rest = der.decode_sequence(rest)
        if not eci_elements:
            raise MalformedEncodingError("Empty EncapsulatedContentInfo")
        content_type, _ = der.decode_oid(eci_elements[0].encoded)
        if content_type != ID_DATA:
            raise UnsupportedStructureError(
                f"Encapsulated content type {content_type} is not supported"
            )
        if len(eci_elements) > 1:
            raise UnsupportedStructureError(
                "Only detached signatures are supported, but the "
                "SignedData structure embeds its content"
            )

        cert_tlvs = []
        if der.peek_tag(rest) == der.context_tag(0):
            cert_tlvs, rest = der.decode_set(rest, tag=der.context_tag(0))
        if der.peek_tag(rest) == der.context_tag(1):
            # revocation info is of no concern to us
            _, rest = der.decode_set(rest, tag=der.context_tag(1))
        certificates = []
        for cert_tlv in cert_tlvs:
            if cert_tlv.tag != der.SEQUENCE:
                raise UnsupportedStructureError(
                    "Only X.509 certificates are supported in the "
                    "certificates field"
                )
            try:
                cert = SignerCertificate.from_der(cert_tlv.encoded)
            except CertificateLoadError as e:
                raise CMSStructuralError(e.failure_message) from e
            certificates.append(cert)

        signer_info_tlvs, rest = der.decode_set(rest)
        if rest:
            raise MalformedEncodingError("Trailing data in SignedData")
        return cls(
            certificates=tuple(certificates),
            signer_infos=tuple(
                SignerInfo.from_tlv(t) for t in signer_info_tlvs
            ),
            digest_algorithms=digest_algorithms,
            version=version,
        )


@dataclass(frozen=True)
class ContentInfo:
    """
    The outer ``ContentInfo`` envelope, with content type ``id-signedData``.
    """

    content: SignedData

    content_type = ID_SIGNED_DATA

    def dump(self) -> bytes:
        return der.encode_sequence(
            [
                der.encode_oid(ID_SIGNED_DATA),
                der.encode_explicit(0, self.content.dump()),
            ]
        )

    @classmethod
    def load(cls, data: bytes) -> 'ContentInfo':
        """
        Decode a DER-encoded ``ContentInfo`` holding a ``SignedData`` value.

        :param data:
            The encoded structure. Trailing data is not allowed.
        :return:
            A :class:`ContentInfo` object.
        :raises MalformedEncodingError:
            if the input is not valid DER.
        :raises CMSStructuralError:
            if the input is not a consistent CMS structure.
        :raises UnsupportedStructureError:
            if the input uses CMS features that are not supported.
        """
        tlv = der.load_single(data, tag=der.SEQUENCE)
        content_type, rest = der.decode_oid(tlv.contents)
        if content_type != ID_SIGNED_DATA:
            raise UnsupportedStructureError(
                f"Content type {content_type} is not supported"
            )
        inner, rest = der.decode_explicit(rest, 0)
        if rest:
            raise MalformedEncodingError("Trailing data in ContentInfo")
        return cls(SignedData.from_tlv(inner))
