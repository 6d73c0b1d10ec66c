"""
Utilities to load signer certificates.

Certificates are accepted in three encodings, which are tried in the
following order:

1. PEM (``-----BEGIN CERTIFICATE-----`` armour);
2. bare Base64 without armour, as produced by some key management consoles;
3. raw binary DER.
"""

import base64
import binascii
import logging
import os
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Union

from asn1crypto import keys, pem, x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from .general import CertificateLoadError

__all__ = [
    'SignerCertificate',
    'load_certificate',
    'load_certificates',
    'load_certificate_data',
    'load_certificates_data',
]

logger = logging.getLogger(__name__)

CertSource = Union[bytes, bytearray, str, os.PathLike]


@dataclass(frozen=True)
class SignerCertificate:
    """
    Immutable view on an X.509 certificate, exposing the bits that go into
    a CMS ``SignedData`` structure. The DER encoding is retained verbatim.
    """

    der_bytes: bytes
    """
    The DER encoding of the certificate.
    """

    issuer: bytes = field(compare=False)
    """
    The DER encoding of the issuer's distinguished name.
    """

    serial_number: int = field(compare=False)
    """
    The certificate's serial number.
    """

    public_key: keys.PublicKeyInfo = field(compare=False, repr=False)
    """
    The subject public key info.
    """

    subject: str = field(compare=False, default='')
    """
    Human-readable rendition of the subject name, for logging purposes.
    """

    @classmethod
    def from_der(cls, der_bytes: bytes) -> 'SignerCertificate':
        """
        Parse a DER-encoded certificate.

        :param der_bytes:
            The encoded certificate.
        :return:
            A :class:`SignerCertificate`.
        :raises CertificateLoadError:
            if the input could not be parsed.
        """
        try:
            cert = x509.Certificate.load(bytes(der_bytes), strict=True)
            public_key = cert.public_key
            # asn1crypto parses lazily, so make sure the key itself is usable
            serialization.load_der_public_key(public_key.dump())
            return cls(
                der_bytes=bytes(der_bytes),
                issuer=cert.issuer.dump(),
                serial_number=cert.serial_number,
                public_key=public_key,
                subject=cert.subject.human_friendly,
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise CertificateLoadError(
                f"Could not parse certificate: {e}"
            ) from e

    @classmethod
    def from_asn1(cls, cert: x509.Certificate) -> 'SignerCertificate':
        return cls.from_der(cert.dump())

    @classmethod
    def from_pyca(cls, cert) -> 'SignerCertificate':
        return cls.from_der(cert.public_bytes(serialization.Encoding.DER))

    @property
    def key_algorithm(self) -> str:
        return self.public_key.algorithm

    def dump(self) -> bytes:
        return self.der_bytes

    def as_asn1(self) -> x509.Certificate:
        return x509.Certificate.load(self.der_bytes)

    def pyca_public_key(self):
        return serialization.load_der_public_key(self.public_key.dump())


def _read_source(source: CertSource) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    try:
        with open(source, 'rb') as f:
            return f.read()
    except IOError as e:
        raise CertificateLoadError(
            f"Could not read certificate file {source}: {e}"
        ) from e


def _pem_ders(data: bytes) -> Optional[List[bytes]]:
    if not pem.detect(data):
        return None
    try:
        return [
            der
            for type_name, _, der in pem.unarmor(data, multiple=True)
            if type_name is None or type_name.lower() == 'certificate'
        ]
    except ValueError as e:
        logger.debug("PEM armour detected, but could not unarmor", exc_info=e)
        return None


def _bare_base64_der(data: bytes) -> Optional[bytes]:
    stripped = b''.join(data.split())
    if not stripped:
        return None
    try:
        return base64.b64decode(stripped, validate=True)
    except (binascii.Error, ValueError):
        return None


def load_certificates_data(data: bytes) -> List[SignerCertificate]:
    """
    Load all certificates from binary data, auto-detecting the encoding.

    :param data:
        PEM data (possibly containing several certificates), bare Base64
        or raw DER.
    :return:
        A list of :class:`SignerCertificate` objects.
    :raises CertificateLoadError:
        if none of the supported encodings yields a certificate.
    """
    ders = _pem_ders(data)
    if ders:
        return [SignerCertificate.from_der(der) for der in ders]

    b64_der = _bare_base64_der(data)
    if b64_der is not None:
        try:
            return [SignerCertificate.from_der(b64_der)]
        except CertificateLoadError:
            logger.debug("Input is Base64, but not a Base64 certificate")

    try:
        return [SignerCertificate.from_der(data)]
    except CertificateLoadError as e:
        raise CertificateLoadError(
            "Input is not a certificate in PEM, Base64 or DER encoding"
        ) from e


def load_certificate_data(data: bytes) -> SignerCertificate:
    certs = load_certificates_data(data)
    if len(certs) != 1:
        raise CertificateLoadError(
            f"Expected exactly one certificate, but found {len(certs)}"
        )
    return certs[0]


def load_certificates(sources) -> Iterator[SignerCertificate]:
    """
    A convenience function to load certificates from several files.

    :param sources:
        An iterable of file names (or ``bytes`` objects).
    :return:
        A generator producing :class:`SignerCertificate` objects.
    """
    for source in sources:
        yield from load_certificates_data(_read_source(source))


def load_certificate(source: CertSource) -> SignerCertificate:
    """
    Load a single certificate from a file or from binary data.

    :param source:
        A file name, or a ``bytes`` object holding the certificate.
    :return:
        A :class:`SignerCertificate`.
    :raises CertificateLoadError:
        if the source cannot be read, does not parse, or does not contain
        exactly one certificate.
    """
    cert = load_certificate_data(_read_source(source))
    logger.debug(
        "Loaded certificate for %s (serial %d)",
        cert.subject,
        cert.serial_number,
    )
    return cert
