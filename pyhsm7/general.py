"""
General tools shared by the builder and the verifier: the error taxonomy
and the (single) digest function used throughout.

CMS is defined in :rfc:`5652`. Certificates are parsed with
`asn1crypto <https://github.com/wbond/asn1crypto>`_, all cryptographic
operations are delegated to
`cryptography <https://cryptography.io>`_.
"""

from cryptography.hazmat.primitives import hashes

__all__ = [
    'ValueErrorWithMessage',
    'DecodeError',
    'MalformedEncodingError',
    'CMSStructuralError',
    'UnsupportedStructureError',
    'SigningOracleError',
    'CertificateLoadError',
    'AttributeMismatchError',
    'SignatureInvalidError',
    'sha256_digest',
    'SHA256_DIGEST_LENGTH',
]

SHA256_DIGEST_LENGTH = 32


class ValueErrorWithMessage(ValueError):
    """
    Value error with a failure message attribute that can be conveniently
    extracted, instead of having to rely on extracting exception args
    generically.
    """

    def __init__(self, failure_message):
        self.failure_message = str(failure_message)
        super().__init__(failure_message)


class DecodeError(ValueErrorWithMessage):
    """Error decoding a CMS object."""


class MalformedEncodingError(DecodeError):
    """The input violates the Distinguished Encoding Rules."""


class CMSStructuralError(DecodeError):
    """
    The input is valid DER, but does not hang together as a CMS object
    (e.g. a mandatory attribute is missing or duplicated).
    """


class UnsupportedStructureError(ValueErrorWithMessage):
    """
    The input is well-formed, but uses CMS features outside of the supported
    subset (multiple signers, embedded content, algorithms other than
    SHA-256 with RSA PKCS#1 v1.5, ...).
    """


class SigningOracleError(ValueErrorWithMessage):
    """The external signing capability failed to produce a signature."""


class CertificateLoadError(ValueErrorWithMessage):
    """A certificate could not be read or parsed."""


class AttributeMismatchError(ValueErrorWithMessage):
    """
    The signed attributes do not match the content supplied for
    verification.
    """


class SignatureInvalidError(ValueErrorWithMessage):
    """The cryptographic signature check failed."""


def sha256_digest(data: bytes) -> bytes:
    h = hashes.Hash(hashes.SHA256())
    h.update(data)
    return h.finalize()
