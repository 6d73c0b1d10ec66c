"""
Verification of detached CMS ``SignedData`` structures.

Verification proceeds in the following order, which determines the failure
reported when several things are wrong at once:

1. decode the structure (:class:`.DecodeError`);
2. locate the single signer and its certificate
   (:class:`.UnsupportedStructureError` for multi-signer structures and
   non-RSA keys);
3. hash the content supplied by the caller;
4. if signed attributes are present, compare the message digest and content
   type they attest to (:class:`.AttributeMismatchError`);
5. check the RSA PKCS#1 v1.5 signature (:class:`.SignatureInvalidError`).

.. note::
    These functions only check the cryptographic integrity of the signature.
    No attempt is made to establish trust in the signer's certificate.
"""

import enum
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.padding import PKCS1v15
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from . import cms
from .general import (
    AttributeMismatchError,
    DecodeError,
    SignatureInvalidError,
    UnsupportedStructureError,
    sha256_digest,
)
from .keys import SignerCertificate

__all__ = [
    'VerificationStatus',
    'VerificationResult',
    'validate_detached_cms',
    'validate_signed_data',
    'verify_detached_cms',
    'verify_raw_signature',
]

logger = logging.getLogger(__name__)


class VerificationStatus(enum.Enum):
    VALID = enum.auto()
    DECODE_ERROR = enum.auto()
    UNSUPPORTED_STRUCTURE = enum.auto()
    ATTRIBUTE_MISMATCH = enum.auto()
    SIGNATURE_INVALID = enum.auto()


_ERROR_STATUSES = (
    (DecodeError, VerificationStatus.DECODE_ERROR),
    (UnsupportedStructureError, VerificationStatus.UNSUPPORTED_STRUCTURE),
    (AttributeMismatchError, VerificationStatus.ATTRIBUTE_MISMATCH),
    (SignatureInvalidError, VerificationStatus.SIGNATURE_INVALID),
)


@dataclass(frozen=True)
class VerificationResult:
    """
    Outcome of :func:`verify_detached_cms`.
    """

    status: VerificationStatus
    """
    Either :attr:`VerificationStatus.VALID`, or the reason for failure.
    """

    failure_message: Optional[str] = None
    """
    Human-readable description of the failure, if any.
    """

    signed_data: Optional[cms.SignedData] = None
    """
    The decoded ``SignedData`` structure, if decoding succeeded.
    """

    @property
    def valid(self) -> bool:
        return self.status is VerificationStatus.VALID


def verify_raw_signature(
    data: bytes, signature: bytes, certificate: SignerCertificate
):
    """
    Check a bare RSA PKCS#1 v1.5 signature of ``SHA256(data)`` against the
    public key in a certificate.

    :param data:
        The signed data.
    :param signature:
        The signature bytes.
    :param certificate:
        The signer's certificate.
    :raises SignatureInvalidError:
        if the signature does not verify, for whatever reason.
    :raises UnsupportedStructureError:
        if the certificate does not hold an RSA key.
    """
    pub_key = certificate.pyca_public_key()
    if not isinstance(pub_key, RSAPublicKey):
        raise UnsupportedStructureError(
            f"Only RSA keys are supported, not {certificate.key_algorithm}"
        )
    try:
        pub_key.verify(signature, data, PKCS1v15(), hashes.SHA256())
    except (InvalidSignature, ValueError) as e:
        # bad padding, wrong digest, wrong key: the caller gets to know none
        # of this
        logger.debug(
            "RSA signature check failed for %s: %r", certificate.subject, e
        )
        raise SignatureInvalidError("The signature is not valid") from e


def validate_signed_data(signed_data: cms.SignedData, content: bytes):
    """
    Validate a decoded ``SignedData`` structure against the detached
    content.

    :param signed_data:
        The decoded structure.
    :param content:
        The content that was supposedly signed.
    :raises UnsupportedStructureError:
        if the structure does not have exactly one signer, or the signer's
        key is not an RSA key.
    :raises AttributeMismatchError:
        if the signed attributes do not match the content.
    :raises SignatureInvalidError:
        if the signature does not verify.
    """
    if len(signed_data.signer_infos) != 1:
        raise UnsupportedStructureError(
            f"Expected exactly one signer, but found "
            f"{len(signed_data.signer_infos)}"
        )
    signer_info = signed_data.signer_infos[0]
    cert = signed_data.signer_certificate(signer_info)
    if cert.key_algorithm != 'rsa':
        raise UnsupportedStructureError(
            f"Only RSA keys are supported, not {cert.key_algorithm}"
        )

    digest = sha256_digest(content)
    signed_attrs = signer_info.signed_attrs
    if signed_attrs is not None:
        if not hmac.compare_digest(signed_attrs.message_digest, digest):
            raise AttributeMismatchError(
                "The message digest attribute does not match the digest of "
                "the content"
            )
        content_type = signed_attrs.content_type
        if content_type != cms.ID_DATA:
            raise AttributeMismatchError(
                f"Content type {content_type} did not match expected value "
                f"{cms.ID_DATA}"
            )
        payload = signed_attrs.dump()
    else:
        payload = content

    verify_raw_signature(payload, signer_info.signature, cert)


def validate_detached_cms(
    signed_data_bytes: bytes, content: bytes
) -> cms.SignedData:
    """
    Decode and validate a detached CMS signature, raising an error on any
    failure.

    :param signed_data_bytes:
        DER-encoded ``ContentInfo`` of type ``id-signedData``.
    :param content:
        The content that was supposedly signed.
    :return:
        The decoded ``SignedData`` structure.
    :raises DecodeError:
        if the input could not be decoded.
    :raises UnsupportedStructureError:
        if the input uses unsupported CMS features.
    :raises AttributeMismatchError:
        if the signed attributes do not match the content.
    :raises SignatureInvalidError:
        if the signature does not verify.
    """
    signed_data = cms.ContentInfo.load(bytes(signed_data_bytes)).content
    validate_signed_data(signed_data, content)
    return signed_data


def verify_detached_cms(
    signed_data_bytes: bytes, content: bytes
) -> VerificationResult:
    """
    Verify a detached CMS signature, reporting the outcome as a
    :class:`VerificationResult` instead of raising errors.

    :param signed_data_bytes:
        DER-encoded ``ContentInfo`` of type ``id-signedData``.
    :param content:
        The content that was supposedly signed.
    :return:
        A :class:`VerificationResult`.
    """
    signed_data = None
    try:
        signed_data = cms.ContentInfo.load(bytes(signed_data_bytes)).content
        validate_signed_data(signed_data, content)
    except tuple(err for err, _ in _ERROR_STATUSES) as e:
        status = next(s for err, s in _ERROR_STATUSES if isinstance(e, err))
        logger.warning(
            "Signature verification failed (%s): %s",
            status.name,
            e.failure_message,
        )
        return VerificationResult(
            status=status,
            failure_message=e.failure_message,
            signed_data=signed_data,
        )
    logger.info("Signature verification succeeded")
    return VerificationResult(
        status=VerificationStatus.VALID, signed_data=signed_data
    )
