"""
Assembly of detached CMS ``SignedData`` structures.

Two variants are supported:

* :func:`build_without_attributes` embeds a signature that the caller
  obtained beforehand over the content itself (``SignerInfo`` version 1);
* :func:`build_with_attributes` computes the content digest, puts it into
  a ``SignedAttributes`` set together with the content type, and has the
  signing oracle sign the DER encoding of that set (``SignerInfo``
  version 3).

In both cases, the output is the DER encoding of a ``ContentInfo``
structure of type ``id-signedData`` (see :rfc:`5652`, § 5.1).

The functions in this module hold no state, and can be called from
several threads at once.
"""

import logging
from typing import Callable, Iterable, Optional, Union

from . import cms
from .general import UnsupportedStructureError, sha256_digest
from .keys import SignerCertificate
from .oracle import SigningOracle, as_signing_oracle

__all__ = [
    'build_without_attributes',
    'build_with_attributes',
    'DetachedCMSSigner',
]

logger = logging.getLogger(__name__)

SignFunction = Union[SigningOracle, Callable[[bytes], bytes]]


def _check_certificate(certificate: SignerCertificate):
    if certificate.key_algorithm != 'rsa':
        raise UnsupportedStructureError(
            f"Only RSA signing certificates are supported, not "
            f"{certificate.key_algorithm}"
        )


def _package(
    signer_info: cms.SignerInfo,
    certificate: SignerCertificate,
    other_certs: Iterable[SignerCertificate],
) -> bytes:
    certs = [certificate]
    for cert in other_certs:
        if cert not in certs:
            certs.append(cert)
    signed_data = cms.SignedData(
        certificates=tuple(certs), signer_infos=(signer_info,)
    )
    return cms.ContentInfo(signed_data).dump()


def build_without_attributes(
    content: bytes,
    signature: bytes,
    certificate: SignerCertificate,
    other_certs: Iterable[SignerCertificate] = (),
) -> bytes:
    """
    Produce a detached CMS signature without signed attributes.

    .. warning::
        The signature is embedded as-is. It is the caller's responsibility
        to ensure that it is a signature of ``SHA256(content)`` under the
        key of ``certificate``; this function does not check it.

    :param content:
        The signed content. It is not embedded, nor hashed.
    :param signature:
        RSA PKCS#1 v1.5 signature of the SHA-256 digest of ``content``.
    :param certificate:
        The signer's certificate.
    :param other_certs:
        Further certificates to embed (e.g. the issuer chain).
    :return:
        The DER-encoded ``ContentInfo``.
    """
    _check_certificate(certificate)
    signer_info = cms.SignerInfo.create(
        sid=cms.IssuerAndSerialNumber.for_certificate(certificate),
        signature=signature,
    )
    result = _package(signer_info, certificate, other_certs)
    logger.debug(
        "Packaged %d-byte signature over %d bytes of content for %s",
        len(signature),
        len(content),
        certificate.subject,
    )
    return result


def build_with_attributes(
    content: bytes,
    certificate: SignerCertificate,
    sign: SignFunction,
    other_certs: Iterable[SignerCertificate] = (),
) -> bytes:
    """
    Produce a detached CMS signature with signed attributes.

    The signing oracle receives the DER encoding of the signed attributes,
    which it hashes before applying the private key. Hence, the value
    actually signed is ``SHA256(DER(SignedAttributes))``.

    :param content:
        The content to sign. It is hashed, but not embedded.
    :param certificate:
        The signer's certificate.
    :param sign:
        A :class:`.SigningOracle`, or any function with the same contract.
    :param other_certs:
        Further certificates to embed (e.g. the issuer chain).
    :return:
        The DER-encoded ``ContentInfo``.
    :raises SigningOracleError:
        if the oracle fails.
    """
    _check_certificate(certificate)
    oracle = as_signing_oracle(sign)
    digest = sha256_digest(content)
    signed_attrs = cms.SignedAttributes.for_content_digest(digest)
    signature = oracle.sign(signed_attrs.dump())
    signer_info = cms.SignerInfo.create(
        sid=cms.IssuerAndSerialNumber.for_certificate(certificate),
        signature=signature,
        signed_attrs=signed_attrs,
    )
    result = _package(signer_info, certificate, other_certs)
    logger.debug(
        "Signed attributes with message digest %s for %s",
        digest.hex(),
        certificate.subject,
    )
    return result


class DetachedCMSSigner:
    """
    Convenience wrapper tying a signing certificate to the oracle holding
    the corresponding key.

    :param signing_cert:
        The signer's certificate.
    :param oracle:
        The signing oracle (or a function with the same contract).
    :param other_certs:
        Further certificates to embed into every signature.
    :param signed_attributes:
        Whether to include signed attributes by default.
    """

    def __init__(
        self,
        signing_cert: SignerCertificate,
        oracle: SignFunction,
        other_certs: Iterable[SignerCertificate] = (),
        signed_attributes: bool = True,
    ):
        _check_certificate(signing_cert)
        self.signing_cert = signing_cert
        self.oracle = as_signing_oracle(oracle)
        self.other_certs = tuple(other_certs)
        self.signed_attributes = signed_attributes

    def sign_detached(
        self, content: bytes, signed_attributes: Optional[bool] = None
    ) -> bytes:
        """
        Sign ``content`` and package the result as a detached CMS signature.

        :param content:
            The content to sign.
        :param signed_attributes:
            Whether to include signed attributes. If ``None``, the default
            set on this signer applies. Without signed attributes, the oracle
            is asked to sign the content directly.
        :return:
            The DER-encoded ``ContentInfo``.
        """
        if signed_attributes is None:
            signed_attributes = self.signed_attributes
        if signed_attributes:
            result = build_with_attributes(
                content, self.signing_cert, self.oracle, self.other_certs
            )
        else:
            signature = self.oracle.sign(content)
            result = build_without_attributes(
                content, signature, self.signing_cert, self.other_certs
            )
        logger.info(
            "Produced detached CMS signature (%d bytes) for %s",
            len(result),
            self.signing_cert.subject,
        )
        return result
