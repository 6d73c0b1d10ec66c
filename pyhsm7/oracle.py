"""
The signing oracle abstraction.

A signing oracle is an external service (HSM, cloud key management
service, smart card, ...) that holds an RSA private key and produces
PKCS#1 v1.5 signatures without ever exposing the key. In terms of this
module, an oracle is anything that can compute::

    RSASign(SHA256(data), private_key)

for a byte string ``data`` handed to it.

pyhsm7 provides the following implementations:

* :class:`CallableSigningOracle` wraps an arbitrary function with the
  contract above;
* :class:`DigestSigningOracle` computes the SHA-256 digest locally and only
  sends the digest to a digest-signing service. This is the shape of most
  cloud KMS "asymmetric sign" APIs.

No private key material is ever handled by pyhsm7 itself.
"""

import abc
import logging
from typing import Callable

from .general import SigningOracleError, sha256_digest

__all__ = [
    'SigningOracle',
    'CallableSigningOracle',
    'DigestSigningOracle',
    'as_signing_oracle',
]

logger = logging.getLogger(__name__)


def _check_signature_value(signature) -> bytes:
    if not isinstance(signature, (bytes, bytearray)):
        raise SigningOracleError(
            f"Signing oracle returned {type(signature).__name__}, "
            f"expected bytes"
        )
    if not signature:
        raise SigningOracleError("Signing oracle returned an empty signature")
    return bytes(signature)


class SigningOracle(abc.ABC):
    """
    Abstract signing capability, agnostic as to where the private key
    operation actually happens.
    """

    def sign(self, data: bytes) -> bytes:
        """
        Produce an RSA PKCS#1 v1.5 signature over the SHA-256 digest of
        ``data``.

        Failures of the underlying service are reported as
        :class:`.SigningOracleError`, with the original exception chained.
        No retries are attempted.

        :param data:
            The data to sign.
        :return:
            The raw signature bytes.
        """
        try:
            signature = self._sign(data)
        except SigningOracleError:
            raise
        except Exception as e:
            logger.error("Signing oracle failed", exc_info=e)
            raise SigningOracleError(f"Signing oracle failed: {e}") from e
        return _check_signature_value(signature)

    @abc.abstractmethod
    def _sign(self, data: bytes) -> bytes:
        raise NotImplementedError

    def __call__(self, data: bytes) -> bytes:
        return self.sign(data)


class CallableSigningOracle(SigningOracle):
    """
    Signing oracle backed by a plain function ``bytes -> bytes`` honouring
    the oracle contract.
    """

    def __init__(self, sign_func: Callable[[bytes], bytes]):
        self._sign_func = sign_func

    def _sign(self, data: bytes) -> bytes:
        return self._sign_func(data)


class DigestSigningOracle(SigningOracle):
    """
    Signing oracle that hashes locally and delegates the signature of the
    32-byte SHA-256 digest to a remote service. Neither the data nor the key
    ever cross the boundary; only the digest does.

    :param sign_digest:
        Function that submits a SHA-256 digest to the service and returns the
        PKCS#1 v1.5 signature.
    """

    def __init__(self, sign_digest: Callable[[bytes], bytes]):
        self._sign_digest = sign_digest

    def _sign(self, data: bytes) -> bytes:
        digest = sha256_digest(data)
        logger.debug("Submitting digest %s for signing", digest.hex())
        return self._sign_digest(digest)


def as_signing_oracle(sign) -> SigningOracle:
    """
    Lift a plain callable to a :class:`SigningOracle`; oracles are passed
    through unchanged.
    """
    if isinstance(sign, SigningOracle):
        return sign
    if not callable(sign):
        raise TypeError(f"{sign!r} is not a signing oracle")
    return CallableSigningOracle(sign)
