"""
Configuration of signers whose key lives in a cloud key management service.

A KMS setup names an asymmetric key version, along with the certificate
matching that key::

    kms-setups:
        release:
            project-id: my-project
            location-id: europe-west1
            key-ring-id: signing
            key-id: release-key
            key-version: 1
            cert-file: release.cert.pem
            other-certs: ca.cert.pem

pyhsm7 does not talk to the service itself. The caller supplies a function
that takes a key version name and a SHA-256 digest, and returns the
PKCS#1 v1.5 signature. For Google Cloud KMS, that would be something like::

    def sign_digest(key_version_name, digest):
        response = client.asymmetric_sign(
            request={'name': key_version_name, 'digest': {'sha256': digest}}
        )
        return response.signature
"""

import functools
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..builder import DetachedCMSSigner
from ..general import CertificateLoadError
from ..keys import SignerCertificate, load_certificate, load_certificates
from ..oracle import DigestSigningOracle
from .api import ConfigurableMixin, ConfigurationError

__all__ = ['KMSKeyConfig', 'DigestSignFunction']

DigestSignFunction = Callable[[str, bytes], bytes]

_ID_FIELDS = ('project_id', 'location_id', 'key_ring_id', 'key_id')


@dataclass(frozen=True)
class KMSKeyConfig(ConfigurableMixin):
    """
    Identifies an RSA key version held by a KMS, and the certificate that
    goes with it.
    """

    project_id: str
    location_id: str
    key_ring_id: str
    key_id: str

    cert_file: str
    """Signer certificate file (PEM, Base64 or DER)."""

    key_version: str = '1'

    other_certs: Optional[List[SignerCertificate]] = None
    """Further certificates to embed into every signature."""

    signed_attributes: bool = True

    @classmethod
    def process_entries(cls, config_dict):
        super().process_entries(config_dict)

        for field in _ID_FIELDS:
            value = config_dict.get(field)
            if value is not None and (not isinstance(value, str) or not value):
                raise ConfigurationError(
                    f"'{field.replace('_', '-')}' must be a non-empty string"
                )

        # Yaml reads 'key-version: 1' as an integer
        version = config_dict.get('key_version')
        if isinstance(version, int) and not isinstance(version, bool):
            config_dict['key_version'] = str(version)
        elif version is not None and not isinstance(version, str):
            raise ConfigurationError("'key-version' must be a string")

        other_certs = config_dict.get('other_certs')
        if other_certs is not None:
            if isinstance(other_certs, str):
                other_certs = (other_certs,)
            try:
                config_dict['other_certs'] = list(
                    load_certificates(other_certs)
                )
            except CertificateLoadError as e:
                raise ConfigurationError(
                    f"Could not load other certificates: {e}"
                ) from e

    @property
    def key_version_name(self) -> str:
        """
        Fully qualified resource name of the key version.
        """
        return (
            f"projects/{self.project_id}/locations/{self.location_id}/"
            f"keyRings/{self.key_ring_id}/cryptoKeys/{self.key_id}/"
            f"cryptoKeyVersions/{self.key_version}"
        )

    def instantiate(self, sign_digest: DigestSignFunction) -> DetachedCMSSigner:
        """
        Set up a signer that submits digests for this key version.

        :param sign_digest:
            Function taking the key version name and a SHA-256 digest, and
            returning the signature produced by the KMS.
        :return:
            A :class:`.DetachedCMSSigner`.
        """
        oracle = DigestSigningOracle(
            functools.partial(sign_digest, self.key_version_name)
        )
        return DetachedCMSSigner(
            signing_cert=load_certificate(self.cert_file),
            oracle=oracle,
            other_certs=self.other_certs or (),
            signed_attributes=self.signed_attributes,
        )
