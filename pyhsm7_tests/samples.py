"""
Key material for the test suite, generated once per session with
``cryptography``.
"""

from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed
from cryptography.x509.oid import NameOID

from pyhsm7 import der
from pyhsm7.general import SHA256_DIGEST_LENGTH, SigningOracleError
from pyhsm7.keys import SignerCertificate
from pyhsm7.oracle import SigningOracle

TEST_MESSAGE = b'test message'
TEST_MESSAGE_SHA256 = (
    '3f0a377ba0a4a460ecb616f6507ce0d8cfa3e704025d4fda3ed0c5ca05468728'
)

RSA_ENCRYPTION_OID = '1.2.840.113549.1.1.1'

# high bit of the leading byte set, so DER needs a padding octet
HIGH_BIT_SERIAL = 0x8F2D_7C41_90AB_33E1_5D6A


def _name(common_name):
    return x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, 'BE'),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, 'pyhsm7 Testing'),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )


def issue_certificate(
    subject_key, common_name, serial_number, issuer_key=None, issuer_cn=None
) -> x509.Certificate:
    issuer_key = issuer_key or subject_key
    now = datetime.now(tz=timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(common_name))
        .issuer_name(_name(issuer_cn or common_name))
        .public_key(subject_key.public_key())
        .serial_number(serial_number)
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
    )
    return builder.sign(issuer_key, hashes.SHA256())


class LocalKeySigningOracle(SigningOracle):
    """
    Signing oracle holding an RSA private key in memory, standing in for an
    HSM in tests.
    """

    def __init__(self, private_key: rsa.RSAPrivateKey):
        self.private_key = private_key

    def _sign(self, data: bytes) -> bytes:
        return self.private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())

    def sign_digest(self, digest: bytes) -> bytes:
        if len(digest) != SHA256_DIGEST_LENGTH:
            raise SigningOracleError(
                f"Expected a {SHA256_DIGEST_LENGTH}-byte digest, "
                f"got {len(digest)} bytes"
            )
        return self.private_key.sign(
            digest, padding.PKCS1v15(), Prehashed(hashes.SHA256())
        )


def _rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


ROOT_KEY = _rsa_key()
ROOT_CERT = issue_certificate(ROOT_KEY, 'Root CA', 0x1001)

SIGNER_KEY = _rsa_key()
SIGNER_CERT = issue_certificate(
    SIGNER_KEY,
    'Signer',
    HIGH_BIT_SERIAL,
    issuer_key=ROOT_KEY,
    issuer_cn='Root CA',
)

OTHER_KEY = _rsa_key()
OTHER_CERT = issue_certificate(OTHER_KEY, 'Someone Else', 0x2002)

EC_KEY = ec.generate_private_key(ec.SECP256R1())
EC_CERT = issue_certificate(EC_KEY, 'EC Signer', 0x3003)

SIGNER = SignerCertificate.from_pyca(SIGNER_CERT)
ROOT = SignerCertificate.from_pyca(ROOT_CERT)
OTHER = SignerCertificate.from_pyca(OTHER_CERT)
EC_SIGNER = SignerCertificate.from_pyca(EC_CERT)

SIGNER_ORACLE = LocalKeySigningOracle(SIGNER_KEY)
OTHER_ORACLE = LocalKeySigningOracle(OTHER_KEY)


def with_broken_rsa_key(cert_der_bytes: bytes) -> bytes:
    """
    Replace the subject public key of a certificate by an rsaEncryption key
    whose BIT STRING does not hold an RSAPublicKey. The signature on the
    certificate is left alone.
    """
    cert_elements, _ = der.decode_sequence(cert_der_bytes)
    tbs_elements, _ = der.decode_sequence(cert_elements[0].encoded)
    tbs = [e.encoded for e in tbs_elements]
    # version, serial, signature, issuer, validity, subject, key
    tbs[6] = der.encode_sequence(
        [
            der.encode_sequence(
                [der.encode_oid(RSA_ENCRYPTION_OID), der.encode_null()]
            ),
            der.encode_tlv(0x03, b'\x00\x05\x00'),
        ]
    )
    return der.encode_sequence(
        [der.encode_sequence(tbs)] + [e.encoded for e in cert_elements[1:]]
    )


def cert_pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


def cert_der(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.DER)


def key_pem(key) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


def write_file(path, data: bytes) -> str:
    with open(path, 'wb') as f:
        f.write(data)
    return str(path)
