import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.padding import PKCS1v15

from pyhsm7.general import SigningOracleError
from pyhsm7.oracle import (
    CallableSigningOracle,
    DigestSigningOracle,
    as_signing_oracle,
)
from pyhsm7_tests.samples import (
    SIGNER_KEY,
    SIGNER_ORACLE,
    TEST_MESSAGE,
    TEST_MESSAGE_SHA256,
)


def _check(signature, data=TEST_MESSAGE):
    SIGNER_KEY.public_key().verify(
        signature, data, PKCS1v15(), hashes.SHA256()
    )


def test_oracle_call():
    _check(SIGNER_ORACLE.sign(TEST_MESSAGE))
    _check(SIGNER_ORACLE(TEST_MESSAGE))


def test_sign_digest():
    digest = bytes.fromhex(TEST_MESSAGE_SHA256)
    assert SIGNER_ORACLE.sign_digest(digest) == SIGNER_ORACLE.sign(
        TEST_MESSAGE
    )
    with pytest.raises(SigningOracleError, match="32-byte digest"):
        SIGNER_ORACLE.sign_digest(digest[:20])


def test_digest_oracle_only_sees_digest():
    received = []

    def sign_digest(digest):
        received.append(digest)
        return SIGNER_ORACLE.sign_digest(digest)

    oracle = DigestSigningOracle(sign_digest)
    _check(oracle.sign(TEST_MESSAGE))
    assert received == [bytes.fromhex(TEST_MESSAGE_SHA256)]


def test_callable_oracle_wraps_errors():
    def sign(data):
        raise TimeoutError("deadline exceeded")

    oracle = CallableSigningOracle(sign)
    with pytest.raises(SigningOracleError, match='deadline') as exc:
        oracle.sign(TEST_MESSAGE)
    assert isinstance(exc.value.__cause__, TimeoutError)


def test_callable_oracle_propagates_oracle_errors():
    err = SigningOracleError("permission denied")

    def sign(data):
        raise err

    with pytest.raises(SigningOracleError) as exc:
        CallableSigningOracle(sign).sign(TEST_MESSAGE)
    assert exc.value is err


@pytest.mark.parametrize('bad_value', [b'', None, 'abc', 1234])
def test_callable_oracle_bad_return_value(bad_value):
    with pytest.raises(SigningOracleError):
        CallableSigningOracle(lambda data: bad_value).sign(TEST_MESSAGE)


def test_callable_oracle_bytearray():
    oracle = CallableSigningOracle(lambda data: bytearray(b'\x01\x02'))
    assert oracle.sign(TEST_MESSAGE) == b'\x01\x02'


def test_as_signing_oracle():
    assert as_signing_oracle(SIGNER_ORACLE) is SIGNER_ORACLE
    lifted = as_signing_oracle(SIGNER_ORACLE.sign)
    assert isinstance(lifted, CallableSigningOracle)
    _check(lifted.sign(TEST_MESSAGE))
    with pytest.raises(TypeError):
        as_signing_oracle(b'not callable')

