import pytest

from conftest import KEY_ID
from p11probe.constants import CKM_SHA256_RSA_PKCS, CKR_DEVICE_ERROR
from p11probe.errors import KeyLookupError, OperationError
from p11probe.signing import (
    REASON_SIGNATURE_INVALID,
    REASON_VERIFY_NOT_SUPPORTED,
    find_public_key,
    sign,
    sign_and_verify,
    verify_files,
    verify_signature,
)


def test_sign_and_verify(provider, logged_in, objects):
    result = sign_and_verify(provider, logged_in.handle, objects["private"], bytes(32))
    assert result.verified is True
    assert result.reason == "ok"
    assert result.public_key == objects["public"]
    assert len(result.signature) == 128


def test_sign_and_verify_hashing_mechanism(provider, logged_in, objects):
    payload = b"The quick brown fox"
    result = sign_and_verify(provider, logged_in.handle, objects["private"], payload, CKM_SHA256_RSA_PKCS)
    assert result.verified is True


def test_sign_is_two_call(provider, logged_in, objects):
    sign(provider, logged_in.handle, objects["private"], b"abc")
    sizes = [call.args[2] for call in provider.called("C_Sign")]
    assert sizes == [None, 128]


def test_missing_public_key(provider, logged_in, objects):
    del provider.objects[objects["public"]]
    with pytest.raises(KeyLookupError) as exc:
        sign_and_verify(provider, logged_in.handle, objects["private"], b"abc")
    assert exc.value.matches == 0
    assert str(exc.value) == f"no public key with CKA_ID {KEY_ID.hex()}"
    assert provider.called("C_VerifyInit") == []


def test_ambiguous_public_key(provider, logged_in, objects):
    key = provider.objects[objects["public"]].key
    provider.add_public_key(KEY_ID, key, label="duplicate")
    with pytest.raises(KeyLookupError) as exc:
        sign_and_verify(provider, logged_in.handle, objects["private"], b"abc")
    assert exc.value.matches == 2
    assert "ambiguous" in str(exc.value)
    assert provider.called("C_VerifyInit") == []


def test_find_public_key(provider, logged_in, objects):
    assert find_public_key(provider, logged_in.handle, objects["private"]) == objects["public"]


def test_verify_not_supported(provider, logged_in, objects):
    provider.missing.add("C_Verify")
    result = sign_and_verify(provider, logged_in.handle, objects["private"], b"abc")
    assert result.verified is None
    assert result.reason == REASON_VERIFY_NOT_SUPPORTED
    assert result.signature


def test_verify_files(provider, logged_in, objects, tmp_path):
    data = tmp_path / "data.bin"
    sig = tmp_path / "data.sig"
    data.write_bytes(b"release 1.0")
    signature = sign(provider, logged_in.handle, objects["private"], b"release 1.0")
    sig.write_bytes(signature)

    result = verify_files(provider, logged_in.handle, objects["public"], data, sig)
    assert result.valid is True

    flipped = bytearray(signature)
    flipped[10] ^= 0x01
    sig.write_bytes(bytes(flipped))
    result = verify_files(provider, logged_in.handle, objects["public"], data, sig)
    assert result.valid is False
    assert result.reason == REASON_SIGNATURE_INVALID


def test_truncated_signature_is_a_mismatch(provider, logged_in, objects):
    signature = sign(provider, logged_in.handle, objects["private"], b"abc")
    result = verify_signature(provider, logged_in.handle, objects["public"], b"abc", signature[:-1])
    assert result.valid is False


def test_verify_device_error_raises(provider, logged_in, objects):
    signature = sign(provider, logged_in.handle, objects["private"], b"abc")
    provider.fail["C_Verify"] = CKR_DEVICE_ERROR
    with pytest.raises(OperationError):
        verify_signature(provider, logged_in.handle, objects["public"], b"abc", signature)


def test_sign_init_failure(provider, session, objects):
    # the private key is not visible before login
    with pytest.raises(OperationError) as exc:
        sign(provider, session.handle, objects["private"], b"abc")
    assert exc.value.operation == "C_SignInit"
