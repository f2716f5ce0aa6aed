import pytest

from p11probe.codec import (
    CLASS_ATTR,
    LABEL_ATTR,
    STATUS_ERROR,
    STATUS_LENGTH_MISMATCH,
    STATUS_OK,
    STATUS_UNAVAILABLE,
    attribute_buffer,
    boolean,
    certificate_type,
    dump_attributes,
    fetch_attribute,
    key_type,
    length,
    mechanism_list,
    object_class,
    read_attribute,
    string,
)
from p11probe.constants import (
    CK_UNAVAILABLE_INFORMATION,
    CKA_CLASS,
    CKA_LABEL,
    CKC_X_509,
    CKK_EC,
    CKM_RSA_PKCS,
    CKM_SHA256_RSA_PKCS,
    CKO_CERTIFICATE,
    CKR_OK,
    TOKEN_FLAGS,
    ULONG_SIZE,
)
from p11probe.errors import AttributeLengthError
from p11probe.testing import UNAVAILABLE
from p11probe.utils import pack_ulong, pack_ulongs, render_flags

def test_enum_decoders():
    assert object_class(pack_ulong(CKO_CERTIFICATE)) == "CKO_CERTIFICATE"
    assert certificate_type(pack_ulong(CKC_X_509)) == "X.509 Certificate"
    assert key_type(pack_ulong(CKK_EC)) == "EC Key"
    assert key_type(pack_ulong(0x4242)) == "Unknown key type: 0x4242"
    assert object_class(pack_ulong(0x4242)) == "0x4242"

def test_fixed_width_decoder_rejects_wrong_length():
    with pytest.raises(AttributeLengthError) as exc:
        object_class(b"\x01\x02\x03")
    assert str(exc.value) == f"Unexpected length (got 3, expected {ULONG_SIZE})"

    with pytest.raises(AttributeLengthError):
        boolean(b"\x01\x00")

def test_string_trims_padding():
    assert string(b"My Token    ") == "My Token"
    assert string(b"abc\x00\x00\x00") == "abc"
    assert string(b"") == ""

def test_length_never_looks_at_content():
    assert length(b"\xff" * 300) == "300 bytes"

def test_mechanism_list():
    raw = pack_ulongs([CKM_RSA_PKCS, CKM_SHA256_RSA_PKCS])
    assert mechanism_list(raw) == "CKM_RSA_PKCS, CKM_SHA256_RSA_PKCS"
    assert mechanism_list(b"") == ""
    with pytest.raises(AttributeLengthError):
        mechanism_list(b"\x00" * (ULONG_SIZE + 1))

def test_render_flags_in_declaration_order():
    table = (("A", 0x1), ("B", 0x2), ("C", 0x4))
    assert render_flags(table, 0x5) == "A|C"
    assert render_flags(table, 0) == ""
    assert render_flags(TOKEN_FLAGS, 0x1) == "CKF_RNG"

def test_attribute_buffer_is_wiped_on_error():
    with pytest.raises(RuntimeError):
        with attribute_buffer(4) as buf:
            buf[:] = b"\x01\x02\x03\x04"
            raise RuntimeError("boom")
    assert buf == bytearray(4)

def test_read_wrong_length_is_recorded(provider, session):
    obj = provider.add_object({CKA_CLASS: b"\x01\x02\x03"})
    result = read_attribute(provider, session.handle, obj, CLASS_ATTR)
    assert result.status == STATUS_LENGTH_MISMATCH
    assert result.raw == b"\x01\x02\x03"
    assert "Unexpected length (got 3" in result.render()

def test_read_unavailable(provider, session):
    obj = provider.add_object({CKA_LABEL: UNAVAILABLE})
    result = read_attribute(provider, session.handle, obj, LABEL_ATTR)
    assert result.status == STATUS_UNAVAILABLE
    assert result.render() == "Label: Information Unavailable"
    assert fetch_attribute(provider, session.handle, obj, CKA_LABEL) is None

def test_read_error_names_return_code(provider, session):
    obj = provider.add_object({CKA_CLASS: CKO_CERTIFICATE})
    result = read_attribute(provider, session.handle, obj, LABEL_ATTR)
    assert result.status == STATUS_ERROR
    assert result.value == "C_GetAttributeValue returned CKR_ATTRIBUTE_TYPE_INVALID"

def test_discovery_call_is_idempotent(provider, session):
    obj = provider.add_object({CKA_LABEL: "token label"})
    first = provider.get_attribute_value(session.handle, obj, CKA_LABEL, None)
    second = provider.get_attribute_value(session.handle, obj, CKA_LABEL, None)
    assert first == second == (CKR_OK, len("token label"))

def test_fetch_sizes_before_filling(provider, session):
    obj = provider.add_object({CKA_LABEL: "token label"})
    assert fetch_attribute(provider, session.handle, obj, CKA_LABEL) == b"token label"

    sizes = [call.args[3] for call in provider.called("C_GetAttributeValue")]
    assert sizes == [None, len("token label")]

def test_dump_continues_after_failures(provider, session):
    obj = provider.add_object({CKA_CLASS: CKO_CERTIFICATE})
    results = dump_attributes(provider, session.handle, obj, (LABEL_ATTR, CLASS_ATTR))
    assert [r.status for r in results] == [STATUS_ERROR, STATUS_OK]
    assert results[1].render() == "Object class: CKO_CERTIFICATE"

def test_unavailable_sentinel_value():
    assert CK_UNAVAILABLE_INFORMATION == (1 << (8 * ULONG_SIZE)) - 1
