import pytest

from p11probe.constants import (
    CKA_CLASS,
    CKO_DATA,
    CKO_PUBLIC_KEY,
    CKR_DEVICE_ERROR,
    CKR_GENERAL_ERROR,
)
from p11probe.errors import OperationError
from p11probe.finder import collect_objects, encode_template, find_objects
from p11probe.utils import pack_ulong


def _add_data(provider, count):
    return [provider.add_data_object(f"obj {i}", bytes([i])) for i in range(count)]


def test_encode_template():
    assert encode_template([(1, True), (2, CKO_DATA), (3, "abc"), (4, b"\x00")]) == [
        (1, b"\x01"),
        (2, pack_ulong(CKO_DATA)),
        (3, b"abc"),
        (4, b"\x00"),
    ]


def test_enumeration_terminates_on_empty_batch(provider, session):
    handles = _add_data(provider, 25)
    assert collect_objects(provider, session.handle) == handles

    batches = provider.called("C_FindObjects")
    assert len(batches) == 4
    assert provider.names()[-1] == "C_FindObjectsFinal"
    assert len(provider.called("C_FindObjectsFinal")) == 1


def test_empty_token(provider, session):
    assert collect_objects(provider, session.handle) == []
    assert provider.names()[-3:] == ["C_FindObjectsInit", "C_FindObjects", "C_FindObjectsFinal"]


def test_search_is_lazy(provider, session):
    gen = find_objects(provider, session.handle)
    assert provider.called("C_FindObjectsInit") == []
    gen.close()
    assert provider.called("C_FindObjectsFinal") == []


def test_template_filters(provider, session, logged_in, objects):
    found = collect_objects(provider, session.handle, [(CKA_CLASS, CKO_PUBLIC_KEY)])
    assert found == [objects["public"]]


def test_init_failure_has_no_final(provider, session):
    provider.fail["C_FindObjectsInit"] = CKR_GENERAL_ERROR
    with pytest.raises(OperationError) as exc:
        collect_objects(provider, session.handle)
    assert exc.value.operation == "C_FindObjectsInit"
    assert provider.called("C_FindObjectsFinal") == []


def test_batch_failure_still_finalizes(provider, session):
    _add_data(provider, 3)
    provider.fail["C_FindObjects"] = CKR_DEVICE_ERROR
    with pytest.raises(OperationError) as exc:
        collect_objects(provider, session.handle)
    assert exc.value.name == "CKR_DEVICE_ERROR"
    assert len(provider.called("C_FindObjectsFinal")) == 1


def test_early_close_finalizes_once(provider, session):
    _add_data(provider, 25)
    gen = find_objects(provider, session.handle, batch_size=5)
    next(gen)
    gen.close()
    assert len(provider.called("C_FindObjectsInit")) == 1
    assert len(provider.called("C_FindObjectsFinal")) == 1

    # the operation is really over: a fresh search can start
    assert len(collect_objects(provider, session.handle)) == 25


def test_batch_size_must_be_positive(provider, session):
    with pytest.raises(ValueError):
        next(find_objects(provider, session.handle, batch_size=0))
