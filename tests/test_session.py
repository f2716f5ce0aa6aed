import pytest
from cryptography import x509

from conftest import PIN, RefusingPinSource, populate
from p11probe.codec import CLASS_ATTR
from p11probe.constants import (
    CKF_PROTECTED_AUTHENTICATION_PATH,
    CKO_CERTIFICATE,
    CKO_DATA,
    CKO_VENDOR_DEFINED,
    CKR_PIN_INCORRECT,
)
from p11probe.errors import AuthenticationError, PinSourceError
from p11probe.pin import StaticPinSource
from p11probe.session import (
    FIXED_PASSES,
    PUBLIC_KEYS,
    SearchPass,
    SessionState,
    TokenSession,
    inspect_objects,
)
from p11probe.slots import token_info
from p11probe.testing import MemoryProvider


class FailingPinSource:
    def get_pin(self, prompt):
        raise PinSourceError("No PIN entered")


def _labels(report):
    return [r.handler.label for r in report.attributes]


def test_lifecycle(provider):
    with TokenSession.open(provider, 0) as session:
        assert session.state is SessionState.OPEN
        session.login(StaticPinSource(PIN))
        assert session.state is SessionState.LOGGED_IN
        session.logout()
        assert session.state is SessionState.OPEN
    assert session.state is SessionState.CLOSED
    assert len(provider.called("C_CloseSession")) == 1
    assert provider.sessions == {}


def test_pin_is_wiped_after_login(provider, session):
    session.login(StaticPinSource(PIN))
    assert provider.login_calls == [PIN.encode()]
    assert provider.pin_buffers[0] == bytearray(len(PIN))


def test_protected_authentication_path_never_asks_for_pin():
    provider = MemoryProvider(token_flags=CKF_PROTECTED_AUTHENTICATION_PATH)
    provider.initialize()
    session = TokenSession.open(provider, 0)
    session.login(RefusingPinSource(), token_info(provider, 0))
    assert provider.login_calls == [None]
    assert session.state is SessionState.LOGGED_IN
    session.close()


def test_wrong_pin_closes_session(provider, session):
    with pytest.raises(AuthenticationError) as exc:
        session.login(StaticPinSource("0000"))
    assert exc.value.rv == CKR_PIN_INCORRECT
    assert session.state is SessionState.CLOSED
    assert provider.sessions == {}
    # wiped even though the login failed
    assert provider.pin_buffers[0] == bytearray(4)


def test_pin_source_failure_closes_session(provider, session):
    with pytest.raises(AuthenticationError):
        session.login(FailingPinSource())
    assert provider.called("C_Login") == []
    assert session.state is SessionState.CLOSED


def test_logout_not_supported_is_not_fatal(provider, logged_in):
    provider.missing.add("C_Logout")
    logged_in.logout()
    assert logged_in.state is SessionState.OPEN
    assert provider.called("C_Logout") == []


def test_session_info(provider, session):
    info = session.info()
    assert info.slot_id == 0
    provider.missing.add("C_GetSessionInfo")
    assert session.info() is None


def test_inspection_passes(provider, logged_in, objects):
    seen = []
    inspection = inspect_objects(logged_in, on_pass=lambda search: seen.append(search.name))

    assert seen == ["objects"] + [search.name for search in FIXED_PASSES]
    assert inspection.default_key == objects["private"]
    assert inspection.first_public_key == objects["public"]
    assert sorted(inspection.handles("objects")) == sorted(objects.values())

    general = {r.handle: r for r in inspection.objects if r.search == "objects"}
    cert = general[objects["certificate"]]
    assert cert.object_class == CKO_CERTIFICATE
    assert _labels(cert) == [
        "Object class", "Label", "Certificate Type", "Key Identifier",
        "Object value", "Subject name", "Certificate issuer",
    ]
    by_label = {r.handler.label: r for r in cert.attributes}
    der = x509.load_der_x509_certificate(by_label["Object value"].raw)
    assert by_label["Subject name"].value == der.subject.public_bytes().hex()
    assert by_label["Certificate issuer"].value == der.issuer.public_bytes().hex()

    data = general[objects["data"]]
    assert data.object_class == CKO_DATA
    assert [r.render() for r in data.attributes][-3:] == [
        "Application Description: p11probe",
        "Object ID: 06032a0304",
        "Object value: 11 bytes",
    ]

    key = general[objects["private"]]
    assert "Allowed Mechanisms: CKM_RSA_PKCS, CKM_SHA256_RSA_PKCS" in [r.render() for r in key.attributes]

    vendor = [r for r in inspection.objects if r.search == "vendor defined objects"]
    assert [r.handle for r in vendor] == [objects["vendor"]]
    assert vendor[0].object_class == CKO_VENDOR_DEFINED
    assert _labels(vendor[0]) == ["Object class", "Application Description", "Object ID", "Object value"]

    public = [r for r in inspection.objects if r.search == "public keys"]
    assert _labels(public[0]) == ["Object class", "Key Identifier"]


def test_private_objects_need_login(provider, session, objects):
    inspection = inspect_objects(session)
    assert inspection.default_key is None
    assert objects["private"] not in inspection.handles("objects")


def test_selected_object_replaces_general_search(provider, logged_in, objects):
    inspection = inspect_objects(logged_in, selected_object=objects["data"])
    assert inspection.handles("objects") == [objects["data"]]
    assert provider.called("C_FindObjectsInit")[0].args[1] != ()


def test_class_filter(provider, logged_in, objects):
    inspection = inspect_objects(logged_in, object_class=CKO_DATA)
    assert inspection.handles("objects") == [objects["data"]]


def test_callbacks_see_every_object(provider):
    populate(provider)
    with TokenSession.open(provider, 0) as session:
        session.login(StaticPinSource(PIN))
        seen = []
        inspection = inspect_objects(session, on_object=lambda index, report: seen.append(report))
    assert seen == inspection.objects


def test_passes_without_class_tables():
    assert dict(PUBLIC_KEYS.tables) == {}
    assert dict(SearchPass("extra", (), (CLASS_ATTR,)).tables) == {}
