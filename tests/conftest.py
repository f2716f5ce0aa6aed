import pytest

from p11probe.pin import StaticPinSource
from p11probe.session import TokenSession
from p11probe.testing import MemoryProvider

PIN = "1234"
KEY_ID = b"\x01\x02"


class RefusingPinSource:
    """Fails the test if anything asks it for a PIN."""

    def get_pin(self, prompt):
        raise AssertionError("PIN source must not be consulted")


def populate(provider):
    """A small token: one key pair, a certificate, a data object and a vendor object."""
    priv, pub = provider.add_rsa_keypair(KEY_ID, "signing key", key_size=1024)
    cert = provider.add_certificate(KEY_ID, "p11probe test")
    data = provider.add_data_object("notes", b"hello token", object_id=b"\x06\x03\x2a\x03\x04")
    vendor = provider.add_vendor_object("vendor blob", b"\xde\xad\xbe\xef")
    return {"private": priv, "public": pub, "certificate": cert, "data": data, "vendor": vendor}


@pytest.fixture
def provider():
    p = MemoryProvider(pin=PIN)
    p.initialize()
    return p


@pytest.fixture
def objects(provider):
    return populate(provider)


@pytest.fixture
def session(provider):
    with TokenSession.open(provider, 0) as s:
        yield s


@pytest.fixture
def logged_in(session):
    session.login(StaticPinSource(PIN))
    return session
