import io
import json

import pytest
import rfc8785
from rich.console import Console

from conftest import PIN, populate
from p11probe.config import build_config
from p11probe.constants import CKA_VALUE, CKR_GENERAL_ERROR
from p11probe.errors import AuthenticationError, InitializationError, NoSlotsError
from p11probe.pin import StaticPinSource
from p11probe.probe import EXIT_INITIALIZE, EXIT_MISMATCH, EXIT_OK, exit_code_for, run_probe
from p11probe.report import ConsoleReporter
from p11probe.signing import sign
from p11probe.testing import MemoryProvider


def _token(**kwargs):
    provider = MemoryProvider(pin=PIN, **kwargs)
    objects = populate(provider)
    return provider, objects


def _reporter():
    out = io.StringIO()
    return ConsoleReporter(Console(file=out, width=300, highlight=False)), out


def _run(provider, **values):
    values.setdefault("pin", PIN)
    config = build_config(module="memory", **values)
    reporter, out = _reporter()
    result = run_probe(provider, config, reporter)
    return result, out.getvalue()


def test_full_run(tmp_path):
    provider, objects = _token()
    report = tmp_path / "inventory.json"
    result, output = _run(provider, sign_zeros=16, report=report)

    assert result.exit_code == EXIT_OK
    assert result.slot == 0
    assert result.signatures[0].verified is True
    assert provider.names()[0] == "C_Initialize"
    assert provider.names()[-1] == "C_Finalize"
    assert "C_Logout" in provider.names()
    assert provider.sessions == {}

    assert "Label: signing key" in output
    assert "Certificate Type: X.509 Certificate" in output
    assert "Signature verified with public key" in output

    raw = report.read_bytes()
    assert raw == rfc8785.dumps(json.loads(raw))
    inventory = json.loads(raw)
    assert inventory["token"]["label"] == "Memory token"
    assert inventory["signatures"][0]["verified"] is True
    assert {o["class"] for o in inventory["objects"]} >= {"CKO_PRIVATE_KEY", "CKO_CERTIFICATE"}


def test_missing_slot_info_falls_back_to_first_slot():
    provider, _ = _token(slots=(4, 9), missing={"C_GetSlotInfo"})
    result, _ = _run(provider)
    assert result.exit_code == EXIT_OK
    assert result.slot == 4
    assert provider.called("C_GetSlotInfo") == []


def test_finalize_runs_after_failed_login():
    provider, _ = _token()
    with pytest.raises(AuthenticationError) as exc:
        _run(provider, pin="0000")
    assert exit_code_for(exc.value) == 1
    assert provider.names()[-1] == "C_Finalize"
    assert provider.sessions == {}


def test_no_slots():
    provider = MemoryProvider(slots=())
    with pytest.raises(NoSlotsError):
        _run(provider)
    assert provider.names()[-1] == "C_Finalize"


def test_initialize_failure():
    provider = MemoryProvider()
    provider.fail["C_Initialize"] = CKR_GENERAL_ERROR
    with pytest.raises(InitializationError) as exc:
        _run(provider)
    assert exit_code_for(exc.value) == EXIT_INITIALIZE
    assert provider.called("C_Finalize") == []


def test_no_login_hides_private_objects():
    provider, objects = _token()
    result, output = _run(provider, login=False, pin=None)
    assert provider.called("C_Login") == []
    assert result.inspection.default_key is None
    assert objects["private"] not in result.inspection.handles("objects")


def test_prompted_pin_source_is_used():
    provider, _ = _token()
    config = build_config(module="memory", sign_text="hello")
    reporter, _ = _reporter()
    result = run_probe(provider, config, reporter, pin_source=StaticPinSource(PIN))
    assert provider.login_calls == [PIN.encode()]
    assert result.signatures[0].verified is True


def test_external_verify_mismatch(tmp_path):
    provider, objects = _token()
    data = tmp_path / "data.bin"
    sig = tmp_path / "data.sig"
    data.write_bytes(b"payload")
    sig.write_bytes(b"\x00" * 128)

    result, output = _run(provider, verify_data=data, verify_signature=sig)
    assert result.exit_code == EXIT_MISMATCH
    assert result.verification.valid is False
    assert "Signature did NOT verify" in output
    assert provider.names()[-1] == "C_Finalize"


def test_external_verify_with_selected_object(tmp_path):
    provider, objects = _token()
    provider.initialize()
    session = provider.open_session(0, 0x4)[1]
    provider.login(session, 1, bytearray(PIN.encode()))
    signature = sign(provider, session, objects["private"], b"payload")
    provider.finalize()

    data = tmp_path / "data.bin"
    sig = tmp_path / "data.sig"
    data.write_bytes(b"payload")
    sig.write_bytes(signature)
    result, _ = _run(provider, verify_data=data, verify_signature=sig, object=objects["public"])
    assert result.exit_code == EXIT_OK
    assert result.verification.valid is True


def test_attribute_export(tmp_path):
    provider, objects = _token()
    template = str(tmp_path / "obj-%o-%a.bin")
    result, output = _run(provider, exports=[f"CKA_VALUE@{objects['data']}={template}"])
    path = tmp_path / f"obj-{objects['data']}-{CKA_VALUE:x}.bin"
    assert path.read_bytes() == b"hello token"
    assert f'Writing 11 bytes to "{path}"' in output


def test_attribute_export_for_every_object(tmp_path):
    provider, objects = _token()
    template = str(tmp_path / "obj-%o.bin")
    _run(provider, exports=[f"CKA_VALUE={template}"])
    written = sorted(p.name for p in tmp_path.iterdir())
    # only the objects that have a CKA_VALUE
    assert written == sorted(
        f"obj-{objects[name]}.bin" for name in ("certificate", "data", "vendor")
    )


@pytest.mark.parametrize("label", ["[/] weird", "[bold]ACME[/bold]"])
def test_token_text_is_printed_verbatim(label):
    provider, _ = _token(label=label)
    result, output = _run(provider)
    assert result.exit_code == EXIT_OK
    assert label in output


def test_unwritable_export_is_skipped(tmp_path):
    provider, objects = _token()
    template = str(tmp_path / "missing" / "obj-%o.bin")
    result, output = _run(provider, exports=[f"CKA_VALUE@{objects['data']}={template}"], sign_text="hi")
    assert result.exit_code == EXIT_OK
    assert "Writing" not in output
    assert result.signatures[0].verified is True
