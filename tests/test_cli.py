import pytest
from typer.testing import CliRunner

from conftest import PIN, populate
from p11probe import cli
from p11probe.constants import CKR_GENERAL_ERROR
from p11probe.testing import MemoryProvider

runner = CliRunner()


@pytest.fixture
def token(monkeypatch):
    provider = MemoryProvider(pin=PIN)
    objects = populate(provider)
    monkeypatch.setattr(cli, "load_provider", lambda path: provider)
    return provider, objects


def test_probe_and_sign(token):
    result = runner.invoke(cli.app, ["memory.so", "--pin", PIN, "-N", "16"])
    assert result.exit_code == 0
    assert "Signature verified" in result.stdout


def test_module_and_pin_from_environment(token):
    result = runner.invoke(cli.app, ["-S", "hello"], env={"P11PROBE_MODULE": "memory.so", "P11PROBE_PIN": PIN})
    assert result.exit_code == 0
    provider, _ = token
    assert provider.login_calls == [PIN.encode()]


def test_prompts_for_pin(token):
    result = runner.invoke(cli.app, ["memory.so"], input=PIN + "\n")
    assert result.exit_code == 0


def test_no_login(token):
    provider, _ = token
    result = runner.invoke(cli.app, ["memory.so", "-L"])
    assert result.exit_code == 0
    assert provider.called("C_Login") == []


def test_missing_module_is_an_error(token):
    result = runner.invoke(cli.app, [], env={"P11PROBE_MODULE": ""})
    assert result.exit_code == 1


def test_wrong_pin(token):
    result = runner.invoke(cli.app, ["memory.so", "--pin", "0000"])
    assert result.exit_code == 1


def test_initialize_failure(token):
    provider, _ = token
    provider.fail["C_Initialize"] = CKR_GENERAL_ERROR
    result = runner.invoke(cli.app, ["memory.so", "--pin", PIN])
    assert result.exit_code == 2


def test_signature_mismatch(token, tmp_path):
    data = tmp_path / "data.bin"
    sig = tmp_path / "data.sig"
    data.write_bytes(b"payload")
    sig.write_bytes(b"\x01" * 128)
    result = runner.invoke(cli.app, ["memory.so", "--pin", PIN, "-v", str(data), "-V", str(sig)])
    assert result.exit_code == 3


def test_lone_verify_option(token, tmp_path):
    result = runner.invoke(cli.app, ["memory.so", "-v", str(tmp_path / "data.bin")])
    assert result.exit_code == 1


def test_unloadable_module(tmp_path):
    result = runner.invoke(cli.app, [str(tmp_path / "missing.so"), "-L"])
    assert result.exit_code == 1


def test_bad_export_template(token, tmp_path):
    provider, _ = token
    result = runner.invoke(cli.app, ["memory.so", "-L", "-a", f"CKA_VALUE={tmp_path}/x-%q"])
    assert result.exit_code == 1
    assert provider.called("C_Initialize") == []


def test_log_level(token):
    assert runner.invoke(cli.app, ["memory.so", "-L", "--log-level", "debug"]).exit_code == 0
    assert runner.invoke(cli.app, ["memory.so", "-L", "--log-level", "LOUD"]).exit_code == 2
