from enum import Enum
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape

from .config import build_config
from .errors import ProbeError
from .loader import load_provider
from .logging_config import StructuredLogger, setup_logging
from .probe import EXIT_FAILURE, EXIT_MISMATCH, exit_code_for, run_probe
from .report import ConsoleReporter

app = typer.Typer(help="p11probe - exercise a PKCS#11 module and dump its token", add_completion=False)
console = Console(highlight=False)
err_console = Console(stderr=True)

logger = StructuredLogger("cli")


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@app.command()
def main(
    module: Optional[str] = typer.Argument(None, envvar="P11PROBE_MODULE", help="PKCS#11 shared object to load"),
    slot: Optional[int] = typer.Option(None, "--slot", "-s", help="Slot to use (default: first slot)"),
    object_class: Optional[str] = typer.Option(None, "--class", "-c", help="Only list objects of this class (CKO_* name or number)"),
    obj: Optional[int] = typer.Option(None, "--object", "-o", help="Object handle to inspect and use for signing/verifying"),
    dump_attr: Optional[List[str]] = typer.Option(None, "--dump-attr", "-a", help="ATTR[@OBJECT]=FILE; FILE expands %o, %a, %s and %%"),
    no_login: bool = typer.Option(False, "--no-login", "-L", help="Do NOT log into the token"),
    pin: Optional[str] = typer.Option(None, "--pin", envvar="P11PROBE_PIN", help="PIN (prompted for when missing)"),
    sign_zeros: Optional[int] = typer.Option(None, "--sign-zeros", "-N", help="Sign this many NUL bytes"),
    sign_text: Optional[str] = typer.Option(None, "--sign", "-S", help="Sign this string"),
    verify_data: Optional[str] = typer.Option(None, "--verify-data", "-v", help="File with data to verify"),
    verify_sig: Optional[str] = typer.Option(None, "--verify-sig", "-V", help="File with the signature to verify"),
    mechanism: str = typer.Option("CKM_RSA_PKCS", "--mechanism", "-m", help="Signature mechanism (CKM_* name or number)"),
    allow_empty_slots: bool = typer.Option(False, "--allow-empty-slots", "-T", help="Also list slots without a token"),
    report: Optional[str] = typer.Option(None, "--report", help="Write a canonical JSON inventory here"),
    log_level: LogLevel = typer.Option(LogLevel.WARNING, "--log-level", case_sensitive=False, help="Diagnostics threshold"),
    log_json: bool = typer.Option(False, "--log-json", help="Log as JSON lines on stderr"),
):
    """
    Load a PKCS#11 module, describe its slot and token, dump every object
    and optionally run a sign/verify round-trip.

    Exit status: 0 ok, 1 failure, 2 C_Initialize failed, 3 signature mismatch.
    """
    setup_logging(log_level.value, log_json)

    try:
        config = build_config(
            module=module or "",
            slot=slot,
            object_class=object_class,
            object=obj,
            exports=dump_attr or [],
            login=not no_login,
            pin=pin,
            sign_text=sign_text,
            sign_zeros=sign_zeros,
            verify_data=verify_data,
            verify_signature=verify_sig,
            mechanism=mechanism,
            require_token=not allow_empty_slots,
            report=report,
        )
        provider = load_provider(config.module)
        result = run_probe(provider, config, ConsoleReporter(console))
    except ProbeError as e:
        err_console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(exit_code_for(e))
    except OSError as e:
        err_console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(EXIT_FAILURE)

    if result.exit_code == EXIT_MISMATCH:
        err_console.print("[yellow]Signature verification failed[/yellow]")
    logger.debug("Probe finished", exit_code=result.exit_code)
    raise typer.Exit(result.exit_code)


if __name__ == "__main__":
    app()
