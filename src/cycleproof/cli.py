"""cycleproof CLI - build a recursive proof chain and check it for a cycle.

Modes:
    default    - prove genesis -> extend* -> close, then verify the final proof
    --execute  - run the step program once, unproven, and print its resource usage
    --ids A --ids B ...  - prove independent chains in parallel (max_workers from config)
"""
from __future__ import annotations

import json
import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .backend import available_backends, get_backend
from .config import load_config
from .errors import (
    ChainStateError,
    ConfigError,
    CycleProofError,
    FingerprintMismatch,
    InvalidIdentity,
    ProvingFailure,
    SetupFailure,
    UnknownBackend,
    UnsupportedProofKind,
)
from .extractor import CycleVerdict
from .guest import ExecutionReport
from .orchestrator import ChainOrchestrator, run_chains
from .types import Commitment

logger = logging.getLogger(__name__)


class ExitCode(Enum):
    """Stable exit codes for scripting and CI."""
    VERIFIED = 0            # Final proof verified (cycle or no cycle)
    PROOF_INVALID = 10      # Final proof failed verification
    PROVING_FAILED = 12     # A chain step could not be proven
    MALFORMED = 20          # Bad arguments or configuration
    SETUP_FAILED = 30       # Key setup failed


def _parse_ids(ctx: click.Context, param: click.Parameter, value: tuple[str, ...]) -> list[list[int]]:
    plans = []
    for raw in value or ("1,2,3",):
        try:
            ids = [int(part) for part in raw.replace(" ", "").split(",") if part]
        except ValueError as exc:
            raise click.BadParameter(f"expected comma-separated integers, got {raw!r}") from exc
        if not ids:
            raise click.BadParameter("at least one identity is required")
        plans.append(ids)
    return plans


def _print_execution_report(output: bytes, report: ExecutionReport) -> None:
    from rich.console import Console
    from rich.table import Table

    console = Console()
    console.print("Program executed successfully.")
    console.print(f"output: {list(output)}")

    table = Table(title="report")
    table.add_column("span")
    table.add_column("units", justify="right")
    table.add_column("seconds", justify="right")
    for label, units in report.cycle_tracker.items():
        table.add_row(label, str(units), f"{report.span_seconds.get(label, 0.0):.6f}")
    table.add_row("[bold]total[/bold]", str(report.total_units), f"{report.wall_seconds:.6f}")
    console.print(table)
    console.print(
        f"embedded claims: {report.embedded_claims}  public values: {report.public_values_size} bytes"
    )


@click.command("cycleproof")
@click.version_option(version=__version__, prog_name="cycleproof")
@click.option("--execute", is_flag=True, help="Run the step program once without proving")
@click.option(
    "--ids",
    "plans",
    multiple=True,
    callback=_parse_ids,
    help="Comma-separated identities, in chain order (default: 1,2,3). "
    "Repeat to prove independent chains in parallel",
)
@click.option(
    "--close/--no-close",
    default=True,
    help="Finish with a step that repeats an earlier identity (default: yes)",
)
@click.option("--closing-id", type=int, default=None, help="Identity for the closing step (default: genesis)")
@click.option(
    "--workers",
    type=click.IntRange(min=1),
    default=None,
    help="Parallel chains when --ids is repeated (default: max_workers from config)",
)
@click.option("--prover", type=click.Choice(available_backends()), default=None, help="Prover backend")
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None, help="Config file")
@click.option("--json", "json_output", is_flag=True, help="Output JSON only")
@click.option("--verbose", "-v", count=True, help="-v for INFO logs, -vv for DEBUG")
def main(
    execute: bool,
    plans: list[list[int]],
    close: bool,
    closing_id: Optional[int],
    workers: Optional[int],
    prover: Optional[str],
    config_path: Optional[Path],
    json_output: bool,
    verbose: int,
) -> None:
    """Prove a chain of participants and report whether it contains a cycle."""
    try:
        config = load_config(config_path=config_path, workspace=Path.cwd())
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(ExitCode.MALFORMED.value)

    level = {0: config["log_level"], 1: "INFO"}.get(verbose, "DEBUG")
    logging.basicConfig(level=getattr(logging, level), format="%(asctime)s - %(levelname)s - %(message)s")

    try:
        backend = get_backend(prover or config["prover"])
    except UnknownBackend as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(ExitCode.MALFORMED.value)
    orchestrator = ChainOrchestrator(backend=backend, proof_kind=config["proof_kind"])

    if execute:
        _run_execute(orchestrator, json_output)
        return
    if len(plans) > 1:
        _run_batch(orchestrator, plans, close, closing_id, workers or config["max_workers"], json_output)
        return
    _run_chain(orchestrator, plans[0], close, closing_id, json_output)


def _run_execute(orchestrator: ChainOrchestrator, json_output: bool) -> None:
    try:
        output, report = orchestrator.execute(identity=1)
    except CycleProofError as exc:
        click.echo(f"Error: execution failed: {exc}", err=True)
        sys.exit(ExitCode.PROVING_FAILED.value)
    if json_output:
        click.echo(json.dumps({"output": list(output), "report": report.to_dict()}, indent=2))
    else:
        _print_execution_report(output, report)


def _run_chain(
    orchestrator: ChainOrchestrator,
    identities: list[int],
    close: bool,
    closing_id: Optional[int],
    json_output: bool,
) -> None:
    try:
        orchestrator.setup()
    except SetupFailure as exc:
        click.echo(f"Error: setup failed: {exc}", err=True)
        sys.exit(ExitCode.SETUP_FAILED.value)

    chain = orchestrator.new_chain()
    steps: list[list[int]] = []

    def _show(commitment: Commitment) -> None:
        steps.append(commitment.identities())
        if not json_output:
            click.echo(f"proof {len(steps)}: commitment {commitment.identities()}")

    try:
        _show(chain.genesis(identities[0]).commitment)
        for identity in identities[1:]:
            _show(chain.extend(identity).commitment)
        if close:
            _show(chain.close(closing_id).commitment)
        report = chain.finalize()
    except ProvingFailure as exc:
        _fail(json_output, steps, str(exc), exc.step_index)
        sys.exit(ExitCode.PROVING_FAILED.value)
    except (FingerprintMismatch, UnsupportedProofKind) as exc:
        _fail(json_output, steps, str(exc), len(steps) + 1)
        sys.exit(ExitCode.PROVING_FAILED.value)
    except (ChainStateError, InvalidIdentity) as exc:
        _fail(json_output, steps, str(exc), None)
        sys.exit(ExitCode.MALFORMED.value)

    if json_output:
        payload = {"steps": steps, "fingerprint": orchestrator.fingerprint.hex()}
        payload.update(report.to_dict())
        click.echo(json.dumps(payload, indent=2))
    else:
        click.echo(report.verdict.message)

    if report.verdict is CycleVerdict.INVALID_PROOF:
        sys.exit(ExitCode.PROOF_INVALID.value)


def _exit_code_for(exc: CycleProofError) -> ExitCode:
    if isinstance(exc, SetupFailure):
        return ExitCode.SETUP_FAILED
    if isinstance(exc, (ProvingFailure, FingerprintMismatch, UnsupportedProofKind)):
        return ExitCode.PROVING_FAILED
    return ExitCode.MALFORMED


def _run_batch(
    orchestrator: ChainOrchestrator,
    plans: list[list[int]],
    close: bool,
    closing_id: Optional[int],
    max_workers: int,
    json_output: bool,
) -> None:
    try:
        results = run_chains(
            orchestrator, plans, max_workers=max_workers, close=close, closing_identity=closing_id
        )
    except SetupFailure as exc:
        click.echo(f"Error: setup failed: {exc}", err=True)
        sys.exit(ExitCode.SETUP_FAILED.value)

    exit_code = ExitCode.VERIFIED
    rows = []
    for idx, result in enumerate(results, start=1):
        if result.error is not None:
            code = _exit_code_for(result.error)
            rows.append({"chain": idx, "plan": plans[idx - 1], "error": str(result.error)})
            if not json_output:
                click.echo(f"chain {idx}: {plans[idx - 1]} failed: {result.error}")
        else:
            code = ExitCode.PROOF_INVALID if result.verdict is CycleVerdict.INVALID_PROOF else ExitCode.VERIFIED
            row = {"chain": idx, "plan": plans[idx - 1]}
            row.update(result.report.to_dict())
            rows.append(row)
            if not json_output:
                click.echo(f"chain {idx}: commitment {result.identities} {result.verdict.message}")
        if exit_code is ExitCode.VERIFIED:
            exit_code = code

    if json_output:
        click.echo(json.dumps({"workers": max_workers, "chains": rows}, indent=2))
    if exit_code is not ExitCode.VERIFIED:
        sys.exit(exit_code.value)


def _fail(json_output: bool, steps: list[list[int]], message: str, step_index: Optional[int]) -> None:
    if json_output:
        click.echo(json.dumps({"steps": steps, "error": message, "failed_step": step_index}, indent=2))
    else:
        click.echo(f"Error: {message}", err=True)


if __name__ == "__main__":
    main()
