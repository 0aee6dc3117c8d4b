# cli.py
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from chaindeploy import dag
from chaindeploy.artifacts import ArtifactStore
from chaindeploy.chain import NamedAccounts, Web3ChainClient
from chaindeploy.config import load_settings
from chaindeploy.environment import DeployEnvironment
from chaindeploy.errors import CyclicDependency, DeployError, UnknownStep
from chaindeploy.ledger import DEFAULT_LEDGER_DIR, FileLedger
from chaindeploy.loader import DEFAULT_SCRIPT, load_registry
from chaindeploy.orchestrator import Orchestrator
from chaindeploy.registry import ALL
from chaindeploy.ui.console import Console, get_console, set_console
from chaindeploy.verify import EtherscanVerifier


def find_deploy_scripts() -> list[Path]:
    """deploy.py first, then any *_deploy.py in the current directory."""
    scripts = []
    current_dir = Path(".")

    default_script = current_dir / DEFAULT_SCRIPT
    if default_script.exists():
        scripts.append(default_script)

    for path in current_dir.glob("*_deploy.py"):
        if path != default_script:
            scripts.append(path)

    return sorted(scripts)


def discover_script(script_arg: str | None) -> Path:
    """
    Resolve the deploy script from --script or by looking around.

    Raises:
        SystemExit: If no script, or more than one candidate, is found
    """
    console = get_console()

    if script_arg:
        script_path = Path(script_arg)
        if not script_path.exists() and script_path.suffix != ".py":
            script_path = Path(str(script_path) + ".py")
        if not script_path.exists():
            console.print_error(
                "Deploy script not found",
                f"Could not find deploy script: {script_arg}",
                suggestion="Create a deploy script or point at one:\n  chaindeploy deploy --script my_deploy.py",
            )
            sys.exit(1)
        return script_path

    scripts = find_deploy_scripts()

    if len(scripts) == 0:
        console.print_error(
            "No deploy script found",
            "Could not find any deploy scripts.",
            details=["Looked for:", f"  {DEFAULT_SCRIPT}", "  *_deploy.py"],
            suggestion=f"Create {DEFAULT_SCRIPT} or pass --script.",
        )
        sys.exit(1)

    if len(scripts) > 1:
        console.print_error(
            "Multiple deploy scripts found",
            "Found multiple deploy scripts. Please specify which one to use:",
            details=["\n".join(f"  {s}" for s in scripts)],
            suggestion=f"  chaindeploy deploy --script {scripts[0]}",
        )
        sys.exit(1)

    return scripts[0]


def _fail(ctx, exc: Exception) -> None:
    console = get_console()
    if isinstance(exc, (UnknownStep, CyclicDependency)):
        console.print_error("Planning failed", str(exc), suggestion="Nothing was deployed.")
    else:
        console.print_exception(exc)
    sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (debug logging and stack traces)",
)
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help="Load settings from this .env file")
@click.pass_context
def cli(ctx, debug, env_file):
    """chaindeploy: dependency-ordered, idempotent contract deployments."""
    console = Console(debug=debug)
    set_console(console)
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["env_file"] = env_file


tags_option = click.option(
    "--tags", "tags", multiple=True, default=(ALL,), show_default=True,
    help="Step name or tag to deploy (repeatable); 'all' for every step",
)
script_option = click.option(
    "--script", default=None, help=f"Deploy script path (defaults to {DEFAULT_SCRIPT} if present)",
)


@cli.command()
@script_option
@tags_option
@click.pass_context
def plan(ctx, script, tags):
    """Show the execution order without touching any chain."""
    console = get_console()
    script_path = discover_script(script)
    try:
        registry = load_registry(script_path)
        console.print_plan(dag.plan(registry, list(tags) or [ALL]))
    except (DeployError, FileNotFoundError, TypeError, ValueError) as e:
        _fail(ctx, e)


@cli.command()
@script_option
@tags_option
@click.option("--network", required=True, help="Target network name (e.g. sepolia, localhost)")
@click.option("--deployer", default="deployer", show_default=True, help="Named account that signs deployments")
@click.option("--ledger-dir", default=None, help="Ledger directory (default: $CHAINDEPLOY_LEDGER_DIR or ./deployments)")
@click.option("--artifacts-dir", default=None, help="Compiled artifacts directory (default: ./artifacts)")
@click.option("--workers", default=1, show_default=True, type=int, help="Steps deployed in parallel per stage")
@click.option("--verify/--no-verify", default=True, show_default=True, help="Verify sources on the explorer")
@click.pass_context
def deploy(ctx, script, tags, network, deployer, ledger_dir, artifacts_dir, workers, verify):
    """Deploy the requested steps (and their dependencies) to a network."""
    console = get_console()
    script_path = discover_script(script)

    try:
        settings = load_settings(network, roles=(deployer,), dotenv_path=ctx.obj.get("env_file"))
        registry = load_registry(script_path)

        ledger = FileLedger(network, ledger_dir or settings.ledger_dir)
        artifacts = ArtifactStore(artifacts_dir or settings.artifacts_dir)
        chain = Web3ChainClient.from_rpc(settings.rpc_url)
        accounts = NamedAccounts.from_keys(network, settings.account_keys)
        env = DeployEnvironment(network, chain, accounts, artifacts, ledger, default_role=deployer)

        if verify and settings.can_verify:
            verifier = EtherscanVerifier(
                settings.etherscan_api_url,
                settings.etherscan_api_key,
                artifacts,
                timeout=settings.verify_timeout,
            )
        else:
            if verify and not settings.is_local:
                console.print_info("Verification disabled: no explorer API URL/key configured")
            verifier = None

        orchestrator = Orchestrator(
            registry,
            ledger,
            chain,
            environment=env,
            verifier=verifier,
            max_workers=workers,
            verify_timeout=settings.verify_timeout,
        )

        console.print_run_started(
            network=network,
            script=script_path.name,
            step_count=len(registry),
            deployer=deployer,
        )
        report = orchestrator.run(tags)
        console.print_report(report)

        if not report.ok:
            sys.exit(1)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except (DeployError, FileNotFoundError, TypeError, ValueError) as e:
        _fail(ctx, e)


@cli.group()
def ledger():
    """Inspect or edit recorded deployments."""


@ledger.command("show")
@click.option("--network", required=True, help="Network whose ledger to show")
@click.option("--ledger-dir", default=None, help="Ledger directory")
@click.pass_context
def ledger_show(ctx, network, ledger_dir):
    """List recorded deployments for a network."""
    console = get_console()
    settings_dir = ledger_dir or _ledger_dir_from_env(ctx)
    try:
        entries = FileLedger(network, settings_dir).entries()
    except ValueError as e:
        _fail(ctx, e)
    if not entries:
        console.print_info(f"No deployments recorded for {network}")
        return
    console.print_header(f"LEDGER ({network})")
    for e in entries:
        flag = "fresh" if e.last_run_freshly_deployed else "reused"
        console.print_info(f"  {e.step_name}: {e.address} ({flag}, ts={e.timestamp})")


@ledger.command("forget")
@click.argument("step")
@click.option("--network", required=True, help="Network whose record to delete")
@click.option("--ledger-dir", default=None, help="Ledger directory")
@click.option("--yes", is_flag=True, default=False, help="Do not ask for confirmation")
@click.pass_context
def ledger_forget(ctx, step, network, ledger_dir, yes):
    """Delete STEP's record so the next run re-checks it from scratch."""
    console = get_console()
    try:
        store = FileLedger(network, ledger_dir or _ledger_dir_from_env(ctx))
        recorded = store.get(step)
    except ValueError as e:
        _fail(ctx, e)
    if recorded is None:
        console.print_error("Nothing to forget", f"No record for '{step}' on {network}")
        sys.exit(1)
    if not yes:
        click.confirm(f"Forget '{step}' on {network}?", abort=True)
    store.delete(step)
    console.print_info(f"Forgot {step} on {network}")


def _ledger_dir_from_env(ctx) -> Path:
    # ledger commands need no RPC, only the directory setting
    load_dotenv(ctx.obj.get("env_file"))
    return Path(os.environ.get("CHAINDEPLOY_LEDGER_DIR") or DEFAULT_LEDGER_DIR)


if __name__ == "__main__":
    cli()
