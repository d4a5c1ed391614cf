"""CLI entry point for vmware2azure."""

from __future__ import annotations

import sys

import click
from rich.console import Console
from rich.table import Table

from vmware2azure import __version__
from vmware2azure.config import AppConfig, MigrationRequest, VMMigrationPlan
from vmware2azure.errors import MigrationError
from vmware2azure.utils.logging import set_log_level

console = Console()

DEFAULT_WORK_DIR = "/var/lib/vmware2azure"

# Exit status for "not finished, invoke again later" (sysexits EX_TEMPFAIL)
EXIT_PENDING = 75


def load_config(config_path: str | None) -> AppConfig:
    """Load configuration from file or environment."""
    if config_path:
        return AppConfig.from_yaml(config_path)
    try:
        return AppConfig.from_env_and_args()
    except Exception as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        console.print("Provide a --config file or set environment variables.")
        sys.exit(1)


def resolve_work_dir(work_dir: str | None, config_path: str | None) -> str:
    """An explicit --work-dir wins, then the config file's migration.work_dir."""
    if work_dir:
        return work_dir
    if config_path:
        return str(load_config(config_path).migration.work_dir)
    return DEFAULT_WORK_DIR


def load_request(config: AppConfig, plan_path: str) -> MigrationRequest:
    try:
        plan = VMMigrationPlan.from_yaml(plan_path)
    except Exception as e:
        console.print(f"[red]Invalid migration plan {plan_path}: {e}[/red]")
        sys.exit(1)
    return MigrationRequest.from_plan(config, plan)


@click.group()
@click.version_option(version=__version__, prog_name="vmware2azure")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging")
def main(verbose: bool):
    """VMware to Azure migration tool.

    Powers off a vCenter VM, converts its disk to VHD on a Windows
    conversion host, uploads it and rebuilds the VM in Azure.
    """
    if verbose:
        set_log_level("DEBUG")


@main.command()
@click.option("--plan", "plan_path", required=True, type=click.Path(exists=True), help="Migration plan YAML")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
@click.option("--wait/--no-wait", default=True,
              help="Keep polling until finished, or run a single step (for external schedulers)")
def migrate(plan_path: str, config_path: str | None, wait: bool):
    """Migrate one VM, or continue its active migration."""
    config = load_config(config_path)
    request = load_request(config, plan_path)

    from vmware2azure.pipeline.migration import OutcomeStatus
    from vmware2azure.pipeline.runner import build_runner
    from vmware2azure.vmware.client import VSphereClient

    pw = config.vmware.password.get_secret_value() if config.vmware.password else ""
    try:
        with console.status("[bold green]Connecting to vCenter..."):
            client = VSphereClient()
            client.connect(config.vmware.vcenter, config.vmware.username, pw,
                           port=config.vmware.port, insecure=config.vmware.insecure)
    except MigrationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    with client:
        runner = build_runner(config, client)
        try:
            state, outcome = runner.run(request) if wait else runner.step(request)
        except MigrationError as e:
            console.print(f"[red]{e}[/red]")
            sys.exit(1)

    if outcome.status == OutcomeStatus.COMPLETED:
        console.print(f"\n[bold green]✅ Migration {state.migration_id} complete![/bold green]")
        console.print(f"  Azure VM: {outcome.vm_resource_id}")
    elif outcome.status == OutcomeStatus.PENDING:
        console.print(f"\n[yellow]⏳ Migration {state.migration_id} waiting for '{request.vm_name}' "
                      f"to power off; run again in {outcome.retry_after}s[/yellow]")
        sys.exit(EXIT_PENDING)
    else:
        console.print(f"\n[bold red]❌ Migration {state.migration_id} failed[/bold red]")
        console.print(f"  Error: {outcome.reason}")
        for ref in outcome.resources:
            console.print(f"  Left for cleanup: {ref.kind.value.upper()} {ref.resource_id}")
        sys.exit(1)


@main.command("render-script")
@click.option("--plan", "plan_path", required=True, type=click.Path(exists=True), help="Migration plan YAML")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
def render_script(plan_path: str, config_path: str | None):
    """Print the conversion script for a plan, with secrets redacted."""
    from vmware2azure.conversion.script import ConversionScriptBuilder
    from vmware2azure.utils.redact import redact_secrets

    config = load_config(config_path)
    request = load_request(config, plan_path)
    script = ConversionScriptBuilder().build(request)
    console.print(redact_secrets(script, request.secrets()), markup=False, highlight=False)


@main.command()
@click.option("--migration-id", required=True, help="Migration ID to check")
@click.option("--work-dir", type=click.Path(), help=f"State directory (default: config or {DEFAULT_WORK_DIR})")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
def status(migration_id: str, work_dir: str | None, config_path: str | None):
    """Check the status of a migration."""
    from vmware2azure.pipeline.state import MigrationStateStore

    store = MigrationStateStore(resolve_work_dir(work_dir, config_path))
    state = store.load(migration_id)

    if not state:
        console.print(f"[red]Migration '{migration_id}' not found[/red]")
        sys.exit(1)

    console.print(f"\n[bold]Migration: {state.migration_id}[/bold]")
    console.print(f"  VM: {state.vm_name}")
    console.print(f"  Stage: {state.stage.value}")
    console.print(f"  Started: {state.started_at}")
    console.print(f"  Completed stages: {', '.join(state.completed_stages)}")
    if state.power_off_checks:
        console.print(f"  Power-off checks: {state.power_off_checks}")
    for ref in state.resource_refs():
        console.print(f"  {ref.kind.value.upper()}: {ref.resource_id}")
    if state.error:
        console.print(f"  [red]Error: {state.error}[/red]")


@main.command("list")
@click.option("--work-dir", type=click.Path(), help=f"State directory (default: config or {DEFAULT_WORK_DIR})")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
def list_migrations(work_dir: str | None, config_path: str | None):
    """List known migrations, newest first."""
    from vmware2azure.pipeline.state import MigrationStateStore

    states = MigrationStateStore(resolve_work_dir(work_dir, config_path)).list_all()
    table = Table(title="Migrations")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("VM")
    table.add_column("Stage", style="green")
    table.add_column("Started")
    table.add_column("Error", style="red")

    for state in states:
        table.add_row(
            state.migration_id,
            state.vm_name,
            state.stage.value,
            state.started_at.strftime("%Y-%m-%d %H:%M") if state.started_at else "",
            (state.error or "")[:60],
        )

    console.print(table)
    console.print(f"\n[dim]Total: {len(states)} migrations[/dim]")


@main.command()
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
def networks(config_path: str | None):
    """List virtual networks and subnets in the target subscription."""
    from vmware2azure.azure.arm import ARMClient
    from vmware2azure.azure.network import list_virtual_networks

    config = load_config(config_path)
    try:
        with console.status("[bold green]Querying Azure virtual networks..."):
            vnets = list_virtual_networks(ARMClient(config.azure))
    except MigrationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    table = Table(title=f"Virtual networks — {config.azure.subscription_id}")
    table.add_column("Network", style="cyan", no_wrap=True)
    table.add_column("Resource group")
    table.add_column("Location")
    table.add_column("Subnet", style="green")
    table.add_column("Prefix")
    table.add_column("Subnet ID", style="dim")

    for vnet in vnets:
        if not vnet.subnets:
            table.add_row(vnet.name, vnet.resource_group, vnet.location, "", "", "")
        for subnet in vnet.subnets:
            table.add_row(vnet.name, vnet.resource_group, vnet.location,
                          subnet.name, subnet.address_prefix, subnet.resource_id)

    console.print(table)


if __name__ == "__main__":
    main()
