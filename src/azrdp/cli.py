"""azrdp command-line interface.

Commands:
    create    Create an RDP VM and save its credentials
    list      List saved VMs
    get       Show IP and credentials for a saved VM
    start     Start a VM
    stop      Deallocate a VM
    delete    Delete a VM and its NICs, public IPs, NSGs and OS disk
    forget    Drop saved credentials without touching Azure
    vms       Show the Azure-side VM table
    config    Show or change configuration
    console   Interactive chat-style command loop
"""

import logging
import sys
from dataclasses import dataclass, field

import click
from rich.console import Console
from rich.table import Table

from azrdp import __version__
from azrdp.azure_cli_executor import AzureCLIError, AzureCLIExecutor
from azrdp.config_manager import AzrdpConfig, ConfigError, ConfigManager
from azrdp.credential_store import CredentialStore, CredentialStoreError
from azrdp.dispatcher import CommandDispatcher
from azrdp.vm_lifecycle import DeletionResult, VMLifecycleManager
from azrdp.vm_lifecycle_control import VMLifecycleController
from azrdp.vm_provisioning import VMProvisioner, VMProvisioningError

logger = logging.getLogger(__name__)

console = Console()

# Identity used for the local console transport
LOCAL_USER = "local"


@dataclass
class AppContext:
    """Process-wide objects, built once and shared by every command."""

    config: AzrdpConfig
    gateway: AzureCLIExecutor = field(default_factory=AzureCLIExecutor)
    config_path: str | None = None
    _store: CredentialStore | None = None

    @property
    def store(self) -> CredentialStore:
        if self._store is None:
            self._store = CredentialStore(self.config.credentials_file)
            self._store.load()
        return self._store

    @property
    def provisioner(self) -> VMProvisioner:
        return VMProvisioner(self.gateway, self.config)

    @property
    def lifecycle(self) -> VMLifecycleManager:
        return VMLifecycleManager(
            self.gateway,
            poll_interval=self.config.poll_interval,
            max_attempts=self.config.poll_max_attempts,
        )

    @property
    def control(self) -> VMLifecycleController:
        return VMLifecycleController(self.gateway)

    def resource_group(self, cli_value: str | None) -> str:
        return ConfigManager.get_resource_group(cli_value, self.config)


pass_app = click.make_pass_decorator(AppContext)

resource_group_option = click.option("--resource-group", "--rg", help="Resource group", type=str)


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group(invoke_without_command=True)
@click.option("--config", "config_path", help="Config file path", type=click.Path())
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """azrdp - short-lived Azure RDP VMs.

    \b
    EXAMPLES:
        $ azrdp create my-rdp
        $ azrdp get my-rdp
        $ azrdp stop my-rdp
        $ azrdp delete my-rdp --yes

    \b
    CONFIGURATION:
        Config file: ~/.azrdp/config.toml
        Set defaults: resource_group, location, admin_username
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)

    try:
        config = ConfigManager.load_config(config_path)
    except ConfigError as e:
        _fail(str(e))
        return

    ctx.obj = AppContext(config=config, config_path=config_path)


@main.command()
@click.argument("vm_name", type=str)
@resource_group_option
@click.option("--location", help="Azure region", type=str)
@click.option("--username", help="Admin username", type=str)
@pass_app
def create(
    app: AppContext,
    vm_name: str,
    resource_group: str | None,
    location: str | None,
    username: str | None,
) -> None:
    """Create an RDP VM and save its credentials.

    \b
    Examples:
        azrdp create my-rdp
        azrdp create my-rdp --location westeurope --username admin1
    """
    try:
        rg = app.resource_group(resource_group)
        click.echo(f"Creating VM {vm_name} in {rg}...")
        creds = app.provisioner.create_vm(
            vm_name,
            rg,
            location or app.config.location,
            username or app.config.admin_username,
        )
        app.store.save(vm_name, creds)
    except (ConfigError, VMProvisioningError, AzureCLIError, CredentialStoreError) as e:
        _fail(f"Failed to create VM {vm_name}: {e}")
        return

    try:
        ip = app.control.get_ip(vm_name, rg)
    except AzureCLIError as e:
        logger.warning(f"Could not retrieve IP: {e}")
        ip = "unavailable"

    click.echo(f"\nRDP VM created: {vm_name}")
    click.echo(f"  IP:       {ip}")
    click.echo(f"  Username: {creds.username}")
    click.echo(f"  Password: {creds.password}")


@main.command(name="list")
@pass_app
def list_command(app: AppContext) -> None:
    """List VMs with saved credentials."""
    saved = app.store.list()
    if not saved:
        console.print("[yellow]No VMs saved.[/yellow]")
        return

    table = Table(title="Saved VMs", show_header=True)
    table.add_column("VM Name", style="cyan", no_wrap=True)
    table.add_column("Username", style="green")
    for name, username in saved:
        table.add_row(name, username)
    console.print(table)


@main.command()
@click.argument("vm_name", type=str)
@resource_group_option
@pass_app
def get(app: AppContext, vm_name: str, resource_group: str | None) -> None:
    """Show IP and credentials for a saved VM."""
    creds = app.store.get(vm_name)
    if creds is None:
        _fail(f"VM not found: {vm_name}. Use 'azrdp list' to see saved VMs.")
        return

    try:
        ip = app.control.get_ip(vm_name, app.resource_group(resource_group))
    except (ConfigError, AzureCLIError) as e:
        logger.warning(f"VM {vm_name} is saved locally but may not be active on Azure: {e}")
        ip = "unavailable"

    click.echo(f"VM:       {vm_name}")
    click.echo(f"IP:       {ip}")
    click.echo(f"Username: {creds.username}")
    click.echo(f"Password: {creds.password}")


@main.command()
@click.argument("vm_name", type=str)
@resource_group_option
@pass_app
def start(app: AppContext, vm_name: str, resource_group: str | None) -> None:
    """Start a VM."""
    try:
        rg = app.resource_group(resource_group)
        app.control.start_vm(vm_name, rg)
    except (ConfigError, AzureCLIError) as e:
        _fail(f"Failed to start VM {vm_name}: {e}")
        return
    click.echo(f"VM {vm_name} started. Use 'azrdp get {vm_name}' for its IP.")


@main.command()
@click.argument("vm_name", type=str)
@resource_group_option
@pass_app
def stop(app: AppContext, vm_name: str, resource_group: str | None) -> None:
    """Deallocate a VM so compute is no longer billed."""
    try:
        rg = app.resource_group(resource_group)
        app.control.stop_vm(vm_name, rg)
    except (ConfigError, AzureCLIError) as e:
        _fail(f"Failed to stop VM {vm_name}: {e}")
        return
    click.echo(f"VM {vm_name} deallocated.")


def _print_deletion(result: DeletionResult) -> None:
    if result.resources_deleted:
        table = Table(title=f"Deleted resources for {result.vm_name}", show_header=False)
        table.add_column("Resource", style="cyan")
        for resource in result.resources_deleted:
            table.add_row(resource)
        console.print(table)

    if result.timed_out:
        console.print("[yellow]Azure did not confirm VM deletion in time; cleanup ran anyway.[/yellow]")
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


@main.command()
@click.argument("vm_name", type=str)
@resource_group_option
@click.option("--yes", "-y", "force", is_flag=True, help="Skip confirmation prompt")
@pass_app
def delete(app: AppContext, vm_name: str, resource_group: str | None, force: bool) -> None:
    """Delete a VM and its NICs, public IPs, NSGs and OS disk.

    \b
    Examples:
        azrdp delete my-rdp
        azrdp delete my-rdp --yes
    """
    try:
        rg = app.resource_group(resource_group)
    except ConfigError as e:
        _fail(str(e))
        return

    if not force and not click.confirm(
        f"Delete VM {vm_name} and all associated resources? This cannot be undone.",
        default=False,
    ):
        click.echo("Deletion cancelled.")
        return

    result = app.lifecycle.delete_vm(vm_name, rg)
    _print_deletion(result)

    if not result.success:
        _fail(result.message)
        return

    try:
        app.store.remove(vm_name)
    except CredentialStoreError as e:
        logger.error(f"Failed to remove saved credentials for {vm_name}: {e}")
        console.print(f"[yellow]Warning:[/yellow] Could not update local database: {e}")
    console.print(f"[green]{result.message}[/green]")


@main.command()
@click.argument("vm_name", type=str)
@pass_app
def forget(app: AppContext, vm_name: str) -> None:
    """Remove saved credentials without touching Azure."""
    if app.store.remove(vm_name):
        click.echo(f"Removed saved credentials for {vm_name}.")
    else:
        click.echo(f"No saved credentials for {vm_name}.")


@main.command()
@resource_group_option
@pass_app
def vms(app: AppContext, resource_group: str | None) -> None:
    """Show the Azure-side VM table for the resource group."""
    try:
        click.echo(app.control.list_vms(app.resource_group(resource_group)))
    except (ConfigError, AzureCLIError) as e:
        _fail(f"Failed to list VMs: {e}")


@main.group()
def config() -> None:
    """Show or change configuration."""
    pass


@config.command(name="show")
@pass_app
def config_show(app: AppContext) -> None:
    """Show effective configuration (file + environment)."""
    table = Table(title="azrdp configuration", show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in app.config.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@config.command(name="set")
@click.argument("key", type=str)
@click.argument("value", type=str)
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a configuration value in the config file."""
    config_path = getattr(ctx.obj, "config_path", None)
    try:
        ConfigManager.update_config(config_path, **{key: AzrdpConfig.parse_value(key, value)})
    except ConfigError as e:
        _fail(str(e))
        return
    click.echo(f"Set {key} = {value}")


@main.command(name="console")
@pass_app
def console_command(app: AppContext) -> None:
    """Run chat commands (/create, /list, /delete ...) from the terminal.

    Deletions run in the background; keep typing commands while they do.
    Type /quit or press Ctrl-D to exit.
    """
    dispatcher = CommandDispatcher(
        store=app.store,
        provisioner=app.provisioner,
        lifecycle=app.lifecycle,
        control=app.control,
        config=app.config,
        send=lambda _chat_id, text: click.echo(f"\n{text}\n"),
        owner_id=LOCAL_USER,
    )

    click.echo("azrdp console. Type /help for commands, /quit to exit.")
    try:
        while True:
            try:
                line = input("> ")
            except EOFError:
                break
            if line.strip() in ("/quit", "/exit"):
                break
            dispatcher.handle(LOCAL_USER, LOCAL_USER, line.strip())
    except KeyboardInterrupt:
        click.echo("")
    finally:
        click.echo("Waiting for background deletions to finish...")
        dispatcher.close(wait=True)


__all__ = ["main"]
