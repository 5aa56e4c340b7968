"""Chat command dispatcher.

Maps slash commands from a chat transport to provisioning, lifecycle and
credential-store calls, and renders replies. The transport only needs to
supply a ``send(chat_id, text)`` callable and feed incoming messages to
CommandDispatcher.handle().

Commands:
    /start, /help                  open to everyone
    /create <name>                 create an RDP VM and store its credentials
    /list                          list stored VMs
    /get <name>                    show IP and credentials
    /startvm <name>                start, report the IP in a follow-up
    /stopvm <name>                 deallocate, confirm in a follow-up
    /delete <name>                 ask for confirmation
    /delete_confirm <name>         deprovision in the background
    /delete_cancel                 abandon a pending deletion
    /forget <name>                 drop stored credentials only

Everything except /start and /help is restricted to the configured owner.
"""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from azrdp.config_manager import AzrdpConfig, ConfigError, ConfigManager
from azrdp.credential_store import CredentialStore
from azrdp.follow_up import FollowUpHandle, FollowUpScheduler
from azrdp.vm_lifecycle import DeletionResult, VMLifecycleManager
from azrdp.vm_lifecycle_control import VMLifecycleController
from azrdp.vm_provisioning import VMProvisioner

logger = logging.getLogger(__name__)

SendFn = Callable[[Any, str], None]

START_FOLLOW_UP_DELAY = 10.0
STOP_FOLLOW_UP_DELAY = 5.0

COMMANDS: list[tuple[str, str]] = [
    ("start", "Start the bot"),
    ("help", "Show available commands"),
    ("create", "Create a new RDP VM (format: /create name)"),
    ("list", "List all saved VMs"),
    ("get", "Get credentials for a specific VM (format: /get name)"),
    ("startvm", "Start a VM (format: /startvm name)"),
    ("stopvm", "Stop a VM (format: /stopvm name)"),
    ("delete", "Delete a VM and associated resources (format: /delete name)"),
    ("forget", "Remove saved credentials without touching Azure (format: /forget name)"),
]

PUBLIC_COMMANDS = {"start", "help"}


@dataclass
class Command:
    """A parsed slash command."""

    name: str
    argument: str | None = None


def parse_command(text: str | None) -> Command | None:
    """Parse ``/name [argument]``; returns None for non-command text.

    A ``@botname`` suffix on the command is dropped.
    """
    if not text or not text.startswith("/"):
        return None

    head, _, rest = text[1:].strip().partition(" ")
    name = head.split("@", 1)[0].lower()
    if not name:
        return None
    argument = rest.strip() or None
    return Command(name=name, argument=argument)


class CommandDispatcher:
    """Route chat commands to azrdp operations and send the replies."""

    def __init__(
        self,
        store: CredentialStore,
        provisioner: VMProvisioner,
        lifecycle: VMLifecycleManager,
        control: VMLifecycleController,
        config: AzrdpConfig,
        send: SendFn,
        scheduler: FollowUpScheduler | None = None,
        executor: ThreadPoolExecutor | None = None,
        owner_id: Any = None,
        start_follow_up_delay: float = START_FOLLOW_UP_DELAY,
        stop_follow_up_delay: float = STOP_FOLLOW_UP_DELAY,
    ) -> None:
        self.store = store
        self.provisioner = provisioner
        self.lifecycle = lifecycle
        self.control = control
        self.config = config
        self.send = send
        self.scheduler = scheduler or FollowUpScheduler()
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="azrdp-delete")
        self.owner_id = owner_id if owner_id is not None else config.owner_id
        self.start_follow_up_delay = start_follow_up_delay
        self.stop_follow_up_delay = stop_follow_up_delay
        self._deletions: dict[str, Future] = {}
        self._deletions_lock = threading.Lock()

        self._handlers: dict[str, Callable[[Any, str | None], Any]] = {
            "start": self._cmd_start,
            "help": self._cmd_help,
            "create": self._cmd_create,
            "list": self._cmd_list,
            "get": self._cmd_get,
            "startvm": self._cmd_startvm,
            "stopvm": self._cmd_stopvm,
            "delete": self._cmd_delete,
            "delete_confirm": self._cmd_delete_confirm,
            "delete_cancel": self._cmd_delete_cancel,
            "forget": self._cmd_forget,
        }

    def handle(self, user_id: Any, chat_id: Any, text: str | None) -> Future | FollowUpHandle | None:
        """Handle one incoming message.

        Returns:
            The background Future (deletions) or FollowUpHandle (start/stop)
            the command started, otherwise None
        """
        command = parse_command(text)
        if command is None:
            return None

        handler = self._handlers.get(command.name)
        if handler is None:
            self.send(chat_id, "❓ Unknown command. Use /help to see available commands.")
            return None

        if command.name not in PUBLIC_COMMANDS and not self._is_owner(user_id):
            logger.warning(f"Rejected /{command.name} from unauthorized user {user_id}")
            self.send(chat_id, "❌ Unauthorized. This command is only available to the bot owner.")
            return None

        return handler(chat_id, command.argument)

    def close(self, wait: bool = True) -> None:
        """Cancel pending follow-ups and stop the deletion executor."""
        self.scheduler.shutdown()
        self.executor.shutdown(wait=wait)

    def _is_owner(self, user_id: Any) -> bool:
        return self.owner_id is not None and user_id == self.owner_id

    def _require_name(self, chat_id: Any, command: str, name: str | None) -> str | None:
        if not name:
            self.send(chat_id, f"⚠️ Usage: /{command} <name>")
            return None
        return name

    def _resource_group(self, chat_id: Any) -> str | None:
        try:
            return ConfigManager.get_resource_group(None, self.config)
        except ConfigError as e:
            self.send(chat_id, f"❌ {e}")
            return None

    def _cmd_start(self, chat_id: Any, _arg: str | None) -> None:
        self.send(
            chat_id,
            "👋 Welcome to the Azure RDP bot!\n\n"
            "This bot creates and manages Windows RDP servers on Azure.\n\n"
            "Use /help to see available commands.",
        )

    def _cmd_help(self, chat_id: Any, _arg: str | None) -> None:
        lines = "\n".join(f"/{name} - {description}" for name, description in COMMANDS)
        self.send(
            chat_id,
            f"📚 Available Commands:\n\n{lines}\n\n"
            "Note: Most commands are restricted to the bot owner.",
        )

    def _cmd_create(self, chat_id: Any, name: str | None) -> None:
        name = self._require_name(chat_id, "create", name)
        if name is None:
            return
        resource_group = self._resource_group(chat_id)
        if resource_group is None:
            return

        self.send(chat_id, f"🔄 Creating VM: {name}...\n\n⏳ Provisioning Azure resources...")
        try:
            creds = self.provisioner.create_vm(
                name, resource_group, self.config.location, self.config.admin_username
            )
            self.store.save(name, creds)
        except Exception as e:
            logger.error(f"Failed to create {name}: {e}")
            self.send(chat_id, f"❌ Failed to create RDP: {name}\n\nError: {e}")
            return

        try:
            ip = self.control.get_ip(name, resource_group)
        except Exception as e:
            logger.warning(f"Could not get IP for new VM {name}: {e}")
            ip = "unavailable (use /get later)"

        self.send(
            chat_id,
            f"✅ RDP Created Successfully: {name}\n\n"
            "📋 Connection Details:\n"
            f"🖥 IP: {ip}\n"
            f"👤 Username: {creds.username}\n"
            f"🔑 Password: {creds.password}\n\n"
            "ℹ️ You can connect using Remote Desktop.\n"
            "🔄 Use /startvm or /stopvm to manage this VM.",
        )

    def _cmd_list(self, chat_id: Any, _arg: str | None) -> None:
        listing = self.store.format_listing()
        if not listing:
            self.send(chat_id, "📋 Saved VMs:\n\nNo VMs saved.")
            return
        self.send(chat_id, f"📋 Saved VMs:\n\n{listing}\n\nUse /get <name> to view credentials.")

    def _cmd_get(self, chat_id: Any, name: str | None) -> None:
        name = self._require_name(chat_id, "get", name)
        if name is None:
            return

        creds = self.store.get(name)
        if creds is None:
            self.send(chat_id, f"❌ VM not found: {name}\n\nUse /list to see available VMs.")
            return

        resource_group = self._resource_group(chat_id)
        if resource_group is None:
            return

        try:
            ip = self.control.get_ip(name, resource_group)
        except Exception as e:
            logger.error(f"Failed to get IP for {name}: {e}")
            self.send(
                chat_id,
                f"⚠️ VM {name} exists in local database but may not be active on Azure.\n\n"
                f"Error: {e}",
            )
            return

        self.send(
            chat_id,
            f"📡 VM Details: {name}\n\n"
            f"🖥 IP: {ip}\n"
            f"👤 Username: {creds.username}\n"
            f"🔑 Password: {creds.password}\n\n"
            "ℹ️ You can connect using Remote Desktop.",
        )

    def _cmd_startvm(self, chat_id: Any, name: str | None) -> FollowUpHandle | None:
        name = self._require_name(chat_id, "startvm", name)
        if name is None:
            return None
        resource_group = self._resource_group(chat_id)
        if resource_group is None:
            return None

        self.send(chat_id, f"🔄 Starting VM: {name}...\n\nThis may take a minute.")
        try:
            self.control.start_vm(name, resource_group)
        except Exception as e:
            logger.error(f"Failed to start {name}: {e}")
            self.send(chat_id, f"❌ Failed to start VM: {name}\n\nError: {e}")
            return None

        return self.scheduler.schedule(
            self.start_follow_up_delay,
            self._report_started,
            chat_id,
            name,
            resource_group,
            name=f"startvm:{name}",
        )

    def _report_started(self, chat_id: Any, name: str, resource_group: str) -> None:
        try:
            ip = self.control.get_ip(name, resource_group)
        except Exception as e:
            logger.warning(f"Could not get IP for {name} after start: {e}")
            self.send(
                chat_id,
                f"🚀 VM {name} started, but couldn't retrieve IP.\n\n"
                "ℹ️ Use /get <name> to view details once the VM is fully started.",
            )
            return

        self.send(
            chat_id,
            f"🚀 VM {name} started successfully!\n\n"
            f"🖥 IP: {ip}\n\n"
            "ℹ️ You can now connect using Remote Desktop.",
        )

    def _cmd_stopvm(self, chat_id: Any, name: str | None) -> FollowUpHandle | None:
        name = self._require_name(chat_id, "stopvm", name)
        if name is None:
            return None
        resource_group = self._resource_group(chat_id)
        if resource_group is None:
            return None

        self.send(chat_id, f"🔄 Stopping VM: {name}...\n\nThis may take a moment.")
        try:
            self.control.stop_vm(name, resource_group)
        except Exception as e:
            logger.error(f"Failed to stop {name}: {e}")
            self.send(chat_id, f"❌ Failed to stop VM: {name}\n\nError: {e}")
            return None

        return self.scheduler.schedule(
            self.stop_follow_up_delay,
            self.send,
            chat_id,
            f"🛑 VM {name} stopped successfully!\n\n"
            "ℹ️ The VM is now deallocated and you won't be charged for compute resources.",
            name=f"stopvm:{name}",
        )

    def _cmd_delete(self, chat_id: Any, name: str | None) -> None:
        name = self._require_name(chat_id, "delete", name)
        if name is None:
            return
        self.send(
            chat_id,
            f"⚠️ Are you sure you want to delete VM {name} and all associated resources?\n\n"
            "This action cannot be undone.\n\n"
            f"Reply /delete_confirm {name} to delete it, or /delete_cancel to keep it.",
        )

    def _cmd_delete_cancel(self, chat_id: Any, _arg: str | None) -> None:
        self.send(chat_id, "🔄 Deletion cancelled. Your VM is safe.")

    def _cmd_delete_confirm(self, chat_id: Any, name: str | None) -> Future | None:
        name = self._require_name(chat_id, "delete_confirm", name)
        if name is None:
            return None
        resource_group = self._resource_group(chat_id)
        if resource_group is None:
            return None

        with self._deletions_lock:
            running = self._deletions.get(name)
            if running is not None and not running.done():
                self.send(chat_id, f"⏳ Deletion of VM {name} is already in progress.")
                return None

            self.send(chat_id, f"🔄 Deleting VM: {name} and associated resources...")
            future = self.executor.submit(self._run_deletion, chat_id, name, resource_group)
            self._deletions[name] = future

        return future

    def _run_deletion(self, chat_id: Any, name: str, resource_group: str) -> DeletionResult:
        try:
            result = self.lifecycle.delete_vm(name, resource_group)
        except Exception as e:
            logger.error(f"Unexpected error deleting {name}: {e}")
            result = DeletionResult(
                vm_name=name, success=False, message=f"Unexpected error: {e}", error=e
            )

        if not result.success:
            self.send(chat_id, f"❌ Failed to delete VM: {name}\n\nError: {result.message}")
            return result

        try:
            self.store.remove(name)
        except Exception as e:
            logger.error(f"Failed to remove credentials for {name}: {e}")
            result.warnings.append(f"Could not update local database: {e}")

        lines = [f"✅ VM {name} deleted successfully!"]
        if result.resources_deleted:
            lines.append("")
            lines.extend(f"🗑 {resource}" for resource in result.resources_deleted)
        if result.timed_out:
            lines.append("")
            lines.append("⚠️ Azure did not confirm the VM deletion in time; cleanup ran anyway.")
        if result.warnings:
            lines.append("")
            lines.append(f"⚠️ {len(result.warnings)} cleanup warnings:")
            lines.extend(f"• {warning}" for warning in result.warnings)
        self.send(chat_id, "\n".join(lines))
        return result

    def _cmd_forget(self, chat_id: Any, name: str | None) -> None:
        name = self._require_name(chat_id, "forget", name)
        if name is None:
            return

        if self.store.remove(name):
            self.send(chat_id, f"🧹 Removed saved credentials for {name}.")
        else:
            self.send(chat_id, f"ℹ️ No saved credentials for {name}.")


__all__ = ["COMMANDS", "Command", "CommandDispatcher", "parse_command"]
