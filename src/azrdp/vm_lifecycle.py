"""VM lifecycle management module.

This module handles VM deprovisioning: deleting a VM together with the
resources Azure leaves behind (NICs, public IPs, NSGs, OS disk).

Workflow (fixed order, each step best-effort unless noted):
1. Discover the OS disk id and the NICs attached to the VM
2. Delete the VM                                  (fatal on failure)
3. Poll until `az vm show` fails, up to max_attempts
4. Delete discovered NICs
5. Delete public IPs whose name contains the VM name
6. Delete NSGs whose name contains the VM name
7. Delete the OS disk
8. Return a DeletionResult

Every failure after step 2 is recorded in DeletionResult.warnings and the
workflow carries on. A confirmation timeout in step 3 is also only a
warning: the dependent resources are still attempted.

Public IPs and NSGs are matched by name substring, not by attachment. A VM
named "rdp" also matches "rdp2-ip", so pick VM names that are not
substrings of each other within one resource group.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from azrdp.azure_cli_executor import AzureCLIError, AzureCLIExecutor

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_ATTEMPTS = 24  # 2 minutes at 5s


class VMLifecycleError(Exception):
    """Raised when VM lifecycle operations fail."""

    pass


@dataclass
class DeletionResult:
    """Result from VM deletion operation."""

    vm_name: str
    success: bool
    message: str
    resources_deleted: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    timed_out: bool = False
    error: Exception | None = None

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def __repr__(self) -> str:
        status = "SUCCESS" if self.success else "FAILED"
        result = f"[{status}] {self.vm_name}: {self.message}"
        if self.warnings:
            result += f" ({len(self.warnings)} warnings)"
        return result


@dataclass
class DependentResources:
    """Resources discovered before the VM is deleted."""

    os_disk_id: str | None = None
    nic_names: list[str] = field(default_factory=list)

    @property
    def os_disk_name(self) -> str | None:
        if not self.os_disk_id:
            return None
        return self.os_disk_id.rstrip("/").split("/")[-1]


@dataclass
class _DeprovisionRun:
    vm_name: str
    resource_group: str
    resources: DependentResources = field(default_factory=DependentResources)
    deleted: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    timed_out: bool = False

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)


def _tsv_lines(output: str) -> list[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]


class VMLifecycleManager:
    """Delete VMs and their dependent resources.

    Args:
        gateway: Azure CLI executor
        poll_interval: Seconds between deletion checks
        max_attempts: Deletion checks before giving up waiting
        sleep: Wait function between checks (injectable for tests)
    """

    def __init__(
        self,
        gateway: AzureCLIExecutor,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise VMLifecycleError(f"max_attempts must be at least 1, got {max_attempts}")
        self.gateway = gateway
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    def delete_vm(self, vm_name: str, resource_group: str) -> DeletionResult:
        """Delete VM and all associated resources.

        Never raises for Azure failures: a failed VM deletion is returned as
        a DeletionResult with success=False, every other failure ends up in
        DeletionResult.warnings.

        Args:
            vm_name: VM name to delete
            resource_group: Resource group name

        Returns:
            DeletionResult object
        """
        logger.info(f"Deleting VM: {vm_name} in resource group: {resource_group}")
        run = _DeprovisionRun(vm_name=vm_name, resource_group=resource_group)

        logger.info(f"Getting VM resources information for {vm_name}...")
        self._discover_os_disk(run)
        self._discover_nics(run)

        try:
            self._delete_vm_resource(run)
        except Exception as e:
            logger.error(f"Error deleting VM {vm_name}: {e}")
            return DeletionResult(
                vm_name=vm_name,
                success=False,
                message=f"Failed to delete VM: {e}",
                warnings=run.warnings,
                error=e,
            )

        run.timed_out = not self._await_deletion(run)
        if run.timed_out:
            run.warn(f"Timeout reached while waiting for VM {vm_name} to be deleted")

        cleanup_steps: list[tuple[str, Callable[[_DeprovisionRun], None]]] = [
            ("network interfaces", self._delete_nics),
            ("public IPs", self._delete_public_ips),
            ("network security groups", self._delete_nsgs),
            ("OS disk", self._delete_os_disk),
        ]
        for step_name, step in cleanup_steps:
            try:
                step(run)
            except Exception as e:
                run.warn(f"Error cleaning up {step_name} for {vm_name}: {e}")

        logger.info(f"Deleted VM {vm_name} and related resources")
        return DeletionResult(
            vm_name=vm_name,
            success=True,
            message=f"VM {vm_name} and all associated resources deleted successfully",
            resources_deleted=run.deleted,
            warnings=run.warnings,
            timed_out=run.timed_out,
        )

    async def delete_vm_async(self, vm_name: str, resource_group: str) -> DeletionResult:
        """Run delete_vm on a worker thread so an event loop stays responsive."""
        return await asyncio.to_thread(self.delete_vm, vm_name, resource_group)

    def _discover_os_disk(self, run: _DeprovisionRun) -> None:
        try:
            disk_id = self.gateway.run(
                [
                    "vm",
                    "show",
                    "-g",
                    run.resource_group,
                    "-n",
                    run.vm_name,
                    "--query",
                    "storageProfile.osDisk.managedDisk.id",
                    "-o",
                    "tsv",
                ]
            ).strip()
        except Exception as e:
            run.warn(f"Could not retrieve OS disk information: {e}")
            return

        if disk_id:
            run.resources.os_disk_id = disk_id
            logger.info(f"Found OS disk: {run.resources.os_disk_name}")

    def _discover_nics(self, run: _DeprovisionRun) -> None:
        query = (
            f"[?virtualMachine.id && contains(virtualMachine.id, '{run.vm_name}')].name"
        )
        try:
            output = self.gateway.run(
                ["network", "nic", "list", "-g", run.resource_group, "--query", query, "-o", "tsv"]
            )
        except Exception as e:
            run.warn(f"Could not retrieve NICs information: {e}")
            return

        run.resources.nic_names = _tsv_lines(output)
        if run.resources.nic_names:
            logger.info(f"Found NICs: {', '.join(run.resources.nic_names)}")

    def _delete_vm_resource(self, run: _DeprovisionRun) -> None:
        logger.info(f"Deleting VM {run.vm_name}...")
        self.gateway.run(["vm", "delete", "--yes", "-g", run.resource_group, "-n", run.vm_name])
        run.deleted.append(f"VM: {run.vm_name}")

    def _vm_exists(self, run: _DeprovisionRun) -> bool:
        # az vm show fails once the VM is gone
        try:
            self.gateway.run(["vm", "show", "-g", run.resource_group, "-n", run.vm_name])
        except AzureCLIError:
            return False
        return True

    def _await_deletion(self, run: _DeprovisionRun) -> bool:
        """Poll until the VM is gone.

        Returns:
            True if deletion was confirmed, False if attempts ran out
        """
        for attempt in range(1, self.max_attempts + 1):
            if not self._vm_exists(run):
                logger.info(f"VM {run.vm_name} successfully deleted")
                return True
            logger.info(
                f"Waiting for VM {run.vm_name} to be deleted... ({attempt}/{self.max_attempts})"
            )
            self._sleep(self.poll_interval)
        return False

    def _delete_nics(self, run: _DeprovisionRun) -> None:
        if not run.resources.nic_names:
            return

        logger.info(f"Deleting NICs linked to VM {run.vm_name}...")
        for nic_name in run.resources.nic_names:
            try:
                logger.info(f"Deleting NIC: {nic_name}")
                self.gateway.run(["network", "nic", "delete", "-g", run.resource_group, "-n", nic_name])
                run.deleted.append(f"NIC: {nic_name}")
            except Exception as e:
                run.warn(f"Error deleting NIC {nic_name}: {e}")

    def _delete_by_name_match(self, run: _DeprovisionRun, kind: str, label: str) -> None:
        """Delete every `az network <kind>` whose name contains the VM name."""
        logger.info(f"Deleting {label}s related to VM {run.vm_name}...")
        try:
            output = self.gateway.run(
                [
                    "network",
                    kind,
                    "list",
                    "-g",
                    run.resource_group,
                    "--query",
                    f"[?contains(name, '{run.vm_name}')].name",
                    "-o",
                    "tsv",
                ]
            )
        except Exception as e:
            run.warn(f"Error listing {label}s: {e}")
            return

        for name in _tsv_lines(output):
            try:
                logger.info(f"Deleting {label}: {name}")
                self.gateway.run(["network", kind, "delete", "-g", run.resource_group, "-n", name])
                run.deleted.append(f"{label}: {name}")
            except Exception as e:
                run.warn(f"Error deleting {label} {name}: {e}")

    def _delete_public_ips(self, run: _DeprovisionRun) -> None:
        self._delete_by_name_match(run, "public-ip", "Public IP")

    def _delete_nsgs(self, run: _DeprovisionRun) -> None:
        self._delete_by_name_match(run, "nsg", "NSG")

    def _delete_os_disk(self, run: _DeprovisionRun) -> None:
        disk_name = run.resources.os_disk_name
        if not disk_name:
            return

        logger.info(f"Deleting OS disk: {disk_name}")
        try:
            self.gateway.run(["disk", "delete", "-g", run.resource_group, "-n", disk_name, "--yes"])
            run.deleted.append(f"Disk: {disk_name}")
        except Exception as e:
            run.warn(f"Error deleting OS disk {disk_name}: {e}")


__all__ = [
    "DeletionResult",
    "DependentResources",
    "VMLifecycleError",
    "VMLifecycleManager",
]
