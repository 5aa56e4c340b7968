"""VM lifecycle control module for start/stop and status queries.

Thin wrappers over single az verbs. Errors are not caught here; an
AzureCLIError reaches the caller unchanged.
"""

import logging

from azrdp.azure_cli_executor import AzureCLIExecutor

logger = logging.getLogger(__name__)


class VMLifecycleController:
    """Start, stop (deallocate) and query VMs."""

    def __init__(self, gateway: AzureCLIExecutor) -> None:
        self.gateway = gateway

    def start_vm(self, vm_name: str, resource_group: str) -> str:
        logger.info(f"Starting VM '{vm_name}'")
        return self.gateway.run(["vm", "start", "-n", vm_name, "-g", resource_group])

    def stop_vm(self, vm_name: str, resource_group: str) -> str:
        """Deallocate a VM so compute is no longer billed."""
        logger.info(f"Stopping VM '{vm_name}' (deallocate)")
        return self.gateway.run(["vm", "deallocate", "-n", vm_name, "-g", resource_group])

    def get_ip(self, vm_name: str, resource_group: str) -> str:
        """Return the VM's public IP address (empty string if it has none)."""
        output = self.gateway.run(
            ["vm", "show", "-d", "-g", resource_group, "-n", vm_name, "--query", "publicIps", "-o", "tsv"]
        )
        return output.strip()

    def list_vms(self, resource_group: str) -> str:
        """Return the Azure-side VM table for a resource group."""
        return self.gateway.run(["vm", "list", "-g", resource_group, "-d", "-o", "table"])


__all__ = ["VMLifecycleController"]
