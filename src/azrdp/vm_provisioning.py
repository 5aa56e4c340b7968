"""VM provisioning module.

Creates a Windows RDP VM:
1. Generate an admin password that satisfies the Azure complexity rule
2. az vm create with password authentication
3. Open the RDP port (3389)

No retry and no rollback: if the VM is created but opening the port fails,
the error is raised and the VM is left in place for the caller to delete.
The caller persists the returned credentials.
"""

import logging
import re

from azrdp.azure_cli_executor import AzureCLIExecutor
from azrdp.config_manager import AzrdpConfig
from azrdp.credential_store import VMRecord
from azrdp.password_policy import generate_password

logger = logging.getLogger(__name__)

RDP_PORT = 3389

# Windows computer names are further limited by Azure, but the resource name
# itself accepts this
VM_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")


class VMProvisioningError(Exception):
    """Raised when a VM cannot be provisioned."""

    pass


def validate_vm_name(vm_name: str) -> str:
    """Validate a VM name before it is used in az commands and JMESPath queries.

    Raises:
        VMProvisioningError: If the name is invalid
    """
    if not VM_NAME_PATTERN.match(vm_name or "") or vm_name.endswith((".", "-")):
        raise VMProvisioningError(
            f"Invalid VM name: {vm_name!r}. Use 1-64 letters, digits, '.', '_' or '-', "
            "starting with a letter or digit."
        )
    return vm_name


class VMProvisioner:
    """Provision RDP VMs through the Azure CLI."""

    def __init__(self, gateway: AzureCLIExecutor, config: AzrdpConfig | None = None) -> None:
        self.gateway = gateway
        self.config = config or AzrdpConfig()

    def create_vm(
        self, vm_name: str, resource_group: str, location: str, admin_username: str
    ) -> VMRecord:
        """Create a VM and open its RDP port.

        Args:
            vm_name: VM name
            resource_group: Resource group name
            location: Azure region
            admin_username: Windows admin account name

        Returns:
            VMRecord with the issued username and password

        Raises:
            VMProvisioningError: If the VM name is invalid
            AzureCLIError: If either az call fails
        """
        validate_vm_name(vm_name)
        password = generate_password()

        logger.info(f"Creating VM {vm_name} in {resource_group} ({location})")
        cmd = [
            "vm",
            "create",
            "--name",
            vm_name,
            "--resource-group",
            resource_group,
            "--image",
            self.config.vm_image,
            "--size",
            self.config.vm_size,
            "--admin-username",
            admin_username,
            "--admin-password",
            password,
            "--location",
            location,
            "--authentication-type",
            "password",
            "--public-ip-sku",
            "Basic",
        ]
        if self.config.custom_data:
            cmd.extend(["--custom-data", self.config.custom_data])

        self.gateway.run(cmd)

        logger.info(f"Opening RDP port {RDP_PORT} on {vm_name}")
        self.gateway.run(
            [
                "vm",
                "open-port",
                "--port",
                str(RDP_PORT),
                "--resource-group",
                resource_group,
                "--name",
                vm_name,
            ]
        )

        return VMRecord(username=admin_username, password=password)


__all__ = ["RDP_PORT", "VMProvisioner", "VMProvisioningError", "validate_vm_name"]
