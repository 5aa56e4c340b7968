"""Security module for azrdp.

- AzureCommandSanitizer: Sanitize Azure CLI commands before display/logging

Example:
    >>> from azrdp.security import AzureCommandSanitizer
    >>> AzureCommandSanitizer.sanitize("az vm create --admin-password Secret")
    'az vm create --admin-password [REDACTED]'
"""

from azrdp.security.azure_command_sanitizer import (
    AzureCommandSanitizer,
    sanitize_azure_command,
)

__all__ = [
    "AzureCommandSanitizer",
    "sanitize_azure_command",
]
