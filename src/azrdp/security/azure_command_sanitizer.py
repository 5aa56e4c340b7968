"""Azure CLI command sanitization for secure logging.

VM creation passes the generated admin password on the az command line, so
every command is sanitized before it is logged or embedded in an error
message.

Security Controls:
- Argument-list redaction (the token after --admin-password etc.)
- String redaction for commands that were already joined
- Terminal escape stripping

Usage:
    >>> from azrdp.security import AzureCommandSanitizer
    >>> AzureCommandSanitizer.sanitize_args(["az", "vm", "create", "--admin-password", "x"])
    ['az', 'vm', 'create', '--admin-password', '[REDACTED]']
"""

import re
from re import Pattern
from typing import ClassVar


class AzureCommandSanitizer:
    """Sanitize Azure CLI commands for safe display and logging.

    All methods are classmethods and hold no state, so they are safe to call
    from worker threads.
    """

    REDACTED = "[REDACTED]"

    # Matched case-insensitively (lowercase only in set)
    SENSITIVE_PARAMS: ClassVar[set[str]] = {
        "--password",
        "--admin-password",
        "--client-secret",
        "--secret",
        "--token",
        "--access-token",
        "--account-key",
        "--connection-string",
        "--sas-token",
        "--custom-data",
        "--user-data",
    }

    SENSITIVE_KEYWORDS: ClassVar[tuple[str, ...]] = (
        "password",
        "secret",
        "token",
        "credential",
    )

    # --param value, --param=value, --param "quoted value"
    PARAM_VALUE_QUOTED_PATTERN: ClassVar[Pattern] = re.compile(
        r'(--[\w-]+)(\s+|=)(["' "'" r'])([^"' "'" r']*)\3',
        re.IGNORECASE,
    )
    PARAM_VALUE_UNQUOTED_PATTERN: ClassVar[Pattern] = re.compile(
        r'(--[\w-]+)(\s+|=)([^\s"' "'" r']+)',
        re.IGNORECASE,
    )

    ANSI_ESCAPE: ClassVar[Pattern] = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")

    @classmethod
    def is_sensitive_param(cls, param: str) -> bool:
        """Check whether a --flag carries a secret value."""
        param_lower = param.lower()
        if param_lower in cls.SENSITIVE_PARAMS:
            return True
        return any(keyword in param_lower for keyword in cls.SENSITIVE_KEYWORDS)

    @classmethod
    def sanitize_args(cls, args: list[str]) -> list[str]:
        """Return a copy of an argument list with secret values redacted.

        Handles both ``--flag value`` and ``--flag=value`` forms. Values that
        start with ``-`` are still redacted, since generated passwords may.
        """
        sanitized: list[str] = []
        redact_next = False

        for arg in args:
            if redact_next:
                sanitized.append(cls.REDACTED)
                redact_next = False
                continue

            if arg.startswith("--") and "=" in arg:
                param, _, _value = arg.partition("=")
                if cls.is_sensitive_param(param):
                    sanitized.append(f"{param}={cls.REDACTED}")
                    continue

            elif arg.startswith("--") and cls.is_sensitive_param(arg):
                redact_next = True

            sanitized.append(cls._strip_terminal_escapes(arg))

        return sanitized

    @classmethod
    def sanitize(cls, command: str) -> str:
        """Sanitize an already-joined Azure CLI command string.

        Examples:
            >>> AzureCommandSanitizer.sanitize('az vm create --admin-password "Pa ss"')
            'az vm create --admin-password "[REDACTED]"'
        """
        if not isinstance(command, str):
            command = str(command)

        result = cls._strip_terminal_escapes(command)

        def replace_quoted(match: re.Match) -> str:
            if cls.is_sensitive_param(match.group(1)):
                quote = match.group(3)
                return f"{match.group(1)}{match.group(2)}{quote}{cls.REDACTED}{quote}"
            return match.group(0)

        def replace_unquoted(match: re.Match) -> str:
            if cls.is_sensitive_param(match.group(1)) and match.group(3) != cls.REDACTED:
                return f"{match.group(1)}{match.group(2)}{cls.REDACTED}"
            return match.group(0)

        result = cls.PARAM_VALUE_QUOTED_PATTERN.sub(replace_quoted, result)
        result = cls.PARAM_VALUE_UNQUOTED_PATTERN.sub(replace_unquoted, result)
        return result

    @classmethod
    def _strip_terminal_escapes(cls, text: str) -> str:
        """Remove ANSI escape sequences and control characters except newline/tab."""
        text = cls.ANSI_ESCAPE.sub("", text)
        return "".join(char for char in text if char in "\n\t" or ord(char) >= 32)


def sanitize_azure_command(command: str | list[str]) -> str:
    """Sanitize an Azure CLI command given as a string or argument list.

    Examples:
        >>> sanitize_azure_command(["az", "vm", "create", "--admin-password", "x"])
        'az vm create --admin-password [REDACTED]'
    """
    if isinstance(command, list):
        return " ".join(AzureCommandSanitizer.sanitize_args(command))
    return AzureCommandSanitizer.sanitize(command)
