"""
Command Validator - Allowlist Gate for Terminal Sessions

Every command a user types into a workspace terminal passes through here
before a process is spawned.

The check is coarse:
- The command line is split on whitespace (no quoting, no escaping)
- The first token is the program, the rest are its arguments
- Only the program name is checked against ALLOWED_COMMANDS

Arguments are never inspected, so `rm -rf /tmp/x` is accepted because `rm`
is allowlisted. Pipes, redirects and `&&` are not interpreted either: they are
passed to the program as literal arguments since no shell is involved.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

from workspace_terminal.core.exceptions import CommandNotAllowedError, ValidationError


# ALLOWED COMMANDS - fixed at build time, never read from settings
ALLOWED_COMMANDS: FrozenSet[str] = frozenset({
    # Node.js / JavaScript
    "npm", "yarn", "pnpm", "node", "npx",

    # Version control
    "git",

    # File utilities
    "ls", "dir", "cat", "grep", "find", "pwd", "cd", "echo",
    "mkdir", "rm", "cp", "mv",

    # Python
    "python", "python3", "pip", "pip3",

    # Go / Rust
    "go", "rustc", "cargo",

    # Java
    "java", "javac", "mvn", "gradle",
})

# Programs that start dev servers when invoked with a "run" subcommand
DEV_SERVER_COMMANDS: FrozenSet[str] = frozenset({"npm", "yarn", "pnpm", "node"})


@dataclass(frozen=True)
class ParsedCommand:
    """A whitespace-tokenized command line"""
    raw: str
    program: str
    args: List[str] = field(default_factory=list)

    @property
    def display(self) -> str:
        return " ".join([self.program, *self.args])


def parse_command(command_line: str) -> ParsedCommand:
    """Split a command line on whitespace into program + arguments"""
    parts = (command_line or "").split()
    if not parts:
        raise ValidationError("Command required", field="command")
    return ParsedCommand(raw=command_line.strip(), program=parts[0], args=parts[1:])


class CommandValidator:
    """
    Validates command lines against the program allowlist.

    Usage:
        validator = CommandValidator()
        parsed = validator.validate("npm install")   # ParsedCommand
        validator.validate("sudo reboot")            # raises CommandNotAllowedError
    """

    def __init__(
        self,
        allowed_commands: Optional[FrozenSet[str]] = None,
        dev_server_commands: Optional[FrozenSet[str]] = None,
    ):
        self.allowed_commands = frozenset(allowed_commands or ALLOWED_COMMANDS)
        self.dev_server_commands = frozenset(dev_server_commands or DEV_SERVER_COMMANDS)

    def is_allowed(self, program: str) -> bool:
        return program in self.allowed_commands

    def validate(self, command_line: str) -> ParsedCommand:
        """
        Tokenize and validate a command line.

        Args:
            command_line: Raw command as typed by the user

        Returns:
            ParsedCommand with program and args

        Raises:
            ValidationError: Empty command
            CommandNotAllowedError: Program is not allowlisted
        """
        parsed = parse_command(command_line)

        if not self.is_allowed(parsed.program):
            raise CommandNotAllowedError(parsed.program, sorted(self.allowed_commands))

        return parsed

    def is_streaming(self, parsed: ParsedCommand) -> bool:
        """
        True for dev-server style commands (`npm run dev`, `yarn run start`...).

        These answer the caller right away instead of waiting for exit.
        """
        return parsed.program in self.dev_server_commands and "run" in parsed.args


# Singleton instance
_validator: Optional[CommandValidator] = None


def get_command_validator() -> CommandValidator:
    """Get the global command validator instance"""
    global _validator

    if _validator is None:
        _validator = CommandValidator()

    return _validator
