"""
Interactive Prompt Module

Console prompts used to fill values missing from configuration and saved state.
"""

import getpass
from typing import Callable, List, Optional

from .exceptions import ConfigurationError


class Prompter:
    """Ask the operator for input."""

    def __init__(self, input_func: Callable[[str], str] = input,
                 secret_func: Callable[[str], str] = getpass.getpass,
                 output: Callable[[str], None] = print):
        self.input = input_func
        self.secret = secret_func
        self.output = output

    def ask(self, label: str, default: Optional[str] = None, required: bool = True) -> str:
        """
        Prompt for a value, offering the default shown in brackets.

        Raises:
            ConfigurationError: If a required value is left blank
        """
        suffix = f" [{default}]" if default else ""
        answer = self.input(f"{label}{suffix}: ").strip()
        value = answer or (default or "")
        if required and not value:
            raise ConfigurationError(f"{label} is required")
        return value

    def ask_secret(self, label: str) -> str:
        value = self.secret(f"{label}: ")
        if not value:
            raise ConfigurationError(f"{label} is required")
        return value

    def choose(self, title: str, options: List[str]) -> int:
        """
        Present a numbered list and return the zero-based index chosen.

        Raises:
            ConfigurationError: On a blank, non-numeric or out-of-range choice
        """
        self.output(f"\n{title}:")
        for number, option in enumerate(options, start=1):
            self.output(f"  {number}. {option}")

        answer = self.input(f"Select 1-{len(options)}: ").strip()
        if not answer.isdigit() or not 1 <= int(answer) <= len(options):
            raise ConfigurationError(f"Invalid selection '{answer}'")
        return int(answer) - 1
