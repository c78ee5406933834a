"""
Prompts Module

Thin wrappers around questionary. Every interactive read in the installer
goes through these functions; a cancelled prompt (Ctrl-C) becomes UserAbort.
"""

from typing import Any, Callable, Dict, List, Optional, Union

import questionary
from rich.console import Console

from archbase.errors import UserAbort

# Initialize a rich console for colored output
console = Console()

Choice = Union[str, Dict[str, Any]]


def _answer(value: Any) -> Any:
    if value is None:
        raise UserAbort("Prompt cancelled by user")
    return value


def ask_text(message: str, default: str = "") -> str:
    return _answer(questionary.text(message, default=default).ask())


def ask_password(message: str) -> str:
    return _answer(questionary.password(message).ask())


def ask_select(message: str, choices: List[Choice], default: Optional[str] = None) -> Any:
    return _answer(questionary.select(message, choices=choices, default=default).ask())


def ask_confirm(message: str, default: bool = False) -> bool:
    return _answer(questionary.confirm(message, default=default).ask())


def prompt_until_valid(message: str, validator: Callable[[str], bool],
                       error_message: str, default: str = "",
                       empty_message: Optional[str] = None) -> str:
    """
    Ask for a value until the validator accepts it.

    Args:
        message: Question shown to the user
        validator: Accept/reject function for the answer
        error_message: Warning printed after a rejected answer
        default: Pre-filled answer
        empty_message: Warning printed for an empty answer, if it differs

    Returns:
        str: The first accepted answer
    """
    while True:
        answer = ask_text(message, default=default).strip()
        if not answer and empty_message:
            console.print(f"[bold yellow]Warning:[/bold yellow] {empty_message}")
            continue
        if validator(answer):
            return answer
        console.print(f"[bold yellow]Warning:[/bold yellow] {error_message}")


def ask_new_password(message: str, validator: Callable[[str], bool],
                     error_message: str) -> str:
    """Ask for a password twice until it is valid and both entries match."""
    while True:
        password = ask_password(message)
        if not validator(password):
            console.print(f"[bold yellow]Warning:[/bold yellow] {error_message}")
            continue
        if ask_password("Confirm password:") != password:
            console.print("[bold yellow]Warning:[/bold yellow] Passwords do not match")
            continue
        return password
