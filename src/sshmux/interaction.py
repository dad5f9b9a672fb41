"""User interaction abstraction for consent prompts and status messages.

Installing software on a remote host requires explicit consent. The
multiplexer workflow asks through an InteractionHandler so the CLI can prompt
with click while tests script the answers.

Example:
    >>> handler = CLIInteractionHandler()
    >>> if handler.confirm("Install tmux with: sudo apt-get install -y tmux?", default=False):
    ...     handler.show_info("Installing...")

    Testing example:
    >>> test_handler = MockInteractionHandler(confirm_responses=[True])
    >>> test_handler.confirm("Install?")
    True
"""

from typing import Protocol, runtime_checkable

import click


@runtime_checkable
class InteractionHandler(Protocol):
    """Protocol for user interaction."""

    def confirm(self, message: str, default: bool = True) -> bool:
        """Prompt for yes/no confirmation.

        Args:
            message: Confirmation question to display
            default: Default value if user just presses Enter

        Returns:
            True if confirmed, False otherwise
        """
        ...

    def show_warning(self, message: str) -> None:
        """Display a warning message."""
        ...

    def show_info(self, message: str) -> None:
        """Display an informational message."""
        ...


class CLIInteractionHandler:
    """Click-based CLI interaction handler with colored output."""

    def confirm(self, message: str, default: bool = True) -> bool:
        return click.confirm(click.style(message, fg="yellow"), default=default)

    def show_warning(self, message: str) -> None:
        click.secho(f"Warning: {message}", fg="yellow", err=True)

    def show_info(self, message: str) -> None:
        click.secho(message, fg="green")


class MockInteractionHandler:
    """Interaction handler with pre-programmed responses.

    Tracks all interactions for verification in tests.

    Example:
        >>> handler = MockInteractionHandler(confirm_responses=[True, False])
        >>> handler.confirm("Continue?")
        True
        >>> handler.confirm("Really?")
        False
        >>> len(handler.interactions)
        2
    """

    def __init__(self, confirm_responses: list[bool] | None = None):
        self.confirm_responses = confirm_responses or []
        self.interactions: list[dict] = []
        self._confirm_index = 0

    def confirm(self, message: str, default: bool = True) -> bool:
        """Return next pre-programmed confirmation.

        Raises:
            IndexError: If no more confirmation responses are available
        """
        if self._confirm_index >= len(self.confirm_responses):
            raise IndexError(
                f"No more confirm responses available. "
                f"Provided {len(self.confirm_responses)}, "
                f"needed {self._confirm_index + 1}"
            )
        response = self.confirm_responses[self._confirm_index]
        self._confirm_index += 1
        self.interactions.append({"type": "confirm", "message": message, "response": response})
        return response

    def show_warning(self, message: str) -> None:
        self.interactions.append({"type": "warning", "message": message})

    def show_info(self, message: str) -> None:
        self.interactions.append({"type": "info", "message": message})


__all__ = ["CLIInteractionHandler", "InteractionHandler", "MockInteractionHandler"]
