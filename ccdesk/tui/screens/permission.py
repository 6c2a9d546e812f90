"""Permission modal — asks the user to approve or deny a tool action."""

from __future__ import annotations

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Static

APPROVE = "approve"
DENY = "deny"


class PermissionScreen(ModalScreen[str]):
    """Modal dialog for a tool action awaiting confirmation.

    Returns "approve" or "deny".
    """

    DEFAULT_CSS = """
    PermissionScreen {
        align: center middle;
    }
    #permission-dialog {
        width: 72;
        height: auto;
        border: thick $warning;
        background: $surface;
        padding: 1 2;
    }
    #permission-details {
        margin: 1 0;
        color: $text-muted;
    }
    #permission-buttons {
        height: auto;
        align-horizontal: right;
    }
    #permission-buttons Button {
        margin-left: 1;
    }
    """

    BINDINGS = [
        Binding("y", "approve", "Approve", show=False),
        Binding("n", "deny", "Deny", show=False),
        Binding("escape", "deny", "Deny", show=False),
    ]

    def __init__(
        self,
        tool_name: str,
        description: str = "",
        details: str = "",
        action_id: str = "",
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.tool_name = tool_name
        self.description = description
        self.details = details
        self.action_id = action_id

    def compose(self) -> ComposeResult:
        with Vertical(id="permission-dialog"):
            yield Static(
                "[bold $warning]Permission Request[/bold $warning]",
                id="permission-title",
            )
            yield Static(
                f"Claude wants to use [cyan]{self.tool_name}[/cyan]",
                id="permission-tool",
            )
            if self.description and self.description != self.tool_name:
                yield Static(self.description, markup=False, id="permission-description")
            if self.details:
                yield Static(
                    self.details[:500],
                    markup=False,
                    id="permission-details",
                )
            with Horizontal(id="permission-buttons"):
                yield Button("Approve", variant="success", id="btn-approve")
                yield Button("Deny", variant="error", id="btn-deny")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        result_map = {
            "btn-approve": APPROVE,
            "btn-deny": DENY,
        }
        self.dismiss(result_map.get(event.button.id, DENY))

    def action_approve(self) -> None:
        self.dismiss(APPROVE)

    def action_deny(self) -> None:
        self.dismiss(DENY)
