"""
Console report generator for capgate.

Renders decisions, decision logs and effective permissions in the
terminal using Rich.

Design Principles:
    - Human-readable first: Optimize for quick scanning
    - Status at a glance: Use icons and colors for outcomes
    - Summary after detail: Counts by reason close every log report
"""

from collections import Counter
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from capgate.capability import key as capability_key
from capgate.policy.permissions import EffectivePermissions
from capgate.schema import Actor, AuthorizationDecision, DecisionLogEntry, PrincipalType
from capgate.store import AuthzDB

# Status icons
ICON_ALLOWED = "[green]✓[/green]"
ICON_DENIED = "[red]✗[/red]"


def _actor_label(actor_type: PrincipalType, actor_id: int, acting_for: int | None) -> str:
    label = f"{actor_type.value}:{actor_id}"
    if acting_for is not None:
        label += f" [dim](for user {acting_for})[/dim]"
    return label


def print_decision(
    actor: Actor,
    capability: str,
    decision: AuthorizationDecision,
    console: Console | None = None,
) -> None:
    """Print a single decision with its policy trail."""
    if console is None:
        console = Console()

    header = Text()
    if decision.allowed:
        header.append("ALLOWED", style="bold green")
    else:
        header.append("DENIED", style="bold red")
    header.append(" │ ", style="dim")
    header.append(capability_key.normalize(capability), style="bold cyan")
    console.print(Panel(header, expand=False))

    console.print(
        f"  [dim]Actor:[/dim]    "
        f"{_actor_label(actor.type, actor.id, actor.acting_for_user_id)}"
        f" [dim]company[/dim] {actor.company_id}"
    )
    console.print(f"  [dim]Reason:[/dim]   {decision.reason_code.value}")
    console.print(f"  [dim]Policies:[/dim] {' → '.join(decision.applied_policies)}")
    for key, value in decision.audit_meta.items():
        console.print(f"  [dim]{key}:[/dim] {value}")


def print_permissions(
    actor: Actor,
    permissions: EffectivePermissions,
    console: Console | None = None,
) -> None:
    """Print an actor's effective permissions."""
    if console is None:
        console = Console()

    title = f"Effective permissions for {actor.type.value}:{actor.id} (company {actor.company_id})"
    console.print(f"[bold]{title}[/bold]")
    if permissions.has_grant_all():
        console.print("  [magenta]grant_all[/magenta] role assigned")
    console.print()

    table = Table(show_header=True, header_style="bold")
    table.add_column("Capability", style="cyan")
    table.add_column("Status", justify="center")

    for capability in permissions.allowed():
        table.add_row(capability, ICON_ALLOWED)
    for capability in permissions.denied():
        table.add_row(capability, f"{ICON_DENIED} [dim]explicit[/dim]")

    console.print(table)
    console.print(
        f"  [dim]{len(permissions.allowed())} allowed, "
        f"{len(permissions.denied())} explicitly denied[/dim]"
    )


def generate_decisions_console_report(
    db_path: str | Path = "capgate.db",
    console: Console | None = None,
    limit: int = 50,
    actor_type: PrincipalType | None = None,
    actor_id: int | None = None,
    capability: str | None = None,
    allowed: bool | None = None,
    verbose: bool = False,
) -> None:
    """
    Print recent decisions from the decision log.

    Args:
        db_path: Path to the SQLite database
        console: Rich Console instance (creates one if not provided)
        limit: Maximum number of decisions
        actor_type: Only decisions for this principal type
        actor_id: Only decisions for this principal id
        capability: Only decisions for this capability
        allowed: Only allowed (True) or denied (False) decisions
        verbose: Also show the policy trail and correlation id
    """
    if console is None:
        console = Console()

    with AuthzDB(db_path) as db:
        entries = db.list_decision_logs(
            limit=limit,
            actor_type=actor_type,
            actor_id=actor_id,
            capability=capability,
            allowed=allowed,
        )

    if not entries:
        console.print("[dim]No decisions recorded.[/dim]")
        return

    _print_log_table(console, entries, verbose)
    console.print()
    _print_summary(console, entries)


def _print_log_table(console: Console, entries: list[DecisionLogEntry], verbose: bool) -> None:
    table = Table(show_header=True, header_style="bold", show_lines=verbose, expand=True)
    table.add_column("Time", style="dim", width=19)
    table.add_column("", width=2, justify="center")
    table.add_column("Actor")
    table.add_column("Company", justify="right")
    table.add_column("Capability", style="cyan")
    table.add_column("Reason", overflow="fold")

    for entry in entries:
        reason = entry.reason_code.value
        if verbose:
            reason += f"\n[dim]{' → '.join(entry.applied_policies)}[/dim]"
            if entry.correlation_id:
                reason += f"\n[dim]correlation: {entry.correlation_id}[/dim]"
        table.add_row(
            entry.occurred_at.strftime("%Y-%m-%d %H:%M:%S"),
            ICON_ALLOWED if entry.allowed else ICON_DENIED,
            _actor_label(entry.actor_type, entry.actor_id, entry.acting_for_user_id),
            "" if entry.company_id is None else str(entry.company_id),
            entry.capability,
            reason,
        )

    console.print(table)


def _print_summary(console: Console, entries: list[DecisionLogEntry]) -> None:
    console.print("[bold]Summary[/bold]")

    allowed = sum(1 for e in entries if e.allowed)
    denied = len(entries) - allowed

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column("Metric", style="dim")
    stats_table.add_column("Value")

    stats_table.add_row("Decisions", str(len(entries)))
    stats_table.add_row("Allowed", f"[green]{allowed}[/green]" if allowed else "0")
    stats_table.add_row("Denied", f"[red]{denied}[/red]" if denied else "0")
    for reason, count in sorted(Counter(e.reason_code.value for e in entries).items()):
        if reason != "allowed":
            stats_table.add_row(f"  {reason}", str(count))

    console.print(stats_table)
