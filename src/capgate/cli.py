"""
CLI entry point for capgate.

This module provides the Typer-based command-line interface for capgate.

Commands:
    validate      Load and validate the capability configuration
    capabilities  List known capabilities
    seed          Seed system roles into the database
    assign-role   Assign a role to a principal
    revoke-role   Remove a role assignment
    grant         Record an explicit allow override
    deny          Record an explicit deny override
    check         Run one audited authorization decision
    permissions   Show an actor's effective permissions
    decisions     Show the decision log
    prune         Delete decision logs past retention

Architecture Note:
    The CLI is intentionally thin - it parses arguments and delegates to
    capgate.engine.Authz. The same wiring is used when embedding capgate
    in an application.
"""

import json
import logging
import traceback
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from capgate import __version__
from capgate.capability import CapabilityCatalog, CapabilityRegistry
from capgate.engine import Authz
from capgate.errors import CapgateError, RoleNotFoundError
from capgate.report import (
    build_decision_dict,
    build_permissions_dict,
    generate_decisions_console_report,
    generate_decisions_json_report,
    print_decision,
    print_permissions,
)
from capgate.schema import (
    DEFAULT_CONFIG_PATH,
    Actor,
    PrincipalType,
    ResourceContext,
    Role,
    discover_configs,
    load_config,
)

# Initialize Typer app with metadata
app = typer.Typer(
    name="capgate",
    help="Capability-based authorization: decide who may do what, and record why.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()

DEFAULT_DB_PATH = Path("capgate.db")


# =============================================================================
# Shared Options
# =============================================================================

DbOption = Annotated[
    Optional[Path],
    typer.Option("--db", help="Path to the SQLite database. Defaults to capgate.db."),
]
ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help="Path to the base authz YAML file. Defaults to the bundled config.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]
ModuleDirOption = Annotated[
    Optional[list[Path]],
    typer.Option(
        "--module-dir",
        "-m",
        help="Directory whose */authz.yaml files are merged into the config.",
    ),
]
CompanyOption = Annotated[
    Optional[int],
    typer.Option("--company", help="Company scope. Omit for a global assignment."),
]
DebugOption = Annotated[
    bool,
    typer.Option("--debug", help="Enable debug mode with full error tracebacks."),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output results in JSON format."),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]capgate[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str,
        typer.Option("--log-level", help="Logging level for capgate loggers."),
    ] = "WARNING",
) -> None:
    """
    capgate - Capability-based authorization engine.

    Validate capability configuration, administer roles and overrides,
    run audited decisions and inspect the decision log.
    """
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# =============================================================================
# Helpers
# =============================================================================


def _fail(error: Exception, debug: bool, json_output: bool = False) -> None:
    """Report an error and exit with code 1."""
    if json_output:
        _output_json_error(error, debug)
    else:
        console.print(f"[red]Error: {escape(str(error))}[/red]")
        if debug:
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
    raise typer.Exit(code=1)


def _output_json_error(error: Exception, include_traceback: bool = False) -> None:
    """Output an error in JSON format."""
    if isinstance(error, CapgateError):
        output = {"error": True, **error.to_dict()}
    else:
        output = {
            "error": True,
            "error_type": type(error).__name__,
            "message": str(error),
        }
    if include_traceback:
        output["traceback"] = traceback.format_exc()
    print(json.dumps(output, indent=2, default=str))


def _open_authz(
    db: Optional[Path],
    config: Optional[Path],
    module_dirs: Optional[list[Path]],
) -> Authz:
    return Authz(
        db_path=db or DEFAULT_DB_PATH,
        config_path=config or DEFAULT_CONFIG_PATH,
        module_dirs=list(module_dirs or []),
    )


def _find_role(authz: Authz, code: str, company_id: Optional[int]) -> Role:
    """Look up a role by code, preferring a company role over a global one."""
    role = None
    if company_id is not None:
        role = authz.db.get_role_by_code(code, company_id)
    if role is None:
        role = authz.db.get_role_by_code(code)
    if role is None:
        raise RoleNotFoundError(role=code)
    return role


def _actor(
    actor_type: PrincipalType,
    actor_id: int,
    company_id: Optional[int],
    acting_for: Optional[int],
) -> Actor:
    return Actor(
        type=actor_type,
        id=actor_id,
        company_id=company_id,
        acting_for_user_id=acting_for,
    )


# =============================================================================
# Configuration Commands
# =============================================================================


@app.command()
def validate(
    config: ConfigOption = None,
    module_dir: ModuleDirOption = None,
    json_output: JsonOption = False,
    debug: DebugOption = False,
) -> None:
    """
    Load and validate the capability configuration.

    Checks every capability key against the grammar, declared domains and
    declared verbs, and every role template against the known capabilities.

    Example:
        $ capgate validate --config authz.yaml --module-dir modules/
    """
    try:
        authz_config = discover_configs(
            load_config(config or DEFAULT_CONFIG_PATH),
            list(module_dir or []),
        )
        catalog = CapabilityCatalog.from_config(authz_config)
        registry = CapabilityRegistry.from_catalog(catalog)
        for template in authz_config.roles.values():
            for key in template.capabilities:
                registry.assert_known(key)
    except CapgateError as e:
        _fail(e, debug, json_output)

    if json_output:
        output = {
            "valid": True,
            "domains": len(catalog.domains),
            "verbs": len(catalog.verbs),
            "capabilities": len(registry),
            "roles": len(authz_config.roles),
        }
        print(json.dumps(output, indent=2))
        return

    console.print("[green]✓[/green] Configuration is valid")
    console.print(
        f"[dim]Domains: {len(catalog.domains)} | Verbs: {len(catalog.verbs)} | "
        f"Capabilities: {len(registry)} | Roles: {len(authz_config.roles)}[/dim]"
    )


@app.command()
def capabilities(
    config: ConfigOption = None,
    module_dir: ModuleDirOption = None,
    domain: Annotated[
        Optional[str],
        typer.Option("--domain", "-d", help="Only show capabilities in this domain."),
    ] = None,
    debug: DebugOption = False,
) -> None:
    """
    List known capabilities.

    Example:
        $ capgate capabilities --domain core
    """
    try:
        authz_config = discover_configs(
            load_config(config or DEFAULT_CONFIG_PATH),
            list(module_dir or []),
        )
        registry = CapabilityRegistry.from_catalog(CapabilityCatalog.from_config(authz_config))
    except CapgateError as e:
        _fail(e, debug)

    keys = registry.for_domain(domain) if domain else registry.all()
    if not keys:
        console.print("[dim]No capabilities found.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Capability", style="cyan")
    table.add_column("Domain")
    table.add_column("Resource")
    table.add_column("Action")
    for key in keys:
        domain_name, resource, action = key.split(".")
        table.add_row(key, domain_name, resource, action)

    console.print(table)
    console.print(f"[dim]{len(keys)} capabilities[/dim]")


# =============================================================================
# Administration Commands
# =============================================================================


@app.command()
def seed(
    db: DbOption = None,
    config: ConfigOption = None,
    module_dir: ModuleDirOption = None,
    debug: DebugOption = False,
) -> None:
    """
    Seed the configured system roles into the database.

    Seeding is idempotent; re-running it resets system roles to their
    configured templates.

    Example:
        $ capgate seed --db capgate.db
    """
    try:
        with _open_authz(db, config, module_dir) as authz:
            roles = authz.seed()
    except CapgateError as e:
        _fail(e, debug)

    table = Table(show_header=True, header_style="bold")
    table.add_column("Role", style="cyan")
    table.add_column("Name")
    table.add_column("Capabilities", justify="right")
    for role in roles:
        count = "[magenta]all[/magenta]" if role.grant_all else str(len(role.capabilities))
        table.add_row(role.code, role.name, count)

    console.print(table)
    console.print(f"[green]✓[/green] Seeded {len(roles)} system roles")


@app.command("assign-role")
def assign_role(
    actor_type: Annotated[PrincipalType, typer.Argument(help="Principal type.")],
    actor_id: Annotated[int, typer.Argument(help="Principal id.")],
    role_code: Annotated[str, typer.Argument(help="Role code, e.g. user_viewer.")],
    company: CompanyOption = None,
    db: DbOption = None,
    config: ConfigOption = None,
    debug: DebugOption = False,
) -> None:
    """
    Assign a role to a principal.

    Example:
        $ capgate assign-role human_user 5 user_viewer --company 10
    """
    try:
        with _open_authz(db, config, None) as authz:
            role = _find_role(authz, role_code, company)
            authz.db.assign_role(actor_type, actor_id, role.id, company_id=company)
    except CapgateError as e:
        _fail(e, debug)

    scope = f"company {company}" if company is not None else "all companies"
    console.print(
        f"[green]✓[/green] Assigned [cyan]{role_code}[/cyan] to "
        f"{actor_type.value}:{actor_id} ({scope})"
    )


@app.command("revoke-role")
def revoke_role(
    actor_type: Annotated[PrincipalType, typer.Argument(help="Principal type.")],
    actor_id: Annotated[int, typer.Argument(help="Principal id.")],
    role_code: Annotated[str, typer.Argument(help="Role code.")],
    company: CompanyOption = None,
    db: DbOption = None,
    config: ConfigOption = None,
    debug: DebugOption = False,
) -> None:
    """
    Remove a role assignment.

    Example:
        $ capgate revoke-role human_user 5 user_viewer --company 10
    """
    try:
        with _open_authz(db, config, None) as authz:
            role = _find_role(authz, role_code, company)
            removed = authz.db.revoke_role(actor_type, actor_id, role.id, company_id=company)
    except CapgateError as e:
        _fail(e, debug)

    if removed:
        console.print(f"[green]✓[/green] Revoked [cyan]{role_code}[/cyan] from {actor_type.value}:{actor_id}")
    else:
        console.print(f"[yellow]No assignment of {role_code} for {actor_type.value}:{actor_id}[/yellow]")


def _set_override(
    actor_type: PrincipalType,
    actor_id: int,
    capability: str,
    is_allowed: bool,
    company: Optional[int],
    db: Optional[Path],
    config: Optional[Path],
    module_dir: Optional[list[Path]],
    debug: bool,
) -> None:
    try:
        with _open_authz(db, config, module_dir) as authz:
            authz.registry.assert_known(capability)
            override = authz.db.set_principal_capability(
                actor_type, actor_id, capability, is_allowed, company_id=company
            )
    except CapgateError as e:
        _fail(e, debug)

    verb = "[green]allowed[/green]" if is_allowed else "[red]denied[/red]"
    console.print(
        f"[green]✓[/green] [cyan]{override.capability_key}[/cyan] explicitly {verb} "
        f"for {actor_type.value}:{actor_id}"
    )


@app.command()
def grant(
    actor_type: Annotated[PrincipalType, typer.Argument(help="Principal type.")],
    actor_id: Annotated[int, typer.Argument(help="Principal id.")],
    capability: Annotated[str, typer.Argument(help="Capability key.")],
    company: CompanyOption = None,
    db: DbOption = None,
    config: ConfigOption = None,
    module_dir: ModuleDirOption = None,
    debug: DebugOption = False,
) -> None:
    """
    Record an explicit allow for one capability.

    Example:
        $ capgate grant human_user 5 core.user.update --company 10
    """
    _set_override(actor_type, actor_id, capability, True, company, db, config, module_dir, debug)


@app.command()
def deny(
    actor_type: Annotated[PrincipalType, typer.Argument(help="Principal type.")],
    actor_id: Annotated[int, typer.Argument(help="Principal id.")],
    capability: Annotated[str, typer.Argument(help="Capability key.")],
    company: CompanyOption = None,
    db: DbOption = None,
    config: ConfigOption = None,
    module_dir: ModuleDirOption = None,
    debug: DebugOption = False,
) -> None:
    """
    Record an explicit deny for one capability. Denies beat every grant.

    Example:
        $ capgate deny human_user 5 core.user.delete --company 10
    """
    _set_override(actor_type, actor_id, capability, False, company, db, config, module_dir, debug)


# =============================================================================
# Decision Commands
# =============================================================================


@app.command()
def check(
    actor_type: Annotated[PrincipalType, typer.Argument(help="Principal type.")],
    actor_id: Annotated[int, typer.Argument(help="Principal id.")],
    capability: Annotated[str, typer.Argument(help="Capability key.")],
    company: Annotated[
        Optional[int],
        typer.Option("--company", help="Actor's company."),
    ] = None,
    acting_for: Annotated[
        Optional[int],
        typer.Option("--acting-for", help="Delegating user id (personal agents)."),
    ] = None,
    resource_type: Annotated[
        str,
        typer.Option("--resource-type", help="Resource type tag."),
    ] = "resource",
    resource_id: Annotated[
        Optional[str],
        typer.Option("--resource-id", help="Resource id."),
    ] = None,
    resource_company: Annotated[
        Optional[int],
        typer.Option("--resource-company", help="Company owning the resource."),
    ] = None,
    correlation_id: Annotated[
        Optional[str],
        typer.Option("--correlation-id", help="Correlation id recorded with the decision."),
    ] = None,
    db: DbOption = None,
    config: ConfigOption = None,
    module_dir: ModuleDirOption = None,
    json_output: JsonOption = False,
    debug: DebugOption = False,
) -> None:
    """
    Run one audited authorization decision.

    Exits with code 0 when allowed and 1 when denied. The decision is
    recorded in the decision log.

    Example:
        $ capgate check human_user 5 core.user.view --company 10 --resource-company 10
    """
    actor = _actor(actor_type, actor_id, company, acting_for)
    resource = None
    if resource_id is not None or resource_company is not None:
        resource = ResourceContext(type=resource_type, id=resource_id, company_id=resource_company)
    context = {"correlation_id": correlation_id} if correlation_id else {}

    try:
        with _open_authz(db, config, module_dir) as authz, authz.service() as service:
            decision = service.can(actor, capability, resource, context)
    except CapgateError as e:
        _fail(e, debug, json_output)

    if json_output:
        print(json.dumps(build_decision_dict(actor, capability, decision), indent=2, default=str))
    else:
        print_decision(actor, capability, decision, console)

    raise typer.Exit(code=0 if decision.allowed else 1)


@app.command()
def permissions(
    actor_type: Annotated[PrincipalType, typer.Argument(help="Principal type.")],
    actor_id: Annotated[int, typer.Argument(help="Principal id.")],
    company: Annotated[
        Optional[int],
        typer.Option("--company", help="Actor's company."),
    ] = None,
    acting_for: Annotated[
        Optional[int],
        typer.Option("--acting-for", help="Delegating user id (personal agents)."),
    ] = None,
    db: DbOption = None,
    config: ConfigOption = None,
    module_dir: ModuleDirOption = None,
    json_output: JsonOption = False,
    debug: DebugOption = False,
) -> None:
    """
    Show an actor's effective permissions.

    Example:
        $ capgate permissions human_user 5 --company 10
    """
    actor = _actor(actor_type, actor_id, company, acting_for)
    try:
        with _open_authz(db, config, module_dir) as authz:
            effective = authz.effective_permissions(actor)
    except CapgateError as e:
        _fail(e, debug, json_output)

    if json_output:
        print(json.dumps(build_permissions_dict(actor, effective), indent=2))
    else:
        print_permissions(actor, effective, console)


@app.command()
def decisions(
    db: DbOption = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Maximum number of decisions to show."),
    ] = 50,
    actor_type: Annotated[
        Optional[PrincipalType],
        typer.Option("--actor-type", help="Only decisions for this principal type."),
    ] = None,
    actor_id: Annotated[
        Optional[int],
        typer.Option("--actor-id", help="Only decisions for this principal id."),
    ] = None,
    capability: Annotated[
        Optional[str],
        typer.Option("--capability", help="Only decisions for this capability."),
    ] = None,
    denied_only: Annotated[
        bool,
        typer.Option("--denied", help="Only show denied decisions."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Show policy trails and correlation ids."),
    ] = False,
    json_output: JsonOption = False,
    debug: DebugOption = False,
) -> None:
    """
    Show the decision log, most recent first.

    Example:
        $ capgate decisions --denied --limit 20
    """
    db_path = db or DEFAULT_DB_PATH

    if not db_path.exists():
        console.print(f"[yellow]No database found at {db_path}[/yellow]")
        raise typer.Exit(code=0)

    allowed = False if denied_only else None
    try:
        if json_output:
            print(
                generate_decisions_json_report(
                    db_path,
                    limit=limit,
                    actor_type=actor_type,
                    actor_id=actor_id,
                    capability=capability,
                    allowed=allowed,
                )
            )
        else:
            generate_decisions_console_report(
                db_path,
                console=console,
                limit=limit,
                actor_type=actor_type,
                actor_id=actor_id,
                capability=capability,
                allowed=allowed,
                verbose=verbose,
            )
    except CapgateError as e:
        _fail(e, debug, json_output)


@app.command()
def prune(
    db: DbOption = None,
    config: ConfigOption = None,
    retention_days: Annotated[
        Optional[int],
        typer.Option("--days", help="Override the configured retention period."),
    ] = None,
    debug: DebugOption = False,
) -> None:
    """
    Delete decision logs older than the retention period.

    Example:
        $ capgate prune --days 30
    """
    try:
        with _open_authz(db, config, None) as authz:
            if retention_days is not None:
                deleted = authz.db.prune_decision_logs(retention_days)
            else:
                deleted = authz.prune()
    except CapgateError as e:
        _fail(e, debug)

    console.print(f"[green]✓[/green] Pruned {deleted} decision log entries")


if __name__ == "__main__":
    app()
