import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel

from .cli_config import create_sample_config, get_config, load_config
from .completion import get_completion_scripts
from .dependency import format_table_path
from .editor import (
    AddRequest,
    AddResult,
    add_dependencies,
    pending_lookups,
    validate_request,
)
from .error_handling import CrateAddError, ManifestNotFoundError, setup_error_handling
from .manifest import Manifest, find_manifest, render_value
from .registry_clients import PrefetchedRegistry, prefetch_lookups
from .structured_logging import (
    clear_manifest_context,
    configure_logging,
    log_manifest_written,
    set_manifest_context,
)

__version__ = "0.3.0"

console = Console()
err_console = Console(stderr=True)


def run_add(request: AddRequest, manifest_path: Optional[str]) -> Tuple[Path, AddResult]:
    """
    Apply `request` to the manifest on disk.

    The manifest is written only when every crate of the request was added.
    """
    manifest_file = Path(manifest_path) if manifest_path else find_manifest()
    manifest = Manifest.load(manifest_file)
    set_manifest_context(str(manifest_file))

    try:
        validate_request(request)
        crate_names, git_urls = pending_lookups(request)
        if crate_names or git_urls:
            registry = asyncio.run(prefetch_lookups(crate_names, git_urls))
        else:
            registry = PrefetchedRegistry({})

        result = add_dependencies(
            manifest,
            request,
            resolve_latest_version=registry.resolve_latest_version,
            normalize_name=registry.normalize_name,
            git_package_name=registry.git_package_name,
        )
        manifest.save(manifest_file)
        log_manifest_written(str(manifest_file), len(result.added))
    finally:
        clear_manifest_context()

    return manifest_file, result


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.pass_context
def cli(ctx, version):
    """
    📦 crate-add: add dependencies to a Cargo.toml manifest

    Resolves the newest crates.io release, or takes an explicit version,
    git repository or local path, and writes it to the right table.
    """
    if version:
        console.print(f"crate-add version {__version__}", style="bold blue")
        ctx.exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@cli.command()
@click.argument("crates", nargs=-1, required=True)
@click.option("--dev", "-D", is_flag=True, help="Add as a development dependency")
@click.option("--build", "-B", is_flag=True, help="Add as a build dependency")
@click.option(
    "--vers",
    metavar="VER",
    help="Version requirement to use instead of the newest release",
)
@click.option("--git", metavar="URI", help="Git repository to take the crate from")
@click.option(
    "--path", "path_", metavar="PATH", help="Local directory holding the crate"
)
@click.option(
    "--target",
    metavar="TARGET",
    help="Add to the dependencies of a target triple or cfg() expression",
)
@click.option("--optional", is_flag=True, help="Add as an optional dependency")
@click.option(
    "--upgrade",
    metavar="METHOD",
    help="Requirement for resolved versions: none (=), patch (~), minor (^), all (>=)",
)
@click.option(
    "--manifest-path",
    type=click.Path(dir_okay=False),
    help="Path to Cargo.toml (default: search upwards from the current directory)",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-critical output")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def add(
    crates: Tuple[str, ...],
    dev: bool,
    build: bool,
    vers: Optional[str],
    git: Optional[str],
    path_: Optional[str],
    target: Optional[str],
    optional: bool,
    upgrade: Optional[str],
    manifest_path: Optional[str],
    quiet: bool,
    verbose: bool,
) -> None:
    """
    Add one or more dependencies to a Cargo.toml manifest.

    Examples:

      crate-add add serde

      crate-add add serde@1.0 rand --upgrade minor

      crate-add add tempfile --dev

      crate-add add winapi --target 'cfg(windows)'

      crate-add add my-lib --path ../my-lib --optional

      crate-add add https://github.com/user/repo.git
    """
    config = load_config()
    log_level = "DEBUG" if verbose else config.logging.log_level
    configure_logging(log_level)
    setup_error_handling(getattr(logging, log_level.upper(), logging.WARNING))

    request = AddRequest(
        crates=list(crates),
        dev=dev,
        build=build,
        vers=vers,
        git=git,
        path=path_,
        target=target,
        optional=optional,
        upgrade=upgrade if upgrade is not None else config.add.default_upgrade,
    )

    try:
        manifest_file, result = run_add(request, manifest_path)
    except KeyboardInterrupt:
        err_console.print("\n⚠️  Interrupted, manifest left unchanged", style="yellow")
        sys.exit(130)
    except CrateAddError as e:
        err_console.print(f"❌ Error: {e}", style="red")
        if isinstance(e, ManifestNotFoundError):
            err_console.print("Use --manifest-path to point at Cargo.toml", style="dim")
        sys.exit(1)

    for warning in result.warnings:
        err_console.print(f"WARN: {warning}", style="yellow")

    if not quiet:
        for added in result.added:
            verb = "Updated" if added.replaced else "Added"
            shown = render_value(added.dependency.to_toml())
            console.print(
                f"✅ {verb} [bold]{added.dependency.name}[/bold] = {shown} "
                f"in [cyan]{format_table_path(added.table)}[/cyan]",
                highlight=False,
            )
        console.print(f"📝 Wrote {manifest_file}", style="dim")


@cli.command()
def info():
    """Show information about dependency sources and configuration."""
    info_text = """
[bold blue]📦 Dependency Sources:[/bold blue]

• [green]crates.io[/green] - newest release, or [cyan]name@requirement[/cyan] / [cyan]--vers[/cyan]
• [green]git[/green] - [cyan]--git <url>[/cyan], or pass the repository URL as the crate
• [green]path[/green] - [cyan]--path <dir>[/cyan], or pass the crate directory as the crate

[bold blue]📋 Dependency Tables:[/bold blue]

• [yellow]dependencies[/yellow] - default
• [yellow]dev-dependencies[/yellow] - [cyan]--dev[/cyan]
• [yellow]build-dependencies[/yellow] - [cyan]--build[/cyan]
• [yellow]target.<target>.*[/yellow] - [cyan]--target <triple or cfg()>[/cyan]

[bold blue]⬆️  Upgrade Strategies:[/bold blue]

• [cyan]none[/cyan] → =1.2.3   [cyan]patch[/cyan] → ~1.2.3   [cyan]minor[/cyan] → ^1.2.3   [cyan]all[/cyan] → >=1.2.3

[bold blue]🌍 Environment Variables:[/bold blue]

• [cyan]CRATE_ADD_UPGRADE[/cyan] - Default upgrade strategy
• [cyan]CRATE_ADD_REGISTRY_URL[/cyan] - Registry API base URL
• [cyan]CRATE_ADD_RATE_LIMIT[/cyan] - Registry requests per second
• [cyan]CRATE_ADD_LOG_LEVEL[/cyan] - Log level

[bold blue]📄 Configuration Files:[/bold blue]

• [green].crate-add.json[/green] - Project-level config
• [green]~/.config/crate-add/config.json[/green] - User-level config
"""
    console.print(
        Panel(
            info_text,
            title="[bold]crate-add Information[/bold]",
            border_style="blue",
        )
    )


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".crate-add.json",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {config_path}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_sample_config())
    except OSError as e:
        err_console.print(f"❌ Failed to create config file: {e}", style="red")
        sys.exit(1)

    console.print(f"✅ Created configuration file at {config_path}", style="green")


@config.command("show")
def config_show():
    """Show current configuration settings."""
    current_config = get_config()

    console.print("\n[bold cyan]📦 Add Settings:[/bold cyan]")
    console.print(f"  Default Upgrade: {current_config.add.default_upgrade or '(bare version)'}")

    console.print("\n[bold cyan]🌐 Network Settings:[/bold cyan]")
    console.print(f"  Registry URL: {current_config.network.registry_url}")
    console.print(f"  Git Raw URL: {current_config.network.git_raw_url}")
    console.print(f"  Connect Timeout: {current_config.network.connect_timeout}s")
    console.print(f"  Read Timeout: {current_config.network.read_timeout}s")
    console.print(f"  Rate Limit: {current_config.network.rate_limit} req/s")
    console.print(f"  User Agent: {current_config.network.user_agent}")

    console.print("\n[bold cyan]📝 Logging Settings:[/bold cyan]")
    console.print(f"  Log Level: {current_config.logging.log_level}")


@cli.command()
@click.argument(
    "shell", type=click.Choice(["bash", "zsh", "fish"], case_sensitive=False)
)
def completion(shell: str):
    """Generate shell completion scripts.

    Examples:

      crate-add completion bash > ~/.crate-add-completion.bash
    """
    click.echo(get_completion_scripts()[shell.lower()])


if __name__ == "__main__":
    cli()
