"""Command-line interface for mod-profile-dl."""

import sys
from pathlib import Path
from typing import NoReturn, Sequence

import click
from rich.console import Console
from rich.markup import escape
from rich.prompt import IntPrompt, Prompt
from rich.table import Table

from .api import APIError, MojangAPI
from .downloader import create_download_progress
from .log_utils import set_log_level
from .mods import CurseForgeProject, GitHubRepo, ModLoader, ModReference, ModrinthMod
from .profile import DuplicateModError, ModNotFoundError, Profile, ProfileError
from .resolver import Strategy
from .service import (
    DEFAULT_MAX_WORKERS,
    AmbiguousAndUnresolved,
    DownloadFailed,
    NoCompatibleFile,
    OutputDirectoryError,
    Resolved,
    SourceFetchFailed,
    UpgradeReport,
    UpgradeService,
)
from .sources import CandidateFile, FetchError, SourceRegistry
from .state import CONFIG_ENV_VAR, Config, ConfigError, default_mods_dir

console = Console()

LOADER_CHOICES = [loader.value for loader in ModLoader]


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {escape(message)}")
    sys.exit(1)


def _load_config(ctx: click.Context) -> Config:
    config = Config(ctx.obj["config_path"])
    try:
        config.load()
    except ConfigError as e:
        _fail(str(e))
    return config


def _save_config(config: Config) -> None:
    try:
        config.save()
    except ConfigError as e:
        _fail(str(e))


def _active_profile(config: Config) -> Profile:
    try:
        return config.active
    except ProfileError as e:
        _fail(str(e))


def _pick_profile(config: Config, title: str) -> Profile:
    """Ask the user to pick a profile by number."""
    if not config.profiles:
        _fail("No profiles exist. Create one with 'profile create'.")
    table = Table(title=title)
    table.add_column("#", style="cyan")
    table.add_column("Name")
    table.add_column("Version")
    table.add_column("Loader")
    for i, profile in enumerate(config.profiles, start=1):
        table.add_row(str(i), profile.name, profile.game_version, profile.mod_loader.value)
    console.print(table)
    choice = IntPrompt.ask(
        "Profile number",
        choices=[str(i) for i in range(1, len(config.profiles) + 1)],
        show_choices=False,
        console=console,
    )
    return config.profiles[choice - 1]


def _make_chooser(progress):
    """Build the interactive picker used when several files qualify."""

    def choose(candidates: Sequence[CandidateFile]) -> int | None:
        progress.stop()
        try:
            table = Table(title="Multiple compatible files found")
            table.add_column("#", style="cyan")
            table.add_column("File")
            table.add_column("Published")
            table.add_column("Game versions")
            for i, candidate in enumerate(candidates, start=1):
                table.add_row(
                    str(i),
                    escape(candidate.label),
                    candidate.published.strftime("%Y-%m-%d"),
                    ", ".join(sorted(candidate.game_versions)),
                )
            console.print(table)
            choice = IntPrompt.ask(
                "Pick a file (0 to skip this mod)",
                default=1,
                choices=[str(i) for i in range(0, len(candidates) + 1)],
                show_choices=False,
                console=console,
            )
        finally:
            progress.start()
        if choice == 0:
            return None
        return choice - 1

    return choose


def _add_mod(ctx: click.Context, mod: ModReference) -> None:
    config = _load_config(ctx)
    profile = _active_profile(config)

    if profile.has_mod(mod):
        _fail(f"{mod.source} mod {mod} is already in profile '{profile.name}'")

    try:
        name = ctx.obj["sources"].display_name(mod)
    except FetchError as e:
        _fail(str(e))

    try:
        profile.add_mod(mod)
    except DuplicateModError as e:
        _fail(str(e))
    _save_config(config)
    console.print(f"[green]Added[/green] {escape(name)} ({mod.source}) to '{profile.name}'")


@click.group()
@click.version_option(package_name="mod-profile-dl")
@click.option(
    "--config",
    "config_path",
    envvar=CONFIG_ENV_VAR,
    type=click.Path(dir_okay=False, path_type=Path),
    help=f"Config file to use (or set {CONFIG_ENV_VAR})",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging verbosity",
)
@click.option(
    "--workers",
    type=click.IntRange(min=1),
    default=DEFAULT_MAX_WORKERS,
    show_default=True,
    help="Mods processed in parallel during upgrade",
)
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, log_level: str | None, workers: int) -> None:
    """Manage Minecraft mod profiles from Modrinth, GitHub and CurseForge."""
    ctx.ensure_object(dict)
    if log_level:
        set_log_level(log_level)
    ctx.obj["config_path"] = config_path
    ctx.obj["workers"] = workers
    if "sources" not in ctx.obj:
        ctx.obj["sources"] = SourceRegistry()


@main.command(name="add-modrinth")
@click.argument("mod_id")
@click.pass_context
def add_modrinth(ctx: click.Context, mod_id: str) -> None:
    """
    Add a Modrinth mod to the profile.

    MOD_ID: The project ID shown in the mod page's sidebar, or the mod slug
    """
    _add_mod(ctx, ModrinthMod(mod_id=mod_id))


@main.command(name="add-github")
@click.argument("owner")
@click.argument("name")
@click.pass_context
def add_github(ctx: click.Context, owner: str, name: str) -> None:
    """
    Add a GitHub repository to the profile.

    OWNER: The repository owner's username
    NAME: The name of the repository
    """
    _add_mod(ctx, GitHubRepo(owner=owner, name=name))


@main.command(name="add-curseforge")
@click.argument("project_id", type=int)
@click.pass_context
def add_curseforge(ctx: click.Context, project_id: int) -> None:
    """
    Add a CurseForge mod to the profile.

    PROJECT_ID: The project ID from the mod page's 'About Project' sidebar
    """
    _add_mod(ctx, CurseForgeProject(project_id=project_id))


@main.command(name="list")
@click.option("-v", "--verbose", is_flag=True, help="Show more data about each mod")
@click.pass_context
def list_mods(ctx: click.Context, verbose: bool) -> None:
    """List the mods in the active profile."""
    config = _load_config(ctx)
    profile = _active_profile(config)
    sources: SourceRegistry = ctx.obj["sources"]

    if not profile.mods:
        console.print(f"[yellow]Profile '{profile.name}' has no mods.[/yellow]")
        return

    table = Table(title=f"{profile.name} ({profile.game_version}, {profile.mod_loader.value})")
    table.add_column("Name", style="bold")
    table.add_column("Source")
    if verbose:
        table.add_column("ID", style="cyan")
        table.add_column("Downloads", justify="right")
        table.add_column("Summary")
        table.add_column("URL")

    for mod in profile.mods:
        try:
            details = sources.details(mod)
        except FetchError as e:
            row = [f"[red]{escape(str(mod))}[/red]", mod.source]
            if verbose:
                row += [mod.key, "-", escape(str(e)), ""]
            table.add_row(*row)
            continue

        row = [escape(details.name), mod.source]
        if verbose:
            downloads = f"{details.downloads:,}" if details.downloads is not None else "-"
            row += [mod.key, downloads, escape(details.summary), escape(details.url)]
        table.add_row(*row)

    console.print(table)


@main.command()
@click.option(
    "--mod-name",
    "mod_names",
    multiple=True,
    help="Case-insensitive name of a mod to remove (repeatable). "
    "If any name does not exist, nothing is changed.",
)
@click.pass_context
def remove(ctx: click.Context, mod_names: tuple[str, ...]) -> None:
    """Remove mods from the active profile."""
    config = _load_config(ctx)
    profile = _active_profile(config)
    sources: SourceRegistry = ctx.obj["sources"]

    if not profile.mods:
        _fail(f"Profile '{profile.name}' has no mods.")

    names: dict[str, str] = {}

    def name_of(mod: ModReference) -> str:
        if mod.key not in names:
            try:
                names[mod.key] = sources.display_name(mod)
            except FetchError as e:
                _fail(f"Could not look up the name of {mod.key}: {e}")
        return names[mod.key]

    if mod_names:
        try:
            removed = profile.remove_mods(mod_names, name_of)
        except ModNotFoundError as e:
            _fail(str(e))
    else:
        for i, mod in enumerate(profile.mods, start=1):
            console.print(f"  [cyan]{i}[/cyan]. {escape(name_of(mod))} ({mod.source})")
        answer = Prompt.ask("Numbers of the mods to remove (comma-separated)", console=console)
        try:
            indexes = {int(part) - 1 for part in answer.split(",") if part.strip()}
        except ValueError:
            _fail(f"Invalid selection: {answer}")
        if not indexes or not all(0 <= i < len(profile.mods) for i in indexes):
            _fail(f"Invalid selection: {answer}")
        removed = [profile.mods[i] for i in sorted(indexes)]
        for mod in removed:
            profile.remove_mod(mod)

    _save_config(config)
    for mod in removed:
        console.print(f"  [red]-[/red] {escape(name_of(mod))}")
    console.print(f"[green]Removed {len(removed)} mod(s) from '{profile.name}'.[/green]")


@main.command()
@click.option("--profile-name", default=None, help="The name of the profile to switch to")
@click.pass_context
def switch(ctx: click.Context, profile_name: str | None) -> None:
    """Switch the active profile."""
    config = _load_config(ctx)
    if profile_name is None:
        profile_name = _pick_profile(config, "Profiles").name
    try:
        profile = config.switch_profile(profile_name)
    except ProfileError as e:
        _fail(str(e))
    _save_config(config)
    console.print(f"[green]Switched to[/green] {profile.name}")


@main.command()
@click.option(
    "--no-picker",
    is_flag=True,
    help="Pick the newest file instead of asking when several compatible files are found",
)
@click.option(
    "--no-patch-check",
    is_flag=True,
    help="Only check the major and minor game version, not the full version",
)
@click.pass_context
def upgrade(ctx: click.Context, no_picker: bool, no_patch_check: bool) -> None:
    """Download the latest compatible file of every mod in the active profile."""
    config = _load_config(ctx)
    profile = _active_profile(config)

    console.print(f"[bold]Profile:[/bold] {profile.name}")
    console.print(
        f"[bold]Target:[/bold] {profile.game_version} / {profile.mod_loader.value}"
        f"{' (major.minor only)' if no_patch_check else ''}"
    )
    console.print(f"[bold]Output:[/bold] {profile.output_dir}")

    if not profile.mods:
        console.print("[yellow]No mods to upgrade.[/yellow]")
        return

    progress = create_download_progress()
    service = UpgradeService(
        sources=ctx.obj["sources"],
        strategy=Strategy.AUTO if no_picker else Strategy.INTERACTIVE,
        chooser=None if no_picker else _make_chooser(progress),
        patch_check=not no_patch_check,
        max_workers=ctx.obj["workers"],
        progress=progress,
    )

    console.print("\n[bold]Upgrading mods...[/bold]")
    try:
        with progress:
            report = service.upgrade(profile)
    except OutputDirectoryError as e:
        _fail(str(e))

    for outcome in report.resolved:
        profile.record_installed(outcome.mod, outcome.path.name)
    _save_config(config)

    _print_report(report)
    if not report.ok:
        sys.exit(1)


def _print_report(report: UpgradeReport) -> None:
    table = Table(title=f"Upgrade report: {report.profile_name}")
    table.add_column("Mod", style="bold")
    table.add_column("Source")
    table.add_column("Result")
    table.add_column("Details")

    for outcome in report.outcomes:
        if isinstance(outcome, Resolved):
            result, details = "[green]resolved[/green]", escape(outcome.path.name)
        elif isinstance(outcome, NoCompatibleFile):
            result = "[yellow]no compatible file[/yellow]"
            details = f"{outcome.candidates_seen} file(s) checked"
        elif isinstance(outcome, AmbiguousAndUnresolved):
            result = "[yellow]skipped[/yellow]"
            details = f"{outcome.candidates} compatible files, none picked"
        elif isinstance(outcome, SourceFetchFailed):
            result, details = f"[red]fetch failed ({outcome.kind.value})[/red]", escape(outcome.message)
        elif isinstance(outcome, DownloadFailed):
            result, details = f"[red]download failed ({outcome.kind.value})[/red]", escape(outcome.message)
        else:
            result, details = outcome.status, ""
        table.add_row(escape(str(outcome.mod)), outcome.mod.source, result, details)

    console.print(table)
    console.print(
        f"[bold]{len(report.resolved)}[/bold] of {len(report)} mods resolved"
        + (f", [red]{len(report.failed)} failed[/red]" if report.failed else "")
    )


@main.group()
def profile() -> None:
    """Create, configure, delete or list profiles."""


def _check_game_version(game_version: str) -> None:
    try:
        versions = MojangAPI().get_game_versions()
    except APIError as e:
        _fail(f"Could not fetch game versions: {e}. Use --force-game-version to skip this check.")
    if game_version not in versions:
        _fail(
            f"Unknown game version '{game_version}'. "
            "Use --force-game-version to use it anyway."
        )


@profile.command()
@click.option("--game-version", default=None, help="The game version to check compatibility for")
@click.option(
    "--force-game-version",
    is_flag=True,
    help="Do not check whether the game version exists",
)
@click.option(
    "--mod-loader",
    type=click.Choice(LOADER_CHOICES, case_sensitive=False),
    default=None,
    help="The mod loader to check compatibility for",
)
@click.option("--name", default=None, help="The name of the profile")
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="The directory to output mods to",
)
@click.pass_context
def create(
    ctx: click.Context,
    game_version: str | None,
    force_game_version: bool,
    mod_loader: str | None,
    name: str | None,
    output_dir: Path | None,
) -> None:
    """
    Create a new profile and make it active.

    Options that are not given are asked for interactively.
    """
    config = _load_config(ctx)

    if name is None:
        name = Prompt.ask("Profile name", console=console)
    if config.get_profile(name) is not None:
        _fail(f"A profile named '{name}' already exists")
    if game_version is None:
        game_version = Prompt.ask("Game version", console=console)
    if not force_game_version:
        _check_game_version(game_version)
    if mod_loader is None:
        mod_loader = Prompt.ask("Mod loader", choices=LOADER_CHOICES, console=console)
    if output_dir is None:
        output_dir = Path(
            Prompt.ask("Output directory", default=str(default_mods_dir()), console=console)
        )

    try:
        created = config.create_profile(
            name=name,
            game_version=game_version,
            mod_loader=ModLoader.parse(mod_loader),
            output_dir=output_dir.expanduser(),
        )
    except ProfileError as e:
        _fail(str(e))
    _save_config(config)
    console.print(f"[green]Created profile[/green] {created.name} (now active)")


@profile.command()
@click.option("--game-version", default=None, help="The game version to check compatibility for")
@click.option(
    "--mod-loader",
    type=click.Choice(LOADER_CHOICES, case_sensitive=False),
    default=None,
    help="The mod loader to check compatibility for",
)
@click.option("--name", default=None, help="The name of the profile")
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="The directory to output mods to",
)
@click.pass_context
def configure(
    ctx: click.Context,
    game_version: str | None,
    mod_loader: str | None,
    name: str | None,
    output_dir: Path | None,
) -> None:
    """
    Configure the active profile.

    Without options, each setting is asked for with its current value as
    the default.
    """
    config = _load_config(ctx)
    current = _active_profile(config)

    if all(v is None for v in (game_version, mod_loader, name, output_dir)):
        name = Prompt.ask("Profile name", default=current.name, console=console)
        game_version = Prompt.ask("Game version", default=current.game_version, console=console)
        mod_loader = Prompt.ask(
            "Mod loader",
            choices=LOADER_CHOICES,
            default=current.mod_loader.value,
            console=console,
        )
        output_dir = Path(
            Prompt.ask("Output directory", default=str(current.output_dir), console=console)
        )

    try:
        updated = config.configure_profile(
            game_version=game_version,
            mod_loader=ModLoader.parse(mod_loader) if mod_loader else None,
            name=name,
            output_dir=output_dir.expanduser() if output_dir else None,
        )
    except ProfileError as e:
        _fail(str(e))
    _save_config(config)
    console.print(
        f"[green]Configured[/green] {updated.name}: "
        f"{updated.game_version} / {updated.mod_loader.value} -> {updated.output_dir}"
    )


@profile.command()
@click.option("--profile-name", default=None, help="The name of the profile to delete")
@click.pass_context
def delete(ctx: click.Context, profile_name: str | None) -> None:
    """
    Delete a profile.

    After deleting the active profile, the first remaining profile is
    selected.
    """
    config = _load_config(ctx)
    if profile_name is None:
        profile_name = _pick_profile(config, "Delete which profile?").name

    try:
        removed = config.delete_profile(profile_name)
    except ProfileError as e:
        _fail(str(e))
    _save_config(config)

    console.print(f"[green]Deleted profile[/green] {removed.name}")
    if config.active_index is not None:
        console.print(f"[dim]Active profile: {config.active.name}[/dim]")
    else:
        console.print("[dim]No profiles left.[/dim]")


@profile.command(name="list")
@click.pass_context
def list_profiles(ctx: click.Context) -> None:
    """List all the profiles with their data."""
    config = _load_config(ctx)
    if not config.profiles:
        console.print("[yellow]No profiles. Create one with 'profile create'.[/yellow]")
        return

    table = Table(title="Profiles")
    table.add_column("")
    table.add_column("Name", style="bold")
    table.add_column("Version")
    table.add_column("Loader")
    table.add_column("Output directory")
    table.add_column("Mods", justify="right")
    for i, p in enumerate(config.profiles):
        marker = "[green]*[/green]" if i == config.active_index else ""
        table.add_row(
            marker, p.name, p.game_version, p.mod_loader.value, str(p.output_dir), str(len(p.mods))
        )
    console.print(table)


if __name__ == "__main__":
    main()
