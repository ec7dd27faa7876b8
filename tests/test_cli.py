import json
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner
from rich.console import Console

from mod_profile_dl import cli
from mod_profile_dl.api import RateLimitedError
from mod_profile_dl.cli import main
from mod_profile_dl.mods import ModrinthMod
from mod_profile_dl.sources import FetchError, FetchErrorKind, ModDetails

NAMES = {
    "modrinth:sodium": "Sodium",
    "github:CaffeineMC/lithium": "lithium",
    "curseforge:238222": "Just Enough Items",
}


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "config.json"


@pytest.fixture
def sources():
    registry = Mock()

    def details(mod):
        if mod.key not in NAMES:
            raise FetchError(FetchErrorKind.NOT_FOUND, f"{mod.source} mod {mod} not found")
        return ModDetails(name=NAMES[mod.key], summary="A mod", downloads=1000)

    registry.details.side_effect = details
    registry.display_name.side_effect = lambda mod: details(mod).name
    return registry


@pytest.fixture
def invoke(config_path, sources, monkeypatch):
    monkeypatch.setattr(cli, "console", Console(width=200))
    runner = CliRunner()

    def _invoke(*args, input=None):
        return runner.invoke(
            main,
            ["--config", str(config_path), *args],
            obj={"sources": sources},
            input=input,
        )

    return _invoke


@pytest.fixture
def with_profile(invoke, tmp_path):
    result = invoke(
        "profile",
        "create",
        "--name",
        "survival",
        "--game-version",
        "1.20.1",
        "--force-game-version",
        "--mod-loader",
        "fabric",
        "--output-dir",
        str(tmp_path / "mods"),
    )
    assert result.exit_code == 0, result.output


def _config(config_path):
    return json.loads(config_path.read_text())


def test_profile_create_non_interactive(with_profile, config_path, tmp_path):
    data = _config(config_path)
    assert data["active_profile"] == 0
    profile = data["profiles"][0]
    assert profile["name"] == "survival"
    assert profile["mod_loader"] == "fabric"
    assert profile["output_dir"] == str(tmp_path / "mods")


def test_profile_create_checks_game_version(invoke, tmp_path):
    with patch("mod_profile_dl.cli.MojangAPI") as mojang:
        mojang.return_value.get_game_versions.return_value = ["1.20.4", "1.20.1"]
        result = invoke(
            "profile", "create", "--name", "x", "--game-version", "1.99.9",
            "--mod-loader", "forge", "--output-dir", str(tmp_path),
        )

    assert result.exit_code == 1
    assert "Unknown game version" in result.output


def test_profile_create_duplicate_name(with_profile, invoke, tmp_path):
    result = invoke(
        "profile", "create", "--name", "survival", "--game-version", "1.20.1",
        "--force-game-version", "--mod-loader", "forge", "--output-dir", str(tmp_path),
    )
    assert result.exit_code == 1
    assert "already exists" in result.output


def test_add_commands(with_profile, invoke, config_path):
    assert invoke("add-modrinth", "sodium").exit_code == 0
    assert invoke("add-github", "CaffeineMC", "lithium").exit_code == 0
    assert invoke("add-curseforge", "238222").exit_code == 0

    mods = _config(config_path)["profiles"][0]["mods"]
    assert mods == [
        {"modrinth": {"mod_id": "sodium"}},
        {"github": {"owner": "CaffeineMC", "name": "lithium"}},
        {"curseforge": {"project_id": 238222}},
    ]


def test_add_duplicate_fails(with_profile, invoke):
    invoke("add-modrinth", "sodium")
    result = invoke("add-modrinth", "sodium")
    assert result.exit_code == 1
    assert "already in profile" in result.output


def test_add_unknown_mod_fails(with_profile, invoke, config_path):
    result = invoke("add-modrinth", "does-not-exist")
    assert result.exit_code == 1
    assert "not found" in result.output
    assert _config(config_path)["profiles"][0]["mods"] == []


def test_add_without_profile_fails(invoke):
    result = invoke("add-modrinth", "sodium")
    assert result.exit_code == 1
    assert "profile create" in result.output


def test_list_verbose(with_profile, invoke):
    invoke("add-modrinth", "sodium")
    result = invoke("list", "--verbose")
    assert result.exit_code == 0
    assert "Sodium" in result.output
    assert "modrinth:sodium" in result.output


def test_remove_by_name(with_profile, invoke, config_path):
    invoke("add-modrinth", "sodium")
    invoke("add-github", "CaffeineMC", "lithium")

    result = invoke("remove", "--mod-name", "LITHIUM")

    assert result.exit_code == 0, result.output
    assert _config(config_path)["profiles"][0]["mods"] == [{"modrinth": {"mod_id": "sodium"}}]


def test_remove_unknown_name_changes_nothing(with_profile, invoke, config_path):
    invoke("add-modrinth", "sodium")

    result = invoke("remove", "--mod-name", "sodium", "--mod-name", "iris")

    assert result.exit_code == 1
    assert "iris" in result.output
    assert len(_config(config_path)["profiles"][0]["mods"]) == 1


def test_remove_interactive(with_profile, invoke, config_path):
    invoke("add-modrinth", "sodium")
    invoke("add-github", "CaffeineMC", "lithium")

    result = invoke("remove", input="1\n")

    assert result.exit_code == 0, result.output
    assert _config(config_path)["profiles"][0]["mods"] == [
        {"github": {"owner": "CaffeineMC", "name": "lithium"}}
    ]


def test_switch_and_delete(with_profile, invoke, config_path, tmp_path):
    invoke(
        "profile", "create", "--name", "creative", "--game-version", "1.19.2",
        "--force-game-version", "--mod-loader", "forge", "--output-dir", str(tmp_path / "c"),
    )
    assert _config(config_path)["active_profile"] == 1

    assert invoke("switch", "--profile-name", "survival").exit_code == 0
    assert _config(config_path)["active_profile"] == 0

    result = invoke("profile", "delete", "--profile-name", "survival")
    assert result.exit_code == 0
    data = _config(config_path)
    assert [p["name"] for p in data["profiles"]] == ["creative"]
    assert data["active_profile"] == 0


def test_switch_unknown_profile(with_profile, invoke):
    result = invoke("switch", "--profile-name", "nope")
    assert result.exit_code == 1
    assert "No profile named" in result.output


def test_profile_configure(with_profile, invoke, config_path):
    result = invoke("profile", "configure", "--game-version", "1.20.4", "--mod-loader", "quilt")
    assert result.exit_code == 0
    profile = _config(config_path)["profiles"][0]
    assert profile["game_version"] == "1.20.4"
    assert profile["mod_loader"] == "quilt"
    assert profile["name"] == "survival"


def test_profile_list(with_profile, invoke):
    result = invoke("profile", "list")
    assert result.exit_code == 0
    assert "survival" in result.output


class _FakeDownloader:
    def download(self, candidate, target_dir, progress=None, task_id=None):
        path = target_dir / candidate.label
        path.write_bytes(b"jar")
        return path


def test_upgrade_no_picker(with_profile, invoke, sources, config_path, tmp_path, make_candidate):
    invoke("add-modrinth", "sodium")
    invoke("add-curseforge", "238222")

    def fetch(mod):
        if isinstance(mod, ModrinthMod):
            return [
                make_candidate(label="sodium-old.jar", published=datetime(2023, 1, 1, tzinfo=timezone.utc)),
                make_candidate(label="sodium-new.jar", published=datetime(2024, 1, 1, tzinfo=timezone.utc)),
            ]
        raise FetchError(FetchErrorKind.RATE_LIMITED, "CurseForge: Rate limited")

    sources.fetch.side_effect = fetch

    with patch("mod_profile_dl.service.Downloader", return_value=_FakeDownloader()):
        result = invoke("upgrade", "--no-picker")

    assert result.exit_code == 1, result.output
    assert "sodium-new.jar" in result.output
    assert "rate_limited" in result.output
    assert sorted(p.name for p in (tmp_path / "mods").iterdir()) == ["sodium-new.jar"]
    installed = _config(config_path)["profiles"][0]["installed"]
    assert installed == {"modrinth:sodium": "sodium-new.jar"}


def test_upgrade_all_resolved_exits_zero(with_profile, invoke, sources, make_candidate):
    invoke("add-github", "CaffeineMC", "lithium")
    sources.fetch.side_effect = lambda mod: [make_candidate(label="lithium.jar", loaders=())]

    with patch("mod_profile_dl.service.Downloader", return_value=_FakeDownloader()):
        result = invoke("upgrade", "--no-picker")

    assert result.exit_code == 0, result.output
    assert "1 of 1 mods resolved" in result.output


def test_profile_create_when_version_check_is_rate_limited(invoke, tmp_path):
    with patch("mod_profile_dl.cli.MojangAPI") as mojang:
        mojang.return_value.get_game_versions.side_effect = RateLimitedError(30)
        result = invoke(
            "profile", "create", "--name", "x", "--game-version", "1.20.1",
            "--mod-loader", "forge", "--output-dir", str(tmp_path),
        )

    assert result.exit_code == 1
    assert "Could not fetch game versions" in result.output
    assert "--force-game-version" in result.output


def test_list_verbose_shows_url(with_profile, invoke, sources):
    sources.details.side_effect = lambda mod: ModDetails(
        name="Sodium", summary="Fast", downloads=5, url="https://modrinth.com/mod/sodium"
    )
    invoke("add-modrinth", "sodium")

    result = invoke("list", "--verbose")

    assert "https://modrinth.com/mod/sodium" in result.output


def test_platform_names_are_not_rendered_as_markup(with_profile, invoke, sources):
    sources.details.side_effect = lambda mod: ModDetails(name="[bold]Sodium[/bold]")
    sources.display_name.side_effect = lambda mod: "[bold]Sodium[/bold]"
    invoke("add-modrinth", "sodium")

    result = invoke("list")

    assert result.exit_code == 0
    assert "[bold]Sodium[/bold]" in result.output
