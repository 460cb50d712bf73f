import plistlib
from pathlib import Path

import pytest
import vdf
from PySide6.QtCore import QCoreApplication

import launchers.epic
import launchers.steam
from launchers.epic import EpicGamesLauncher
from launchers.steam import SteamLauncher


STEAM_ID = "76561197960287930"
ACCOUNT_ID = 22202

SCRIPT_TEXT = "\r\n".join([
    "#!/bin/sh",
    "# BepInEx running script",
    "",
    "# The name of the executable to run (e.g. Game.app)",
    'executable_name=""',
    "",
    'BASEDIR="$(cd "$(dirname "$0")" && pwd)"',
    "export DOORSTOP_ENABLED=1",
    'export DOORSTOP_TARGET_ASSEMBLY="${BASEDIR}/BepInEx/core/BepInEx.Preloader.dll"',
    'doorstop_libs="${BASEDIR}/doorstop_libs"',
    'executable_path="${BASEDIR}/${executable_name}"',
    "",
    'if [ "$(uname -s)" = "Darwin" ]; then',
    '    real_executable_name=$(defaults read "${executable_path}/Contents/Info" CFBundleExecutable)',
    "    case $real_executable_name in",
    "        *.app/Contents/MacOS/*)",
    '            executable_path="${executable_path}"',
    "            ;;",
    "    esac",
    '    export DYLD_LIBRARY_PATH="${doorstop_libs}"',
    '    export DYLD_INSERT_LIBRARIES="${doorstop_libs}/libdoorstop_x64.dylib"',
    "fi",
    "",
    'exec "$executable_path" "$@"',
    "",
])

TOGGLE_SCRIPT_TEXT = SCRIPT_TEXT.replace(
    "export DOORSTOP_ENABLED=1",
    'export DOORSTOP_ENABLED=1\r\n'
    'case "$1" in --doorstop-enabled) export DOORSTOP_ENABLED="$2" ;; esac',
)


@pytest.fixture
def qapp():
    return QCoreApplication.instance() or QCoreApplication([])


@pytest.fixture(autouse=True)
def no_protocol_handlers(monkeypatch):
    """Launchers are only 'installed' when the test creates their files."""
    monkeypatch.setattr(launchers.steam, "is_protocol_registered", lambda scheme: False)
    monkeypatch.setattr(launchers.epic, "is_protocol_registered", lambda scheme: False)


@pytest.fixture(autouse=True)
def no_steam_processes(monkeypatch):
    monkeypatch.setattr(launchers.steam, "find_processes_by_name", lambda name, exact=False: [])


def make_pack(root: Path, script_text: str = SCRIPT_TEXT, libs: str | None = "doorstop_libs") -> Path:
    """A BepInEx pack folder; returns the path to its run script."""
    root.mkdir(parents=True, exist_ok=True)
    script = root / "run_bepinex.sh"
    script.write_bytes(script_text.encode("utf-8"))
    (root / "BepInEx" / "core").mkdir(parents=True, exist_ok=True)
    (root / "BepInEx" / "core" / "BepInEx.Preloader.dll").write_bytes(b"MZ")
    (root / ".doorstop_version").write_text("3.4.0.0\n")
    (root / ".DS_Store").write_bytes(b"\x00\x00\x00\x01Bud1")
    if libs == "doorstop_libs":
        (root / "doorstop_libs").mkdir(exist_ok=True)
        (root / "doorstop_libs" / "libdoorstop_x64.dylib").write_bytes(b"\xcf\xfa\xed\xfe")
    elif libs == "libdoorstop":
        (root / "libdoorstop.dylib").write_bytes(b"\xcf\xfa\xed\xfe")
    return script


def make_unity_app(
    folder: Path,
    name: str = "Game",
    build_number: bool = True,
    unity_string: bool = False,
    player_dylib: bool = False,
    data_files: bool = False,
) -> Path:
    """A fake macOS app bundle exposing the requested Unity indicators."""
    app = folder / f"{name}.app"
    contents = app / "Contents"
    (contents / "MacOS").mkdir(parents=True, exist_ok=True)
    (contents / "MacOS" / name).write_bytes(b"\xcf\xfa\xed\xfe")

    plist = {
        "CFBundleExecutable": name,
        "CFBundleName": name,
        "CFBundleIdentifier": f"com.example.{name.lower()}",
        "CFBundleIconFile": "PlayerIcon.icns",
    }
    if build_number:
        plist["UnityBuildNumber"] = "d6e0fe3ef0e4"
    if unity_string:
        plist["CFBundleGetInfoString"] = "Unity Player version 2021.3.16f1"
    with open(contents / "Info.plist", "wb") as f:
        plistlib.dump(plist, f)

    (contents / "Resources").mkdir(exist_ok=True)
    (contents / "Resources" / "PlayerIcon.icns").write_bytes(b"icns")
    if player_dylib:
        (contents / "Frameworks").mkdir(exist_ok=True)
        (contents / "Frameworks" / "UnityPlayer.dylib").write_bytes(b"\xcf\xfa\xed\xfe")
    if data_files:
        (contents / "Resources" / "Data").mkdir(parents=True, exist_ok=True)
        (contents / "Resources" / "Data" / "globalgamemanagers").write_bytes(b"\x00")
    return app


def write_text_vdf(path: Path, tree: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(vdf.dumps(tree, pretty=True), encoding="utf-8")


def make_steam(tmp_path: Path, libraries: list[Path], apps: dict[str, dict[str, str]] | None = None) -> SteamLauncher:
    """
    A Steam folder with the given library folders and a most recent user.

    Args:
        libraries: Library folder paths as written to libraryfolders.vdf.
        apps: app id -> {"library": index, "installdir": ..., "name": ...}
    """
    apps = apps or {}
    steam_path = tmp_path / "Steam"

    folders = {}
    for index, library in enumerate(libraries):
        owned = {app_id: "0" for app_id, info in apps.items() if int(info.get("library", 0)) == index}
        folders[str(index)] = {"path": str(library), "label": "", "apps": owned}
        (Path(library) / "steamapps").mkdir(parents=True, exist_ok=True)
    write_text_vdf(steam_path / "config" / "libraryfolders.vdf", {"libraryfolders": folders})

    for app_id, info in apps.items():
        library = Path(libraries[int(info.get("library", 0))])
        write_text_vdf(
            library / "steamapps" / f"appmanifest_{app_id}.acf",
            {"AppState": {
                "appid": app_id,
                "name": info.get("name", f"App {app_id}"),
                "installdir": info["installdir"],
                "StateFlags": "4",
            }},
        )

    write_text_vdf(steam_path / "config" / "loginusers.vdf", {"users": {
        STEAM_ID: {"AccountName": "player", "PersonaName": "Player", "MostRecent": "1", "Timestamp": "1700000000"},
        "76561197960287931": {"AccountName": "other", "MostRecent": "0", "Timestamp": "1700000100"},
    }})
    return SteamLauncher(steam_path, quit_timeout=0.1, poll_interval=0.01)


@pytest.fixture
def no_epic(tmp_path) -> EpicGamesLauncher:
    return EpicGamesLauncher(tmp_path / "Epic" / "EpicGamesLauncher" / "Data")
