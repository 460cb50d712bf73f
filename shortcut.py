"""Shim app bundles and the Steam shortcuts pointing at them."""
import os
import plistlib
import re
import shlex
import shutil
from pathlib import Path

from formats import get_ci, read_plist, write_plist
from launchers.steam import SteamLauncher


SHIM_EXECUTABLE = "launch"
SHIM_MODE = 0o755

# Only these keys are carried over from the game's Info.plist, so a shim is
# never mistaken for a Unity app itself.
_CARRIED_PLIST_KEYS = ("CFBundleIconFile", "CFBundleIconName", "LSMinimumSystemVersion")


def get_shim_path(app_path: Path, variant: str) -> Path:
    """`Game.app` + "Modded" -> `Game (Modded).app`, next to the game."""
    return app_path.parent / f"{app_path.stem} ({variant}).app"


def _icon_file(plist: dict) -> str | None:
    icon = plist.get("CFBundleIconFile")
    if not icon:
        return None
    return icon if Path(icon).suffix else f"{icon}.icns"


def create_shim_bundle(app_path: Path, shim_path: Path, command: list[str]) -> Path:
    """
    Build a minimal app bundle whose executable runs `command`.

    The game's icon is copied into the shim so it looks like the game in
    Finder and in launchers.

    Args:
        app_path: The game's app bundle.
        shim_path: Where to create the shim, e.g. `Game (Vanilla).app`.
        command: The command the shim runs; arguments are shell-quoted.

    Returns:
        Path to the shim's executable.
    """
    app_path = Path(app_path)
    shim_path = Path(shim_path)
    contents = shim_path / "Contents"
    (contents / "MacOS").mkdir(parents=True, exist_ok=True)

    try:
        source_plist = read_plist(app_path / "Contents" / "Info.plist")
    except (OSError, plistlib.InvalidFileException, ValueError):
        source_plist = {}

    icon = _icon_file(source_plist)
    if icon:
        source_icon = app_path / "Contents" / "Resources" / icon
        if source_icon.is_file():
            (contents / "Resources").mkdir(exist_ok=True)
            shutil.copy2(source_icon, contents / "Resources" / icon)

    identifier = source_plist.get("CFBundleIdentifier") or f"com.bepinex.{app_path.stem}"
    suffix = re.sub(r"[^A-Za-z0-9]+", "-", shim_path.stem).strip("-").lower()
    plist = {
        "CFBundleName": shim_path.stem,
        "CFBundleDisplayName": shim_path.stem,
        "CFBundleExecutable": SHIM_EXECUTABLE,
        "CFBundleIdentifier": f"{identifier}.shim.{suffix}",
        "CFBundlePackageType": "APPL",
        "CFBundleInfoDictionaryVersion": "6.0",
    }
    plist.update({key: source_plist[key] for key in _CARRIED_PLIST_KEYS if key in source_plist})
    write_plist(contents / "Info.plist", plist)

    executable = contents / "MacOS" / SHIM_EXECUTABLE
    executable.write_text(
        "#!/bin/sh\n"
        f"exec {shlex.join(str(part) for part in command)}\n",
        encoding="utf-8",
    )
    os.chmod(executable, SHIM_MODE)
    return executable


def get_shim_icon(shim_path: Path) -> str:
    try:
        icon = _icon_file(read_plist(shim_path / "Contents" / "Info.plist"))
    except (OSError, plistlib.InvalidFileException, ValueError):
        return ""
    return str(shim_path / "Contents" / "Resources" / icon) if icon else ""


def create_steam_shortcut(steam: SteamLauncher, name: str, shim_path: Path) -> tuple[bool, str]:
    """
    Add a non-Steam game shortcut for a shim bundle to the most recent Steam user.

    Steam is quit first. A shortcut already pointing at the same shim is left alone.

    Returns:
        (success: bool, message: str)
    """
    shim_executable = shim_path / "Contents" / "MacOS" / SHIM_EXECUTABLE
    shortcut = SteamLauncher.make_shortcut(name, shim_executable, get_shim_icon(shim_path))

    if not steam.quit():
        return False, "Could not quit Steam"

    shortcuts = steam.get_shortcuts()
    if shortcuts is None:
        return False, "No Steam user has logged in on this computer"

    for existing in get_ci(shortcuts, "shortcuts", default={}).values():
        if isinstance(existing, dict) and get_ci(existing, "Exe") == shortcut["Exe"]:
            return True, f"Steam shortcut already exists: {name}"

    SteamLauncher.add_shortcut(shortcut, shortcuts)
    if not steam.set_shortcuts(shortcuts):
        return False, "Could not write Steam shortcuts"
    return True, f"Steam shortcut created: {name}"
