"""Heuristics for recognising BepInEx doorstop scripts and native macOS Unity apps."""
import os
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator, NamedTuple

from errors import (
    DoorstopScriptMissingPlatformSupportError,
    InstallerError,
    InvalidBepInExPackError,
    InvalidDoorstopScriptError,
    InvalidUnityAppError,
    MultipleUnityAppsFoundError,
    NotAUnityAppError,
    PathNotAFolderError,
    PathNotFoundError,
    UnknownPathError,
)
from formats import plist_to_text, read_plist
from utils import get_fixed_path, real_path, unquote

if TYPE_CHECKING:
    from launchers.steam import SteamLauncher


SCRIPT_NAME = "run_bepinex.sh"
PLIST_NAME = "Info.plist"
PLIST_DIR = "Contents"

DEFAULT_UNITY_INDICATORS = 2

_DOORSTOP_ENABLED = re.compile(r"export DOORSTOP_ENABLED?=")
_BEPINEX_CORE = re.compile(r"BepInEx/core/BepInEx", re.IGNORECASE)
_DYLIB = re.compile(r"dylib", re.IGNORECASE)
_DYLD_INSERT_LIBRARIES = re.compile(r"export DYLD_INSERT_LIBRARIES=")
_DOORSTOP_TOGGLE = re.compile(r"--doorstop-enabled?\b")
_SHEBANG = re.compile(rb"^#!\s*\S*\b(?:sh|bash|zsh|dash)\b")
_UNITY_STRING = re.compile(r"Unity Player|Unity Technologies")
_STEAM_SHIM = re.compile(r"^open\s+steam://(\w+)/(\d+)", re.IGNORECASE)

COMMON_UNITY_FILES = ("boot.config", "globalgamemanagers", "resources.assets")


def boolean_race(checks: Iterable[Callable[[], Any]], n: int = 1) -> bool:
    """
    Run `checks` concurrently and decide as soon as `n` of them return truthy.

    Returns True on the n-th truthy result without waiting for the remaining
    checks. If every check finishes without reaching the threshold, the first
    exception raised by a check (in completion order) is re-raised; with no
    exceptions the result is False.

    Args:
        checks: Zero-argument callables.
        n: Number of truthy results required. Clamped to the number of checks.
    """
    checks = list(checks)
    if not checks:
        return False
    threshold = max(1, min(n, len(checks)))

    executor = ThreadPoolExecutor(max_workers=len(checks))
    try:
        futures = [executor.submit(check) for check in checks]
        passed = 0
        first_error: BaseException | None = None
        for future in as_completed(futures):
            try:
                result = future.result()
            except Exception as e:
                if first_error is None:
                    first_error = e
                continue
            if result:
                passed += 1
                if passed >= threshold:
                    return True
        if first_error is not None:
            raise first_error
        return False
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


# --- Doorstop script ---

def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def is_shell_script(path: str | Path) -> bool:
    path = Path(path)
    if path.suffix.lower() == ".sh":
        return path.is_file()
    with open(path, "rb") as f:
        return bool(_SHEBANG.match(f.read(64)))


def is_doorstop_script(path: str | Path) -> bool:
    path = Path(path)
    return is_shell_script(path) and bool(_DOORSTOP_ENABLED.search(_read_text(path)))


def has_bepinex_core(path: str | Path) -> bool:
    return bool(_BEPINEX_CORE.search(_read_text(Path(path))))


def has_macos_support(path: str | Path) -> bool:
    text = _read_text(Path(path))
    return bool(_DYLIB.search(text)) and bool(_DYLD_INSERT_LIBRARIES.search(text))


def has_doorstop_libs(path: str | Path) -> bool:
    """Check for `libdoorstop.dylib` (doorstop 4) or `doorstop_libs/` (doorstop 3) next to the script."""
    folder = Path(path).parent
    return (folder / "libdoorstop.dylib").is_file() or (folder / "doorstop_libs").is_dir()


def supports_doorstop_toggle(path: str | Path) -> bool:
    """Check whether the script understands `--doorstop-enabled false`."""
    return bool(_DOORSTOP_TOGGLE.search(_read_text(Path(path))))


def is_bepinex_script(path: str | Path) -> bool:
    return (
        is_doorstop_script(path)
        and has_bepinex_core(path)
        and has_macos_support(path)
        and has_doorstop_libs(path)
    )


def _walk_files(folder: Path) -> Iterator[Path]:
    for root, dirs, files in os.walk(folder, followlinks=True):
        dirs.sort()
        for name in sorted(files):
            yield Path(root) / name


def get_bepinex_script_path(value: str) -> Path:
    """
    Resolve a pasted path to the `run_bepinex.sh` script of a macOS BepInEx pack.

    `value` may point at the script itself, at the pack folder, or at a file
    inside the pack; a file which is not the script is retried once against
    its parent folder.

    Raises:
        PathNotFoundError: the path does not exist.
        UnknownPathError: the path could not be inspected.
        InvalidBepInExPackError: no valid pack was found.
        InvalidDoorstopScriptError: the file is not a BepInEx run script.
        DoorstopScriptMissingPlatformSupportError: the script does not support macOS.
    """
    text = unquote(value)
    path = get_fixed_path(text)
    if path is None:
        raise PathNotFoundError(text)

    try:
        is_dir = path.is_dir()
    except OSError as e:
        raise UnknownPathError(path) from e

    if is_dir:
        try:
            for file_path in _walk_files(path):
                try:
                    if is_bepinex_script(file_path):
                        return real_path(file_path)
                except OSError:
                    continue
        except OSError as e:
            raise UnknownPathError(path) from e
        raise InvalidBepInExPackError(path)

    try:
        looks_like_script = is_doorstop_script(path) and has_bepinex_core(path)
    except OSError as e:
        raise UnknownPathError(path) from e

    if not looks_like_script:
        try:
            return get_bepinex_script_path(str(path.parent))
        except InstallerError as e:
            raise InvalidDoorstopScriptError(path) from e

    if not has_macos_support(path):
        raise DoorstopScriptMissingPlatformSupportError(path)

    if not has_doorstop_libs(path):
        raise InvalidBepInExPackError(path.parent)

    return real_path(path)


# --- Unity app ---

class UnityApp(NamedTuple):
    """A macOS app found on disk which looks like a Unity game."""
    name: str | None
    bundle: Path
    executable: Path | None
    plist_path: Path
    plist: dict


def find_plist_path(path: str | Path) -> Path | None:
    """
    Find the `Info.plist` of a macOS app, given the app, its `Contents`
    folder or the plist itself.
    """
    path = Path(path)
    if path.name == PLIST_NAME and path.parent.name == PLIST_DIR:
        return real_path(path) if path.is_file() and os.access(path, os.R_OK) else None
    if path.name == PLIST_DIR:
        return find_plist_path(path / PLIST_NAME)
    if path.suffix.lower() == ".app":
        return find_plist_path(path / PLIST_DIR)
    return None


def has_unity_build_number(plist: Path) -> bool:
    return "UnityBuildNumber" in read_plist(plist)


def has_common_unity_string(plist: Path) -> bool:
    return bool(_UNITY_STRING.search(plist_to_text(read_plist(plist))))


def has_unity_player_dylib(plist: Path) -> bool:
    return (plist.parent / "Frameworks" / "UnityPlayer.dylib").is_file()


def has_common_unity_files(plist: Path) -> bool:
    contents = plist.parent
    return any(
        (folder / name).is_file()
        for folder in (contents / "Data", contents / "Resources" / "Data")
        for name in COMMON_UNITY_FILES
    )


def has_unity_app_indicators(plist: str | Path, n: int = DEFAULT_UNITY_INDICATORS) -> bool:
    """
    Decide whether the app owning `plist` is a Unity game.

    Four independent indicators are checked concurrently and the app passes
    once `n` of them agree, so a single stripped or missing indicator does
    not reject a real Unity game.
    """
    plist = Path(plist)
    probes = [
        has_unity_build_number,
        has_common_unity_string,
        has_unity_player_dylib,
        has_common_unity_files,
    ]
    return boolean_race([partial(probe, plist) for probe in probes], n)


def _search_plists(folder: Path) -> Iterator[Path]:
    for plist in sorted(folder.rglob(PLIST_NAME)):
        if plist.parent.name == PLIST_DIR and plist.parent.parent.suffix.lower() in (".app", ""):
            yield plist


def _search_dir(path: Path) -> Path | None:
    parts = path.parts
    contents_index = max((i for i, part in enumerate(parts) if part == PLIST_DIR), default=-1)
    is_dir = path.is_dir()

    if (path.suffix.lower() == ".app" or path.name == PLIST_DIR) and is_dir:
        return path
    if contents_index >= 0:
        return Path(*parts[:contents_index + 1])
    if not path.exists():
        return None
    return path if is_dir else path.parent


def search_unity_apps(path: str | Path, n: int = DEFAULT_UNITY_INDICATORS) -> Iterator[UnityApp]:
    """Search `path` recursively for native macOS Unity apps."""
    folder = _search_dir(Path(path))
    if folder is None:
        return

    for plist_path in _search_plists(folder):
        try:
            if not has_unity_app_indicators(plist_path, n):
                continue
            plist = read_plist(plist_path)
        except Exception:
            continue

        contents = plist_path.parent
        bundle = contents.parent if contents.parent.suffix.lower() == ".app" else contents
        executable_name = plist.get("CFBundleExecutable")
        yield UnityApp(
            name=plist.get("CFBundleName"),
            bundle=bundle,
            executable=contents / "MacOS" / executable_name if executable_name else None,
            plist_path=plist_path,
            plist=plist,
        )


def _best_path(app: UnityApp) -> Path:
    if app.bundle.suffix.lower() == ".app" or app.executable is None:
        return real_path(app.bundle)
    return real_path(app.executable)


def _single_unity_app(folder: Path, n: int) -> Path | None:
    apps = list(search_unity_apps(folder, n))
    if len(apps) > 1:
        raise MultipleUnityAppsFoundError([str(app.bundle) for app in apps])
    return _best_path(apps[0]) if apps else None


def _follow_steam_shim(plist_path: Path, plist: dict, steam: "SteamLauncher", n: int) -> Path | None:
    """
    Follow an app whose executable only runs `open steam://rungameid/<id>`
    to the real Unity app installed by Steam.
    """
    executable_name = plist.get("CFBundleExecutable")
    if not executable_name:
        return None
    executable = plist_path.parent / "MacOS" / executable_name
    try:
        if not is_shell_script(executable):
            return None
        lines = [
            line.strip() for line in _read_text(executable).splitlines()
            if line.strip() and not line.strip().startswith("#")
        ]
    except OSError:
        return None

    if len(lines) != 1:
        return None
    match = _STEAM_SHIM.match(lines[0])
    if not match or match.group(1).lower() not in ("launch", "run", "rungameid"):
        return None

    steam_app = steam.get_app_by_id(match.group(2))
    if steam_app is None:
        return None
    return _single_unity_app(Path(steam_app.path), n)


def get_unity_app_path(
    value: str,
    n: int = DEFAULT_UNITY_INDICATORS,
    steam: "SteamLauncher | None" = None,
) -> Path:
    """
    Resolve a pasted path to a native macOS Unity app.

    Raises:
        PathNotFoundError: the path does not exist.
        PathNotAFolderError: an `.app` path which is not a folder.
        InvalidUnityAppError: no Unity app was found.
        MultipleUnityAppsFoundError: a folder holds more than one Unity app.
        NotAUnityAppError: the app is not a Unity game.
    """
    text = unquote(value)
    path = get_fixed_path(text)
    if path is None:
        raise PathNotFoundError(text)

    if path.suffix.lower() != ".app" and path.name != PLIST_DIR:
        folder = path if path.is_dir() else path.parent
        found = _single_unity_app(folder, n)
        if found is None:
            raise InvalidUnityAppError(path)
        return found

    if not path.is_dir():
        raise PathNotAFolderError(path)

    plist_path = path / PLIST_NAME if path.name == PLIST_DIR else path / PLIST_DIR / PLIST_NAME
    if not plist_path.is_file():
        raise InvalidUnityAppError(path)

    try:
        plist = read_plist(plist_path)
    except Exception as e:
        raise InvalidUnityAppError(path) from e

    if steam is not None:
        followed = _follow_steam_shim(plist_path, plist, steam, n)
        if followed is not None:
            return followed

    try:
        is_unity = has_unity_app_indicators(plist_path, n)
    except Exception as e:
        raise NotAUnityAppError(path) from e
    if not is_unity:
        raise NotAUnityAppError(path)

    if path.name == PLIST_DIR:
        if path.parent.suffix.lower() == ".app":
            return real_path(path.parent)
        return real_path(plist_path.parent / "MacOS" / plist.get("CFBundleExecutable", ""))
    return real_path(path)
