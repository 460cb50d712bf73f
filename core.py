import configparser
import os
import re
import shutil
from pathlib import Path
from typing import Callable

from detection import SCRIPT_NAME
from formats import read_plist
from utils import (
    ProcessInfo,
    find_processes_by_name,
    get_exe_path,
    is_path_inside,
    real_path,
)


DEFAULT_RELEASE_API_URL = "https://api.github.com/repos/BepInEx/BepInEx/releases/latest"
DEFAULT_FALLBACK_PACK_URL = (
    "https://github.com/BepInEx/BepInEx/releases/download/v5.4.23.2/BepInEx_macos_x64_5.4.23.2.zip"
)

IGNORED_FILES = (".DS_Store",)
SCRIPT_MODE = 0o764


class _ConfigOptionBase:
    def __init__(self, config_parent: "Config", section: str, option: str, default=None) -> None:
        self.config_parent = config_parent
        self.section = section
        self.option = option
        self.default = default

    def _get_raw(self) -> str | None:
        try:
            val = self.config_parent.config.get(self.section, self.option)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return None
        if not val or val.strip() == "":
            return None
        return val

    def _set_raw(self, value: str) -> None:
        if not self.config_parent.config.has_section(self.section):
            self.config_parent.config.add_section(self.section)
        self.config_parent.config.set(self.section, self.option, value)
        self.config_parent._save_config()

class StringConfig(_ConfigOptionBase):
    def get(self) -> str | None:
        val = self._get_raw()
        return val if val is not None else self.default

    def set(self, value: str) -> str:
        self._set_raw(value)
        return value

class IntConfig(_ConfigOptionBase):
    def get(self) -> int | None:
        val = self._get_raw()
        try:
            return int(val) if val is not None else self.default
        except ValueError:
            return self.default

    def set(self, value: int) -> int:
        self._set_raw(str(value))
        return value

class FloatConfig(_ConfigOptionBase):
    def get(self) -> float | None:
        val = self._get_raw()
        try:
            return float(val) if val is not None else self.default
        except ValueError:
            return self.default

    def set(self, value: float) -> float:
        self._set_raw(str(value))
        return value

class Config:
    def __init__(self, config_file: str = 'config.ini'):
        self.config = configparser.ConfigParser()
        # config.ini lives next to the executable, not inside the package
        config_path = Path(config_file)
        if not config_path.is_absolute():
            self.config_file = get_exe_path(config_file)
        else:
            self.config_file = config_path
        self._load_config()

        self.WaitTimeout = FloatConfig(self, 'Verification', 'wait_timeout', 30.0)
        self.PollInterval = FloatConfig(self, 'Verification', 'poll_interval', 0.2)

        self.QuitTimeout = FloatConfig(self, 'Steam', 'quit_timeout', 10.0)

        self.UnityIndicators = IntConfig(self, 'Detection', 'unity_indicators', 2)

        self.ReleaseApiUrl = StringConfig(self, 'Updates', 'release_api_url', DEFAULT_RELEASE_API_URL)
        self.FallbackPackUrl = StringConfig(self, 'Updates', 'fallback_pack_url', DEFAULT_FALLBACK_PACK_URL)

    def _load_config(self) -> None:
        if self.config_file.exists():
            self.config.read(self.config_file, encoding='utf-8')

    def _save_config(self) -> None:
        with open(self.config_file, 'w', encoding='utf-8') as configfile:
            self.config.write(configfile)


# --- run_bepinex.sh patching ---
# Every rule takes (text, executable_name) and must leave already-patched text unchanged.

CD_GUARD = 'cd "$(dirname "$0")" || exit 1'
BUNDLE_MARKER = "# bepinex-installer: re-wrap bare executable as its app bundle"
CODESIGN_MARKER = "# bepinex-installer: strip code signature"

_EMPTY_EXECUTABLE_NAME = '\nexecutable_name=""'
_BROKEN_CASE = re.compile(r"case \$real_executable_name in(\s*\n\s*\*\.app/Contents/MacOS/\*\))")
_BUNDLE_ANCHOR = re.compile(r"^([ \t]*).*?real_executable_name=\$\(defaults read", re.MULTILINE)
_CODESIGN_ANCHOR = re.compile(r"^([ \t]*)export DYLD_INSERT_LIBRARIES=", re.MULTILINE)

_BUNDLE_BLOCK = (
    BUNDLE_MARKER,
    'case "$executable_path" in',
    '    *.app/Contents/MacOS/*) executable_path="${executable_path%/Contents/MacOS/*}" ;;',
    'esac',
)

_CODESIGN_BLOCK = (
    CODESIGN_MARKER,
    'if codesign -v "$executable_path" >/dev/null 2>&1; then',
    '    codesign --remove-signature "$executable_path" >/dev/null 2>&1 || true',
    'fi',
)


def normalize_line_endings(text: str, executable_name: str) -> str:
    return text.replace("\r\n", "\n")


def fill_executable_name(text: str, executable_name: str) -> str:
    if _EMPTY_EXECUTABLE_NAME not in text:
        return text
    return text.replace(_EMPTY_EXECUTABLE_NAME, f'\nexecutable_name="{executable_name}"', 1)


def insert_cd_guard(text: str, executable_name: str) -> str:
    if CD_GUARD in text:
        return text
    if text.startswith("#!"):
        shebang, sep, rest = text.partition("\n")
        return f"{shebang}\n{CD_GUARD}\n{rest}" if sep else f"{shebang}\n{CD_GUARD}\n"
    return f"{CD_GUARD}\n{text}"


def fix_bundle_case_match(text: str, executable_name: str) -> str:
    return _BROKEN_CASE.sub(r"case $executable_path in\1", text)


def _insert_block(text: str, anchor: re.Pattern, marker: str, block: tuple[str, ...]) -> str:
    if marker in text:
        return text
    match = anchor.search(text)
    if not match:
        return text
    indent = match.group(1)
    lines = "".join(f"{indent}{line}\n" if line else "\n" for line in block)
    return text[:match.start()] + lines + text[match.start():]


def insert_bundle_wrapper(text: str, executable_name: str) -> str:
    return _insert_block(text, _BUNDLE_ANCHOR, BUNDLE_MARKER, _BUNDLE_BLOCK)


def insert_codesign_strip(text: str, executable_name: str) -> str:
    return _insert_block(text, _CODESIGN_ANCHOR, CODESIGN_MARKER, _CODESIGN_BLOCK)


PATCH_RULES: tuple[Callable[[str, str], str], ...] = (
    normalize_line_endings,
    fill_executable_name,
    insert_cd_guard,
    fix_bundle_case_match,
    insert_bundle_wrapper,
    insert_codesign_strip,
)


def patch_script(text: str, executable_name: str) -> str:
    """
    Apply every patch rule to the text of a `run_bepinex.sh` copy, in order.

    Patching already-patched text returns it unchanged.

    Args:
        text: The script text.
        executable_name: Name of the game's app bundle, e.g. "Game.app".
    """
    for rule in PATCH_RULES:
        text = rule(text, executable_name)
    return text


class BepInExInstaller:
    def __init__(self, logger: Callable[[str], None] | None = None) -> None:
        self.logger: Callable[[str], None] = logger if logger else lambda msg: None

    def log(self, message: str) -> None:
        self.logger(message)

    def get_pack_files(self, pack_path: Path) -> list[Path]:
        """Every file in the pack, dotfiles included, except Finder metadata."""
        files = []
        for root, dirs, names in os.walk(pack_path, followlinks=True):
            dirs.sort()
            for name in sorted(names):
                if name in IGNORED_FILES:
                    continue
                files.append(Path(root) / name)
        return files

    def install(self, pack_path: Path, game_path: Path, app_path: Path) -> Path:
        """
        Copy a BepInEx pack into the game folder and patch its run script.

        Args:
            pack_path: Folder containing the pack's `run_bepinex.sh`.
            game_path: Folder containing the game's app bundle.
            app_path: The game's app bundle.

        Returns:
            Path to the installed `run_bepinex.sh`.
        """
        pack_path = Path(pack_path)
        game_path = Path(game_path)
        script_destination = game_path / SCRIPT_NAME

        self.log(f"Installing BepInEx from {pack_path} to {game_path}")
        for source in self.get_pack_files(pack_path):
            relative = source.relative_to(pack_path)
            destination = game_path / relative
            destination.parent.mkdir(parents=True, exist_ok=True)

            if destination.exists() and os.path.samefile(source, destination):
                self.log(f"  - {relative.as_posix()} (already in place)")
            else:
                shutil.copy2(source, destination)
                self.log(f"  - {relative.as_posix()}")

            if relative.as_posix() == SCRIPT_NAME:
                self.patch_installed_script(destination, Path(app_path).name)

        return script_destination

    def patch_installed_script(self, script_path: Path, executable_name: str) -> bool:
        """Patch an installed run script in place. Returns True if its text changed."""
        with open(script_path, "r", encoding="utf-8", newline="") as f:
            original = f.read()

        patched = patch_script(original, executable_name)
        changed = patched != original
        if changed:
            with open(script_path, "w", encoding="utf-8", newline="") as f:
                f.write(patched)
            self.log(f"Configured {script_path.name} for {executable_name}")

        os.chmod(script_path, SCRIPT_MODE)
        return changed


class UnityGame:
    """A native macOS Unity game: its app bundle and its running processes."""

    def __init__(self, app_path: Path) -> None:
        self.app_path = Path(app_path)
        self.game_path = real_path(self.app_path.parent)

    @property
    def executable_name(self) -> str:
        try:
            plist = read_plist(self.app_path / "Contents" / "Info.plist")
        except (OSError, ValueError):
            return self.app_path.stem
        return plist.get("CFBundleExecutable") or self.app_path.stem

    @property
    def log_path(self) -> Path:
        return self.game_path / "BepInEx" / "LogOutput.log"

    def get_processes(self) -> list[ProcessInfo]:
        """Running processes of the game's executable, from inside the game's folder."""
        return [
            process for process in find_processes_by_name(self.executable_name)
            if process.exe and is_path_inside(real_path(process.exe), self.game_path)
        ]
