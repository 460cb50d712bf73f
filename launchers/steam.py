"""Steam: library folders, app manifests, users, launch options and shortcuts."""
import time
import zlib
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, NamedTuple

from formats import (
    Tree,
    find_key,
    get_ci,
    read_shortcuts,
    read_vdf,
    set_ci,
    write_shortcuts,
    write_vdf,
)
from launchers.base import App, AppRef, Launcher
from utils import (
    ProcessInfo,
    find_processes_by_name,
    is_path_inside,
    is_protocol_registered,
    kill_process,
    open_url,
    real_path,
)


STEAM_PATH = Path.home() / "Library" / "Application Support" / "Steam"

DEFAULT_QUIT_TIMEOUT = 10.0

_LOCALCONFIG_APPS = ("UserLocalConfigStore", "Software", "Valve", "Steam", "apps")


class LibraryFolder(NamedTuple):
    """A Steam library folder and the ids of the apps installed in it."""
    path: Path
    apps: set[str]


class SteamUser(NamedTuple):
    """An entry of `loginusers.vdf`, keyed by SteamID64."""
    steam_id: str
    account_id: int
    info: dict[str, Any]


def to_account_id(user_id: str | int) -> int:
    """Convert a SteamID64 (or a bare account id) to the account id used under `userdata/`."""
    return int(user_id) & 0xFFFFFFFF


def _is_truthy(value: Any) -> bool:
    return str(value).strip().lower() in ("1", "true")


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class SteamLauncher(Launcher):
    """An abstraction for working with Steam and its apps."""

    name = "Steam"

    def __init__(
        self,
        steam_path: str | Path | None = None,
        logger: Callable[[str], None] | None = None,
        quit_timeout: float = DEFAULT_QUIT_TIMEOUT,
        poll_interval: float = 0.5,
    ) -> None:
        super().__init__(logger)
        self.steam_path = Path(steam_path) if steam_path else STEAM_PATH
        self.quit_timeout = quit_timeout
        self.poll_interval = poll_interval

    @property
    def libraryfolders_path(self) -> Path:
        return self.steam_path / "config" / "libraryfolders.vdf"

    @property
    def loginusers_path(self) -> Path:
        return self.steam_path / "config" / "loginusers.vdf"

    def is_installed(self) -> bool:
        """Steam counts as installed if it has library folders or a `steam://` handler."""
        return self.libraryfolders_path.is_file() or is_protocol_registered("steam")

    # --- Library folders and apps ---

    def get_library_folders(self) -> list[LibraryFolder]:
        """Read every library folder listed in `libraryfolders.vdf`."""
        if not self.libraryfolders_path.is_file():
            return []

        tree = read_vdf(self.libraryfolders_path)
        folders = get_ci(tree, "libraryfolders", default={})
        result = []
        for key, folder in folders.items():
            if not isinstance(folder, dict):
                continue
            path = get_ci(folder, "path")
            if not path:
                continue
            apps = get_ci(folder, "apps", default={})
            result.append(LibraryFolder(Path(path), set(apps) if isinstance(apps, dict) else set()))
        return result

    def _read_app(self, manifest_path: Path, library: Path) -> App | None:
        manifest = read_vdf(manifest_path)
        state = get_ci(manifest, "AppState")
        if not isinstance(state, dict):
            return None
        app_id = get_ci(state, "appid")
        install_dir = get_ci(state, "installdir")
        if app_id is None or not install_dir:
            return None
        return App(
            id=str(app_id),
            name=get_ci(state, "name", default=str(app_id)),
            path=library / "steamapps" / "common" / install_dir,
            launcher=self.name,
            manifest=manifest,
        )

    def _iter_manifests(self, library: Path) -> Iterator[App]:
        for manifest_path in sorted((library / "steamapps").glob("appmanifest_*.acf")):
            try:
                app = self._read_app(manifest_path, library)
            except (OSError, SyntaxError, ValueError):
                continue
            if app is not None:
                yield app

    def get_apps(self) -> Iterator[App]:
        for folder in self.get_library_folders():
            yield from self._iter_manifests(folder.path)

    def get_app_by_id(self, app_id: str) -> App | None:
        app_id = str(app_id)
        for folder in self.get_library_folders():
            if app_id not in folder.apps:
                continue
            manifest_path = folder.path / "steamapps" / f"appmanifest_{app_id}.acf"
            try:
                return self._read_app(manifest_path, folder.path)
            except (OSError, SyntaxError, ValueError):
                return None
        return None

    def get_apps_by_path(self, path: str | Path) -> Iterator[App]:
        """
        Yield Steam apps installed at `path`.

        `path` is expected to be `<library>/steamapps/common/<installdir>`.
        The library root is resolved through symlinks and must be one of the
        resolved library folders before any manifest is read; a manifest then
        matches on its `installdir`, never on the raw path string.
        """
        path = Path(path)
        library_root = real_path(path / ".." / ".." / "..")
        install_dir = path.name

        for folder in self.get_library_folders():
            if real_path(folder.path) != library_root:
                continue
            for app in self._iter_manifests(folder.path):
                if get_ci(app.manifest, "AppState", "installdir") == install_dir:
                    yield app

    def get_launch_url(self, app: App) -> str:
        return f"steam://rungameid/{app.id}"

    # --- Users ---

    def get_users(self) -> list[SteamUser]:
        """Read users who have logged in to Steam on this computer."""
        tree = read_vdf(self.loginusers_path)
        users = get_ci(tree, "users", default={})
        return [
            SteamUser(steam_id, to_account_id(steam_id), info)
            for steam_id, info in users.items()
            if isinstance(info, dict) and str(steam_id).isdigit()
        ]

    def get_most_recent_user(self) -> SteamUser | None:
        """
        The user flagged `MostRecent`; if several are flagged (or none), the one
        with the latest `Timestamp`.
        """
        try:
            users = self.get_users()
        except (OSError, SyntaxError, ValueError):
            return None
        if not users:
            return None

        flagged = [user for user in users if _is_truthy(get_ci(user.info, "MostRecent"))]
        candidates = flagged or users
        return max(candidates, key=lambda user: _to_int(get_ci(user.info, "Timestamp")))

    def get_user_config_path(self, user_id: str | int | None = None) -> Path | None:
        """`userdata/<accountid>/config` for `user_id`, or for the most recent user."""
        if user_id is None:
            user = self.get_most_recent_user()
            if user is None:
                return None
            account_id = user.account_id
        else:
            account_id = to_account_id(user_id)
        return self.steam_path / "userdata" / str(account_id) / "config"

    # --- Processes ---

    def get_processes(self) -> list[ProcessInfo]:
        """Running Steam processes: top-level, with an executable inside the Steam folder."""
        processes = []
        for process in find_processes_by_name("steam"):
            if process.ppid is not None and process.ppid != 1:
                continue
            if not process.exe or not is_path_inside(process.exe, self.steam_path):
                continue
            processes.append(process)
        return processes

    def is_running(self) -> bool:
        return len(self.get_processes()) > 0

    def quit(self, timeout: float | None = None) -> bool:
        """
        Ask Steam to exit, then force quit whatever is left after `timeout` seconds.

        Returns:
            True if no Steam process is left running.
        """
        timeout = self.quit_timeout if timeout is None else timeout

        if self.is_running():
            self.log("Quitting Steam...")
            try:
                open_url("steam://exit")
            except OSError as e:
                self.log(f"Could not ask Steam to exit: {e}")

            deadline = time.monotonic() + timeout
            while time.monotonic() < deadline:
                if not self.is_running():
                    return True
                time.sleep(self.poll_interval)
            self.log("Steam did not quit in time, force quitting...")

        return all(kill_process(process.pid) for process in self.get_processes())

    # --- Launch options ---

    def _find_app_id(self, ref: "AppRef | App | str") -> str | None:
        app = self.resolve(ref)
        if app is not None:
            return app.id
        if isinstance(ref, AppRef):
            return ref.id
        return ref if isinstance(ref, str) else None

    def get_launch_options(self, ref: "AppRef | App | str", user_id: str | int | None = None) -> str | None:
        """Launch options of an app, or None if the user or the app entry cannot be found."""
        app_id = self._find_app_id(ref)
        config_path = self.get_user_config_path(user_id)
        if app_id is None or config_path is None:
            return None

        tree = read_vdf(config_path / "localconfig.vdf")
        value = get_ci(tree, *_LOCALCONFIG_APPS, app_id, "LaunchOptions")
        return None if value is None else str(value)

    def set_launch_options(
        self,
        ref: "AppRef | App | str",
        options: str,
        user_id: str | int | None = None,
    ) -> bool:
        """
        Set the launch options of an app.

        Quits Steam first, then rewrites the user's whole `localconfig.vdf`
        with only the one value changed.

        Returns:
            False if Steam would not quit, the user or their localconfig.vdf
            cannot be found or read, or the app has no entry yet.
        """
        app_id = self._find_app_id(ref)
        config_path = self.get_user_config_path(user_id)
        if app_id is None or config_path is None:
            return False

        if not self.quit():
            self.log("Steam is still running; launch options were not changed.")
            return False

        localconfig_path = config_path / "localconfig.vdf"
        try:
            tree = read_vdf(localconfig_path)
        except (OSError, SyntaxError, ValueError) as e:
            self.log(f"Could not read {localconfig_path}: {e}")
            return False
        entry = get_ci(tree, *_LOCALCONFIG_APPS, app_id)
        if not isinstance(entry, dict):
            return False

        set_ci(entry, "LaunchOptions", options)
        write_vdf(localconfig_path, tree)
        self.log(f"Set launch options for app {app_id}")
        return True

    # --- Shortcuts ---

    def get_shortcuts_path(self, user_id: str | int | None = None) -> Path | None:
        config_path = self.get_user_config_path(user_id)
        return config_path / "shortcuts.vdf" if config_path else None

    def get_shortcuts(self, user_id: str | int | None = None) -> Tree | None:
        """The user's shortcuts; an empty list if they have none yet, None if there is no user."""
        path = self.get_shortcuts_path(user_id)
        return read_shortcuts(path) if path else None

    @staticmethod
    def add_shortcut(shortcut: dict[str, Any], shortcuts: Tree) -> Tree:
        """
        Add `shortcut` to `shortcuts` under the key after the highest existing
        one (or "0"). Call `set_shortcuts` with the result to save it.
        """
        key = find_key(shortcuts, "shortcuts") or "shortcuts"
        entries = shortcuts.setdefault(key, {})
        indexes = [int(index) for index in entries if str(index).isdigit()]
        entries[str(max(indexes) + 1 if indexes else 0)] = shortcut
        return shortcuts

    @classmethod
    def add_shortcuts(cls, new_shortcuts: Iterable[dict[str, Any]], shortcuts: Tree) -> Tree:
        for shortcut in new_shortcuts:
            cls.add_shortcut(shortcut, shortcuts)
        return shortcuts

    def set_shortcuts(self, shortcuts: Tree, user_id: str | int | None = None) -> bool:
        """
        Overwrite the user's shortcuts. Quit Steam and read them with
        `get_shortcuts` first; never build `shortcuts` by hand.
        """
        path = self.get_shortcuts_path(user_id)
        if path is None:
            return False
        write_shortcuts(path, shortcuts)
        return True

    @staticmethod
    def make_shortcut_app_id(name: str, exe: str) -> int:
        """The id Steam derives for a non-Steam shortcut, as the signed int32 it is stored as."""
        app_id = (zlib.crc32((exe + name + "\x00").encode("utf-8")) & 0xFFFFFFFF) | 0x80000000
        return app_id - 0x100000000 if app_id > 0x7FFFFFFF else app_id

    @classmethod
    def make_shortcut(
        cls,
        name: str,
        exe: str | Path,
        icon: str | Path = "",
        start_dir: str | Path | None = None,
        launch_options: str = "",
    ) -> dict[str, Any]:
        exe_path = Path(exe)
        start_dir = Path(start_dir) if start_dir is not None else exe_path.parent
        quoted_exe = f'"{exe_path}"'
        return {
            "appid": cls.make_shortcut_app_id(name, quoted_exe),
            "AppName": name,
            "Exe": quoted_exe,
            "StartDir": f'"{start_dir}"',
            "icon": str(icon),
            "ShortcutPath": "",
            "LaunchOptions": launch_options,
            "IsHidden": 0,
            "AllowDesktopConfig": 1,
            "AllowOverlay": 1,
            "OpenVR": 0,
            "Devkit": 0,
            "DevkitGameID": "",
            "DevkitOverrideAppID": 0,
            "LastPlayTime": 0,
            "FlatpakAppID": "",
            "tags": {},
        }
