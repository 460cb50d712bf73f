"""Install BepInEx and wire the game into whichever launcher owns it."""
import subprocess
from pathlib import Path
from typing import Callable

from core import BepInExInstaller
from detection import supports_doorstop_toggle
from errors import AmbiguousOwnershipError, LaunchConfigMutationError, ShortcutMutationError
from launchers.base import App, AppRef, Launcher
from launchers.epic import EpicGamesLauncher
from launchers.steam import SteamLauncher
from shortcut import create_shim_bundle, create_steam_shortcut, get_shim_path


LAUNCH_OPTIONS_TEMPLATE = '"{script}" "%command%"'
DOORSTOP_DISABLED_ARGS = ("--doorstop-enabled", "false")


def get_launch_options(script_path: Path) -> str:
    return LAUNCH_OPTIONS_TEMPLATE.format(script=script_path)


class LaunchConfigurator:
    """
    Decides how the game is launched from how many launchers own it:

    - none: install, then optionally add a Steam shortcut to a modded shim;
    - Steam: install, set the Steam launch options to run BepInEx, then
      optionally add a Steam shortcut to a vanilla shim;
    - Epic: install as for none, since Epic has no launch options to set;
    - more than one: refuse before anything is written.
    """

    def __init__(
        self,
        steam: SteamLauncher,
        epic: EpicGamesLauncher,
        installer: BepInExInstaller,
        confirm: Callable[[str], bool],
        fetch_pack: Callable[[], Path],
        logger: Callable[[str], None] | None = None,
    ) -> None:
        self.steam = steam
        self.epic = epic
        self.installer = installer
        self.confirm = confirm
        self.fetch_pack = fetch_pack
        self.launched: list[subprocess.Popen] = []
        self.logger: Callable[[str], None] = logger if logger else lambda msg: None

    def log(self, message: str) -> None:
        self.logger(message)

    def reap(self, timeout: float = 5.0) -> None:
        """Wait for the run scripts started by `launch` once verification is over."""
        while self.launched:
            process = self.launched.pop()
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                self.log(f"{process.args[0]} is still running (pid {process.pid}).")

    @property
    def launchers(self) -> list[Launcher]:
        return [self.steam, self.epic]

    def find_owners(self, game_path: Path) -> list[App]:
        """Every app, across installed launchers, installed at `game_path`."""
        owners: list[App] = []
        for launcher in self.launchers:
            if launcher.is_installed():
                owners.extend(launcher.get_apps_by_path(game_path))
        return owners

    def configure(self, script_path: Path, app_path: Path) -> Callable[[], object]:
        """
        Install the pack at `script_path` next to `app_path` and set up launching.

        Returns:
            A callable which launches the game the way it was configured.

        Raises:
            AmbiguousOwnershipError: more than one launcher app owns the game.
            LaunchConfigMutationError: the Steam launch options could not be set.
            ShortcutMutationError: an accepted shortcut could not be added.
        """
        script_path = Path(script_path)
        app_path = Path(app_path)
        game_path = app_path.parent

        owners = self.find_owners(game_path)
        if len(owners) > 1:
            raise AmbiguousOwnershipError(
                game_path,
                [f"{owner.launcher}: {owner.name} ({owner.id})" for owner in owners],
            )

        installed_script = self.installer.install(script_path.parent, game_path, app_path)

        if owners and owners[0].launcher == self.steam.name:
            return self._configure_steam(owners[0], installed_script, app_path)

        if owners:
            self.log(f"{owners[0].launcher} owns {owners[0].name} but has no launch options to set.")
        return self._configure_unmanaged(installed_script, app_path)

    # --- No launch options to manage ---

    def _configure_unmanaged(self, installed_script: Path, app_path: Path) -> Callable[[], object]:
        command = [str(installed_script), str(app_path)]

        if self.steam.is_installed() and self.confirm(
            "Add a Steam shortcut which launches the game with BepInEx?"
        ):
            shim_path = get_shim_path(app_path, "Modded")
            create_shim_bundle(app_path, shim_path, command)
            self._add_shortcut(shim_path)

        def launch() -> subprocess.Popen:
            self.log(f"Launching {app_path.name} with BepInEx...")
            process = subprocess.Popen(
                command,
                cwd=str(installed_script.parent),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                stdin=subprocess.DEVNULL,
            )
            self.launched.append(process)
            return process

        return launch

    # --- Steam ---

    def _configure_steam(self, app: App, installed_script: Path, app_path: Path) -> Callable[[], object]:
        options = get_launch_options(installed_script)
        if not self.steam.set_launch_options(AppRef.of_app(app), options):
            raise LaunchConfigMutationError(app.path)
        self.log(f"Steam launch options for {app.name}: {options}")

        if self.confirm("Add a Steam shortcut which launches the game without BepInEx?"):
            self._add_vanilla_shortcut(installed_script, app_path)

        return lambda: self.steam.launch(AppRef.of_app(app))

    def _add_vanilla_shortcut(self, installed_script: Path, app_path: Path) -> None:
        if not supports_doorstop_toggle(installed_script):
            if not self.confirm(
                "This BepInEx pack cannot be switched off at launch. "
                "Download the latest macOS BepInEx 5 pack and install it over this one?"
            ):
                self.log("Skipped the shortcut without BepInEx.")
                return

            replacement = self.fetch_pack()
            installed_script = self.installer.install(replacement.parent, app_path.parent, app_path)
            if not supports_doorstop_toggle(installed_script):
                self.log("The downloaded pack cannot be switched off either; skipped the shortcut.")
                return

        shim_path = get_shim_path(app_path, "Vanilla")
        create_shim_bundle(
            app_path,
            shim_path,
            [str(installed_script), str(app_path), *DOORSTOP_DISABLED_ARGS],
        )
        self._add_shortcut(shim_path)

    def _add_shortcut(self, shim_path: Path) -> None:
        success, message = create_steam_shortcut(self.steam, shim_path.stem, shim_path)
        if not success:
            raise ShortcutMutationError(shim_path, message)
        self.log(message)
