"""Epic Games Launcher: installed apps from `LauncherInstalled.dat` and `*.item` manifests."""
import json
from pathlib import Path
from typing import Any, Callable, Iterator

from formats import read_json
from launchers.base import App, Launcher
from utils import is_protocol_registered


EPIC_DATA_PATH = (
    Path.home() / "Library" / "Application Support" / "Epic" / "EpicGamesLauncher" / "Data"
)


class EpicGamesLauncher(Launcher):
    """
    An abstraction for working with the Epic Games Launcher and its apps.

    Epic has no per-app launch options or shortcut list that can be edited,
    so only app lookup and launching are supported.
    """

    name = "Epic Games Launcher"

    def __init__(
        self,
        data_path: str | Path | None = None,
        logger: Callable[[str], None] | None = None,
    ) -> None:
        super().__init__(logger)
        self.data_path = Path(data_path) if data_path else EPIC_DATA_PATH

    @property
    def manifests_path(self) -> Path:
        return self.data_path / "Manifests"

    @property
    def launcher_installed_path(self) -> Path:
        return self.data_path / ".." / ".." / "UnrealEngineLauncher" / "LauncherInstalled.dat"

    def is_installed(self) -> bool:
        return self.manifests_path.is_dir() or is_protocol_registered("com.epicgames.launcher")

    def get_installation_list(self) -> list[dict[str, Any]]:
        if not self.launcher_installed_path.is_file():
            return []
        installed = read_json(self.launcher_installed_path)
        entries = installed.get("InstallationList", []) if isinstance(installed, dict) else []
        return [entry for entry in entries if isinstance(entry, dict)]

    def get_manifests(self) -> Iterator[dict[str, Any]]:
        if not self.manifests_path.is_dir():
            return
        for path in sorted(self.manifests_path.glob("*.item")):
            try:
                manifest = read_json(path)
            except (OSError, json.JSONDecodeError, UnicodeDecodeError):
                continue
            if isinstance(manifest, dict) and manifest.get("AppName") and manifest.get("InstallLocation"):
                yield manifest

    def _make_app(self, manifest: dict[str, Any]) -> App:
        return App(
            id=manifest["AppName"],
            name=manifest.get("DisplayName") or manifest["AppName"],
            path=Path(manifest["InstallLocation"]),
            launcher=self.name,
            manifest=manifest,
        )

    def get_apps(self) -> Iterator[App]:
        """Apps with both a manifest and an entry in `LauncherInstalled.dat`."""
        installation_list = self.get_installation_list()
        for manifest in self.get_manifests():
            app_name = manifest["AppName"]
            info = next(
                (
                    entry for entry in installation_list
                    if app_name in (entry.get("ArtifactId"), entry.get("AppName"))
                ),
                None,
            )
            if info is not None:
                yield self._make_app({**info, **manifest})

    @staticmethod
    def get_launch_id(app: App) -> str:
        """`namespace:item:artifact`, the id Epic's launch links expect."""
        manifest = app.manifest
        return ":".join([
            manifest.get("CatalogNamespace") or manifest.get("NamespaceId", ""),
            manifest.get("CatalogItemId") or manifest.get("ItemId", ""),
            manifest.get("ArtifactId") or manifest.get("AppName", app.id),
        ])

    def get_launch_url(self, app: App) -> str:
        return f"com.epicgames.launcher://apps/{self.get_launch_id(app)}?action=launch&silent=true"
