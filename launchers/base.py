"""Common contract shared by the Steam and Epic Games launchers."""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator

from utils import open_url, real_path


@dataclass(frozen=True)
class App:
    """
    A launcher's record of an installed game.

    `manifest` is the launcher's own record exactly as it was parsed,
    including keys this project does not use.
    """
    id: str
    name: str
    path: Path
    launcher: str
    manifest: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class AppRef:
    """Either an App or the id of one, resolved once by `Launcher.resolve`."""
    app: App | None = None
    id: str | None = None

    @classmethod
    def of_app(cls, app: App) -> "AppRef":
        return cls(app=app)

    @classmethod
    def of_id(cls, app_id: str | int) -> "AppRef":
        return cls(id=str(app_id))


class Launcher:
    """Base class for a game launcher which knows about installed apps."""

    name = "Launcher"

    def __init__(self, logger: Callable[[str], None] | None = None) -> None:
        self.logger: Callable[[str], None] = logger if logger else lambda msg: None

    def log(self, message: str) -> None:
        self.logger(message)

    def is_installed(self) -> bool:
        raise NotImplementedError

    def get_apps(self) -> Iterator[App]:
        raise NotImplementedError

    def get_app_by_id(self, app_id: str) -> App | None:
        for app in self.get_apps():
            if app.id == str(app_id):
                return app
        return None

    def get_apps_by_path(self, path: str | Path) -> Iterator[App]:
        """Yield every app installed at `path`, comparing resolved paths."""
        target = real_path(path)
        for app in self.get_apps():
            if real_path(app.path) == target:
                yield app

    def get_app_by_path(self, path: str | Path) -> App | None:
        return next(iter(self.get_apps_by_path(path)), None)

    def resolve(self, ref: "AppRef | App | str") -> App | None:
        """Turn an AppRef (or a bare App or id) into an App owned by this launcher."""
        if isinstance(ref, App):
            return ref
        if isinstance(ref, str):
            return self.get_app_by_id(ref)
        if ref.app is not None:
            return ref.app
        return self.get_app_by_id(ref.id) if ref.id is not None else None

    def get_launch_url(self, app: App) -> str:
        raise NotImplementedError

    def launch(self, ref: "AppRef | App | str") -> bool:
        """Ask the launcher to start an app. Returns False if the app is unknown."""
        app = self.resolve(ref)
        if app is None:
            return False
        self.log(f"Launching {app.name} with {self.name}...")
        open_url(self.get_launch_url(app))
        return True
