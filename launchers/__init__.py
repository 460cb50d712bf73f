from launchers.base import App, AppRef, Launcher
from launchers.epic import EpicGamesLauncher
from launchers.steam import LibraryFolder, SteamLauncher

__all__ = [
    "App",
    "AppRef",
    "Launcher",
    "EpicGamesLauncher",
    "LibraryFolder",
    "SteamLauncher",
]
