"""Exceptions raised while locating, installing and verifying BepInEx."""
from pathlib import Path


class InstallerError(Exception):
    """Base exception for installer errors."""

    message = "Installer error"

    def __init__(self, path: str | Path | None = None, message: str | None = None) -> None:
        self.path = str(path) if path is not None else None
        super().__init__(message or self.message)


# --- Paths ---

class PathNotFoundError(InstallerError):
    message = "Could not find path"


class PathNotAFolderError(InstallerError):
    message = "Path is not a folder"


class UnknownPathError(InstallerError):
    message = "Unknown error validating path"


# --- BepInEx pack ---

class InvalidBepInExPackError(InstallerError):
    message = "Could not find a valid BepInEx pack"


class InvalidDoorstopScriptError(InstallerError):
    message = "Not a valid BepInEx run script"


class DoorstopScriptMissingPlatformSupportError(InstallerError):
    def __init__(self, path: str | Path, platform: str = "macOS") -> None:
        self.platform = platform
        super().__init__(path, f"BepInEx run script does not support {platform}")


# --- Unity app ---

class InvalidUnityAppError(InstallerError):
    message = "Could not find a valid Unity app"


class MultipleUnityAppsFoundError(InstallerError):
    def __init__(self, apps: list[str]) -> None:
        self.apps = apps
        super().__init__(None, "Multiple Unity apps found:\n" + "\n".join(apps))


class NotAUnityAppError(InstallerError):
    message = "App does not appear to be a Unity game"


# --- Launchers ---

class AmbiguousOwnershipError(InstallerError):
    def __init__(self, path: str | Path, owners: list[str]) -> None:
        self.owners = owners
        super().__init__(path, f"Cannot tell which launcher owns the game: {', '.join(owners)}")


class LaunchConfigMutationError(InstallerError):
    message = "Failed to set launch options"


class ShortcutMutationError(InstallerError):
    message = "Failed to add shortcut"


class PackDownloadError(InstallerError):
    message = "Failed to download BepInEx pack"


# --- Run ---

class UserCancelledError(InstallerError):
    message = "User cancelled installation"


class VerificationTimedOutError(InstallerError):
    message = "Timed out waiting for the game to launch"


class VerificationModNotDetectedError(InstallerError):
    message = "Failed to detect BepInEx"
