"""Utility functions for path handling and talking to the operating system."""
import os
import re
import signal
import subprocess
import sys
from pathlib import Path
from typing import NamedTuple

import psutil


LSREGISTER_PATH = Path(
    "/System/Library/Frameworks/CoreServices.framework/Frameworks/"
    "LaunchServices.framework/Support/lsregister"
)


class ProcessInfo(NamedTuple):
    """A snapshot of a running process."""
    pid: int
    name: str
    exe: str | None
    ppid: int | None


def get_exe_path(path: str = "") -> Path:
    """
    Get the absolute path relative to the executable directory.

    Use this for external files that should live next to the executable,
    such as config.ini.
    """
    return Path(sys.argv[0]).resolve().parent.joinpath(path)


def unquote(value: str) -> str:
    """Strip one pair of matching surrounding quotes from a pasted value."""
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def get_fixed_path(value: str) -> Path | None:
    """
    Turn a path pasted or dragged into the terminal into an existing path.

    Dragging a file into Terminal escapes spaces and other characters with
    backslashes, while copying it from Finder does not. Try both.

    Returns:
        An existing Path, or None if the path could not be resolved.
    """
    path = Path(os.path.expanduser(value))
    if path.exists():
        return path

    unescaped = "\\".join(part.replace("\\", "") for part in str(path).split("\\\\"))
    if Path(unescaped).exists():
        return Path(unescaped)
    return None


def real_path(path: str | Path) -> Path:
    """Resolve symlinks where possible, falling back to an absolute path."""
    try:
        return Path(os.path.realpath(path))
    except OSError:
        return Path(os.path.abspath(path))


def is_path_inside(path: str | Path, folder: str | Path) -> bool:
    """Check whether `path` is `folder` itself or somewhere beneath it."""
    try:
        relative = os.path.relpath(path, folder)
    except ValueError:
        return False
    return relative != ".." and not relative.startswith(".." + os.sep) and not os.path.isabs(relative)


def find_processes_by_name(name: str, exact: bool = False) -> list[ProcessInfo]:
    """
    Find running processes by name.

    Args:
        name: The process name to look for (case-insensitive).
        exact: Match the whole name instead of a substring.
    """
    needle = name.lower()
    found: list[ProcessInfo] = []
    for proc in psutil.process_iter(['pid', 'name', 'exe', 'ppid']):
        try:
            proc_name = proc.info['name'] or ""
            matched = proc_name.lower() == needle if exact else needle in proc_name.lower()
            if matched:
                found.append(ProcessInfo(proc.info['pid'], proc_name, proc.info['exe'], proc.info['ppid']))
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            pass
    return found


def kill_process(pid: int, sig: int = signal.SIGKILL) -> bool:
    """Send `sig` to a process. A process which is already gone counts as killed."""
    try:
        psutil.Process(pid).send_signal(sig)
    except psutil.NoSuchProcess:
        return True
    except psutil.AccessDenied:
        return False
    return True


def open_url(uri: str, background: bool = False) -> None:
    """Open a URL or custom protocol link with its registered handler."""
    args = ["open", "-g", uri] if background else ["open", uri]
    subprocess.Popen(
        args,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        stdin=subprocess.DEVNULL,
    )


def is_protocol_registered(scheme: str) -> bool:
    """Check whether any app has registered a handler for `scheme://` links."""
    if not LSREGISTER_PATH.exists():
        return False
    try:
        result = subprocess.run(
            [str(LSREGISTER_PATH), "-dump"],
            capture_output=True,
            text=True,
            errors="replace",
            timeout=30,
        )
    except (OSError, subprocess.SubprocessError):
        return False

    pattern = re.compile(
        rf"^\s*(?:bindings|claimed schemes):.*(?<![\w.+-]){re.escape(scheme)}:",
        re.IGNORECASE | re.MULTILINE,
    )
    return bool(pattern.search(result.stdout))
