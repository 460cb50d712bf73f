"""Readers and writers for the file formats owned by Steam, Epic and macOS.

Every reader returns plain dicts holding exactly what was in the file, so a
tree can be read, have one value changed and be written back without losing
keys this module knows nothing about.
"""
import json
import plistlib
from pathlib import Path
from typing import Any, Mapping, MutableMapping

import vdf


Tree = dict[str, Any]


# --- Case-insensitive lookups ---
# Steam is not consistent about key casing between versions
# (e.g. "AppState" vs "appstate", "LaunchOptions" vs "launchoptions").

def find_key(mapping: Mapping[str, Any], key: str) -> str | None:
    """Return the key in `mapping` matching `key` case-insensitively, if any."""
    if key in mapping:
        return key
    lowered = key.lower()
    for existing in mapping:
        if isinstance(existing, str) and existing.lower() == lowered:
            return existing
    return None


def get_ci(mapping: Mapping[str, Any] | None, *keys: str, default: Any = None) -> Any:
    """Walk `keys` down a nested mapping, ignoring key case at every level."""
    current: Any = mapping
    for key in keys:
        if not isinstance(current, Mapping):
            return default
        found = find_key(current, key)
        if found is None:
            return default
        current = current[found]
    return current


def set_ci(mapping: MutableMapping[str, Any], key: str, value: Any) -> None:
    """Set `key`, reusing the existing spelling of the key if there is one."""
    mapping[find_key(mapping, key) or key] = value


# --- Valve text KeyValues (libraryfolders.vdf, loginusers.vdf, localconfig.vdf, *.acf) ---

def read_vdf(path: str | Path) -> Tree:
    """Parse a text VDF file. Values are unescaped by the parser."""
    text = Path(path).read_text(encoding="utf-8", errors="surrogateescape")
    return vdf.loads(text, mapper=dict)


def write_vdf(path: str | Path, tree: Mapping[str, Any]) -> None:
    """Write a whole text VDF tree. Values are escaped by the serializer."""
    text = vdf.dumps(tree, pretty=True)
    Path(path).write_text(text, encoding="utf-8", errors="surrogateescape")


# --- Valve binary KeyValues (shortcuts.vdf) ---

def read_shortcuts(path: str | Path) -> Tree:
    """
    Parse a binary shortcuts.vdf file.

    A missing file means the user has no shortcuts yet and reads as an
    empty list instead of raising.
    """
    path = Path(path)
    if not path.exists():
        return {"shortcuts": {}}
    tree = vdf.binary_loads(path.read_bytes(), mapper=dict)
    if find_key(tree, "shortcuts") is None:
        tree["shortcuts"] = {}
    return tree


def write_shortcuts(path: str | Path, tree: Mapping[str, Any]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(vdf.binary_dumps(tree))


# --- Property lists (Info.plist) ---

def read_plist(path: str | Path) -> Tree:
    with open(path, "rb") as f:
        return plistlib.load(f)


def write_plist(path: str | Path, tree: Mapping[str, Any]) -> None:
    """Write a plist, keeping the binary format if the file already used it."""
    path = Path(path)
    fmt = plistlib.FMT_XML
    if path.exists():
        with open(path, "rb") as f:
            if f.read(8) == b"bplist00":
                fmt = plistlib.FMT_BINARY
    with open(path, "wb") as f:
        plistlib.dump(dict(tree), f, fmt=fmt, sort_keys=False)


def plist_to_text(tree: Mapping[str, Any]) -> str:
    """Render a parsed plist as XML text, whatever its on-disk format was."""
    return plistlib.dumps(dict(tree), fmt=plistlib.FMT_XML).decode("utf-8")


# --- JSON (Epic Games Launcher) ---

def read_json(path: str | Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
