"""Download a known-good macOS BepInEx 5 pack from GitHub."""
import re
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, NamedTuple

import requests
from packaging import version

from core import DEFAULT_FALLBACK_PACK_URL, DEFAULT_RELEASE_API_URL
from detection import get_bepinex_script_path
from errors import InstallerError, PackDownloadError


SUPPORTED_MAJOR_VERSION = 5
_MACOS_ASSET = re.compile(r"macos.*x64.*\.zip$", re.IGNORECASE)


class ReleaseInfo(NamedTuple):
    """A BepInEx release with a macOS pack attached."""
    version: str
    download_url: str
    release_name: str


def normalize_version(ver: str) -> str:
    """Normalize version string for comparison (e.g., v5.4.23.2 -> 5.4.23.2)."""
    ver = ver.strip().lstrip("v")
    ver = ver.replace("-beta", "b0").replace("-alpha", "a0").replace("-rc", "rc")
    return ver


def is_supported_version(ver: str) -> bool:
    try:
        return version.parse(normalize_version(ver)).major == SUPPORTED_MAJOR_VERSION
    except version.InvalidVersion:
        return False


def get_latest_release(api_url: str = DEFAULT_RELEASE_API_URL) -> ReleaseInfo | None:
    """
    Ask GitHub for the latest BepInEx release.

    Returns:
        ReleaseInfo if the latest release is BepInEx 5 and ships a macOS pack,
        None otherwise (including on network errors).
    """
    try:
        response = requests.get(
            api_url,
            headers={"Accept": "application/vnd.github.v3+json"},
            timeout=10
        )
        response.raise_for_status()
        release_data = response.json()
    except (requests.RequestException, ValueError):
        return None

    latest_version = release_data.get("tag_name", "")
    if not is_supported_version(latest_version):
        return None

    for asset in release_data.get("assets", []):
        if _MACOS_ASSET.search(asset.get("name", "")):
            return ReleaseInfo(
                version=latest_version,
                download_url=asset.get("browser_download_url", ""),
                release_name=release_data.get("name", latest_version),
            )
    return None


def download_pack(url: str, destination: Path, progress_callback: Callable[[int, int], None] | None = None) -> Path:
    """
    Download a pack zip and extract it into `destination`.

    Returns:
        Path to the `run_bepinex.sh` found in the extracted pack.

    Raises:
        PackDownloadError: the download, extraction or pack validation failed.
    """
    try:
        response = requests.get(url, stream=True, timeout=120)
        response.raise_for_status()

        total_size = int(response.headers.get("content-length", 0))
        destination.mkdir(parents=True, exist_ok=True)
        zip_file = destination / "BepInEx.zip"

        downloaded = 0
        with open(zip_file, "wb") as f:
            for chunk in response.iter_content(chunk_size=8192):
                if chunk:
                    f.write(chunk)
                    downloaded += len(chunk)
                    if progress_callback and total_size > 0:
                        progress_callback(downloaded, total_size)

        extract_dir = destination / "extracted"
        if extract_dir.exists():
            shutil.rmtree(extract_dir)

        with zipfile.ZipFile(zip_file, 'r') as zip_ref:
            zip_ref.extractall(extract_dir)

        return get_bepinex_script_path(str(extract_dir))
    except (requests.RequestException, OSError, zipfile.BadZipFile, InstallerError) as e:
        raise PackDownloadError(url) from e


def fetch_replacement_pack(
    api_url: str = DEFAULT_RELEASE_API_URL,
    fallback_url: str = DEFAULT_FALLBACK_PACK_URL,
    logger: Callable[[str], None] | None = None,
) -> Path:
    """
    Download the latest macOS BepInEx 5 pack, falling back once to `fallback_url`.

    Returns:
        Path to the `run_bepinex.sh` of the downloaded pack.

    Raises:
        PackDownloadError: both the latest release and the fallback failed.
    """
    log = logger if logger else lambda msg: None
    destination = Path(tempfile.mkdtemp(prefix="bepinex_pack_"))

    release = get_latest_release(api_url)
    if release and release.download_url:
        log(f"Downloading {release.release_name}...")
        try:
            return download_pack(release.download_url, destination / "latest")
        except PackDownloadError as e:
            log(f"Download failed: {e.__cause__ or e}")

    log(f"Downloading {fallback_url}...")
    return download_pack(fallback_url, destination / "fallback")
