"""
Cached dataset download.

The prepared dataset is fetched once into a local cache directory; later
runs find the file and skip the network entirely.
"""

import logging
import os
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import requests
from tqdm import tqdm

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


def filename_from_url(url: str) -> str:
    """Last path component of a URL, query string ignored."""
    name = Path(urlparse(url).path).name
    if not name:
        raise ValueError(f"Cannot derive a file name from URL: {url}")
    return name


def fetch_dataset(
    url: str,
    cache_dir: Path,
    filename: Optional[str] = None,
    force: bool = False,
    timeout: int = 60
) -> Path:
    """Download `url` into `cache_dir` unless the file is already there.

    Args:
        url: Dataset URL
        cache_dir: Local cache directory (created if needed)
        filename: Cache file name, defaults to the URL's file name
        force: Re-download even if the cache file exists
        timeout: Request timeout in seconds

    Returns:
        Path of the cached file
    """
    cache_dir = Path(cache_dir)
    cache_dir.mkdir(parents=True, exist_ok=True)
    target = cache_dir / (filename or filename_from_url(url))

    if target.exists() and not force:
        logger.info(f"Using cached dataset: {target}")
        return target

    logger.info(f"Downloading {url} -> {target}")
    tmp_path = target.with_name(target.name + ".part")

    try:
        with requests.get(url, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            total = int(response.headers.get("content-length", 0)) or None

            with open(tmp_path, "wb") as f, tqdm(
                total=total, unit="B", unit_scale=True,
                desc=target.name, disable=total is None
            ) as progress:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
                        progress.update(len(chunk))

        os.replace(tmp_path, target)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink()
        raise

    logger.info(f"Downloaded {target.stat().st_size:,} bytes")
    return target
