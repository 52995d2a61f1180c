"""
Band caching for the covariate pipeline.

Implements .npz-based caching of derived rasters (distance and exposure
surfaces are the expensive ones) keyed by a SHA256 over the inputs and
parameters that produced them.
"""

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
from shapely import wkb

from src.covariates.grid import Grid, Raster
from src.covariates.vector import BoundaryMask, VectorLayer

logger = logging.getLogger(__name__)


def compute_key(*args, **kwargs) -> str:
    """
    SHA256 over pipeline inputs.

    Rasters hash their grid, sentinel and values; vector layers hash their CRS
    and geometry WKB; grids hash their description; everything else is
    hashed through ``str`` / sorted JSON.
    """
    parts = []

    def _part(value) -> str:
        if isinstance(value, Raster):
            digest = hashlib.sha256(value.values.tobytes()).hexdigest()
            return f"raster:{value.grid.describe()}:{value.nodata}:{digest}"
        if isinstance(value, VectorLayer):
            h = hashlib.sha256(value.crs.encode())
            for part in value.parts():
                h.update(wkb.dumps(part))
            return f"layer:{value.name}:{h.hexdigest()}"
        if isinstance(value, BoundaryMask):
            return f"boundary:{value.crs}:{hashlib.sha256(wkb.dumps(value.geometry)).hexdigest()}"
        if isinstance(value, Grid):
            return f"grid:{value.describe()}"
        if isinstance(value, np.ndarray):
            return hashlib.sha256(value.tobytes()).hexdigest()
        if isinstance(value, dict):
            return hashlib.sha256(json.dumps(value, sort_keys=True, default=str).encode()).hexdigest()
        return str(value)

    for arg in args:
        parts.append(_part(arg))
    for key in sorted(kwargs):
        parts.append(f"{key}:{_part(kwargs[key])}")

    return hashlib.sha256("|".join(parts).encode()).hexdigest()


class BandCache:
    """
    Stores derived rasters as compressed .npz files plus JSON metadata.

    Attributes:
        cache_dir: Directory where cache files are stored
        enabled: Whether caching is enabled
    """

    def __init__(self, cache_dir: Optional[Path] = None, enabled: bool = True):
        """
        Initialize band cache.

        Args:
            cache_dir: Directory for cache files. If None, uses .band_cache/ in the working directory
            enabled: Whether caching is enabled (default: True)
        """
        if cache_dir is None:
            cache_dir = Path.cwd() / ".band_cache"

        self.cache_dir = Path(cache_dir)
        self.enabled = enabled

        if self.enabled:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Band cache initialized at: {self.cache_dir}")

    def get_cache_path(self, key: str, band_name: str) -> Path:
        return self.cache_dir / f"{band_name}_{key[:16]}.npz"

    def get_metadata_path(self, key: str, band_name: str) -> Path:
        return self.cache_dir / f"{band_name}_{key[:16]}_meta.json"

    def save(self, raster: Raster, key: str, band_name: str) -> Tuple[Optional[Path], Optional[Path]]:
        """
        Save a band to the cache.

        Returns:
            Tuple of (cache_file_path, metadata_file_path), or (None, None) if disabled
        """
        if not self.enabled:
            return None, None

        cache_path = self.get_cache_path(key, band_name)
        metadata_path = self.get_metadata_path(key, band_name)
        grid = raster.grid

        start_time = time.time()
        np.savez_compressed(cache_path, values=raster.values)

        metadata = {
            "key": key,
            "name": raster.name,
            "nodata": raster.nodata,
            "grid": {
                "crs": grid.crs,
                "xmin": grid.xmin,
                "ymin": grid.ymin,
                "xmax": grid.xmax,
                "ymax": grid.ymax,
                "dx": grid.dx,
                "dy": grid.dy,
                "rows": grid.rows,
                "cols": grid.cols,
            },
            "stats": raster.stats(),
            "cache_time": time.time(),
        }
        with open(metadata_path, "w") as f:
            json.dump(metadata, f, indent=2)

        elapsed = time.time() - start_time
        logger.info(f"Cached band '{band_name}' to {cache_path.name} ({elapsed:.2f}s)")
        return cache_path, metadata_path

    def load(self, key: str, band_name: str) -> Optional[Raster]:
        """
        Load a cached band.

        Returns:
            Raster, or None on a cache miss. A cache whose files are
            unreadable or whose key does not match is treated as a miss.
        """
        if not self.enabled:
            return None

        cache_path = self.get_cache_path(key, band_name)
        metadata_path = self.get_metadata_path(key, band_name)
        if not cache_path.exists() or not metadata_path.exists():
            logger.debug(f"Cache miss: {cache_path.name}")
            return None

        try:
            with open(metadata_path) as f:
                metadata = json.load(f)
            if metadata.get("key") != key:
                logger.debug(f"Cache key mismatch for {cache_path.name}")
                return None

            with np.load(cache_path) as cache_data:
                values = cache_data["values"]
            grid = Grid(**metadata["grid"])
            raster = Raster(grid, values, nodata=metadata["nodata"], name=metadata["name"])
        except (OSError, KeyError, ValueError) as e:
            logger.warning(f"Failed to load cache {cache_path.name}: {e}")
            logger.debug("Band will be recomputed")
            return None

        logger.info(f"Loaded band '{band_name}' from cache")
        return raster

    def clear(self, band_name: str = "") -> int:
        """
        Delete cached files, optionally only those for one band.

        Returns:
            Number of files deleted
        """
        if not self.enabled:
            return 0

        pattern = f"{band_name}_*" if band_name else "*"
        deleted_count = 0
        for cache_file in self.cache_dir.glob(pattern):
            if cache_file.is_file():
                cache_file.unlink()
                deleted_count += 1
                logger.debug(f"Deleted: {cache_file.name}")

        logger.info(f"Cleared {deleted_count} cache files")
        return deleted_count

    def get_cache_stats(self) -> dict:
        """Number and total size of cached files."""
        stats = {
            "cache_dir": str(self.cache_dir),
            "enabled": self.enabled,
            "cache_files": 0,
            "total_size_mb": 0.0,
        }
        if not self.cache_dir.exists():
            return stats

        for cache_file in self.cache_dir.glob("*"):
            if cache_file.is_file():
                stats["cache_files"] += 1
                stats["total_size_mb"] += cache_file.stat().st_size / (1024 * 1024)
        return stats
