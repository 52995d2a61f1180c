"""
Pipeline configuration.

Configs are plain dataclasses that serialize to and from JSON, so a run can be
described in one file:

    {
      "grid": {"crs": "EPSG:32633", "bounds": [...], "resolution": 30},
      "boundary": "data/vectors/boundary.gpkg",
      "coastline": "data/vectors/coastline.gpkg",
      "elevation": "data/dem/dem.tif",
      "exposure_layers": [
        {"name": "tourism", "column": "TourismExposure", "source": "...", "radius": 200},
        ...
      ]
    }
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union

from src.covariates.grid import Grid

COAST_COLUMN = "CoastDistance"
ELEVATION_COLUMN = "Elevation"


@dataclass
class GridConfig:
    """Working grid definition."""

    crs: str
    bounds: Tuple[float, float, float, float]
    resolution: Union[float, Tuple[float, float]]

    def __post_init__(self):
        self.bounds = tuple(float(v) for v in self.bounds)
        if len(self.bounds) != 4:
            raise ValueError(f"Grid bounds must be [xmin, ymin, xmax, ymax], got {self.bounds}")
        if isinstance(self.resolution, list):
            self.resolution = tuple(self.resolution)

    def build(self) -> Grid:
        return Grid.from_bounds(self.crs, self.bounds, self.resolution)

    def to_dict(self) -> dict[str, Any]:
        resolution = list(self.resolution) if isinstance(self.resolution, tuple) else self.resolution
        return {"crs": self.crs, "bounds": list(self.bounds), "resolution": resolution}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GridConfig":
        return cls(crs=data["crs"], bounds=data["bounds"], resolution=data["resolution"])


@dataclass
class ExposureLayerConfig:
    """
    One exposure band.

    Attributes:
        name: Layer identifier (e.g. "roads")
        column: Output column name (e.g. "RoadExposure")
        source: Path to the vector file
        radius: Kernel radius in grid cells
        sigma: Kernel standard deviation in cells (default: radius / 3)
    """

    name: str
    column: str
    source: Optional[str] = None
    radius: int = 100
    sigma: Optional[float] = None

    def __post_init__(self):
        if int(self.radius) != self.radius or self.radius < 1:
            raise ValueError(f"Exposure layer '{self.name}' needs a positive integer radius, got {self.radius}")
        self.radius = int(self.radius)
        if self.sigma is not None and self.sigma <= 0:
            raise ValueError(f"Exposure layer '{self.name}' has non-positive sigma {self.sigma}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "column": self.column,
            "source": self.source,
            "radius": self.radius,
            "sigma": self.sigma,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExposureLayerConfig":
        return cls(
            name=data["name"],
            column=data["column"],
            source=data.get("source"),
            radius=data.get("radius", 100),
            sigma=data.get("sigma"),
        )


def default_exposure_layers() -> List[ExposureLayerConfig]:
    """Tourism, building and road exposure with the reference kernel radii."""
    return [
        ExposureLayerConfig(name="tourism", column="TourismExposure", radius=200),
        ExposureLayerConfig(name="buildings", column="BuildingExposure", radius=199),
        ExposureLayerConfig(name="roads", column="RoadExposure", radius=100),
    ]


@dataclass
class PipelineConfig:
    """
    Full description of a covariate run.

    Attributes:
        grid: Working grid
        boundary: Path to the study-area polygon source
        coastline: Path to the coastline vector source
        elevation: Path to the DEM raster
        exposure_layers: Exposure bands, in output column order
        distance_scale: Multiplier on CRS units for coast distance (0.001: m -> km)
        normalize_exposure: Z-score exposure bands
        crop_to_boundary: Trim the masked bands to the boundary's bounding box
        max_workers: Processes for exposure bands (1 = sequential)
        cache_dir: Band cache directory (None disables caching)
        output: Path of the CSV feature table
    """

    grid: GridConfig
    boundary: Optional[str] = None
    coastline: Optional[str] = None
    elevation: Optional[str] = None
    exposure_layers: List[ExposureLayerConfig] = field(default_factory=default_exposure_layers)
    distance_scale: float = 0.001
    normalize_exposure: bool = True
    crop_to_boundary: bool = True
    max_workers: int = 1
    cache_dir: Optional[str] = None
    output: Optional[str] = None

    def __post_init__(self):
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.distance_scale <= 0:
            raise ValueError(f"distance_scale must be positive, got {self.distance_scale}")

        columns = [COAST_COLUMN, ELEVATION_COLUMN] + [layer.column for layer in self.exposure_layers]
        duplicates = {c for c in columns if columns.count(c) > 1}
        if duplicates:
            raise ValueError(f"Duplicate output columns: {sorted(duplicates)}")

    @property
    def columns(self) -> List[str]:
        """Output columns after X, Y."""
        return [COAST_COLUMN] + [layer.column for layer in self.exposure_layers] + [ELEVATION_COLUMN]

    def to_dict(self) -> dict[str, Any]:
        return {
            "grid": self.grid.to_dict(),
            "boundary": self.boundary,
            "coastline": self.coastline,
            "elevation": self.elevation,
            "exposure_layers": [layer.to_dict() for layer in self.exposure_layers],
            "distance_scale": self.distance_scale,
            "normalize_exposure": self.normalize_exposure,
            "crop_to_boundary": self.crop_to_boundary,
            "max_workers": self.max_workers,
            "cache_dir": self.cache_dir,
            "output": self.output,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineConfig":
        if "grid" not in data:
            raise ValueError("Pipeline config needs a 'grid' section")

        layers = data.get("exposure_layers")
        return cls(
            grid=GridConfig.from_dict(data["grid"]),
            boundary=data.get("boundary"),
            coastline=data.get("coastline"),
            elevation=data.get("elevation"),
            exposure_layers=(
                [ExposureLayerConfig.from_dict(layer) for layer in layers]
                if layers is not None
                else default_exposure_layers()
            ),
            distance_scale=data.get("distance_scale", 0.001),
            normalize_exposure=data.get("normalize_exposure", True),
            crop_to_boundary=data.get("crop_to_boundary", True),
            max_workers=data.get("max_workers", 1),
            cache_dir=data.get("cache_dir"),
            output=data.get("output"),
        )


def load_config(path: Union[str, Path]) -> PipelineConfig:
    """
    Load a PipelineConfig from JSON.

    Relative source paths are resolved against the config file's directory.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    with open(path) as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {path}")

    base = path.parent

    def _resolve(value: Optional[str]) -> Optional[str]:
        if value is None or Path(value).is_absolute():
            return value
        return str(base / value)

    for key in ("boundary", "coastline", "elevation", "cache_dir", "output"):
        data[key] = _resolve(data.get(key))
    for layer in data.get("exposure_layers") or []:
        layer["source"] = _resolve(layer.get("source"))

    return PipelineConfig.from_dict(data)


def save_config(config: PipelineConfig, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(config.to_dict(), f, indent=2)
    return path
