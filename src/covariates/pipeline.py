"""
Dependency graph pipeline for covariate generation.

Runs the band tasks in dependency order, caches derived bands, and stacks the
result into a feature table.

Example:
    from src.covariates.config import load_config
    from src.covariates.pipeline import CovariatePipeline

    pipeline = CovariatePipeline(load_config("config/run.json"))

    # Show execution plan
    pipeline.explain("stack")

    # Load inputs from the configured files and build the table
    table = pipeline.run()
"""

from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pandas as pd
from tqdm import tqdm

from src.covariates.cache import BandCache, compute_key
from src.covariates.config import COAST_COLUMN, ELEVATION_COLUMN, ExposureLayerConfig, PipelineConfig
from src.covariates.distance import coast_distance
from src.covariates.grid import Grid, Raster
from src.covariates.io import read_raster, read_vector_layer
from src.covariates.kernel import exposure_surface
from src.covariates.masking import crop_to_bounds, mask_to_boundary
from src.covariates.resample import resample_to_grid
from src.covariates.stack import RasterStack, write_feature_table
from src.covariates.vector import BoundaryMask, VectorLayer

logger = logging.getLogger(__name__)


@dataclass
class PipelineInputs:
    """In-memory inputs for one run, already in the working CRS (except the DEM)."""

    coastline: VectorLayer
    elevation: Raster
    exposure_layers: Dict[str, VectorLayer] = field(default_factory=dict)
    boundary: Optional[BoundaryMask] = None


def _compute_exposure(
    layer: VectorLayer, grid: Grid, layer_config: ExposureLayerConfig, normalize: bool
) -> Raster:
    """Worker entry point; module-level so it pickles for ProcessPoolExecutor."""
    return exposure_surface(
        layer,
        grid,
        radius=layer_config.radius,
        sigma=layer_config.sigma,
        normalize=normalize,
        name=layer_config.column,
    )


class CovariatePipeline:
    """
    Dependency graph executor for covariate bands.

    Tasks in pipeline:
    1. coast_distance: Rasterize coastline, exact distance transform (cached)
    2. exposure:<layer>: One Gaussian exposure surface per layer (cached, parallelizable)
    3. elevation: Reproject/resample DEM onto the working grid (cached)
    4. mask: Null cells outside the boundary, optionally crop to its bounds
    5. stack: Combine bands into the feature table
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        cache_enabled: bool = True,
        force_rebuild: bool = False,
        verbose: bool = True,
    ):
        """
        Initialize covariate pipeline.

        Args:
            config: Run configuration
            cache_enabled: Cache derived bands (only if config.cache_dir is set)
            force_rebuild: Recompute bands even if cached
            verbose: Log execution details
        """
        self.config = config
        self.grid = config.grid.build()
        self.force_rebuild = force_rebuild
        self.verbose = verbose

        self.cache = BandCache(
            cache_dir=Path(config.cache_dir) if config.cache_dir else None,
            enabled=cache_enabled and config.cache_dir is not None,
        )

        # Declarative DAG
        self._task_graph = {
            "coast_distance": {
                "depends_on": [],
                "description": "Rasterize coastline and compute distance to coast",
            },
        }
        exposure_tasks = [f"exposure:{layer.name}" for layer in config.exposure_layers]
        for task, layer in zip(exposure_tasks, config.exposure_layers):
            self._task_graph[task] = {
                "depends_on": [],
                "description": f"Gaussian exposure surface {layer.name} (R={layer.radius}) -> {layer.column}",
            }
        self._task_graph.update({
            "elevation": {
                "depends_on": [],
                "description": "Reproject and resample DEM onto the working grid",
            },
            "mask": {
                "depends_on": ["coast_distance", *exposure_tasks, "elevation"],
                "description": "Mask bands to the study-area boundary",
            },
            "stack": {
                "depends_on": ["mask"],
                "description": "Stack bands and export valid cells",
            },
        })

    def _log(self, msg: str, *args, level: str = "info"):
        """Log message if verbose with lazy formatting."""
        if self.verbose:
            if level == "info":
                logger.info(msg, *args)
            elif level == "debug":
                logger.debug(msg, *args)
            elif level == "warn":
                logger.warning(msg, *args)

    def _cached(self, band_name: str, key: str, compute: Callable[[], Raster]) -> Raster:
        if not self.force_rebuild:
            cached = self.cache.load(key, band_name)
            if cached is not None:
                self._log("  %s: cache hit", band_name)
                return cached

        raster = compute()
        self.cache.save(raster, key, band_name)
        return raster

    # ===== Planning =====

    def _resolve(self, task: str, order: List[str]) -> None:
        if task not in self._task_graph:
            raise ValueError(f"Unknown task '{task}'. Available: {list(self._task_graph)}")
        for dependency in self._task_graph[task]["depends_on"]:
            self._resolve(dependency, order)
        if task not in order:
            order.append(task)

    def plan(self, task: str = "stack") -> List[str]:
        """Tasks needed to produce ``task``, in execution order."""
        order: List[str] = []
        self._resolve(task, order)
        return order

    def explain(self, task: str = "stack") -> List[str]:
        """Log and return a human-readable execution plan for ``task``."""
        lines = [f"Execution plan for '{task}':"]
        for i, name in enumerate(self.plan(task), start=1):
            info = self._task_graph[name]
            lines.append(f"  {i}. {name}: {info['description']}")
        lines.append(f"  grid: {self.grid.describe()}")
        lines.append(f"  columns: X, Y, {', '.join(self.config.columns)}")

        for line in lines:
            logger.info(line)
        return lines

    # ===== Inputs =====

    def load_inputs(self) -> PipelineInputs:
        """
        Read every configured source from disk.

        Vector layers are reprojected to the working CRS at load time; the DEM
        keeps its own CRS and is aligned by the elevation task.
        """
        config = self.config
        missing = [key for key in ("coastline", "elevation") if getattr(config, key) is None]
        missing += [f"exposure_layers.{c.name}" for c in config.exposure_layers if c.source is None]
        if missing:
            raise ValueError(f"Config is missing input sources: {missing}")

        crs = self.grid.crs
        boundary = None
        if config.boundary is not None:
            boundary = BoundaryMask.from_layer(
                read_vector_layer(config.boundary, name="boundary", to_crs=crs)
            )

        return PipelineInputs(
            coastline=read_vector_layer(config.coastline, name="coastline", to_crs=crs),
            elevation=read_raster(config.elevation, name="elevation"),
            exposure_layers={
                c.name: read_vector_layer(c.source, name=c.name, to_crs=crs)
                for c in config.exposure_layers
            },
            boundary=boundary,
        )

    # ===== Tasks =====

    def coast_distance(self, coastline: VectorLayer) -> Raster:
        """Task: distance to coast on the working grid."""
        self._log("[1/5] Computing distance to coast")
        key = compute_key(coastline, self.grid, scale=self.config.distance_scale)
        return self._cached(
            COAST_COLUMN,
            key,
            lambda: coast_distance(coastline, self.grid, scale=self.config.distance_scale).renamed(
                COAST_COLUMN
            ),
        )

    def exposures(self, layers: Dict[str, VectorLayer]) -> Dict[str, Raster]:
        """
        Task: exposure surfaces for every configured layer.

        Layers run in a process pool when ``max_workers > 1``. Any failure is
        re-raised; no partial set of bands is returned.

        Returns:
            Mapping of output column -> Raster, in config order
        """
        self._log("[2/5] Building %d exposure surfaces", len(self.config.exposure_layers))
        normalize = self.config.normalize_exposure

        missing = [c.name for c in self.config.exposure_layers if c.name not in layers]
        if missing:
            raise ValueError(f"No vector layer supplied for exposure layers: {missing}")

        results: Dict[str, Raster] = {}
        pending = []
        for layer_config in self.config.exposure_layers:
            layer = layers[layer_config.name]
            key = compute_key(
                layer, self.grid, radius=layer_config.radius, sigma=layer_config.sigma, normalize=normalize
            )
            cached = None if self.force_rebuild else self.cache.load(key, layer_config.column)
            if cached is not None:
                self._log("  %s: cache hit", layer_config.column)
                results[layer_config.column] = cached
            else:
                pending.append((layer_config, layer, key))

        if pending and self.config.max_workers > 1:
            with ProcessPoolExecutor(max_workers=self.config.max_workers) as executor:
                future_map = {
                    executor.submit(_compute_exposure, layer, self.grid, layer_config, normalize): (
                        layer_config,
                        key,
                    )
                    for layer_config, layer, key in pending
                }
                with tqdm(total=len(future_map), desc="Exposure surfaces") as pbar:
                    for future in as_completed(future_map):
                        layer_config, key = future_map[future]
                        raster = future.result()
                        self.cache.save(raster, key, layer_config.column)
                        results[layer_config.column] = raster
                        pbar.update(1)
        else:
            for layer_config, layer, key in tqdm(pending, desc="Exposure surfaces", disable=not pending):
                raster = _compute_exposure(layer, self.grid, layer_config, normalize)
                self.cache.save(raster, key, layer_config.column)
                results[layer_config.column] = raster

        return {c.column: results[c.column] for c in self.config.exposure_layers}

    def elevation(self, dem: Raster) -> Raster:
        """Task: DEM aligned to the working grid."""
        self._log("[3/5] Resampling elevation onto working grid")
        key = compute_key(dem, self.grid)
        return self._cached(
            ELEVATION_COLUMN, key, lambda: resample_to_grid(dem, self.grid, name=ELEVATION_COLUMN)
        )

    def mask(self, bands: Dict[str, Raster], boundary: Optional[BoundaryMask]) -> Dict[str, Raster]:
        """Task: restrict every band to the boundary (no-op without one)."""
        if boundary is None:
            self._log("[4/5] No boundary configured; skipping mask")
            return dict(bands)

        self._log("[4/5] Masking %d bands to boundary '%s'", len(bands), boundary.name)
        masked = {name: mask_to_boundary(raster, boundary) for name, raster in bands.items()}
        if self.config.crop_to_boundary:
            masked = {name: crop_to_bounds(raster, boundary.bounds) for name, raster in masked.items()}
        return masked

    def stack(self, bands: Dict[str, Raster]) -> pd.DataFrame:
        """Task: feature table with columns X, Y, then bands in config order."""
        self._log("[5/5] Stacking %d bands", len(bands))
        ordered = {column: bands[column] for column in self.config.columns}
        return RasterStack(ordered).to_feature_table()

    # ===== Full run =====

    def build_bands(self, inputs: PipelineInputs) -> Dict[str, Raster]:
        """Run tasks 1-4 and return the masked bands keyed by output column."""
        bands: Dict[str, Raster] = {COAST_COLUMN: self.coast_distance(inputs.coastline)}
        bands.update(self.exposures(inputs.exposure_layers))
        bands[ELEVATION_COLUMN] = self.elevation(inputs.elevation)
        return self.mask(bands, inputs.boundary)

    def run(self, inputs: Optional[PipelineInputs] = None) -> pd.DataFrame:
        """
        Build the feature table.

        Args:
            inputs: In-memory inputs. If None, sources are read from the config.

        Returns:
            DataFrame with columns X, Y, CoastDistance, <exposures>, Elevation.
            Written to ``config.output`` as CSV when set.
        """
        if inputs is None:
            inputs = self.load_inputs()

        table = self.stack(self.build_bands(inputs))

        if self.config.output:
            write_feature_table(table, self.config.output)
        return table

    def cache_stats(self) -> dict:
        return self.cache.get_cache_stats()

    def clear_cache(self) -> int:
        return self.cache.clear()
