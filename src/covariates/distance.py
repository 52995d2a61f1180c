"""
Exact Euclidean distance transform on a Raster.

Distances are computed with ``scipy.ndimage.distance_transform_edt`` using the
grid's cell size as sampling, so results are in CRS units (metres for a
projected grid) before the optional ``scale`` factor is applied.
"""

import logging
from typing import Optional

import numpy as np
from scipy.ndimage import distance_transform_edt

from src.covariates.grid import Grid, Raster
from src.covariates.rasterize import rasterize_layer
from src.covariates.vector import VectorLayer

logger = logging.getLogger(__name__)


def distance_transform(
    raster: Raster,
    source_value: float,
    target_value: Optional[float] = None,
    scale: float = 1.0,
    name: Optional[str] = None,
) -> Raster:
    """
    Distance from every cell to the nearest source cell.

    Args:
        raster: Input raster marking sources with ``source_value``
        source_value: Value identifying source cells (distance 0)
        target_value: If given, only cells holding this value (plus sources)
            receive a distance; every other cell is NoData
        scale: Multiplier applied to the CRS-unit distance (e.g. 0.001 for km)
        name: Name of the output raster

    Returns:
        Raster on the same grid. Source cells are exactly 0. Input NoData cells
        stay NoData. If there are no source cells at all, every cell is NoData.
    """
    grid = raster.grid
    valid = raster.valid_mask
    sources = valid & (raster.values == source_value)
    out_name = name or (f"{raster.name}_distance" if raster.name else "distance")

    n_sources = int(np.count_nonzero(sources))
    if n_sources == 0:
        logger.warning(
            f"No source cells (value={source_value}) in '{raster.name}'; "
            "distance surface is entirely NoData"
        )
        return Raster.full(grid, raster.nodata, nodata=raster.nodata, name=out_name)

    logger.info(
        f"Computing distance transform on {grid.rows}x{grid.cols} grid "
        f"from {n_sources} source cells"
    )

    # EDT measures distance to the nearest zero, so sources are the zeros
    distances = distance_transform_edt(~sources, sampling=(grid.dy, grid.dx)) * scale

    keep = valid.copy()
    if target_value is not None:
        keep &= sources | (raster.values == target_value)

    result = np.where(keep, distances, raster.nodata)
    logger.info(
        f"Distance range: {distances[keep].min():.3f} to {distances[keep].max():.3f} "
        f"(scale={scale})"
    )
    return Raster(grid, result, nodata=raster.nodata, name=out_name)


def coast_distance(coastline: VectorLayer, grid: Grid, scale: float = 0.001) -> Raster:
    """
    Distance from every cell to the nearest coastline cell.

    The coastline is rasterized as a 1/0 presence layer (lines mark every cell
    they cross) and used as the source of an exact distance transform.

    Args:
        coastline: Coastline geometries in the grid's CRS
        grid: Working grid
        scale: Multiplier on CRS units (default 0.001: metres to kilometres)

    Returns:
        Raster named "coast_distance"
    """
    presence = rasterize_layer(coastline, grid, foreground=1.0, background=0.0)
    return distance_transform(presence, source_value=1.0, scale=scale, name="coast_distance")
