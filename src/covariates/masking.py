"""
Restrict rasters to a study area.

- ``crop_to_bounds`` trims the grid to a bounding box (snapped outward to whole cells).
- ``mask_to_boundary`` keeps the grid and sets every cell whose centroid lies
  outside the boundary polygon to NoData.
"""

import logging
import math
from typing import Optional, Tuple

import numpy as np
from rasterio.features import geometry_mask

from src.covariates.grid import Grid, Raster
from src.covariates.vector import BoundaryMask, require_crs

logger = logging.getLogger(__name__)


def crop_to_bounds(
    raster: Raster, bounds: Tuple[float, float, float, float], name: Optional[str] = None
) -> Raster:
    """
    Crop ``raster`` to the cells intersecting ``bounds``.

    Args:
        raster: Input raster
        bounds: (xmin, ymin, xmax, ymax) in the raster's CRS
        name: Output name (default: input name)

    Returns:
        Raster on a trimmed grid with the same cell size and alignment

    Raises:
        ValueError: If the box does not overlap the raster
    """
    grid = raster.grid
    xmin, ymin, xmax, ymax = bounds
    if xmax <= xmin or ymax <= ymin:
        raise ValueError(f"Invalid crop bounds {bounds}")

    # Snap outward to cell edges; the epsilon keeps exact edges from grabbing a neighbour
    col_start = max(0, int(math.floor((xmin - grid.xmin) / grid.dx + 1e-9)))
    col_stop = min(grid.cols, int(math.ceil((xmax - grid.xmin) / grid.dx - 1e-9)))
    row_start = max(0, int(math.floor((grid.ymax - ymax) / grid.dy + 1e-9)))
    row_stop = min(grid.rows, int(math.ceil((grid.ymax - ymin) / grid.dy - 1e-9)))

    if col_start >= col_stop or row_start >= row_stop:
        raise ValueError(f"Crop bounds {bounds} do not overlap raster bounds {grid.bounds}")

    cropped = Grid(
        crs=grid.crs,
        xmin=grid.xmin + col_start * grid.dx,
        ymin=grid.ymax - row_stop * grid.dy,
        xmax=grid.xmin + col_stop * grid.dx,
        ymax=grid.ymax - row_start * grid.dy,
        dx=grid.dx,
        dy=grid.dy,
        rows=row_stop - row_start,
        cols=col_stop - col_start,
    )

    logger.info(
        f"Cropped '{raster.name}' from {grid.rows}x{grid.cols} to {cropped.rows}x{cropped.cols}"
    )
    values = raster.values[row_start:row_stop, col_start:col_stop]
    return Raster(cropped, values, nodata=raster.nodata, name=name or raster.name)


def boundary_cells(boundary: BoundaryMask, grid: Grid) -> np.ndarray:
    """Boolean array, True for cells whose centroid is inside ``boundary``."""
    require_crs(grid.crs, boundary.crs, stage="mask", layer=boundary.name)
    outside = geometry_mask(
        [boundary.geometry],
        out_shape=grid.shape,
        transform=grid.transform,
        all_touched=False,
        invert=False,
    )
    return ~outside


def mask_to_boundary(raster: Raster, boundary: BoundaryMask, name: Optional[str] = None) -> Raster:
    """
    Set cells whose centroid is outside ``boundary`` to NoData.

    Cells inside keep their input value (including input NoData).

    Raises:
        CRSMismatch: If the boundary CRS differs from the raster CRS
    """
    inside = boundary_cells(boundary, raster.grid)
    result = np.where(inside, raster.values, raster.nodata)

    logger.info(
        f"Masked '{raster.name}' to '{boundary.name}': "
        f"{int(np.count_nonzero(inside))}/{inside.size} cells inside"
    )
    return raster.with_values(result, name=name)
