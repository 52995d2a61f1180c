"""
Burn vector geometries into a Grid.

Geometry-type policy:
- Points mark only the cell that contains them.
- Lines mark every cell their path crosses (GDAL ``all_touched``).
- Polygons mark every cell whose centroid falls inside them.

The layer and grid must share a CRS. Vector layers are never reprojected here;
callers reproject upstream (e.g. ``gdf.to_crs``) before rasterizing.
"""

import logging
import math
from typing import List, Optional

import numpy as np
from rasterio import features

from src.covariates.errors import EmptyGeometryResult
from src.covariates.grid import DEFAULT_NODATA, Grid, Raster
from src.covariates.vector import LINE_TYPES, POINT_TYPES, POLYGON_TYPES, VectorLayer, require_crs

logger = logging.getLogger(__name__)


def _burn(geometries: List, grid: Grid, all_touched: bool) -> np.ndarray:
    """Return a boolean array, True where any geometry burns a cell."""
    if not geometries:
        return np.zeros(grid.shape, dtype=bool)
    burned = features.rasterize(
        [(geom, 1) for geom in geometries],
        out_shape=grid.shape,
        transform=grid.transform,
        fill=0,
        all_touched=all_touched,
        dtype="uint8",
    )
    return burned.astype(bool)


def _burn_points(points: List, grid: Grid) -> np.ndarray:
    burned = np.zeros(grid.shape, dtype=bool)
    if not points:
        return burned

    xs = np.array([p.x for p in points])
    ys = np.array([p.y for p in points])
    inside = grid.contains(xs, ys)
    if not np.all(inside):
        logger.debug(f"Ignoring {int(np.count_nonzero(~inside))} point(s) outside the grid")

    rows, cols = grid.rowcol(xs[inside], ys[inside])
    burned[rows, cols] = True
    return burned


def rasterize_layer(
    layer: VectorLayer,
    grid: Grid,
    foreground: float = 1.0,
    background: float = 0.0,
    nodata: Optional[float] = None,
) -> Raster:
    """
    Rasterize a vector layer onto ``grid``.

    Args:
        layer: Geometries to burn
        grid: Target grid (same CRS as the layer)
        foreground: Value for cells touched by a geometry (default: 1.0)
        background: Value for every other cell (default: 0.0). May be NoData.
        nodata: NoData sentinel of the output. Defaults to NaN when background
            is NaN, otherwise -9999.0. Pass ``nodata=background`` to make the
            background NoData.

    Returns:
        Raster named after the layer

    Raises:
        CRSMismatch: If layer.crs differs from grid.crs
        EmptyGeometryResult: If the layer holds no geometries
    """
    require_crs(grid.crs, layer.crs, stage="rasterize", layer=layer.name)

    if nodata is None:
        nodata = background if math.isnan(background) else DEFAULT_NODATA
    if foreground == nodata or math.isnan(foreground):
        raise ValueError(f"Foreground value {foreground} collides with NoData {nodata}")

    points, lines, polygons, skipped = [], [], [], 0
    for part in layer.parts():
        if part.geom_type in POINT_TYPES:
            points.append(part)
        elif part.geom_type in LINE_TYPES:
            lines.append(part)
        elif part.geom_type in POLYGON_TYPES:
            polygons.append(part)
        else:
            skipped += 1

    if not (points or lines or polygons):
        raise EmptyGeometryResult("layer has no geometries to rasterize", stage="rasterize", layer=layer.name)

    burned = (
        _burn_points(points, grid)
        | _burn(lines, grid, all_touched=True)
        | _burn(polygons, grid, all_touched=False)
    )

    values = np.where(burned, float(foreground), float(background))

    logger.info(
        f"Rasterized '{layer.name}' onto {grid.rows}x{grid.cols} grid: "
        f"{len(points)} points, {len(lines)} lines, {len(polygons)} polygons "
        f"({skipped} skipped) -> {int(np.count_nonzero(burned))} cells"
    )

    return Raster(grid, values, nodata=nodata, name=layer.name)
