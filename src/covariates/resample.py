"""
Reproject and resample a raster onto a target Grid.

Each target cell centroid is transformed into the source CRS with pyproj and
bilinearly interpolated from the four surrounding source cell centres. A
target cell is NoData if its centroid falls outside the source extent or if
any of the four contributing source cells is NoData.

Within the outer half-cell of the source (between the last cell centre and the
extent edge) the nearest edge cells are reused, so a constant raster stays
constant everywhere inside its extent.
"""

import logging
from typing import Optional, Tuple, Union

import numpy as np
from pyproj import Transformer
from rasterio.warp import transform_bounds

from src.covariates.grid import Grid, Raster

logger = logging.getLogger(__name__)


def _transform_points(xs: np.ndarray, ys: np.ndarray, src_crs: str, dst_crs: str):
    if src_crs == dst_crs:
        return xs, ys
    transformer = Transformer.from_crs(src_crs, dst_crs, always_xy=True)
    tx, ty = transformer.transform(xs, ys)
    return np.asarray(tx, dtype=float), np.asarray(ty, dtype=float)


def _axis_weights(frac: np.ndarray, size: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Lower index, upper index, and upper weight along one axis, clamped to [0, size-1]."""
    lower = np.clip(np.floor(frac), 0, size - 1).astype(int)
    upper = np.clip(lower + 1, 0, size - 1)
    weight = np.clip(frac - lower, 0.0, 1.0)
    # At the last cell centre and beyond, everything comes from the edge cell
    weight = np.where(upper == lower, 0.0, weight)
    return lower, upper, weight


def resample_to_grid(raster: Raster, target: Grid, name: Optional[str] = None) -> Raster:
    """
    Bilinearly resample ``raster`` onto ``target``, reprojecting if needed.

    Args:
        raster: Source raster, in any CRS
        target: Target grid (the working grid)
        name: Output name (default: source name)

    Returns:
        Raster on ``target`` with the source's NoData sentinel
    """
    source = raster.grid
    logger.info(
        f"Resampling '{raster.name}' from {source.describe()} to {target.describe()}"
    )

    tx, ty = target.cell_centers()
    sx, sy = _transform_points(tx.ravel(), ty.ravel(), target.crs, source.crs)

    inside = np.isfinite(sx) & np.isfinite(sy)
    inside &= (sx >= source.xmin) & (sx <= source.xmax) & (sy >= source.ymin) & (sy <= source.ymax)

    # Fractional index relative to cell centres
    col_f = np.where(inside, (sx - source.xmin) / source.dx - 0.5, 0.0)
    row_f = np.where(inside, (source.ymax - sy) / source.dy - 0.5, 0.0)

    c0, c1, wc = _axis_weights(col_f, source.cols)
    r0, r1, wr = _axis_weights(row_f, source.rows)

    values = raster.values
    valid = raster.valid_mask

    neighbours_valid = valid[r0, c0] & valid[r0, c1] & valid[r1, c0] & valid[r1, c1]

    top = values[r0, c0] * (1.0 - wc) + values[r0, c1] * wc
    bottom = values[r1, c0] * (1.0 - wc) + values[r1, c1] * wc
    interpolated = top * (1.0 - wr) + bottom * wr

    keep = inside & neighbours_valid
    result = np.where(keep, interpolated, raster.nodata).reshape(target.shape)

    n_out = int(np.count_nonzero(~keep))
    logger.info(
        f"Resampled {target.rows * target.cols - n_out} cells; "
        f"{n_out} NoData (outside extent or NoData neighbours)"
    )

    return Raster(target, result, nodata=raster.nodata, name=name or raster.name)


def reproject_raster(
    raster: Raster,
    dst_crs: str,
    resolution: Optional[Union[float, Tuple[float, float]]] = None,
    name: Optional[str] = None,
) -> Raster:
    """
    Reproject ``raster`` to ``dst_crs`` on a grid covering its transformed bounds.

    Args:
        raster: Source raster
        dst_crs: Destination CRS
        resolution: Destination cell size. Defaults to the source cell size
            carried across by the ratio of transformed to source extent width.
        name: Output name

    Returns:
        Raster in ``dst_crs``
    """
    source = raster.grid
    bounds = transform_bounds(source.crs, dst_crs, *source.bounds, densify_pts=21)

    if resolution is None:
        scale = (bounds[2] - bounds[0]) / (source.xmax - source.xmin)
        resolution = (source.dx * scale, source.dy * scale)

    target = Grid.from_bounds(dst_crs, bounds, resolution)
    return resample_to_grid(raster, target, name=name)
