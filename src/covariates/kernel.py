"""
Gaussian kernels and NoData-aware focal convolution.

Exposure surfaces are built by smoothing a sparse 0/1 presence raster
(roads, tourism points, buildings) with a radial Gaussian kernel.

Convolution renormalizes per cell: the output is the weighted mean over the
footprint cells that are inside the grid and hold data,

    out(c) = sum(w * v) / sum(w)   over valid footprint cells

so cells near the grid edge or next to NoData are not darkened by missing
neighbours. A cell with no valid footprint cells is NoData. Turning those
cells into "no exposure" is a separate, explicit step (``fill_no_exposure``)
that only makes sense for presence rasters.
"""

import logging
import math
from typing import Optional

import numpy as np
from scipy import ndimage
from scipy.signal import fftconvolve

from src.covariates.grid import Grid, Raster
from src.covariates.normalize import zscore
from src.covariates.rasterize import rasterize_layer
from src.covariates.vector import VectorLayer

logger = logging.getLogger(__name__)

# Kernels wider than this use FFT convolution instead of direct correlation
DIRECT_MAX_WIDTH = 15


def gaussian_kernel(radius: int, sigma: Optional[float] = None) -> np.ndarray:
    """
    Build an unnormalized radial Gaussian kernel.

    weight(i, j) = exp(-(i² + j²) / (2σ²)) for i² + j² <= R², else 0.

    Args:
        radius: Kernel radius R in grid cells (>= 1)
        sigma: Standard deviation in cells (default: R / 3)

    Returns:
        (2R+1, 2R+1) float64 array
    """
    if int(radius) != radius or radius < 1:
        raise ValueError(f"Kernel radius must be a positive integer, got {radius}")
    radius = int(radius)

    if sigma is None:
        sigma = radius / 3.0
    if not sigma > 0 or not math.isfinite(sigma):
        raise ValueError(f"Kernel sigma must be positive and finite, got {sigma}")

    offsets = np.arange(-radius, radius + 1)
    ii, jj = np.meshgrid(offsets, offsets, indexing="ij")
    dist_sq = ii**2 + jj**2

    kernel = np.exp(-dist_sq / (2.0 * sigma**2))
    kernel[dist_sq > radius**2] = 0.0
    return kernel


def _correlate(data: np.ndarray, kernel: np.ndarray, use_fft: bool) -> np.ndarray:
    if use_fft:
        # Kernel is symmetric, so convolution equals correlation
        return fftconvolve(data, kernel, mode="same")
    return ndimage.correlate(data, kernel, mode="constant", cval=0.0)


def focal_convolve(
    raster: Raster,
    kernel: np.ndarray,
    method: str = "auto",
    preserve_nodata: bool = False,
    name: Optional[str] = None,
) -> Raster:
    """
    Weighted focal mean of ``raster`` with per-cell weight renormalization.

    Args:
        raster: Input raster
        kernel: Square, odd-sized, symmetric, non-negative weights
        method: "direct", "fft", or "auto" (direct for kernels up to
            DIRECT_MAX_WIDTH cells wide)
        preserve_nodata: Keep input NoData cells as NoData in the output
            instead of filling them from their neighbours
        name: Output name (default: input name)

    Returns:
        Raster on the same grid. Cells whose footprint has no valid input
        cells are NoData.
    """
    kernel = np.asarray(kernel, dtype=np.float64)
    if kernel.ndim != 2 or kernel.shape[0] != kernel.shape[1] or kernel.shape[0] % 2 != 1:
        raise ValueError(f"Kernel must be square with odd size, got shape {kernel.shape}")
    if np.any(kernel < 0) or not np.isfinite(kernel).all() or kernel.sum() <= 0:
        raise ValueError("Kernel weights must be finite, non-negative, with a positive sum")
    if method not in ("auto", "direct", "fft"):
        raise ValueError(f"Unknown convolution method '{method}'")

    use_fft = method == "fft" or (method == "auto" and kernel.shape[0] > DIRECT_MAX_WIDTH)

    valid = raster.valid_mask
    data = np.where(valid, raster.values, 0.0)
    valid_f = valid.astype(np.float64)
    footprint = (kernel > 0).astype(np.float64)

    logger.info(
        f"Convolving '{raster.name}' ({raster.grid.rows}x{raster.grid.cols}) with "
        f"{kernel.shape[0]}x{kernel.shape[1]} kernel ({'fft' if use_fft else 'direct'})"
    )

    weighted_sum = _correlate(data, kernel, use_fft)
    weight_total = _correlate(valid_f, kernel, use_fft)
    # Counts are integers, so thresholding at 0.5 is exact even with FFT round-off
    has_support = _correlate(valid_f, footprint, use_fft) > 0.5
    # Footprints holding only zeros sum to exactly 0, not FFT noise around it
    has_data = _correlate((data != 0).astype(np.float64), footprint, use_fft) > 0.5
    weighted_sum = np.where(has_data, weighted_sum, 0.0)

    with np.errstate(divide="ignore", invalid="ignore"):
        smoothed = np.where(has_support, weighted_sum / weight_total, np.nan)

    if preserve_nodata:
        smoothed[~valid] = np.nan

    n_empty = int(np.count_nonzero(np.isnan(smoothed)))
    if n_empty:
        logger.debug(f"{n_empty} cells have no valid input in their kernel footprint")

    return Raster.from_masked(raster.grid, smoothed, nodata=raster.nodata, name=name or raster.name)


def fill_no_exposure(raster: Raster, value: float = 0.0) -> Raster:
    """
    Replace NoData with ``value`` ("no exposure").

    This is a domain rule for presence-derived density surfaces: a cell with
    no features anywhere within the kernel radius has zero exposure. It is not
    a property of convolution and must not be applied to general rasters.
    """
    valid = raster.valid_mask
    n_filled = int(np.count_nonzero(~valid))
    if n_filled:
        logger.info(f"Filling {n_filled} empty-footprint cells of '{raster.name}' with {value}")
    return raster.with_values(np.where(valid, raster.values, value))


def exposure_surface(
    layer: VectorLayer,
    grid: Grid,
    radius: int,
    sigma: Optional[float] = None,
    fill_empty: bool = True,
    normalize: bool = True,
    name: Optional[str] = None,
) -> Raster:
    """
    Smoothed density ("exposure") surface for a vector layer.

    Steps: rasterize presence (1 on 0) -> Gaussian focal convolution ->
    optional zero fill of empty footprints -> optional z-score.

    Args:
        layer: Features in the grid's CRS
        grid: Working grid
        radius: Kernel radius in cells
        sigma: Kernel standard deviation in cells (default: radius / 3)
        fill_empty: Apply ``fill_no_exposure`` after convolution
        normalize: Standardize the result with ``zscore``
        name: Output name (default: "<layer>_exposure")

    Returns:
        Raster
    """
    out_name = name or f"{layer.name}_exposure"
    presence = rasterize_layer(layer, grid, foreground=1.0, background=0.0)
    surface = focal_convolve(presence, gaussian_kernel(radius, sigma), name=out_name)

    if fill_empty:
        surface = fill_no_exposure(surface)
    if normalize:
        surface = zscore(surface)

    stats = surface.stats()
    if stats["count"]:
        logger.info(
            f"Exposure '{out_name}' (R={radius}): range {stats['min']:.3f} to {stats['max']:.3f}"
        )
    return surface
