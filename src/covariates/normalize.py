"""
Z-score standardization of raster values.
"""

import logging
from typing import Optional

import numpy as np

from src.covariates.errors import DegenerateInput
from src.covariates.grid import Raster

logger = logging.getLogger(__name__)


def zscore(raster: Raster, ddof: int = 0, name: Optional[str] = None) -> Raster:
    """
    Standardize valid cells to mean 0 and standard deviation 1.

    Args:
        raster: Input raster
        ddof: Delta degrees of freedom for the standard deviation (default: 0,
            population std, so the output has std exactly 1 under ``np.std``)
        name: Output name (default: input name)

    Returns:
        Raster with (v - mean) / std at valid cells, NoData elsewhere

    Raises:
        DegenerateInput: If there are no valid cells or the std is zero
    """
    valid = raster.valid_mask
    values = raster.values[valid]

    if values.size <= ddof:
        raise DegenerateInput(
            f"need more than {ddof} valid cells to normalize, got {values.size}",
            stage="normalize",
            layer=raster.name,
        )

    mean = float(values.mean())
    std = float(values.std(ddof=ddof))
    # std of a constant array can be round-off rather than 0; the range is exact
    if np.ptp(values) == 0 or std == 0 or not np.isfinite(std):
        raise DegenerateInput(
            f"standard deviation is {std} (constant value {mean:g}); cannot normalize",
            stage="normalize",
            layer=raster.name,
        )

    logger.debug(f"Normalizing '{raster.name}': mean={mean:.4f}, std={std:.4f}, n={values.size}")

    result = np.where(valid, (raster.values - mean) / std, raster.nodata)
    return raster.with_values(result, name=name)
