"""
Stack aligned bands and export valid cells as a table.

A row is emitted only for cells where every band holds data; partial rows are
never produced. Row order is cell-scan order (row-major, north to south).
"""

import logging
from collections import OrderedDict
from pathlib import Path
from typing import List, Mapping, Union

import numpy as np
import pandas as pd

from src.covariates.grid import Grid, Raster, check_aligned

logger = logging.getLogger(__name__)


class RasterStack:
    """
    Ordered set of named single-band rasters on one Grid.

    Args:
        bands: Mapping of column name -> Raster. Order is preserved.

    Raises:
        GridMismatch: If any band's grid differs from the first band's
        ValueError: If no bands are given
    """

    def __init__(self, bands: Mapping[str, Raster]):
        if not bands:
            raise ValueError("RasterStack needs at least one band")

        self.bands = OrderedDict(bands)
        names = list(self.bands)
        reference = self.bands[names[0]].grid
        for band_name in names[1:]:
            check_aligned(reference, self.bands[band_name].grid, stage="stack", layer=band_name)
        self.grid: Grid = reference

    @property
    def names(self) -> List[str]:
        return list(self.bands)

    def valid_mask(self) -> np.ndarray:
        """True where every band holds data."""
        mask = np.ones(self.grid.shape, dtype=bool)
        for raster in self.bands.values():
            mask &= raster.valid_mask
        return mask

    def to_array(self) -> np.ndarray:
        """(bands, rows, cols) float array with NaN for NoData."""
        return np.stack([raster.masked() for raster in self.bands.values()])

    def to_feature_table(self) -> pd.DataFrame:
        """
        One row per cell valid in every band.

        Returns:
            DataFrame with columns X, Y (cell centroids) then one column per band
        """
        mask = self.valid_mask()
        rows, cols = np.nonzero(mask)
        xs, ys = self.grid.xy(rows, cols)
        array = self.to_array()

        columns = OrderedDict()
        columns["X"] = np.asarray(xs, dtype=float)
        columns["Y"] = np.asarray(ys, dtype=float)
        for band_name, band_values in zip(self.bands, array):
            columns[band_name] = band_values[rows, cols]

        table = pd.DataFrame(columns)
        logger.info(
            f"Feature table: {len(table)} rows from {mask.size} cells "
            f"({mask.size - len(table)} dropped for NoData), columns={list(table.columns)}"
        )
        return table


def stack_rasters(bands: Mapping[str, Raster]) -> pd.DataFrame:
    """Stack ``bands`` and return the feature table."""
    return RasterStack(bands).to_feature_table()


def write_feature_table(table: pd.DataFrame, path: Union[str, Path]) -> Path:
    """
    Write a feature table to CSV without the index.

    Returns:
        The output path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(path, index=False)
    logger.info(f"Wrote {len(table)} rows to {path}")
    return path
