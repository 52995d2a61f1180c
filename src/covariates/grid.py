"""
Grid and Raster primitives for covariate processing.

A Grid is the spatial skeleton (CRS, extent, cell size, dimensions) shared by
every band in a run. A Raster is a Grid plus one band of values and a NoData
sentinel. Rasters are immutable: every operation returns a new Raster.

All grids are north-up with no rotation. Row 0 is the northern edge, so the
affine transform is ``Affine(dx, 0, xmin, 0, -dy, ymax)``.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Union

import numpy as np
from rasterio import Affine
from rasterio.crs import CRS

from src.covariates.errors import GridMismatch, ShapeMismatch

logger = logging.getLogger(__name__)

DEFAULT_NODATA = -9999.0

Bounds = Tuple[float, float, float, float]


def normalize_crs(crs) -> str:
    """Return a canonical string for any CRS rasterio understands."""
    if crs is None:
        raise ValueError("A CRS is required; got None")
    return CRS.from_user_input(crs).to_string()


@dataclass(frozen=True)
class Grid:
    """
    Fixed-resolution raster skeleton without data.

    Attributes:
        crs: Coordinate reference system, normalized via rasterio (e.g. "EPSG:32633")
        xmin, ymin, xmax, ymax: Spatial extent in CRS units
        dx, dy: Cell width and height (both positive)
        rows, cols: Grid dimensions
    """

    crs: str
    xmin: float
    ymin: float
    xmax: float
    ymax: float
    dx: float
    dy: float
    rows: int
    cols: int

    def __post_init__(self):
        object.__setattr__(self, "crs", normalize_crs(self.crs))

        if self.rows <= 0 or self.cols <= 0:
            raise ValueError(f"Grid dimensions must be positive, got {self.rows}x{self.cols}")
        if self.dx <= 0 or self.dy <= 0:
            raise ValueError(f"Cell size must be positive, got ({self.dx}, {self.dy})")

        # Extent has to agree with origin + dims * cell size
        width = self.cols * self.dx
        height = self.rows * self.dy
        if not (
            math.isclose(self.xmax - self.xmin, width, abs_tol=1e-6 * self.dx)
            and math.isclose(self.ymax - self.ymin, height, abs_tol=1e-6 * self.dy)
        ):
            raise ShapeMismatch(
                expected=(self.rows, self.cols),
                actual=(
                    round((self.ymax - self.ymin) / self.dy, 6),
                    round((self.xmax - self.xmin) / self.dx, 6),
                ),
                stage="grid",
            )

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_bounds(
        cls,
        crs,
        bounds: Bounds,
        resolution: Union[float, Tuple[float, float]],
    ) -> "Grid":
        """
        Build a grid covering ``bounds`` at the given resolution.

        The upper-left corner (xmin, ymax) is kept fixed. If the bounds are not
        an exact multiple of the cell size, the grid grows east and south to
        cover them.

        Args:
            crs: Any CRS rasterio understands
            bounds: (xmin, ymin, xmax, ymax)
            resolution: Cell size, either a single value or (dx, dy)

        Returns:
            Grid
        """
        if isinstance(resolution, (tuple, list)):
            dx, dy = float(resolution[0]), float(resolution[1])
        else:
            dx = dy = float(resolution)

        xmin, ymin, xmax, ymax = (float(v) for v in bounds)
        if xmax <= xmin or ymax <= ymin:
            raise ValueError(f"Invalid bounds {bounds}: max must exceed min")

        # Small epsilon so exact multiples don't round up an extra cell
        cols = int(math.ceil((xmax - xmin) / dx - 1e-9))
        rows = int(math.ceil((ymax - ymin) / dy - 1e-9))

        return cls(
            crs=crs,
            xmin=xmin,
            ymin=ymax - rows * dy,
            xmax=xmin + cols * dx,
            ymax=ymax,
            dx=dx,
            dy=dy,
            rows=rows,
            cols=cols,
        )

    @classmethod
    def from_transform(cls, crs, transform: Affine, shape: Tuple[int, int]) -> "Grid":
        """Build a grid from a north-up affine transform and (rows, cols)."""
        if transform.b != 0 or transform.d != 0:
            raise ValueError(f"Rotated transforms are not supported: {transform}")
        if transform.a <= 0 or transform.e >= 0:
            raise ValueError(f"Transform must be north-up with positive cell width: {transform}")

        rows, cols = int(shape[0]), int(shape[1])
        dx, dy = float(transform.a), float(-transform.e)
        xmin, ymax = float(transform.c), float(transform.f)
        return cls(
            crs=crs,
            xmin=xmin,
            ymin=ymax - rows * dy,
            xmax=xmin + cols * dx,
            ymax=ymax,
            dx=dx,
            dy=dy,
            rows=rows,
            cols=cols,
        )

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.rows, self.cols)

    @property
    def bounds(self) -> Bounds:
        return (self.xmin, self.ymin, self.xmax, self.ymax)

    @property
    def transform(self) -> Affine:
        return Affine(self.dx, 0.0, self.xmin, 0.0, -self.dy, self.ymax)

    def xy(self, row, col):
        """Return the (x, y) centroid of cell (row, col). Accepts arrays."""
        x = self.xmin + (np.asarray(col) + 0.5) * self.dx
        y = self.ymax - (np.asarray(row) + 0.5) * self.dy
        if np.ndim(x) == 0:
            return float(x), float(y)
        return x, y

    def rowcol(self, x, y):
        """
        Return the (row, col) of the cell containing (x, y). Accepts arrays.

        Cells are half-open: a point on the shared edge of two cells belongs to
        the cell to its east / south. Points outside the grid get indices
        outside [0, rows) x [0, cols); use ``contains`` to filter them.
        """
        col = np.floor((np.asarray(x, dtype=float) - self.xmin) / self.dx).astype(int)
        row = np.floor((self.ymax - np.asarray(y, dtype=float)) / self.dy).astype(int)
        if np.ndim(col) == 0:
            return int(row), int(col)
        return row, col

    def contains(self, x, y):
        """True where (x, y) falls inside the grid extent."""
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        return (x >= self.xmin) & (x < self.xmax) & (y > self.ymin) & (y <= self.ymax)

    def cell_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return (X, Y) arrays of shape (rows, cols) holding cell centroids."""
        xs = self.xmin + (np.arange(self.cols) + 0.5) * self.dx
        ys = self.ymax - (np.arange(self.rows) + 0.5) * self.dy
        return np.meshgrid(xs, ys)

    # ------------------------------------------------------------------
    # Alignment
    # ------------------------------------------------------------------

    def aligned_with(self, other: "Grid", rel_tol: float = 1e-9) -> bool:
        """
        True if both grids share CRS, dimensions, cell size and origin.

        Coordinates are compared with a tolerance relative to the cell size so
        grids read back from disk still match the grids they were written from.
        """
        if not isinstance(other, Grid):
            return False
        if self.crs != other.crs or self.shape != other.shape:
            return False
        tol_x = rel_tol * self.dx * max(1, self.cols)
        tol_y = rel_tol * self.dy * max(1, self.rows)
        return (
            math.isclose(self.dx, other.dx, abs_tol=tol_x)
            and math.isclose(self.dy, other.dy, abs_tol=tol_y)
            and math.isclose(self.xmin, other.xmin, abs_tol=tol_x)
            and math.isclose(self.ymax, other.ymax, abs_tol=tol_y)
        )

    def describe(self) -> str:
        return (
            f"{self.crs} {self.rows}x{self.cols} @ ({self.dx:g}, {self.dy:g}) "
            f"bounds=({self.xmin:g}, {self.ymin:g}, {self.xmax:g}, {self.ymax:g})"
        )


def check_aligned(
    expected: Grid, actual: Grid, stage: Optional[str] = None, layer: Optional[str] = None
) -> None:
    """Raise GridMismatch unless the two grids are aligned."""
    if not expected.aligned_with(actual):
        raise GridMismatch(expected.describe(), actual.describe(), stage=stage, layer=layer)


class Raster:
    """
    One band of values on a Grid, with a NoData sentinel.

    The value array is copied to float64 and made read-only on construction.
    A cell is NoData if it equals ``nodata`` or is NaN.

    Args:
        grid: Spatial skeleton
        values: 2-D array shaped (grid.rows, grid.cols)
        nodata: NoData sentinel (default: -9999.0, NaN allowed)
        name: Optional identifier used in logs and error messages

    Raises:
        ShapeMismatch: If values is not 2-D or disagrees with grid.shape
    """

    def __init__(self, grid: Grid, values, nodata: float = DEFAULT_NODATA, name: Optional[str] = None):
        data = np.array(values, dtype=np.float64, copy=True)
        if data.ndim != 2 or data.shape != grid.shape:
            raise ShapeMismatch(grid.shape, data.shape, stage="raster", layer=name)
        data.setflags(write=False)

        self._grid = grid
        self._values = data
        self._nodata = float(nodata)
        self.name = name

    def __setstate__(self, state):
        # Unpickled arrays come back writable (e.g. results from worker processes)
        self.__dict__.update(state)
        self._values.setflags(write=False)

    @classmethod
    def from_masked(
        cls, grid: Grid, data, nodata: float = DEFAULT_NODATA, name: Optional[str] = None
    ) -> "Raster":
        """Build a Raster from an array where NaN marks NoData."""
        data = np.asarray(data, dtype=np.float64)
        return cls(grid, np.where(np.isnan(data), nodata, data), nodata=nodata, name=name)

    @classmethod
    def full(
        cls, grid: Grid, fill_value: float, nodata: float = DEFAULT_NODATA, name: Optional[str] = None
    ) -> "Raster":
        return cls(grid, np.full(grid.shape, fill_value, dtype=np.float64), nodata=nodata, name=name)

    @property
    def grid(self) -> Grid:
        return self._grid

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def nodata(self) -> float:
        return self._nodata

    @property
    def shape(self) -> Tuple[int, int]:
        return self._values.shape

    @property
    def valid_mask(self) -> np.ndarray:
        """Boolean array, True where the cell holds data."""
        valid = ~np.isnan(self._values)
        if not np.isnan(self._nodata):
            valid &= self._values != self._nodata
        return valid

    def valid_count(self) -> int:
        return int(np.count_nonzero(self.valid_mask))

    def masked(self) -> np.ndarray:
        """Return a writable float copy with NoData cells set to NaN."""
        return np.where(self.valid_mask, self._values, np.nan)

    def with_values(self, values, name: Optional[str] = None) -> "Raster":
        """New Raster on the same grid and sentinel with different values."""
        return Raster(self._grid, values, nodata=self._nodata, name=name or self.name)

    def renamed(self, name: str) -> "Raster":
        return Raster(self._grid, self._values, nodata=self._nodata, name=name)

    def stats(self) -> dict:
        """Min, max, mean and count over valid cells."""
        valid = self._values[self.valid_mask]
        if valid.size == 0:
            return {"min": None, "max": None, "mean": None, "count": 0}
        return {
            "min": float(valid.min()),
            "max": float(valid.max()),
            "mean": float(valid.mean()),
            "count": int(valid.size),
        }

    # ------------------------------------------------------------------
    # NoData-aware arithmetic
    # ------------------------------------------------------------------

    def combine(
        self,
        other: Union["Raster", float, int],
        func: Callable[[np.ndarray, np.ndarray], np.ndarray],
        name: Optional[str] = None,
    ) -> "Raster":
        """
        Apply a binary elementwise function, propagating NoData.

        A cell in the result is NoData if it is NoData in either operand, or if
        ``func`` produces a non-finite value there (e.g. division by zero).

        Args:
            other: Raster on the same grid, or a scalar
            func: Vectorized function of two arrays
            name: Name for the result

        Raises:
            GridMismatch: If ``other`` is a Raster on a different grid
        """
        if isinstance(other, Raster):
            check_aligned(self._grid, other.grid, stage="combine", layer=other.name or name)
            other_values = other.values
            valid = self.valid_mask & other.valid_mask
        else:
            other_values = float(other)
            valid = self.valid_mask

        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            result = func(self._values, other_values)

        valid = valid & np.isfinite(result)
        return Raster(
            self._grid,
            np.where(valid, result, self._nodata),
            nodata=self._nodata,
            name=name or self.name,
        )

    def __add__(self, other):
        return self.combine(other, np.add)

    def __sub__(self, other):
        return self.combine(other, np.subtract)

    def __mul__(self, other):
        return self.combine(other, np.multiply)

    def __truediv__(self, other):
        return self.combine(other, np.divide)

    def __repr__(self) -> str:
        return f"Raster(name={self.name!r}, grid={self._grid.describe()}, nodata={self._nodata:g})"
