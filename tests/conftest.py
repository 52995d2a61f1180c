"""Pytest configuration and fixtures for covariate tests."""
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import pytest
import numpy as np

from src.covariates.grid import Grid, Raster

UTM = "EPSG:32633"


@pytest.fixture
def unit_grid():
    """5x5 grid of 1 m cells covering (0, 0) - (5, 5) in UTM 33N."""
    return Grid.from_bounds(UTM, (0.0, 0.0, 5.0, 5.0), 1.0)


@pytest.fixture
def ten_grid():
    """10x10 grid of 1 m cells covering (0, 0) - (10, 10) in UTM 33N."""
    return Grid.from_bounds(UTM, (0.0, 0.0, 10.0, 10.0), 1.0)


@pytest.fixture
def sample_raster(ten_grid):
    """Raster with distinct values 0..99 in scan order."""
    values = np.arange(100, dtype=float).reshape(10, 10)
    return Raster(ten_grid, values, nodata=-9999.0, name="sample")


@pytest.fixture
def project_root():
    """Get the project root directory."""
    return Path(__file__).parent.parent
