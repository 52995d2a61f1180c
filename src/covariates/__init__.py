"""
Per-pixel covariates for land-surface temperature modelling.

Core functionality:
- Grid / Raster primitives with explicit CRS and NoData handling
- Rasterization of point, line and polygon layers
- Exact Euclidean distance-to-coast surfaces
- Gaussian exposure surfaces via renormalized focal convolution
- Bilinear reprojection of elevation onto the working grid
- Boundary masking, stacking and tabular export
"""

from .errors import (
    CovariateError,
    ShapeMismatch,
    CRSMismatch,
    GridMismatch,
    DegenerateInput,
    EmptyGeometryResult,
)
from .grid import Grid, Raster
from .vector import VectorLayer, BoundaryMask
from .rasterize import rasterize_layer
from .distance import distance_transform, coast_distance
from .kernel import gaussian_kernel, focal_convolve, fill_no_exposure, exposure_surface
from .normalize import zscore
from .resample import resample_to_grid, reproject_raster
from .masking import crop_to_bounds, mask_to_boundary
from .stack import RasterStack, stack_rasters, write_feature_table
from .pipeline import CovariatePipeline, PipelineInputs

__all__ = [
    "CovariateError",
    "ShapeMismatch",
    "CRSMismatch",
    "GridMismatch",
    "DegenerateInput",
    "EmptyGeometryResult",
    "Grid",
    "Raster",
    "VectorLayer",
    "BoundaryMask",
    "rasterize_layer",
    "distance_transform",
    "coast_distance",
    "gaussian_kernel",
    "focal_convolve",
    "fill_no_exposure",
    "exposure_surface",
    "zscore",
    "resample_to_grid",
    "reproject_raster",
    "crop_to_bounds",
    "mask_to_boundary",
    "RasterStack",
    "stack_rasters",
    "write_feature_table",
    "CovariatePipeline",
    "PipelineInputs",
]
