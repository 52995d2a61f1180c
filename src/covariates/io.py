"""
File boundary for the covariate pipeline.

Reads and writes single-band GeoTIFF rasters with rasterio and loads vector
layers with geopandas. Everything past this module works on in-memory
Raster / VectorLayer values.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np
import rasterio

from src.covariates.errors import EmptyGeometryResult
from src.covariates.grid import DEFAULT_NODATA, Grid, Raster
from src.covariates.vector import VectorLayer

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def read_raster(path: PathLike, band: int = 1, name: Optional[str] = None) -> Raster:
    """
    Load one band of a georeferenced raster file.

    Args:
        path: Raster file readable by rasterio (GeoTIFF, HGT, ...)
        band: 1-based band index (default: 1)
        name: Raster name (default: file stem)

    Returns:
        Raster with CRS, extent, resolution and NoData taken from the file.
        Files without a NoData value get -9999.0 (NaN cells are NoData anyway).

    Raises:
        ValueError: If the file has no CRS or lacks the requested band
        rasterio.errors.RasterioIOError: If the file cannot be opened
    """
    path = Path(path)
    logger.info(f"Reading raster band {band} from {path}")

    with rasterio.open(path) as ds:
        if ds.crs is None:
            raise ValueError(f"Raster {path} has no CRS")
        if band < 1 or band > ds.count:
            raise ValueError(f"Raster {path} has {ds.count} band(s); band {band} requested")

        values = ds.read(band).astype(np.float64)
        nodata = ds.nodatavals[band - 1]
        grid = Grid.from_transform(ds.crs, ds.transform, (ds.height, ds.width))

    if nodata is None:
        nodata = DEFAULT_NODATA

    raster = Raster(grid, values, nodata=nodata, name=name or path.stem)
    logger.info(f"  {grid.describe()}, {raster.valid_count()} valid cells, nodata={nodata}")
    return raster


def write_raster(raster: Raster, path: PathLike) -> Path:
    """Write ``raster`` as a single-band float64 GeoTIFF."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    grid = raster.grid

    profile = {
        "driver": "GTiff",
        "height": grid.rows,
        "width": grid.cols,
        "count": 1,
        "dtype": "float64",
        "crs": grid.crs,
        "transform": grid.transform,
        "nodata": raster.nodata,
        "compress": "deflate",
    }
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(raster.values, 1)
        if raster.name:
            dst.set_band_description(1, raster.name)

    logger.info(f"Wrote raster '{raster.name}' to {path}")
    return path


def read_vector_layer(
    path: PathLike,
    name: Optional[str] = None,
    layer: Optional[str] = None,
    to_crs: Optional[str] = None,
) -> VectorLayer:
    """
    Load a vector file into a VectorLayer.

    Args:
        path: Any file geopandas can read (GeoPackage, Shapefile, GeoJSON)
        name: Layer name (default: file stem)
        layer: Layer within a multi-layer source
        to_crs: Reproject to this CRS while loading. The pipeline itself never
            reprojects vectors, so this is the place to align them.

    Raises:
        EmptyGeometryResult: If the source yields no features
    """
    import geopandas as gpd

    path = Path(path)
    name = name or path.stem
    logger.info(f"Reading vector layer '{name}' from {path}")

    gdf = gpd.read_file(path, layer=layer) if layer else gpd.read_file(path)
    if len(gdf) == 0:
        raise EmptyGeometryResult(f"{path} contains no features", stage="load", layer=name)
    if to_crs is not None:
        gdf = gdf.to_crs(to_crs)

    vector_layer = VectorLayer.from_geodataframe(gdf, name=name)
    logger.info(f"  {len(vector_layer)} features, types={sorted(vector_layer.geom_types())}")
    return vector_layer
