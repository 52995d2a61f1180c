"""
Vector inputs: tagged geometry layers and the study-area boundary.

Layers are produced by data-acquisition code outside this package (file
readers, Overpass queries) and consumed read-only. CRS identity is an explicit
field on every layer; nothing here reprojects implicitly.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional, Tuple

from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union
from shapely.validation import make_valid

from src.covariates.errors import CRSMismatch, EmptyGeometryResult
from src.covariates.grid import normalize_crs

logger = logging.getLogger(__name__)

POINT_TYPES = ("Point",)
LINE_TYPES = ("LineString", "LinearRing")
POLYGON_TYPES = ("Polygon",)


def explode(geometry: BaseGeometry) -> Iterator[BaseGeometry]:
    """Yield the single-part, non-empty pieces of a (multi/collection) geometry."""
    if geometry is None or geometry.is_empty:
        return
    if hasattr(geometry, "geoms"):
        for part in geometry.geoms:
            yield from explode(part)
    else:
        yield geometry


@dataclass(frozen=True)
class VectorLayer:
    """
    Collection of geometries tagged with a CRS.

    Attributes:
        name: Layer identifier (e.g. "roads"), used in errors and logs
        geometries: Shapely geometries (points, lines, polygons, or multi-parts)
        crs: Coordinate reference system of the coordinates
        attributes: Optional per-feature property dicts, carried but unused
    """

    name: str
    geometries: Tuple[BaseGeometry, ...]
    crs: str
    attributes: Tuple[dict, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "geometries", tuple(self.geometries))
        object.__setattr__(self, "attributes", tuple(self.attributes))
        object.__setattr__(self, "crs", normalize_crs(self.crs))

    @classmethod
    def from_geodataframe(cls, gdf, name: str) -> "VectorLayer":
        """
        Build a layer from a GeoDataFrame.

        Raises:
            EmptyGeometryResult: If the frame has no non-empty geometries
            ValueError: If the frame has no CRS
        """
        if gdf.crs is None:
            raise ValueError(f"GeoDataFrame for layer '{name}' has no CRS")

        gdf = gdf[gdf.geometry.notna() & ~gdf.geometry.is_empty]
        if len(gdf) == 0:
            raise EmptyGeometryResult("vector source returned no features", stage="load", layer=name)

        attributes = tuple(gdf.drop(columns=gdf.geometry.name).to_dict("records"))
        return cls(
            name=name,
            geometries=tuple(gdf.geometry),
            crs=gdf.crs.to_string(),
            attributes=attributes,
        )

    def parts(self) -> Iterator[BaseGeometry]:
        """Iterate over every single-part geometry in the layer."""
        for geometry in self.geometries:
            yield from explode(geometry)

    def geom_types(self) -> set:
        return {part.geom_type for part in self.parts()}

    def __len__(self) -> int:
        return len(self.geometries)


@dataclass(frozen=True)
class BoundaryMask:
    """
    Polygonal study area. Cells whose centroid is outside become NoData.

    Attributes:
        geometry: Polygon or MultiPolygon
        crs: Coordinate reference system of the geometry
        name: Identifier for logs and errors
    """

    geometry: BaseGeometry
    crs: str
    name: str = "boundary"

    def __post_init__(self):
        object.__setattr__(self, "crs", normalize_crs(self.crs))
        if not isinstance(self.geometry, (Polygon, MultiPolygon)):
            raise ValueError(
                f"Boundary must be a Polygon or MultiPolygon, got {self.geometry.geom_type}"
            )
        if self.geometry.is_empty:
            raise EmptyGeometryResult("boundary polygon is empty", stage="mask", layer=self.name)

    @classmethod
    def from_layer(cls, layer: VectorLayer) -> "BoundaryMask":
        """Dissolve every polygon in ``layer`` into a single boundary."""
        polygons = [part for part in layer.parts() if part.geom_type in POLYGON_TYPES]
        if not polygons:
            raise EmptyGeometryResult(
                "layer contains no polygons to build a boundary from",
                stage="mask",
                layer=layer.name,
            )

        merged = unary_union([make_valid(p) for p in polygons])
        # make_valid can leave stray lines/points behind; keep only the areas
        if not isinstance(merged, (Polygon, MultiPolygon)):
            areas = [g for g in explode(merged) if g.geom_type in POLYGON_TYPES]
            if not areas:
                raise EmptyGeometryResult(
                    "boundary polygons collapsed to zero area", stage="mask", layer=layer.name
                )
            merged = MultiPolygon(areas) if len(areas) > 1 else areas[0]

        logger.info(
            f"Built boundary '{layer.name}' from {len(polygons)} polygon(s), "
            f"bounds={tuple(round(v, 3) for v in merged.bounds)}"
        )
        return cls(geometry=merged, crs=layer.crs, name=layer.name)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return tuple(self.geometry.bounds)


def require_crs(
    expected_crs: str, actual_crs: str, stage: str, layer: Optional[str] = None
) -> None:
    """Raise CRSMismatch unless the two CRS strings identify the same system."""
    if normalize_crs(expected_crs) != normalize_crs(actual_crs):
        raise CRSMismatch(expected_crs, actual_crs, stage=stage, layer=layer)
