"""
Tests for VectorLayer and BoundaryMask.
"""

import pytest
from shapely.geometry import GeometryCollection, LineString, MultiPoint, Point, Polygon, box

from src.covariates.errors import CRSMismatch, EmptyGeometryResult
from src.covariates.vector import BoundaryMask, VectorLayer, explode, require_crs

UTM = "EPSG:32633"


class TestExplode:
    def test_single_geometry(self):
        assert list(explode(Point(1, 2))) == [Point(1, 2)]

    def test_nested_collection(self):
        collection = GeometryCollection([MultiPoint([(0, 0), (1, 1)]), LineString([(0, 0), (1, 0)])])

        parts = list(explode(collection))

        assert [p.geom_type for p in parts] == ["Point", "Point", "LineString"]

    def test_empty_yields_nothing(self):
        assert list(explode(Point())) == []
        assert list(explode(None)) == []


class TestVectorLayer:
    """Tests for VectorLayer."""

    def test_crs_is_normalized(self):
        layer = VectorLayer(name="roads", geometries=[Point(0, 0)], crs="epsg:32633")

        assert layer.crs == "EPSG:32633"

    def test_geometries_become_tuple(self):
        layer = VectorLayer(name="roads", geometries=[Point(0, 0), Point(1, 1)], crs=UTM)

        assert isinstance(layer.geometries, tuple)
        assert len(layer) == 2

    def test_geom_types(self):
        layer = VectorLayer(name="mixed", geometries=[MultiPoint([(0, 0)]), box(0, 0, 1, 1)], crs=UTM)

        assert layer.geom_types() == {"Point", "Polygon"}

    def test_frozen(self):
        layer = VectorLayer(name="roads", geometries=[Point(0, 0)], crs=UTM)

        with pytest.raises(AttributeError):
            layer.name = "other"

    def test_from_geodataframe(self):
        import geopandas as gpd

        gdf = gpd.GeoDataFrame(
            {"kind": ["hotel", "camp", "none"]},
            geometry=[Point(0, 0), Point(1, 1), None],
            crs=UTM,
        )

        layer = VectorLayer.from_geodataframe(gdf, name="tourism")

        assert len(layer) == 2
        assert layer.crs == "EPSG:32633"
        assert [a["kind"] for a in layer.attributes] == ["hotel", "camp"]

    def test_from_geodataframe_without_crs(self):
        import geopandas as gpd

        gdf = gpd.GeoDataFrame(geometry=[Point(0, 0)])

        with pytest.raises(ValueError):
            VectorLayer.from_geodataframe(gdf, name="tourism")

    def test_from_geodataframe_all_empty(self):
        import geopandas as gpd

        gdf = gpd.GeoDataFrame(geometry=[Point(), None], crs=UTM)

        with pytest.raises(EmptyGeometryResult) as excinfo:
            VectorLayer.from_geodataframe(gdf, name="tourism")

        assert excinfo.value.layer == "tourism"


class TestBoundaryMask:
    """Tests for BoundaryMask."""

    def test_rejects_non_polygon(self):
        with pytest.raises(ValueError):
            BoundaryMask(geometry=LineString([(0, 0), (1, 1)]), crs=UTM)

    def test_rejects_empty_polygon(self):
        with pytest.raises(EmptyGeometryResult):
            BoundaryMask(geometry=Polygon(), crs=UTM)

    def test_from_layer_dissolves_polygons(self):
        layer = VectorLayer(name="area", geometries=[box(0, 0, 2, 2), box(1, 0, 3, 2)], crs=UTM)

        boundary = BoundaryMask.from_layer(layer)

        assert boundary.geometry.geom_type == "Polygon"
        assert boundary.geometry.area == pytest.approx(6.0)
        assert boundary.bounds == (0.0, 0.0, 3.0, 2.0)
        assert boundary.name == "area"

    def test_from_layer_repairs_bowtie(self):
        bowtie = Polygon([(0, 0), (2, 2), (2, 0), (0, 2)])
        layer = VectorLayer(name="area", geometries=[bowtie], crs=UTM)

        boundary = BoundaryMask.from_layer(layer)

        assert boundary.geometry.is_valid
        assert boundary.geometry.area == pytest.approx(2.0)

    def test_from_layer_ignores_lines(self):
        layer = VectorLayer(
            name="area", geometries=[box(0, 0, 1, 1), LineString([(5, 5), (6, 6)])], crs=UTM
        )

        boundary = BoundaryMask.from_layer(layer)

        assert boundary.bounds == (0.0, 0.0, 1.0, 1.0)

    def test_from_layer_without_polygons(self):
        layer = VectorLayer(name="area", geometries=[Point(0, 0)], crs=UTM)

        with pytest.raises(EmptyGeometryResult):
            BoundaryMask.from_layer(layer)


class TestRequireCrs:
    def test_equivalent_spellings_pass(self):
        require_crs("EPSG:32633", "epsg:32633", stage="mask")

    def test_mismatch_raises_with_context(self):
        with pytest.raises(CRSMismatch) as excinfo:
            require_crs(UTM, "EPSG:4326", stage="mask", layer="boundary")

        assert excinfo.value.expected == UTM
        assert excinfo.value.actual == "EPSG:4326"
        assert "stage=mask" in str(excinfo.value)
