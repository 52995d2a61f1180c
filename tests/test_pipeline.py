"""
Test suite for the covariate pipeline.

Tests the CovariatePipeline class for execution planning, band tasks,
caching integration, and full runs on small synthetic inputs.
"""

import unittest
import tempfile
import shutil
from pathlib import Path
import numpy as np
import pandas as pd
from shapely.geometry import LineString, Point, box

from src.covariates.config import ExposureLayerConfig, GridConfig, PipelineConfig
from src.covariates.grid import Grid, Raster
from src.covariates.pipeline import CovariatePipeline, PipelineInputs
from src.covariates.vector import BoundaryMask, VectorLayer

UTM = "EPSG:32633"

LAYERS = [
    ExposureLayerConfig(name="tourism", column="TourismExposure", radius=3),
    ExposureLayerConfig(name="buildings", column="BuildingExposure", radius=2),
    ExposureLayerConfig(name="roads", column="RoadExposure", radius=2),
]


def make_config(**overrides):
    """20x20 grid of 100 m cells with three small exposure kernels."""
    params = dict(
        grid=GridConfig(crs=UTM, bounds=(0, 0, 2000, 2000), resolution=100),
        exposure_layers=[ExposureLayerConfig(**layer.to_dict()) for layer in LAYERS],
    )
    params.update(overrides)
    return PipelineConfig(**params)


def make_inputs(with_boundary=True):
    """Coastline along the northern row, DEM equal to easting."""
    dem_grid = Grid.from_bounds(UTM, (-500, -500, 2500, 2500), 100)
    xs, _ = dem_grid.cell_centers()

    return PipelineInputs(
        coastline=VectorLayer(name="coastline", geometries=[LineString([(0, 1950), (2000, 1950)])], crs=UTM),
        elevation=Raster(dem_grid, xs, name="dem"),
        exposure_layers={
            "tourism": VectorLayer(
                name="tourism", geometries=[Point(550, 550), Point(1450, 1250)], crs=UTM
            ),
            "buildings": VectorLayer(
                name="buildings", geometries=[box(800, 800, 1200, 1200)], crs=UTM
            ),
            "roads": VectorLayer(
                name="roads", geometries=[LineString([(1050, 0), (1050, 2000)])], crs=UTM
            ),
        },
        boundary=BoundaryMask(geometry=box(200, 200, 1800, 1800), crs=UTM) if with_boundary else None,
    )


class TestPipelinePlanning(unittest.TestCase):
    """Test task graph and execution planning."""

    def setUp(self):
        self.pipeline = CovariatePipeline(make_config(), verbose=False)

    def test_pipeline_has_task_graph(self):
        """Test that pipeline defines every band task."""
        tasks = ["coast_distance", "elevation", "mask", "stack"] + [f"exposure:{layer.name}" for layer in LAYERS]
        for task in tasks:
            self.assertIn(task, self.pipeline._task_graph)

    def test_plan_orders_dependencies_first(self):
        """Test that the stack plan runs bands, then mask, then stack."""
        plan = self.pipeline.plan("stack")

        self.assertEqual(
            plan,
            [
                "coast_distance",
                "exposure:tourism",
                "exposure:buildings",
                "exposure:roads",
                "elevation",
                "mask",
                "stack",
            ],
        )

    def test_one_exposure_node_per_layer(self):
        """Test that each configured layer gets its own exposure task."""
        self.assertEqual(self.pipeline.plan("exposure:buildings"), ["exposure:buildings"])
        self.assertNotIn("exposure", self.pipeline._task_graph)

        roads_only = make_config(exposure_layers=[ExposureLayerConfig(**LAYERS[2].to_dict())])
        pipeline = CovariatePipeline(roads_only, verbose=False)
        self.assertEqual(
            pipeline._task_graph["mask"]["depends_on"], ["coast_distance", "exposure:roads", "elevation"]
        )

    def test_plan_for_leaf_task(self):
        """Test that a task without dependencies plans alone."""
        self.assertEqual(self.pipeline.plan("elevation"), ["elevation"])

    def test_plan_unknown_task_raises(self):
        """Test that unknown tasks are rejected."""
        with self.assertRaises(ValueError):
            self.pipeline.plan("render")

    def test_explain_lists_layers_and_columns(self):
        """Test that explain describes the run without executing it."""
        lines = self.pipeline.explain("stack")

        text = "\n".join(lines)
        self.assertIn("tourism (R=3)", text)
        self.assertIn("X, Y, CoastDistance, TourismExposure, BuildingExposure, RoadExposure, Elevation", text)
        self.assertIn("20x20", text)

    def test_cache_disabled_without_cache_dir(self):
        """Test that no cache_dir means no caching."""
        self.assertFalse(self.pipeline.cache.enabled)


class TestPipelineTasks(unittest.TestCase):
    """Test individual band tasks."""

    def setUp(self):
        self.pipeline = CovariatePipeline(make_config(), verbose=False)
        self.inputs = make_inputs()

    def test_coast_distance_in_km(self):
        """Test that coast distance is named for the output column and in km."""
        band = self.pipeline.coast_distance(self.inputs.coastline)

        self.assertEqual(band.name, "CoastDistance")
        np.testing.assert_allclose(band.values[:, 0], 0.1 * np.arange(20))

    def test_exposures_in_config_order(self):
        """Test that exposures come back keyed by column in config order."""
        bands = self.pipeline.exposures(self.inputs.exposure_layers)

        self.assertEqual(list(bands), ["TourismExposure", "BuildingExposure", "RoadExposure"])
        for name, band in bands.items():
            self.assertEqual(band.name, name)
            self.assertEqual(band.valid_count(), 400)
            self.assertAlmostEqual(float(band.values.mean()), 0.0, places=9)

    def test_exposures_missing_layer_raises(self):
        """Test that a configured layer without input is an error."""
        layers = dict(self.inputs.exposure_layers)
        del layers["roads"]

        with self.assertRaises(ValueError):
            self.pipeline.exposures(layers)

    def test_elevation_aligned_to_grid(self):
        """Test that the DEM is resampled onto the working grid."""
        band = self.pipeline.elevation(self.inputs.elevation)

        self.assertTrue(band.grid.aligned_with(self.pipeline.grid))
        xs, _ = self.pipeline.grid.cell_centers()
        np.testing.assert_allclose(band.values, xs)

    def test_mask_without_boundary_is_noop(self):
        """Test that no boundary leaves bands untouched."""
        band = self.pipeline.elevation(self.inputs.elevation)

        masked = self.pipeline.mask({"Elevation": band}, None)

        self.assertIs(masked["Elevation"], band)

    def test_mask_crops_to_boundary(self):
        """Test that masking crops to the boundary bounds by default."""
        band = self.pipeline.elevation(self.inputs.elevation)

        masked = self.pipeline.mask({"Elevation": band}, self.inputs.boundary)

        self.assertEqual(masked["Elevation"].shape, (16, 16))
        self.assertEqual(masked["Elevation"].grid.bounds, (200.0, 200.0, 1800.0, 1800.0))

    def test_mask_without_crop(self):
        """Test that crop_to_boundary=False keeps the full grid."""
        pipeline = CovariatePipeline(make_config(crop_to_boundary=False), verbose=False)
        band = pipeline.elevation(self.inputs.elevation)

        masked = pipeline.mask({"Elevation": band}, self.inputs.boundary)

        self.assertEqual(masked["Elevation"].shape, (20, 20))
        self.assertEqual(masked["Elevation"].valid_count(), 256)


class TestPipelineRun(unittest.TestCase):
    """Test full runs."""

    def setUp(self):
        self.output_dir = tempfile.mkdtemp()
        self.inputs = make_inputs()

    def tearDown(self):
        shutil.rmtree(self.output_dir)

    def test_run_produces_feature_table(self):
        """Test column order, row count and band values of a full run."""
        pipeline = CovariatePipeline(make_config(), verbose=False)

        table = pipeline.run(self.inputs)

        self.assertEqual(
            list(table.columns),
            ["X", "Y", "CoastDistance", "TourismExposure", "BuildingExposure", "RoadExposure", "Elevation"],
        )
        self.assertEqual(len(table), 256)
        self.assertFalse(table.isna().any().any())
        np.testing.assert_allclose(table["Elevation"], table["X"])
        np.testing.assert_allclose(table["CoastDistance"], (1950 - table["Y"]) / 1000)

    def test_run_without_boundary_keeps_every_cell(self):
        """Test that a run without boundary exports the whole grid."""
        pipeline = CovariatePipeline(make_config(), verbose=False)

        table = pipeline.run(make_inputs(with_boundary=False))

        self.assertEqual(len(table), 400)

    def test_run_writes_csv(self):
        """Test that config.output receives the table."""
        output = Path(self.output_dir) / "out" / "covariates.csv"
        pipeline = CovariatePipeline(make_config(output=str(output)), verbose=False)

        table = pipeline.run(self.inputs)

        self.assertTrue(output.exists())
        loaded = pd.read_csv(output)
        self.assertEqual(list(loaded.columns), list(table.columns))
        self.assertEqual(len(loaded), len(table))

    def test_parallel_matches_sequential(self):
        """Test that exposure bands built in worker processes match sequential ones."""
        sequential = CovariatePipeline(make_config(), verbose=False).run(self.inputs)
        parallel = CovariatePipeline(make_config(max_workers=2), verbose=False).run(self.inputs)

        pd.testing.assert_frame_equal(sequential, parallel)

    def test_load_inputs_requires_sources(self):
        """Test that reading from config fails clearly when sources are missing."""
        pipeline = CovariatePipeline(make_config(), verbose=False)

        with self.assertRaises(ValueError) as ctx:
            pipeline.run()

        self.assertIn("coastline", str(ctx.exception))


class TestPipelineCaching(unittest.TestCase):
    """Test band caching across runs."""

    def setUp(self):
        self.cache_dir = tempfile.mkdtemp()
        self.inputs = make_inputs()

    def tearDown(self):
        shutil.rmtree(self.cache_dir)

    def test_bands_are_cached(self):
        """Test that a run writes one cache entry per band."""
        pipeline = CovariatePipeline(make_config(cache_dir=self.cache_dir), verbose=False)

        pipeline.run(self.inputs)

        # 5 bands x (npz + metadata)
        self.assertEqual(pipeline.cache_stats()["cache_files"], 10)

    def test_second_run_uses_cache(self):
        """Test that cached bands are loaded instead of recomputed."""
        first = CovariatePipeline(make_config(cache_dir=self.cache_dir), verbose=False)
        expected = first.run(self.inputs)

        second = CovariatePipeline(make_config(cache_dir=self.cache_dir), verbose=False)
        cached_band = second.cache.load
        hits = []

        def counting_load(key, band_name):
            result = cached_band(key, band_name)
            if result is not None:
                hits.append(band_name)
            return result

        second.cache.load = counting_load
        table = second.run(self.inputs)

        self.assertEqual(len(hits), 5)
        pd.testing.assert_frame_equal(table, expected)

    def test_changed_radius_misses_cache(self):
        """Test that a new kernel radius recomputes only that band."""
        CovariatePipeline(make_config(cache_dir=self.cache_dir), verbose=False).run(self.inputs)

        layers = [ExposureLayerConfig(**layer.to_dict()) for layer in LAYERS]
        layers[2].radius = 3
        pipeline = CovariatePipeline(
            make_config(cache_dir=self.cache_dir, exposure_layers=layers), verbose=False
        )
        pipeline.run(self.inputs)

        self.assertEqual(pipeline.cache_stats()["cache_files"], 12)

    def test_force_rebuild_ignores_cache(self):
        """Test that force_rebuild never reads cached bands."""
        CovariatePipeline(make_config(cache_dir=self.cache_dir), verbose=False).run(self.inputs)

        pipeline = CovariatePipeline(
            make_config(cache_dir=self.cache_dir), force_rebuild=True, verbose=False
        )
        hits = []
        original = pipeline.cache.load
        pipeline.cache.load = lambda key, band: hits.append(band) or original(key, band)
        pipeline.run(self.inputs)

        self.assertEqual(hits, [])

    def test_clear_cache(self):
        """Test that clear_cache empties the cache directory."""
        pipeline = CovariatePipeline(make_config(cache_dir=self.cache_dir), verbose=False)
        pipeline.run(self.inputs)

        self.assertEqual(pipeline.clear_cache(), 10)
        self.assertEqual(pipeline.cache_stats()["cache_files"], 0)

    def test_cache_disabled_flag(self):
        """Test that cache_enabled=False overrides a configured cache_dir."""
        pipeline = CovariatePipeline(
            make_config(cache_dir=self.cache_dir), cache_enabled=False, verbose=False
        )
        pipeline.run(self.inputs)

        self.assertEqual(pipeline.cache_stats()["cache_files"], 0)


if __name__ == "__main__":
    unittest.main()
