"""
Error types raised by the covariate pipeline.

Every stage either returns a complete Raster or raises one of these. Each
error carries the stage and layer it came from, plus the offending values,
so a failure can be diagnosed from the message alone.
"""

from typing import Any, Optional


class CovariateError(Exception):
    """Base class for pipeline stage failures."""

    def __init__(self, message: str, stage: Optional[str] = None, layer: Optional[str] = None):
        self.stage = stage
        self.layer = layer
        self.detail = message

        context = []
        if stage:
            context.append(f"stage={stage}")
        if layer:
            context.append(f"layer={layer}")
        prefix = f"[{', '.join(context)}] " if context else ""
        super().__init__(f"{prefix}{message}")


class ShapeMismatch(CovariateError):
    """Array dimensions disagree with the Grid's (rows, cols)."""

    def __init__(self, expected: Any, actual: Any, stage: Optional[str] = None, layer: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        super().__init__(f"expected shape {expected}, got {actual}", stage=stage, layer=layer)


class CRSMismatch(CovariateError):
    """Two inputs that must share a coordinate reference system do not."""

    def __init__(self, expected: Any, actual: Any, stage: Optional[str] = None, layer: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"expected CRS {expected}, got {actual}; reproject before this stage",
            stage=stage,
            layer=layer,
        )


class GridMismatch(CovariateError):
    """Rasters that must be aligned live on different grids."""

    def __init__(self, expected: Any, actual: Any, stage: Optional[str] = None, layer: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        super().__init__(f"grid {actual} does not match {expected}", stage=stage, layer=layer)


class DegenerateInput(CovariateError):
    """Input cannot be processed, e.g. zero-variance normalization target."""


class EmptyGeometryResult(CovariateError):
    """A vector source produced no features."""
