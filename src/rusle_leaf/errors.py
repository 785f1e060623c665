"""Error kinds raised by the RUSLE pipeline.

Pixel-level problems never raise: no-data propagates as ``NaN``.  The
exceptions below cover the run-level failures that make a map or a summary
meaningless, and carry enough context (grid, factor, statistic) to trace
them back to a stage.
"""

from __future__ import annotations

from typing import Optional


class RusleError(Exception):
    """Base class for run-level RUSLE failures.

    ``stage`` is set by the pipeline to the stage that raised, and prefixes
    the message as ``[stage:<name>]``.
    """

    stage: Optional[str] = None

    def __str__(self) -> str:
        message = super().__str__()
        return f"[stage:{self.stage}] {message}" if self.stage else message


class InputAlignmentError(RusleError, ValueError):
    """Input grids do not share shape, CRS, resolution or origin."""

    def __init__(self, grid: str, reference: str, reason: str):
        self.grid = grid
        self.reference = reference
        self.reason = reason
        super().__init__(f"Grid '{grid}' is not aligned with '{reference}': {reason}")


class DegenerateNormalizationError(RusleError, ArithmeticError):
    """Min-max rescaling bounds are equal, so the rescaled value is undefined."""

    def __init__(self, factor: str, value: float):
        self.factor = factor
        self.value = value
        super().__init__(
            f"{factor} normalization is degenerate: minimum and maximum are both {value!r}"
        )


class EmptyRegionError(RusleError, ValueError):
    """A region-wide reduction found no valid pixel."""

    def __init__(self, grid: Optional[str], statistic: str):
        self.grid = grid
        self.statistic = statistic
        label = grid or "unnamed grid"
        super().__init__(f"No valid pixels in '{label}' for region-wide {statistic}")


class UnmappedCategoryWarning(UserWarning):
    """A categorical grid holds codes outside its lookup table domain."""
