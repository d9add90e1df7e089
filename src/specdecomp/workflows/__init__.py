"""End-to-end decomposition workflows."""

from specdecomp.workflows.decomposition import (
    DecompositionConfig,
    DecompositionResult,
    PixelResult,
    PixelStatus,
    decompose_pixel,
    decompose_projections,
)

__all__ = [
    "DecompositionConfig",
    "DecompositionResult",
    "PixelResult",
    "PixelStatus",
    "decompose_pixel",
    "decompose_projections",
]
