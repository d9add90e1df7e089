"""specdecomp I/O module for calibration tables and decomposition results."""

from specdecomp.io.artifacts import (
    load_array,
    read_artifact,
    read_calibration,
    read_config,
    read_decomposition_result,
    write_artifact,
    write_calibration,
    write_decomposition_result,
)

__all__ = [
    "load_array",
    "read_artifact",
    "read_calibration",
    "read_config",
    "read_decomposition_result",
    "write_artifact",
    "write_calibration",
    "write_decomposition_result",
]
