"""Artifact read/write helpers for calibration tables and decomposition results."""

from __future__ import annotations

import importlib.util
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np

from specdecomp.core.calibration import DecompositionCalibration
from specdecomp.core.errors import ConfigurationError
from specdecomp.core.provenance import build_provenance, hash_array
from specdecomp.workflows.decomposition import DecompositionConfig, DecompositionResult, PixelStatus

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

CALIBRATION_SCHEMA = "specdecomp.calibration.v1"
RESULT_SCHEMA = "specdecomp.decomposition_result.v1"

CALIBRATION_UNITS = {
    "detector_response": "counts per incident photon",
    "material_attenuations": "1 / line-integral unit",
    "incident_spectrum": "photons per pixel per energy",
    "thresholds": "energy-grid index",
}


def _load_yaml_module():
    if importlib.util.find_spec("yaml") is None:
        return None
    import yaml

    return yaml


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _write_text(path: Path, payload: str) -> None:
    path.write_text(payload, encoding="utf-8")


def write_artifact(path: PathLike, payload: Dict[str, Any]) -> None:
    """Write artifact data as JSON or YAML depending on extension."""
    path = Path(path)
    if path.suffix.lower() in {".yml", ".yaml"}:
        yaml = _load_yaml_module()
        if yaml is None:
            raise ImportError("PyYAML is required to write YAML artifacts.")
        _write_text(path, yaml.safe_dump(payload, sort_keys=False))
    else:
        _write_text(path, json.dumps(payload, indent=2))


def read_artifact(path: PathLike) -> Dict[str, Any]:
    """Read artifact data from JSON or YAML."""
    path = Path(path)
    if path.suffix.lower() in {".yml", ".yaml"}:
        yaml = _load_yaml_module()
        if yaml is None:
            raise ImportError("PyYAML is required to read YAML artifacts.")
        return yaml.safe_load(_read_text(path))
    return json.loads(_read_text(path))


def load_array(path: PathLike, key: Optional[str] = None) -> np.ndarray:
    """Load an array from ``.npy`` or one entry of an ``.npz`` archive."""
    path = Path(path)
    if path.suffix.lower() == ".npz":
        with np.load(path) as archive:
            if key is None:
                if len(archive.files) != 1:
                    raise ConfigurationError(f"{path} holds {archive.files}; name the array to load")
                key = archive.files[0]
            return np.array(archive[key])
    return np.load(path)


# =============================================================================
# Calibration
# =============================================================================

def calibration_to_dict(calibration: DecompositionCalibration) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "detector_response": calibration.detector_response.tolist(),
        "material_attenuations": calibration.material_attenuations.tolist(),
        "material_names": list(calibration.material_names),
    }
    if calibration.thresholds is not None:
        data["thresholds"] = calibration.thresholds.tolist()
    if calibration.incident_spectrum is not None:
        data["incident_spectrum"] = calibration.incident_spectrum.tolist()
    return data


def calibration_from_dict(data: Dict[str, Any]) -> DecompositionCalibration:
    """Build a calibration from a mapping, validating every table.

    A ``fine_detector_response`` entry (deposited x incident energy) is
    binned with ``thresholds`` when no ``detector_response`` is given.
    """
    missing = [key for key in ("material_attenuations",) if key not in data]
    if "detector_response" not in data and "fine_detector_response" not in data:
        missing.append("detector_response")
    if missing:
        raise ConfigurationError(f"Missing required calibration keys: {', '.join(missing)}")

    if "detector_response" not in data:
        if "thresholds" not in data:
            raise ConfigurationError("fine_detector_response requires thresholds")
        return DecompositionCalibration.from_fine_response(
            np.asarray(data["fine_detector_response"], dtype=float),
            data["thresholds"],
            np.asarray(data["material_attenuations"], dtype=float),
            incident_spectrum=data.get("incident_spectrum"),
            material_names=list(data.get("material_names") or []),
        )
    return DecompositionCalibration(
        detector_response=data["detector_response"],
        material_attenuations=data["material_attenuations"],
        thresholds=data.get("thresholds"),
        incident_spectrum=data.get("incident_spectrum"),
        material_names=list(data.get("material_names") or []),
    )


def make_calibration_file(calibration: DecompositionCalibration) -> Dict[str, Any]:
    hashes = {
        "detector_response": hash_array(calibration.detector_response),
        "material_attenuations": hash_array(calibration.material_attenuations),
    }
    provenance = build_provenance(
        units=CALIBRATION_UNITS,
        definitions={
            "detector_response": "expected bin counts per incident photon, rows = spectral bins",
            "material_attenuations": "attenuation per unit line integral, rows = materials",
        },
        source_hashes=hashes,
    )
    return {
        "schema": CALIBRATION_SCHEMA,
        "calibration": calibration_to_dict(calibration),
        "provenance": provenance,
    }


def write_calibration(path: PathLike, calibration: DecompositionCalibration) -> None:
    """Write a calibration as JSON/YAML (with provenance) or ``.npz``."""
    path = Path(path)
    if path.suffix.lower() == ".npz":
        arrays: Dict[str, np.ndarray] = {
            "detector_response": calibration.detector_response,
            "material_attenuations": calibration.material_attenuations,
            "material_names": np.array(calibration.material_names),
        }
        if calibration.thresholds is not None:
            arrays["thresholds"] = calibration.thresholds
        if calibration.incident_spectrum is not None:
            arrays["incident_spectrum"] = calibration.incident_spectrum
        np.savez(path, **arrays)
    else:
        write_artifact(path, make_calibration_file(calibration))
    logger.info(f"Wrote calibration to {path}")


def read_calibration(path: PathLike) -> DecompositionCalibration:
    """Read and validate a calibration file (JSON, YAML or ``.npz``)."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Calibration file not found: {path}")
    if path.suffix.lower() == ".npz":
        with np.load(path) as archive:
            data: Dict[str, Any] = {key: np.array(archive[key]) for key in archive.files}
        if "material_names" in data:
            data["material_names"] = [str(name) for name in data["material_names"].tolist()]
        return calibration_from_dict(data)

    payload = read_artifact(path)
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Calibration file {path} does not hold a mapping")
    return calibration_from_dict(payload.get("calibration", payload))


def read_config(path: PathLike) -> DecompositionConfig:
    """Read a :class:`DecompositionConfig` from JSON or YAML."""
    payload = read_artifact(path)
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Configuration file {path} does not hold a mapping")
    return DecompositionConfig.from_dict(payload.get("config", payload))


# =============================================================================
# Decomposition results
# =============================================================================

def write_decomposition_result(path: PathLike, result: DecompositionResult) -> None:
    """Write per-pixel result arrays to an ``.npz`` archive."""
    arrays = {
        "line_integrals": result.line_integrals,
        "status": result.status,
        "converged": result.converged,
        "iterations": result.iterations,
        "cost": result.cost,
        "material_names": np.array(result.material_names),
    }
    if result.inverse_variances is not None:
        arrays["inverse_variances"] = result.inverse_variances
    np.savez(Path(path), **arrays)
    logger.info(f"Wrote decomposition of {result.n_pixels} pixels to {path}")


def read_decomposition_result(path: PathLike) -> DecompositionResult:
    with np.load(Path(path)) as archive:
        arrays = {key: np.array(archive[key]) for key in archive.files}
    return DecompositionResult(
        line_integrals=arrays["line_integrals"],
        inverse_variances=arrays.get("inverse_variances"),
        status=arrays["status"],
        converged=arrays["converged"],
        iterations=arrays["iterations"],
        cost=arrays["cost"],
        material_names=[str(name) for name in arrays.get("material_names", np.array([])).tolist()],
    )


def make_result_summary(
    result: DecompositionResult,
    config: Optional[DecompositionConfig] = None,
    calibration: Optional[DecompositionCalibration] = None,
) -> Dict[str, Any]:
    """JSON-serializable summary of a decomposition run."""
    valid = result.valid_mask
    per_material: Dict[str, Dict[str, float]] = {}
    for m, name in enumerate(result.material_names or range(result.line_integrals.shape[-1])):
        values = result.line_integrals[..., m][valid]
        per_material[str(name)] = {
            "mean": float(np.mean(values)) if values.size else float("nan"),
            "min": float(np.min(values)) if values.size else float("nan"),
            "max": float(np.max(values)) if values.size else float("nan"),
        }

    hashes = {"line_integrals": hash_array(result.line_integrals)}
    if calibration is not None:
        hashes["detector_response"] = hash_array(calibration.detector_response)
        hashes["material_attenuations"] = hash_array(calibration.material_attenuations)

    return {
        "schema": RESULT_SCHEMA,
        "pixel_shape": list(result.pixel_shape),
        "n_pixels": result.n_pixels,
        "n_failed": result.n_failed,
        "failure_counts": result.failure_counts,
        "status_codes": {status.name: int(status) for status in PixelStatus},
        "n_not_converged": int(np.count_nonzero(~result.converged & valid)),
        "mean_iterations": float(np.mean(result.iterations)) if result.n_pixels else 0.0,
        "materials": per_material,
        "config": config.to_dict() if config is not None else None,
        "provenance": build_provenance(
            units={"line_integrals": "line-integral unit", "inverse_variances": "1 / line-integral unit^2"},
            source_hashes=hashes,
        ),
    }
