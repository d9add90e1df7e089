import json

import pytest
import numpy as np

from specdecomp.core.errors import ConfigurationError
from specdecomp.io.artifacts import (
    CALIBRATION_SCHEMA,
    RESULT_SCHEMA,
    calibration_from_dict,
    load_array,
    make_calibration_file,
    make_result_summary,
    read_artifact,
    read_calibration,
    read_config,
    read_decomposition_result,
    write_artifact,
    write_calibration,
    write_decomposition_result,
)
from specdecomp.physics.forward_model import forward_model
from specdecomp.physics.simulation import synthetic_calibration
from specdecomp.workflows.decomposition import DecompositionConfig, decompose_projections


def _calibration():
    return synthetic_calibration(n_bins=3, n_energies=12, fwhm_bins=2.0, material_names=["iodine", "water"])


def _assert_same_calibration(loaded, expected):
    np.testing.assert_allclose(loaded.detector_response, expected.detector_response)
    np.testing.assert_allclose(loaded.material_attenuations, expected.material_attenuations)
    np.testing.assert_array_equal(loaded.thresholds, expected.thresholds)
    np.testing.assert_allclose(loaded.incident_spectrum, expected.incident_spectrum)
    assert loaded.material_names == expected.material_names


def test_calibration_json_roundtrip(tmp_path):
    calibration = _calibration()
    output = tmp_path / "calibration.json"
    write_calibration(output, calibration)

    payload = read_artifact(output)
    assert payload["schema"] == CALIBRATION_SCHEMA
    assert payload["provenance"]["units"]["thresholds"] == "energy-grid index"
    assert "sha256" in payload["provenance"]["hashes"]["detector_response"]
    assert payload["provenance"]["versions"]["numpy"] == np.__version__

    _assert_same_calibration(read_calibration(output), calibration)


def test_calibration_npz_roundtrip(tmp_path):
    calibration = _calibration()
    output = tmp_path / "calibration.npz"
    write_calibration(output, calibration)
    _assert_same_calibration(read_calibration(output), calibration)


def test_calibration_yaml_roundtrip(tmp_path):
    pytest.importorskip("yaml")
    calibration = _calibration()
    output = tmp_path / "calibration.yaml"
    write_calibration(output, calibration)
    _assert_same_calibration(read_calibration(output), calibration)


def test_calibration_from_fine_response():
    data = {
        "fine_detector_response": np.eye(6).tolist(),
        "thresholds": [0, 2, 6],
        "material_attenuations": [[1.0] * 6, [0.5] * 6],
        "incident_spectrum": [10.0] * 6,
    }
    calibration = calibration_from_dict(data)
    assert calibration.n_bins == 2
    np.testing.assert_array_equal(calibration.detector_response[1], [0, 0, 1, 1, 1, 1])


def test_calibration_missing_keys():
    with pytest.raises(ConfigurationError, match="material_attenuations"):
        calibration_from_dict({"detector_response": [[1.0]]})
    with pytest.raises(ConfigurationError, match="thresholds"):
        calibration_from_dict({"fine_detector_response": [[1.0]], "material_attenuations": [[1.0]]})


def test_calibration_invalid_thresholds(tmp_path):
    payload = make_calibration_file(_calibration())
    payload["calibration"]["thresholds"] = [0, 8, 4, 12]
    output = tmp_path / "calibration.json"
    write_artifact(output, payload)
    with pytest.raises(ConfigurationError):
        read_calibration(output)


def test_calibration_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        read_calibration(tmp_path / "absent.json")


def test_read_config(tmp_path):
    output = tmp_path / "config.json"
    output.write_text(json.dumps({"config": {"number_of_iterations": 120, "max_workers": 2}}))
    config = read_config(output)
    assert config.number_of_iterations == 120
    assert config.max_workers == 2

    output.write_text(json.dumps({"iterations": 120}))
    with pytest.raises(ConfigurationError):
        read_config(output)


def test_load_array(tmp_path):
    np.save(tmp_path / "single.npy", np.arange(4.0))
    np.testing.assert_array_equal(load_array(tmp_path / "single.npy"), np.arange(4.0))

    np.savez(tmp_path / "one.npz", counts=np.ones(3))
    np.testing.assert_array_equal(load_array(tmp_path / "one.npz"), np.ones(3))

    np.savez(tmp_path / "two.npz", counts=np.ones(3), initial=np.zeros(2))
    np.testing.assert_array_equal(load_array(tmp_path / "two.npz", key="initial"), np.zeros(2))
    with pytest.raises(ConfigurationError):
        load_array(tmp_path / "two.npz")


def test_decomposition_result_roundtrip(tmp_path):
    calibration = _calibration()
    truth = np.array([[1.0, 0.5], [0.8, 0.7], [1.2, 0.3]])
    counts = forward_model(truth, calibration)
    counts[2, 0] = -1.0
    result = decompose_projections(counts, calibration)

    output = tmp_path / "result.npz"
    write_decomposition_result(output, result)
    loaded = read_decomposition_result(output)

    np.testing.assert_array_equal(loaded.line_integrals, result.line_integrals)
    np.testing.assert_array_equal(loaded.inverse_variances, result.inverse_variances)
    np.testing.assert_array_equal(loaded.status, result.status)
    assert loaded.material_names == ["iodine", "water"]
    assert loaded.failure_counts == {"INVALID_INPUT": 1}


def test_result_summary(tmp_path):
    calibration = _calibration()
    counts = forward_model(np.array([[1.0, 0.5], [0.8, 0.7]]), calibration)
    config = DecompositionConfig()
    result = decompose_projections(counts, calibration, config=config)

    summary = make_result_summary(result, config, calibration)

    assert summary["schema"] == RESULT_SCHEMA
    assert summary["n_pixels"] == 2
    assert summary["n_failed"] == 0
    assert summary["status_codes"]["DEGENERATE_FISHER"] == 2
    assert summary["materials"]["iodine"]["min"] == pytest.approx(0.8, abs=1e-3)
    assert summary["config"]["number_of_iterations"] == 300

    output = tmp_path / "summary.json"
    write_artifact(output, summary)
    assert read_artifact(output)["n_pixels"] == 2
