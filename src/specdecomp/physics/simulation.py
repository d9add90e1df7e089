"""
Synthetic calibration tables and spectral counts.

Used to build test setups and to simulate measurements from known line
integrals. The attenuation basis follows the Alvarez-Macovski
photoelectric/Compton decomposition:

    mu(E) = c_pe * (E_ref / E)**3 + c_kn * f_KN(E)

Reference:
- R. E. Alvarez and A. Macovski, "Energy-selective reconstructions in
  x-ray computerised tomography", Phys. Med. Biol. 21 (1976) 733.
"""

from __future__ import annotations

from typing import Optional, Sequence, Union

import numpy as np

from specdecomp.core.calibration import DecompositionCalibration
from specdecomp.core.errors import ConfigurationError
from specdecomp.physics.forward_model import forward_model

ELECTRON_REST_ENERGY_KEV = 510.975


def klein_nishina(energies_keV: np.ndarray) -> np.ndarray:
    """Klein-Nishina energy dependence of the Compton cross section."""
    alpha = np.asarray(energies_keV, dtype=float) / ELECTRON_REST_ENERGY_KEV
    two_alpha = 1.0 + 2.0 * alpha
    log_term = np.log(two_alpha)
    return (
        (1.0 + alpha) / alpha**2 * (2.0 * (1.0 + alpha) / two_alpha - log_term / alpha)
        + log_term / (2.0 * alpha)
        - (1.0 + 3.0 * alpha) / two_alpha**2
    )


def photoelectric(energies_keV: np.ndarray, reference_keV: float = 30.0) -> np.ndarray:
    """Photoelectric energy dependence, normalized to 1 at ``reference_keV``."""
    return (reference_keV / np.asarray(energies_keV, dtype=float)) ** 3


def basis_attenuations(
    energies_keV: np.ndarray,
    photoelectric_coeffs: Sequence[float],
    compton_coeffs: Sequence[float],
    reference_keV: float = 30.0,
) -> np.ndarray:
    """Attenuation table, shape (N_materials, N_energies), from basis weights."""
    pe = np.asarray(photoelectric_coeffs, dtype=float)
    kn = np.asarray(compton_coeffs, dtype=float)
    if pe.shape != kn.shape or pe.ndim != 1:
        raise ConfigurationError("photoelectric and compton coefficients must be 1-D and the same length")
    kn_curve = klein_nishina(energies_keV)
    kn_curve = kn_curve / klein_nishina(np.array([reference_keV]))[0]
    return pe[:, None] * photoelectric(energies_keV, reference_keV)[None, :] + kn[:, None] * kn_curve[None, :]


def gaussian_fine_response(
    n_energies: int,
    fwhm_bins: float = 2.0,
    efficiency: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Fine-grid detector response with Gaussian energy resolution.

    Column ``e`` is a Gaussian centred on deposited-energy index ``e``,
    normalized to sum to the detection efficiency at that energy.

    Args:
        n_energies: Size of the energy grid
        fwhm_bins: Resolution FWHM in energy-grid bins (0 = perfect detector)
        efficiency: Optional detection efficiency per incident energy

    Returns:
        Response matrix, shape (n_energies, n_energies)
    """
    if fwhm_bins <= 0:
        matrix = np.eye(n_energies)
    else:
        sigma = max(fwhm_bins / 2.355, 0.5)
        deposited = np.arange(n_energies)[:, None]
        incident = np.arange(n_energies)[None, :]
        matrix = np.exp(-0.5 * ((deposited - incident) / sigma) ** 2)
        matrix /= matrix.sum(axis=0, keepdims=True)
    if efficiency is not None:
        matrix = matrix * np.asarray(efficiency, dtype=float)[None, :]
    return matrix


def synthetic_calibration(
    n_bins: int = 2,
    n_energies: int = 10,
    energy_range_keV: tuple = (20.0, 110.0),
    photoelectric_coeffs: Sequence[float] = (1.2, 0.05),
    compton_coeffs: Sequence[float] = (0.15, 0.25),
    fluence_per_energy: float = 1.0e5,
    fwhm_bins: float = 0.0,
    material_names: Optional[Sequence[str]] = None,
) -> DecompositionCalibration:
    """Calibration with evenly spaced thresholds and a flat incident spectrum.

    The defaults give two materials with clearly different spectral
    signatures (a high-Z-like and a water-like attenuation curve).
    """
    if n_bins < 1 or n_energies < n_bins:
        raise ConfigurationError("Need at least one bin and no more bins than energies")
    energies = np.linspace(energy_range_keV[0], energy_range_keV[1], n_energies)
    thresholds = np.round(np.linspace(0, n_energies, n_bins + 1)).astype(int)
    attenuations = basis_attenuations(energies, photoelectric_coeffs, compton_coeffs)
    return DecompositionCalibration.from_fine_response(
        gaussian_fine_response(n_energies, fwhm_bins),
        thresholds,
        attenuations,
        incident_spectrum=np.full(n_energies, float(fluence_per_energy)),
        material_names=list(material_names) if material_names else None,
    )


def synthesize_counts(
    line_integrals: np.ndarray,
    calibration: DecompositionCalibration,
    incident: Optional[np.ndarray] = None,
    noise: str = "none",
    rng: Union[int, np.random.Generator, None] = None,
) -> np.ndarray:
    """
    Simulate spectral counts for one pixel or a stack of pixels.

    Parameters
    ----------
    line_integrals : np.ndarray
        True line integrals, shape (..., N_materials).
    calibration : DecompositionCalibration
        Calibration tables.
    incident : np.ndarray, optional
        Incident spectrum; defaults to the calibration's global spectrum.
    noise : {'none', 'poisson'}
        Noise model applied to the expected counts.
    rng : int or np.random.Generator, optional
        Seed or generator for Poisson sampling.

    Returns
    -------
    np.ndarray
        Counts, shape (..., N_bins).
    """
    values = np.asarray(line_integrals, dtype=float)
    if values.shape[-1] != calibration.n_materials:
        raise ConfigurationError(
            f"line_integrals has {values.shape[-1]} materials, calibration has {calibration.n_materials}"
        )
    expected = forward_model(values, calibration, incident)
    noise = noise.lower()
    if noise == "none":
        return expected
    if noise == "poisson":
        generator = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)
        return generator.poisson(expected).astype(float)
    raise ValueError(f"Unknown noise model: {noise}")
