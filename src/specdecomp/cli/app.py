"""Command-line interface for specdecomp using argparse."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

import numpy as np

from specdecomp.core.errors import ConfigurationError
from specdecomp.io.artifacts import (
    load_array,
    make_result_summary,
    read_calibration,
    read_config,
    write_artifact,
    write_decomposition_result,
)
from specdecomp.physics.simulation import synthesize_counts
from specdecomp.workflows.decomposition import DecompositionConfig, decompose_projections


def cmd_validate_calibration(args: argparse.Namespace) -> None:
    calibration = read_calibration(args.calibration)
    print(
        f"Calibration OK: {calibration.n_materials} materials "
        f"({', '.join(calibration.material_names)}), "
        f"{calibration.n_bins} spectral bins, {calibration.n_energies} energies"
    )
    if calibration.thresholds is not None:
        print(f"Thresholds: {calibration.thresholds.tolist()}")
    print(f"Global incident spectrum: {'yes' if calibration.incident_spectrum is not None else 'no'}")


def cmd_simulate(args: argparse.Namespace) -> None:
    calibration = read_calibration(args.calibration)
    line_integrals = load_array(args.line_integrals)
    incident = load_array(args.incident) if args.incident else None
    counts = synthesize_counts(
        line_integrals,
        calibration,
        incident=incident,
        noise="poisson" if args.poisson else "none",
        rng=args.seed,
    )
    np.save(args.output, counts)
    print(f"Wrote simulated counts {counts.shape} to {args.output}")


def cmd_decompose(args: argparse.Namespace) -> None:
    calibration = read_calibration(args.calibration)
    config = read_config(args.config) if args.config else DecompositionConfig()
    overrides = {}
    if args.iterations is not None:
        overrides["number_of_iterations"] = args.iterations
    if args.workers is not None:
        overrides["max_workers"] = args.workers
    if args.no_variances:
        overrides["compute_variances"] = False
    if args.nonnegative:
        overrides["nonnegative"] = True
    if overrides:
        config = DecompositionConfig.from_dict({**config.to_dict(), **overrides})

    counts = load_array(args.counts)
    initial = load_array(args.initial) if args.initial else None
    incident = load_array(args.incident) if args.incident else None

    result = decompose_projections(counts, calibration, initial, incident, config)
    write_decomposition_result(args.output, result)
    print(f"Wrote decomposition of {result.n_pixels} pixels to {args.output}")
    if result.n_failed:
        print(f"Flagged pixels: {result.failure_counts}")

    if args.summary:
        write_artifact(args.summary, make_result_summary(result, config, calibration))
        print(f"Wrote summary to {args.summary}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Material decomposition of spectral photon-counting projections"
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate-calibration", help="Load and check a calibration file")
    validate.add_argument("--calibration", type=Path, required=True)
    validate.set_defaults(func=cmd_validate_calibration)

    simulate = subparsers.add_parser("simulate", help="Synthesize counts from known line integrals")
    simulate.add_argument("--calibration", type=Path, required=True)
    simulate.add_argument("--line-integrals", type=Path, required=True)
    simulate.add_argument("--incident", type=Path)
    simulate.add_argument("--poisson", action="store_true", help="Add Poisson noise")
    simulate.add_argument("--seed", type=int)
    simulate.add_argument("--output", type=Path, default=Path("counts.npy"))
    simulate.set_defaults(func=cmd_simulate)

    decompose = subparsers.add_parser("decompose", help="Decompose spectral counts into line integrals")
    decompose.add_argument("--calibration", type=Path, required=True)
    decompose.add_argument("--counts", type=Path, required=True)
    decompose.add_argument("--initial", type=Path, help="Initial line-integral guess")
    decompose.add_argument("--incident", type=Path, help="Per-pixel or global incident spectrum")
    decompose.add_argument("--config", type=Path, help="DecompositionConfig as JSON or YAML")
    decompose.add_argument("--iterations", type=int)
    decompose.add_argument("--workers", type=int)
    decompose.add_argument("--no-variances", action="store_true")
    decompose.add_argument("--nonnegative", action="store_true")
    decompose.add_argument("--output", type=Path, default=Path("decomposition.npz"))
    decompose.add_argument("--summary", type=Path)
    decompose.set_defaults(func=cmd_decompose)
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        args.func(args)
    except ConfigurationError as exc:
        parser.exit(2, f"Configuration error: {exc}\n")


if __name__ == "__main__":
    main()
