"""Generate a DAA encounter set from a JSON run configuration.

Usage:
  python generate_encounters.py config.json [--verbose-level 1] [--max-trials 5000]

Outputs land in the configured ``save_directory`` (or ``--output``):
metadata.csv, benchmark.csv, trajectory_<id>.csv and, when events are
requested, scripted_encounters.json.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from aircraft_sources import library_duration_s, library_filters
from collaborators import CollaboratorError, Collaborators
from encounter_generation import generate_encounter_set
from encounter_output import write_encounter_set
from specification import AircraftSpecification, EncounterSpecification, SpecificationError, load_specification
from trajectory_library import CsvTrajectoryLibrary, LibraryExhaustedError

logger = logging.getLogger("generate_encounters")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Loggers silenced as the verbose level rises (lower levels are chattier).
VERBOSITY_TIERS = (
    ("encounter_generation.rejections", "aircraft_sources"),
    ("encounter_generation.trials",),
    ("encounter_generation",),
)


def configure_logging(verbose_level: int) -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    for tier, names in enumerate(VERBOSITY_TIERS):
        level = logging.WARNING if verbose_level > tier else logging.NOTSET
        for name in names:
            logging.getLogger(name).setLevel(level)
    if verbose_level <= 0:
        logging.getLogger("aircraft_sources").setLevel(logging.DEBUG)


def _library_for(aircraft: AircraftSpecification, sample_time_s: float):
    if not aircraft.samples_trajectory:
        return None
    if aircraft.library is not None:
        return aircraft.library.build()
    try:
        library = CsvTrajectoryLibrary.from_files(aircraft.trajectory_datafile, aircraft.trajectory_dir)
        library.require_eligible(library_filters(aircraft), library_duration_s(sample_time_s))
    except (LibraryExhaustedError, ValueError) as exc:
        raise SpecificationError(f"{aircraft.role} trajectory library: {exc}") from exc
    return library


def build_collaborators(spec: EncounterSpecification) -> Collaborators:
    """Instantiate every collaborator named in ``spec``."""

    try:
        collaborators = Collaborators(
            finalizer=spec.finalizer.build(),
            dynamics=spec.dynamics.build() if spec.dynamics is not None else None,
            ownship_model=None if spec.ownship.samples_trajectory else spec.ownship.model.build(),
            intruder_model=None if spec.intruder.samples_trajectory else spec.intruder.model.build(),
            ownship_library=_library_for(spec.ownship, spec.sample_time_s),
            intruder_library=_library_for(spec.intruder, spec.sample_time_s),
        )
        if spec.properties is not None:
            collaborators.extract_properties = spec.properties.resolve()
    except CollaboratorError as exc:
        raise SpecificationError(str(exc)) from exc
    return collaborators


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate ownship/intruder encounter sets.")
    parser.add_argument("config", type=Path, help="JSON run configuration")
    parser.add_argument("--verbose-level", type=int, default=None,
                        help="0 logs reject reasons, 1 trial seeds, 2 progress only, 3+ warnings")
    parser.add_argument("--max-trials", type=int, default=None,
                        help="Give up on an encounter after this many trials (default: never)")
    parser.add_argument("--output", type=Path, default=None,
                        help="Override the configured save directory")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        spec = load_specification(
            args.config,
            overrides={"verbose_level": args.verbose_level, "max_trials": args.max_trials},
        )
        configure_logging(spec.verbose_level)
        collaborators = build_collaborators(spec)
    except (SpecificationError, OSError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    output_dir = args.output if args.output is not None else spec.save_directory
    result = generate_encounter_set(spec, collaborators, output_directory=output_dir)
    write_encounter_set(result, output_dir)

    total_trials = sum(result.trial_counts)
    print(
        f"Generated {len(result.records)} of {len(spec.encounter_ids)} encounters "
        f"in {total_trials} trials ({sum(result.job_times_s):.1f} s) -> {output_dir}"
    )
    if result.failed_ids:
        logger.warning("Encounters not generated: %s", ", ".join(map(str, result.failed_ids)))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
