"""Encounter set generation by stochastic accept/reject sampling.

Each requested encounter is produced by repeated trials.  A trial draws the
ownship and intruder from their configured sources, simulates model draws,
screens the relative height at the desired time of closest approach against
the VMD target, hands the pair to the geometry finalizer (which also targets
the HMD shape) and finally runs the envelope filter chain.  Rejected trials
are silently retried; the random generator is reseeded from a run-wide seed
sequence that advances by one on every trial.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence, Tuple, Union

import numpy as np

from aircraft_sources import (
    AircraftSource,
    Draw,
    KinematicDraw,
    ModelSource,
    build_aircraft_source,
)
from collaborators import Collaborators, GeometryRequest
from distributions import DistributionBinTable
from encounter_output import EncounterRecord, EncounterSet, EncounterSetAssembler
from envelope_filters import EncounterFilter, FinalizedCandidate, build_filter_chain, first_failure
from specification import EncounterSpecification
from trajectories import Trajectory, trajectory_to_script

logger = logging.getLogger(__name__)
trial_logger = logging.getLogger(f"{__name__}.trials")
rejection_logger = logging.getLogger(f"{__name__}.rejections")

# ---------------------------- Constants ----------------------------

MAX_SEED = 2 ** 32

REJECT_NEGATIVE_STATE = "negative velocities or altitudes"
REJECT_NAN_HEIGHT = "NaN height"
REJECT_VMD_SAMPLING = "VMD bin sampling"
REJECT_FINALIZATION = "geometry finalization failed"


# ------------------------------ Seeds ------------------------------


@dataclass(frozen=True)
class SeedSequence:
    """Run-wide seed counter, advanced by one per trial up to ``maximum``."""

    value: int = 0
    maximum: int = MAX_SEED
    exhausted: bool = False

    def advance(self) -> "SeedSequence":
        following = self.value + 1
        if following < self.maximum:
            return SeedSequence(following, self.maximum)
        return SeedSequence(self.value, self.maximum, exhausted=True)


# ---------------------------- Evaluator ----------------------------


@dataclass(frozen=True)
class TrialOutcome:
    reason: Optional[str] = None
    candidate: Optional[FinalizedCandidate] = None

    @property
    def accepted(self) -> bool:
        return self.reason is None and self.candidate is not None


class CandidateEvaluator:
    """Runs a single accept/reject trial."""

    def __init__(
        self,
        spec: EncounterSpecification,
        ownship_source: AircraftSource,
        intruder_source: AircraftSource,
        collaborators: Collaborators,
        filters: Optional[Sequence[EncounterFilter]] = None,
    ) -> None:
        self.spec = spec
        self.ownship_source = ownship_source
        self.intruder_source = intruder_source
        self.collaborators = collaborators
        self.vmd_table: DistributionBinTable = spec.vmd.to_bin_table("vmd")
        self.hmd_table: DistributionBinTable = spec.hmd.to_bin_table("hmd")
        self.filters: Tuple[EncounterFilter, ...] = tuple(
            build_filter_chain(spec) if filters is None else filters
        )
        if collaborators.dynamics is None and (
            isinstance(ownship_source, ModelSource)
            or isinstance(intruder_source, ModelSource)
        ):
            raise ValueError("a dynamics simulator is required for model-sourced aircraft")

    @classmethod
    def from_specification(
        cls, spec: EncounterSpecification, collaborators: Collaborators
    ) -> "CandidateEvaluator":
        ownship = build_aircraft_source(
            spec.ownship, spec, collaborators.ownship_model, collaborators.ownship_library
        )
        intruder = build_aircraft_source(
            spec.intruder, spec, collaborators.intruder_model, collaborators.intruder_library
        )
        return cls(spec, ownship, intruder, collaborators)

    def simulate(self, ownship: Draw, intruder: Draw) -> Tuple[Trajectory, Trajectory]:
        """Trajectories for both draws, integrating the model-sourced ones.

        When only one aircraft comes from the motion model it occupies both
        simulator slots.
        """

        own_model = isinstance(ownship, KinematicDraw)
        int_model = isinstance(intruder, KinematicDraw)
        if not (own_model or int_model):
            return ownship.trajectory, intruder.trajectory

        first = ownship if own_model else intruder
        second = intruder if int_model else ownship
        traj1, traj2 = self.collaborators.dynamics.simulate(
            first.initial_conditions,
            first.controls,
            second.initial_conditions,
            second.controls,
            self.spec.sample_time_s,
        )
        own_traj = traj1 if own_model else ownship.trajectory
        int_traj = traj2 if int_model else intruder.trajectory
        return own_traj, int_traj

    def run_trial(self, rng: np.random.Generator, encounter_id: int) -> TrialOutcome:
        spec = self.spec
        ownship = self.ownship_source.draw(rng)
        intruder = self.intruder_source.draw(rng)

        own_traj, int_traj = self.simulate(ownship, intruder)
        simulated = [
            traj
            for draw, traj in ((ownship, own_traj), (intruder, int_traj))
            if isinstance(draw, KinematicDraw)
        ]
        if any(traj.has_negative_state() for traj in simulated):
            return TrialOutcome(reason=REJECT_NEGATIVE_STATE)

        draw = float(rng.random())
        own_height = own_traj.height_at(spec.tca_s)
        int_height = int_traj.height_at(spec.tca_s)
        if np.isnan(own_height) or np.isnan(int_height):
            return TrialOutcome(reason=REJECT_NAN_HEIGHT)

        rel_height = int_height - own_height
        if not self.vmd_table.accepts(rel_height, draw):
            return TrialOutcome(reason=REJECT_VMD_SAMPLING)
        vmd_weight = self.vmd_table.importance_weight(rel_height)

        request = GeometryRequest(
            encounter_id=int(encounter_id),
            tca_s=spec.tca_s,
            sample_time_s=spec.sample_time_s,
            own_height_ft=own_height,
            int_height_ft=int_height,
            max_hmd_ft=spec.max_hmd_ft,
            min_vertical_sep_ft=spec.h_min_ft,
            min_horizontal_sep_ft=spec.r_min_ft,
            vmd_weight=vmd_weight,
            hmd_target=self.hmd_table,
        )
        geometry = self.collaborators.finalizer.finalize(own_traj, int_traj, request)
        if geometry.failed:
            return TrialOutcome(reason=REJECT_FINALIZATION)

        metadata, properties = self.collaborators.extract_properties(
            geometry.ownship, geometry.intruder, geometry
        )
        rejection_logger.info(
            "vmd_ft = %f, vmd = %f; hmd_ft = %f, hmd = %f",
            metadata.vmd_ft,
            abs(geometry.vmd_ft),
            metadata.hmd_ft,
            abs(geometry.hmd_ft),
        )
        candidate = FinalizedCandidate(
            ownship_draw=ownship,
            intruder_draw=intruder,
            rel_height_ft=rel_height,
            vmd_weight=vmd_weight,
            geometry=geometry,
            metadata=metadata,
            properties=properties,
        )
        failed = first_failure(self.filters, candidate)
        if failed is not None:
            return TrialOutcome(reason=failed.reason, candidate=candidate)
        return TrialOutcome(candidate=candidate)


# --------------------------- Orchestrator ---------------------------


class EncounterGenerator:
    """Generates every requested encounter in request order."""

    def __init__(
        self,
        spec: EncounterSpecification,
        evaluator: CandidateEvaluator,
        assembler: Optional[EncounterSetAssembler] = None,
        rng_factory: Callable[[int], np.random.Generator] = np.random.default_rng,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.spec = spec
        self.evaluator = evaluator
        self.assembler = assembler if assembler is not None else EncounterSetAssembler()
        self.rng_factory = rng_factory
        self.clock = clock

    def run(self, seeds: Optional[SeedSequence] = None) -> EncounterSet:
        spec = self.spec
        seeds = SeedSequence(spec.rand_seed) if seeds is None else seeds
        rng = self.rng_factory(seeds.value)
        warned = False

        for encounter_id in spec.encounter_ids:
            logger.info("Generating encounter %d", encounter_id)
            started = self.clock()
            trials = 0
            outcome: Optional[TrialOutcome] = None

            while spec.max_trials is None or trials < spec.max_trials:
                trials += 1
                seeds = seeds.advance()
                if seeds.exhausted:
                    if not warned:
                        logger.warning("Maximum random seed exceeded, seed not updated")
                        warned = True
                else:
                    rng = self.rng_factory(seeds.value)
                trial_logger.info("Trial %d, randSeed %d", trials, seeds.value)

                outcome = self.evaluator.run_trial(rng, encounter_id)
                if outcome.accepted:
                    break
                rejection_logger.info("reject: %s", outcome.reason)

            if outcome is None or not outcome.accepted:
                job_time_s = self.clock() - started
                logger.warning(
                    "Encounter %d not generated within %d trials", encounter_id, trials
                )
                self.assembler.fail(encounter_id, trials, job_time_s, seeds.value)
                continue

            candidate = outcome.candidate
            geometry = candidate.geometry
            script = None
            if spec.output_events:
                script = trajectory_to_script(
                    geometry.ownship, geometry.intruder, encounter_id, spec.altitude_layers
                )
            record = EncounterRecord.from_metadata(
                candidate.metadata,
                encounter_id=encounter_id,
                vmd_weight=candidate.vmd_weight,
                seed=seeds.value,
                trials=trials,
                job_time_s=self.clock() - started,
            )
            self.assembler.accept(record, geometry.ownship, geometry.intruder, script)

        return self.assembler.finish(seeds.value)


def generate_encounter_set(
    spec: EncounterSpecification,
    collaborators: Collaborators,
    *,
    output_directory: Optional[Union[str, Path]] = None,
    seeds: Optional[SeedSequence] = None,
) -> EncounterSet:
    """Generate all encounters of ``spec``.

    Trajectory pairs are written as they are accepted when
    ``output_directory`` is given and the run requests trajectory output.
    """

    assembler = EncounterSetAssembler(
        directory=output_directory,
        write_trajectories=output_directory is not None and spec.output_trajectories,
    )
    evaluator = CandidateEvaluator.from_specification(spec, collaborators)
    return EncounterGenerator(spec, evaluator, assembler).run(seeds)


__all__ = [
    "MAX_SEED",
    "REJECT_NEGATIVE_STATE",
    "REJECT_NAN_HEIGHT",
    "REJECT_VMD_SAMPLING",
    "REJECT_FINALIZATION",
    "SeedSequence",
    "TrialOutcome",
    "CandidateEvaluator",
    "EncounterGenerator",
    "generate_encounter_set",
]
