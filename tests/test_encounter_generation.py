import logging
import sys
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from collaborators import Collaborators, FinalizedGeometry
from encounter_generation import (
    MAX_SEED,
    REJECT_NEGATIVE_STATE,
    REJECT_VMD_SAMPLING,
    CandidateEvaluator,
    EncounterGenerator,
    SeedSequence,
    generate_encounter_set,
)
from specification import AircraftSpecification, EncounterSpecification, EnvelopeBounds, TargetDistribution
from trajectories import Trajectory

TCA_S = 30.0


class FakeLibrary:
    """1 Hz level tracks; the intruder crosses 500 ft north of the ownship at TCA."""

    def __init__(self, role, altitudes, elevation_ft=0.0):
        self.role = role
        self.altitudes = list(altitudes)
        self.elevation_ft = elevation_ft
        self.durations = []

    def sample(self, rng, filters, duration_s):
        self.durations.append(duration_s)
        altitude = self.altitudes[min(len(self.durations), len(self.altitudes)) - 1]
        t = np.arange(0.0, duration_s + 1.0)
        if self.role == "ownship":
            north = np.zeros_like(t)
            east = np.zeros_like(t)
        else:
            north = np.full_like(t, 500.0)
            east = 100.0 * (t - TCA_S)
        return Trajectory(t, north, east, np.full_like(t, altitude)), self.elevation_ft


class FakeFinalizer:
    """Keeps trajectories in place; optional per-call offsets on the reported VMD."""

    def __init__(self, vmd_offsets=(0.0,), failed=False):
        self.vmd_offsets = list(vmd_offsets)
        self.failed = failed
        self.requests = []

    def finalize(self, ownship, intruder, request):
        self.requests.append(request)
        offset = self.vmd_offsets[min(len(self.requests), len(self.vmd_offsets)) - 1]
        return FinalizedGeometry(
            ownship=ownship,
            intruder=intruder,
            encounter_id=request.encounter_id,
            hmd_ft=500.0,
            tca_s=request.tca_s,
            own_height_at_tca_ft=request.own_height_ft,
            int_height_at_tca_ft=request.int_height_ft + offset,
            failed=self.failed,
        )


class FakeModel:
    def sample(self, rng, sample_time_s, initial_hint):
        return np.array([1, 4, 1, 100.0, 0.0, 0.0, 0.0]), np.array([[sample_time_s + 1.0, 0.0, 0.0]])


class FakeDynamics:
    """Level constant-speed integration at 10 Hz; optionally drives altitude negative."""

    def __init__(self, negative=False):
        self.negative = negative
        self.calls = []

    def _trajectory(self, initial, sample_time_s, north_offset):
        t = np.arange(0.0, sample_time_s + 1.0 + 1e-9, 0.1)
        v = initial[1]
        altitude = -10.0 if self.negative else initial[4]
        return Trajectory(t, np.full_like(t, north_offset), v * (t - TCA_S), np.full_like(t, altitude))

    def simulate(self, initial1, controls1, initial2, controls2, sample_time_s):
        self.calls.append((initial1, initial2))
        return (
            self._trajectory(initial1, sample_time_s, 0.0),
            self._trajectory(initial2, sample_time_s, 500.0),
        )


def make_spec(**overrides):
    base = dict(
        encounter_ids=(1,),
        sample_time_s=60.0,
        tca_s=TCA_S,
        altitude_layers=((1000.0, 1200.0),),
        vmd=TargetDistribution((0.0, 500.0), (1.0,)),
        hmd=TargetDistribution((0.0, 6000.0), (1.0,)),
        ownship=AircraftSpecification(role="ownship", source="library"),
        intruder=AircraftSpecification(role="intruder", source="library"),
    )
    base.update(overrides)
    return EncounterSpecification(**base)


def library_collaborators(
    own_altitudes=(1000.0,), int_altitudes=(1100.0,), elevation_ft=0.0, finalizer=None, int_elevation_ft=0.0
):
    return Collaborators(
        finalizer=finalizer if finalizer is not None else FakeFinalizer(),
        ownship_library=FakeLibrary("ownship", own_altitudes, elevation_ft),
        intruder_library=FakeLibrary("intruder", int_altitudes, int_elevation_ft),
    )


def test_seed_sequence_advances_until_maximum():
    seeds = SeedSequence(5).advance()
    assert seeds.value == 6 and not seeds.exhausted

    last = SeedSequence(MAX_SEED - 1).advance()
    assert last.value == MAX_SEED - 1
    assert last.exhausted


def test_generates_every_requested_encounter_in_order():
    spec = make_spec(encounter_ids=(4, 2, 9))
    result = generate_encounter_set(spec, library_collaborators())

    assert result.encounter_ids == [4, 2, 9]
    assert [rec.encounter_id for rec in result.records] == [4, 2, 9]
    assert result.trial_counts == [1, 1, 1]
    assert [rec.seed for rec in result.records] == [1, 2, 3]
    assert result.final_seed == 3
    assert result.failed_ids == []
    assert all(t >= 0.0 for t in result.job_times_s)


def test_accepted_encounter_metadata_and_single_bin_weight():
    collaborators = library_collaborators()
    result = generate_encounter_set(make_spec(), collaborators)

    record = result.records[0]
    assert record.vmd_ft == pytest.approx(100.0)
    assert record.hmd_ft == pytest.approx(500.0)
    assert record.tca_s == pytest.approx(TCA_S)
    assert record.vmd_weight == pytest.approx(1.0)
    assert collaborators.ownship_library.durations == [61.0]


def test_geometry_request_carries_separations_and_hmd_target():
    finalizer = FakeFinalizer()
    spec = make_spec(h_min_ft=200.0, r_min_nm=0.5, max_hmd_nm=2.0)
    generate_encounter_set(spec, library_collaborators(finalizer=finalizer))

    request = finalizer.requests[0]
    assert request.encounter_id == 1
    assert request.min_vertical_sep_ft == 200.0
    assert request.min_horizontal_sep_ft == pytest.approx(spec.r_min_ft)
    assert request.max_hmd_ft == pytest.approx(spec.max_hmd_ft)
    assert request.own_height_ft == pytest.approx(1000.0)
    assert request.int_height_ft == pytest.approx(1100.0)
    np.testing.assert_allclose(request.hmd_target.finite_edges, [0.0, 6000.0])


def test_vmd_bin_lookup_is_right_open():
    # 100 ft relative height sits on the upper edge and falls in the +inf sentinel.
    spec = make_spec(vmd=TargetDistribution((0.0, 100.0), (1.0,)), max_trials=3)
    result = generate_encounter_set(spec, library_collaborators())
    assert result.failed_ids == [1]
    assert result.trial_counts == [3]

    spec = make_spec(vmd=TargetDistribution((0.0, 100.0, 200.0), (0.0, 1.0)))
    result = generate_encounter_set(spec, library_collaborators())
    assert result.failed_ids == []


def test_ownship_cpa_bounds_reject_then_retry(caplog):
    spec = make_spec(
        ownship=AircraftSpecification(
            role="ownship",
            source="library",
            envelope=EnvelopeBounds(min_alt_ft=1000.0, max_alt_ft=5000.0),
            filter_at_cpa=True,
        )
    )
    collaborators = library_collaborators(own_altitudes=(900.0, 1500.0), int_altitudes=(1000.0, 1600.0))

    with caplog.at_level(logging.INFO, logger="encounter_generation.rejections"):
        result = generate_encounter_set(spec, collaborators)

    assert result.trial_counts == [2]
    assert "reject: ownship altitude/airspeed constraints at CPA" in caplog.text


def test_msl_bounds_converted_with_library_elevation():
    spec = make_spec(
        ownship=AircraftSpecification(
            role="ownship",
            source="library",
            envelope=EnvelopeBounds(min_alt_ft=1000.0, min_alt_type="MSL"),
            filter_at_cpa=True,
        ),
        max_trials=2,
    )
    collaborators = library_collaborators(own_altitudes=(800.0,), int_altitudes=(900.0,), elevation_ft=300.0)

    result = generate_encounter_set(spec, collaborators)

    assert result.failed_ids == []
    assert result.trial_counts == [1]


def intruder_msl_spec(**bounds):
    return make_spec(
        intruder=AircraftSpecification(
            role="intruder",
            source="library",
            envelope=EnvelopeBounds(**bounds),
            filter_at_cpa=True,
        ),
        vmd=TargetDistribution((-500.0, 500.0), (1.0,)),
        max_trials=2,
    )


def test_intruder_msl_bounds_use_terrain_elevation():
    # 1100 ft MSL over 300 ft terrain is 800 ft AGL; the intruder flies at 900 ft AGL.
    spec = intruder_msl_spec(min_alt_ft=1100.0, min_alt_type="MSL")
    collaborators = library_collaborators(own_altitudes=(800.0,), int_altitudes=(900.0,), int_elevation_ft=300.0)
    result = generate_encounter_set(spec, collaborators)
    assert result.failed_ids == []
    assert result.trial_counts == [1]

    spec = intruder_msl_spec(max_alt_ft=1100.0, max_alt_type="MSL")
    collaborators = library_collaborators(own_altitudes=(800.0,), int_altitudes=(900.0,), int_elevation_ft=300.0)
    assert generate_encounter_set(spec, collaborators).failed_ids == [1]


def test_intruder_msl_ceiling_below_terrain_floors_at_ground(caplog):
    # 200 ft MSL over 300 ft terrain clamps to 0 ft AGL rather than -100 ft.
    spec = intruder_msl_spec(max_alt_ft=200.0, max_alt_type="MSL")
    on_ground = library_collaborators(own_altitudes=(100.0,), int_altitudes=(0.0,), int_elevation_ft=300.0)
    assert generate_encounter_set(spec, on_ground).failed_ids == []

    airborne = library_collaborators(own_altitudes=(100.0,), int_altitudes=(50.0,), int_elevation_ft=300.0)
    with caplog.at_level(logging.INFO, logger="encounter_generation.rejections"):
        result = generate_encounter_set(spec, airborne)
    assert result.failed_ids == [1]
    assert "reject: intruder altitude/airspeed constraints at CPA" in caplog.text


def test_vmd_mismatch_rejected_then_retried(caplog):
    finalizer = FakeFinalizer(vmd_offsets=(25.0, 0.0))

    with caplog.at_level(logging.INFO, logger="encounter_generation.rejections"):
        result = generate_encounter_set(make_spec(), library_collaborators(finalizer=finalizer))

    assert result.trial_counts == [2]
    assert len(finalizer.requests) == 2
    assert "reject: hmd/vmd mismatch" in caplog.text


def test_failed_finalization_exhausts_max_trials():
    spec = make_spec(encounter_ids=(1, 2), max_trials=4)
    result = generate_encounter_set(spec, library_collaborators(finalizer=FakeFinalizer(failed=True)))

    assert result.failed_ids == [1, 2]
    assert result.trial_counts == [4, 4]
    assert result.records == []
    assert result.final_seed == 8


def test_seed_stops_at_maximum_and_warns_once(caplog):
    spec = make_spec(encounter_ids=(1, 2, 3))
    evaluator = CandidateEvaluator.from_specification(spec, library_collaborators())
    factory_seeds = []

    def rng_factory(seed):
        factory_seeds.append(seed)
        return np.random.default_rng(seed)

    generator = EncounterGenerator(spec, evaluator, rng_factory=rng_factory)
    with caplog.at_level(logging.WARNING, logger="encounter_generation"):
        result = generator.run(SeedSequence(MAX_SEED - 2))

    assert factory_seeds == [MAX_SEED - 2, MAX_SEED - 1]
    assert [rec.seed for rec in result.records] == [MAX_SEED - 1] * 3
    assert result.final_seed == MAX_SEED - 1
    assert caplog.text.count("Maximum random seed exceeded") == 1


def test_trials_are_reseeded_from_the_sequence():
    spec = make_spec(rand_seed=41)
    mock_rng = MagicMock(wraps=np.random.default_rng)
    evaluator = CandidateEvaluator.from_specification(spec, library_collaborators())
    EncounterGenerator(spec, evaluator, rng_factory=mock_rng).run()

    assert [call.args[0] for call in mock_rng.call_args_list] == [41, 42]


def test_single_model_aircraft_fills_both_simulator_slots():
    dynamics = FakeDynamics()
    spec = make_spec(intruder=AircraftSpecification(role="intruder", source="model"))
    collaborators = Collaborators(
        finalizer=FakeFinalizer(),
        dynamics=dynamics,
        intruder_model=FakeModel(),
        ownship_library=FakeLibrary("ownship", (1000.0,)),
    )

    evaluator = CandidateEvaluator.from_specification(spec, collaborators)
    outcome = evaluator.run_trial(np.random.default_rng(0), 1)

    initial1, initial2 = dynamics.calls[0]
    np.testing.assert_allclose(initial1, initial2)
    assert outcome.candidate is not None
    np.testing.assert_allclose(outcome.candidate.geometry.ownship.up_ft, 1000.0)


def test_negative_simulated_state_is_rejected():
    spec = make_spec(
        ownship=AircraftSpecification(role="ownship", source="model"),
        intruder=AircraftSpecification(role="intruder", source="model"),
    )
    collaborators = Collaborators(
        finalizer=FakeFinalizer(),
        dynamics=FakeDynamics(negative=True),
        ownship_model=FakeModel(),
        intruder_model=FakeModel(),
    )

    outcome = CandidateEvaluator.from_specification(spec, collaborators).run_trial(np.random.default_rng(0), 1)

    assert outcome.reason == REJECT_NEGATIVE_STATE
    assert not outcome.accepted


def test_model_sources_require_dynamics():
    spec = make_spec(intruder=AircraftSpecification(role="intruder", source="model"))
    collaborators = Collaborators(
        finalizer=FakeFinalizer(),
        intruder_model=FakeModel(),
        ownship_library=FakeLibrary("ownship", (1000.0,)),
    )
    with pytest.raises(ValueError):
        CandidateEvaluator.from_specification(spec, collaborators)


def test_vmd_rejection_reason_reported():
    spec = make_spec(vmd=TargetDistribution((500.0, 1000.0), (1.0,)))
    evaluator = CandidateEvaluator.from_specification(spec, library_collaborators())
    outcome = evaluator.run_trial(np.random.default_rng(0), 1)
    assert outcome.reason == REJECT_VMD_SAMPLING


def test_trajectories_and_scripts_written_when_requested(tmp_path):
    spec = make_spec(encounter_ids=(1, 2), output_events=True)
    result = generate_encounter_set(spec, library_collaborators(), output_directory=tmp_path)

    assert (tmp_path / "trajectory_1.csv").exists()
    assert (tmp_path / "trajectory_2.csv").exists()
    assert [script.encounter_id for script in result.scripted] == [1, 2]
