import copy
import json
import math
import sys
from fractions import Fraction
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from collaborators import CollaboratorError, CollaboratorReference
from specification import (
    SAVE_ROOT_ENV,
    EnvelopeBounds,
    SpecificationError,
    EncounterSpecification,
    load_specification,
    normalize_altitude_layers,
)
from trajectories import NM_TO_FT

BASE_CONFIG = {
    "num_encounters": 3,
    "sample_time_s": 60,
    "tca_s": 40,
    "altitude_layers": [[500, 1200], [1200, 3000]],
    "vmd": {"bin_edges": [0, 250, 500], "proportions": [1, 1]},
    "hmd": {"bin_edges": [0, 2000, 6000], "proportions": [2, 1]},
    "r_min_nm": 0.5,
    "ownship": {"source": "model", "model": "models:Ownship", "filter_at_cpa": True},
    "intruder": {
        "source": "library",
        "trajectory_datafile": "library/metadata.csv",
        "trajectory_dir": "library/tracks",
        "min_alt_ft": 1000,
        "min_alt_type": "MSL",
    },
    "collaborators": {
        "dynamics": "sim:Dynamics",
        "finalizer": {"factory": "geometry:Finalizer", "options": {"iterations": 5}},
    },
}


def make_config(**overrides):
    config = copy.deepcopy(BASE_CONFIG)
    config.update(overrides)
    return config


def test_from_mapping_builds_full_specification(monkeypatch):
    monkeypatch.delenv(SAVE_ROOT_ENV, raising=False)
    spec = EncounterSpecification.from_mapping(make_config())

    assert spec.encounter_ids == (1, 2, 3)
    assert spec.altitude_layers == ((500.0, 1200.0), (1200.0, 3000.0))
    assert spec.r_min_ft == pytest.approx(0.5 * NM_TO_FT)
    assert spec.max_hmd_ft == pytest.approx(10.0 * NM_TO_FT)
    assert spec.ownship.filter_at_cpa
    assert not spec.ownship.samples_trajectory
    assert spec.intruder.samples_trajectory
    assert spec.intruder.envelope.min_alt_type == "MSL"
    assert spec.intruder.envelope.max_alt_ft == math.inf
    assert spec.finalizer.options == {"iterations": 5}
    assert spec.max_trials is None
    assert spec.rand_seed == 0
    assert spec.save_directory == Path("output")


def test_explicit_encounter_ids_take_precedence():
    spec = EncounterSpecification.from_mapping(make_config(encounter_ids=[7, 3, 11]))
    assert spec.encounter_ids == (7, 3, 11)


@pytest.mark.parametrize(
    "overrides",
    [
        {"encounter_ids": [1, 1]},
        {"tca_s": 90},
        {"sample_time_s": 0},
        {"vmd": {"bin_edges": [0, 250], "proportions": [1, 1]}},
        {"hmd": {"bin_edges": [0, 250], "proportions": [0]}},
        {"collaborators": {"dynamics": "sim:Dynamics"}},
        {"collaborators": {"finalizer": "geometry:Finalizer"}},
        {"max_trials": 0},
        {"rand_seed": -1},
        {"rand_seed": "abc"},
        {"verbose_level": "loud"},
        {"num_encounters": "three"},
        {"max_trials": [10]},
        {"altitude_layers": [[1200, 500]]},
    ],
)
def test_invalid_configurations_raise(overrides):
    with pytest.raises(SpecificationError):
        EncounterSpecification.from_mapping(make_config(**overrides))


def test_library_aircraft_needs_files_or_reference():
    config = make_config()
    del config["intruder"]["trajectory_dir"]
    with pytest.raises(SpecificationError):
        EncounterSpecification.from_mapping(config)

    config["intruder"]["library"] = "catalogue:Library"
    spec = EncounterSpecification.from_mapping(config)
    assert spec.intruder.library.target == "catalogue:Library"


def test_all_library_run_does_not_need_dynamics():
    config = make_config(collaborators={"finalizer": "geometry:Finalizer"})
    config["ownship"] = dict(config["intruder"])
    spec = EncounterSpecification.from_mapping(config)
    assert not spec.needs_dynamics
    assert spec.dynamics is None


def test_flat_altitude_layers_are_paired():
    assert normalize_altitude_layers([500, 1200, 1200, 3000]) == ((500.0, 1200.0), (1200.0, 3000.0))
    with pytest.raises(SpecificationError):
        normalize_altitude_layers([500, 1200, 3000])


def test_msl_bounds_referenced_to_ground():
    bounds = EnvelopeBounds(min_alt_ft=1000.0, max_alt_ft=500.0 + 300.0, min_alt_type="MSL", max_alt_type="MSL")

    agl = bounds.referenced_to_ground(300.0)
    assert agl.min_alt_ft == 700.0
    assert agl.max_alt_ft == 500.0
    assert agl.min_alt_type == "AGL"

    assert bounds.referenced_to_ground(2000.0).min_alt_ft == 0.0


def test_agl_bounds_unchanged_by_elevation():
    bounds = EnvelopeBounds(min_alt_ft=1000.0, max_alt_ft=5000.0)
    assert bounds.referenced_to_ground(300.0) == bounds


def test_save_directory_prefixed_by_environment(monkeypatch, tmp_path):
    monkeypatch.setenv(SAVE_ROOT_ENV, str(tmp_path))
    spec = EncounterSpecification.from_mapping(make_config(save_directory="run1"))
    assert spec.save_directory == tmp_path / "run1"


def test_load_specification_resolves_paths_and_applies_overrides(tmp_path, monkeypatch):
    monkeypatch.delenv(SAVE_ROOT_ENV, raising=False)
    path = tmp_path / "run.json"
    path.write_text(json.dumps(make_config(verbose_level=2)), encoding="utf-8")

    spec = load_specification(path, overrides={"max_trials": 50, "verbose_level": None})

    assert spec.max_trials == 50
    assert spec.verbose_level == 2
    assert spec.intruder.trajectory_dir == tmp_path.resolve() / "library" / "tracks"
    assert spec.save_directory == tmp_path.resolve() / "output"


def test_load_specification_reports_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(SpecificationError):
        load_specification(path)


def test_collaborator_reference_resolves_and_builds():
    assert CollaboratorReference.parse("math:sqrt").resolve() is math.sqrt

    reference = CollaboratorReference.parse({"factory": "fractions:Fraction", "options": {"numerator": 1}})
    assert reference.build(denominator=4) == Fraction(1, 4)


@pytest.mark.parametrize("target", ["math", "math:", "no_such_module_xyz:thing", "math:no_such_attr"])
def test_collaborator_reference_errors(target):
    with pytest.raises(CollaboratorError):
        CollaboratorReference(target).resolve()
