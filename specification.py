"""Run configuration for encounter set generation.

The configuration is a JSON document loaded into frozen dataclasses.  All
validation happens here so that a malformed run fails before any sampling.
"""

from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from collaborators import CollaboratorError, CollaboratorReference
from distributions import BinTableError, DistributionBinTable, build_bin_table
from trajectories import NM_TO_FT

ALTITUDE_TYPES = ("AGL", "MSL")
SOURCE_MODEL = "model"
SOURCE_LIBRARY = "library"
SAVE_ROOT_ENV = "AEM_DIR_DAAENC"
DEFAULT_MAX_HMD_NM = 10.0


class SpecificationError(ValueError):
    """Raised for malformed or inconsistent run configurations."""


def _as_float(data: Mapping[str, Any], key: str, default: Optional[float] = None) -> float:
    value = data.get(key, default)
    if value is None:
        raise SpecificationError(f"missing required setting '{key}'")
    try:
        result = float(value)
    except (TypeError, ValueError) as exc:
        raise SpecificationError(f"setting '{key}' must be numeric, got {value!r}") from exc
    if math.isnan(result):
        raise SpecificationError(f"setting '{key}' must not be NaN")
    return result


def _as_int(data: Mapping[str, Any], key: str, default: Optional[int] = None) -> int:
    value = data.get(key, default)
    if value is None:
        raise SpecificationError(f"missing required setting '{key}'")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise SpecificationError(f"setting '{key}' must be an integer, got {value!r}") from exc


def _as_bool(data: Mapping[str, Any], key: str, default: bool = False) -> bool:
    value = data.get(key, default)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off", ""}:
            return False
        raise SpecificationError(f"setting '{key}' must be a boolean, got {value!r}")
    return bool(value)


def _as_reference(value: Any, key: str) -> Optional[CollaboratorReference]:
    if value in (None, ""):
        return None
    try:
        return CollaboratorReference.parse(value)
    except CollaboratorError as exc:
        raise SpecificationError(f"setting '{key}': {exc}") from exc


@dataclass(frozen=True)
class TargetDistribution:
    """Bin edges and desired relative proportions for VMD or HMD."""

    bin_edges: Tuple[float, ...]
    proportions: Tuple[float, ...]

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], name: str) -> "TargetDistribution":
        if not isinstance(data, Mapping):
            raise SpecificationError(f"'{name}' must be an object with bin_edges and proportions")
        try:
            edges = tuple(float(x) for x in data["bin_edges"])
            props = tuple(float(x) for x in data["proportions"])
        except KeyError as exc:
            raise SpecificationError(f"'{name}' is missing {exc.args[0]!r}") from exc
        except (TypeError, ValueError) as exc:
            raise SpecificationError(f"'{name}' bin edges and proportions must be numeric") from exc
        target = cls(bin_edges=edges, proportions=props)
        target.to_bin_table(name)
        return target

    def to_bin_table(self, name: str = "distribution") -> DistributionBinTable:
        try:
            return build_bin_table(self.bin_edges, self.proportions)
        except BinTableError as exc:
            raise SpecificationError(f"invalid {name} target: {exc}") from exc


@dataclass(frozen=True)
class EnvelopeBounds:
    """Altitude and speed bounds for one aircraft."""

    min_alt_ft: float = 0.0
    max_alt_ft: float = math.inf
    min_speed_kts: float = 0.0
    max_speed_kts: float = math.inf
    min_alt_type: str = "AGL"
    max_alt_type: str = "AGL"

    def referenced_to_ground(self, elevation_ft: float) -> "EnvelopeBounds":
        """Convert MSL altitude bounds to AGL, never below zero."""

        min_alt = self.min_alt_ft
        max_alt = self.max_alt_ft
        if self.min_alt_type == "MSL":
            min_alt = max(0.0, self.min_alt_ft - elevation_ft)
        if self.max_alt_type == "MSL":
            max_alt = max(0.0, self.max_alt_ft - elevation_ft)
        return EnvelopeBounds(
            min_alt_ft=min_alt,
            max_alt_ft=max_alt,
            min_speed_kts=self.min_speed_kts,
            max_speed_kts=self.max_speed_kts,
            min_alt_type="AGL",
            max_alt_type="AGL",
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], role: str) -> "EnvelopeBounds":
        types = {}
        for key in ("min_alt_type", "max_alt_type"):
            value = str(data.get(key, "AGL")).strip().upper()
            if value not in ALTITUDE_TYPES:
                raise SpecificationError(f"{role}.{key} must be one of {ALTITUDE_TYPES}, got {value!r}")
            types[key] = value
        bounds = cls(
            min_alt_ft=_as_float(data, "min_alt_ft", 0.0),
            max_alt_ft=_as_float(data, "max_alt_ft", math.inf),
            min_speed_kts=_as_float(data, "min_speed_kts", 0.0),
            max_speed_kts=_as_float(data, "max_speed_kts", math.inf),
            **types,
        )
        if bounds.min_alt_ft > bounds.max_alt_ft:
            raise SpecificationError(f"{role}: min_alt_ft exceeds max_alt_ft")
        if bounds.min_speed_kts > bounds.max_speed_kts:
            raise SpecificationError(f"{role}: min_speed_kts exceeds max_speed_kts")
        return bounds


@dataclass(frozen=True)
class AircraftSpecification:
    role: str
    source: str = SOURCE_MODEL
    envelope: EnvelopeBounds = field(default_factory=EnvelopeBounds)
    filter_at_cpa: bool = False
    filter_whole_encounter: bool = False
    quantize_alt_500: bool = False
    model: Optional[CollaboratorReference] = None
    sampling_parameters: Optional[CollaboratorReference] = None
    library: Optional[CollaboratorReference] = None
    trajectory_datafile: Optional[Path] = None
    trajectory_dir: Optional[Path] = None
    apply_filter_sampling: bool = True
    sample_by_duration: bool = False

    @property
    def samples_trajectory(self) -> bool:
        return self.source == SOURCE_LIBRARY

    @classmethod
    def from_mapping(
        cls, data: Mapping[str, Any], role: str, base_dir: Optional[Path] = None
    ) -> "AircraftSpecification":
        if not isinstance(data, Mapping):
            raise SpecificationError(f"'{role}' must be an object")
        source = str(data.get("source", SOURCE_MODEL)).strip().lower()
        if source not in (SOURCE_MODEL, SOURCE_LIBRARY):
            raise SpecificationError(f"{role}.source must be 'model' or 'library', got {source!r}")

        def path_of(key: str) -> Optional[Path]:
            value = data.get(key)
            if not value:
                return None
            path = Path(value)
            if base_dir is not None and not path.is_absolute():
                path = base_dir / path
            return path

        spec = cls(
            role=role,
            source=source,
            envelope=EnvelopeBounds.from_mapping(data, role),
            filter_at_cpa=_as_bool(data, "filter_at_cpa"),
            filter_whole_encounter=_as_bool(data, "filter_whole_encounter"),
            quantize_alt_500=_as_bool(data, "quantize_alt_500"),
            model=_as_reference(data.get("model"), f"{role}.model"),
            sampling_parameters=_as_reference(
                data.get("sampling_parameters"), f"{role}.sampling_parameters"
            ),
            library=_as_reference(data.get("library"), f"{role}.library"),
            trajectory_datafile=path_of("trajectory_datafile"),
            trajectory_dir=path_of("trajectory_dir"),
            apply_filter_sampling=_as_bool(data, "apply_filter_sampling", True),
            sample_by_duration=_as_bool(data, "sample_by_duration"),
        )
        if source == SOURCE_MODEL and spec.model is None:
            raise SpecificationError(f"{role}: a model-sourced aircraft needs a 'model' reference")
        if source == SOURCE_LIBRARY and spec.library is None and (
            spec.trajectory_datafile is None or spec.trajectory_dir is None
        ):
            raise SpecificationError(
                f"{role}: a library-sourced aircraft needs 'trajectory_datafile' and "
                "'trajectory_dir' or a 'library' reference"
            )
        return spec


@dataclass(frozen=True)
class EncounterSpecification:
    encounter_ids: Tuple[int, ...]
    sample_time_s: float
    tca_s: float
    altitude_layers: Tuple[Tuple[float, float], ...]
    vmd: TargetDistribution
    hmd: TargetDistribution
    ownship: AircraftSpecification
    intruder: AircraftSpecification
    h_min_ft: float = 0.0
    r_min_nm: float = 0.0
    max_hmd_nm: float = DEFAULT_MAX_HMD_NM
    save_directory: Path = Path("output")
    rand_seed: int = 0
    verbose_level: int = 0
    output_trajectories: bool = True
    output_events: bool = False
    max_trials: Optional[int] = None
    dynamics: Optional[CollaboratorReference] = None
    finalizer: Optional[CollaboratorReference] = None
    properties: Optional[CollaboratorReference] = None

    @property
    def r_min_ft(self) -> float:
        return self.r_min_nm * NM_TO_FT

    @property
    def max_hmd_ft(self) -> float:
        return self.max_hmd_nm * NM_TO_FT

    @property
    def needs_dynamics(self) -> bool:
        return not (self.ownship.samples_trajectory and self.intruder.samples_trajectory)

    def aircraft(self, role: str) -> AircraftSpecification:
        return self.ownship if role == "ownship" else self.intruder

    @classmethod
    def from_mapping(
        cls, data: Mapping[str, Any], base_dir: Optional[Path] = None
    ) -> "EncounterSpecification":
        if not isinstance(data, Mapping):
            raise SpecificationError("configuration must be a JSON object")

        if "encounter_ids" in data:
            try:
                ids = tuple(int(x) for x in data["encounter_ids"])
            except (TypeError, ValueError) as exc:
                raise SpecificationError("encounter_ids must be a list of integers") from exc
        elif "num_encounters" in data:
            ids = tuple(range(1, _as_int(data, "num_encounters") + 1))
        else:
            raise SpecificationError("one of 'encounter_ids' or 'num_encounters' is required")
        if not ids:
            raise SpecificationError("at least one encounter must be requested")
        if len(set(ids)) != len(ids):
            raise SpecificationError("encounter_ids must be unique")

        sample_time = _as_float(data, "sample_time_s")
        tca = _as_float(data, "tca_s")
        if sample_time <= 0.0:
            raise SpecificationError("sample_time_s must be positive")
        if not 0.0 <= tca <= sample_time:
            raise SpecificationError("tca_s must lie within [0, sample_time_s]")

        layers = normalize_altitude_layers(data.get("altitude_layers"))

        max_trials = None
        if data.get("max_trials") is not None:
            max_trials = _as_int(data, "max_trials")
            if max_trials < 1:
                raise SpecificationError("max_trials must be at least 1 when set")

        collaborators = data.get("collaborators") or {}
        if not isinstance(collaborators, Mapping):
            raise SpecificationError("'collaborators' must be an object")

        save_directory = Path(data.get("save_directory", "output"))
        save_root = os.environ.get(SAVE_ROOT_ENV)
        if not save_directory.is_absolute():
            if save_root:
                save_directory = Path(save_root) / save_directory
            elif base_dir is not None:
                save_directory = base_dir / save_directory

        spec = cls(
            encounter_ids=ids,
            sample_time_s=sample_time,
            tca_s=tca,
            altitude_layers=layers,
            vmd=TargetDistribution.from_mapping(data.get("vmd"), "vmd"),
            hmd=TargetDistribution.from_mapping(data.get("hmd"), "hmd"),
            ownship=AircraftSpecification.from_mapping(data.get("ownship"), "ownship", base_dir),
            intruder=AircraftSpecification.from_mapping(data.get("intruder"), "intruder", base_dir),
            h_min_ft=_as_float(data, "h_min_ft", 0.0),
            r_min_nm=_as_float(data, "r_min_nm", 0.0),
            max_hmd_nm=_as_float(data, "max_hmd_nm", DEFAULT_MAX_HMD_NM),
            save_directory=save_directory,
            rand_seed=_as_int(data, "rand_seed", 0),
            verbose_level=_as_int(data, "verbose_level", 0),
            output_trajectories=_as_bool(data, "output_trajectories", True),
            output_events=_as_bool(data, "output_events", False),
            max_trials=max_trials,
            dynamics=_as_reference(collaborators.get("dynamics"), "collaborators.dynamics"),
            finalizer=_as_reference(collaborators.get("finalizer"), "collaborators.finalizer"),
            properties=_as_reference(collaborators.get("properties"), "collaborators.properties"),
        )
        if spec.finalizer is None:
            raise SpecificationError("collaborators.finalizer is required")
        if spec.needs_dynamics and spec.dynamics is None:
            raise SpecificationError("collaborators.dynamics is required for model-sourced aircraft")
        if spec.rand_seed < 0:
            raise SpecificationError("rand_seed must be non-negative")
        return spec


def normalize_altitude_layers(layers: Any) -> Tuple[Tuple[float, float], ...]:
    """Accept ``[[lo, hi], ...]`` or a flat ``[lo1, hi1, lo2, hi2, ...]`` list."""

    if not layers:
        raise SpecificationError("altitude_layers must list at least one [low, high] pair")
    try:
        flat = [float(x) for x in layers]
        pairs = [tuple(flat[i:i + 2]) for i in range(0, len(flat), 2)]
    except TypeError:
        try:
            pairs = [tuple(float(x) for x in pair) for pair in layers]
        except (TypeError, ValueError) as exc:
            raise SpecificationError("altitude_layers must contain numeric pairs") from exc
    except ValueError as exc:
        raise SpecificationError("altitude_layers must contain numeric pairs") from exc

    result = []
    for pair in pairs:
        if len(pair) != 2 or not pair[0] < pair[1]:
            raise SpecificationError(f"invalid altitude layer {pair!r}")
        result.append((pair[0], pair[1]))
    return tuple(result)


def load_specification(
    path: Union[str, Path], overrides: Optional[Dict[str, Any]] = None
) -> EncounterSpecification:
    """Read a JSON configuration file; relative paths resolve next to it."""

    config_path = Path(path)
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SpecificationError(f"{config_path}: invalid JSON ({exc})") from exc
    if overrides:
        data.update({k: v for k, v in overrides.items() if v is not None})
    return EncounterSpecification.from_mapping(data, base_dir=config_path.resolve().parent)


__all__ = [
    "ALTITUDE_TYPES",
    "SOURCE_MODEL",
    "SOURCE_LIBRARY",
    "SpecificationError",
    "TargetDistribution",
    "EnvelopeBounds",
    "AircraftSpecification",
    "EncounterSpecification",
    "normalize_altitude_layers",
    "load_specification",
]
