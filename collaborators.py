"""Interfaces of the external components driven by the generation loop.

The motion model, dynamics simulator and geometry finalizer are supplied by
the user and named in the run configuration as ``"package.module:attribute"``
references.  The referenced attribute is called with the configured options
to build the collaborator.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from distributions import DistributionBinTable
from trajectories import (
    ControlEventSequence,
    EncounterMetadata,
    EncounterProperties,
    Trajectory,
    compute_encounter_properties,
)


class CollaboratorError(ValueError):
    """Raised when a collaborator reference cannot be resolved."""


class MotionModel(Protocol):
    def sample(
        self,
        rng: np.random.Generator,
        sample_time_s: float,
        initial_hint: Sequence[Optional[int]],
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``(initial_state, events)`` for one aircraft."""


class TrajectoryLibrary(Protocol):
    def sample(
        self,
        rng: np.random.Generator,
        filters: Any,
        duration_s: float,
    ) -> Tuple[Trajectory, float]:
        """Return one 1 Hz trajectory and its terrain elevation (ft)."""


class DynamicsSimulator(Protocol):
    def simulate(
        self,
        initial1: np.ndarray,
        controls1: ControlEventSequence,
        initial2: np.ndarray,
        controls2: ControlEventSequence,
        sample_time_s: float,
    ) -> Tuple[Trajectory, Trajectory]:
        """Integrate both aircraft and return 10 Hz trajectories."""


@dataclass(frozen=True)
class GeometryRequest:
    """Everything the geometry finalizer needs besides the two trajectories."""

    encounter_id: int
    tca_s: float
    sample_time_s: float
    own_height_ft: float
    int_height_ft: float
    max_hmd_ft: float
    min_vertical_sep_ft: float
    min_horizontal_sep_ft: float
    vmd_weight: float
    hmd_target: DistributionBinTable


@dataclass(frozen=True)
class FinalizedGeometry:
    ownship: Trajectory
    intruder: Trajectory
    encounter_id: int
    hmd_ft: float
    tca_s: float
    own_height_at_tca_ft: float
    int_height_at_tca_ft: float
    failed: bool = False

    @property
    def vmd_ft(self) -> float:
        """Signed vertical miss distance (intruder minus ownship)."""

        return float(self.int_height_at_tca_ft - self.own_height_at_tca_ft)


class GeometryFinalizer(Protocol):
    def finalize(
        self,
        ownship: Trajectory,
        intruder: Trajectory,
        request: GeometryRequest,
    ) -> FinalizedGeometry:
        """Place both trajectories in a common frame meeting the targets."""


PropertiesExtractor = Callable[
    [Trajectory, Trajectory, FinalizedGeometry],
    Tuple[EncounterMetadata, EncounterProperties],
]


@dataclass(frozen=True)
class CollaboratorReference:
    target: str
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, value: Union[str, Mapping[str, Any], "CollaboratorReference"]) -> "CollaboratorReference":
        if isinstance(value, CollaboratorReference):
            return value
        if isinstance(value, str):
            return cls(target=value.strip())
        if isinstance(value, Mapping):
            target = value.get("factory")
            if not isinstance(target, str):
                raise CollaboratorError("collaborator mappings require a 'factory' string")
            options = value.get("options") or {}
            if not isinstance(options, Mapping):
                raise CollaboratorError("collaborator 'options' must be a mapping")
            return cls(target=target.strip(), options=dict(options))
        raise CollaboratorError(f"unsupported collaborator reference: {value!r}")

    def resolve(self) -> Any:
        """Import and return the referenced attribute."""

        module_name, sep, attr_path = self.target.partition(":")
        if not sep or not module_name or not attr_path:
            raise CollaboratorError(
                f"collaborator reference {self.target!r} must look like 'package.module:attribute'"
            )
        try:
            obj: Any = importlib.import_module(module_name)
        except ImportError as exc:
            raise CollaboratorError(f"cannot import {module_name!r}: {exc}") from exc
        for part in attr_path.split("."):
            try:
                obj = getattr(obj, part)
            except AttributeError as exc:
                raise CollaboratorError(f"{module_name!r} has no attribute {attr_path!r}") from exc
        return obj

    def build(self, **extra: Any) -> Any:
        factory = self.resolve()
        if not callable(factory):
            raise CollaboratorError(f"{self.target!r} is not callable")
        return factory(**{**self.options, **extra})


@dataclass
class Collaborators:
    """Concrete collaborators for one run."""

    finalizer: GeometryFinalizer
    dynamics: Optional[DynamicsSimulator] = None
    ownship_model: Optional[MotionModel] = None
    intruder_model: Optional[MotionModel] = None
    ownship_library: Optional[TrajectoryLibrary] = None
    intruder_library: Optional[TrajectoryLibrary] = None
    extract_properties: PropertiesExtractor = compute_encounter_properties


__all__ = [
    "CollaboratorError",
    "MotionModel",
    "TrajectoryLibrary",
    "DynamicsSimulator",
    "GeometryRequest",
    "FinalizedGeometry",
    "GeometryFinalizer",
    "PropertiesExtractor",
    "CollaboratorReference",
    "Collaborators",
]
