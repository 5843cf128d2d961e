"""Per-aircraft candidate draws from a motion model or a trajectory library.

Each aircraft role is served by exactly one source for a whole run:

* :class:`ModelSource` samples an initial state and an event list from a
  probabilistic motion model and prepares them for the dynamics simulator.
* :class:`LibrarySource` draws a recorded trajectory and resamples it to the
  internal 10 Hz rate.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from collaborators import MotionModel, TrajectoryLibrary
from specification import AircraftSpecification, EncounterSpecification
from trajectories import KT_TO_FTPS, ControlEventSequence, Trajectory, upsample_trajectory
from trajectory_library import LibraryFilters

logger = logging.getLogger(__name__)

# ---------------------------- Constants ----------------------------

G_FTPSS = 32.2
FPM_PER_FTPS = 60.0
ALTITUDE_QUANTUM_FT = 500.0

# Initial state layout: region, airspace class, altitude layer, airspeed (kt),
# airspeed rate (kt/s), vertical rate (ft/min), turn rate (deg/s)
INITIAL_STATE_SIZE = 7
IDX_LAYER = 2
IDX_AIRSPEED = 3
IDX_AIRSPEED_RATE = 4
IDX_VERTICAL_RATE = 5
IDX_TURN_RATE = 6
CONTROL_VARIABLES = (IDX_AIRSPEED_RATE, IDX_VERTICAL_RATE, IDX_TURN_RATE)

DEFAULT_REGION = 1          # CONUS
DEFAULT_AIRSPACE_CLASS = 4  # "other"


def round500(altitude_ft: float) -> float:
    """Round to a 500 ft multiple; remainders above 250 ft round up."""

    base = math.floor(altitude_ft / ALTITUDE_QUANTUM_FT)
    remainder = altitude_ft % ALTITUDE_QUANTUM_FT
    return ALTITUDE_QUANTUM_FT * (base + (1 if remainder > ALTITUDE_QUANTUM_FT / 2 else 0))


def convert_initial_units(initial_state: Sequence[float]) -> np.ndarray:
    """Convert a raw initial state to ft/s, ft/s^2 and rad/s."""

    raw = np.asarray(initial_state, dtype=float)
    out = raw.copy()
    out[IDX_AIRSPEED] = raw[IDX_AIRSPEED] * KT_TO_FTPS
    out[IDX_AIRSPEED_RATE] = raw[IDX_AIRSPEED_RATE] * KT_TO_FTPS
    out[IDX_VERTICAL_RATE] = raw[IDX_VERTICAL_RATE] / FPM_PER_FTPS
    out[IDX_TURN_RATE] = np.deg2rad(raw[IDX_TURN_RATE])
    return out


def build_control_events(
    initial_state: Sequence[float],
    events: np.ndarray,
    variables: Sequence[int] = CONTROL_VARIABLES,
) -> ControlEventSequence:
    """Turn ``(delta_t, variable, value)`` events into simulator control rows.

    Variable indices in ``events`` are 1-based; 0 marks a pure time advance.
    Each row holds the controls in force from its start time until the next
    row. Events with zero elapsed time only update the state.
    """

    state = np.array(initial_state, dtype=float)
    rows = []
    t = 0.0
    for delta_t, variable, value in np.asarray(events, dtype=float).reshape(-1, 3):
        if delta_t > 0.0:
            rows.append([t, *state[list(variables)]])
            t += delta_t
        if variable > 0:
            state[int(variable) - 1] = value

    controls = np.asarray(rows, dtype=float).reshape(-1, 1 + len(variables))
    # [t, dv, dh, dpsi] -> [t, dh, dpsi, dv]
    controls = controls[:, [0, 2, 3, 1]]
    controls[:, 1] = controls[:, 1] / FPM_PER_FTPS
    controls[:, 2] = np.deg2rad(controls[:, 2])
    controls[:, 3] = controls[:, 3] * KT_TO_FTPS
    return ControlEventSequence(controls)


def vertical_rate_feasible(initial_state: Sequence[float]) -> bool:
    """True when the vertical rate does not exceed the airspeed."""

    return abs(float(initial_state[IDX_VERTICAL_RATE])) / FPM_PER_FTPS <= float(
        initial_state[IDX_AIRSPEED]
    ) * KT_TO_FTPS


def sample_altitude(
    rng: np.random.Generator,
    altitude_layers: Sequence[Sequence[float]],
    layer: float,
    level: bool,
    quantize: bool,
) -> float:
    """Uniform altitude within a 1-based altitude layer."""

    idx = int(layer) - 1
    if not 0 <= idx < len(altitude_layers):
        raise ValueError(
            f"motion model sampled altitude layer {int(layer)} but only "
            f"{len(altitude_layers)} layers are configured"
        )
    lo, hi = altitude_layers[idx]
    altitude = float(lo + rng.random() * (hi - lo))
    if level and quantize:
        altitude = round500(altitude)
    return altitude


# ------------------------- Sampling parameters -------------------------


class SamplingParameters(Protocol):
    def initial_hint(self) -> Tuple[Optional[int], ...]:
        """Fixed values for initial-state variables, ``None`` where free."""

    def configure_model(self, model: MotionModel) -> MotionModel:
        """Return the model with any customised structure or statistics."""


class DefaultSamplingParameters:
    """Pins the geographic region and airspace class of the default model."""

    region = DEFAULT_REGION
    airspace_class = DEFAULT_AIRSPACE_CLASS

    def initial_hint(self) -> Tuple[Optional[int], ...]:
        return (self.region, self.airspace_class) + (None,) * (INITIAL_STATE_SIZE - 2)

    def configure_model(self, model: MotionModel) -> MotionModel:
        return model


class CustomSamplingParameters:
    """Base for user-supplied model overrides; leaves every variable free."""

    def initial_hint(self) -> Tuple[Optional[int], ...]:
        return (None,) * INITIAL_STATE_SIZE

    def configure_model(self, model: MotionModel) -> MotionModel:
        return model


# ------------------------------- Draws -------------------------------


@dataclass(frozen=True)
class KinematicDraw:
    """Motion-model draw ready for the dynamics simulator."""

    role: str
    initial_state: np.ndarray
    events: np.ndarray
    altitude_ft: float
    converted_state: np.ndarray
    controls: ControlEventSequence

    @property
    def initial_conditions(self) -> np.ndarray:
        """``[t, v, n, e, h, heading, pitch, bank, a]`` in simulator units."""

        v = float(self.converted_state[IDX_AIRSPEED])
        hdot = float(self.converted_state[IDX_VERTICAL_RATE])
        psidot = float(self.converted_state[IDX_TURN_RATE])
        pitch = math.asin(float(np.clip(hdot / v, -1.0, 1.0))) if v > 0.0 else 0.0
        bank = math.atan(v * psidot / G_FTPSS)
        return np.array(
            [0.0, v, 0.0, 0.0, self.altitude_ft, 0.0, pitch, bank,
             float(self.converted_state[IDX_AIRSPEED_RATE])],
            dtype=float,
        )


@dataclass(frozen=True)
class LibraryDraw:
    role: str
    trajectory: Trajectory
    elevation_ft: float


Draw = Union[KinematicDraw, LibraryDraw]


@dataclass
class ModelSource:
    role: str
    model: MotionModel
    altitude_layers: Sequence[Sequence[float]]
    sample_time_s: float
    quantize_altitude: bool = False
    parameters: SamplingParameters = field(default_factory=DefaultSamplingParameters)

    def __post_init__(self) -> None:
        self.model = self.parameters.configure_model(self.model)

    def draw(self, rng: np.random.Generator) -> KinematicDraw:
        hint = tuple(self.parameters.initial_hint())
        while True:
            initial, events = self.model.sample(rng, self.sample_time_s, hint)
            initial = np.asarray(initial, dtype=float).ravel()
            if initial.size != INITIAL_STATE_SIZE:
                raise ValueError(
                    f"motion model returned {initial.size} initial variables, "
                    f"expected {INITIAL_STATE_SIZE}"
                )
            altitude = sample_altitude(
                rng,
                self.altitude_layers,
                initial[IDX_LAYER],
                level=initial[IDX_VERTICAL_RATE] == 0.0,
                quantize=self.quantize_altitude,
            )
            if vertical_rate_feasible(initial):
                break
            logger.debug("%s: redraw, vertical rate exceeds airspeed", self.role)

        events = np.asarray(events, dtype=float).reshape(-1, 3)
        return KinematicDraw(
            role=self.role,
            initial_state=initial,
            events=events,
            altitude_ft=altitude,
            converted_state=convert_initial_units(initial),
            controls=build_control_events(initial, events),
        )


@dataclass
class LibrarySource:
    role: str
    library: TrajectoryLibrary
    filters: LibraryFilters
    sample_time_s: float

    def draw(self, rng: np.random.Generator) -> LibraryDraw:
        trajectory, elevation_ft = self.library.sample(rng, self.filters, library_duration_s(self.sample_time_s))
        return LibraryDraw(
            role=self.role,
            trajectory=upsample_trajectory(trajectory),
            elevation_ft=float(elevation_ft),
        )


def library_duration_s(sample_time_s: float) -> float:
    # One extra second so the 10 Hz resample covers the full sample time.
    return sample_time_s + 1.0


def library_filters(aircraft: AircraftSpecification) -> LibraryFilters:
    return LibraryFilters(
        bounds=aircraft.envelope,
        apply_filter=aircraft.apply_filter_sampling,
        sample_by_duration=aircraft.sample_by_duration,
    )


AircraftSource = Union[ModelSource, LibrarySource]


def build_aircraft_source(
    aircraft: AircraftSpecification,
    spec: EncounterSpecification,
    model: Optional[MotionModel] = None,
    library: Optional[TrajectoryLibrary] = None,
) -> AircraftSource:
    """Select the source variant configured for ``aircraft``."""

    if aircraft.samples_trajectory:
        if library is None:
            raise ValueError(f"{aircraft.role} samples trajectories but no library was supplied")
        return LibrarySource(
            role=aircraft.role,
            library=library,
            filters=library_filters(aircraft),
            sample_time_s=spec.sample_time_s,
        )

    if model is None:
        raise ValueError(f"{aircraft.role} samples a motion model but none was supplied")
    if aircraft.sampling_parameters is not None:
        parameters = aircraft.sampling_parameters.build()
    else:
        parameters = DefaultSamplingParameters()
    return ModelSource(
        role=aircraft.role,
        model=model,
        altitude_layers=spec.altitude_layers,
        sample_time_s=spec.sample_time_s,
        quantize_altitude=aircraft.quantize_alt_500,
        parameters=parameters,
    )


__all__ = [
    "G_FTPSS",
    "ALTITUDE_QUANTUM_FT",
    "CONTROL_VARIABLES",
    "DEFAULT_REGION",
    "DEFAULT_AIRSPACE_CLASS",
    "round500",
    "convert_initial_units",
    "build_control_events",
    "vertical_rate_feasible",
    "sample_altitude",
    "SamplingParameters",
    "DefaultSamplingParameters",
    "CustomSamplingParameters",
    "KinematicDraw",
    "LibraryDraw",
    "Draw",
    "ModelSource",
    "LibrarySource",
    "library_duration_s",
    "library_filters",
    "AircraftSource",
    "build_aircraft_source",
]
