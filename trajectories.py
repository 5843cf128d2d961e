"""Trajectory containers, resampling and encounter property extraction.

Units follow the dynamics simulator: feet, feet per second and radians.
Every trajectory used inside the generation loop is sampled at
``INTERNAL_RATE_HZ`` regardless of where it came from.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

# ---------------------------- Constants ----------------------------

INTERNAL_RATE_HZ = 10.0
LIBRARY_RATE_HZ = 1.0
KT_TO_FTPS = 1.68781        # 1 kt = 1.68781 ft/s
NM_TO_FT = 6076.12
RATE_TOLERANCE = 1e-6

TRAJECTORY_COLUMNS = (
    "time_s",
    "north_ft",
    "east_ft",
    "up_ft",
    "speed_ftps",
    "heading_rad",
    "pitch_rad",
    "bank_rad",
    "accel_ftpss",
)
REQUIRED_COLUMNS = TRAJECTORY_COLUMNS[:4]

# Minimum change in (dh ft/s, dpsi rad/s, dv ft/s^2) that starts a new scripted event
SCRIPT_RATE_TOLERANCE = (0.05, 1e-3, 0.05)


def _gradient(values: np.ndarray, times: np.ndarray) -> np.ndarray:
    if values.size < 2:
        return np.zeros_like(values)
    return np.gradient(values, times)


def _wrap_angle(angle: np.ndarray) -> np.ndarray:
    return np.angle(np.exp(1j * np.asarray(angle, dtype=float)))


@dataclass(frozen=True)
class Trajectory:
    """Immutable fixed-rate kinematic time series for one aircraft.

    Speed, heading, pitch and acceleration are derived from the positions when
    they are not supplied; bank defaults to zero.
    """

    time_s: np.ndarray
    north_ft: np.ndarray
    east_ft: np.ndarray
    up_ft: np.ndarray
    speed_ftps: Optional[np.ndarray] = None
    heading_rad: Optional[np.ndarray] = None
    pitch_rad: Optional[np.ndarray] = None
    bank_rad: Optional[np.ndarray] = None
    accel_ftpss: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        base = {name: np.array(getattr(self, name), dtype=float) for name in REQUIRED_COLUMNS}
        n = base["time_s"].size
        if n == 0:
            raise ValueError("trajectory must contain at least one sample")
        for name, arr in base.items():
            if arr.shape != (n,):
                raise ValueError(f"{name} must be a 1-D array of length {n}")
        if n > 1 and np.any(np.diff(base["time_s"]) <= 0.0):
            raise ValueError("trajectory time must be strictly increasing")

        t = base["time_s"]
        vn = _gradient(base["north_ft"], t)
        ve = _gradient(base["east_ft"], t)
        vu = _gradient(base["up_ft"], t)
        derived = {
            "speed_ftps": np.sqrt(vn * vn + ve * ve + vu * vu),
            "heading_rad": np.arctan2(ve, vn),
            "pitch_rad": np.arctan2(vu, np.hypot(vn, ve)),
            "bank_rad": np.zeros(n),
        }
        for name in TRAJECTORY_COLUMNS[4:]:
            value = getattr(self, name)
            if value is None:
                if name == "accel_ftpss":
                    arr = _gradient(derived["speed_ftps"] if self.speed_ftps is None
                                    else np.asarray(self.speed_ftps, dtype=float), t)
                else:
                    arr = derived[name]
            else:
                arr = np.array(value, dtype=float)
                if arr.shape != (n,):
                    raise ValueError(f"{name} must be a 1-D array of length {n}")
            base[name] = arr

        for name, arr in base.items():
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    def __len__(self) -> int:
        return int(self.time_s.size)

    @property
    def sample_period_s(self) -> float:
        if len(self) < 2:
            return 1.0 / INTERNAL_RATE_HZ
        return float(np.median(np.diff(self.time_s)))

    @property
    def duration_s(self) -> float:
        return float(self.time_s[-1] - self.time_s[0])

    def index_at(self, t_s: float) -> int:
        """Sample index nearest to ``t_s`` (may fall outside the trajectory)."""

        return int(math.floor((float(t_s) - float(self.time_s[0])) / self.sample_period_s + 0.5))

    def height_at(self, t_s: float) -> float:
        """Altitude at ``t_s``; NaN when the time is outside the trajectory."""

        idx = self.index_at(t_s)
        if idx < 0 or idx >= len(self):
            return float("nan")
        return float(self.up_ft[idx])

    def has_negative_state(self) -> bool:
        return bool(np.any(self.speed_ftps < 0.0) or np.any(self.up_ft < 0.0))

    def to_frame(self, prefix: str = "") -> pd.DataFrame:
        return pd.DataFrame({f"{prefix}{name}": getattr(self, name) for name in TRAJECTORY_COLUMNS})

    @classmethod
    def from_frame(cls, df: pd.DataFrame, prefix: str = "") -> "Trajectory":
        missing = [name for name in REQUIRED_COLUMNS if f"{prefix}{name}" not in df.columns]
        if missing:
            raise ValueError(f"trajectory table is missing columns: {', '.join(missing)}")
        kwargs = {}
        for name in TRAJECTORY_COLUMNS:
            column = f"{prefix}{name}"
            if column in df.columns:
                kwargs[name] = df[column].to_numpy(dtype=float)
        return cls(**kwargs)


def upsample_trajectory(
    trajectory: Trajectory,
    rate_hz: float = INTERNAL_RATE_HZ,
    source_rate_hz: float = LIBRARY_RATE_HZ,
) -> Trajectory:
    """Linearly resample a ``source_rate_hz`` trajectory to ``rate_hz``.

    The source must be sampled at exactly ``source_rate_hz``; anything else is
    rejected rather than silently resampled.
    """

    times = trajectory.time_s
    if len(trajectory) > 1:
        steps = np.diff(times)
        if not np.allclose(steps, 1.0 / source_rate_hz, atol=1e-6):
            raise ValueError(
                f"expected a {source_rate_hz:g} Hz trajectory, found sample periods "
                f"between {steps.min():g} and {steps.max():g} s"
            )

    n_out = int(round(trajectory.duration_s * rate_hz)) + 1
    new_times = times[0] + np.arange(n_out, dtype=float) / rate_hz

    def interp(values: np.ndarray) -> np.ndarray:
        return np.interp(new_times, times, values)

    return Trajectory(
        time_s=new_times,
        north_ft=interp(trajectory.north_ft),
        east_ft=interp(trajectory.east_ft),
        up_ft=interp(trajectory.up_ft),
        speed_ftps=interp(trajectory.speed_ftps),
        heading_rad=_wrap_angle(interp(np.unwrap(trajectory.heading_rad))),
        pitch_rad=interp(trajectory.pitch_rad),
        bank_rad=interp(trajectory.bank_rad),
        accel_ftpss=interp(trajectory.accel_ftpss),
    )


# ------------------------- Encounter properties -------------------------


@dataclass(frozen=True)
class EncounterMetadata:
    encounter_id: Optional[int]
    vmd_ft: float
    hmd_ft: float
    tca_s: float
    runtime_s: float
    int_alt_ft: np.ndarray
    int_gs_kt: np.ndarray
    series_start_s: float = 0.0


@dataclass(frozen=True)
class EncounterProperties:
    """Per-second altitude and ground-speed series for both aircraft."""

    time_s: np.ndarray
    own_alt_ft: np.ndarray
    own_gs_kt: np.ndarray
    int_alt_ft: np.ndarray
    int_gs_kt: np.ndarray

    def index_at(self, t_s: float) -> int:
        idx = int(math.floor(float(t_s) + 0.5)) - int(round(float(self.time_s[0])))
        return int(np.clip(idx, 0, self.time_s.size - 1))


def ground_speed_kt(trajectory: Trajectory) -> np.ndarray:
    vn = _gradient(trajectory.north_ft, trajectory.time_s)
    ve = _gradient(trajectory.east_ft, trajectory.time_s)
    return np.hypot(vn, ve) / KT_TO_FTPS


def compute_encounter_properties(
    ownship: Trajectory,
    intruder: Trajectory,
    geometry: object = None,
) -> Tuple[EncounterMetadata, EncounterProperties]:
    """Return miss distances at closest approach plus per-second series.

    The time of closest approach is the sample with the smallest 3-D
    separation over the common time span of both trajectories.
    """

    n = min(len(ownship), len(intruder))
    times = ownship.time_s[:n]
    dn = intruder.north_ft[:n] - ownship.north_ft[:n]
    de = intruder.east_ft[:n] - ownship.east_ft[:n]
    dh = intruder.up_ft[:n] - ownship.up_ft[:n]
    horizontal = np.hypot(dn, de)
    separation = np.sqrt(horizontal * horizontal + dh * dh)
    idx = int(np.nanargmin(separation))

    start = math.ceil(float(times[0]) - RATE_TOLERANCE)
    stop = math.floor(float(times[-1]) + RATE_TOLERANCE)
    seconds = np.arange(start, stop + 1, dtype=float)
    if seconds.size == 0:
        seconds = np.array([float(times[0])])

    def per_second(values: np.ndarray) -> np.ndarray:
        return np.interp(seconds, times, values[:n])

    properties = EncounterProperties(
        time_s=seconds,
        own_alt_ft=per_second(ownship.up_ft),
        own_gs_kt=per_second(ground_speed_kt(ownship)),
        int_alt_ft=per_second(intruder.up_ft),
        int_gs_kt=per_second(ground_speed_kt(intruder)),
    )
    metadata = EncounterMetadata(
        encounter_id=getattr(geometry, "encounter_id", None),
        vmd_ft=float(abs(dh[idx])),
        hmd_ft=float(horizontal[idx]),
        tca_s=float(times[idx]),
        runtime_s=float(times[-1] - times[0]),
        int_alt_ft=properties.int_alt_ft,
        int_gs_kt=properties.int_gs_kt,
        series_start_s=float(properties.time_s[0]),
    )
    return metadata, properties


# --------------------------- Scripted events ---------------------------


@dataclass(frozen=True)
class ControlEventSequence:
    """Time-ordered ``(t, dh, dpsi, dv)`` control rows in simulator units."""

    rows: np.ndarray = field(default_factory=lambda: np.zeros((0, 4)))

    COLUMNS = ("t_s", "dh_ftps", "dpsi_radps", "dv_ftpss")

    def __post_init__(self) -> None:
        rows = np.array(self.rows, dtype=float).reshape(-1, 4)
        if rows.shape[0] > 1 and np.any(np.diff(rows[:, 0]) <= 0.0):
            raise ValueError("control events must be strictly time ordered")
        rows.setflags(write=False)
        object.__setattr__(self, "rows", rows)

    def __len__(self) -> int:
        return int(self.rows.shape[0])

    @property
    def times_s(self) -> np.ndarray:
        return self.rows[:, 0]

    def to_list(self) -> list:
        return [[float(x) for x in row] for row in self.rows]


@dataclass(frozen=True)
class ScriptedAircraft:
    initial_conditions: np.ndarray
    altitude_layer: int
    controls: ControlEventSequence

    def to_dict(self) -> Dict[str, object]:
        return {
            "initial_conditions": [float(x) for x in self.initial_conditions],
            "altitude_layer": int(self.altitude_layer),
            "controls": self.controls.to_list(),
        }


@dataclass(frozen=True)
class ScriptedEncounter:
    encounter_id: int
    aircraft: Tuple[ScriptedAircraft, ScriptedAircraft]

    def to_dict(self) -> Dict[str, object]:
        return {
            "encounter_id": int(self.encounter_id),
            "aircraft": [ac.to_dict() for ac in self.aircraft],
        }


def altitude_layer_of(altitude_ft: float, layers: Sequence[Sequence[float]]) -> int:
    """1-based index of the altitude layer containing ``altitude_ft``, 0 if none."""

    for idx, (lo, hi) in enumerate(layers, start=1):
        if lo <= altitude_ft < hi:
            return idx
    return 0


def _script_aircraft(
    trajectory: Trajectory,
    layers: Sequence[Sequence[float]],
    tolerance: Sequence[float],
) -> ScriptedAircraft:
    t0 = float(trajectory.time_s[0])
    initial = np.array(
        [
            0.0,
            trajectory.speed_ftps[0],
            trajectory.north_ft[0],
            trajectory.east_ft[0],
            trajectory.up_ft[0],
            trajectory.heading_rad[0],
            trajectory.pitch_rad[0],
            trajectory.bank_rad[0],
            trajectory.accel_ftpss[0],
        ],
        dtype=float,
    )

    seconds = t0 + np.arange(int(math.floor(trajectory.duration_s + RATE_TOLERANCE)) + 1, dtype=float)
    up = np.interp(seconds, trajectory.time_s, trajectory.up_ft)
    heading = np.interp(seconds, trajectory.time_s, np.unwrap(trajectory.heading_rad))
    speed = np.interp(seconds, trajectory.time_s, trajectory.speed_ftps)
    rates = np.column_stack(
        [_gradient(up, seconds), _gradient(heading, seconds), _gradient(speed, seconds)]
    )

    tol = np.asarray(tolerance, dtype=float)
    rows = [np.concatenate([[0.0], rates[0]])]
    for k in range(1, seconds.size):
        if np.any(np.abs(rates[k] - rows[-1][1:]) > tol):
            rows.append(np.concatenate([[seconds[k] - t0], rates[k]]))

    return ScriptedAircraft(
        initial_conditions=initial,
        altitude_layer=altitude_layer_of(float(trajectory.up_ft[0]), layers),
        controls=ControlEventSequence(np.vstack(rows)),
    )


def trajectory_to_script(
    ownship: Trajectory,
    intruder: Trajectory,
    encounter_id: int,
    layers: Sequence[Sequence[float]],
    tolerance: Sequence[float] = SCRIPT_RATE_TOLERANCE,
) -> ScriptedEncounter:
    """Describe an accepted trajectory pair as initial conditions plus events."""

    return ScriptedEncounter(
        encounter_id=int(encounter_id),
        aircraft=(
            _script_aircraft(ownship, layers, tolerance),
            _script_aircraft(intruder, layers, tolerance),
        ),
    )


__all__ = [
    "INTERNAL_RATE_HZ",
    "LIBRARY_RATE_HZ",
    "KT_TO_FTPS",
    "NM_TO_FT",
    "TRAJECTORY_COLUMNS",
    "Trajectory",
    "upsample_trajectory",
    "EncounterMetadata",
    "EncounterProperties",
    "ground_speed_kt",
    "compute_encounter_properties",
    "ControlEventSequence",
    "ScriptedAircraft",
    "ScriptedEncounter",
    "altitude_layer_of",
    "trajectory_to_script",
]
