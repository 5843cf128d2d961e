"""Acceptance filters applied to a finalized encounter candidate."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Tuple

import numpy as np

from aircraft_sources import Draw, LibraryDraw
from collaborators import FinalizedGeometry
from specification import AircraftSpecification, EncounterSpecification, EnvelopeBounds
from trajectories import EncounterMetadata, EncounterProperties

VMD_TOLERANCE_FT = 20.0
HMD_TOLERANCE_FT = 500.0

_SERIES_PREFIX = {"ownship": "own", "intruder": "int"}


@dataclass(frozen=True)
class FinalizedCandidate:
    """A trial that passed VMD screening and geometry finalization."""

    ownship_draw: Draw
    intruder_draw: Draw
    rel_height_ft: float
    vmd_weight: float
    geometry: FinalizedGeometry
    metadata: EncounterMetadata
    properties: EncounterProperties

    def draw_for(self, role: str) -> Draw:
        return self.ownship_draw if role == "ownship" else self.intruder_draw


@dataclass(frozen=True)
class EncounterFilter:
    name: str
    reason: str
    check: Callable[[FinalizedCandidate], bool]

    def __call__(self, candidate: FinalizedCandidate) -> bool:
        return bool(self.check(candidate))


def effective_bounds(aircraft: AircraftSpecification, draw: Draw) -> EnvelopeBounds:
    """Bounds in the datum of the candidate's altitude series.

    Library trajectories are recorded above ground, so MSL bounds are shifted
    by the sampled terrain elevation. Elevation is unknown for model draws.
    """

    if isinstance(draw, LibraryDraw):
        return aircraft.envelope.referenced_to_ground(draw.elevation_ft)
    return aircraft.envelope


def within_bounds(altitude_ft: np.ndarray, speed_kts: np.ndarray, bounds: EnvelopeBounds) -> bool:
    altitude_ft = np.asarray(altitude_ft, dtype=float)
    speed_kts = np.asarray(speed_kts, dtype=float)
    return bool(
        np.all(altitude_ft <= bounds.max_alt_ft)
        and np.all(altitude_ft >= bounds.min_alt_ft)
        and np.all(speed_kts <= bounds.max_speed_kts)
        and np.all(speed_kts >= bounds.min_speed_kts)
    )


def geometry_matches(
    candidate: FinalizedCandidate,
    vmd_tolerance_ft: float = VMD_TOLERANCE_FT,
    hmd_tolerance_ft: float = HMD_TOLERANCE_FT,
) -> bool:
    """True when the realised miss distances match the finalized targets."""

    vmd_error = abs(candidate.metadata.vmd_ft - abs(candidate.geometry.vmd_ft))
    hmd_error = abs(candidate.metadata.hmd_ft - abs(candidate.geometry.hmd_ft))
    return vmd_error < vmd_tolerance_ft and hmd_error < hmd_tolerance_ft


def _series(candidate: FinalizedCandidate, role: str) -> Tuple[np.ndarray, np.ndarray]:
    prefix = _SERIES_PREFIX[role]
    props = candidate.properties
    return getattr(props, f"{prefix}_alt_ft"), getattr(props, f"{prefix}_gs_kt")


def at_cpa_filter(aircraft: AircraftSpecification) -> EncounterFilter:
    role = aircraft.role

    def check(candidate: FinalizedCandidate) -> bool:
        altitude, speed = _series(candidate, role)
        idx = candidate.properties.index_at(candidate.metadata.tca_s)
        bounds = effective_bounds(aircraft, candidate.draw_for(role))
        return within_bounds(altitude[idx], speed[idx], bounds)

    return EncounterFilter(
        name=f"{role}_at_cpa",
        reason=f"{role} altitude/airspeed constraints at CPA",
        check=check,
    )


def whole_encounter_filter(aircraft: AircraftSpecification) -> EncounterFilter:
    role = aircraft.role

    def check(candidate: FinalizedCandidate) -> bool:
        altitude, speed = _series(candidate, role)
        bounds = effective_bounds(aircraft, candidate.draw_for(role))
        return within_bounds(altitude, speed, bounds)

    return EncounterFilter(
        name=f"{role}_whole_encounter",
        reason=f"{role} altitude/airspeed constraints over the entire encounter",
        check=check,
    )


def build_filter_chain(
    spec: EncounterSpecification,
    *,
    vmd_tolerance_ft: float = VMD_TOLERANCE_FT,
    hmd_tolerance_ft: float = HMD_TOLERANCE_FT,
) -> Tuple[EncounterFilter, ...]:
    """Return the ordered post-finalization checks configured for ``spec``."""

    chain = [
        EncounterFilter(
            name="miss_distance_tolerance",
            reason="hmd/vmd mismatch",
            check=lambda c: geometry_matches(c, vmd_tolerance_ft, hmd_tolerance_ft),
        )
    ]
    for aircraft in (spec.intruder, spec.ownship):
        if aircraft.filter_at_cpa:
            chain.append(at_cpa_filter(aircraft))
        if aircraft.filter_whole_encounter:
            chain.append(whole_encounter_filter(aircraft))

    tca_min = spec.tca_s
    chain.append(
        EncounterFilter(
            name="tca_timing",
            reason="tca occurs too early",
            check=lambda c: c.metadata.tca_s >= tca_min and c.geometry.tca_s >= tca_min,
        )
    )
    return tuple(chain)


def first_failure(
    chain: Iterable[EncounterFilter], candidate: FinalizedCandidate
) -> Optional[EncounterFilter]:
    """Return the first filter rejecting ``candidate`` or ``None``."""

    for encounter_filter in chain:
        if not encounter_filter(candidate):
            return encounter_filter
    return None


__all__ = [
    "VMD_TOLERANCE_FT",
    "HMD_TOLERANCE_FT",
    "FinalizedCandidate",
    "EncounterFilter",
    "effective_bounds",
    "within_bounds",
    "geometry_matches",
    "at_cpa_filter",
    "whole_encounter_filter",
    "build_filter_chain",
    "first_failure",
]
