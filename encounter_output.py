"""Accepted-encounter records and their persistence."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from trajectories import EncounterMetadata, ScriptedEncounter, Trajectory

METADATA_FILENAME = "metadata.csv"
BENCHMARK_FILENAME = "benchmark.csv"
SCRIPTED_FILENAME = "scripted_encounters.json"
OWN_PREFIX = "own_"
INT_PREFIX = "int_"


def encode_series(**series: Sequence[float]) -> str:
    """Serialise named numeric series for storage in a CSV cell."""

    payload = {name: [float(x) for x in np.asarray(values, dtype=float)] for name, values in series.items()}
    return json.dumps(payload, separators=(",", ":"))


def decode_series(value: object) -> Optional[Dict[str, np.ndarray]]:
    """Decode series stored by :func:`encode_series`; ``None`` if unreadable."""

    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, (bytes, bytearray)):
        try:
            value = value.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return None
    elif isinstance(value, dict):
        payload = value
    else:
        return None
    if not isinstance(payload, dict):
        return None

    result: Dict[str, np.ndarray] = {}
    for key, values in payload.items():
        try:
            result[key] = np.asarray(values, dtype=float)
        except (TypeError, ValueError):
            continue
    return result


@dataclass(frozen=True)
class EncounterRecord:
    """Persisted metadata of one accepted encounter."""

    encounter_id: int
    vmd_ft: float
    hmd_ft: float
    tca_s: float
    runtime_s: float
    int_alt_ft: np.ndarray
    int_gs_kt: np.ndarray
    vmd_weight: float
    seed: int
    trials: int
    job_time_s: float
    series_start_s: float = 0.0

    @classmethod
    def from_metadata(
        cls,
        metadata: EncounterMetadata,
        *,
        encounter_id: int,
        vmd_weight: float,
        seed: int,
        trials: int,
        job_time_s: float,
    ) -> "EncounterRecord":
        return cls(
            encounter_id=int(encounter_id),
            vmd_ft=float(metadata.vmd_ft),
            hmd_ft=float(metadata.hmd_ft),
            tca_s=float(metadata.tca_s),
            runtime_s=float(metadata.runtime_s),
            int_alt_ft=np.array(metadata.int_alt_ft, dtype=float),
            int_gs_kt=np.array(metadata.int_gs_kt, dtype=float),
            vmd_weight=float(vmd_weight),
            seed=int(seed),
            trials=int(trials),
            job_time_s=float(job_time_s),
            series_start_s=float(metadata.series_start_s),
        )

    def to_row(self) -> Dict[str, object]:
        return dict(
            encounter_id=self.encounter_id,
            vmd_ft=self.vmd_ft,
            hmd_ft=self.hmd_ft,
            tca_s=self.tca_s,
            runtime_s=self.runtime_s,
            vmd_weight=self.vmd_weight,
            seed=self.seed,
            trials=self.trials,
            job_time_s=self.job_time_s,
            series_json=encode_series(
                time_s=self.series_start_s + np.arange(self.int_alt_ft.size, dtype=float),
                int_alt_ft=self.int_alt_ft,
                int_gs_kt=self.int_gs_kt,
            ),
        )


@dataclass
class EncounterSet:
    """Everything produced by one run, in request order."""

    encounter_ids: List[int] = field(default_factory=list)
    records: List[EncounterRecord] = field(default_factory=list)
    trial_counts: List[int] = field(default_factory=list)
    job_times_s: List[float] = field(default_factory=list)
    seeds: List[int] = field(default_factory=list)
    scripted: List[ScriptedEncounter] = field(default_factory=list)
    failed_ids: List[int] = field(default_factory=list)
    final_seed: int = 0

    def metadata_frame(self) -> pd.DataFrame:
        columns = list(EncounterRecord.__dataclass_fields__)
        columns = [c for c in columns if c not in ("int_alt_ft", "int_gs_kt", "series_start_s")] + ["series_json"]
        return pd.DataFrame([rec.to_row() for rec in self.records], columns=columns)

    def benchmark_frame(self) -> pd.DataFrame:
        failed = set(self.failed_ids)
        return pd.DataFrame(
            {
                "encounter_id": self.encounter_ids,
                "trials": self.trial_counts,
                "job_time_s": self.job_times_s,
                "seed": self.seeds,
                "accepted": [eid not in failed for eid in self.encounter_ids],
            }
        )


def write_trajectory_pair(
    ownship: Trajectory,
    intruder: Trajectory,
    encounter_id: int,
    directory: Union[str, Path],
) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"trajectory_{int(encounter_id)}.csv"
    frame = pd.concat([ownship.to_frame(OWN_PREFIX), intruder.to_frame(INT_PREFIX)], axis=1)
    frame.to_csv(path, index=False)
    return path


def read_trajectory_pair(
    directory: Union[str, Path], encounter_id: int
) -> Tuple[Trajectory, Trajectory]:
    frame = pd.read_csv(Path(directory) / f"trajectory_{int(encounter_id)}.csv")
    own = frame.dropna(subset=[f"{OWN_PREFIX}time_s"])
    intr = frame.dropna(subset=[f"{INT_PREFIX}time_s"])
    return Trajectory.from_frame(own, OWN_PREFIX), Trajectory.from_frame(intr, INT_PREFIX)


class EncounterSetAssembler:
    """Collects accepted encounters and streams trajectory files to disk."""

    def __init__(
        self,
        directory: Optional[Union[str, Path]] = None,
        write_trajectories: bool = False,
    ) -> None:
        if write_trajectories and directory is None:
            raise ValueError("an output directory is required to write trajectories")
        self.directory = None if directory is None else Path(directory)
        self.write_trajectories = write_trajectories
        self._result = EncounterSet()

    def accept(
        self,
        record: EncounterRecord,
        ownship: Trajectory,
        intruder: Trajectory,
        script: Optional[ScriptedEncounter] = None,
    ) -> None:
        result = self._result
        result.encounter_ids.append(record.encounter_id)
        result.records.append(record)
        result.trial_counts.append(record.trials)
        result.job_times_s.append(record.job_time_s)
        result.seeds.append(record.seed)
        if script is not None:
            result.scripted.append(script)
        if self.write_trajectories:
            write_trajectory_pair(ownship, intruder, record.encounter_id, self.directory)

    def fail(self, encounter_id: int, trials: int, job_time_s: float, seed: int) -> None:
        result = self._result
        result.encounter_ids.append(int(encounter_id))
        result.trial_counts.append(int(trials))
        result.job_times_s.append(float(job_time_s))
        result.seeds.append(int(seed))
        result.failed_ids.append(int(encounter_id))

    def finish(self, final_seed: int) -> EncounterSet:
        self._result.final_seed = int(final_seed)
        return self._result


def write_encounter_set(result: EncounterSet, directory: Union[str, Path]) -> Dict[str, Path]:
    """Write metadata, benchmark and (if any) scripted encounters."""

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    paths = {
        "metadata": directory / METADATA_FILENAME,
        "benchmark": directory / BENCHMARK_FILENAME,
    }
    result.metadata_frame().to_csv(paths["metadata"], index=False)
    result.benchmark_frame().to_csv(paths["benchmark"], index=False)
    if result.scripted:
        paths["scripted"] = directory / SCRIPTED_FILENAME
        payload = {
            "final_seed": result.final_seed,
            "encounters": [script.to_dict() for script in result.scripted],
        }
        paths["scripted"].write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return paths


def read_metadata(directory: Union[str, Path]) -> pd.DataFrame:
    return pd.read_csv(Path(directory) / METADATA_FILENAME)


def read_benchmark(directory: Union[str, Path]) -> pd.DataFrame:
    return pd.read_csv(Path(directory) / BENCHMARK_FILENAME)


__all__ = [
    "METADATA_FILENAME",
    "BENCHMARK_FILENAME",
    "SCRIPTED_FILENAME",
    "encode_series",
    "decode_series",
    "EncounterRecord",
    "EncounterSet",
    "EncounterSetAssembler",
    "write_trajectory_pair",
    "read_trajectory_pair",
    "write_encounter_set",
    "read_metadata",
    "read_benchmark",
]
