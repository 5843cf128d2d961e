"""CSV-backed catalogue of recorded 1 Hz trajectories."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Union

import numpy as np
import pandas as pd

from specification import EnvelopeBounds
from trajectories import Trajectory

METADATA_COLUMNS = (
    "filename",
    "duration_s",
    "min_alt_ft",
    "max_alt_ft",
    "min_speed_kts",
    "max_speed_kts",
    "elevation_ft",
)


class LibraryExhaustedError(LookupError):
    """No catalogue entry satisfies the sampling filters."""


@dataclass(frozen=True)
class LibraryFilters:
    bounds: EnvelopeBounds
    apply_filter: bool = True
    sample_by_duration: bool = False


def filter_library_metadata(
    metadata: pd.DataFrame,
    filters: LibraryFilters,
    duration_s: float,
) -> pd.DataFrame:
    """Return the catalogue rows eligible under ``filters``.

    Metadata altitudes are above ground level; they are shifted by the
    recorded terrain elevation before comparison with MSL bounds.
    """

    if metadata.empty:
        return metadata.iloc[0:0]

    mask = pd.Series(True, index=metadata.index)
    if filters.apply_filter:
        bounds = filters.bounds
        elevation = metadata["elevation_ft"].fillna(0.0)
        lower = metadata["min_alt_ft"] + (elevation if bounds.min_alt_type == "MSL" else 0.0)
        upper = metadata["max_alt_ft"] + (elevation if bounds.max_alt_type == "MSL" else 0.0)
        mask &= lower >= bounds.min_alt_ft
        mask &= upper <= bounds.max_alt_ft
        mask &= metadata["min_speed_kts"] >= bounds.min_speed_kts
        mask &= metadata["max_speed_kts"] <= bounds.max_speed_kts
    if filters.sample_by_duration:
        mask &= metadata["duration_s"] >= duration_s

    return metadata.loc[mask]


@dataclass
class CsvTrajectoryLibrary:
    metadata: pd.DataFrame
    trajectory_dir: Path

    def __post_init__(self) -> None:
        missing = [col for col in METADATA_COLUMNS if col not in self.metadata.columns]
        if missing:
            raise ValueError(f"trajectory metadata is missing columns: {', '.join(missing)}")
        self.trajectory_dir = Path(self.trajectory_dir)

    @classmethod
    def from_files(
        cls, trajectory_datafile: Union[str, Path], trajectory_dir: Union[str, Path]
    ) -> "CsvTrajectoryLibrary":
        return cls(metadata=pd.read_csv(trajectory_datafile), trajectory_dir=Path(trajectory_dir))

    def load(self, filename: str, duration_s: float) -> Trajectory:
        df = pd.read_csv(self.trajectory_dir / filename)
        df = df.sort_values("time_s")
        df = df.loc[df["time_s"] - df["time_s"].iloc[0] <= duration_s + 1e-9]
        return Trajectory.from_frame(df.reset_index(drop=True))

    def require_eligible(self, filters: LibraryFilters, duration_s: float) -> pd.DataFrame:
        eligible = filter_library_metadata(self.metadata, filters, duration_s)
        if eligible.empty:
            raise LibraryExhaustedError(
                f"no trajectory in {self.trajectory_dir} satisfies the sampling filters"
            )
        return eligible

    def sample(
        self,
        rng: np.random.Generator,
        filters: LibraryFilters,
        duration_s: float,
    ) -> Tuple[Trajectory, float]:
        eligible = self.require_eligible(filters, duration_s)
        row = eligible.iloc[int(rng.integers(len(eligible)))]
        elevation = row["elevation_ft"]
        elevation_ft = 0.0 if pd.isna(elevation) else float(elevation)
        return self.load(str(row["filename"]), duration_s), elevation_ft


__all__ = [
    "METADATA_COLUMNS",
    "LibraryExhaustedError",
    "LibraryFilters",
    "filter_library_metadata",
    "CsvTrajectoryLibrary",
]
