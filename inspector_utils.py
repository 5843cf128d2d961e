"""Utilities for the Streamlit encounter-set viewer and the PDF run report."""

from __future__ import annotations

from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

from encounter_output import decode_series
from specification import TargetDistribution


def get_record_series(row: pd.Series, key: str) -> Optional[np.ndarray]:
    """Return a stored per-second series for a metadata row.

    Parameters
    ----------
    row:
        A pandas Series read from ``metadata.csv``.
    key:
        Series name inside the ``series_json`` column, e.g. ``"int_alt_ft"``.

    Returns
    -------
    Optional[np.ndarray]
        The series as a float array. Returns ``None`` when the column is
        absent, the cell is empty or the series was not stored.
    """

    if "series_json" not in row.index:
        return None

    series = decode_series(row["series_json"])
    if series is None or key not in series:
        return None

    return series[key]


def get_series_times(row: pd.Series, size: int) -> np.ndarray:
    """Time stamps of the per-second series; rows without them start at 0 s."""

    times = get_record_series(row, "time_s")
    if times is None or times.size != size:
        return np.arange(size, dtype=float)
    return times


def compare_to_target(
    values: Sequence[float],
    target: TargetDistribution,
    weights: Optional[Sequence[float]] = None,
) -> pd.DataFrame:
    """Tabulate observed bin shares against the target proportions.

    Values outside the configured edges are not counted; shares are
    relative to the counted values only.
    """

    edges = np.asarray(target.bin_edges, dtype=float)
    props = np.asarray(target.proportions, dtype=float)
    values = np.asarray(values, dtype=float)
    if weights is None:
        weights = np.ones_like(values)
    weights = np.asarray(weights, dtype=float)

    counts, _ = np.histogram(values, bins=edges, weights=weights)
    total = counts.sum()
    observed = counts / total if total > 0 else np.zeros_like(counts, dtype=float)

    return pd.DataFrame(
        {
            "bin_low": edges[:-1],
            "bin_high": edges[1:],
            "target_share": props / props.sum(),
            "observed_share": observed,
            "bin_total": counts,
        }
    )


def clamp_to_available_id(value: int, encounter_ids: Sequence[int]) -> int:
    """Return the generated encounter id nearest to ``value``.

    Ids need not be sorted or contiguous; ties resolve to the smaller id.
    """

    ids = np.unique(np.asarray(encounter_ids, dtype=int))
    if ids.size == 0:
        raise ValueError("encounter_ids must not be empty")
    return int(ids[np.argmin(np.abs(ids - int(value)))])


def summarize_benchmark(benchmark_df: pd.DataFrame) -> Dict[str, float]:
    """Counts and trial statistics for a run's ``benchmark.csv``."""

    if benchmark_df is None or benchmark_df.empty:
        return {"requested": 0, "accepted": 0, "failed": 0,
                "total_trials": 0, "mean_trials": float("nan"), "total_time_s": 0.0}

    accepted = benchmark_df["accepted"].astype(bool)
    trials = benchmark_df["trials"].astype(float)
    return {
        "requested": int(len(benchmark_df)),
        "accepted": int(accepted.sum()),
        "failed": int((~accepted).sum()),
        "total_trials": int(trials.sum()),
        "mean_trials": float(trials[accepted].mean()) if accepted.any() else float("nan"),
        "total_time_s": float(benchmark_df["job_time_s"].astype(float).sum()),
    }


__all__ = [
    "get_record_series",
    "get_series_times",
    "compare_to_target",
    "clamp_to_available_id",
    "summarize_benchmark",
]
