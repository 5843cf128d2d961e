#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Encounter Set Viewer, Streamlit app
Browse the output directory of a generation run:
 A) Acceptance counts and trial statistics from benchmark.csv
 B) VMD/HMD histograms against the configured target shapes
    (optionally weighted by the stored VMD importance weights)
 C) Per-encounter intruder altitude/ground-speed series and trajectory plots
"""
from __future__ import annotations

from pathlib import Path

import pandas as pd
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import streamlit as st

from encounter_output import BENCHMARK_FILENAME, METADATA_FILENAME, read_benchmark, read_metadata, read_trajectory_pair
from inspector_utils import (
    clamp_to_available_id,
    compare_to_target,
    get_record_series,
    get_series_times,
    summarize_benchmark,
)
from specification import SpecificationError, load_specification

# ------------------------------- Streamlit UI -------------------------------

st.set_page_config(page_title="Encounter Set Viewer", layout="wide")
st.title("Encounter Set Viewer")

with st.sidebar:
    st.header("Run")
    output_dir = Path(st.text_input(
        "Output directory",
        value="output",
        help="Directory holding metadata.csv and benchmark.csv from a generation run.",
    ))
    config_path = st.text_input(
        "Run configuration (optional)",
        value="",
        help="JSON configuration used for the run; enables comparison with the VMD/HMD targets.",
    )
    weighted = st.checkbox(
        "Apply VMD importance weights",
        value=False,
        help="Weight each encounter by 1/p of its VMD bin when histogramming.",
    )

if not (output_dir / METADATA_FILENAME).exists() or not (output_dir / BENCHMARK_FILENAME).exists():
    st.info(f"No generation results found in {output_dir}. Run generate_encounters.py first.")
    st.stop()

metadata_df = read_metadata(output_dir)
benchmark_df = read_benchmark(output_dir)

spec = None
if config_path:
    try:
        spec = load_specification(config_path)
    except (SpecificationError, OSError) as exc:
        st.warning(f"Could not load configuration: {exc}")

summary = summarize_benchmark(benchmark_df)
c1, c2, c3, c4 = st.columns(4)
c1.metric("Requested", summary["requested"])
c2.metric("Accepted", summary["accepted"])
c3.metric("Failed", summary["failed"])
c4.metric("Mean trials / encounter", f"{summary['mean_trials']:.1f}")
st.caption(f"{summary['total_trials']:,} trials in {summary['total_time_s']:.1f} s of generation time.")

if metadata_df.empty:
    st.info("The run did not accept any encounters.")
    st.stop()

st.markdown("### Miss distances")

weights = metadata_df["vmd_weight"].to_numpy(dtype=float) if weighted else None
fig, axes = plt.subplots(1, 2, figsize=(14, 5), constrained_layout=True)
for ax, column, label, target in (
    (axes[0], "vmd_ft", "VMD (ft)", spec.vmd if spec is not None else None),
    (axes[1], "hmd_ft", "HMD (ft)", spec.hmd if spec is not None else None),
):
    values = metadata_df[column].to_numpy(dtype=float)
    if target is not None:
        table = compare_to_target(values, target, weights=weights)
        centers = 0.5 * (table["bin_low"] + table["bin_high"])
        widths = table["bin_high"] - table["bin_low"]
        ax.bar(centers, table["observed_share"], width=widths, alpha=0.6,
               color="#6baed6", edgecolor="#08519c", label="Generated")
        ax.step(table["bin_low"].tolist() + [table["bin_high"].iloc[-1]],
                table["target_share"].tolist() + [table["target_share"].iloc[-1]],
                where='post', color="#d7301f", lw=1.5, label="Target")
        ax.set_ylabel("Share of encounters")
        ax.legend(loc='best')
    else:
        ax.hist(values, bins=20, weights=weights, color="#6baed6", edgecolor="#08519c")
        ax.set_ylabel("Encounters")
    ax.set_xlabel(label)
    ax.grid(axis='y', alpha=0.2)

st.pyplot(fig)
st.caption(
    "Bars show the generated share per bin; the red step is the configured target proportion."
    if spec is not None else
    "Load the run configuration to overlay the target shapes."
)

st.markdown("### Generation effort")
fig2, ax2 = plt.subplots(figsize=(8, 4))
accepted = benchmark_df["accepted"].astype(bool)
ax2.bar(benchmark_df.loc[accepted, "encounter_id"], benchmark_df.loc[accepted, "trials"],
        color="#6baed6", label="Accepted")
if (~accepted).any():
    ax2.bar(benchmark_df.loc[~accepted, "encounter_id"], benchmark_df.loc[~accepted, "trials"],
            color="#d7301f", label="Not generated")
ax2.set_xlabel("Encounter id")
ax2.set_ylabel("Trials")
ax2.grid(axis='y', alpha=0.25)
ax2.legend(loc='best')
st.pyplot(fig2)

st.dataframe(metadata_df.drop(columns=["series_json"], errors="ignore"), use_container_width=True)

with st.expander("Inspect an individual encounter", expanded=False):
    id_options = sorted(set(metadata_df["encounter_id"].astype(int)))
    id_input_key = "encounter_id_input"

    current = clamp_to_available_id(st.session_state.get(id_input_key, id_options[0]), id_options)
    selected = st.number_input(
        "Encounter id",
        min_value=int(id_options[0]),
        max_value=int(id_options[-1]),
        step=1,
        value=int(current),
        key=id_input_key,
        help="Ids without an accepted encounter snap to the nearest generated one.",
    )
    eid = clamp_to_available_id(selected, id_options)
    row = metadata_df[metadata_df["encounter_id"] == eid].iloc[0]

    st.markdown(
        f"**Encounter {eid}**: VMD {row['vmd_ft']:.0f} ft, HMD {row['hmd_ft']:.0f} ft, "
        f"TCA {row['tca_s']:.1f} s, {int(row['trials'])} trials, seed {int(row['seed'])}"
    )

    alt = get_record_series(row, "int_alt_ft")
    gs = get_record_series(row, "int_gs_kt")
    if alt is not None and gs is not None:
        seconds = get_series_times(row, alt.size)
        fig_s, (ax_alt, ax_gs) = plt.subplots(1, 2, figsize=(12, 4), constrained_layout=True)
        ax_alt.plot(seconds, alt)
        ax_alt.axvline(float(row["tca_s"]), ls=':', lw=1, alpha=0.7, label='TCA')
        ax_alt.set_xlabel("Time (s)")
        ax_alt.set_ylabel("Intruder altitude (ft)")
        ax_alt.legend(); ax_alt.grid(True, alpha=0.3)
        ax_gs.plot(seconds, gs, color='tab:orange')
        ax_gs.set_xlabel("Time (s)")
        ax_gs.set_ylabel("Intruder ground speed (kt)")
        ax_gs.grid(True, alpha=0.3)
        st.pyplot(fig_s)

    if (output_dir / f"trajectory_{eid}.csv").exists():
        own, intr = read_trajectory_pair(output_dir, eid)
        fig_t, (ax_h, ax_v) = plt.subplots(1, 2, figsize=(12, 5), constrained_layout=True)
        ax_h.plot(own.east_ft, own.north_ft, label="Ownship")
        ax_h.plot(intr.east_ft, intr.north_ft, label="Intruder")
        ax_h.set_xlabel("East (ft)")
        ax_h.set_ylabel("North (ft)")
        ax_h.set_aspect('equal', adjustable='datalim')
        ax_h.legend(); ax_h.grid(True, alpha=0.3)
        ax_v.plot(own.time_s, own.up_ft, label="Ownship")
        ax_v.plot(intr.time_s, intr.up_ft, label="Intruder")
        ax_v.axvline(float(row["tca_s"]), ls=':', lw=1, alpha=0.7, label='TCA')
        ax_v.set_xlabel("Time (s)")
        ax_v.set_ylabel("Altitude (ft)")
        ax_v.legend(); ax_v.grid(True, alpha=0.3)
        st.pyplot(fig_t)
    else:
        st.caption("No trajectory file was written for this encounter.")

csv_bytes = metadata_df.to_csv(index=False).encode('utf-8')
st.download_button(
    "Download metadata CSV",
    csv_bytes,
    file_name="encounter_metadata.csv",
    mime="text/csv",
)
