"""Generate a PDF summary of an encounter generation run using ReportLab.

The report lists acceptance counts, trial statistics and, when the run
configuration is supplied, the VMD/HMD target bins next to the generated
shares.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Iterable, List, Optional

import pandas as pd
from reportlab.lib import colors, pagesizes
from reportlab.lib.styles import ParagraphStyle, StyleSheet1, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from encounter_output import read_benchmark, read_metadata
from inspector_utils import compare_to_target, summarize_benchmark
from specification import EncounterSpecification, load_specification

REPORT_FILENAME = "run_report.pdf"


def load_styles() -> StyleSheet1:
    """Return a stylesheet configured for headings, body text and tables."""

    styles = getSampleStyleSheet()

    styles.add(
        ParagraphStyle(
            name="CustomHeading1",
            parent=styles["Heading1"],
            fontSize=20,
            leading=24,
            spaceAfter=12,
            spaceBefore=18,
            alignment=0,
        )
    )
    styles.add(
        ParagraphStyle(
            name="CustomHeading2",
            parent=styles["Heading2"],
            fontSize=16,
            leading=20,
            spaceAfter=10,
            spaceBefore=16,
            alignment=0,
        )
    )
    styles.add(
        ParagraphStyle(
            name="Body", parent=styles["BodyText"], spaceAfter=8, leading=15
        )
    )

    return styles


def _table(rows: List[List[str]]) -> Table:
    table = Table(rows, hAlign="LEFT")
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                ("ALIGN", (1, 1), (-1, -1), "RIGHT"),
            ]
        )
    )
    return table


def build_report_flowables(
    metadata_df: pd.DataFrame,
    benchmark_df: pd.DataFrame,
    styles: StyleSheet1,
    spec: Optional[EncounterSpecification] = None,
) -> List:
    """Convert run outputs into a list of ReportLab flowables."""

    flowables: List = [Paragraph("<b>Encounter generation report</b>", styles["CustomHeading1"])]

    summary = summarize_benchmark(benchmark_df)
    flowables.append(Paragraph("<b>Acceptance</b>", styles["CustomHeading2"]))
    flowables.append(
        _table(
            [
                ["Requested", "Accepted", "Failed", "Total trials", "Mean trials", "Time (s)"],
                [
                    str(summary["requested"]),
                    str(summary["accepted"]),
                    str(summary["failed"]),
                    f"{summary['total_trials']:,}",
                    f"{summary['mean_trials']:.1f}",
                    f"{summary['total_time_s']:.1f}",
                ],
            ]
        )
    )

    if summary["failed"]:
        failed = benchmark_df.loc[~benchmark_df["accepted"].astype(bool), "encounter_id"]
        flowables.append(
            Paragraph(
                "Not generated: " + ", ".join(str(int(eid)) for eid in failed),
                styles["Body"],
            )
        )

    if metadata_df.empty:
        flowables.append(Paragraph("No encounters were accepted.", styles["Body"]))
        return flowables

    flowables.append(Spacer(1, 0.2 * inch))
    flowables.append(Paragraph("<b>Miss distances</b>", styles["CustomHeading2"]))
    stats_rows = [["Quantity", "Min", "Median", "Max"]]
    for column, label in (("vmd_ft", "VMD (ft)"), ("hmd_ft", "HMD (ft)"), ("tca_s", "TCA (s)")):
        values = metadata_df[column].astype(float)
        stats_rows.append([label, f"{values.min():.0f}", f"{values.median():.0f}", f"{values.max():.0f}"])
    flowables.append(_table(stats_rows))

    if spec is not None:
        weights = metadata_df["vmd_weight"].to_numpy(dtype=float)
        for column, label, target in (("vmd_ft", "VMD", spec.vmd), ("hmd_ft", "HMD", spec.hmd)):
            flowables.append(Paragraph(f"<b>{label} target bins</b>", styles["CustomHeading2"]))
            comparison = compare_to_target(metadata_df[column].to_numpy(dtype=float), target, weights=weights)
            rows = [["Bin (ft)", "Target share", "Weighted share", "Weighted count"]]
            for rec in comparison.itertuples(index=False):
                rows.append(
                    [
                        f"{rec.bin_low:.0f} to {rec.bin_high:.0f}",
                        f"{rec.target_share:.3f}",
                        f"{rec.observed_share:.3f}",
                        f"{rec.bin_total:.1f}",
                    ]
                )
            flowables.append(_table(rows))

    return flowables


def build_pdf(flowables: Iterable, output_path: Path) -> None:
    """Create the PDF document from the flowables."""

    doc = SimpleDocTemplate(
        str(output_path),
        pagesize=pagesizes.LETTER,
        leftMargin=0.75 * inch,
        rightMargin=0.75 * inch,
        topMargin=0.75 * inch,
        bottomMargin=0.75 * inch,
    )
    doc.build(list(flowables))


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Render a PDF summary of a generation run.")
    parser.add_argument("output_dir", type=Path, help="Directory written by generate_encounters.py")
    parser.add_argument("--config", type=Path, default=None, help="Run configuration for target comparison")
    parser.add_argument("--pdf", type=Path, default=None, help=f"Output path (default: <output_dir>/{REPORT_FILENAME})")
    args = parser.parse_args(argv)

    styles = load_styles()
    spec = load_specification(args.config) if args.config is not None else None
    flowables = build_report_flowables(
        read_metadata(args.output_dir), read_benchmark(args.output_dir), styles, spec
    )
    build_pdf(flowables, args.pdf or args.output_dir / REPORT_FILENAME)


if __name__ == "__main__":
    main()
