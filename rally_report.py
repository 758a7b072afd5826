#!/usr/bin/env python3
"""
rally_report.py
Renders processed rally results as a comma-separated text report and,
optionally, a PDF position chart.
"""

import io
import csv
import pathlib
import logging

import numpy as np
import pandas as pd

# ReportLab imports
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer
from reportlab.lib.pagesizes import landscape, A4
from reportlab.lib import colors
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.enums import TA_LEFT
from reportlab.graphics.shapes import Drawing, String, Line
from reportlab.graphics.charts.linecharts import HorizontalLineChart
from reportlab.lib.colors import black, red, green, blue, orange, violet, pink, gray, Color
from reportlab.lib.units import cm

from rally_stats import Config, DriverTime, Absent, RallyResults, format_time

logger = logging.getLogger(__name__)


def csv_line(*fields):
    """Return one CSV line (no newline), quoting only where a field needs it."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="")
    writer.writerow(fields)
    return buf.getvalue()


def safe_div(a, b, default=0.0):
    """Return a / b but handle division by zero and NaN gracefully."""
    if b is None or b == 0 or np.isnan(b):
        return default
    return a / b


def split_ranked(stage, position_attr):
    """Ranked records in position order, then everyone else in encounter order."""
    ranked, unranked = [], []
    for entry in stage.driver_times.values():
        if isinstance(entry, DriverTime) and getattr(entry, position_attr) > 0:
            ranked.append(entry)
        else:
            unranked.append(entry)
    ranked.sort(key=lambda d: getattr(d, position_attr))
    return ranked, unranked


def get_header_data(club_info, championship_id, event_id):
    """Header block: club name, location, ids and event status."""
    header = club_info or {}
    lines = [
        csv_line(header.get("club_name", "")),
        csv_line(header.get("country_name", ""), header.get("location_name", "")),
        csv_line("Championship ID", championship_id, "Event ID", event_id),
        csv_line("Event Status", header.get("event_status", "")),
    ]
    return "\n".join(lines) + "\n"


def get_csv_stage_times(results: RallyResults) -> str:
    lines = []
    for stage_no, stage in enumerate(results, start=1):
        lines.append(f"{Config.STAGE_PREFIX}{stage_no} - {stage.name}")
        lines.append("Stage Times")
        lines.append("Pos, Name, Vehicle, Time, Diff 1st, Diff Prev")

        ranked, unranked = split_ranked(stage, "stage_position")
        for d in ranked:
            lines.append(csv_line(
                d.stage_position,
                d.driver_name,
                d.vehicle,
                format_time(d.stage_time),
                format_time(d.stage_diff_first),
                format_time(d.stage_diff_previous),
            ))

        # DNFs at the bottom
        for entry in unranked:
            vehicle = "" if isinstance(entry, Absent) else entry.vehicle
            lines.append(csv_line("", entry.driver_name, vehicle, Config.DNF_LABEL))

        lines.append("")
    return "\n".join(lines) + "\n"


def get_csv_overall_times(results: RallyResults) -> str:
    lines = []
    for stage_no, stage in enumerate(results, start=1):
        lines.append(f"{Config.STAGE_PREFIX}{stage_no} - {stage.name}")
        lines.append("Overall Times")
        lines.append("Pos, Pos Chng, Name, Vehicle, Time, Diff 1st, Diff Prev")

        ranked, unranked = split_ranked(stage, "overall_position")
        for d in ranked:
            lines.append(csv_line(
                d.overall_position,
                d.position_change,
                d.driver_name,
                d.vehicle,
                format_time(d.overall_time),
                format_time(d.overall_diff_first),
                format_time(d.overall_diff_previous),
            ))

        for entry in unranked:
            vehicle = "" if isinstance(entry, Absent) else entry.vehicle
            lines.append(csv_line("", "", entry.driver_name, vehicle, Config.DNF_LABEL))

        lines.append("")
    return "\n".join(lines) + "\n"


def get_stats(results: RallyResults) -> str:
    """Participation numbers, stage-win leaderboard and vehicle usage."""
    lines = ["Stats", ""]

    completion = safe_div(results.drivers_finished, results.driver_count)
    lines.append("Participation Stats")
    lines.append(csv_line("Drivers Entered", results.driver_count))
    lines.append(csv_line("Drivers Finished", results.drivers_finished))
    lines.append(csv_line("Drivers DNFd", results.drivers_dnf))
    lines.append(csv_line("Completion Rate", f"{completion:.2%}"))

    drivers_df = pd.DataFrame(
        [(d.name, d.stages_won) for d in results.driver_info.values()],
        columns=["Driver", "Stages Won"],
    )
    lines.append("")
    lines.append("Stage Wins")
    winners = drivers_df[drivers_df["Stages Won"] > 0].sort_values("Stages Won", ascending=False, kind="stable")
    for _, row in winners.iterrows():
        lines.append(csv_line(row["Driver"], row["Stages Won"]))

    vehicles = pd.Series(results.vehicle_counts, dtype=int)
    lines.append("")
    lines.append("Manufacturer Count")
    for vehicle, count in vehicles.sort_values(ascending=False, kind="stable").items():
        lines.append(csv_line(vehicle, count))

    return "\n".join(lines) + "\n"


def chart_rows(results: RallyResults):
    """(name, positions) per driver for charting: finishers first, DNFs after."""
    if not results.stages:
        return []

    drivers = sorted(
        results.driver_info.values(),
        key=lambda d: (d.overall_position == 0, d.overall_position),
    )

    finishers, dnfs = [], []
    for driver in drivers:
        positions = driver.position_history
        if 0 in positions:
            dnfs.append((driver.name, [p for p in positions if p != 0]))
        else:
            finishers.append((driver.name, list(positions)))

    dnfs.sort(key=lambda row: len(row[1]), reverse=True)
    return finishers + dnfs


def get_csv_chart_output(results: RallyResults) -> str:
    rows = chart_rows(results)
    positive = ["Chart Data"]
    negative = ["Negated Chart Data"]
    for name, positions in rows:
        positions = np.asarray(positions, dtype=int)
        positive.append(csv_line(name, *positions.tolist()))
        negative.append(csv_line(name, *(-positions).tolist()))
    return "\n".join(positive) + "\n\n" + "\n".join(negative) + "\n"


def build_report(results: RallyResults, header=None) -> str:
    """Assemble the full text report."""
    header = header or {}
    parts = []
    if header:
        parts.append(get_header_data(header, header.get("championship_id", ""), header.get("event_id", "")))
    parts.append(get_csv_stage_times(results))
    parts.append(get_csv_overall_times(results))
    parts.append(get_stats(results))
    parts.append(get_csv_chart_output(results))
    return "\n".join(parts)


def write_report(report_path, report: str):
    path = pathlib.Path(report_path)
    path.write_text(report, encoding=Config.ENCODING)
    return path


def print_pdf_position_chart(results: RallyResults, pdf_file, title=None):
    """Draw each driver's overall position after every stage on one PDF page."""
    pdf_path = pathlib.Path(pdf_file)
    margin = 20

    def add_footer(canvas, doc):
        canvas.saveState()
        canvas.setFont('Helvetica', 8)
        y = 0.75 * cm
        x = doc.pagesize[0] - doc.rightMargin
        canvas.drawRightString(x, y, title or "Rally Report")
        canvas.restoreState()

    doc = SimpleDocTemplate(
        str(pdf_path),
        pagesize=landscape(A4),
        leftMargin=margin, rightMargin=margin,
        topMargin=margin, bottomMargin=margin
    )
    styles = getSampleStyleSheet()
    left_style = ParagraphStyle("Left", parent=styles["Normal"], alignment=TA_LEFT)

    elements = [Paragraph("Overall Position Chart", styles["Heading2"]), Spacer(1, 8)]

    history = results.position_history()
    n_stages = history.shape[1]
    # drivers never ranked overall have nothing to draw
    finishing_order = [name for name, positions in chart_rows(results) if positions]

    if n_stages == 0 or not finishing_order:
        elements.append(Paragraph("No position data available to draw the chart.", left_style))
        doc.build(elements, onFirstPage=add_footer, onLaterPages=add_footer)
        logger.info("PDF written to %s", pdf_path)
        return pdf_path

    n_drivers = len(finishing_order)

    # Color palette
    base_colors = [black, red, green, blue, orange, violet, pink, gray,
                   Color(0.5, 0.2, 0.8), Color(0.8, 0.5, 0.2)]
    while len(base_colors) < n_drivers:
        idx = len(base_colors)
        base_colors.append(Color(((idx * 37) % 255) / 255.0,
                                 ((idx * 61) % 255) / 255.0,
                                 ((idx * 97) % 255) / 255.0))

    chart_width = landscape(A4)[0] - 2 * margin
    chart_height = 440
    drawing = Drawing(chart_width, chart_height)

    hc = HorizontalLineChart()
    hc.x = 40
    hc.y = 40
    hc.width = chart_width - 240
    hc.height = chart_height - 100

    # unranked stages become gaps in the line
    hc.data = []
    for name in finishing_order:
        series = history.loc[name].to_numpy()
        hc.data.append([int(p) if p > 0 else None for p in series])
    if n_stages == 1:
        hc.data = [series * 2 for series in hc.data]

    hc.categoryAxis.categoryNames = [f"{Config.STAGE_PREFIX}{i}" for i in range(1, max(n_stages, 2) + 1)]
    hc.categoryAxis.labels.boxAnchor = 'n'
    hc.categoryAxis.labels.fontName = 'Helvetica-Bold'
    hc.categoryAxis.labels.fontSize = 7
    hc.categoryAxis.labels.dy = -8
    hc.categoryAxis.visibleGrid = False

    hc.valueAxis.valueMin = 1
    hc.valueAxis.valueMax = max(n_drivers, 2)
    hc.valueAxis.valueStep = 1
    hc.valueAxis.reverseDirection = True
    hc.valueAxis.visibleGrid = True
    hc.valueAxis.labels.fontName = 'Helvetica'
    hc.valueAxis.labels.fontSize = 7

    for i in range(len(hc.data)):
        hc.lines[i].strokeColor = base_colors[i % len(base_colors)]
        hc.lines[i].strokeWidth = 1.6

    drawing.add(hc)

    for stage_no in range(1, n_stages + 1):
        x = hc.x + (stage_no - 0.5) * (hc.width / max(n_stages, 2))
        drawing.add(Line(x, hc.y, x, hc.y + hc.height, strokeColor=colors.lightgrey, strokeWidth=0.25))

    def y_for_rank(rank):
        value_max = hc.valueAxis.valueMax
        frac = (rank - 1) / float(value_max - 1)
        return hc.y + (1.0 - frac) * hc.height

    right_label_x = hc.x + hc.width + 20
    drawing.add(String(right_label_x, y_for_rank(1) + 20, "Final pos", fontName="Helvetica-Bold", fontSize=10))
    drawing.add(String(hc.x + hc.width / 2, hc.y - 30, "Stage", fontName="Helvetica-Bold", fontSize=10))

    for fin_idx, name in enumerate(finishing_order):
        info = results.driver_info[name]
        label = f"{info.overall_position} {name}" if info.overall_position else f"{Config.DNF_LABEL} {name}"
        drawing.add(String(right_label_x, y_for_rank(fin_idx + 1) - 4, label,
                           fontName="Helvetica-Bold", fontSize=8, fillColor=base_colors[fin_idx % len(base_colors)]))

    elements.append(drawing)
    doc.build(elements, onFirstPage=add_footer, onLaterPages=add_footer)
    logger.info("PDF written to %s", pdf_path)
    return pdf_path
