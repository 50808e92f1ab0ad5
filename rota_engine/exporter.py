"""
exporter.py — Export layer for composed rotas

Outputs:
  - CSV: one flat row per clinician × date × session
  - Excel (.xlsx): date × (clinician, session) grid, duty colours applied
  - Workload report (.txt): per-clinician session buckets and per-role spread

Usage:
  from rota_engine.exporter import export_schedule_csv, export_schedule_excel, export_workload_report
"""

import logging
from pathlib import Path
from typing import Any, Dict, List

from .dates import format_date
from .models import ScheduleEntry

logger = logging.getLogger(__name__)

CSV_FIELDS = [
    "date", "session", "clinician_id", "clinician_name", "clinician_role",
    "source", "duty_id", "duty_name", "is_oncall", "is_leave", "leave_type",
    "is_rest", "is_rest_off", "supporting_clinician_name",
]


def entry_label(entry: ScheduleEntry) -> str:
    """Short cell text for a schedule entry."""
    if entry.is_leave:
        return f"Leave ({entry.leave_type.value})" if entry.leave_type else "Leave"
    if entry.is_oncall and not entry.duty_name:
        return "On-call"
    label = entry.duty_name or ""
    if entry.supporting_clinician_name:
        label = f"{label} / {entry.supporting_clinician_name}" if label else entry.supporting_clinician_name
    return label


# ---------------------------------------------------------------------------
# CSV Export
# ---------------------------------------------------------------------------

def export_schedule_csv(entries: List[ScheduleEntry], output_path: Path) -> None:
    import csv

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_FIELDS, extrasaction="ignore")
        writer.writeheader()
        for entry in entries:
            writer.writerow(entry.to_dict())
    logger.info(f"CSV exported → {output_path} ({len(entries)} rows)")


# ---------------------------------------------------------------------------
# Excel Export
# ---------------------------------------------------------------------------

def export_schedule_excel(entries: List[ScheduleEntry], output_path: Path) -> None:
    """
    Export a date × clinician grid, two columns (AM, PM) per clinician.

    Column order follows the order clinicians first appear in `entries`.
    """
    import pandas as pd

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    rows = []
    colors: Dict[tuple, str] = {}
    column_order: List[str] = []
    for entry in entries:
        column = f"{entry.clinician_name} {entry.session.value}"
        if column not in column_order:
            column_order.append(column)
        day = format_date(entry.date)
        rows.append({"Date": day, "Column": column, "Value": entry_label(entry)})
        if entry.duty_color and not entry.is_leave:
            colors[(day, column)] = entry.duty_color.lstrip("#")

    df = pd.DataFrame(rows)
    if df.empty:
        df.to_excel(output_path, index=False)
        return

    grid = df.pivot_table(index="Date", columns="Column", values="Value",
                          aggfunc=lambda x: "; ".join(v for v in x if v))
    grid = grid[[c for c in column_order if c in grid.columns]]

    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        grid.to_excel(writer, sheet_name="Rota")
        _format_excel_grid(writer, "Rota", grid, colors)

    logger.info(f"Excel exported → {output_path}")


def _format_excel_grid(writer: Any, sheet_name: str, grid: Any, colors: Dict[tuple, str]) -> None:
    """Header styling, column widths and duty colour fills."""
    try:
        from openpyxl.styles import Alignment, Font, PatternFill

        ws = writer.sheets[sheet_name]
        header_fill = PatternFill("solid", fgColor="1F4E79")
        header_font = Font(bold=True, color="FFFFFF")
        for cell in ws[1]:
            cell.fill = header_fill
            cell.font = header_font
            cell.alignment = Alignment(horizontal="center")

        for col in ws.columns:
            max_len = max((len(str(c.value)) for c in col if c.value), default=8)
            ws.column_dimensions[col[0].column_letter].width = min(max_len + 2, 30)

        columns = list(grid.columns)
        for r, day in enumerate(grid.index, start=2):
            for c, column in enumerate(columns, start=2):
                color = colors.get((day, column))
                if color:
                    ws.cell(row=r, column=c).fill = PatternFill("solid", fgColor=color)

    except Exception as e:
        logger.warning(f"Excel formatting failed (non-critical): {e}")


# ---------------------------------------------------------------------------
# Workload Report
# ---------------------------------------------------------------------------

def export_workload_report(
    metrics: Dict[str, Any],
    output_path: Path,
    label: str = "",
    target_cv: float = 15.0,
) -> str:
    """
    Write a text workload report from metrics.calculate_workload_metrics().

    Returns the report text.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    counts = metrics.get("counts", {})
    roles = metrics.get("roles", {})
    load = metrics.get("load", {})
    per_role = metrics.get("per_role", {})

    sep = "=" * 78
    lines = [
        sep,
        f"  WORKLOAD REPORT{(' · ' + label) if label else ''}",
        sep,
        "",
    ]
    for role, spread in sorted(per_role.items()):
        verdict = "✓ PASS" if spread["cv"] < target_cv else "✗ FAIL"
        lines.append(
            f"  {role:<11} load mean {spread['mean']:6.2f}  std {spread['std']:5.2f}  "
            f"CV {spread['cv']:6.2f}%  (target <{target_cv:.0f}%)  {verdict}"
        )

    lines += [
        "",
        "─" * 78,
        f"  {'Name':<24} {'Role':<11} {'Duty':>5} {'OnCall':>7} {'Leave':>6} {'Rest':>5} {'Empty':>6} {'Load':>5}",
        "─" * 78,
    ]
    for name in sorted(counts, key=lambda n: (roles.get(n, ""), -load.get(n, 0), n)):
        row = counts[name]
        lines.append(
            f"  {name:<24} {roles.get(name, ''):<11} {row['duty']:>5d} {row['oncall']:>7d} "
            f"{row['leave']:>6d} {row['rest']:>5d} {row['empty']:>6d} {load.get(name, 0):>5d}"
        )
    lines += ["", sep]

    report_text = "\n".join(lines)
    with open(output_path, "w") as f:
        f.write(report_text)
    logger.info(f"Workload report exported → {output_path}")
    return report_text
