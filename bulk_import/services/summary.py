from __future__ import annotations

from ..models.processing_result import RunReport

"""Report rendering for the CLI.

The SUMMARY line is a single space separated ``key=value`` record so it can
be grepped out of job logs:

    SUMMARY pipeline=<name> file=<name> eligible=<n> matched=<n> unmatched=<n>
    already_done=<n> blank=<n> batches=<n> applied=<n> retried=<n> failed=<n>
    skipped=<n> value=<total> elapsed_sec=<seconds>
"""

__all__ = [
    "format_number",
    "render_summary_line",
    "render_batch_lines",
    "render_follow_up",
]


def format_number(value: float) -> str:
    """Integers without decimals, tiny values without scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return str(round(value, 3))


def render_summary_line(report: RunReport) -> str:
    """Render the SUMMARY line for one run.

    Examples:
        >>> from bulk_import.models.processing_result import RunReport
        >>> report = RunReport(
        ...     pipeline="opening_stock", file_name="stock.csv", eligible_rows=2,
        ...     matched=2, unmatched=0, already_done=0, blank_identifiers=1,
        ...     total_value=35.0, batches=[], errors=[],
        ... )
        >>> render_summary_line(report)  # doctest: +ELLIPSIS
        'SUMMARY pipeline=opening_stock file=stock.csv eligible=2 matched=2 ... value=35 elapsed_sec=0'
    """
    file_name = report.file_name.replace(" ", "_") or "-"
    return (
        f"SUMMARY pipeline={report.pipeline} "
        f"file={file_name} "
        f"eligible={report.eligible_rows} "
        f"matched={report.matched} "
        f"unmatched={report.unmatched} "
        f"already_done={report.already_done} "
        f"blank={report.blank_identifiers} "
        f"batches={len(report.batches)} "
        f"applied={len(report.successful_batches)} "
        f"retried={len(report.retried_batches)} "
        f"failed={len(report.failed_batches)} "
        f"skipped={len(report.skipped_batches)} "
        f"value={format_number(report.total_value)} "
        f"elapsed_sec={format_number(report.elapsed_seconds)}"
    )


def render_batch_lines(report: RunReport) -> list[str]:
    lines = []
    for b in report.batches:
        line = (
            f"batch={b.batch_index} rows={b.first_row}-{b.last_row} "
            f"count={b.row_count} status={b.status.value} attempts={b.attempts}"
        )
        if b.error:
            line += f" error={b.error}"
        lines.append(line)
    return lines


def render_follow_up(report: RunReport) -> str | None:
    codes = report.follow_up_identifiers()
    if not codes:
        return None
    return f"follow_up count={len(codes)} identifiers={','.join(codes)}"
