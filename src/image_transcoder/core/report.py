"""汇总输出与报告生成工具。"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, Sequence

from image_transcoder.core.models import BatchSummary, JobFailure, JobOutcome, JobSuccess, ResolvedFormat

HEADER = ["source_path", "format", "status", "output_path", "reason"]
REPORT_FILENAME = "transcode-report.csv"


def render_summary(summary: BatchSummary, formats: Sequence[ResolvedFormat]) -> list[str]:
    """将汇总结果渲染为便于终端输出的文本行。"""

    lines = [f"输入文件总数: {summary.total_inputs}", "各格式输出数量:"]
    for entry in formats:
        if entry.id not in summary.outputs_by_format:
            continue
        lines.append(f"- {entry.label}: {summary.outputs_by_format[entry.id]}")

    if summary.skipped_formats:
        lines.append("已跳过的格式:")
        for skipped in summary.skipped_formats:
            lines.append(f"- {skipped.label}: 跳过 {skipped.skipped} ({skipped.reason})")

    if summary.failures:
        lines.append("失败:")
        for failure in summary.failures:
            lines.append(f"- {failure.source_path}: {failure.reason}")

    lines.append(f"总耗时: {summary.duration_seconds:.2f}s")
    return lines


def write_csv_report(outcomes: Iterable[JobOutcome], output_dir: Path, filename: str = REPORT_FILENAME) -> Path:
    """将每个任务的结果写入 CSV 报告。"""

    report_path = output_dir / filename
    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADER)
        for record in outcomes:
            if isinstance(record, JobSuccess):
                writer.writerow([str(record.source_path), record.format_id, "ok", str(record.output_path), ""])
            elif isinstance(record, JobFailure):
                writer.writerow([str(record.source_path), record.format_id, "error", "", record.reason])
    return report_path
