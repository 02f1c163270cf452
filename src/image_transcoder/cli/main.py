"""命令行入口。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

import typer
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from image_transcoder.core.catalog import resolve_catalog, select_formats
from image_transcoder.core.config import DEFAULT_QUALITY, JobConfig, QualityConfig
from image_transcoder.core.exceptions import InputPathError, InvalidConfigurationError, NoInputImagesError
from image_transcoder.core.models import ResolvedFormat
from image_transcoder.core.output_manager import ImageWriteError
from image_transcoder.core.progress import ProgressUpdate
from image_transcoder.core.report import render_summary, write_csv_report
from image_transcoder.core.scanner import discover_inputs
from image_transcoder.core.settings import SavedSettings, load_saved_settings, resolve_output_root, save_settings
from image_transcoder.processing.detector import detect_capabilities
from image_transcoder.processing.pipeline import process_batch
from image_transcoder.utils.logging import setup_logging

app = typer.Typer(help="批量图片多格式转码工具。")

LOGGER = logging.getLogger(__name__)


def parse_selection(value: str, options: Sequence[ResolvedFormat]) -> Optional[list[str]]:
    """解析菜单输入：``all`` 或逗号分隔的序号（从 1 开始）。"""

    normalized = value.strip().lower()
    if normalized == "all":
        return [option.id for option in options]

    parts = [part.strip() for part in normalized.split(",") if part.strip()]
    if not parts:
        return None

    indices: list[int] = []
    for part in parts:
        if not part.isdigit():
            return None
        index = int(part)
        if index < 1 or index > len(options):
            return None
        if index - 1 not in indices:
            indices.append(index - 1)
    return [options[index].id for index in indices]


def _parse_format_ids(value: str, options: Sequence[ResolvedFormat]) -> list[str]:
    known = {option.id for option in options}
    ids = [part.strip().lower() for part in value.split(",") if part.strip()]
    unknown = [item for item in ids if item not in known]
    if unknown or not ids:
        raise typer.BadParameter(f"未知的格式: {', '.join(unknown) or value}，可选: {', '.join(sorted(known))}")
    return ids


def _prompt_selection(options: Sequence[ResolvedFormat]) -> list[str]:
    typer.secho("请选择输出格式:", fg=typer.colors.CYAN)
    for index, option in enumerate(options, start=1):
        typer.echo(f"  {index}) {option.label}")

    while True:
        answer = typer.prompt('输入序号（例如 1,6,9）或 "all"')
        selection = parse_selection(answer, options)
        if selection:
            return selection
        typer.secho('请输入有效的序号或 "all"。', fg=typer.colors.RED)


def _prompt_quality_value(text: str, default: Optional[int] = None) -> int:
    while True:
        value = typer.prompt(text, default=default, type=int)
        if 1 <= value <= 100:
            return value
        typer.secho("请输入 1 到 100 之间的数字。", fg=typer.colors.RED)


def _prompt_quality(selected: Sequence[ResolvedFormat]) -> QualityConfig:
    lossy = [
        entry for entry in selected if entry.spec.is_lossy and entry.spec.supports_quality and entry.is_supported
    ]
    if not lossy:
        return QualityConfig()

    default = _prompt_quality_value("默认有损质量 (1-100)", DEFAULT_QUALITY)
    overrides: dict[str, int] = {}
    for entry in lossy:
        if typer.confirm(f"是否为 {entry.label} 单独设置质量？", default=False):
            overrides[entry.id] = _prompt_quality_value(f"{entry.label} 质量 (1-100)")
    return QualityConfig(default=default, overrides=overrides)


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task("转码图片", total=update.total)
        progress.update(task_id, completed=update.completed)
        if update.failures:
            progress.log(f"{update.message}（{update.failures} 个格式失败）")

    return callback


@app.command("run")
def run_cli(  # noqa: PLR0913
    path: Path = typer.Argument(..., help="源图片文件或目录"),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="输出目录，默认在输入旁生成"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-c", min=1, help="并发文件数量"),
    yes: bool = typer.Option(False, "--yes", "-y", help="复用上次保存的格式与质量设置"),
    formats: Optional[str] = typer.Option(None, "--formats", "-f", help="逗号分隔的格式 id，跳过菜单"),
    quality: Optional[int] = typer.Option(None, "--quality", "-q", min=1, max=100, help="默认有损质量，跳过质量询问"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="单次高级编码的最长等待秒数"),
    report: bool = typer.Option(False, "--report", help="在输出目录写入 CSV 报告"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """执行批量转码。"""

    setup_logging(logging.DEBUG if verbose else logging.WARNING)
    LOGGER.debug("CLI 参数解析完成")

    try:
        inputs = discover_inputs(path)
    except (InputPathError, NoInputImagesError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    input_path = path.expanduser().resolve()
    output_root, settings_path = resolve_output_root(input_path, inputs.batch_mode, out)
    output_root.mkdir(parents=True, exist_ok=True)

    capabilities = detect_capabilities()
    catalog = resolve_catalog(capabilities)
    if not capabilities.any_usable():
        typer.secho("高级编码器 (imagecodecs) 不可用，将尽可能使用 Pillow 回退编码。", fg=typer.colors.YELLOW)

    selection: list[str] = []
    quality_config: Optional[QualityConfig] = None

    if formats:
        selection = _parse_format_ids(formats, catalog)
    elif yes:
        saved = load_saved_settings(settings_path)
        if saved is not None:
            selection = [item for item in saved.selected_ids if any(entry.id == item for entry in catalog)]
            quality_config = saved.quality
            typer.secho("使用上次保存的设置。", fg=typer.colors.BRIGHT_BLACK)
        else:
            typer.secho("未找到上次保存的设置，进入交互选择。", fg=typer.colors.YELLOW)

    if not selection:
        selection = _prompt_selection(catalog)

    selected = select_formats(catalog, selection)

    if quality is not None:
        quality_config = QualityConfig(default=quality, overrides=quality_config.overrides if quality_config else {})
    if quality_config is None:
        quality_config = _prompt_quality(selected)

    try:
        save_settings(settings_path, SavedSettings(selected_ids=[entry.id for entry in selected], quality=quality_config))
    except ImageWriteError as exc:
        LOGGER.warning("保存设置失败：%s", exc)

    unsupported = [entry for entry in selected if not entry.is_supported]
    if unsupported:
        typer.secho("以下格式在当前环境不受支持:", fg=typer.colors.YELLOW)
        for entry in unsupported:
            typer.echo(f"- {entry.label}")

    try:
        job = JobConfig(
            input_files=inputs.files,
            input_root=inputs.input_root,
            output_root=output_root,
            formats=selected,
            quality=quality_config,
            batch_mode=inputs.batch_mode,
            max_workers=concurrency,
            job_timeout=timeout,
        )
    except InvalidConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
    )

    with progress:
        summary = process_batch(job, progress_callback=_build_progress_callback(progress))

    typer.secho("\n完成。", fg=typer.colors.GREEN)
    for line in render_summary(summary, selected):
        typer.echo(line)

    if report:
        try:
            report_path = write_csv_report(summary.all_outcomes(), output_root)
        except OSError as exc:
            LOGGER.error("写入报告失败：%s", exc)
        else:
            typer.echo(f"报告文件：{report_path}")


if __name__ == "__main__":
    app()
