"""处理流水线：规划 (文件 × 格式) 任务、并发执行并汇总结果。"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence

from image_transcoder.core.config import JobConfig
from image_transcoder.core.exceptions import ProviderUnavailableError
from image_transcoder.core.models import (
    AdvancedCodec,
    BatchSummary,
    Job,
    JobFailure,
    JobSuccess,
    RawCopy,
    ResolvedFormat,
    SkippedFormat,
)
from image_transcoder.core.output_manager import original_extension, resolve_output_path
from image_transcoder.core.progress import ProgressUpdate
from image_transcoder.processing.codecs import open_codec_pool
from image_transcoder.processing.worker import EncodeContext, EncoderPool, FileResult, FileTask, run_file_task

LOGGER = logging.getLogger(__name__)


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]
PoolFactory = Callable[[int], EncoderPool]


def process_batch(
    config: JobConfig,
    progress_callback: ProgressCallback = None,
    *,
    pool_factory: PoolFactory = open_codec_pool,
) -> BatchSummary:
    """批量转码入口：规划任务、按文件并发执行并返回汇总。"""

    started = time.perf_counter()
    input_files = list(config.input_files)
    total = len(input_files)
    workers = config.resolved_workers()
    summary = BatchSummary(total_inputs=total)

    active: list[ResolvedFormat] = []
    for entry in config.formats:
        if entry.is_supported:
            active.append(entry)
        else:
            LOGGER.info("格式 %s 在当前环境不受支持，跳过", entry.label)
            summary.skipped_formats.append(SkippedFormat(entry.id, entry.label, total))

    pool: Optional[EncoderPool] = None
    if any(isinstance(entry.strategy, AdvancedCodec) for entry in active):
        try:
            pool = pool_factory(workers)
        except ProviderUnavailableError as exc:
            LOGGER.warning("高级编码池构建失败，相关格式将被跳过：%s", exc)
            for entry in active:
                if isinstance(entry.strategy, AdvancedCodec):
                    summary.skipped_formats.append(SkippedFormat(entry.id, entry.label, total, reason=str(exc)))
            active = [entry for entry in active if not isinstance(entry.strategy, AdvancedCodec)]

    summary.outputs_by_format = {entry.id: 0 for entry in active}

    try:
        if active and total:
            tasks = _plan_tasks(config, input_files, active)
            context = EncodeContext(quality=config.quality, pool=pool, job_timeout=config.job_timeout)
            LOGGER.info("开始处理 %d 个文件 × %d 个格式，并发 %d", total, len(active), workers)
            results = list(_run_tasks(tasks, context, workers, progress_callback))
            _merge_results(summary, results, input_files, config.formats)
    finally:
        if pool is not None:
            pool.close()

    summary.duration_seconds = time.perf_counter() - started
    LOGGER.info(
        "处理完成：成功 %d，失败 %d，耗时 %.2fs",
        len(summary.succeeded),
        len(summary.failures),
        summary.duration_seconds,
    )
    return summary


def _plan_tasks(config: JobConfig, input_files: Sequence[Path], active: Sequence[ResolvedFormat]) -> list[FileTask]:
    """生成按文件分组的任务。

    不同输入文件解析到同一输出路径时，后出现的文件记为失败；
    同一文件的多个格式共用扩展名时按目录顺序依次原子写入。
    """

    claimed: dict[Path, Path] = {}
    tasks: list[FileTask] = []

    for source in input_files:
        task = FileTask(source_path=source, jobs=[])
        for entry in active:
            extension = original_extension(source) if isinstance(entry.strategy, RawCopy) else entry.spec.extension
            destination = resolve_output_path(
                source,
                config.input_root,
                config.output_root,
                config.batch_mode,
                extension,
            )
            owner = claimed.get(destination)
            if owner is not None and owner != source:
                task.planned_failures.append(
                    JobFailure(
                        source_path=source,
                        format_id=entry.id,
                        format_label=entry.label,
                        reason=f"{entry.label}: 输出路径已被 {owner.name} 占用: {destination}",
                    )
                )
                continue
            claimed[destination] = source
            task.jobs.append(Job(source_path=source, format=entry, destination=destination))
        tasks.append(task)

    return tasks


def _run_tasks(
    tasks: Sequence[FileTask],
    context: EncodeContext,
    workers: int,
    progress_callback: ProgressCallback,
) -> Iterator[FileResult]:
    total = len(tasks)
    completed = 0

    if workers <= 1:
        for task in tasks:
            result = _run_guarded(task, context)
            completed += 1
            _emit_progress(progress_callback, result, completed, total)
            yield result
        return

    with ThreadPoolExecutor(max_workers=min(workers, total), thread_name_prefix="transcode") as executor:
        future_map = {executor.submit(run_file_task, task, context): task for task in tasks}
        for future in as_completed(future_map):
            task = future_map[future]
            try:
                result = future.result()
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("任务执行异常：%s", exc)
                result = _crashed_result(task, exc)
            completed += 1
            _emit_progress(progress_callback, result, completed, total)
            yield result


def _run_guarded(task: FileTask, context: EncodeContext) -> FileResult:
    try:
        return run_file_task(task, context)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("任务执行异常：%s", exc)
        return _crashed_result(task, exc)


def _crashed_result(task: FileTask, exc: BaseException) -> FileResult:
    failures = list(task.planned_failures)
    for job in task.jobs:
        failures.append(
            JobFailure(
                source_path=job.source_path,
                format_id=job.format.id,
                format_label=job.format.label,
                reason=f"{job.format.label}: 工作线程异常: {exc}",
            )
        )
    return FileResult(source_path=task.source_path, outcomes=list(failures))


def _merge_results(
    summary: BatchSummary,
    results: Sequence[FileResult],
    input_files: Sequence[Path],
    formats: Sequence[ResolvedFormat],
) -> None:
    """在调度线程中合并各文件的结果，顺序与完成顺序无关。"""

    file_order = {path: index for index, path in enumerate(input_files)}
    format_order = {entry.id: index for index, entry in enumerate(formats)}

    for result in sorted(results, key=lambda r: file_order.get(r.source_path, len(file_order))):
        for outcome in sorted(result.outcomes, key=lambda o: format_order.get(o.format_id, len(format_order))):
            if isinstance(outcome, JobSuccess):
                summary.succeeded.append(outcome)
                summary.outputs_by_format[outcome.format_id] = summary.outputs_by_format.get(outcome.format_id, 0) + 1
            else:
                summary.failures.append(outcome)


def _emit_progress(
    callback: ProgressCallback,
    result: FileResult,
    completed: int,
    total: int,
) -> None:
    if not callback:
        return
    failures = sum(1 for outcome in result.outcomes if isinstance(outcome, JobFailure))
    callback(
        ProgressUpdate(
            total=total,
            completed=completed,
            source_path=result.source_path,
            failures=failures,
            message=f"完成 {result.source_path.name}",
        )
    )
