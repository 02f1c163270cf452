"""并发处理的工作单元：一个输入文件的全部输出格式。"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

from image_transcoder.core.config import QualityConfig
from image_transcoder.core.exceptions import EncodeError, TranscoderError
from image_transcoder.core.models import (
    AdvancedCodec,
    FallbackCodec,
    Job,
    JobFailure,
    JobOutcome,
    JobSuccess,
    RawCopy,
    Unsupported,
)
from image_transcoder.core.output_manager import copy_atomic, write_atomic
from image_transcoder.core.quality import advanced_encode_options
from image_transcoder.processing.fallback import encode_with_pillow

LOGGER = logging.getLogger(__name__)


class EncoderPool(Protocol):
    def encode(
        self,
        data: bytes,
        codec_key: str,
        options: Mapping[str, Any],
        timeout: Optional[float] = None,
    ) -> bytes: ...

    def close(self) -> None: ...


@dataclass(slots=True)
class FileTask:
    """描述单个输入文件需要执行的全部任务。"""

    source_path: Path
    jobs: list[Job]
    planned_failures: list[JobFailure] = field(default_factory=list)


@dataclass(slots=True)
class FileResult:
    source_path: Path
    outcomes: list[JobOutcome]


@dataclass(slots=True)
class EncodeContext:
    """所有工作线程共享的只读上下文。"""

    quality: QualityConfig
    pool: Optional[EncoderPool] = None
    job_timeout: Optional[float] = None


class _SourceBuffer:
    """同一输入文件在高级编码任务间复用的字节缓存，最多读取一次。"""

    __slots__ = ("_path", "_data", "_error")

    def __init__(self, path: Path) -> None:
        self._path = path
        self._data: Optional[bytes] = None
        self._error: Optional[str] = None

    def get(self) -> bytes:
        if self._data is not None:
            return self._data
        if self._error is None:
            try:
                self._data = self._path.read_bytes()
                return self._data
            except OSError as exc:
                self._error = f"读取源文件失败: {exc}"
        raise EncodeError(self._error)


def run_file_task(task: FileTask, context: EncodeContext) -> FileResult:
    """按目录顺序依次执行该文件的所有格式，单个失败不影响其他格式。"""

    outcomes: list[JobOutcome] = list(task.planned_failures)
    buffer = _SourceBuffer(task.source_path)

    for job in task.jobs:
        try:
            _execute(job, buffer, context)
        except (TranscoderError, OSError) as exc:
            LOGGER.warning("%s -> %s 失败: %s", job.source_path.name, job.format.label, exc)
            outcomes.append(
                JobFailure(
                    source_path=job.source_path,
                    format_id=job.format.id,
                    format_label=job.format.label,
                    reason=f"{job.format.label}: {exc}",
                )
            )
            continue

        outcomes.append(JobSuccess(source_path=job.source_path, format_id=job.format.id, output_path=job.destination))

    return FileResult(source_path=task.source_path, outcomes=outcomes)


def _execute(job: Job, buffer: _SourceBuffer, context: EncodeContext) -> None:
    strategy = job.format.strategy
    quality = context.quality.quality_for(job.format.spec)

    if isinstance(strategy, AdvancedCodec):
        if context.pool is None:
            raise EncodeError("高级编码池不可用")
        options = advanced_encode_options(job.format.id, quality)
        encoded = context.pool.encode(buffer.get(), strategy.codec_key, options, timeout=context.job_timeout)
        write_atomic(job.destination, encoded)
    elif isinstance(strategy, FallbackCodec):
        encode_with_pillow(strategy.native_format, job.source_path, job.destination, quality)
    elif isinstance(strategy, RawCopy):
        copy_atomic(job.source_path, job.destination)
    elif isinstance(strategy, Unsupported):
        raise EncodeError("当前环境不支持该格式")
    else:
        raise TypeError(f"未知的编码策略: {strategy!r}")
