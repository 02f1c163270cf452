"""处理任务的配置模型。"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Sequence

from image_transcoder.core.exceptions import InvalidConfigurationError
from image_transcoder.core.models import FormatSpec, ResolvedFormat

LOGGER = logging.getLogger(__name__)

QUALITY_MIN = 1
QUALITY_MAX = 100
DEFAULT_QUALITY = 75

MIN_WORKERS = 2
MAX_WORKERS = 8
WORKERS_ENV_VAR = "IMAGE_TRANSCODER_WORKERS"


def _check_quality(value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidConfigurationError(f"{name} 必须为整数: {value!r}")
    if not QUALITY_MIN <= value <= QUALITY_MAX:
        raise InvalidConfigurationError(f"{name} 必须位于 {QUALITY_MIN}-{QUALITY_MAX}: {value}")


@dataclass(slots=True)
class QualityConfig:
    """默认质量与按格式覆盖的质量。"""

    default: int = DEFAULT_QUALITY
    overrides: dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _check_quality(self.default, "默认质量")
        for format_id, value in self.overrides.items():
            _check_quality(value, f"{format_id} 质量")

    def quality_for(self, spec: FormatSpec) -> Optional[int]:
        """返回格式的有效质量；不支持质量参数的格式返回 None。"""

        if not (spec.is_lossy and spec.supports_quality):
            return None
        return self.overrides.get(spec.id, self.default)


def default_max_workers(env: Optional[Mapping[str, str]] = None) -> int:
    """根据 CPU 数量推导默认并发数，可通过环境变量覆盖。"""

    source = env if env is not None else os.environ
    raw = source.get(WORKERS_ENV_VAR)
    if raw:
        try:
            value = int(raw)
        except ValueError:
            LOGGER.warning("环境变量 %s 不是整数: %s", WORKERS_ENV_VAR, raw)
        else:
            if value >= 1:
                return value
            LOGGER.warning("环境变量 %s 必须大于 0: %s", WORKERS_ENV_VAR, raw)

    cores = os.cpu_count() or 2
    return min(MAX_WORKERS, max(MIN_WORKERS, cores - 1))


@dataclass(slots=True)
class JobConfig:
    """单次批处理任务的配置集合。"""

    input_files: Sequence[Path]
    input_root: Path
    output_root: Path
    formats: Sequence[ResolvedFormat]
    quality: QualityConfig = field(default_factory=QualityConfig)
    batch_mode: bool = True
    max_workers: Optional[int] = None
    job_timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_workers is not None and self.max_workers < 1:
            raise InvalidConfigurationError(f"并发数必须大于 0: {self.max_workers}")
        if self.job_timeout is not None and self.job_timeout <= 0:
            raise InvalidConfigurationError(f"超时时间必须大于 0: {self.job_timeout}")

    def resolved_workers(self) -> int:
        if self.max_workers is not None:
            return self.max_workers
        return default_max_workers()
