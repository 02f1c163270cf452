"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Mapping, Optional, Union


@dataclass(frozen=True, slots=True)
class FormatSpec:
    """静态定义的输出格式。

    ``advanced_codec`` / ``fallback_format`` 描述该格式可用的编码路径，
    运行时由目录解析为唯一的 Strategy。
    """

    id: str
    label: str
    extension: str
    is_lossy: bool
    supports_quality: bool
    advanced_codec: Optional[str] = None
    fallback_format: Optional[str] = None
    raw_copy: bool = False
    primary: bool = False


@dataclass(frozen=True, slots=True)
class AdvancedCodec:
    """通过高级编码池编码。"""

    codec_key: str


@dataclass(frozen=True, slots=True)
class FallbackCodec:
    """通过 Pillow 回退编码。"""

    native_format: str


@dataclass(frozen=True, slots=True)
class RawCopy:
    """原样复制源文件。"""


@dataclass(frozen=True, slots=True)
class Unsupported:
    """当前运行环境无法生成该格式。"""


Strategy = Union[AdvancedCodec, FallbackCodec, RawCopy, Unsupported]


class CapabilitySet(Mapping[str, bool]):
    """高级编码器可用性（只读）。"""

    __slots__ = ("_flags",)

    def __init__(self, flags: Mapping[str, bool]) -> None:
        self._flags = MappingProxyType(dict(flags))

    def __getitem__(self, key: str) -> bool:
        return self._flags[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._flags)

    def __len__(self) -> int:
        return len(self._flags)

    def __repr__(self) -> str:
        return f"CapabilitySet({dict(self._flags)!r})"

    def is_usable(self, codec_key: str) -> bool:
        return bool(self._flags.get(codec_key, False))

    def any_usable(self) -> bool:
        return any(self._flags.values())

    def usable(self) -> list[str]:
        return [key for key, ok in self._flags.items() if ok]


@dataclass(frozen=True, slots=True)
class ResolvedFormat:
    """本次运行中某个格式绑定的执行策略。"""

    spec: FormatSpec
    strategy: Strategy
    label: str

    @property
    def id(self) -> str:
        return self.spec.id

    @property
    def is_fallback(self) -> bool:
        return self.spec.advanced_codec is not None and isinstance(self.strategy, FallbackCodec)

    @property
    def is_supported(self) -> bool:
        return not isinstance(self.strategy, Unsupported)


@dataclass(slots=True)
class Job:
    """单个 (输入文件, 输出格式) 任务。"""

    source_path: Path
    format: ResolvedFormat
    destination: Path


@dataclass(frozen=True, slots=True)
class JobSuccess:
    source_path: Path
    format_id: str
    output_path: Path


@dataclass(frozen=True, slots=True)
class JobFailure:
    source_path: Path
    format_id: str
    format_label: str
    reason: str


JobOutcome = Union[JobSuccess, JobFailure]


@dataclass(frozen=True, slots=True)
class SkippedFormat:
    """整体跳过的格式及跳过的文件数。"""

    format_id: str
    label: str
    skipped: int
    reason: str = "unsupported"


@dataclass(slots=True)
class BatchSummary:
    """批处理的汇总结果。"""

    total_inputs: int
    outputs_by_format: dict[str, int] = field(default_factory=dict)
    succeeded: list[JobSuccess] = field(default_factory=list)
    failures: list[JobFailure] = field(default_factory=list)
    skipped_formats: list[SkippedFormat] = field(default_factory=list)
    duration_seconds: float = 0.0

    def all_outcomes(self) -> list[JobOutcome]:
        """返回所有任务结果，方便生成报告。"""

        return [*self.succeeded, *self.failures]
