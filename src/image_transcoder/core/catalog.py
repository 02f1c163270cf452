"""输出格式目录：静态格式表与运行时策略解析。"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from image_transcoder.core.exceptions import InvalidConfigurationError
from image_transcoder.core.models import (
    AdvancedCodec,
    CapabilitySet,
    FallbackCodec,
    FormatSpec,
    RawCopy,
    ResolvedFormat,
    Strategy,
    Unsupported,
)

ORIGINAL_FORMAT_ID = "original"
PRIMARY_FALLBACK_LABEL = "JPEG fallback (not true MozJPEG)"

# 顺序即菜单顺序。
FORMAT_SPECS: tuple[FormatSpec, ...] = (
    FormatSpec("avif", "AVIF", "avif", True, True, advanced_codec="avif", fallback_format="AVIF"),
    FormatSpec("browser-gif", "Browser GIF", "gif", True, False, fallback_format="GIF"),
    FormatSpec("browser-jpeg", "Browser JPEG", "jpg", True, True, fallback_format="JPEG"),
    FormatSpec("browser-png", "Browser PNG", "png", False, False, fallback_format="PNG"),
    FormatSpec("jxl", "JPEG XL (beta)", "jxl", True, True, advanced_codec="jxl"),
    FormatSpec(
        "mozjpeg",
        "MozJPEG",
        "jpg",
        True,
        True,
        advanced_codec="mozjpeg",
        fallback_format="JPEG",
        primary=True,
    ),
    FormatSpec("oxipng", "OxiPNG", "png", False, False, advanced_codec="oxipng"),
    FormatSpec("qoi", "QOI", "qoi", False, False, advanced_codec="qoi"),
    FormatSpec("webp", "WebP", "webp", True, True, advanced_codec="webp", fallback_format="WEBP"),
    FormatSpec("wp2", "WebP v2 (unstable)", "wp2", True, True, advanced_codec="wp2"),
    FormatSpec(ORIGINAL_FORMAT_ID, "Original image (copy)", "original", False, False, raw_copy=True),
)

ADVANCED_CODEC_KEYS: tuple[str, ...] = tuple(
    spec.advanced_codec for spec in FORMAT_SPECS if spec.advanced_codec is not None
)


def _resolve_strategy(spec: FormatSpec, capabilities: CapabilitySet) -> Strategy:
    if spec.raw_copy:
        return RawCopy()
    if spec.advanced_codec is not None and capabilities.is_usable(spec.advanced_codec):
        return AdvancedCodec(spec.advanced_codec)
    if spec.fallback_format is not None:
        return FallbackCodec(spec.fallback_format)
    return Unsupported()


def resolve_catalog(capabilities: CapabilitySet) -> tuple[ResolvedFormat, ...]:
    """根据能力检测结果为每个格式绑定唯一的执行策略。"""

    resolved: list[ResolvedFormat] = []
    for spec in FORMAT_SPECS:
        strategy = _resolve_strategy(spec, capabilities)
        label = spec.label
        if spec.primary:
            if isinstance(strategy, Unsupported):
                raise InvalidConfigurationError(f"主编码器 {spec.id} 缺少回退映射")
            if isinstance(strategy, FallbackCodec):
                label = PRIMARY_FALLBACK_LABEL
        resolved.append(ResolvedFormat(spec=spec, strategy=strategy, label=label))
    return tuple(resolved)


def find_format(catalog: Sequence[ResolvedFormat], format_id: str) -> Optional[ResolvedFormat]:
    for entry in catalog:
        if entry.id == format_id:
            return entry
    return None


def select_formats(catalog: Sequence[ResolvedFormat], format_ids: Iterable[str]) -> list[ResolvedFormat]:
    """按目录顺序返回选中的格式，未知 id 被忽略。"""

    wanted = set(format_ids)
    return [entry for entry in catalog if entry.id in wanted]
