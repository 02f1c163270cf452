"""用户质量值 (1-100) 到各编码器原生参数的映射。"""

from __future__ import annotations

from typing import Any

from image_transcoder.core.config import QUALITY_MAX, QUALITY_MIN

AVIF_CQ_RANGE = (0, 63)

# (质量, cq) 断点，质量从高到低；cq 越小画质越好。
AVIF_CQ_BREAKPOINTS: tuple[tuple[int, int], ...] = (
    (100, 10),
    (75, 30),
    (50, 40),
    (25, 50),
    (1, 60),
)

OXIPNG_LEVEL = 9


def _clamp(value: float, low: int, high: int) -> float:
    return min(high, max(low, value))


def native_range(format_id: str) -> tuple[int, int]:
    """返回格式原生质量参数的取值范围。"""

    if format_id == "avif":
        return AVIF_CQ_RANGE
    return QUALITY_MIN, QUALITY_MAX


def map_quality_to_avif_cq(quality: int) -> int:
    q = _clamp(quality, QUALITY_MIN, QUALITY_MAX)
    cq: float = AVIF_CQ_BREAKPOINTS[-1][1]
    for (q_high, cq_high), (q_low, cq_low) in zip(AVIF_CQ_BREAKPOINTS, AVIF_CQ_BREAKPOINTS[1:]):
        if q >= q_low:
            t = (q - q_low) / (q_high - q_low)
            cq = cq_low + (cq_high - cq_low) * t
            break
    low, high = AVIF_CQ_RANGE
    return int(_clamp(round(cq), low, high))


def map_quality(format_id: str, quality: int) -> int:
    """将 1-100 的质量映射到格式的原生参数空间。"""

    if format_id == "avif":
        return map_quality_to_avif_cq(quality)
    return int(_clamp(round(quality), QUALITY_MIN, QUALITY_MAX))


def advanced_encode_options(format_id: str, quality: int | None) -> dict[str, Any]:
    """构造提交给高级编码池的参数。"""

    if format_id == "avif":
        return {"cq_level": map_quality("avif", quality if quality is not None else QUALITY_MAX)}
    if format_id == "oxipng":
        return {"level": OXIPNG_LEVEL}
    if format_id == "qoi":
        return {}
    if quality is None:
        return {}
    return {"level": map_quality(format_id, quality)}
