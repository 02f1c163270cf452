"""高级编码器能力检测：每次运行执行一次真实的微型编码。"""

from __future__ import annotations

import io
import logging
from typing import Any, Callable, Mapping, Protocol

from PIL import Image

from image_transcoder.core.catalog import ADVANCED_CODEC_KEYS
from image_transcoder.core.models import CapabilitySet
from image_transcoder.processing.codecs import load_codec_provider

LOGGER = logging.getLogger(__name__)


def _build_probe_image() -> bytes:
    """生成 1x1 像素的 RGBA PNG，作为探测用的最小测试图片。"""

    buffer = io.BytesIO()
    with Image.new("RGBA", (1, 1), (255, 0, 0, 255)) as image:
        image.save(buffer, format="PNG")
    return buffer.getvalue()


PROBE_IMAGE = _build_probe_image()

PROBE_OPTIONS: dict[str, dict[str, Any]] = {
    "mozjpeg": {"level": 75},
    "webp": {"level": 75},
    "avif": {"cq_level": 30},
    "oxipng": {"level": 2},
    "jxl": {"level": 75},
    "qoi": {},
    "wp2": {"level": 75},
}


class SupportsEncode(Protocol):
    def encode(self, data: bytes, codec_key: str, options: Mapping[str, Any]) -> bytes: ...


ProviderLoader = Callable[[], SupportsEncode]


def _probe(provider: SupportsEncode, codec_key: str) -> bool:
    try:
        encoded = provider.encode(PROBE_IMAGE, codec_key, PROBE_OPTIONS.get(codec_key, {}))
    except Exception as exc:  # noqa: BLE001
        LOGGER.debug("编码器 %s 不可用: %s", codec_key, exc)
        return False
    return bool(encoded)


def detect_capabilities(provider_loader: ProviderLoader = load_codec_provider) -> CapabilitySet:
    """探测高级编码器在当前运行环境中是否可用，不会抛出异常。"""

    try:
        provider = provider_loader()
    except Exception as exc:  # noqa: BLE001
        LOGGER.info("高级编码器不可用，将使用 Pillow 回退: %s", exc)
        return CapabilitySet({key: False for key in ADVANCED_CODEC_KEYS})

    flags = {key: _probe(provider, key) for key in ADVANCED_CODEC_KEYS}
    capabilities = CapabilitySet(flags)
    LOGGER.info("可用的高级编码器: %s", ", ".join(capabilities.usable()) or "无")
    return capabilities
