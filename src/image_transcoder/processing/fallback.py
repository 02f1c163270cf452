"""基于 Pillow 的回退编码实现。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from PIL import Image

from image_transcoder.core.exceptions import EncodeError
from image_transcoder.core.output_manager import atomic_target
from image_transcoder.processing.image_loader import load_image

LOGGER = logging.getLogger(__name__)

ALPHA_FORMATS = {"PNG", "WEBP", "AVIF"}


def _save_params(native_format: str, quality: Optional[int]) -> dict[str, Any]:
    if native_format == "JPEG":
        params: dict[str, Any] = {"optimize": True, "progressive": True}
        if quality is not None:
            params["quality"] = quality
        return params
    if native_format == "PNG":
        return {"optimize": True, "compress_level": 9}
    if native_format in {"WEBP", "AVIF"} and quality is not None:
        return {"quality": quality}
    return {}


def _convert_for_format(image: Image.Image, native_format: str) -> Image.Image:
    if native_format == "GIF":
        # GIF 只支持 256 色调色板。
        return image.convert("P", palette=Image.Palette.ADAPTIVE, colors=256)
    return image


def encode_with_pillow(
    native_format: str,
    source: Path,
    destination: Path,
    quality: Optional[int],
) -> None:
    """读取源文件并以 Pillow 格式写出到目标路径（原子写入）。"""

    loaded = load_image(source, keep_alpha=native_format in ALPHA_FORMATS)
    image = _convert_for_format(loaded, native_format)
    try:
        with atomic_target(destination) as temp_path:
            image.save(temp_path, format=native_format, **_save_params(native_format, quality))
    except (OSError, KeyError, ValueError) as exc:
        # KeyError: 当前 Pillow 未编译该格式的写入插件。
        raise EncodeError(f"Pillow 写入 {native_format} 失败: {exc}") from exc
    finally:
        image.close()
        if image is not loaded:
            loaded.close()
    LOGGER.debug("Pillow 已写入 %s", destination)
