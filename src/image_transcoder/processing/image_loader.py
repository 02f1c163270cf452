"""图片加载与基础预处理实现。"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Union

from PIL import Image, ImageOps, UnidentifiedImageError

from image_transcoder.core.exceptions import TranscoderError

LOGGER = logging.getLogger(__name__)

ImageSource = Union[Path, bytes]


class ImageLoadingError(TranscoderError):
    """图片加载失败。"""


def load_image(source: ImageSource, *, keep_alpha: bool = False) -> Image.Image:
    """加载单张图片并执行 EXIF 旋转与模式归一化。

    ``source`` 可以是文件路径或已读入内存的字节。
    ``keep_alpha`` 为 True 时带透明通道的图片输出为 RGBA，否则统一为 RGB。
    返回值为新的 Image 对象，调用者负责关闭。
    """

    handle = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else source
    name = "<memory>" if isinstance(source, (bytes, bytearray)) else str(source)

    try:
        with Image.open(handle) as img:
            img.load()

            # EXIF Orientation 校正
            img = ImageOps.exif_transpose(img)
            img = _normalize_mode(img, keep_alpha)
            return img.copy()
    except (UnidentifiedImageError, OSError) as exc:
        LOGGER.debug("无法识别图像文件 %s: %s", name, exc)
        raise ImageLoadingError(f"无法加载图像: {name}") from exc


def _has_alpha(img: Image.Image) -> bool:
    if img.mode in {"RGBA", "LA", "PA"}:
        return True
    return img.mode == "P" and "transparency" in img.info


def _normalize_mode(img: Image.Image, keep_alpha: bool) -> Image.Image:
    """将任意模式图像转换为 RGB 或 RGBA。"""

    if _has_alpha(img):
        rgba = img.convert("RGBA")
        if keep_alpha:
            return rgba
        # 通过白色背景混合去除透明通道。
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background

    if img.mode == "RGB":
        return img

    # CMYK、P、L 等其他模式直接转换
    return img.convert("RGB")
