"""输入文件扫描与筛选逻辑。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from image_transcoder.core.exceptions import InputPathError, NoInputImagesError

LOGGER = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".avif", ".gif"}


@dataclass(slots=True)
class InputSelection:
    """扫描阶段得到的输入文件集合。"""

    files: list[Path]
    input_root: Path
    batch_mode: bool


def is_supported_image(path: Path) -> bool:
    return path.suffix.lower() in IMAGE_EXTENSIONS


def _iter_candidate_files(root: Path) -> Iterator[Path]:
    """递归遍历目录下的普通文件，忽略符号链接。"""

    for candidate in root.rglob("*"):
        if candidate.is_symlink():
            continue
        if candidate.is_file():
            yield candidate


def discover_inputs(path: Path) -> InputSelection:
    """解析输入路径：单个文件或递归扫描目录。"""

    resolved = path.expanduser().resolve()

    if resolved.is_file():
        if not is_supported_image(resolved):
            raise NoInputImagesError(f"不支持的输入文件: {resolved}")
        return InputSelection(files=[resolved], input_root=resolved.parent, batch_mode=False)

    if not resolved.is_dir():
        raise InputPathError(f"输入路径不存在或不可访问: {resolved}")

    seen: set[Path] = set()
    collected: list[Path] = []
    for candidate in _iter_candidate_files(resolved):
        if candidate in seen or not is_supported_image(candidate):
            continue
        seen.add(candidate)
        collected.append(candidate)

    if not collected:
        raise NoInputImagesError(f"目录中没有可处理的图片: {resolved}")

    collected.sort(key=lambda x: str(x).lower())
    LOGGER.info("发现 %d 个候选图片文件", len(collected))
    return InputSelection(files=collected, input_root=resolved, batch_mode=True)
