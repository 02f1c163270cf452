"""输出路径计算与原子写入。"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Iterator

from image_transcoder.core.exceptions import TranscoderError

LOGGER = logging.getLogger(__name__)

OUTPUT_SUFFIX = "transcoded"


class ImageWriteError(TranscoderError):
    """输出写入失败。"""


def original_extension(input_file: Path) -> str:
    """返回源文件扩展名（小写，不含点）。"""

    return input_file.suffix.lower().lstrip(".")


def resolve_output_path(
    input_file: Path,
    input_root: Path,
    output_root: Path,
    batch_mode: bool,
    extension: str,
) -> Path:
    """计算 (输入文件, 格式) 对应的输出路径。

    目录模式下保留输入文件相对 ``input_root`` 的目录结构；
    单文件模式直接输出到 ``output_root``。
    """

    filename = f"{input_file.stem}-{OUTPUT_SUFFIX}.{extension}"
    if not batch_mode:
        return output_root / filename

    try:
        relative_dir = input_file.relative_to(input_root).parent
    except ValueError:
        relative_dir = Path()
    return output_root / relative_dir / filename


def temp_path_for(destination: Path) -> Path:
    """在目标同目录下生成唯一的临时文件名。"""

    stamp = f"{os.getpid()}-{uuid.uuid4().hex}"
    return destination.with_name(f".{destination.name}.tmp-{stamp}")


@contextmanager
def atomic_target(destination: Path) -> Iterator[Path]:
    """提供临时路径供调用者写入，成功后重命名到目标位置。

    调用者写入失败时临时文件会被尽量清理，目标路径保持不变。
    """

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ImageWriteError(f"无法创建输出目录: {destination.parent}") from exc

    temp_path = temp_path_for(destination)
    try:
        yield temp_path
        os.replace(temp_path, destination)
    except BaseException:
        with suppress(OSError):
            temp_path.unlink()
        raise


def write_atomic(destination: Path, data: bytes) -> None:
    """原子写入字节数据。"""

    try:
        with atomic_target(destination) as temp_path:
            with temp_path.open("wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
    except OSError as exc:
        raise ImageWriteError(f"写入文件失败: {destination}") from exc
    LOGGER.debug("已写入 %s (%d 字节)", destination, len(data))


def copy_atomic(source: Path, destination: Path) -> None:
    """原子复制文件。"""

    try:
        with atomic_target(destination) as temp_path:
            shutil.copyfile(source, temp_path)
    except OSError as exc:
        raise ImageWriteError(f"复制文件失败: {source} -> {destination}") from exc
    LOGGER.debug("已复制 %s -> %s", source, destination)
