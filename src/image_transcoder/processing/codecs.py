"""高级编码器（imagecodecs）的加载、单次编码与共享编码池。"""

from __future__ import annotations

import importlib
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from types import ModuleType
from typing import Any, Callable, Mapping, Optional

import numpy as np

from image_transcoder.core.exceptions import EncodeError, EncodeTimeoutError, ProviderUnavailableError
from image_transcoder.processing.image_loader import load_image

LOGGER = logging.getLogger(__name__)

PROVIDER_MODULE = "imagecodecs"

OptionTranslator = Callable[[Mapping[str, Any]], dict[str, Any]]


def _passthrough(options: Mapping[str, Any]) -> dict[str, Any]:
    return dict(options)


def _avif_options(options: Mapping[str, Any]) -> dict[str, Any]:
    # libavif 的 cq (0-63, 越小越好) 换算为 imagecodecs 的 level (0-100, 越大越好)。
    translated = {key: value for key, value in options.items() if key != "cq_level"}
    if "cq_level" in options:
        cq = min(63, max(0, int(options["cq_level"])))
        translated["level"] = round((63 - cq) * 100 / 63)
    return translated


@dataclass(frozen=True, slots=True)
class CodecBinding:
    """高级编码器键到 imagecodecs 函数的绑定。"""

    function: str
    keep_alpha: bool
    translate: OptionTranslator = _passthrough


CODEC_BINDINGS: dict[str, CodecBinding] = {
    "mozjpeg": CodecBinding("mozjpeg_encode", keep_alpha=False),
    "webp": CodecBinding("webp_encode", keep_alpha=True),
    "avif": CodecBinding("avif_encode", keep_alpha=True, translate=_avif_options),
    "oxipng": CodecBinding("png_encode", keep_alpha=True),
    "jxl": CodecBinding("jpegxl_encode", keep_alpha=True),
    "qoi": CodecBinding("qoi_encode", keep_alpha=True),
    "wp2": CodecBinding("wp2_encode", keep_alpha=True),
}


class CodecProvider:
    """将字节输入解码为数组并交给 imagecodecs 编码。"""

    def __init__(self, module: ModuleType) -> None:
        self._module = module

    @property
    def version(self) -> str:
        return str(getattr(self._module, "__version__", "unknown"))

    def encode(self, data: bytes, codec_key: str, options: Mapping[str, Any]) -> bytes:
        binding = CODEC_BINDINGS.get(codec_key)
        if binding is None:
            raise EncodeError(f"未知的编码器: {codec_key}")

        encoder = getattr(self._module, binding.function, None)
        if encoder is None:
            raise EncodeError(f"{PROVIDER_MODULE} 未提供 {binding.function}")

        image = load_image(data, keep_alpha=binding.keep_alpha)
        try:
            pixels = np.asarray(image)
        finally:
            image.close()

        try:
            encoded = encoder(pixels, **binding.translate(options))
        except Exception as exc:  # noqa: BLE001
            raise EncodeError(f"{codec_key} 编码失败: {exc}") from exc

        if encoded is None or len(encoded) == 0:
            raise EncodeError(f"{codec_key} 编码结果为空")
        return bytes(encoded)


def load_codec_provider() -> CodecProvider:
    """加载高级编码器；任何加载失败都视为整个提供者不可用。"""

    try:
        module = importlib.import_module(PROVIDER_MODULE)
    except Exception as exc:  # noqa: BLE001
        raise ProviderUnavailableError(f"无法加载 {PROVIDER_MODULE}: {exc}") from exc
    return CodecProvider(module)


class CodecPool:
    """多个工作线程共享的编码池，关闭后不再接受请求。"""

    def __init__(self, provider: CodecProvider, workers: int) -> None:
        self._provider = provider
        self._executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="codec")
        self._lock = threading.Lock()
        self._closed = False
        self._abandoned = False

    @property
    def closed(self) -> bool:
        return self._closed

    def encode(
        self,
        data: bytes,
        codec_key: str,
        options: Mapping[str, Any],
        timeout: Optional[float] = None,
    ) -> bytes:
        future = self._executor.submit(self._provider.encode, data, codec_key, options)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as exc:
            if not future.cancel():
                with self._lock:
                    self._abandoned = True
            raise EncodeTimeoutError(f"{codec_key} 编码超过 {timeout} 秒未完成") from exc

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            wait = not self._abandoned

        # 存在超时未结束的调用时不再等待，避免卡住整批任务。
        self._executor.shutdown(wait=wait, cancel_futures=True)
        LOGGER.debug("编码池已关闭")


def open_codec_pool(workers: int) -> CodecPool:
    """为一次批处理构建编码池。"""

    provider = load_codec_provider()
    LOGGER.debug("已加载 %s %s", PROVIDER_MODULE, provider.version)
    return CodecPool(provider, workers)
