"""上次使用的格式选择与质量配置的持久化。"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from image_transcoder.core.config import QualityConfig
from image_transcoder.core.exceptions import InvalidConfigurationError
from image_transcoder.core.output_manager import OUTPUT_SUFFIX, write_atomic

LOGGER = logging.getLogger(__name__)

SETTINGS_FILENAME = ".transcode-last.json"
SETTINGS_VERSION = 1


@dataclass(slots=True)
class SavedSettings:
    """可复用的格式选择与质量配置。"""

    selected_ids: list[str]
    quality: QualityConfig

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": SETTINGS_VERSION,
            "selected_ids": list(self.selected_ids),
            "quality": {
                "default": self.quality.default,
                "overrides": dict(self.quality.overrides),
            },
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "SavedSettings":
        """从 JSON 数据构造；结构不符时抛出 InvalidConfigurationError。"""

        if not isinstance(payload, dict) or payload.get("version") != SETTINGS_VERSION:
            raise InvalidConfigurationError("配置版本不匹配")

        selected = payload.get("selected_ids")
        quality = payload.get("quality")
        if not isinstance(selected, list) or not all(isinstance(item, str) for item in selected):
            raise InvalidConfigurationError("selected_ids 必须为字符串列表")
        if not isinstance(quality, dict):
            raise InvalidConfigurationError("quality 必须为对象")

        overrides = quality.get("overrides", {})
        if not isinstance(overrides, dict):
            raise InvalidConfigurationError("quality.overrides 必须为对象")

        return cls(
            selected_ids=selected,
            quality=QualityConfig(default=quality.get("default"), overrides=dict(overrides)),
        )


def resolve_output_root(
    input_path: Path,
    batch_mode: bool,
    out_dir: Optional[Path] = None,
) -> tuple[Path, Path]:
    """返回 (输出根目录, 配置文件路径)。"""

    if out_dir is not None:
        output_root = out_dir.expanduser().resolve()
    elif batch_mode:
        output_root = input_path.parent / f"{input_path.name}-{OUTPUT_SUFFIX}"
    else:
        output_root = input_path.parent
    return output_root, output_root / SETTINGS_FILENAME


def load_saved_settings(path: Path) -> Optional[SavedSettings]:
    """读取上次保存的配置；缺失或损坏时视为不存在。"""

    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        LOGGER.warning("无法读取上次配置 %s: %s", path, exc)
        return None

    try:
        return SavedSettings.from_dict(json.loads(raw))
    except (ValueError, InvalidConfigurationError) as exc:
        LOGGER.warning("忽略无效的上次配置 %s: %s", path, exc)
        return None


def save_settings(path: Path, settings: SavedSettings) -> None:
    payload = json.dumps(settings.to_dict(), indent=2, ensure_ascii=False) + "\n"
    write_atomic(path, payload.encode("utf-8"))
