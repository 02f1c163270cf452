"""进度更新的数据模型。"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(slots=True)
class ProgressUpdate:
    """每完成一个输入文件（全部格式均已尝试）发出一次。"""

    total: int
    completed: int
    source_path: Optional[Path] = None
    failures: int = 0
    message: Optional[str] = None
