"""环节五：测试批处理调度、降级与汇总。"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Iterable, Optional

import pytest
from PIL import Image

from image_transcoder.core.catalog import ADVANCED_CODEC_KEYS, resolve_catalog, select_formats
from image_transcoder.core.config import JobConfig, QualityConfig
from image_transcoder.core.exceptions import EncodeError, ProviderUnavailableError
from image_transcoder.core.models import BatchSummary, CapabilitySet
from image_transcoder.core.progress import ProgressUpdate
from image_transcoder.processing.pipeline import process_batch


class FakePool:
    """记录调用的编码池替身。"""

    def __init__(self, failing: Iterable[str] = ()) -> None:
        self.failing = set(failing)
        self.calls: list[tuple[bytes, int, str, dict]] = []
        self.close_calls = 0
        self._lock = threading.Lock()

    def encode(self, data, codec_key, options, timeout=None):
        with self._lock:
            self.calls.append((data, id(data), codec_key, dict(options)))
        if codec_key in self.failing:
            raise EncodeError(f"{codec_key} exploded")
        return f"{codec_key}:{len(data)}".encode()

    def close(self) -> None:
        self.close_calls += 1


def _catalog(usable: bool = True):
    return resolve_catalog(CapabilitySet({key: usable for key in ADVANCED_CODEC_KEYS}))


def _make_inputs(root: Path, count: int = 3) -> list[Path]:
    paths = []
    for index in range(count):
        folder = root / f"group{index % 3}" / ("nested" if index % 2 else "")
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / f"img{index:02d}.png"
        Image.new("RGB", (16, 16), (index * 7 % 256, 40, 90)).save(path)
        paths.append(path)
    return sorted(paths, key=lambda p: str(p).lower())


def _config(
    inputs: list[Path],
    root: Path,
    output: Path,
    format_ids: Iterable[str],
    *,
    usable: bool = True,
    workers: Optional[int] = 2,
    quality: Optional[QualityConfig] = None,
) -> JobConfig:
    return JobConfig(
        input_files=inputs,
        input_root=root,
        output_root=output,
        formats=select_formats(_catalog(usable), format_ids),
        quality=quality or QualityConfig(),
        batch_mode=True,
        max_workers=workers,
    )


def test_end_to_end_with_advanced_provider_unavailable(tmp_path: Path) -> None:
    source = tmp_path / "input"
    (source / "sub").mkdir(parents=True)
    Image.new("RGB", (20, 20), "red").save(source / "one.png")
    Image.new("RGB", (20, 20), "blue").save(source / "sub" / "two.png")
    Image.new("RGB", (20, 20), "green").save(source / "sub" / "three.jpg")
    inputs = sorted(source.rglob("*.*"))
    output = tmp_path / "output"

    def unavailable(workers: int):
        raise ProviderUnavailableError("imagecodecs failed to start")

    config = _config(inputs, source, output, ["webp", "original"])
    summary = process_batch(config, pool_factory=unavailable)

    assert summary.total_inputs == 3
    assert [(s.format_id, s.skipped) for s in summary.skipped_formats] == [("webp", 3)]
    assert "imagecodecs failed to start" in summary.skipped_formats[0].reason
    assert summary.outputs_by_format == {"original": 3}
    assert summary.failures == []

    assert (output / "one-transcoded.png").read_bytes() == (source / "one.png").read_bytes()
    assert (output / "sub" / "two-transcoded.png").exists()
    assert (output / "sub" / "three-transcoded.jpg").read_bytes() == (source / "sub" / "three.jpg").read_bytes()
    assert not list(output.rglob("*.webp"))


def test_unsupported_format_is_skipped_for_every_input_without_jobs(tmp_path: Path) -> None:
    source = tmp_path / "input"
    inputs = _make_inputs(source, 5)
    pool = FakePool()

    config = _config(inputs, source, tmp_path / "out", ["wp2", "jxl"], usable=False)
    summary = process_batch(config, pool_factory=lambda workers: pool)

    assert sorted((s.format_id, s.skipped) for s in summary.skipped_formats) == [("jxl", 5), ("wp2", 5)]
    assert summary.outputs_by_format == {}
    assert pool.calls == []
    assert not (tmp_path / "out").exists()


def test_pool_is_built_once_and_closed_once(tmp_path: Path) -> None:
    source = tmp_path / "input"
    inputs = _make_inputs(source, 6)
    pool = FakePool(failing={"avif"})
    built: list[int] = []

    def factory(workers: int) -> FakePool:
        built.append(workers)
        return pool

    config = _config(inputs, source, tmp_path / "out", ["avif", "webp", "mozjpeg"], workers=3)
    summary = process_batch(config, pool_factory=factory)

    assert built == [3]
    assert pool.close_calls == 1
    assert summary.outputs_by_format == {"avif": 0, "webp": 6, "mozjpeg": 6}
    assert len(summary.failures) == 6
    assert all(f.format_id == "avif" and f.reason == "AVIF: avif exploded" for f in summary.failures)


def test_pool_is_not_built_without_advanced_formats(tmp_path: Path) -> None:
    source = tmp_path / "input"
    inputs = _make_inputs(source, 2)

    def factory(workers: int):
        raise AssertionError("pool should not be built")

    summary = process_batch(_config(inputs, source, tmp_path / "out", ["browser-png", "original"]), pool_factory=factory)

    assert summary.outputs_by_format == {"browser-png": 2, "original": 2}


def test_input_is_read_once_per_file_for_advanced_jobs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    source = tmp_path / "input"
    inputs = _make_inputs(source, 4)
    pool = FakePool()
    reads: dict[Path, int] = {}
    original_read_bytes = Path.read_bytes
    lock = threading.Lock()

    def counting_read_bytes(self: Path) -> bytes:
        with lock:
            reads[self] = reads.get(self, 0) + 1
        return original_read_bytes(self)

    monkeypatch.setattr(Path, "read_bytes", counting_read_bytes)

    config = _config(inputs, source, tmp_path / "out", ["avif", "webp", "mozjpeg", "qoi"])
    process_batch(config, pool_factory=lambda workers: pool)

    assert reads == {path: 1 for path in inputs}
    buffers_per_file: dict[bytes, set[int]] = {}
    for data, buffer_id, _, _ in pool.calls:
        buffers_per_file.setdefault(data, set()).add(buffer_id)
    assert all(len(ids) == 1 for ids in buffers_per_file.values())


def test_quality_overrides_reach_the_pool(tmp_path: Path) -> None:
    source = tmp_path / "input"
    inputs = _make_inputs(source, 1)
    pool = FakePool()

    config = _config(
        inputs,
        source,
        tmp_path / "out",
        ["avif", "webp", "oxipng"],
        quality=QualityConfig(default=50, overrides={"webp": 90}),
    )
    process_batch(config, pool_factory=lambda workers: pool)

    options = {codec: opts for _, _, codec, opts in pool.calls}
    assert options == {"avif": {"cq_level": 40}, "webp": {"level": 90}, "oxipng": {"level": 9}}


def test_job_failures_do_not_abort_siblings(tmp_path: Path) -> None:
    source = tmp_path / "input"
    inputs = _make_inputs(source, 2)
    broken = source / "broken.png"
    broken.write_text("not an image")
    inputs = sorted([*inputs, broken])

    config = _config(inputs, source, tmp_path / "out", ["browser-png", "original"])
    summary = process_batch(config, pool_factory=lambda workers: FakePool())

    assert summary.outputs_by_format == {"browser-png": 2, "original": 3}
    assert [(f.source_path, f.format_id) for f in summary.failures] == [(broken, "browser-png")]
    assert (tmp_path / "out" / "broken-transcoded.png").read_text() == "not an image"


def test_output_path_collision_is_reported_not_overwritten(tmp_path: Path) -> None:
    source = tmp_path / "input"
    source.mkdir()
    Image.new("RGB", (8, 8), "red").save(source / "same.png")
    Image.new("RGB", (8, 8), "blue").save(source / "same.jpg")
    inputs = sorted(source.iterdir())

    summary = process_batch(_config(inputs, source, tmp_path / "out", ["browser-png"]), pool_factory=lambda workers: FakePool())

    assert summary.outputs_by_format == {"browser-png": 1}
    assert len(summary.failures) == 1
    assert summary.failures[0].source_path == inputs[1]
    assert "same-transcoded.png" in summary.failures[0].reason


def test_formats_sharing_an_extension_all_succeed_for_one_input(tmp_path: Path) -> None:
    source = tmp_path / "input"
    source.mkdir()
    Image.new("RGB", (8, 8), "red").save(source / "a.jpg")
    Image.new("RGB", (8, 8), "blue").save(source / "b.jpg")
    inputs = sorted(source.iterdir())
    output = tmp_path / "out"
    formats = ["avif", "browser-jpeg", "mozjpeg", "original", "browser-gif"]

    summary = process_batch(_config(inputs, source, output, formats, usable=False), pool_factory=lambda workers: FakePool())

    assert summary.failures == []
    assert summary.outputs_by_format == {"avif": 2, "browser-gif": 2, "browser-jpeg": 2, "mozjpeg": 2, "original": 2}
    with Image.open(output / "a-transcoded.avif") as avif:
        assert avif.format == "AVIF"
    # 同名输出按目录顺序写入，原图复制最后完成。
    assert (output / "a-transcoded.jpg").read_bytes() == (source / "a.jpg").read_bytes()
    with Image.open(output / "b-transcoded.gif") as gif:
        assert gif.mode == "P"


def test_progress_is_reported_once_per_input_file(tmp_path: Path) -> None:
    source = tmp_path / "input"
    inputs = _make_inputs(source, 7)
    updates: list[ProgressUpdate] = []
    lock = threading.Lock()

    def callback(update: ProgressUpdate) -> None:
        with lock:
            updates.append(update)

    config = _config(inputs, source, tmp_path / "out", ["webp", "original"], workers=4)
    process_batch(config, progress_callback=callback, pool_factory=lambda workers: FakePool())

    assert len(updates) == 7
    assert [u.completed for u in updates] == list(range(1, 8))
    assert {u.source_path for u in updates} == set(inputs)
    assert all(u.total == 7 for u in updates)


def _normalized(summary: BatchSummary, output: Path) -> tuple:
    return (
        summary.total_inputs,
        summary.outputs_by_format,
        [(s.source_path, s.format_id, s.output_path.relative_to(output)) for s in summary.succeeded],
        [(f.source_path, f.format_id, f.reason) for f in summary.failures],
        summary.skipped_formats,
    )


def test_concurrency_level_does_not_change_summary(tmp_path: Path) -> None:
    source = tmp_path / "input"
    inputs = _make_inputs(source, 24)
    broken = source / "zz-broken.png"
    broken.write_text("garbage")
    inputs.append(broken)
    formats = ["avif", "webp", "browser-jpeg", "jxl", "wp2", "original"]

    results = []
    for workers in (1, 8):
        output = tmp_path / f"out-{workers}"
        pool = FakePool(failing={"jxl"})
        config = _config(inputs, source, output, formats, workers=workers)
        results.append(_normalized(process_batch(config, pool_factory=lambda w, pool=pool: pool), output))

    serial, parallel = results
    assert serial == parallel
    # 并发累加不能丢失更新。
    assert serial[1]["original"] == 25
    assert serial[1]["webp"] == 25
    assert serial[1]["browser-jpeg"] == 24
    assert serial[1]["jxl"] == 0


def test_default_workers_follow_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    source = tmp_path / "input"
    inputs = _make_inputs(source, 2)
    built: list[int] = []

    def factory(workers: int) -> FakePool:
        built.append(workers)
        return FakePool()

    monkeypatch.setenv("IMAGE_TRANSCODER_WORKERS", "5")
    process_batch(_config(inputs, source, tmp_path / "out", ["webp"], workers=None), pool_factory=factory)

    assert built == [5]
