"""环节一：测试输入扫描与基础加载逻辑。"""

from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image

from image_transcoder.core.exceptions import InputPathError, NoInputImagesError
from image_transcoder.core.scanner import discover_inputs
from image_transcoder.processing.image_loader import ImageLoadingError, load_image


def test_directory_is_scanned_recursively_and_sorted(tmp_path: Path) -> None:
    source = tmp_path / "input"
    (source / "nested" / "deeper").mkdir(parents=True)

    Image.new("RGB", (8, 8), "blue").save(source / "b.png")
    Image.new("RGB", (8, 8), "red").save(source / "nested" / "a.jpg")
    Image.new("RGB", (8, 8), "green").save(source / "nested" / "deeper" / "c.webp")
    (source / "notes.txt").write_text("hello")

    selection = discover_inputs(source)

    assert selection.batch_mode is True
    assert selection.input_root == source.resolve()
    names = [path.name for path in selection.files]
    assert sorted(names) == ["a.jpg", "b.png", "c.webp"]
    assert selection.files == sorted(selection.files, key=lambda p: str(p).lower())
    assert all(path.is_absolute() for path in selection.files)


def test_single_file_uses_parent_as_root(tmp_path: Path) -> None:
    image_path = tmp_path / "photo.PNG"
    Image.new("RGB", (8, 8), "blue").save(image_path, format="PNG")

    selection = discover_inputs(image_path)

    assert selection.batch_mode is False
    assert selection.files == [image_path.resolve()]
    assert selection.input_root == tmp_path.resolve()


def test_missing_path_is_fatal(tmp_path: Path) -> None:
    with pytest.raises(InputPathError):
        discover_inputs(tmp_path / "does-not-exist")


def test_unsupported_file_and_empty_directory(tmp_path: Path) -> None:
    text_file = tmp_path / "readme.txt"
    text_file.write_text("nope")
    empty_dir = tmp_path / "empty"
    empty_dir.mkdir()

    with pytest.raises(NoInputImagesError):
        discover_inputs(text_file)
    with pytest.raises(NoInputImagesError):
        discover_inputs(empty_dir)


def test_exif_orientation_is_corrected(tmp_path: Path) -> None:
    if not hasattr(Image, "Exif"):
        pytest.skip("当前 Pillow 版本不支持写入 EXIF 数据")

    image = Image.new("RGB", (80, 40), "red")
    exif = Image.Exif()
    exif[274] = 6  # 顺时针 90 度
    image.save(tmp_path / "rotated.jpg", exif=exif.tobytes())

    loaded = load_image(tmp_path / "rotated.jpg")

    assert loaded.size == (40, 80)


def test_cmyk_image_converts_to_rgb(tmp_path: Path) -> None:
    Image.new("CMYK", (50, 50), (0, 128, 255, 0)).save(tmp_path / "cmyk.jpg")

    loaded = load_image(tmp_path / "cmyk.jpg")

    assert loaded.mode == "RGB"


def test_alpha_is_kept_only_on_request(tmp_path: Path) -> None:
    Image.new("RGBA", (10, 10), (255, 0, 0, 0)).save(tmp_path / "alpha.png")
    data = (tmp_path / "alpha.png").read_bytes()

    assert load_image(data, keep_alpha=True).mode == "RGBA"
    flattened = load_image(data)
    assert flattened.mode == "RGB"
    # 完全透明像素与白色背景混合。
    assert flattened.getpixel((0, 0)) == (255, 255, 255)


def test_corrupted_bytes_raise_loading_error(tmp_path: Path) -> None:
    (tmp_path / "broken.png").write_text("not an image")

    with pytest.raises(ImageLoadingError):
        load_image(tmp_path / "broken.png")
    with pytest.raises(ImageLoadingError):
        load_image(b"not an image either")
