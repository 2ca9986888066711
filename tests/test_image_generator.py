from __future__ import annotations

from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

import pytest
from PIL import Image

import image_generator


def _top() -> list:
    return [SimpleNamespace(name="France", estimated_gdp=900.0), SimpleNamespace(name="Chad", estimated_gdp=None)]


def test_generate_summary_image_leaves_only_the_png(tmp_path: Path) -> None:
    target = tmp_path / "cache" / "summary.png"
    path = image_generator.generate_summary_image(2, _top(), datetime(2025, 1, 1), str(target))

    assert path == str(target)
    assert target.read_bytes().startswith(b"\x89PNG")
    assert [p.name for p in target.parent.iterdir()] == ["summary.png"]


def test_failed_render_keeps_previous_image(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "summary.png"
    image_generator.generate_summary_image(1, _top(), None, str(target))
    previous = target.read_bytes()

    def broken_save(self, fp, format=None, **params):
        fp.write(b"\x89PNG partial")
        raise OSError("disk full")

    monkeypatch.setattr(Image.Image, "save", broken_save)
    with pytest.raises(OSError, match="disk full"):
        image_generator.generate_summary_image(5, _top(), datetime(2025, 2, 1), str(target))

    assert target.read_bytes() == previous
    assert [p.name for p in tmp_path.iterdir()] == ["summary.png"]
