"""
Тесты реестра языковых моделей.
"""

from pathlib import Path

import pytest

from image_ocr.errors import AssetMissing, InvalidLanguage, InvalidOptions
from image_ocr.services.languages import LANGUAGE_CATALOG, LanguageRegistry, parse_language_field


@pytest.fixture
def registry(tessdata: Path) -> LanguageRegistry:
    return LanguageRegistry(str(tessdata), default_language="eng")


def _forbid_filesystem(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("обращение к файловой системе")

    monkeypatch.setattr(Path, "is_file", fail)
    monkeypatch.setattr(Path, "exists", fail)
    monkeypatch.setattr(Path, "is_dir", fail)
    monkeypatch.setattr(Path, "iterdir", fail)


def test_resolve_existing_language(registry, tessdata):
    asset = registry.resolve("eng")

    assert asset.code == "eng"
    assert asset.exists
    assert asset.tesseract_name == "eng"
    assert Path(asset.path) == tessdata / "eng.traineddata"


def test_unknown_code_rejected_without_filesystem_access(registry, monkeypatch):
    _forbid_filesystem(monkeypatch)

    with pytest.raises(InvalidLanguage) as exc_info:
        registry.resolve("xyz")

    assert exc_info.value.status_code == 400
    assert exc_info.value.context["language"] == "xyz"


def test_unknown_code_rejected_even_if_file_exists(registry, tessdata):
    (tessdata / "xyz.traineddata").write_bytes(b"test data")

    with pytest.raises(InvalidLanguage):
        registry.resolve("xyz")


def test_composite_request_fails_fast_on_any_invalid_code(registry, monkeypatch):
    _forbid_filesystem(monkeypatch)

    with pytest.raises(InvalidLanguage) as exc_info:
        registry.resolve_all(["eng", "deu", "klingon"])

    assert exc_info.value.context["language"] == "klingon"


def test_catalog_language_without_file_is_asset_missing(registry):
    assert "fra" in LANGUAGE_CATALOG

    with pytest.raises(AssetMissing) as exc_info:
        registry.resolve("fra")

    assert exc_info.value.status_code == 500


def test_resolve_all_keeps_order_and_drops_duplicates(registry):
    assets = registry.resolve_all(["deu", "eng", "deu"])

    assert [a.code for a in assets] == ["deu", "eng"]


def test_resolve_all_empty_uses_default(registry):
    assets = registry.resolve_all([])

    assert [a.code for a in assets] == ["eng"]


def test_model_variant(registry):
    (asset,) = registry.resolve_all(["chi_sim"], model="fast")

    assert asset.model == "fast"
    assert asset.tesseract_name == "chi_sim/fast"


def test_model_with_several_languages_rejected(registry):
    with pytest.raises(InvalidOptions):
        registry.resolve_all(["eng", "deu"], model="fast")


@pytest.mark.parametrize("model", ["../eng", ".hidden", "a/b", ""])
def test_unsafe_model_name_rejected(registry, model):
    with pytest.raises(InvalidOptions):
        registry.resolve("eng", model=model)


def test_check_default(tessdata):
    registry = LanguageRegistry(str(tessdata), default_language="eng")
    assert registry.check_default() is True
    assert registry.default_available is True

    (tessdata / "eng.traineddata").unlink()
    assert registry.check_default() is False
    assert registry.default_available is False


def test_default_language_must_be_in_catalog(tessdata):
    with pytest.raises(ValueError):
        LanguageRegistry(str(tessdata), default_language="xyz")


def test_available_scans_one_and_two_levels(tessdata):
    (tessdata / "chi_sim" / "best.traineddata").write_bytes(b"test data")
    (tessdata / "invalid.txt").write_bytes(b"test data")
    (tessdata / ".hidden.traineddata").write_bytes(b"test data")

    models = LanguageRegistry(str(tessdata)).available()

    assert [(m.language, m.model) for m in models] == [
        ("chi_sim", "best"),
        ("chi_sim", "fast"),
        ("deu", None),
        ("eng", None),
    ]
    fast = models[1]
    assert fast.relative_path == "chi_sim/fast"
    assert fast.full_path == str(tessdata / "chi_sim" / "fast.traineddata")


def test_available_missing_directory(tmp_path):
    assert LanguageRegistry(str(tmp_path / "missing")).available() == []


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, []),
        ("", []),
        ("eng", ["eng"]),
        ("rus+eng", ["rus", "eng"]),
        ("rus, eng", ["rus", "eng"]),
    ],
)
def test_parse_language_field(value, expected):
    assert parse_language_field(value) == expected
