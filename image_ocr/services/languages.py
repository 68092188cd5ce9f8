"""
Реестр языковых моделей Tesseract.

Коды языков проверяются по статическому каталогу без обращения к диску:
неизвестный код отклоняется, даже если одноимённый файл лежит в tessdata.
Файлы моделей проверяются лениво, в момент запроса. Исключение —
язык по умолчанию: его наличие проверяется при старте для readiness.

Структура каталога tessdata:
    <tessdata>/<язык>.traineddata            — модель языка
    <tessdata>/<язык>/<модель>.traineddata   — вариант модели (fast, best, ...)
"""

import logging
from pathlib import Path
from typing import Iterable, Optional

from image_ocr.config import Settings
from image_ocr.errors import AssetMissing, InvalidLanguage, InvalidOptions
from image_ocr.schemas import LanguageAsset, LanguageModel

logger = logging.getLogger(__name__)

TRAINEDDATA_SUFFIX = ".traineddata"

# Все коды языков tessdata (https://github.com/tesseract-ocr/tessdata)
LANGUAGE_CATALOG: frozenset[str] = frozenset(
    """
    afr amh ara asm aze aze_cyrl bel ben bod bos bre bul cat ceb ces
    chi_sim chi_sim_vert chi_tra chi_tra_vert chr cos cym dan dan_frak deu
    deu_frak deu_latf div dzo ell eng enm epo equ est eus fao fas fil fin
    fra frm fry gla gle glg grc guj hat heb hin hrv hun hye iku ind isl
    ita ita_old jav jpn jpn_vert kan kat kat_old kaz khm kir kmr kor
    kor_vert lao lat lav lit ltz mal mar mkd mlt mon mri msa mya nep nld
    nor oci ori osd pan pol por pus que ron rus san sin slk slk_frak slv
    snd spa spa_old sqi srp srp_latn sun swa swe syr tam tat tel tgk tgl
    tha tir ton tur uig ukr urd uzb uzb_cyrl vie yid yor
    """.split()
)


def parse_language_field(value: Optional[str]) -> list[str]:
    """
    Разбирает поле языка из формы: "eng", "rus+eng", "rus,eng".

    Returns:
        list[str]: коды в исходном порядке (пустой список, если поле не задано)
    """
    if not value:
        return []
    return [code.strip() for code in value.replace(",", "+").split("+") if code.strip()]


class LanguageRegistry:
    """
    Разрешение кодов языков в файлы моделей.

    Args:
        tessdata_path: каталог с файлами .traineddata
        default_language: язык по умолчанию
        catalog: допустимые коды языков
    """

    def __init__(
        self,
        tessdata_path: str,
        default_language: str = "eng",
        catalog: Iterable[str] = LANGUAGE_CATALOG,
    ) -> None:
        self.tessdata_path = Path(tessdata_path)
        self.catalog = frozenset(catalog)
        if default_language not in self.catalog:
            raise ValueError(f"Язык по умолчанию отсутствует в каталоге: {default_language}")
        self.default_language = default_language
        self.default_available = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "LanguageRegistry":
        return cls(settings.tessdata_path, settings.default_language)

    def check_default(self) -> bool:
        """
        Проверяет наличие модели языка по умолчанию (один раз при старте).

        Returns:
            bool: модель найдена
        """
        try:
            asset = self.resolve(self.default_language)
        except AssetMissing as e:
            logger.error(f"Модель языка по умолчанию не найдена: {e}")
            self.default_available = False
        else:
            logger.info(f"Модель языка по умолчанию: {asset.path}")
            self.default_available = True
        return self.default_available

    def validate_code(self, code: str) -> str:
        """Проверка кода по каталогу. Диск не трогает."""
        if code not in self.catalog:
            raise InvalidLanguage(f"Неизвестный язык: {code!r}", language=code)
        return code

    def validate_codes(self, codes: Iterable[str]) -> list[str]:
        """
        Проверяет все коды до первого обращения к диску.

        Дубликаты убираются, порядок сохраняется. Пустой список ->
        язык по умолчанию.
        """
        ordered: list[str] = []
        for code in codes:
            self.validate_code(code)
            if code not in ordered:
                ordered.append(code)
        return ordered or [self.default_language]

    def resolve(self, code: str, model: Optional[str] = None) -> LanguageAsset:
        """
        Разрешает код языка в путь к файлу модели.

        Args:
            code: код языка
            model: вариант модели (подкаталог <язык>/)

        Returns:
            LanguageAsset: найденная модель

        Raises:
            InvalidLanguage: кода нет в каталоге
            InvalidOptions: некорректное имя модели
            AssetMissing: код есть в каталоге, но файла нет
        """
        self.validate_code(code)

        if model is None:
            tesseract_name = code
        else:
            if not model or "/" in model or "\\" in model or model.startswith("."):
                raise InvalidOptions(f"Некорректное имя модели: {model!r}", language=code)
            tesseract_name = f"{code}/{model}"

        path = self.tessdata_path / f"{tesseract_name}{TRAINEDDATA_SUFFIX}"
        if not path.is_file():
            raise AssetMissing(
                f"Файл модели не найден: {path}",
                language=code,
                model=model,
            )

        return LanguageAsset(
            code=code,
            path=str(path),
            tesseract_name=tesseract_name,
            model=model,
            exists=True,
        )

    def resolve_all(
        self,
        codes: Iterable[str],
        model: Optional[str] = None,
    ) -> tuple[LanguageAsset, ...]:
        """
        Разрешает составной запрос (несколько языков).

        Сначала проверяются все коды по каталогу, затем файлы.
        Любой невалидный код проваливает весь запрос.
        """
        ordered = self.validate_codes(codes)
        if model is not None and len(ordered) > 1:
            raise InvalidOptions(
                "Вариант модели можно указать только для одного языка",
                languages="+".join(ordered),
                model=model,
            )
        return tuple(self.resolve(code, model) for code in ordered)

    def available(self) -> list[LanguageModel]:
        """
        Сканирует tessdata на глубину 1-2 и возвращает найденные модели.

        Скрытые файлы и файлы без расширения .traineddata пропускаются.
        Сортировка: по языку, затем по модели.
        """
        if not self.tessdata_path.is_dir():
            logger.warning(f"Каталог tessdata не найден: {self.tessdata_path}")
            return []

        found: dict[tuple[str, Optional[str]], LanguageModel] = {}

        for path in self.tessdata_path.iterdir():
            if path.is_dir() and not path.name.startswith("."):
                for sub in path.iterdir():
                    if _is_model_file(sub):
                        key = (path.name, sub.stem)
                        found.setdefault(key, self._describe(sub, path.name, sub.stem))
            elif _is_model_file(path):
                key = (path.stem, None)
                found.setdefault(key, self._describe(path, path.stem, None))

        return sorted(found.values(), key=lambda m: (m.language, m.model or ""))

    def _describe(self, path: Path, language: str, model: Optional[str]) -> LanguageModel:
        relative = path.relative_to(self.tessdata_path).with_suffix("")
        return LanguageModel(
            language=language,
            model=model,
            full_path=str(path),
            relative_path=relative.as_posix(),
        )


def _is_model_file(path: Path) -> bool:
    return (
        path.is_file()
        and not path.name.startswith(".")
        and path.name.endswith(TRAINEDDATA_SUFFIX)
    )
