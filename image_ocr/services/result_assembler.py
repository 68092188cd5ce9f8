"""
Сборка ответа из сырого вывода движка.

Чистые функции без побочных эффектов. Любое отсутствующее или
битое поле в выводе движка заменяется значением по умолчанию —
этот этап никогда не падает.
"""

from typing import Any, Optional

from image_ocr.schemas import BlockResult, EngineOutput, FileInfo, OCRResponse

_EMPTY_BBOX = {"left": 0, "top": 0, "right": 0, "bottom": 0}


def assemble_response(
    output: EngineOutput,
    request_id: str,
    language: str,
    languages: list[str],
    processing_time_ms: float,
    include_blocks: bool = True,
    file_info: Optional[FileInfo] = None,
) -> OCRResponse:
    """
    Формирует OCRResponse из результата движка и метаданных запроса.

    Args:
        output: результат вызова движка
        request_id: UUID запроса
        language: строка языков Tesseract, с которой шло распознавание
        languages: коды языков запроса
        processing_time_ms: полное время обработки запроса
        include_blocks: включать ли блоки с координатами
        file_info: информация о загруженном файле

    Returns:
        OCRResponse: ответ API
    """
    words = _collect_words(output.data)
    blocks = _build_blocks(words)

    confidences = [w["conf"] for w in words if w["conf"] >= 0]
    avg_confidence = sum(confidences) / len(confidences) if confidences else 0.0

    return OCRResponse(
        request_id=request_id,
        text="\n\n".join(block.text for block in blocks),
        confidence=round(avg_confidence, 2),
        language=language,
        languages=list(languages),
        processing_time_ms=round(processing_time_ms, 3),
        recognition_time_ms=round(output.elapsed_ms, 3),
        deskew_angle=round(output.deskew_angle, 3),
        width=output.width,
        height=output.height,
        blocks=blocks if include_blocks else [],
        file_info=file_info,
    )


def _collect_words(data: Any) -> list[dict]:
    """
    Извлекает непустые слова из словаря image_to_data.

    Колонки разной длины, нечисловые значения и отсутствующие
    ключи не приводят к ошибке.
    """
    if not isinstance(data, dict):
        return []

    texts = data.get("text") or []
    words = []

    for i, raw in enumerate(texts):
        word = str(raw).strip() if raw is not None else ""
        if not word:  # Пропускаем пустые записи
            continue

        words.append({
            "text": word,
            "block": _int_at(data, "block_num", i),
            "par": _int_at(data, "par_num", i),
            "line": _int_at(data, "line_num", i),
            "left": _int_at(data, "left", i),
            "top": _int_at(data, "top", i),
            "width": _int_at(data, "width", i),
            "height": _int_at(data, "height", i),
            "conf": _float_at(data, "conf", i, default=-1.0),
        })

    return words


def _build_blocks(words: list[dict]) -> list[BlockResult]:
    """
    Группирует слова в блоки.

    Алгоритм:
        - Слова на одной строке соединяются пробелами
        - Разные строки блока — новая строка (\\n)
        - Блоки сортируются по номеру
    """
    # Структура: {block_num: {(par_num, line_num): [words]}}
    grouped: dict[int, dict[tuple[int, int], list[dict]]] = {}
    for word in words:
        lines = grouped.setdefault(word["block"], {})
        lines.setdefault((word["par"], word["line"]), []).append(word)

    blocks = []
    for block_num in sorted(grouped):
        lines = grouped[block_num]
        block_words = [w for key in sorted(lines) for w in lines[key]]
        text = "\n".join(" ".join(w["text"] for w in lines[key]) for key in sorted(lines))
        confidences = [w["conf"] for w in block_words if w["conf"] >= 0]

        blocks.append(
            BlockResult(
                block_id=block_num,
                text=text,
                confidence=round(sum(confidences) / len(confidences), 2) if confidences else 0.0,
                bbox=_compute_bbox(block_words),
            )
        )

    return blocks


def _compute_bbox(words: list[dict]) -> dict[str, int]:
    """Bounding box, охватывающий все слова: {left, top, right, bottom}."""
    if not words:
        return dict(_EMPTY_BBOX)

    return {
        "left": min(w["left"] for w in words),
        "top": min(w["top"] for w in words),
        "right": max(w["left"] + w["width"] for w in words),
        "bottom": max(w["top"] + w["height"] for w in words),
    }


def _int_at(data: dict, key: str, index: int, default: int = 0) -> int:
    try:
        return int(_float_at(data, key, index, float(default)))
    except (ValueError, OverflowError):  # nan, inf
        return default


def _float_at(data: dict, key: str, index: int, default: float = 0.0) -> float:
    values = data.get(key)
    if not isinstance(values, (list, tuple)) or index >= len(values):
        return default
    try:
        return float(values[index])
    except (TypeError, ValueError):
        return default
