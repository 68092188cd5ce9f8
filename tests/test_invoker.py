"""
Тесты вызова распознавания.
"""

import pytest
import pytest_asyncio

from image_ocr.errors import CorruptImage, EngineFailure
from image_ocr.schemas import LanguageAsset, OCROptions, RecognitionRequest, UploadedImage
from image_ocr.services.invoker import RecognitionInvoker
from image_ocr.services.pool import EnginePool
from tests.conftest import make_image_bytes

ENG = LanguageAsset(code="eng", path="/tessdata/eng.traineddata", tesseract_name="eng", exists=True)


def make_request(data: bytes, **options) -> RecognitionRequest:
    return RecognitionRequest(
        request_id="req-1",
        image=UploadedImage(
            data=data,
            content_type="image/png",
            size_bytes=len(data),
            image_format="PNG",
            width=120,
            height=40,
        ),
        assets=(ENG,),
        options=OCROptions(**options),
    )


@pytest_asyncio.fixture
async def pool(tracker):
    pool = EnginePool(tracker.factory, size=1, acquire_timeout=1.0)
    await pool.start([ENG])
    yield pool
    await pool.close()


@pytest.mark.asyncio
async def test_run_returns_output_with_duration(pool):
    invoker = RecognitionInvoker(pool)
    request = make_request(make_image_bytes("PNG"))

    async with pool.lease([ENG]) as instance:
        output = await invoker.run(instance, request)

    assert output.elapsed_ms > 0
    assert output.data["text"][1:3] == ["Hello", "world"]
    assert (output.width, output.height) == (120, 40)
    assert output.instance_id == instance.instance_id
    assert output.deskew_angle == 0.0


@pytest.mark.asyncio
async def test_native_crash_becomes_engine_failure(pool, tracker):
    tracker.fail_recognize = 1
    tracker.native_crash = True
    invoker = RecognitionInvoker(pool)
    data = make_image_bytes("PNG")

    with pytest.raises(EngineFailure) as exc_info:
        async with pool.lease([ENG]) as instance:
            await invoker.run(instance, make_request(data))

    context = exc_info.value.context
    assert context["languages"] == "eng"
    assert context["size_bytes"] == len(data)
    assert context["instance_id"] == 0
    assert context["generation"] == 1
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    # Экземпляр заменён
    assert pool.stats()["instances"][0]["generation"] == 2


@pytest.mark.asyncio
async def test_undecodable_image_is_input_error(pool):
    invoker = RecognitionInvoker(pool)

    with pytest.raises(CorruptImage):
        async with pool.lease([ENG]) as instance:
            await invoker.run(instance, make_request(b"not an image"))

    # Ошибка ввода не считается поломкой движка
    assert pool.replacements == 0
    assert pool.idle_count == 1


@pytest.mark.asyncio
async def test_deskew_option(pool):
    invoker = RecognitionInvoker(pool, skew_threshold=0.5)
    request = make_request(make_image_bytes("PNG", size=(300, 120), text="Deskew test line"), deskew=True)

    async with pool.lease([ENG]) as instance:
        output = await invoker.run(instance, request)

    # Угол ниже порога не применяется и не попадает в результат
    assert output.deskew_angle == 0.0 or abs(output.deskew_angle) > 0.5
    if output.deskew_angle == 0.0:
        assert (output.width, output.height) == (300, 120)
