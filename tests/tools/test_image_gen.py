import asyncio
from unittest.mock import MagicMock

import pytest

from shotpipe.pipeline.errors import GenerationError, ServiceOverloadedError
from shotpipe.tools.image_gen import (
    CONSISTENCY_PREAMBLE,
    ImageGenerationService,
    build_image_request,
    extract_image,
    wrap_with_references,
)

SETTINGS = {"model": "img-model", "max_retries": 2, "retry_delay_sec": 0}


def _reply(data="QUJD", mime="image/jpeg"):
    return {"candidates": [{"content": {"parts": [{"text": "here"}, {"inlineData": {"mimeType": mime, "data": data}}]}}]}


def test_prompt_wrapped_only_with_references():
    assert wrap_with_references("a cat", 0) == "a cat"
    wrapped = wrap_with_references("a cat", 2)
    assert wrapped == CONSISTENCY_PREAMBLE.format(prompt="a cat")


def test_request_inlines_data_url_references():
    body = build_image_request(
        "a cat",
        ["data:image/png;base64,AAAA", "https://cdn.example.com/x.png", "data:image/jpeg;base64,BBBB"],
    )
    parts = body["contents"][0]["parts"]
    assert parts[1] == {"inlineData": {"mimeType": "image/png", "data": "AAAA"}}
    assert parts[2] == {"inlineData": {"mimeType": "image/jpeg", "data": "BBBB"}}
    assert len(parts) == 3
    assert body["generationConfig"] == {"responseModalities": ["TEXT", "IMAGE"]}


def test_request_sets_aspect_ratio_when_not_widescreen():
    body = build_image_request("a cat", [], aspect_ratio="9:16")
    assert body["generationConfig"]["imageConfig"] == {"aspectRatio": "9:16"}
    assert body["contents"][0]["parts"] == [{"text": "a cat"}]


def test_extract_image_reads_both_spellings():
    assert extract_image(_reply()) == "data:image/jpeg;base64,QUJD"
    snake = {"candidates": [{"content": {"parts": [{"inline_data": {"data": "Zg=="}}]}}]}
    assert extract_image(snake) == "data:image/png;base64,Zg=="
    with pytest.raises(GenerationError):
        extract_image({"candidates": [{"content": {"parts": [{"text": "sorry"}]}}]})


def test_service_calls_model_endpoint():
    client = MagicMock()
    client.generate_content.return_value = _reply()
    service = ImageGenerationService(client=client, settings=SETTINGS)

    url = asyncio.run(service.generate("a cat", ["data:image/png;base64,AAAA"]))

    assert url == "data:image/jpeg;base64,QUJD"
    endpoint, body = client.generate_content.call_args.args
    assert endpoint == "/v1beta/models/img-model:generateContent"
    assert body["contents"][0]["parts"][0]["text"].startswith("CRITICAL REQUIREMENTS")
    assert service.model == "img-model"


def test_service_retries_when_overloaded():
    client = MagicMock()
    client.generate_content.side_effect = [ServiceOverloadedError("busy", 503), _reply()]
    service = ImageGenerationService(client=client, settings=SETTINGS)
    assert service.generate_sync("a cat") == "data:image/jpeg;base64,QUJD"
    assert client.generate_content.call_count == 2


def test_default_model_when_unset():
    service = ImageGenerationService(client=MagicMock(), settings={})
    assert service.model == "gemini-3-pro-image-preview"
