"""Tests for provider adapters (HTTP mocked with httpx.MockTransport)."""

import asyncio
import json

import httpx
import pytest

from narrator.models.schemas import Unit
from narrator.services.errors import RetryableProviderError, TerminalProviderError
from narrator.services.providers import (
    ClaudeVisionClient,
    FileBlobStore,
    HttpSegmentationClient,
    HttpSynthesisClient,
    HttpVisionClient,
    InMemoryBlobStore,
    ProviderConfig,
    classify_http_error,
    create_providers,
    is_retryable_status,
)
from narrator.services.providers.blob_store import split_fragment

CONFIG = ProviderConfig(base_url="http://provider.test", timeout=5)


def mock_client(handler):
    return httpx.AsyncClient(base_url=CONFIG.base_url, transport=httpx.MockTransport(handler))


def status_handler(status_code):
    def handler(request):
        return httpx.Response(status_code, json={"detail": "nope"})
    return handler


CLIP = Unit(index=3, source_ref="blob://v.mp4#t=28,58", start_time=28, end_time=58)
IMAGE = Unit(index=0, source_ref="blob://photo.png")


@pytest.mark.parametrize(
    "status_code, retryable",
    [(400, False), (401, False), (404, False), (408, True), (422, False), (429, True), (500, True), (503, True)],
)
def test_status_classification(status_code, retryable):
    assert is_retryable_status(status_code) is retryable


def test_transport_errors_are_retryable():
    request = httpx.Request("POST", "http://provider.test/v1/describe")

    timeout = classify_http_error(httpx.ReadTimeout("slow", request=request), "vision", "analyze")
    dropped = classify_http_error(httpx.ConnectError("refused", request=request), "vision", "analyze")

    assert isinstance(timeout, RetryableProviderError)
    assert isinstance(dropped, RetryableProviderError)
    assert "provider=vision" in str(dropped)


class TestHttpVisionClient:
    def test_describes_clip(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"description": "A man walks a dog.", "confidence": 0.87, "attributes": {"objects": ["dog"]}},
            )

        client = HttpVisionClient(CONFIG, http_client=mock_client(handler))
        result = asyncio.run(client.analyze(CLIP))

        assert result.text == "A man walks a dog."
        assert result.confidence == 0.87
        assert result.attributes == {"objects": ["dog"]}
        assert seen["path"] == "/v1/describe"
        assert seen["body"] == {
            "source_ref": "blob://v.mp4#t=28,58",
            "kind": "clip",
            "start_time": 28,
            "end_time": 58,
        }

    @pytest.mark.parametrize("status_code", [429, 500, 502])
    def test_retryable_statuses(self, status_code):
        client = HttpVisionClient(CONFIG, http_client=mock_client(status_handler(status_code)))

        with pytest.raises(RetryableProviderError) as exc_info:
            asyncio.run(client.analyze(IMAGE))

        assert exc_info.value.status_code == status_code
        assert exc_info.value.to_error_info().code == "PROVIDER_RETRYABLE"

    @pytest.mark.parametrize("status_code", [400, 415])
    def test_terminal_statuses(self, status_code):
        client = HttpVisionClient(CONFIG, http_client=mock_client(status_handler(status_code)))

        with pytest.raises(TerminalProviderError):
            asyncio.run(client.analyze(IMAGE))

    def test_malformed_response_is_terminal(self):
        client = HttpVisionClient(
            CONFIG, http_client=mock_client(lambda r: httpx.Response(200, json={"text": "wrong key"}))
        )

        with pytest.raises(TerminalProviderError):
            asyncio.run(client.analyze(IMAGE))

    def test_out_of_range_confidence_is_terminal(self):
        client = HttpVisionClient(
            CONFIG,
            http_client=mock_client(
                lambda r: httpx.Response(200, json={"description": "x", "confidence": 87})
            ),
        )

        with pytest.raises(TerminalProviderError):
            asyncio.run(client.analyze(IMAGE))

    def test_timeout_is_retryable(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = HttpVisionClient(CONFIG, http_client=mock_client(handler))

        with pytest.raises(RetryableProviderError):
            asyncio.run(client.analyze(IMAGE))

    def test_error_info_does_not_leak_details(self):
        client = HttpVisionClient(CONFIG, http_client=mock_client(status_handler(403)))

        with pytest.raises(TerminalProviderError) as exc_info:
            asyncio.run(client.analyze(IMAGE))

        info = exc_info.value.to_error_info()
        assert "provider.test" not in info.message
        assert info.message == "A processing service rejected the request"


class TestHttpSegmentationClient:
    def test_parses_segments(self):
        def handler(request):
            assert json.loads(request.content) == {"media_ref": "blob://v.mp4"}
            return httpx.Response(
                200,
                json={"segments": [{"start": 0, "end": 12.5, "confidence": 91}, {"start": 12.5, "end": 30}]},
            )

        client = HttpSegmentationClient(CONFIG, http_client=mock_client(handler))
        segments = asyncio.run(client.segment("blob://v.mp4"))

        assert [(s.start, s.end, s.confidence) for s in segments] == [(0, 12.5, 91), (12.5, 30, 100)]

    def test_server_error_is_retryable(self):
        client = HttpSegmentationClient(CONFIG, http_client=mock_client(status_handler(503)))

        with pytest.raises(RetryableProviderError):
            asyncio.run(client.segment("blob://v.mp4"))


class TestHttpSynthesisClient:
    def test_returns_audio(self):
        def handler(request):
            assert json.loads(request.content) == {"text": "Hello there.", "voice": "narrator"}
            return httpx.Response(200, content=b"ID3audio")

        client = HttpSynthesisClient(CONFIG, voice="narrator", http_client=mock_client(handler))

        assert asyncio.run(client.synthesize("Hello there.")) == b"ID3audio"

    def test_text_over_limit_is_terminal_without_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, content=b"audio")

        client = HttpSynthesisClient(CONFIG, max_input_chars=10, http_client=mock_client(handler))

        with pytest.raises(TerminalProviderError):
            asyncio.run(client.synthesize("x" * 11))
        assert calls == []

    def test_empty_audio_is_terminal(self):
        client = HttpSynthesisClient(
            CONFIG, http_client=mock_client(lambda r: httpx.Response(200, content=b""))
        )

        with pytest.raises(TerminalProviderError):
            asyncio.run(client.synthesize("Hello."))


class TestClaudeVisionClient:
    KEYED = ProviderConfig(base_url="https://api.anthropic.com", api_key="test-key", timeout=5)

    def make(self, handler, blob_store=None):
        return ClaudeVisionClient(
            self.KEYED,
            blob_store or InMemoryBlobStore(),
            model="claude-test",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            ClaudeVisionClient(CONFIG, InMemoryBlobStore())

    def test_clip_units_are_terminal(self):
        client = self.make(status_handler(200))

        with pytest.raises(TerminalProviderError):
            asyncio.run(client.analyze(CLIP))

    def test_describes_image(self):
        blob_store = InMemoryBlobStore()
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "id": "msg_1",
                    "type": "message",
                    "role": "assistant",
                    "model": "claude-test",
                    "content": [{"type": "text", "text": " A red bicycle leans on a wall. "}],
                    "stop_reason": "end_turn",
                    "stop_sequence": None,
                    "usage": {"input_tokens": 12, "output_tokens": 8},
                },
            )

        async def scenario():
            ref = await blob_store.put(b"\x89PNG fake", suffix=".png")
            client = self.make(handler, blob_store)
            return await client.analyze(Unit(index=0, source_ref=ref))

        result = asyncio.run(scenario())

        assert result.text == "A red bicycle leans on a wall."
        assert result.attributes == {"model": "claude-test"}
        image = seen["body"]["messages"][0]["content"][0]
        assert image["source"]["media_type"] == "image/png"

    def test_missing_image_blob_is_terminal(self):
        client = self.make(status_handler(200))

        with pytest.raises(TerminalProviderError) as exc_info:
            asyncio.run(client.analyze(Unit(index=0, source_ref="mem://gone.png")))

        assert isinstance(exc_info.value.original_error, FileNotFoundError)
        assert exc_info.value.to_error_info().code == "PROVIDER_TERMINAL"

    @pytest.mark.parametrize("status_code, error_class", [(429, RetryableProviderError), (400, TerminalProviderError)])
    def test_status_mapping(self, status_code, error_class):
        blob_store = InMemoryBlobStore()

        def handler(request):
            return httpx.Response(
                status_code,
                json={"type": "error", "error": {"type": "error", "message": "nope"}},
            )

        async def scenario():
            ref = await blob_store.put(b"jpeg", suffix=".jpg")
            return await self.make(handler, blob_store).analyze(Unit(index=0, source_ref=ref))

        with pytest.raises(error_class) as exc_info:
            asyncio.run(scenario())

        assert exc_info.value.status_code == status_code


# ═══════════════════════════════════════════════════════════════════════════
# Blob stores and wiring
# ═══════════════════════════════════════════════════════════════════════════


def test_split_fragment():
    assert split_fragment("blob://v.mp4#t=0,30") == ("blob://v.mp4", "t=0,30")
    assert split_fragment("blob://v.mp4") == ("blob://v.mp4", None)


@pytest.mark.parametrize("store_factory", [lambda tmp: InMemoryBlobStore(), lambda tmp: FileBlobStore(tmp)])
def test_blob_store_fragments(tmp_path, store_factory):
    store = store_factory(tmp_path)

    async def scenario():
        ref = await store.put(b"0123456789", suffix=".bin")
        return (
            ref,
            await store.get(ref),
            await store.get(f"{ref}#bytes=2-5"),
            await store.get(f"{ref}#t=0,30"),
        )

    ref, whole, sliced, timed = asyncio.run(scenario())

    assert ref.endswith(".bin")
    assert whole == b"0123456789"
    assert sliced == b"2345"
    assert timed == whole


def test_missing_blob(tmp_path):
    with pytest.raises(FileNotFoundError):
        asyncio.run(FileBlobStore(tmp_path).get("file://nothing.mp3"))


@pytest.mark.parametrize("ref", ["file://../secret.txt", "file://sub/../../secret.txt", "file://SECRET_ABS"])
def test_file_blob_store_stays_inside_root(tmp_path, ref):
    secret = tmp_path / "secret.txt"
    secret.write_bytes(b"outside-root")
    ref = ref.replace("SECRET_ABS", str(secret))
    store = FileBlobStore(tmp_path / "blobs")

    with pytest.raises(FileNotFoundError):
        asyncio.run(store.get(ref))
    with pytest.raises(FileNotFoundError):
        asyncio.run(store.put(b"data", suffix="/../../escaped.bin"))
    assert not (tmp_path / "escaped.bin").exists()


def test_create_providers(settings):
    providers = create_providers(settings, blob_store=InMemoryBlobStore())

    assert isinstance(providers.vision, HttpVisionClient)
    assert isinstance(providers.synthesis, HttpSynthesisClient)
    assert providers.synthesis.max_input_chars == settings.synthesis_max_chars
    asyncio.run(providers.close())

    with pytest.raises(ValueError):
        create_providers(
            settings.model_copy(update={"vision_provider": "other"}), blob_store=InMemoryBlobStore()
        )
