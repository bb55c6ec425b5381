# ─────────────────────────────────────────────────────────────────────────────
# POST /generate — HTTP contract, throttling, error mapping
# ─────────────────────────────────────────────────────────────────────────────
# Uses the conftest TestClient: fake provider, fake clock, no network.
# ─────────────────────────────────────────────────────────────────────────────

import pytest
from dirty_equals import IsStr

from imagechat.exceptions import ProviderError
from imagechat.providers.protocol import GenerationResult
from imagechat.rate_limit import AdmissionController
from imagechat.services.generation import GenerationService
from tests.conftest import PNG_DATA_URL, FakeProvider, build_client

CLIENT = {"X-Forwarded-For": "1.2.3.4"}


class TestGenerateHappyPath:
    def test_returns_images(self, client):
        response = client.post("/generate", json={"prompt": "a red gift box"}, headers=CLIENT)
        assert response.status_code == 200
        assert response.json() == {
            "text": "",
            "images": [PNG_DATA_URL],
            "hasImages": True,
        }

    def test_passes_prompt_and_decoded_references(self, client, fake_provider):
        body = {
            "prompt": "make it blue",
            "images": [
                {"data": "data:image/jpeg;base64,aGVsbG8=", "mimeType": "image/jpeg"},
                {"data": "d29ybGQ=", "mimeType": ""},
            ],
        }
        response = client.post("/generate", json=body, headers=CLIENT)
        assert response.status_code == 200

        prompt, images = fake_provider.calls[0]
        assert prompt == "make it blue"
        assert [(i.data, i.mime_type) for i in images] == [
            (b"hello", "image/jpeg"),
            (b"world", "image/png"),
        ]

    def test_no_images_returned(self, clock, test_settings, metrics):
        provider = FakeProvider(result=GenerationResult(text="", images=[]))
        admission = AdmissionController(clock=clock)
        service = GenerationService(provider, admission, test_settings, metrics=metrics)
        client = build_client(test_settings, service, admission, metrics)

        response = client.post("/generate", json={"prompt": "x"}, headers=CLIENT)
        assert response.status_code == 200
        assert response.json() == {"text": "", "images": [], "hasImages": False}

    def test_response_carries_request_id(self, client):
        response = client.post("/generate", json={"prompt": "x"}, headers=CLIENT)
        assert response.headers["X-Request-ID"] == IsStr(min_length=1)

    def test_well_formed_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "trace-42.a"})
        assert response.headers["X-Request-ID"] == "trace-42.a"

    @pytest.mark.parametrize("supplied", ["x" * 65, "bad id", "<script>"])
    def test_oversized_or_unsafe_request_id_is_replaced(self, client, supplied):
        response = client.get("/health", headers={"X-Request-ID": supplied})
        assert response.headers["X-Request-ID"] == IsStr(regex=r"[0-9a-f]{8}")


class TestThrottling:
    def test_timeline_0_30_61(self, client, clock):
        """Admitted at t=0, 429 at t=30 with Retry-After 60, admitted at t=61."""
        r0 = client.post("/generate", json={"prompt": "one"}, headers=CLIENT)
        assert r0.status_code == 200

        clock.advance(30)
        r30 = client.post("/generate", json={"prompt": "two"}, headers=CLIENT)
        assert r30.status_code == 429
        assert r30.headers["Retry-After"] == "60"
        assert r30.json() == {
            "error": IsStr(regex=r"Rate limit exceeded.*"),
            "type": "ThrottledError",
        }

        clock.advance(31)
        r61 = client.post("/generate", json={"prompt": "three"}, headers=CLIENT)
        assert r61.status_code == 200

    def test_throttled_request_never_reaches_provider(self, client, fake_provider):
        client.post("/generate", json={"prompt": "one"}, headers=CLIENT)
        client.post("/generate", json={"prompt": "two"}, headers=CLIENT)
        assert len(fake_provider.calls) == 1

    def test_other_identity_not_blocked(self, client):
        assert client.post("/generate", json={"prompt": "a"}, headers=CLIENT).status_code == 200
        other = {"X-Real-IP": "5.6.7.8"}
        assert client.post("/generate", json={"prompt": "b"}, headers=other).status_code == 200

    def test_headerless_clients_share_anonymous_bucket(self, client):
        assert client.post("/generate", json={"prompt": "a"}).status_code == 200
        assert client.post("/generate", json={"prompt": "b"}).status_code == 429

    def test_remaining_mode_hint(self, clock, test_settings, metrics, fake_provider):
        admission = AdmissionController(retry_after_mode="remaining", clock=clock)
        service = GenerationService(fake_provider, admission, test_settings, metrics=metrics)
        client = build_client(test_settings, service, admission, metrics)

        client.post("/generate", json={"prompt": "a"}, headers=CLIENT)
        clock.advance(20)
        response = client.post("/generate", json={"prompt": "b"}, headers=CLIENT)
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "40"


class TestValidation:
    def test_empty_prompt_is_400(self, client):
        response = client.post("/generate", json={"prompt": ""}, headers=CLIENT)
        assert response.status_code == 400
        assert response.json()["error"] == "Prompt is required"

    def test_missing_prompt_is_400(self, client):
        response = client.post("/generate", json={"images": []}, headers=CLIENT)
        assert response.status_code == 400
        assert response.json()["error"] == "Prompt is required"

    def test_whitespace_prompt_is_400(self, client):
        response = client.post("/generate", json={"prompt": "   "}, headers=CLIENT)
        assert response.status_code == 400

    def test_empty_prompt_is_400_even_when_throttled(self, client, clock):
        assert client.post("/generate", json={"prompt": "a"}, headers=CLIENT).status_code == 200
        clock.advance(1)
        response = client.post("/generate", json={"prompt": ""}, headers=CLIENT)
        assert response.status_code == 400
        assert response.json()["error"] == "Prompt is required"

    def test_validation_failures_do_not_consume_quota(self, client):
        client.post("/generate", json={"prompt": ""}, headers=CLIENT)
        assert client.post("/generate", json={"prompt": "a"}, headers=CLIENT).status_code == 200

    def test_bad_image_data_is_400(self, client, fake_provider):
        body = {"prompt": "x", "images": [{"data": "%%%", "mimeType": "image/png"}]}
        response = client.post("/generate", json=body, headers=CLIENT)
        assert response.status_code == 400
        assert response.json()["type"] == "InvalidImageError"
        assert fake_provider.calls == []

    def test_too_many_images_is_400(self, client):
        images = [{"data": "aGVsbG8=", "mimeType": "image/png"}] * 5
        response = client.post("/generate", json={"prompt": "x", "images": images}, headers=CLIENT)
        assert response.status_code == 400
        assert response.json()["type"] == "TooManyImagesError"

    def test_malformed_body_is_400(self, client):
        response = client.post("/generate", json={"prompt": "x", "images": "nope"}, headers=CLIENT)
        assert response.status_code == 400
        assert response.json() == {
            "error": IsStr(regex=r"images: .*"),
            "type": "ValidationError",
        }


class TestConfigurationAndProviderErrors:
    def test_missing_api_key_is_500(self, clock, test_settings, metrics):
        admission = AdmissionController(clock=clock)
        service = GenerationService(None, admission, test_settings, metrics=metrics)
        client = build_client(test_settings, service, admission, metrics)

        response = client.post("/generate", json={"prompt": "a gift"}, headers=CLIENT)
        assert response.status_code == 500
        assert response.json()["error"] == "OpenAI API key not configured"
        assert admission.stats()["tracked_identities"] == 0

    def test_missing_api_key_checked_before_prompt(self, clock, test_settings, metrics):
        admission = AdmissionController(clock=clock)
        service = GenerationService(None, admission, test_settings, metrics=metrics)
        client = build_client(test_settings, service, admission, metrics)

        response = client.post("/generate", json={"prompt": ""}, headers=CLIENT)
        assert response.status_code == 500

    def test_provider_failure_is_500_with_message(self, clock, test_settings, metrics):
        provider = FakeProvider(error=RuntimeError("Billing hard limit has been reached"))
        admission = AdmissionController(clock=clock)
        service = GenerationService(provider, admission, test_settings, metrics=metrics)
        client = build_client(test_settings, service, admission, metrics)

        response = client.post("/generate", json={"prompt": "x"}, headers=CLIENT)
        assert response.status_code == 500
        assert response.json() == {
            "error": "Billing hard limit has been reached",
            "type": "ProviderError",
        }

    def test_provider_failure_without_message(self, clock, test_settings, metrics):
        provider = FakeProvider(error=RuntimeError())
        admission = AdmissionController(clock=clock)
        service = GenerationService(provider, admission, test_settings, metrics=metrics)
        client = build_client(test_settings, service, admission, metrics)

        response = client.post("/generate", json={"prompt": "x"}, headers=CLIENT)
        assert response.status_code == 500
        assert response.json()["error"] == ProviderError().message == "Failed to generate content"

    def test_provider_failure_releases_slot(self, clock, test_settings, metrics):
        provider = FakeProvider(error=RuntimeError("boom"))
        admission = AdmissionController(clock=clock)
        service = GenerationService(provider, admission, test_settings, metrics=metrics)
        client = build_client(test_settings, service, admission, metrics)

        client.post("/generate", json={"prompt": "x"}, headers=CLIENT)
        assert admission.stats()["in_flight"] == 0
        clock.advance(60)
        provider.error = None
        assert client.post("/generate", json={"prompt": "x"}, headers=CLIENT).status_code == 200

    def test_provider_timeout_is_500(self, clock, test_settings, metrics):
        settings = test_settings.model_copy(update={"provider_timeout_seconds": 0.05})
        provider = FakeProvider(delay_s=5.0)
        admission = AdmissionController(clock=clock)
        service = GenerationService(provider, admission, settings, metrics=metrics)
        client = build_client(settings, service, admission, metrics)

        response = client.post("/generate", json={"prompt": "x"}, headers=CLIENT)
        assert response.status_code == 500
        assert response.json()["type"] == "ProviderTimeoutError"
        assert admission.stats()["in_flight"] == 0


class TestHttpFloodGuard:
    """slowapi caps raw request volume before the admission controller runs."""

    def test_flood_guard_returns_429(self, monkeypatch, clock, test_settings, metrics):
        from imagechat.config import get_settings

        admission = AdmissionController(min_interval_seconds=0, clock=clock)
        service = GenerationService(FakeProvider(), admission, test_settings, metrics=metrics)
        client = build_client(test_settings, service, admission, metrics)

        monkeypatch.setenv("HTTP_RATE_LIMIT", "2/minute")
        get_settings.cache_clear()
        try:
            headers = {"X-Forwarded-For": "203.0.113.77"}
            codes = [
                client.post("/generate", json={"prompt": "x"}, headers=headers).status_code
                for _ in range(3)
            ]
            assert codes == [200, 200, 429]

            response = client.post("/generate", json={"prompt": "x"}, headers=headers)
            assert response.headers["Retry-After"] == "60"
            assert response.json()["type"] == "RateLimitExceeded"
        finally:
            get_settings.cache_clear()
