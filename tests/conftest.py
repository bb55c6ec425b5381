# ─────────────────────────────────────────────────────────────────────────────
# Test Fixtures — shared across all tests
# ─────────────────────────────────────────────────────────────────────────────

import asyncio
import os

import pytest
from fastapi.testclient import TestClient

from imagechat.config import Settings
from imagechat.main import create_app
from imagechat.providers.protocol import GenerationResult, ImageInput
from imagechat.rate_limit import AdmissionController
from imagechat.services.generation import GenerationService
from imagechat.services.metrics import GenerationMetrics

PNG_DATA_URL = "data:image/png;base64,aGVsbG8="


class FakeClock:
    """Manually advanced time source for the admission controller."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """In-process ImageGenerationProvider.

    ``gate`` (an asyncio.Event) holds generate() open until set, which
    lets tests keep a request in flight.
    """

    name = "fake"

    def __init__(
        self,
        result: GenerationResult | None = None,
        error: Exception | None = None,
        delay_s: float = 0.0,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.result = result or GenerationResult(text="", images=[PNG_DATA_URL])
        self.error = error
        self.delay_s = delay_s
        self.gate = gate
        self.entered = asyncio.Event()
        self.calls: list[tuple[str, list[ImageInput]]] = []

    async def generate(self, prompt: str, images: list[ImageInput]) -> GenerationResult:
        self.calls.append((prompt, images))
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings() -> Settings:
    """Settings for tests — no real credential, no network."""
    return Settings(
        openai_api_key="",
        enable_debug_routes=True,
        log_json=False,
        log_level="DEBUG",
    )


@pytest.fixture
def admission(clock: FakeClock) -> AdmissionController:
    return AdmissionController(clock=clock)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def metrics() -> GenerationMetrics:
    return GenerationMetrics()


@pytest.fixture
def service(
    fake_provider: FakeProvider,
    admission: AdmissionController,
    test_settings: Settings,
    metrics: GenerationMetrics,
) -> GenerationService:
    return GenerationService(fake_provider, admission, test_settings, metrics=metrics)


def build_client(
    settings: Settings,
    service: GenerationService,
    admission: AdmissionController,
    metrics: GenerationMetrics,
) -> TestClient:
    """TestClient whose app.state holds the given collaborators.

    TestClient is not entered as a context manager, so the lifespan does
    not run and nothing overwrites the injected state.
    """
    from imagechat.config import get_settings

    get_settings.cache_clear()

    env_overrides = {
        "LOG_JSON": "false",
        "LOG_LEVEL": "DEBUG",
        "ENABLE_DEBUG_ROUTES": "true",
        "ALLOWED_ORIGINS": "*",
    }
    for k, v in env_overrides.items():
        os.environ[k] = v

    try:
        app = create_app()
        app.state.settings = settings
        app.state.metrics = metrics
        app.state.admission_controller = admission
        app.state.generation_service = service
        return TestClient(app, raise_server_exceptions=False)
    finally:
        for k in env_overrides:
            os.environ.pop(k, None)
        get_settings.cache_clear()


@pytest.fixture
def client(
    test_settings: Settings,
    service: GenerationService,
    admission: AdmissionController,
    metrics: GenerationMetrics,
) -> TestClient:
    """FastAPI TestClient wired to the fake provider and fake clock."""
    return build_client(test_settings, service, admission, metrics)
