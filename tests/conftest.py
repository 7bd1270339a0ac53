"""
Shared pytest fixtures for the notification service tests.

These fixtures provide consistent test data and fresh state for every test.
Email goes to an httpx.MockTransport that records each request and answers
like Elastic Email does.
"""

from datetime import datetime
from pathlib import Path
from urllib.parse import parse_qs

import httpx
import pytest

from dispatch.notification_service import NotificationService, build_notification_service
from shared.channels import BrowserPushChannel, EmailChannel
from shared.config import Settings
from shared.data_store import DataStore
from shared.models import Message, Offer, Review, ServiceRequest
from shared.preferences import PreferenceStore


class ElasticEmailStub:
    """Records email requests and answers with a configurable reply."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.reply = {"success": True, "data": {"messageid": "stub"}}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.reply)

    def form(self, index: int = -1) -> dict[str, str]:
        """Decoded form fields of a recorded request."""
        parsed = parse_qs(self.requests[index].content.decode("utf-8"))
        return {key: values[0] for key, values in parsed.items()}

    @property
    def count(self) -> int:
        return len(self.requests)


@pytest.fixture
def data_dir() -> Path:
    """Path to the JSON fixtures."""
    return Path(__file__).parent.parent / "data"


@pytest.fixture
def data_store(data_dir: Path) -> DataStore:
    """
    Fresh DataStore instance for each test.

    Uses the real JSON fixtures; preference writes stay in memory.
    """
    return DataStore(data_dir=data_dir)


@pytest.fixture
def preference_store(data_store: DataStore) -> PreferenceStore:
    return PreferenceStore(data_store)


@pytest.fixture
def elastic() -> ElasticEmailStub:
    return ElasticEmailStub()


@pytest.fixture
def email_client(elastic: ElasticEmailStub) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(elastic))


@pytest.fixture
def email_channel(email_client: httpx.AsyncClient) -> EmailChannel:
    """EmailChannel talking to the stub."""
    return EmailChannel(api_key="test-key", client=email_client)


@pytest.fixture
def browser_channel() -> BrowserPushChannel:
    return BrowserPushChannel()


@pytest.fixture
def settings(data_dir: Path) -> Settings:
    return Settings(
        _env_file=None,
        elastic_email_api_key="test-key",
        data_dir=data_dir,
        api_tokens={
            "provider-1": "service:1",
            "provider-2": "service:2",
            "client-501": "client:501",
            "client-2": "client:2",
            "ops": "admin:99",
        },
    )


@pytest.fixture
def service(settings: Settings, data_store: DataStore, email_client: httpx.AsyncClient) -> NotificationService:
    """Fully wired notification service (scheduler not started)."""
    return build_notification_service(settings=settings, data_store=data_store, client=email_client)


# =============================================================================
# Recipient Fixtures
# =============================================================================

@pytest.fixture
def default_provider_id() -> int:
    """Provider 1: no stored preferences, so everything is enabled."""
    return 1


@pytest.fixture
def email_only_provider_id() -> int:
    """Provider 2: browser off, message emails off."""
    return 2


@pytest.fixture
def browser_only_provider_id() -> int:
    """Provider 3: email off globally, browser on."""
    return 3


# =============================================================================
# Domain Record Fixtures
# =============================================================================

@pytest.fixture
def service_request() -> ServiceRequest:
    return ServiceRequest(
        id=101,
        title="Brake pads replacement",
        description="Front brake pads squeal when braking.",
        county="Cluj",
        cities=["Cluj-Napoca", "Floresti"],
        preferred_date=datetime(2026, 11, 3),
    )


@pytest.fixture
def other_request() -> ServiceRequest:
    return ServiceRequest(id=102, title="Oil change", description="5W30, filter included.", county="Cluj")


@pytest.fixture
def offer(service_request: ServiceRequest) -> Offer:
    return Offer(id=42, request_id=service_request.id, request_user_id=501, title="Brake pads + labour", price=1234.5)


@pytest.fixture
def message(service_request: ServiceRequest) -> Message:
    return Message(
        id=17,
        request_id=service_request.id,
        content="Can you do it on Saturday?",
        created_at=datetime(2026, 10, 18, 9, 30),
    )


@pytest.fixture
def review() -> Review:
    return Review(id=5, rating=4, comment="Quick and friendly", created_at=datetime(2026, 10, 17))
