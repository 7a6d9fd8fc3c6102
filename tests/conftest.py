"""Pytest configuration and shared fixtures.

Every engine component is built against a MutableClock pinned to
factories.NOW so that expiry and SLA assertions are deterministic.
Store-backed tests use the in-memory document store; the SQLAlchemy
adapter is exercised with mocked sessions.
"""

import pytest

from certflow.core.config import (
    CertificateSettings,
    DatabaseSettings,
    Settings,
    ShareTokenSettings,
    WorkflowSettings,
)
from certflow.core.settings import clear_settings_cache
from certflow.db.store import InMemoryDocumentStore
from certflow.services.certificate_lifecycle import CertificateLifecycle
from certflow.services.request_workflow import RequestWorkflow
from certflow.services.share_tokens import ShareTokenGuard
from certflow.services.verification import VerificationTrail
from certflow.services.workflow import CertificateWorkflowService
from tests.factories import NOW, MutableClock, sequential_tokens


@pytest.fixture(autouse=True)
def clean_settings_cache():
    """Clear the cached settings before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(NOW)


@pytest.fixture
def settings() -> Settings:
    """Default settings, built explicitly so the host environment cannot leak in."""
    return Settings(
        workflow=WorkflowSettings(
            standard_processing_days=7,
            max_draft_days=30,
            default_priority=3,
            cas_max_attempts=3,
        ),
        certificate=CertificateSettings(near_expiry_days=30),
        share=ShareTokenSettings(
            token_bytes=32,
            default_max_access=100,
            default_ttl_days=7,
            max_ttl_days=365,
        ),
        database=DatabaseSettings(url=None),
    )


@pytest.fixture
def workflow(settings: Settings, clock: MutableClock) -> RequestWorkflow:
    return RequestWorkflow(settings.workflow, clock)


@pytest.fixture
def lifecycle(settings: Settings, clock: MutableClock) -> CertificateLifecycle:
    return CertificateLifecycle(settings.certificate, clock)


@pytest.fixture
def guard(settings: Settings, clock: MutableClock) -> ShareTokenGuard:
    return ShareTokenGuard(settings.share, clock, token_factory=sequential_tokens())


@pytest.fixture
def trail(settings: Settings, clock: MutableClock) -> VerificationTrail:
    return VerificationTrail(settings.certificate, clock)


@pytest.fixture
def store(clock: MutableClock) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock)


@pytest.fixture
def service(
    store: InMemoryDocumentStore,
    settings: Settings,
    clock: MutableClock,
) -> CertificateWorkflowService:
    return CertificateWorkflowService(
        store,
        settings,
        clock,
        token_factory=sequential_tokens("svc"),
    )
