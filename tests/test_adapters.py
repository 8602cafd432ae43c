import logging

import pytest
import requests
from azure.core.exceptions import HttpResponseError, ServiceRequestError

from src.agents.generation_service import (
    GeminiGenerationService,
    PlaceholderGenerationService,
    build_prompt,
)
from src.publish.relay_client import RelayClient
from src.shared.cosmos_client import classify_error
from src.shared.logging_utils import info as log_info
from src.shared.settings import Settings
from src.specs.common.errors import (
    ChannelGenerationFailed,
    ConfigurationError,
    RelayRejected,
    RelayUnavailable,
    RemoteStoreError,
    TransientStoreConflict,
)
from src.specs.models.domain import GenerationRequest, RelayPayload


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


REQUEST = GenerationRequest(
    channelId="twitter",
    toneDescriptor="Concise, trending conversations",
    characterLimit=280,
    targetLength=100,
    sourceText="Launch day!",
)


def test_prompt_carries_tone_limit_and_source():
    prompt = build_prompt(REQUEST)
    assert "Concise, trending conversations" in prompt
    assert "280" in prompt
    assert "100" in prompt
    assert prompt.endswith("Launch day!")


def test_gemini_returns_candidate_text():
    session = FakeSession(FakeResponse(payload={"candidates": [{"content": {"parts": [{"text": "Hello #x"}]}}]}))
    service = GeminiGenerationService("key", "gemini-2.5-flash", 5, session=session)
    assert service.generate(REQUEST) == "Hello #x"
    url, kwargs = session.calls[0]
    assert url.endswith("/models/gemini-2.5-flash:generateContent")
    assert kwargs["headers"]["x-goog-api-key"] == "key"
    assert kwargs["timeout"] == 5


@pytest.mark.parametrize(
    "session,reason",
    [
        (FakeSession(error=requests.Timeout()), "timeout"),
        (FakeSession(error=requests.ConnectionError("refused")), "upstream_unavailable"),
        (FakeSession(FakeResponse(status_code=500)), "upstream_error"),
        (FakeSession(FakeResponse(payload=None)), "malformed_response"),
        (FakeSession(FakeResponse(payload={"candidates": []})), "malformed_response"),
        (FakeSession(FakeResponse(payload={"candidates": [{"content": {"parts": [{"text": "  "}]}}]})), "empty_response"),
    ],
)
def test_gemini_failures_are_channel_local(session, reason):
    service = GeminiGenerationService("key", session=session)
    with pytest.raises(ChannelGenerationFailed) as info:
        service.generate(REQUEST)
    assert info.value.reason == reason
    assert info.value.channel_id == "twitter"


def test_placeholder_is_deterministic_and_within_limit():
    service = PlaceholderGenerationService()
    long_request = REQUEST.model_copy(update={"sourceText": "word " * 200, "targetLength": None})
    first = service.generate(long_request)
    assert first == service.generate(long_request)
    assert len(first) <= 280


PAYLOAD = RelayPayload(channelId="twitter", body="Launch day!", tags="#launch #news")


def test_relay_without_url_runs_dry():
    session = FakeSession()
    relay = RelayClient(None, session=session)
    relay.send(PAYLOAD)
    assert relay.dry_run
    assert session.calls == []


def test_relay_posts_payload():
    session = FakeSession(FakeResponse(payload={"status": "success"}))
    RelayClient("https://relay.example/hook", 3, session=session).send(PAYLOAD)
    url, kwargs = session.calls[0]
    assert url == "https://relay.example/hook"
    assert kwargs["json"]["tags"] == "#launch #news"
    assert kwargs["timeout"] == 3


@pytest.mark.parametrize(
    "session,error",
    [
        (FakeSession(error=requests.Timeout()), RelayUnavailable),
        (FakeSession(error=requests.ConnectionError()), RelayUnavailable),
        (FakeSession(FakeResponse(status_code=422, text="bad")), RelayRejected),
        (FakeSession(FakeResponse(payload={"accepted": False})), RelayRejected),
    ],
)
def test_relay_failures(session, error):
    with pytest.raises(error):
        RelayClient("https://relay.example/hook", session=session).send(PAYLOAD)


def test_relay_supported_channels():
    relay = RelayClient(None, supported_channels=["Instagram", "twitter"])
    assert relay.supports("instagram")
    assert not relay.supports("linkedin")


def _http_error(status, message="error"):
    exc = HttpResponseError(message=message)
    exc.status_code = status
    return exc


@pytest.mark.parametrize(
    "exc,expected",
    [
        (_http_error(429), TransientStoreConflict),
        (_http_error(412), TransientStoreConflict),
        (_http_error(400, "prepared statement \"s1\" already exists"), TransientStoreConflict),
        (ServiceRequestError("connection reset by peer"), TransientStoreConflict),
        (_http_error(403, "forbidden"), RemoteStoreError),
    ],
)
def test_cosmos_errors_are_classified(exc, expected):
    classified = classify_error(exc, "upsert", "brief:b1")
    assert type(classified) is expected
    assert classified.details["key"] == "brief:b1"


def test_settings_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("RUNTIME_STATE_DIR", str(tmp_path))
    for name in ("CREDIT_COST_GENERATION", "RELAY_CHANNELS", "GENERATION_MODEL"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings.from_env()
    assert settings.state_file == tmp_path / "records.json"
    assert settings.generation_model == "gemini-2.5-flash"
    assert settings.credit_cost_generation == 1
    assert settings.relay_channels == ["instagram", "facebook", "linkedin", "twitter"]


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("RELAY_CHANNELS", "Twitter, linkedin")
    monkeypatch.setenv("SYNC_RETRY_DELAY_SECONDS", "0.5")
    settings = Settings.from_env()
    assert settings.relay_channels == ["twitter", "linkedin"]
    assert settings.sync_retry_delay == 0.5


def test_invalid_settings_raise_configuration_error(monkeypatch):
    monkeypatch.setenv("GENERATION_TIMEOUT_SECONDS", "soon")
    with pytest.raises(ConfigurationError):
        Settings.from_env()


def test_log_records_carry_area_and_owner(caplog):
    with caplog.at_level(logging.INFO, logger="crosspost"):
        log_info("owner-1", "credits:credited", amount=5)
        log_info(None, "startup")
    first, second = caplog.records
    assert first.getMessage() == "credits:credited"
    assert first.custom_dimensions == {"area": "credits", "ownerId": "owner-1", "amount": 5}
    assert second.custom_dimensions == {}


def test_settings_opening_balance_from_environment(monkeypatch):
    monkeypatch.setenv("CREDIT_OPENING_BALANCE", "50")
    assert Settings.from_env().credit_opening_balance == 50
