"""
Unit tests for Vapi event parsing
Tests status normalization and webhook payload extraction
"""
import pytest
from datetime import datetime, timezone

from app.infrastructure.telephony.vapi_events import VapiStatusMapper, parse_vapi_event


@pytest.fixture
def mapper():
    return VapiStatusMapper()


class TestVapiStatusMapper:
    """Test mapping of Vapi statuses to stored statuses"""

    @pytest.mark.parametrize("status", ["queued", "ringing", "in-progress", "forwarding"])
    def test_intermediate_statuses_pass_through(self, mapper, status):
        assert mapper.normalize(status) == status

    @pytest.mark.parametrize("reason,expected", [
        ("customer-ended-call", "completed"),
        ("assistant-ended-call", "completed"),
        ("exceeded-max-duration", "completed"),
        (None, "completed"),
        ("customer-did-not-answer", "no-answer"),
        ("customer-busy", "no-answer"),
        ("voicemail", "no-answer"),
        ("pipeline-error-openai-llm-failed", "failed"),
        ("phone-call-provider-closed-websocket", "failed"),
        ("twilio-failed-to-connect-call", "failed"),
        ("call.start.error-get-assistant", "failed"),
        ("unknown-error", "failed"),
    ])
    def test_ended_split_by_reason(self, mapper, reason, expected):
        assert mapper.normalize("ended", reason) == expected

    def test_missing_status(self, mapper):
        assert mapper.normalize(None) is None

    def test_from_config(self):
        class StubConfig:
            def get(self, key, default=None):
                return {
                    "vapi.no_answer_reasons": ["nobody-home"],
                    "vapi.failed_reason_prefixes": ["kaboom"],
                }.get(key, default)

        mapper = VapiStatusMapper.from_config(StubConfig())

        assert mapper.ended_status("nobody-home") == "no-answer"
        assert mapper.ended_status("kaboom-now") == "failed"
        assert mapper.ended_status("voicemail") == "completed"

    def test_from_config_falls_back_to_defaults(self):
        class EmptyConfig:
            def get(self, key, default=None):
                return default

        mapper = VapiStatusMapper.from_config(EmptyConfig())
        assert mapper.ended_status("voicemail") == "no-answer"


class TestStatusUpdate:
    """Test status-update server messages"""

    def test_in_progress(self, mapper):
        event = parse_vapi_event(
            {"message": {"type": "status-update", "status": "in-progress", "call": {"id": "vapi-1"}}},
            mapper,
        )

        assert event.call_id == "vapi-1"
        assert event.status == "in-progress"
        assert event.duration_seconds is None

    def test_ended_status_update_is_ignored(self, mapper):
        payload = {"message": {
            "type": "status-update",
            "status": "ended",
            "endedReason": "customer-ended-call",
            "call": {"id": "vapi-1"},
        }}

        assert parse_vapi_event(payload, mapper) is None

    def test_status_falls_back_to_call_object(self, mapper):
        event = parse_vapi_event(
            {"message": {"type": "status-update", "call": {"id": "vapi-1", "status": "ringing"}}},
            mapper,
        )
        assert event.status == "ringing"


class TestEndOfCallReport:
    """Test end-of-call-report server messages"""

    def test_full_report(self, mapper):
        payload = {"message": {
            "type": "end-of-call-report",
            "endedReason": "customer-ended-call",
            "durationSeconds": 59.6,
            "startedAt": "2026-03-02T15:00:00.000Z",
            "endedAt": "2026-03-02T15:01:00.000Z",
            "artifact": {
                "transcript": "AI: Hello\nUser: Hi",
                "recordingUrl": "https://storage.vapi.ai/rec.wav",
            },
            "analysis": {"summary": "Booked a cleaning", "structuredData": {"sentiment": "Positive"}},
            "call": {"id": "vapi-1"},
        }}

        event = parse_vapi_event(payload, mapper)

        assert event.call_id == "vapi-1"
        assert event.status == "completed"
        assert event.duration_seconds == 60
        assert event.transcript == "AI: Hello\nUser: Hi"
        assert event.recording_url == "https://storage.vapi.ai/rec.wav"
        assert event.summary == "Booked a cleaning"
        assert event.sentiment == "positive"
        assert event.started_at == datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)

    def test_duration_computed_from_timestamps(self, mapper):
        payload = {"message": {
            "type": "end-of-call-report",
            "endedReason": "assistant-ended-call",
            "startedAt": "2026-03-02T15:00:00Z",
            "endedAt": "2026-03-02T15:02:30Z",
            "call": {"id": "vapi-1"},
        }}

        assert parse_vapi_event(payload, mapper).duration_seconds == 150

    def test_no_answer_report(self, mapper):
        payload = {"message": {
            "type": "end-of-call-report",
            "endedReason": "customer-did-not-answer",
            "call": {"id": "vapi-1"},
        }}

        event = parse_vapi_event(payload, mapper)

        assert event.status == "no-answer"
        assert event.duration_seconds is None

    def test_top_level_transcript_fallback(self, mapper):
        payload = {"message": {
            "type": "end-of-call-report",
            "transcript": "AI: Bye",
            "recordingUrl": "https://storage.vapi.ai/r2.wav",
            "call": {"id": "vapi-1"},
        }}

        event = parse_vapi_event(payload, mapper)

        assert event.transcript == "AI: Bye"
        assert event.recording_url == "https://storage.vapi.ai/r2.wav"


class TestLegacyEvents:
    """Test legacy call.started / call.ended envelopes"""

    def test_call_started(self, mapper):
        event = parse_vapi_event(
            {"type": "call.started", "call": {"id": "vapi-1", "startedAt": "2026-03-02T15:00:00Z"}},
            mapper,
        )

        assert event.status == "in-progress"
        assert event.started_at is not None

    def test_call_ended(self, mapper):
        event = parse_vapi_event({"type": "call.ended", "call": {
            "id": "vapi-1",
            "status": "ended",
            "endedReason": "customer-ended-call",
            "startedAt": "2026-03-02T15:00:00Z",
            "endedAt": "2026-03-02T15:00:45Z",
            "transcript": "AI: Hello",
        }}, mapper)

        assert event.status == "completed"
        assert event.duration_seconds == 45
        assert event.transcript == "AI: Hello"

    def test_call_ended_without_talk_time_is_no_answer(self, mapper):
        event = parse_vapi_event({"type": "call-ended", "call": {
            "id": "vapi-1",
            "startedAt": "2026-03-02T15:00:00Z",
            "endedAt": "2026-03-02T15:00:00Z",
        }}, mapper)

        assert event.status == "no-answer"
        assert event.duration_seconds == 0


class TestIgnoredPayloads:
    """Test payloads that carry no status change"""

    @pytest.mark.parametrize("payload", [
        {},
        {"message": {"type": "transcript", "call": {"id": "vapi-1"}, "transcript": "hi"}},
        {"message": {"type": "tool-calls", "call": {"id": "vapi-1"}}},
        {"message": {"type": "status-update", "status": "in-progress"}},
        {"message": {"type": "status-update", "call": {"id": "vapi-1"}}},
        {"type": "call.updated", "call": {"id": "vapi-1"}},
        {"type": "call.ended", "call": {}},
        ["not", "a", "dict"],
    ])
    def test_returns_none(self, mapper, payload):
        assert parse_vapi_event(payload, mapper) is None


class TestMalformedPayloads:
    """Test payloads with fields of the wrong type or shape"""

    @pytest.mark.parametrize("payload", [
        {"message": {"type": "status-update", "status": "ringing", "call": {"id": 12345}}},
        {"message": {"type": "status-update", "status": "ringing", "call": "vapi-1"}},
        {"message": {"type": "end-of-call-report", "call": ["vapi-1"]}},
        {"type": "call.ended", "call": {"id": None}},
        {"type": ["call.ended"], "call": {"id": "vapi-1"}},
    ])
    def test_unusable_call_reference_is_ignored(self, mapper, payload):
        assert parse_vapi_event(payload, mapper) is None

    def test_unparseable_timestamps_are_dropped(self, mapper):
        payload = {"message": {
            "type": "end-of-call-report",
            "endedReason": "customer-ended-call",
            "startedAt": "yesterday-ish",
            "endedAt": "2026-03-02T15:01:00Z",
            "call": {"id": "vapi-1"},
        }}

        event = parse_vapi_event(payload, mapper)

        assert event.status == "completed"
        assert event.started_at is None
        assert event.ended_at == datetime(2026, 3, 2, 15, 1, tzinfo=timezone.utc)
        assert event.duration_seconds is None

    @pytest.mark.parametrize("duration", ["inf", "-inf", "nan", "1e400", "ninety", True, {"s": 1}])
    def test_unusable_duration_is_dropped(self, mapper, duration):
        payload = {"message": {
            "type": "end-of-call-report",
            "endedReason": "customer-ended-call",
            "durationSeconds": duration,
            "call": {"id": "vapi-1"},
        }}

        event = parse_vapi_event(payload, mapper)

        assert event.status == "completed"
        assert event.duration_seconds is None

    def test_non_string_artifacts_are_dropped(self, mapper):
        payload = {"message": {
            "type": "end-of-call-report",
            "endedReason": 42,
            "artifact": {"transcript": ["AI: Hello"], "recordingUrl": 7},
            "analysis": "great call",
            "call": {"id": "vapi-1"},
        }}

        event = parse_vapi_event(payload, mapper)

        assert event.status == "completed"
        assert event.transcript is None
        assert event.recording_url is None
        assert event.summary is None
        assert event.sentiment is None
