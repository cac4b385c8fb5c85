"""
Vapi Event Parsing
Turns Vapi server messages and call objects into our call status vocabulary
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from pydantic import ValidationError

from app.core.config import ConfigManager
from app.domain.models.call import CallStatus, CallWebhookData

logger = logging.getLogger(__name__)

DEFAULT_NO_ANSWER_REASONS = (
    "customer-did-not-answer",
    "customer-busy",
    "voicemail",
    "silence-timed-out",
)

DEFAULT_FAILED_REASON_PREFIXES = (
    "pipeline-error",
    "assistant-error",
    "phone-call-provider",
    "twilio-failed",
    "vonage-failed",
    "call.start.error",
    "call.in-progress.error",
)

# Legacy envelope types sent as {"type": ..., "call": {...}}
LEGACY_STARTED_TYPES = {"call.started", "call-started"}
LEGACY_ENDED_TYPES = {"call.ended", "call-ended"}


class VapiStatusMapper:
    """
    Maps Vapi call statuses to stored call statuses.

    Vapi reports every finished call as "ended" and explains it with an
    endedReason; we split that into completed, no-answer and failed.
    Anything else (queued, ringing, in-progress, forwarding) passes through.
    """

    def __init__(
        self,
        no_answer_reasons: Optional[Iterable[str]] = None,
        failed_reason_prefixes: Optional[Iterable[str]] = None
    ):
        self.no_answer_reasons = set(no_answer_reasons or DEFAULT_NO_ANSWER_REASONS)
        self.failed_reason_prefixes = tuple(failed_reason_prefixes or DEFAULT_FAILED_REASON_PREFIXES)

    @classmethod
    def from_config(cls, config: Optional[ConfigManager] = None) -> "VapiStatusMapper":
        config = config or ConfigManager()
        return cls(
            no_answer_reasons=config.get("vapi.no_answer_reasons"),
            failed_reason_prefixes=config.get("vapi.failed_reason_prefixes"),
        )

    def ended_status(self, ended_reason: Optional[str]) -> str:
        reason = (ended_reason or "").lower()
        if reason in self.no_answer_reasons:
            return CallStatus.NO_ANSWER.value
        if reason.startswith(self.failed_reason_prefixes) or "error" in reason:
            return CallStatus.FAILED.value
        return CallStatus.COMPLETED.value

    def normalize(self, status: Optional[str], ended_reason: Optional[str] = None) -> Optional[str]:
        if not status:
            return None
        if status == "ended":
            return self.ended_status(ended_reason)
        return status


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _as_timestamp(value: Any) -> Optional[datetime]:
    """ISO 8601 timestamp, or None when missing or unparseable"""
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Ignoring unparseable Vapi timestamp: {value!r}")
        return None


def _duration_between(started_at: Optional[datetime], ended_at: Optional[datetime]) -> Optional[int]:
    if started_at is None or ended_at is None:
        return None
    try:
        return max(0, round((ended_at - started_at).total_seconds()))
    except TypeError:
        # naive vs aware timestamps
        return None


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return None


def _sentiment(analysis: Dict[str, Any]) -> Optional[str]:
    structured = _as_dict(analysis.get("structuredData"))
    sentiment = analysis.get("sentiment") or structured.get("sentiment")
    return str(sentiment).lower() if sentiment else None


def parse_vapi_event(
    payload: Dict[str, Any],
    mapper: Optional[VapiStatusMapper] = None
) -> Optional[CallWebhookData]:
    """
    Extract a call status event from a Vapi webhook payload.

    Returns None for payloads that carry no call status change (tool calls,
    transcripts, speech updates, malformed bodies). A bare "ended"
    status-update is also ignored: the end-of-call-report that follows it
    carries the final status together with duration and artifacts.

    Never raises: fields of the wrong type are dropped, and an event that
    still fails validation is logged and treated as unrecognized.
    """
    mapper = mapper or VapiStatusMapper()
    if not isinstance(payload, dict):
        return None

    try:
        message = payload.get("message")
        if isinstance(message, dict):
            return _parse_server_message(message, mapper)

        if _as_str(payload.get("type")) in LEGACY_STARTED_TYPES | LEGACY_ENDED_TYPES:
            return _parse_legacy_event(payload, mapper)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed Vapi webhook payload: {e.error_count()} invalid field(s)")

    return None


def _parse_server_message(message: Dict[str, Any], mapper: VapiStatusMapper) -> Optional[CallWebhookData]:
    message_type = message.get("type")
    call = _as_dict(message.get("call"))
    call_id = _as_str(call.get("id"))

    if not call_id:
        return None

    if message_type == "status-update":
        status = _as_str(message.get("status")) or _as_str(call.get("status"))
        if not status or status == "ended":
            return None
        return CallWebhookData(call_id=call_id, status=mapper.normalize(status))

    if message_type == "end-of-call-report":
        artifact = _as_dict(message.get("artifact"))
        analysis = _as_dict(message.get("analysis"))
        started_at = _as_timestamp(message.get("startedAt") or call.get("startedAt"))
        ended_at = _as_timestamp(message.get("endedAt") or call.get("endedAt"))
        ended_reason = _as_str(message.get("endedReason")) or _as_str(call.get("endedReason"))

        duration = _as_int(message.get("durationSeconds"))
        if duration is None:
            duration = _duration_between(started_at, ended_at)

        return CallWebhookData(
            call_id=call_id,
            status=mapper.ended_status(ended_reason),
            transcript=_as_str(artifact.get("transcript")) or _as_str(message.get("transcript")),
            recording_url=_as_str(artifact.get("recordingUrl")) or _as_str(message.get("recordingUrl")),
            summary=_as_str(analysis.get("summary")) or _as_str(message.get("summary")),
            sentiment=_sentiment(analysis),
            duration_seconds=duration,
            started_at=started_at,
            ended_at=ended_at,
        )

    return None


def _parse_legacy_event(payload: Dict[str, Any], mapper: VapiStatusMapper) -> Optional[CallWebhookData]:
    call = _as_dict(payload.get("call"))
    call_id = _as_str(call.get("id"))
    if not call_id:
        return None

    started_at = _as_timestamp(call.get("startedAt"))

    if payload["type"] in LEGACY_STARTED_TYPES:
        return CallWebhookData(
            call_id=call_id,
            status=CallStatus.IN_PROGRESS.value,
            started_at=started_at,
        )

    ended_at = _as_timestamp(call.get("endedAt"))
    duration = _duration_between(started_at, ended_at)
    status = mapper.normalize(_as_str(call.get("status")) or "ended", _as_str(call.get("endedReason")))

    # A call that ended without any talk time never connected
    if duration == 0 and status == CallStatus.COMPLETED.value:
        status = CallStatus.NO_ANSWER.value

    return CallWebhookData(
        call_id=call_id,
        status=status,
        transcript=_as_str(call.get("transcript")),
        recording_url=_as_str(call.get("recordingUrl")),
        duration_seconds=duration,
        started_at=started_at,
        ended_at=ended_at,
    )
