"""Notifications for jobs that used up every attempt."""

import logging
from dataclasses import asdict, dataclass
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Alert:
    job_id: str
    event_id: str
    topic: str
    source_domain: str
    error: str
    attempts: int


class AlertSink(Protocol):
    async def send(self, alert: Alert) -> None: ...


class LoggingAlertSink:
    async def send(self, alert: Alert) -> None:
        logger.critical(
            "Webhook processing failed after all retries job=%s event=%s topic=%s shop=%s attempts=%d error=%s",
            alert.job_id,
            alert.event_id,
            alert.topic,
            alert.source_domain,
            alert.attempts,
            alert.error,
        )


class HttpAlertSink:
    """Posts a Slack incoming-webhook style message."""

    def __init__(self, client: httpx.AsyncClient, url: str) -> None:
        self._client = client
        self._url = url

    async def send(self, alert: Alert) -> None:
        body = {
            "text": f":rotating_light: Webhook {alert.topic} for event {alert.event_id} "
            f"failed after {alert.attempts} attempts",
            "attachments": [
                {
                    "color": "#8b0000",
                    "fields": [{"title": k, "value": str(v), "short": k != "error"} for k, v in asdict(alert).items()],
                }
            ],
        }
        response = await self._client.post(self._url, json=body)
        response.raise_for_status()


class CompositeAlertSink:
    def __init__(self, sinks: list[AlertSink]) -> None:
        self._sinks = sinks

    async def send(self, alert: Alert) -> None:
        for sink in self._sinks:
            try:
                await sink.send(alert)
            except Exception:
                logger.exception("Alert sink %s failed for job %s", type(sink).__name__, alert.job_id)
