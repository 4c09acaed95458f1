import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from webhook_pipeline.errors import PermanentHandlerError, ValidationError
from webhook_pipeline.jobs import Job, WebhookEvent

logger = logging.getLogger(__name__)

Handler = Callable[[WebhookEvent], Awaitable[dict[str, Any] | None]]


@dataclass(frozen=True)
class Outcome:
    succeeded: bool
    result: dict[str, Any] | None = None
    error: str | None = None
    retryable: bool = True


class HandlerDispatcher:
    """Routes a job to the handler registered for its topic.

    Handler errors become failed outcomes; only cancellation escapes.
    """

    def __init__(self, handlers: Mapping[str, Handler], timeout: float = 30.0) -> None:
        self._handlers = dict(handlers)
        self._timeout = timeout

    @property
    def topics(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(self, job: Job) -> Outcome:
        handler = self._handlers.get(job.topic)
        if handler is None:
            logger.warning("Unknown webhook topic %s job=%s, skipping", job.topic, job.job_id)
            return Outcome(succeeded=True, result={"skipped": True, "topic": job.topic})

        logger.info(
            "Processing job %s topic=%s event=%s attempt=%d",
            job.job_id,
            job.topic,
            job.event_id,
            job.attempt_count,
        )
        try:
            result = await asyncio.wait_for(handler(job.event), timeout=self._timeout)
        except TimeoutError:
            return Outcome(succeeded=False, error=f"Handler timed out after {self._timeout}s")
        except ValidationError as e:
            logger.error("Invalid payload job=%s error=%s", job.job_id, e)
            return Outcome(succeeded=False, error=f"ValidationError: {e}", retryable=False)
        except PermanentHandlerError as e:
            return Outcome(succeeded=False, error=f"PermanentHandlerError: {e}", retryable=e.retryable)
        except Exception as e:
            logger.exception("Handler error job=%s", job.job_id)
            return Outcome(succeeded=False, error=f"{type(e).__name__}: {e}")
        return Outcome(succeeded=True, result=result)
