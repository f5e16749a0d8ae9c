"""
Outbound event delivery for trip, expense and maintenance notifications.

Events are posted as JSON to a single webhook (typically an n8n workflow that
fans out to WhatsApp/e-mail). Delivery is fire-and-forget: `send` returns
immediately, runs the HTTP call on a worker thread, and any failure is logged
and dropped. Callers always dispatch after their transaction has committed.
"""
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Protocol, Tuple
import logging
import httpx
from fastapi import Request
from utils.clock import utcnow
from utils.exceptions import DispatchFailure

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    def send(self, event_name: str, payload: Dict[str, Any]) -> None:
        ...


class NullDispatcher:
    """Dispatcher used when no webhook is configured"""

    def send(self, event_name: str, payload: Dict[str, Any]) -> None:
        logger.debug(f"Webhook disabled, dropping event {event_name}")

    def close(self) -> None:
        pass


class WebhookDispatcher:
    """Posts events to a webhook URL from a small background thread pool"""

    def __init__(self, url: str, timeout: float = 5.0, max_workers: int = 4):
        self.url = url
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="webhook")

    @staticmethod
    def build_envelope(event_name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "event": event_name,
            "timestamp": utcnow().isoformat() + "Z",
            "data": payload,
        }

    def send(self, event_name: str, payload: Dict[str, Any]) -> None:
        if not self.url:
            logger.warning(f"Webhook URL not configured, skipping {event_name}")
            return

        try:
            envelope = self.build_envelope(event_name, payload)
            self._executor.submit(self._deliver, envelope)
        except Exception as e:
            # Executor already shut down, or payload could not be built
            logger.error(f"Could not queue webhook {event_name}: {e}")

    def _deliver(self, envelope: Dict[str, Any]) -> None:
        event_name = envelope["event"]
        try:
            self.post(envelope)
            logger.info(f"Webhook sent: {event_name}")
        except DispatchFailure as failure:
            logger.error(f"Error sending webhook {event_name}: {failure.message}", exc_info=True)
        except Exception as e:
            logger.error(f"Unexpected error sending webhook {event_name}: {e}", exc_info=True)

    def post(self, envelope: Dict[str, Any]) -> None:
        try:
            response = httpx.post(
                self.url,
                json=envelope,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DispatchFailure(str(e), {"event": envelope.get("event")}) from e

    def close(self) -> None:
        self._executor.shutdown(wait=False)


def build_dispatcher(url: str, timeout: float, max_workers: int):
    """Called once at startup; business code receives the result by injection"""
    if not url:
        logger.warning("WEBHOOK_URL not configured - notifications disabled")
        return NullDispatcher()
    return WebhookDispatcher(url, timeout=timeout, max_workers=max_workers)


def get_dispatcher(request: Request) -> NotificationDispatcher:
    """FastAPI dependency returning the dispatcher built at startup"""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return dispatcher if dispatcher is not None else NullDispatcher()


def dispatch_all(dispatcher: Optional[NotificationDispatcher], events: List[Tuple[str, Dict[str, Any]]]) -> None:
    """Send queued (event, payload) pairs; a misbehaving dispatcher never reaches the caller"""
    if dispatcher is None:
        return
    for event_name, payload in events:
        try:
            dispatcher.send(event_name, payload)
        except Exception as e:
            logger.error(f"Dispatcher raised on {event_name}: {e}", exc_info=True)
