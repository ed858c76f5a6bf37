"""
Movidesk public API: ticket ID listings and per-ticket detail.

The token travels as a query parameter, so every URL that reaches the log
goes through `mask_token` first.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode, urlparse, parse_qsl, urlunparse

import requests

from . import settings
from .errors import MalformedTicketError, TicketNotFound, TicketSourceError
from .throttle import FixedWindowThrottle

log = logging.getLogger(__name__)

RETRY_STATUS = {408, 429, 500, 502, 503, 504}


def mask_token(url: str) -> str:
    p = urlparse(url)
    qs = [(k, "***" if k.lower() == "token" else v) for k, v in parse_qsl(p.query, keep_blank_values=True)]
    return urlunparse((p.scheme, p.netloc, p.path, p.params, urlencode(qs, safe="$*"), p.fragment))


class MovideskClient:
    def __init__(
        self,
        token: str,
        base_url: str = settings.MOVIDESK_BASE_URL,
        session: Optional[requests.Session] = None,
        timeout: float = settings.HTTP_TIMEOUT_SECS,
        max_attempts: int = settings.HTTP_MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self._sleep = sleep
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": "movidesk-backup/pg-1.0 (+python-requests)",
        })

    def _url(self, path: str, **params: Any) -> str:
        query = urlencode({"token": self.token, **params}, safe="$")
        return f"{self.base_url}/{path}?{query}"

    def get_with_retry(self, url: str, throttle: Optional[FixedWindowThrottle] = None) -> requests.Response:
        """Every attempt, retries included, is one request against `throttle`."""
        backoff = 1.0
        masked = mask_token(url)
        for attempt in range(1, self.max_attempts + 1):
            if throttle is not None:
                throttle.wait()
            try:
                resp = self.session.get(url, timeout=self.timeout)
            except requests.RequestException as e:
                if throttle is not None:
                    throttle.record()
                if attempt == self.max_attempts:
                    raise TicketSourceError(f"GET {masked} failed: {e}", url=masked) from e
                log.warning("Network error for %s (%s). Sleeping %.1fs", masked, e, backoff)
                self._sleep(backoff)
                backoff = min(backoff * 2, 30.0)
                continue

            if throttle is not None:
                throttle.record()
            if resp.status_code in RETRY_STATUS and attempt < self.max_attempts:
                retry_after = resp.headers.get("Retry-After")
                sleep_for = float(retry_after) if retry_after and retry_after.isdigit() else backoff
                log.warning("Retryable %s for %s. Sleeping %.1fs", resp.status_code, masked, sleep_for)
                self._sleep(sleep_for)
                backoff = min(backoff * 2, 30.0)
                continue
            return resp
        raise TicketSourceError(f"GET {masked} exhausted retries", url=masked)

    def _get_json(self, url: str, throttle: Optional[FixedWindowThrottle] = None) -> Any:
        resp = self.get_with_retry(url, throttle)
        masked = mask_token(url)
        if resp.status_code == 404:
            raise TicketNotFound(f"GET {masked} returned 404", status_code=404, url=masked)
        if resp.status_code != 200:
            raise TicketSourceError(
                f"GET {masked} failed [{resp.status_code}]: {resp.text[:300]}",
                status_code=resp.status_code, url=masked,
            )
        return resp.json()

    def list_ticket_ids(self, past: bool = False) -> List[str]:
        """
        IDs from the current (`/tickets`) or historical (`/tickets/past`) partition.

        A body that cannot be read as a list of {id} objects yields whatever IDs
        could be extracted; transport errors and bad statuses propagate.
        """
        path = "tickets/past" if past else "tickets"
        url = self._url(path, **{"$select": "id"})
        try:
            data = self._get_json(url)
        except ValueError as e:
            log.error("Error processing the JSON response from /%s: %s", path, e)
            return []
        return extract_ids(data, source=path)

    def get_ticket(self, ticket_id: str, throttle: Optional[FixedWindowThrottle] = None) -> Dict[str, Any]:
        """Detail for one ticket; a `/tickets/past` fallback costs a second request on `throttle`."""
        try:
            try:
                data = self._get_json(self._url("tickets", id=ticket_id), throttle)
            except TicketNotFound:
                # Older tickets are only served from the historical partition
                log.info("Ticket %s not in /tickets, trying /tickets/past", ticket_id)
                data = self._get_json(self._url("tickets/past", id=ticket_id), throttle)
        except ValueError as e:
            raise MalformedTicketError(f"Ticket {ticket_id}: response is not JSON ({e})") from e
        if isinstance(data, list):
            if not data:
                raise TicketNotFound(f"No details found for ticket with ID: {ticket_id}", status_code=200)
            data = data[0]
        return data


def extract_ids(data: Any, source: str = "tickets") -> List[str]:
    if not isinstance(data, list):
        log.error("Unexpected payload from /%s: expected a list, got %s", source, type(data).__name__)
        return []
    ids = []
    for item in data:
        if isinstance(item, dict) and item.get("id") is not None:
            ids.append(str(item["id"]))
        else:
            log.warning("Skipping entry without id from /%s: %r", source, item)
    return ids


def fetch_ticket_detail(client: MovideskClient, throttle: FixedWindowThrottle, ticket_id: str) -> Dict[str, Any]:
    log.info("Fetching details for Ticket ID: %s", ticket_id)
    return client.get_ticket(ticket_id, throttle=throttle)
