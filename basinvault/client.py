"""
Basin Vault Client - HTTP Client

This file handles:
- Vault creation (ownership registration)
- Writing signed events (file uploads)
- Listing and downloading events
- Waiting for a written event to become visible

Endpoints (relative to the base URL):
- POST /vaults/{vault_id}           form: account, cache
- POST /vaults/{vault_id}/events    query: timestamp, signature; body: file
- GET  /vaults/{vault_id}/events    JSON array of events
- GET  /events/{cid}                raw content

Every non-2xx answer raises ServerError. Nothing is retried.
"""

import logging
import os
import tempfile
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Union
from urllib.parse import quote

import requests

from .errors import DecodeError, FileIOError, ServerError, TransportError
from .events import Event, decode_events

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

DEFAULT_BASE_URL = "https://basin.tableland.xyz"
DOWNLOAD_CHUNK = 64 * 1024

# Ingestion polling defaults (seconds)
DEFAULT_INGEST_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_POLL_BACKOFF = 2.0
DEFAULT_MAX_POLL_INTERVAL = 10.0


# =============================================================================
# Polling Outcome
# =============================================================================

@dataclass(frozen=True)
class NotYetIngested:
    """
    Returned by wait_for_event() when the deadline passes first.

    This is an outcome, not an error: the event may still show up later.
    The caller decides whether that is fatal.
    """

    vault_id: str
    expected_cid: Optional[str]
    timestamp: Optional[int]
    attempts: int
    elapsed: float
    last_count: int

    def __str__(self) -> str:
        target = self.expected_cid or (
            f"timestamp {self.timestamp}" if self.timestamp is not None else "any event"
        )
        return (
            f"Event ({target}) not visible in vault '{self.vault_id}' after "
            f"{self.elapsed:.1f}s ({self.attempts} checks, {self.last_count} events listed)"
        )


def find_event(
    events: List[Event],
    cid: Optional[str] = None,
    timestamp: Optional[int] = None,
) -> Optional[Event]:
    """
    Pick the event matching cid (preferred) or submission timestamp.

    With neither given, returns the last event (newest in insertion order).
    """
    if cid:
        return next((e for e in events if e.cid == cid), None)
    if timestamp is not None:
        return next((e for e in events if e.timestamp == timestamp), None)
    return events[-1] if events else None


# =============================================================================
# CLIENT CLASS
# =============================================================================

class VaultClient:
    """
    Stateless client for the vault service.

    Usage:
        client = VaultClient()
        client.create_vault("my.vault", signer.account, cache=10800)

        signature = signer.sign_file("data.csv")
        client.write_event("my.vault", "data.csv", int(time.time()), signature)

        result = client.wait_for_event("my.vault", timestamp=ts)
        if isinstance(result, NotYetIngested):
            ...

        client.download_event(result[0].cid, "copy.csv")

    The only state is configuration (base URL, transport timeout) and the
    requests session used as transport.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            base_url: Service root, e.g. "https://basin.tableland.xyz"
            session: Transport; a new requests.Session if not given
            timeout: Per-request transport timeout in seconds (None = wait)
        """
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout

    def __enter__(self) -> "VaultClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        """Release pooled connections."""
        self.session.close()

    # =========================================================================
    # LOW-LEVEL
    # =========================================================================

    def request(self, method: str, path: str, **kwargs) -> requests.Response:
        """
        Send one request and return the response WITHOUT checking status.

        Use this when the caller wants to inspect the status code itself.
        The typed operations below all go through here.

        Raises:
            TransportError: Connection, DNS or timeout failure
        """
        url = self.base_url + path
        logger.debug("%s %s", method, url)
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

    # =========================================================================
    # VAULT OPERATIONS
    # =========================================================================

    def create_vault(self, vault_id: str, account: str, cache: Optional[int] = None) -> str:
        """
        Register a vault owned by account.

        The cache field is sent only when given, so the service's own default
        applies otherwise. Creating an existing vault is up to the server;
        a rejection comes back as ServerError.

        Args:
            vault_id: Vault name, e.g. "my_namespace.data"
            account: Owner address from KeySigner.account
            cache: Minutes to keep content in the fast cache (optional)

        Returns:
            Raw response body

        Raises:
            ValueError: Empty vault_id/account or negative cache
            TransportError, ServerError
        """
        _require(vault_id, "vault_id")
        _require(account, "account")

        form = {"account": account}
        if cache is not None:
            if isinstance(cache, bool) or not isinstance(cache, int) or cache < 0:
                raise ValueError(f"cache must be a non-negative integer, got {cache!r}")
            form["cache"] = str(cache)

        logger.info("Creating vault '%s' for account %s", vault_id, account)
        resp = self.request("POST", _vault_path(vault_id), data=form)
        _check(resp, f"create vault '{vault_id}'")
        return resp.text

    def write_event(
        self,
        vault_id: str,
        file_path: str,
        timestamp: Union[int, str],
        signature: str,
    ) -> str:
        """
        Upload a file as a new event.

        The whole file is read into memory and sent as the request body.
        timestamp and signature travel as query parameters (URL-encoded by
        requests); the file's base name goes in the "filename" header
        as UTF-8 bytes, the same bytes a name signature covers.

        Args:
            vault_id: Target vault
            file_path: Local file to upload
            timestamp: Unix seconds the signature was made for
            signature: Hex signature from KeySigner.sign_file()

        Returns:
            Raw ingestion response text

        Raises:
            FileIOError: File can't be opened or read
            TransportError, ServerError
        """
        _require(vault_id, "vault_id")
        _require(signature, "signature")

        try:
            with open(file_path, 'rb') as f:
                body = f.read()
        except OSError as e:
            raise FileIOError(f"Cannot read {file_path}: {e}") from e

        filename = os.path.basename(file_path)
        logger.info("Writing %s (%d bytes) to vault '%s'", filename, len(body), vault_id)
        resp = self.request(
            "POST",
            _vault_path(vault_id) + "/events",
            params={"timestamp": str(timestamp), "signature": signature},
            headers={"filename": filename.encode('utf-8')},
            data=body,
        )
        _check(resp, f"write event to vault '{vault_id}'")
        return resp.text

    def list_events_raw(self, vault_id: str) -> str:
        """List events as the raw response body (status checked, shape not)."""
        _require(vault_id, "vault_id")
        resp = self.request("GET", _vault_path(vault_id) + "/events")
        _check(resp, f"list events of vault '{vault_id}'")
        return resp.text

    def list_events(self, vault_id: str) -> List[Event]:
        """
        List a vault's events in the order the server returns them.

        Returns:
            List of Event (empty list for a vault with no events)

        Raises:
            TransportError, ServerError
            DecodeError: Body isn't a JSON array of event objects
        """
        _require(vault_id, "vault_id")
        resp = self.request("GET", _vault_path(vault_id) + "/events")
        _check(resp, f"list events of vault '{vault_id}'")

        try:
            payload = resp.json()
        except ValueError as e:
            raise DecodeError(f"Events response is not valid JSON: {e}") from e

        events = decode_events(payload)
        logger.debug("Vault '%s' has %d events", vault_id, len(events))
        return events

    def download_event(self, cid: str, output_path: str) -> int:
        """
        Download an event's content to output_path.

        SAFETY:
        - Status is checked BEFORE any file is created
        - Bytes stream into a temp file next to output_path, which replaces
          output_path only once the whole body has arrived
        - On any failure the temp file is removed and output_path is untouched

        Args:
            cid: Event content identifier
            output_path: Destination file (overwritten if it exists)

        Returns:
            Number of bytes written

        Raises:
            TransportError, ServerError
            FileIOError: Destination can't be written
        """
        _require(cid, "cid")

        with self.request("GET", "/events/" + quote(cid, safe=""), stream=True) as resp:
            _check(resp, f"download event '{cid}'")

            directory = os.path.dirname(os.path.abspath(output_path))
            try:
                fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".basin-", suffix=".part")
            except OSError as e:
                raise FileIOError(f"Cannot create file in {directory}: {e}") from e

            written = 0
            done = False
            try:
                with os.fdopen(fd, 'wb') as out:
                    for chunk in resp.iter_content(chunk_size=DOWNLOAD_CHUNK):
                        if chunk:
                            out.write(chunk)
                            written += len(chunk)
                os.chmod(tmp_path, 0o666 & ~_current_umask())
                os.replace(tmp_path, output_path)
                done = True
            except requests.exceptions.RequestException as e:
                raise TransportError(f"Download of '{cid}' interrupted: {e}") from e
            except OSError as e:
                raise FileIOError(f"Cannot write {output_path}: {e}") from e
            finally:
                if not done:
                    _discard(tmp_path)

        logger.info("Downloaded event '%s' to %s (%d bytes)", cid, output_path, written)
        return written

    # =========================================================================
    # INGESTION
    # =========================================================================

    def wait_for_event(
        self,
        vault_id: str,
        expected_cid: Optional[str] = None,
        timestamp: Optional[int] = None,
        min_events: int = 1,
        timeout: float = DEFAULT_INGEST_TIMEOUT,
        interval: float = DEFAULT_POLL_INTERVAL,
        backoff: float = DEFAULT_POLL_BACKOFF,
        max_interval: float = DEFAULT_MAX_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> Union[List[Event], NotYetIngested]:
        """
        Poll list_events() until a written event is visible or time runs out.

        What counts as visible (first that applies):
        - expected_cid given: an event with that cid is listed
        - timestamp given: an event with that submission timestamp is listed
        - otherwise: at least min_events events are listed

        Delays start at interval and grow by backoff up to max_interval.
        The last sleep is cut short so the deadline is never overshot.
        Errors from list_events() propagate on the first occurrence.

        Returns:
            The event list that satisfied the check, or NotYetIngested
        """
        if timeout < 0:
            raise ValueError("timeout must be >= 0")
        if interval <= 0:
            raise ValueError("interval must be > 0")
        if backoff < 1:
            raise ValueError("backoff must be >= 1")

        start = clock()
        deadline = start + timeout
        delay = interval
        attempts = 0

        while True:
            events = self.list_events(vault_id)
            attempts += 1

            if expected_cid or timestamp is not None:
                visible = find_event(events, expected_cid, timestamp) is not None
            else:
                visible = len(events) >= min_events

            if visible:
                logger.info("Event visible in vault '%s' after %d checks", vault_id, attempts)
                return events

            now = clock()
            remaining = deadline - now
            if remaining <= 0:
                outcome = NotYetIngested(
                    vault_id=vault_id,
                    expected_cid=expected_cid,
                    timestamp=timestamp,
                    attempts=attempts,
                    elapsed=now - start,
                    last_count=len(events),
                )
                logger.warning("%s", outcome)
                return outcome

            logger.debug("Not visible yet, checking again in %.1fs", min(delay, remaining))
            sleep(min(delay, remaining))
            delay = min(delay * backoff, max_interval)


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _require(value: str, name: str) -> None:
    if not value:
        raise ValueError(f"{name} is required")


def _vault_path(vault_id: str) -> str:
    return "/vaults/" + quote(vault_id, safe="")


def _check(resp: requests.Response, action: str) -> None:
    """Raise ServerError unless status is 2xx. Body goes in the message."""
    if 200 <= resp.status_code < 300:
        return
    body = resp.text
    status = f"{resp.status_code} {getattr(resp, 'reason', '') or ''}".strip()
    raise ServerError(
        f"Failed to {action}: {status}, response: {body}",
        status_code=resp.status_code,
        body=body,
    )


def _current_umask() -> int:
    # mkstemp creates 0600 files; downloads get the usual umask-based mode
    mask = os.umask(0)
    os.umask(mask)
    return mask


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
