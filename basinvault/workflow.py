"""
Basin Vault Client - End-to-end Workflow

One run = create vault → sign file → write event → wait until visible →
download it back. Steps run strictly in order; the first error stops the run
and nothing already done is undone (a created vault stays created).
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .client import (
    DEFAULT_INGEST_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    NotYetIngested,
    VaultClient,
    find_event,
)
from .errors import NotYetIngestedError
from .events import Event
from .signing import KeySigner

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """What a completed run produced."""

    account: str
    vault_id: str
    signature: str
    timestamp: int
    create_response: str
    write_response: str
    events: List[Event] = field(default_factory=list)
    event: Optional[Event] = None
    output_path: Optional[str] = None
    bytes_downloaded: int = 0


def run(
    signer: KeySigner,
    client: VaultClient,
    vault_id: str,
    file_path: str,
    output_path: str,
    cache: Optional[int] = None,
    timeout: float = DEFAULT_INGEST_TIMEOUT,
    interval: float = DEFAULT_POLL_INTERVAL,
    sign_mode: str = "name",
    now: Callable[[], float] = time.time,
    sleep: Callable[[float], None] = time.sleep,
) -> RunResult:
    """
    Publish file_path to the vault and fetch it back to output_path.

    The signature is made before anything touches the network, so a bad key
    or missing file fails fast.

    Raises:
        NotYetIngestedError: The write never showed up within timeout
        BasinError subclasses from signing and the client, unchanged
    """
    account = signer.account
    signature = signer.sign_file(file_path, mode=sign_mode)
    logger.info("Signed %s for account %s", file_path, account)

    create_response = client.create_vault(vault_id, account, cache=cache)

    timestamp = int(now())
    write_response = client.write_event(vault_id, file_path, timestamp, signature)

    outcome = client.wait_for_event(
        vault_id,
        timestamp=timestamp,
        timeout=timeout,
        interval=interval,
        sleep=sleep,
    )
    if isinstance(outcome, NotYetIngested):
        raise NotYetIngestedError(outcome)

    event = find_event(outcome, timestamp=timestamp)
    written = client.download_event(event.cid, output_path)

    return RunResult(
        account=account,
        vault_id=vault_id,
        signature=signature,
        timestamp=timestamp,
        create_response=create_response,
        write_response=write_response,
        events=outcome,
        event=event,
        output_path=output_path,
        bytes_downloaded=written,
    )
