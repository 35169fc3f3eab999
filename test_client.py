"""
Basin Vault Client - Client, Workflow and CLI Tests

Run with: python test_client.py   (or: pytest)

The vault service is replaced by FakeSession, an in-memory stand-in for
requests.Session that records every request and replays canned responses.
No network access is needed.
"""

import contextlib
import io
import json
import os
import tempfile
from unittest import mock

import requests

import basin_main
from basinvault import workflow
from basinvault.client import NotYetIngested, VaultClient, find_event
from basinvault.errors import (
    DecodeError,
    FileIOError,
    NotYetIngestedError,
    ServerError,
    TransportError,
)
from basinvault.events import Event
from basinvault.signing import KeySigner, canonical_bytes, verify_signature

BASE = "https://vault.test"
KEY_ONE = "00" * 31 + "01"
ADDRESS_ONE = "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"


# =============================================================================
# Fakes
# =============================================================================

class FakeResponse:
    """Just enough of requests.Response for the client."""

    def __init__(self, status_code=200, body=b"", reason="", fail_after=None):
        if isinstance(body, (list, dict)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode('utf-8')
        self.status_code = status_code
        self.content = body
        self.reason = reason
        self.fail_after = fail_after
        self.closed = False

    @property
    def text(self):
        return self.content.decode('utf-8')

    def json(self):
        return json.loads(self.text)

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.content), chunk_size):
            if self.fail_after is not None and i >= self.fail_after:
                raise requests.exceptions.ChunkedEncodingError("connection reset")
            yield self.content[i:i + chunk_size]

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class FakeSession:
    """Replays responses in order and records (method, url, kwargs)."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


class FakeClock:
    """Monotonic clock that only moves when sleep() is called."""

    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _client(*responses):
    session = FakeSession(*responses)
    return VaultClient(BASE, session=session), session


def _temp_dir():
    return tempfile.mkdtemp()


def _write(path, content):
    with open(path, 'wb') as f:
        f.write(content)


def _read(path):
    with open(path, 'rb') as f:
        return f.read()


def _prepared(method, url, **kwargs):
    """What requests would actually put on the wire."""
    return requests.Request(method, url, **kwargs).prepare()


EVENT_JSON = {
    "cid": "bafy123",
    "timestamp": 1700000000,
    "is_archived": False,
    "cache_expiry": "2024-01-01T00:00:00Z",
}


# =============================================================================
# createVault
# =============================================================================

def test_create_vault():
    """Test form fields and cache handling."""
    print("Testing Create Vault...")

    client, session = _client(FakeResponse(200, "created"), FakeResponse(200, "created"))

    assert client.create_vault("v1", ADDRESS_ONE) == "created"
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", f"{BASE}/vaults/v1")
    assert kwargs["data"] == {"account": ADDRESS_ONE}, "cache must be omitted"
    print("  [OK] No cache field when cache is not given")

    client.create_vault("v1", ADDRESS_ONE, cache=10800)
    _, url, kwargs = session.calls[1]
    assert kwargs["data"] == {"account": ADDRESS_ONE, "cache": "10800"}
    body = _prepared("POST", url, data=kwargs["data"]).body
    assert body == f"account={ADDRESS_ONE}&cache=10800"
    print("  [OK] cache=10800 sent exactly, form-encoded")

    for args in (("", ADDRESS_ONE), ("v1", ""), ("v1", ADDRESS_ONE, -1), ("v1", ADDRESS_ONE, 1.5)):
        try:
            client.create_vault(*args)
            assert False, f"Should reject {args}"
        except ValueError:
            pass
    assert len(session.calls) == 2, "Invalid input must not reach the server"
    print("  [OK] Invalid arguments rejected locally")


def test_create_vault_errors():
    """Non-2xx and transport failures surface as errors."""
    print("Testing Create Vault Errors...")

    client, _ = _client(FakeResponse(409, "vault exists", reason="Conflict"))
    try:
        client.create_vault("v1", ADDRESS_ONE)
        assert False, "409 should raise"
    except ServerError as e:
        assert e.status_code == 409
        assert e.body == "vault exists"
        assert "409 Conflict" in str(e) and "vault exists" in str(e)
    print("  [OK] Rejection raises ServerError with status and body")

    client, _ = _client(requests.exceptions.ConnectionError("dns failure"))
    try:
        client.create_vault("v1", ADDRESS_ONE)
        assert False, "Connection failure should raise"
    except TransportError as e:
        assert isinstance(e.__cause__, requests.exceptions.ConnectionError)
    print("  [OK] Connection failure raises TransportError")

    # The low-level call still exposes the status without raising
    client, _ = _client(FakeResponse(409, "vault exists"))
    resp = client.request("POST", "/vaults/v1", data={"account": ADDRESS_ONE})
    assert resp.status_code == 409
    print("  [OK] request() returns unchecked responses")


# =============================================================================
# writeEvent
# =============================================================================

def test_write_event():
    """Test the request shape of a write."""
    print("Testing Write Event...")

    directory = _temp_dir()
    path = os.path.join(directory, "data file.csv")
    _write(path, b"a,b\n1,2\n")

    client, session = _client(FakeResponse(200, '{"ok":true}'))
    signature = "ab" * 65
    assert client.write_event("my vault", path, 1700000000, signature) == '{"ok":true}'

    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url == f"{BASE}/vaults/my%20vault/events"
    assert kwargs["params"] == {"timestamp": "1700000000", "signature": signature}
    assert kwargs["headers"] == {"filename": b"data file.csv"}, "Header is the UTF-8 base name"
    assert kwargs["data"] == b"a,b\n1,2\n"

    wire = _prepared(method, url, params=kwargs["params"]).url
    assert wire == f"{BASE}/vaults/my%20vault/events?timestamp=1700000000&signature={signature}"
    print("  [OK] Query params, filename header and body are exact")

    unicode_path = os.path.join(directory, "отчёт.csv")
    _write(unicode_path, b"x\n")
    client, session = _client(FakeResponse(200, "ok"))
    client.write_event("v1", unicode_path, 1, signature)
    header = session.calls[0][2]["headers"]["filename"]
    assert header == "отчёт.csv".encode('utf-8')
    assert header == canonical_bytes("отчёт.csv"), "Header matches the signed name"
    prepared = _prepared("POST", f"{BASE}/vaults/v1/events", headers={"filename": header})
    assert prepared.headers["filename"] == header
    print("  [OK] Non-ASCII file names are sent as UTF-8 header bytes")

    client, session = _client()
    try:
        client.write_event("v1", os.path.join(directory, "missing.bin"), 1, signature)
        assert False, "Missing file should raise"
    except FileIOError:
        pass
    assert session.calls == [], "Nothing sent when the file can't be read"
    print("  [OK] Unreadable file raises FileIOError before any request")

    client, _ = _client(FakeResponse(401, "bad signature"))
    try:
        client.write_event("v1", path, 1, signature)
        assert False, "401 should raise"
    except ServerError as e:
        assert e.status_code == 401
    print("  [OK] Rejected write raises ServerError")


# =============================================================================
# listEvents
# =============================================================================

def test_list_events():
    """Test decoding and ordering."""
    print("Testing List Events...")

    second = dict(EVENT_JSON, cid="bafy456", timestamp=1600000000)
    client, session = _client(
        FakeResponse(200, [EVENT_JSON]),
        FakeResponse(200, [EVENT_JSON, second]),
        FakeResponse(200, []),
        FakeResponse(200, "[]"),
    )

    events = client.list_events("v1")
    assert events == [Event("bafy123", 1700000000, False, "2024-01-01T00:00:00Z")]
    assert session.calls[0][:2] == ("GET", f"{BASE}/vaults/v1/events")
    print("  [OK] Example body decodes to one exact Event")

    events = client.list_events("v1")
    assert [e.cid for e in events] == ["bafy123", "bafy456"], "Server order is kept"
    print("  [OK] Server order preserved")

    assert client.list_events("v1") == []
    assert client.list_events_raw("v1") == "[]"
    print("  [OK] Empty vault gives an empty list")


def test_list_events_errors():
    """Test error mapping for list."""
    print("Testing List Events Errors...")

    client, _ = _client(FakeResponse(404, "vault not found", reason="Not Found"))
    try:
        client.list_events("v1")
        assert False, "404 should raise"
    except ServerError as e:
        assert e.status_code == 404
        assert "vault not found" in str(e)
    print("  [OK] Non-2xx raises ServerError with body in message")

    for body in ("<html>oops</html>", {"cid": "bafy123"}, [{"cid": "bafy123"}]):
        client, _ = _client(FakeResponse(200, body))
        try:
            client.list_events("v1")
            assert False, f"Should reject {body!r}"
        except DecodeError:
            pass
    print("  [OK] Malformed bodies raise DecodeError")

    client, _ = _client(requests.exceptions.Timeout("read timed out"))
    try:
        client.list_events("v1")
        assert False, "Timeout should raise"
    except TransportError:
        pass
    print("  [OK] Timeout raises TransportError")


# =============================================================================
# downloadEvent
# =============================================================================

def test_download_event():
    """Test byte-exact downloads and overwrite."""
    print("Testing Download Event...")

    directory = _temp_dir()
    output = os.path.join(directory, "out.bin")
    _write(output, b"old content that is longer than the new one")

    content = bytes(range(256)) * 600  # spans several chunks
    client, session = _client(FakeResponse(200, content))
    written = client.download_event("bafy/123", output)

    assert written == len(content)
    assert _read(output) == content, "Bytes must match the response exactly"
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("GET", f"{BASE}/events/bafy%2F123")
    assert kwargs["stream"] is True
    assert os.listdir(directory) == ["out.bin"], "No temp files left behind"
    print("  [OK] Download is byte-exact and overwrites the old file")

    if os.name == "posix":
        fresh = os.path.join(directory, "fresh.bin")
        old_mask = os.umask(0o022)
        try:
            client, _ = _client(FakeResponse(200, b"data"))
            client.download_event("bafy123", fresh)
        finally:
            os.umask(old_mask)
        assert os.stat(fresh).st_mode & 0o777 == 0o644, "Mode follows the umask, not mkstemp's 0600"
        print("  [OK] Downloaded file gets the usual umask-based mode")


def test_download_event_failures():
    """No file is created or corrupted when the download fails."""
    print("Testing Download Failures...")

    directory = _temp_dir()
    output = os.path.join(directory, "out.bin")

    response = FakeResponse(404, "no such event")
    client, _ = _client(response)
    try:
        client.download_event("bafy123", output)
        assert False, "404 should raise"
    except ServerError as e:
        assert e.status_code == 404
    assert os.listdir(directory) == [], "No file may be created on non-2xx"
    assert response.closed
    print("  [OK] Non-2xx leaves no output file")

    _write(output, b"keep me")
    client, _ = _client(FakeResponse(200, b"x" * 200000, fail_after=65536))
    try:
        client.download_event("bafy123", output)
        assert False, "Interrupted stream should raise"
    except TransportError:
        pass
    assert _read(output) == b"keep me", "Existing file untouched"
    assert os.listdir(directory) == ["out.bin"], "Partial temp file removed"
    print("  [OK] Interrupted stream leaves no partial file")

    client, _ = _client(FakeResponse(200, b"data"))
    try:
        client.download_event("bafy123", os.path.join(directory, "no", "such", "dir.bin"))
        assert False, "Unwritable destination should raise"
    except FileIOError:
        pass
    print("  [OK] Unwritable destination raises FileIOError")


# =============================================================================
# Polling
# =============================================================================

def test_wait_for_event():
    """Bounded polling with backoff."""
    print("Testing Wait For Event...")

    clock = FakeClock()
    client, session = _client(
        FakeResponse(200, []),
        FakeResponse(200, []),
        FakeResponse(200, [EVENT_JSON]),
    )
    result = client.wait_for_event(
        "v1", expected_cid="bafy123", timeout=30, interval=1, backoff=2,
        sleep=clock.sleep, clock=clock,
    )
    assert [e.cid for e in result] == ["bafy123"]
    assert clock.sleeps == [1, 2], "Delay doubles between checks"
    assert len(session.calls) == 3
    print("  [OK] Returns events once the cid shows up")

    clock = FakeClock()
    client, session = _client(*[FakeResponse(200, []) for _ in range(4)])
    result = client.wait_for_event(
        "v1", expected_cid="bafy123", timeout=5, interval=1, backoff=2,
        sleep=clock.sleep, clock=clock,
    )
    assert isinstance(result, NotYetIngested)
    assert result.attempts == 4 and result.last_count == 0
    assert result.elapsed == 5
    assert clock.sleeps == [1, 2, 2], "Last sleep is cut to the deadline"
    assert "bafy123" in str(result)
    print("  [OK] Timeout returns NotYetIngested without overshooting")

    clock = FakeClock()
    other = dict(EVENT_JSON, cid="bafyOLD", timestamp=1)
    client, _ = _client(FakeResponse(200, [other]), FakeResponse(200, [other, EVENT_JSON]))
    result = client.wait_for_event(
        "v1", timestamp=1700000000, sleep=clock.sleep, clock=clock,
    )
    assert find_event(result, timestamp=1700000000).cid == "bafy123"
    print("  [OK] Matching by submission timestamp ignores older events")

    client, _ = _client(FakeResponse(200, [EVENT_JSON]))
    assert len(client.wait_for_event("v1", timeout=0)) == 1
    print("  [OK] min_events check without a cid")

    client, _ = _client(FakeResponse(500, "boom"))
    try:
        client.wait_for_event("v1", sleep=clock.sleep, clock=clock)
        assert False, "Errors must not be retried"
    except ServerError:
        pass
    print("  [OK] List errors propagate immediately")

    for kwargs in ({"timeout": -1}, {"interval": 0}, {"backoff": 0.5}):
        try:
            client.wait_for_event("v1", **kwargs)
            assert False, f"Should reject {kwargs}"
        except ValueError:
            pass


# =============================================================================
# End to end
# =============================================================================

def test_end_to_end():
    """create → sign → write → poll → download with a 37-byte file."""
    print("Testing End-to-End Run...")

    directory = _temp_dir()
    source = os.path.join(directory, "test.txt")
    original = b"Hello Basin! This file has 37 bytes.\n"
    assert len(original) == 37
    _write(source, original)
    output = os.path.join(directory, "test-download.txt")

    stored = dict(EVENT_JSON, timestamp=1700000123)
    client, session = _client(
        FakeResponse(200, "vault created"),
        FakeResponse(200, "event written"),
        FakeResponse(200, []),
        FakeResponse(200, [stored]),
        FakeResponse(200, original),
    )
    signer = KeySigner.from_secret(KEY_ONE)
    clock = FakeClock()

    result = workflow.run(
        signer, client, "v1", source, output,
        cache=10800, timeout=10, interval=1,
        now=lambda: 1700000123.9, sleep=clock.sleep,
    )

    assert result.account == ADDRESS_ONE
    assert result.timestamp == 1700000123
    assert len(result.events) == 1
    assert result.event.cid == "bafy123"
    assert _read(output) == original, "Downloaded bytes equal the original"
    assert result.bytes_downloaded == 37

    methods = [(m, u) for m, u, _ in session.calls]
    assert methods == [
        ("POST", f"{BASE}/vaults/v1"),
        ("POST", f"{BASE}/vaults/v1/events"),
        ("GET", f"{BASE}/vaults/v1/events"),
        ("GET", f"{BASE}/vaults/v1/events"),
        ("GET", f"{BASE}/events/bafy123"),
    ]
    assert session.calls[0][2]["data"] == {"account": ADDRESS_ONE, "cache": "10800"}
    write_params = session.calls[1][2]["params"]
    assert write_params["timestamp"] == "1700000123"
    assert verify_signature(ADDRESS_ONE, "test.txt", write_params["signature"])
    print("  [OK] Full run downloads the original 37 bytes")


def test_end_to_end_not_ingested():
    """The run stops instead of downloading when the write never shows up."""
    print("Testing End-to-End Timeout...")

    directory = _temp_dir()
    source = os.path.join(directory, "test.txt")
    _write(source, b"x" * 37)

    client, session = _client(
        FakeResponse(200, "vault created"),
        FakeResponse(200, "event written"),
        FakeResponse(200, []),
    )
    try:
        workflow.run(
            KeySigner.from_secret(KEY_ONE), client, "v1", source,
            os.path.join(directory, "out.txt"), timeout=0,
        )
        assert False, "Should raise NotYetIngestedError"
    except NotYetIngestedError as e:
        assert isinstance(e.outcome, NotYetIngested)
        assert e.outcome.attempts == 1
    assert len(session.calls) == 3, "No download attempted"
    assert not os.path.exists(os.path.join(directory, "out.txt"))
    print("  [OK] NotYetIngestedError raised, nothing downloaded")


# =============================================================================
# CLI
# =============================================================================

def _run_cli(argv, env):
    out, err = io.StringIO(), io.StringIO()
    with mock.patch.dict(os.environ, env, clear=True), \
            contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
        code = basin_main.main(["--env-file", os.devnull] + argv)
    return code, out.getvalue(), err.getvalue()


def test_cli():
    """Exit codes and output of the command line."""
    print("Testing CLI...")

    code, out, _ = _run_cli(["account"], {"PRIVATE_KEY": KEY_ONE})
    assert code == 0 and out.strip() == ADDRESS_ONE
    print("  [OK] account prints the address")

    code, _, err = _run_cli(["account"], {"PRIVATE_KEY": "nope"})
    assert code == 1 and err.startswith("ERROR:")
    print("  [OK] Bad key exits with status 1")

    code, _, err = _run_cli(["list"], {})
    assert code == 1 and "VAULT_ID" in err
    print("  [OK] Missing VAULT_ID exits with status 1")

    directory = _temp_dir()
    path = os.path.join(directory, "test.txt")
    _write(path, b"hello")
    code, out, _ = _run_cli(["sign", path], {"PRIVATE_KEY": KEY_ONE})
    assert code == 0
    assert out.strip() == KeySigner.from_secret(KEY_ONE).sign_target("test.txt")
    print("  [OK] sign prints the name signature")


def run_all_tests():
    """Run all client tests."""
    print("=" * 70)
    print("Basin Vault Client - Client Test Suite")
    print("=" * 70)
    print()

    tests = [
        test_create_vault,
        test_create_vault_errors,
        test_write_event,
        test_list_events,
        test_list_events_errors,
        test_download_event,
        test_download_event_failures,
        test_wait_for_event,
        test_end_to_end,
        test_end_to_end_not_ingested,
        test_cli,
    ]

    failed = []

    for test in tests:
        try:
            test()
            print()
        except Exception as e:
            print(f"  [FAIL] TEST FAILED: {e}")
            failed.append((test.__name__, e))
            print()

    print("=" * 70)
    if not failed:
        print("[OK] ALL TESTS PASSED!")
    else:
        print(f"[FAIL] {len(failed)} TESTS FAILED:")
        for name, error in failed:
            print(f"  - {name}: {error}")
    print("=" * 70)

    return len(failed) == 0


if __name__ == "__main__":
    import sys
    success = run_all_tests()
    sys.exit(0 if success else 1)
