"""
Basin Vault Client - Signed uploads to an append-only event vault

Derives an owner account from a secp256k1 key, signs files, writes them to a
vault on the Basin service, and reads the resulting events back.

Key Features:
- Ethereum-style accounts: keccak-256 address of the public key
- Deterministic recoverable ECDSA signatures (hex r || s || v)
- Strict HTTP contract: every non-2xx status is an error
- Bounded polling instead of sleeping and hoping the write landed
- Safe downloads: no empty or partial file left behind on failure

Components:
- signing.py: Key loading, account derivation, signatures (one file!)
- client.py: VaultClient (create, write, list, download, wait)
- events.py: Event record and decoding
- workflow.py: The full create → sign → write → wait → download run
- config.py: Environment settings for the CLI
- errors.py: Error types

Usage:
    python basin_main.py account               # Show owner address
    python basin_main.py create                # Create VAULT_ID
    python basin_main.py write data.csv        # Sign and upload
    python basin_main.py list                  # List events
    python basin_main.py download <cid> out    # Fetch content
    python basin_main.py run data.csv          # All of the above
"""

from .client import NotYetIngested, VaultClient
from .errors import (
    BasinError,
    ConfigError,
    DecodeError,
    FileIOError,
    InvalidKeyFormat,
    KeyDerivationError,
    NotYetIngestedError,
    ServerError,
    TransportError,
)
from .events import Event
from .signing import KeySigner, derive_account, load_private_key

__version__ = "0.1.0"

__all__ = [
    "BasinError",
    "ConfigError",
    "DecodeError",
    "Event",
    "FileIOError",
    "InvalidKeyFormat",
    "KeyDerivationError",
    "KeySigner",
    "NotYetIngested",
    "NotYetIngestedError",
    "ServerError",
    "TransportError",
    "VaultClient",
    "derive_account",
    "load_private_key",
]
