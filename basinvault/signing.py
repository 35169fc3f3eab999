"""
Basin Vault Client - Signing Module

All key handling and signature construction lives in this one file.

Signing pipeline:
    1. Secret (hex or PEM) → secp256k1 private key
    2. Private key → uncompressed public point → keccak-256 → account address
    3. Target identifier → canonical bytes → keccak-256 digest
    4. Digest → deterministic recoverable ECDSA → hex(r || s || v)

Why secp256k1 + keccak?
    - The vault service authenticates owners by Ethereum-style addresses
    - A recoverable signature lets the server get the signer's address back
      from (digest, signature) and compare it to the vault owner

SIGNING SCOPE WARNING:
    The default target is the file's NAME, not its bytes. That is what the
    vault service expects today, but it means the signature says nothing about
    the content: anyone can swap the body of a file and keep a valid
    signature. Content signing exists (mode="content") and is opt-in because
    it changes what the server has to verify.
"""

import logging
import os
import string
from typing import Optional, Union

from Crypto.Hash import keccak
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from eth_keys import keys
from eth_keys.exceptions import BadSignature
from eth_utils import ValidationError, to_checksum_address

from .errors import FileIOError, InvalidKeyFormat, KeyDerivationError

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

PRIVATE_KEY_SIZE = 32    # 256-bit scalar
SIGNATURE_SIZE = 65      # r (32) || s (32) || v (1)
ADDRESS_SIZE = 20        # last 20 bytes of keccak(pubkey)

# Order of the secp256k1 group; valid private keys are in [1, N-1]
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

SIGN_MODES = ("name", "content")
READ_CHUNK = 64 * 1024


# =============================================================================
# Hashing
# =============================================================================

def keccak256(data: bytes) -> bytes:
    """Return the 32-byte keccak-256 digest of data (NOT NIST SHA3-256)."""
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def canonical_bytes(identifier: Union[str, bytes]) -> bytes:
    """
    Convert a signing target to the exact bytes that get hashed.

    Format:
    - str: UTF-8 encoded, no normalisation or trimming
    - bytes / bytearray: used unchanged

    Same identifier ALWAYS gives the same bytes, so the server can rebuild
    the digest from the filename header it receives.
    """
    if isinstance(identifier, str):
        return identifier.encode('utf-8')
    if isinstance(identifier, (bytes, bytearray)):
        return bytes(identifier)
    raise TypeError(f"Cannot sign identifier of type {type(identifier).__name__}")


def file_digest(path: str) -> bytes:
    """Keccak-256 of a file's bytes, read in chunks."""
    h = keccak.new(digest_bits=256)
    try:
        with open(path, 'rb') as f:
            for chunk in iter(lambda: f.read(READ_CHUNK), b''):
                h.update(chunk)
    except OSError as e:
        raise FileIOError(f"Cannot read {path}: {e}") from e
    return h.digest()


# =============================================================================
# Key Loading
# =============================================================================

def load_private_key(secret: str) -> ec.EllipticCurvePrivateKey:
    """
    Parse a secret into a secp256k1 private key.

    Accepted encodings:
    - 64 hex digits, optionally prefixed with "0x" (the usual wallet export)
    - PEM encoded, unencrypted EC private key on secp256k1

    Args:
        secret: Secret key text (surrounding whitespace ignored)

    Returns:
        cryptography EllipticCurvePrivateKey

    Raises:
        InvalidKeyFormat: Malformed encoding, out-of-range scalar, or a key
            on a different curve
    """
    if not isinstance(secret, str) or not secret.strip():
        raise InvalidKeyFormat("Private key is empty")

    text = secret.strip()

    if text.startswith("-----BEGIN"):
        return _load_pem_key(text)

    if text[:2].lower() == "0x":
        text = text[2:]

    if len(text) != PRIVATE_KEY_SIZE * 2:
        raise InvalidKeyFormat(
            f"Private key must be {PRIVATE_KEY_SIZE * 2} hex characters, got {len(text)}"
        )

    if not all(c in string.hexdigits for c in text):
        raise InvalidKeyFormat("Private key is not valid hex")

    try:
        raw = bytes.fromhex(text)
    except ValueError as e:
        raise InvalidKeyFormat("Private key is not valid hex") from e

    value = int.from_bytes(raw, 'big')
    if not 0 < value < SECP256K1_N:
        raise InvalidKeyFormat("Private key is outside the secp256k1 range")

    return ec.derive_private_key(value, ec.SECP256K1())


def _load_pem_key(text: str) -> ec.EllipticCurvePrivateKey:
    try:
        key = serialization.load_pem_private_key(text.encode('utf-8'), password=None)
    except (ValueError, TypeError) as e:
        raise InvalidKeyFormat(f"Cannot parse PEM private key: {e}") from e

    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise InvalidKeyFormat("PEM key is not an elliptic curve key")
    if key.curve.name != ec.SECP256K1.name:
        raise InvalidKeyFormat(f"PEM key is on {key.curve.name}, expected secp256k1")
    return key


# =============================================================================
# Account Derivation
# =============================================================================

def derive_account(key) -> str:
    """
    Derive the account address that owns vaults signed by this key.

    How it works:
    - Take the uncompressed public point (0x04 || X || Y)
    - Drop the 0x04 prefix and keccak-256 the 64 coordinate bytes
    - Keep the last 20 bytes and apply the EIP-55 mixed-case checksum

    Args:
        key: Private key from load_private_key()

    Returns:
        Checksummed address, e.g. "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"

    Raises:
        KeyDerivationError: If the public key is missing or not secp256k1
    """
    try:
        public_key = key.public_key()
    except (AttributeError, TypeError, ValueError) as e:
        raise KeyDerivationError(f"Cannot obtain public key: {e}") from e

    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        raise KeyDerivationError("Public key is not an elliptic curve key")
    if public_key.curve.name != ec.SECP256K1.name:
        raise KeyDerivationError(f"Public key is on {public_key.curve.name}, expected secp256k1")

    point = public_key.public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.UncompressedPoint,
    )
    address = keccak256(point[1:])[-ADDRESS_SIZE:]
    return to_checksum_address("0x" + address.hex())


# =============================================================================
# Signature Verification
# =============================================================================

def recover_account(digest: bytes, signature: str) -> str:
    """
    Recover the signer's address from a digest and a hex signature.

    Raises:
        ValueError: If the signature is not 65 bytes of valid r || s || v
    """
    try:
        raw = bytes.fromhex(signature[2:] if signature[:2].lower() == "0x" else signature)
    except ValueError as e:
        raise ValueError("Signature is not valid hex") from e
    if len(raw) != SIGNATURE_SIZE:
        raise ValueError(f"Signature must be {SIGNATURE_SIZE} bytes, got {len(raw)}")

    try:
        sig = keys.Signature(signature_bytes=raw)
        public_key = sig.recover_public_key_from_msg_hash(digest)
    except (BadSignature, ValidationError, ValueError) as e:
        raise ValueError(f"Invalid signature: {e}") from e
    return public_key.to_checksum_address()


def verify_signature(account: str, identifier: Union[str, bytes], signature: str) -> bool:
    """
    Check that signature over identifier was made by account's key.

    Mirrors what the vault service does on write. Address comparison is
    case-insensitive so checksummed and lowercase forms both match.
    """
    digest = keccak256(canonical_bytes(identifier))
    try:
        recovered = recover_account(digest, signature)
    except ValueError:
        return False
    return recovered.lower() == account.lower()


# =============================================================================
# Signer
# =============================================================================

class KeySigner:
    """
    Holds one private key for the run and signs vault submissions with it.

    Usage:
        signer = KeySigner.from_secret(os.environ["PRIVATE_KEY"])
        account = signer.account                 # vault owner address
        signature = signer.sign_file("test.txt") # signs the NAME by default

    The key is passed in explicitly; this class never reads configuration.
    """

    def __init__(self, private_key: ec.EllipticCurvePrivateKey):
        self._private_key = private_key
        self._account: Optional[str] = None

    @classmethod
    def from_secret(cls, secret: str) -> "KeySigner":
        """Build a signer from hex/PEM text (see load_private_key)."""
        return cls(load_private_key(secret))

    @property
    def account(self) -> str:
        """Owner address, derived once and cached for the signer's lifetime."""
        if self._account is None:
            self._account = derive_account(self._private_key)
            logger.debug("Derived account %s", self._account)
        return self._account

    def sign_digest(self, digest: bytes) -> str:
        """
        Sign a 32-byte digest.

        Returns:
            130 lowercase hex characters: r || s || v, v in {0, 1}, low-s.
            Deterministic (RFC 6979): same key + digest → same signature.
        """
        if len(digest) != 32:
            raise ValueError(f"Digest must be 32 bytes, got {len(digest)}")
        value = self._private_key.private_numbers().private_value
        eth_key = keys.PrivateKey(value.to_bytes(PRIVATE_KEY_SIZE, 'big'))
        return eth_key.sign_msg_hash(digest).to_bytes().hex()

    def sign_target(self, identifier: Union[str, bytes]) -> str:
        """Sign keccak-256 of the canonical bytes of identifier."""
        return self.sign_digest(keccak256(canonical_bytes(identifier)))

    def sign_file(self, path: str, mode: str = "name") -> str:
        """
        Sign a file for submission.

        Modes:
        - "name" (default): signs the file's base name. Matches what the vault
          service verifies today. Provides NO content integrity.
        - "content": signs keccak-256 of the file bytes. Opt-in only.

        Raises:
            FileIOError: If the file does not exist or cannot be read
            ValueError: Unknown mode
        """
        if mode not in SIGN_MODES:
            raise ValueError(f"Unknown sign mode {mode!r}, expected one of {SIGN_MODES}")

        if mode == "content":
            logger.debug("Signing content of %s", path)
            return self.sign_digest(file_digest(path))

        if not os.path.isfile(path):
            raise FileIOError(f"Cannot open {path}: no such file")
        name = os.path.basename(path)
        logger.debug("Signing file name %r (content not covered)", name)
        return self.sign_target(name)

    def __repr__(self) -> str:
        # Never expose key material
        return f"KeySigner(account={self.account})"
