"""
Basin Vault Client - Signing Scope Demonstration

Run: python attack_demo.py

What it shows (offline, no vault service needed):
1) A name signature stays valid after the file body is swapped.
2) A content signature breaks as soon as the body changes.
3) A signature made by another key never verifies for the vault owner.
"""

import os
import tempfile

from basinvault import signing
from basinvault.signing import KeySigner


LINE = "=" * 70

OWNER_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
ATTACKER_KEY = "00" * 31 + "02"


def section(title: str):
    print(f"\n{LINE}\n{title}\n{LINE}")


def main():
    owner = KeySigner.from_secret(OWNER_KEY)
    attacker = KeySigner.from_secret(ATTACKER_KEY)

    directory = tempfile.mkdtemp()
    path = os.path.join(directory, "report.csv")
    with open(path, 'wb') as f:
        f.write(b"account,balance\nalice,100\n")

    print(f"Owner account:    {owner.account}")
    print(f"Attacker account: {attacker.account}")

    # 1) Name signature survives a content swap
    section("Attack 1: Swap file body, keep the name signature")
    name_sig = owner.sign_file(path)
    with open(path, 'wb') as f:
        f.write(b"account,balance\nmallory,1000000\n")
    still_valid = signing.verify_signature(owner.account, os.path.basename(path), name_sig)
    if still_valid:
        print("WARNING: name signature still verifies; the swapped body would be accepted.")
    else:
        print("Unexpected: name signature stopped verifying")

    # 2) Content signature catches the swap
    section("Attack 2: Same swap against a content signature")
    with open(path, 'wb') as f:
        f.write(b"account,balance\nalice,100\n")
    content_sig = owner.sign_file(path, mode="content")
    with open(path, 'wb') as f:
        f.write(b"account,balance\nmallory,1000000\n")
    recovered = signing.recover_account(signing.file_digest(path), content_sig)
    if recovered.lower() != owner.account.lower():
        print(f"Expected failure: signature recovers to {recovered}, not the owner")
    else:
        print("Unexpected: content signature survived the swap")

    # 3) Wrong key
    section("Attack 3: Sign with a different key")
    forged = attacker.sign_file(path)
    if not signing.verify_signature(owner.account, os.path.basename(path), forged):
        print("Expected failure: attacker's signature does not verify for the owner")
    else:
        print("Unexpected: forged signature verified")

    print(f"\n{LINE}")
    print("Name signing (the default) proves who named the file, not what it holds.")
    print("Use BASIN_SIGN_MODE=content only once the vault service verifies content.")
    print(LINE)


if __name__ == "__main__":
    main()
