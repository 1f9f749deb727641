"""
Canonical forms for on-chain identifiers.

EVM addresses and transaction hashes are hex; letter case carries no
identity (EIP-55 mixed case is only a checksum). Everything is stored and
compared in lower case.
"""


def normalize_address(address: str) -> str:
    return address.strip().lower()


def normalize_tx_hash(transaction_hash: str) -> str:
    return transaction_hash.strip().lower()
