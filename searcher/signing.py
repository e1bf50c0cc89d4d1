"""
Signer boundary.

Key management and wire encoding belong to the wallet; the pipeline only
hands over a Transaction and receives signed bytes back.
"""

import base64
import hashlib
import json
from abc import ABC, abstractmethod

from searcher.models import Transaction


class BaseSigner(ABC):
    """Abstract wallet signer."""

    @property
    @abstractmethod
    def pubkey(self) -> str:
        """Fee payer / signer public key."""
        pass

    @abstractmethod
    def sign_transaction(self, transaction: Transaction) -> bytes:
        """Return the signed transaction in relay wire format."""
        pass


def encode_transaction(transaction: Transaction) -> bytes:
    """Canonical, deterministic encoding of an unsigned transaction."""
    message = {
        "fee_payer": transaction.fee_payer,
        "instructions": [
            {
                "program_id": ix.program_id,
                "accounts": [
                    [meta.pubkey, meta.is_signer, meta.is_writable]
                    for meta in ix.accounts
                ],
                "data": base64.b64encode(ix.data).decode(),
            }
            for ix in transaction.instructions
        ],
    }
    return json.dumps(message, sort_keys=True, separators=(",", ":")).encode()


class PaperSigner(BaseSigner):
    """
    Signer for paper trading.

    Produces a deterministic placeholder signature; nothing it signs is
    valid on chain.
    """

    SIGNATURE_LENGTH = 64

    def __init__(self, pubkey: str):
        if not pubkey:
            raise ValueError("PaperSigner needs a wallet pubkey")
        self._pubkey = pubkey

    @property
    def pubkey(self) -> str:
        return self._pubkey

    def sign_transaction(self, transaction: Transaction) -> bytes:
        message = encode_transaction(transaction)
        digest = hashlib.sha256(self._pubkey.encode() + message).digest()
        return digest * (self.SIGNATURE_LENGTH // len(digest)) + message
