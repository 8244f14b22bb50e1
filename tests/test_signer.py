"""
Tests for keypair loading and transaction signing.
"""

import json
import pytest

import base58
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from lp_rebalancer.core.errors import ConfigurationError, ParseError
from lp_rebalancer.core.models import FreshnessToken, InstructionSet
from lp_rebalancer.ledger.signer import KeypairSigner, decode_lookup_tables, load_keypair


class TestLoadKeypair:

    def test_base58_secret(self):
        kp = Keypair()
        loaded = load_keypair(base58.b58encode(bytes(kp)).decode())
        assert loaded.pubkey() == kp.pubkey()

    def test_json_array_secret(self):
        kp = Keypair()
        loaded = load_keypair(json.dumps(list(bytes(kp))))
        assert loaded.pubkey() == kp.pubkey()

    @pytest.mark.parametrize("raw", ["", "   ", "not-base58-0OIl"])
    def test_unreadable(self, raw):
        with pytest.raises(ConfigurationError):
            load_keypair(raw)


class TestKeypairSigner:

    def test_signs_versioned_transaction(self):
        kp = Keypair()
        signer = KeypairSigner(kp)
        ix = transfer(TransferParams(from_pubkey=kp.pubkey(), to_pubkey=Pubkey.new_unique(), lamports=1))
        freshness = FreshnessToken(str(Hash.default()), last_valid_height=10)

        signed = signer.sign(InstructionSet((ix,)), freshness)

        tx = VersionedTransaction.from_bytes(signed.payload)
        assert str(tx.signatures[0]) == signed.signature
        assert tx.message.account_keys[0] == kp.pubkey()
        assert signer.public_key == str(kp.pubkey())

    def test_refuses_empty_set(self):
        signer = KeypairSigner(Keypair())
        with pytest.raises(ConfigurationError):
            signer.sign(InstructionSet(()), FreshnessToken(str(Hash.default())))


class TestLookupTables:

    def test_missing_table(self):
        with pytest.raises(ParseError):
            decode_lookup_tables({}, [str(Pubkey.new_unique())])

