# tests/test_transaction.py
import pytest
from eth_account import Account

from optirollup.crypto.hash import Hash
from optirollup.crypto.signature import SignatureManager
from optirollup.exceptions import ValidationError
from optirollup.rollup.batch import Batch, compute_merkle_root, compute_state_root
from optirollup.rollup.merkle import hash_leaf, hash_node
from optirollup.rollup.transaction import REQUIRED_FIELDS, Transaction
from optirollup.utils.config import Config


class TestTransaction:
    @pytest.fixture
    def payload(self, make_tx):
        return make_tx(nonce=3, value=250)

    def test_valid_payload_is_accepted(self, payload):
        tx = Transaction.from_dict(payload)
        assert tx.sender == payload["from"]
        assert tx.value == 250
        assert tx.nonce == 3

    @pytest.mark.parametrize("field", REQUIRED_FIELDS)
    def test_missing_field_is_rejected(self, payload, field):
        del payload[field]
        with pytest.raises(ValidationError) as exc:
            Transaction.from_dict(payload)
        assert exc.value.reason == field

    @pytest.mark.parametrize("field", REQUIRED_FIELDS)
    def test_empty_or_none_field_is_rejected(self, payload, field):
        payload[field] = None
        with pytest.raises(ValidationError):
            Transaction.from_dict(payload)
        payload[field] = ""
        with pytest.raises(ValidationError):
            Transaction.from_dict(payload)

    def test_zero_value_and_nonce_are_valid(self, make_tx):
        tx = Transaction.from_dict(make_tx(nonce=0, value=0))
        assert tx.value == 0
        assert tx.nonce == 0

    def test_digit_strings_are_accepted(self, payload):
        payload["value"] = "1000"
        payload["nonce"] = "7"
        tx = Transaction.from_dict(payload)
        assert tx.value == 1000
        assert tx.nonce == 7

    @pytest.mark.parametrize("value", [-1, "abc", True, 1.5, "\u00b2", "\u0661\u0662"])
    def test_bad_value_is_rejected(self, payload, value):
        payload["value"] = value
        with pytest.raises(ValidationError) as exc:
            Transaction.from_dict(payload)
        assert exc.value.reason == "value"

    def test_non_ascii_digit_nonce_is_rejected(self, payload):
        payload["nonce"] = "\u00b3"
        with pytest.raises(ValidationError) as exc:
            Transaction.from_dict(payload)
        assert exc.value.reason == "nonce"

    def test_bad_address_is_rejected(self, payload):
        payload["to"] = "0x1234"
        with pytest.raises(ValidationError) as exc:
            Transaction.from_dict(payload)
        assert exc.value.reason == "to"

    def test_non_hex_data_is_rejected(self, payload):
        payload["data"] = "hello"
        with pytest.raises(ValidationError) as exc:
            Transaction.from_dict(payload)
        assert exc.value.reason == "data"

    @pytest.mark.parametrize("signature", [
        "0x1234",
        "0x" + "ab" * 64,
        "0x" + "ab" * 64 + "05",
        "ab" * 65,
    ])
    def test_malformed_signature_is_rejected(self, payload, signature):
        payload["signature"] = signature
        with pytest.raises(ValidationError) as exc:
            Transaction.from_dict(payload)
        assert exc.value.reason == "signature"

    def test_signature_recovers_sender(self, payload, sender):
        tx = Transaction.from_dict(payload)
        assert tx.verify_signer()
        assert SignatureManager.recover_signer(tx.signing_payload(), tx.signature) == sender.address

    def test_signature_from_other_account_does_not_verify(self, make_tx, sender):
        forged = make_tx(account=Account.create())
        forged["from"] = sender.address
        assert not Transaction.from_dict(forged).verify_signer()

    def test_unrecoverable_signature_does_not_verify(self, payload):
        tx = Transaction.from_dict(payload)
        zero_signature = "0x" + "00" * 64 + "1b"
        assert not SignatureManager.verify_signer(tx.signing_payload(), zero_signature, tx.sender)

    def test_commitment_is_keccak_of_canonical_json(self, payload):
        tx = Transaction.from_dict(payload)
        assert tx.commitment == Hash.keccak(Hash.canonical_json(tx.to_dict()))
        assert Hash.is_hash(tx.commitment)

    def test_transaction_is_immutable(self, payload):
        tx = Transaction.from_dict(payload)
        with pytest.raises(AttributeError):
            tx.value = 1


class TestBatchRoots:
    def test_two_transaction_batch_roots(self, make_tx):
        a = Transaction.from_dict(make_tx(nonce=0))
        b = Transaction.from_dict(make_tx(nonce=1))
        h_a = hash_leaf(Hash.to_bytes(a.commitment))
        h_b = hash_leaf(Hash.to_bytes(b.commitment))

        batch = Batch.build(0, [a, b], Config.ZERO_ROOT, created_at=0)

        assert batch.merkle_root == hash_node(h_a, h_b)
        assert batch.state_root == Hash.keccak(
            Hash.to_bytes(Config.ZERO_ROOT) + Hash.to_bytes(batch.merkle_root) + (0).to_bytes(32, "big")
        )

    def test_roots_are_deterministic_and_order_sensitive(self, make_tx):
        txs = [Transaction.from_dict(make_tx(nonce=i)) for i in range(3)]
        assert compute_merkle_root(txs) == compute_merkle_root(list(txs))
        assert compute_merkle_root(txs) != compute_merkle_root(txs[::-1])

    def test_state_root_depends_on_batch_id(self, make_tx):
        txs = [Transaction.from_dict(make_tx())]
        merkle_root = compute_merkle_root(txs)
        assert compute_state_root(Config.ZERO_ROOT, merkle_root, 0) != compute_state_root(Config.ZERO_ROOT, merkle_root, 1)

    def test_batch_dict_round_trip_verifies(self, make_tx):
        batch = Batch.build(4, [Transaction.from_dict(make_tx(nonce=i)) for i in range(2)], Config.ZERO_ROOT, 10)
        restored = Batch.from_dict(batch.to_dict())
        restored.verify_roots()
        assert restored.state_root == batch.state_root
