# tests/test_storage.py
import pytest
import os
import tempfile
import shutil
from optirollup.exceptions import DatabaseError
from optirollup.storage.database import Database
from optirollup.storage.rollup_state import RollupStateStore
from optirollup.rollup.batch import Batch
from optirollup.rollup.transaction import Transaction
from optirollup.utils.config import Config


class TestStorage:
    @pytest.fixture
    def temp_dir(self):
        """Create a temporary directory for test databases"""
        tmp_dir = tempfile.mkdtemp()
        yield tmp_dir
        shutil.rmtree(tmp_dir)

    @pytest.fixture
    def db_path(self, temp_dir):
        """Create a test database path"""
        return os.path.join(temp_dir, "nested", "test.db")

    @pytest.fixture
    def database(self, db_path):
        """Create a test database instance"""
        db = Database(db_path)
        yield db
        db.close()

    @pytest.fixture
    def store(self, db_path):
        """Create a test rollup state store"""
        state = RollupStateStore(db_path)
        yield state
        state.close()

    @pytest.fixture
    def sample_batch(self, make_tx):
        """Create a sample batch"""
        transactions = [Transaction.from_dict(make_tx(nonce=i)) for i in range(3)]
        return Batch.build(0, transactions, Config.ZERO_ROOT, created_at=1_700_000_000)

    def test_database_basic_operations(self, database, db_path):
        """Test put and get"""
        assert os.path.exists(db_path)
        database.put("meta", "test_key", {"value": "test_value"})
        result = database.get("meta", "test_key")
        assert result["value"] == "test_value"
        assert database.get("meta", "missing") is None

    def test_database_overwrites_by_id(self, database):
        database.put("deposits", "deposit_1", {"status": "pending"})
        database.put("deposits", "deposit_1", {"status": "completed"})
        assert database.get("deposits", "deposit_1") == {"status": "completed"}
        assert database.count("deposits") == 1

    def test_database_batch_write(self, database):
        """Test batch write operations"""
        test_data = {
            "key1": {"value": "value1"},
            "key2": {"value": "value2"},
            "key3": {"value": "value3"}
        }
        assert database.batch_write("meta", test_data) == True

        for key, expected_value in test_data.items():
            assert database.get("meta", key) == expected_value
        assert dict(database.items("meta")) == test_data

    def test_unknown_table_is_rejected(self, database):
        with pytest.raises(DatabaseError):
            database.put("blocks", "x", {})

    def test_unserializable_value_is_rejected(self, database):
        with pytest.raises(DatabaseError):
            database.put("meta", "bad", {"value": object()})

    def test_batch_round_trip(self, store, sample_batch):
        """Test storing and reloading a batch"""
        store.save_batch(sample_batch.to_dict())

        loaded = Batch.from_dict(store.get_batch(0))
        loaded.verify_roots()
        assert loaded.state_root == sample_batch.state_root
        assert [tx.nonce for tx in loaded.transactions] == [0, 1, 2]

    def test_batches_load_in_id_order(self, store, sample_batch):
        for batch_id in (10, 2, 1):
            data = sample_batch.to_dict()
            data["id"] = batch_id
            store.save_batch(data)
        assert [b["id"] for b in store.load_batches()] == [1, 2, 10]

    def test_meta_defaults(self, store):
        assert store.get_meta("rollup:roots") is None
        assert store.get_meta("rollup:roots", {}) == {}
        store.set_meta("rollup:roots", {"current_root": Config.ZERO_ROOT})
        assert store.get_meta("rollup:roots")["current_root"] == Config.ZERO_ROOT

    def test_counts(self, store, sample_batch):
        store.save_batch(sample_batch.to_dict())
        store.save_deposit({"id": "deposit_1", "status": "completed"})
        store.save_withdrawal({"id": "withdrawal_1", "status": "burned"})
        store.save_validator({"address": "0x" + "01" * 20, "active": True})
        assert store.counts() == {"batches": 1, "deposits": 1, "withdrawals": 1, "validators": 1}

    def test_data_survives_reopen(self, db_path, sample_batch):
        first = RollupStateStore(db_path)
        first.save_batch(sample_batch.to_dict())
        first.close()

        second = RollupStateStore(db_path)
        assert second.get_batch(0)["state_root"] == sample_batch.state_root
        second.close()
