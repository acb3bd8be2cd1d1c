# src/optirollup/storage/rollup_state.py
from typing import Any, Dict, List, Optional

from .database import Database


class RollupStateStore:
    """Id-keyed tables for batches, deposits, withdrawals and validators"""

    def __init__(self, db_path: str):
        self.db = Database(db_path)

    def save_batch(self, batch_data: Dict) -> None:
        self.db.put("batches", batch_data["id"], batch_data)

    def get_batch(self, batch_id: int) -> Optional[Dict]:
        return self.db.get("batches", batch_id)

    def load_batches(self) -> List[Dict]:
        return sorted((body for _, body in self.db.items("batches")), key=lambda b: b["id"])

    def save_deposit(self, deposit_data: Dict) -> None:
        self.db.put("deposits", deposit_data["id"], deposit_data)

    def get_deposit(self, deposit_id: str) -> Optional[Dict]:
        return self.db.get("deposits", deposit_id)

    def load_deposits(self) -> List[Dict]:
        return [body for _, body in self.db.items("deposits")]

    def save_withdrawal(self, withdrawal_data: Dict) -> None:
        self.db.put("withdrawals", withdrawal_data["id"], withdrawal_data)

    def get_withdrawal(self, withdrawal_id: str) -> Optional[Dict]:
        return self.db.get("withdrawals", withdrawal_id)

    def load_withdrawals(self) -> List[Dict]:
        return [body for _, body in self.db.items("withdrawals")]

    def save_validator(self, validator_data: Dict) -> None:
        self.db.put("validators", validator_data["address"], validator_data)

    def get_validator(self, address: str) -> Optional[Dict]:
        return self.db.get("validators", address)

    def load_validators(self) -> List[Dict]:
        return [body for _, body in self.db.items("validators")]

    def set_meta(self, key: str, value: Any) -> None:
        self.db.put("meta", key, value)

    def get_meta(self, key: str, default: Any = None) -> Any:
        value = self.db.get("meta", key)
        return default if value is None else value

    def counts(self) -> Dict[str, int]:
        return {
            table: self.db.count(table)
            for table in ("batches", "deposits", "withdrawals", "validators")
        }

    def close(self):
        """Close database connection"""
        if self.db:
            self.db.close()
            self.db = None
