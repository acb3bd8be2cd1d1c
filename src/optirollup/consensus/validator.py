# src/optirollup/consensus/validator.py
from typing import Optional, Dict, Any
from decimal import Decimal
from dataclasses import dataclass
import copy
import time


@dataclass
class ValidatorPerformance:
    total: int = 0
    success: int = 0
    fail: int = 0
    uptime: float = 100.0

    def record(self, success: bool):
        self.total += 1
        if success:
            self.success += 1
        else:
            self.fail += 1
        self.uptime = (self.success / self.total) * 100


class Validator:
    def __init__(
        self,
        address: str,
        public_key: str,
        stake: Decimal,
        registered_at: Optional[int] = None
    ):
        self.address = address
        self.public_key = public_key
        self.stake = stake
        self.registered_at = registered_at or int(time.time())
        self.active = True
        self.deactivated_at: Optional[int] = None
        self.performance = ValidatorPerformance()

    def deactivate(self, timestamp: Optional[int] = None):
        """Leave the active set; the record itself is kept"""
        self.active = False
        self.deactivated_at = timestamp or int(time.time())

    def reactivate(self, public_key: str, stake: Decimal, timestamp: Optional[int] = None):
        self.public_key = public_key
        self.stake = stake
        self.active = True
        self.deactivated_at = None
        self.registered_at = timestamp or int(time.time())

    def copy(self) -> 'Validator':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert validator to dictionary"""
        return {
            "address": self.address,
            "public_key": self.public_key,
            "stake": str(self.stake),
            "registered_at": self.registered_at,
            "active": self.active,
            "deactivated_at": self.deactivated_at,
            "performance": {
                "total": self.performance.total,
                "success": self.performance.success,
                "fail": self.performance.fail,
                "uptime": self.performance.uptime
            }
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Validator':
        validator = cls(
            address=data["address"],
            public_key=data["public_key"],
            stake=Decimal(data["stake"]),
            registered_at=data.get("registered_at")
        )
        validator.active = data.get("active", True)
        validator.deactivated_at = data.get("deactivated_at")
        validator.performance = ValidatorPerformance(**data.get("performance", {}))
        return validator
