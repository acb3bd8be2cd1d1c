# File: src/optirollup/config/settings.py

import os
from decimal import Decimal
from typing import Any, Dict, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from web3 import Web3

from ..crypto.hash import Hash
from ..exceptions import ConfigError
from ..utils.config import Config

# Environment variables that override values from the YAML file
ENV_OVERRIDES = {
    "SETTLEMENT_RPC_URL": "settlement.rpc_url",
    "ROLLUP_CONTRACT_ADDRESS": "settlement.rollup_contract_address",
    "BRIDGE_CONTRACT_ADDRESS": "settlement.bridge_contract_address",
    "SEQUENCER_ADDRESS": "rollup.sequencer_address",
}


def _check_address(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if not Web3.is_address(value):
        raise ValueError(f"invalid address: {value!r}")
    return Web3.to_checksum_address(value)


class RollupSettings(BaseModel):
    batch_size: int = Field(Config.BATCH_SIZE, ge=1)
    batch_timeout: float = Field(Config.BATCH_TIMEOUT, ge=0)
    challenge_period: int = Field(Config.CHALLENGE_PERIOD, ge=0)
    tick_interval: float = Field(Config.TICK_INTERVAL, gt=0)
    verify_signatures: bool = Config.VERIFY_SIGNATURES
    genesis_root: str = Config.ZERO_ROOT
    sequencer_address: Optional[str] = None

    @field_validator("genesis_root")
    @classmethod
    def _genesis_root(cls, value: str) -> str:
        if not Hash.is_hash(value):
            raise ValueError("genesis_root must be a 0x-prefixed 32-byte hex string")
        return value.lower()

    @field_validator("sequencer_address")
    @classmethod
    def _sequencer_address(cls, value: Optional[str]) -> Optional[str]:
        return _check_address(value)


class ValidatorSettings(BaseModel):
    minimum_stake: Decimal = Field(Config.MINIMUM_STAKE, ge=0)
    min_challenge_stake: Optional[Decimal] = Field(None, ge=0)


class BridgeSettings(BaseModel):
    min_deposit: Decimal = Field(Config.MIN_DEPOSIT, gt=0)
    max_deposit: Decimal = Field(Config.MAX_DEPOSIT, gt=0)
    withdrawal_delay: int = Field(Config.WITHDRAWAL_DELAY, ge=0)
    event_capacity: int = Field(Config.BRIDGE_EVENT_CAPACITY, ge=1)

    @model_validator(mode="after")
    def _deposit_range(self) -> 'BridgeSettings':
        if self.min_deposit > self.max_deposit:
            raise ValueError("min_deposit must not exceed max_deposit")
        return self


class SettlementSettings(BaseModel):
    backend: Literal["memory", "web3"] = "memory"
    rpc_url: Optional[str] = None
    rollup_contract_address: Optional[str] = None
    bridge_contract_address: Optional[str] = None
    sender_address: Optional[str] = None
    private_key: Optional[str] = None
    attempts: int = Field(Config.SETTLEMENT_ATTEMPTS, ge=1)
    timeout: float = Field(Config.SETTLEMENT_TIMEOUT, gt=0)
    backoff: float = Field(Config.SETTLEMENT_BACKOFF, ge=0)
    max_backoff: float = Field(Config.SETTLEMENT_MAX_BACKOFF, ge=0)
    receipt_timeout: int = Field(Config.RECEIPT_TIMEOUT, gt=0)

    @field_validator("rollup_contract_address", "bridge_contract_address", "sender_address")
    @classmethod
    def _addresses(cls, value: Optional[str]) -> Optional[str]:
        return _check_address(value)

    @model_validator(mode="after")
    def _web3_requirements(self) -> 'SettlementSettings':
        if self.backend == "web3":
            missing = [
                name for name in ("rpc_url", "rollup_contract_address", "bridge_contract_address")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(f"web3 backend requires {', '.join(missing)}")
        return self


class StorageSettings(BaseModel):
    enabled: bool = False
    db_path: str = "data/rollup.db"


class MonitoringSettings(BaseModel):
    metrics_enabled: bool = False
    metrics_port: int = Field(Config.METRICS_PORT, ge=1, le=65535)
    log_dir: str = Config.LOG_DIR
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Config.LOG_LEVEL
    log_max_size: int = Field(10 * 1024 * 1024, gt=0)
    log_backup_count: int = Field(5, ge=0)

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class NodeSettings(BaseModel):
    rollup: RollupSettings = Field(default_factory=RollupSettings)
    validators: ValidatorSettings = Field(default_factory=ValidatorSettings)
    bridge: BridgeSettings = Field(default_factory=BridgeSettings)
    settlement: SettlementSettings = Field(default_factory=SettlementSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)


class NodeConfig:
    """
    YAML-backed node configuration.

    Missing files fall back to defaults. Selected environment variables win
    over the file, and the merged result is validated into ``NodeSettings``.
    """

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        self.config_path = config_path
        self.config = self._load_config()
        self._apply_env(os.environ if environ is None else environ)
        self.settings = self._validate()

    def _load_config(self) -> Dict[str, Any]:
        if not self.config_path or not os.path.exists(self.config_path):
            return {}

        try:
            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config file {self.config_path}: {str(e)}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {self.config_path} must contain a mapping")
        return data

    def _apply_env(self, environ: Mapping[str, str]):
        for variable, key in ENV_OVERRIDES.items():
            value = environ.get(variable)
            if value:
                self._set(key, value)

    def _set(self, key: str, value: Any):
        keys = key.split('.')
        config = self.config
        for k in keys[:-1]:
            config = config.setdefault(k, {})
            if not isinstance(config, dict):
                raise ConfigError(f"Config section {k!r} must be a mapping")
        config[keys[-1]] = value

    def _validate(self) -> NodeSettings:
        try:
            return NodeSettings.model_validate(self.config)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {str(e)}", reason="invalid") from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dotted key, e.g. ``rollup.batch_size``."""
        try:
            value = self.settings.model_dump(mode="json")
            for k in key.split('.'):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def update(self, key: str, value: Any):
        """Update configuration value and persist it when backed by a file."""
        self._set(key, value)
        self.settings = self._validate()
        if self.config_path:
            self.save()

    def save(self, path: Optional[str] = None):
        target = path or self.config_path
        if not target:
            raise ConfigError("No config path to save to")
        directory = os.path.dirname(target)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(target, 'w') as f:
            yaml.safe_dump(self.config, f)

    def effective(self) -> Dict[str, Any]:
        """Validated settings with secrets masked, for display"""
        data = self.settings.model_dump(mode="json")
        if data["settlement"].get("private_key"):
            data["settlement"]["private_key"] = "***"
        return data


def load_settings(config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> NodeSettings:
    return NodeConfig(config_path, environ).settings
