from .settings import (
    BridgeSettings,
    MonitoringSettings,
    NodeConfig,
    NodeSettings,
    RollupSettings,
    SettlementSettings,
    StorageSettings,
    ValidatorSettings,
    load_settings,
)

__all__ = [
    'BridgeSettings',
    'MonitoringSettings',
    'NodeConfig',
    'NodeSettings',
    'RollupSettings',
    'SettlementSettings',
    'StorageSettings',
    'ValidatorSettings',
    'load_settings',
]
