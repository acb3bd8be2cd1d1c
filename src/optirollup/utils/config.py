# src/optirollup/utils/config.py
from decimal import Decimal


class Config:
    # Rollup configuration
    BATCH_SIZE = 100  # transactions per batch
    BATCH_TIMEOUT = 10  # seconds a queued transaction may wait for a batch
    CHALLENGE_PERIOD = 7 * 24 * 60 * 60  # 7 days in seconds
    TICK_INTERVAL = 1.0  # seconds between batch timer checks
    VERIFY_SIGNATURES = False

    # Validator configuration
    MINIMUM_STAKE = Decimal('1')
    PUBLIC_KEY_HEX_LENGTH = 130  # 0x + 64-byte uncompressed secp256k1 point

    # Bridge configuration
    MIN_DEPOSIT = Decimal('0.001')
    MAX_DEPOSIT = Decimal('1000')
    WITHDRAWAL_DELAY = 7 * 24 * 60 * 60  # 7 days in seconds
    BRIDGE_EVENT_CAPACITY = 1000
    ZERO_ADDRESS = "0x" + "00" * 20

    # Transaction configuration
    SIGNATURE_HEX_LENGTH = 132  # 0x + r(32) + s(32) + v(1)
    PROOF_HEX_LENGTH = 66  # 0x + 32 bytes

    # Settlement configuration
    SETTLEMENT_ATTEMPTS = 3
    SETTLEMENT_TIMEOUT = 10.0  # seconds per call
    SETTLEMENT_BACKOFF = 0.5  # initial backoff in seconds
    SETTLEMENT_MAX_BACKOFF = 8.0
    RECEIPT_TIMEOUT = 120  # seconds to wait for a settlement receipt

    # Genesis state root used until the settlement layer reports one
    ZERO_ROOT = "0x" + "00" * 32

    # Monitoring configuration
    METRICS_PORT = 9090
    LOG_DIR = "logs"
    LOG_LEVEL = "INFO"
