"""
Settlement adapter backed by rollup and bridge contracts on an EVM chain.

Transactions are either signed locally with the sequencer key (eth-account)
or sent from an account the node manages. Idempotency relies on the
contracts' view functions: a batch or withdrawal that already landed is
detected before anything is re-sent.
"""
from typing import Any, Dict, Optional
import logging

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import Web3Exception

from .base import SettlementLayer
from ..crypto.hash import Hash
from ..exceptions import ConfigError, ExternalError
from ..utils.config import Config

logger = logging.getLogger(__name__)

ROLLUP_ABI = [
    {
        "name": "submitBatch", "type": "function", "stateMutability": "nonpayable",
        "inputs": [
            {"name": "batchId", "type": "uint256"},
            {"name": "stateRoot", "type": "bytes32"},
            {"name": "batchData", "type": "bytes"}
        ],
        "outputs": []
    },
    {
        "name": "batchStateRoot", "type": "function", "stateMutability": "view",
        "inputs": [{"name": "batchId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bytes32"}]
    },
    {
        "name": "getStateRoot", "type": "function", "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "bytes32"}]
    }
]

BRIDGE_ABI = [
    {
        "name": "verifyProof", "type": "function", "stateMutability": "view",
        "inputs": [{"name": "proof", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "bool"}]
    },
    {
        "name": "finalizeWithdrawal", "type": "function", "stateMutability": "nonpayable",
        "inputs": [
            {"name": "withdrawalId", "type": "bytes32"},
            {"name": "proof", "type": "bytes32"},
            {"name": "user", "type": "address"},
            {"name": "token", "type": "address"},
            {"name": "amount", "type": "uint256"}
        ],
        "outputs": []
    },
    {
        "name": "withdrawalReleased", "type": "function", "stateMutability": "view",
        "inputs": [{"name": "withdrawalId", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "bool"}]
    }
]

_EMPTY_ROOT = bytes(32)


class Web3SettlementLayer(SettlementLayer):
    def __init__(
        self,
        rpc_url: str,
        rollup_address: str,
        bridge_address: str,
        sender: Optional[str] = None,
        private_key: Optional[str] = None,
        receipt_timeout: int = Config.RECEIPT_TIMEOUT
    ):
        if not rpc_url:
            raise ConfigError("Settlement RPC URL is not configured")
        for label, address in (("rollup", rollup_address), ("bridge", bridge_address)):
            if not Web3.is_address(address):
                raise ConfigError(f"Invalid {label} contract address: {address!r}")

        self.rpc_url = rpc_url
        self.receipt_timeout = receipt_timeout
        self._account = Account.from_key(private_key) if private_key else None
        if self._account is not None:
            self.sender = self._account.address
        elif sender and Web3.is_address(sender):
            self.sender = Web3.to_checksum_address(sender)
        else:
            raise ConfigError("A sequencer address or private key is required")

        self.w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self.rollup = self.w3.eth.contract(address=Web3.to_checksum_address(rollup_address), abi=ROLLUP_ABI)
        self.bridge = self.w3.eth.contract(address=Web3.to_checksum_address(bridge_address), abi=BRIDGE_ABI)
        self._batch_refs: Dict[int, str] = {}
        self._release_refs: Dict[str, str] = {}

    @property
    def name(self) -> str:
        return "Web3 Settlement"

    @staticmethod
    def withdrawal_key(withdrawal_id: str) -> bytes:
        return Web3.keccak(text=withdrawal_id)

    async def _send(self, call: Any, label: str) -> str:
        """Send a contract call and wait for a successful receipt"""
        try:
            if self._account is not None:
                tx = await call.build_transaction({
                    "from": self.sender,
                    "nonce": await self.w3.eth.get_transaction_count(self.sender, "pending")
                })
                signed = self._account.sign_transaction(tx)
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            else:
                tx_hash = await call.transact({"from": self.sender})
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except (Web3Exception, ValueError, OSError) as e:
            raise ExternalError(f"{label} failed: {str(e)}") from e

        if receipt["status"] != 1:
            raise ExternalError(f"{label} reverted in tx {Web3.to_hex(tx_hash)}")
        return Web3.to_hex(tx_hash)

    async def _call(self, call: Any, label: str) -> Any:
        try:
            return await call.call()
        except (Web3Exception, ValueError, OSError) as e:
            raise ExternalError(f"{label} failed: {str(e)}") from e

    async def submit_batch(self, batch_id: int, state_root: str, batch_data: bytes) -> str:
        existing = await self.get_batch_submission(batch_id)
        if existing is not None:
            return existing

        ref = await self._send(
            self.rollup.functions.submitBatch(batch_id, Hash.to_bytes(state_root), batch_data),
            f"submitBatch({batch_id})"
        )
        self._batch_refs[batch_id] = ref
        logger.info(f"Batch {batch_id} submitted to settlement layer: {ref}")
        return ref

    async def get_batch_submission(self, batch_id: int) -> Optional[str]:
        if batch_id in self._batch_refs:
            return self._batch_refs[batch_id]
        root = await self._call(self.rollup.functions.batchStateRoot(batch_id), f"batchStateRoot({batch_id})")
        if bytes(root) == _EMPTY_ROOT:
            return None
        # landed in an earlier process; the original tx hash is not indexed
        return Hash.keccak(b"batch" + Hash.uint256(batch_id) + bytes(root))

    async def get_state_root(self) -> str:
        root = await self._call(self.rollup.functions.getStateRoot(), "getStateRoot()")
        return Web3.to_hex(bytes(root))

    async def verify_proof(self, proof: str) -> bool:
        return bool(await self._call(self.bridge.functions.verifyProof(Hash.to_bytes(proof)), "verifyProof()"))

    async def release_withdrawal(
        self,
        withdrawal_id: str,
        proof: str,
        user: str,
        token: str,
        amount_wei: int
    ) -> str:
        existing = await self.get_withdrawal_release(withdrawal_id)
        if existing is not None:
            return existing

        ref = await self._send(
            self.bridge.functions.finalizeWithdrawal(
                self.withdrawal_key(withdrawal_id),
                Hash.to_bytes(proof),
                Web3.to_checksum_address(user),
                Web3.to_checksum_address(token),
                amount_wei
            ),
            f"finalizeWithdrawal({withdrawal_id})"
        )
        self._release_refs[withdrawal_id] = ref
        logger.info(f"Withdrawal {withdrawal_id} released on settlement layer: {ref}")
        return ref

    async def get_withdrawal_release(self, withdrawal_id: str) -> Optional[str]:
        if withdrawal_id in self._release_refs:
            return self._release_refs[withdrawal_id]
        released = await self._call(
            self.bridge.functions.withdrawalReleased(self.withdrawal_key(withdrawal_id)),
            f"withdrawalReleased({withdrawal_id})"
        )
        if not released:
            return None
        return Hash.keccak(b"release" + withdrawal_id.encode())
