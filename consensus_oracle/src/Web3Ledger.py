"""Web3Ledger: Commits reference prices to an EVM oracle contract."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import Web3Exception
from web3.middleware import SignAndSendRawMiddlewareBuilder

from .errors import CommitError
from .LedgerCommitter import CommitReceipt, LedgerCommitter

logger = logging.getLogger(__name__)

# Minimal ABI of an oracle contract exposing updatePrice(uint256).
DEFAULT_ORACLE_ABI: list[dict[str, Any]] = [
    {
        "inputs": [{"internalType": "uint256", "name": "price", "type": "uint256"}],
        "name": "updatePrice",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    }
]


class Web3Ledger(LedgerCommitter):
    """Ledger commit capability backed by a web3 contract call.

    Transactions are signed locally with the oracle key and submitted through
    the configured JSON-RPC provider. Web3 calls are blocking, so they run in
    a worker thread.

    :cvar GAS_MULTIPLIER: Safety margin applied to the gas estimate.
    :ivar w3: Web3 instance.
    :ivar account: Signing account.
    :ivar contract: Oracle contract instance.
    :ivar method: Contract function receiving the scaled price.
    """

    GAS_MULTIPLIER = 1.2

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        private_key: str,
        abi: list[dict[str, Any]] | None = None,
        method: str = "updatePrice",
        receipt_timeout: float = 120.0,
        w3: Web3 | None = None,
    ) -> None:
        """Initialize the ledger.

        :param rpc_url: JSON-RPC provider URL.
        :param contract_address: Oracle contract address.
        :param private_key: Hex private key of the oracle account.
        :param abi: Contract ABI (default: DEFAULT_ORACLE_ABI).
        :param method: Contract function name (default: "updatePrice").
        :param receipt_timeout: Seconds to wait for the receipt (default: 120).
        :param w3: Optional pre-built Web3 instance.
        :raises ValueError: If the method is not in the ABI.
        """
        abi = abi if abi is not None else DEFAULT_ORACLE_ABI
        if not any(e.get("type") == "function" and e.get("name") == method for e in abi):
            raise ValueError(f"Function '{method}' not found in contract ABI")

        self.rpc_url = rpc_url
        self.method = method
        self.receipt_timeout = receipt_timeout
        self.w3 = w3 if w3 is not None else Web3(Web3.HTTPProvider(rpc_url))

        self.account: LocalAccount = Account.from_key(private_key)
        self.w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(self.account))
        self.w3.eth.default_account = self.account.address

        self.contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=abi
        )

    @staticmethod
    def load_abi(path: str | Path) -> list[dict[str, Any]]:
        """Load a contract ABI from a JSON file.

        Accepts compiler artifacts ({"abi": [...], ...}) and bare ABI lists.

        :param path: Path to the JSON file.
        :returns: ABI list.
        :raises ValueError: If the file holds no ABI.
        """
        with open(path, "r") as file:
            contract_data = json.load(file)

        if isinstance(contract_data, dict):
            contract_data = contract_data.get("abi")
        if not isinstance(contract_data, list):
            raise ValueError(f"No contract ABI found in {path}")
        return contract_data

    def describe(self) -> str:
        """Short description for logging."""
        return f"{self.contract.address}.{self.method} via {self.rpc_url}"

    async def commit(self, scaled_price: int) -> CommitReceipt:
        """Submit the scaled price and wait for the receipt.

        :param scaled_price: Reference price scaled to integer units.
        :returns: Receipt of the mined transaction.
        :raises CommitError: On RPC failure, revert or receipt timeout.
        """
        try:
            return await asyncio.to_thread(self._submit, scaled_price)
        except (Web3Exception, ValueError, OSError) as e:
            raise CommitError(f"Ledger commit failed: {e}") from e

    def _submit(self, scaled_price: int) -> CommitReceipt:
        function = getattr(self.contract.functions, self.method)(scaled_price)

        gas_estimate = function.estimate_gas({"from": self.account.address})
        tx_params = function.build_transaction(
            {
                "from": self.account.address,
                "gas": int(gas_estimate * self.GAS_MULTIPLIER),
                "gasPrice": self.w3.eth.gas_price,
            }
        )

        tx_hash = self.w3.eth.send_transaction(tx_params)
        tx_receipt = self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.receipt_timeout
        )

        tx_hex = Web3.to_hex(tx_hash)
        if tx_receipt["status"] != 1:
            raise CommitError(f"Transaction {tx_hex} reverted")

        logger.info(
            f"Smart contract price updated: tx={tx_hex}, "
            f"block={tx_receipt.get('blockNumber')}, gasUsed={tx_receipt.get('gasUsed')}"
        )
        return CommitReceipt(
            tx_hash=tx_hex,
            block_number=tx_receipt.get("blockNumber"),
            gas_used=tx_receipt.get("gasUsed"),
        )
