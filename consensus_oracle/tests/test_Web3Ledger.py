"""Unit tests for Web3Ledger."""

import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from web3.exceptions import ContractLogicError

from consensus_oracle.src.errors import CommitError
from consensus_oracle.src.Web3Ledger import DEFAULT_ORACLE_ABI, Web3Ledger

# Well-known development key (Hardhat/Anvil account #0)
DEV_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
DEV_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
CONTRACT_ADDRESS = "0x5fbdb2315678afecb367f032d93f642f64180aa3"


def make_ledger(status: int = 1) -> tuple[Web3Ledger, MagicMock]:
    """Helper to build a ledger on a mocked Web3 instance."""
    w3 = MagicMock()
    w3.eth.gas_price = 1_000_000_000
    w3.eth.send_transaction.return_value = bytes.fromhex("ab" * 32)
    w3.eth.wait_for_transaction_receipt.return_value = {
        "status": status,
        "blockNumber": 42,
        "gasUsed": 30000,
    }
    contract = w3.eth.contract.return_value
    contract.address = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
    contract.functions.updatePrice.return_value.estimate_gas.return_value = 25000
    contract.functions.updatePrice.return_value.build_transaction.side_effect = lambda tx: dict(tx)

    ledger = Web3Ledger(
        rpc_url="http://localhost:8545",
        contract_address=CONTRACT_ADDRESS,
        private_key=DEV_PRIVATE_KEY,
        w3=w3,
    )
    return ledger, w3


class TestWeb3LedgerInit(unittest.TestCase):
    def test_account_and_contract(self):
        """Signing account and checksummed contract address are configured."""
        ledger, w3 = make_ledger()

        assert ledger.account.address == DEV_ADDRESS
        assert w3.eth.default_account == DEV_ADDRESS
        w3.middleware_onion.add.assert_called_once()
        w3.eth.contract.assert_called_once_with(
            address="0x5FbDB2315678afecb367f032d93F642f64180aa3", abi=DEFAULT_ORACLE_ABI
        )

    def test_unknown_method(self):
        """The configured method must exist in the ABI."""
        with pytest.raises(ValueError, match="not found in contract ABI"):
            Web3Ledger(
                rpc_url="http://localhost:8545",
                contract_address=CONTRACT_ADDRESS,
                private_key=DEV_PRIVATE_KEY,
                method="setPrice",
                w3=MagicMock(),
            )

    def test_load_abi(self):
        """ABIs load from artifacts and bare lists."""
        with tempfile.TemporaryDirectory() as tmp:
            artifact = Path(tmp) / "Oracle.json"
            artifact.write_text(json.dumps({"abi": DEFAULT_ORACLE_ABI, "bytecode": "0x"}))
            bare = Path(tmp) / "abi.json"
            bare.write_text(json.dumps(DEFAULT_ORACLE_ABI))
            broken = Path(tmp) / "broken.json"
            broken.write_text(json.dumps({"bytecode": "0x"}))

            assert Web3Ledger.load_abi(artifact) == DEFAULT_ORACLE_ABI
            assert Web3Ledger.load_abi(bare) == DEFAULT_ORACLE_ABI
            with pytest.raises(ValueError):
                Web3Ledger.load_abi(broken)


class TestWeb3LedgerCommit:
    """Test transaction submission."""

    @pytest.mark.asyncio
    async def test_commit(self) -> None:
        """Commit estimates gas, sends and waits for the receipt."""
        ledger, w3 = make_ledger()
        receipt = await ledger.commit(4_109_000_000_000)

        contract = w3.eth.contract.return_value
        contract.functions.updatePrice.assert_called_with(4_109_000_000_000)
        tx = w3.eth.send_transaction.call_args.args[0]
        assert tx["gas"] == 30000
        assert tx["gasPrice"] == 1_000_000_000
        assert tx["from"] == DEV_ADDRESS

        assert receipt.tx_hash == "0x" + "ab" * 32
        assert receipt.block_number == 42
        assert receipt.gas_used == 30000

    @pytest.mark.asyncio
    async def test_reverted(self) -> None:
        """A failed receipt status is a CommitError."""
        ledger, _ = make_ledger(status=0)
        with pytest.raises(CommitError, match="reverted"):
            await ledger.commit(1)

    @pytest.mark.asyncio
    async def test_rpc_error(self) -> None:
        """Web3 errors are wrapped in CommitError."""
        ledger, w3 = make_ledger()
        function = w3.eth.contract.return_value.functions.updatePrice.return_value
        function.estimate_gas.side_effect = ContractLogicError("execution reverted")
        with pytest.raises(CommitError):
            await ledger.commit(1)

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        """Transport failures are wrapped in CommitError."""
        ledger, w3 = make_ledger()
        w3.eth.send_transaction.side_effect = ConnectionError("refused")
        with pytest.raises(CommitError):
            await ledger.commit(1)
