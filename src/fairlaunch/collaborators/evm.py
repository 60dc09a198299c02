"""EVM custody adapter — native-currency transfers through web3.

Implements the FundCustody contract on an Ethereum-compatible chain:
each logical account id maps to an address, and accounts the engine
sends from (campaign custody, the protocol treasury) map to a signing
key. A transfer is a plain value transaction, signed locally with
eth-account and confirmed by receipt before transfer() returns.

Amounts are in wei, so a campaign configured with base_unit = 10**18
counts whole coins exactly as the chain does.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

import structlog

from fairlaunch.errors import TransferError

logger = structlog.get_logger(__name__)

_VALUE_TRANSFER_GAS = 21_000


class EvmCustody:
    """FundCustody over a web3 HTTP endpoint.

    Usage:
        custody = EvmCustody(
            rpc_url="https://sepolia.example/rpc",
            addresses={"custody:c1": "0xabc...", "alice": "0xdef..."},
            signing_keys={"custody:c1": "0x<private key>"},
            chain_id=11155111,
        )
        custody.transfer("custody:c1", "alice", 10**18)
    """

    def __init__(
        self,
        addresses: Mapping[str, str],
        signing_keys: Mapping[str, str],
        chain_id: int,
        rpc_url: Optional[str] = None,
        w3: Any = None,
        gas_price_gwei: str = "2",
        receipt_timeout: int = 120,
    ) -> None:
        from web3 import HTTPProvider, Web3

        if w3 is None:
            if not rpc_url:
                raise ValueError("rpc_url is required when no web3 client is supplied")
            w3 = Web3(HTTPProvider(rpc_url, request_kwargs={"timeout": 10}))
        self._w3 = w3
        self._addresses = {k: Web3.to_checksum_address(v) for k, v in addresses.items()}
        self._signing_keys = dict(signing_keys)
        self._chain_id = chain_id
        self._gas_price = Web3.to_wei(gas_price_gwei, "gwei")
        self._receipt_timeout = receipt_timeout

    def _address(self, account_id: str) -> str:
        address = self._addresses.get(account_id)
        if address is None:
            raise TransferError(f"No address configured for {account_id}")
        return address

    def transfer(self, from_id: str, to_id: str, amount: int) -> None:
        from eth_account import Account

        if amount <= 0:
            raise TransferError(f"Transfer amount must be positive, got {amount}")
        key = self._signing_keys.get(from_id)
        if key is None:
            raise TransferError(f"No signing key held for {from_id}")
        acct = Account.from_key(key)
        if acct.address != self._address(from_id):
            raise TransferError(f"Signing key does not control {from_id}")

        try:
            nonce = self._w3.eth.get_transaction_count(acct.address, "pending")
            tx = {
                "to": self._address(to_id),
                "value": int(amount),
                "gas": _VALUE_TRANSFER_GAS,
                "gasPrice": self._gas_price,
                "nonce": nonce,
                "chainId": self._chain_id,
            }
            signed = acct.sign_transaction(tx)
            tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout
            )
        except TransferError:
            raise
        except Exception as e:
            logger.warning("evm.transfer_failed", from_id=from_id, to_id=to_id, error=str(e))
            raise TransferError(f"Transfer {from_id} → {to_id} failed: {e}") from e

        if receipt["status"] != 1:
            raise TransferError(f"Transfer {from_id} → {to_id} reverted: {tx_hash.hex()}")
        logger.info(
            "evm.transfer_confirmed",
            from_id=from_id,
            to_id=to_id,
            amount=amount,
            tx_hash=tx_hash.hex(),
            block=receipt["blockNumber"],
        )

    def balance_of(self, account_id: str) -> int:
        try:
            return int(self._w3.eth.get_balance(self._address(account_id)))
        except TransferError:
            raise
        except Exception as e:
            raise TransferError(f"Balance lookup for {account_id} failed: {e}") from e
