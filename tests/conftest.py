from __future__ import annotations

from typing import Any

import pytest

from nano_relay.blocks import BlockBuilder, block_hash
from nano_relay.keys import ZERO_HASH, decode_address, derive_address, verify_signature
from nano_relay.ledger import DEFAULT_REPRESENTATIVE, LedgerClient

# Seed 0000...0000, index 0
ORIGINAL_SECRET = "9F0E444C69F77A49BD0BE89DB92C38FE713E0963165CCA12FAF5712D7657120F"
ORIGINAL_PUBLIC_KEY = "C008B814A7D269A1FA3C6528B19201A24D797912DB9996FF02A1FF356E45552B"
ORIGINAL_ADDRESS = "nano_3i1aq1cchnmbn9x5rsbap8b15akfh7wj7pwskuzi7ahz8oq6cobd99d4r3b7"

OPEN_FRONTIER = "11" * 32


class FakeResponse:
    def __init__(self, payload: Any = None, text: str = ""):
        self._payload = payload
        self.text = text

    def raise_for_status(self) -> None:
        return

    def json(self) -> Any:
        return self._payload


class FakeWorkProvider:
    """Returns a constant nonce and records every root it was asked for."""

    def __init__(self) -> None:
        self.roots: list[str] = []

    def generate_work(self, root: str) -> str:
        self.roots.append(root)
        return "0" * 16


class FakeNode:
    """
    In-memory node speaking the JSON RPC subset the client uses.

    Sends become receivable at their destination immediately unless the
    destination is listed in ``hidden``, in which case neither
    ``receivable`` nor ``blocks_info`` shows them yet.
    """

    def __init__(self) -> None:
        self.accounts: dict[str, dict[str, str]] = {}
        self.pending: dict[str, dict[str, dict[str, str]]] = {}
        self.history: dict[str, list[dict[str, str]]] = {}
        self.hidden: set[str] = set()
        self.blocks: dict[str, dict[str, str]] = {}
        self.processed: list[dict[str, Any]] = []
        self.requests: list[dict[str, Any]] = []
        self.clock = 1_700_000_000

    def fund(self, address: str, balance: int, frontier: str = OPEN_FRONTIER) -> None:
        self.accounts[address] = {
            "frontier": frontier,
            "balance": str(balance),
            "representative": DEFAULT_REPRESENTATIVE,
        }

    def balance(self, address: str) -> int:
        return int(self.accounts.get(address, {}).get("balance", "0"))

    def frontier(self, address: str) -> str:
        return self.accounts.get(address, {}).get("frontier", ZERO_HASH)

    def post(self, url: str, json: dict[str, Any]) -> FakeResponse:
        self.requests.append(json)
        handler = getattr(self, "_" + json["action"])
        return FakeResponse(payload=handler(json))

    def _account_info(self, req: dict[str, Any]) -> dict[str, Any]:
        info = self.accounts.get(req["account"])
        if info is None:
            return {"error": "Account not found"}
        return dict(info)

    def _receivable(self, req: dict[str, Any]) -> dict[str, Any]:
        account = req["account"]
        if account in self.hidden or not self.pending.get(account):
            return {"blocks": ""}
        threshold = int(req.get("threshold", "0"))
        count = int(req.get("count", "10"))
        blocks = [
            (h, dict(entry))
            for h, entry in self.pending[account].items()
            if int(entry["amount"]) >= threshold
        ]
        if req.get("sorting") == "true":
            blocks.sort(key=lambda item: int(item[1]["amount"]), reverse=True)
        return {"blocks": dict(blocks[:count]) or ""}

    def _blocks_info(self, req: dict[str, Any]) -> dict[str, Any]:
        found = {}
        for h in req["hashes"]:
            block = self.blocks.get(h.upper())
            if block is None or block["destination"] in self.hidden:
                return {"error": "Block not found"}
            receivable = h.upper() in self.pending.get(block["destination"], {})
            found[h] = {
                "block_account": block["account"],
                "amount": block["amount"],
                "subtype": block["subtype"],
                "contents": {"link_as_account": block["destination"]},
                "receivable": "1" if receivable else "0",
            }
        return {"blocks": found}

    def _account_history(self, req: dict[str, Any]) -> dict[str, Any]:
        count = int(req.get("count", "50"))
        return {"history": self.history.get(req["account"], [])[:count]}

    def _process(self, req: dict[str, Any]) -> dict[str, Any]:
        block = req["block"]
        account = block["account"]
        balance = int(block["balance"])
        h = block_hash(account, block["previous"], block["representative"], balance, block["link"])

        if not verify_signature(decode_address(account), h, block["signature"]):
            return {"error": "Bad signature"}
        if block["previous"] != self.frontier(account):
            return {"error": "Fork"}

        prior = self.balance(account)
        self.clock += 1

        if req["subtype"] == "send":
            amount = prior - balance
            if amount <= 0:
                return {"error": "Balance mismatch"}
            destination = derive_address(block["link"])
            self.pending.setdefault(destination, {})[h] = {"amount": str(amount), "source": account}
            other = destination
        else:
            entry = self.pending.get(account, {}).get(block["link"])
            if entry is None:
                return {"error": "Unreceivable"}
            amount = int(entry["amount"])
            if balance != prior + amount:
                return {"error": "Balance mismatch"}
            del self.pending[account][block["link"]]
            other = entry["source"]

        self.accounts[account] = {
            "frontier": h,
            "balance": str(balance),
            "representative": block["representative"],
        }
        self.history.setdefault(account, []).insert(
            0,
            {
                "type": req["subtype"],
                "account": other,
                "amount": str(amount),
                "hash": h,
                "local_timestamp": str(self.clock),
                "confirmed": "true",
            },
        )
        self.blocks[h] = {
            "account": account,
            "subtype": req["subtype"],
            "amount": str(amount),
            "destination": other if req["subtype"] == "send" else account,
        }
        self.processed.append({"subtype": req["subtype"], "hash": h, "account": account})
        return {"hash": h}


@pytest.fixture
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture
def ledger(node: FakeNode) -> LedgerClient:
    client = LedgerClient("http://node.test")
    client.client.post = node.post  # type: ignore[assignment]
    return client


@pytest.fixture
def work() -> FakeWorkProvider:
    return FakeWorkProvider()


@pytest.fixture
def builder(work: FakeWorkProvider) -> BlockBuilder:
    return BlockBuilder(work)
