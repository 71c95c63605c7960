"""Sui JSON-RPC adapters for chain reads, dry-run simulation, gas sampling and submission."""

from __future__ import annotations

import itertools
import logging
import time
from typing import Any, Awaitable, Callable

import config
from chain.interfaces import (
    ContractFlags,
    Dex,
    GasSnapshot,
    PoolState,
    SimulationResult,
    TokenActivity,
    TransactionRecord,
    TransactionRequest,
    TransactionSigner,
    WalletHistory,
)
from trading.errors import DataUnavailable
from trading.models import PoolCandidate
from utils.addressing import coin_parts, is_native_coin, normalize_coin_type
from utils.http_client import ResilientHttpClient

logger = logging.getLogger(__name__)

RPC_SOURCE = "sui_rpc"

# Transfers above this raw amount are counted as suspicious.
SUSPICIOUS_TRANSFER_RAW = 1_000_000_000

OWNERSHIP_CAP_STRUCTS = frozenset({"TreasuryCap", "AdminCap", "OwnerCap"})

POOL_CREATION_EVENTS: dict[Dex, tuple[str, str]] = {
    Dex.CETUS: (
        "0x1eabed72c53feb3805120a081dc15963c204dc8d091542592abaf7a35689b2fb::factory::CreatePoolEvent",
        "0x1eabed72c53feb3805120a081dc15963c204dc8d091542592abaf7a35689b2fb::pool::AddLiquidityEvent",
    ),
    Dex.BLUEMOVE: (
        "0xb24b6789e088b876afabca733bed2299fbc9e2d6369be4d1acfa17d8145454d9::swap::Created_Pool_Event",
        "0xb24b6789e088b876afabca733bed2299fbc9e2d6369be4d1acfa17d8145454d9::swap::Add_Liquidity_Pool",
    ),
}

_RESERVE_KEYS = (("coin_a", "coin_b"), ("reserve_a", "reserve_b"), ("reserve_x", "reserve_y"))


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _balance_value(raw: Any) -> float:
    if isinstance(raw, dict):
        raw = (raw.get("fields") or {}).get("value", raw.get("value"))
    try:
        return float(raw or 0)
    except (TypeError, ValueError):
        return 0.0


def type_arguments(type_str: str) -> list[str]:
    """Split the top-level generic arguments of a Move type, e.g. `Pool<A, B<C>>` -> [A, B<C>]."""
    text = str(type_str or "")
    start = text.find("<")
    if start < 0 or not text.endswith(">"):
        return []
    body = text[start + 1 : -1]
    out: list[str] = []
    depth = 0
    current = ""
    for ch in body:
        if ch == "<":
            depth += 1
        elif ch == ">":
            depth -= 1
        if ch == "," and depth == 0:
            out.append(current.strip())
            current = ""
            continue
        current += ch
    if current.strip():
        out.append(current.strip())
    return out


def _struct_names(param: Any) -> set[str]:
    names: set[str] = set()
    if isinstance(param, dict):
        struct = param.get("Struct")
        if isinstance(struct, dict) and struct.get("name"):
            names.add(str(struct["name"]))
        for value in param.values():
            names |= _struct_names(value)
    elif isinstance(param, list):
        for value in param:
            names |= _struct_names(value)
    return names


def _native_units(raw: float) -> float:
    return float(raw) / (10 ** int(getattr(config, "NATIVE_DECIMALS", 9)))


def extract_pool_candidate(tx: dict[str, Any], dex: Dex | str = Dex.CETUS) -> PoolCandidate | None:
    """Decode a pool-creation transaction block into a PoolCandidate.

    Returns None when the block carries no creation/add-liquidity pair for
    `dex`, or when a BlueMove pool was created with LP already minted.
    """
    kind = Dex.parse(dex)
    if kind is None:
        return None
    create_type, add_type = POOL_CREATION_EVENTS[kind]
    events = tx.get("events") or []
    create = next((e for e in events if e.get("type") == create_type), None)
    add = next((e for e in events if e.get("type") == add_type), None)
    if create is None or add is None:
        return None
    created = create.get("parsedJson") or {}
    added = add.get("parsedJson") or {}

    if kind is Dex.CETUS:
        creator = None
        for change in tx.get("balanceChanges") or []:
            if is_native_coin(change.get("coinType")) and _to_int(change.get("amount")) < 0:
                creator = (change.get("owner") or {}).get("AddressOwner")
                break
        coin_a = normalize_coin_type(created.get("coin_type_a"))
        coin_b = normalize_coin_type(created.get("coin_type_b"))
        amount_a = float(added.get("amount_a") or 0)
        amount_b = float(added.get("amount_b") or 0)
        liquidity = float(added.get("after_liquidity") or 0)
    else:
        if float(created.get("lsp_balance") or 0) > 0:
            return None
        creator = created.get("creator")
        coin_a = normalize_coin_type(created.get("token_x_name"))
        coin_b = normalize_coin_type(created.get("token_y_name"))
        amount_a = float(added.get("token_x_amount_in") or 0)
        amount_b = float(added.get("token_y_amount_in") or 0)
        liquidity = float(added.get("lsp_balance") or 0)

    return PoolCandidate(
        pool_id=str(created.get("pool_id") or ""),
        coin_a=coin_a,
        coin_b=coin_b,
        amount_a=amount_a,
        amount_b=amount_b,
        liquidity=liquidity,
        dex=kind,
        creator=creator,
    )


class SuiRpcClient:
    """ChainQuery and NetworkConditions over a Sui fullnode's JSON-RPC."""

    def __init__(
        self,
        http: ResilientHttpClient,
        url: str | None = None,
        *,
        history_limit: int | None = None,
        gas_sample_size: int | None = None,
    ) -> None:
        self._http = http
        self.url = url or str(getattr(config, "SUI_RPC_URL", ""))
        self._history_limit = int(history_limit or getattr(config, "RPC_WALLET_HISTORY_LIMIT", 50))
        self._gas_sample_size = int(gas_sample_size or getattr(config, "RPC_GAS_SAMPLE_SIZE", 30))
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        result = await self._http.post_json(self.url, payload, source=RPC_SOURCE)
        if not result.ok:
            raise DataUnavailable(f"{method} failed: {result.error}", source=RPC_SOURCE)
        data = result.data if isinstance(result.data, dict) else {}
        if data.get("error"):
            err = data["error"]
            message = err.get("message") if isinstance(err, dict) else str(err)
            raise DataUnavailable(f"{method} error: {message}", source=RPC_SOURCE)
        return data.get("result")

    async def _object(self, object_id: str, **options: bool) -> dict[str, Any]:
        result = await self._call("sui_getObject", [object_id, options])
        data = (result or {}).get("data")
        if not data:
            raise DataUnavailable(f"object {object_id} not found", source=RPC_SOURCE)
        return data

    async def _tx_block(self, digest: str, **options: bool) -> dict[str, Any]:
        return await self._call("sui_getTransactionBlock", [digest, options]) or {}

    async def _query_tx_blocks(self, tx_filter: dict[str, Any] | None, limit: int, **options: bool) -> list[dict[str, Any]]:
        query: dict[str, Any] = {"options": options}
        if tx_filter:
            query["filter"] = tx_filter
        page = await self._call("suix_queryTransactionBlocks", [query, None, int(limit), True])
        return list((page or {}).get("data") or [])

    async def _sender_of(self, digest: str | None) -> str | None:
        if not digest:
            return None
        block = await self._tx_block(digest, showInput=True)
        return ((block.get("transaction") or {}).get("data") or {}).get("sender")

    async def get_pool(self, pool_id: str) -> PoolState:
        data = await self._object(pool_id, showContent=True, showOwner=True, showType=True, showPreviousTransaction=True)
        content = data.get("content") or {}
        args = type_arguments(content.get("type") or data.get("type") or "")
        if len(args) < 2:
            raise DataUnavailable(f"pool {pool_id} has no coin pair in its type", source=RPC_SOURCE)
        coin_a, coin_b = normalize_coin_type(args[0]), normalize_coin_type(args[1])
        fields = content.get("fields") or {}
        reserve_a = reserve_b = 0.0
        for key_a, key_b in _RESERVE_KEYS:
            if key_a in fields and key_b in fields:
                reserve_a, reserve_b = _balance_value(fields[key_a]), _balance_value(fields[key_b])
                break

        native_is_a = is_native_coin(coin_a)
        if native_is_a:
            reserve_a = _native_units(reserve_a)
        elif is_native_coin(coin_b):
            reserve_b = _native_units(reserve_b)

        lp_locked = data.get("owner") == "Immutable"
        lock_duration = 0
        if lp_locked:
            lock_duration = await self._lock_duration(coin_parts(content.get("type"))[0])

        return PoolState(
            pool_id=pool_id,
            coin_a=coin_a,
            coin_b=coin_b,
            reserve_a=reserve_a,
            reserve_b=reserve_b,
            native_is_a=native_is_a,
            lp_locked=lp_locked,
            lock_duration=lock_duration,
            creator=await self._sender_of(data.get("previousTransaction")),
        )

    async def _lock_duration(self, package: str) -> int:
        page = await self._call(
            "suix_queryEvents", [{"MoveEventType": f"{package}::lock::LockEvent"}, None, 1, True]
        )
        events = (page or {}).get("data") or []
        if not events:
            return 0
        return _to_int((events[0].get("parsedJson") or {}).get("duration"))

    async def _package_modules(self, coin_type: str) -> dict[str, Any]:
        package = coin_parts(coin_type)[0]
        return await self._call("sui_getNormalizedMoveModulesByPackage", [package]) or {}

    async def get_module_functions(self, coin_type: str) -> list[str]:
        package = coin_parts(coin_type)[0]
        modules = await self._package_modules(coin_type)
        return [
            f"{package}::{module_name}::{fn_name}"
            for module_name, module in modules.items()
            for fn_name in (module.get("exposedFunctions") or {})
        ]

    async def get_contract_flags(self, coin_type: str) -> ContractFlags:
        modules = await self._package_modules(coin_type)
        names: list[str] = []
        has_ownership = False
        for module_name, module in modules.items():
            for fn_name, fn in (module.get("exposedFunctions") or {}).items():
                names.append(f"{module_name}::{fn_name}")
                if _struct_names(fn.get("parameters") or []) & OWNERSHIP_CAP_STRUCTS:
                    has_ownership = True
        has_mint = any("mint" in name.split("::")[-1].lower() for name in names)
        return ContractFlags(has_ownership=has_ownership, has_mint_function=has_mint, exposed_functions=names)

    async def _package_age_seconds(self, coin_type: str) -> float:
        package = coin_parts(coin_type)[0]
        data = await self._object(package, showPreviousTransaction=True)
        digest = data.get("previousTransaction")
        if not digest:
            return 0.0
        block = await self._tx_block(digest)
        ts_ms = _to_int(block.get("timestampMs"))
        return max(0.0, time.time() - ts_ms / 1000.0) if ts_ms else 0.0

    async def get_token_activity(self, pool_id: str, coin_type: str) -> TokenActivity:
        coin = normalize_coin_type(coin_type).lower()
        txs = await self._query_tx_blocks(
            {"InputObject": pool_id}, self._history_limit, showEffects=True, showBalanceChanges=True
        )
        holders: set[str] = set()
        transfers = 0
        suspicious = 0
        for tx in txs:
            status = (((tx.get("effects") or {}).get("status")) or {}).get("status")
            if status != "success":
                continue
            transfers += 1
            flagged = False
            for change in tx.get("balanceChanges") or []:
                if normalize_coin_type(change.get("coinType")).lower() != coin:
                    continue
                amount = _to_int(change.get("amount"))
                owner = (change.get("owner") or {}).get("AddressOwner")
                if owner and amount > 0:
                    holders.add(owner)
                if abs(amount) > SUSPICIOUS_TRANSFER_RAW:
                    flagged = True
            suspicious += int(flagged)

        return TokenActivity(
            age_seconds=await self._package_age_seconds(coin_type),
            holders=len(holders),
            transfers=transfers,
            suspicious_transfers=suspicious,
        )

    async def get_wallet_history(self, address: str) -> WalletHistory:
        txs = await self._query_tx_blocks(
            {"FromAddress": address}, self._history_limit, showEffects=True, showEvents=True
        )
        now = time.time()
        oldest_ms = min((_to_int(tx.get("timestampMs")) for tx in txs if tx.get("timestampMs")), default=0)
        rug_pulls = 0
        pool_ages: list[float] = []
        for tx in txs:
            status = ((tx.get("effects") or {}).get("status")) or {}
            if status.get("status") == "failure" and "insufficient_funds" in str(status.get("error") or "").lower():
                rug_pulls += 1
            event_types = [str(e.get("type") or "") for e in tx.get("events") or []]
            if any(t.endswith("::CreatePoolEvent") or t.endswith("::Created_Pool_Event") for t in event_types):
                ts_ms = _to_int(tx.get("timestampMs"))
                if ts_ms:
                    pool_ages.append(max(0.0, now - ts_ms / 1000.0))

        return WalletHistory(
            account_age_seconds=max(0.0, now - oldest_ms / 1000.0) if oldest_ms else 0.0,
            tx_count=len(txs),
            previous_scams=rug_pulls,
            rug_pulls=rug_pulls,
            total_pools=len(pool_ages),
            average_pool_lifetime=(sum(pool_ages) / len(pool_ages)) if pool_ages else 0.0,
        )

    async def get_transaction(self, tx_id: str) -> TransactionRecord | None:
        try:
            block = await self._tx_block(
                tx_id, showEffects=True, showBalanceChanges=True, showEvents=True, showInput=True
            )
        except DataUnavailable as exc:
            if "could not find" in exc.message.lower():
                return None
            raise
        if not block:
            return None

        effects = block.get("effects") or {}
        gas_used = effects.get("gasUsed") or {}
        gas_raw = (
            _to_int(gas_used.get("computationCost"))
            + _to_int(gas_used.get("storageCost"))
            - _to_int(gas_used.get("storageRebate"))
        )
        sender = ((block.get("transaction") or {}).get("data") or {}).get("sender")

        native_raw = 0
        coin_type: str | None = None
        token_delta = 0.0
        for change in block.get("balanceChanges") or []:
            if (change.get("owner") or {}).get("AddressOwner") != sender:
                continue
            if is_native_coin(change.get("coinType")):
                native_raw += _to_int(change.get("amount"))
            elif coin_type is None:
                coin_type = normalize_coin_type(change.get("coinType"))
                token_delta = float(_to_int(change.get("amount")))

        pool_id = None
        for event in block.get("events") or []:
            parsed = event.get("parsedJson") or {}
            pool_id = parsed.get("pool") or parsed.get("pool_id")
            if pool_id:
                break

        # Sender's native balance change includes gas; report the swap leg alone.
        return TransactionRecord(
            tx_id=tx_id,
            status=str((effects.get("status") or {}).get("status") or "unknown"),
            pool_id=pool_id,
            coin_type=coin_type,
            native_delta=_native_units(native_raw + gas_raw),
            token_delta=token_delta,
            gas_fee=_native_units(gas_raw),
            checkpoint=_to_int(block.get("checkpoint")) or None,
        )

    async def get_gas_snapshot(self) -> GasSnapshot:
        reference = _to_int(await self._call("suix_getReferenceGasPrice", []))
        txs = await self._query_tx_blocks(None, self._gas_sample_size, showInput=True)
        samples = [
            _to_int(((((tx.get("transaction") or {}).get("data") or {}).get("gasData")) or {}).get("price"))
            for tx in txs
        ]
        samples = [s for s in samples if s > 0]
        snapshot = GasSnapshot(reference_price=reference, samples=samples)
        if reference > 0 and samples:
            snapshot.congestion = min(1.0, max(0.0, snapshot.mean / reference - 1.0))
        return snapshot

    async def dry_run(self, tx_bytes: str) -> dict[str, Any]:
        return await self._call("sui_dryRunTransactionBlock", [tx_bytes]) or {}

    async def execute(self, tx_bytes: str, signatures: list[str]) -> dict[str, Any]:
        return (
            await self._call(
                "sui_executeTransactionBlock",
                [tx_bytes, signatures, {"showEffects": True}, "WaitForLocalExecution"],
            )
            or {}
        )


SellTxBuilder = Callable[[str, int], Awaitable[tuple[str, int]]]


class SuiDryRunSimulator:
    """TransactionSimulator that dry-runs a sell built by a DEX-specific callable.

    `build_sell` returns the base64 transaction bytes and the quoted native out.
    """

    def __init__(self, rpc: SuiRpcClient, build_sell: SellTxBuilder) -> None:
        self._rpc = rpc
        self._build_sell = build_sell

    async def simulate_sell(self, coin_type: str, amount: int) -> SimulationResult:
        tx_bytes, expected_out = await self._build_sell(coin_type, amount)
        result = await self._rpc.dry_run(tx_bytes)
        status = ((result.get("effects") or {}).get("status")) or {}

        called: list[str] = []
        transaction = ((result.get("input") or {}).get("transaction")) or {}
        for command in transaction.get("transactions") or []:
            call = command.get("MoveCall") if isinstance(command, dict) else None
            if call:
                called.append(f"{call.get('package')}::{call.get('module')}::{call.get('function')}")

        amount_out = sum(
            _to_int(change.get("amount"))
            for change in result.get("balanceChanges") or []
            if is_native_coin(change.get("coinType")) and _to_int(change.get("amount")) > 0
        )
        return SimulationResult(
            success=status.get("status") == "success",
            error=str(status.get("error") or ""),
            called_functions=called,
            amount_in=int(amount),
            expected_out=int(expected_out),
            amount_out=int(amount_out),
        )


class SuiTransactionSubmitter:
    """TransactionSubmitter that signs externally and executes through the fullnode."""

    def __init__(self, rpc: SuiRpcClient, signer: TransactionSigner) -> None:
        self._rpc = rpc
        self._signer = signer

    async def submit(self, tx: TransactionRequest) -> str:
        signed = await self._signer.sign(tx)
        result = await self._rpc.execute(signed.tx_bytes, signed.signatures)
        digest = str(result.get("digest") or "")
        status = (((result.get("effects") or {}).get("status")) or {})
        if not digest:
            raise RuntimeError("execute_missing_digest")
        if status.get("status") != "success":
            raise RuntimeError(f"tx_failed digest={digest} error={status.get('error', '')}")
        logger.info("SUI_SUBMIT_OK digest=%s pool=%s side=%s gas_price=%s", digest, tx.pool_id, tx.side, tx.gas_price)
        return digest

    async def get_status(self, tx_id: str) -> str:
        record = await self._rpc.get_transaction(tx_id)
        return record.status if record is not None else "unknown"
