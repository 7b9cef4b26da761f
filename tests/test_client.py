"""
Tests for qcc_core.client: async chain / staking clients.

A small aiohttp application stands in for the chain backend so that the
full sign -> POST -> interpret path runs over real HTTP.
"""

from __future__ import annotations

import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer, unused_port

from qcc_core.client import BroadcastResult, QCCClient, StakingClient, extract_tx_hash
from qcc_core.config import QCCConfig
from qcc_core.errors import BroadcastError, ChainAPIError, InvalidKeyError
from qcc_core.staking import DEFAULT_STAKING_WALLET_ADDRESS, get_staking_wallet_address, stake
from qcc_core.transaction import verify_signed_data
from qcc_core.wallet import Wallet

SERVER_TS = 1_718_000_000_000_000
RFC_SECRET = "9d61b19deffd5a60ba844af492ec2cc44449c5697b326919703bac031cae7f60"
STAKING_ADDRESS = "5a" * 22


class _FakeBackend:
    """Records requests and answers with canned responses."""

    def __init__(self, broadcast_body=None, broadcast_status=200,
                 ts_body=SERVER_TS, balance_body="1500000000000000000",
                 rates_body=None, config_body=None, config_status=200,
                 staking_status=200):
        self.broadcast_body = broadcast_body if broadcast_body is not None else {
            "output": "ok", "txhash": "deadbeef",
        }
        self.broadcast_status = broadcast_status
        self.ts_body = ts_body
        self.balance_body = balance_body
        self.rates_body = rates_body
        self.config_body = config_body if config_body is not None else {
            "data": {"stakingWalletAddress": STAKING_ADDRESS},
        }
        self.config_status = config_status
        self.staking_status = staking_status
        self.stakes: list[dict] = []
        self.cancelled: list[int] = []
        self.broadcasts: list[str] = []
        self.raw_requests: list[dict] = []
        self.ts_calls = 0

    async def ts(self, request):
        self.ts_calls += 1
        return web.json_response(self.ts_body)

    async def broadcast(self, request):
        self.broadcasts.append(await request.text())
        return web.json_response(self.broadcast_body, status=self.broadcast_status)

    async def rawrequest(self, request):
        self.raw_requests.append(await request.json())
        return web.json_response(self.balance_body)

    async def rates(self, request):
        return web.json_response(self.rates_body)

    async def config(self, request):
        return web.json_response(self.config_body, status=self.config_status)

    async def create_staking(self, request):
        if self.staking_status >= 400:
            return web.json_response({"message": "amount too small"}, status=self.staking_status)
        record = await request.json()
        self.stakes.append(record)
        data = dict(record, id=len(self.stakes), status="active")
        return web.json_response({"success": True, "data": data, "message": "created"})

    async def stakings_by_wallet(self, request):
        addr = request.match_info["address"]
        data = [dict(s, id=i + 1) for i, s in enumerate(self.stakes) if s["walletAddress"] == addr]
        return web.json_response({"success": True, "data": data})

    async def staking_by_id(self, request):
        sid = int(request.match_info["id"])
        if not 0 < sid <= len(self.stakes):
            return web.json_response({"success": False, "message": "not found"}, status=404)
        return web.json_response({"success": True, "data": dict(self.stakes[sid - 1], id=sid)})

    async def cancel_staking(self, request):
        self.cancelled.append(int(request.match_info["id"]))
        return web.json_response({"success": True, "message": "cancelled"})

    async def stats(self, request):
        return web.json_response({"success": True, "data": {
            "totalStaked": sum(s["stakedAmount"] for s in self.stakes),
            "activeStakings": len(self.stakes) - len(self.cancelled),
        }})

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/ts", self.ts)
        app.router.add_post("/broadcast/", self.broadcast)
        app.router.add_post("/rawrequest/", self.rawrequest)
        app.router.add_get("/staking/rates", self.rates)
        app.router.add_get("/staking/stats", self.stats)
        app.router.add_get("/api/config", self.config)
        app.router.add_post("/staking", self.create_staking)
        app.router.add_get("/staking/wallet/{address}", self.stakings_by_wallet)
        app.router.add_get(r"/staking/{id:\d+}", self.staking_by_id)
        app.router.add_put(r"/staking/{id:\d+}/cancel", self.cancel_staking)
        return app


def _base_url(server: TestServer) -> str:
    return str(server.make_url(""))


# ═══════════════════════════════════════════════════════════════════
#  Response helpers
# ═══════════════════════════════════════════════════════════════════


class TestExtractTxHash:

    @pytest.mark.parametrize("body, expected", [
        ({"txhash": "a"}, "a"),
        ({"txHash": "b"}, "b"),
        ({"txid": "c"}, "c"),
        ({"hash": "d"}, "d"),
        ({"data": {"txid": "e"}}, "e"),
        ({"output": "ok"}, None),
        ("plain text", None),
        (None, None),
    ])
    def test_fields(self, body, expected):
        assert extract_tx_hash(body) == expected

    def test_first_field_wins(self):
        assert extract_tx_hash({"hash": "h", "txhash": "t"}) == "t"

    def test_nested_txid_before_hash(self):
        assert extract_tx_hash({"hash": "h", "data": {"txid": "n"}}) == "n"


# ═══════════════════════════════════════════════════════════════════
#  Chain client
# ═══════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
class TestQCCClient:

    async def test_fetch_timestamp(self):
        backend = _FakeBackend()
        async with TestServer(backend.app()) as server:
            async with QCCClient(_base_url(server)) as client:
                assert await client.fetch_timestamp() == SERVER_TS

    async def test_bad_timestamp_response(self):
        backend = _FakeBackend(ts_body={"error": "nope"})
        async with TestServer(backend.app()) as server:
            async with QCCClient(_base_url(server)) as client:
                with pytest.raises(ChainAPIError):
                    await client.fetch_timestamp()

    async def test_send_signs_with_server_timestamp(self, recipient):
        backend = _FakeBackend()
        async with TestServer(backend.app()) as server:
            async with QCCClient(_base_url(server)) as client:
                result = await client.send(RFC_SECRET, recipient, "1.5")

        assert isinstance(result, BroadcastResult)
        assert not hasattr(result, "success")
        assert result.tx_hash == "deadbeef"
        assert result.output == "ok"
        assert backend.ts_calls == 1
        body = json.loads(backend.broadcasts[0])
        tx = body["transaction"]
        assert tx["type"] == "Send"
        assert tx["amount"] == "1500000000000000000"
        assert tx["timestamp"] == SERVER_TS
        assert tx["from"] == Wallet.from_private_key(RFC_SECRET).address
        assert verify_signed_data(body)

    async def test_send_with_explicit_timestamp(self, recipient):
        backend = _FakeBackend()
        async with TestServer(backend.app()) as server:
            async with QCCClient(_base_url(server)) as client:
                await client.send(RFC_SECRET, recipient, "2", timestamp=42)
        assert backend.ts_calls == 0
        assert json.loads(backend.broadcasts[0])["transaction"]["timestamp"] == 42

    async def test_transfer_token(self, recipient):
        backend = _FakeBackend(broadcast_body={"output": "ok", "data": {"txid": "abc"}})
        async with TestServer(backend.app()) as server:
            async with QCCClient(_base_url(server)) as client:
                result = await client.transfer_token(RFC_SECRET, recipient, "3", "tok")
        assert result.tx_hash == "abc"
        tx = json.loads(backend.broadcasts[0])["transaction"]
        assert tx["type"] == "Transfer"
        assert tx["token_address"] == "tok"
        assert tx["amount"] == "3000000000000000000"

    async def test_error_output_raises(self, recipient):
        backend = _FakeBackend(broadcast_body={"output": "error: insufficient balance"})
        async with TestServer(backend.app()) as server:
            async with QCCClient(_base_url(server)) as client:
                with pytest.raises(BroadcastError) as exc_info:
                    await client.send(RFC_SECRET, recipient, "1", timestamp=SERVER_TS)
        assert "insufficient balance" in exc_info.value.output

    async def test_http_error_raises(self, recipient):
        backend = _FakeBackend(broadcast_body={"output": "down"}, broadcast_status=500)
        async with TestServer(backend.app()) as server:
            async with QCCClient(_base_url(server)) as client:
                with pytest.raises(BroadcastError) as exc_info:
                    await client.send(RFC_SECRET, recipient, "1", timestamp=SERVER_TS)
        assert exc_info.value.status == 500

    async def test_plain_text_output(self, recipient):
        backend = _FakeBackend(broadcast_body="accepted")
        async with TestServer(backend.app()) as server:
            async with QCCClient(_base_url(server)) as client:
                result = await client.send(RFC_SECRET, recipient, "1", timestamp=SERVER_TS)
        assert result.output == "accepted"
        assert result.tx_hash is None

    async def test_invalid_key_never_broadcasts(self, recipient):
        backend = _FakeBackend()
        async with TestServer(backend.app()) as server:
            async with QCCClient(_base_url(server)) as client:
                with pytest.raises(InvalidKeyError):
                    await client.send("abc", recipient, "1", timestamp=SERVER_TS)
        assert backend.broadcasts == []

    async def test_legacy_sentinel_never_broadcasts(self, recipient):
        backend = _FakeBackend()
        async with TestServer(backend.app()) as server:
            async with QCCClient(_base_url(server), legacy_sentinel=True) as client:
                with pytest.raises(InvalidKeyError):
                    await client.send("not-a-key", recipient, "1", timestamp=SERVER_TS)
                with pytest.raises(InvalidKeyError):
                    await client.transfer_token("not-a-key", recipient, "1", "tok",
                                                timestamp=SERVER_TS)
        assert backend.broadcasts == []
        assert backend.ts_calls == 0

    async def test_balance(self):
        backend = _FakeBackend()
        addr = Wallet.from_private_key(RFC_SECRET).address
        async with TestServer(backend.app()) as server:
            async with QCCClient(_base_url(server)) as client:
                assert await client.get_balance_raw(addr) == "1500000000000000000"
                assert await client.get_balance(addr) == "1.500000"
        assert backend.raw_requests[0] == {"type": "GetBalance", "address": addr}

    async def test_unreachable_backend(self):
        async with QCCClient(f"http://127.0.0.1:{unused_port()}", timeout=2.0) as client:
            with pytest.raises(ChainAPIError):
                await client.fetch_timestamp()

    async def test_external_session_left_open(self):
        import aiohttp

        backend = _FakeBackend()
        async with TestServer(backend.app()) as server:
            async with aiohttp.ClientSession() as session:
                async with QCCClient(_base_url(server), session=session) as client:
                    await client.fetch_timestamp()
                assert not session.closed


class TestFromConfig:

    def test_client_from_config(self):
        cfg = QCCConfig()
        cfg.chain.base_url = "http://chain.test/"
        cfg.signing.legacy_sentinel = True
        client = QCCClient.from_config(cfg)
        assert client.base_url == "http://chain.test"
        assert client.legacy_sentinel is True

    def test_staking_client_from_config(self):
        cfg = QCCConfig()
        cfg.staking.api_url = "http://staking.test/api"
        client = StakingClient.from_config(cfg)
        assert client.base_url == "http://staking.test/api"


# ═══════════════════════════════════════════════════════════════════
#  Staking client
# ═══════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
class TestStakingClient:

    async def test_fetch_rates(self):
        rates = [{"period": 30, "rate": 4.0, "name": "1 month"}]
        backend = _FakeBackend(rates_body={"success": True, "data": rates})
        async with TestServer(backend.app()) as server:
            async with StakingClient(_base_url(server)) as client:
                assert await client.fetch_interest_rates() == rates

    async def test_rejected(self):
        backend = _FakeBackend(rates_body={"success": False, "message": "maintenance"})
        async with TestServer(backend.app()) as server:
            async with StakingClient(_base_url(server)) as client:
                with pytest.raises(ChainAPIError):
                    await client.fetch_interest_rates()

    async def test_missing_data(self):
        backend = _FakeBackend(rates_body={"success": True})
        async with TestServer(backend.app()) as server:
            async with StakingClient(_base_url(server)) as client:
                with pytest.raises(ChainAPIError):
                    await client.fetch_interest_rates()

    async def test_staking_wallet_address(self):
        backend = _FakeBackend()
        async with TestServer(backend.app()) as server:
            async with StakingClient(_base_url(server)) as client:
                assert await client.fetch_staking_wallet_address() == STAKING_ADDRESS

    async def test_config_url_is_on_server_root(self):
        client = StakingClient("http://staking.test/api")
        assert client.config_url == "http://staking.test/api/config"
        await client.close()

    async def test_staking_wallet_address_missing(self):
        backend = _FakeBackend(config_body={"data": {}})
        async with TestServer(backend.app()) as server:
            async with StakingClient(_base_url(server)) as client:
                with pytest.raises(ChainAPIError):
                    await client.fetch_staking_wallet_address()

    async def test_staking_wallet_address_falls_back(self):
        backend = _FakeBackend(config_status=500)
        async with TestServer(backend.app()) as server:
            async with StakingClient(_base_url(server)) as client:
                addr = await get_staking_wallet_address(client)
        assert addr == DEFAULT_STAKING_WALLET_ADDRESS

    async def test_create_staking_body(self):
        backend = _FakeBackend()
        async with TestServer(backend.app()) as server:
            async with StakingClient(_base_url(server)) as client:
                record = await client.create_staking("w1", 100, 90, "deadbeef")
        assert backend.stakes == [{
            "walletAddress": "w1",
            "stakedAmount": 100,
            "stakingPeriod": 90,
            "transactionHash": "deadbeef",
        }]
        assert record["id"] == 1
        assert record["status"] == "active"

    async def test_create_staking_without_hash(self):
        backend = _FakeBackend()
        async with TestServer(backend.app()) as server:
            async with StakingClient(_base_url(server)) as client:
                await client.create_staking("w1", 1.5, 30)
        assert "transactionHash" not in backend.stakes[0]

    async def test_create_staking_http_error_message(self):
        backend = _FakeBackend(staking_status=400)
        async with TestServer(backend.app()) as server:
            async with StakingClient(_base_url(server)) as client:
                with pytest.raises(ChainAPIError) as exc_info:
                    await client.create_staking("w1", 1, 30, "h")
        assert "amount too small" in str(exc_info.value)
        assert exc_info.value.status == 400

    async def test_list_get_cancel_stats(self):
        backend = _FakeBackend()
        async with TestServer(backend.app()) as server:
            async with StakingClient(_base_url(server)) as client:
                await client.create_staking("w1", 100, 90, "h1")
                await client.create_staking("w2", 50, 30, "h2")
                mine = await client.get_stakings_by_wallet("w1")
                one = await client.get_staking(2)
                message = await client.cancel_staking(1)
                stats = await client.get_staking_stats()
                with pytest.raises(ChainAPIError):
                    await client.get_staking(9)
        assert [s["transactionHash"] for s in mine] == ["h1"]
        assert one["walletAddress"] == "w2"
        assert message == "cancelled"
        assert backend.cancelled == [1]
        assert stats == {"totalStaked": 150, "activeStakings": 1}


# ═══════════════════════════════════════════════════════════════════
#  Stake submission
# ═══════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
class TestStake:

    async def test_sends_then_registers(self):
        backend = _FakeBackend()
        async with TestServer(backend.app()) as server:
            url = _base_url(server)
            async with QCCClient(url) as chain, StakingClient(url) as staking:
                result = await stake(chain, staking, RFC_SECRET, "100", 90)

        tx = json.loads(backend.broadcasts[0])["transaction"]
        assert tx["to"] == STAKING_ADDRESS
        assert tx["amount"] == "100000000000000000000"
        assert backend.stakes == [{
            "walletAddress": Wallet.from_private_key(RFC_SECRET).address,
            "stakedAmount": 100,
            "stakingPeriod": 90,
            "transactionHash": "deadbeef",
        }]
        assert result.tx_hash == "deadbeef"
        assert result.staking_address == STAKING_ADDRESS
        assert result.staking["id"] == 1

    async def test_fractional_amount_registered_as_number(self):
        backend = _FakeBackend()
        async with TestServer(backend.app()) as server:
            url = _base_url(server)
            async with QCCClient(url) as chain, StakingClient(url) as staking:
                await stake(chain, staking, RFC_SECRET, "2.5", 30)
        assert backend.stakes[0]["stakedAmount"] == 2.5

    async def test_explicit_staking_address(self, recipient):
        backend = _FakeBackend(config_status=500)
        async with TestServer(backend.app()) as server:
            url = _base_url(server)
            async with QCCClient(url) as chain, StakingClient(url) as staking:
                result = await stake(chain, staking, RFC_SECRET, "1", 30,
                                     staking_address=recipient)
        assert json.loads(backend.broadcasts[0])["transaction"]["to"] == recipient
        assert result.staking_address == recipient

    async def test_no_tx_hash_not_registered(self):
        backend = _FakeBackend(broadcast_body={"output": "ok"})
        async with TestServer(backend.app()) as server:
            url = _base_url(server)
            async with QCCClient(url) as chain, StakingClient(url) as staking:
                with pytest.raises(BroadcastError):
                    await stake(chain, staking, RFC_SECRET, "1", 30)
        assert len(backend.broadcasts) == 1
        assert backend.stakes == []

    async def test_rejected_send_not_registered(self):
        backend = _FakeBackend(broadcast_body={"output": "error: insufficient balance"})
        async with TestServer(backend.app()) as server:
            url = _base_url(server)
            async with QCCClient(url) as chain, StakingClient(url) as staking:
                with pytest.raises(BroadcastError):
                    await stake(chain, staking, RFC_SECRET, "1", 30)
        assert backend.stakes == []

    async def test_invalid_key_touches_nothing(self):
        backend = _FakeBackend()
        async with TestServer(backend.app()) as server:
            url = _base_url(server)
            async with QCCClient(url, legacy_sentinel=True) as chain, StakingClient(url) as staking:
                with pytest.raises(InvalidKeyError):
                    await stake(chain, staking, "bad", "1", 30)
        assert backend.broadcasts == []
        assert backend.stakes == []
