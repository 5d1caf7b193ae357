"""Tests for fee math, ABI encoding, proof layout and the prover / relay clients."""

from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from pool_wallet.config.settings import WithdrawalConfig
from pool_wallet.errors.chain_errors import RelayError
from pool_wallet.errors.wallet_errors import ProverError
from pool_wallet.notes.models import Note
from pool_wallet.utils.crypto import FIELD_MODULUS
from pool_wallet.withdrawal.encoding import (
    WORD,
    encode_address,
    encode_bytes,
    encode_uint,
    encode_withdrawal,
    encode_withdrawal_data,
    withdrawal_context,
)
from pool_wallet.withdrawal.fees import calculate_withdrawal_amounts
from pool_wallet.withdrawal.models import (
    PreparedWithdrawal,
    ProofResponse,
    TransactionEnvelope,
    WithdrawalStage,
)
from pool_wallet.withdrawal.prover import ProverService, RelayService

POOL = "0xB68E4f712bd0783fbc6b369409885c2319Db114a"
RECIPIENT = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
PROCESSOOOR = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
ETHER = 10**18

PROOF_JSON = {
    "proof": {
        "pi_a": ["1", "2", "1"],
        "pi_b": [["3", "4"], ["5", "6"], ["1", "0"]],
        "pi_c": ["7", "8", "1"],
    },
    "publicSignals": ["9", "10"],
}

# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------


class TestFees:
    def test_bps_fee(self) -> None:
        amounts = calculate_withdrawal_amounts(4 * ETHER // 10, relay_fee_bps=1000)
        assert amounts.execution_fee == 4 * ETHER // 100
        assert amounts.you_receive == 36 * ETHER // 100

    def test_cap(self) -> None:
        amounts = calculate_withdrawal_amounts(
            4 * ETHER // 10, relay_fee_bps=1000, max_execution_fee=ETHER // 100
        )
        assert amounts.execution_fee == ETHER // 100
        assert amounts.display == {
            "amount": Decimal("0.4"),
            "executionFee": Decimal("0.01"),
            "youReceive": Decimal("0.39"),
        }

    def test_rounds_down(self) -> None:
        amounts = calculate_withdrawal_amounts(9, relay_fee_bps=1000)
        assert amounts.execution_fee == 0
        assert amounts.you_receive == 9

    def test_zero_bps(self) -> None:
        assert calculate_withdrawal_amounts(ETHER, relay_fee_bps=0).you_receive == ETHER

    @pytest.mark.parametrize(("amount", "bps"), [(-1, 100), (ETHER, -1), (ETHER, 10_001)])
    def test_invalid(self, amount: int, bps: int) -> None:
        with pytest.raises(ValueError):
            calculate_withdrawal_amounts(amount, relay_fee_bps=bps)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


class TestEncoding:
    def test_uint(self) -> None:
        assert encode_uint(1) == b"\x00" * 31 + b"\x01"
        with pytest.raises(ValueError, match="out of range"):
            encode_uint(1 << 256)
        with pytest.raises(ValueError, match="out of range"):
            encode_uint(-1)

    def test_address_left_padded(self) -> None:
        word = encode_address(RECIPIENT)
        assert len(word) == WORD
        assert word[:12] == b"\x00" * 12
        assert word[12:].hex() == RECIPIENT[2:].lower()

    def test_bytes_padding(self) -> None:
        encoded = encode_bytes(b"\x01\x02")
        assert len(encoded) == 2 * WORD
        assert encoded[:WORD] == encode_uint(2)
        assert encoded[WORD:] == b"\x01\x02" + b"\x00" * 30

    def test_withdrawal_layout(self) -> None:
        data = encode_withdrawal_data(RECIPIENT, PROCESSOOOR, 1000)
        assert len(data) == 3 * WORD
        encoded = encode_withdrawal(PROCESSOOOR, data, 12345)
        assert len(encoded) == 8 * WORD
        assert encoded[:WORD] == encode_uint(2 * WORD)
        assert encoded[WORD : 2 * WORD] == encode_uint(12345)
        assert encoded[2 * WORD : 3 * WORD] == encode_address(PROCESSOOOR)
        assert encoded[4 * WORD : 5 * WORD] == encode_uint(len(data))

    def test_context_in_field(self) -> None:
        data = encode_withdrawal_data(RECIPIENT, PROCESSOOOR, 1000)
        context = withdrawal_context(PROCESSOOOR, data, 12345)
        assert 0 <= context < FIELD_MODULUS
        assert context != withdrawal_context(PROCESSOOOR, data, 12346)

    def test_invalid_address(self) -> None:
        with pytest.raises(ValueError, match="Invalid address"):
            encode_withdrawal_data("0xnope", PROCESSOOOR, 1000)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestProofResponse:
    def test_from_dict_and_contract_layout(self) -> None:
        proof = ProofResponse.from_dict(PROOF_JSON)
        assert proof.public_signals == ("9", "10")
        assert proof.for_contract() == {
            "pA": ["1", "2"],
            "pB": [["4", "3"], ["6", "5"]],
            "pC": ["7", "8"],
            "pubSignals": ["9", "10"],
        }

    def test_incomplete(self) -> None:
        with pytest.raises(ValueError, match="incomplete"):
            ProofResponse.from_dict({}).for_contract()


class TestPreparedWithdrawal:
    def test_defaults(self) -> None:
        envelope = TransactionEnvelope(
            to=PROCESSOOOR,
            chain_id=1,
            scope=5,
            processooor=PROCESSOOOR,
            withdrawal_data="0x",
            proof={},
        )
        prepared = PreparedWithdrawal(
            source_note=Note(POOL, 0, 0, ETHER),
            amount=ETHER // 2,
            recipient=RECIPIENT,
            amounts=calculate_withdrawal_amounts(ETHER // 2, relay_fee_bps=100),
            proof=ProofResponse.from_dict(PROOF_JSON),
            envelope=envelope,
        )
        assert prepared.stage == WithdrawalStage.READY
        assert prepared.fee_amount == ETHER // 200
        assert prepared.transaction_hash is None
        assert len(prepared.id) == 32
        assert envelope.to_dict()["scope"] == "5"


# ---------------------------------------------------------------------------
# HTTP collaborators
# ---------------------------------------------------------------------------


def _config() -> WithdrawalConfig:
    return WithdrawalConfig(prover_url="https://prover.test", relay_url="https://relay.test")


async def _mock(service, handler, base_url: str):
    await service.connect()
    # Replace internal client with mock
    service._client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)
    return service


class TestProverService:
    async def test_generate_proof(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/prove"
            assert json.loads(request.content) == {"context": "1"}
            return httpx.Response(200, json=PROOF_JSON)

        prover = await _mock(ProverService(_config()), handler, "https://prover.test")
        proof = await prover.generate_proof({"context": "1"})
        assert proof.pi_c == ("7", "8", "1")
        await prover.close()

    async def test_http_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"detail": "witness rejected"})

        prover = await _mock(ProverService(_config()), handler, "https://prover.test")
        with pytest.raises(ProverError, match="witness rejected") as exc_info:
            await prover.generate_proof({})
        assert exc_info.value.status_code == 500
        assert not exc_info.value.resumable
        await prover.close()

    async def test_empty_proof(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"proof": {}, "publicSignals": []})

        prover = await _mock(ProverService(_config()), handler, "https://prover.test")
        with pytest.raises(ProverError, match="empty proof"):
            await prover.generate_proof({})
        await prover.close()

    async def test_not_connected(self) -> None:
        with pytest.raises(ProverError, match="not connected"):
            await ProverService(_config()).generate_proof({})

    async def test_health_check(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/health"
            return httpx.Response(200, json={"status": "ok"})

        prover = await _mock(ProverService(_config()), handler, "https://prover.test")
        assert await prover.health_check() is True
        await prover.close()
        assert await prover.health_check() is False


class TestRelayService:
    def _envelope(self) -> TransactionEnvelope:
        return TransactionEnvelope(
            to=PROCESSOOOR,
            chain_id=84532,
            scope=12345,
            processooor=PROCESSOOOR,
            withdrawal_data="0x00",
            proof={"pA": ["1", "2"]},
        )

    async def test_submit(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert request.url.path == "/relay"
            assert body["chainId"] == 84532
            assert body["scope"] == "12345"
            return httpx.Response(200, json={"txHash": "0xfeed"})

        relay = await _mock(RelayService(_config()), handler, "https://relay.test")
        assert await relay.submit(self._envelope()) == "0xfeed"
        await relay.close()

    async def test_rejected(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"message": "fee too low"})

        relay = await _mock(RelayService(_config()), handler, "https://relay.test")
        with pytest.raises(RelayError, match="fee too low") as exc_info:
            await relay.submit(self._envelope())
        assert exc_info.value.code == "RELAY_FAILED"
        assert exc_info.value.status_code == 400
        await relay.close()

    async def test_missing_hash(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": True})

        relay = await _mock(RelayService(_config()), handler, "https://relay.test")
        with pytest.raises(RelayError, match="no transaction hash"):
            await relay.submit(self._envelope())
        await relay.close()

    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        relay = await _mock(RelayService(_config()), handler, "https://relay.test")
        with pytest.raises(RelayError, match="refused"):
            await relay.submit(self._envelope())
        await relay.close()
