"""Prover and relay HTTP clients.

- POST /prove — Generate a withdrawal proof from the witness
- POST /relay — Submit a prepared withdrawal, returns the transaction hash
- GET  /health — Health check (both services)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from pool_wallet.errors.chain_errors import RelayError
from pool_wallet.errors.wallet_errors import ProverError
from pool_wallet.withdrawal.models import ProofResponse

if TYPE_CHECKING:
    from pool_wallet.config.settings import WithdrawalConfig
    from pool_wallet.withdrawal.models import TransactionEnvelope

logger = logging.getLogger(__name__)


class Prover(Protocol):
    async def generate_proof(self, witness: dict[str, Any]) -> ProofResponse: ...


class Relayer(Protocol):
    async def submit(self, envelope: TransactionEnvelope) -> str: ...


class _HTTPCollaborator:
    """Shared connect / close / error plumbing for the two services."""

    _name = "collaborator"

    def __init__(self, config: WithdrawalConfig, url: str) -> None:
        self._config = config
        self._url = url
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:  # noqa: ASYNC910
        """Create the underlying HTTP client."""
        headers: dict[str, str] = {
            "Content-Type": "application/json",
        }
        if self._config.auth_token:
            headers["Authorization"] = f"Bearer {self._config.auth_token}"

        self._client = httpx.AsyncClient(
            base_url=self._url.rstrip("/"),
            headers=headers,
            timeout=self._config.timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def health_check(self) -> bool:
        """True if the service answers its health endpoint."""
        if self._client is None:
            return False
        try:
            response = await self._client.get("/health")
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = f"{self._name} service not connected. Call connect() first."
            raise self._error(msg, 500)
        return self._client

    def _error(self, message: str, status: int = 502) -> ProverError:
        return ProverError(message, status_code=status)

    async def _post(self, path: str, body: dict[str, Any], operation: str) -> dict[str, Any]:
        client = self._ensure_connected()
        try:
            response = await client.post(path, json=body)
        except httpx.HTTPError as exc:
            raise self._error(f"{self._name} {operation} failed: {exc}") from exc

        if response.status_code not in (200, 201):
            try:
                payload = response.json()
                detail = payload.get("detail", payload.get("message", response.text))
            except ValueError:
                detail = response.text
            message = f"{self._name} {operation} failed ({response.status_code}): {detail}"
            raise self._error(message, response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise self._error(f"{self._name} {operation} returned invalid JSON") from exc


class ProverService(_HTTPCollaborator):
    """Async HTTP client for the proving collaborator.

    Usage::

        prover = ProverService(config.withdrawal)
        await prover.connect()
        proof = await prover.generate_proof(witness)
    """

    _name = "Prover"

    def __init__(self, config: WithdrawalConfig) -> None:
        super().__init__(config, config.prover_url)

    async def generate_proof(self, witness: dict[str, Any]) -> ProofResponse:
        """Request a withdrawal proof.

        Raises:
            ProverError: On HTTP errors or a malformed proof.
        """
        data = await self._post("/prove", witness, "generate_proof")
        proof = ProofResponse.from_dict(data)
        if not proof.pi_a or not proof.public_signals:
            msg = "Prover returned an empty proof"
            raise ProverError(msg)
        logger.debug("Proof generated with %d public signals", len(proof.public_signals))
        return proof


class RelayService(_HTTPCollaborator):
    """Async HTTP client for the relayer."""

    _name = "Relay"

    def __init__(self, config: WithdrawalConfig) -> None:
        super().__init__(config, config.relay_url)

    def _error(self, message: str, status: int = 502) -> ProverError:
        return RelayError(message, status_code=status)

    async def submit(self, envelope: TransactionEnvelope) -> str:
        """Submit a prepared withdrawal and return its transaction hash.

        Raises:
            RelayError: On HTTP errors or a missing transaction hash.
        """
        data = await self._post("/relay", envelope.to_dict(), "submit")
        tx_hash = data.get("txHash") or data.get("transactionHash")
        if not tx_hash:
            msg = "Relay response has no transaction hash"
            raise RelayError(msg)
        return str(tx_hash)
