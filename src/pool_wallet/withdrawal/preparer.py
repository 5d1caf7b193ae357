"""Withdrawal preparer — validate, split fees, prove, assemble, execute.

Pipeline of one attempt::

    Idle -> Validating -> GeneratingProof -> PreparingTransaction -> Ready
         -> Executing -> Completed | Failed | Ready (submission failed, retry)

The note is re-read from the store while validating and again right
before execution, so a note spent from another device fails with
``NOTE_ALREADY_SPENT`` instead of producing a doomed transaction. A prover
failure discards everything gathered for the proof and the attempt starts
over from validation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from pool_wallet.errors.chain_errors import IndexerError
from pool_wallet.errors.definitions import (
    ErrAmountExceedsBalance,
    ErrInvalidAmount,
    ErrInvalidRecipient,
    ErrMissingAccountKey,
    ErrNoteAlreadySpent,
    ErrNoteNotFound,
    ErrWithdrawalNotReady,
)
from pool_wallet.errors.wallet_errors import ProverError, ValidationError
from pool_wallet.keys.address import validate_address
from pool_wallet.notes.derivation import NoteDeriver
from pool_wallet.utils.units import parse_ether
from pool_wallet.withdrawal.encoding import encode_withdrawal_data, withdrawal_context
from pool_wallet.withdrawal.fees import calculate_withdrawal_amounts
from pool_wallet.withdrawal.models import (
    PreparedWithdrawal,
    TransactionEnvelope,
    WithdrawalAttempt,
    WithdrawalContext,
    WithdrawalStage,
)

if TYPE_CHECKING:
    from decimal import Decimal

    from pool_wallet.config.settings import PoolConfig, WithdrawalConfig
    from pool_wallet.discovery.cancellation import CancellationToken
    from pool_wallet.indexer.models import AspRoot, StateTreeLeaf
    from pool_wallet.metrics.collector import EngineMetrics
    from pool_wallet.notes.derivation import FieldHasher
    from pool_wallet.notes.models import Note
    from pool_wallet.store.account_store import EncryptedAccountStore
    from pool_wallet.store.session import Session
    from pool_wallet.withdrawal.models import ProofResponse, WithdrawalAmounts, WithdrawalRequest
    from pool_wallet.withdrawal.prover import Prover, Relayer

logger = logging.getLogger(__name__)


class PoolStateSource(Protocol):
    """Public pool state the proof is built against."""

    async def get_state_tree_leaves(self, pool_id: str) -> list[StateTreeLeaf]: ...

    async def get_latest_asp_root(self) -> AspRoot | None: ...


class WithdrawalPreparer:
    """Builds and executes withdrawals for one account's notes.

    Usage::

        preparer = WithdrawalPreparer(store, indexer, prover, relay,
                                      withdrawal_config=cfg.withdrawal,
                                      pool_config=cfg.pool)
        prepared = await preparer.process_withdrawal(session, pk, request)
        tx_hash = await preparer.execute_prepared_withdrawal(session, pk, prepared)
    """

    def __init__(
        self,
        store: EncryptedAccountStore,
        pool_state: PoolStateSource,
        prover: Prover,
        relayer: Relayer,
        *,
        withdrawal_config: WithdrawalConfig,
        pool_config: PoolConfig,
        hasher: FieldHasher | None = None,
        metrics: EngineMetrics | None = None,
    ) -> None:
        self._store = store
        self._pool_state = pool_state
        self._prover = prover
        self._relayer = relayer
        self._config = withdrawal_config
        self._pool = pool_config
        self._hasher = hasher
        self._metrics = metrics

    # ------------------------------------------------------------------
    # Validation & fees
    # ------------------------------------------------------------------

    def validate_withdrawal_request(self, request: WithdrawalRequest) -> None:
        """Check a request against the note it spends.

        Raises:
            ValidationError: ``INVALID_AMOUNT``, ``AMOUNT_EXCEEDS_BALANCE``,
                ``INVALID_RECIPIENT``, ``NOTE_ALREADY_SPENT`` or
                ``MISSING_ACCOUNT_KEY``.
        """
        amount = self._amount_wei(request.amount)
        if amount <= 0:
            raise ErrInvalidAmount
        if amount > request.note.amount:
            raise ErrAmountExceedsBalance
        if not request.recipient or not validate_address(request.recipient):
            raise ErrInvalidRecipient
        if request.note.is_spent:
            raise ErrNoteAlreadySpent
        if not request.account_key:
            raise ErrMissingAccountKey

    def calculate_withdrawal_amounts(self, amount: Decimal | str) -> WithdrawalAmounts:
        """Maximum execution fee and the amount the recipient is guaranteed."""
        max_fee = None
        if self._config.max_execution_fee:
            max_fee = parse_ether(self._config.max_execution_fee, decimals=self._pool.decimals)
        return calculate_withdrawal_amounts(
            self._amount_wei(amount),
            relay_fee_bps=self._config.relay_fee_bps,
            max_execution_fee=max_fee,
            decimals=self._pool.decimals,
        )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def process_withdrawal(
        self,
        session: Session,
        public_key: str,
        request: WithdrawalRequest,
        *,
        cancel_token: CancellationToken | None = None,
        attempt: WithdrawalAttempt | None = None,
    ) -> PreparedWithdrawal:
        """Run Validating -> GeneratingProof -> PreparingTransaction -> Ready.

        Stages are recorded on *attempt* (a fresh one when not given), which
        the returned withdrawal carries on into execution. Pass one in to
        see where a failed call stopped.

        Raises:
            ValidationError: The request is invalid or the note is stale.
            ProverError: Proof generation kept failing after
                ``proof_attempts`` full restarts.
            IndexerError: Pool state could not be fetched.
            WalletError: ``OPERATION_CANCELLED`` between stages.
        """
        if attempt is None:
            attempt = WithdrawalAttempt()
        attempts = self._config.proof_attempts
        for number in range(1, attempts + 1):
            attempt.restart()
            try:
                return await self._attempt(session, public_key, request, cancel_token, attempt)
            except ProverError as exc:
                self._enter(attempt, WithdrawalStage.FAILED)
                if number >= attempts:
                    logger.error("Withdrawal proof failed after %d attempts: %s", number, exc)
                    raise
                logger.warning(
                    "Withdrawal proof failed (attempt %d/%d), restarting from validation: %s",
                    number,
                    attempts,
                    exc,
                )
            except Exception:
                self._enter(attempt, WithdrawalStage.FAILED)
                raise
        msg = "withdrawal pipeline exhausted"
        raise ProverError(msg)

    async def execute_prepared_withdrawal(
        self, session: Session, public_key: str, prepared: PreparedWithdrawal
    ) -> str:
        """Submit a Ready withdrawal to the relayer.

        Returns:
            Transaction hash reported by the relayer.

        A rejected note ends the withdrawal as Failed. Any other failure
        puts it back to Ready, so the same proof can be submitted again.

        Raises:
            ValidationError: ``WITHDRAWAL_NOT_READY``, ``NOTE_ALREADY_SPENT``
                or ``NOTE_NOT_FOUND``.
            RelayError: The relayer rejected the submission.
        """
        if prepared.stage != WithdrawalStage.READY:
            raise ErrWithdrawalNotReady

        attempt = prepared.attempt
        self._enter(attempt, WithdrawalStage.EXECUTING)
        try:
            await self._reread_note(session, public_key, prepared.source_note)
            tx_hash = await self._relayer.submit(prepared.envelope)
        except ValidationError:
            self._enter(attempt, WithdrawalStage.FAILED)
            raise
        except Exception as exc:
            self._enter(attempt, WithdrawalStage.READY)
            logger.warning("Withdrawal %s not submitted, still ready: %s", prepared.id[:8], exc)
            raise

        prepared.transaction_hash = tx_hash
        self._enter(attempt, WithdrawalStage.COMPLETED)
        logger.info(
            "Withdrawal from deposit %d executed: %s", prepared.source_note.deposit_index, tx_hash
        )
        return tx_hash

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _attempt(
        self,
        session: Session,
        public_key: str,
        request: WithdrawalRequest,
        cancel_token: CancellationToken | None,
        attempt: WithdrawalAttempt,
    ) -> PreparedWithdrawal:
        self._enter(attempt, WithdrawalStage.VALIDATING)
        self.validate_withdrawal_request(request)
        note = await self._reread_note(session, public_key, request.note)
        amount = self._amount_wei(request.amount)
        if amount > note.amount:
            raise ErrAmountExceedsBalance
        amounts = self.calculate_withdrawal_amounts(request.amount)
        self._check_cancel(cancel_token)

        self._enter(attempt, WithdrawalStage.GENERATING_PROOF)
        context = await self._build_context(request, note)
        proof = await self._prover.generate_proof(self._witness(note, amount, context))
        self._check_cancel(cancel_token)

        self._enter(attempt, WithdrawalStage.PREPARING_TRANSACTION)
        envelope = self._envelope(context, proof)

        self._enter(attempt, WithdrawalStage.READY)
        logger.info(
            "Withdrawal of %d from deposit %d change %d is ready",
            amount,
            note.deposit_index,
            note.change_index,
        )
        return PreparedWithdrawal(
            source_note=note,
            amount=amount,
            recipient=request.recipient,
            amounts=amounts,
            proof=proof,
            envelope=envelope,
            attempt=attempt,
        )

    async def _reread_note(self, session: Session, public_key: str, note: Note) -> Note:
        """Current state of *note* in the store; must still be unspent."""
        current = await self._store.get_note(
            session, public_key, note.pool_address, note.deposit_index, note.change_index
        )
        if current is None:
            raise ErrNoteNotFound
        if current.is_spent:
            raise ErrNoteAlreadySpent
        return current

    async def _build_context(self, request: WithdrawalRequest, note: Note) -> WithdrawalContext:
        if not request.account_key:
            raise ErrMissingAccountKey
        deriver = NoteDeriver(request.account_key, hasher=self._hasher)
        pool = note.pool_address
        existing = deriver.secrets(pool, note.deposit_index, note.change_index)
        new = deriver.secrets(pool, note.deposit_index, note.change_index + 1)

        leaves = await self._pool_state.get_state_tree_leaves(pool)
        asp = await self._pool_state.get_latest_asp_root()
        if asp is None:
            msg = "no ASP root has been published"
            raise IndexerError(msg)

        scope = int(self._pool.scope)
        data = encode_withdrawal_data(
            request.recipient, self._config.fee_recipient, self._config.relay_fee_bps
        )
        return WithdrawalContext(
            processooor=self._config.processooor,
            withdrawal_data=data,
            scope=scope,
            context=withdrawal_context(self._config.processooor, data, scope),
            existing_commitment=deriver.commitment(note),
            existing_nullifier=existing.nullifier,
            existing_secret=existing.secret,
            new_nullifier=new.nullifier,
            new_secret=new.secret,
            state_tree_leaves=tuple(leaf.leaf_value for leaf in leaves),
            asp_root=asp.root,
            asp_ipfs_cid=asp.ipfs_cid,
        )

    @staticmethod
    def _witness(note: Note, amount: int, context: WithdrawalContext) -> dict[str, Any]:
        return {
            "existingCommitmentHash": str(context.existing_commitment),
            "existingValue": str(note.amount),
            "existingNullifier": str(context.existing_nullifier),
            "existingSecret": str(context.existing_secret),
            "withdrawalValue": str(amount),
            "context": str(context.context),
            "label": note.label,
            "newNullifier": str(context.new_nullifier),
            "newSecret": str(context.new_secret),
            "stateTreeCommitments": [str(v) for v in context.state_tree_leaves],
            "aspRoot": str(context.asp_root),
            "aspIpfsCid": context.asp_ipfs_cid,
        }

    def _envelope(self, context: WithdrawalContext, proof: ProofResponse) -> TransactionEnvelope:
        try:
            calldata = proof.for_contract()
        except ValueError as exc:
            msg = f"prover returned a malformed proof: {exc}"
            raise ProverError(msg) from exc
        return TransactionEnvelope(
            to=context.processooor,
            chain_id=self._pool.chain_id,
            scope=context.scope,
            processooor=context.processooor,
            withdrawal_data="0x" + context.withdrawal_data.hex(),
            proof=calldata,
        )

    def _amount_wei(self, amount: Decimal | str) -> int:
        try:
            return parse_ether(amount, decimals=self._pool.decimals)
        except ValueError as exc:
            raise ErrInvalidAmount from exc

    def _enter(self, attempt: WithdrawalAttempt, stage: WithdrawalStage) -> None:
        logger.debug("Withdrawal stage %s -> %s", attempt.stage.value, stage.value)
        attempt.history.append(stage)
        if self._metrics is not None:
            self._metrics.record_withdrawal_stage(stage.value)

    @staticmethod
    def _check_cancel(cancel_token: CancellationToken | None) -> None:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
