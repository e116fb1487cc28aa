"""
Poller/dedup engine.

Owns the per-account state (seen-set, single-flight lock, registered sink and
scheduler) and implements the poll cycle:

1. Fetch candidates from the mail source, bounded by the fetch timeout
2. Keep candidates whose identifier is not in the seen-set, marking them seen
3. Evict the oldest identifiers beyond the seen-set capacity
4. Deliver the (possibly empty) result to the sink
"""

from __future__ import annotations
import asyncio
import inspect
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from mailwatch.errors import ConfigurationError, CycleError, DeliveryError, FetchError
from mailwatch.logging import logger
from mailwatch.models import Account, MessageCandidate, PollOutcome, PollResult
from mailwatch.scheduler import AccountScheduler
from mailwatch.seen_set import SeenSet
from mailwatch.sinks.base import DeliverCallback, Sink, as_sink, deliver_to
from mailwatch.sources.base import MailSource
from mailwatch.utils.validation import validate_account, validate_interval_ms

ErrorHandler = Callable[[Account, CycleError], object]
PollHandle = AccountScheduler

_CycleReport = Tuple[Optional[PollResult], PollOutcome, Optional[CycleError]]


@dataclass
class _AccountState:
    account: Account
    seen: SeenSet
    lock: asyncio.Lock
    sink: Optional[Sink] = None
    scheduler: Optional[AccountScheduler] = None
    delivered_messages: int = 0


class PollerEngine:
    """
    Polls accounts on a schedule and surfaces only messages not seen before.

    Accounts are fully independent: each has its own seen-set, lock and loop.
    Per-cycle failures (fetch or delivery) are logged and passed to
    ``on_error``; they never stop an account's schedule.
    """

    def __init__(
        self,
        source: MailSource,
        *,
        on_error: Optional[ErrorHandler] = None,
    ) -> None:
        """
        Args:
            source: Mail source used for every account
            on_error: Optional side-channel called with (account, error) for
                FetchError and DeliveryError; may be a coroutine function
        """
        self.source = source
        self.on_error = on_error
        self._states: Dict[str, _AccountState] = {}

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    def start(
        self,
        account: Account,
        on_new_messages: Union[Sink, DeliverCallback],
        interval_ms: Optional[int] = None,
    ) -> PollHandle:
        """
        Begin polling ``account``: one cycle now, then one per interval.

        Args:
            account: Account to monitor; must be enabled with non-empty
                connection parameters
            on_new_messages: Sink or ``(account, result)`` callable receiving
                every successful cycle's result
            interval_ms: Overrides ``account.settings.interval_ms``

        Returns:
            Handle to pass to ``stop``

        Raises:
            ConfigurationError: On invalid account, interval or sink
        """
        validate_account(account)
        if interval_ms is not None:
            validate_interval_ms(interval_ms)
            account = account.with_settings(interval_ms=interval_ms)
        if not account.enabled:
            raise ConfigurationError(f"Account {account.account_id!r} is disabled")

        sink = as_sink(on_new_messages)
        if sink is None:
            raise ConfigurationError("on_new_messages is required to start polling")

        existing = self._states.get(account.account_id)
        if existing and existing.scheduler and existing.scheduler.running:
            if existing.account != account:
                raise ConfigurationError(
                    f"Account {account.account_id!r} is being polled with different settings; "
                    f"stop it before changing its configuration"
                )
            logger.warning(f"[{account.account_id}] Already being polled; returning existing handle")
            return existing.scheduler

        state = self._state_for(account)
        state.sink = sink
        scheduler = AccountScheduler(
            account_id=account.account_id,
            cycle_func=lambda: self._scheduled_cycle(state),
            interval_seconds=account.settings.interval_seconds,
            lock=state.lock,
        )
        state.scheduler = scheduler
        scheduler.start()
        return scheduler

    def stop(self, handle: PollHandle) -> None:
        """Cancel future cycles for ``handle``; the in-flight cycle still delivers. Idempotent."""
        handle.stop()

    async def poll_once(
        self,
        account: Account,
        sink: Union[Sink, DeliverCallback, None] = None,
    ) -> PollResult:
        """
        Run exactly one poll cycle for ``account`` and return its result.

        Delivers to ``sink`` if given, otherwise to the sink registered by
        ``start`` (if any). Waits for an in-flight cycle of the same account.

        Raises:
            ConfigurationError: On an invalid account
            FetchError: If the source failed or timed out (already reported)
        """
        validate_account(account)
        state = self._state_for(account)
        target = as_sink(sink) if sink is not None else state.sink

        result, _, error = await self._execute(state, target)
        if result is None:
            raise error if error is not None else FetchError(account.account_id, "fetch produced no result")
        return result

    async def remove(self, account_id: str) -> bool:
        """
        Stop monitoring ``account_id`` and destroy its state (seen-set included).

        Returns:
            False if the account was unknown
        """
        state = self._states.get(account_id)
        if state is None:
            return False

        if state.scheduler is not None:
            state.scheduler.stop()
            await state.scheduler.wait()
        async with state.lock:
            # an on-demand poll may still be running
            pass

        self._states.pop(account_id, None)
        forget = getattr(self.source, "forget", None)
        if forget is not None:
            forget(account_id)
        logger.info(f"[{account_id}] Removed from monitoring")
        return True

    async def shutdown(self) -> None:
        """Stop every loop and wait for in-flight cycles to deliver."""
        schedulers = [s.scheduler for s in self._states.values() if s.scheduler is not None]
        for scheduler in schedulers:
            scheduler.stop()
        if schedulers:
            await asyncio.gather(*(s.wait() for s in schedulers), return_exceptions=True)
        logger.info(f"Engine stopped ({len(schedulers)} account loop(s))")

    def handle_for(self, account_id: str) -> Optional[PollHandle]:
        state = self._states.get(account_id)
        return state.scheduler if state else None

    def seen_ids(self, account_id: str) -> tuple[str, ...]:
        """Snapshot of an account's seen identifiers, oldest first."""
        state = self._states.get(account_id)
        return state.seen.snapshot() if state else ()

    @property
    def account_ids(self) -> List[str]:
        return list(self._states)

    def get_health(self) -> dict:
        """
        Aggregate health of all account loops.

        Returns:
            ``{"status": ..., "accounts": {account_id: {...}}}``; healthy when
            at least one loop runs and every running loop is healthy
        """
        accounts = {}
        running_healthy: List[bool] = []
        for account_id, state in list(self._states.items()):
            entry = {
                "seen": len(state.seen),
                "seen_capacity": state.seen.capacity,
                "delivered_messages": state.delivered_messages,
            }
            if state.scheduler is not None:
                entry.update(state.scheduler.get_health())
                if state.scheduler.running:
                    running_healthy.append(entry["status"] == "healthy")
            else:
                entry.update({"status": "idle", "running": False})
            accounts[account_id] = entry

        is_healthy = bool(running_healthy) and all(running_healthy)
        return {
            "status": "healthy" if is_healthy else "unhealthy",
            "accounts": accounts,
        }

    # ------------------------------------------------------------------
    # poll cycle
    # ------------------------------------------------------------------
    def _state_for(self, account: Account) -> _AccountState:
        state = self._states.get(account.account_id)
        if state is None:
            state = _AccountState(
                account=account,
                seen=SeenSet(account.settings.seen_set_capacity),
                lock=asyncio.Lock(),
            )
            self._states[account.account_id] = state
            logger.debug(f"[{account.account_id}] Created account state (capacity={state.seen.capacity})")
            return state

        if state.account != account:
            if state.scheduler is not None and state.scheduler.running:
                raise ConfigurationError(
                    f"Account {account.account_id!r} is being polled; stop it before changing its configuration"
                )
            state.account = account
            if state.seen.capacity != account.settings.seen_set_capacity:
                state.seen.capacity = account.settings.seen_set_capacity
                evicted = state.seen.evict_overflow()
                if evicted:
                    logger.info(f"[{account.account_id}] Capacity lowered, evicted {len(evicted)} id(s)")
        return state

    async def _scheduled_cycle(self, state: _AccountState) -> Tuple[PollOutcome, Optional[CycleError]]:
        _, outcome, error = await self._execute(state, state.sink)
        return outcome, error

    async def _execute(self, state: _AccountState, sink: Optional[Sink]) -> _CycleReport:
        """One complete cycle under the account's single-flight lock."""
        async with state.lock:
            account = state.account
            try:
                candidates = await self._fetch(account)
            except FetchError as e:
                await self._report(account, e)
                return None, PollOutcome.FETCH_FAILED, e

            result = self._dedup(state, candidates)
            if result.messages:
                logger.info(f"[{account.account_id}] {len(result)} new of {len(candidates)} candidate(s)")
            else:
                logger.debug(f"[{account.account_id}] No new messages ({len(candidates)} candidate(s))")

            if sink is None:
                return result, self._outcome_for(result), None

            try:
                await deliver_to(sink, account, result)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # seen-set changes stay: delivery is at-most-once
                error = DeliveryError(account.account_id, f"delivery to {sink!r} failed: {e}", cause=e)
                await self._report(account, error)
                return result, PollOutcome.DELIVERY_FAILED, error

            state.delivered_messages += len(result)
            return result, self._outcome_for(result), None

    async def _fetch(self, account: Account) -> List[MessageCandidate]:
        timeout_ms = account.settings.fetch_timeout_ms
        try:
            candidates = await asyncio.wait_for(
                self.source.fetch(account),
                timeout=account.settings.fetch_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise FetchError(account.account_id, f"fetch timed out after {timeout_ms}ms", cause=e) from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise FetchError(account.account_id, f"fetch failed: {e}", cause=e) from e
        return list(candidates or ())

    @staticmethod
    def _dedup(state: _AccountState, candidates: Sequence[MessageCandidate]) -> PollResult:
        account_id = state.account.account_id
        fresh: List[MessageCandidate] = []
        for candidate in candidates:
            if not candidate.message_id:
                logger.warning(f"[{account_id}] Ignoring candidate without message id: {candidate.subject!r}")
                continue
            if state.seen.add(candidate.message_id):
                fresh.append(candidate)

        evicted = state.seen.evict_overflow()
        if evicted:
            logger.debug(f"[{account_id}] Evicted {len(evicted)} oldest id(s) from seen-set")
            if len(fresh) > state.seen.capacity:
                logger.warning(
                    f"[{account_id}] {len(fresh)} new messages exceed seen-set capacity "
                    f"{state.seen.capacity}; the oldest of them may be delivered again later"
                )

        return PollResult(account_id=account_id, messages=tuple(fresh), total_seen=len(state.seen))

    @staticmethod
    def _outcome_for(result: PollResult) -> PollOutcome:
        return PollOutcome.EMPTY if result.is_empty else PollOutcome.DELIVERED

    async def _report(self, account: Account, error: CycleError) -> None:
        """Log a per-cycle error and forward it to the side-channel."""
        if isinstance(error, FetchError):
            logger.warning(f"Poll cycle failed: {error}")
        else:
            logger.error(f"Poll result not delivered: {error}")

        if self.on_error is None:
            return
        try:
            outcome = self.on_error(account, error)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.exception(f"[{account.account_id}] Error handler raised: {e}")
