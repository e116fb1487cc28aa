"""
Unit tests for the poll cycle (PollerEngine.poll_once).
"""

import asyncio
import pytest
from dataclasses import replace

from mailwatch.engine import PollerEngine
from mailwatch.errors import ConfigurationError, DeliveryError, FetchError
from mailwatch.models import ConnectionParams, MessageCandidate
from tests.mocks.factories import make_account, make_messages
from tests.mocks.mail_source_mock import FailingSink, RecordingSink, ScriptedMailSource


class TestPollOnce:
    """Dedup, eviction and delivery within single cycles."""

    @pytest.mark.asyncio
    async def test_first_cycle_returns_everything(self, account, sample_candidates):
        engine = PollerEngine(ScriptedMailSource([sample_candidates]))

        result = await engine.poll_once(account)

        assert result.message_ids == [c.message_id for c in sample_candidates]
        assert result.account_id == account.account_id
        assert result.total_seen == 3

    @pytest.mark.asyncio
    async def test_already_seen_messages_are_suppressed(self):
        account = make_account(seen_set_capacity=100)
        source = ScriptedMailSource([make_messages("A", "B"), make_messages("A", "B", "C")])
        engine = PollerEngine(source)

        first = await engine.poll_once(account)
        second = await engine.poll_once(account)

        assert first.message_ids == ["A", "B"]
        assert second.message_ids == ["C"]

    @pytest.mark.asyncio
    async def test_all_seen_gives_empty_result(self):
        account = make_account()
        engine = PollerEngine(ScriptedMailSource([make_messages("A")]))

        await engine.poll_once(account)
        result = await engine.poll_once(account)

        assert result.is_empty
        assert len(result) == 0
        assert engine.seen_ids(account.account_id) == ("A",)

    @pytest.mark.asyncio
    async def test_zero_candidates_leaves_seen_set_unchanged(self):
        account = make_account()
        engine = PollerEngine(ScriptedMailSource([make_messages("A"), []]))

        await engine.poll_once(account)
        result = await engine.poll_once(account)

        assert result.is_empty
        assert engine.seen_ids(account.account_id) == ("A",)

    @pytest.mark.asyncio
    async def test_duplicates_within_one_batch(self):
        account = make_account()
        engine = PollerEngine(ScriptedMailSource([make_messages("A", "B", "A", "B", "C")]))

        result = await engine.poll_once(account)

        assert result.message_ids == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_result_keeps_source_order(self):
        account = make_account()
        engine = PollerEngine(ScriptedMailSource([make_messages("Z", "A", "M")]))

        result = await engine.poll_once(account)

        assert result.message_ids == ["Z", "A", "M"]
        assert result.messages[0].subject == "Subject Z"

    @pytest.mark.asyncio
    async def test_candidate_without_id_is_ignored(self):
        account = make_account()
        batch = [MessageCandidate(message_id="", subject="broken")] + make_messages("A")
        engine = PollerEngine(ScriptedMailSource([batch]))

        result = await engine.poll_once(account)

        assert result.message_ids == ["A"]

    @pytest.mark.asyncio
    async def test_capacity_scenario(self):
        """capacity=3: [A,B,C] -> [D] evicts A -> [A,B] yields only A."""
        account = make_account(seen_set_capacity=3)
        source = ScriptedMailSource([
            make_messages("A", "B", "C"),
            make_messages("D"),
            make_messages("A", "B"),
        ])
        engine = PollerEngine(source)

        r1 = await engine.poll_once(account)
        assert r1.message_ids == ["A", "B", "C"]
        assert engine.seen_ids(account.account_id) == ("A", "B", "C")

        r2 = await engine.poll_once(account)
        assert r2.message_ids == ["D"]
        assert engine.seen_ids(account.account_id) == ("B", "C", "D")

        r3 = await engine.poll_once(account)
        assert r3.message_ids == ["A"]
        assert engine.seen_ids(account.account_id) == ("C", "D", "A")

    @pytest.mark.asyncio
    async def test_eviction_never_removes_current_cycle_ids(self):
        account = make_account(seen_set_capacity=4)
        source = ScriptedMailSource([make_messages("A", "B", "C"), make_messages("D", "E")])
        engine = PollerEngine(source)

        await engine.poll_once(account)
        result = await engine.poll_once(account)

        seen = engine.seen_ids(account.account_id)
        assert result.message_ids == ["D", "E"]
        assert seen == ("B", "C", "D", "E")
        assert len(seen) <= 4

    @pytest.mark.asyncio
    async def test_capacity_bound_holds_for_oversized_batch(self):
        account = make_account(seen_set_capacity=2)
        engine = PollerEngine(ScriptedMailSource([make_messages("A", "B", "C", "D")]))

        result = await engine.poll_once(account)

        assert result.message_ids == ["A", "B", "C", "D"]
        assert engine.seen_ids(account.account_id) == ("C", "D")

    @pytest.mark.asyncio
    async def test_no_duplicate_delivery_across_cycles(self):
        account = make_account(seen_set_capacity=1000)
        batches = [make_messages(*[f"m{j}" for j in range(i, i + 5)]) for i in range(0, 30, 3)]
        engine = PollerEngine(ScriptedMailSource(batches))
        sink = RecordingSink()

        for _ in range(len(batches)):
            await engine.poll_once(account, sink=sink)

        delivered = sink.delivered_ids
        assert len(delivered) == len(set(delivered))

    @pytest.mark.asyncio
    async def test_accounts_are_independent(self):
        source = ScriptedMailSource([make_messages("A")])
        engine = PollerEngine(source)
        alice = make_account("alice@example.com")
        bob = make_account("bob@example.com")

        ra = await engine.poll_once(alice)
        rb = await engine.poll_once(bob)

        assert ra.message_ids == ["A"]
        assert rb.message_ids == ["A"]
        assert source.accounts == ["alice@example.com", "bob@example.com"]


class TestPollOnceErrors:
    """Fetch and delivery failures."""

    @pytest.mark.asyncio
    async def test_fetch_failure_raises_and_keeps_state(self):
        account = make_account()
        source = ScriptedMailSource([make_messages("A"), ConnectionError("imap down"), make_messages("A", "B")])
        reported = []
        engine = PollerEngine(source, on_error=lambda acc, err: reported.append(err))

        await engine.poll_once(account)
        with pytest.raises(FetchError) as exc_info:
            await engine.poll_once(account)

        assert isinstance(exc_info.value.cause, ConnectionError)
        assert exc_info.value.account_id == account.account_id
        assert engine.seen_ids(account.account_id) == ("A",)
        assert reported == [exc_info.value]

        result = await engine.poll_once(account)
        assert result.message_ids == ["B"]

    @pytest.mark.asyncio
    async def test_fetch_timeout_is_a_fetch_error(self):
        account = make_account(fetch_timeout_ms=50)
        source = ScriptedMailSource([make_messages("A")], delay=0.5)
        sink = RecordingSink()
        engine = PollerEngine(source)

        with pytest.raises(FetchError, match="timed out after 50ms"):
            await engine.poll_once(account, sink=sink)

        assert sink.results == []
        assert engine.seen_ids(account.account_id) == ()

    @pytest.mark.asyncio
    async def test_delivery_failure_keeps_messages_seen(self):
        account = make_account()
        reported = []
        source = ScriptedMailSource([make_messages("A", "B"), make_messages("A", "B", "C")])
        engine = PollerEngine(source, on_error=lambda acc, err: reported.append(err))
        failing = FailingSink()

        result = await engine.poll_once(account, sink=failing)

        assert result.message_ids == ["A", "B"]
        assert len(reported) == 1
        assert isinstance(reported[0], DeliveryError)

        # at-most-once: A and B are not redelivered
        sink = RecordingSink()
        await engine.poll_once(account, sink=sink)
        assert sink.delivered_ids == ["C"]

    @pytest.mark.asyncio
    async def test_async_error_handler_is_awaited(self):
        account = make_account()
        reported = []

        async def on_error(acc, err):
            await asyncio.sleep(0)
            reported.append((acc.account_id, type(err)))

        engine = PollerEngine(ScriptedMailSource([RuntimeError("boom")]), on_error=on_error)

        with pytest.raises(FetchError):
            await engine.poll_once(account)

        assert reported == [(account.account_id, FetchError)]

    @pytest.mark.asyncio
    async def test_error_handler_exception_is_contained(self):
        account = make_account()

        def on_error(acc, err):
            raise ValueError("handler broken")

        engine = PollerEngine(ScriptedMailSource([RuntimeError("boom")]), on_error=on_error)

        with pytest.raises(FetchError):
            await engine.poll_once(account)

    @pytest.mark.asyncio
    async def test_invalid_account_raises_configuration_error(self):
        engine = PollerEngine(ScriptedMailSource())
        broken = replace(make_account(), connection=ConnectionParams(host="", port=993, username="", credential_ref=""))

        with pytest.raises(ConfigurationError):
            await engine.poll_once(broken)

    @pytest.mark.asyncio
    async def test_async_sink_callable(self):
        account = make_account()
        received = []

        async def on_new(acc, result):
            received.extend(result.message_ids)

        engine = PollerEngine(ScriptedMailSource([make_messages("A")]))
        await engine.poll_once(account, sink=on_new)

        assert received == ["A"]


class TestAccountLifecycle:
    """State creation, reconfiguration and removal."""

    @pytest.mark.asyncio
    async def test_remove_destroys_seen_set(self):
        account = make_account()
        engine = PollerEngine(ScriptedMailSource([make_messages("A")]))

        await engine.poll_once(account)
        assert await engine.remove(account.account_id) is True
        assert engine.seen_ids(account.account_id) == ()
        assert account.account_id not in engine.account_ids

        result = await engine.poll_once(account)
        assert result.message_ids == ["A"]

    @pytest.mark.asyncio
    async def test_remove_unknown_account(self):
        engine = PollerEngine(ScriptedMailSource())
        assert await engine.remove("nobody@example.com") is False

    @pytest.mark.asyncio
    async def test_lowering_capacity_while_stopped_evicts(self):
        account = make_account(seen_set_capacity=5)
        engine = PollerEngine(ScriptedMailSource([make_messages("A", "B", "C", "D"), []]))

        await engine.poll_once(account)
        await engine.poll_once(account.with_settings(seen_set_capacity=2))

        assert engine.seen_ids(account.account_id) == ("C", "D")
