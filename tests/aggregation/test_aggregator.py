"""
Global Aggregator Tests.

============================================================
PURPOSE
============================================================
Tests for ingestion, global metrics, subscriptions and cleanup.

TEST CATEGORIES:
- Ingestion: accepted, filtered and malformed records
- Global metrics: pooled windowed TPS, EMA, confidence, record
- Subscriptions: ordering, exceptions, unsubscribe
- Cleanup: clock-anchored pruning, background loop
- Concurrency: serialized ingest from many threads

============================================================
"""

import asyncio
import threading
from unittest.mock import MagicMock

import pytest

from aggregation import AggregationConfig, Aggregator, GlobalState
from core.clock import MockClock


def raw(ts: int, ext: int = 10, para_id: int = 2004, relay: str = "Polkadot", bt: float = 6.0):
    return {
        "relay": relay,
        "para_id": para_id,
        "block_number": ts // 1000,
        "extrinsics_num": ext,
        "block_time_seconds": bt,
        "timestamp": ts,
    }


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    return MockClock(initial_ms=0)


@pytest.fixture
def aggregator(clock):
    return Aggregator(AggregationConfig(), clock=clock)


# ============================================================
# INGESTION TESTS
# ============================================================

class TestIngest:
    """Tests for Aggregator.ingest."""

    def test_initial_state(self, aggregator):
        state = aggregator.get_state()

        assert isinstance(state, GlobalState)
        assert state.chain_count == 0
        assert state.windowed_tps == 0.0
        assert state.update_count == 0

    def test_first_update_registers_chain(self, aggregator):
        state = aggregator.ingest(raw(1000))

        assert state.chain_count == 1
        assert state.update_count == 1
        chain = state.get_chain("Polkadot-2004")
        assert chain.name == "Moonbeam"
        assert chain.instant_tps == pytest.approx(10 / 6.0)

    def test_json_payload(self, aggregator):
        state = aggregator.ingest(
            '{"relay": "Kusama", "para_id": 2023, "block_number": 1, '
            '"extrinsics_num": 3, "timestamp": 5}'
        )

        assert state.get_chain("Kusama-2023").extrinsics == 3

    def test_same_para_on_two_relays_is_two_chains(self, aggregator):
        aggregator.ingest(raw(1000, para_id=1000, relay="Polkadot"))
        state = aggregator.ingest(raw(1000, para_id=1000, relay="Kusama"))

        assert set(state.chains) == {"Polkadot-1000", "Kusama-1000"}

    def test_malformed_dropped(self, aggregator):
        before = aggregator.get_state()

        after = aggregator.ingest({"relay": "Polkadot", "para_id": "x"})

        assert after is before
        assert aggregator.get_stats()["rejected"] == 1

    def test_malformed_logged_as_warning(self, aggregator, caplog):
        with caplog.at_level("WARNING", logger="aggregation.aggregator"):
            aggregator.ingest("{broken")

        assert "Dropping malformed update" in caplog.text

    @pytest.mark.parametrize("payload", [
        {"relay": "Polkadot", "para_id": 2004, "block_number": 1,
         "extrinsics_num": 10**400, "timestamp": 1000},
        '{"relay": "Polkadot", "para_id": 2004, "block_number": 1, '
        '"extrinsics_num": ' + "9" * 5000 + ', "timestamp": 1000}',
    ])
    def test_oversized_numbers_dropped(self, aggregator, payload):
        state = aggregator.ingest(payload)

        assert state.update_count == 0
        assert aggregator.get_stats()["rejected"] == 1

    def test_filtered_relay_ignored(self, aggregator):
        callback = MagicMock()
        aggregator.subscribe(callback)

        state = aggregator.ingest(raw(1000, relay="Westend"))

        assert state.chain_count == 0
        assert aggregator.get_stats()["filtered"] == 1
        callback.assert_not_called()

    def test_stream_continues_after_bad_record(self, aggregator):
        aggregator.ingest(raw(0))
        aggregator.ingest("garbage")
        state = aggregator.ingest(raw(1000))

        assert state.update_count == 2

    def test_snapshot_chain_map_read_only(self, aggregator):
        state = aggregator.ingest(raw(1000))

        with pytest.raises(TypeError):
            state.chains["Polkadot-9"] = state.get_chain("Polkadot-2004")

    def test_previous_snapshot_unchanged(self, aggregator):
        first = aggregator.ingest(raw(0))
        aggregator.ingest(raw(1000, ext=500))

        assert first.update_count == 1
        assert first.get_chain("Polkadot-2004").accumulated_extrinsics == 10


# ============================================================
# GLOBAL METRIC TESTS
# ============================================================

class TestGlobalMetrics:
    """Tests for pooled global metrics."""

    def test_pooled_windowed_tps(self, aggregator):
        aggregator.ingest(raw(0, ext=10, para_id=2004))
        aggregator.ingest(raw(500, ext=20, para_id=2000))
        aggregator.ingest(raw(1000, ext=10, para_id=2004))
        state = aggregator.ingest(raw(1500, ext=20, para_id=2000))

        # 60 extrinsics over a 1.5s pooled span
        assert state.windowed_tps == pytest.approx(40.0)
        assert state.observed_span_ms == 1500

    def test_global_ema_seeded_then_advanced(self, aggregator):
        first = aggregator.ingest(raw(0))
        second = aggregator.ingest(raw(1000))

        assert first.ema_tps == 0.0
        assert second.ema_tps == pytest.approx(0.2 * second.windowed_tps)

    def test_confidence_grows_and_clamps(self):
        aggregator = Aggregator(AggregationConfig(target_window_ms=2000, min_data_points=3))
        scores = [aggregator.ingest(raw(ts)).confidence for ts in range(0, 10_000, 1000)]

        assert scores == sorted(scores)
        assert scores[-1] == 1.0
        assert all(0.0 <= s <= 1.0 for s in scores)

    def test_record_gated_by_confidence(self):
        config = AggregationConfig(
            target_window_ms=2000,
            min_data_points=3,
            confidence_threshold=0.9,
        )
        aggregator = Aggregator(config)

        aggregator.ingest(raw(0))
        second = aggregator.ingest(raw(1000))
        assert second.windowed_tps == pytest.approx(20.0)
        assert second.record_tps == 0.0

        third = aggregator.ingest(raw(2000))
        assert third.is_confident(config.confidence_threshold)
        assert third.record_tps == pytest.approx(15.0)

    def test_last_timestamp_is_max_seen(self, aggregator):
        aggregator.ingest(raw(5000))
        state = aggregator.ingest(raw(3000))

        assert state.last_timestamp == 5000

    def test_top_chains_sorted(self, aggregator):
        for ts in (0, 1000):
            aggregator.ingest(raw(ts, ext=1, para_id=2000))
            aggregator.ingest(raw(ts, ext=50, para_id=2004))

        top = aggregator.get_state().top_chains(limit=1)

        assert [c.chain_id for c in top] == ["Polkadot-2004"]


# ============================================================
# SUBSCRIPTION TESTS
# ============================================================

class TestSubscriptions:
    """Tests for snapshot subscribers."""

    def test_called_in_registration_order(self, aggregator):
        calls = []
        aggregator.subscribe(lambda s: calls.append(("a", s.update_count)))
        aggregator.subscribe(lambda s: calls.append(("b", s.update_count)))

        aggregator.ingest(raw(0))

        assert calls == [("a", 1), ("b", 1)]

    def test_receives_returned_snapshot(self, aggregator):
        callback = MagicMock()
        aggregator.subscribe(callback)

        state = aggregator.ingest(raw(0))

        callback.assert_called_once_with(state)

    def test_subscriber_exception_propagates(self, aggregator):
        aggregator.subscribe(MagicMock(side_effect=RuntimeError("boom")))

        with pytest.raises(RuntimeError, match="boom"):
            aggregator.ingest(raw(0))

        # The update itself was applied
        assert aggregator.get_state().update_count == 1

    def test_unsubscribe(self, aggregator):
        callback = MagicMock()
        aggregator.subscribe(callback)

        assert aggregator.unsubscribe(callback) is True
        assert aggregator.unsubscribe(callback) is False

        aggregator.ingest(raw(0))
        callback.assert_not_called()


# ============================================================
# CLEANUP TESTS
# ============================================================

class TestCleanup:
    """Tests for clock-anchored cleanup."""

    def test_cleanup_prunes_idle_chain(self, aggregator, clock):
        aggregator.ingest(raw(0))
        aggregator.ingest(raw(1000))
        callback = MagicMock()
        aggregator.subscribe(callback)

        clock.set_time_ms(120_000)
        state = aggregator.cleanup()

        chain = state.get_chain("Polkadot-2004")
        assert chain is not None
        assert chain.history == ()
        assert state.windowed_tps == 0.0
        assert state.update_count == 2
        callback.assert_not_called()

    def test_cleanup_keeps_fresh_samples(self, aggregator):
        aggregator.ingest(raw(100_000))
        before = aggregator.get_state()

        assert aggregator.cleanup(now_ms=110_000) is before

    @pytest.mark.asyncio
    async def test_background_cleanup_runs(self, clock):
        aggregator = Aggregator(AggregationConfig(cleanup_interval_seconds=0.01), clock=clock)

        await aggregator.start_background_cleanup()
        assert aggregator.get_stats()["cleanup_running"] is True
        await asyncio.sleep(0.05)
        await aggregator.stop_background_cleanup()

        stats = aggregator.get_stats()
        assert stats["cleanups"] >= 1
        assert stats["cleanup_running"] is False

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, aggregator):
        await aggregator.stop_background_cleanup()
        await aggregator.start_background_cleanup()
        await aggregator.stop_background_cleanup()
        await aggregator.stop_background_cleanup()


# ============================================================
# CONCURRENCY TESTS
# ============================================================

class TestConcurrency:
    """Tests for serialized ingestion."""

    def test_concurrent_ingest_counts_every_update(self, aggregator):
        def worker(para_id):
            for i in range(200):
                aggregator.ingest(raw(i * 10, ext=1, para_id=para_id))

        threads = [threading.Thread(target=worker, args=(2000 + n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        state = aggregator.get_state()
        assert state.update_count == 800
        assert sum(c.accumulated_extrinsics for c in state.chains.values()) == 800
