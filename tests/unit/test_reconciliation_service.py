import asyncio

import pytest

from core.schemas.events import EventType
from services.reconciliation import ReconciliationAction, ReconciliationService
from tests.mocks.venues import FailingVenue, RecordingVenue


class GatedVenue(RecordingVenue):
    """Blocks get_positions until the test opens the gate."""

    def __init__(self):
        super().__init__("gated")
        self.gate = asyncio.Event()
        self.position_calls = 0

    async def get_positions(self):
        self.position_calls += 1
        await self.gate.wait()
        return await super().get_positions()


@pytest.fixture
def make_reconciler(test_settings, portfolio_service, risk_manager, event_bus):
    def make(venue):
        return ReconciliationService(test_settings, portfolio_service, venue, risk_manager, event_bus)

    return make


@pytest.mark.asyncio
async def test_matching_positions_report_nothing(make_reconciler, portfolio_service, recording_venue, trade_factory):
    trade = trade_factory("ACME", "BUY", 10, 100)
    recording_venue.positions = [trade]
    await portfolio_service.record_external_trade(trade)

    result = await make_reconciler(recording_venue).reconcile_periodic()

    assert not result.has_discrepancies
    assert result.broker_position_count == 1
    assert result.local_position_count == 1


@pytest.mark.asyncio
async def test_startup_syncs_symbols_missing_locally(make_reconciler, portfolio_service, recording_venue,
                                                     trade_factory, event_collector):
    recording_venue.positions = [
        trade_factory("ACME", "BUY", 10, 100),
        trade_factory("ACME", "SELL", 4, 105),
    ]
    reconciler = make_reconciler(recording_venue)

    result = await reconciler.reconcile_on_startup()

    assert result.synced_symbols == ["ACME"]
    assert [d.action for d in result.discrepancies] == [ReconciliationAction.SYNC_FROM_BROKER]
    assert (await portfolio_service.get_position("ACME")).net_quantity == 6
    assert len(event_collector.of_type(EventType.RECONCILIATION_COMPLETED)) == 1

    # A second pass finds the ledger in agreement and changes nothing
    again = await reconciler.reconcile_on_startup()
    assert not again.has_discrepancies
    assert len(await portfolio_service.list_trades()) == 2


@pytest.mark.asyncio
async def test_periodic_run_never_auto_syncs(make_reconciler, portfolio_service, recording_venue, trade_factory):
    recording_venue.positions = [trade_factory("ACME", "BUY", 10, 100)]

    result = await make_reconciler(recording_venue).reconcile_periodic()

    assert result.synced_symbols == []
    assert result.discrepancies[0].action is ReconciliationAction.SYNC_FROM_BROKER
    assert await portfolio_service.list_trades() == []


@pytest.mark.asyncio
async def test_auto_sync_can_be_disabled(make_reconciler, test_settings, portfolio_service, recording_venue,
                                         trade_factory):
    test_settings.reconciliation.auto_sync_on_startup = False
    recording_venue.positions = [trade_factory("ACME", "BUY", 10, 100)]

    result = await make_reconciler(recording_venue).reconcile_on_startup()

    assert result.synced_symbols == []
    assert await portfolio_service.list_trades() == []


@pytest.mark.asyncio
async def test_mismatches_flagged_for_manual_review(make_reconciler, portfolio_service, recording_venue,
                                                   trade_factory, risk_manager):
    # Venue flat while the ledger holds TCS; both hold ACME at different sizes
    await portfolio_service.record_external_trade(trade_factory("ACME", "BUY", 10, 100))
    await portfolio_service.record_external_trade(trade_factory("TCS", "BUY", 5, 50))
    recording_venue.positions = [trade_factory("ACME", "BUY", 7, 100)]

    result = await make_reconciler(recording_venue).reconcile_on_startup()

    by_symbol = {d.symbol: d for d in result.discrepancies}
    assert by_symbol["ACME"].action is ReconciliationAction.MANUAL_REVIEW
    assert by_symbol["ACME"].difference == -3
    assert by_symbol["TCS"].action is ReconciliationAction.MANUAL_REVIEW
    assert by_symbol["TCS"].broker_quantity == 0
    assert result.synced_symbols == []
    # Nothing local is touched
    assert (await portfolio_service.get_position("ACME")).net_quantity == 10
    assert (await portfolio_service.get_position("TCS")).net_quantity == 5
    assert risk_manager.get_status().manual_review_symbols == ["ACME", "TCS"]


@pytest.mark.asyncio
async def test_repeated_periodic_runs_report_the_same_discrepancies(make_reconciler, portfolio_service,
                                                                  recording_venue, trade_factory):
    await portfolio_service.record_external_trade(trade_factory("ACME", "BUY", 10, 100))
    await portfolio_service.record_external_trade(trade_factory("TCS", "BUY", 5, 50))
    recording_venue.positions = [trade_factory("ACME", "BUY", 7, 100), trade_factory("INFY", "BUY", 2, 10)]
    reconciler = make_reconciler(recording_venue)

    first = await reconciler.reconcile_periodic()
    second = await reconciler.reconcile_periodic()

    assert len(first.discrepancies) == 3
    assert [d.model_dump() for d in second.discrepancies] == [d.model_dump() for d in first.discrepancies]
    assert second.synced_symbols == []
    assert len(await portfolio_service.list_trades()) == 2
    assert recording_venue.placed_orders == []


@pytest.mark.asyncio
async def test_differences_within_tolerance_are_ignored(make_reconciler, portfolio_service, recording_venue,
                                                        trade_factory):
    await portfolio_service.record_external_trade(trade_factory("ACME", "BUY", 10, 100))
    recording_venue.positions = [trade_factory("ACME", "BUY", 10.0005, 100)]

    result = await make_reconciler(recording_venue).reconcile_periodic()

    assert not result.has_discrepancies


@pytest.mark.asyncio
async def test_unreachable_venue_returns_empty_result(make_reconciler):
    reconciler = make_reconciler(FailingVenue())

    result = await reconciler.reconcile_periodic()

    assert not result.has_discrepancies
    assert result.discrepancies == []
    assert reconciler.get_last_result() is None
    assert not reconciler.is_reconciling


@pytest.mark.asyncio
async def test_concurrent_run_returns_cached_result(make_reconciler, trade_factory):
    venue = GatedVenue()
    venue.positions = [trade_factory("ACME", "BUY", 10, 100)]
    reconciler = make_reconciler(venue)

    first = asyncio.create_task(reconciler.reconcile_periodic())
    while not reconciler.is_reconciling:
        await asyncio.sleep(0)

    skipped = await reconciler.reconcile_periodic()
    assert skipped.discrepancies == []
    assert venue.position_calls == 1

    venue.gate.set()
    completed = await first
    assert completed.has_discrepancies
    assert not reconciler.is_reconciling
    assert reconciler.get_discrepancies()[0].symbol == "ACME"


@pytest.mark.asyncio
async def test_sync_symbol_from_broker_replays_one_symbol(make_reconciler, portfolio_service, recording_venue,
                                                          trade_factory):
    recording_venue.positions = [
        trade_factory("ACME", "BUY", 10, 100),
        trade_factory("TCS", "BUY", 5, 50),
    ]
    reconciler = make_reconciler(recording_venue)

    result = await reconciler.sync_symbol_from_broker("acme")

    assert (await portfolio_service.get_position("ACME")).net_quantity == 10
    assert await portfolio_service.get_position("TCS") is None
    assert [d.symbol for d in result.discrepancies] == ["TCS"]
