import math
from datetime import datetime, timezone

import pytest

from api.schemas import EarningsPayload, decode_order, decode_withdrawals
from handlers.earnings import compute_earnings
from config.config import TIMEZONE

# 2024-06-15 10:00 in Yogyakarta
NOW = datetime(2024, 6, 15, 10, 0, tzinfo=TIMEZONE)


def _completed(order_id, price, completed_at=None, created_at=None):
    return decode_order({
        'id': order_id, 'status': 'completed', 'driver_id': '1', 'price': price,
        'completed_at': completed_at, 'created_at': created_at,
    })


@pytest.fixture
def todays_orders():
    return [
        _completed('O1', 15000, completed_at='2024-06-15T01:00:00Z'),
        _completed('O2', 18000, completed_at='2024-06-15T02:00:00Z'),
        _completed('O3', 12000, completed_at='2024-06-15T02:30:00Z'),
    ]


def test_total_is_the_sum_of_completed_prices(todays_orders):
    snapshot = compute_earnings(todays_orders, now=NOW)

    assert snapshot.total_earnings == 45000
    assert snapshot.today_earnings == 45000
    assert snapshot.monthly_earnings == 45000
    assert snapshot.completed_trip_count == 3
    assert snapshot.today_trip_count == 3
    assert snapshot.average_per_trip == 15000


def test_no_orders_means_zero_not_nan():
    snapshot = compute_earnings([], [], now=NOW)

    for value in (snapshot.total_earnings, snapshot.today_earnings, snapshot.monthly_earnings,
                  snapshot.average_per_trip, snapshot.available_balance):
        assert value == 0
        assert not math.isnan(value)
    assert snapshot.completed_trip_count == 0


def test_days_and_months_follow_jakarta_time():
    orders = [
        # 2024-06-14 17:30 UTC is already 00:30 on the 15th in Yogyakarta
        _completed('late', 10000, completed_at='2024-06-14T17:30:00Z'),
        # 2024-05-31 16:59 UTC is still May in Yogyakarta
        _completed('may', 20000, completed_at='2024-05-31T16:59:00Z'),
        # No completion time: the creation time decides
        _completed('created', 5000, created_at='2024-06-10T03:00:00Z'),
        # No timestamps at all: counts towards the total only
        _completed('undated', 7000),
    ]
    snapshot = compute_earnings(orders, now=NOW)

    assert snapshot.today_earnings == 10000
    assert snapshot.today_trip_count == 1
    assert snapshot.monthly_earnings == 15000
    assert snapshot.monthly_trip_count == 2
    assert snapshot.total_earnings == 42000


def test_non_completed_orders_are_ignored(todays_orders):
    pending = decode_order({'id': 'P', 'status': 'accepted', 'price': 99000})
    assert compute_earnings(todays_orders + [pending], now=NOW).total_earnings == 45000


def test_server_aggregates_win_when_present(todays_orders):
    server = EarningsPayload(total_earnings=500000, today_earnings=45000, completed_orders=40)
    snapshot = compute_earnings(todays_orders, server=server, now=NOW)

    assert snapshot.total_earnings == 500000
    assert snapshot.completed_trip_count == 40
    assert snapshot.average_per_trip == 12500
    # Missing monthly figures are recomputed locally
    assert snapshot.monthly_earnings == 45000
    assert snapshot.monthly_trip_count == 3


def test_server_zero_contradicted_by_orders_is_not_reported(todays_orders):
    server = EarningsPayload(total_earnings=0, today_earnings=0, today_trips=0)
    snapshot = compute_earnings(todays_orders, server=server, now=NOW)

    assert snapshot.total_earnings == 45000
    assert snapshot.today_earnings == 45000
    assert snapshot.today_trip_count == 3


def test_withdrawals_reduce_the_available_balance(todays_orders):
    withdrawals = decode_withdrawals([
        {'id': 1, 'amount': 10000, 'status': 'completed'},
        {'id': 2, 'amount': 5000, 'status': 'approved'},
        {'id': 3, 'amount': 20000, 'status': 'pending'},
        {'id': 4, 'amount': 30000, 'status': 'rejected'},
    ])
    snapshot = compute_earnings(todays_orders, withdrawals, now=NOW)

    assert snapshot.completed_withdrawals == 15000
    assert snapshot.pending_withdrawals == 20000
    assert snapshot.available_balance == 10000


def test_balance_never_goes_negative():
    withdrawals = decode_withdrawals([{'id': 1, 'amount': 50000, 'status': 'completed'}])
    assert compute_earnings([], withdrawals, now=NOW).available_balance == 0


def test_now_in_another_timezone_is_converted():
    now = datetime(2024, 6, 15, 3, 0, tzinfo=timezone.utc)
    snapshot = compute_earnings([_completed('O1', 15000, completed_at='2024-06-15T01:00:00Z')], now=now)
    assert snapshot.today_earnings == 15000


@pytest.mark.asyncio
async def test_refresh_uses_server_payload_and_withdrawals(authority, driver_client, login_as):
    authority.add_order('O1', status='completed', driver_id='1', price=15000)
    authority.earnings = {'total_earnings': 250000, 'completed_orders': 10}
    authority.withdrawals['1'] = [{'id': 1, 'amount': 50000, 'status': 'completed', 'bank_name': 'BCA'}]
    await login_as(driver_client)
    await driver_client.orders.refresh()

    snapshot = await driver_client.earnings.refresh()

    assert snapshot.total_earnings == 250000
    assert snapshot.completed_trip_count == 10
    assert snapshot.available_balance == 200000
    assert driver_client.store.state.earnings == snapshot


@pytest.mark.asyncio
async def test_refresh_survives_missing_endpoints(authority, driver_client, login_as):
    authority.add_order('O1', status='completed', driver_id='1', price=15000)
    authority.failures['/api/driver/earnings/'] = 500
    authority.failures['/api/driver/withdrawals/'] = 500
    await login_as(driver_client)
    await driver_client.orders.refresh()

    snapshot = await driver_client.earnings.refresh()

    assert snapshot.total_earnings == 15000


def test_server_figures_below_local_records_are_not_reported(todays_orders):
    # Aggregates fetched before the last two trips were completed
    server = EarningsPayload(total_earnings=15000, today_earnings=15000, completed_orders=1, today_trips=1)
    snapshot = compute_earnings(todays_orders, server=server, now=NOW)

    assert snapshot.total_earnings == 45000
    assert snapshot.today_earnings == 45000
    assert snapshot.completed_trip_count == 3
    assert snapshot.today_trip_count == 3
    assert snapshot.monthly_earnings <= snapshot.total_earnings
