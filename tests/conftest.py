# tests/conftest.py
import itertools
import os
import sys
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from apscheduler.schedulers.asyncio import AsyncIOScheduler

# Add the project root to sys.path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from api.client import PedicabAPI
from api.schemas import Role
from database.storage import MemorySessionStorage
from handlers import setup_driver_client


class FakeAuthority:
    """
    In-process stand-in for the backend. Enforces the rules the client relies
    on: bearer tokens, and a single winner per accepted order.
    """

    def __init__(self):
        self.accounts = {}      # username -> (password, user dict)
        self.tokens = {}        # token -> user dict
        self.orders = {}        # order id -> order dict
        self.online = {}        # user id -> bool
        self.withdrawals = {}   # user id -> list of withdrawal dicts
        self.earnings = None    # earnings payload, or None for an older backend
        self.locations = []
        self.requests = []      # (method, path, user id or None)
        self.failures = {}      # path -> HTTP status forced on every request
        self._token_ids = itertools.count(1)
        self._withdrawal_ids = itertools.count(1)
        self.base_url = None

    # --- Fixtures helpers ---

    def add_account(self, username, password, user_id, name, role='driver'):
        self.accounts[username] = (password, {
            'id': user_id, 'username': username, 'name': name, 'role': role,
        })

    def add_order(self, order_id, status='pending', driver_id=None, price=15000, **extra):
        self.orders[order_id] = {
            'id': order_id,
            'order_number': f"BJ-{order_id}",
            'status': status,
            'driver_id': driver_id,
            'customer_name': 'Sari',
            'whatsappNumber': '081234567890',
            'pickup_location': 'Malioboro',
            'distanceOption': {'destination': 'Kraton', 'price': price},
            'distance_km': 2.5,
            'created_at': datetime.now(timezone.utc).isoformat(),
            **extra,
        }

    def revoke(self, token):
        self.tokens.pop(token, None)

    def calls_to(self, method, path):
        return [r for r in self.requests if r[0] == method and r[1] == path]

    # --- Application ---

    def app(self) -> web.Application:
        @web.middleware
        async def auth(request, handler):
            path = request.path
            user = None
            header = request.headers.get('Authorization', '')
            if header.startswith('Bearer '):
                user = self.tokens.get(header[len('Bearer '):])
            self.requests.append((request.method, path, user['id'] if user else None))

            if path in self.failures:
                return web.json_response({'message': 'Forced failure'}, status=self.failures[path])
            if path != '/api/auth/login' and user is None:
                return web.json_response({'message': 'Unauthorized'}, status=401)
            request['user'] = user
            return await handler(request)

        app = web.Application(middlewares=[auth])
        app.router.add_post('/api/auth/login', self.login)
        app.router.add_get('/api/profile/', self.profile)
        app.router.add_get('/api/driver/orders/', self.driver_orders)
        app.router.add_get('/api/driver/{driver_id}/orders/', self.orders_by_driver)
        app.router.add_put('/api/driver/orders/{order_id}/accept', self.accept)
        app.router.add_put('/api/driver/orders/{order_id}/complete', self.complete)
        app.router.add_put('/api/orders/{order_id}', self.update_order)
        app.router.add_get('/api/driver/earnings/', self.get_earnings)
        app.router.add_get('/api/driver/withdrawals/', self.list_withdrawals)
        app.router.add_post('/api/driver/withdrawals/', self.create_withdrawal)
        app.router.add_get('/api/driver/online-status/', self.get_online)
        app.router.add_put('/api/driver/online-status/', self.set_online)
        app.router.add_post('/api/driver/location/', self.location)
        return app

    async def login(self, request):
        body = await request.json()
        account = self.accounts.get(body.get('username'))
        if account is None or account[0] != body.get('password'):
            return web.json_response({'message': 'Username atau password salah'}, status=401)
        token = f"token-{next(self._token_ids)}"
        self.tokens[token] = account[1]
        return web.json_response({'token': token, 'user': account[1]})

    async def profile(self, request):
        return web.json_response({'user': request['user']})

    def _visible_to(self, user_id):
        return [
            order for order in self.orders.values()
            if (order['status'] == 'pending' and order['driver_id'] is None) or order['driver_id'] == user_id
        ]

    async def driver_orders(self, request):
        return web.json_response({'orders': self._visible_to(request['user']['id'])})

    async def orders_by_driver(self, request):
        return web.json_response({'orders': self._visible_to(request.match_info['driver_id'])})

    async def accept(self, request):
        order = self.orders.get(request.match_info['order_id'])
        if order is None:
            return web.json_response({'message': 'Order not found'}, status=404)
        if order['status'] != 'pending' or order['driver_id'] is not None:
            return web.json_response({'message': 'Order already accepted'}, status=409)
        order['status'] = 'accepted'
        order['driver_id'] = request['user']['id']
        order['accepted_at'] = datetime.now(timezone.utc).isoformat()
        return web.json_response({'message': 'Order accepted', 'order': order})

    async def complete(self, request):
        order = self.orders.get(request.match_info['order_id'])
        if order is None or order['driver_id'] != request['user']['id']:
            return web.json_response({'message': 'Order not found'}, status=404)
        if order['status'] != 'completed':
            order['status'] = 'completed'
            order['completed_at'] = datetime.now(timezone.utc).isoformat()
        return web.json_response({'message': 'Order completed', 'order': order})

    async def update_order(self, request):
        order = self.orders.get(request.match_info['order_id'])
        if order is None:
            return web.json_response({'message': 'Order not found'}, status=404)
        body = await request.json()
        order['status'] = body['status']
        return web.json_response({'order': order})

    async def get_earnings(self, request):
        if self.earnings is None:
            return web.json_response({})
        return web.json_response({'earnings': self.earnings})

    async def list_withdrawals(self, request):
        return web.json_response({'withdrawals': self.withdrawals.get(request['user']['id'], [])})

    async def create_withdrawal(self, request):
        body = await request.json()
        withdrawal = {
            'id': next(self._withdrawal_ids),
            'status': 'pending',
            'created_at': datetime.now(timezone.utc).isoformat(),
            **body,
        }
        self.withdrawals.setdefault(request['user']['id'], []).append(withdrawal)
        return web.json_response({'withdrawal': withdrawal}, status=201)

    async def get_online(self, request):
        return web.json_response({'is_online': self.online.get(request['user']['id'], False)})

    async def set_online(self, request):
        body = await request.json()
        self.online[request['user']['id']] = bool(body['is_online'])
        return web.json_response({'message': 'Status updated', 'is_online': bool(body['is_online'])})

    async def location(self, request):
        self.locations.append((request['user']['id'], await request.json()))
        return web.json_response({'message': 'Location updated'})


@pytest_asyncio.fixture
async def authority():
    """A running fake authority with two drivers and an admin."""
    fake = FakeAuthority()
    fake.add_account('budi', 'rahasia', '1', 'Budi Santoso')
    fake.add_account('agus', 'rahasia', '2', 'Agus Wibowo')
    fake.add_account('admin', 'rahasia', '9', 'Admin', role='admin')
    server = TestServer(fake.app())
    await server.start_server()
    fake.base_url = str(server.make_url('/api'))
    yield fake
    await server.close()


@pytest_asyncio.fixture
async def api(authority):
    client = PedicabAPI(base_url=authority.base_url, timeout=5)
    await client.start()
    yield client
    await client.close()


@pytest.fixture
def scheduler():
    """A scheduler that is never started: jobs are registered but only run when a test calls them."""
    return AsyncIOScheduler(timezone='Asia/Jakarta')


@pytest_asyncio.fixture
async def make_driver_client(authority, scheduler):
    """Builds independent driver clients, each with its own HTTP session and storage."""
    created = []

    async def _make(storage=None, location_provider=None):
        api = PedicabAPI(base_url=authority.base_url, timeout=5)
        await api.start()
        client = setup_driver_client(api, storage or MemorySessionStorage(), scheduler, location_provider)
        created.append((client, api))
        return client

    yield _make
    for client, api in created:
        await client.shutdown()
        await api.close()


@pytest_asyncio.fixture
async def driver_client(make_driver_client):
    return await make_driver_client()


@pytest.fixture
def login_as():
    """Logs a driver client in against the fake authority."""
    async def _login(client, username='budi', role=Role.DRIVER):
        return await client.sessions.login(role, username, 'rahasia')
    return _login
