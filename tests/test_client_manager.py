import os

import pytest
from pytest_mock import MockerFixture

from client_manager import ClientManager, safe_client_start


@pytest.fixture
def manager(tmp_path) -> ClientManager:
    return ClientManager(lock_file=tmp_path / "driver_client.lock")


def test_create_lock_writes_own_pid(manager):
    assert manager.create_lock()
    assert manager.get_pid() == os.getpid()

    manager.remove_lock()
    assert not manager.is_running()


def test_lock_held_by_live_process(manager, mocker: MockerFixture):
    manager.lock_file.write_text("4242")
    mocker.patch('client_manager.psutil.pid_exists', return_value=True)

    assert not manager.create_lock()
    assert manager.get_pid() == 4242


def test_stale_lock_is_replaced(manager, mocker: MockerFixture):
    manager.lock_file.write_text("4242")
    mocker.patch('client_manager.psutil.pid_exists', return_value=False)

    assert manager.create_lock()
    assert manager.get_pid() == os.getpid()


def test_corrupted_lock_is_replaced(manager):
    manager.lock_file.write_text("not a pid")

    assert manager.get_pid() is None
    assert manager.create_lock()
    assert manager.get_pid() == os.getpid()


@pytest.mark.asyncio
async def test_safe_start_releases_the_lock(manager):
    ran = []

    async def start():
        ran.append(manager.is_running())

    assert await safe_client_start(start, manager)
    assert ran == [True]
    assert not manager.is_running()


@pytest.mark.asyncio
async def test_safe_start_refuses_a_second_instance(manager, mocker: MockerFixture):
    manager.lock_file.write_text("4242")
    mocker.patch('client_manager.psutil.pid_exists', return_value=True)
    start = mocker.AsyncMock()

    assert not await safe_client_start(start, manager)
    start.assert_not_awaited()
    assert manager.is_running()


@pytest.mark.asyncio
async def test_safe_start_reraises_and_cleans_up(manager):
    async def start():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await safe_client_start(start, manager)
    assert not manager.is_running()


def test_default_lock_sits_next_to_the_session_database():
    from config.config import SESSION_DB_PATH

    lock_file = ClientManager().lock_file
    assert lock_file.parent == SESSION_DB_PATH.parent
    assert lock_file.suffix == '.lock'
