"""tests/core 测试配置 -- 领域 Store fixture"""

import pytest

from synergysync.core.models import UserRef
from synergysync.core.stores import MessageStore, NotificationStore, TaskBoardStore

MEMBERS = [
    UserRef(id="u-1", name="Me"),
    UserRef(id="u-2", name="Alice Chen"),
    UserRef(id="u-3", name="Bob"),
]


@pytest.fixture
def task_store(fake_api, config, clock) -> TaskBoardStore:
    """项目 p-1 的看板 Store"""
    store = TaskBoardStore(fake_api, "p-1", user_id="u-1", config=config, clock=clock)
    yield store
    store.close()


@pytest.fixture
def message_store(fake_api, config, clock) -> MessageStore:
    """项目 p-1 的讨论区 Store（含成员目录）"""
    store = MessageStore(
        fake_api,
        "p-1",
        user_id="u-1",
        members=MEMBERS,
        config=config,
        clock=clock,
    )
    yield store
    store.close()


@pytest.fixture
def notification_store(fake_api, config, clock) -> NotificationStore:
    """用户 u-1 的通知 Store"""
    store = NotificationStore(fake_api, "u-1", user_id="u-1", config=config, clock=clock)
    yield store
    store.close()
