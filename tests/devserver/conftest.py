"""开发服务器测试 fixture -- 绕过 lifespan，手动设置 app.state"""

import pytest
from httpx import ASGITransport, AsyncClient

from synergysync.core.clock import ManualClock
from synergysync.devserver.main import create_app
from synergysync.devserver.services.workspace import Workspace
from synergysync.transport.local_hub import LocalPushHub


@pytest.fixture
def hub() -> LocalPushHub:
    return LocalPushHub()


@pytest.fixture
def workspace(hub: LocalPushHub, clock: ManualClock) -> Workspace:
    """p-1 由 u-alice 所有，u-bob / u-carol 为成员，u-dave 不是成员"""
    ws = Workspace(hub, clock=clock)
    ws.add_user("u-alice", "Alice Chen")
    ws.add_user("u-bob", "Bob Li")
    ws.add_user("u-carol", "Carol Wang")
    ws.add_user("u-dave", "Dave")
    ws.add_project("p-1", "Launch", "u-alice", ["u-bob", "u-carol"])
    return ws


@pytest.fixture
def app(workspace: Workspace, hub: LocalPushHub):
    app = create_app()
    app.state.workspace = workspace
    app.state.push_hub = hub
    return app


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
