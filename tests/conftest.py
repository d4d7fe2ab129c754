import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from config.signaling_config import SignalingSettings
from room_manager import CloseFrame
from signaling import SignalingRelay


def drain(connection):
    """Pop everything queued on a connection's outbox, decoding JSON frames."""
    messages = []
    while True:
        try:
            item = connection.outbox.get_nowait()
        except asyncio.QueueEmpty:
            if connection.pending_close is not None:
                messages.append(connection.pending_close)
            return messages
        if isinstance(item, CloseFrame):
            messages.append(item)
        else:
            messages.append(json.loads(item))


def envelope(action, **payload):
    return json.dumps({"action": action, "payload": payload})


@pytest.fixture
def settings():
    return SignalingSettings(outbox_size=64, close_superseded=True, announce_joins=True)


@pytest.fixture
def relay(settings):
    return SignalingRelay(settings)


@pytest.fixture
def client():
    from main import app

    with TestClient(app) as test_client:
        yield test_client
