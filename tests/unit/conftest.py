"""Shared fixtures for unit tests."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from lares_controller.config import ControllerConfig, PanelConfig
from tests.helpers.panel import FakePanelSocket, RecordingListener, make_dummy_pin


@pytest.fixture
def dummy_pin() -> str:
    return make_dummy_pin()


@pytest.fixture
def panel_config(dummy_pin: str) -> PanelConfig:
    return PanelConfig(host="192.0.2.10", pin=dummy_pin, sender="test_client", login_timeout=0.5)


@pytest.fixture
def controller_config(panel_config: PanelConfig) -> ControllerConfig:
    return ControllerConfig(panel=panel_config, devices_file=None, metrics_port=0)


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def socket_factory() -> Callable[..., Callable[[], FakePanelSocket]]:
    """Build a factory that hands out the given sockets in order, then fresh ones."""

    def _make(*sockets: FakePanelSocket) -> Callable[[], FakePanelSocket]:
        queue = list(sockets)
        created: list[FakePanelSocket] = []

        def _factory() -> FakePanelSocket:
            socket = queue.pop(0) if queue else FakePanelSocket()
            created.append(socket)
            return socket

        _factory.created = created  # type: ignore[attr-defined]
        return _factory

    return _make
