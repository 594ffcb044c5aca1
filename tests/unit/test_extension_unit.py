# File: tests/unit/test_extension_unit.py

import pytest

from rustowl_client.extension import Extension
from rustowl_client.server.bootstrap import InstallationError
from rustowl_client.session.transitions import SessionState


@pytest.fixture
def extension(host, store, client_factory, resolver, mocker):
    ext = Extension(host, store, "/work", client_factory=client_factory)
    mocker.patch.object(ext.supervisor, "resolver", resolver)
    return ext


@pytest.mark.asyncio
async def test_activate_starts_session_and_shows_mode(extension, host, client_factory):
    assert await extension.activate()

    assert extension.supervisor.state.session is SessionState.RUNNING
    assert len(client_factory.live) == 1
    assert host.status == ("$(check) RustOwl", "Display mode: selected")


@pytest.mark.asyncio
async def test_activate_failure_is_shown_once_and_not_raised(extension, host, resolver):
    resolver.resolve.side_effect = InstallationError("RustOwl installation failed. Please install manually:\ngit clone ...")

    assert await extension.activate() is False

    errors = [text for level, text in host.messages if level == "error"]
    assert len(errors) == 1
    assert errors[0].startswith("Failed to start RustOwl\nRustOwl installation failed.")
    assert host.status == ("$(circle-slash) RustOwl", "RustOwl server not running")


@pytest.mark.asyncio
async def test_config_change_reaches_router(extension, store, host):
    await extension.activate()
    store.update("display.mode", "manual", persist=False)
    assert host.status == ("$(tools) RustOwl", "Display mode: manual")


@pytest.mark.asyncio
async def test_deactivate_stops_everything(extension, store, host, client_factory):
    await extension.activate()
    await extension.router.hover()
    assert host.live_paint()

    await extension.deactivate()

    assert client_factory.live == []
    assert host.styles == {}
    assert extension.supervisor.state.session is SessionState.STOPPED
    store.update("display.mode", "hover", persist=False)
    assert host.status[1] != "Display mode: hover"


def test_default_resolver_is_wired(host, store):
    ext = Extension(host, store, "/work")
    assert ext.supervisor.resolver.store is store
    assert ext.supervisor.resolver.host is host
