"""
Tests for Browserbase provisioning and the in-process session registry.
"""

from unittest.mock import AsyncMock

import aiohttp
import pytest

from lexis_search.core.config import BrowserbaseConfig
from lexis_search.core.errors import FlowError, SessionUnavailable
from lexis_search.core.session import (
    BrowserAttachment,
    BrowserbaseProvisioner,
    SessionBinding,
    SessionRegistry,
)


@pytest.fixture
def bb_config():
    return BrowserbaseConfig(api_key="bb-key", project_id="proj-1")


def make_provisioner(config, responses):
    provisioner = BrowserbaseProvisioner(config)
    provisioner._request = AsyncMock(side_effect=responses)
    return provisioner


class TestBrowserbaseProvisioner:
    """Tests for session create / retrieve / live view."""

    def test_api_key_required(self):
        with pytest.raises(ValueError):
            BrowserbaseProvisioner(BrowserbaseConfig())

    @pytest.mark.asyncio
    async def test_create_keeps_session_alive(self, bb_config):
        provisioner = make_provisioner(bb_config, [(201, {"id": "sess-9", "connectUrl": "wss://bb/sess-9"})])

        binding = await provisioner.create()

        assert binding == SessionBinding(session_id="sess-9", connect_url="wss://bb/sess-9")
        method, path, payload = provisioner._request.await_args.args
        assert (method, path) == ("POST", "/v1/sessions")
        assert payload == {"projectId": "proj-1", "keepAlive": True}

    @pytest.mark.asyncio
    async def test_create_builds_connect_url(self, bb_config):
        provisioner = make_provisioner(bb_config, [(201, {"id": "sess-9"})])

        binding = await provisioner.create()

        assert binding.connect_url.startswith("wss://connect.browserbase.com?")
        assert "sessionId=sess-9" in binding.connect_url

    @pytest.mark.asyncio
    async def test_create_requires_project(self):
        provisioner = make_provisioner(BrowserbaseConfig(api_key="bb-key"), [])

        with pytest.raises(ValueError):
            await provisioner.create()

    @pytest.mark.asyncio
    async def test_create_failure(self, bb_config):
        provisioner = make_provisioner(bb_config, [(401, {"message": "Unauthorized"})])

        with pytest.raises(FlowError) as exc_info:
            await provisioner.create()

        assert "401" in exc_info.value.message

    def test_connect_url_hidden_from_repr(self):
        binding = SessionBinding(session_id="sess-9", connect_url="wss://bb?apiKey=secret")

        assert "secret" not in repr(binding)

    @pytest.mark.asyncio
    async def test_retrieve_running(self, bb_config):
        provisioner = make_provisioner(bb_config, [(200, {"id": "sess-9", "status": "RUNNING"})])

        binding = await provisioner.retrieve("sess-9")

        assert binding.session_id == "sess-9"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 404, 422])
    async def test_retrieve_unknown(self, bb_config, status):
        provisioner = make_provisioner(bb_config, [(status, {})])

        with pytest.raises(SessionUnavailable) as exc_info:
            await provisioner.retrieve("nope")

        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_retrieve_completed(self, bb_config):
        provisioner = make_provisioner(bb_config, [(200, {"id": "sess-9", "status": "COMPLETED"})])

        with pytest.raises(SessionUnavailable) as exc_info:
            await provisioner.retrieve("sess-9")

        assert "COMPLETED" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_live_view_url(self, bb_config):
        provisioner = make_provisioner(
            bb_config, [(200, {"debuggerFullscreenUrl": "https://live/sess-9", "debuggerUrl": "https://dbg"})]
        )

        assert await provisioner.live_view_url("sess-9") == "https://live/sess-9"

    @pytest.mark.asyncio
    async def test_release_requests_session_end(self, bb_config):
        provisioner = make_provisioner(bb_config, [(200, {"id": "sess-9", "status": "COMPLETED"})])

        assert await provisioner.release("sess-9") is True
        method, path, payload = provisioner._request.await_args.args
        assert (method, path) == ("POST", "/v1/sessions/sess-9")
        assert payload == {"status": "REQUEST_RELEASE", "projectId": "proj-1"}

    @pytest.mark.asyncio
    async def test_release_rejected(self, bb_config):
        provisioner = make_provisioner(bb_config, [(404, {"message": "Not found"})])

        assert await provisioner.release("gone") is False

    @pytest.mark.asyncio
    async def test_release_transport_error(self, bb_config):
        provisioner = make_provisioner(bb_config, [aiohttp.ClientError("connection reset")])

        assert await provisioner.release("sess-9") is False

    @pytest.mark.asyncio
    async def test_live_view_url_unavailable(self, bb_config):
        provisioner = make_provisioner(bb_config, [aiohttp.ClientError("boom")])

        assert await provisioner.live_view_url("sess-9") is None


class TestBrowserAttachment:
    """Tests for closing CDP connections."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, attachment):
        await attachment.close()
        await attachment.close()

        assert attachment.closed is True
        attachment.browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_swallows_disconnect_errors(self, binding, fake_page):
        browser = AsyncMock()
        browser.close.side_effect = RuntimeError("already disconnected")
        attachment = BrowserAttachment(binding=binding, page=fake_page, browser=browser)

        await attachment.close()

        assert attachment.closed is True


class TestSessionRegistry:
    """Tests for suspended-connection bookkeeping."""

    def test_put_and_pop(self, attachment):
        registry = SessionRegistry()
        registry.put(attachment)

        assert "sess-1" in registry
        assert registry.pop("sess-1") is attachment
        assert "sess-1" not in registry
        assert registry.pop("sess-1") is None

    def test_closed_attachment_not_returned(self, attachment):
        registry = SessionRegistry()
        registry.put(attachment)
        attachment.closed = True

        assert registry.pop("sess-1") is None

    @pytest.mark.asyncio
    async def test_close_all(self, attachment):
        registry = SessionRegistry()
        registry.put(attachment)

        await registry.close_all()

        assert len(registry) == 0
        assert attachment.closed is True
