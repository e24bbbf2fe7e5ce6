"""
Tests for environment configuration and runtime wiring.
"""

from unittest.mock import AsyncMock

import pytest

from lexis_search.core.config import DEFAULT_PORTAL_URL, FlowConfig, load_config
from lexis_search.core.context import RuntimeContext
from lexis_search.core.session import BrowserbaseProvisioner
from lexis_search.core.solver_client import RemoteSolverClient


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self):
        config = load_config({})

        assert config.portal_url == DEFAULT_PORTAL_URL
        assert config.type_delay_ms == 35
        assert config.option_timeout_ms == 5000
        assert config.browserbase.keep_alive is True
        assert config.captcha.solver_api_key is None
        assert config.captcha.remote_solver_default is False
        assert config.require_captcha_cleared_on_resume is False
        assert config.screenshot_dir is None

    def test_environment_values(self):
        config = load_config({
            "BROWSERBASE_API_KEY": "bb-key",
            "BROWSERBASE_PROJECT_ID": "proj-1",
            "BROWSERBASE_KEEP_ALIVE": "false",
            "LEXIS_PORTAL_URL": "https://staging.example.com/",
            "CAPTCHA_SOLVER_API_KEY": "solver-key",
            "LEXIS_USE_REMOTE_SOLVER": "yes",
            "LEXIS_REQUIRE_CAPTCHA_ON_RESUME": "1",
            "LEXIS_NAVIGATION_TIMEOUT_MS": "45000",
            "LEXIS_SCREENSHOT_DIR": "/tmp/shots",
        })

        assert config.browserbase.api_key == "bb-key"
        assert config.browserbase.project_id == "proj-1"
        assert config.browserbase.keep_alive is False
        assert config.portal_url == "https://staging.example.com/"
        assert config.captcha.solver_api_key == "solver-key"
        assert config.captcha.remote_solver_default is True
        assert config.require_captcha_cleared_on_resume is True
        assert config.navigation_timeout_ms == 45000
        assert config.screenshot_dir == "/tmp/shots"

    def test_blank_values_use_defaults(self):
        config = load_config({"LEXIS_PORTAL_URL": "", "BROWSERBASE_KEEP_ALIVE": ""})

        assert config.portal_url == DEFAULT_PORTAL_URL
        assert config.browserbase.keep_alive is True

    def test_bad_integer(self):
        with pytest.raises(ValueError):
            load_config({"LEXIS_NAVIGATION_TIMEOUT_MS": "soon"})


class TestRuntimeContext:
    """Tests for building collaborators from config."""

    def test_without_solver_key(self):
        context = RuntimeContext.from_config(load_config({"BROWSERBASE_API_KEY": "bb-key"}))

        assert isinstance(context.provisioner, BrowserbaseProvisioner)
        assert context.solver is None
        assert context.artifacts is None

    def test_with_solver_and_screenshots(self, tmp_path):
        context = RuntimeContext.from_config(load_config({
            "BROWSERBASE_API_KEY": "bb-key",
            "CAPTCHA_SOLVER_API_KEY": "solver-key",
            "LEXIS_SCREENSHOT_DIR": str(tmp_path / "shots"),
        }))

        assert isinstance(context.solver, RemoteSolverClient)
        assert context.artifacts is not None
        assert (tmp_path / "shots").is_dir()

    def test_browserbase_key_required(self):
        with pytest.raises(ValueError):
            RuntimeContext.from_config(FlowConfig())

    @pytest.mark.asyncio
    async def test_close(self, runtime, attachment):
        runtime.registry.put(attachment)
        runtime.solver = AsyncMock()

        await runtime.close()

        assert attachment.closed is True
        runtime.provisioner.close.assert_awaited_once()
        runtime.solver.close.assert_awaited_once()
