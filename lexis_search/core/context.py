"""Process-wide collaborators, built once at startup and passed explicitly."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Optional

from lexis_search.core.artifacts import ArtifactManager
from lexis_search.core.config import FlowConfig, load_config
from lexis_search.core.session import (
    BrowserbaseProvisioner,
    Connector,
    SessionProvisioner,
    SessionRegistry,
    connect_over_cdp,
)
from lexis_search.core.solver_client import RemoteSolverClient

logger = logging.getLogger("lexis.context")


@dataclass
class RuntimeContext:
    config: FlowConfig
    provisioner: SessionProvisioner
    connector: Connector
    registry: SessionRegistry = field(default_factory=SessionRegistry)
    solver: Optional[RemoteSolverClient] = None
    artifacts: Optional[ArtifactManager] = None

    @classmethod
    def from_config(cls, config: FlowConfig) -> "RuntimeContext":
        solver = None
        if config.captcha.solver_api_key:
            solver = RemoteSolverClient(
                api_key=config.captcha.solver_api_key,
                base_url=config.captcha.solver_url,
                poll_interval_s=config.captcha.solver_poll_interval_s,
                timeout_s=config.captcha.solver_timeout_s,
            )
        artifacts = ArtifactManager(root_dir=config.screenshot_dir) if config.screenshot_dir else None
        context = cls(
            config=config,
            provisioner=BrowserbaseProvisioner(config.browserbase),
            connector=partial(connect_over_cdp, default_timeout_ms=config.navigation_timeout_ms),
            solver=solver,
            artifacts=artifacts,
        )
        logger.info(
            f"[Context] Ready (portal={config.portal_url}, remote_solver={'on' if solver else 'off'}, "
            f"screenshots={'on' if artifacts else 'off'})"
        )
        return context

    @classmethod
    def from_env(cls) -> "RuntimeContext":
        return cls.from_config(load_config())

    async def close(self) -> None:
        await self.registry.close_all()
        close_provisioner = getattr(self.provisioner, "close", None)
        if close_provisioner is not None:
            await close_provisioner()
        if self.solver is not None:
            await self.solver.close()
