"""Grove server: FastAPI application that ties all components together.

Startup sequence:
1. Load config.yaml
2. Initialize SQLite database
3. Abandon agent runs left ``running`` by a previous process
4. Build the git queue, workspace provider, tool registry, agent runner
   and lifecycle engine
5. Start the completion consumer loop

Shutdown:
1. Stop the completion consumer and drain pending dispatches
2. Stop watching agent processes (they keep running)
3. Close database
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from grove.api import configure as configure_api
from grove.api import router as api_router
from grove.config import GroveConfig, load_config
from grove.lifecycle.engine import TicketLifecycleEngine
from grove.runner import AgentCompletion, AgentRunner
from grove.store import TicketStore
from grove.tools.registry import ToolRegistry, build_default_registry
from grove.workspace.git_commands import GitCommands
from grove.workspace.git_queue import GitOperationQueue
from grove.workspace.merge import BranchMerger
from grove.workspace.provider import WorkspaceProvider

logger = logging.getLogger(__name__)


def _resolve(base: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else (base / path).resolve()


class GroveServer:
    """Encapsulates all server components and lifecycle."""

    def __init__(self, config_dir: Path | None = None):
        # GROVE_CONFIG_DIR wins over the CLI default (container mounts)
        env_dir = os.environ.get("GROVE_CONFIG_DIR", "").strip()
        self.config_dir = Path(env_dir) if env_dir else (config_dir or Path.cwd())

        # Components (initialized in start())
        self.config: GroveConfig | None = None
        self.store: TicketStore | None = None
        self.git_queue: GitOperationQueue | None = None
        self.registry: ToolRegistry | None = None
        self.runner: AgentRunner | None = None
        self.engine: TicketLifecycleEngine | None = None
        self.completion_queue: asyncio.Queue[AgentCompletion] | None = None

    async def start(self) -> None:
        logger.info("Grove server starting (config_dir=%s)", self.config_dir)

        self.config = load_config(self.config_dir)
        runtime = self.config.runtime
        projects_root = _resolve(self.config_dir, runtime.projects_root)
        data_dir = _resolve(self.config_dir, runtime.data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)
        projects_root.mkdir(parents=True, exist_ok=True)

        self.store = TicketStore(str(data_dir / "grove.db"))
        await self.store.initialize()
        abandoned = await self.store.abandon_stale_runs()
        if abandoned:
            logger.warning("Marked %d agent run(s) from a previous process as abandoned", abandoned)

        self.git_queue = GitOperationQueue()
        git = GitCommands(self.git_queue, timeout=runtime.git_timeout, sandbox=self.config.sandbox)
        provider = WorkspaceProvider(
            projects_root, git, default_branch=runtime.default_branch, sandbox=self.config.sandbox
        )
        self.registry = build_default_registry(self.config.tool_profiles)

        self.completion_queue = asyncio.Queue()
        self.runner = AgentRunner(
            self.config.agent,
            data_dir / "sessions",
            self.completion_queue,
            sandbox=self.config.sandbox,
        )
        self.engine = TicketLifecycleEngine(
            self.store,
            self.registry,
            provider,
            self.runner,
            BranchMerger(git),
            policy=self.config.documents,
            agent_config=self.config.agent,
            completion_queue=self.completion_queue,
        )

        configure_api(self.engine)
        await self.engine.start()

        logger.info(
            "Grove server started (projects_root=%s, tools=%d)", projects_root, len(self.registry.names)
        )

    async def stop(self) -> None:
        """Stop the engine, runner and store."""
        logger.info("Grove server shutting down")

        if self.engine:
            await self.engine.stop()
        if self.runner:
            await self.runner.stop()
        if self.store:
            await self.store.close()

        logger.info("Grove server stopped")


# ── FastAPI Application ──────────────────────────────────────────────────────

_server = GroveServer()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: startup and shutdown."""
    await _server.start()
    yield
    await _server.stop()


def create_app(config_dir: Path | None = None) -> FastAPI:
    """Create the FastAPI application."""
    global _server
    _server = GroveServer(config_dir)

    app = FastAPI(
        title="Grove",
        description="Ticket lifecycle engine for coding agents",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(api_router)

    @app.get("/health")
    async def health():
        """Health check endpoint with queue and git activity."""
        return {
            "status": "ok",
            "completion_queue_depth": _server.completion_queue.qsize() if _server.completion_queue else 0,
            "busy_repos": _server.git_queue.active_keys if _server.git_queue else [],
            "tools": _server.registry.names if _server.registry else [],
        }

    return app
