"""FastMCP server bootstrap for tmux delegation."""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastmcp import FastMCP

from . import __version__
from .backend import ExecutionBackend, TmuxBackend
from .config import DelegateSettings, get_settings
from .profiles import ProfileLoader
from .runs import DelegateOrchestrator, HostSession, RunStore
from .storage import ChromaUnavailableError, RunJournal
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the delegate server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[DelegateSettings] = None,
    backend: ExecutionBackend | None = None,
    journal: RunJournal | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server, its orchestrator and the reconciliation lifespan."""

    settings = settings or get_settings()

    tmux_backend = backend if backend is not None else TmuxBackend(
        Path(settings.tmux_path) if settings.tmux_path else None
    )
    backend_metadata = {
        "kind": type(tmux_backend).__name__,
        "available": bool(getattr(tmux_backend, "available", True)),
        "inside_tmux": TmuxBackend.inside_tmux(),
    }

    journal_metadata = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": "delegate_runs",
        "error": None,
    }
    if journal is None:
        try:
            journal = RunJournal(settings.chroma_persist_path).open()
        except ChromaUnavailableError as exc:
            journal_metadata["error"] = str(exc)
            journal = None
    journal_metadata["available"] = journal is not None

    profile_loader = ProfileLoader(settings.user_agents_dir, scope=settings.agent_scope)
    orchestrator = DelegateOrchestrator(
        settings,
        tmux_backend,
        store=RunStore(settings.runs_dir),
        profiles=profile_loader,
        journal=journal,
    )

    @asynccontextmanager
    async def lifespan(_server):
        await orchestrator.start()
        try:
            yield
        finally:
            await orchestrator.shutdown()

    server = FastMCP(
        name="Tmux Delegate MCP",
        version=__version__,
        instructions=(
            "Delegates tasks to worker agents running in tmux windows. Start runs with "
            "tmux_delegate and poll them with tmux_delegate_status."
        ),
        lifespan=lifespan,
    )

    handles = register_tools(server, orchestrator=orchestrator, settings=settings)

    def status_resource() -> str:
        """Return a JSON string summarizing basic runtime state."""

        host = HostSession.from_settings(settings)
        profiles = profile_loader.load_all(host.cwd)
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "backend": backend_metadata,
            "worker": settings.worker_executable,
            "runs_dir": str(settings.runs_dir),
            "poll_interval": settings.poll_interval,
            "profiles": {
                "count": len(profiles),
                "names": sorted(profiles),
                "scope": settings.agent_scope,
            },
            "session": {
                "file_backed": host.file_backed,
                "session_file": str(host.session_file) if host.session_file else None,
            },
            "runs": {
                "active": orchestrator.active_run_ids(),
                "reconciler_running": orchestrator.reconciler.running,
            },
            "journal": journal_metadata,
        }
        return json.dumps(payload)

    server.resource(
        "resource://delegate/status",
        name="delegate_status",
        title="Tmux Delegate Status",
        description="Provides the current runtime status for the tmux delegate server.",
        mime_type="application/json",
        tags={"status", "health"},
    )(status_resource)

    setattr(server, "orchestrator", orchestrator)
    setattr(server, "profile_loader", profile_loader)
    setattr(server, "backend_metadata", backend_metadata)
    setattr(server, "journal", journal)
    setattr(server, "journal_metadata", journal_metadata)
    setattr(server, "tool_handles", handles)
    setattr(server, "status_payload", status_resource)
    return server


def main() -> None:
    """Entry point for running the tmux delegate MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching tmux delegate MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "tmux_available": getattr(server, "backend_metadata", {}).get("available"),
            "journal_available": getattr(server, "journal_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
