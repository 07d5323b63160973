"""
Command-line interface for mcp-sampling-server.
"""

import argparse
import sys
from pathlib import Path

import structlog
import uvicorn

from .config import get_settings

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

ENV_TEMPLATE = """# mcp-sampling-server configuration

# Server
HOST=0.0.0.0
PORT=3001
DEBUG=false
LOG_LEVEL=INFO
# PUBLIC_BASE_URL=https://mcp.example.com
# ALLOWED_ORIGINS=https://app.example.com,https://admin.example.com

# Sessions
EVENT_LOG_MAX_EVENTS=1000
SESSION_IDLE_TIMEOUT_MINUTES=30
SESSION_SWEEP_INTERVAL_SECONDS=60

# Sampling
SAMPLING_ITERATION_TIMEOUT_SECONDS=120
"""


def main() -> None:
    """Main entry point for the CLI."""
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="mcp-sampling-server",
        description="MCP server with resumable streaming sessions and a sampling agent loop",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the server")
    serve_parser.add_argument("--host", default=settings.host, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=settings.port, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    subparsers.add_parser("init", help="Create a .env file with the default settings")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        run_server(args.host, args.port, args.reload)
    elif args.command == "config":
        show_config(args.check)
    elif args.command == "init":
        init_env()
    else:
        parser.print_help()


def run_server(host: str, port: int, reload: bool) -> None:
    """Run the FastAPI server."""
    logger.info("Starting mcp-sampling-server", host=host, port=port)

    uvicorn.run(
        "mcp_sampling_server.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level=get_settings().log_level.lower(),
    )


def check_config() -> tuple[list[str], list[str]]:
    """Return (errors, warnings) for the current settings."""
    settings = get_settings()
    errors = []
    warnings = []

    if settings.session_sweep_interval_seconds > settings.session_idle_timeout_minutes * 60:
        warnings.append("SESSION_SWEEP_INTERVAL_SECONDS is longer than the idle timeout")

    if settings.allowed_origins == "*" and not settings.debug:
        warnings.append("CORS allows every origin - set ALLOWED_ORIGINS in production")

    if settings.public_base_url and not settings.public_base_url.startswith(("http://", "https://")):
        errors.append("PUBLIC_BASE_URL must start with http:// or https://")

    return errors, warnings


def show_config(check: bool) -> None:
    """Show current configuration."""
    settings = get_settings()

    print("\n=== mcp-sampling-server Configuration ===\n")

    print("Server:")
    print(f"  Host: {settings.host}")
    print(f"  Port: {settings.port}")
    print(f"  Debug: {settings.debug}")
    print(f"  Base URL: {settings.base_url}")
    print(f"  Allowed Origins: {settings.allowed_origins}")

    print("\nIdentity:")
    print(f"  Name: {settings.server_name}")
    print(f"  Title: {settings.server_title}")
    print(f"  Version: {settings.server_version}")

    print("\nSessions:")
    print(f"  Event Log Size: {settings.event_log_max_events} events/session")
    print(f"  Idle Timeout: {settings.session_idle_timeout_minutes} min")
    print(f"  Sweep Interval: {settings.session_sweep_interval_seconds} s")

    print("\nSampling:")
    print(f"  Iteration Timeout: {settings.sampling_iteration_timeout_seconds} s")

    if check:
        print("\n=== Configuration Check ===\n")
        errors, warnings = check_config()

        if errors:
            print("❌ Errors:")
            for e in errors:
                print(f"   - {e}")

        if warnings:
            print("⚠️  Warnings:")
            for w in warnings:
                print(f"   - {w}")

        if not errors and not warnings:
            print("✅ Configuration looks good!")
        elif not errors:
            print("\n✅ Configuration is valid (with warnings)")
        else:
            print("\n❌ Configuration has errors - fix them before starting")


def init_env() -> None:
    """Write a .env file with the default settings."""
    env_file = Path(".env")

    if env_file.exists():
        print(".env already exists, leaving it unchanged")
        return

    env_file.write_text(ENV_TEMPLATE)
    print("Created .env with default settings")
    print("Start the server with: mcp-sampling-server serve")


if __name__ == "__main__":
    main()
