"""Grove CLI entry point."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path


# ── Default template for `grove init` ────────────────────────────────────────

_DEFAULT_CONFIG = """\
# config.yaml: Grove configuration

runtime:
  projects_root: ./projects   # <slug>/repo (git clone) and <slug>/worktrees
  data_dir: ./.grove-data     # grove.db and agent session directories
  default_branch: main
  git_timeout: 30

agent:
  cli_path: claude
  model: sonnet
  output_format: text
  credential_env_vars: [ANTHROPIC_API_KEY]
  comment_history: 10
  summary_length: 500

sandbox:
  command_timeout: 30
  max_output_bytes: 524288

documents:
  research_version_cap: 3
  min_document_length: 500
  boilerplate_window: 200

# Per-role tool allow-lists. Roles left out keep their built-in profile.
# tool_profiles:
#   critic: [file_read, file_list, git_status, git_diff, ticket_read, comment_post]
"""


def _init_config(config_dir: Path) -> None:
    """Write a default config.yaml into ``config_dir``."""
    config_path = config_dir / "config.yaml"
    if config_path.exists():
        print(f"Error: {config_path} already exists", file=sys.stderr)
        print("Remove it first if you want to re-initialize.", file=sys.stderr)
        sys.exit(1)

    config_dir.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_DEFAULT_CONFIG)
    (config_dir / "projects").mkdir(exist_ok=True)

    print(f"Initialized Grove config at {config_path}")
    print()
    print("Next steps:")
    print(f"  1. Review {config_path}")
    print(f"  2. Clone each project into {config_dir / 'projects' / '<slug>' / 'repo'}")
    print(f"  3. Run: grove serve --config-dir {config_dir}")


def main():
    parser = argparse.ArgumentParser(
        prog="grove",
        description="Grove — ticket lifecycle engine for coding agents",
    )

    subparsers = parser.add_subparsers(dest="command")

    # grove init
    init_parser = subparsers.add_parser("init", help="Write a default config.yaml")
    init_parser.add_argument(
        "--config-dir",
        type=Path,
        default=Path.cwd(),
        help="Directory for config.yaml (default: current directory)",
    )

    # grove serve
    serve_parser = subparsers.add_parser("serve", help="Start the Grove API server")
    serve_parser.add_argument(
        "--config-dir",
        type=Path,
        default=Path.cwd(),
        help="Directory containing config.yaml (default: current directory)",
    )
    serve_parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)",
    )
    serve_parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args()

    if args.command == "init":
        _init_config(args.config_dir)
        return

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if not (args.config_dir / "config.yaml").exists():
        print(f"Error: config.yaml not found in {args.config_dir}", file=sys.stderr)
        print("Run 'grove init' to create one, or specify --config-dir", file=sys.stderr)
        sys.exit(1)

    import uvicorn

    from grove.server import create_app

    app = create_app(config_dir=args.config_dir)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
