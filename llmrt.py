"""llmrt: run the commands an LLM embeds in its output against a local repository.

Reads text containing <open>, <write>, <exec> and <search> tags, executes
each command inside the repository boundary, and writes the text back with
a result block after every tag.

Usage (batch):
    llmrt --root ./repo --input response.txt --output result.txt

Usage (streaming):
    some-llm | llmrt --root ./repo --interactive

Run 'llmrt --help' for all options.
"""

import argparse
import logging
import os
import sys

# Add parent directory to path so imports work when run directly
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from core.config import (
    DEFAULTS, build_runtime_config, generate_sample_config, load_config, merge_cli_args,
)
from core.errors import ConfigError
from core.log_setup import configure_logging
from core.session import Session
from ui.cli import run_batch, run_interactive


logger = logging.getLogger("llmrt")


def _csv(value: str) -> list[str]:
    """Parse a comma-separated CLI list; empty items are dropped."""
    return [item.strip() for item in value.split(",") if item.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Execute <open>, <write>, <exec> and <search> commands embedded in LLM output",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--root", default=None, help="Repository root (default: .)")
    parser.add_argument("--exclude", type=_csv, default=None,
                        help="Comma-separated excluded paths/globs (default: .git,.env,*.key,*.pem)")
    parser.add_argument("--input", default=None, help="Input file (default: stdin)")
    parser.add_argument("--output", default=None, help="Output file (default: stdout)")
    parser.add_argument("--interactive", action="store_true",
                        help="Stream input and execute commands as they complete")
    parser.add_argument("--json", action="store_true", help="Write results as JSON (batch mode)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging on stderr")
    parser.add_argument("--max-size", type=int, default=None,
                        help="Maximum bytes for <open> (default: 1048576)")
    parser.add_argument("--max-write-size", type=int, default=None,
                        help="Maximum bytes for <write> (default: 102400)")
    parser.add_argument("--allowed-extensions", type=_csv, default=None,
                        help="Comma-separated extensions <write> may create (empty: any)")
    parser.add_argument("--no-backup", dest="backup", action="store_const", const=False, default=None,
                        help="Do not back up files before overwriting")
    parser.add_argument("--enable-exec", action="store_const", const=True, default=None,
                        help="Allow <exec> commands (container runtime required)")
    parser.add_argument("--exec-whitelist", type=_csv, default=None,
                        help="Comma-separated allowed commands (default: go test,go build,npm test,make)")
    parser.add_argument("--exec-timeout", type=float, default=None,
                        help="Seconds before an exec is killed (default: 30)")
    parser.add_argument("--exec-memory", default=None, help="Container memory limit (default: 512m)")
    parser.add_argument("--exec-cpu", type=float, default=None, help="Container CPU limit (default: 1)")
    parser.add_argument("--exec-image", default=None, help="Container image (default: ubuntu:22.04)")
    parser.add_argument("--sandbox-runtime", choices=["docker", "podman"], default=None,
                        help="Container runtime for exec (default: docker)")
    parser.add_argument("--audit-log", default=None, help="Audit log path (default: audit.log)")
    parser.add_argument("--plugins-dir", default=None, help="Directory of formatter plugins")
    parser.add_argument("--log-file", default=None, help="Also write diagnostics to this file")
    parser.add_argument("--config", default=None, help="Config file path (default: .llmrt.toml search)")
    parser.add_argument("--no-config", action="store_true", help="Ignore config files")
    parser.add_argument("--init-config", action="store_true",
                        help="Write a sample .llmrt.toml and exit")
    return parser


def main(argv: list[str] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Generate sample config and exit
    if args.init_config:
        if os.path.exists(".llmrt.toml"):
            print("Error: .llmrt.toml already exists.", file=sys.stderr)
            return 1
        with open(".llmrt.toml", "w", encoding="utf-8") as f:
            f.write(generate_sample_config())
        print("Created .llmrt.toml with default settings.", file=sys.stderr)
        return 0

    # Load configuration: DEFAULTS -> config file -> CLI args
    try:
        if args.no_config:
            config = merge_cli_args(dict(DEFAULTS), args)
        else:
            config = merge_cli_args(load_config(args.config), args)
        configure_logging(config["log_level"], config["log_file"])
        runtime = build_runtime_config(config)
    except (ConfigError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error: cannot open log file: {e}", file=sys.stderr)
        return 1

    if config.get("_config_file"):
        logger.info("Config: %s", config["_config_file"])
    logger.debug("Repository root: %s", runtime.root)

    with Session(runtime) as session:
        for plugin in session.plugin_results:
            if not plugin["ok"]:
                print(f"Plugin error [{plugin['name']}]: {plugin['error']}", file=sys.stderr)
        if args.interactive:
            return run_interactive(session)
        return run_batch(session, args.input, args.output, json_output=args.json)


if __name__ == "__main__":
    sys.exit(main())
