"""
Command-line interface for the certwatch system.

This module provides the main CLI entry point with commands for:
- run: Start the stream source, match worker and API server
- monitor / remove: Edit the watch-list
- domains / matches: Inspect the watch-list and match history
- seed: Bulk-add domains from a file
- config: Configuration management
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .config import (
    SystemConfig,
    config_to_dict,
    create_default_config,
    load_config_from_env,
    load_config_from_file,
    save_config_to_file,
)
from .domain_resolver import DomainResolver
from .exceptions import ConfigError, DomainParseError, StorageError
from .service import build_logger, run_service
from .storage import Storage, create_storage
from .wire import entry_to_dict


DEFAULT_CONFIG_PATH = Path.home() / ".certwatch" / "config.json"


def load_config(args: argparse.Namespace) -> SystemConfig:
    """
    Load configuration from --config if given, else from the environment.

    Raises:
        ConfigError: If the configuration is invalid
    """
    if getattr(args, "config", None):
        return load_config_from_file(Path(args.config))
    return load_config_from_env()


def open_storage(config: SystemConfig) -> tuple[Storage, DomainResolver]:
    """Open the configured storage backend for a one-off command."""
    logger = build_logger(config.logging)
    resolver = DomainResolver()
    return create_storage(config.storage, resolver, logger), resolver


def cmd_run(args: argparse.Namespace) -> int:
    """Handle the 'run' command."""
    config = load_config(args)
    return asyncio.run(run_service(config))


def cmd_monitor(args: argparse.Namespace) -> int:
    """Handle the 'monitor' command."""
    config = load_config(args)
    storage, resolver = open_storage(config)
    try:
        domain = resolver.validate(args.domain)
        storage.monitor(domain)
    except DomainParseError as e:
        print(f"Invalid domain '{args.domain}': {e.message}", file=sys.stderr)
        return 1
    finally:
        storage.close()

    print(f"Monitoring {domain}")
    return 0


def cmd_remove(args: argparse.Namespace) -> int:
    """Handle the 'remove' command."""
    config = load_config(args)
    storage, _ = open_storage(config)
    try:
        storage.remove(args.domain)
    finally:
        storage.close()

    print(f"Removed {args.domain}")
    return 0


def cmd_domains(args: argparse.Namespace) -> int:
    """Handle the 'domains' command."""
    config = load_config(args)
    storage, _ = open_storage(config)
    try:
        domains = sorted(storage.domains())
    finally:
        storage.close()

    for domain in domains:
        print(domain)
    return 0


def cmd_matches(args: argparse.Namespace) -> int:
    """Handle the 'matches' command."""
    config = load_config(args)
    storage, _ = open_storage(config)
    try:
        if args.domain:
            entries = storage.matches(args.domain)
        else:
            entries = storage.all_matches()
    finally:
        storage.close()

    for entry in entries:
        print(json.dumps(entry_to_dict(entry), ensure_ascii=False))
    return 0


def cmd_seed(args: argparse.Namespace) -> int:
    """Handle the 'seed' command: one domain per line, '#' starts a comment."""
    config = load_config(args)
    try:
        lines = Path(args.file).read_text(encoding="utf-8").splitlines()
    except OSError as e:
        print(f"Error reading {args.file}: {e}", file=sys.stderr)
        return 1

    storage, resolver = open_storage(config)
    added = 0
    rejected = 0
    try:
        for line in lines:
            raw = line.split("#", 1)[0].strip()
            if not raw:
                continue
            try:
                storage.monitor(resolver.validate(raw))
                added += 1
            except DomainParseError as e:
                rejected += 1
                print(f"Skipping '{raw}': {e.message}", file=sys.stderr)
    finally:
        storage.close()

    print(f"Added {added} domain(s), skipped {rejected}")
    return 0 if rejected == 0 else 1


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_CONFIG_PATH

    if args.action == "show":
        config = load_config_from_file(config_path)
        shown = config_to_dict(config)
        if shown["storage"]["redis_password"]:
            shown["storage"]["redis_password"] = "***"
        print(f"Configuration from: {config_path}")
        print(json.dumps(shown, indent=2))
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        save_config_to_file(create_default_config(), config_path)
        print(f"Configuration created at: {config_path}")
        return 0

    elif args.action == "validate":
        load_config_from_file(config_path)
        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="certwatch",
        description="Watch certificate-transparency logs for your domains",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def add_config_option(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--config", "-c",
            help="Path to configuration file (default: environment and .env)",
        )

    run_parser = subparsers.add_parser(
        "run",
        help="Run the stream watcher and API server",
    )
    add_config_option(run_parser)
    run_parser.set_defaults(func=cmd_run)

    monitor_parser = subparsers.add_parser(
        "monitor",
        help="Add a domain to the watch-list",
    )
    monitor_parser.add_argument("domain", help="Registrable domain (e.g., example.com)")
    add_config_option(monitor_parser)
    monitor_parser.set_defaults(func=cmd_monitor)

    remove_parser = subparsers.add_parser(
        "remove",
        help="Remove a domain and its match history",
    )
    remove_parser.add_argument("domain", help="Domain to remove")
    add_config_option(remove_parser)
    remove_parser.set_defaults(func=cmd_remove)

    domains_parser = subparsers.add_parser(
        "domains",
        help="List watched domains",
    )
    add_config_option(domains_parser)
    domains_parser.set_defaults(func=cmd_domains)

    matches_parser = subparsers.add_parser(
        "matches",
        help="Print recorded matches as JSON lines",
    )
    matches_parser.add_argument(
        "domain",
        nargs="?",
        help="Only show matches for this domain",
    )
    add_config_option(matches_parser)
    matches_parser.set_defaults(func=cmd_matches)

    seed_parser = subparsers.add_parser(
        "seed",
        help="Add domains from a file (one per line)",
    )
    seed_parser.add_argument("file", help="Path to domain list")
    add_config_option(seed_parser)
    seed_parser.set_defaults(func=cmd_seed)

    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except ConfigError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 2
    except StorageError as e:
        print(f"Storage error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
