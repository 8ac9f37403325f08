"""
kubestig CLI entry point.

This module provides the command-line interface for kubestig.
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
from pathlib import Path
from typing import Any

from kubestig import __version__
from kubestig.config import ConfigError, ScanConfiguration, load_config_from_env
from kubestig.context import ScanContext
from kubestig.observability import configure_logging_from_env, get_logger
from kubestig.provider import ManagedK8sProvider, ProviderError
from kubestig.rule.retry import RetryableRule
from kubestig.ruleset import RulesetError

logger = get_logger("cli")


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="kubestig",
        description="kubestig - DISA Kubernetes STIG compliance checks for managed clusters",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"kubestig {__version__}",
    )

    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: KUBESTIG_LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        choices=["human", "json"],
        help="Log format (default: KUBESTIG_LOG_FORMAT or human)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run command
    run_parser = subparsers.add_parser("run", help="Run the configured rulesets")
    run_parser.add_argument(
        "--config",
        help="Path to configuration file (default: $KUBESTIG_CONFIG_FILE)",
    )
    run_parser.add_argument(
        "--ruleset-id",
        help="Only run the ruleset with this ID",
    )
    run_parser.add_argument(
        "--output",
        help="Write the JSON report to this file instead of stdout",
    )
    run_parser.add_argument(
        "--timeout",
        type=float,
        help="Abort the run after this many seconds",
    )

    # rules command
    rules_parser = subparsers.add_parser("rules", help="List the registered rules")
    rules_parser.add_argument(
        "--config",
        help="Path to configuration file (default: $KUBESTIG_CONFIG_FILE)",
    )
    rules_parser.add_argument(
        "--ruleset-id",
        help="Only list rules of the ruleset with this ID",
    )

    return parser


def load_configuration(path: str | None) -> ScanConfiguration:
    """Load the configuration file, falling back to the environment."""
    if path:
        return ScanConfiguration.from_file(path)
    return load_config_from_env()


def _select_rulesets(config: ScanConfiguration, ruleset_id: str | None) -> None:
    if ruleset_id is None:
        return
    selected = [r for r in config.provider.rulesets if r.id == ruleset_id]
    if not selected:
        raise ConfigError(f"ruleset {ruleset_id} is not configured")
    config.provider.rulesets = selected


def _print_summary(report: dict[str, Any]) -> None:
    for ruleset in report["rulesets"]:
        counts = ", ".join(f"{status}: {count}" for status, count in ruleset["summary"].items())
        print(
            f"{ruleset['id']} {ruleset['version']}: {len(ruleset['rules'])} rules ({counts})",
            file=sys.stderr,
        )


def cmd_run(args: argparse.Namespace) -> int:
    """Run the configured rulesets and write the report."""
    config = load_configuration(args.config)
    _select_rulesets(config, args.ruleset_id)

    ctx = ScanContext.background()
    if args.timeout:
        ctx = ctx.with_timeout(args.timeout)

    def handle_signal(signum: int, frame: Any) -> None:
        logger.warning("Received signal, cancelling run", signal=signum)
        ctx.cancel()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    provider = ManagedK8sProvider(config.provider, config.metadata)
    report = provider.run_all(ctx).to_dict()

    output = args.output or config.output_path
    content = json.dumps(report, indent=2)
    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        Path(output).write_text(content + "\n", encoding="utf-8")
        logger.info(f"Report written to {output}")
    else:
        print(content)

    _print_summary(report)
    return 1 if ctx.cancelled else 0


def cmd_rules(args: argparse.Namespace) -> int:
    """List the rules of the configured rulesets."""
    config = load_configuration(args.config)
    _select_rulesets(config, args.ruleset_id)

    provider = ManagedK8sProvider(config.provider, config.metadata)
    for ruleset in provider.rulesets():
        print(f"{ruleset.id} {ruleset.version} ({len(ruleset.rules())} rules)")
        for rule in ruleset.rules():
            severity = rule.severity.value if rule.severity else "-"
            kind = type(rule.base_rule if isinstance(rule, RetryableRule) else rule).__name__
            print(f"  {rule.id:<8} {severity:<7} {kind:<12} {rule.name}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_logging_from_env(args.log_level, args.log_format)

    if args.command is None:
        parser.print_help()
        return 0

    command_handlers = {
        "run": cmd_run,
        "rules": cmd_rules,
    }

    handler = command_handlers.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        return 1

    try:
        return handler(args)
    except (ConfigError, RulesetError, ProviderError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
