"""CLI entry point for guru-gateway."""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

from guru_gateway.app import GuruApp
from guru_gateway.config import AppConfig, load_config
from guru_gateway.context.registry import GENERIC_PAGE
from guru_gateway.gateway.facade import GuruGateway
from guru_gateway.log import setup_logging
from guru_gateway.reporting.usage_stats import export_csv
from guru_gateway.storage.models import utc_day_window, utcnow


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="guru-gateway",
        description="Quota-aware, context-grounded CRM assistant gateway",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    chat_parser = subparsers.add_parser("chat", help="Chat with the assistant in the terminal")
    _add_config_args(chat_parser)
    chat_parser.add_argument("-u", "--user", required=True, help="User ID to chat as")
    chat_parser.add_argument("-p", "--page", default=GENERIC_PAGE, help="Page to ground answers on")

    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    report_parser = subparsers.add_parser("usage-report", help="Show assistant usage statistics")
    _add_config_args(report_parser)
    report_parser.add_argument("-u", "--user", required=True, help="Viewer user ID")
    report_parser.add_argument("--days", type=int, default=7, help="Number of UTC days to include")
    report_parser.add_argument("--csv", default=None, help="Also export the logs to this CSV file")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "config-check":
        _check_config(args.config, args.env)
        return

    config = _load_or_exit(args.config, args.env)
    setup_logging(config.log_level, config.log_format)

    if args.command == "chat":
        asyncio.run(_chat(config, args.user, args.page))
    elif args.command == "usage-report":
        asyncio.run(_usage_report(config, args.user, args.days, args.csv))


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and edit it first.")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    quota = config.quota
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Storage: {config.storage.db_path}")
    print(f"  Model: {config.ai.model} (timeout={config.ai.request_timeout}s)")
    print(f"  Anthropic API: {'configured' if config.anthropic else 'missing'}")
    print(f"  Default quota: {quota.default_role} -> {quota.default_limit}/day")
    for role, limit in quota.role_limits.items():
        print(f"    - {role}: {limit}/day")
    for role in quota.unlimited_roles:
        print(f"    - {role}: unlimited")
    print(
        f"  Context: {config.context.max_records_per_entity} records/entity, "
        f"{config.context.max_context_chars} chars max"
    )


def _format_limit(limit: int | None) -> str:
    return "unlimited" if limit is None else str(limit)


def _print_messages(gateway: GuruGateway, start: int) -> int:
    messages = gateway.messages
    for message in messages[start:]:
        if message.role == "user":
            continue
        speaker = "guru" if message.role == "assistant" else "system"
        print(f"{speaker}> {message.text}")
        if message.metadata and message.metadata.suggested_actions:
            labels = ", ".join(a.label for a in message.metadata.suggested_actions)
            print(f"      actions: {labels}")
    return len(messages)


async def _chat(config: AppConfig, user_id: str, page: str) -> None:
    app = GuruApp(config)
    await app.start()
    try:
        gateway = await app.open_session(user_id, page)
        gateway.open()
        print(f"[{gateway.page_title}] {gateway.usage_count}/{_format_limit(gateway.usage_limit)} used today")
        print("Commands: /page NAME, /clear, /usage, /quit")
        seen = _print_messages(gateway, 0)

        while True:
            try:
                line = await asyncio.to_thread(input, "you> ")
            except EOFError:
                break
            line = line.strip()
            if not line:
                continue

            if line == "/quit":
                break
            if line == "/clear":
                gateway.clear()
                seen = 0
                continue
            if line == "/usage":
                remaining = gateway.usage_remaining
                print(
                    f"{gateway.usage_count}/{_format_limit(gateway.usage_limit)} used today, "
                    f"{_format_limit(remaining)} left"
                )
                continue
            if line.startswith("/page "):
                gateway.set_page(line[6:].strip())
                print(f"[{gateway.page_title}] Try: {', '.join(gateway.suggested_queries)}")
                continue

            await gateway.send_message(line)
            seen = _print_messages(gateway, seen)
    finally:
        await app.stop()


async def _usage_report(config: AppConfig, viewer_id: str, days: int, csv_path: str | None) -> None:
    app = GuruApp(config)
    await app.db.initialize()
    try:
        _, end = utc_day_window(utcnow().date())
        start = end - timedelta(days=max(days, 1))
        report = await app.reporter.report(viewer_id, start, end)

        print(f"Requests: {report.total_requests}  Tokens: {report.total_tokens}  "
              f"Avg tokens/request: {report.avg_tokens_per_request}  Users: {report.unique_users}")
        print("\nBy date:")
        for bucket in report.by_date:
            print(f"  {bucket.key}  {bucket.count:>5} requests  {bucket.tokens:>8} tokens")
        print("\nBy context:")
        for bucket in report.by_context:
            print(f"  {bucket.key:<12} {bucket.count:>5} requests  {bucket.tokens:>8} tokens")

        if csv_path:
            with Path(csv_path).open("w", encoding="utf-8", newline="") as f:
                rows = export_csv(report.logs, f)
            print(f"\nExported {rows} rows to {csv_path}")
    finally:
        await app.db.close()


if __name__ == "__main__":
    main()
