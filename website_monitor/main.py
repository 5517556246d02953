from __future__ import annotations

import argparse
import asyncio
import logging
import os
import socket
import sys
from pathlib import Path
from typing import Sequence

import structlog

from website_monitor import __version__
from website_monitor.alerts import NotificationPlanner, resolve_enabled_channels
from website_monitor.channels import NotificationDispatcher
from website_monitor.common_check import CheckExecutor, CheckResult
from website_monitor.config import AppConfig, ConfigError, load_config, resolve_config_path
from website_monitor.db import MonitorStore
from website_monitor.defaults import json_template, yaml_template


logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_INTERNAL_ERROR = 1
EXIT_CRITICAL_FAILED = 2

CONFIG_HINT = "Run with --help, or generate a template config with --generate-yaml-config / --generate-json-config"


def _level_number(level: str) -> int:
    value = getattr(logging, str(level or "INFO").upper(), logging.INFO)
    return value if isinstance(value, int) else logging.INFO


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_level_number(level)),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )

    # httpx logs full request URLs, which may carry credentials.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def compute_exit_code(results: Sequence[CheckResult]) -> int:
    """Only Critical failures fail the run; Warning/Info failures are reported but tolerated."""
    for r in results:
        if r.is_critical and not r.succeeded:
            return EXIT_CRITICAL_FAILED
    return EXIT_OK


def overall_status(exit_code: int) -> str:
    if exit_code == EXIT_OK:
        return "OK"
    if exit_code == EXIT_CRITICAL_FAILED:
        return "CRITICAL_FAILED"
    return "ERROR"


async def run_once(
    cfg: AppConfig,
    *,
    cli_email: bool = False,
    cli_sms: bool = False,
    executor: CheckExecutor | None = None,
) -> int:
    notifications = cfg.notifications
    enabled_channels = resolve_enabled_channels(
        notifications.enabled_channels if notifications is not None else None,
        cli_email=cli_email,
        cli_sms=cli_sms,
    )
    executor = executor or CheckExecutor()
    host = socket.gethostname()

    with MonitorStore(cfg.sqlite.db_path) as store:
        run_id = store.insert_run_started(
            host=host,
            app_version=__version__,
            app_name=cfg.app.name or "WebsiteMonitor",
            environment=cfg.app.environment or "",
        )
        logger.info(
            "run_started",
            run_id=run_id,
            app_name=cfg.app.name,
            environment=cfg.app.environment,
            host=host,
            channels=enabled_channels,
        )

        results: list[CheckResult] = []
        for check in cfg.checks:
            if not check.enabled:
                continue
            logger.info("check_start", check_id=check.id, check_name=check.name, url=check.url)
            res = await executor.execute(check)
            results.append(res)
            store.insert_check_result(run_id, res)
            logger.info(
                "check_end",
                check_id=check.id,
                succeeded=res.succeeded,
                warning_only=res.warning_only,
                status_code=res.status_code,
                latency_ms=res.latency_ms,
                severity=check.severity,
                error=res.error,
            )

        planner = NotificationPlanner(store, cfg, enabled_channels)
        planned = planner.plan(results)

        async with NotificationDispatcher(store, notifications, enabled_channels) as dispatcher:
            await dispatcher.dispatch(planned)

        exit_code = compute_exit_code(results)
        store.update_run_finished(run_id, overall_status=overall_status(exit_code), exit_code=exit_code)
        logger.info("run_finished", run_id=run_id, exit_code=exit_code, checks=len(results), notifications=len(planned))
        return exit_code


def _write_template(args: argparse.Namespace) -> int:
    if args.generate_json_config:
        fmt, default_name, text = "json", "config.json", json_template()
    else:
        fmt, default_name, text = "yaml", "config.yaml", yaml_template()
    path = Path(args.config) if args.config else Path.cwd() / default_name
    path.write_text(text, encoding="utf-8")
    logger.info("config_template_written", format=fmt, path=str(path))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="website-monitor",
        description="Cron-friendly website monitor: runs every configured check once and exits.",
        epilog="Exit codes: 0 = OK (or warnings only), 2 = Critical check failed, 1 = internal/config error",
    )
    parser.add_argument("--config", default=None, help="Path to config.yaml/config.yml/config.json")
    gen = parser.add_mutually_exclusive_group()
    gen.add_argument("--generate-json-config", action="store_true", help="Write a default JSON config and exit")
    gen.add_argument("--generate-yaml-config", action="store_true", help="Write a default YAML config and exit")
    parser.add_argument("-email", "--email", dest="email", action="store_true", help="Enable email notifications this run")
    parser.add_argument("-sms", "--sms", dest="sms", action="store_true", help="Enable SMS notifications this run")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING, ...)",
    )
    parser.add_argument("-v", "--version", action="version", version=f"website-monitor {__version__}")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        if args.generate_json_config or args.generate_yaml_config:
            return _write_template(args)

        config_path = resolve_config_path(args.config)
        if not config_path.is_file():
            logger.error("config_error", error=f"Config not found: {config_path}", hint=CONFIG_HINT)
            print(f"Config not found: {config_path}", file=sys.stderr)
            print(CONFIG_HINT, file=sys.stderr)
            return EXIT_INTERNAL_ERROR

        cfg = load_config(config_path)
        return asyncio.run(run_once(cfg, cli_email=bool(args.email), cli_sms=bool(args.sms)))
    except ConfigError as exc:
        logger.error("config_error", error=str(exc), hint="Run with --help for usage.")
        print(str(exc), file=sys.stderr)
        return EXIT_INTERNAL_ERROR
    except Exception as exc:
        logger.error("fatal_error", error=f"{type(exc).__name__}: {exc}")
        return EXIT_INTERNAL_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
