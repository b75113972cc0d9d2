import argparse
import asyncio
import os
import logging
from logging.config import dictConfig
import json
import sys
from typing import List, Optional

import sentry_sdk

logger = logging.getLogger(__name__)

CONFIGURATION_ERROR_EXIT_CODE = 3


def configure_logging():
    logging_config_file = os.getenv("LOGGING_CONFIG_FILE", "")

    if len(logging_config_file) > 0:
        with open(logging_config_file) as fl:
            dictConfig(json.load(fl))
        return

    logging.basicConfig()
    logging.getLogger().setLevel(logging.DEBUG)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quota-check",
        description="Authorize registered OAuth applications and record their API quota.",
    )
    parser.add_argument(
        "--credentials",
        help="JSON file with {client_id, client_secret, app_name} entries.",
    )
    parser.add_argument("--output", help="File receiving the quota snapshots.")
    parser.add_argument(
        "--mode",
        choices=["code", "device", "auto"],
        help="OAuth flow used for the credentials of this run.",
    )
    return parser


async def realMain(argv: Optional[List[str]] = None) -> int:
    from pydantic import ValidationError

    from social.graze.quota.app.config import Settings
    from social.graze.quota.app.runner import run_quota_check
    from social.graze.quota.app.sink import JsonFileSink
    from social.graze.quota.errors import CredentialError
    from social.graze.quota.model.credentials import load_registrations

    args = vars(build_parser().parse_args(argv))

    overrides = {
        name: args.get(option)
        for name, option in (
            ("credentials_file", "credentials"),
            ("output_path", "output"),
            ("auth_mode", "mode"),
        )
        if args.get(option) is not None
    }

    try:
        settings = Settings(**overrides)
        registrations = load_registrations(
            settings.credentials_file, settings.auth_mode
        )
    except (CredentialError, ValidationError) as e:
        logger.error("Invalid configuration: %s", e)
        return CONFIGURATION_ERROR_EXIT_CODE

    if settings.sentry_dsn:
        sentry_sdk.init(dsn=settings.sentry_dsn, send_default_pii=False)

    report = await run_quota_check(
        settings,
        registrations,
        JsonFileSink(settings.output_path),
        handle_signals=True,
    )

    logger.info(
        "Run finished: %s, %d snapshot(s) from %d application(s)",
        report.status.value,
        report.snapshot_count,
        len(report.results),
    )
    return report.status.exit_code


def invoke():
    configure_logging()

    sys.exit(asyncio.run(realMain()))


if __name__ == "__main__":
    invoke()
