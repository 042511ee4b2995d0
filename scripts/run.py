"""
Local process runner for the Cajurona WhatsApp bot.

Serves the gateway webhook with uvicorn.  Every inbound message is run
through the pipeline: member resolution, intent classification, presence
ledger, reply.

Usage:
    python scripts/run.py

Settings come from the environment or a .env file in the working
directory; see cajurona/config.py for the full list.
"""

import logging
import os
import sys

import uvicorn

# Make sure project root is on sys.path when run as a script
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cajurona.adapters.regex_intent import RegexIntentClassifier
from cajurona.config import ConfigError, Settings, load_settings
from cajurona.factory import create_gateway, create_store
from cajurona.pipeline import Pipeline, PipelineConfig
from cajurona.webhook import create_app

log = logging.getLogger(__name__)


def build_app(settings: Settings):
    classifier = RegexIntentClassifier()
    config = PipelineConfig(
        store=create_store(settings),
        gateway=create_gateway(settings),
        classifier=classifier,
        allowed_groups=settings.allowed_groups,
    )
    return create_app(settings, Pipeline(config), classifier)


def main() -> None:
    try:
        settings = load_settings()
    except ConfigError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s  %(levelname)-7s  %(name)s  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    app = build_app(settings)
    log.info(
        "Bot starting: port=%d  store=%s  channel=%s  groups=%s",
        settings.port,
        settings.store,
        settings.whatsapp_channel,
        ",".join(settings.allowed_groups) or "all",
    )
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
