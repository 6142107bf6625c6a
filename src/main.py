import argparse
import logging
import os
import sys
from pathlib import Path

import sentry_sdk

from _version import __version__
from app.window import DitherCamApp
from config import AppConfig
from controls.input import ADAPTERS
from diagnostics import APP_DIR, init_diagnostics
from security import strip_pii

logger = logging.getLogger(__name__)

CONSENT_FILE = "telemetry_consent"


def sentry_dsn() -> str:
    """SENTRY_DSN, but only when the user has opted in."""
    consent_path = Path(os.path.expanduser(APP_DIR)) / CONSENT_FILE
    if consent_path.exists() and consent_path.read_text().strip() == "yes":
        return os.environ.get("SENTRY_DSN", "")
    return ""


def init_sentry() -> None:
    sentry_sdk.init(
        dsn=sentry_dsn(),
        release=f"dithercam@{__version__}",
        environment=os.environ.get("SENTRY_ENV", "development"),
        traces_sample_rate=0.1,
        before_send=strip_pii,
        max_breadcrumbs=50,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dithercam",
        description="Live ordered-dither camera view.",
    )
    parser.add_argument(
        "--source",
        help='"camera" (default), or a path to a video or image file',
    )
    parser.add_argument("--device", type=int, help="camera index")
    parser.add_argument("--width", type=int, help="initial window width")
    parser.add_argument("--height", type=int, help="initial window height")
    parser.add_argument(
        "--dpr",
        dest="device_pixel_ratio",
        type=float,
        help="physical pixels per logical pixel",
    )
    parser.add_argument("--capture-dir", help="directory for saved captures")
    parser.add_argument("--control", choices=sorted(ADAPTERS), help="input mode")
    parser.add_argument(
        "--remote",
        action="store_true",
        default=None,
        help="enable the ZeroMQ remote control channel",
    )
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def load_config(argv: list[str] | None = None, environ: dict | None = None) -> AppConfig:
    """Environment first, then command-line flags on top."""
    args = build_parser().parse_args(argv)
    return AppConfig.from_env(environ).with_overrides(**vars(args))


def main(argv: list[str] | None = None) -> int:
    try:
        config = load_config(argv)
    except ValueError as e:
        print(f"dithercam: {e}", file=sys.stderr)
        return 2

    init_diagnostics(config.log_level or None)
    init_sentry()

    app = DitherCamApp(config)
    if config.remote:
        server = app.enable_remote()
        print(f"ZMQ_PORT={server.port}", flush=True)
        print(f"ZMQ_TOKEN={server.token}", flush=True)

    logger.info("dithercam %s starting (source=%s)", __version__, config.source)
    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
