"""Run the ARI outbox publisher until SIGINT/SIGTERM.

Usage:
    DATABASE_URL=... ARI_ENDPOINT_URL=https://... ARI_PARTNER_ID=... \
        python scripts/run_publisher.py
"""

from __future__ import annotations

import os
import signal
import sys
import threading


def main() -> None:
    missing = [name for name in ("DATABASE_URL", "ARI_ENDPOINT_URL") if not os.environ.get(name)]
    if missing:
        sys.stderr.write(f"ERROR: set {', '.join(missing)}\n")
        sys.exit(1)

    from hotelcore.channel.client import HttpChannelClient
    from hotelcore.channel.publisher import AriPublisher
    from hotelcore.infra.settings import load_channel_settings, load_publisher_settings
    from hotelcore.observability.logging import configure_logging

    configure_logging()

    channel = load_channel_settings()
    publisher = AriPublisher(
        HttpChannelClient(channel),
        load_publisher_settings(),
        partner_id=channel.partner_id,
    )

    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())

    publisher.run_forever(stop)


if __name__ == "__main__":
    main()
