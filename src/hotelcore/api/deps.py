"""Process-wide worker singletons, injectable through FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from hotelcore.channel.client import HttpChannelClient
from hotelcore.channel.publisher import AriPublisher
from hotelcore.domain.sweeper import HoldExpirySweeper
from hotelcore.infra.settings import load_channel_settings


@lru_cache(maxsize=1)
def get_sweeper() -> HoldExpirySweeper:
    return HoldExpirySweeper()


@lru_cache(maxsize=1)
def get_publisher() -> AriPublisher:
    channel = load_channel_settings()
    return AriPublisher(HttpChannelClient(channel), partner_id=channel.partner_id)
