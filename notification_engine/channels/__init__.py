"""Delivery channels.

- base.py: ChannelHandler interface
- email.py, sms.py, push.py, in_app.py: one handler per notification type
- providers.py: provider capabilities, HTTP and simulated implementations
- registry.py: ChannelRegistry and the ChannelDispatcher send contract
"""

from notification_engine.channels.base import ChannelHandler
from notification_engine.channels.email import EmailChannel
from notification_engine.channels.in_app import InAppChannel
from notification_engine.channels.providers import (
    EmailProvider,
    HttpEmailProvider,
    HttpPushProvider,
    HttpSmsProvider,
    PushProvider,
    SimulatedProvider,
    SmsProvider,
    with_provider_retry,
)
from notification_engine.channels.push import PushChannel
from notification_engine.channels.registry import ChannelDispatcher, ChannelRegistry
from notification_engine.channels.sms import SmsChannel

__all__ = [
    "ChannelHandler",
    "EmailChannel",
    "SmsChannel",
    "PushChannel",
    "InAppChannel",
    "ChannelRegistry",
    "ChannelDispatcher",
    "EmailProvider",
    "SmsProvider",
    "PushProvider",
    "HttpEmailProvider",
    "HttpSmsProvider",
    "HttpPushProvider",
    "SimulatedProvider",
    "with_provider_retry",
]
