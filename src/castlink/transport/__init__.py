"""Transport layer: channel, correlation, heartbeat, routing and connection lifecycle."""

from castlink.transport.channel import TransportChannel
from castlink.transport.connection_manager import ConnectionManager, ConnectionState
from castlink.transport.correlator import RequestCorrelator
from castlink.transport.exceptions import ChannelClosedError, RequestTimeoutError, TransportIOError
from castlink.transport.heartbeat import HeartbeatMonitor, HeartbeatState
from castlink.transport.retry_policy import RetryPolicy, TimeoutConfig
from castlink.transport.router import EventDispatcher, NamespaceRouter, SubscriberRegistry, Subscription
from castlink.transport.socket_abstraction import ByteStream, TLSConnection
from castlink.transport.types import Event, PendingRequest, Reply

__all__ = [
    "ByteStream",
    "ChannelClosedError",
    "ConnectionManager",
    "ConnectionState",
    "Event",
    "EventDispatcher",
    "HeartbeatMonitor",
    "HeartbeatState",
    "NamespaceRouter",
    "PendingRequest",
    "Reply",
    "RequestCorrelator",
    "RequestTimeoutError",
    "RetryPolicy",
    "SubscriberRegistry",
    "Subscription",
    "TLSConnection",
    "TimeoutConfig",
    "TransportChannel",
    "TransportIOError",
]
