"""Building blocks for the SignalR hub protocol: JSON framing, hub connections and HTTP transports."""

__version__ = "0.1.0"

__all__ = [
    "connection",
    "ctxpipe",
    "httpconnection",
    "hubconnection",
    "hubs",
    "invokeclient",
    "invokeresult",
    "jsonprotocol",
    "messages",
]