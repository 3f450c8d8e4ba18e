"""Network clients for the upstream feed, the webhook sink and the lookup relay."""
from .delivery_queue import DeliveryQueue
from .feed_client import FeedClient, extract_blog_name
from .lookup_client import LookupClient
from .relays import Relay, RelayContext, StoredRelayContext
from .webhook_client import WebhookClient

__all__ = [
    "DeliveryQueue",
    "FeedClient",
    "LookupClient",
    "Relay",
    "RelayContext",
    "StoredRelayContext",
    "WebhookClient",
    "extract_blog_name",
]
