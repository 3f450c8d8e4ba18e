"""Feed Courier: republishes Tumblr posts to Discord webhooks."""

__version__ = "0.1.0"
