"""Market data clients."""

from app.clients.alphavantage import AlphaVantageFeed

__all__ = ["AlphaVantageFeed"]
