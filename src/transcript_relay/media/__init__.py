"""Media fetching for inbound voice and video messages."""

from transcript_relay.media.fetcher import MediaFetcher

__all__ = ["MediaFetcher"]
