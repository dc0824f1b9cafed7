"""EZ Ticketing: inventory allocation, waitlist promotion and notification dispatch."""

__version__ = "1.0.0"
