"""LeadScrape: resilient lead ingestion with fuzzy deduplication."""

__version__ = "0.1.0"
