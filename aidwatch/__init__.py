"""AidWatch: crawl, scrape and embed refresh pipeline for government-aid pages."""

__version__ = "0.1.0"

__all__ = ["__version__"]
