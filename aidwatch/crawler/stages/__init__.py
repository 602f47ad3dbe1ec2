from .crawl import ChangeDecision, CrawlStage, decide_change
from .embed import EmbedStage, build_vector_document
from .scrape import ScrapeStage, canonical_text

__all__ = [
    "ChangeDecision",
    "CrawlStage",
    "EmbedStage",
    "ScrapeStage",
    "build_vector_document",
    "canonical_text",
    "decide_change",
]
