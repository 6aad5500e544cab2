"""Work discovery: keyword search and genre rankings."""

from novel_reader.catalog.service import CatalogService, Novel

__all__ = ["CatalogService", "Novel"]
