"""Media usage indexer: which pages reference which media, fragments, PDFs and SVGs."""

__version__ = "0.3.0"
