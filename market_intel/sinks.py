"""
Persistence sinks for finished products and analyses.

The scraper and analyzer hand results to anything implementing
``ProductSink``. JsonlSink appends one JSON object per line.
"""

import logging
import threading
from pathlib import Path
from typing import List, Protocol

from .schemas import MarketAnalysis, StructuredProduct

logger = logging.getLogger(__name__)


class ProductSink(Protocol):
    def save_product(self, product: StructuredProduct) -> None:
        ...

    def save_analysis(self, analysis: MarketAnalysis) -> None:
        ...


class JsonlSink:
    """
    Append-only JSONL storage.

    Products and analyses go to separate files so each file holds one
    record type.
    """

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)
        self.products_path = self.directory / "products.jsonl"
        self.analyses_path = self.directory / "analyses.jsonl"
        self._lock = threading.Lock()

    def _append(self, path: Path, line: str) -> None:
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a") as f:
                f.write(line + "\n")

    def save_product(self, product: StructuredProduct) -> None:
        self._append(self.products_path, product.model_dump_json())
        logger.debug(f"Saved product {product.id} to {self.products_path}")

    def save_analysis(self, analysis: MarketAnalysis) -> None:
        self._append(self.analyses_path, analysis.model_dump_json())
        logger.info(
            f"Saved analysis ({len(analysis.winning_products)} winning products) "
            f"to {self.analyses_path}"
        )

    def load_products(self) -> List[StructuredProduct]:
        """Read back every saved product."""
        if not self.products_path.exists():
            return []
        with open(self.products_path) as f:
            return [StructuredProduct.model_validate_json(line) for line in f if line.strip()]
