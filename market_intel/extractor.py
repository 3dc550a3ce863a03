"""
Content extractor: raw page HTML/markdown to a structured product draft.

Each field is found through a layered chain: the source profile's own
selector, then page metadata or markdown heuristics, then generic
selectors, then a literal default. ``extract`` never raises; any
internal failure degrades to a record built from markdown and page
metadata alone.
"""

import logging
import re
from collections import Counter
from typing import List, Optional
from urllib.parse import urljoin

from .schemas import (
    ExtractedProduct,
    PageMetadata,
    Pricing,
    PricingInterval,
    PricingType,
    ProductMetadata,
    Reviews,
    SeoData,
    Seller,
)
from .selectors import SelectorEngine, SoupSelector
from .sources import SourceProfile

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Product"
DEFAULT_DESCRIPTION = "No description available"
DEFAULT_CATEGORY = "digital-product"

MAX_FEATURES = 20
MAX_IMAGES = 10
MAX_TAGS = 15
MAX_KEYWORD_TAGS = 10

FALLBACK_TITLE_SELECTORS = ["h1", ".title", ".product-title", '[data-testid*="title"]']
FALLBACK_DESCRIPTION_SELECTORS = [".description", ".product-description", ".content", "p"]
FALLBACK_FEATURE_SELECTORS = ["ul li", ".features li", ".feature-list li"]

CURRENCY_SYMBOLS = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
}

# Ordered: the first bucket with a keyword hit wins
CATEGORY_KEYWORDS = [
    ("template", ["template", "design", "layout"]),
    ("course", ["course", "tutorial", "lesson", "learn"]),
    ("ebook", ["ebook", "book", "pdf", "guide"]),
    ("software", ["software", "app", "tool", "program"]),
    ("graphics", ["graphic", "image", "vector", "illustration"]),
    ("font", ["font", "typeface", "typography"]),
    ("music", ["music", "audio", "sound", "track"]),
    ("video", ["video", "movie", "film", "animation"]),
]

STOP_WORDS = frozenset([
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "is", "are", "was", "were", "be", "been", "have",
    "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "this", "that", "these", "those", "you", "your", "our", "we", "they",
])

PRICE_CHARS_PATTERN = re.compile(r"[^\d.,$€£¥]")
AMOUNT_PATTERN = re.compile(r"[\d,]+\.?\d*")
MARKDOWN_PRICE_PATTERN = re.compile(r"\$[\d,]+\.?\d*")
TEXT_PRICE_PATTERN = re.compile(r"\$(\d+(?:,\d{3})*(?:\.\d{2})?)")
LIST_ITEM_PATTERN = re.compile(r"^\s*(?:[*\-+]|\d+[.)])\s+(.+?)\s*$", re.MULTILINE)
LIST_PREFIX_PATTERN = re.compile(r"^(?:[*\-+]|\d+[.)])\s")
HEADING_PATTERN = re.compile(r"^#+\s*")
HASHTAG_PATTERN = re.compile(r"#(\w+)")
WORD_PATTERN = re.compile(r"\b\w{3,}\b")
RATING_PATTERN = re.compile(r"(\d+\.?\d*)")
UNSAFE_CHARS_PATTERN = re.compile(r"[^\w\s\-.,!?()]")
WHITESPACE_PATTERN = re.compile(r"\s+")


def clean_text(text: str) -> str:
    """Collapse whitespace and drop characters outside a conservative set."""
    text = WHITESPACE_PATTERN.sub(" ", text or "")
    return UNSAFE_CHARS_PATTERN.sub("", text).strip()


def parse_price_text(text: str) -> Pricing:
    """
    Parse a price string such as "$29.99 per month" or "Free download".

    Keyword classification runs on the raw text: "free" wins over
    "month", which wins over "year"; anything else is a one-time price.
    """
    amount = None
    match = AMOUNT_PATTERN.search(PRICE_CHARS_PATTERN.sub("", text))
    if match:
        digits = match.group(0).replace(",", "")
        if digits and digits != ".":
            amount = float(digits)

    currency = "USD"
    for symbol, code in CURRENCY_SYMBOLS.items():
        if symbol in text:
            currency = code
            break

    lowered = text.lower()
    if "free" in lowered:
        return Pricing(type=PricingType.FREE, amount=0, currency=currency)
    if "month" in lowered:
        return Pricing(
            type=PricingType.SUBSCRIPTION,
            amount=amount,
            currency=currency,
            interval=PricingInterval.MONTHLY,
        )
    if "year" in lowered:
        return Pricing(
            type=PricingType.SUBSCRIPTION,
            amount=amount,
            currency=currency,
            interval=PricingInterval.YEARLY,
        )
    return Pricing(type=PricingType.ONE_TIME, amount=amount, currency=currency)


def first_markdown_heading(markdown: str) -> Optional[str]:
    for line in (markdown or "").splitlines():
        if line.startswith("#"):
            heading = HEADING_PATTERN.sub("", line).strip()
            if heading:
                return heading
    return None


def prose_paragraphs(markdown: str, limit: int = 3) -> List[str]:
    """Markdown paragraphs that read as prose: long, not headings or list items, no prices."""
    paragraphs = []
    for paragraph in (markdown or "").split("\n\n"):
        paragraph = paragraph.strip()
        if len(paragraph) < 50:
            continue
        if paragraph.startswith("#") or LIST_PREFIX_PATTERN.match(paragraph):
            continue
        if any(symbol in paragraph for symbol in CURRENCY_SYMBOLS):
            continue
        paragraphs.append(paragraph)
        if len(paragraphs) >= limit:
            break
    return paragraphs


class ContentExtractor:
    """
    Turns fetched page content into an ExtractedProduct.

    Usage:
        extractor = ContentExtractor()
        draft = extractor.extract(html, markdown, url, profile, page_metadata)
    """

    def __init__(self, selector: Optional[SelectorEngine] = None):
        """
        Args:
            selector: Selector engine; defaults to SoupSelector (bs4 + lxml)
        """
        self.selector = selector or SoupSelector()

    def extract(
        self,
        html: str,
        markdown: str,
        url: str,
        profile: SourceProfile,
        page_metadata: Optional[PageMetadata] = None,
    ) -> ExtractedProduct:
        html = html or ""
        markdown = markdown or ""
        try:
            page_text = self.selector.text(html)
            return ExtractedProduct(
                title=self._title(html, markdown, profile, page_metadata),
                description=self._description(html, markdown, profile),
                pricing=self._pricing(html, markdown, page_text, profile),
                features=self._features(html, markdown, profile),
                images=self._images(html, url, profile),
                seller=self._seller(html, profile),
                reviews=self._reviews(html, profile),
                metadata=self._metadata(page_text, markdown, profile, page_metadata),
                content=markdown or page_text,
            )
        except Exception as e:
            logger.warning(f"Extraction degraded for {url}: {e}")
            return self._degraded(markdown, profile, page_metadata)

    # -- fields -------------------------------------------------------------

    def _text_of(self, html: str, selector: Optional[str]) -> Optional[str]:
        if not selector:
            return None
        element = self.selector.find_first(html, selector)
        if element and element.text.strip():
            return element.text
        return None

    def _title(self, html, markdown, profile, page_metadata) -> str:
        text = self._text_of(html, profile.selector("title"))
        if text:
            return clean_text(text)

        if page_metadata and page_metadata.title:
            return clean_text(page_metadata.title)

        for selector in FALLBACK_TITLE_SELECTORS:
            text = self._text_of(html, selector)
            if text:
                return clean_text(text)

        heading = first_markdown_heading(markdown)
        if heading:
            return clean_text(heading)
        return DEFAULT_TITLE

    def _description(self, html, markdown, profile) -> str:
        text = self._text_of(html, profile.selector("description"))
        if text:
            return clean_text(text)

        paragraphs = prose_paragraphs(markdown)
        if paragraphs:
            return "\n\n".join(paragraphs)

        for selector in FALLBACK_DESCRIPTION_SELECTORS:
            text = self._text_of(html, selector)
            if text and len(text) > 20:
                return clean_text(text)

        return DEFAULT_DESCRIPTION

    def _pricing(self, html, markdown, page_text, profile) -> Pricing:
        text = self._text_of(html, profile.selector("price"))
        if text:
            pricing = parse_price_text(text)
            if pricing.amount is not None:
                return pricing

        match = MARKDOWN_PRICE_PATTERN.search(markdown)
        if match:
            return parse_price_text(match.group(0))

        match = TEXT_PRICE_PATTERN.search(page_text)
        if match:
            return Pricing(
                type=PricingType.ONE_TIME,
                amount=float(match.group(1).replace(",", "")),
                currency="USD",
            )

        return Pricing(type=PricingType.FREE)

    def _features(self, html, markdown, profile) -> List[str]:
        features = []
        selector = profile.selector("features")
        if selector:
            for element in self.selector.find_all(html, selector):
                if element.text.strip():
                    features.append(clean_text(element.text))

        if not features:
            for item in LIST_ITEM_PATTERN.findall(markdown):
                if 3 <= len(item) <= 200:
                    features.append(item)

        if not features:
            for fallback in FALLBACK_FEATURE_SELECTORS:
                for element in self.selector.find_all(html, fallback):
                    if element.text.strip():
                        features.append(clean_text(element.text))
                if features:
                    break

        return features[:MAX_FEATURES]

    def _images(self, html, url, profile) -> List[str]:
        images: List[str] = []
        seen = set()

        def add(src: str) -> None:
            full_url = urljoin(url, src)
            if full_url and full_url not in seen:
                seen.add(full_url)
                images.append(full_url)

        selector = profile.selector("images")
        if selector:
            for element in self.selector.find_all(html, selector):
                src = element.get("src")
                if src:
                    add(src)

        if not images:
            for element in self.selector.find_all(html, "img"):
                src = element.get("src")
                if src and "icon" not in src and "logo" not in src:
                    add(src)

        return images[:MAX_IMAGES]

    def _seller(self, html, profile) -> Optional[Seller]:
        text = self._text_of(html, profile.selector("seller"))
        if not text:
            return None
        return Seller(name=clean_text(text), verified=False)

    def _reviews(self, html, profile) -> Optional[Reviews]:
        rating_selector = profile.selector("rating")
        reviews_selector = profile.selector("reviews")
        if not rating_selector and not reviews_selector:
            return None

        rating = None
        text = self._text_of(html, rating_selector)
        if text:
            match = RATING_PATTERN.search(text)
            if match:
                rating = float(match.group(1))

        count = None
        if reviews_selector:
            count = len(self.selector.find_all(html, reviews_selector))

        if rating is None and count is None:
            return None
        return Reviews(average_rating=rating or 0.0, total_reviews=count or 0)

    def _metadata(self, page_text, markdown, profile, page_metadata) -> ProductMetadata:
        content = f"{page_text} {markdown}"
        metadata = ProductMetadata(
            category=detect_category(content, profile),
            tags=extract_tags(content),
            language=(page_metadata.language if page_metadata else None) or "en",
        )
        if page_metadata:
            metadata.seo_data = SeoData(
                meta_title=page_metadata.title,
                meta_description=page_metadata.description,
                og_image=page_metadata.og_image,
            )
        return metadata

    # -- degraded path ------------------------------------------------------

    def _degraded(self, markdown, profile, page_metadata) -> ExtractedProduct:
        title = DEFAULT_TITLE
        if page_metadata and page_metadata.title:
            title = page_metadata.title
        else:
            title = first_markdown_heading(markdown) or DEFAULT_TITLE

        lines = [
            line for line in markdown.splitlines()
            if line.strip() and not line.startswith("#") and len(line) > 20
        ]
        description = "\n".join(lines[:3]) or DEFAULT_DESCRIPTION

        return ExtractedProduct(
            title=title,
            description=description,
            pricing=Pricing(type=PricingType.FREE),
            content=markdown,
            metadata=ProductMetadata(
                category=profile.categories[0] if profile.categories else DEFAULT_CATEGORY,
                language=(page_metadata.language if page_metadata else None) or "en",
            ),
            degraded=True,
        )


def detect_category(content: str, profile: SourceProfile) -> str:
    """First keyword bucket found in the content, else the profile's first category."""
    lowered = content.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return profile.categories[0] if profile.categories else DEFAULT_CATEGORY


def extract_tags(content: str) -> List[str]:
    """Hashtags plus the most frequent non-stopword words, deduplicated."""
    tags = HASHTAG_PATTERN.findall(content)

    counts = Counter(
        word for word in WORD_PATTERN.findall(content.lower())
        if len(word) > 3 and word not in STOP_WORDS
    )
    tags.extend(word for word, _ in counts.most_common(MAX_KEYWORD_TAGS))

    return list(dict.fromkeys(tags))[:MAX_TAGS]
