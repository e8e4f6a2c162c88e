"""
ExpenseCategorizer: AI Expense Categorization Service

Assigns every extracted expense a category from the closed category set,
using the Gemini text-generation API as an opaque classifier and a
deterministic keyword classifier as the fallback.

Design Considerations:
- Batch requests are chunked (10 records per prompt by default) and chunks
  run sequentially with a short pause between them
- Responses go through strict JSON, then JSONRepairEngine, then two regex
  scraping passes before giving up on the model output
- Any label outside the closed set becomes "Other"
- Network failure, authentication failure or unusable output fall back to
  keyword rules, so categorization always yields one label per record
"""

import asyncio
import json
import logging
import re
from datetime import datetime
from typing import Any, Callable, Awaitable, List, Optional, Sequence, Tuple

from expense_importer.config.pipeline_config import PIPELINE_CONFIG
from expense_importer.email_processing.models import (
    DEFAULT_CATEGORY,
    CategorizationRequest,
    coerce_category,
    normalize_category,
)
from expense_importer.utils.json_repair import (
    JSONRepairEngine,
    scrape_field_values,
    scrape_quoted_strings,
)

logger = logging.getLogger(__name__)

# Ordered; the first rule with a matching keyword wins
KEYWORD_RULES: List[Tuple[str, Tuple[str, ...]]] = [
    ("Groceries", ("grocery", "market", "supermarket", "supermercado", "walmart",
                   "masxmenos", "automercado", "pricesmart")),
    ("Transportation", ("gas", "fuel", "shell", "exxon", "uber", "didi", "parking",
                        "delta", "recope")),
    ("Food & Dining", ("restaurant", "cafe", "pizza", "burger", "starbucks", "mcdonald",
                       "kfc", "subway", "soda")),
    ("Shopping", ("amazon", "shop", "tienda", "store", "shein", "aliexpress")),
    ("Utilities", ("electric", "water", "internet", "phone", "claro", "kolbi", "tigo")),
    ("Healthcare", ("pharmacy", "farmacia", "medical", "doctor", "hospital", "clinic")),
    ("Entertainment", ("movie", "cinema", "theater", "netflix", "spotify", "disney")),
    ("Travel", ("airbnb", "booking", "hotel", "airline", "expedia")),
    ("Personal Care", ("salon", "spa", "gym", "fitness")),
    ("Education", ("school", "university", "course", "udemy")),
    ("Insurance", ("insurance", "seguro")),
]

CATEGORY_GUIDE = """- Food & Dining: Starbucks, McDonald's, Burger King, Pizzería, Soda, Restaurante, Café Britt, Subway, KFC, Uber Eats
- Groceries: Walmart, Masxmenos, Auto Mercado, Fresh Market, Supermercado, PriceSmart, Perimercados
- Transportation: Uber, Didi, Shell, Delta, Gas Station, Recope, Quick Lube, Riteve, Car Wash
- Entertainment: Netflix, Spotify, Disney+, Cinemark, YouTube Premium, Twitch, Eventbrite, Bars
- Utilities: Claro, Kolbi, ICE, Tigo, Internet, Electricidad, Agua
- Shopping: Amazon, Shein, Aliexpress, Zara, H&M, Tienda, Boutique, Nike, Adidas, Electronics
- Travel: Airbnb, Booking, Expedia, Hotel, Hertz, Aerolínea, Avianca, Copa, American Airlines
- Healthcare: Pharmacy, Medical, Doctor, Hospital, Clinics, Dentist, Optometrist
- Education: Schools, Universities, Online Courses, Books, Educational Materials
- Insurance: Car Insurance, Health Insurance, Life Insurance, Property Insurance
- Home & Garden: Home Depot, Hardware Stores, Furniture, Garden Centers, Home Improvement
- Personal Care: Salons, Spas, Gyms, Personal Care Products, Beauty Services, Smart Fit
- Business: Office Supplies, Business Services, Professional Services, Software
- Gifts & Donations: Gift Shops, Charities, Donations, Gifts, Fundraising
- Other: Anything not clearly fitting in the above categories"""

_UNSAFE_CHARS = re.compile(r'["\\\x00-\x1f\x7f]')


def categorize_by_keywords(merchant: Optional[str]) -> str:
    """Deterministic category from merchant-name keywords, "Other" if none match."""
    name = (merchant or "").lower()
    for category, keywords in KEYWORD_RULES:
        if any(keyword in name for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def sanitize_text(value: Optional[str], max_length: Optional[int] = None) -> str:
    """Strip quotes, backslashes and control characters; optionally truncate."""
    cleaned = " ".join(_UNSAFE_CHARS.sub(" ", value or "").split())
    if max_length and len(cleaned) > max_length:
        cleaned = cleaned[:max_length] + "..."
    return cleaned


def _category_of(item: Any) -> Optional[str]:
    if isinstance(item, dict):
        for key, value in item.items():
            if isinstance(key, str) and key.strip().lower() == "category":
                return coerce_category(value)
        return None
    if isinstance(item, str):
        return coerce_category(item)
    return None


def _unwrap_items(data: Any) -> Optional[List[Any]]:
    """List of per-record items from a parsed response, or None."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if _category_of(data) is not None:
            return [data]
        for value in data.values():
            if isinstance(value, list):
                return value
    return None


class ExpenseCategorizer:
    """
    Two-tier expense categorizer: generative model first, keyword rules second.

    Attributes:
        client: GeminiClient, or None to categorize with keyword rules only
        chunk_size: Records per batch prompt
        chunk_delay: Seconds between chunk requests
        max_merchant_length: Merchant names longer than this are truncated in prompts
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        repair_engine: Optional[JSONRepairEngine] = None,
        chunk_size: Optional[int] = None,
        chunk_delay: Optional[float] = None,
        max_merchant_length: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        config = PIPELINE_CONFIG["categorizer"]
        self.client = client
        self.repair_engine = repair_engine or JSONRepairEngine()
        self.chunk_size = max(1, chunk_size or config["chunk_size"])
        self.chunk_delay = config["chunk_delay"] if chunk_delay is None else chunk_delay
        self.max_merchant_length = max_merchant_length or config["max_merchant_length"]
        self._sleep = sleep

        if client is None:
            logger.warning("No generative model client configured, using keyword categorization only")

    # Prompts

    def build_single_prompt(self, request: CategorizationRequest) -> str:
        merchant = sanitize_text(request.merchant, self.max_merchant_length)
        location = sanitize_text(request.location) or "Unknown"
        return (
            "Categorize this expense into one of these categories with examples:\n\n"
            f"{CATEGORY_GUIDE}\n\n"
            f"Expense: {merchant} - {request.currency} {request.amount:.2f} - {location} - "
            f"{request.occurred_at.isoformat()}\n\n"
            'Return only: {"category": "CategoryName"}'
        )

    def build_batch_prompt(self, requests: Sequence[CategorizationRequest]) -> str:
        items = [
            {
                "merchant": sanitize_text(request.merchant, self.max_merchant_length),
                "amount": float(request.amount),
                "currency": request.currency,
                "location": sanitize_text(request.location) or "Unknown",
                "date": request.occurred_at.isoformat(),
            }
            for request in requests
        ]
        return (
            "Categorize each expense into one of these categories with examples:\n\n"
            f"{CATEGORY_GUIDE}\n\n"
            f"{json.dumps(items, indent=2, ensure_ascii=False)}\n\n"
            'Return the same array, in the same order, with a "category" field added to '
            "each object. Use only the categories listed above."
        )

    # Response parsing

    def parse_single_response(self, text: str) -> Optional[str]:
        """
        Category from a single-expense response.

        Returns:
            A label from the closed set, or None if nothing usable was found
        """
        categories = self.parse_batch_response(text, 1)
        return categories[0]

    def parse_batch_response(self, text: str, expected: int) -> List[Optional[str]]:
        """
        Positional categories from a batch response.

        Returns:
            Exactly ``expected`` entries; None where the response gave nothing
        """
        found: List[Optional[str]] = []

        result = self.repair_engine.parse(text)
        if result.success:
            items = _unwrap_items(result.data)
            if items is not None:
                found = [_category_of(item) for item in items]
            logger.debug(f"Parsed model response via '{result.strategy}' ({len(found)} items)")

        if not any(found):
            scraped = scrape_field_values(text, "category")
            if scraped:
                found = [coerce_category(value) for value in scraped]
                logger.debug(f"Recovered {len(found)} categories by field scraping")

        if not any(found):
            labels = [normalize_category(value) for value in scrape_quoted_strings(text)]
            found = [label for label in labels if label]
            if found:
                logger.debug(f"Recovered {len(found)} categories from quoted labels")

        found = found[:expected]
        return found + [None] * (expected - len(found))

    # Categorization

    async def _categorize_chunk(
        self,
        chunk: Sequence[CategorizationRequest],
        request_id: str,
        chunk_label: str,
    ) -> List[str]:
        fallback = [categorize_by_keywords(request.merchant) for request in chunk]
        if self.client is None:
            return fallback

        try:
            prompt = self.build_single_prompt(chunk[0]) if len(chunk) == 1 else self.build_batch_prompt(chunk)
            text = await self.client.generate(prompt, request_id=request_id)
        except Exception as e:
            logger.warning(f"[{request_id}] Model categorization failed for {chunk_label}, using keyword rules: {e}")
            return fallback

        parsed = self.parse_batch_response(text, len(chunk))
        missing = sum(1 for category in parsed if category is None)
        if missing:
            logger.warning(
                f"[{request_id}] Model response for {chunk_label} missing {missing}/{len(chunk)} "
                f"categories, filling with keyword rules"
            )
        return [category or fallback[index] for index, category in enumerate(parsed)]

    async def categorize_one(self, request: CategorizationRequest, request_id: Optional[str] = None) -> str:
        """
        Category for a single expense.

        Never raises; returns a label from the closed set.
        """
        request_id = request_id or f"categorize-{datetime.now().strftime('%Y%m%d%H%M%S')}"
        categories = await self._categorize_chunk([request], request_id, "single expense")
        return categories[0]

    async def categorize_many(
        self,
        requests: Sequence[CategorizationRequest],
        request_id: Optional[str] = None,
    ) -> List[str]:
        """
        Categories for many expenses, in input order.

        Splits the input into chunks of ``chunk_size`` processed one after
        another with ``chunk_delay`` between them.

        Args:
            requests: Expenses to categorize
            request_id: Identifier for log correlation

        Returns:
            One label from the closed set per request; never raises
        """
        request_id = request_id or f"categorize-{datetime.now().strftime('%Y%m%d%H%M%S')}"
        requests = list(requests)
        if not requests:
            return []

        total_chunks = (len(requests) + self.chunk_size - 1) // self.chunk_size
        logger.info(f"[{request_id}] Categorizing {len(requests)} expenses in {total_chunks} chunk(s)")

        categories: List[str] = []
        for index, start in enumerate(range(0, len(requests), self.chunk_size)):
            if index and self.chunk_delay > 0:
                await self._sleep(self.chunk_delay)
            chunk = requests[start:start + self.chunk_size]
            categories.extend(
                await self._categorize_chunk(chunk, request_id, f"chunk {index + 1}/{total_chunks}")
            )

        return categories
