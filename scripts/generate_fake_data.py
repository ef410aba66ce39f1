"""Generate a fake catalog and matching external datasets for local runs.

Writes three things:
- a SQLite catalog with items whose names loosely match the metadata titles,
- ``data/meta.jsonl`` with external product metadata,
- ``data/reviews.jsonl`` with external reviews for those products.

Some catalog names are exact copies of a metadata title, some are reworded
and some have no counterpart at all, so every resolver path gets exercised.

Example:
    Run the script directly to generate default data:
        $ python scripts/generate_fake_data.py

    Or import and use programmatically:
        from scripts.generate_fake_data import generate_fake_metadata
        meta = generate_fake_metadata(num_products=50)
"""

import random
import sys
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

import pandas as pd

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from catalogsync.pipeline.models import CatalogItem, ColorOption
from catalogsync.storage import CatalogStore

# Default configuration constants
DEFAULT_NUM_PRODUCTS = 200
DEFAULT_NUM_REVIEWERS = 300
DEFAULT_NUM_REVIEWS = 2000
DEFAULT_UNMATCHED_ITEMS = 20
DEFAULT_DAYS_BACK = 365
DEFAULT_SEED = 42
SECONDS_PER_DAY = 86400

ADJECTIVES = ["Classic", "Slim", "Relaxed", "Vintage", "Essential", "Premium", "Everyday"]
MATERIALS = ["Cotton", "Linen", "Denim", "Wool", "Leather", "Fleece", "Silk"]
PRODUCT_TYPES = [
    "T-Shirt", "Polo Shirt", "Blouse", "Jeans", "Trousers", "Shorts", "Skirt",
    "Dress", "Jumpsuit", "Sneakers", "Boots", "Sandals", "Belt", "Scarf", "Handbag",
]
AUDIENCES = ["Men's", "Women's", "Unisex"]
STORES = ["Northwind", "Bluebird Apparel", "Tidewater", "Summit Co", "Foxglove"]
COLORS = [
    ("Red", "#FF0000"), ("Olive", "#808000"), ("Beige", "#F5F5DC"),
    ("Black", "#000000"), ("Navy", "#001F3F"), ("Teal", "#008080"),
]
REVIEW_TEXTS = [
    "Great fit and very comfortable.",
    "Fabric is thinner than expected.",
    "Exactly as described.",
    "Runs large, order a size down.",
    "Lovely color, washes well.",
    "",
]


def _title(rng: random.Random) -> str:
    return " ".join([
        rng.choice(AUDIENCES),
        rng.choice(ADJECTIVES),
        rng.choice(MATERIALS),
        rng.choice(PRODUCT_TYPES),
    ])


def _reword(title: str, rng: random.Random) -> str:
    """Shuffle the middle words so only token overlap can match."""
    words = title.split()
    middle = words[1:-1]
    rng.shuffle(middle)
    return " ".join([words[0]] + middle + [words[-1]])


def generate_fake_metadata(
    num_products: int = DEFAULT_NUM_PRODUCTS,
    seed: Optional[int] = DEFAULT_SEED,
) -> pd.DataFrame:
    """Generate external product metadata rows.

    Args:
        num_products: Number of products. Must be positive.
        seed: Random seed for reproducible output.

    Returns:
        DataFrame with one row per product and the metadata stream columns.

    Raises:
        ValueError: If num_products is non-positive.
    """
    if num_products <= 0:
        raise ValueError("num_products must be positive")

    rng = random.Random(seed)
    rows = []
    for i in range(num_products):
        key = f"B{i:09d}"
        title = _title(rng)
        rows.append({
            "parent_asin": key,
            "title": title,
            "description": [f"{title}.", "Machine washable."],
            "price": round(rng.uniform(9, 120), 2) if rng.random() > 0.1 else None,
            "images": [{
                "large": f"https://img.example.com/{key}/large.jpg",
                "thumb": f"https://img.example.com/{key}/thumb.jpg",
            }],
            "store": rng.choice(STORES),
            "main_category": "AMAZON FASHION",
            "average_rating": round(rng.uniform(2.5, 5.0), 1),
            "rating_number": rng.randint(0, 40),
        })
    return pd.DataFrame(rows)


def generate_fake_reviews(
    metadata: pd.DataFrame,
    num_reviewers: int = DEFAULT_NUM_REVIEWERS,
    num_reviews: int = DEFAULT_NUM_REVIEWS,
    end_date: Optional[datetime] = None,
    seed: Optional[int] = DEFAULT_SEED,
) -> pd.DataFrame:
    """Generate external review rows for the given products.

    Timestamps are epoch milliseconds within the last year.

    Raises:
        ValueError: If any count is non-positive or metadata is empty.
    """
    if num_reviewers <= 0 or num_reviews <= 0:
        raise ValueError("num_reviewers and num_reviews must be positive")
    if metadata.empty:
        raise ValueError("Cannot generate reviews without products")

    rng = random.Random(seed)
    end_date = end_date or datetime.now()
    start_date = end_date - timedelta(days=DEFAULT_DAYS_BACK)
    reviewers = [uuid.UUID(int=rng.getrandbits(128)).hex[:28].upper() for _ in range(num_reviewers)]
    keys = metadata["parent_asin"].tolist()

    rows = []
    for _ in range(num_reviews):
        text = rng.choice(REVIEW_TEXTS)
        timestamp = start_date + timedelta(
            days=rng.randrange(DEFAULT_DAYS_BACK),
            seconds=rng.randrange(SECONDS_PER_DAY),
        )
        rows.append({
            "user_id": rng.choice(reviewers),
            "parent_asin": rng.choice(keys),
            "rating": float(rng.randint(1, 5)),
            "title": "Review" if text else "Solid purchase",
            "text": text,
            "timestamp": int(timestamp.timestamp() * 1000),
        })
    return pd.DataFrame(rows).sort_values("timestamp").reset_index(drop=True)


def generate_fake_catalog(
    metadata: pd.DataFrame,
    unmatched: int = DEFAULT_UNMATCHED_ITEMS,
    seed: Optional[int] = DEFAULT_SEED,
) -> List[CatalogItem]:
    """Build catalog items, most of which correspond to a metadata row."""
    rng = random.Random(seed)
    items = []
    for title in metadata["title"]:
        name = title if rng.random() < 0.5 else _reword(title, rng)
        items.append(_catalog_item(name, rng))
    for _ in range(unmatched):
        items.append(_catalog_item(f"Gift Card {rng.randint(10, 500)}", rng))
    return items


def _catalog_item(name: str, rng: random.Random) -> CatalogItem:
    colors = rng.sample(COLORS, rng.randint(0, 4))
    return CatalogItem(
        id=uuid.UUID(int=rng.getrandbits(128)).hex,
        name=name,
        price=float(rng.randint(10, 150)),
        colors=[ColorOption(name=n, hex_code=h) for n, h in colors],
        size_stock={size: rng.randint(0, 30) for size in ("s", "m", "l", "xl")},
        description="No description" if rng.random() < 0.3 else "",
    )


def main() -> None:
    """Generate the datasets and a catalog under ``data/``."""
    print(f"Generating {DEFAULT_NUM_PRODUCTS} products and {DEFAULT_NUM_REVIEWS} reviews...")

    try:
        metadata = generate_fake_metadata()
        reviews = generate_fake_reviews(metadata)
        items = generate_fake_catalog(metadata)
    except ValueError as e:
        print(f"Error generating data: {e}")
        return

    # Ensure data directory exists
    data_dir = project_root / "data"
    data_dir.mkdir(exist_ok=True)

    meta_path = data_dir / "meta.jsonl"
    review_path = data_dir / "reviews.jsonl"
    metadata.to_json(meta_path, orient="records", lines=True)
    reviews.to_json(review_path, orient="records", lines=True)

    db_path = data_dir / "catalog.db"
    with CatalogStore.open(f"sqlite:///{db_path}") as store:
        result = store.insert_items(items)

    # Print results summary
    print(f"\nData generated successfully!")
    print(f"Metadata:  {meta_path} ({len(metadata)} rows)")
    print(f"Reviews:   {review_path} ({len(reviews)} rows)")
    print(f"Catalog:   {db_path} ({result.applied} items inserted, {result.failed} skipped)")
    print(f"\nUnique reviewers: {reviews['user_id'].nunique()}")
    print(f"Products with reviews: {reviews['parent_asin'].nunique()}")


if __name__ == "__main__":
    main()
