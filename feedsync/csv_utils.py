"""CSV export of the parsed catalog.

Writes the normalized tables, per-product description files and the image
manifest under the export directory:

    export/
      products.csv            product_details.csv
      manufacturers.csv       product_types.csv
      categories.csv          categories_flat.csv
      product_images.csv
      descriptions/<sku>/description.txt
      images/<sku>/<canonical filename>
"""

import csv
from pathlib import Path
from typing import Any, Dict, Iterable, Sequence

from feedsync.categories import CategoryPathResolver
from feedsync.config import CATEGORY_LIST_SEPARATOR
from feedsync.logging_config import get_logger
from feedsync.models import FeedCatalog, ManifestEntry, Product
from feedsync.url_validation import validate_path_component

__all__ = [
    "PRODUCT_FIELDS",
    "PRODUCT_DETAIL_FIELDS",
    "IMAGE_MANIFEST_FIELDS",
    "write_csv",
    "product_to_row",
    "product_details_to_row",
    "write_products",
    "write_product_details",
    "write_code_table",
    "write_category_tree",
    "write_categories_flat",
    "write_descriptions",
    "write_image_manifest",
    "export_catalog",
]

logger = get_logger("csv_utils")

PRODUCT_FIELDS = [
    "sku", "name", "release_date", "stock_quantity",
    "manufacturer", "product_type", "categories", "upc",
]
PRODUCT_DETAIL_FIELDS = [
    "sku", "height", "length", "width", "weight", "color", "material", "upc",
]
IMAGE_MANIFEST_FIELDS = ["sku", "filename", "original_filename", "status"]

DESCRIPTION_FILENAME = "description.txt"


def write_csv(path: Path, fieldnames: Sequence[str], rows: Iterable[Dict[str, Any]]) -> int:
    """Write rows to a UTF-8 CSV file with a header. Returns the row count."""
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=list(fieldnames), extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
            count += 1
    logger.info(f"Wrote {count} rows to {path}")
    return count


def product_to_row(product: Product) -> Dict[str, str]:
    """Convert a Product into a products.csv row."""
    return {
        "sku": product.sku,
        "name": product.name,
        "release_date": product.release_date.strftime("%Y-%m-%d"),
        "stock_quantity": product.stock_quantity or "",
        "manufacturer": product.manufacturer or "",
        "product_type": product.product_type or "",
        "categories": CATEGORY_LIST_SEPARATOR.join(product.categories),
        "upc": product.upc or "",
    }


def product_details_to_row(product: Product) -> Dict[str, str]:
    row = {name: getattr(product, name) or "" for name in PRODUCT_DETAIL_FIELDS}
    row["sku"] = product.sku
    return row


def write_products(products: Iterable[Product], path: Path) -> int:
    return write_csv(path, PRODUCT_FIELDS, (product_to_row(p) for p in products))


def write_product_details(products: Iterable[Product], path: Path) -> int:
    return write_csv(path, PRODUCT_DETAIL_FIELDS, (product_details_to_row(p) for p in products))


def write_code_table(registry: Dict[str, str], path: Path) -> int:
    """Write a code -> name registry (manufacturers, product types)."""
    return write_csv(
        path, ["code", "name"],
        ({"code": code, "name": name} for code, name in registry.items()),
    )


def write_category_tree(catalog: FeedCatalog, path: Path) -> int:
    return write_csv(
        path, ["code", "name", "parent"],
        (
            {"code": code, "name": entry.name, "parent": entry.parent}
            for code, entry in catalog.categories.items()
        ),
    )


def write_categories_flat(catalog: FeedCatalog, path: Path) -> int:
    """Write every category with its full path.

    Raises:
        CategoryResolutionError: If a parent is missing or the tree has a cycle
    """
    paths = CategoryPathResolver(catalog.categories).resolve_all()
    return write_csv(
        path, ["code", "name"],
        ({"code": code, "name": full_path} for code, full_path in paths.items()),
    )


def write_descriptions(descriptions: Dict[str, str], export_dir: Path) -> int:
    """Write descriptions/<sku>/description.txt for each described product."""
    root = Path(export_dir) / "descriptions"
    for sku, text in descriptions.items():
        sku_dir = root / validate_path_component(sku)
        sku_dir.mkdir(parents=True, exist_ok=True)
        (sku_dir / DESCRIPTION_FILENAME).write_text(text, encoding="utf-8")
    logger.info(f"Wrote {len(descriptions)} descriptions to {root}")
    return len(descriptions)


def write_image_manifest(manifest: Iterable[ManifestEntry], path: Path) -> int:
    return write_csv(
        path, IMAGE_MANIFEST_FIELDS,
        (
            {
                "sku": entry.sku,
                "filename": entry.filename,
                "original_filename": entry.original_filename,
                "status": entry.status,
            }
            for entry in manifest
        ),
    )


def export_catalog(catalog: FeedCatalog, export_dir: Path) -> Dict[str, int]:
    """Write all catalog tables into ``export_dir``.

    Returns:
        Row count per file name
    """
    export_dir = Path(export_dir)
    return {
        "products.csv": write_products(catalog.products, export_dir / "products.csv"),
        "product_details.csv": write_product_details(
            catalog.products, export_dir / "product_details.csv"
        ),
        "manufacturers.csv": write_code_table(
            catalog.manufacturers, export_dir / "manufacturers.csv"
        ),
        "product_types.csv": write_code_table(
            catalog.product_types, export_dir / "product_types.csv"
        ),
        "categories.csv": write_category_tree(catalog, export_dir / "categories.csv"),
        "categories_flat.csv": write_categories_flat(catalog, export_dir / "categories_flat.csv"),
    }
