"""Streaming parser for the supplier product feed.

The feed is one flat XML document with a <product> element per item.
It is read in a single forward pass with the SAX reader; registries for
manufacturers, product types and categories are filled in opportunistically
from the code attributes each product carries.

SAX callbacks are reduced to five events (start, attribute, text, cdata,
end) that operate on an explicit ParserState and a FeedCatalog accumulator:

    <product>
      <sku>AB123</sku>
      <name><![CDATA[Widget]]></name>
      <manufacturer code="M1">Acme</manufacturer>
      <categories>
        <category code="20" parent="10">Dolls</category>
      </categories>
      <images><image>/A/AB123.jpg</image></images>
      <release_date>2014-05-01</release_date>
    </product>
"""

import html
import xml.sax
import xml.sax.handler
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import IO, Any, Dict, List, Optional, Union

from feedsync.config import IMAGE_BASE_URL, PARSE_PROGRESS_INTERVAL, RELEASE_DATE_FORMATS
from feedsync.logging_config import get_logger
from feedsync.models import CategoryEntry, FeedCatalog, Product

__all__ = [
    "FeedDataError",
    "ParserState",
    "FeedEventHandler",
    "parse_feed",
    "parse_release_date",
]

logger = get_logger("feed_parser")

FeedSource = Union[str, Path, IO[bytes]]

# Leaf elements copied as decoded text onto the product (element -> field)
TEXT_FIELDS: Dict[str, str] = {
    "sku": "sku",
    "height": "height",
    "length": "length",
    "diameter": "width",
    "weight": "weight",
    "color": "color",
    "material": "material",
    "barcode": "upc",
    "stock_quantity": "stock_quantity",
}


class FeedDataError(Exception):
    """Malformed or incomplete feed data. Always fatal for the run."""
    pass


@dataclass
class ParserState:
    """Scratch state for the product currently being read."""

    current_element: Optional[str] = None
    product: Optional[Dict[str, Any]] = None
    images: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)

    # Codes captured from attributes, consumed when the element ends
    manufacturer_code: Optional[str] = None
    type_code: Optional[str] = None
    category_code: Optional[str] = None
    category_parent: Optional[str] = None

    # Character data of the innermost open element
    text: List[str] = field(default_factory=list)
    cdata: List[str] = field(default_factory=list)
    in_cdata: bool = False
    has_cdata: bool = False

    def start_product(self) -> None:
        self.product = {}
        self.images = []
        self.categories = []

    def end_product(self) -> None:
        self.product = None
        self.images = []
        self.categories = []
        self.manufacturer_code = None
        self.type_code = None
        self.category_code = None
        self.category_parent = None

    def reset_text(self) -> None:
        self.text = []
        self.cdata = []
        self.has_cdata = False

    def decoded_text(self) -> str:
        """Plain text with HTML entities decoded."""
        return html.unescape("".join(self.text).strip())

    def cdata_or_text(self) -> str:
        """CDATA content as-is, or the decoded text if there was no CDATA."""
        if self.has_cdata:
            return "".join(self.cdata).strip()
        return self.decoded_text()


def parse_release_date(text: str) -> date:
    """Parse a <release_date> value.

    Raises:
        FeedDataError: If no known layout matches
    """
    if not text:
        raise FeedDataError("Empty release date")

    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in RELEASE_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    raise FeedDataError(f"Unparseable release date: {text!r}")


class FeedEventHandler(xml.sax.handler.ContentHandler, xml.sax.handler.LexicalHandler):
    """Builds a FeedCatalog from feed events.

    The on_* methods are the event interface; the SAX callbacks below them
    only translate expat's notifications into those events.
    """

    def __init__(self) -> None:
        super().__init__()
        self.state = ParserState()
        self.catalog = FeedCatalog()
        self._seen_skus: set = set()
        self._locator = None

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_start(self, name: str) -> None:
        state = self.state
        state.current_element = name.strip()
        state.reset_text()

        if state.current_element == "product":
            state.start_product()
        elif state.current_element == "manufacturer":
            state.manufacturer_code = None
        elif state.current_element == "type":
            state.type_code = None
        elif state.current_element == "category":
            state.category_code = None
            state.category_parent = None

    def on_attribute(self, name: str, value: str) -> None:
        state = self.state
        name = name.strip()
        element = state.current_element

        if element == "manufacturer" and name == "code":
            state.manufacturer_code = value.strip()
        elif element == "type" and name == "code":
            state.type_code = value.strip()
        elif element == "category":
            if name == "code":
                state.category_code = value.strip()
            elif name == "parent":
                state.category_parent = value.strip()

    def on_text(self, value: str) -> None:
        self.state.text.append(value)

    def on_cdata(self, value: str) -> None:
        self.state.cdata.append(value)
        self.state.has_cdata = True

    def on_end(self, name: str) -> None:
        name = name.strip()
        state = self.state

        if name == "product":
            self._finish_product()
            return

        product = state.product
        if product is None:
            return

        if name in TEXT_FIELDS:
            product[TEXT_FIELDS[name]] = state.decoded_text() or None
        elif name == "name":
            product["name"] = state.cdata_or_text()
        elif name == "release_date":
            try:
                product["release_date"] = parse_release_date(state.decoded_text())
            except FeedDataError as e:
                raise FeedDataError(f"{e}{self._where()}") from e
        elif name == "description":
            self._add_description(state.cdata_or_text())
        elif name == "image":
            path = state.decoded_text()
            if path:
                state.images.append(IMAGE_BASE_URL + path)
            else:
                logger.warning(f"Empty <image> ignored{self._where()}")
        elif name == "images":
            product["images"] = tuple(state.images)
        elif name == "manufacturer":
            code = self._require(state.manufacturer_code, "manufacturer code")
            product["manufacturer"] = code
            self._register(self.catalog.manufacturers, "manufacturer", code, state.decoded_text())
        elif name == "type":
            code = self._require(state.type_code, "product type code")
            product["product_type"] = code
            self._register(self.catalog.product_types, "product type", code, state.decoded_text())
        elif name == "category":
            code = self._require(state.category_code, "category code")
            parent = self._require(state.category_parent, "category parent")
            state.categories.append(code)
            self._register(
                self.catalog.categories, "category", code,
                CategoryEntry(name=state.decoded_text(), parent=parent),
            )
        elif name == "categories":
            product["categories"] = tuple(state.categories)

    # ------------------------------------------------------------------
    # SAX callbacks
    # ------------------------------------------------------------------

    def setDocumentLocator(self, locator) -> None:
        self._locator = locator

    def startElement(self, name, attrs) -> None:
        self.on_start(name)
        for attr_name, value in attrs.items():
            self.on_attribute(attr_name, value)

    def endElement(self, name) -> None:
        self.on_end(name)

    def characters(self, content) -> None:
        if self.state.in_cdata:
            self.on_cdata(content)
        else:
            self.on_text(content)

    def startCDATA(self) -> None:
        self.state.in_cdata = True

    def endCDATA(self) -> None:
        self.state.in_cdata = False

    # ------------------------------------------------------------------

    def _where(self) -> str:
        if self._locator is None:
            return ""
        return f" (line {self._locator.getLineNumber()})"

    def _require(self, value: Optional[str], what: str) -> str:
        if not value:
            sku = (self.state.product or {}).get("sku") or "?"
            raise FeedDataError(f"Missing {what} in product {sku}{self._where()}")
        return value

    def _register(self, registry: Dict[str, Any], kind: str, code: str, value: Any) -> None:
        previous = registry.get(code)
        if previous is not None and previous != value:
            logger.debug(f"{kind} {code!r} redefined: {previous!r} -> {value!r}")
        registry[code] = value

    def _add_description(self, text: str) -> None:
        sku = self.state.product.get("sku") if self.state.product else None
        if not sku:
            raise FeedDataError(f"<description> appears before <sku>{self._where()}")
        self.catalog.descriptions[sku] = text

    def _finish_product(self) -> None:
        state = self.state
        draft = state.product
        if draft is None:
            return

        position = len(self.catalog.products) + 1
        sku = draft.get("sku")
        if not sku:
            raise FeedDataError(f"Product #{position} has no sku{self._where()}")
        if draft.get("release_date") is None:
            raise FeedDataError(f"Product {sku} has no release date{self._where()}")

        if sku in self._seen_skus:
            logger.warning(f"Duplicate sku {sku} in feed{self._where()}")
        self._seen_skus.add(sku)

        self.catalog.products.append(Product(**draft))
        state.end_product()

        if position % PARSE_PROGRESS_INTERVAL == 0:
            logger.debug(f"  Parsed {position} products")


def parse_feed(source: FeedSource) -> FeedCatalog:
    """Parse the whole feed in one streaming pass.

    Args:
        source: Path to the feed file or a binary file object

    Returns:
        FeedCatalog with products, registries and descriptions

    Raises:
        FeedDataError: On malformed XML or invalid product data
    """
    handler = FeedEventHandler()
    parser = xml.sax.make_parser()
    parser.setContentHandler(handler)
    parser.setProperty(xml.sax.handler.property_lexical_handler, handler)
    parser.setFeature(xml.sax.handler.feature_external_ges, False)

    if isinstance(source, Path):
        source = str(source)

    try:
        parser.parse(source)
    except xml.sax.SAXParseException as e:
        raise FeedDataError(
            f"Malformed feed XML at line {e.getLineNumber()}, "
            f"column {e.getColumnNumber()}: {e.getMessage()}"
        ) from e

    catalog = handler.catalog
    logger.info(
        f"Parsed {len(catalog.products)} products, "
        f"{len(catalog.manufacturers)} manufacturers, "
        f"{len(catalog.product_types)} product types, "
        f"{len(catalog.categories)} categories, "
        f"{len(catalog.descriptions)} descriptions"
    )
    return catalog
