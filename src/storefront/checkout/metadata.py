"""The fulfillment payload carried through the provider's session metadata.

Everything fulfillment needs is serialised into the checkout session and
echoed back by the provider on confirmation, so fulfilling an order never
depends on the cart still looking the way it did at checkout. The items
list is JSON split across numbered keys (``items_json_0``, ``items_json_1``
...) because the provider caps every metadata value at 500 characters.
"""

import json
from dataclasses import asdict, dataclass, field

import structlog

from storefront.gateway.port import METADATA_VALUE_LIMIT

logger = structlog.get_logger(__name__)

ITEMS_KEY = "items_json"


@dataclass(frozen=True)
class FulfillmentLine:
    product_id: str
    quantity: int
    price: float  # Frozen cart price, major units
    name: str
    size: str | None = None
    color: str | None = None
    image_url: str = ""

    @classmethod
    def from_dict(cls, data):
        return cls(
            product_id=str(data["product_id"]),
            quantity=int(data["quantity"]),
            price=float(data["price"]),
            name=data.get("name") or "",
            size=data.get("size") or None,
            color=data.get("color") or None,
            image_url=data.get("image_url") or "",
        )


@dataclass(frozen=True)
class FulfillmentPayload:
    user_id: str
    items: list[FulfillmentLine] = field(default_factory=list)
    cart_id: str | None = None
    coupon_code: str | None = None

    def to_metadata(self) -> dict[str, str]:
        """Flat string map, the only shape provider metadata accepts."""
        return {
            "user_id": self.user_id,
            "cart_id": self.cart_id or "",
            "coupon_code": self.coupon_code or "",
            **_split_items(json.dumps([asdict(item) for item in self.items])),
        }

    @classmethod
    def from_metadata(cls, metadata) -> "FulfillmentPayload":
        metadata = metadata or {}
        items = []
        try:
            items = [FulfillmentLine.from_dict(entry) for entry in json.loads(_join_items(metadata))]
        except (ValueError, TypeError, KeyError) as exc:
            logger.error("fulfillment_payload_malformed", error=str(exc))

        return cls(
            user_id=metadata.get("user_id") or "",
            items=items,
            cart_id=metadata.get("cart_id") or None,
            coupon_code=metadata.get("coupon_code") or None,
        )


def _split_items(items_json: str) -> dict[str, str]:
    chunks = [items_json[i : i + METADATA_VALUE_LIMIT] for i in range(0, len(items_json), METADATA_VALUE_LIMIT)]
    return {f"{ITEMS_KEY}_{index}": chunk for index, chunk in enumerate(chunks or [""])}


def _join_items(metadata) -> str:
    chunks = []
    while f"{ITEMS_KEY}_{len(chunks)}" in metadata:
        chunks.append(metadata[f"{ITEMS_KEY}_{len(chunks)}"] or "")
    if not chunks:
        # Sessions opened before the items list was split
        return metadata.get(ITEMS_KEY) or "[]"
    return "".join(chunks) or "[]"
