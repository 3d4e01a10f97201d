import json

from storefront.checkout.metadata import FulfillmentLine, FulfillmentPayload
from storefront.gateway.port import METADATA_VALUE_LIMIT


def _payload(**overrides):
    kwargs = {
        "user_id": "user-1",
        "items": [FulfillmentLine(product_id="prod-1", quantity=2, price=30.0, name="Canvas Tote", size="M")],
        "cart_id": "cart-1",
        "coupon_code": "SAVE10",
    }
    kwargs.update(overrides)
    return FulfillmentPayload(**kwargs)


def _long_payload():
    lines = [
        FulfillmentLine(
            product_id=f"6f1c2b7e-4d3a-4b8e-9c2f-{index:012d}",
            quantity=index + 1,
            price=49.99,
            name=f"Organic Cotton Heavyweight Crewneck Sweatshirt {index}",
            size="XL",
            color="Heather Grey",
            image_url=f"https://cdn.shop.test/images/products/2024/crewneck-heather-grey-{index}-front.jpg",
        )
        for index in range(3)
    ]
    return _payload(items=lines)


class TestToMetadata:
    def test_values_are_strings(self):
        metadata = _payload(cart_id=None, coupon_code=None).to_metadata()

        assert all(isinstance(value, str) for value in metadata.values())
        assert metadata["cart_id"] == ""
        assert metadata["coupon_code"] == ""

    def test_items_serialised_with_frozen_price(self):
        items = json.loads(_payload().to_metadata()["items_json_0"])
        assert items[0]["price"] == 30.0
        assert items[0]["size"] == "M"

    def test_long_items_split_across_keys(self):
        metadata = _long_payload().to_metadata()

        chunk_keys = sorted(key for key in metadata if key.startswith("items_json_"))
        assert len(chunk_keys) > 1
        assert all(len(metadata[key]) <= METADATA_VALUE_LIMIT for key in metadata)
        assert "items_json" not in metadata

    def test_empty_items_still_written(self):
        assert _payload(items=[]).to_metadata()["items_json_0"] == "[]"


class TestFromMetadata:
    def test_restores_payload(self):
        restored = FulfillmentPayload.from_metadata(_payload().to_metadata())
        assert restored == _payload()

    def test_restores_split_items(self):
        restored = FulfillmentPayload.from_metadata(_long_payload().to_metadata())
        assert restored == _long_payload()

    def test_reads_unsplit_items(self):
        items = json.dumps([{"product_id": "prod-1", "quantity": 1, "price": 12.5, "name": "Mug"}])
        restored = FulfillmentPayload.from_metadata({"user_id": "user-1", "items_json": items})
        assert restored.items == [FulfillmentLine(product_id="prod-1", quantity=1, price=12.5, name="Mug")]

    def test_blank_optional_fields_become_none(self):
        restored = FulfillmentPayload.from_metadata(_payload(coupon_code=None).to_metadata())
        assert restored.coupon_code is None

    def test_malformed_items_yield_empty_list(self):
        restored = FulfillmentPayload.from_metadata({"user_id": "user-1", "items_json_0": "{not json"})
        assert restored.user_id == "user-1"
        assert restored.items == []

    def test_items_missing_fields_yield_empty_list(self):
        restored = FulfillmentPayload.from_metadata({"user_id": "u", "items_json_0": json.dumps([{"name": "x"}])})
        assert restored.items == []

    def test_missing_metadata(self):
        restored = FulfillmentPayload.from_metadata(None)
        assert restored.user_id == ""
        assert restored.items == []
