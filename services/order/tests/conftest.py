import copy

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from app.models import Order
from app.store import InMemoryOrderStore

ORDER_PAYLOAD = {
    "order_uid": "b563",
    "track_number": "WBILM",
    "entry": "WBIL",
    "delivery": {
        "name": "T",
        "phone": "+9720",
        "zip": "2",
        "city": "K",
        "address": "P 15",
        "region": "Kr",
        "email": "t@x.io",
    },
    "payment": {
        "transaction": "b563",
        "request_id": "",
        "currency": "USD",
        "provider": "wbpay",
        "amount": 1817,
        "payment_dt": 1637907727,
        "bank": "alpha",
        "delivery_cost": 1500,
        "goods_total": 317,
        "custom_fee": 0,
    },
    "items": [],
    "locale": "en",
    "internal_signature": "",
    "customer_id": "test",
    "delivery_service": "meest",
    "shared_key": "9",
    "sm_id": 99,
    "date_created": "2021-11-26T06:22:19Z",
    "oof_shard": "1",
}

ITEM_PAYLOAD = {
    "chrt_id": 9934930,
    "track_number": "WBILMTESTTRACK",
    "price": 453,
    "rid": "ab4219087a764ae0btest",
    "name": "Mascaras",
    "sale": 30,
    "size": "0",
    "total_price": 317,
    "nm_id": 2389212,
    "brand": "Vivienne Sabo",
    "status": 202,
}


@pytest.fixture
def payload() -> dict:
    return copy.deepcopy(ORDER_PAYLOAD)


@pytest.fixture
def order() -> Order:
    data = copy.deepcopy(ORDER_PAYLOAD)
    data["items"] = [copy.deepcopy(ITEM_PAYLOAD)]
    return Order.model_validate(data)


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def client(store):
    with TestClient(create_app(store=store)) as test_client:
        yield test_client
