"""
Order Service — ドキュメントモデルとバリデーション

注文ドキュメントは Delivery / Payment / Item を埋め込んだ
レコードの入れ子構造。Pydantic モデルで型と検証ルールを表現する。

検証エラーはフィールドパス → ルール名 に変換してクライアントへ返す:
    delivery.name   → too_short
    delivery.email  → invalid_email
    payment.amount  → out_of_range
    order_uid (欠落) → missing_field
"""

from typing import Annotated, Any

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_core import PydanticCustomError

from .errors import OrderValidationError

U32_MAX = 2**32 - 1

# ワイヤ上の符号なし 32bit 整数。文字列や小数からの暗黙変換はしない。
U32 = Annotated[int, Field(strict=True, ge=0, le=U32_MAX)]


class Delivery(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    phone: str
    zip: str
    city: str
    address: str
    region: str
    email: str

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        # 形式だけを検証し、正規化はしない (保存値 = 受信値)。
        # ドメインリテラルと .test は受け付け、localhost / .local などの
        # 特殊用途ドメインは email-validator の規則どおり拒否する。
        try:
            validate_email(
                value,
                check_deliverability=False,
                globally_deliverable=False,
                allow_domain_literal=True,
                allow_quoted_local=True,
                test_environment=True,
            )
        except EmailNotValidError as exc:
            raise PydanticCustomError(
                "invalid_email",
                "value is not a valid email address: {reason}",
                {"reason": str(exc)},
            ) from exc
        return value


class Payment(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction: str
    request_id: str
    currency: str
    provider: str
    amount: U32
    payment_dt: U32
    bank: str
    delivery_cost: U32
    goods_total: U32
    custom_fee: U32


class Item(BaseModel):
    model_config = ConfigDict(frozen=True)

    chrt_id: U32
    track_number: str
    price: U32
    rid: str
    name: str
    sale: U32
    size: str
    total_price: U32
    nm_id: U32
    brand: str
    status: U32


class Order(BaseModel):
    """注文集約 — order_uid で一意に識別されるトップレベルのドキュメント"""

    model_config = ConfigDict(frozen=True)

    order_uid: str = Field(min_length=1)
    track_number: str
    entry: str
    delivery: Delivery
    payment: Payment
    items: list[Item]
    locale: str
    internal_signature: str
    customer_id: str
    delivery_service: str
    shared_key: str
    sm_id: U32
    date_created: str
    oof_shard: str


class PartialOrder(BaseModel):
    """
    部分更新 (PUT) のリクエストボディ。

    order_uid 以外の全フィールドが省略可能。
    ボディ中の order_uid は未知フィールドとして無視される。
    """

    track_number: str | None = None
    entry: str | None = None
    delivery: Delivery | None = None
    payment: Payment | None = None
    items: list[Item] | None = None
    locale: str | None = None
    internal_signature: str | None = None
    customer_id: str | None = None
    delivery_service: str | None = None
    shared_key: str | None = None
    sm_id: U32 | None = None
    date_created: str | None = None
    oof_shard: str | None = None


# ── 検証エラーの変換 ─────────────────────────────

_RULES = {
    "missing": "missing_field",
    "string_too_short": "too_short",
    "greater_than_equal": "out_of_range",
    "less_than_equal": "out_of_range",
    "invalid_email": "invalid_email",
}


def violations_from_errors(errors: list[dict[str, Any]]) -> dict[str, list[str]]:
    """Pydantic のエラー一覧を {フィールドパス: [ルール名, ...]} に変換する。"""
    violations: dict[str, list[str]] = {}
    for error in errors:
        path = ".".join(str(part) for part in error["loc"]) or "$"
        rule = _RULES.get(error["type"], "invalid_type")
        rules = violations.setdefault(path, [])
        if rule not in rules:
            rules.append(rule)
    return violations


def validate_order(data: Any) -> Order:
    """作成ルールでドキュメントを検証し、Order を返す。"""
    try:
        return Order.model_validate(data)
    except ValidationError as exc:
        raise OrderValidationError(violations_from_errors(exc.errors())) from exc


# ── JSON コーデック (ストアの data 列) ───────────

def encode_order(order: Order) -> str:
    return order.model_dump_json()


def decode_order(raw: str | bytes | dict) -> Order:
    """
    data 列の値を Order に復元する。

    ドライバによって JSONB は文字列でも dict でも返ってくるため両方を受け付ける。
    失敗時は pydantic.ValidationError を送出する。
    """
    if isinstance(raw, (str, bytes)):
        return Order.model_validate_json(raw)
    return Order.model_validate(raw)


# ── 部分更新のマージ ─────────────────────────────

def merge_order(current: Order, patch: PartialOrder) -> Order:
    """
    PartialOrder を Order に重ねる。

    存在するフィールドだけを上書きする。delivery / payment / items は
    サブドキュメントごと置き換え、葉単位の再帰マージはしない。
    null が送られたフィールドは省略と同じ扱い。
    """
    changes = {
        name: getattr(patch, name)
        for name in patch.model_fields_set
        if getattr(patch, name) is not None
    }
    return current.model_copy(update=changes)
