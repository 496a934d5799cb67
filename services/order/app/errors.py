"""
Order Service — エラー定義

ストア・キャッシュ・ハンドラから送出される例外の階層。
各例外は HTTP ステータスを持ち、main.py の例外ハンドラで
一度だけレスポンスに変換される。
"""


class OrderServiceError(Exception):
    """サービス内のすべての例外の基底クラス"""

    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class OrderValidationError(OrderServiceError):
    """ドキュメントが検証ルールに違反した (400)

    violations: フィールドパス → 違反したルール名のリスト
    """

    status_code = 400
    message = "Order validation failed"

    def __init__(self, violations: dict[str, list[str]]) -> None:
        super().__init__()
        self.violations = violations


class MalformedRequest(OrderServiceError):
    """リクエストボディが JSON でない、または形が不正 (400)"""

    status_code = 400
    message = "Malformed request body"


class OrderNotFound(OrderServiceError):
    status_code = 404

    def __init__(self, order_uid: str) -> None:
        super().__init__(f"Order not found: {order_uid}")
        self.order_uid = order_uid


class OrderConflict(OrderServiceError):
    """同じ order_uid の注文が既に存在する (409)"""

    status_code = 409

    def __init__(self, order_uid: str) -> None:
        super().__init__(f"Order already exists: {order_uid}")
        self.order_uid = order_uid


class CorruptRow(OrderServiceError):
    """保存済み JSON を Order に復元できない (500)"""

    def __init__(self, order_uid: str) -> None:
        super().__init__(f"Stored order is corrupt: {order_uid}")
        self.order_uid = order_uid


class StoreError(OrderServiceError):
    """ドライバレベルの失敗 (接続・タイムアウト・一意制約以外の制約違反)"""

    message = "Order store failure"
