"""
例外定義

ストア、外部API、スケジュール、レート制限で共通に使う例外階層。
"""


class NotifierError(Exception):
    """基底エラー"""
    pass


class ValidationError(NotifierError):
    """設定・検索パラメータの検証エラー（状態変更前に拒否）"""

    def __init__(self, message: str, details: list[str] | None = None):
        super().__init__(message)
        self.details = details or []


class StoreUnavailable(NotifierError):
    """ストア接続・操作エラー"""
    pass


class ProviderError(NotifierError):
    """検索プロバイダの非2xx応答"""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
        self.message = message


class NetworkError(NotifierError):
    """検索プロバイダへの通信エラー"""
    pass


class RateLimitExceeded(NotifierError):
    """レート制限超過またはBAN中"""

    def __init__(self, message: str, reset_seconds: int = 0):
        super().__init__(message)
        self.reset_seconds = reset_seconds


class DuplicateSchedule(NotifierError):
    """同一サブジェクトのスケジュールが既に存在する"""
    pass


class InvalidCronExpression(NotifierError):
    """cron式が5フィールド形式として不正"""
    pass
