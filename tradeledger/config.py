from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # === Storage ===
    storage_backend: str = "sqlite"  # "sqlite" | "supabase"
    ledger_db_path: str = ""  # 空なら data/ledger.db
    supabase_url: str = ""
    supabase_service_key: str = ""

    # === Persistence retry ===
    persistence_timeout_sec: float = 10.0  # sqlite busy timeout / HTTP timeout
    persistence_max_retries: int = 3  # transient エラー時のリトライ上限
    persistence_retry_backoff_sec: float = 0.5  # 初回待機秒 (以降 2 倍)

    # === Import ===
    import_max_workers: int = 4  # (account, symbol) グループの並列数
    import_max_errors: int = 50  # ImportResult.errors の上限行数
    default_timezone: str = "UTC"  # ブローカー CSV の naive 時刻の解釈
    default_currency: str = "USD"


settings = Settings()
