from typing import Annotated

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources.types import NoDecode


DEFAULT_DB_PATH = ".data/mistakebook.sqlite3"
_STORE_BACKENDS = frozenset({"sqlite", "memory"})


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    環境変数から読み込まれるアプリ設定クラス。
    - environment: 実行環境（development/staging/production など）
    - mistakebook_store: 錯題レコードの永続化バックエンド（sqlite/memory）
    - review_session_cap: 1 回の復習セッションで出題する最大件数
    """

    environment: str = Field(
        default="development",
        description="Runtime environment / 実行環境",
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level / ルートロガーのログレベル",
    )

    # --- データ永続化設定 ---
    mistakebook_store: str = Field(
        default="sqlite",
        description="Record store backend (sqlite|memory) / レコードストアの種類",
        validation_alias=AliasChoices("mistakebook_store", "store_backend"),
    )
    mistakebook_db_path: str = Field(
        default=DEFAULT_DB_PATH,
        description="Path to SQLite database for mistake records / 錯題用SQLite DBパス",
    )

    # --- 復習（SRS）設定 ---
    review_session_cap: int = Field(
        default=5,
        ge=1,
        description="Max items per review session / 1セッションの最大出題数",
    )
    default_page_size: int = Field(
        default=5,
        ge=1,
        description="Default page size for notebook listing / 一覧の既定ページサイズ",
    )
    max_page_size: int = Field(
        default=100,
        ge=1,
        description="Upper bound for requested page size / 一覧ページサイズの上限",
    )

    allowed_cors_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        description=(
            "Comma separated CORS origins / CORS で許可するオリジンのカンマ区切り一覧"
        ),
        validation_alias=AliasChoices("allowed_cors_origins", "cors_allowed_origins"),
    )
    trusted_proxy_ips: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("127.0.0.1",),
        description=(
            "Trusted proxy IPs for ProxyHeadersMiddleware / "
            "X-Forwarded-* を信頼するプロキシの IP 一覧"
        ),
        validation_alias=AliasChoices("trusted_proxy_ips", "forwarded_allow_ips"),
    )

    # --- ローカル起動設定（python -m mistakebook） ---
    host: str = Field(default="127.0.0.1", description="Bind address / 待ち受けアドレス")
    port: int = Field(default=8000, ge=1, le=65535, description="Bind port / 待ち受けポート")

    # Pydantic v2 settings config
    # - env_file: .env を読み込む
    # - extra: .env に存在する未使用キーを無視
    # - case_sensitive: 環境変数キーの大小文字を区別しない
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("mistakebook_store", mode="after")
    @classmethod
    def _validate_store_backend(cls, value: str) -> str:
        backend = (value or "").strip().lower()
        if backend not in _STORE_BACKENDS:
            raise ValueError(
                f"MISTAKEBOOK_STORE must be one of {sorted(_STORE_BACKENDS)}",
            )
        return backend

    @field_validator("allowed_cors_origins", "trusted_proxy_ips", mode="before")
    @classmethod
    def _split_csv(cls, raw: object) -> tuple[str, ...] | object:
        """Accept comma separated strings as well as sequences.

        空要素と重複は除去し、末尾スラッシュを落として正規化する。
        """

        if raw is None:
            return ()
        if isinstance(raw, str):
            candidates = raw.split(",")
        else:
            try:
                candidates = list(raw)  # type: ignore[arg-type]
            except TypeError:
                return raw
        cleaned: list[str] = []
        for item in candidates:
            value = str(item).strip().rstrip("/")
            if value and value not in cleaned:
                cleaned.append(value)
        return tuple(cleaned)


settings = Settings()
