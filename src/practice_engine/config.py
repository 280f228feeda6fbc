from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CATALOG_PATH = "data/catalog.json"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    環境変数から読み込まれる出題エンジンの設定クラス。
    - environment: 実行環境（development/staging/production など）
    - セッション上限やバッチ間隔など、スケジューラの既定値
    """

    environment: str = Field(
        default="development",
        description="Runtime environment / 実行環境",
    )

    # --- Firestore 接続設定 ---
    firestore_project_id: str | None = Field(
        default=None,
        description="Firestore project ID / Firestore のプロジェクトID",
    )
    firestore_emulator_host: str | None = Field(
        default=None,
        description="Firestore emulator host (host:port) / Firestore エミュレータのホスト",
    )

    # --- コンテンツカタログ ---
    catalog_path: str = Field(
        default=DEFAULT_CATALOG_PATH,
        description="Path to the JSON content catalog / 出題カタログ JSON のパス",
    )

    # --- セッション構成 ---
    flashcards_per_session: int = Field(
        default=20,
        description="Default flashcards per session / 単語カードの既定出題数",
    )
    grammar_sentences_per_session: int = Field(
        default=10,
        description="Default grammar sentences per session / 文法例文の既定出題数",
    )
    upcoming_limit: int = Field(
        default=15,
        description="Max upcoming items in a forecast / 予報に含める今後の出題の最大件数",
    )
    exclusion_ring_size: int = Field(
        default=10,
        description="Recently shown ids excluded on refresh / 再取得時に除外する直近IDの件数",
    )

    # --- I/O バッチング ---
    batch_window_ms: float = Field(
        default=10.0,
        description="Batch flush window (ms) / バルク取得までの待機時間(ms)",
    )
    batch_max_size: int = Field(
        default=100,
        description="Max point look-ups per bulk fetch / 1回のバルク取得の最大件数",
    )

    # --- ストア呼出しのリトライ ---
    store_max_retries: int = Field(
        default=2,
        description="Max retries for store calls / ストア呼出しの最大リトライ回数",
    )
    store_retry_backoff_ms: int = Field(
        default=100,
        description="Initial retry backoff for store calls (ms) / ストア再試行の初期待機(ms)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("flashcards_per_session", "grammar_sentences_per_session", "upcoming_limit")
    @classmethod
    def _require_positive(cls, value: int) -> int:
        # 0 以下は「既定値を使う」の意味なので、既定値そのものは正でなければならない
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value


settings = Settings()
