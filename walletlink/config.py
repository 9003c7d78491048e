from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'Wallet Telegram Link'
    app_env: str = 'local'
    database_url: str = 'sqlite:///./walletlink.db'
    store_timeout_seconds: float = 5.0
    telegram_bot_token: str = ''
    telegram_api_base: str = 'https://api.telegram.org'
    telegram_send_timeout_seconds: float = 10.0
    telegram_auth_max_age_ms: int = 3_600_000
    link_challenge_ttl_seconds: int = 600
    explorer_tx_url: str = 'https://etherscan.io/tx/{tx_hash}'
    events_api_secret: str = ''
    db_slow_query_ms: int = 100
    slow_request_ms: int = 200


settings = Settings()
