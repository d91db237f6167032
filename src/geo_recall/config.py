"""Runtime configuration for geo-recall."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven runtime settings."""

    model_config = SettingsConfigDict(env_prefix="GEO_RECALL_", env_file=".env", extra="ignore")

    app_name: str = "geo-recall"
    log_level: str = "INFO"

    enable_anki_integration: bool = True
    anki_connect_host: str = "127.0.0.1"
    anki_connect_port: int = Field(default=8765, description="Port of the local AnkiConnect RPC endpoint.")
    deck_name: str = "GeoguessrAnki"
    model_name: str = "GeoguessrBasic"

    hide_location_in_front: bool = True
    automatic_cards: bool = True
    instant_add: bool = False

    poll_interval_seconds: float = 1.0
    settle_delay_seconds: float = 1.5
    round_end_grace_seconds: float = 5.0
    geocoder_timeout_seconds: float = 5.0
    resolution_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound on one round's background country resolution and on the settle wait.",
    )
    rpc_timeout_seconds: float = 10.0

    nominatim_url: str = "https://nominatim.openstreetmap.org/reverse"
    restcountries_url: str = "https://restcountries.com/v3.1/alpha"
    game_api_url: str = "https://www.geoguessr.com/api"
    user_agent: str = "geo-recall/0.1 (flashcard study helper)"
    geocoder_language: str = Field(default="en", description="Language of country names returned by the reverse geocoder.")

    selectors_file: str | None = Field(
        default=None,
        description="JSON file mapping DOM concepts to ordered selector lists.",
    )
    card_history_path: str | None = None

    @property
    def anki_connect_url(self) -> str:
        return f"http://{self.anki_connect_host}:{self.anki_connect_port}"


settings = Settings()
