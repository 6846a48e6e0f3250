# leadflow/config.py
import json
import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv

from leadflow.quality_filter import QualityCriteria

load_dotenv()

CONFIG_PATH = Path(__file__).parent.parent / "config" / "pipeline.json"


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_ms(name: str, default_seconds: float) -> float:
    """Env delays are given in milliseconds, settings hold seconds."""
    value = os.getenv(name)
    return int(value) / 1000 if value not in (None, "") else default_seconds


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value.strip().lower() not in ("false", "0", "no")


@dataclass
class SearchSettings:
    location: str = "Madrid, Spain"
    max_results: int = 50
    min_interval: float = 2.0  # between discovery queries


@dataclass
class EnrichmentSettings:
    batch_size: int = 10
    inter_batch_delay: float = 1.0
    min_interval: float = 0.1
    requests_per_minute: int = 60


@dataclass
class GenerationSettings:
    provider: str = "openai"  # "openai" or "anthropic"
    model: str = "gpt-4o-mini"
    max_tokens: int = 100
    temperature: float = 0.7
    batch_size: int = 5
    inter_batch_delay: float = 1.0
    min_interval: float = 0.1


@dataclass
class DeliverySettings:
    enabled: bool = False
    message_delay: float = 5.0  # seconds between messages
    max_messages_per_hour: int = 50
    batch_size: int = 10
    inter_batch_delay: float = 30.0
    default_country_code: str = "34"


@dataclass
class ValidationSettings:
    min_rating: Optional[float] = 3.0
    min_reviews: Optional[int] = 5
    require_phone: bool = True
    require_reviews: bool = True
    max_message_length: int = 1600


@dataclass
class TemplateSettings:
    sender_name: str = ""
    default_template: str = "default"


@dataclass
class Settings:
    google_places_api_key: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    whatsapp_access_token: str = ""
    whatsapp_phone_number_id: str = ""
    data_dir: Path = Path("data")
    search_queries: dict = field(default_factory=dict)
    search: SearchSettings = field(default_factory=SearchSettings)
    enrichment: EnrichmentSettings = field(default_factory=EnrichmentSettings)
    generation: GenerationSettings = field(default_factory=GenerationSettings)
    delivery: DeliverySettings = field(default_factory=DeliverySettings)
    validation: ValidationSettings = field(default_factory=ValidationSettings)
    templates: TemplateSettings = field(default_factory=TemplateSettings)
    config_path: Path = CONFIG_PATH

    def __post_init__(self):
        self.google_places_api_key = os.getenv("GOOGLE_PLACES_API_KEY", "")
        self.openai_api_key = os.getenv("OPENAI_API_KEY", "")
        self.anthropic_api_key = os.getenv("ANTHROPIC_API_KEY", "")
        self.whatsapp_access_token = os.getenv("WHATSAPP_ACCESS_TOKEN", "")
        self.whatsapp_phone_number_id = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")

        config = {}
        if self.config_path.exists():
            with open(self.config_path) as f:
                config = json.load(f)

        self.search_queries = config.get("search_queries", {})

        paths_config = config.get("paths", {})
        self.data_dir = Path(os.getenv("DATA_PATH", paths_config.get("data", "data")))

        search_config = config.get("search", {})
        self.search = SearchSettings(
            location=os.getenv("SEARCH_LOCATION", search_config.get("location", "Madrid, Spain")),
            max_results=_env_int("MAX_RESULTS", search_config.get("max_results", 50)),
            min_interval=search_config.get("min_interval", 2.0),
        )

        enrichment_config = config.get("enrichment", {})
        self.enrichment = EnrichmentSettings(
            batch_size=enrichment_config.get("batch_size", 10),
            inter_batch_delay=enrichment_config.get("inter_batch_delay", 1.0),
            min_interval=_env_ms("DELAY_BETWEEN_REQUESTS", enrichment_config.get("min_interval", 0.1)),
            requests_per_minute=_env_int("REQUESTS_PER_MINUTE", enrichment_config.get("requests_per_minute", 60)),
        )

        generation_config = config.get("generation", {})
        self.generation = GenerationSettings(
            provider=os.getenv("LLM_PROVIDER", generation_config.get("provider", "openai")),
            model=os.getenv("LLM_MODEL", generation_config.get("model", "gpt-4o-mini")),
            max_tokens=_env_int("LLM_MAX_TOKENS", generation_config.get("max_tokens", 100)),
            temperature=_env_float("LLM_TEMPERATURE", generation_config.get("temperature", 0.7)),
            batch_size=_env_int("LLM_BATCH_SIZE", generation_config.get("batch_size", 5)),
            inter_batch_delay=generation_config.get("inter_batch_delay", 1.0),
            min_interval=generation_config.get("min_interval", 0.1),
        )

        delivery_config = config.get("delivery", {})
        self.delivery = DeliverySettings(
            enabled=_env_bool("SEND_MESSAGES", delivery_config.get("enabled", False)),
            message_delay=_env_ms("MESSAGE_DELAY", delivery_config.get("message_delay", 5.0)),
            max_messages_per_hour=_env_int("MAX_MESSAGES_PER_HOUR", delivery_config.get("max_messages_per_hour", 50)),
            batch_size=_env_int("WHATSAPP_BATCH_SIZE", delivery_config.get("batch_size", 10)),
            inter_batch_delay=_env_ms("DELAY_BETWEEN_BATCHES", delivery_config.get("inter_batch_delay", 30.0)),
            default_country_code=delivery_config.get("default_country_code", "34"),
        )

        validation_config = config.get("validation", {})
        self.validation = ValidationSettings(
            min_rating=_env_float("MIN_RATING", validation_config.get("min_rating", 3.0)),
            min_reviews=_env_int("MIN_REVIEWS", validation_config.get("min_reviews", 5)),
            require_phone=_env_bool("REQUIRE_PHONE", validation_config.get("require_phone", True)),
            require_reviews=validation_config.get("require_reviews", True),
            max_message_length=_env_int("MAX_MESSAGE_LENGTH", validation_config.get("max_message_length", 1600)),
        )

        template_config = config.get("templates", {})
        self.templates = TemplateSettings(
            sender_name=os.getenv("YOUR_NAME", template_config.get("sender_name", "")),
            default_template=os.getenv("DEFAULT_TEMPLATE", template_config.get("default_template", "default")),
        )

    @property
    def snapshot_dir(self) -> Path:
        return self.data_dir / "snapshots"

    @property
    def output_dir(self) -> Path:
        return self.data_dir / "output"

    def llm_api_key(self) -> str:
        if self.generation.provider == "anthropic":
            return self.anthropic_api_key
        return self.openai_api_key

    def queries_for(self, category: str) -> list[str]:
        """Configured search terms for a category, e.g. "restaurants"."""
        return self.search_queries.get(category, [])

    def quality_criteria(self) -> QualityCriteria:
        return QualityCriteria(
            min_rating=self.validation.min_rating,
            min_review_count=self.validation.min_reviews,
            require_phone=self.validation.require_phone,
            require_at_least_one_review=self.validation.require_reviews,
        )

    def validate(self, deliver: bool = False) -> list[str]:
        """Return every fatal configuration problem (empty list when usable)."""
        problems = []
        if not self.google_places_api_key:
            problems.append("GOOGLE_PLACES_API_KEY is required")
        if self.generation.provider not in ("openai", "anthropic"):
            problems.append(f"Unsupported LLM provider: {self.generation.provider}")
        elif not self.llm_api_key():
            problems.append(f"{self.generation.provider.upper()}_API_KEY is required")
        if not self.templates.sender_name:
            problems.append("YOUR_NAME should be set in environment variables")

        for label, size in (
            ("enrichment.batch_size", self.enrichment.batch_size),
            ("generation.batch_size", self.generation.batch_size),
            ("delivery.batch_size", self.delivery.batch_size),
            ("enrichment.requests_per_minute", self.enrichment.requests_per_minute),
            ("delivery.max_messages_per_hour", self.delivery.max_messages_per_hour),
        ):
            if size <= 0:
                problems.append(f"{label} must be positive")

        if deliver:
            if not self.whatsapp_access_token:
                problems.append("WHATSAPP_ACCESS_TOKEN is required to send messages")
            if not self.whatsapp_phone_number_id:
                problems.append("WHATSAPP_PHONE_NUMBER_ID is required to send messages")
        return problems


settings = Settings()
