"""
Configuration Management
========================

Centralized configuration for the companion. All environment variables
are validated and typed here:

1. Every configuration option is visible in one place
2. Values are type-safe (frozen dataclasses)
3. Startup fails fast if required configuration is missing

Optional integrations (web search, emergency alerts, Pinecone) may be left
unconfigured; their adapters report a failure at call time instead of
crashing the bot.

Usage:
    from medcompanion.utils.config import get_config

    config = get_config()
    print(config.completion.model)
    print(config.budget.total_tokens)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


def _required(name: str) -> str:
    """
    Get a required environment variable.

    Raises:
        ValueError: If the variable is not set
    """
    value = os.getenv(name)
    if not value:
        raise ValueError(
            f"Missing required environment variable: {name}\n"
            f"Please ensure {name} is set in your .env file."
        )
    return value


def _optional(name: str, default: str) -> str:
    """Get an optional environment variable with a default."""
    return os.getenv(name, default)


def _optional_int(name: str, default: int) -> int:
    """Get an optional integer environment variable."""
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        print(f"Warning: {name} is not a valid integer, using default: {default}")
        return default


def _optional_float(name: str, default: float) -> float:
    """Get an optional float environment variable."""
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        print(f"Warning: {name} is not a valid number, using default: {default}")
        return default


def _optional_bool(name: str, default: bool) -> bool:
    """True if the value is 'true' (case-insensitive)."""
    value = os.getenv(name)
    if not value:
        return default
    return value.lower() == "true"


# ==============================================================================
# Configuration Dataclasses
# ==============================================================================
# Sections without secrets carry their defaults so components can be built
# in tests without touching the environment.

DEFAULT_COMPLETION_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_EMBEDDING_URL = (
    "https://api-inference.huggingface.co/pipeline/feature-extraction/"
    "sentence-transformers/all-MiniLM-L6-v2"
)
DEFAULT_GEOCODE_URL = "https://nominatim.openstreetmap.org/reverse"


@dataclass(frozen=True)
class SlackConfig:
    """Slack API configuration."""
    bot_token: str      # xoxb-... token for bot operations
    app_token: str      # xapp-... token for Socket Mode
    signing_secret: str


@dataclass(frozen=True)
class CompletionConfig:
    """Streaming chat-completion provider (any OpenAI-compatible endpoint)."""
    api_key: str
    base_url: str = DEFAULT_COMPLETION_BASE_URL
    model: str = "llama-3.3-70b-versatile"
    temperature: float = 0.7
    top_p: float = 0.9
    max_completion_tokens: int = 8192


@dataclass(frozen=True)
class EmbeddingConfig:
    """Embedding service used for knowledge retrieval."""
    api_key: str | None = None
    url: str = DEFAULT_EMBEDDING_URL
    dimension: int = 384  # all-MiniLM-L6-v2


@dataclass(frozen=True)
class KnowledgeConfig:
    """Vector store and retrieval limits."""
    backend: str = "local"                 # "local" or "pinecone"
    store_directory: Path = Path("data/vectorstore")
    pinecone_api_key: str | None = None
    pinecone_index_host: str | None = None  # e.g. medical-chatbot-xxxx.svc.pinecone.io
    top_k: int = 5
    relevance_floor: float = 0.7
    token_cap: int = 3000


@dataclass(frozen=True)
class BudgetConfig:
    """Token budget split between system prompt, knowledge, and history."""
    total_tokens: int = 28000          # leaves room for the response
    system_reserve: int = 2000
    current_message_reserve: int = 500
    history_fetch_limit: int = 20      # messages requested from the transport
    history_min_entries: int = 3       # always kept regardless of budget


@dataclass(frozen=True)
class SearchConfig:
    """Web search tool (Tavily)."""
    api_key: str | None = None
    max_results: int = 5
    include_coordinates: bool = False


@dataclass(frozen=True)
class AlertConfig:
    """Emergency alert tool (Twilio SMS)."""
    account_sid: str | None = None
    auth_token: str | None = None
    from_number: str | None = None
    to_number: str = "+1234567890"


@dataclass(frozen=True)
class GeocodeConfig:
    """Reverse geocoding (Nominatim)."""
    url: str = DEFAULT_GEOCODE_URL
    user_agent: str = "MedicalCompanionApp/1.0"


@dataclass(frozen=True)
class AgentConfig:
    """Completion loop behavior."""
    max_tool_rounds: int = 5
    partial_interval_seconds: float = 1.0
    fallback_locale: str = "en-US"


@dataclass(frozen=True)
class Config:
    """
    Root configuration object.

    Access via:
        config = get_config()
        config.completion.model
        config.knowledge.relevance_floor
    """
    slack: SlackConfig
    completion: CompletionConfig
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    knowledge: KnowledgeConfig = field(default_factory=KnowledgeConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    alert: AlertConfig = field(default_factory=AlertConfig)
    geocode: GeocodeConfig = field(default_factory=GeocodeConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    log_level: str = "info"


def _load_embedding() -> EmbeddingConfig:
    return EmbeddingConfig(
        api_key=os.getenv("HUGGINGFACE_API_KEY"),
        url=_optional("EMBEDDING_URL", DEFAULT_EMBEDDING_URL),
        dimension=_optional_int("EMBEDDING_DIMENSION", 384),
    )


def _load_knowledge() -> KnowledgeConfig:
    # Relative store paths resolve against the project root
    project_root = Path(__file__).parent.parent.parent
    store_dir = Path(_optional("VECTOR_STORE_DIR", "data/vectorstore"))
    if not store_dir.is_absolute():
        store_dir = project_root / store_dir

    return KnowledgeConfig(
        backend=_optional("VECTOR_BACKEND", "local").lower(),
        store_directory=store_dir,
        pinecone_api_key=os.getenv("PINECONE_API_KEY"),
        pinecone_index_host=os.getenv("PINECONE_INDEX_HOST"),
        top_k=_optional_int("KNOWLEDGE_TOP_K", 5),
        relevance_floor=_optional_float("KNOWLEDGE_RELEVANCE_FLOOR", 0.7),
        token_cap=_optional_int("KNOWLEDGE_TOKEN_CAP", 3000),
    )


def load_indexing_config() -> tuple[EmbeddingConfig, KnowledgeConfig]:
    """
    Load only what the knowledge indexer needs.

    The indexer runs offline, so Slack and completion credentials are not
    required.
    """
    load_dotenv()
    return _load_embedding(), _load_knowledge()


def load_config() -> Config:
    """
    Load and validate all configuration from the environment.

    Returns:
        Config: The validated configuration

    Raises:
        ValueError: If required configuration is missing
    """
    load_dotenv()

    return Config(
        slack=SlackConfig(
            bot_token=_required("SLACK_BOT_TOKEN"),
            app_token=_required("SLACK_APP_TOKEN"),
            signing_secret=_required("SLACK_SIGNING_SECRET"),
        ),
        completion=CompletionConfig(
            api_key=_required("COMPLETION_API_KEY"),
            base_url=_optional("COMPLETION_BASE_URL", DEFAULT_COMPLETION_BASE_URL),
            model=_optional("COMPLETION_MODEL", "llama-3.3-70b-versatile"),
            temperature=_optional_float("COMPLETION_TEMPERATURE", 0.7),
            top_p=_optional_float("COMPLETION_TOP_P", 0.9),
            max_completion_tokens=_optional_int("COMPLETION_MAX_TOKENS", 8192),
        ),
        embedding=_load_embedding(),
        knowledge=_load_knowledge(),
        budget=BudgetConfig(
            total_tokens=_optional_int("BUDGET_TOTAL_TOKENS", 28000),
            system_reserve=_optional_int("BUDGET_SYSTEM_RESERVE", 2000),
            current_message_reserve=_optional_int("BUDGET_CURRENT_MESSAGE_RESERVE", 500),
            history_fetch_limit=_optional_int("HISTORY_FETCH_LIMIT", 20),
            history_min_entries=_optional_int("HISTORY_MIN_ENTRIES", 3),
        ),
        search=SearchConfig(
            api_key=os.getenv("TAVILY_API_KEY"),
            max_results=_optional_int("SEARCH_MAX_RESULTS", 5),
            include_coordinates=_optional_bool("SEARCH_INCLUDE_COORDINATES", False),
        ),
        alert=AlertConfig(
            account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
            auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
            from_number=os.getenv("TWILIO_PHONE_NUMBER"),
            to_number=_optional("EMERGENCY_CONTACT_NUMBER", "+1234567890"),
        ),
        geocode=GeocodeConfig(
            url=_optional("GEOCODE_URL", DEFAULT_GEOCODE_URL),
            user_agent=_optional("GEOCODE_USER_AGENT", "MedicalCompanionApp/1.0"),
        ),
        agent=AgentConfig(
            max_tool_rounds=_optional_int("AGENT_MAX_TOOL_ROUNDS", 5),
            partial_interval_seconds=_optional_float("AGENT_PARTIAL_INTERVAL_SECONDS", 1.0),
            fallback_locale=_optional("AGENT_FALLBACK_LOCALE", "en-US"),
        ),
        log_level=_optional("LOG_LEVEL", "info"),
    )


# ==============================================================================
# Singleton
# ==============================================================================

_config_instance: Config | None = None


def get_config() -> Config:
    """
    Get the singleton configuration instance.

    Loaded on first access and cached for subsequent calls.
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = load_config()
    return _config_instance


# ==============================================================================
# Helper Functions
# ==============================================================================

def is_search_configured(config: Config | None = None) -> bool:
    """Check if the web search tool has credentials."""
    config = config or get_config()
    return config.search.api_key is not None


def is_alert_configured(config: Config | None = None) -> bool:
    """Check if the emergency alert tool has credentials."""
    config = config or get_config()
    alert = config.alert
    return bool(alert.account_sid and alert.auth_token and alert.from_number)


def is_pinecone_configured(config: Config | None = None) -> bool:
    """Check if the Pinecone backend can be used."""
    config = config or get_config()
    knowledge = config.knowledge
    return bool(knowledge.pinecone_api_key and knowledge.pinecone_index_host)
