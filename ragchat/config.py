import os
from dataclasses import dataclass
from dotenv import load_dotenv
from pathlib import Path

# Load environment variables from .env file with explicit path
load_dotenv(dotenv_path=Path(__file__).parent.parent / '.env')

PROJECT_ROOT = Path(__file__).parent.parent


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Knowledge source and persisted artifacts
KNOWLEDGE_DOCUMENT_PATH = os.getenv("KNOWLEDGE_DOCUMENT_PATH", str(PROJECT_ROOT / "data" / "conocimiento.txt"))
VECTOR_CACHE_PATH = os.getenv("VECTOR_CACHE_PATH", str(PROJECT_ROOT / "data" / "embeddings.json"))
UNANSWERED_LOG_DB_PATH = os.getenv("UNANSWERED_LOG_DB_PATH", str(PROJECT_ROOT / "data" / "unanswered.db"))

# Embedding backend (OpenAI-compatible /v1/embeddings)
EMBEDDING_API_URL = os.getenv("EMBEDDING_API_URL", "http://localhost:1234/v1/embeddings")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-nomic-embed-text-v1.5")
EMBEDDING_TIMEOUT_SECONDS = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "30"))
EMBEDDING_MAX_ATTEMPTS = int(os.getenv("EMBEDDING_MAX_ATTEMPTS", "1"))  # 1 = no retry
EMBED_MIN_CHARS_PASSAGE = int(os.getenv("EMBED_MIN_CHARS_PASSAGE", "20"))
EMBED_MIN_CHARS_QUERY = int(os.getenv("EMBED_MIN_CHARS_QUERY", "3"))
EMBED_MAX_CHARS = int(os.getenv("EMBED_MAX_CHARS", "8000"))
EMBED_BATCH_DELAY_SECONDS = float(os.getenv("EMBED_BATCH_DELAY_SECONDS", "0.2"))

# Generation backend (OpenAI-compatible chat completions)
GENERATION_API_URL = os.getenv("GENERATION_API_URL", "http://localhost:1234/v1")
GENERATION_API_KEY = os.getenv("GENERATION_API_KEY", "lm-studio")
GENERATION_MODEL = os.getenv("GENERATION_MODEL", "local-model")
GENERATION_TEMPERATURE = float(os.getenv("GENERATION_TEMPERATURE", "0.2"))
GENERATION_MAX_TOKENS = int(os.getenv("GENERATION_MAX_TOKENS", "512"))
GENERATION_TIMEOUT_SECONDS = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "60"))

# Chunking
CHUNK_MAX_WORDS = int(os.getenv("CHUNK_MAX_WORDS", "0"))  # 0 = never split a marked passage

# Retrieval
RETRIEVAL_TOP_N = int(os.getenv("RETRIEVAL_TOP_N", "3"))
RETRIEVAL_MIN_WORDS = int(os.getenv("RETRIEVAL_MIN_WORDS", "3"))
RETRIEVAL_MIN_SCORE = float(os.getenv("RETRIEVAL_MIN_SCORE", "0.65"))
RETRIEVAL_MARGIN_GATE = _env_bool("RETRIEVAL_MARGIN_GATE", "false")
RETRIEVAL_MARGIN = float(os.getenv("RETRIEVAL_MARGIN", "0.05"))
RETRIEVAL_KEYWORD_GATE = _env_bool("RETRIEVAL_KEYWORD_GATE", "false")

# Groundedness validation
VALIDATION_ACCEPT_THRESHOLD = float(os.getenv("VALIDATION_ACCEPT_THRESHOLD", "0.75"))
VALIDATION_BLOCK_THRESHOLD = float(os.getenv("VALIDATION_BLOCK_THRESHOLD", "0.55"))
LEXICAL_ACCEPT_THRESHOLD = float(os.getenv("LEXICAL_ACCEPT_THRESHOLD", "0.30"))
LEXICAL_BLOCK_THRESHOLD = float(os.getenv("LEXICAL_BLOCK_THRESHOLD", "0.10"))
VALIDATION_MAX_PASSAGES = int(os.getenv("VALIDATION_MAX_PASSAGES", "8"))

# Sessions
SESSION_EXPIRATION_SECONDS = int(os.getenv("SESSION_EXPIRATION_SECONDS", str(30 * 60)))  # 30 minutes
SESSION_SWEEP_INTERVAL_SECONDS = int(os.getenv("SESSION_SWEEP_INTERVAL_SECONDS", str(5 * 60)))  # 5 minutes
HISTORY_MAX_MESSAGES = int(os.getenv("HISTORY_MAX_MESSAGES", "10"))
MIN_MESSAGE_CHARS = int(os.getenv("MIN_MESSAGE_CHARS", "3"))
SESSION_SYSTEM_MESSAGE = os.getenv(
    "SESSION_SYSTEM_MESSAGE",
    "Eres un asistente útil y siempre respondes en español.",
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Canned responses
REFUSAL_MESSAGE = os.getenv(
    "REFUSAL_MESSAGE",
    "Lo siento, no encontré información sobre eso en la base de conocimiento.",
)
GENERATION_FALLBACK_MESSAGE = os.getenv(
    "GENERATION_FALLBACK_MESSAGE",
    "Lo siento, hubo un problema al generar la respuesta. Por favor intenta de nuevo más tarde.",
)
INVALID_INPUT_MESSAGE = os.getenv(
    "INVALID_INPUT_MESSAGE",
    "Por favor, escribe tu pregunta con un poco más de detalle.",
)
LOW_CONFIDENCE_PREFIX = "⚠️ Respuesta con baja confianza ({score:.2f}): "


class ConfigError(Exception):
    """Raised at startup when the configuration cannot serve requests."""
    pass


@dataclass(frozen=True)
class Settings:
    """Every tunable heuristic of the service in one place.

    Attributes:
        document_path: Knowledge document read once at startup.
        cache_path: JSON artifact holding the embedded chunks.
        unanswered_db_path: SQLite file for the unanswered-question log.
        embedding_url: Full URL of the embeddings endpoint.
        embedding_model: Model name sent with every embedding request.
        embedding_timeout: Seconds before an embedding call is abandoned.
        embedding_max_attempts: Attempts per embedding call (1 disables retry).
        embed_min_chars_passage: Cleaned passages shorter than this are not embedded.
        embed_min_chars_query: Cleaned queries/answers shorter than this are not embedded.
        embed_max_chars: Inputs are truncated to this many characters.
        embed_batch_delay: Pause between consecutive calls during ingestion.
        generation_url: Base URL of the chat-completions API.
        generation_api_key: Key sent to the generation backend.
        generation_model: Model name for chat completions.
        generation_temperature: Sampling temperature.
        generation_max_tokens: Completion length cap.
        generation_timeout: Seconds before a generation call is abandoned.
        chunk_max_words: Word window for oversized passages (0 disables).
        top_n: Maximum passages handed to the prompt.
        min_words: Minimum passage length in words.
        min_score: Cosine floor for a passage to count as relevant.
        margin_gate: Require a gap between top-1 and top-2 scores.
        margin: Size of that gap.
        keyword_gate: Require a query keyword inside the best passage.
        accept_threshold: Embedding similarity for an accepted answer.
        block_threshold: Embedding similarity under which an answer is blocked.
        lexical_accept_threshold: Jaccard score for acceptance in fallback mode.
        lexical_block_threshold: Jaccard score under which fallback blocks.
        validation_max_passages: Context passages embedded during validation.
        session_expiration: Idle seconds before a session is swept.
        sweep_interval: Seconds between sweeps.
        history_max_messages: Prior turns forwarded to the generation backend.
        min_message_chars: Shortest user message accepted.
        session_system_message: System message every new session starts with (empty disables).
    """
    document_path: str = KNOWLEDGE_DOCUMENT_PATH
    cache_path: str = VECTOR_CACHE_PATH
    unanswered_db_path: str = UNANSWERED_LOG_DB_PATH

    embedding_url: str = EMBEDDING_API_URL
    embedding_model: str = EMBEDDING_MODEL
    embedding_timeout: float = EMBEDDING_TIMEOUT_SECONDS
    embedding_max_attempts: int = EMBEDDING_MAX_ATTEMPTS
    embed_min_chars_passage: int = EMBED_MIN_CHARS_PASSAGE
    embed_min_chars_query: int = EMBED_MIN_CHARS_QUERY
    embed_max_chars: int = EMBED_MAX_CHARS
    embed_batch_delay: float = EMBED_BATCH_DELAY_SECONDS

    generation_url: str = GENERATION_API_URL
    generation_api_key: str = GENERATION_API_KEY
    generation_model: str = GENERATION_MODEL
    generation_temperature: float = GENERATION_TEMPERATURE
    generation_max_tokens: int = GENERATION_MAX_TOKENS
    generation_timeout: float = GENERATION_TIMEOUT_SECONDS

    chunk_max_words: int = CHUNK_MAX_WORDS

    top_n: int = RETRIEVAL_TOP_N
    min_words: int = RETRIEVAL_MIN_WORDS
    min_score: float = RETRIEVAL_MIN_SCORE
    margin_gate: bool = RETRIEVAL_MARGIN_GATE
    margin: float = RETRIEVAL_MARGIN
    keyword_gate: bool = RETRIEVAL_KEYWORD_GATE

    accept_threshold: float = VALIDATION_ACCEPT_THRESHOLD
    block_threshold: float = VALIDATION_BLOCK_THRESHOLD
    lexical_accept_threshold: float = LEXICAL_ACCEPT_THRESHOLD
    lexical_block_threshold: float = LEXICAL_BLOCK_THRESHOLD
    validation_max_passages: int = VALIDATION_MAX_PASSAGES

    session_expiration: int = SESSION_EXPIRATION_SECONDS
    sweep_interval: int = SESSION_SWEEP_INTERVAL_SECONDS
    history_max_messages: int = HISTORY_MAX_MESSAGES
    min_message_chars: int = MIN_MESSAGE_CHARS
    session_system_message: str = SESSION_SYSTEM_MESSAGE


def load_settings(**overrides) -> Settings:
    """Build the settings from the environment, applying keyword overrides."""
    return Settings(**overrides)


def validate_settings(settings: Settings) -> None:
    """Fail fast on a configuration that cannot serve requests.

    Raises:
        ConfigError: If a backend URL is missing or thresholds are inverted.
    """
    if not settings.embedding_url:
        raise ConfigError("EMBEDDING_API_URL is not configured")
    if not settings.generation_url:
        raise ConfigError("GENERATION_API_URL is not configured")
    if settings.block_threshold > settings.accept_threshold:
        raise ConfigError(
            f"VALIDATION_BLOCK_THRESHOLD ({settings.block_threshold}) is above "
            f"VALIDATION_ACCEPT_THRESHOLD ({settings.accept_threshold})"
        )
    if settings.lexical_block_threshold > settings.lexical_accept_threshold:
        raise ConfigError(
            f"LEXICAL_BLOCK_THRESHOLD ({settings.lexical_block_threshold}) is above "
            f"LEXICAL_ACCEPT_THRESHOLD ({settings.lexical_accept_threshold})"
        )
    if settings.top_n < 1:
        raise ConfigError("RETRIEVAL_TOP_N must be at least 1")
