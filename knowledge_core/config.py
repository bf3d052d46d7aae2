"""
Configuration: loads settings from .kgcore.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).
"""

import logging
import os

try:
    import yaml
except ImportError:
    yaml = None


logger = logging.getLogger(__name__)


_DEFAULTS = {
    "db_path": ".kgcore/knowledge.db",
    # Embedding provider
    "embedding_model": "text-embedding-3-small",
    "embedding_dimension": 1536,
    "embedding_batch_size": 100,
    "embedding_max_chars": 6000,
    "embedding_chunk_pause": 0.1,
    "embedding_max_retries": 3,
    "embedding_retry_delay": 1.0,
    "embedding_timeout": 30.0,
    "bulk_embed_limit": 50,
    # Similarity
    "search_threshold": 0.3,
    "similar_threshold": 0.8,
    "search_limit": 10,
    "similar_limit": 5,
    "lexical_threshold": 0.1,
    # Recommendation
    "recommend_threshold": 0.6,
    "recommend_max": 6,
    "recommend_candidates": 10,
    "confidence_factor": 0.9,
    "confidence_cap": 0.95,
    "use_llm_explanations": False,
    # Graph analysis
    "influence_inbound_weight": 2.0,
    "influence_outbound_weight": 1.0,
    "cluster_min_size": 3,
    # Generative text service
    "chat_model": "gpt-4o-mini",
    "llm_max_retries": 3,
    "llm_retry_delay": 2.0,
    "openai_api_key": "",
    "openai_base_url": "https://api.openai.com/v1",
    # Logging
    "log_dir": ".kgcore/logs",
    "log_level": "INFO",
}

# Searched in order when no explicit --config path is given
_CONFIG_FILENAMES = (".kgcore.yaml", ".kgcore.yml")


def _candidate_paths(explicit_path: str | None):
    if explicit_path:
        yield explicit_path
        return
    for directory in (os.getcwd(), os.path.expanduser("~")):
        for name in _CONFIG_FILENAMES:
            yield os.path.join(directory, name)


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """First existing config file: the explicit path alone, else CWD then home."""
    return next((p for p in _candidate_paths(explicit_path) if os.path.isfile(p)), None)


def _load_yaml(path: str) -> dict:
    """Parse *path* as a YAML mapping; unreadable or non-mapping files give ``{}``."""
    if yaml is None:
        logger.warning("pyyaml is not installed; ignoring config file %s", path)
        return {}
    try:
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Could not read config file %s: %s", path, exc)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s does not contain a mapping; ignoring it", path)
        return {}
    logger.debug("Loaded config file %s", path)
    return data


class Config:
    """Application configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables (``KGCORE_*``, plus ``OPENAI_API_KEY`` /
       ``OPENAI_BASE_URL``)
    3. .kgcore.yaml config file
    4. Built-in defaults

    The YAML file may group keys under ``embedding:``, ``similarity:``,
    ``recommendation:`` and ``graph:`` sections, or keep them flat.
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = _flatten_sections(yaml_data or {})

        # Helper: env var > yaml > default
        def _get(env_key: str, yaml_key: str, cast=str):
            env_val = os.getenv(env_key)
            if env_val is not None:
                return cast(env_val)
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return cast(yaml_val)
            return _DEFAULTS[yaml_key]

        def _get_bool(env_key: str, yaml_key: str) -> bool:
            env_val = os.getenv(env_key)
            if env_val is not None:
                return env_val.lower() == "true"
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return bool(yaml_val)
            return _DEFAULTS[yaml_key]

        self.DB_PATH = _get("KGCORE_DB_PATH", "db_path")

        self.EMBEDDING_MODEL = _get("KGCORE_EMBEDDING_MODEL", "embedding_model")
        self.EMBEDDING_DIMENSION = _get("KGCORE_EMBEDDING_DIMENSION",
                                        "embedding_dimension", cast=int)
        self.EMBEDDING_BATCH_SIZE = _get("KGCORE_EMBEDDING_BATCH_SIZE",
                                         "embedding_batch_size", cast=int)
        self.EMBEDDING_MAX_CHARS = _get("KGCORE_EMBEDDING_MAX_CHARS",
                                        "embedding_max_chars", cast=int)
        self.EMBEDDING_CHUNK_PAUSE = _get("KGCORE_EMBEDDING_CHUNK_PAUSE",
                                          "embedding_chunk_pause", cast=float)
        self.EMBEDDING_MAX_RETRIES = _get("KGCORE_EMBEDDING_MAX_RETRIES",
                                          "embedding_max_retries", cast=int)
        self.EMBEDDING_RETRY_DELAY = _get("KGCORE_EMBEDDING_RETRY_DELAY",
                                          "embedding_retry_delay", cast=float)
        self.EMBEDDING_TIMEOUT = _get("KGCORE_EMBEDDING_TIMEOUT",
                                      "embedding_timeout", cast=float)
        self.BULK_EMBED_LIMIT = _get("KGCORE_BULK_EMBED_LIMIT",
                                     "bulk_embed_limit", cast=int)

        # Search threshold sits below the node-to-node similarity threshold.
        self.SEARCH_THRESHOLD = _get("KGCORE_SEARCH_THRESHOLD",
                                     "search_threshold", cast=float)
        self.SIMILAR_THRESHOLD = _get("KGCORE_SIMILAR_THRESHOLD",
                                      "similar_threshold", cast=float)
        self.SEARCH_LIMIT = _get("KGCORE_SEARCH_LIMIT", "search_limit", cast=int)
        self.SIMILAR_LIMIT = _get("KGCORE_SIMILAR_LIMIT", "similar_limit", cast=int)
        self.LEXICAL_THRESHOLD = _get("KGCORE_LEXICAL_THRESHOLD",
                                      "lexical_threshold", cast=float)

        self.RECOMMEND_THRESHOLD = _get("KGCORE_RECOMMEND_THRESHOLD",
                                        "recommend_threshold", cast=float)
        self.RECOMMEND_MAX = _get("KGCORE_RECOMMEND_MAX", "recommend_max", cast=int)
        self.RECOMMEND_CANDIDATES = _get("KGCORE_RECOMMEND_CANDIDATES",
                                         "recommend_candidates", cast=int)
        self.CONFIDENCE_FACTOR = _get("KGCORE_CONFIDENCE_FACTOR",
                                      "confidence_factor", cast=float)
        self.CONFIDENCE_CAP = _get("KGCORE_CONFIDENCE_CAP",
                                   "confidence_cap", cast=float)
        self.USE_LLM_EXPLANATIONS = _get_bool("KGCORE_USE_LLM_EXPLANATIONS",
                                              "use_llm_explanations")

        self.INFLUENCE_INBOUND_WEIGHT = _get("KGCORE_INFLUENCE_INBOUND_WEIGHT",
                                             "influence_inbound_weight", cast=float)
        self.INFLUENCE_OUTBOUND_WEIGHT = _get("KGCORE_INFLUENCE_OUTBOUND_WEIGHT",
                                              "influence_outbound_weight", cast=float)
        self.CLUSTER_MIN_SIZE = _get("KGCORE_CLUSTER_MIN_SIZE",
                                     "cluster_min_size", cast=int)

        self.CHAT_MODEL = _get("KGCORE_CHAT_MODEL", "chat_model")
        self.LLM_MAX_RETRIES = _get("KGCORE_LLM_MAX_RETRIES",
                                    "llm_max_retries", cast=int)
        self.LLM_RETRY_DELAY = _get("KGCORE_LLM_RETRY_DELAY",
                                    "llm_retry_delay", cast=float)

        # OpenAI / cloud provider
        openai_section = yd.get("openai", {}) if isinstance(yd.get("openai"), dict) else {}
        self.OPENAI_API_KEY = os.getenv("OPENAI_API_KEY") or openai_section.get(
            "api_key", _DEFAULTS["openai_api_key"])
        self.OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or openai_section.get(
            "base_url", _DEFAULTS["openai_base_url"])

        self.LOG_DIR = _get("KGCORE_LOG_DIR", "log_dir")
        self.LOG_LEVEL = _get("KGCORE_LOG_LEVEL", "log_level").upper()

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)


_SECTION_PREFIXES = {
    "embedding": "embedding_",
    "similarity": "",
    "recommendation": "",
    "graph": "",
}


def _flatten_sections(data: dict) -> dict:
    """Merge known YAML sections into a flat key space.

    ``embedding: {model: x}`` becomes ``embedding_model: x``; keys in the
    other sections are copied as-is.  Top-level keys win over section keys.
    """
    flat: dict = {}
    for section, prefix in _SECTION_PREFIXES.items():
        body = data.get(section)
        if not isinstance(body, dict):
            continue
        for key, value in body.items():
            name = key if key.startswith(prefix) else f"{prefix}{key}"
            flat[name] = value
    for key, value in data.items():
        if key in _SECTION_PREFIXES and isinstance(value, dict):
            continue
        flat[key] = value
    return flat
