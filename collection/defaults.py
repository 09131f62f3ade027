"""
Built-in collector chains and engine-name normalisation.

These are used when an engine has no row in collector_configs yet. An
operator PUT on /collectors/{engine} replaces them for that engine.

    engine        chain (priority order)
    chatgpt       brightdata_chatgpt → openai_direct (off) → groq_chatgpt (off)
    google_aio    serpapi_google_aio → brightdata_google_aio
    perplexity    openrouter_perplexity → brightdata_perplexity
    claude        openrouter_claude (no fallback)
    bing_copilot  serpapi_bing_copilot → brightdata_bing_copilot (off)
    gemini        brightdata_gemini → google_gemini_direct
    grok          brightdata_grok
"""

from config.settings import settings

DEFAULT_CHAINS: dict[str, list[dict]] = {
    "chatgpt": [
        {"name": "brightdata_chatgpt", "priority": 1, "enabled": True, "timeout_seconds": 60},
        {"name": "openai_direct", "priority": 2, "enabled": False, "timeout_seconds": 60},
        {"name": "groq_chatgpt", "priority": 3, "enabled": False, "timeout_seconds": 60},
    ],
    "google_aio": [
        {"name": "serpapi_google_aio", "priority": 1, "enabled": True, "timeout_seconds": 45},
        {"name": "brightdata_google_aio", "priority": 2, "enabled": True, "timeout_seconds": 60},
    ],
    "perplexity": [
        {"name": "openrouter_perplexity", "priority": 1, "enabled": True, "timeout_seconds": 60},
        {"name": "brightdata_perplexity", "priority": 2, "enabled": True, "timeout_seconds": 60},
    ],
    "claude": [
        {"name": "openrouter_claude", "priority": 1, "enabled": True, "timeout_seconds": 60,
         "fallback_on_failure": False},
    ],
    "bing_copilot": [
        {"name": "serpapi_bing_copilot", "priority": 1, "enabled": True, "timeout_seconds": 60},
        {"name": "brightdata_bing_copilot", "priority": 2, "enabled": False, "timeout_seconds": 60},
    ],
    "gemini": [
        {"name": "brightdata_gemini", "priority": 1, "enabled": True, "timeout_seconds": 60},
        {"name": "google_gemini_direct", "priority": 2, "enabled": True, "timeout_seconds": 60},
    ],
    "grok": [
        {"name": "brightdata_grok", "priority": 1, "enabled": True, "timeout_seconds": 60},
    ],
}

# Names customers and older job definitions use for the same engine
ENGINE_ALIASES: dict[str, str] = {
    "openai": "chatgpt",
    "gpt-4": "chatgpt",
    "gpt-4o": "chatgpt",
    "gpt-3.5": "chatgpt",
    "chatgpt": "chatgpt",
    "google": "google_aio",
    "google_ai_overview": "google_aio",
    "google-aio": "google_aio",
    "google_aio": "google_aio",
    "perplexity": "perplexity",
    "anthropic": "claude",
    "claude": "claude",
    "copilot": "bing_copilot",
    "microsoft": "bing_copilot",
    "bing": "bing_copilot",
    "bing_copilot": "bing_copilot",
    "gemini": "gemini",
    "google_gemini": "gemini",
    "grok": "grok",
    "x-ai": "grok",
    "xai": "grok",
}


def normalize_engine(name: str) -> str | None:
    return ENGINE_ALIASES.get(name.strip().lower())


def normalize_engines(names: list[str] | None) -> list[str]:
    """
    Map aliases to canonical engine names, dropping unknown ones.

    Falls back to settings.DEFAULT_ENGINES when nothing usable was given.
    Order is preserved and duplicates are removed.
    """
    engines: list[str] = []
    for name in names or []:
        engine = normalize_engine(name)
        if engine and engine not in engines:
            engines.append(engine)
    return engines or list(settings.DEFAULT_ENGINES)
