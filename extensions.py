"""
Process-wide objects: the rate limiter and the LLM gateway.

The gateway is built once by create_app() and stored on the app, so request
handlers reach it through get_gateway() instead of module state.
"""

from __future__ import annotations

from flask import current_app
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, default_limits=["200 per hour"])


def init_gateway(app, gateway=None) -> None:
    """Attach the LLM gateway to the app, building one from config if not given."""
    if gateway is None:
        from ai_resilience import CompletionClient
        from llm_gateway import LLMGateway

        client = CompletionClient(
            api_key=app.config.get("OPENAI_API_KEY", ""),
            model=app.config.get("OPENAI_MODEL", "gpt-4"),
        )
        gateway = LLMGateway(
            client,
            max_attempts=app.config.get("LLM_MAX_ATTEMPTS", 3),
            retry_base_delay=app.config.get("LLM_RETRY_BASE_DELAY", 3.0),
        )
    app.extensions["llm_gateway"] = gateway


def get_gateway():
    return current_app.extensions["llm_gateway"]
