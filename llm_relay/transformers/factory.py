"""
Transformer Factory Module

Creates the transformer named by configuration.
"""

from llm_relay.common.errors import ConfigurationError
from llm_relay.config import Settings
from llm_relay.transformers.base import Transformer
from llm_relay.transformers.codex import CodexTransformer
from llm_relay.transformers.copilot import CopilotTransformer
from llm_relay.transformers.kilo import KiloTransformer

_TRANSFORMERS: dict[str, type[Transformer]] = {
    CodexTransformer.name: CodexTransformer,
    KiloTransformer.name: KiloTransformer,
    CopilotTransformer.name: CopilotTransformer,
}

# Transformer cache; one instance owns one credential store
_transformers: dict[str, Transformer] = {}


def get_transformer(name: str, settings: Settings) -> Transformer:
    """
    Get the transformer for the specified upstream variant

    Uses caching so the credential store (and its refresh lock) is shared
    by all requests.

    Args:
        name: Transformer name, "codex", "kilo" or "copilot"
        settings: Relay configuration

    Returns:
        Transformer: Corresponding transformer instance

    Raises:
        ConfigurationError: Unsupported transformer name
    """
    key = (name or "").lower()

    if key not in _transformers:
        transformer_cls = _TRANSFORMERS.get(key)
        if transformer_cls is None:
            raise ConfigurationError(
                message=f"Unsupported transformer: {name}",
                code="unsupported_transformer",
                details={"supported": sorted(_TRANSFORMERS)},
            )
        _transformers[key] = transformer_cls(settings)

    return _transformers[key]


def reset_transformers() -> None:
    """Drop cached transformers (used when configuration changes)."""
    _transformers.clear()
