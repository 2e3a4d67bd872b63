import pytest

from llm_relay.common.errors import ConfigurationError
from llm_relay.transformers import (
    CodexTransformer,
    CopilotTransformer,
    KiloTransformer,
    get_transformer,
    reset_transformers,
)


@pytest.mark.parametrize(
    "name, cls",
    [("codex", CodexTransformer), ("kilo", KiloTransformer), ("copilot", CopilotTransformer), ("KILO", KiloTransformer)],
)
def test_get_transformer(settings, name, cls):
    assert isinstance(get_transformer(name, settings), cls)


def test_transformer_instances_are_cached(settings):
    first = get_transformer("copilot", settings)
    assert get_transformer("copilot", settings) is first
    # One credential store per transformer, shared by all requests
    assert get_transformer("copilot", settings).credential_provider is first.credential_provider

    reset_transformers()
    assert get_transformer("copilot", settings) is not first


def test_unknown_transformer(settings):
    with pytest.raises(ConfigurationError) as exc_info:
        get_transformer("gemini", settings)

    assert exc_info.value.code == "unsupported_transformer"
    assert exc_info.value.details == {"supported": ["codex", "copilot", "kilo"]}
