"""Provider registry: provider name -> factory producing a ChatModel.

The registry is an explicit, closed map.  Factories are stateless; the
:class:`~taskpilot.llm.client.LLMClient` owns and caches what they build.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional

import openai

from taskpilot.config.models import AgentConfig, ProviderConfig
from taskpilot.llm.providers.anthropic import AnthropicModel
from taskpilot.llm.providers.base import ChatModel
from taskpilot.llm.providers.openai_compat import OpenAICompatibleModel
from taskpilot.llm.providers.openai_sdk import OpenAISDKModel
from taskpilot.llm.types import ErrorCode, ModelResponse, ProviderError

ProviderFactory = Callable[[str, ProviderConfig, AgentConfig], ChatModel]


def resolve_model_name(provider: str, cfg: ProviderConfig) -> Optional[str]:
    """Pick the model identifier a provider expects.

    Azure addresses models by deployment name; foundry-style endpoints use
    a model alias when one is set.  Everything else uses ``model``.
    """
    if provider == "azure":
        return cfg.deployment or cfg.model
    if cfg.model_alias:
        return cfg.model_alias
    return cfg.model


def _not_configured(provider: str, what: str) -> ProviderError:
    return ProviderError(
        ErrorCode.PROVIDER_NOT_CONFIGURED,
        f"{provider}: {what} is not configured",
    )


def _require_key(provider: str, cfg: ProviderConfig) -> str:
    key = cfg.get_api_key()
    if not key:
        hint = f" (set {' or '.join(cfg.api_key_env)})" if cfg.api_key_env else ""
        raise _not_configured(provider, f"API key{hint}")
    return key


def _require_model(provider: str, cfg: ProviderConfig) -> str:
    model = resolve_model_name(provider, cfg)
    if not model:
        raise _not_configured(provider, "model" if provider != "azure" else "deployment")
    return model


def create_openai(name: str, cfg: ProviderConfig, config: AgentConfig) -> ChatModel:
    client = openai.OpenAI(
        api_key=_require_key(name, cfg),
        base_url=cfg.base_url or None,
        timeout=config.timeout,
        max_retries=0,
    )
    return OpenAISDKModel(
        name,
        _require_model(name, cfg),
        client,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )


def create_azure(name: str, cfg: ProviderConfig, config: AgentConfig) -> ChatModel:
    if not cfg.base_url:
        raise _not_configured(name, "endpoint (AZURE_OPENAI_ENDPOINT)")
    client = openai.AzureOpenAI(
        api_key=_require_key(name, cfg),
        azure_endpoint=cfg.base_url,
        api_version=cfg.api_version,
        timeout=config.timeout,
        max_retries=0,
    )
    return OpenAISDKModel(
        name,
        _require_model(name, cfg),
        client,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )


def create_anthropic(name: str, cfg: ProviderConfig, config: AgentConfig) -> ChatModel:
    return AnthropicModel(
        model=_require_model(name, cfg),
        api_key=_require_key(name, cfg),
        base_url=cfg.base_url or "https://api.anthropic.com/v1",
        timeout=config.timeout,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )


def create_openai_compatible(name: str, cfg: ProviderConfig, config: AgentConfig) -> ChatModel:
    if not cfg.base_url:
        raise _not_configured(name, "base_url")
    return OpenAICompatibleModel(
        provider=name,
        model=_require_model(name, cfg),
        base_url=cfg.base_url,
        api_key=_require_key(name, cfg),
        timeout=config.timeout,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )


def create_local(name: str, cfg: ProviderConfig, config: AgentConfig) -> ChatModel:
    # Local servers (Ollama, llama.cpp) usually need no key
    return OpenAICompatibleModel(
        provider=name,
        model=_require_model(name, cfg),
        base_url=cfg.base_url or "http://localhost:11434/v1",
        api_key=cfg.get_api_key(),
        timeout=config.timeout,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )


PROVIDERS: Dict[str, ProviderFactory] = {
    "openai": create_openai,
    "azure": create_azure,
    "anthropic": create_anthropic,
    "chutes": create_openai_compatible,
    "local": create_local,
}


def create_provider(
    name: str,
    config: AgentConfig,
    providers: Optional[Dict[str, ProviderFactory]] = None,
) -> ModelResponse[ChatModel]:
    """Construct the ChatModel for provider *name*.

    Returns:
        ``PROVIDER_NOT_SUPPORTED`` for unknown names,
        ``PROVIDER_NOT_CONFIGURED`` for missing credentials/model, else the
        constructed model.
    """
    registry = PROVIDERS if providers is None else providers
    factory = registry.get(name)
    if factory is None:
        supported = ", ".join(sorted(registry))
        return ModelResponse.fail(
            ErrorCode.PROVIDER_NOT_SUPPORTED,
            f"Provider '{name}' is not supported (supported: {supported})",
        )

    cfg = config.provider_config(name)
    if cfg is None:
        return ModelResponse.fail(
            ErrorCode.PROVIDER_NOT_CONFIGURED,
            f"Provider '{name}' has no configuration block",
        )

    try:
        model = factory(name, cfg, config)
    except ProviderError as e:
        return ModelResponse.fail(e.code, e.message)
    except openai.OpenAIError as e:
        # SDK constructors validate credentials/endpoint eagerly
        return ModelResponse.fail(
            ErrorCode.PROVIDER_NOT_CONFIGURED, f"{name}: client setup failed ({type(e).__name__})"
        )
    return ModelResponse.ok(model, f"{name} client ready ({model.model})")
