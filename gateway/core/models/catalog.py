"""Static model catalog.

Canonical model names, the providers that can serve them, their aliases and
capability metadata. Loaded once at import and never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# =============================================================================
# Provider names
# =============================================================================


class ProviderName:
    IFLOW = "iflow"
    QWEN_CODE = "qwen_code"
    NVIDIA_NIM = "nvidia_nim"


@dataclass(frozen=True)
class ModelMeta:
    """Capability metadata (prices are USD per 1M tokens)."""

    context_length: int | None = None
    output_limit: int | None = None
    knowledge_cutoff: str | None = None
    release_date: str | None = None
    reasoning: bool = False
    tool_call: bool = True
    vision: bool = False
    input_price: float | None = None
    output_price: float | None = None


@dataclass(frozen=True)
class ModelEntry:
    name: str
    providers: tuple[str, ...]
    aliases: tuple[str, ...] = ()
    meta: ModelMeta = field(default_factory=ModelMeta)


_I = ProviderName.IFLOW
_Q = ProviderName.QWEN_CODE
_N = ProviderName.NVIDIA_NIM


MODEL_CATALOG: tuple[ModelEntry, ...] = (
    # ===== GLM (Zhipu AI) =====
    ModelEntry(
        "glm-4.7",
        (_I, _N),
        meta=ModelMeta(204800, 131072, "2025-04", "2025-12-22", True, True, False, 0.27, 1.1),
    ),
    ModelEntry(
        "glm-4.6",
        (_I,),
        meta=ModelMeta(204800, 131072, "2025-04", "2025-09-30", True, True, False, 0.6, 2.2),
    ),
    ModelEntry("glm-4.5", (_I,), meta=ModelMeta(131072, 98304, "2025-04", "2025-07-28", True)),
    # ===== iFlow internal =====
    ModelEntry("iflow-rome-30ba3b", (_I,)),
    # ===== MiniMax =====
    ModelEntry("minimax-m2.1", (_I, _N), meta=ModelMeta(204800, 131072, None, "2025-12-23", True)),
    ModelEntry("minimax-m2", (_I, _N), meta=ModelMeta(196608, 128000, None, "2025-10-27", True)),
    # ===== Qwen (Alibaba) =====
    ModelEntry(
        "qwen3-coder-plus", (_I, _Q), meta=ModelMeta(256000, 64000, "2025-04", "2025-07-01")
    ),
    ModelEntry(
        "qwen3-coder-flash",
        (_Q,),
        meta=ModelMeta(
            1000000, 65536, "2025-04", "2025-07-28", input_price=0.144, output_price=0.574
        ),
    ),
    ModelEntry("qwen3-max", (_I,), meta=ModelMeta(256000, 32000, "2024-12", "2025-01-01")),
    ModelEntry(
        "qwen3-235b-a22b-thinking-2507",
        (_I,),
        meta=ModelMeta(262144, 262144, "2025-04", "2025-07-30", True, True, False, 0.28, 2.8),
    ),
    ModelEntry(
        "qwen3-235b-a22b-instruct", (_I,), meta=ModelMeta(256000, 64000, "2025-04", "2025-07-01")
    ),
    ModelEntry("qwen3-235b", (_I,), meta=ModelMeta(128000, 32000, "2024-10", "2024-12-01", True)),
    ModelEntry("qwen3-vl-plus", (_I,), meta=ModelMeta(262144, 32768, vision=True)),
    ModelEntry(
        "qwen-vl-max", (_I,), aliases=("qwen-vl-max-latest",), meta=ModelMeta(131072, vision=True)
    ),
    # ===== Kimi (Moonshot) =====
    ModelEntry("kimi-k2", (_I, _N), meta=ModelMeta(131072, 64000)),
    ModelEntry("kimi-k2-0905", (_I, _N), meta=ModelMeta(262144, 64000)),
    ModelEntry("kimi-k2-thinking", (_I, _N), meta=ModelMeta(262144, 64000, reasoning=True)),
    # ===== DeepSeek =====
    ModelEntry("deepseek-v3.2", (_I, _N), meta=ModelMeta(163840, 65536, reasoning=True)),
    ModelEntry("deepseek-v3.1", (_I, _N), meta=ModelMeta(131072, 65536, reasoning=True)),
    ModelEntry("deepseek-v3", (_I,), meta=ModelMeta(131072, 32768)),
    ModelEntry("deepseek-r1", (_I,), meta=ModelMeta(131072, 32768, reasoning=True)),
    # ===== NVIDIA NIM hosted =====
    ModelEntry(
        "nim-llama-3.1-70b-instruct", (_N,), aliases=("meta/llama-3.1-70b-instruct",)
    ),
)


# Canonical name -> upstream id for NVIDIA NIM. Only models listed here may be
# served by the nvidia_nim provider, whatever its /models endpoint advertises.
NVIDIA_NIM_MODEL_MAP: dict[str, str] = {
    "glm-4.7": "z-ai/glm4.7",
    "minimax-m2.1": "minimaxai/minimax-m2.1",
    "minimax-m2": "minimaxai/minimax-m2",
    "kimi-k2": "moonshotai/kimi-k2-instruct",
    "kimi-k2-0905": "moonshotai/kimi-k2-instruct-0905",
    "kimi-k2-thinking": "moonshotai/kimi-k2-thinking",
    "deepseek-v3.2": "deepseek-ai/deepseek-v3.2",
    "deepseek-v3.1": "deepseek-ai/deepseek-v3.1",
    "nim-llama-3.1-70b-instruct": "meta/llama-3.1-70b-instruct",
    "meta-llama-3.3-70b-instruct": "meta/llama-3.3-70b-instruct",
    "meta-llama-4-maverick-17b-128e-instruct": "meta/llama-4-maverick-17b-128e-instruct",
    "nvidia-llama-3.1-nemotron-70b-instruct": "nvidia/llama-3.1-nemotron-70b-instruct",
    "nvidia-llama-3.3-nemotron-super-49b-v1.5": "nvidia/llama-3.3-nemotron-super-49b-v1.5",
    "qwen-qwen2.5-coder-32b-instruct": "qwen/qwen2.5-coder-32b-instruct",
    "qwen-qwq-32b": "qwen/qwq-32b",
    "mistralai-mistral-large-2-instruct": "mistralai/mistral-large-2-instruct",
}


# Providers whose model list is sourced from an upstream catalog, with the
# allow-map that bounds what the gateway will expose for them.
DYNAMIC_CATALOGS: dict[str, dict[str, str]] = {
    ProviderName.NVIDIA_NIM: NVIDIA_NIM_MODEL_MAP,
}
