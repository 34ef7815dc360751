import pytest

from memory_guard import ConfigurationError
from memory_guard.core import (
    AgentOverride,
    BackendOptions,
    GuardConfig,
    MemoryConfig,
    RouterConfig,
    merge_config,
)


def test_defaults():
    cfg = MemoryConfig()
    assert cfg.guard.warning_threshold == 0.80
    assert cfg.guard.imminent_threshold == 0.95
    assert cfg.guard.require_ack is True
    assert cfg.guard.ack_timeout_ms == 5000
    assert cfg.router.strategy == "parallel"
    assert cfg.router.fallback_on_error is False


@pytest.mark.parametrize(
    "kwargs",
    [
        {"warning_threshold": 0.95, "imminent_threshold": 0.80},
        {"warning_threshold": 0.9, "imminent_threshold": 0.9},
        {"warning_threshold": 0.0},
        {"imminent_threshold": 1.2},
        {"ack_timeout_ms": 0},
    ],
)
def test_invalid_guard_config_fails_fast(kwargs):
    with pytest.raises(ConfigurationError):
        GuardConfig(**kwargs)


def test_invalid_router_config_fails_fast():
    with pytest.raises(ConfigurationError):
        RouterConfig(strategy="round-robin")
    with pytest.raises(ConfigurationError):
        RouterConfig(min_score=1.5)
    with pytest.raises(ConfigurationError):
        BackendOptions(timeout_ms=-1)


def test_merge_override_wins_and_backends_merge_per_field():
    base = MemoryConfig(
        router=RouterConfig(backends={"vec": BackendOptions(priority=1, timeout_ms=200)})
    )
    merged = merge_config(
        base,
        guard={"ack_timeout_ms": 1500},
        router={"fallback_on_error": True},
        backends={"vec": {"required": True}, "graph": {"priority": 7}},
    )
    assert merged.guard.ack_timeout_ms == 1500
    assert merged.guard.warning_threshold == 0.80
    assert merged.router.fallback_on_error is True
    assert merged.router.backends["vec"] == BackendOptions(priority=1, required=True, timeout_ms=200)
    assert merged.router.backends["graph"].priority == 7
    # base untouched
    assert base.router.backends["vec"].required is False


def test_merge_rejects_unknown_keys_and_invalid_results():
    base = MemoryConfig()
    with pytest.raises(ConfigurationError):
        merge_config(base, guard={"warn": 0.5})
    with pytest.raises(ConfigurationError):
        merge_config(base, router={"backends": {}})
    with pytest.raises(ConfigurationError):
        merge_config(base, backends={"x": {"weight": 2}})
    with pytest.raises(ConfigurationError):
        merge_config(base, guard={"warning_threshold": 0.99})


def test_for_agent_resolves_override():
    cfg = MemoryConfig(
        agents={"coder": AgentOverride(guard={"require_ack": False}, router={"strategy": "cascade"})}
    )
    coder = cfg.for_agent("coder")
    assert coder.guard.require_ack is False
    assert coder.router.strategy == "cascade"
    assert coder.agents == {}

    other = cfg.for_agent("writer")
    assert other.guard.require_ack is True
    assert cfg.for_agent(None).router.strategy == "parallel"
