"""Tests for the config system."""

from colloquy.core.config import (
    DEFAULT_STRUCTURED_KEYWORDS,
    ChatConfig,
    ColloquyConfig,
    LLMConfig,
    STTConfig,
    StoreConfig,
)


def test_llm_defaults():
    cfg = LLMConfig()
    assert cfg.provider == "openai"
    assert cfg.model == "gpt-4o-mini"
    assert cfg.max_history_turns == 20


def test_stt_defaults():
    cfg = STTConfig()
    assert cfg.provider == "deepgram"
    assert cfg.model == "nova-3"
    assert cfg.sample_rate == 16000


def test_chat_defaults():
    cfg = ChatConfig()
    assert cfg.structured_keywords == DEFAULT_STRUCTURED_KEYWORDS
    assert cfg.streaming_threshold == 50
    assert cfg.voice_timeout == 30.0
    assert cfg.context_keep_messages == 5
    assert cfg.title_min_confidence == 0.5
    assert cfg.title_max_length == 50


def test_store_from_env(monkeypatch):
    monkeypatch.setenv("COLLOQUY_DB_PATH", "/tmp/elsewhere.db")
    assert StoreConfig.from_env().db_path == "/tmp/elsewhere.db"


def test_llm_from_env(monkeypatch):
    monkeypatch.setenv("COLLOQUY_LLM_MODEL", "gpt-4o")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    cfg = LLMConfig.from_env()
    assert cfg.model == "gpt-4o"
    assert cfg.api_key == "sk-test"


def test_structured_keywords_from_env(monkeypatch):
    monkeypatch.setenv("COLLOQUY_STRUCTURED_KEYWORDS", " Review, Critique ,,")
    cfg = ChatConfig.from_env()
    assert cfg.structured_keywords == ("review", "critique")


def test_empty_keywords_env_keeps_defaults(monkeypatch):
    monkeypatch.setenv("COLLOQUY_STRUCTURED_KEYWORDS", "")
    assert ChatConfig.from_env().structured_keywords == DEFAULT_STRUCTURED_KEYWORDS


def test_root_config_from_env(monkeypatch):
    monkeypatch.setenv("COLLOQUY_VOICE_TIMEOUT", "12.5")
    cfg = ColloquyConfig.from_env()
    assert cfg.chat.voice_timeout == 12.5
