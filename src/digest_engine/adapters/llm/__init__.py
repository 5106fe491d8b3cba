"""LLM adapters."""

from digest_engine.adapters.llm.claude_summarizer import ClaudeSummarizer

__all__ = ["ClaudeSummarizer"]
