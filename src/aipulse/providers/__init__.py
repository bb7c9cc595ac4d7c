from aipulse.providers.claude import ClaudeProvider
from aipulse.providers.codex import CodexProvider

__all__ = ["ClaudeProvider", "CodexProvider"]
