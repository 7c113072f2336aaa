"""
LOKI - wake-word driven voice assistant front end

Listens for a wake phrase, records and transcribes the spoken command, and
prints the reply from an Ollama-compatible language model.

Core modules:
- utils: Environment parsing and async helpers
- assistant: Wake listener, transcriber, LLM client and the orchestration loop
"""

__version__ = "0.3.0"
