"""localchat: streaming chat client for local Ollama servers."""

__version__ = "0.3.0"
