"""Remote browser session control for LLM agents."""

__version__ = "0.1.0"
