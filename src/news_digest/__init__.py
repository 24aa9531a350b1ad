"""Package for ingesting Guardian articles and rewriting them with OpenAI summaries."""

__all__ = ["config", "models", "orchestrator"]
