from .router import LLMResponse, call_structured

__all__ = ["LLMResponse", "call_structured"]
