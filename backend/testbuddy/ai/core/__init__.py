# AI Core Module - LLM access shared by generation and feedback
from testbuddy.ai.core.llm import LLMClient, LLMResponse, strip_code_fences

__all__ = ["LLMClient", "LLMResponse", "strip_code_fences"]
