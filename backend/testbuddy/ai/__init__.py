"""
Test Buddy - AI Module
"""
from testbuddy.ai.core.llm import LLMClient, LLMResponse
from testbuddy.ai.quiz_generator import QuizGenerator

__all__ = ["LLMClient", "LLMResponse", "QuizGenerator"]
