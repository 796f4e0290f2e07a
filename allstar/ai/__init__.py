"""AI modules for listing grading."""

from .llm_client import Grader, OpenAIGrader

__all__ = ["Grader", "OpenAIGrader"]
