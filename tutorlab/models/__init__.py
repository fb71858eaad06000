from tutorlab.models.user import User, UserRole
from tutorlab.models.topic import Topic, Subtopic
from tutorlab.models.exercise import Exercise
from tutorlab.models.quiz_question import QuizQuestion, AnswerOption
from tutorlab.models.llm_feedback import LlmFeedback
from tutorlab.models.gemini_usage_log import GeminiUsageLog

__all__ = [
    "User", "UserRole", "Topic", "Subtopic", "Exercise",
    "QuizQuestion", "AnswerOption", "LlmFeedback", "GeminiUsageLog",
]
