import enum

from pydantic import BaseModel, Field


class Difficulty(str, enum.Enum):
    BASICA = "basica"
    INTERMEDIA = "intermedia"
    AVANZADA = "avanzada"


class CodeResult(str, enum.Enum):
    CORRECT = "correcto"
    INCORRECT = "incorrecto"
    ERROR = "error"


# ---- Validate code ----

class CodeValidationRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50000)
    exercise_id: int
    language: str = Field(..., min_length=1, max_length=50)
    test_cases: list | None = Field(None, description="Optional: falls back to the exercise's test cases")
    statement: str | None = Field(None, description="Optional: falls back to the exercise's statement")


class CodeVerdict(BaseModel):
    """Model verdict after reconciliation; every field is populated."""
    result: CodeResult = CodeResult.ERROR
    errors: list[str] = []
    tests_passed: int = 0
    tests_total: int = 0
    feedback: str
    suggestions: list[str] = []


class CodeValidationResponse(BaseModel):
    result: CodeResult
    points: int = 0
    feedback: str
    errors: list[str] = []
    tests_passed: int = 0
    tests_total: int = 0
    from_cache: bool = False


# ---- Generate questions ----

class QuestionGenerationRequest(BaseModel):
    subtopic_id: int
    count: int = Field(5, ge=1, le=20)
    difficulty: Difficulty = Difficulty.INTERMEDIA


class GeneratedOption(BaseModel):
    text: str
    is_correct: bool = False
    explanation: str


class GeneratedQuestion(BaseModel):
    text: str
    options: list[GeneratedOption]
    difficulty: str
    correct_feedback: str
    incorrect_feedback: str
    detailed_explanation: str
    points: int = 10


class QuestionGenerationResponse(BaseModel):
    questions: list[GeneratedQuestion]
    subtopic_id: int
    generated_count: int
    from_cache: bool = False


# ---- Chat ----

class ChatMessage(BaseModel):
    role: str  # "user" | "assistant"
    content: str


class ChatContext(BaseModel):
    topic: str | None = None
    subtopic: str | None = None
    exercise_id: int | None = None


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=8000)
    history: list[ChatMessage] = []
    context: ChatContext | None = None


class ChatResponse(BaseModel):
    reply: str
    context_used: bool = False
    suggestions: list[str] | None = None


class ExplainConceptRequest(BaseModel):
    concept: str = Field(..., min_length=1, max_length=500)
    topic: str | None = None
    subtopic: str | None = None


class ExplainConceptResponse(BaseModel):
    concept: str
    explanation: str
