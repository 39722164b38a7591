from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from feedback_desk.app.deps import ai_provider, get_ai_service, get_current_principal, get_feedback_service, require_admin, settings
from feedback_desk.app.schemas.ai import QuestionRequest
from feedback_desk.app.schemas.feedback import SuggestionOut, envelope
from feedback_desk.core.access.principal import Principal
from feedback_desk.core.services.ai_service import AIService
from feedback_desk.core.services.errors import ValidationError
from feedback_desk.core.services.feedback_service import FeedbackService


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/ai", tags=["ai"])


@router.post("/ask-question")
def ask_question(payload: QuestionRequest, ai: AIService = Depends(get_ai_service)):
    question = (payload.question or "").strip()
    if not question:
        raise ValidationError("question_required")
    max_chars = int(settings.section("ai").get("question_max_chars", 500))
    if len(question) > max_chars:
        raise ValidationError(f"question must be at most {max_chars} characters")
    answer = ai.answer_question(question, payload.context)
    logger.info("ai.ask_question chars=%s", len(question))
    return envelope({"question": question, "answer": answer, "timestamp": datetime.now(timezone.utc)})


@router.post("/generate-responses/{fb_id}")
def generate_responses(
    fb_id: str,
    admin: Principal = Depends(require_admin),
    service: FeedbackService = Depends(get_feedback_service),
):
    suggestions = service.regenerate_suggestions(admin, fb_id)
    return envelope(
        {"feedback_id": fb_id, "suggestions": [SuggestionOut(**s) for s in suggestions]},
        message="AI responses generated successfully",
    )


@router.post("/analyze-sentiment/{fb_id}")
def analyze_sentiment(
    fb_id: str,
    principal: Principal = Depends(get_current_principal),
    service: FeedbackService = Depends(get_feedback_service),
):
    return envelope(service.analyze_sentiment(principal, fb_id))


@router.get("/health")
def ai_health(ai: AIService = Depends(get_ai_service)):
    healthy = ai.health_check()
    return envelope(
        {
            "status": "healthy" if healthy else "unhealthy",
            "provider": ai_provider(),
            "timestamp": datetime.now(timezone.utc),
        }
    )
