from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from feedback_desk.core.ports.chat_model import ChatModelPort
from feedback_desk.core.services.errors import UpstreamFailure


logger = logging.getLogger(__name__)

SUGGESTION_STYLES = ("formal", "friendly", "solution-focused")
MIN_SUGGESTION_CHARS = 50

FALLBACK_SUGGESTION = (
    "Thank you for your feedback. We appreciate you taking the time to share your experience with us."
)

_SECTION_SPLIT = re.compile(r"(?:^|\n)\s*(?:\d+[.)]|Response \d+:|Approach \d+:)", re.IGNORECASE)
_JSON_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


SUGGESTIONS_PROMPT = """You are a professional customer service representative. Generate 3 helpful response suggestions for the following customer feedback:

Customer: {customer_name}
Subject: {subject}
Message: {message}
Rating: {rating}/5 stars
Category: {category}

Generate 3 different response approaches, numbered 1. to 3.:
1. Formal and detailed response
2. Friendly and conversational response
3. Solution-focused brief response
"""

ANSWER_PROMPT = """You are a helpful customer service AI assistant. Answer the following customer question professionally and concisely (under 300 words). If you don't know something, say so.

Question: {question}
{context}
Answer:"""

SENTIMENT_PROMPT = """Analyze the sentiment of this customer feedback message.

Message: "{message}"

Return only a JSON object with keys: "sentiment" ("positive" | "negative" | "neutral"), "confidence" (0.0-1.0), "emotions" (list of strings), "urgency" ("low" | "medium" | "high"), "key_points" (list of strings).
"""


class SentimentAnalysis(BaseModel):
    sentiment: Literal["positive", "negative", "neutral"]
    confidence: float = Field(ge=0.0, le=1.0)
    emotions: List[str] = Field(default_factory=list)
    urgency: Literal["low", "medium", "high"] = "medium"
    key_points: List[str] = Field(default_factory=list)
    fallback: bool = False


DEFAULT_SENTIMENT = SentimentAnalysis(
    sentiment="neutral",
    confidence=0.5,
    emotions=["unknown"],
    urgency="medium",
    key_points=["Requires manual review"],
    fallback=True,
)


class AIService:
    """Feedback-specific wrapper around a chat model.

    Every model call runs on a small worker pool and is abandoned after
    ``timeout_seconds``; a slow backend surfaces as ``UpstreamFailure``.
    """

    def __init__(self, chat_model: ChatModelPort, *, timeout_seconds: float = 20.0, max_workers: int = 4) -> None:
        self._chat = chat_model
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ai-call")

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _generate(self, prompt: str, *, op: str) -> str:
        future = self._executor.submit(self._chat.generate, prompt)
        try:
            text = future.result(timeout=self.timeout_seconds)
        except FutureTimeout as exc:
            future.cancel()
            logger.warning("ai.%s timeout after %ss", op, self.timeout_seconds)
            raise UpstreamFailure("ai_timeout") from exc
        except Exception as exc:  # noqa: BLE001 - any provider error is an upstream failure
            logger.warning("ai.%s failed (%s)", op, exc.__class__.__name__)
            raise UpstreamFailure("ai_unavailable") from exc
        if not text or not text.strip():
            raise UpstreamFailure("ai_empty_response")
        return text.strip()

    def generate_suggestions(self, feedback: Mapping[str, Any]) -> List[Dict[str, Any]]:
        prompt = SUGGESTIONS_PROMPT.format(
            customer_name=feedback.get("customer_name", ""),
            subject=feedback.get("subject", ""),
            message=feedback.get("message", ""),
            rating=feedback.get("rating", ""),
            category=feedback.get("category", "general"),
        )
        text = self._generate(prompt, op="suggestions")
        suggestions = parse_suggestions(text)
        logger.info("ai.suggestions count=%s feedback_id=%s", len(suggestions), feedback.get("id"))
        return suggestions

    def answer_question(self, question: str, context: Optional[str] = None) -> str:
        ctx = f"Additional context: {context}\n" if context else ""
        return self._generate(ANSWER_PROMPT.format(question=question, context=ctx), op="answer")

    def analyze_sentiment(self, text: str) -> Dict[str, Any]:
        """Classify ``text``; never raises, returns ``DEFAULT_SENTIMENT`` on any failure."""
        try:
            raw = self._generate(SENTIMENT_PROMPT.format(message=text), op="sentiment")
            data = json.loads(_JSON_FENCE.sub("", raw.strip()))
            if isinstance(data, dict) and "keyPoints" in data and "key_points" not in data:
                data["key_points"] = data.pop("keyPoints")
            analysis = SentimentAnalysis.model_validate(data)
        except (UpstreamFailure, ValueError, PydanticValidationError) as exc:
            logger.info("ai.sentiment fallback reason=%s", exc.__class__.__name__)
            return DEFAULT_SENTIMENT.model_dump()
        return analysis.model_dump()

    def health_check(self) -> bool:
        try:
            return bool(self._generate("Hello, are you working?", op="health"))
        except UpstreamFailure:
            return False


def parse_suggestions(text: str, limit: int = 3) -> List[Dict[str, Any]]:
    """Split a numbered model answer into at most ``limit`` suggestions.

    Confidence is a fixed ranking: the first approach the model proposes
    scores highest. Output with no usable section yields a single generic
    fallback suggestion.
    """
    sections = [s.strip() for s in _SECTION_SPLIT.split(text)]
    sections = [s for s in sections if len(s) >= MIN_SUGGESTION_CHARS][:limit]
    if not sections:
        return [{"text": FALLBACK_SUGGESTION, "confidence": 0.7, "style": "fallback"}]
    return [
        {
            "text": section,
            "confidence": round(0.9 - 0.05 * idx, 2),
            "style": SUGGESTION_STYLES[idx] if idx < len(SUGGESTION_STYLES) else "general",
        }
        for idx, section in enumerate(sections)
    ]
