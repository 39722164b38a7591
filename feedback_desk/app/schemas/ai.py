from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class QuestionRequest(BaseModel):
    question: Optional[str] = None
    context: Optional[str] = None
