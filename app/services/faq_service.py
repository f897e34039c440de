"""Keyword FAQ lookup used to answer widget questions without a model call."""

import re
import unicodedata
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import AgentFaq

logger = get_logger("faq")

MAX_KEYWORDS = 10
MIN_KEYWORD_LENGTH = 3


def fold_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


_STOP_WORDS_RAW = """
o a os as um uma uns umas de da do das dos em na no nas nos por para com sem sob sobre
entre até após antes durante e ou mas porém contudo que qual quais quando quanto como onde
porque se não sim já ainda também só apenas muito pouco mais menos bem mal aqui ali lá aí
esse essa este esta isso isto aquele aquela meu minha seu sua nosso nossa dele dela deles
delas eu tu ele ela nós vós eles elas você vocês me te vos lhe lhes ser estar ter haver
fazer ir vir poder dever querer é são foi eram será seria tem tinha terá teria
"""
STOP_WORDS = frozenset(fold_accents(word) for word in _STOP_WORDS_RAW.split())

_PUNCTUATION_RE = re.compile(r"[^\w\s]")


@dataclass
class FaqMatch:
    faq: AgentFaq
    score: int


def extract_keywords(text: str) -> List[str]:
    """Lowercased, accent-folded content words (max 10, in order of appearance)."""
    cleaned = _PUNCTUATION_RE.sub(" ", fold_accents((text or "").lower()))
    words = [word for word in cleaned.split() if len(word) >= MIN_KEYWORD_LENGTH and word not in STOP_WORDS]
    return words[:MAX_KEYWORDS]


def score_faq(faq: AgentFaq, user_keywords: List[str]) -> int:
    user_words = set(user_keywords)
    faq_keywords = [fold_accents(str(kw).lower()) for kw in (faq.keywords or [])]
    keyword_matches = sum(1 for kw in faq_keywords if kw in user_words)
    question_words = set(extract_keywords(faq.question))
    question_matches = len(user_words & question_words)
    return keyword_matches * 2 + question_matches


def match_threshold(user_keywords: List[str]) -> int:
    return max(2, int(len(user_keywords) * 0.5))


def find_best_faq(faqs: List[AgentFaq], text: str) -> Optional[FaqMatch]:
    user_keywords = extract_keywords(text)
    if not user_keywords:
        return None
    threshold = match_threshold(user_keywords)

    best: Optional[FaqMatch] = None
    for faq in faqs:
        score = score_faq(faq, user_keywords)
        if score >= threshold and (best is None or score > best.score):
            best = FaqMatch(faq=faq, score=score)
    return best


def lookup_faq(db: Session, agent_id: UUID, text: str) -> Optional[FaqMatch]:
    faqs = db.query(AgentFaq).filter(AgentFaq.agent_id == agent_id, AgentFaq.is_active.is_(True)).all()
    if not faqs:
        return None
    match = find_best_faq(faqs, text)
    if match:
        logger.info("FAQ matched", extra={"context": {"faq_id": str(match.faq.id), "score": match.score}})
    return match


def log_faq_usage(db: Session, faq: AgentFaq) -> None:
    faq.usage_count = (faq.usage_count or 0) + 1
    faq.updated_at = datetime.now(timezone.utc)
    db.flush()
