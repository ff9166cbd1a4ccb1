"""Turns one assistant payload into exactly one rendered message.

Sources are tried in a fixed order and the first usable one wins:

1. ``llm_answer`` when it is a non-blank string, used verbatim;
2. the first knowledge item (``rag_items[0]``), rendered as a three-part answer;
3. a parsed ``photo_analysis``, rendered as an analysis report;
4. a fixed fallback message.

The media of the first knowledge item is returned whichever branch fired.
``normalize`` never raises: malformed sources are skipped as if absent.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from resolvehub_client.schemas import (
    ANALYSIS_ABSENT,
    AnalysisAbsent,
    AnalysisParsed,
    AnalysisRaw,
    AnalysisRecord,
    AssistantReply,
    KnowledgeItem,
    PhotoAnalysis,
)
from resolvehub_client.utils import get_logger, parse_json_response

logger = get_logger(__name__)

INSUFFICIENT_KNOWLEDGE_MESSAGE = (
    "Je n'ai pas assez d'informations dans ma base locale pour répondre précisément. "
    "Parle avec un expert proche de chez toi pour plus de détails."
)
FALLBACK_MESSAGE = (
    "Je n'ai pas assez d'informations pour compléter la réponse. "
    "Parlez-en à un expert si le problème persiste."
)
DEFAULT_KNOWLEDGE_TITLE = "Conseil local"
DEFAULT_KNOWLEDGE_SOURCE = "fiches locales"


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _verbatim(value: Any) -> str | None:
    return value if isinstance(value, str) and value.strip() else None


def _confidence(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _analysis_record(data: Mapping[str, Any]) -> AnalysisRecord:
    symptoms = data.get("symptoms")
    return AnalysisRecord(
        disease_detected=_text(data.get("disease_detected")) or None,
        confidence=_confidence(data.get("confidence")),
        analysis=_text(data.get("analysis")) or None,
        recommendations=_text(data.get("recommendations")) or None,
        treatment=_text(data.get("treatment")) or None,
        requires_expert=bool(data.get("requires_expert")),
        symptoms=tuple(str(item) for item in symptoms) if isinstance(symptoms, list) else (),
        prevention=_text(data.get("prevention")) or None,
    )


def parse_photo_analysis(raw: Any) -> PhotoAnalysis:
    """Resolve the union-shaped ``photo_analysis`` field once, at the boundary."""
    if isinstance(raw, (AnalysisAbsent, AnalysisRaw, AnalysisParsed)):
        return raw
    if isinstance(raw, str):
        if not raw.strip():
            return ANALYSIS_ABSENT
        data = parse_json_response(raw)
        if not data:
            logger.debug("Unparsable photo analysis kept as raw text")
            return AnalysisRaw(text=raw)
        return AnalysisParsed(record=_analysis_record(data))
    if isinstance(raw, Mapping) and raw:
        return AnalysisParsed(record=_analysis_record(raw))
    return ANALYSIS_ABSENT


def knowledge_items(raw: Any) -> list[KnowledgeItem]:
    if not isinstance(raw, list):
        return []
    items: list[KnowledgeItem] = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        media = entry.get("media")
        items.append(
            KnowledgeItem(
                title=_text(entry.get("title")) or None,
                answer=_verbatim(entry.get("answer")),
                source=_text(entry.get("source")) or None,
                media=tuple(m for m in media if isinstance(m, Mapping)) if isinstance(media, list) else (),
            )
        )
    return items


def build_knowledge_answer(items: list[KnowledgeItem], fallback_answer: str = "") -> str:
    best = items[0] if items else KnowledgeItem()
    title = best.title or DEFAULT_KNOWLEDGE_TITLE
    answer = fallback_answer or best.answer or ""
    source = best.source or DEFAULT_KNOWLEDGE_SOURCE

    if not answer:
        return INSUFFICIENT_KNOWLEDGE_MESSAGE

    return (
        "1) Ce que je comprends de ton problème :\n"
        f"Tu expliques un souci lié à : {title}. Je vais utiliser les conseils déjà validés localement.\n\n"
        "2) Conseils pratiques à suivre :\n"
        f"{answer}\n\n"
        "3) Quand appeler un expert :\n"
        "Si malgré ces conseils la situation ne s'améliore pas, si le problème devient plus grave, "
        "ou si tu as un doute, va voir un agent agricole, un vétérinaire ou un service technique "
        "local pour vérifier sur place. "
        f"(Source : {source})."
    )


def build_analysis_report(record: AnalysisRecord) -> str:
    confidence = f"{record.confidence * 100:.0f}%" if record.confidence else "N/A"
    disclaimer = (
        "⚠️ Un expert va vérifier cette analyse pour confirmer."
        if record.requires_expert
        else "✓ Diagnostic fiable. Un expert validera sous 24h."
    )
    return (
        "🔬 ANALYSE IA LOCALE DÉTECTÉE\n\n"
        f"Maladie: {record.disease_detected or 'Non identifiée'}\n"
        f"Confiance: {confidence}\n\n"
        f"{record.analysis or record.recommendations or 'Analyse non disponible'}\n\n"
        "💊 TRAITEMENT RECOMMANDÉ:\n"
        f"{record.treatment or record.recommendations or 'Consultez un expert'}\n\n"
        f"{disclaimer}"
    )


def normalize(payload: Any, fallback: str = FALLBACK_MESSAGE) -> AssistantReply:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    if not isinstance(payload, Mapping):
        payload = {}

    items = knowledge_items(payload.get("rag_items"))
    analysis = parse_photo_analysis(payload.get("photo_analysis"))
    media = items[0].media if items else ()

    direct = payload.get("llm_answer")
    if isinstance(direct, str) and direct.strip():
        text = direct
    elif items:
        text = build_knowledge_answer(items, _verbatim(payload.get("rag_fallback_answer")) or "")
    elif isinstance(analysis, AnalysisParsed):
        text = build_analysis_report(analysis.record)
    else:
        text = fallback

    return AssistantReply(text=text, media=media, analysis=analysis)
