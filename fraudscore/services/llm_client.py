import json
import logging
from typing import Dict, Any, Optional

from openai import OpenAI, OpenAIError
from fraudscore.config import settings

logger = logging.getLogger(__name__)


NEUTRAL_ASSESSMENT = {
    "legitimacy_score": 100.0,
    "confidence_score": 0.0,
    "language_detected": None,
    "impossible_claims_detected": [],
    "suspicious_patterns": ["classifier_unavailable"],
    "reasoning": "Legitimacy classifier unavailable; context not scored.",
}


def _clamp(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(100.0, number))


def _supported_language(value: Any) -> Optional[str]:
    """The detected language if it is one we score, else None."""
    if isinstance(value, str) and value in settings.supported_languages_list:
        return value
    return None


class LegitimacyClassifier:
    """
    Wrapper around the OpenAI client that judges whether customer feedback
    is genuine for the business it was given to.
    """

    def __init__(self, model: Optional[str] = None):
        self.client = OpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.openai_model

    def analyze(self, content: str, business_context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        system_msg = (
            "You assess the legitimacy of customer feedback left after a phone call "
            "to a business. Feedback is usually Swedish, sometimes English, Norwegian "
            "or Danish. Check that it is consistent with the business context, that its "
            "claims are physically possible, and that the language reads as authentic. "
            "Return ONLY valid JSON (no markdown). Schema:\n"
            "{\n"
            '  "legitimacy_score": float (0-100, 100 = clearly genuine),\n'
            '  "confidence_score": float (0-100, how sure you are),\n'
            '  "language_detected": "sv" | "en" | "no" | "da" | null,\n'
            '  "impossible_claims_detected": [string, ...],\n'
            '  "suspicious_patterns": [string, ...],\n'
            '  "reasoning": string\n'
            "}\n"
            "Set confidence lower if the feedback is short or ambiguous."
        )
        context_text = json.dumps(business_context or {}, ensure_ascii=False)

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                max_tokens=settings.openai_max_tokens,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system_msg},
                    {
                        "role": "user",
                        "content": f"Business context:\n{context_text}\n\nFeedback:\n{content}",
                    },
                ],
            )
            raw = json.loads(response.choices[0].message.content)

        except OpenAIError as e:
            logger.warning(f"OpenAI API error, falling back to neutral assessment: {e}")
            return dict(NEUTRAL_ASSESSMENT)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Unparseable classifier output, falling back to neutral assessment: {e}")
            return dict(NEUTRAL_ASSESSMENT)

        return {
            "legitimacy_score": _clamp(raw.get("legitimacy_score"), 100.0),
            "confidence_score": _clamp(raw.get("confidence_score"), 0.0),
            "language_detected": _supported_language(raw.get("language_detected")),
            "impossible_claims_detected": list(raw.get("impossible_claims_detected") or []),
            "suspicious_patterns": list(raw.get("suspicious_patterns") or []),
            "reasoning": raw.get("reasoning", ""),
        }
