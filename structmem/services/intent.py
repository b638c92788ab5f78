"""
Intent Classifier: decide whether free text stores a memory or asks for one.
"""

import re
from typing import Optional

from ..models.query import NlIntent, Recall, Remember
from ..utils.bedrock_llm import BedrockLLMError, LLMClient
from ..utils.json_utils import JSONResponseError, parse_json_response
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

REMEMBER = 'remember'
RECALL = 'recall'

CLASSIFY_INTENT_PROMPT = """
You are an intent classifier for a memory system. Given natural language input, determine if the user wants to STORE a new memory or RECALL an existing one.

Respond with ONLY a JSON object (no markdown, no explanation):

For storing: {"intent": "remember", "content": "the cleaned information to store", "confidence": 0.9}
For recalling: {"intent": "recall", "query": "the search query", "confidence": 0.9}

Rules:
- Complete sentences that state facts -> STORE (e.g. "my favorite food is ramen", "Toby works at Acme", "the API uses JWT auth")
- Sentences with "remember", "store", "save", "note that" -> STORE. Strip the command verb from content.
- "remember I ..." or "I ..." statements -> STORE
- Questions (what, who, when, where, how) -> RECALL
- Imperative retrieval ("show me", "find", "get", "list", "tell me") -> RECALL
- Short noun phrases seeking information -> RECALL (e.g. "Toby's email", "API endpoints")
- If the input PROVIDES information, it's STORE. If it SEEKS information, it's RECALL.
- confidence is a number between 0 and 1; use a low value when the input is ambiguous"""

_COMMAND_VERB = re.compile(
    r'^\s*(?:please\s+)?(?:remember|memorize|store|save|note|record|keep in mind)'
    r'(?:\s+that)?\s*[:,-]?\s+', re.IGNORECASE)


def strip_command_verb(text: str) -> str:
    """Remove a leading imperative such as 'remember that' or 'note:' from content to store."""
    stripped = _COMMAND_VERB.sub('', text, count=1).strip()
    return stripped or text.strip()


class IntentClassifier:
    """Classify free text as Remember or Recall, falling back to a configured default."""

    def __init__(self, llm: LLMClient, default_intent: str = REMEMBER, min_confidence: float = 0.5):
        if default_intent not in (REMEMBER, RECALL):
            raise ValueError(f"Unknown default intent '{default_intent}'. Use '{REMEMBER}' or '{RECALL}'")
        self.llm = llm
        self.default_intent = default_intent
        self.min_confidence = min_confidence

    def default(self, text: str) -> NlIntent:
        if self.default_intent == RECALL:
            return Recall(query=text.strip())
        return Remember(content=strip_command_verb(text))

    def classify(self, text: str) -> NlIntent:
        """Classify the input.

        Ambiguous, low-confidence or unparseable classifications resolve to the
        default intent. Remember content never starts with the command verb.

        Raises:
            LLMUnavailableError: If no model is configured
        """
        try:
            data = parse_json_response(self.llm.complete(CLASSIFY_INTENT_PROMPT, text))
        except (JSONResponseError, BedrockLLMError) as e:
            logger.warning(f'Intent classification failed, using {self.default_intent}: {e}')
            return self.default(text)
        if not isinstance(data, dict):
            return self.default(text)

        confidence = self._confidence(data.get('confidence'))
        if confidence is not None and confidence < self.min_confidence:
            logger.debug(f'Low intent confidence {confidence}, using {self.default_intent}')
            return self.default(text)

        intent = str(data.get('intent', '')).strip().lower()
        if intent == REMEMBER:
            content = data.get('content')
            content = content if isinstance(content, str) and content.strip() else text
            return Remember(content=strip_command_verb(content))
        if intent == RECALL:
            query = data.get('query')
            return Recall(query=query.strip() if isinstance(query, str) and query.strip() else text.strip())

        logger.debug(f'Unknown intent {intent!r}, using {self.default_intent}')
        return self.default(text)

    @staticmethod
    def _confidence(value) -> Optional[float]:
        if isinstance(value, bool):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None
