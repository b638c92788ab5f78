"""
Answer synthesis: a short natural-language answer from recalled items.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..utils.bedrock_llm import LLMClient
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import describe_today

logger = get_logger(__name__)

NO_RELEVANT_DATA = 'NO_RELEVANT_DATA'

ANSWER_QUERY_PROMPT = f"""
You are answering a question using data from a personal memory system. Given the user's question and retrieved memory items, provide a concise, direct answer.

Rules:
- Answer the question directly using ONLY the data provided
- If the data contains the answer, state it clearly in 1-3 sentences
- If the data doesn't directly answer the question but has related information, summarize what's relevant
- If no items are relevant at all, respond with exactly: {NO_RELEVANT_DATA}
- Do NOT add speculation, caveats, or information not present in the data
- Do NOT mention "the data shows" or "according to the records"; just answer naturally
- For dates and times, state them clearly (e.g. "Your doctor's appointment is on 2026-02-03 at 12:00")"""


class AnswerSynthesizer:
    """Answer a question from recalled documents."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    def answer(self, question: str, items: List[Dict[str, Any]], now: Optional[datetime] = None) -> Optional[str]:
        """Generate an answer grounded only in the given items.

        Args:
            question: The user's question
            items: Recalled documents
            now: Anchor date shown to the model

        Returns:
            Answer text, or None when there are no items or none is relevant
        """
        if not items:
            logger.debug('No items provided for answer synthesis')
            return None

        items_json = json.dumps(items, indent=2, ensure_ascii=False, default=str)
        user_msg = f"Today's date: {describe_today(now)}\n\nQuestion: {question}\n\nRetrieved items:\n{items_json}"
        text = self.llm.complete(ANSWER_QUERY_PROMPT, user_msg).strip()

        if text == NO_RELEVANT_DATA:
            logger.debug(f'No relevant data among {len(items)} items for {question!r}')
            return None
        return text
