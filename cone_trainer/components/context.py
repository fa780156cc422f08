from typing import Dict, List, Sequence
import logging
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from .persona_prompts import PLACEHOLDER_USER_TURN, build_system_prompt

logger = logging.getLogger(__name__)


class Context:
    """Turns stored simulation history into model input"""

    def __init__(self, system_prompt: str = None):
        self.system_prompt = system_prompt or build_system_prompt()
        logger.info("Context: Initialized")

    def build_history(self, turns: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:
        """
        Ordered role-tagged history for the chat model.
        A placeholder user turn is prepended when the first stored turn is the
        assistant greeting; it only exists in the returned list.
        """
        history = [{"role": turn["role"], "content": turn["content"]} for turn in turns]
        if history and history[0]["role"] == "assistant":
            history.insert(0, {"role": "user", "content": PLACEHOLDER_USER_TURN})
        return history

    def to_messages(self, turns: Sequence[Dict[str, str]]) -> List[BaseMessage]:
        """System persona message followed by the history as LangChain messages"""
        messages: List[BaseMessage] = [SystemMessage(content=self.system_prompt)]
        for turn in self.build_history(turns):
            if turn["role"] == "assistant":
                messages.append(AIMessage(content=turn["content"]))
            else:
                messages.append(HumanMessage(content=turn["content"]))
        logger.debug(f"Context: Built {len(messages)} messages from {len(turns)} turns")
        return messages


def serialize_transcript(turns: Sequence[Dict[str, str]]) -> str:
    """'ROLE: content' lines in stored order"""
    return "\n".join(f"{turn['role'].upper()}: {turn['content']}" for turn in turns)
