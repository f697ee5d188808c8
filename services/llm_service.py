# llm_service.py
import logging
from typing import Callable, List, Optional, Type, TypeVar

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import BaseModel

import config

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class TextOracleError(Exception):
    """Raised when the language model cannot produce a usable answer."""


def get_llm_instance(temperature: float = 0.6, max_tokens: int = 1024) -> ChatGoogleGenerativeAI:
    """Returns an instance of the LangChain Gemini model."""
    if not config.GOOGLE_GEMINI_API_KEY:
        raise ValueError("Error: GOOGLE_GEMINI_API_KEY is not configured for LLM initialization.")
    return ChatGoogleGenerativeAI(
        model=config.LLM_MODEL,
        temperature=temperature,
        top_p=1,
        top_k=1,
        max_output_tokens=max_tokens,
        timeout=config.LLM_TIMEOUT_SECONDS,
        max_retries=config.LLM_MAX_RETRIES,
        google_api_key=config.GOOGLE_GEMINI_API_KEY
    )


def _response_text(content) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [part if isinstance(part, str) else part.get("text", "") for part in content if isinstance(part, (str, dict))]
        return "".join(parts)
    return ""


class TextOracle:
    """
    Free-text and structured completions on top of the chat model.
    Every failure surfaces as TextOracleError, never as a None result.
    """

    def __init__(self, model_factory: Optional[Callable[..., ChatGoogleGenerativeAI]] = None):
        self._model_factory = model_factory or get_llm_instance

    def _build_messages(self, prompt: str, system_messages: Optional[List[str]]) -> List[BaseMessage]:
        messages: List[BaseMessage] = [SystemMessage(content=text) for text in system_messages or []]
        messages.append(HumanMessage(content=prompt))
        return messages

    def _model(self, temperature: float, max_tokens: int) -> ChatGoogleGenerativeAI:
        try:
            return self._model_factory(temperature=temperature, max_tokens=max_tokens)
        except Exception as e:
            raise TextOracleError(f"LLM model could not be initialized: {e}") from e

    def complete(
        self,
        prompt: str,
        system_messages: Optional[List[str]] = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> str:
        model = self._model(temperature, max_tokens)
        messages = self._build_messages(prompt, system_messages)
        logger.debug("Sending %d messages to LLM", len(messages))
        try:
            response = model.invoke(messages)
        except Exception as e:
            raise TextOracleError(f"Error during LLM content generation: {e}") from e

        text = _response_text(getattr(response, "content", None)).strip()
        if not text:
            raise TextOracleError("LLM did not return a valid response.")
        return text

    def complete_structured(
        self,
        prompt: str,
        schema: Type[SchemaT],
        schema_name: str,
        system_messages: Optional[List[str]] = None,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ) -> SchemaT:
        model = self._model(temperature, max_tokens)
        messages = self._build_messages(prompt, system_messages)
        logger.debug("Sending structured request %s with %d messages to LLM", schema_name, len(messages))
        try:
            structured_llm = model.with_structured_output(schema)
            result = structured_llm.invoke(messages)
        except Exception as e:
            raise TextOracleError(f"Error during structured LLM call {schema_name}: {e}") from e

        if result is None:
            raise TextOracleError(f"LLM returned no {schema_name} output.")
        if isinstance(result, dict):
            try:
                result = schema.model_validate(result)
            except ValueError as e:
                raise TextOracleError(f"LLM output does not match {schema_name}: {e}") from e
        if not isinstance(result, schema):
            raise TextOracleError(f"LLM returned {type(result).__name__} instead of {schema_name}.")
        return result
