"""Answer generation over retrieved context.

Retrieves the chunks relevant to a question, formats them as numbered
sources and asks the chat model to answer from them. When retrieval finds
nothing (or fails), the model still answers, but the answer is marked
`no_relevant_context` and the model is told to say so.
"""

import logging
import time
from dataclasses import dataclass, field

from openai import AsyncOpenAI

from librarian.core.runtime_settings import RuntimeSettings, SettingsProvider, load_runtime_settings
from librarian.observability import metrics
from librarian.rag.retriever import NO_RELEVANT_CONTEXT, MergedHit, Retriever

logger = logging.getLogger(__name__)

NO_CONTEXT_NOTICE = "No relevant context was found in the library; this answer is not based on its documents."

GROUNDED_INSTRUCTION = (
    "Answer from the sources above. If they are not enough, say so. "
    "Do not invent anything that is not in them."
)

UNGROUNDED_INSTRUCTION = (
    "No documents in the library matched this question. Start the answer by "
    "saying so, then answer from general knowledge."
)


class AnswerGenerationError(Exception):
    """Raised when the chat model cannot produce an answer."""
    pass


@dataclass
class Answer:
    """A generated answer and the sources it was grounded on."""

    question: str
    answer: str
    status: str
    model: str
    sources: list[MergedHit] = field(default_factory=list)
    retrieval_error: str | None = None
    latency_ms: float = 0.0

    @property
    def has_context(self) -> bool:
        return bool(self.sources)

    @property
    def notice(self) -> str | None:
        return NO_CONTEXT_NOTICE if self.status == NO_RELEVANT_CONTEXT else None


def build_messages(question: str, context: str, system_prompt: str) -> list[dict]:
    """Chat messages for a question, with or without retrieved context."""
    if context:
        system = (
            f"{system_prompt}\n\n--- CONTEXT FROM SOURCES ---\n\n{context}\n\n"
            f"--- END OF CONTEXT ---\n\n{GROUNDED_INSTRUCTION}"
        )
    else:
        system = f"{system_prompt}\n\n{UNGROUNDED_INSTRUCTION}"
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": question},
    ]


class AnswerGenerator:
    """Retrieval-augmented question answering."""

    def __init__(
        self,
        client: AsyncOpenAI,
        retriever: Retriever,
        settings_provider: SettingsProvider | None = None,
    ):
        self.client = client
        self.retriever = retriever
        self.settings_provider = settings_provider

    async def answer(
        self,
        question: str,
        k: int | None = None,
        score_threshold: float | None = None,
    ) -> Answer:
        """Answer a question from the library.

        Args:
            question: User's question
            k: Maximum number of sources (runtime default when None)
            score_threshold: Minimum source score (runtime default when None)

        Returns:
            Answer with its sources; status "no_relevant_context" when none
            were found

        Raises:
            AnswerGenerationError: If the chat model fails or answers empty
        """
        started = time.perf_counter()
        runtime = await load_runtime_settings(self.settings_provider)

        retrieval = await self.retriever.retrieve(question, k=k, score_threshold=score_threshold)
        context = Retriever.format_context(retrieval.hits)
        if not context:
            logger.info("[Answerer] No relevant context, answering without sources")

        content = await self._complete(build_messages(question, context, runtime.system_prompt), runtime)
        status = "ok" if context else NO_RELEVANT_CONTEXT
        metrics.ANSWERS.labels(status=status).inc()

        latency_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"[Answerer] Answered with {len(retrieval.hits)} sources in {latency_ms:.0f}ms ({status})"
        )
        return Answer(
            question=question,
            answer=content,
            status=status,
            model=runtime.chat_model,
            sources=retrieval.hits if context else [],
            retrieval_error=retrieval.error,
            latency_ms=latency_ms,
        )

    async def _complete(self, messages: list[dict], runtime: RuntimeSettings) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=runtime.chat_model,
                temperature=runtime.temperature,
                max_tokens=runtime.max_tokens,
                messages=messages,
            )
        except Exception as e:
            metrics.ANSWERS.labels(status="failed").inc()
            logger.error(f"[Answerer] Chat completion failed: {e}")
            raise AnswerGenerationError(f"Answer generation failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            metrics.ANSWERS.labels(status="failed").inc()
            raise AnswerGenerationError("Model returned an empty answer")
        return content.strip()
