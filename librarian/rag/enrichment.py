"""LLM-derived document metadata.

Asks a chat model for a structured summary of a document (topics, tags,
summary ...) in a domain-specific JSON shape. Enrichment is best-effort:
any failure yields an empty mapping and the document is still ingested.
"""

import json
import logging
import re

from openai import AsyncOpenAI

from librarian.core.runtime_settings import MetadataDomain, MetadataStrategy, RuntimeSettings
from librarian.observability import metrics
from librarian.rag.chunking import CHARS_PER_TOKEN, estimate_tokens

logger = logging.getLogger(__name__)

MIN_CONTEXT_TOKENS = 8000
SAMPLE_SEPARATOR = "\n\n[...]\n\n"

SYSTEM_PROMPT = (
    "You answer with strictly valid JSON only, without comments or explanations. "
    "Write values in the language of the document."
)

DOMAIN_PROMPTS: dict[str, str] = {
    "general": """You analyse documents for a knowledge library. Read the text and return ONLY valid JSON:
{
  "title": "Short descriptive title.",
  "summary": "What the document covers and why it matters.",
  "summary_short": "One sentence summary.",
  "topics": ["main topics and key concepts"],
  "named_entities": ["people, organisations, places"],
  "document_type": "lecture / article / manual / letter / book chapter ...",
  "suggested_tags": ["tag", "tag"]
}""",
    "nutrition": """You are an expert in nutrition science, functional medicine and dietetics. The input is a study or lecture file. Analyse its content concisely and return ONLY valid JSON:
{
  "summary": "Short summary and purpose of the document.",
  "topics": ["main topics and key concepts"],
  "target_conditions": ["conditions or diseases the document addresses"],
  "recommended_foods": ["beneficial foods mentioned"],
  "restricted_foods": ["foods to avoid"],
  "author_type": "nutritionist / physician / hormone specialist ...",
  "emotional_tone": "educational / supportive / alarming / motivating ...",
  "suggested_tags": ["nutrition", "digestion", "hormones"]
}""",
    "spiritual": """You analyse spiritual and philosophical texts. Analyse the whole text and return ONLY valid JSON:
{
  "summary": "Short summary of the whole text.",
  "topics": ["main themes"],
  "source_type": "dictation / philosophical letter / teaching / lecture",
  "named_entities": ["names, organisations, places"],
  "emotional_tone": "inspiring / alarming / prophetic ...",
  "suggested_tags": ["spirituality", "esoterics"]
}""",
}

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


class EnrichmentFailure(Exception):
    """Raised internally when the model output is unusable."""
    pass


def sample_text(text: str, strategy: MetadataStrategy, max_context_tokens: int) -> str:
    """Reduce an oversized document to fit the model context.

    Texts within budget are returned whole regardless of strategy.
    `sampled` (and `auto`) keep the head and tail; `hierarchical` keeps head,
    middle and tail.
    """
    budget = max(MIN_CONTEXT_TOKENS, max_context_tokens)
    if estimate_tokens(text) <= budget:
        return text

    if strategy == "hierarchical":
        slice_chars = (budget // 3) * CHARS_PER_TOKEN
        mid_start = max(0, len(text) // 2 - slice_chars // 2)
        parts = [
            text[:slice_chars],
            text[mid_start : mid_start + slice_chars],
            text[-slice_chars:],
        ]
    else:
        slice_chars = (budget // 2) * CHARS_PER_TOKEN
        parts = [text[:slice_chars], text[-slice_chars:]]

    return SAMPLE_SEPARATOR.join(parts)


def parse_json_object(content: str) -> dict:
    """Parse model output as a JSON object.

    Tries the whole content first, then the outermost ``{...}`` block.

    Raises:
        EnrichmentFailure: If no JSON object can be recovered
    """
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        match = _JSON_BLOCK.search(content)
        if not match:
            raise EnrichmentFailure("Model output contains no JSON object")
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise EnrichmentFailure(f"Model output is not valid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise EnrichmentFailure(f"Model output is a JSON {type(parsed).__name__}, expected an object")
    return parsed


def build_meta_text(metadata: dict) -> str:
    """Text embedded into the `meta` vector space.

    Title, tags and the short summary (falling back to the full summary),
    joined with ``" \\n "``. Empty when enrichment produced none of these.
    """
    tags = metadata.get("tags") or metadata.get("suggested_tags") or []
    if isinstance(tags, str):
        tags = [tags]

    parts = [
        str(metadata.get("title") or "").strip(),
        " ".join(str(t).strip() for t in tags if str(t).strip()),
        str(metadata.get("summary_short") or metadata.get("summary") or "").strip(),
    ]
    return " \n ".join(p for p in parts if p)


class MetadataEnricher:
    """Derives structured metadata for a document with a chat model."""

    TEMPERATURE = 0.2
    MAX_TOKENS = 1200

    def __init__(self, client: AsyncOpenAI):
        self.client = client

    def build_prompt(self, text: str, domain: MetadataDomain, custom_prompt: str | None = None) -> str:
        if custom_prompt and custom_prompt.strip():
            return f"{custom_prompt.strip()}\n\nText to analyse:\n{text}"
        template = DOMAIN_PROMPTS.get(domain, DOMAIN_PROMPTS["general"])
        return f"{template}\n\nText:\n{text}"

    async def enrich(
        self,
        text: str,
        domain: MetadataDomain | None = None,
        settings: RuntimeSettings | None = None,
    ) -> dict:
        """Derive metadata for a document.

        Args:
            text: Normalized document text
            domain: Prompt family; defaults to the configured domain
            settings: Runtime snapshot (model, strategy, context budget)

        Returns:
            Parsed metadata plus `domain`, or an empty dict on any failure
        """
        settings = settings or RuntimeSettings()
        domain = domain or settings.metadata_domain

        try:
            result = await self._enrich(text, domain, settings)
        except Exception as e:
            logger.warning(f"[Enricher] Metadata enrichment failed, continuing without it: {e}")
            metrics.ENRICHMENT_RESULTS.labels(result="empty").inc()
            return {}

        metrics.ENRICHMENT_RESULTS.labels(result="ok").inc()
        return result

    async def _enrich(self, text: str, domain: MetadataDomain, settings: RuntimeSettings) -> dict:
        sampled = sample_text(text, settings.metadata_strategy, settings.metadata_max_context_tokens)
        if len(sampled) < len(text):
            logger.info(
                f"[Enricher] Text of ~{estimate_tokens(text)} tokens sampled "
                f"({settings.metadata_strategy}) to ~{estimate_tokens(sampled)} tokens"
            )

        response = await self.client.chat.completions.create(
            model=settings.metadata_model,
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": self.build_prompt(sampled, domain, settings.metadata_prompt)},
            ],
        )

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise EnrichmentFailure("Model returned an empty response")

        parsed = parse_json_object(content)
        logger.debug(f"[Enricher] Metadata keys: {sorted(parsed)}")
        return {**parsed, "domain": domain}
