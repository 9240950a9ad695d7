"""Context-aware rewriting of raw transcripts through a chat-completion backend."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import httpx

from .models import RewriteResult
from .vocabulary import merged_vocabulary_terms

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_MODEL = "meta-llama/llama-4-scout-17b-16e-instruct"

SYSTEM_PROMPT = """\
You are a context-aware dictation post-processor.
Your job is to rewrite the transcription into a polished, accurate final message.

Rules:
- Preserve the user's intent and tone.
- Use the provided context as your primary source for names, email participants, subject cues, project names, and other proper nouns.
- Correct obvious spelling and punctuation issues, especially for names and entities mentioned in context.
- The custom vocabulary list is authoritative for proper noun spellings. If a spoken token is a close misspelling of a vocabulary item, rewrite it using that exact vocabulary spelling.
- Remove spoken filler (for example: "um", "uh", "you know", "like") unless they are meaningful.
- If there is uncertainty about a proper noun, keep the original wording rather than inventing a correction.
- Convert rough list-like text into properly formatted Markdown bullet points when the content contains:
  - lines that begin with dashes, numbers, asterisks, or repeated phrases like "first/second/third";
  - sentence fragments intended as separate list items.
- If the context indicates email, output a sendable email structure:
  - include a clear subject line only when present in the transcription or explicit context;
  - use a greeting, concise body paragraphs, and a closing,
  - keep it ready to paste directly into an email composer.
- If no edits are needed for a token, phrase, or sentence, preserve it exactly as dictated.
- Do not change the meaning by inserting invented names, closures, clauses, or next steps.
- Keep the original intent and content scope; do not add, remove, summarize, or continue beyond what was spoken.
- Do not infer missing clauses, placeholders, or closing lines if they were not dictated.
- If the transcription is incomplete, return the rewritten partial content only.
- If no changes are required overall, return the transcription exactly as it should be inserted into the destination app.
- Do not wrap the entire response in quotation marks.
- Do not return the final output wrapped in quotes.
- Do not emit each sentence wrapped in quotes.
- If the raw model output is fully wrapped in quotation marks, treat that as invalid and return only the unwrapped transcript text.
- Never output explanatory preambles, scaffolding, disclaimers, assumptions, or analysis.
- Never include bracketed status notes (for example, "[No further text provided ...]") or templates like "possible complete email".
- Correct transcribed names and entities using the custom vocabulary whenever they are close variants of listed terms.
- Use context for names/terms only when the transcript references people/entities directly.
- Return only the rewritten transcript text."""

VOCABULARY_PROMPT = """\
The following vocabulary must be treated as high-priority terms while rewriting.
Use these spellings exactly in the output when relevant:
{terms}"""

USER_PROMPT = """\
Task: Rewrite the transcription for correctness using the context and vocab rules.

Transcription:
{transcript}

Context:
{context}"""

# Lines starting with one of these (case-insensitively) are model chatter.
BANNED_PREFIXES = (
    "here is",
    "here's",
    "here is the rewritten",
    "here is rewritten",
    "below is",
    "following is",
    "based on the context",
    "based on context",
    "assuming",
    "however, based on the context",
    "possible complete email",
    "i will",
    "if you'd like",
    "this is the rewritten",
    "rewritten transcription",
)


class RewriteError(RuntimeError):
    """Base class for rewrite backend failures."""


class RequestFailed(RewriteError):
    """The backend answered with a non-success status (0 when unreachable)."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Post-processing failed with status {status_code}: {body}")


class InvalidResponse(RewriteError):
    """The backend answered 200 but without usable message content."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Invalid post-processing response: {detail}")


def build_system_prompt(vocabulary: Sequence[str]) -> str:
    terms = ", ".join(term.strip() for term in vocabulary if term.strip())
    if not terms:
        return SYSTEM_PROMPT
    return f"{SYSTEM_PROMPT}\n\n{VOCABULARY_PROMPT.format(terms=terms)}"


def _is_bracketed_note(line: str) -> bool:
    return line.startswith("[") and line.endswith("]")


def _is_preamble(line: str) -> bool:
    return line.lower().startswith(BANNED_PREFIXES)


def sanitize_output(value: str) -> str:
    """Strip wrapping quotes, preambles and status notes from model output.

    Filtering is per line, so a content line that happens to start with a
    banned phrase is dropped as well.
    """

    text = value.strip()
    if len(text) > 1 and text.startswith('"') and text.endswith('"'):
        text = text[1:-1].strip()
    if not text:
        return text

    lines: List[str] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            lines.append("")
            continue
        if _is_bracketed_note(line) or _is_preamble(line):
            continue
        lines.append(raw_line)

    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()

    compressed: List[str] = []
    for line in lines:
        if not line.strip():
            if compressed and compressed[-1] == "":
                continue
            compressed.append("")
        else:
            compressed.append(line)
    return "\n".join(compressed).strip()


class Rewriter:
    """Send a transcript plus context to an OpenAI-compatible chat endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key.strip()
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport

    async def rewrite(
        self, transcript: str, context_summary: str, custom_vocabulary: str
    ) -> RewriteResult:
        vocabulary = merged_vocabulary_terms(custom_vocabulary, context_summary)
        system_prompt = build_system_prompt(vocabulary)
        user_message = USER_PROMPT.format(transcript=transcript, context=context_summary)
        prompt_used = f"SYSTEM:\n{system_prompt}\n\nUSER:\n{user_message}"

        payload = {
            "model": self.model,
            "temperature": 0.0,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        }
        logger.debug("Rewriting %d characters with %d vocabulary terms", len(transcript), len(vocabulary))

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post("/chat/completions", json=payload)
        except httpx.HTTPError as exc:
            raise RequestFailed(0, str(exc)) from exc

        if response.status_code != 200:
            raise RequestFailed(response.status_code, response.text)

        content = _message_content(response)
        if content is None:
            raise InvalidResponse("Missing choices[0].message.content")
        return RewriteResult(text=sanitize_output(content), prompt_used=prompt_used)


def _message_content(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
        content = payload["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError):
        return None
    return content if isinstance(content, str) else None


__all__ = [
    "BANNED_PREFIXES",
    "InvalidResponse",
    "RequestFailed",
    "RewriteError",
    "Rewriter",
    "build_system_prompt",
    "sanitize_output",
]
