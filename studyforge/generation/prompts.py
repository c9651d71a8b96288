"""
Prompts for study content generation.

Text modes return plain text. Structured modes describe the JSON document the
model must return; the shapes match ``studyforge.generation.schemas``.
"""
from __future__ import annotations

import json
from typing import Any

# =============================================================================
# Text modes
# =============================================================================

TEXT_MODE_PROMPTS = {
    "improve": (
        "Rewrite the text in clear, fluent, natural language without adding or "
        "explaining anything. Never prefix your answer."
    ),
    "correct": (
        "Fix spelling and grammar in the text without comments or extra formatting."
    ),
    "translate": (
        "Translate the source text faithfully into English, without notes or "
        "introduction. Reply with the translation only."
    ),
    "summarize": "Summarize the text in at most two sentences, without metadata or filler.",
}

# =============================================================================
# Structured modes
# =============================================================================

QUESTION_SCHEMA = """{
      "id": string,
      "type": "multiple_choice" | "true_false" | "completion",
      "prompt": string,
      "options": string[] | null,
      "answer": string,
      "explanation": string,
      "tags": string[]
    }"""

FICHE_PROMPT = """You are a revision assistant. You receive an excerpt of a document (sometimes
incomplete) and produce a thorough revision sheet combining the information
present in "source" with reliable general knowledge.

Tag every list entry with [PDF] when it comes from the source, [COMPLEMENT]
when it comes from general knowledge, and [TO VERIFY] when uncertain.

Reply with strict JSON only, in exactly this shape:
{
  "documentTitle": string,
  "sectionHeading": string,
  "summary": string,
  "learningObjectives": string[],
  "outline": [
    {
      "title": string,
      "paragraphs": string[],
      "keyPoints": string[],
      "methodology": string[],
      "examples": string[],
      "applications": string[]
    }
  ],
  "definitions": [{ "term": string, "meaning": string, "context": string }],
  "misconceptions": string[],
  "memoryHooks": string[],
  "studyQuestions": [{ "question": string, "answer": string }],
  "furtherReading": string[]
}

- studyQuestions: 3 to 5 question/answer pairs.
- furtherReading: at most 3 references.
- No text outside the JSON."""

QUIZ_PROMPT = f"""You are a revision assistant. Build an interactive quiz from the provided text.
Reply with strict JSON:
{{
  "documentTitle": string,
  "recommendedSessionLength": number,
  "questions": [
    {QUESTION_SCHEMA}
  ]
}}
Constraints:
- 6 to 8 questions.
- At least 3 multiple choice questions with 4 options.
- At least 1 true/false and 1 completion question.
- The answer of a multiple choice question is the exact text of one option.
- explanation: at most 2 sentences.
- tags: include section and difficulty (e.g. "section:intro", "difficulty:easy").
- recommendedSessionLength: estimated minutes (integer).
No text outside the JSON."""

COLLECTION_PROMPT = f"""You are a study assistant. From a multi-document corpus, build a complete
revision collection. Reply with strict JSON:
{{
  "flashcards": [
    {{ "question": string, "answer": string, "tags": [string] }}
  ],
  "quiz": [
    {QUESTION_SCHEMA}
  ],
  "metadata": {{
    "recommendedSessionLength": number,
    "summary": string,
    "notes": [string]
  }}
}}
Guidelines:
- Use only information present in the corpus and rephrase it cleanly.
- Produce exactly context.flashcardsTarget flashcards and context.quizTarget quiz questions.
- Flashcards: question = clear recall cue; answer = structured detail. Tags are useful topics.
- Quiz: mix at least 3 multiple choice (4 distinct options, answer = exact option text),
  1 true/false and 1 completion question. Explanations: at most 2 sentences.
- metadata.summary: 3 to 4 sentences covering the key notions.
- No text outside the JSON, no comments."""

STRUCTURED_MODE_PROMPTS = {
    "fiche": FICHE_PROMPT,
    "quiz": QUIZ_PROMPT,
    "collection": COLLECTION_PROMPT,
}

_INSTRUCTIONS = {
    "fiche": "Generate the revision sheet for the following content. Use the context when present.",
    "quiz": "Generate a quiz assessing understanding of the content. Use tags to link questions to sections.",
    "collection": (
        "Create a coherent set of flashcards and a quiz from the following corpus. "
        "The context describes the collection (title, tags, targets)."
    ),
}


def build_user_message(mode: str, text: str, metadata: dict[str, Any] | None = None) -> str:
    """Wrap source text and metadata into the user message for a structured mode."""
    body_key = "corpus" if mode == "collection" else "source"
    return json.dumps(
        {
            "instructions": _INSTRUCTIONS[mode],
            "context": metadata or {},
            body_key: text,
        },
        ensure_ascii=False,
        indent=2,
    )
