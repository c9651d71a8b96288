"""Tests for model response parsing and generated content validation."""

import pytest

from studyforge.errors import GenerationError
from studyforge.generation.persister import (
    content_hash,
    quiz_question_problem,
    valid_flashcards,
    valid_quiz_questions,
)
from studyforge.generation.schemas import (
    GeneratedFlashcard,
    GeneratedQuizQuestion,
    RevisionNotePayload,
    StudySetPayload,
    extract_json,
    parse_structured,
)


class TestExtractJson:
    def test_plain_json(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_code_fence(self):
        assert extract_json('```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}

    def test_surrounding_prose(self):
        assert extract_json('Here you go:\n{"a": true}\nHope it helps.') == {"a": True}

    def test_no_json(self):
        with pytest.raises(GenerationError):
            extract_json("I cannot help with that.")

    def test_broken_json(self):
        with pytest.raises(GenerationError):
            extract_json('{"a": 1,,}')


class TestParseStructured:
    def test_study_set_from_camel_case(self):
        text = """
        {
          "flashcards": [{"question": "What is ATP?", "answer": "Energy currency", "tags": ["cells"]}],
          "quiz": [{
            "type": "true_false",
            "prompt": "Cells divide.",
            "options": [true, false],
            "answer": true,
            "explanation": "Mitosis."
          }],
          "metadata": {"recommendedSessionLength": 12, "summary": "Cells", "notes": ["n1"]}
        }
        """

        payload = parse_structured(text, StudySetPayload)

        assert payload.flashcards[0].question == "What is ATP?"
        assert payload.quiz[0].answer == "true"
        assert payload.quiz[0].options == ["true", "false"]
        assert payload.metadata.recommended_session_length == 12
        assert payload.metadata.summary == "Cells"

    def test_missing_sections_default_to_empty(self):
        payload = parse_structured('{"flashcards": [], "metadata": null}', StudySetPayload)

        assert payload.quiz == []
        assert payload.metadata.summary == ""

    def test_array_is_rejected(self):
        with pytest.raises(GenerationError):
            parse_structured("[1, 2]", StudySetPayload)

    def test_wire_shape_is_camel_case(self):
        payload = StudySetPayload.model_validate({"metadata": {"recommendedSessionLength": 5}})

        assert payload.to_wire()["metadata"]["recommendedSessionLength"] == 5

    def test_revision_note_fills_sections_from_outline(self):
        note = RevisionNotePayload.model_validate(
            {
                "documentTitle": "Biology",
                "outline": [{"title": "Cells", "paragraphs": ["One.", "Two."], "keyPoints": ["k"]}],
                "memoryHooks": ["hook"],
            }
        )

        assert note.sections[0].title == "Cells"
        assert note.sections[0].summary == "One. Two."
        assert note.sections[0].key_ideas == ["k"]
        assert note.revision_tips == ["hook"]


class TestQuizValidation:
    def _question(self, **overrides):
        values = {
            "type": "multiple_choice",
            "prompt": "Which organelle makes ATP?",
            "options": ["Nucleus", "Mitochondria", "Ribosome"],
            "answer": "mitochondria ",
        }
        values.update(overrides)
        return GeneratedQuizQuestion(**values)

    def test_answer_matching_option_case_insensitively(self):
        assert quiz_question_problem(self._question()) is None

    def test_answer_outside_options(self):
        assert "not one of the options" in quiz_question_problem(self._question(answer="Golgi"))

    def test_missing_answer(self):
        assert quiz_question_problem(self._question(answer="  ")) == "missing answer"

    def test_missing_prompt(self):
        assert quiz_question_problem(self._question(prompt="")) == "missing prompt"

    def test_completion_has_no_options_check(self):
        question = self._question(type="completion", options=None, answer="ATP")
        assert quiz_question_problem(question) is None

    def test_filters(self):
        questions = [self._question(), self._question(answer="Golgi"), self._question(answer="")]

        assert len(valid_quiz_questions(questions)) == 1

    def test_flashcards_with_empty_side_dropped(self):
        cards = [
            GeneratedFlashcard(question="Q", answer="A"),
            GeneratedFlashcard(question=" ", answer="A"),
            GeneratedFlashcard(question="Q", answer=None),
        ]

        assert valid_flashcards(cards) == [cards[0]]


def test_content_hash_is_stable_across_types():
    assert content_hash("abc") == content_hash(b"abc")
    assert len(content_hash("abc")) == 64
