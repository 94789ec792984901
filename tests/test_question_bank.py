import json

import pytest

import db
import question_bank
from question_bank import QuestionBank, QuestionValidationError

from conftest import SAMPLE_QUESTIONS


def _write(tmp_path, payload, name="bank.json"):
    path = tmp_path / name
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_bank_loads_and_syncs(temp_db, question_file):
    bank = QuestionBank(question_file)
    assert len(bank.questions) == 3
    assert bank.categories() == ["system-design"]
    assert db.count_practice_questions("system-design") == 3
    stored = {q["question_key"]: q for q in db.list_practice_questions()}
    assert stored["cache-design"]["guided_answer"].startswith("Hash map")


def test_bank_accepts_bare_list(tmp_path):
    path = _write(tmp_path, SAMPLE_QUESTIONS[:1])
    questions = question_bank.load_questions(path)
    assert [q["question_key"] for q in questions] == ["cache-design"]


def test_bank_normalizes_fields(tmp_path):
    entry = dict(SAMPLE_QUESTIONS[0], category=" System-Design ", difficulty=None)
    questions = question_bank.load_questions(_write(tmp_path, [entry]))
    assert questions[0]["category"] == "system-design"
    assert questions[0]["difficulty"] == "medium"


@pytest.mark.parametrize("field", QuestionBank.REQUIRED_FIELDS)
def test_bank_rejects_missing_field(tmp_path, field):
    entry = dict(SAMPLE_QUESTIONS[0])
    entry[field] = "  "
    with pytest.raises(QuestionValidationError):
        QuestionBank(_write(tmp_path, [entry]), auto_sync=False)


def test_bank_rejects_duplicate_keys(tmp_path):
    with pytest.raises(QuestionValidationError):
        QuestionBank(_write(tmp_path, [SAMPLE_QUESTIONS[0], SAMPLE_QUESTIONS[0]]), auto_sync=False)


def test_bank_rejects_unknown_difficulty(tmp_path):
    entry = dict(SAMPLE_QUESTIONS[1], difficulty="legendary")
    with pytest.raises(QuestionValidationError):
        QuestionBank(_write(tmp_path, [entry]), auto_sync=False)


def test_bank_rejects_wrong_root(tmp_path):
    with pytest.raises(QuestionValidationError):
        QuestionBank(_write(tmp_path, {"items": []}), auto_sync=False)


def test_missing_template(tmp_path):
    with pytest.raises(FileNotFoundError):
        QuestionBank(tmp_path / "absent.json")


def test_reseed_keeps_question_ids(temp_db, tmp_path, question_file):
    question_bank.seed_questions(question_file)
    before = {q["question_key"]: q["id"] for q in db.list_practice_questions()}

    edited = [dict(q) for q in SAMPLE_QUESTIONS]
    edited[0]["title"] = "Design an LRU Cache"
    question_bank.seed_questions(_write(tmp_path, edited, name="edited.json"))

    after = {q["question_key"]: q for q in db.list_practice_questions()}
    assert {key: q["id"] for key, q in after.items()} == before
    assert after["cache-design"]["title"] == "Design an LRU Cache"
    assert question_bank.get_question(before["cache-design"])["title"] == "Design an LRU Cache"


def test_shipped_template_is_valid():
    questions = question_bank.load_questions(question_bank.DEFAULT_TEMPLATE_PATH)
    assert len(questions) >= 8
    assert {q["category"] for q in questions} == {"system-design"}


def test_default_template_path_honours_env(monkeypatch, tmp_path):
    monkeypatch.setenv("QUESTION_BANK_PATH", str(tmp_path / "custom.json"))
    assert question_bank.default_template_path() == tmp_path / "custom.json"
    monkeypatch.delenv("QUESTION_BANK_PATH")
    assert question_bank.default_template_path() == question_bank.DEFAULT_TEMPLATE_PATH
