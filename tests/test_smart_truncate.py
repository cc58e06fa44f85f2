from utils import smart_truncate


def test_short_text_is_returned_trimmed():
    assert smart_truncate("  short text  ", 140) == "short text"


def test_long_text_without_punctuation_cuts_at_word_boundary():
    text = ("word " * 60).strip()
    result = smart_truncate(text, 100)
    assert len(result) <= 100
    assert result.endswith("...")
    kept = result[:-3]
    assert text.startswith(kept)
    assert text[len(kept)] == " "
    assert not kept.endswith(" ")


def test_sentence_boundary_is_preferred():
    text = (
        "First sentence is here. Second sentence is quite a bit longer "
        "and keeps going well past the limit we set."
    )
    assert smart_truncate(text, 60) == "First sentence is here."


def test_sentence_too_early_is_ignored():
    text = "Hi. " + "this sentence runs on and on without any further punctuation at all " * 2
    result = smart_truncate(text, 100)
    assert result != "Hi."
    assert result.endswith("...")
    assert len(result) <= 100


def test_phrase_boundary_in_second_half():
    text = (
        "The committee met on Tuesday and Wednesday, then after lengthy debate "
        "approved the measure without amendment"
    )
    assert smart_truncate(text, 60) == "The committee met on Tuesday and Wednesday..."


def test_hard_cut_when_no_boundaries():
    result = smart_truncate("x" * 200, 50)
    assert result == "x" * 47 + "..."


def test_result_never_exceeds_limit():
    samples = [
        "a, b; c: d. e! f? " * 30,
        "Lorem ipsum dolor sit amet, consectetur adipiscing elit. " * 10,
        "y" * 500,
    ]
    for text in samples:
        for limit in (20, 60, 140):
            assert len(smart_truncate(text, limit)) <= limit
