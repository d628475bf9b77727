import pytest

from speakup.capture.echo import EchoFilter, is_echo, normalize, word_overlap


def test_normalize_collapses_case_punctuation_and_spaces():
    assert normalize("  Hello,   WORLD!! How's it -- going?  ") == "hello world how s it going"
    assert normalize("") == ""
    assert normalize("?!...") == ""


def test_substring_of_reference_is_echo():
    reference = "That sounds lovely! Where did you go on holiday?"
    assert is_echo("where did you go on HOLIDAY", reference)
    assert is_echo("That sounds lovely.", reference)


def test_reference_inside_candidate_is_echo():
    assert is_echo("um okay so tell me more about it please", "Tell me more about it!")


def test_unrelated_strings_are_not_echo():
    assert not is_echo("I went to the market yesterday", "What is your favourite movie genre?")


@pytest.mark.parametrize("candidate", ["yes", "no", "OK!", "sure"])
def test_short_answers_are_never_echo(candidate):
    assert not is_echo(candidate, candidate)


def test_empty_inputs_are_not_echo():
    assert not is_echo("", "hello there")
    assert not is_echo("hello there", "")
    assert not is_echo("!!!", "hello there")


def test_high_word_overlap_is_echo():
    reference = "did you enjoy the concert last night"
    candidate = "you enjoy the concert last night did"
    assert word_overlap(candidate, reference) == 1.0
    assert is_echo(candidate, reference)


def test_partial_overlap_below_threshold():
    reference = "did you enjoy the concert last night"
    candidate = "the concert was loud and the crowd was huge"
    assert word_overlap(candidate, reference) < 0.7
    assert not is_echo(candidate, reference)


def test_echo_filter_uses_configured_thresholds():
    strict = EchoFilter(min_chars=50)
    assert not strict("where did you go", "Where did you go on holiday?")

    loose = EchoFilter(overlap_ratio=0.2)
    assert loose("the concert was loud and the crowd was huge", "did you enjoy the concert last night")


@pytest.mark.parametrize(
    "candidate, reference",
    [
        ("yesterday I went to the park", "Yes!"),
        ("that was a great trip", "Great!"),
        ("I found it in the nowhere", "here"),
    ],
)
def test_short_reply_does_not_swallow_later_speech(candidate, reference):
    assert not is_echo(candidate, reference)


def test_containment_respects_word_boundaries():
    assert not is_echo("a cathedral tour", "Cathedral tours are fun")
    assert is_echo("cathedral tours", "Cathedral tours are fun")
