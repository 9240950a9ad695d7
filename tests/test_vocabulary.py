from freeflow.vocabulary import (
    context_terms,
    correct_transcript,
    fuzzy_match,
    levenshtein,
    looks_like_person_name,
    merged_vocabulary_terms,
    parse_vocabulary,
    rank_terms,
)


def test_parse_vocabulary_splits_and_trims():
    assert parse_vocabulary("Aanya,\n Deep Thought ; ;\n\nKubernetes") == [
        "Aanya",
        "Deep Thought",
        "Kubernetes",
    ]
    assert parse_vocabulary("") == []


def test_merge_user_and_context_terms():
    terms = merged_vocabulary_terms("Aanya, Deep Thought", "recipients: Aanya Shah and Deep Thought")

    assert terms == ["Deep Thought", "Aanya Shah", "Thought", "Aanya", "Deep", "Shah"]


def test_merge_keeps_first_seen_casing():
    assert merged_vocabulary_terms("groq; GROQ; Groq", "") == ["groq"]


def test_context_terms_follow_address_cues():
    assert context_terms("Replying to Priya Patel and Tom Lee.") == ["Priya Patel", "Tom Lee"]
    assert context_terms("To: Alice\nCC: Bob Stone") == ["Alice", "Bob Stone"]
    assert context_terms("Recipient - Ana or Ben; subject: Launch Plan") == ["Ana", "Ben"]


def test_context_terms_reject_non_names():
    assert context_terms("Email to the whole team") == []
    assert context_terms("Addressing: Dr Jane Van Der Berg") == []
    assert context_terms("Slack channel without any cue") == []


def test_looks_like_person_name():
    assert looks_like_person_name("Aanya")
    assert looks_like_person_name("Mary Jane Watson")
    assert not looks_like_person_name("Mary Jane Van Watson")
    assert not looks_like_person_name("aanya Shah")
    assert not looks_like_person_name("   ")


def test_rank_terms_longest_first_then_alphabetical():
    assert rank_terms(["bo", "Al", "Zed", "amy", "Deep Thought"]) == ["Deep Thought", "amy", "Zed", "Al", "bo"]


def test_levenshtein():
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("", "abc") == 3
    assert levenshtein("anya", "aanya") == 1
    assert levenshtein("anyaaa", "aanya") == 3


def test_fuzzy_match_short_tokens_allow_one_edit():
    assert fuzzy_match("anya", ["Aanya"]) == "Aanya"
    assert fuzzy_match("ana", ["Aanya"]) is None


def test_fuzzy_match_long_tokens_allow_two_edits():
    assert fuzzy_match("kubernets", ["Kubernetes"]) == "Kubernetes"
    assert fuzzy_match("kuberntes", ["Kubernetes"]) == "Kubernetes"
    # three edits away, above the long-token threshold
    assert fuzzy_match("anyaaa", ["Aanya"]) is None


def test_fuzzy_match_requires_same_first_letter():
    assert fuzzy_match("bob", ["Aanya"]) is None
    assert fuzzy_match("Bob", ["Rob"]) is None


def test_fuzzy_match_leaves_exact_matches_alone():
    assert fuzzy_match("AANYA", ["Anya", "Aanya"]) is None
    assert fuzzy_match("a", ["A"]) is None


def test_correct_transcript_prefers_phrases():
    terms = merged_vocabulary_terms("Aanya Shah, Deep Thought", "")

    corrected = correct_transcript("send it to aanya shah and deep thougt", terms)

    assert corrected == "send it to Aanya Shah and deep Thought"


def test_correct_transcript_keeps_punctuation():
    assert correct_transcript("Thanks anya! See you, anya.", ["Aanya"]) == "Thanks Aanya! See you, Aanya."


def test_correct_transcript_without_vocabulary_is_identity():
    assert correct_transcript("nothing to see here", []) == "nothing to see here"
