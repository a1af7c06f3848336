import pytest

from conftest import CountingRandom
from errors import CapacityError, GenerationError, ModelLoadError, ValidationError
from markov_chain import SequenceModel, train_model
from password_generator import (
    ALPHABET,
    DIGITS,
    LETTERS,
    SPECIAL_CHARS,
    MarkovSource,
    PasswordGenerator,
    RandomSource,
    apply_casing,
    fill_character_group,
    pad_to_length,
    truncate_to_length,
    validate_restrictions,
)
from schemas import PasswordRestrictions


def count(password, alphabet):
    return sum(1 for ch in password if ch.lower() in alphabet)


class FixedSource:
    def __init__(self, *chunks):
        self.chunks = list(chunks)
        self.prefixes = []

    def generate(self, prefix=""):
        self.prefixes.append(prefix)
        return list(self.chunks.pop(0)) if self.chunks else []


# --------------------
# Validation
# --------------------
def test_validate_applies_default_max_length():
    r = validate_restrictions(PasswordRestrictions())

    assert r.max_length == 16


@pytest.mark.parametrize(
    "kwargs",
    [
        {"minDigits": 5, "maxLength": 4},
        {"minSpecialChars": 5, "maxLength": 4},
        {"minLetters": 5, "maxLength": 4},
        {"minDigits": 2, "minSpecialChars": 2, "minLetters": 2, "maxLength": 5},
        {"minLength": 10, "maxLength": 8},
    ],
)
def test_validate_rejects_inconsistent_restrictions(kwargs):
    with pytest.raises(ValidationError):
        validate_restrictions(PasswordRestrictions(**kwargs))


def test_invalid_restrictions_make_no_random_draws():
    rng = CountingRandom()
    generator = PasswordGenerator(rng=rng)

    with pytest.raises(ValidationError):
        generator.generate_with_retry(PasswordRestrictions(minDigits=5, maxLength=4))
    assert rng.draws == 0


# --------------------
# Sources
# --------------------
def test_random_source_length_and_alphabet(rng):
    password = RandomSource(20, rng).generate("ignored")

    assert len(password) == 20
    assert all(ch in ALPHABET for ch in password)


def test_markov_source_strips_sentinels(model, rng):
    password = "".join(MarkovSource(model, rng).generate())

    assert password
    assert "\x02" not in password and "\x03" not in password


def test_markov_source_keeps_prefix(model, rng):
    password = "".join(MarkovSource(model, rng).generate("pa"))

    assert password.startswith("pa")


def test_markov_source_unobserved_prefix_fails(rng):
    model = train_model(["xylophone", "xyz", "xyxyx"], order=2)

    with pytest.raises(GenerationError):
        MarkovSource(model, rng).generate("ab")


def test_markov_source_walk_is_bounded(rng):
    # END is unreachable in this table
    model = SequenceModel(1, {"\x02": {"a": 1}, "a": {"a": 1}})

    with pytest.raises(GenerationError):
        MarkovSource(model, rng, max_symbols=3).generate()


# --------------------
# Stages
# --------------------
def test_pad_uses_password_as_prefix():
    source = FixedSource("cd", "ef")

    password = pad_to_length(list("ab"), 6, source)

    assert "".join(password) == "abcdef"
    assert source.prefixes == ["ab", "abcd"]


def test_pad_is_bounded_when_source_returns_nothing():
    with pytest.raises(GenerationError):
        pad_to_length(list("ab"), 6, FixedSource(), max_rounds=3)


def test_truncate_drops_front_or_back():
    results = set()
    for seed in range(20):
        results.add("".join(truncate_to_length(list("abcdef"), 4, CountingRandom(seed))))

    assert results == {"abcd", "cdef"}


def test_truncate_leaves_short_password(rng):
    assert truncate_to_length(list("abc"), 4, rng) == list("abc")
    assert truncate_to_length(list("abcdef"), 0, rng) == list("abcdef")


def test_fill_overwrites_non_group_positions(rng):
    password = fill_character_group(list("abcdef"), 3, DIGITS, 6, frozenset(), rng)

    assert len(password) == 6
    assert count(password, DIGITS) == 3


def test_fill_never_overwrites_restricted_groups(rng):
    password = fill_character_group(list("!!1abc"), 5, LETTERS, 8, frozenset(SPECIAL_CHARS + DIGITS), rng)

    assert "".join(password[:3]) == "!!1"
    assert count(password, LETTERS) == 5
    assert len(password) == 8


def test_fill_appends_when_nothing_replaceable(rng):
    password = fill_character_group(list("!!"), 2, DIGITS, 4, frozenset(SPECIAL_CHARS), rng)

    assert password[:2] == list("!!")
    assert count(password, DIGITS) == 2
    assert len(password) == 4


def test_fill_raises_capacity_error_at_max_length(rng):
    with pytest.raises(CapacityError):
        fill_character_group(list("!!!!"), 1, DIGITS, 4, frozenset(SPECIAL_CHARS), rng)


def test_fill_counts_upper_case_letters(rng):
    password = fill_character_group(list("ABC1"), 3, LETTERS, 4, frozenset(), rng)

    assert password == list("ABC1")


def test_casing_is_idempotent():
    once = apply_casing("aB3$x", upper=True, lower=False)

    assert once == "AB3$X"
    assert apply_casing(once, upper=True, lower=False) == once


def test_lower_case_wins_when_both_set():
    assert apply_casing("aBc", upper=True, lower=True) == "abc"


def test_casing_keeps_length_for_expanding_characters():
    assert apply_casing("straße", upper=True, lower=False) == "STRAßE"
    assert len(apply_casing("İx", upper=False, lower=True)) == 2


def test_upper_case_user_readable_password_respects_max_length(rng):
    model = train_model(["straße"] * 10, order=2)
    generator = PasswordGenerator(model, rng=rng)
    restrictions = PasswordRestrictions(maxLength=6, userReadable=True, allUpperCase=True)

    password = generator.generate_with_retry(restrictions)

    assert password == "STRAßE"
    assert len(password) <= 6


@pytest.mark.parametrize("prefix", ["\x03", "ab\x02"])
def test_prefix_with_reserved_characters_is_rejected(model, prefix):
    rng = CountingRandom()
    generator = PasswordGenerator(model, rng=rng)

    with pytest.raises(ValidationError):
        generator.generate_with_retry(PasswordRestrictions(userReadable=True), prefix=prefix)
    assert rng.draws == 0


# --------------------
# Pipeline
# --------------------
def test_random_password_with_fixed_length_and_digits(rng):
    generator = PasswordGenerator(rng=rng)
    restrictions = PasswordRestrictions(minLength=10, maxLength=10, minDigits=3)

    for _ in range(20):
        password = generator.generate_with_retry(restrictions)
        assert len(password) == 10
        assert count(password, DIGITS) >= 3


@pytest.mark.parametrize(
    "kwargs",
    [
        {"minLength": 8, "maxLength": 12, "minDigits": 2, "minSpecialChars": 2, "minLetters": 2},
        {"maxLength": 6, "minDigits": 2, "minSpecialChars": 2, "minLetters": 2},
        {"minLength": 4, "maxLength": 4, "minLetters": 4, "allUpperCase": True},
        {"minLength": 20, "maxLength": 32, "minSpecialChars": 5},
    ],
)
def test_random_passwords_satisfy_restrictions(kwargs):
    generator = PasswordGenerator(rng=CountingRandom(7))
    r = validate_restrictions(PasswordRestrictions(**kwargs))

    for _ in range(10):
        password = generator.generate_with_retry(r, max_attempts=20)
        assert r.min_length <= len(password) <= r.max_length
        assert count(password, DIGITS) >= r.min_digits
        assert count(password, SPECIAL_CHARS) >= r.min_special_chars
        assert count(password, LETTERS) >= r.min_letters


def test_user_readable_passwords_satisfy_restrictions(model, rng):
    generator = PasswordGenerator(model, rng=rng)
    r = PasswordRestrictions(minLength=12, maxLength=14, minDigits=2, minSpecialChars=1, userReadable=True)

    for _ in range(10):
        password = generator.generate_with_retry(r, max_attempts=20)
        assert 12 <= len(password) <= 14
        assert count(password, DIGITS) >= 2
        assert count(password, SPECIAL_CHARS) >= 1


def test_all_upper_case_password(rng):
    restrictions = PasswordRestrictions(maxLength=12, minLetters=6, allUpperCase=True)
    password = PasswordGenerator(rng=rng).generate_with_retry(restrictions)

    assert password == password.upper()


def test_user_readable_without_model_is_not_retried():
    rng = CountingRandom()
    generator = PasswordGenerator(rng=rng, model_error=ModelLoadError("model.json missing"))

    with pytest.raises(ModelLoadError, match="model.json missing"):
        generator.generate_with_retry(PasswordRestrictions(userReadable=True))
    assert rng.draws == 0


def test_incompatible_prefix_exhausts_retries(rng, monkeypatch):
    model = train_model(["xylophone", "xyz123", "xyxyx"], order=2)
    generator = PasswordGenerator(model, rng=rng)
    attempts = []
    original = generator.generate

    def counting_generate(restrictions, prefix=""):
        attempts.append(prefix)
        return original(restrictions, prefix)

    monkeypatch.setattr(generator, "generate", counting_generate)

    with pytest.raises(GenerationError):
        generator.generate_with_retry(PasswordRestrictions(userReadable=True), max_attempts=5, prefix="ab")
    assert attempts == ["ab"] * 5


def test_retry_returns_first_success(rng, monkeypatch):
    generator = PasswordGenerator(rng=rng)
    outcomes = [CapacityError("full"), GenerationError("unlucky"), "s3cret!"]

    def flaky(restrictions, prefix=""):
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(generator, "generate", flaky)

    assert generator.generate_with_retry(PasswordRestrictions(), max_attempts=5) == "s3cret!"
    assert outcomes == []
