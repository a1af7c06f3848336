import logging
import secrets
from typing import FrozenSet, List, Optional

from errors import CapacityError, GenerationError, ModelLoadError, PasswordGenError, ValidationError
from markov_chain import END_TOKEN, START_TOKEN, SequenceModel, random_index
from schemas import PasswordRestrictions

logger = logging.getLogger(__name__)

LETTERS = "abcdefghijklmnopqrstuvwxyz"
DIGITS = "0123456789"
SPECIAL_CHARS = "~!@#$%^&*()_+-={}|[]:<>?,./"
ALPHABET = LETTERS + DIGITS + SPECIAL_CHARS

DEFAULT_MAX_LENGTH = 16
DEFAULT_MAX_RETRY = 5
MAX_PAD_ROUNDS = 64
MAX_WALK_SYMBOLS = 256

_system_random = secrets.SystemRandom()


def validate_restrictions(
    restrictions: PasswordRestrictions, default_max_length: int = DEFAULT_MAX_LENGTH
) -> PasswordRestrictions:
    """Check restrictions for consistency and return the effective copy.

    A maxLength of 0 is replaced with ``default_max_length``.
    """
    r = restrictions
    if r.max_length == 0:
        r = r.model_copy(update={"max_length": default_max_length})

    for name in ("min_length", "max_length", "min_digits", "min_special_chars", "min_letters"):
        if getattr(r, name) < 0:
            raise ValidationError(f"Parameter {name} can't be negative")
    if r.min_digits > r.max_length:
        raise ValidationError("Parameter minDigits can't be larger than maxLength")
    if r.min_special_chars > r.max_length:
        raise ValidationError("Parameter minSpecialChars can't be larger than maxLength")
    if r.min_letters > r.max_length:
        raise ValidationError("Parameter minLetters can't be larger than maxLength")
    if r.min_digits + r.min_special_chars + r.min_letters > r.max_length:
        raise ValidationError(
            "Sum of parameters minDigits, minLetters and minSpecialChars can't be larger than maxLength"
        )
    if r.min_length > r.max_length:
        raise ValidationError("Parameter minLength can't be larger than maxLength")
    return r


# --------------------
# Candidate sources
# --------------------
class RandomSource:
    def __init__(self, length: int, rng=None):
        self.length = length
        self.rng = rng or _system_random

    def generate(self, prefix: str = "") -> List[str]:
        # The prefix has no influence on uniform draws
        password: List[str] = []
        for _ in range(self.length):
            ch = ALPHABET[random_index(self.rng, len(ALPHABET))]
            if password:
                password.insert(random_index(self.rng, len(password)), ch)
            else:
                password.append(ch)
        return password


class MarkovSource:
    def __init__(self, model: SequenceModel, rng=None, max_symbols: int = MAX_WALK_SYMBOLS):
        self.model = model
        self.rng = rng or _system_random
        self.max_symbols = max_symbols

    def generate(self, prefix: str = "") -> List[str]:
        order = self.model.order
        tokens = [START_TOKEN] * order + list(prefix)
        generated = 0
        while tokens[-1] != END_TOKEN:
            if generated >= self.max_symbols:
                raise GenerationError("User readable password walk did not terminate, try again")
            tokens.append(self.model.sample(tokens[-order:], self.rng))
            generated += 1
        return tokens[order:-1]


# --------------------
# Repair stages
# --------------------
def _group(alphabet: str) -> FrozenSet[str]:
    return frozenset(alphabet)


def _in_group(ch: str, group: FrozenSet[str]) -> bool:
    return ch.lower() in group


def pad_to_length(password: List[str], min_length: int, source, max_rounds: int = MAX_PAD_ROUNDS) -> List[str]:
    """Grow ``password`` by generating with itself as prefix until min_length."""
    rounds = 0
    while len(password) < min_length:
        if rounds >= max_rounds:
            raise GenerationError("Password could not be padded to minLength, try again")
        password = password + source.generate("".join(password))
        rounds += 1
    return password


def truncate_to_length(password: List[str], max_length: int, rng) -> List[str]:
    diff = len(password) - max_length
    if max_length <= 0 or diff <= 0:
        return password
    # One random bit decides which end is dropped
    if random_index(rng, 2):
        return password[diff:]
    return password[: len(password) - diff]


def fill_character_group(
    password: List[str],
    minimum: int,
    alphabet: str,
    max_length: int,
    restricted: FrozenSet[str],
    rng,
) -> List[str]:
    """Ensure at least ``minimum`` members of ``alphabet`` in ``password``.

    Characters of the group itself or of ``restricted`` groups are never
    overwritten. Appends only while below ``max_length`` (0 means no cap).
    """
    group = _group(alphabet)
    missing = minimum - sum(1 for ch in password if _in_group(ch, group))
    for _ in range(missing):
        ch = alphabet[random_index(rng, len(alphabet))]
        replaceable = [
            i for i, c in enumerate(password)
            if not _in_group(c, group) and not _in_group(c, restricted)
        ]
        if replaceable:
            password[replaceable[random_index(rng, len(replaceable))]] = ch
        elif max_length <= 0 or len(password) < max_length:
            password.append(ch)
        else:
            raise CapacityError("Password can't fit the required characters, try again")
    return password


def _case_each(password: str, convert) -> str:
    # Characters whose mapping expands (e.g. "ß" -> "SS") are kept as is
    out = []
    for ch in password:
        mapped = convert(ch)
        out.append(mapped if len(mapped) == 1 else ch)
    return "".join(out)


def apply_casing(password: str, upper: bool, lower: bool) -> str:
    """Change case symbol by symbol, never changing the length."""
    if upper:
        password = _case_each(password, str.upper)
    if lower:
        password = _case_each(password, str.lower)
    return password


# --------------------
# Pipeline
# --------------------
class PasswordGenerator:
    """Builds passwords that satisfy a set of PasswordRestrictions.

    ``model`` is only needed for user readable passwords; when it could not
    be loaded, pass the failure as ``model_error`` so it is reported as is.
    """

    def __init__(
        self,
        model: Optional[SequenceModel] = None,
        rng=None,
        model_error: Optional[ModelLoadError] = None,
        default_max_length: int = DEFAULT_MAX_LENGTH,
        max_pad_rounds: int = MAX_PAD_ROUNDS,
    ):
        self.model = model
        self.rng = rng or _system_random
        self.model_error = model_error
        self.default_max_length = default_max_length
        self.max_pad_rounds = max_pad_rounds

    def source_for(self, restrictions: PasswordRestrictions):
        if not restrictions.user_readable:
            return RandomSource(restrictions.max_length or self.default_max_length, self.rng)
        if self.model is None:
            reason = f": {self.model_error}" if self.model_error else ""
            raise ModelLoadError(f"User readable password can't be generated, model is not loaded{reason}")
        return MarkovSource(self.model, self.rng)

    def generate(self, restrictions: PasswordRestrictions, prefix: str = "") -> str:
        """Run one attempt of the pipeline. Restrictions are used as given."""
        r = restrictions
        source = self.source_for(r)

        password = source.generate(prefix)
        if r.min_length > 0:
            password = pad_to_length(password, r.min_length, source, self.max_pad_rounds)
        if r.max_length > 0:
            password = truncate_to_length(password, r.max_length, self.rng)

        restricted = ""
        for minimum, alphabet in (
            (r.min_special_chars, SPECIAL_CHARS),
            (r.min_digits, DIGITS),
            (r.min_letters, LETTERS),
        ):
            if minimum > 0:
                password = fill_character_group(
                    password, minimum, alphabet, r.max_length, _group(restricted), self.rng
                )
                restricted += alphabet

        return apply_casing("".join(password), r.all_upper_case, r.all_lower_case)

    def generate_with_retry(
        self,
        restrictions: PasswordRestrictions,
        max_attempts: int = DEFAULT_MAX_RETRY,
        prefix: str = "",
    ) -> str:
        r = validate_restrictions(restrictions, self.default_max_length)
        if START_TOKEN in prefix or END_TOKEN in prefix:
            raise ValidationError("Parameter prefix contains reserved characters")
        last_error: Optional[PasswordGenError] = None
        for attempt in range(1, max(1, max_attempts) + 1):
            try:
                return self.generate(r, prefix)
            except PasswordGenError as e:
                if not e.retryable:
                    raise
                logger.debug("Attempt %d/%d failed: %s", attempt, max_attempts, e)
                last_error = e
        logger.warning("Password generation failed after %d attempts: %s", max_attempts, last_error)
        raise last_error
