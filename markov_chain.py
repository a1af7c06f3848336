import json
import logging
import math
from bisect import bisect_right
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from errors import GenerationError, ModelLoadError, TrainingError

logger = logging.getLogger(__name__)

# Control characters never produced by the password alphabets
START_TOKEN = "\x02"
END_TOKEN = "\x03"

MINIMUM_PROBABILITY = 0.05

Context = Union[str, Sequence[str]]


def random_index(rng, n: int) -> int:
    """Draw an unbiased index in [0, n) from ``rng``."""
    try:
        return rng.randrange(n)
    except (OSError, NotImplementedError) as e:
        raise GenerationError("Random source failed, try again") from e


def make_pairs(symbols: Sequence[str], order: int) -> List[Tuple[str, str]]:
    """Sliding (context, next) pairs over the sentinel-padded symbols."""
    padded = [START_TOKEN] * order + list(symbols) + [END_TOKEN]
    return [
        ("".join(padded[i : i + order]), padded[i + order])
        for i in range(len(padded) - order)
    ]


# --------------------
# Sequence model
# --------------------
class SequenceModel:
    """Read-only k-order character transition table.

    Transitions are kept as integer counts so the serialized form reproduces
    probabilities exactly; ``transition_probability`` normalizes per context.
    """

    def __init__(
        self,
        order: int,
        frequencies: Dict[str, Dict[str, int]],
        mean: float = 0.0,
        std_dev: float = 0.0,
    ):
        if order < 1:
            raise ValueError("Model order must be at least 1")
        self._order = order
        self._frequencies = {ctx: dict(bucket) for ctx, bucket in frequencies.items()}
        self._mean = float(mean)
        self._std_dev = float(std_dev)
        # Cumulative weights per context for sampling
        self._cumulative: Dict[str, Tuple[List[str], List[int], int]] = {}
        for ctx, bucket in self._frequencies.items():
            symbols = sorted(bucket)
            cum: List[int] = []
            acc = 0
            for sym in symbols:
                acc += bucket[sym]
                cum.append(acc)
            self._cumulative[ctx] = (symbols, cum, acc)

    @property
    def order(self) -> int:
        return self._order

    @property
    def mean(self) -> float:
        return self._mean

    @property
    def std_dev(self) -> float:
        return self._std_dev

    def contexts(self) -> List[str]:
        return list(self._frequencies)

    def with_stats(self, mean: float, std_dev: float) -> "SequenceModel":
        return SequenceModel(self._order, self._frequencies, mean, std_dev)

    def transition_probability(self, context: Context, symbol: str) -> float:
        key = self._key(context)
        entry = self._cumulative.get(key)
        if entry is None:
            return 0.0
        return self._frequencies[key].get(symbol, 0) / entry[2]

    def sample(self, context: Context, rng) -> str:
        key = self._key(context)
        entry = self._cumulative.get(key)
        if entry is None:
            raise GenerationError("User readable password can't be generated, try again later")
        symbols, cum, total = entry
        r = random_index(rng, total)
        return symbols[bisect_right(cum, r)]

    def _key(self, context: Context) -> str:
        key = context if isinstance(context, str) else "".join(context)
        # A context of the wrong width can never have been observed
        return key if len(key) == self._order else ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mean": self._mean,
            "std_dev": self._std_dev,
            "chain": {"order": self._order, "transitions": self._frequencies},
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "SequenceModel":
        if not isinstance(payload, dict):
            raise ModelLoadError("Model payload must be a JSON object")
        chain = payload.get("chain")
        if not isinstance(chain, dict):
            raise ModelLoadError("Model payload is missing the chain")
        mean = payload.get("mean")
        std_dev = payload.get("std_dev")
        for name, value in (("mean", mean), ("std_dev", std_dev)):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ModelLoadError(f"Model field {name} must be a number")

        order = chain.get("order")
        if isinstance(order, bool) or not isinstance(order, int) or order < 1:
            raise ModelLoadError("Chain order must be a positive integer")
        transitions = chain.get("transitions")
        if not isinstance(transitions, dict) or not transitions:
            raise ModelLoadError("Chain transitions must be a non-empty object")
        for ctx, bucket in transitions.items():
            if len(ctx) != order:
                raise ModelLoadError(f"Context {ctx!r} does not match order {order}")
            if not isinstance(bucket, dict) or not bucket:
                raise ModelLoadError(f"Context {ctx!r} has no transitions")
            for sym, count in bucket.items():
                if len(sym) != 1 or isinstance(count, bool) or not isinstance(count, int) or count <= 0:
                    raise ModelLoadError(f"Invalid transition {ctx!r} -> {sym!r}")
        return cls(order, transitions, mean, std_dev)


# --------------------
# Training & scoring
# --------------------
def count_transitions(lines: Iterable[str], order: int) -> Dict[str, Dict[str, int]]:
    table: Dict[str, Dict[str, int]] = {}
    for line in lines:
        for ctx, nxt in make_pairs(list(line), order):
            bucket = table.setdefault(ctx, {})
            bucket[nxt] = bucket.get(nxt, 0) + 1
    return table


def score_pairs(symbols: Sequence[str], order: int) -> List[Tuple[str, str]]:
    """Sliding (context, next) pairs over the symbols themselves, unpadded."""
    return [
        ("".join(symbols[i : i + order]), symbols[i + order])
        for i in range(len(symbols) - order)
    ]


def sequence_probability(model: SequenceModel, text: str) -> float:
    """Geometric mean transition probability of ``text`` under ``model``.

    Unseen transitions count as MINIMUM_PROBABILITY instead of zero.
    """
    pairs = score_pairs(list(text), model.order)
    if not pairs:
        raise ValueError("Text too short for the chosen order")
    log_prob = 0.0
    for ctx, nxt in pairs:
        prob = model.transition_probability(ctx, nxt)
        log_prob += math.log10(prob if prob > 0 else MINIMUM_PROBABILITY)
    return 10 ** (log_prob / len(pairs))


def train_model(lines: Iterable[str], order: int = 2) -> SequenceModel:
    if order < 1:
        raise TrainingError("Model order must be at least 1")
    dataset = list(lines)
    if not dataset:
        raise TrainingError("Could not train data: dataset is empty")

    model = SequenceModel(order, count_transitions(dataset, order))
    # Samples no longer than the order have no pairs to score
    scores = np.array([sequence_probability(model, line) for line in dataset if len(line) > order])
    logger.info(
        "Trained order-%d model on %d samples (%d contexts, %d scored)",
        order,
        len(dataset),
        len(model.contexts()),
        len(scores),
    )
    if not scores.size:
        return model
    return model.with_stats(float(np.mean(scores)), float(np.std(scores)))


# --------------------
# Persistence
# --------------------
def load_dataset(path: str) -> List[str]:
    with open(path, "r", encoding="utf-8") as f:
        return [line.rstrip("\r\n") for line in f]


def save_model(model: SequenceModel, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(model.to_dict(), f)
    logger.info("Saved model to %s", path)


def load_model(path: str) -> SequenceModel:
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except OSError as e:
        raise ModelLoadError(f"Model file {path} can't be read: {e}") from e
    except ValueError as e:
        raise ModelLoadError(f"Model file {path} is corrupt: {e}") from e
    model = SequenceModel.from_dict(payload)
    logger.info("Loaded order-%d model from %s", model.order, path)
    return model


def describe_model(model: Optional[SequenceModel]) -> Dict[str, Any]:
    if model is None:
        return {"loaded": False}
    return {
        "loaded": True,
        "order": model.order,
        "contexts": len(model.contexts()),
        "mean": model.mean,
        "std_dev": model.std_dev,
    }
