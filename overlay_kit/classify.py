from __future__ import annotations

from typing import Optional

import numpy as np

from .errors import DecodeError
from .labels import LabelList
from .types import ClassificationResult, RegionOfInterest


def softmax(logits: np.ndarray) -> np.ndarray:
    """
    Numerically stable softmax over a 1-D logits vector.
    """

    z = np.asarray(logits, dtype=np.float64).reshape(-1)
    if z.size == 0:
        raise DecodeError("Cannot apply softmax to an empty logits vector.")
    if not np.all(np.isfinite(z)):
        raise DecodeError("Logits contain NaN or infinite values.")
    e = np.exp(z - z.max())
    return e / e.sum()


def decode_classification(
    logits: np.ndarray,
    labels: LabelList,
    region: Optional[RegionOfInterest] = None,
) -> ClassificationResult:
    """
    Raw logits (any shape that flattens to `num_classes`) -> arg-max label.
    """

    probs = softmax(logits)
    class_id = int(np.argmax(probs))
    return ClassificationResult(
        probabilities=probs,
        class_id=class_id,
        class_name=labels.name_for(class_id),
        score=float(probs[class_id]),
        region=region,
    )
