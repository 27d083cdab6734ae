from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterator, List, Sequence, Union


PathLike = Union[str, Path]

RIPENESS_LABELS = ("Early-Turning", "Green", "Late-Turning", "Red", "Turning", "White")


class LabelList:
    """
    Ordered class names indexed by the model's arg-max class id.

    Indices outside the list resolve to a synthetic `class<N>` label instead of
    raising, so a model exported with more classes than the label file still renders.
    """

    def __init__(self, names: Sequence[str] = RIPENESS_LABELS):
        self._names: List[str] = [str(n) for n in names]

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __repr__(self) -> str:
        return f"LabelList({self._names!r})"

    @staticmethod
    def placeholder(index: int) -> str:
        return f"class{index}"

    def name_for(self, index: int) -> str:
        if 0 <= index < len(self._names):
            return self._names[index]
        return self.placeholder(index)


def _names_from_mapping(mapping: Dict[int, str]) -> List[str]:
    if not mapping:
        return []
    # Gaps in the id mapping become placeholders so positions stay aligned.
    size = max(mapping) + 1
    return [mapping.get(i, LabelList.placeholder(i)) for i in range(size)]


def load_class_names(metadata_path: PathLike) -> Dict[int, str]:
    """
    Load class names from a lightweight `metadata.yaml` (as written by YOLO exports):

        names:
          0: Early-Turning
          1: Green
          ...

    Only the `names:` block is parsed, so PyYAML is not needed.
    """

    names: Dict[int, str] = {}
    in_names = False

    with open(metadata_path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line == "names:":
                in_names = True
                continue
            if not in_names:
                continue

            # Another top-level key ends the block.
            if not raw.startswith((" ", "\t")):
                break
            if ":" not in line:
                continue
            left, right = line.split(":", 1)
            left = left.strip()
            right = right.strip().strip("'").strip('"')
            if not left.isdigit():
                continue
            names[int(left)] = right

    return names


def load_labels(path: PathLike) -> LabelList:
    """
    Load a `LabelList` from `metadata.yaml` or a plain text file (one name per line).
    """

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Label file not found: {p}")
    if p.suffix.lower() in (".yaml", ".yml"):
        return LabelList(_names_from_mapping(load_class_names(p)))

    lines = p.read_text(encoding="utf-8").splitlines()
    return LabelList([ln.strip() for ln in lines if ln.strip() and not ln.strip().startswith("#")])
