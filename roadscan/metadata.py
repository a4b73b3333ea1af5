from __future__ import annotations

from typing import Dict, Mapping, Tuple

from .types import DefectLabel

# Spanish class names found in some road-survey dataset exports.
_ALIASES = {
    "hueco": DefectLabel.POTHOLE,
    "bache": DefectLabel.POTHOLE,
    "grieta": DefectLabel.CRACK,
    "fisura": DefectLabel.CRACK,
}


def load_class_names(metadata_path: str) -> Dict[int, str]:
    """
    Load class names from an exported model's `metadata.yaml`.

    Only the simple mapping written next to YOLO exports is understood:

        names:
          0: pothole
          1: crack

    Parsing stops at the next top-level key.
    """

    names: Dict[int, str] = {}
    in_names = False

    with open(metadata_path, "r", encoding="utf-8") as f:
        for raw in f:
            if not raw.strip() or raw.lstrip().startswith("#"):
                continue
            line = raw.strip()
            if line == "names:":
                in_names = True
                continue
            if not in_names:
                continue
            if not raw[:1].isspace():
                break

            # Parse "id: label"
            if ":" not in line:
                continue
            left, right = line.split(":", 1)
            left = left.strip()
            right = right.strip().strip("'").strip('"')
            if not left.isdigit():
                continue
            names[int(left)] = right

    return names


def label_table_from_names(names: Mapping[int, str]) -> Tuple[DefectLabel, ...]:
    """
    Map a model's {index: name} table onto the closed defect label set.

    Indices must be contiguous from 0.
    """

    if not names:
        raise ValueError("Model metadata lists no class names")
    if sorted(names) != list(range(len(names))):
        raise ValueError(f"Class indices must be contiguous from 0, got {sorted(names)}")

    table = []
    for idx in range(len(names)):
        name = names[idx].strip().lower()
        if name in _ALIASES:
            table.append(_ALIASES[name])
            continue
        try:
            table.append(DefectLabel(name))
        except ValueError:
            raise ValueError(f"Class {idx} ({names[idx]!r}) is not a known defect label") from None
    return tuple(table)
