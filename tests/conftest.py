import sys
from pathlib import Path

# Ensure repository root is on sys.path so tests can import top-level modules
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

import pytest


def render_set(st) -> str:
    """Canonical text for one set: single spaces, seconds-form intervals."""
    if st.kind == "REPETITION":
        return f"{st.count}x {render_set(st.body)}"
    if st.kind == "BLOCK":
        return "{ " + " ".join(render_set(s) for s in st.sets) + " }"
    d, s = st.distance, st.stroke
    mods = f"({', '.join(s.modifiers)})" if s.modifiers else ""
    return f"{d.value}{d.unit.value} {s.name}{mods} @{st.interval.seconds}s"


def render_workout(workout) -> str:
    return "".join(render_set(st) + "\n" for st in workout.sets)


@pytest.fixture
def render():
    return render_workout
