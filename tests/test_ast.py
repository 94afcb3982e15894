import dataclasses

import pytest

try:
    import swimdsl as sd
except Exception as e:  # pragma: no cover
    pytest.skip(f"swimdsl unavailable: {e}", allow_module_level=True)


def test_nodes_are_frozen():
    st = sd.parse_workout("100m free @30s").sets[0]
    with pytest.raises(dataclasses.FrozenInstanceError):
        st.interval = sd.Interval(10)
    with pytest.raises(dataclasses.FrozenInstanceError):
        st.stroke.name = "back"


def test_sequences_are_tuples():
    workout = sd.parse_workout("{ 100m free (fast) @30s }")
    block = workout.sets[0]
    assert isinstance(workout.sets, tuple)
    assert isinstance(block.sets, tuple)
    assert isinstance(block.sets[0].stroke.modifiers, tuple)


def test_variant_tags():
    workout = sd.parse_workout("2x100m free @30s { 50m back @1:00 } 25m fly @20s")
    assert [st.kind for st in workout] == ["REPETITION", "BLOCK", "STATEMENT"]


def test_block_must_not_be_empty():
    with pytest.raises(ValueError):
        sd.Block(())


def test_repetition_rejects_bad_fields():
    body = sd.Statement(sd.Distance(50, sd.Unit.METERS), sd.Stroke("free"), sd.Interval(40))
    with pytest.raises(ValueError):
        sd.Repetition(0, body)
    with pytest.raises(TypeError):
        sd.Repetition(2, sd.Repetition(2, body))


def test_walk_paths_in_source_order():
    workout = sd.parse_workout("""
        200m free @3:00
        3x {
          50m kick @1:00
          2x25m fly @30s
        }
    """)
    paths = [(path, st.kind) for path, st in sd.walk(workout)]
    assert paths == [
        ("SET[0]", "STATEMENT"),
        ("SET[1]", "REPETITION"),
        ("SET[1].BODY", "BLOCK"),
        ("SET[1].BODY.SET[0]", "STATEMENT"),
        ("SET[1].BODY.SET[1]", "REPETITION"),
        ("SET[1].BODY.SET[1].BODY", "STATEMENT"),
    ]


def test_walk_empty_workout():
    assert list(sd.walk(sd.Workout())) == []


def test_error_format_with_caret():
    src = "100m free @30s\n  50m @30s"
    with pytest.raises(sd.WorkoutSyntaxError) as ei:
        sd.parse_workout(src)
    assert str(ei.value) == "2:7: expected stroke name, found '@'"
    assert ei.value.format(src) == (
        "syntax error at 2:7: expected stroke name, found '@'\n"
        "  50m @30s\n"
        "      ^"
    )


def test_error_format_without_source():
    with pytest.raises(sd.LexError) as ei:
        sd.parse_workout("100m free @30s\n/* open")
    assert ei.value.format() == "lex error at 2:1: unterminated block comment"


def test_error_format_after_non_ascii_comment():
    src = "# café\n100m @30s"
    with pytest.raises(sd.WorkoutSyntaxError) as ei:
        sd.parse_workout(src)
    assert ei.value.offset == len("# café\n100m ".encode("utf-8"))
    assert ei.value.format(src).splitlines()[1:] == ["100m @30s", "     ^"]
