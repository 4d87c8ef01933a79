import os
import pytest
from PIL import Image

import artifact_cache
from artifact_cache import SerializedDmi, SerializedState
from dmi_file import Dmi, State
from errors import CacheError, InvalidValueError, MissingArtifactError


def colored_state(name="s", colors=((255, 0, 0, 255), (0, 255, 0, 255)), size=(4, 4)):
    frames = [[Image.new("RGBA", size, c) for c in colors]]
    return State(name=name, dirs=1, frame_count=len(colors), delays=[1.0] * len(colors), loop=1,
                 rewind=True, movement=False, hotspots=["0,0"] + [""] * (len(colors) - 1), frames=frames)


def test_tile_key_is_content_derived():
    a = Image.new("RGBA", (4, 4), (1, 2, 3, 4))
    b = Image.new("RGBA", (4, 4), (1, 2, 3, 4))
    c = Image.new("RGBA", (4, 4), (1, 2, 3, 5))
    assert artifact_cache.tile_key(a) == artifact_cache.tile_key(b)
    assert artifact_cache.tile_key(a) != artifact_cache.tile_key(c)

def test_tile_key_includes_size():
    assert artifact_cache.tile_key(Image.new("RGBA", (2, 8))) != artifact_cache.tile_key(Image.new("RGBA", (8, 2)))

def test_persist_state_writes_tiles(tmp_path):
    serialized = artifact_cache.persist_state(colored_state(), str(tmp_path))
    assert isinstance(serialized, SerializedState)
    assert serialized.delays == [1.0, 1.0]
    assert serialized.hotspots == ["0,0", ""]
    assert len(serialized.frames) == 1 and len(serialized.frames[0]) == 2
    for key in serialized.frames[0]:
        assert os.path.isfile(artifact_cache.tile_path(str(tmp_path), key))

def test_identical_tiles_share_one_file(tmp_path):
    state = colored_state(colors=((9, 9, 9, 255), (9, 9, 9, 255)))
    serialized = artifact_cache.persist_state(state, str(tmp_path))
    assert serialized.frames[0][0] == serialized.frames[0][1]
    assert len(os.listdir(tmp_path)) == 1

def test_states_share_keys(tmp_path):
    first = artifact_cache.persist_state(colored_state("a"), str(tmp_path))
    second = artifact_cache.persist_state(colored_state("b"), str(tmp_path))
    assert first.frame_key == second.frame_key
    assert len(os.listdir(tmp_path)) == 2

def test_frame_key_changes_with_content(tmp_path):
    first = artifact_cache.persist_state(colored_state(), str(tmp_path))
    second = artifact_cache.persist_state(colored_state(colors=((0, 0, 0, 255), (0, 255, 0, 255))), str(tmp_path))
    assert first.frame_key != second.frame_key

def test_materialize_state_roundtrip(tmp_path):
    state = colored_state()
    state.extra = [(2, "custom", "value")]
    serialized = artifact_cache.persist_state(state, str(tmp_path))
    restored = artifact_cache.materialize_state(serialized, str(tmp_path))
    assert restored.name == state.name
    assert (restored.loop, restored.rewind, restored.movement) == (1, True, False)
    assert restored.extra == [(2, "custom", "value")]
    assert [t.tobytes() for t in restored.frames[0]] == [t.tobytes() for t in state.frames[0]]

def test_materialize_missing_artifact(tmp_path):
    serialized = artifact_cache.persist_state(colored_state(), str(tmp_path))
    missing = artifact_cache.tile_path(str(tmp_path), serialized.frames[0][1])
    os.remove(missing)
    with pytest.raises(MissingArtifactError) as excinfo:
        artifact_cache.materialize_state(serialized, str(tmp_path))
    assert excinfo.value.path == missing

def test_materialize_after_purge(tmp_path):
    scratch = tmp_path / "scratch"
    serialized = artifact_cache.persist_state(colored_state(), str(scratch))
    artifact_cache.purge(str(scratch), soft=False)
    with pytest.raises(MissingArtifactError):
        artifact_cache.materialize_state(serialized, str(scratch))

def test_materialize_corrupt_artifact(tmp_path, capsys):
    serialized = artifact_cache.persist_state(colored_state(), str(tmp_path))
    with open(artifact_cache.tile_path(str(tmp_path), serialized.frames[0][0]), "wb") as f:
        f.write(b"not a png")
    with pytest.raises(CacheError) as excinfo:
        artifact_cache.materialize_state(serialized, str(tmp_path))
    assert not isinstance(excinfo.value, MissingArtifactError)
    assert "Error: Could not read cached frame" in capsys.readouterr().out

def test_materialize_inconsistent_counts(tmp_path):
    serialized = artifact_cache.persist_state(colored_state(), str(tmp_path))
    serialized.frame_count = 3
    with pytest.raises(InvalidValueError):
        artifact_cache.materialize_state(serialized, str(tmp_path))

def test_persist_and_materialize_dmi(tmp_path):
    dmi = Dmi(name="icon", width=4, height=4, states=[colored_state("a"), colored_state("b")],
              extra=[(3, "author", "me")])
    serialized = artifact_cache.persist_dmi(dmi, str(tmp_path / "temp"))
    assert serialized.temp == str(tmp_path / "temp")
    assert [s.name for s in serialized.states] == ["a", "b"]
    restored = artifact_cache.materialize_dmi(serialized)
    assert restored.metadata() == dmi.metadata()

def test_serialized_dmi_json_roundtrip(tmp_path):
    dmi = Dmi(name="icon", width=4, height=4, states=[colored_state()])
    serialized = artifact_cache.persist_dmi(dmi, str(tmp_path))
    again = SerializedDmi.model_validate_json(serialized.model_dump_json())
    assert again == serialized

def test_purge_soft_keeps_non_empty(tmp_path):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    (scratch / "tile.png").write_bytes(b"x")
    artifact_cache.purge(str(scratch), soft=True)
    assert scratch.exists()

def test_purge_soft_removes_empty(tmp_path):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    artifact_cache.purge(str(scratch), soft=True)
    assert not scratch.exists()

def test_purge_hard_removes_contents(tmp_path):
    scratch = tmp_path / "scratch"
    (scratch / "nested").mkdir(parents=True)
    (scratch / "nested" / "tile.png").write_bytes(b"x")
    artifact_cache.purge(str(scratch), soft=False)
    assert not scratch.exists()

@pytest.mark.parametrize("soft", [True, False])
def test_purge_missing_path_is_noop(tmp_path, soft):
    artifact_cache.purge(str(tmp_path / "gone"), soft=soft)
