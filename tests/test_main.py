import json
import runpy
import sys
from io import BytesIO
import pytest
from PIL import Image

import main
from dmi_file import Dmi, State


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    # Settings are read from the working directory
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def dmi_path(workdir):
    frames = [[Image.new("RGBA", (8, 8), (d * 40, 0, 200, 255))] for d in range(4)]
    walk = State(name="walk", dirs=4, frame_count=1, delays=[1.0], loop=0, rewind=False,
                 movement=True, hotspots=[""], frames=frames)
    path = workdir / "mob.dmi"
    Dmi(name="mob", width=8, height=8, states=[walk]).save(str(path))
    return path


def test_describe(dmi_path):
    text = main.describe(Dmi.open(str(dmi_path)))
    assert text.splitlines()[0] == "mob: 8x8, 1 state(s)"
    assert '"walk" dirs=4 frames=1 delays=1 loop=0 movement' in text

def test_info_command(dmi_path, capsys):
    assert main.run(["info", str(dmi_path)]) == 0
    assert "mob: 8x8" in capsys.readouterr().out

def test_first_run_writes_settings(dmi_path, workdir):
    main.run(["info", str(dmi_path)])
    settings = json.loads((workdir / ".dmisettings").read_text())
    assert settings["Default Resize Method"] == "nearest"

def test_resize_command(dmi_path, workdir, capsys):
    output = workdir / "big.dmi"
    assert main.run(["resize", str(dmi_path), "16", "16", "-o", str(output)]) == 0
    assert "Saved" in capsys.readouterr().out
    resized = Dmi.open(str(output))
    assert (resized.width, resized.height) == (16, 16)
    assert Dmi.open(str(dmi_path)).width == 8

def test_resize_uses_configured_method(dmi_path, workdir):
    (workdir / ".dmisettings").write_text(json.dumps({"Default Resize Method": "lanczos3"}))
    args = main.build_parser(main.load_settings()).parse_args(["resize", str(dmi_path), "4", "4"])
    assert args.method == "lanczos3"

def test_crop_command_in_place(dmi_path):
    assert main.run(["crop", str(dmi_path), "2", "2", "4", "4"]) == 0
    assert Dmi.open(str(dmi_path)).width == 4

def test_expand_command(dmi_path, workdir):
    output = workdir / "wide.dmi"
    assert main.run(["expand", str(dmi_path), "4", "0", "16", "8", "-o", str(output)]) == 0
    tile = Dmi.open(str(output)).states[0].frames[1][0]
    assert tile.getpixel((0, 0)) == (0, 0, 0, 0)
    assert tile.getpixel((4, 0)) == (40, 0, 200, 255)

def test_merge_command(dmi_path, workdir, capsys):
    sheet = workdir / "sheet.png"
    buffer = BytesIO()
    Image.new("RGBA", (8, 32), (9, 9, 9, 255)).save(buffer, format="PNG")
    sheet.write_bytes(buffer.getvalue())
    output = workdir / "merged.dmi"
    assert main.run(["merge", str(sheet), str(dmi_path), str(output)]) == 0
    assert "Merged" in capsys.readouterr().out
    merged = Dmi.open(str(output))
    assert merged.states[0].frames[3][0].getpixel((0, 0)) == (9, 9, 9, 255)

def test_missing_file_reports_error(workdir, capsys):
    assert main.run(["info", str(workdir / "nope.dmi")]) == 1
    assert capsys.readouterr().out.startswith("Error:")

def test_invalid_file_reports_error(workdir, capsys):
    path = workdir / "plain.dmi"
    Image.new("RGBA", (8, 8)).save(str(path), format="PNG")
    assert main.run(["info", str(path)]) == 1
    assert "Error:" in capsys.readouterr().out

def test_unknown_method_rejected(dmi_path):
    with pytest.raises(SystemExit):
        main.run(["resize", str(dmi_path), "4", "4", "--method", "sinc"])

def test_module_entry_point(dmi_path, monkeypatch):
    monkeypatch.setattr(sys, "argv", ["main.py", "info", str(dmi_path)])
    with pytest.raises(SystemExit) as excinfo:
        runpy.run_module("main", run_name="__main__")
    assert excinfo.value.code == 0
