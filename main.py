"""
SPDX-License-Identifier: GPL-3.0-only
Copyright © 2025 Keystone Intelligence LLC
Licensed under GPL v3 (see LICENSE file for details)
"""

import argparse
import sys

from config import APP_NAME, APP_VERSION, load_settings
from dmi_file import Dmi, ResizeMethod
from dmi_module import merge_spritesheet
from errors import DmiError


def describe(dmi: Dmi) -> str:
    lines = [f"{dmi.name or '<unnamed>'}: {dmi.width}x{dmi.height}, {len(dmi.states)} state(s)"]
    for state in dmi.states:
        flags = [flag for flag, on in (("rewind", state.rewind), ("movement", state.movement)) if on]
        lines.append(
            f'  "{state.name}" dirs={state.dirs} frames={state.frame_count} '
            f'delays={",".join(f"{d:g}" for d in state.delays)} loop={state.loop}'
            + (f" {' '.join(flags)}" if flags else "")
        )
    return "\n".join(lines)


def build_parser(settings: dict) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dmi-tool", description=f"{APP_NAME} command line tools")
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    sub = parser.add_subparsers(dest="command", required=True)

    info = sub.add_parser("info", help="Print the states of a DMI file")
    info.add_argument("dmi")

    resize = sub.add_parser("resize", help="Resample every frame to a new size")
    resize.add_argument("dmi")
    resize.add_argument("width", type=int)
    resize.add_argument("height", type=int)
    resize.add_argument("--method", default=settings["Default Resize Method"],
                        choices=[m.value for m in ResizeMethod])
    resize.add_argument("-o", "--output")

    for name, text in (("crop", "Cut every frame down to a window"),
                       ("expand", "Place every frame on a larger canvas")):
        cmd = sub.add_parser(name, help=text)
        cmd.add_argument("dmi")
        cmd.add_argument("x", type=int)
        cmd.add_argument("y", type=int)
        cmd.add_argument("width", type=int)
        cmd.add_argument("height", type=int)
        cmd.add_argument("-o", "--output")

    merge = sub.add_parser("merge", help="Copy a DMI's metadata into an edited spritesheet PNG")
    merge.add_argument("png")
    merge.add_argument("dmi")
    merge.add_argument("output")
    return parser


def run(argv=None) -> int:
    settings = load_settings()
    args = build_parser(settings).parse_args(argv)
    try:
        if args.command == "merge":
            merge_spritesheet(args.png, args.dmi, args.output)
            print(f"Merged '{args.png}' with metadata from '{args.dmi}' into '{args.output}'.")
            return 0

        dmi = Dmi.open(args.dmi)
        if args.command == "info":
            print(describe(dmi))
            return 0
        if args.command == "resize":
            dmi.resize(args.width, args.height, ResizeMethod.from_name(args.method))
        elif args.command == "crop":
            dmi.crop(args.x, args.y, args.width, args.height)
        elif args.command == "expand":
            dmi.expand(args.x, args.y, args.width, args.height)
        output = args.output or args.dmi
        dmi.save(output, column_cap=settings.get("Column Cap"))
        print(f"Saved '{output}' ({dmi.width}x{dmi.height}).")
        return 0
    except (DmiError, OSError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(run())
