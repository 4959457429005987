"""Decimate and tidy a raw photogrammetry mesh for 3D printing.

Runs inside Blender:

    blender --background --python cleanup_mesh.py -- <input.obj> <output.obj> <ratio>

``ratio`` is the fraction of faces kept by the Decimate modifier.
"""
from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import List, Optional


MERGE_DISTANCE = 1e-5


@dataclass
class CleanupArgs:
    input_path: str
    output_path: str
    ratio: float


def parse_cli_args(argv: Optional[List[str]] = None) -> CleanupArgs:
    """Parse the script's own arguments (everything after ``--``)."""
    argv = list(sys.argv if argv is None else argv)
    if "--" in argv:
        argv = argv[argv.index("--") + 1:]

    if len(argv) != 3:
        raise SystemExit(
            "usage: blender --background --python cleanup_mesh.py -- "
            "<input.obj> <output.obj> <ratio>"
        )

    input_path, output_path, ratio_text = argv
    try:
        ratio = float(ratio_text)
    except ValueError:
        raise SystemExit(f"ratio must be a number, got {ratio_text!r}")
    if not 0 < ratio <= 1:
        raise SystemExit(f"ratio must be in (0, 1], got {ratio}")
    return CleanupArgs(input_path=input_path, output_path=output_path, ratio=ratio)


def clean_scene(bpy) -> None:
    bpy.ops.wm.read_factory_settings(use_empty=True)


def import_mesh(bpy, path: str):
    """Import an OBJ and join every imported mesh into one object."""
    bpy.ops.wm.obj_import(filepath=path)
    meshes = [o for o in bpy.data.objects if o.type == "MESH"]
    if not meshes:
        raise RuntimeError(f"No mesh objects imported from {path}")

    bpy.ops.object.select_all(action="DESELECT")
    for obj in meshes:
        obj.select_set(True)
    bpy.context.view_layer.objects.active = meshes[0]
    if len(meshes) > 1:
        bpy.ops.object.join()
    return bpy.context.view_layer.objects.active


def tidy_geometry(bpy, obj) -> None:
    """Merge duplicate vertices and drop loose geometry."""
    bpy.ops.object.mode_set(mode="EDIT")
    bpy.ops.mesh.select_all(action="SELECT")
    bpy.ops.mesh.remove_doubles(threshold=MERGE_DISTANCE)
    bpy.ops.mesh.delete_loose()
    bpy.ops.mesh.normals_make_consistent(inside=False)
    bpy.ops.object.mode_set(mode="OBJECT")


def decimate(bpy, obj, ratio: float) -> None:
    modifier = obj.modifiers.new(name="Decimate", type="DECIMATE")
    modifier.decimate_type = "COLLAPSE"
    modifier.ratio = ratio
    bpy.ops.object.modifier_apply(modifier=modifier.name)


def export_mesh(bpy, obj, path: str) -> None:
    bpy.ops.object.select_all(action="DESELECT")
    obj.select_set(True)
    bpy.context.view_layer.objects.active = obj
    bpy.ops.wm.obj_export(
        filepath=path,
        export_selected_objects=True,
        export_uv=False,
        export_materials=False,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_cli_args(argv)

    import bpy

    clean_scene(bpy)
    obj = import_mesh(bpy, args.input_path)
    before = len(obj.data.polygons)

    tidy_geometry(bpy, obj)
    decimate(bpy, obj, args.ratio)
    after = len(obj.data.polygons)

    export_mesh(bpy, obj, args.output_path)
    print(f"CLEANUP_COMPLETE: {before} -> {after} faces, written to {args.output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
