#!/usr/bin/env python3
"""
Build render submeshes and a welded manifold from a triangle mesh file.

Loads the mesh with trimesh, feeds every face into a ManifoldBuilder,
connects it by flood fill, optionally subdivides and smooths normals, then
finalizes into in-memory render meshes and reports the result.

Usage:
    venv/bin/python3 scripts/build_manifold.py --input model.stl
    venv/bin/python3 scripts/build_manifold.py --input model.glb --subdivide 2 --smooth-angle 35 --output out/manifold.stl

Exit codes:
    0  manifold built
    1  mesh rejected (not connected, index overflow)
"""
import sys
import argparse
import json
import logging
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import trimesh

from manifold_builder import ManifoldBuilder, ManifoldBuilderConfig
from mesh_errors import ConnectivityError, ManifoldError
from normal_smoothing import SmoothNormalsConfig
from render_sink import ArrayMeshSink

logger = logging.getLogger("build_manifold")


def builder_from_trimesh(mesh: trimesh.Trimesh, builder: ManifoldBuilder, flat_normals: bool) -> None:
    """Append every face of *mesh* to *builder*."""
    for face in mesh.faces:
        pos0, pos1, pos2 = mesh.vertices[face]
        if flat_normals:
            builder.add_triangle(pos0, pos1, pos2)
        else:
            builder.add_triangle_no_normals(pos0, pos1, pos2)


def main():
    parser = argparse.ArgumentParser(
        description="Build a welded manifold from a triangle mesh"
    )
    parser.add_argument(
        "--input", required=True, type=str, help="Mesh file (STL/OBJ/GLB/PLY)"
    )
    parser.add_argument(
        "--output", type=str, default=None,
        help="Export the manifold to this path (format from extension)",
    )
    parser.add_argument(
        "--subdivide", type=int, default=0,
        help="Number of 1-to-4 subdivision passes (default: 0)",
    )
    parser.add_argument(
        "--smooth-angle", type=float, default=None,
        help="Generate smooth normals with this max angle in degrees",
    )
    parser.add_argument(
        "--edge-epsilon", type=float, default=0.0,
        help="Connect edges whose endpoints differ by less than this on every "
             "axis (default: exact flood-fill connection)",
    )
    parser.add_argument(
        "--json", action="store_true",
        help="Print the summary as JSON",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="DEBUG logging",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    mesh = trimesh.load(args.input, force="mesh")
    logger.info("Loaded %s: %d vertices, %d faces", args.input, len(mesh.vertices), len(mesh.faces))

    builder = ManifoldBuilder(ManifoldBuilderConfig(edge_match_epsilon=args.edge_epsilon))
    builder_from_trimesh(mesh, builder, flat_normals=args.smooth_angle is None)

    try:
        if args.edge_epsilon > 0.0:
            connections = builder.auto_connect_all_edges()
            logger.info("Connected %d edges with epsilon %g", connections, args.edge_epsilon)
            if not builder.is_connected:
                raise ConnectivityError(
                    f"Mesh is not connected with edge epsilon {args.edge_epsilon:g}"
                )
        else:
            builder.connect_and_validate()

        for _ in range(args.subdivide):
            builder.subdivide4()

        if args.smooth_angle is not None:
            builder.apply_smooth_normals(SmoothNormalsConfig(max_angle_deg=args.smooth_angle))

        sink = ArrayMeshSink()
        result = builder.finalize({}, sink)
    except ManifoldError as exc:
        logger.error("Could not build manifold: %s", exc)
        sys.exit(1)

    manifold = result.manifold_mesh
    exported = manifold.to_trimesh()
    summary = {
        "input": args.input,
        "triangles": builder.num_tri,
        "submeshes": len(result.submeshes),
        "render_vertices": sum(submesh.mesh.vertex_count for submesh in result.submeshes),
        "manifold_vertices": manifold.vertex_count,
        "manifold_triangles": manifold.triangle_count,
        "watertight": bool(exported.is_watertight),
    }

    if args.output:
        out_path = Path(args.output)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        exported.export(str(out_path))
        summary["output"] = str(out_path)

    if args.json:
        print(json.dumps(summary, indent=2))
    else:
        print(f"Triangles:          {summary['triangles']}")
        print(f"Submeshes:          {summary['submeshes']}")
        print(f"Render vertices:    {summary['render_vertices']}")
        print(f"Manifold vertices:  {summary['manifold_vertices']}")
        print(f"Manifold triangles: {summary['manifold_triangles']}")
        print(f"Watertight:         {summary['watertight']}")
        if args.output:
            print(f"Output:             {summary['output']}")


if __name__ == "__main__":
    main()
