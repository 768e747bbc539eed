"""STL decoding (binary + ASCII) with length-based format detection.

Binary STL layout:
    80-byte header | uint32 LE triangle count | N x 50-byte records
    record = normal (3 x f32) + 3 vertices (3 x 3 x f32) + uint16 attribute

Binary headers may legitimately start with ``solid``, so the declared
triangle count is checked against the buffer length before the ASCII
keyword is trusted.

Decoding never raises for bad input; callers get a ``DecodeError`` value.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum

import numpy as np

from .mesh import Mesh, pick_index_format

logger = logging.getLogger(__name__)

HEADER_SIZE = 80
PREAMBLE_SIZE = 84
RECORD_SIZE = 50

_RECORD = np.dtype([
    ("normal", "<f4", (3,)),
    ("vertices", "<f4", (3, 3)),
    ("attribute", "<u2"),
])


class DecodeErrorKind(str, Enum):
    too_small = "too_small"
    truncated = "truncated"
    no_vertices = "no_vertices"
    unsupported_format = "unsupported_format"


@dataclass(frozen=True)
class DecodeError:
    kind: DecodeErrorKind
    message: str

    def __str__(self) -> str:
        return self.message


def _declared_length(data: bytes) -> int:
    count = int(np.frombuffer(data, dtype="<u4", count=1, offset=HEADER_SIZE)[0])
    return PREAMBLE_SIZE + count * RECORD_SIZE


def detect_format(data: bytes) -> str:
    """Return ``"binary"`` or ``"ascii"`` for a buffer of at least 84 bytes."""
    if _declared_length(data) == len(data):
        return "binary"
    if data[:5].lower() == b"solid":
        return "ascii"
    return "binary"


def _swap_yz(vectors: np.ndarray) -> np.ndarray:
    """Z-up -> Y-up: (x, y, z) -> (x, z, y)."""
    return vectors[:, [0, 2, 1]]


def _finish(positions, normals, swap_yz: bool, wide: bool) -> Mesh:
    count = len(positions)
    triangles = np.arange(count, dtype=np.int64).reshape(-1, 3)
    if swap_yz:
        positions = _swap_yz(positions)
        normals = _swap_yz(normals)
        # The axis swap is a reflection; reverse winding so faces stay CCW
        triangles = triangles[:, ::-1]
    return Mesh(positions=positions, normals=normals, indices=triangles.ravel(),
                index_format=pick_index_format(count, wide))


def decode_binary(data: bytes, swap_yz: bool = False, wide: bool = False):
    """Decode a binary STL buffer. Returns ``Mesh`` or ``DecodeError``."""
    if len(data) < PREAMBLE_SIZE:
        return DecodeError(DecodeErrorKind.too_small, "Binary STL too small.")

    expected = _declared_length(data)
    if expected > len(data):
        return DecodeError(DecodeErrorKind.truncated, "Binary STL truncated.")

    tri_count = (expected - PREAMBLE_SIZE) // RECORD_SIZE
    if expected < len(data):
        # Some exporters append trailing bytes; clamp to what is available
        tri_count = (len(data) - PREAMBLE_SIZE) // RECORD_SIZE
        logger.debug(f"Binary STL has {len(data) - expected} trailing bytes; "
                     f"reading {tri_count} triangles")

    if tri_count == 0:
        return DecodeError(DecodeErrorKind.no_vertices, "Binary STL had no triangles.")

    records = np.frombuffer(data, dtype=_RECORD, count=tri_count, offset=PREAMBLE_SIZE)
    finite = (np.isfinite(records["vertices"]).all(axis=(1, 2))
              & np.isfinite(records["normal"]).all(axis=1))
    if not finite.all():
        logger.warning(f"Binary STL: dropped {int((~finite).sum())} non-finite triangles")
        records = records[finite]
        if len(records) == 0:
            return DecodeError(DecodeErrorKind.no_vertices,
                               "Binary STL had no finite triangles.")
    positions = records["vertices"].reshape(-1, 3).astype(np.float32)
    normals = np.repeat(records["normal"], 3, axis=0).astype(np.float32)
    return _finish(positions, normals, swap_yz, wide)


def _parse_floats(tokens) -> tuple | None:
    try:
        values = tuple(float(t) for t in tokens)
    except ValueError:
        return None
    if not all(math.isfinite(v) for v in values):
        return None
    return values


def decode_ascii(data: bytes, swap_yz: bool = False, wide: bool = False):
    """Decode an ASCII STL buffer. Returns ``Mesh`` or ``DecodeError``.

    Malformed ``facet normal`` / ``vertex`` lines are skipped; only a
    buffer with fewer than three good vertices is rejected.
    """
    text = data.decode("ascii", errors="replace")

    verts = []
    norms = []
    current_normal = (0.0, 1.0, 0.0)
    skipped = 0

    for raw in text.splitlines():
        line = raw.strip()
        lowered = line.lower()
        if lowered.startswith("facet normal"):
            parts = line.split()
            values = _parse_floats(parts[2:5]) if len(parts) >= 5 else None
            if values is None:
                skipped += 1
                continue
            current_normal = values
        elif lowered.startswith("vertex"):
            parts = line.split()
            values = _parse_floats(parts[1:4]) if len(parts) >= 4 else None
            if values is None:
                skipped += 1
                continue
            verts.append(values)
            norms.append(current_normal)

    if skipped:
        logger.warning(f"ASCII STL: skipped {skipped} malformed lines")

    if len(verts) < 3:
        return DecodeError(DecodeErrorKind.no_vertices, "ASCII STL had no vertices.")

    # Drop a dangling partial triangle
    usable = len(verts) - len(verts) % 3
    positions = np.asarray(verts[:usable], dtype=np.float32)
    normals = np.asarray(norms[:usable], dtype=np.float32)
    return _finish(positions, normals, swap_yz, wide)


def decode_stl(data: bytes, swap_yz: bool = False, wide: bool = False):
    """Decode binary or ASCII STL bytes into a ``Mesh``.

    Returns a ``DecodeError`` instead of raising on bad input.
    """
    if data is None or len(data) < PREAMBLE_SIZE:
        return DecodeError(DecodeErrorKind.too_small, "STL too small.")
    data = bytes(data)
    if detect_format(data) == "binary":
        return decode_binary(data, swap_yz=swap_yz, wide=wide)
    return decode_ascii(data, swap_yz=swap_yz, wide=wide)


# ── Encoding (tooling / fixtures) ─────────────────────────────────

def encode_binary_stl(mesh: Mesh, header: bytes = b"") -> bytes:
    """Serialise a mesh as binary STL with per-face normals."""
    tris = mesh.positions[mesh.triangles.astype(np.int64)]
    face_normals = np.cross(tris[:, 1] - tris[:, 0], tris[:, 2] - tris[:, 0])
    lengths = np.linalg.norm(face_normals, axis=1, keepdims=True)
    face_normals = np.divide(face_normals, lengths,
                             out=np.zeros_like(face_normals), where=lengths > 1e-12)

    records = np.zeros(len(tris), dtype=_RECORD)
    records["normal"] = face_normals
    records["vertices"] = tris
    head = header[:HEADER_SIZE].ljust(HEADER_SIZE, b"\0")
    count = np.array([len(tris)], dtype="<u4").tobytes()
    return head + count + records.tobytes()


def encode_ascii_stl(mesh: Mesh, name: str = "worldbuilder") -> bytes:
    tris = mesh.positions[mesh.triangles.astype(np.int64)]
    lines = [f"solid {name}"]
    for tri in tris:
        n = np.cross(tri[1] - tri[0], tri[2] - tri[0])
        length = float(np.linalg.norm(n))
        if length > 1e-12:
            n = n / length
        lines.append(f"  facet normal {n[0]:e} {n[1]:e} {n[2]:e}")
        lines.append("    outer loop")
        for v in tri:
            lines.append(f"      vertex {v[0]:e} {v[1]:e} {v[2]:e}")
        lines.append("    endloop")
        lines.append("  endfacet")
    lines.append(f"endsolid {name}")
    return ("\n".join(lines) + "\n").encode("ascii")
