"""
Render resource sink interface.

Finalization hands finished vertex and index buffers to a renderer through
this narrow contract:

1. ``RenderMeshSink.create_mesh`` allocates a mesh for a vertex count and an
   index buffer.
2. ``RenderMesh.attribute`` returns an accessor for an attribute channel, or
   None if the renderer does not support that channel.

``ArrayMeshSink`` is an in-memory implementation backed by numpy arrays,
used by the scripts and tests and convertible to ``trimesh.Trimesh``.
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional

import numpy as np
import trimesh


class MeshAttribute(Enum):
    """Vertex attribute channels a render mesh may expose."""
    POSITION = "position"
    NORMAL = "normal"
    TEXTURE_COORDINATE = "texture_coordinate"

    @property
    def components(self) -> int:
        return 2 if self is MeshAttribute.TEXTURE_COORDINATE else 3


class IndexType(Enum):
    """Index buffer element widths."""
    UNSIGNED_BYTE = "uint8"
    UNSIGNED_SHORT = "uint16"
    UNSIGNED_INT = "uint32"

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self.value)


class AttributeAccessor:
    """Read/write view over one attribute channel of a render mesh."""

    def __init__(self, buffer: np.ndarray):
        self._buffer = buffer

    def __len__(self) -> int:
        return int(self._buffer.shape[0])

    @property
    def components(self) -> int:
        return int(self._buffer.shape[1])

    def get(self, index: int) -> np.ndarray:
        return self._buffer[index].copy()

    def get_all(self) -> np.ndarray:
        return self._buffer.copy()

    def set(self, offset: int, values) -> None:
        """Write rows starting at vertex *offset*.  Accepts flat data."""
        rows = np.asarray(values, dtype=self._buffer.dtype).reshape(-1, self.components)
        end = offset + rows.shape[0]
        if offset < 0 or end > len(self):
            raise ValueError(
                f"Attribute write [{offset}, {end}) out of range for {len(self)} vertices"
            )
        self._buffer[offset:end] = rows


class RenderMesh(ABC):
    """A mesh resource owned by the renderer."""

    @property
    @abstractmethod
    def vertex_count(self) -> int:
        ...

    @property
    @abstractmethod
    def index_data(self) -> Optional[np.ndarray]:
        """Index buffer, or None for a non-indexed mesh."""
        ...

    @abstractmethod
    def attribute(self, kind: MeshAttribute) -> Optional[AttributeAccessor]:
        """Accessor for *kind*, or None if the channel is unavailable."""
        ...

    @abstractmethod
    def destroy(self) -> None:
        ...


class RenderMeshSink(ABC):
    """Allocates render meshes for finished buffers."""

    @abstractmethod
    def create_mesh(
        self,
        vertex_count: int,
        index_data: Optional[np.ndarray],
        index_type: Optional[IndexType],
    ) -> RenderMesh:
        ...


# ─── In-memory implementation ────────────────────────────────────────────────

ALL_ATTRIBUTES: FrozenSet[MeshAttribute] = frozenset(MeshAttribute)


class ArrayMesh(RenderMesh):
    """Render mesh stored as plain numpy arrays."""

    def __init__(
        self,
        vertex_count: int,
        index_data: Optional[np.ndarray] = None,
        attributes: Iterable[MeshAttribute] = ALL_ATTRIBUTES,
    ):
        self._vertex_count = int(vertex_count)
        self._index_data = index_data
        self._buffers: Dict[MeshAttribute, np.ndarray] = {
            kind: np.zeros((self._vertex_count, kind.components), dtype=np.float32)
            for kind in attributes
        }
        self.destroyed = False

    @property
    def vertex_count(self) -> int:
        return self._vertex_count

    @property
    def index_data(self) -> Optional[np.ndarray]:
        return self._index_data

    @property
    def triangle_count(self) -> int:
        if self._index_data is None:
            return self._vertex_count // 3
        return len(self._index_data) // 3

    def attribute(self, kind: MeshAttribute) -> Optional[AttributeAccessor]:
        buffer = self._buffers.get(kind)
        if buffer is None:
            return None
        return AttributeAccessor(buffer)

    def destroy(self) -> None:
        self._buffers.clear()
        self._index_data = None
        self.destroyed = True

    def to_trimesh(self) -> trimesh.Trimesh:
        """Convert to a trimesh, keeping vertex order and attributes."""
        if MeshAttribute.POSITION not in self._buffers:
            raise ValueError("Mesh has no position attribute")

        if self._index_data is None:
            faces = np.arange(self._vertex_count).reshape(-1, 3)
        else:
            faces = np.asarray(self._index_data, dtype=np.int64).reshape(-1, 3)

        kwargs = {}
        normals = self._buffers.get(MeshAttribute.NORMAL)
        if normals is not None:
            kwargs["vertex_normals"] = normals
        uvs = self._buffers.get(MeshAttribute.TEXTURE_COORDINATE)
        if uvs is not None:
            kwargs["visual"] = trimesh.visual.TextureVisuals(uv=uvs)

        return trimesh.Trimesh(
            vertices=self._buffers[MeshAttribute.POSITION],
            faces=faces,
            process=False,
            **kwargs,
        )


class ArrayMeshSink(RenderMeshSink):
    """Creates ``ArrayMesh`` objects exposing a fixed set of attributes."""

    def __init__(self, attributes: Iterable[MeshAttribute] = ALL_ATTRIBUTES):
        self.attributes = frozenset(attributes)
        self.created: List[ArrayMesh] = []

    def create_mesh(
        self,
        vertex_count: int,
        index_data: Optional[np.ndarray],
        index_type: Optional[IndexType],
    ) -> ArrayMesh:
        if index_data is not None and index_type is not None:
            if np.dtype(index_data.dtype) != index_type.dtype:
                raise ValueError(
                    f"Index data dtype {index_data.dtype} does not match {index_type}"
                )
        mesh = ArrayMesh(vertex_count, index_data, self.attributes)
        self.created.append(mesh)
        return mesh
