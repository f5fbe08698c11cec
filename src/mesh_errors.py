"""
Exceptions raised by the manifold construction engine.

Every failure is raised at the point it is detected and never retried
internally; callers decide whether to retry with different inputs.
"""


class ManifoldError(Exception):
    """Base exception for manifold construction errors."""
    pass


class ConnectivityError(ManifoldError):
    """Triangles do not form a single connected surface."""
    pass


class UnconnectableEdgeError(ManifoldError):
    """A requested edge has no matching partner in the candidate pool."""
    pass


class CapacityError(ManifoldError):
    """An index or submesh map value exceeds the unsigned 32-bit range."""
    pass


class AttributeAccessorError(ManifoldError):
    """The render sink did not provide a required attribute channel."""
    pass


class StaleTriangleError(ManifoldError, LookupError):
    """A triangle index was used after the triangle list was replaced."""
    pass
