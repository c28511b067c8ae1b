from dataclasses import dataclass


@dataclass(frozen=True, slots=True, eq=False)
class ImageReference:
    """Container image reference, optionally pinned to a digest.

    Either ``repository@digest`` (e.g. ``ghcr.io/org/app@sha256:abcd``)
    or any other reference such as ``ghcr.io/org/app:v1.2``.
    Only the ``@`` separator is inspected, malformed strings are kept as is.
    """

    reference: str

    def _parts(self) -> list[str] | None:
        parts = self.reference.split("@")
        if len(parts) != 2:
            return None
        return parts

    @property
    def repository(self) -> str | None:
        """Repository part of the reference, left of `@`"""
        parts = self._parts()
        return parts[0] if parts else None

    @property
    def digest(self) -> str | None:
        """Digest part of the reference, right of `@`"""
        parts = self._parts()
        return parts[1] if parts else None

    def __str__(self):
        return self.reference

    def __eq__(self, other):
        if isinstance(other, (ImageReference, str)):
            return str(self) == str(other)
        return NotImplemented

    def __hash__(self):
        return hash(self.reference)

    def __bool__(self):
        return bool(self.reference)
