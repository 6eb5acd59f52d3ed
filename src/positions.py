"""Position value types and region classification."""

from dataclasses import dataclass
from enum import Enum


class Region(Enum):
    """Coarse world partition. Values are the canonical store identifiers."""

    PRIMARY = "overworld"
    SECONDARY = "nether"
    TERTIARY = "the_end"

    @property
    def table(self) -> str:
        """History table that receives samples for this region."""
        return self.value


@dataclass(frozen=True)
class Position:
    """A sampled block position."""

    x: int
    z: int
    region: Region


@dataclass(frozen=True)
class SampleRecord:
    """One novel position observation for an agent."""

    agent: str
    position: Position


class RegionClassifier:
    """Maps free-form world identifiers onto the closed Region set.

    The secondary marker is checked before the tertiary marker, so an
    identifier containing both classifies as SECONDARY.
    """

    def __init__(self, secondary_marker: str = "nether", tertiary_marker: str = "end") -> None:
        self._secondary_marker = secondary_marker
        self._tertiary_marker = tertiary_marker

    def classify(self, world: str) -> Region:
        if self._secondary_marker in world:
            return Region.SECONDARY
        if self._tertiary_marker in world:
            return Region.TERTIARY
        return Region.PRIMARY


BLOCK_MIN = -(2 ** 31)
BLOCK_MAX = 2 ** 31 - 1


def to_block(coordinate: float) -> int:
    """Truncate a host coordinate toward zero.

    Raises:
        ValueError: If the coordinate is not finite or falls outside the
            32-bit range of the store's integer columns
    """
    block = int(coordinate)
    if not BLOCK_MIN <= block <= BLOCK_MAX:
        raise ValueError(f"Coordinate {coordinate!r} is outside the 32-bit block range")
    return block
