"""
Shard detection for assets split across several files.

A logical asset such as `model-00001-of-00004.safetensors` stands for four
files that must all be present. Names are regenerated with the zero-padding
of the count found in the input.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

SHARD_PATTERN = re.compile(r"^(?P<base>.+)-(?P<index>\d+)-of-(?P<count>\d+)\.(?P<ext>[^/]+)$")


@dataclass(frozen=True)
class ShardSet:
    base: str
    count: int
    width: int
    extension: str

    def filename(self, index: int) -> str:
        """Name of shard `index` (1-based)."""
        if not 1 <= index <= self.count:
            raise IndexError(f"Shard index {index} out of range 1..{self.count}")
        return f"{self.base}-{index:0{self.width}d}-of-{self.count:0{self.width}d}.{self.extension}"

    @property
    def filenames(self) -> List[str]:
        return [self.filename(i) for i in range(1, self.count + 1)]

    @property
    def representative(self) -> str:
        return self.filename(1)


def parse_shard_set(filename: str) -> Optional[ShardSet]:
    """
    Detect the `<base>-<i>-of-<N>.<ext>` pattern.

    The index in the input is ignored: the set always covers 1..N.

    Examples:
        >>> parse_shard_set("model-00002-of-00004.safetensors").filenames[0]
        'model-00001-of-00004.safetensors'
        >>> parse_shard_set("config.json") is None
        True
    """
    match = SHARD_PATTERN.match(filename)
    if not match:
        return None

    count_text = match.group("count")
    count = int(count_text)
    if count < 1:
        return None

    return ShardSet(
        base=match.group("base"),
        count=count,
        width=len(count_text),
        extension=match.group("ext"),
    )
