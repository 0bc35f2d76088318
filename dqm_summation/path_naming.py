"""
Summation Engine: Folder Path Derivation
========================================

Maps a key to the store folder its histogram lives in. Harvesting finds
online results again only by recomputing this path, so it must be a pure
function of the key and the provider's pretty names.
"""

from __future__ import annotations
from typing import Callable, Dict, Iterable, Mapping, Optional

from .core_types import Column, UNDEFINED, Values

# Legacy short names of detector halves.
SHELL_CODES: Dict[int, str] = {11: "_mI", 12: "_mO", 21: "_pI", 22: "_pO"}

DEFAULT_SIGNED_COLUMNS = ("PXDisk",)
DEFAULT_CODED_COLUMNS: Dict[str, Mapping[int, str]] = {
    "HalfCylinder": SHELL_CODES,
    "Shell": SHELL_CODES,
}


class PathNamer:
    """
    Builds ``top_folder/Name_value/.../`` paths.

    Rules per column, applied to the pretty name:
    - nameless columns are dropped
    - value 0 is hidden (``PXBarrel`` rather than ``PXBarrel_0``)
    - signed columns get an explicit ``+`` for positive values
    - coded columns use fixed short codes instead of numbers
    - the UNDEFINED sentinel is spelled out
    """

    def __init__(self, top_folder_name: str,
                 pretty: Callable[[Column], str],
                 signed_columns: Iterable[str] = DEFAULT_SIGNED_COLUMNS,
                 coded_columns: Optional[Mapping[str, Mapping[int, str]]] = None):
        self.top_folder_name = top_folder_name
        self._pretty = pretty
        self.signed_columns = frozenset(signed_columns)
        self.coded_columns = dict(DEFAULT_CODED_COLUMNS if coded_columns is None else coded_columns)

    def segment(self, column: Column, value: int) -> Optional[str]:
        name = self._pretty(column)
        if name == "":
            return None
        suffix = "" if value == 0 else f"_{value}"
        if name in self.signed_columns and value > 0:
            suffix = f"_+{value}"
        if name in self.coded_columns:
            suffix = self.coded_columns[name].get(value, "")
        if value == UNDEFINED:
            suffix = "_UNDEFINED"
        return name + suffix

    def make_path(self, key: Values) -> str:
        parts = [self.top_folder_name]
        for column, value in key:
            seg = self.segment(column, value)
            if seg is not None:
                parts.append(seg)
        return '/'.join(parts) + '/'

    __call__ = make_path
