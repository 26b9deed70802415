"""
Layer group model: which sublayers of a composite resource are shown,
and with which style.

A layer group's ``mode`` decides whether its members can be requested
individually.  ``NAMED`` and ``EO`` groups expose their sublayers, so the
preview can switch each one on/off and pick a style per sublayer.
``SINGLE`` and ``CONTAINER`` groups are always requested as one unit.

Style selection uses ``""`` as a sentinel for "use the server's default
style".  When cycling, the sentinel sits in front of the first style:

    (default) → a → b → c → (default) → ...

Usage
-----
    from mapterm.geo.layer_group import GroupMode, LayerGroupController
    groups = LayerGroupController.from_sublayers(GroupMode.NAMED, infos)
    groups.toggle(0)
    groups.cycle_style(1, -1)
    layers, styles = groups.effective_layer_list()
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

log = logging.getLogger(__name__)

DEFAULT_STYLE = ""
DEFAULT_STYLE_LABEL = "(default)"


class ValidationError(ValueError):
    """A request could not be built from the current selection."""


class GroupMode(str, enum.Enum):
    SINGLE = "SINGLE"
    NAMED = "NAMED"
    CONTAINER = "CONTAINER"
    EO = "EO"

    @classmethod
    def parse(cls, value: Optional[str]) -> "GroupMode":
        """Parse a server-reported mode string; unknown values mean SINGLE."""
        try:
            return cls((value or "").strip().upper())
        except ValueError:
            if value:
                log.debug("Unknown layer group mode %r, treating as SINGLE", value)
            return cls.SINGLE

    @property
    def toggleable(self) -> bool:
        return self in (GroupMode.NAMED, GroupMode.EO)


@dataclass
class SublayerInfo:
    """Sublayer description supplied by the metadata provider."""
    name: str
    default_style: str = DEFAULT_STYLE
    available_styles: List[str] = field(default_factory=list)


@dataclass
class LayerToggle:
    """Visibility + style of one sublayer in the preview."""
    name: str
    enabled: bool = True
    current_style: str = DEFAULT_STYLE
    available_styles: List[str] = field(default_factory=list)

    @property
    def style_label(self) -> str:
        return self.current_style or DEFAULT_STYLE_LABEL


def cycle_style_name(current: str, styles: List[str], direction: int) -> str:
    """Step through *styles* with the default sentinel before index 0."""
    if not styles:
        return current
    # position 0 is the sentinel, 1..n are the styles
    try:
        pos = styles.index(current) + 1 if current else 0
    except ValueError:
        pos = 0
    pos = (pos + direction) % (len(styles) + 1)
    return DEFAULT_STYLE if pos == 0 else styles[pos - 1]


class LayerGroupController:
    """Tracks enabled sublayers and their styles for one layer group."""

    def __init__(
        self,
        mode: GroupMode = GroupMode.SINGLE,
        layers: Optional[List[LayerToggle]] = None,
    ):
        self.mode = mode
        self.layers: List[LayerToggle] = list(layers or [])

    @classmethod
    def from_sublayers(
        cls, mode: GroupMode, infos: Iterable[SublayerInfo],
    ) -> "LayerGroupController":
        """Seed from metadata: every sublayer enabled with its group style."""
        layers = [
            LayerToggle(
                name=info.name,
                enabled=True,
                current_style=info.default_style,
                available_styles=list(info.available_styles),
            )
            for info in infos
        ]
        return cls(mode, layers)

    @property
    def can_toggle(self) -> bool:
        """True when sublayers may be switched individually."""
        return self.mode.toggleable and bool(self.layers)

    def __len__(self) -> int:
        return len(self.layers)

    def toggle(self, index: int) -> bool:
        """Flip the enabled flag of sublayer *index*.

        Returns the new state, or False when toggling is not allowed for
        this group mode.
        """
        if not self.can_toggle or not 0 <= index < len(self.layers):
            return False
        layer = self.layers[index]
        layer.enabled = not layer.enabled
        log.debug("Sublayer %s %s", layer.name,
                  "enabled" if layer.enabled else "disabled")
        return layer.enabled

    def cycle_style(self, index: int, direction: int) -> str:
        """Move sublayer *index* one style left (-1) or right (+1)."""
        if not self.can_toggle or not 0 <= index < len(self.layers):
            return DEFAULT_STYLE
        layer = self.layers[index]
        layer.current_style = cycle_style_name(
            layer.current_style, layer.available_styles, direction,
        )
        return layer.current_style

    def enabled_layers(self) -> List[LayerToggle]:
        return [layer for layer in self.layers if layer.enabled]

    def effective_layer_list(self) -> Tuple[str, str]:
        """CSV of enabled sublayer names and the parallel CSV of styles.

        Raises
        ------
        ValidationError
            If no sublayer is enabled.
        """
        enabled = self.enabled_layers()
        if not enabled:
            raise ValidationError("no layers enabled")
        names = ",".join(layer.name for layer in enabled)
        styles = ",".join(layer.current_style for layer in enabled)
        return names, styles


class StyleSelection:
    """Current style index for a plain (non-toggleable) resource."""

    def __init__(self, styles: Optional[List[str]] = None):
        self.styles: List[str] = list(styles or [])
        self.index = 0

    def set_styles(self, styles: List[str]) -> None:
        self.styles = list(styles)
        self.index = 0

    @property
    def current(self) -> str:
        if 0 <= self.index < len(self.styles):
            return self.styles[self.index]
        return DEFAULT_STYLE

    @property
    def label(self) -> str:
        return self.current or "default"

    def next(self) -> None:
        if self.styles:
            self.index = (self.index + 1) % len(self.styles)

    def prev(self) -> None:
        if self.styles:
            self.index = (self.index - 1) % len(self.styles)
