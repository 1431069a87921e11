"""Find the template fragments that land on a given canvas tile."""

import logging
from typing import Iterable, List, Tuple

from pixel_overlay.template import Template, TileFragment

logger = logging.getLogger(__name__)


class TemplateArray:
    """A priority-ordered view over a set of templates.

    Wraps a copy of the caller's list so sorting never reorders the store.
    """

    def __init__(self, templates: Iterable[Template]):
        self.templates: List[Template] = list(templates)

    def __len__(self) -> int:
        return len(self.templates)

    def sort_by_priority(self) -> "TemplateArray":
        # list.sort is stable: equal priorities keep insertion order
        self.templates.sort(key=lambda t: t.priority)
        return self

    def is_any_template_in_tile(self, prefix: str) -> bool:
        return any(t.touches_tile(prefix) for t in self.templates)

    def relevant_fragments(self, prefix: str) -> List[Tuple[Template, TileFragment]]:
        """One ``(template, fragment)`` pair per template touching ``prefix``."""
        matches = []
        for template in self.templates:
            if not template.touches_tile(prefix):
                continue
            fragment = template.fragment_for_tile(prefix)
            if fragment is not None:
                matches.append((template, fragment))
        return matches


def match_tile(templates: Iterable[Template], prefix: str
               ) -> List[Tuple[Template, TileFragment]]:
    """Fragments to draw on tile ``prefix``, lowest priority first.

    An empty list means nothing overlaps the tile; that is not an error.
    """
    ordered = TemplateArray(templates).sort_by_priority()
    if not ordered.is_any_template_in_tile(prefix):
        return []
    matches = ordered.relevant_fragments(prefix)
    logger.debug("Tile %s: %d template fragment(s)", prefix, len(matches))
    return matches
