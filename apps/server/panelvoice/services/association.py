from __future__ import annotations

from typing import Sequence

from panelvoice.models.entities import AssociatedText, Region, TextFragment


class TextAssociator:
    """Assigns recognized fragments to detected regions.

    A fragment belongs to the first region (in detection order) whose box fully
    contains it. Within a region, fragments are read top to bottom and joined
    with single spaces. Regions without fragments are kept with empty text.
    """

    def associate(
        self,
        regions: Sequence[Region],
        fragments: Sequence[TextFragment],
    ) -> list[AssociatedText]:
        buckets: list[list[TextFragment]] = [[] for _ in regions]
        for fragment in fragments:
            for index, region in enumerate(regions):
                if region.box.contains(fragment.box):
                    buckets[index].append(fragment)
                    break

        associated: list[AssociatedText] = []
        for region, contained in zip(regions, buckets):
            # sorted() is stable, so fragments on the same line keep recognizer order
            ordered = sorted(contained, key=lambda fragment: fragment.box.y)
            associated.append(
                AssociatedText(
                    region=region,
                    text=" ".join(fragment.text for fragment in ordered),
                    fragments=tuple(ordered),
                )
            )
        return associated


text_associator = TextAssociator()
