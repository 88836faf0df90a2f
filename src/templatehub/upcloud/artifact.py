"""The templates produced by a successful build."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterator, List, Sequence, Tuple

from templatehub.upcloud.types import TemplateRecord

if TYPE_CHECKING:
    from templatehub.upcloud.api import UpCloudClient

logger = logging.getLogger(__name__)

BUILDER_ID = "upcloudltd.upcloud"


class Artifact:
    """One private template per zone, in the order the zones were configured."""

    builder_id = BUILDER_ID

    def __init__(self, templates: Sequence[TemplateRecord], client: UpCloudClient) -> None:
        self._templates: Tuple[TemplateRecord, ...] = tuple(templates)
        self._client = client

    @property
    def templates(self) -> Tuple[TemplateRecord, ...]:
        return self._templates

    @property
    def id(self) -> str:
        """``zone:uuid`` lines, one per template."""
        return "".join(f"{t.zone}:{t.uuid}\n" for t in self._templates)

    def files(self) -> List[str]:
        return []

    def destroy(self) -> None:
        """
        Delete every template of the artifact.

        Stops at the first failed deletion; templates after it are left in place.

        Raises:
            UpCloudApiError: If a deletion fails.
        """
        for template in self._templates:
            logger.info('Deleting template "%s" (%s) in zone %s', template.title, template.uuid, template.zone)
            self._client.delete_storage(template.uuid)

    def __iter__(self) -> Iterator[TemplateRecord]:
        return iter(self._templates)

    def __len__(self) -> int:
        return len(self._templates)

    def __str__(self) -> str:
        return "Private template (UUID: {}, Title: {}, Zone: {})".format(
            ",".join(t.uuid for t in self._templates),
            ",".join(t.title for t in self._templates),
            ",".join(t.zone for t in self._templates),
        )
