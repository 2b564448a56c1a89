# storage/catalogue.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - CATALOGUE FILE
# ============================================================================
# Programs, product mappings and add-ons are global configuration. They are
# read once from a JSON file (CATALOGUE_PATH) and served from the in-memory
# repositories:
#
#   {"programs": [...], "mappings": [...], "add_ons": [...]}
# ============================================================================

from pathlib import Path
from typing import Optional, Union

import structlog
from pydantic import BaseModel, Field

from schemas import AddOn, ProductMapping, Program
from storage.repositories import InMemoryAddOnRepository, InMemoryMappingRepository, InMemoryProgramRepository

logger = structlog.get_logger(component="catalogue")


class Catalogue(BaseModel):
    programs: list[Program] = Field(default_factory=list)
    mappings: list[ProductMapping] = Field(default_factory=list)
    add_ons: list[AddOn] = Field(default_factory=list)

    def mapping_repository(self) -> InMemoryMappingRepository:
        return InMemoryMappingRepository(self.mappings)

    def program_repository(self) -> InMemoryProgramRepository:
        return InMemoryProgramRepository(self.programs)

    def add_on_repository(self) -> InMemoryAddOnRepository:
        return InMemoryAddOnRepository(self.add_ons)


def load_catalogue(path: Optional[Union[str, Path]]) -> Catalogue:
    """
    Read the catalogue file. No path means an empty catalogue; a path that
    does not exist or does not parse raises, so a misconfigured deployment
    fails at startup instead of posting unmapped orders.
    """
    if not path:
        logger.warning("catalogue_not_configured")
        return Catalogue()

    catalogue = Catalogue.model_validate_json(Path(path).read_text(encoding="utf-8"))
    logger.info(
        "catalogue_loaded",
        path=str(path),
        programs=len(catalogue.programs),
        mappings=len(catalogue.mappings),
        add_ons=len(catalogue.add_ons),
    )
    return catalogue
