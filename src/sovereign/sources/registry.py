"""Lookup table from jurisdiction id to the adapters that serve it.

Default adapters are derived from each jurisdiction's declared feeds.
Callers may register explicit factories per jurisdiction, which replace
the defaults (fixtures, tests, new feeds).
"""

from pathlib import Path
from typing import Callable

from ..config import Settings, get_settings
from ..errors import UnknownJurisdiction
from ..http import RateLimitedClient
from .arcgis import ArcGISAssessorAdapter
from .base import FederalSource, SourceAdapter
from .federal import CensusAcsAdapter, SecEdgarAdapter
from .json_index import JsonIndexAdapter
from .jurisdictions import JURISDICTIONS, JurisdictionConfig
from .static import StaticAdapter

AdapterFactory = Callable[[JurisdictionConfig, RateLimitedClient], SourceAdapter]
FederalFactory = Callable[[JurisdictionConfig, RateLimitedClient], FederalSource]

DEFAULT_FEDERAL_FACTORIES: tuple[FederalFactory, ...] = (SecEdgarAdapter, CensusAcsAdapter)


class AdapterRegistry:
    def __init__(
        self,
        jurisdictions: dict[str, JurisdictionConfig] | None = None,
        settings: Settings | None = None,
        federal_factories: tuple[FederalFactory, ...] = DEFAULT_FEDERAL_FACTORIES,
    ):
        self.settings = settings or get_settings()
        self.jurisdictions = dict(jurisdictions if jurisdictions is not None else JURISDICTIONS)
        self.federal_factories = tuple(federal_factories)
        self._factories: dict[str, list[AdapterFactory]] = {}

    def register(self, jurisdiction_id: str, *factories: AdapterFactory) -> None:
        """Replace the default adapters of a jurisdiction."""
        self.get(jurisdiction_id)
        self._factories[jurisdiction_id] = list(factories)

    def list_jurisdictions(self) -> list[str]:
        return list(self.jurisdictions)

    def get(self, jurisdiction_id: str) -> JurisdictionConfig:
        try:
            return self.jurisdictions[jurisdiction_id]
        except KeyError:
            raise UnknownJurisdiction(jurisdiction_id) from None

    def build_adapters(
        self, jurisdiction_id: str, client: RateLimitedClient
    ) -> list[SourceAdapter]:
        config = self.get(jurisdiction_id)
        if jurisdiction_id in self._factories:
            return [factory(config, client) for factory in self._factories[jurisdiction_id]]

        adapters: list[SourceAdapter] = []
        if config.arcgis:
            adapters.append(ArcGISAssessorAdapter(config, client, config.arcgis))
        if config.recorder_api:
            adapters.append(JsonIndexAdapter(config, client, config.recorder_api, kind="recorder"))
        if config.court_api:
            adapters.append(JsonIndexAdapter(config, client, config.court_api, kind="court"))

        fixtures_dir = self.settings.fixtures_dir
        if fixtures_dir and (Path(fixtures_dir) / jurisdiction_id).is_dir():
            adapters.append(StaticAdapter.from_directory(config, Path(fixtures_dir) / jurisdiction_id))
        return adapters

    def build_federal(
        self, jurisdiction_id: str, client: RateLimitedClient
    ) -> list[FederalSource]:
        config = self.get(jurisdiction_id)
        return [factory(config, client) for factory in self.federal_factories]
