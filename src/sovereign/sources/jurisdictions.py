"""Jurisdiction configuration.

One entry per county scope. Live feeds are declared as data (ArcGIS
layers, JSON index endpoints); the registry turns them into adapters.
"""

from typing import Literal

from pydantic import BaseModel, Field

from ..errors import UnknownJurisdiction


class ArcGISLayer(BaseModel):
    """An assessor parcel layer served by an ArcGIS feature service."""

    service_url: str
    value_field: str
    default_city: str | None = None
    # record field -> layer attribute
    columns: dict[str, str]


class JsonIndexEndpoint(BaseModel):
    """A recorder or court index that answers paged JSON."""

    url: str
    rows_key: str | None = None
    page_size: int = 200
    # query parameter names understood by the endpoint
    start_param: str = "start_date"
    end_param: str = "end_date"
    offset_param: str = "offset"
    limit_param: str = "limit"
    # record field -> row column
    columns: dict[str, str]


class JurisdictionConfig(BaseModel):
    id: str
    county: str
    state: str
    state_fips: str | None = None
    county_fips: str | None = None
    assessor_url: str
    recorder_url: str | None = None
    court_url: str | None = None
    access_method: Literal["api", "scrape", "bulk_download"] = "scrape"
    requests_per_minute: int = 30
    delay_ms: int = 2000
    arcgis: ArcGISLayer | None = None
    recorder_api: JsonIndexEndpoint | None = None
    court_api: JsonIndexEndpoint | None = None
    tags: list[str] = Field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.county}, {self.state}"


JURISDICTIONS: dict[str, JurisdictionConfig] = {
    "palm_beach_fl": JurisdictionConfig(
        id="palm_beach_fl",
        county="Palm Beach",
        state="FL",
        state_fips="12",
        county_fips="099",
        assessor_url="https://www.pbcgov.org/papa/",
        recorder_url="https://officialrecords.mypalmbeachclerk.com/",
        court_url="https://appsgp.mypalmbeachclerk.com/eCaseView/",
        access_method="api",
        requests_per_minute=30,
        delay_ms=2000,
        arcgis=ArcGISLayer(
            service_url=(
                "https://services1.arcgis.com/t2SDUb7jMrENAfvr/arcgis/rest/services/"
                "Property_Data/FeatureServer/0"
            ),
            value_field="TOTAL_JUST",
            default_city="PALM BEACH",
            columns={
                "parcel_id": "PCN",
                "owner_name": "OWNER_NAME",
                "property_address": "SITE_ADDR",
                "property_city": "SITE_CITY",
                "property_zip": "SITE_ZIP",
                "owner_mailing_address": "MAIL_ADDR",
                "assessed_value": "TOTAL_JUST",
                "market_value": "TOTAL_JUST",
                "land_value": "LAND_VAL",
                "improvement_value": "IMPR_VAL",
                "year_built": "YEAR_BUILT",
                "square_feet": "LIVING_AREA",
                "bedrooms": "BEDROOM",
                "bathrooms": "BATHROOM",
                "property_type": "PROPERTY_USE",
            },
        ),
        tags=["ultra-wealthy", "snowbird"],
    ),
    "san_mateo_ca": JurisdictionConfig(
        id="san_mateo_ca",
        county="San Mateo",
        state="CA",
        state_fips="06",
        county_fips="081",
        assessor_url="https://www.smcacre.org/",
        recorder_url="https://www.smcacre.org/recorder",
        court_url="https://www.sanmateocourt.org/",
        requests_per_minute=20,
        delay_ms=3000,
        tags=["tech-equity", "prop-13"],
    ),
    "miami_dade_fl": JurisdictionConfig(
        id="miami_dade_fl",
        county="Miami-Dade",
        state="FL",
        state_fips="12",
        county_fips="086",
        assessor_url="https://www.miamidade.gov/pa/",
        recorder_url="https://www2.miami-dadeclerk.com/officialrecords/",
        court_url="https://www2.miami-dadeclerk.com/ocs/",
        access_method="api",
        requests_per_minute=30,
        delay_ms=2000,
        arcgis=ArcGISLayer(
            service_url=(
                "https://gisfs.miamidade.gov/mdarcgis/rest/services/MD_OpenData/"
                "PropertyPointView/MapServer/0"
            ),
            value_field="ASMTVAL",
            default_city="MIAMI",
            columns={
                "parcel_id": "FOLIO",
                "owner_name": "OWNNAME",
                "property_address": "SITEADDR",
                "property_city": "SITECITY",
                "property_zip": "SITEZIP",
                "owner_mailing_address": "MAILADDR",
                "assessed_value": "ASMTVAL",
                "market_value": "ASMTVAL",
                "land_value": "LANDVAL",
                "improvement_value": "BLDGVAL",
                "year_built": "YRBUILT",
                "square_feet": "SQFT",
                "bedrooms": "BEDROOM",
                "bathrooms": "BATHROOM",
                "property_type": "PROPUSE",
            },
        ),
        tags=["international-wealth"],
    ),
    "maricopa_az": JurisdictionConfig(
        id="maricopa_az",
        county="Maricopa",
        state="AZ",
        state_fips="04",
        county_fips="013",
        assessor_url="https://mcassessor.maricopa.gov/",
        recorder_url="https://recorder.maricopa.gov/",
        court_url="https://www.superiorcourt.maricopa.gov/",
        access_method="api",
        requests_per_minute=25,
        delay_ms=2400,
        arcgis=ArcGISLayer(
            service_url=(
                "https://services6.arcgis.com/d4fvpysjXuLOrKuJ/arcgis/rest/services/"
                "Parcels/FeatureServer/0"
            ),
            value_field="TOTAL_VAL",
            default_city="PHOENIX",
            columns={
                "parcel_id": "APN",
                "owner_name": "OWNER_NAME",
                "property_address": "SITE_ADDR",
                "property_city": "SITE_CITY",
                "property_zip": "SITE_ZIP",
                "owner_mailing_address": "MAIL_ADDR",
                "assessed_value": "TOTAL_VAL",
                "market_value": "TOTAL_VAL",
                "land_value": "LAND_VAL",
                "improvement_value": "IMPR_VAL",
                "year_built": "YEAR_BUILT",
                "square_feet": "LIVING_AREA",
                "bedrooms": "BEDROOMS",
                "bathrooms": "BATHROOMS",
                "property_type": "PROP_TYPE",
            },
        ),
        tags=["retiree-corridor", "snowbird"],
    ),
    "clark_nv": JurisdictionConfig(
        id="clark_nv",
        county="Clark",
        state="NV",
        state_fips="32",
        county_fips="003",
        assessor_url="https://www.clarkcountynv.gov/assessor/",
        recorder_url="https://www.clarkcountynv.gov/recorder/",
        requests_per_minute=20,
        delay_ms=3000,
        tags=["no-income-tax"],
    ),
    "king_wa": JurisdictionConfig(
        id="king_wa",
        county="King",
        state="WA",
        state_fips="53",
        county_fips="033",
        assessor_url="https://blue.kingcounty.com/Assessor/eRealProperty/",
        recorder_url="https://recordsearch.kingcounty.gov/",
        requests_per_minute=30,
        delay_ms=2000,
        tags=["tech-equity"],
    ),
}


def list_jurisdictions() -> list[str]:
    return list(JURISDICTIONS)


def get_jurisdiction(jurisdiction_id: str) -> JurisdictionConfig:
    try:
        return JURISDICTIONS[jurisdiction_id]
    except KeyError:
        raise UnknownJurisdiction(jurisdiction_id) from None
