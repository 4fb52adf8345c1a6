"""Federal registries: SEC EDGAR insider filings and Census ACS demographics.

Both are read-only and are queried by jurisdiction key. Their failures
never abort the owning job.
"""

from datetime import date, timedelta
from typing import Any

from ..config import get_settings
from ..errors import SourceFormatError
from ..http import RateLimitedClient, RateLimitPolicy
from ..models.records import ProfessionalRecord
from .base import FederalSource, RetryConfig, build_record, to_date, with_retry
from .jurisdictions import JurisdictionConfig

SEC_BASE_URL = "https://data.sec.gov"
SEC_SEARCH_URL = "https://efts.sec.gov/LATEST/search-index"
CENSUS_BASE_URL = "https://api.census.gov/data"
ACS_YEAR = "2022"

# ACS variables:
# B19013_001E = Median household income
# B25077_001E = Median home value
# B01002_001E = Median age
# B01003_001E = Total population
ACS_VARIABLES = ["NAME", "B19013_001E", "B25077_001E", "B01002_001E", "B01003_001E"]


class SecEdgarAdapter(FederalSource):
    """Form 4 insider filings for people located in the jurisdiction's state."""

    kind = "sec_edgar"

    def __init__(
        self,
        jurisdiction: JurisdictionConfig,
        client: RateLimitedClient,
        policy: RateLimitPolicy | None = None,
        retry: RetryConfig | None = None,
    ):
        super().__init__(jurisdiction)
        self.client = client
        self.policy = policy or RateLimitPolicy(requests_per_minute=10, delay_ms=100)
        self.retry = retry or RetryConfig()
        self.user_agent = get_settings().sec_user_agent

    async def fetch_by_jurisdiction_key(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Search recent Form 4 filings.

        Args:
            params: start_date, end_date (dates) and limit

        Returns:
            Raw search hits filtered to the jurisdiction's state
        """
        end = params.get("end_date") or date.today()
        start = params.get("start_date") or end - timedelta(days=30)
        limit = params.get("limit") or 100

        query = {
            "q": "form:4",
            "dateRange": "custom",
            "startdt": start.isoformat(),
            "enddt": end.isoformat(),
            "forms": "4",
        }
        data = await with_retry(
            lambda: self.client.get_json(
                SEC_SEARCH_URL,
                self.policy,
                params=query,
                headers={"User-Agent": self.user_agent},
            ),
            self.retry,
            self.logger,
        )
        hits = (data or {}).get("hits", {}).get("hits") if isinstance(data, dict) else None
        if hits is None:
            raise SourceFormatError("EDGAR search payload has no hits")

        state = self.jurisdiction.state.upper()
        rows = []
        for hit in hits:
            source = hit.get("_source") or {}
            if (source.get("biz_states") or [source.get("state_country")])[0] != state:
                continue
            rows.append({"_id": hit.get("_id"), **source})
            if len(rows) >= limit:
                break
        return rows

    def parse_row(self, row: dict[str, Any]) -> ProfessionalRecord:
        names = row.get("display_names") or []
        accession = (row.get("adsh") or row.get("_id") or "").split(":")[0]
        if len(names) < 2 or not accession:
            raise SourceFormatError("EDGAR hit lacks reporting owner or accession", row=row)

        # display_names: [reporting owner, issuer], each "NAME  (CIK 0000...)"
        person = names[0].split("(")[0].strip()
        company = names[1].split("(")[0].strip()
        ciks = row.get("ciks") or []
        data = {
            "jurisdiction": self.jurisdiction.id,
            "source": self.name,
            "accession_number": accession,
            "person_name": person,
            "company_name": company,
            "company_cik": ciks[1] if len(ciks) > 1 else None,
            "city": (row.get("biz_locations") or [None])[0],
            "state": self.jurisdiction.state,
            "form_type": "4",
            "filing_date": to_date(row.get("file_date")),
        }
        return build_record(ProfessionalRecord, data, row)


class CensusAcsAdapter(FederalSource):
    """County demographics from the ACS 5-year estimates."""

    kind = "census"

    def __init__(
        self,
        jurisdiction: JurisdictionConfig,
        client: RateLimitedClient,
        policy: RateLimitPolicy | None = None,
        retry: RetryConfig | None = None,
    ):
        super().__init__(jurisdiction)
        self.client = client
        self.policy = policy or RateLimitPolicy(requests_per_minute=50, delay_ms=200)
        self.retry = retry or RetryConfig()

    async def fetch_by_jurisdiction_key(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        state_fips = params.get("state_fips") or self.jurisdiction.state_fips
        county_fips = params.get("county_fips") or self.jurisdiction.county_fips
        if not state_fips or not county_fips:
            return []

        query = {
            "get": ",".join(ACS_VARIABLES),
            "for": f"county:{county_fips}",
            "in": f"state:{state_fips}",
        }
        api_key = get_settings().census_api_key
        if api_key:
            query["key"] = api_key

        data = await with_retry(
            lambda: self.client.get_json(
                f"{CENSUS_BASE_URL}/{params.get('year', ACS_YEAR)}/acs/acs5",
                self.policy,
                params=query,
            ),
            self.retry,
            self.logger,
        )
        if not isinstance(data, list) or len(data) < 2:
            raise SourceFormatError("Census payload has no data rows")
        header, *rows = data
        return [dict(zip(header, row)) for row in rows]

    def parse_row(self, row: dict[str, Any]) -> dict[str, Any]:
        try:
            return {
                "jurisdiction": self.jurisdiction.id,
                "county_name": row["NAME"],
                "state_fips": row.get("state"),
                "county_fips": row.get("county"),
                "median_income": int(row["B19013_001E"]),
                "median_home_value": int(row["B25077_001E"]),
                "median_age": float(row["B01002_001E"]),
                "total_population": int(row["B01003_001E"]),
            }
        except (KeyError, TypeError, ValueError) as e:
            raise SourceFormatError(f"Bad census row: {e}", row=row) from e
