"""Street address normalization for matching."""

import re
from dataclasses import dataclass

STREET_SUFFIXES = {
    "STREET": "ST", "STR": "ST", "AVENUE": "AVE", "AV": "AVE", "ROAD": "RD",
    "DRIVE": "DR", "BOULEVARD": "BLVD", "LANE": "LN", "COURT": "CT",
    "PLACE": "PL", "CIRCLE": "CIR", "TERRACE": "TER", "PARKWAY": "PKWY",
    "HIGHWAY": "HWY", "TRAIL": "TRL", "SQUARE": "SQ", "POINT": "PT",
    "COVE": "CV", "HARBOR": "HBR",
}

DIRECTIONALS = {
    "NORTH": "N", "SOUTH": "S", "EAST": "E", "WEST": "W",
    "NORTHEAST": "NE", "NORTHWEST": "NW", "SOUTHEAST": "SE", "SOUTHWEST": "SW",
}

_UNIT_PATTERN = re.compile(
    r"\s+(?:APT|APARTMENT|UNIT|STE|SUITE|BLDG|NO|#)\s*#?\s*([A-Z0-9-]+)$"
)
_HASH_UNIT_PATTERN = re.compile(r"\s*#\s*([A-Z0-9-]+)$")
_TRAILING_LOCALITY = re.compile(
    r"^(?P<street>.+?),\s*(?P<city>[A-Z][A-Z\s]*?)(?:,)?\s+(?P<state>[A-Z]{2})\s+(?P<zip>\d{5})(?:-\d{4})?$"
)
_ZIP_PATTERN = re.compile(r"\b(\d{5})(?:-\d{4})?\b")


@dataclass(frozen=True)
class NormalizedAddress:
    street: str
    unit: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None

    @property
    def full_key(self) -> str:
        return address_key(self.street, self.unit, self.zip_code, self.city)

    @property
    def street_zip_key(self) -> str | None:
        return street_zip_key(self.street, self.zip_code, self.city)

    @property
    def line(self) -> str:
        return f"{self.street} #{self.unit}" if self.unit else self.street


def address_key(street: str, unit: str | None, zip_code: str | None, city: str | None) -> str:
    return f"{street}|{unit or ''}|{zip_code or (city or '').upper()}"


def street_zip_key(street: str, zip_code: str | None, city: str | None) -> str | None:
    locality = zip_code or (city or "").upper()
    if not street or not locality:
        return None
    return f"{street}|{locality}"


def _normalize_street(street: str) -> str:
    tokens = street.split()
    out = []
    for index, token in enumerate(tokens):
        if token in DIRECTIONALS:
            out.append(DIRECTIONALS[token])
        elif token in STREET_SUFFIXES and index > 0:
            out.append(STREET_SUFFIXES[token])
        else:
            out.append(token)
    return " ".join(out)


def parse_address(full_address: str) -> dict[str, str | None]:
    """Split "123 MAIN ST, MIAMI FL 33131" into street, city, state and zip.

    Falls back to comma splitting when the full pattern does not match.
    """
    text = re.sub(r"\s+", " ", full_address.upper()).strip()
    match = _TRAILING_LOCALITY.match(text)
    if match:
        return {
            "street": match.group("street").strip(),
            "city": match.group("city").strip(),
            "state": match.group("state"),
            "zip": match.group("zip"),
        }

    parts = [p.strip() for p in text.split(",")]
    zip_match = _ZIP_PATTERN.search(text)
    state_match = re.search(r"\s([A-Z]{2})\s+\d{5}", text)
    city = None
    if len(parts) > 1:
        city = re.sub(r"\s+[A-Z]{2}\s+\d{5}.*$", "", parts[1]).strip() or None
    return {
        "street": parts[0] or text,
        "city": city,
        "state": state_match.group(1) if state_match else None,
        "zip": zip_match.group(1) if zip_match and len(parts) > 1 else None,
    }


def normalize_address(
    line: str | None,
    city: str | None = None,
    state: str | None = None,
    zip_code: str | None = None,
) -> NormalizedAddress | None:
    """Normalize an address for comparison.

    Uppercases, collapses whitespace, abbreviates street suffixes and
    directionals, and splits off the unit. A locality embedded in the line
    is used when no explicit city/state/zip is given.

    Returns:
        The normalized address, or None for an empty line
    """
    if not line or not line.strip():
        return None

    text = line.upper().replace(".", "")
    if "," in text:
        parsed = parse_address(text)
        text = parsed["street"] or text
        city = city or parsed["city"]
        state = state or parsed["state"]
        zip_code = zip_code or parsed["zip"]
    text = re.sub(r"[^A-Z0-9#\s-]", " ", text)
    text = re.sub(r"\s+", " ", text).strip()

    unit = None
    match = _UNIT_PATTERN.search(text) or _HASH_UNIT_PATTERN.search(text)
    if match:
        unit = match.group(1)
        text = text[: match.start()].strip()

    zip5 = None
    if zip_code:
        zip_match = _ZIP_PATTERN.search(str(zip_code))
        zip5 = zip_match.group(1) if zip_match else None

    street = _normalize_street(text)
    if not street:
        return None
    return NormalizedAddress(
        street=street,
        unit=unit,
        city=re.sub(r"\s+", " ", city.upper()).strip() if city else None,
        state=state.upper().strip() if state else None,
        zip_code=zip5,
    )
