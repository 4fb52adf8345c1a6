"""Person and organization name normalization.

Handles the conventions found in public records:
- "LAST FIRST M" order used by county indexes vs "First Last"
- "LAST, FIRST M" comma order
- trust, estate and tenancy qualifiers ("TR", "LIVING TRUST", "ET AL")
- generational suffixes (JR, SR, III)
- joint owners in one string ("SMITH JOHN & MARY")
- initials ("J. Smith") and nicknames (BOB -> ROBERT)
"""

import re
from dataclasses import dataclass

ORGANIZATION_MARKERS = frozenset({
    "LLC", "INC", "INCORPORATED", "CORP", "CORPORATION", "CO", "COMPANY",
    "LP", "LLP", "LTD", "BANK", "ASSOCIATION", "ASSN", "HOA", "PARTNERS",
    "PARTNERSHIP", "HOLDINGS", "PROPERTIES", "INVESTMENTS", "CHURCH", "MINISTRIES",
    "FOUNDATION", "SERVICES", "GROUP", "VENTURES", "CAPITAL", "REALTY", "MORTGAGE",
    "FINANCIAL", "LENDING", "CREDIT", "UNION", "FEDERAL", "NATIONAL", "COUNTY",
    "CITY", "STATE", "UNIVERSITY", "SCHOOL", "DISTRICT", "AUTHORITY",
})

# Qualifiers stripped from personal names; each sets a flag on the result
_TRUST_PATTERN = re.compile(
    r"\b(?:(?:REVOCABLE|IRREVOCABLE|LIVING|FAMILY|SURVIVORS?)\s+)*TRUST\b.*$"
)
_TRUSTEE_PATTERN = re.compile(r"\b(?:TRUSTEES?|TTEES?|TRS?|CO TRS?|CO TRUSTEES?)\b")
_ESTATE_PATTERN = re.compile(r"\b(?:ESTATE\s+OF|EST\s+OF|ESTATE|DECEASED|DEC'?D|DECD)\b")
_DATED_PATTERN = re.compile(r"\b(?:DTD|DATED|U/?A|U/?D/?T)\b.*$")
_TENANCY_PATTERN = re.compile(
    r"\b(?:ET\s?AL|ET\s?UX|ET\s?VIR|JTWROS|JT\s?TEN|TEN\s?COM|H/?W|H\s+AND\s+W|"
    r"HUSBAND\s+AND\s+WIFE|LIFE\s+ESTATE|LIFE\s+EST|REM)\b"
)
_JOINT_SEPARATOR = re.compile(r"\s*(?:&|\bAND\b|/|\+)\s*")

GENERATIONAL_SUFFIXES = frozenset({"JR", "SR", "II", "III", "IV", "V", "2ND", "3RD"})
HONORIFICS = frozenset({"MR", "MRS", "MS", "DR", "MISS", "REV", "HON"})

NICKNAMES: dict[str, str] = {
    "AL": "ALBERT", "ALEX": "ALEXANDER", "ANDY": "ANDREW", "BARB": "BARBARA",
    "BEN": "BENJAMIN", "BETH": "ELIZABETH", "BETTY": "ELIZABETH", "BILL": "WILLIAM",
    "BILLY": "WILLIAM", "BOB": "ROBERT", "BOBBY": "ROBERT", "CATHY": "CATHERINE",
    "CHARLIE": "CHARLES", "CHRIS": "CHRISTOPHER", "CHUCK": "CHARLES", "DAN": "DANIEL",
    "DANNY": "DANIEL", "DAVE": "DAVID", "DEB": "DEBORAH", "DEBBIE": "DEBORAH",
    "DICK": "RICHARD", "DON": "DONALD", "ED": "EDWARD", "EDDIE": "EDWARD",
    "FRANK": "FRANCIS", "FRED": "FREDERICK", "GREG": "GREGORY", "HANK": "HENRY",
    "JACK": "JOHN", "JAKE": "JACOB", "JEFF": "JEFFREY", "JENNY": "JENNIFER",
    "JERRY": "GERALD", "JIM": "JAMES", "JIMMY": "JAMES", "JOE": "JOSEPH",
    "JOHNNY": "JOHN", "JON": "JONATHAN", "KATE": "KATHERINE", "KATHY": "KATHERINE",
    "KEN": "KENNETH", "LARRY": "LAWRENCE", "LIZ": "ELIZABETH", "MAGGIE": "MARGARET",
    "MATT": "MATTHEW", "MEG": "MARGARET", "MIKE": "MICHAEL", "NANCY": "ANN",
    "NICK": "NICHOLAS", "PAT": "PATRICIA", "PEGGY": "MARGARET", "PETE": "PETER",
    "PHIL": "PHILIP", "RAY": "RAYMOND", "RICH": "RICHARD", "RICK": "RICHARD",
    "ROB": "ROBERT", "RON": "RONALD", "SAM": "SAMUEL", "SANDY": "SANDRA",
    "STEVE": "STEVEN", "STEPHEN": "STEVEN", "SUE": "SUSAN", "SUSIE": "SUSAN",
    "TED": "EDWARD", "TOM": "THOMAS", "TOMMY": "THOMAS", "TONY": "ANTHONY",
    "VICKY": "VICTORIA", "WALLY": "WALTER", "WILL": "WILLIAM",
}


@dataclass(frozen=True)
class ParsedName:
    """One identity extracted from a recorded name string."""

    first: str
    last: str
    middle: str | None = None
    suffix: str | None = None
    is_organization: bool = False
    is_trust: bool = False
    is_estate: bool = False
    raw: str = ""

    @property
    def key(self) -> str:
        """Comparison key: FIRST LAST (middle names ignored)."""
        if self.is_organization or not self.first:
            return self.last
        return f"{self.first} {self.last}"

    @property
    def storage_key(self) -> str:
        return f"{self.first}|{self.middle or ''}|{self.last}|{int(self.is_organization)}"

    @classmethod
    def from_storage_key(cls, value: str) -> "ParsedName":
        first, middle, last, org = value.split("|")
        return cls(first=first, middle=middle or None, last=last, is_organization=org == "1")

    @property
    def has_initial_only(self) -> bool:
        return len(self.first) == 1

    @property
    def canonical_first(self) -> str:
        return NICKNAMES.get(self.first, self.first)

    @property
    def display(self) -> str:
        if self.is_organization:
            return self.last.title()
        parts = [self.first, self.middle, self.last, self.suffix]
        return " ".join(p.title() if len(p) > 1 else p for p in parts if p)


def first_names_compatible(a: str, b: str) -> bool:
    """Same first name, nickname pair, or an initial matching the other name."""
    if not a or not b:
        return False
    if a == b:
        return True
    if len(a) == 1 or len(b) == 1:
        return a[0] == b[0]
    return NICKNAMES.get(a, a) == NICKNAMES.get(b, b)


def expand_initial(name: ParsedName, other: ParsedName) -> str:
    """Key of ``name`` with an initial filled in from ``other`` when compatible."""
    if name.has_initial_only and other.first.startswith(name.first):
        return f"{other.first} {name.last}"
    return name.key


def _clean(raw: str) -> str:
    text = raw.upper()
    text = text.replace(".", " ").replace("'", "")
    text = re.sub(r"[^A-Z0-9&,/+\s-]", " ", text)
    text = text.replace("-", " ")
    return re.sub(r"\s+", " ", text).strip()


def is_organization(raw: str) -> bool:
    tokens = set(_clean(raw).replace(",", " ").split())
    return bool(tokens & ORGANIZATION_MARKERS)


def _split_tokens(text: str) -> tuple[list[str], str | None]:
    tokens = [t for t in text.replace(",", " ").split() if t not in HONORIFICS]
    suffix = None
    kept = []
    for token in tokens:
        if token in GENERATIONAL_SUFFIXES and kept:
            suffix = token
        else:
            kept.append(token)
    return kept, suffix


def _guess_order(raw: str, text: str) -> str:
    if "," in text:
        return "comma"
    first_part = _JOINT_SEPARATOR.split(text)[0]
    tokens, _ = _split_tokens(first_part)
    if not tokens or len(tokens[0]) == 1:
        return "natural"
    # "MICHAEL A JOHNSON": middle initial between two full names
    if len(tokens) >= 3 and len(tokens[1]) == 1 and len(tokens[-1]) > 1:
        return "natural"
    if not any(ch.islower() for ch in raw):
        return "last_first"
    return "natural"


def parse_names(raw: str, order: str = "auto") -> list[ParsedName]:
    """Split a recorded name into one ParsedName per identity.

    Args:
        raw: Name as recorded
        order: "last_first", "natural" or "auto"

    Returns:
        Parsed identities; empty if nothing usable remains

    Examples:
        "SMITH JOHN & MARY" -> [JOHN SMITH, MARY SMITH]
        "Smith, John J." -> [JOHN J SMITH]
        "J. Smith" -> [J SMITH]
    """
    if not raw or not raw.strip():
        return []

    if is_organization(raw) and not _TRUST_PATTERN.search(_clean(raw)):
        org = _clean(raw).replace(",", "")
        return [ParsedName(first="", last=org, is_organization=True, raw=raw)]

    text = _clean(raw)
    is_trust = bool(_TRUST_PATTERN.search(text) or _TRUSTEE_PATTERN.search(text))
    is_estate = bool(_ESTATE_PATTERN.search(text))
    for pattern in (_DATED_PATTERN, _TRUST_PATTERN):
        text = pattern.sub("", text)
    for pattern in (_TRUSTEE_PATTERN, _ESTATE_PATTERN, _TENANCY_PATTERN):
        text = pattern.sub(" ", text)
    text = re.sub(r"\b\d+\b", " ", text)
    text = re.sub(r"\s+", " ", text).strip(" ,&/")
    if not text:
        return []

    if order == "auto":
        order = _guess_order(raw, text)
    elif "," in text:
        order = "comma"

    parts = [p.strip(" ,") for p in _JOINT_SEPARATOR.split(text) if p.strip(" ,")]
    if not parts:
        return []

    flags = {"is_trust": is_trust, "is_estate": is_estate, "raw": raw}

    if order == "natural":
        return _parse_natural(parts, flags)
    return _parse_last_first(parts, order, flags)


def _parse_last_first(parts: list[str], order: str, flags: dict) -> list[ParsedName]:
    names: list[ParsedName] = []
    surname = None
    for index, part in enumerate(parts):
        if order == "comma" and "," in part:
            last_part, given_part = part.split(",", 1)
            last_tokens, _ = _split_tokens(last_part)
            given, suffix = _split_tokens(given_part)
            last = " ".join(last_tokens)
        else:
            tokens, suffix = _split_tokens(part)
            if not tokens:
                continue
            inherits = index > 0 and surname and (
                len(tokens) == 1 or all(len(t) == 1 for t in tokens[1:])
            )
            if inherits:
                last, given = surname, tokens
            elif len(tokens) == 1:
                last, given = tokens[0], []
            else:
                last, given = tokens[0], tokens[1:]
        if not last:
            continue
        surname = surname or last
        names.append(
            ParsedName(
                first=given[0] if given else "",
                middle=" ".join(given[1:]) or None,
                last=last,
                suffix=suffix,
                **flags,
            )
        )
    return names


def _parse_natural(parts: list[str], flags: dict) -> list[ParsedName]:
    tokenized = [_split_tokens(part) for part in parts]
    tokenized = [(tokens, suffix) for tokens, suffix in tokenized if tokens]
    if not tokenized:
        return []

    # "John & Mary Smith": earlier single-token parts borrow the final surname
    final_tokens = tokenized[-1][0]
    shared_surname = final_tokens[-1] if len(final_tokens) > 1 else None

    names = []
    for tokens, suffix in tokenized:
        if len(tokens) == 1:
            if shared_surname and tokens[0] != shared_surname:
                first, given_rest, last = tokens[0], [], shared_surname
            else:
                first, given_rest, last = "", [], tokens[0]
        else:
            first, given_rest, last = tokens[0], tokens[1:-1], tokens[-1]
        names.append(
            ParsedName(
                first=first,
                middle=" ".join(given_rest) or None,
                last=last,
                suffix=suffix,
                **flags,
            )
        )
    return names
