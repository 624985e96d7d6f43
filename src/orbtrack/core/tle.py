"""Two-Line Element set parsing and validation.

Turns raw TLE text into immutable :class:`ElementRecord` values. Every
fixed-width field is checked and the per-line checksum is verified; a
malformed field raises :class:`ParseError` naming the line and the field.
Batches are parsed record by record so that one bad record does not fail
the others.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from sgp4.earth_gravity import wgs72

from orbtrack.utils.constants import DEEP_SPACE_PERIOD_HOURS, MINUTES_PER_DAY

logger = logging.getLogger(__name__)

TLE_LINE_LENGTH = 69

_EXPONENT_FIELD = re.compile(r"\s*([+-]?)\s*(\d{1,5})\s*([+-]?\d)")
_ALPHA5 = "ABCDEFGHJKLMNPQRSTUVWXYZ"


class ParseError(ValueError):
    """A malformed element set.

    Attributes:
        line: Line number inside the parsed text (1-based).
        field: Name of the field that failed validation.
        reason: Human-readable description of the failure.
        tle_line: 0 (name), 1 or 2 when the failure is tied to one TLE line.
        catalog_id: Catalog number of the record, when it could be read.
    """

    def __init__(
        self,
        line: int,
        field: str,
        reason: str,
        *,
        tle_line: int | None = None,
        catalog_id: int | None = None,
    ) -> None:
        self.line = line
        self.field = field
        self.reason = reason
        self.tle_line = tle_line
        self.catalog_id = catalog_id
        super().__init__(f"line {line} [{field}]: {reason}")


class OrbitRegime(Enum):
    """Propagation branch, fixed once per element set from its period."""

    NEAR_EARTH = "near-earth"
    DEEP_SPACE = "deep-space"


def recover_mean_motion(no_kozai: float, eccentricity: float, inclination: float) -> float:
    """Convert a Kozai mean motion (rad/min) to the Brouwer mean motion used by SGP4."""
    x2o3 = 2.0 / 3.0
    cosio2 = math.cos(inclination) ** 2
    omeosq = 1.0 - eccentricity * eccentricity
    rteosq = math.sqrt(omeosq)
    ak = (wgs72.xke / no_kozai) ** x2o3
    d1 = 0.75 * wgs72.j2 * (3.0 * cosio2 - 1.0) / (rteosq * omeosq)
    delta = d1 / (ak * ak)
    adel = ak * (1.0 - delta * delta - delta * (1.0 / 3.0 + 134.0 * delta * delta / 81.0))
    delta = d1 / (adel * adel)
    return no_kozai / (1.0 + delta)


def classify_regime(
    mean_motion_rev_per_day: float, eccentricity: float, inclination_deg: float
) -> OrbitRegime:
    """Pick the propagation branch from the orbital period.

    Periods below :data:`DEEP_SPACE_PERIOD_HOURS` are near-Earth. Elements
    that cannot describe a bound orbit fall back to the Kozai period so that
    the record can still be built; propagating it fails later.
    """
    if mean_motion_rev_per_day <= 0.0:
        return OrbitRegime.DEEP_SPACE
    no_kozai = mean_motion_rev_per_day * 2.0 * math.pi / MINUTES_PER_DAY
    if 0.0 <= eccentricity < 1.0:
        mean_motion = recover_mean_motion(no_kozai, eccentricity, math.radians(inclination_deg))
    else:
        mean_motion = no_kozai
    period_minutes = 2.0 * math.pi / mean_motion
    if period_minutes >= DEEP_SPACE_PERIOD_HOURS * 60.0:
        return OrbitRegime.DEEP_SPACE
    return OrbitRegime.NEAR_EARTH


@dataclass(frozen=True)
class ElementRecord:
    """A parsed Two-Line Element set.

    Attributes:
        catalog_id: NORAD catalog number (Alpha-5 numbers are decoded).
        name: Object name from the title line, empty if absent.
        international_designator: COSPAR designator as written in line 1.
        classification: Security classification character.
        epoch: Epoch as a UTC datetime.
        inclination_deg: Orbital inclination in degrees.
        raan_deg: Right ascension of ascending node in degrees.
        eccentricity: Orbital eccentricity (dimensionless).
        arg_perigee_deg: Argument of perigee in degrees.
        mean_anomaly_deg: Mean anomaly in degrees.
        mean_motion_rev_per_day: Kozai mean motion in revolutions per day.
        mean_motion_dot: First derivative of mean motion / 2 (rev/day²).
        mean_motion_ddot: Second derivative of mean motion / 6 (rev/day³).
        bstar: BSTAR drag term (1/earth radii).
        element_set_number: Element set number.
        revolution_number: Revolution number at epoch.
        line1: Raw TLE line 1.
        line2: Raw TLE line 2.
        regime: Derived propagation branch.
    """

    catalog_id: int
    epoch: datetime
    inclination_deg: float
    raan_deg: float
    eccentricity: float
    arg_perigee_deg: float
    mean_anomaly_deg: float
    mean_motion_rev_per_day: float
    bstar: float
    name: str = ""
    international_designator: str = ""
    classification: str = "U"
    mean_motion_dot: float = 0.0
    mean_motion_ddot: float = 0.0
    element_set_number: int = 0
    revolution_number: int = 0
    line1: str = field(default="", repr=False)
    line2: str = field(default="", repr=False)
    regime: OrbitRegime = field(init=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "regime",
            classify_regime(self.mean_motion_rev_per_day, self.eccentricity, self.inclination_deg),
        )

    @property
    def orbital_period(self) -> timedelta:
        """Nominal period derived from the Kozai mean motion."""
        if self.mean_motion_rev_per_day <= 0.0:
            raise ValueError(f"Catalog {self.catalog_id} has no positive mean motion")
        return timedelta(days=1.0 / self.mean_motion_rev_per_day)

    @property
    def is_deep_space(self) -> bool:
        return self.regime is OrbitRegime.DEEP_SPACE

    def to_lines(self) -> tuple[str, ...]:
        if self.name:
            return (f"0 {self.name}", self.line1, self.line2)
        return (self.line1, self.line2)

    def __str__(self) -> str:
        return "\n".join(self.to_lines())


@dataclass
class ParseResult:
    """Outcome of parsing a batch of element sets.

    Attributes:
        records: Successfully parsed records, in input order.
        errors: ``(line_ref, error)`` pairs, ``line_ref`` being the first
            line of the failed record.
    """

    records: list[ElementRecord] = field(default_factory=list)
    errors: list[tuple[int, ParseError]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def by_id(self) -> dict[int, ElementRecord]:
        return {record.catalog_id: record for record in self.records}

    def extend(self, other: ParseResult) -> None:
        self.records.extend(other.records)
        self.errors.extend(other.errors)


def compute_checksum(line: str) -> int:
    """TLE checksum: digits summed, each ``-`` counts as one, modulo 10."""
    total = 0
    for char in line[: TLE_LINE_LENGTH - 1]:
        if char.isdigit():
            total += int(char)
        elif char == "-":
            total += 1
    return total % 10


def decode_catalog_number(text: str) -> int:
    """Decode a 5-column catalog number, including the Alpha-5 scheme."""
    text = text.strip()
    if not text:
        raise ValueError("empty catalog number")
    if text[0].isalpha():
        prefix = text[0].upper()
        if prefix not in _ALPHA5 or len(text) != 5 or not text[1:].isdigit():
            raise ValueError(f"invalid Alpha-5 catalog number {text!r}")
        return (_ALPHA5.index(prefix) + 10) * 10000 + int(text[1:])
    if not text.isdigit():
        raise ValueError(f"invalid catalog number {text!r}")
    return int(text)


def _parse_exponent(text: str) -> float:
    """Parse the packed ``±NNNNN±E`` notation (implied leading decimal point)."""
    match = _EXPONENT_FIELD.fullmatch(text)
    if match is None:
        raise ValueError(f"malformed exponent field {text!r}")
    sign, mantissa, exponent = match.groups()
    value = float("0." + mantissa) * 10.0 ** int(exponent)
    return -value if sign == "-" else value


class _LineReader:
    """Reads fixed-width fields of one TLE line, raising ParseError on failure."""

    def __init__(self, text: str, tle_line: int, line_number: int, catalog_id: int | None = None):
        self.text = text
        self.tle_line = tle_line
        self.line_number = line_number
        self.catalog_id = catalog_id

    def fail(self, field_name: str, reason: str) -> ParseError:
        return ParseError(
            self.line_number,
            field_name,
            reason,
            tle_line=self.tle_line,
            catalog_id=self.catalog_id,
        )

    def read(self, field_name: str, start: int, end: int, convert, *, lo=None, hi=None):
        raw = self.text[start:end]
        try:
            value = convert(raw)
        except ValueError as e:
            raise self.fail(field_name, f"cannot read {raw!r} (columns {start + 1}-{end}): {e}") from None
        if lo is not None and value < lo:
            raise self.fail(field_name, f"value {value} below {lo}")
        if hi is not None and value > hi:
            raise self.fail(field_name, f"value {value} above {hi}")
        return value

    def check_format(self) -> None:
        if len(self.text) != TLE_LINE_LENGTH:
            raise self.fail(
                "length", f"expected {TLE_LINE_LENGTH} columns, got {len(self.text)}"
            )
        if self.text[0] != str(self.tle_line) or self.text[1] != " ":
            raise self.fail("line_number", f"line must start with '{self.tle_line} '")
        expected = self.text[-1]
        if not expected.isdigit():
            raise self.fail("checksum", f"checksum column holds {expected!r}, not a digit")
        actual = compute_checksum(self.text)
        if actual != int(expected):
            raise self.fail("checksum", f"checksum mismatch: line says {expected}, computed {actual}")


def _int_or_zero(text: str) -> int:
    text = text.strip()
    return int(text) if text else 0


def _implied_decimal(text: str) -> float:
    digits = text.replace(" ", "0")
    if not digits.isdigit():
        raise ValueError("expected digits only")
    return float("0." + digits)


def _peek_catalog_id(line: str) -> int | None:
    try:
        return decode_catalog_number(line[2:7])
    except ValueError:
        return None


def parse_element_set(
    line1: str, line2: str, name: str = "", line_number: int = 1
) -> ElementRecord:
    """Parse and validate one element set.

    Args:
        line1: TLE line 1 (69 characters).
        line2: TLE line 2 (69 characters).
        name: Optional title line, with or without the ``0 `` marker.
        line_number: Line number of ``line1`` inside the source text, used
            in error reports.

    Returns:
        The parsed record.

    Raises:
        ParseError: If a line has the wrong width, a bad checksum, or any
            malformed field.
    """
    line1 = line1.rstrip()
    line2 = line2.rstrip()
    catalog_hint = _peek_catalog_id(line1)

    first = _LineReader(line1, 1, line_number, catalog_hint)
    first.check_format()
    catalog_id = first.read("catalog_number", 2, 7, decode_catalog_number)
    first.catalog_id = catalog_id
    classification = line1[7]
    designator = line1[9:17].strip()
    year = first.read("epoch_year", 18, 20, int, lo=0, hi=99)
    day = first.read("epoch_day", 20, 32, float, lo=1.0, hi=367.0)
    ndot = first.read("mean_motion_dot", 33, 43, float)
    nddot = first.read("mean_motion_ddot", 44, 52, _parse_exponent)
    bstar = first.read("bstar", 53, 61, _parse_exponent)
    element_set_number = first.read("element_set_number", 64, 68, _int_or_zero)

    second = _LineReader(line2, 2, line_number + 1, catalog_id)
    second.check_format()
    catalog_id2 = second.read("catalog_number", 2, 7, decode_catalog_number)
    if catalog_id2 != catalog_id:
        raise second.fail(
            "catalog_number", f"line 2 catalog number {catalog_id2} does not match line 1 ({catalog_id})"
        )
    inclination = second.read("inclination", 8, 16, float, lo=0.0, hi=180.0)
    raan = second.read("raan", 17, 25, float, lo=0.0, hi=360.0)
    eccentricity = second.read("eccentricity", 26, 33, _implied_decimal)
    arg_perigee = second.read("arg_perigee", 34, 42, float, lo=0.0, hi=360.0)
    mean_anomaly = second.read("mean_anomaly", 43, 51, float, lo=0.0, hi=360.0)
    mean_motion = second.read("mean_motion", 52, 63, float)
    if mean_motion <= 0.0:
        raise second.fail("mean_motion", f"mean motion must be positive, got {mean_motion}")
    revolution_number = second.read("revolution_number", 63, 68, _int_or_zero)

    year += 2000 if year < 57 else 1900
    epoch = datetime(year, 1, 1, tzinfo=timezone.utc) + timedelta(days=day - 1.0)

    name = name.strip()
    if name.startswith("0 "):
        name = name[2:].strip()

    logger.debug("Parsed element set for catalog %d (epoch %s)", catalog_id, epoch.isoformat())

    return ElementRecord(
        catalog_id=catalog_id,
        epoch=epoch,
        inclination_deg=inclination,
        raan_deg=raan,
        eccentricity=eccentricity,
        arg_perigee_deg=arg_perigee,
        mean_anomaly_deg=mean_anomaly,
        mean_motion_rev_per_day=mean_motion,
        bstar=bstar,
        name=name,
        international_designator=designator,
        classification=classification,
        mean_motion_dot=ndot,
        mean_motion_ddot=nddot,
        element_set_number=element_set_number,
        revolution_number=revolution_number,
        line1=line1,
        line2=line2,
    )


def _is_data_line(text: str, marker: str) -> bool:
    return text.startswith(marker + " ")


def parse_batch(text: str) -> ParseResult:
    """Parse many element sets, isolating failures per record.

    Handles both 2-line and 3-line (with name) formats, mixed freely.
    Lines that cannot be grouped into a record are reported as errors
    rather than skipped.

    Args:
        text: Raw TLE text.

    Returns:
        A :class:`ParseResult` with the successes and per-record errors.
    """
    lines = [
        (number, raw.rstrip())
        for number, raw in enumerate(text.splitlines(), start=1)
        if raw.strip()
    ]
    result = ParseResult()
    i = 0

    while i < len(lines):
        start_number, current = lines[i]
        name = ""
        if not _is_data_line(current, "1") and not _is_data_line(current, "2"):
            name = current
            i += 1

        if (
            i + 1 < len(lines)
            and _is_data_line(lines[i][1], "1")
            and _is_data_line(lines[i + 1][1], "2")
        ):
            (number1, line1), (_, line2) = lines[i], lines[i + 1]
            try:
                result.records.append(parse_element_set(line1, line2, name=name, line_number=number1))
            except ParseError as e:
                logger.warning("Rejected element set at line %d: %s", start_number, e)
                result.errors.append((start_number, e))
            i += 2
            continue

        catalog_id = None
        if i < len(lines) and _is_data_line(lines[i][1], "1"):
            reason = "line 1 is not followed by line 2"
            tle_line = 1
            catalog_id = _peek_catalog_id(lines[i][1])
            i += 1
        elif name:
            reason = "title line is not followed by lines 1 and 2"
            tle_line = 0
        else:
            reason = "line 2 without a preceding line 1"
            tle_line = 2
            catalog_id = _peek_catalog_id(current)
            i += 1
        error = ParseError(start_number, "record", reason, tle_line=tle_line, catalog_id=catalog_id)
        logger.warning("Rejected element set at line %d: %s", start_number, error)
        result.errors.append((start_number, error))

    logger.debug(
        "Parsed %d element sets from text (%d errors)", len(result.records), len(result.errors)
    )
    return result


def parse_tle(text: str) -> list[ElementRecord]:
    """Parse element sets, raising the first error encountered.

    Raises:
        ParseError: If any record in ``text`` is malformed.
    """
    result = parse_batch(text)
    if result.errors:
        raise result.errors[0][1]
    return result.records
