"""Query compiler for the search endpoint.

``compile_query`` turns a :class:`QuerySpec` (or an equivalent mapping using
the service's camelCase option names) into the exact query parameters sent
to the search endpoint. It performs no I/O.

``escape_query_chars`` escapes values that callers interpolate into raw
query clauses, e.g. id lookups such as ``id:content\\:<escaped id>``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from wchconnector.core.errors import ValidationError

MATCH_ALL_QUERY = "*:*"
ALL_FIELDS = "*"
DEFAULT_ROWS = 10
DEFAULT_START = 0
DEFAULT_FACET_MINCOUNT = 0
DEFAULT_FACET_LIMIT = 10
DEFAULT_SPATIAL_FIELD = "locations"
DEFAULT_DISTANCE_UNIT = "kilometers"
DEFAULT_FILTER_MODE = "geofilt"

FILTER_MODES = ("geofilt", "bbox")
DISTANCE_UNITS = ("kilometers", "miles", "degrees")
SORT_DIRECTIONS = ("asc", "desc")

WireParams = Dict[str, Any]
FieldList = Union[str, Sequence[str]]

_RESERVED_CHARS = re.compile(r'(\+|-|!|\(|\)|\{|\}|\[|\]|\^|"|~|\*|\?|:|/|&&|\|\||\s)')


def escape_query_chars(value: str) -> str:
    """Escape the query parser's reserved characters with a backslash.

    Multi-character operators (``&&``, ``||``) get a backslash per character.
    A string without reserved characters is returned unchanged.
    """
    return _RESERVED_CHARS.sub(lambda m: "".join("\\" + ch for ch in m.group(0)), value)


def _split_fields(fields: Optional[FieldList]) -> List[str]:
    """Accept ``"a b"`` or ``["a", "b"]``; ``["a b"]`` is split as well."""
    if not fields:
        return []
    if isinstance(fields, str):
        return fields.split()
    return [name for entry in fields for name in str(entry).split()]


def _wire_bool(value: bool) -> str:
    return "true" if value else "false"


def _non_negative_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer, got {value!r}")
    return value


@dataclass
class RelevanceOptions:
    """Switches the main query to the (extended) dismax relevance parser."""

    query_fields: Optional[FieldList] = None
    extended: bool = False

    @property
    def def_type(self) -> str:
        return "edismax" if self.extended else "dismax"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RelevanceOptions":
        return cls(
            query_fields=data.get("queryFields", data.get("query_fields")),
            extended=bool(data.get("extended", False)),
        )


@dataclass
class FacetContains:
    """Restricts facet values to those containing ``text``."""

    text: str
    ignore_case: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FacetContains":
        return cls(text=data["text"], ignore_case=data.get("ignoreCase", data.get("ignore_case")))


@dataclass
class RangeFacet:
    """Bucketed counts over a date or numeric field.

    ``gap`` uses the backend's literal syntax, e.g. ``+1DAY`` or ``+100``.
    """

    fields: FieldList
    start: Optional[str] = None
    end: Optional[str] = None
    gap: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RangeFacet":
        return cls(
            fields=data.get("fields") or [],
            start=data.get("start"),
            end=data.get("end"),
            gap=data.get("gap"),
        )


@dataclass
class FacetOptions:
    fields: Optional[FieldList] = None
    mincount: int = DEFAULT_FACET_MINCOUNT
    limit: int = DEFAULT_FACET_LIMIT
    contains: Optional[FacetContains] = None
    range: Optional[RangeFacet] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FacetOptions":
        contains = data.get("contains")
        range_ = data.get("range")
        return cls(
            fields=data.get("fields"),
            mincount=data.get("mincount", DEFAULT_FACET_MINCOUNT),
            limit=data.get("limit", DEFAULT_FACET_LIMIT),
            contains=FacetContains.from_dict(contains) if contains and contains.get("text") else None,
            range=RangeFacet.from_dict(range_) if range_ else None,
        )


@dataclass
class GeoPoint:
    lat: float
    lng: float

    def to_wire(self) -> str:
        return f"{self.lat},{self.lng}"


@dataclass
class SpatialOptions:
    """Geospatial filter around ``position``."""

    position: Optional[GeoPoint] = None
    distance: Optional[float] = None
    field: str = DEFAULT_SPATIAL_FIELD
    distance_unit: str = DEFAULT_DISTANCE_UNIT
    filter_mode: str = DEFAULT_FILTER_MODE
    sort_direction: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SpatialOptions":
        position = data.get("position")
        return cls(
            position=GeoPoint(float(position["lat"]), float(position["lng"])) if position else None,
            distance=data.get("distance"),
            field=data.get("field") or DEFAULT_SPATIAL_FIELD,
            distance_unit=(
                data.get("distanceUnit") or data.get("distanceUnits") or DEFAULT_DISTANCE_UNIT
            ),
            filter_mode=data.get("filterMode") or data.get("filter") or DEFAULT_FILTER_MODE,
            sort_direction=data.get("sortDirection") or data.get("sort"),
        )


@dataclass
class QuerySpec:
    """Structured search request.

    Every option is optional. Without ``query`` everything matches, without
    ``fields`` all fields are returned, ``rows`` defaults to 10 and ``start``
    to 0. ``rows=0`` returns only counts and facets.
    """

    query: Optional[str] = None
    fields: Optional[FieldList] = None
    rows: int = DEFAULT_ROWS
    sort: Optional[str] = None
    start: int = DEFAULT_START
    facet_query: Union[str, Sequence[str], None] = None
    is_managed: Optional[bool] = None
    relevance: Optional[RelevanceOptions] = None
    facet: Optional[FacetOptions] = None
    spatial: Optional[SpatialOptions] = None
    field_override: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QuerySpec":
        """Create a QuerySpec from camelCase options.

        Older option names are accepted too: ``facetquery``, ``dismax``,
        ``spacialsearch``/``spatialsearch`` and ``override``.
        """
        relevance = data.get("relevance", data.get("dismax"))
        facet = data.get("facet")
        spatial = data.get("spatial", data.get("spatialsearch", data.get("spacialsearch")))
        rows = data.get("rows")
        start = data.get("start")
        return cls(
            query=data.get("query") or None,
            fields=data.get("fields") or None,
            rows=DEFAULT_ROWS if rows is None else rows,
            sort=data.get("sort") or None,
            start=DEFAULT_START if start is None else start,
            facet_query=data.get("facetQuery", data.get("facetquery")) or None,
            is_managed=data.get("isManaged"),
            relevance=RelevanceOptions.from_dict(relevance) if relevance is not None else None,
            facet=FacetOptions.from_dict(facet) if facet is not None else None,
            spatial=SpatialOptions.from_dict(spatial) if spatial else None,
            field_override=dict(data.get("fieldOverride", data.get("override")) or {}),
        )


def _compile_facets(facet: FacetOptions, params: WireParams) -> None:
    params["facet"] = _wire_bool(True)
    params["facet.field"] = _split_fields(facet.fields)
    params["facet.mincount"] = _non_negative_int(facet.mincount, "facet.mincount")
    params["facet.limit"] = facet.limit
    if facet.contains is not None:
        params["facet.contains"] = facet.contains.text
        if facet.contains.ignore_case is not None:
            params["facet.contains.ignoreCase"] = _wire_bool(facet.contains.ignore_case)
    if facet.range is not None:
        range_fields = _split_fields(facet.range.fields)
        if not range_fields:
            raise ValidationError("facet.range requires at least one field")
        params["facet.range"] = range_fields
        for key in ("start", "end", "gap"):
            value = getattr(facet.range, key)
            if value is not None:
                params[f"facet.range.{key}"] = value


def _compile_spatial(spatial: SpatialOptions, params: WireParams, fq: List[str], sort: List[str]) -> None:
    if spatial.filter_mode not in FILTER_MODES:
        raise ValidationError(
            f"spatial filter mode must be one of {', '.join(FILTER_MODES)}, got {spatial.filter_mode!r}"
        )
    if spatial.distance_unit not in DISTANCE_UNITS:
        raise ValidationError(
            f"distance unit must be one of {', '.join(DISTANCE_UNITS)}, got {spatial.distance_unit!r}"
        )
    fq.insert(0, f"{{!{spatial.filter_mode}}}")
    params["pt"] = spatial.position.to_wire()
    params["sfield"] = spatial.field
    params["distanceUnits"] = spatial.distance_unit
    if spatial.distance is not None:
        params["d"] = spatial.distance
    if spatial.sort_direction:
        direction = spatial.sort_direction.lower()
        if direction not in SORT_DIRECTIONS:
            raise ValidationError(f"spatial sort must be 'asc' or 'desc', got {spatial.sort_direction!r}")
        sort.append(f"geodist() {direction}")


def _compile_overrides(overrides: Mapping[str, Any], params: WireParams) -> None:
    for key, value in overrides.items():
        if isinstance(value, Mapping):
            for param, inner in value.items():
                params[f"f.{key}.{param}"] = _wire_bool(inner) if isinstance(inner, bool) else inner
        else:
            params[f"f.{key}"] = _wire_bool(value) if isinstance(value, bool) else value


def compile_query(spec: Union[QuerySpec, Mapping[str, Any], None] = None) -> WireParams:
    """Compile a query specification into search endpoint parameters.

    Args:
        spec: A QuerySpec, a mapping of camelCase options, or None for the
            default "everything, first 10 rows" query.

    Returns:
        Parameter mapping; list values are sent as repeated parameters.

    Raises:
        ValidationError: If rows/start are not non-negative integers or a
            spatial/facet option is out of range.
    """
    if spec is None:
        spec = QuerySpec()
    elif not isinstance(spec, QuerySpec):
        spec = QuerySpec.from_dict(spec)

    params: WireParams = {
        "q": spec.query or MATCH_ALL_QUERY,
        "fl": ",".join(_split_fields(spec.fields)) if spec.fields else ALL_FIELDS,
        "rows": _non_negative_int(spec.rows, "rows"),
        "start": _non_negative_int(spec.start, "start"),
    }

    fq: List[str] = []
    if isinstance(spec.facet_query, str):
        fq.append(spec.facet_query)
    elif spec.facet_query:
        fq.extend(spec.facet_query)
    if spec.is_managed is not None:
        fq.append(f'isManaged:("{_wire_bool(bool(spec.is_managed))}")')

    sort: List[str] = [spec.sort] if spec.sort else []

    if spec.relevance is not None:
        params["defType"] = spec.relevance.def_type
        query_fields = _split_fields(spec.relevance.query_fields)
        if query_fields:
            params["qf"] = " ".join(query_fields)
    else:
        params["defType"] = "lucene"

    if spec.facet is not None:
        _compile_facets(spec.facet, params)

    if spec.spatial is not None and spec.spatial.position is not None:
        _compile_spatial(spec.spatial, params, fq, sort)

    if fq:
        params["fq"] = [clause for clause in fq if clause]
    if sort:
        params["sort"] = ",".join(sort)

    # Per-field overrides win over the general facet/sort settings
    _compile_overrides(spec.field_override, params)

    return params
