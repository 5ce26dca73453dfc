# src/core/graphql_discovery.py
"""
Best-effort telemetry from the firmware GraphQL endpoint (Braiins OS).

The schema differs between firmware releases, so every poll first introspects
the root query fields and the telemetry-bearing types, then walks a short list
of candidate queries until one returns data without GraphQL errors. Anything
that goes wrong resolves to None: this source must never fail a poll.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import requests

from src.config import settings
from src.core.telemetry_normalizer import to_number

logger = logging.getLogger(__name__)

ROOT_INTROSPECTION_QUERY = "{ __schema { queryType { fields { name } } } }"
TYPE_INTROSPECTION_QUERY = '{ __type(name: "%s") { name fields { name } } }'

FAN_RPM_QUERY = "{ bosminer { info { fans { name rpm } } } }"
HASHBOARD_TEMP_QUERY = (
    "{ bosminer { info { workSolver { childSolvers "
    "{ name temperatures { degreesC } } } } } }"
)
SUMMARY_TEMP_QUERY = (
    "{ bosminer { info { summary { temperature { degreesC } } } } }"
)
LIVENESS_QUERY = "{ __typename }"


@dataclass(frozen=True)
class GraphQLTelemetry:
    query_name: str
    board_temps: tuple[Optional[float], ...] = ()
    chip_temp: Optional[float] = None
    fan_speeds: tuple[int, ...] = ()
    schema_fields: dict[str, list[str]] = field(default_factory=dict)

    def has_temperatures(self) -> bool:
        return self.chip_temp is not None

    def has_fans(self) -> bool:
        return bool(self.fan_speeds)


# ---------------------------------------------------------
# Loosely-typed document access
# ---------------------------------------------------------


def _dig(document: Any, *path: str) -> Any:
    """Follow dict keys; None as soon as a step is missing or not a dict."""
    current = document
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _degrees(entry: Any) -> Optional[float]:
    if isinstance(entry, dict):
        value = entry.get("degreesC")
    else:
        value = entry
    number = to_number(value)
    if number is None or not settings.TEMP_MIN_C < number <= settings.TEMP_MAX_C:
        return None
    return number


# ---------------------------------------------------------
# Result parsers, one per candidate query
# ---------------------------------------------------------


def _parse_fans(data: dict[str, Any]) -> dict[str, Any]:
    fans = _as_list(_dig(data, "bosminer", "info", "fans"))
    speeds = []
    for fan in fans:
        rpm = to_number(_dig(fan, "rpm"))
        if rpm is not None and rpm > 0:
            speeds.append(int(round(rpm)))
    return {"fan_speeds": tuple(speeds[: settings.MAX_FANS])}


def _parse_hashboards(data: dict[str, Any]) -> dict[str, Any]:
    solvers = _as_list(_dig(data, "bosminer", "info", "workSolver", "childSolvers"))
    boards = []
    for solver in solvers:
        temps = [_degrees(t) for t in _as_list(_dig(solver, "temperatures"))]
        temps = [t for t in temps if t is not None]
        boards.append(max(temps) if temps else None)
    present = [t for t in boards if t is not None]
    return {
        "board_temps": tuple(boards[: settings.MAX_BOARDS]),
        "chip_temp": max(present) if present else None,
    }


def _parse_summary(data: dict[str, Any]) -> dict[str, Any]:
    return {"chip_temp": _degrees(_dig(data, "bosminer", "info", "summary", "temperature"))}


def _parse_liveness(data: dict[str, Any]) -> dict[str, Any]:
    return {}


@dataclass(frozen=True)
class CandidateQuery:
    name: str
    query: str
    parser: Callable[[dict[str, Any]], dict[str, Any]]
    root_field: Optional[str] = None  # required Query field
    type_name: Optional[str] = None  # required telemetry type


CANDIDATE_QUERIES: tuple[CandidateQuery, ...] = (
    CandidateQuery("fans", FAN_RPM_QUERY, _parse_fans, "bosminer", "Fan"),
    CandidateQuery("hashboards", HASHBOARD_TEMP_QUERY, _parse_hashboards, "bosminer", "WorkSolver"),
    CandidateQuery("summary", SUMMARY_TEMP_QUERY, _parse_summary, "bosminer"),
    CandidateQuery("liveness", LIVENESS_QUERY, _parse_liveness),
)


def supported_by(candidate: CandidateQuery, schema: Optional[dict[str, list[str]]]) -> bool:
    """
    Whether the introspected schema can answer `candidate`.

    Without a schema every candidate is tried. Type requirements only apply
    when at least one telemetry type answered introspection; firmware that
    hides `__type` still gets the query.
    """
    if schema is None:
        return True
    if candidate.root_field is not None and candidate.root_field not in schema.get("Query", []):
        return False
    types_known = any(name != "Query" for name in schema)
    if candidate.type_name is not None and types_known:
        return candidate.type_name in schema
    return True


# ---------------------------------------------------------
# HTTP
# ---------------------------------------------------------


def _post_query(
    session: requests.Session, url: str, query: str
) -> Optional[dict[str, Any]]:
    """
    POST one query; return the `data` map or None on any error.

    Connection failures and timeouts are raised: an endpoint that cannot be
    reached will not answer the next query either.
    """
    try:
        resp = session.post(
            url,
            json={"query": query},
            auth=(settings.GRAPHQL_USERNAME, settings.GRAPHQL_PASSWORD),
            headers={"User-Agent": settings.LIVE_DATA_USER_AGENT},
            timeout=settings.GRAPHQL_TIMEOUT_S,
        )
        resp.raise_for_status()
        payload = resp.json()
    except (requests.ConnectionError, requests.Timeout):
        raise
    except (requests.RequestException, ValueError) as exc:
        logger.debug("GraphQL request to %s failed: %s", url, exc)
        return None

    if not isinstance(payload, dict):
        return None
    if payload.get("errors"):
        logger.debug("GraphQL errors from %s: %s", url, payload["errors"])
        return None
    data = payload.get("data")
    return data if isinstance(data, dict) else None


def introspect_schema(session: requests.Session, url: str) -> Optional[dict[str, list[str]]]:
    """
    Map root query fields and telemetry type fields.

    Returns {"Query": [...], "Fan": [...], ...}, or None when the endpoint does
    not answer introspection at all. Raises when it cannot be reached.
    """
    root = _post_query(session, url, ROOT_INTROSPECTION_QUERY)
    if root is None:
        return None

    schema: dict[str, list[str]] = {}
    fields = _as_list(_dig(root, "__schema", "queryType", "fields"))
    schema["Query"] = [f["name"] for f in fields if isinstance(f, dict) and "name" in f]

    for type_name in settings.GRAPHQL_TELEMETRY_TYPES:
        typed = _post_query(session, url, TYPE_INTROSPECTION_QUERY % type_name)
        type_fields = _as_list(_dig(typed, "__type", "fields"))
        if type_fields:
            schema[type_name] = [
                f["name"] for f in type_fields if isinstance(f, dict) and "name" in f
            ]
    return schema


def discover(
    address: str, session: Optional[requests.Session] = None
) -> Optional[GraphQLTelemetry]:
    """
    Introspect the miner's GraphQL schema and run the ranked telemetry queries.

    Candidates the schema cannot answer are skipped. Stops at the first query
    that returns data without GraphQL errors. Returns None when the endpoint
    is unreachable or no query succeeds; an unreachable endpoint costs a
    single request.
    """
    url = f"http://{address}{settings.GRAPHQL_PATH}"
    owns_session = session is None
    session = session or requests.Session()
    winner: Optional[str] = None
    found: dict[str, Any] = {}
    try:
        schema = introspect_schema(session, url)
        if schema is None:
            logger.debug("GraphQL introspection unavailable on %s", address)
        else:
            logger.debug("GraphQL schema for %s: %s", address, schema)

        for candidate in CANDIDATE_QUERIES:
            if not supported_by(candidate, schema):
                logger.debug("Skipping GraphQL query %s on %s", candidate.name, address)
                continue
            data = _post_query(session, url, candidate.query)
            if data is not None:
                winner = candidate.name
                found = candidate.parser(data)
                break
    except (requests.ConnectionError, requests.Timeout) as exc:
        logger.debug("GraphQL endpoint %s unreachable: %s", url, exc)
        return None
    finally:
        if owns_session:
            session.close()

    if winner is None:
        return None

    return GraphQLTelemetry(
        query_name=winner,
        board_temps=tuple(found.get("board_temps", ())),
        chip_temp=found.get("chip_temp"),
        fan_speeds=tuple(found.get("fan_speeds", ())),
        schema_fields=schema or {},
    )
