"""
Protocol Adapter

Translates a logical, protocol-agnostic request into the wire shape of one
of the two CiviCRM API generations, and normalizes whatever comes back
into one canonical response shape.

    APIv4 (JSON-body AJAX):
        POST <base>/civicrm/ajax/api4/<Entity>/<action>
        Content-Type: application/x-www-form-urlencoded
        params=<JSON {select, where, values, limit, orderBy, ...}>

    APIv3 (query-string RPC):
        GET <base><rest_path>?entity=..&action=..&api_key=..&key=..&json=1&<flattened query>

The adapter is pure: no I/O. One strategy is selected per connection, so
call sites never branch on the protocol version.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .credentials import ApiKey, Credential
from .errors import BackendError

logger = logging.getLogger(__name__)


class ProtocolVersion(str, Enum):
    """Backend API generation, configured per connection"""
    V3 = "3"
    V4 = "4"

    @classmethod
    def parse(cls, value: Union[str, int, "ProtocolVersion"]) -> "ProtocolVersion":
        if isinstance(value, ProtocolVersion):
            return value
        return cls(str(value).strip().lower().lstrip("v"))


ACTIONS = ("get", "create", "update")

DEFAULT_REST_PATH = "/civicrm/extern/rest.php"
DEFAULT_AJAX_PATH = "/civicrm/ajax"

# Where clause: [field, operator, value]
Clause = Sequence[Any]


@dataclass
class ApiQuery:
    """
    Logical query. Field names follow APIv4 conventions.

    Example:
        ApiQuery(
            select=["id", "status_id"],
            where=[["id", "=", 1042], ["event_id", "=", 7]],
            limit=1,
        )
    """
    select: List[str] = field(default_factory=list)
    where: List[Clause] = field(default_factory=list)
    values: Dict[str, Any] = field(default_factory=dict)
    limit: Optional[int] = None
    order_by: Dict[str, str] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_value(cls, value: Union["ApiQuery", Mapping[str, Any], None]) -> "ApiQuery":
        """Accept an ApiQuery or a plain dict using APIv4 key names"""
        if value is None:
            return cls()
        if isinstance(value, ApiQuery):
            return value

        data = dict(value)
        return cls(
            select=list(data.pop("select", [])),
            where=[list(c) for c in data.pop("where", [])],
            values=dict(data.pop("values", {})),
            limit=data.pop("limit", None),
            order_by=dict(data.pop("orderBy", data.pop("order_by", {}))),
            extra=data,
        )

    def equals(self, name: str) -> Optional[Any]:
        """Value of the first `name = value` clause, if any"""
        for clause in self.where:
            if len(clause) >= 3 and clause[0] == name and clause[1] == "=":
                return clause[2]
        return None

    def to_params(self) -> Dict[str, Any]:
        """APIv4 `params` object; empty parts are omitted"""
        params: Dict[str, Any] = {}
        if self.select:
            params["select"] = list(self.select)
        if self.where:
            params["where"] = [list(c) for c in self.where]
        if self.values:
            params["values"] = dict(self.values)
        if self.limit is not None:
            params["limit"] = self.limit
        if self.order_by:
            params["orderBy"] = dict(self.order_by)
        params.update(self.extra)
        return params


@dataclass
class ApiRequest:
    """Protocol-agnostic (entity, action, query) triple"""
    entity: str
    action: str
    query: ApiQuery = field(default_factory=ApiQuery)

    def __post_init__(self):
        if self.action not in ACTIONS:
            raise ValueError(f"Unsupported action '{self.action}', expected one of {ACTIONS}")
        self.query = ApiQuery.from_value(self.query)


@dataclass
class WireRequest:
    """Concrete HTTP request descriptor"""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    data: Dict[str, str] = field(default_factory=dict)


@dataclass
class ApiResponse:
    """
    Canonical response.

    `values` is always an ordered list of records. Index order carries no
    meaning beyond "one record". For non-list payloads `values` is empty
    and the untouched body is available as `payload`.
    """
    values: List[Any] = field(default_factory=list)
    payload: Any = None

    @property
    def first(self) -> Optional[Any]:
        return self.values[0] if self.values else None

    def __len__(self):
        return len(self.values)

    def to_dict(self) -> Dict[str, Any]:
        return {"values": list(self.values)}


def normalize_values(values: Any) -> List[Any]:
    """Map-of-id-to-record becomes a list in key order; lists pass through"""
    if isinstance(values, Mapping):
        return list(values.values())
    if isinstance(values, (list, tuple)):
        return list(values)
    return [values]


def parse_response(raw: Any) -> ApiResponse:
    """
    Normalize a decoded response body.

    - bare list           -> values = list
    - {values: list|map}  -> values = normalized list
    - {is_error: truthy}  -> raises BackendError(error_message)
    - anything else       -> values = [], payload = raw

    Raises:
        BackendError: for the APIv3 error envelope, and nothing else
    """
    if isinstance(raw, ApiResponse):
        return raw

    if isinstance(raw, (list, tuple)):
        return ApiResponse(values=list(raw), payload=raw)

    if isinstance(raw, Mapping):
        if raw.get("values") is not None:
            return ApiResponse(values=normalize_values(raw["values"]), payload=raw)

        if raw.get("is_error"):
            message = raw.get("error_message") or "Unknown backend error"
            raise BackendError(status=raw.get("status"), message=message)

    return ApiResponse(values=[], payload=raw)


def _bearer_token(credential: Credential) -> str:
    token = getattr(credential, "access_token", None) or getattr(credential, "token", None)
    if not token:
        raise ValueError(f"Credential {credential!r} carries no bearer token")
    return token


class ProtocolAdapter(ABC):
    """Encodes requests and decodes responses for one API generation"""

    version: ProtocolVersion

    @abstractmethod
    def build_request(self, request: ApiRequest, credential: Credential, base_url: str) -> WireRequest:
        """Encode `request` into a wire descriptor authenticated by `credential`"""

    def parse_response(self, raw: Any) -> ApiResponse:
        return parse_response(raw)

    def probe_request(self) -> ApiRequest:
        """Minimal read-only request used to validate credentials"""
        return ApiRequest("Contact", "get", ApiQuery(select=["id"], limit=1))

    @staticmethod
    def _join(base_url: str, path: str) -> str:
        return base_url.rstrip("/") + "/" + path.lstrip("/")


class V4Protocol(ProtocolAdapter):
    """APIv4: JSON parameters in a form-encoded POST body"""

    version = ProtocolVersion.V4

    def __init__(self, ajax_path: str = DEFAULT_AJAX_PATH):
        self.ajax_path = ajax_path

    def build_request(self, request: ApiRequest, credential: Credential, base_url: str) -> WireRequest:
        url = self._join(base_url, f"{self.ajax_path.rstrip('/')}/api4/{request.entity}/{request.action}")

        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "X-Requested-With": "XMLHttpRequest",
        }
        if isinstance(credential, ApiKey):
            headers["X-Civi-Auth"] = f"Bearer {credential.key}"
        else:
            headers["Authorization"] = f"Bearer {_bearer_token(credential)}"

        return WireRequest(
            method="POST",
            url=url,
            headers=headers,
            data={"params": json.dumps(request.query.to_params())},
        )


class V3Protocol(ProtocolAdapter):
    """
    APIv3: everything in the query string.

    APIv3 has no `update` action; updates are sent as `create` with the
    target `id`, which the backend treats as an update.
    """

    version = ProtocolVersion.V3

    def __init__(self, rest_path: str = DEFAULT_REST_PATH, site_key: str = ""):
        self.rest_path = rest_path
        self.site_key = site_key

    def build_request(self, request: ApiRequest, credential: Credential, base_url: str) -> WireRequest:
        headers: Dict[str, str] = {"X-Requested-With": "XMLHttpRequest"}
        action = request.action
        params: Dict[str, Any] = {"entity": request.entity}

        if isinstance(credential, ApiKey):
            params["api_key"] = credential.key
        else:
            headers["Authorization"] = f"Bearer {_bearer_token(credential)}"

        params["key"] = self.site_key
        params["json"] = 1

        query = request.query
        if action == "update":
            action = "create"
            target = query.equals("id")
            if target is None:
                raise ValueError("APIv3 update requires an 'id =' clause")
            params["id"] = target
        else:
            for name, value in self._flatten_where(query.where):
                params[name] = value

        params["action"] = action

        for name, value in self._flatten(query.values):
            params[name] = value

        if query.limit is not None:
            params["options[limit]"] = query.limit
        if query.order_by:
            params["options[sort]"] = ", ".join(f"{k} {v}" for k, v in query.order_by.items())

        for name, value in self._flatten(query.extra):
            params[name] = value

        return WireRequest(
            method="GET",
            url=self._join(base_url, self.rest_path),
            headers=headers,
            params=params,
        )

    def _flatten_where(self, where: List[Clause]) -> List[Tuple[str, Any]]:
        pairs: List[Tuple[str, Any]] = []
        for clause in where:
            if len(clause) < 3:
                raise ValueError(f"Malformed where clause: {clause!r}")
            name, op, value = clause[0], str(clause[1]).upper(), clause[2]
            if op == "=":
                pairs.extend(self._flatten({name: value}))
            else:
                pairs.append((f"{name}[{op}]", self._scalar(value)))
        return pairs

    def _flatten(self, data: Mapping[str, Any], prefix: str = "") -> List[Tuple[str, Any]]:
        """PHP-style nested keys: {"options": {"limit": 0}} -> options[limit]=0"""
        pairs: List[Tuple[str, Any]] = []
        for key, value in data.items():
            name = f"{prefix}[{key}]" if prefix else str(key)
            if isinstance(value, Mapping):
                pairs.extend(self._flatten(value, name))
            else:
                pairs.append((name, self._scalar(value)))
        return pairs

    @staticmethod
    def _scalar(value: Any) -> Any:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (list, tuple)):
            return ",".join(str(v) for v in value)
        return value


def get_adapter(
    version: Union[str, ProtocolVersion],
    rest_path: str = DEFAULT_REST_PATH,
    site_key: str = "",
    ajax_path: str = DEFAULT_AJAX_PATH,
) -> ProtocolAdapter:
    """Select the protocol strategy for a connection"""
    version = ProtocolVersion.parse(version)
    if version == ProtocolVersion.V4:
        return V4Protocol(ajax_path=ajax_path)
    return V3Protocol(rest_path=rest_path, site_key=site_key)


def build_request(
    version: Union[str, ProtocolVersion],
    request: ApiRequest,
    credential: Credential,
    base_url: str,
    **adapter_options,
) -> WireRequest:
    """Functional form of `ProtocolAdapter.build_request`"""
    return get_adapter(version, **adapter_options).build_request(request, credential, base_url)
