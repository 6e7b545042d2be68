"""Azure DevOps REST API client for metrics data retrieval.

All calls go through the shared :class:`~ado_metrics.http.AdoHttp` transport
and the shared :class:`~ado_metrics.cache.TtlLruCache`. Every response is
validated against :mod:`ado_metrics.schemas`; a mismatch raises
``ResponseValidationError`` and is never retried.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar, Union
from urllib.parse import quote

from requests.structures import CaseInsensitiveDict

from .cache import TtlLruCache
from .config import Config
from .errors import PagingSafetyError
from .http import AdoHttp
from .models import DirectoryUser, Person
from .schemas import (
    MAX_AREA_DEPTH,
    AreaNode,
    GraphUser,
    PolicyEvaluation,
    PRIteration,
    PRReviewer,
    PRThread,
    PullRequest,
    WiqlResponse,
    WorkItem,
    WorkItemReference,
    WorkItemUpdate,
    normalize_list,
    validate_area_tree,
    validate_list,
    validate_record,
)
from .timeutil import EPOCH, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T")
Timestamp = Union[datetime, str]


def stable_hash(value: Any) -> str:
    """Return a short, process-independent hash for cache keys."""
    text = value if isinstance(value, str) else json.dumps(value, sort_keys=True, default=str)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


class AdoClient:
    """Typed, cached client for the work tracking, Git and Graph APIs."""

    _API_VERSION = "7.1"
    _GRAPH_API_VERSION = "7.1-preview.1"
    _BATCH_SIZE = 200
    _MAX_PAGES = 200
    _CONTINUATION_HEADER = "x-ms-continuationtoken"
    _PULL_REQUEST_PAGE_SIZE = 100
    _UPDATES_PAGE_SIZE = 200
    DEFAULT_TARGET_REFS = ("refs/heads/main",)

    def __init__(
        self,
        config: Config,
        http: Optional[AdoHttp] = None,
        cache: Optional[TtlLruCache] = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Validated runtime configuration.
            http: Shared transport; built from ``config`` when omitted.
            cache: Shared response cache; built from ``config`` when omitted.
        """
        self._config = config
        self._http = http or AdoHttp.from_config(config)
        self._cache = cache or TtlLruCache(max_entries=config.cache_max_entries)
        self._ttl_ms = config.cache_ttl_ms

        organization = quote(config.organization, safe="")
        self._org_url = f"https://dev.azure.com/{organization}"
        self._base_url = f"{self._org_url}/{quote(config.project, safe='')}/_apis"
        self._graph_url = f"https://vssps.dev.azure.com/{organization}/_apis/graph/users"

        self._service_pattern = (
            re.compile(config.exclude_users_regex, re.IGNORECASE)
            if config.exclude_users_regex
            else None
        )
        self._excluded_users = {user.casefold() for user in config.exclude_users}

    @property
    def cache(self) -> TtlLruCache:
        return self._cache

    def _build_url(self, path: str) -> str:
        """Build a fully qualified API URL from a path below ``_apis``."""
        return f"{self._base_url}/{path.lstrip('/')}"

    def _repo_url(self, path: str) -> str:
        repo = quote(self._config.repo_id, safe="")
        return self._build_url(f"git/repositories/{repo}/{path.lstrip('/')}")

    def _params(self, extra: Optional[Dict[str, Any]] = None, version: Optional[str] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {"api-version": version or self._API_VERSION}
        params.update(extra or {})
        return params

    def _cached(self, key: str, loader: Callable[[], T], bypass: bool = False) -> T:
        return self._cache.get_or_set(key, self._ttl_ms, loader, bypass=bypass)

    def _fan_out(self, func: Callable[[Any], T], items: Sequence[Any]) -> List[T]:
        """Run ``func`` over ``items`` on worker threads, preserving order."""
        if len(items) <= 1:
            return [func(item) for item in items]
        workers = min(len(items), self._http.max_concurrency)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(func, items))

    def query_by_wiql(self, query: str) -> List[int]:
        """Run a WIQL query and return the matching work item ids in order."""

        def load() -> List[int]:
            payload = self._http.fetch_json(
                self._build_url("wit/wiql"),
                method="POST",
                params=self._params(),
                json_body={"query": query},
            )
            response = validate_record(WiqlResponse, payload, "WIQL")
            return [reference.id for reference in response.workItems]

        return self._cached(f"wiql:{stable_hash(query)}", load)

    def _fetch_work_item_chunk(self, chunk: List[int], fields: Optional[List[str]]) -> List[WorkItem]:
        def load() -> List[WorkItem]:
            body: Dict[str, Any] = {"ids": chunk, "errorPolicy": "omit"}
            if fields:
                body["fields"] = fields
            payload = self._http.fetch_json(
                self._build_url("wit/workitemsbatch"),
                method="POST",
                params=self._params(),
                json_body=body,
            )
            # errorPolicy=omit returns null for ids that no longer exist
            present = [item for item in normalize_list(payload, "work items batch") if item is not None]
            return validate_list(WorkItem, present, "work items batch")

        return self._cached(f"wibatch:{stable_hash([chunk, fields])}", load)

    def get_work_items_batch(
        self,
        ids: Sequence[int],
        fields: Optional[Sequence[str]] = None,
    ) -> List[WorkItem]:
        """Fetch work items in chunks of 200, returned in the order of ``ids``.

        Items the service returns for ids that were not requested are dropped.
        """
        if not ids:
            return []

        id_list = list(ids)
        field_list = list(fields) if fields else None
        chunks = [id_list[i : i + self._BATCH_SIZE] for i in range(0, len(id_list), self._BATCH_SIZE)]
        results = self._fan_out(lambda chunk: self._fetch_work_item_chunk(chunk, field_list), chunks)

        position: Dict[int, int] = {}
        for index, item_id in enumerate(id_list):
            position.setdefault(item_id, index)

        items = [item for chunk_items in results for item in chunk_items if item.id in position]
        items.sort(key=lambda item: position[item.id])
        return items

    def _paged(
        self,
        url: str,
        params: Dict[str, Any],
        context: str,
    ) -> List[Any]:
        """Follow continuation cursors, at most ``_MAX_PAGES`` pages.

        The cursor is read from the body's ``continuationToken`` and, failing
        that, from the ``x-ms-continuationtoken`` response header.
        """
        rows: List[Any] = []
        token: Optional[str] = None
        for _ in range(self._MAX_PAGES):
            page_params = dict(params)
            if token:
                page_params["continuationToken"] = token
            payload, headers = self._http.fetch_json_with_headers(url, params=page_params)
            rows.extend(normalize_list(payload, context))
            token = payload.get("continuationToken") if isinstance(payload, dict) else None
            if not token:
                token = CaseInsensitiveDict(headers or {}).get(self._CONTINUATION_HEADER)
            if not token:
                return rows

        logger.error(
            "Pagination exceeded safety limit",
            extra={"url": url, "max_pages": self._MAX_PAGES},
        )
        raise PagingSafetyError(
            f"Pagination for {context} exceeded {self._MAX_PAGES} pages: {url}"
        )

    def list_work_item_updates_paged(self, work_item_id: int) -> List[WorkItemUpdate]:
        """Fetch all updates of a work item, sorted ascending by ``revisedDate``."""

        def load() -> List[WorkItemUpdate]:
            rows = self._paged(
                self._build_url(f"wit/workitems/{int(work_item_id)}/updates"),
                self._params({"$top": self._UPDATES_PAGE_SIZE}),
                "work item updates",
            )
            updates = validate_list(WorkItemUpdate, rows, "work item updates")
            updates.sort(key=lambda update: parse_timestamp(update.revisedDate) or EPOCH)
            return updates

        return self._cached(f"wiupdates:{int(work_item_id)}", load)

    def _search_pull_requests(self, params: Dict[str, Any]) -> List[PullRequest]:
        def load() -> List[PullRequest]:
            pull_requests: List[PullRequest] = []
            skip = 0
            for _ in range(self._MAX_PAGES):
                page_params = dict(params)
                page_params["$top"] = self._PULL_REQUEST_PAGE_SIZE
                page_params["$skip"] = skip
                payload = self._http.fetch_json(self._repo_url("pullrequests"), params=page_params)
                page_items = validate_list(PullRequest, payload, "pull requests")
                pull_requests.extend(page_items)
                if len(page_items) < self._PULL_REQUEST_PAGE_SIZE:
                    return pull_requests
                skip += self._PULL_REQUEST_PAGE_SIZE
            raise PagingSafetyError(
                f"Pagination for pull requests exceeded {self._MAX_PAGES} pages."
            )

        return self._cached(f"prs:{self._config.repo_id}:{stable_hash(params)}", load)

    def list_pull_requests(
        self,
        start: Timestamp,
        end: Timestamp,
        status: str = "all",
        target_refs: Optional[Iterable[str]] = None,
    ) -> List[PullRequest]:
        """List pull requests created in ``[start, end]`` for each target branch.

        One search runs per target ref (default ``refs/heads/main``); results
        are merged and deduplicated by id, keeping first-seen order.
        """
        refs = list(target_refs or self.DEFAULT_TARGET_REFS)
        base = {
            "api-version": self._API_VERSION,
            "searchCriteria.status": status,
            "searchCriteria.queryTimeRangeType": "created",
            "searchCriteria.minTime": _as_query_time(start),
            "searchCriteria.maxTime": _as_query_time(end),
        }
        searches = [dict(base, **{"searchCriteria.targetRefName": ref}) for ref in refs]
        results = self._fan_out(self._search_pull_requests, searches)

        seen = set()
        merged: List[PullRequest] = []
        for pull_requests in results:
            for pr in pull_requests:
                if pr.id in seen:
                    continue
                seen.add(pr.id)
                merged.append(pr)

        logger.info(
            "Listed pull requests",
            extra={"target_refs": refs, "pull_requests": len(merged)},
        )
        return merged

    def _list_pr_resource(self, pr_id: int, resource: str, model: Any) -> List[Any]:
        def load() -> List[Any]:
            payload = self._http.fetch_json(
                self._repo_url(f"pullRequests/{int(pr_id)}/{resource}"),
                params=self._params(),
            )
            return validate_list(model, payload, f"pull request {resource}")

        return self._cached(f"pr-{resource}:{self._config.repo_id}:{int(pr_id)}", load)

    def list_pr_threads(self, pr_id: int) -> List[PRThread]:
        return self._list_pr_resource(pr_id, "threads", PRThread)

    def list_pr_reviewers(self, pr_id: int) -> List[PRReviewer]:
        return self._list_pr_resource(pr_id, "reviewers", PRReviewer)

    def list_pr_iterations(self, pr_id: int) -> List[PRIteration]:
        return self._list_pr_resource(pr_id, "iterations", PRIteration)

    def list_pr_work_items(self, pr_id: int) -> List[WorkItemReference]:
        return self._list_pr_resource(pr_id, "workitems", WorkItemReference)

    def list_policy_evaluations(self, project_id: str, pr_id: int) -> List[PolicyEvaluation]:
        """List policy evaluations (builds, reviewer policies) for a pull request."""
        artifact_id = f"vstfs:///CodeReview/CodeReviewId/{project_id}/{int(pr_id)}"

        def load() -> List[PolicyEvaluation]:
            payload = self._http.fetch_json(
                self._build_url("policy/evaluations"),
                params=self._params({"artifactId": artifact_id}, version=f"{self._API_VERSION}-preview.1"),
            )
            return validate_list(PolicyEvaluation, payload, "policy evaluations")

        return self._cached(f"policies:{project_id}:{int(pr_id)}", load)

    def is_service_account(self, user: GraphUser) -> bool:
        """Whether any identity field matches the exclusion regex or list."""
        values = [user.uniqueName, user.mailAddress, user.displayName, user.descriptor]
        for value in values:
            if not value:
                continue
            if value.strip().casefold() in self._excluded_users:
                return True
            if self._service_pattern is not None and self._service_pattern.search(value):
                return True
        return False

    def list_graph_users(self, bypass: bool = False) -> List[DirectoryUser]:
        """List organization users, flagging service accounts.

        Args:
            bypass: Skip the cache and always fetch from the directory.
        """

        def load() -> List[DirectoryUser]:
            rows = self._paged(
                self._graph_url,
                self._params({"subjectTypes": "aad,msa"}, version=self._GRAPH_API_VERSION),
                "graph users",
            )
            users = validate_list(GraphUser, rows, "graph users")
            return [
                DirectoryUser(
                    id=user.id,
                    display_name=user.displayName,
                    unique_name=user.uniqueName,
                    mail_address=user.mailAddress,
                    descriptor=user.descriptor,
                    is_service_account=self.is_service_account(user),
                )
                for user in users
            ]

        return self._cached(f"graph-users:{self._config.organization}", load, bypass=bypass)

    def people(self, bypass: bool = False) -> List[Person]:
        """Return human directory users as ``Person`` records."""
        people: List[Person] = []
        for user in self.list_graph_users(bypass=bypass):
            if user.is_service_account:
                continue
            people.append(
                Person(
                    id=user.id,
                    email=user.unique_name or user.mail_address or "",
                    display_name=user.display_name or user.unique_name or user.descriptor or user.id,
                )
            )
        return people

    def list_area_paths(self, depth: int) -> AreaNode:
        """Fetch the area classification tree down to ``depth`` levels."""
        if depth < 0:
            raise ValueError("depth must be zero or greater")

        def load() -> AreaNode:
            payload = self._http.fetch_json(
                self._build_url("wit/classificationnodes/Areas"),
                params=self._params({"$depth": depth}),
            )
            return validate_area_tree(payload, max_depth=min(depth, MAX_AREA_DEPTH) + 1)

        return self._cached(f"areas:{self._config.project}:{depth}", load)


def _as_query_time(value: Timestamp) -> str:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ValueError("start and end must be datetimes or non-empty ISO8601 strings")
