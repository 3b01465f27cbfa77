"""Salesforce REST client.

Implements the Database protocol over the REST API: SOQL queries with
pagination, sObject Collections writes (at most 200 rows per call), describe
calls, and credential lookup through the ``sf`` CLI.
"""

import json
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from sf_migration.client.base_client import BaseAPIClient
from sf_migration.client.database import Record, WriteResult
from sf_migration.client.exceptions import AuthenticationError, ConfigurationError
from sf_migration.config import ID_FIELD, LoggingConfig, OrgConfig
from sf_migration.schema.models import SObjectDescribe
from sf_migration.utils.logging import get_logger

logger = get_logger(__name__)

# sObject Collections accept at most this many records per request.
MAX_COLLECTION_SIZE = 200
SF_CLI_TIMEOUT = 60


@dataclass(frozen=True)
class OrgCredentials:
    """Instance URL and access token of an authenticated org."""

    instance_url: str
    access_token: str
    api_version: str | None = None
    username: str | None = None


def org_credentials(alias: str) -> OrgCredentials:
    """Resolve an org alias to credentials with ``sf org display``.

    Args:
        alias: sf CLI alias or username

    Returns:
        OrgCredentials of the org

    Raises:
        AuthenticationError: If the CLI is missing, fails, or returns no token
    """
    command = ["sf", "org", "display", "--target-org", alias, "--verbose", "--json"]
    logger.debug("sf_cli_org_display", alias=alias)

    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=SF_CLI_TIMEOUT,
            check=False,
        )
    except FileNotFoundError as e:
        raise AuthenticationError("The Salesforce CLI (sf) is not installed or not on PATH") from e
    except subprocess.TimeoutExpired as e:
        raise AuthenticationError(f"sf org display timed out for org '{alias}'") from e

    try:
        payload = json.loads(result.stdout or "{}")
    except json.JSONDecodeError as e:
        raise AuthenticationError(
            f"Unreadable sf CLI output for org '{alias}': {result.stderr or result.stdout}"
        ) from e

    data = payload.get("result") or {}
    if result.returncode != 0 or not data.get("accessToken") or not data.get("instanceUrl"):
        message = payload.get("message") or result.stderr or "no access token returned"
        raise AuthenticationError(f"Cannot authenticate org '{alias}': {message}")

    return OrgCredentials(
        instance_url=data["instanceUrl"],
        access_token=data["accessToken"],
        api_version=data.get("apiVersion"),
        username=data.get("username"),
    )


def _chunks(items: Sequence[Any], size: int) -> list[Sequence[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class SalesforceClient(BaseAPIClient):
    """Async client for one Salesforce org.

    Example:
        async with SalesforceClient.from_org_config(config.source) as org:
            accounts = await org.query("SELECT Id, Name FROM Account")
    """

    def __init__(
        self,
        instance_url: str,
        access_token: str,
        api_version: str = "62.0",
        batch_size: int = MAX_COLLECTION_SIZE,
        **kwargs: Any,
    ):
        """Initialize the Salesforce client.

        Args:
            instance_url: Org instance URL
            access_token: OAuth access token
            api_version: REST API version, without the leading ``v``
            batch_size: Records per sObject Collections call (max 200)
            **kwargs: Passed to BaseAPIClient (timeout, rate_limit, transport, ...)
        """
        super().__init__(instance_url, access_token, **kwargs)
        self.instance_url = self.base_url
        self.api_version = api_version
        self.batch_size = max(1, min(batch_size, MAX_COLLECTION_SIZE))
        self.service_path = f"services/data/v{api_version}"

    @classmethod
    def from_org_config(
        cls,
        org: OrgConfig,
        batch_size: int = MAX_COLLECTION_SIZE,
        rate_limit: int = 20,
        logging_config: LoggingConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "SalesforceClient":
        """Build a client from org settings, resolving the alias if needed.

        Raises:
            ConfigurationError: If the org has neither an alias nor a token
            AuthenticationError: If the alias cannot be resolved
        """
        if org.instance_url and org.access_token:
            instance_url, access_token = org.instance_url, org.access_token
        elif org.alias:
            credentials = org_credentials(org.alias)
            instance_url, access_token = credentials.instance_url, credentials.access_token
        else:
            raise ConfigurationError(
                "Org is not configured: set an alias or an instance URL and access token"
            )

        logging_config = logging_config or LoggingConfig()
        return cls(
            instance_url,
            access_token,
            api_version=org.api_version,
            batch_size=batch_size,
            timeout=org.timeout,
            rate_limit=rate_limit,
            log_payloads=logging_config.log_payloads,
            max_payload_size=logging_config.max_payload_size,
            transport=transport,
        )

    def _endpoint(self, path: str) -> str:
        return f"{self.service_path}/{path.lstrip('/')}"

    async def query(self, soql: str) -> list[Record]:
        """Run a SOQL query and return every record, following pagination."""
        response = await self.get(self._endpoint("query"), params={"q": soql})
        records = list(response.get("records", []))

        while not response.get("done", True) and response.get("nextRecordsUrl"):
            response = await self.get(response["nextRecordsUrl"])
            records.extend(response.get("records", []))

        logger.debug("query_completed", soql=soql, count=len(records))
        return records

    async def insert(
        self, object_type: str, records: Sequence[Record], keys: Sequence[str] | None = None
    ) -> list[WriteResult]:
        return await self._write_collection("POST", "composite/sobjects", object_type, records, keys)

    async def update(
        self, object_type: str, records: Sequence[Record], keys: Sequence[str] | None = None
    ) -> list[WriteResult]:
        return await self._write_collection("PATCH", "composite/sobjects", object_type, records, keys)

    async def upsert(
        self,
        object_type: str,
        records: Sequence[Record],
        external_id_field: str,
        keys: Sequence[str] | None = None,
        all_or_none: bool = False,
    ) -> list[WriteResult]:
        return await self._write_collection(
            "PATCH",
            f"composite/sobjects/{object_type}/{external_id_field}",
            object_type,
            records,
            keys,
            all_or_none=all_or_none,
        )

    async def delete(self, object_type: str, ids: Sequence[str]) -> list[WriteResult]:
        """Delete records by id, in batches."""
        results: list[WriteResult] = []
        for batch in _chunks(list(ids), self.batch_size):
            response = await super().delete(
                self._endpoint("composite/sobjects"),
                params={"ids": ",".join(batch), "allOrNone": "false"},
            )
            results.extend(
                WriteResult.from_api(row, key=record_id)
                for record_id, row in zip(batch, response, strict=True)
            )
        logger.debug("records_deleted", object_type=object_type, count=len(results))
        return results

    async def describe(self, object_type: str) -> SObjectDescribe:
        response = await self.get(self._endpoint(f"sobjects/{object_type}/describe"))
        return SObjectDescribe.from_api(response)

    async def describe_global(self) -> list[dict[str, Any]]:
        response = await self.get(self._endpoint("sobjects"))
        return list(response.get("sobjects", []))

    async def _write_collection(
        self,
        method: str,
        path: str,
        object_type: str,
        records: Sequence[Record],
        keys: Sequence[str] | None,
        all_or_none: bool = False,
    ) -> list[WriteResult]:
        """Send records through sObject Collections, ``batch_size`` at a time.

        Collection results come back in request order, so each row is
        tagged with the caller's key (or the record id) by position.
        """
        records = list(records)
        if keys is None:
            keys = [record.get(ID_FIELD) for record in records]
        elif len(keys) != len(records):
            raise ValueError(f"Got {len(keys)} keys for {len(records)} records")

        results: list[WriteResult] = []
        for start in range(0, len(records), self.batch_size):
            batch = records[start : start + self.batch_size]
            batch_keys = keys[start : start + self.batch_size]
            body = {
                "allOrNone": all_or_none,
                "records": [{"attributes": {"type": object_type}, **record} for record in batch],
            }
            response = await self.request(method, self._endpoint(path), json_data=body)
            results.extend(
                WriteResult.from_api(row, key=key)
                for key, row in zip(batch_keys, response, strict=True)
            )
        return results
