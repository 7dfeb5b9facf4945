from abc import abstractmethod
from typing import Any

import httpx

from shared.helper.HelperConfig import HelperConfig
from shared.clients.ClientInterface import ClientInterface
from shared.clients.backend.models.Query import TableQuery
from shared.models.errors import AuthorizationError, BackendError


class BackendClientInterface(ClientInterface):
    """Relational store, object storage, RPC, serverless functions and auth lookups of the hosted backend."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "backend"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_table(self, table: str) -> str:
        """
        Returns the endpoint path for row requests on a table (e.g. "/rest/v1/parts").
        """
        pass

    @abstractmethod
    def _get_endpoint_rpc(self, function_name: str) -> str:
        """
        Returns the endpoint path for a stored procedure call (e.g. "/rest/v1/rpc/accept_organization_invite").
        """
        pass

    @abstractmethod
    def _get_endpoint_function(self, function_name: str) -> str:
        """
        Returns the endpoint path of a serverless function (e.g. "/functions/v1/create-checkout-session").
        """
        pass

    @abstractmethod
    def _get_endpoint_object(self, bucket: str, key: str) -> str:
        """
        Returns the endpoint path of a stored object (e.g. "/storage/v1/object/documents-raw/<key>").
        """
        pass

    @abstractmethod
    def _get_endpoint_signed_url(self, bucket: str, key: str) -> str:
        """
        Returns the endpoint path that issues a signed URL for an object.
        """
        pass

    @abstractmethod
    def _get_endpoint_user(self) -> str:
        """
        Returns the endpoint path resolving an access token to its user (e.g. "/auth/v1/user").
        """
        pass

    ################ RENDERING ##################
    @abstractmethod
    def _render_query_params(self, query: TableQuery) -> list[tuple[str, str]]:
        """
        Render projection, filters, ordering and range as engine query parameters.
        """
        pass

    @abstractmethod
    def _render_filter_params(self, query: TableQuery) -> list[tuple[str, str]]:
        """
        Render only the filters; used for update and delete where projection and range do not apply.
        """
        pass

    @abstractmethod
    def _get_write_headers(self, returning: bool = True, upsert: bool = False) -> dict:
        """
        Headers for insert/update/delete requests.
        """
        pass

    @abstractmethod
    def _get_count_headers(self) -> dict:
        """
        Headers asking the engine for an exact row count without rows.
        """
        pass

    ########### RESPONSE PARSER ##############
    @abstractmethod
    def _parse_count(self, response: httpx.Response) -> int:
        pass

    @abstractmethod
    def _parse_signed_url(self, response: httpx.Response) -> str:
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    ############# TABLE REQUESTS ##############
    async def do_select(self, query: TableQuery, access_token: str | None = None) -> list[dict]:
        """
        Fetch the rows matching ``query``.

        Args:
            query (TableQuery): Target table, projection, filters, ordering and range.
            access_token (str | None): User JWT, so row-level security applies.

        Returns:
            list[dict]: The rows, with embedded resources as nested dicts.

        Raises:
            BackendError: If the backend rejects the request.
        """
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_table(query.table),
            params=self._render_query_params(query),
            access_token=access_token,
            raise_on_error=True,
        )
        rows = resp.json()
        return rows if isinstance(rows, list) else [rows]

    async def do_select_single(self, query: TableQuery, access_token: str | None = None) -> dict | None:
        """
        Fetch at most one row; None when nothing matches.
        """
        if query.limit is None:
            query.limit = 1
        rows = await self.do_select(query, access_token=access_token)
        return rows[0] if rows else None

    async def do_count(self, query: TableQuery, access_token: str | None = None) -> int:
        """
        Count the rows matching the filters of ``query`` without transferring them.
        """
        resp = await self.do_request(
            method="HEAD",
            endpoint=self._get_endpoint_table(query.table),
            params=self._render_query_params(query),
            additional_headers=self._get_count_headers(),
            access_token=access_token,
            raise_on_error=True,
        )
        return self._parse_count(resp)

    async def do_insert(self, table: str, rows: dict | list[dict], access_token: str | None = None, returning: bool = True) -> list[dict]:
        """
        Insert one row or a batch of rows.

        Returns:
            list[dict]: The inserted rows when ``returning`` is set, otherwise an empty list.

        Raises:
            UniqueViolationError: If a unique constraint rejects a row.
            BackendError: For any other failure.
        """
        resp = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_table(table),
            json=rows,
            additional_headers=self._get_write_headers(returning=returning),
            access_token=access_token,
            raise_on_error=True,
        )
        return self._rows_or_empty(resp, returning)

    async def do_upsert(self, table: str, rows: dict | list[dict], on_conflict: str, access_token: str | None = None) -> list[dict]:
        """
        Insert rows, merging into existing ones that collide on ``on_conflict``.
        """
        resp = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_table(table),
            json=rows,
            params={"on_conflict": on_conflict},
            additional_headers=self._get_write_headers(returning=True, upsert=True),
            access_token=access_token,
            raise_on_error=True,
        )
        return self._rows_or_empty(resp, True)

    async def do_update(self, query: TableQuery, patch: dict, access_token: str | None = None, returning: bool = True) -> list[dict]:
        """
        Apply ``patch`` to every row matching the filters of ``query``.

        Raises:
            ValueError: If the query carries no filter, an unscoped update is never intended.
        """
        if not query.filters:
            raise ValueError(f"Refusing to update '{query.table}' without a filter.")
        resp = await self.do_request(
            method="PATCH",
            endpoint=self._get_endpoint_table(query.table),
            json=patch,
            params=self._render_filter_params(query),
            additional_headers=self._get_write_headers(returning=returning),
            access_token=access_token,
            raise_on_error=True,
        )
        return self._rows_or_empty(resp, returning)

    async def do_delete(self, query: TableQuery, access_token: str | None = None) -> None:
        """
        Delete every row matching the filters of ``query``.

        Raises:
            ValueError: If the query carries no filter.
        """
        if not query.filters:
            raise ValueError(f"Refusing to delete from '{query.table}' without a filter.")
        await self.do_request(
            method="DELETE",
            endpoint=self._get_endpoint_table(query.table),
            params=self._render_filter_params(query),
            additional_headers=self._get_write_headers(returning=False),
            access_token=access_token,
            raise_on_error=True,
        )

    async def do_rpc(self, function_name: str, params: dict, access_token: str | None = None) -> Any:
        """
        Call a stored procedure and return its decoded JSON result.
        """
        resp = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_rpc(function_name),
            json=params,
            access_token=access_token,
            raise_on_error=True,
        )
        return resp.json() if resp.content else None

    ############# FUNCTION REQUESTS ##############
    async def do_invoke_function(self, function_name: str, body: dict, access_token: str | None) -> dict:
        """
        Invoke a serverless function as the signed-in user.

        Raises:
            AuthorizationError: If no access token is given or the function answers 401/403.
            BackendError: For any other non-2xx answer.
        """
        if not access_token:
            raise AuthorizationError("Unauthorized", status_code=401)
        resp = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_function(function_name),
            json=body,
            access_token=access_token,
            raise_on_error=True,
        )
        data = resp.json() if resp.content else {}
        return data if isinstance(data, dict) else {}

    ############# STORAGE REQUESTS ##############
    async def do_create_signed_url(self, bucket: str, key: str, expires_in: int = 60, access_token: str | None = None) -> str:
        """
        Issue a time-limited URL for an object.

        Args:
            bucket (str): Bucket name.
            key (str): Object key inside the bucket.
            expires_in (int): Lifetime in seconds.

        Returns:
            str: Absolute signed URL.
        """
        resp = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_signed_url(bucket, key),
            json={"expiresIn": expires_in},
            access_token=access_token,
            raise_on_error=True,
        )
        return self._parse_signed_url(resp)

    async def do_upload_object(self, bucket: str, key: str, content: bytes, content_type: str = "application/octet-stream", upsert: bool = False, access_token: str | None = None) -> str:
        """
        Upload raw bytes to ``bucket``/``key`` and return the key.
        """
        await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_object(bucket, key),
            content=content,
            additional_headers={
                "Content-Type": content_type,
                "x-upsert": "true" if upsert else "false",
                "cache-control": "3600",
            },
            access_token=access_token,
            raise_on_error=True,
        )
        return key

    ############# AUTH REQUESTS ##############
    async def do_fetch_user(self, access_token: str) -> dict:
        """
        Resolve an access token to the user it was issued for.

        Raises:
            AuthorizationError: If the token is missing, expired or invalid.
        """
        if not access_token:
            raise AuthorizationError("Unauthorized", status_code=401)
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_user(),
            access_token=access_token,
        )
        if resp.status_code >= 300:
            raise AuthorizationError("Unauthorized", status_code=resp.status_code)
        return resp.json()

    ##########################################
    ############### HELPERS ##################
    ##########################################

    def _rows_or_empty(self, resp: httpx.Response, returning: bool) -> list[dict]:
        if not returning or not resp.content:
            return []
        data = resp.json()
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return [data]
        raise BackendError(f"Unexpected response body from {resp.request.url}")
