import json
from typing import Any
from urllib.parse import quote

import httpx

from shared.clients.backend.BackendClientInterface import BackendClientInterface
from shared.clients.backend.models.Query import QueryFilter, TableQuery
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.errors import BackendError


class BackendClientSupabase(BackendClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")
        self._schema = self.get_config_val("SCHEMA", default="public", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Supabase"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
            EnvConfig(env_key="SCHEMA", val_type="string", default="public"),
        ]

    ################ AUTH ##################
    def _get_auth_header(self, access_token: str | None = None) -> dict:
        # apikey identifies the project, Authorization decides the RLS role
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {access_token or self._api_key}",
        }

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/auth/v1/health"

    def _get_endpoint_table(self, table: str) -> str:
        return f"/rest/v1/{table}"

    def _get_endpoint_rpc(self, function_name: str) -> str:
        return f"/rest/v1/rpc/{function_name}"

    def _get_endpoint_function(self, function_name: str) -> str:
        return f"/functions/v1/{function_name}"

    def _get_endpoint_object(self, bucket: str, key: str) -> str:
        return f"/storage/v1/object/{bucket}/{quote(key)}"

    def _get_endpoint_signed_url(self, bucket: str, key: str) -> str:
        return f"/storage/v1/object/sign/{bucket}/{quote(key)}"

    def _get_endpoint_user(self) -> str:
        return "/auth/v1/user"

    ##########################################
    ############### RENDERING ################
    ##########################################

    def _render_query_params(self, query: TableQuery) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = [("select", "".join(query.select.split()))]
        params.extend(self._render_filter_params(query))
        if query.order:
            rendered = []
            for order in query.order:
                column = f"{order.foreign_table}({order.column})" if order.foreign_table else order.column
                rendered.append(f"{column}.{'asc' if order.ascending else 'desc'}")
            params.append(("order", ",".join(rendered)))
        if query.offset is not None:
            params.append(("offset", str(query.offset)))
        if query.limit is not None:
            params.append(("limit", str(query.limit)))
        return params

    def _render_filter_params(self, query: TableQuery) -> list[tuple[str, str]]:
        return [(f.column, self._render_filter(f)) for f in query.filters]

    def _render_filter(self, query_filter: QueryFilter) -> str:
        """Render one predicate in PostgREST operator syntax, e.g. ``in.("a","b")`` or ``is.null``."""
        op = query_filter.operator
        value = query_filter.value
        if op == "in":
            return "in.(" + ",".join(self._quote_value(v) for v in value) + ")"
        if value is None:
            return "is.null"
        if isinstance(value, bool):
            return f"{op}.{str(value).lower()}"
        return f"{op}.{value}"

    def _quote_value(self, value: Any) -> str:
        # reserved characters inside in.() lists must be double-quoted
        return json.dumps(str(value))

    def _get_write_headers(self, returning: bool = True, upsert: bool = False) -> dict:
        prefer = ["return=representation" if returning else "return=minimal"]
        if upsert:
            prefer.append("resolution=merge-duplicates")
        return {"Prefer": ",".join(prefer), "Content-Profile": self._schema}

    def _get_count_headers(self) -> dict:
        return {"Prefer": "count=exact"}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def _parse_count(self, response: httpx.Response) -> int:
        # Content-Range: 0-24/3573  or  */0
        content_range = response.headers.get("content-range", "")
        _, _, total = content_range.partition("/")
        if not total or total == "*":
            raise BackendError(f"Backend did not return a row count (Content-Range: '{content_range}').")
        return int(total)

    def _parse_signed_url(self, response: httpx.Response) -> str:
        body = response.json()
        signed_path = body.get("signedURL") or body.get("signedUrl")
        if not signed_path:
            raise BackendError("No signed URL returned")
        if signed_path.startswith("http"):
            return signed_path
        return f"{self._base_url.rstrip('/')}/storage/v1{signed_path}"
