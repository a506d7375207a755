"""Async JSON-RPC client for the vStack API.

Architecture:
- One HTTP endpoint (`POST {host}/.api/V4/.req/`) for every method
- Session auth: `auth` returns an APIEndpoint00 cookie, echoed back on
  every later request in the X-Session-Auth header
- Each call builds a fresh envelope (new uuid4 id), sends it once and
  classifies the outcome:
    transport failure / undecodable body  -> TransportError
    envelope `error` object               -> ProtocolError
    result code != 1                      -> ApiError
- No retries and no caching: at-most-once delivery, the caller decides

Usage:
    async with VStackClient(ProviderConfig.from_settings()) as client:
        vm = await client.vm_get(42)
        await client.perform_action(42, VmAction.STOP)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Self, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from vstack_provider import constants
from vstack_provider._logging import get_logger
from vstack_provider.exceptions import (
    ApiError,
    AuthenticationError,
    ProtocolError,
    TransportError,
)
from vstack_provider.protocol import (
    AddDiskData,
    AddDiskParams,
    AddNicParams,
    AuthData,
    AuthParams,
    DiskLabelParams,
    DiskRatelimitParams,
    DiskResizeParams,
    JsonRpcRequest,
    JsonRpcResponse,
    NetworkPortData,
    NicRatelimitParams,
    OsTypeData,
    RemoveDiskParams,
    RemoveNicParams,
    RpcParams,
    RpcResult,
    VmActionParams,
    VmData,
    VmGetParams,
    VmPatch,
    VmProfilesParams,
    VmSetParams,
    VmsCreateParams,
    VmsRemoveParams,
)
from vstack_provider.status import VmAction, method_for_action

if TYPE_CHECKING:
    from types import TracebackType

    from vstack_provider.config import ProviderConfig

logger = get_logger(__name__)

T = TypeVar("T")


class VStackClient:
    """Remote operation client. Owns no VM state.

    The session cookie is obtained lazily on first call (or explicitly via
    login()).  Login is serialized by a lock so concurrent first calls
    authenticate once.

    Attributes:
        config: Connection configuration
    """

    __slots__ = (
        "_config",
        "_cookie",
        "_http",
        "_login_lock",
        "_owns_http",
    )

    def __init__(self, config: ProviderConfig, *, http_client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=config.host,
            timeout=config.timeout_seconds,
            verify=config.verify_tls,
        )
        self._cookie: str | None = None
        self._login_lock = asyncio.Lock()

    @property
    def config(self) -> ProviderConfig:
        return self._config

    @property
    def authenticated(self) -> bool:
        return self._cookie is not None

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def login(self) -> str:
        """Authenticate, store the session cookie and return it.

        A Set-Cookie header named APIEndpoint00 takes precedence over the
        cookie map in the result body.

        Raises:
            AuthenticationError: Credentials rejected or no cookie returned
            TransportError: Network failure or undecodable response
            ProtocolError: Envelope carried an error object
        """
        params = AuthParams(
            username=self._config.username,
            password=self._config.password.get_secret_value(),
        )
        request = JsonRpcRequest(method=params.method, params=params.to_params())
        logger.debug("Authenticating with vStack", extra={"host": self._config.host, "user": params.username})

        envelope, http_response = await self._send(request, authenticated=False)
        if envelope.error is not None:
            msg = f"auth: Error {envelope.error.code}: {envelope.error.message}"
            raise AuthenticationError(msg, {"host": self._config.host}, method="auth", code=envelope.error.code)
        result = envelope.result
        if result is None or result.code != constants.SUCCESS_CODE:
            message = result.error_message if result is not None else "empty result"
            code = result.code if result is not None else 0
            raise AuthenticationError(
                f"Authentication failed: {message}",
                {"host": self._config.host},
                method="auth",
                code=code,
            )

        cookie = http_response.cookies.get(constants.AUTH_COOKIE_NAME)
        if not cookie:
            try:
                data = AuthData.model_validate(result.data or {})
            except ValidationError as e:
                msg = f"auth: unexpected result payload: {e}"
                raise TransportError(msg, {"host": self._config.host}) from e
            cookie = data.cookie.get(constants.AUTH_COOKIE_NAME)
        if not cookie:
            raise AuthenticationError(
                "Authentication failed: No auth cookie received",
                {"host": self._config.host},
                method="auth",
            )

        self._cookie = cookie
        logger.debug("Authenticated with vStack", extra={"host": self._config.host})
        return cookie

    async def _ensure_session(self) -> str:
        async with self._login_lock:
            if self._cookie is not None:
                return self._cookie
            return await self.login()

    # ------------------------------------------------------------------
    # Core invoke
    # ------------------------------------------------------------------

    async def _send(
        self,
        request: JsonRpcRequest,
        *,
        authenticated: bool = True,
    ) -> tuple[JsonRpcResponse, httpx.Response]:
        """POST one envelope and decode the response envelope."""
        headers = {"Content-Type": "application/json"}
        if authenticated:
            cookie = await self._ensure_session()
            headers[constants.AUTH_HEADER] = f"{constants.AUTH_COOKIE_NAME}={cookie}"

        context = {"method": request.method, "request_id": request.id}
        try:
            response = await self._http.post(
                constants.API_PATH,
                content=request.model_dump_json(),
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            msg = f"{request.method}: HTTP {e.response.status_code}"
            raise TransportError(msg, {**context, "status_code": e.response.status_code}) from e
        except httpx.RequestError as e:
            msg = f"{request.method}: HTTP error: {e}"
            raise TransportError(msg, context) from e

        try:
            envelope = JsonRpcResponse.model_validate_json(response.content)
        except ValidationError as e:
            msg = f"{request.method}: decode error: {e}"
            raise TransportError(msg, context) from e
        return envelope, response

    async def invoke(self, params: RpcParams, data_type: type[T] | Any | None = None) -> T | None:
        """Issue one remote operation and return its typed result data.

        Args:
            params: Per-method params model; its `method` names the RPC
            data_type: Type to validate `result.data` against, or None to
                ignore the payload

        Returns:
            Validated result data, or None when data_type is None or the
            result carries no data

        Raises:
            TransportError: Network failure, HTTP error, undecodable body
            ProtocolError: Envelope carried an error object
            ApiError: Result code is not the success sentinel
        """
        request = JsonRpcRequest(method=params.method, params=params.to_params())
        logger.debug("RPC call: %s id=%s", request.method, request.id)

        envelope, _ = await self._send(request)
        result = self._check(request, envelope)

        if data_type is None or result.data is None:
            return None
        try:
            return TypeAdapter(data_type).validate_python(result.data)
        except ValidationError as e:
            msg = f"{request.method}: unexpected result payload: {e}"
            raise TransportError(msg, {"method": request.method, "request_id": request.id}) from e

    @staticmethod
    def _check(request: JsonRpcRequest, envelope: JsonRpcResponse) -> RpcResult:
        context: dict[str, Any] = {"method": request.method, "request_id": request.id}
        if request.params:
            for key in ("id", "vm_id"):
                if key in request.params:
                    context["vm_id"] = request.params[key]
                    break

        if envelope.error is not None:
            msg = f"{request.method}: API error: Error {envelope.error.code}: {envelope.error.message}"
            raise ProtocolError(msg, context, code=envelope.error.code)
        if envelope.result is None:
            msg = f"{request.method}: response has neither result nor error"
            raise TransportError(msg, context)

        result = envelope.result
        if result.code != constants.SUCCESS_CODE:
            msg = f"{request.method} failed (code={result.code}): {result.error_message}"
            raise ApiError(msg, context, method=request.method, code=result.code)
        return result

    # ------------------------------------------------------------------
    # VM operations
    # ------------------------------------------------------------------

    async def vm_get(self, vm_id: int) -> VmData:
        data = await self.invoke(VmGetParams(id=vm_id), VmData)
        return data or VmData()

    async def vms_create(self, params: VmsCreateParams) -> VmData:
        data = await self.invoke(params, VmData)
        return data or VmData()

    async def vm_set(self, vm_id: int, patch: VmPatch) -> None:
        await self.invoke(VmSetParams(id=vm_id, vm_params=patch))

    async def perform_action(self, vm_id: int, action: VmAction | str) -> None:
        """Apply a power action: start -> vms-restart, stop -> vms-stop."""
        method = method_for_action(action)
        logger.debug("VM action %s via %s", action, method, extra={"vm_id": vm_id})
        await self.invoke(VmActionParams(method=method, id=vm_id))

    async def vms_remove(self, vm_id: int, vdc_id: int) -> None:
        await self.invoke(VmsRemoveParams(id=vm_id, vdc_id=vdc_id))

    async def vm_profiles(self) -> dict[str, OsTypeData]:
        data = await self.invoke(VmProfilesParams(), dict[str, OsTypeData])
        return data or {}

    # ------------------------------------------------------------------
    # Disk operations
    # ------------------------------------------------------------------

    async def add_disk(self, params: AddDiskParams) -> AddDiskData:
        data = await self.invoke(params, AddDiskData)
        return data or AddDiskData()

    async def resize_disk(self, vm_id: int, guid: str, size_bytes: int) -> None:
        await self.invoke(DiskResizeParams(id=vm_id, disk_guid=guid, size=size_bytes))

    async def ratelimit_disk(self, vm_id: int, guid: str, mbps_limit: int | None, iops_limit: int | None) -> None:
        await self.invoke(
            DiskRatelimitParams(
                vm_id=vm_id,
                disk_guid=guid,
                mbps_limit=mbps_limit or 0,
                iops_limit=iops_limit or 0,
            )
        )

    async def set_disk_label(self, vm_id: int, guid: str, label: str) -> None:
        await self.invoke(DiskLabelParams(vm_id=vm_id, guid=guid, label=label))

    async def remove_disk(self, vm_id: int, guid: str) -> None:
        await self.invoke(RemoveDiskParams(vm_id=vm_id, disk_guid=guid))

    # ------------------------------------------------------------------
    # NIC operations
    # ------------------------------------------------------------------

    async def add_nic(self, params: AddNicParams) -> NetworkPortData:
        data = await self.invoke(params, NetworkPortData)
        return data or NetworkPortData()

    async def remove_nic(self, vm_id: int, port_id: int) -> None:
        await self.invoke(RemoveNicParams(vm_id=vm_id, port_id=port_id))

    async def ratelimit_nic(self, vm_id: int, port_id: int, ratelimit_mbits: int | None) -> None:
        await self.invoke(NicRatelimitParams(vm_id=vm_id, port_id=port_id, ratelimit_mbits=ratelimit_mbits or 0))
