"""JSON transport over a Unix socket."""

from datetime import timedelta
from pathlib import Path

from httpx import AsyncClient, AsyncHTTPTransport, HTTPError
from pydantic import BaseModel, ValidationError

from ..exceptions import PluginTransportError

__all__ = ["PluginTransport"]


class PluginTransport:
    """JSON-over-Unix-socket transport to a plugin or the Docker engine.

    Parameters
    ----------
    socket_path
        Path to the Unix socket.
    timeout
        Timeout for each request.
    """

    def __init__(self, socket_path: Path, timeout: timedelta) -> None:
        self.socket_path = socket_path
        transport = AsyncHTTPTransport(uds=str(socket_path))
        self._client = AsyncClient(
            transport=transport,
            base_url="http://localhost",
            timeout=timeout.total_seconds(),
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def get[T: BaseModel](self, path: str, response_type: type[T]) -> T:
        """Send a GET request and decode the JSON reply.

        Raises
        ------
        PluginTransportError
            Raised if the request failed or the reply could not be parsed.
        """
        try:
            r = await self._client.get(path)
            r.raise_for_status()
            return response_type.model_validate(r.json())
        except (HTTPError, ValidationError) as e:
            raise PluginTransportError.from_exception(e) from e
        except ValueError as e:
            msg = f"Invalid JSON from GET {path}"
            raise PluginTransportError(msg, path=path, body=r.text) from e

    async def post[T: BaseModel](
        self, path: str, request: BaseModel | None, response_type: type[T]
    ) -> T:
        """Send a POST request with a JSON body and decode the JSON reply.

        Plugins report failures in the ``Err`` field of the body, possibly
        with an error status code, so the body is parsed whenever possible
        and an error status is only treated as a transport failure if the
        body cannot be parsed.

        Parameters
        ----------
        path
            Protocol path.
        request
            Request body, or `None` to send an empty object.
        response_type
            Model of the reply.

        Returns
        -------
        BaseModel
            Decoded reply.

        Raises
        ------
        PluginTransportError
            Raised if the request failed or the reply could not be parsed.
        """
        if request:
            body = request.model_dump(by_alias=True, exclude_none=True)
        else:
            body = {}
        try:
            r = await self._client.post(path, json=body)
        except HTTPError as e:
            raise PluginTransportError.from_exception(e) from e
        try:
            result = response_type.model_validate(r.json())
        except (ValueError, ValidationError) as e:
            if r.is_error:
                msg = f"Status {r.status_code} from POST {path}"
            else:
                msg = f"Invalid reply from POST {path}"
            raise PluginTransportError(
                msg, path=path, status=r.status_code, body=r.text
            ) from e
        if r.is_error and not getattr(result, "err", None):
            msg = f"Status {r.status_code} from POST {path}"
            raise PluginTransportError(
                msg, path=path, status=r.status_code, body=r.text
            )
        return result
