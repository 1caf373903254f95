"""Mock Docker volume plugin and Docker engine for tests."""

import json
from typing import Any

import respx
from httpx import Request, Response

from voldriver.storage.plugin import (
    ACTIVATE_URI,
    CAPABILITIES_URI,
    CREATE_URI,
    GET_URI,
    LIST_URI,
    MOUNT_URI,
    REMOVE_URI,
    UNMOUNT_URI,
)

__all__ = [
    "MockDockerEngine",
    "MockPlugin",
]

BASE_URL = "http://localhost"


class MockPlugin:
    """In-memory Docker volume plugin speaking the protocol over respx.

    Attributes
    ----------
    volumes
        Volumes by name, holding the options they were created with.
    requests
        Every request received, as a pair of protocol path and JSON body.
    errors
        Error text to return for calls to the given protocol path.
    """

    def __init__(self) -> None:
        self.volumes: dict[str, dict[str, Any]] = {}
        self.requests: list[tuple[str, dict[str, Any]]] = []
        self.errors: dict[str, str] = {}
        self.scope = "global"

    def install(self, respx_mock: respx.MockRouter) -> None:
        handlers = {
            ACTIVATE_URI: self._activate,
            CAPABILITIES_URI: self._capabilities,
            CREATE_URI: self._create,
            GET_URI: self._get,
            LIST_URI: self._list,
            MOUNT_URI: self._mount,
            REMOVE_URI: self._remove,
            UNMOUNT_URI: self._unmount,
        }
        for path, handler in handlers.items():
            route = respx_mock.post(BASE_URL + path)
            route.mock(side_effect=self._wrap(path, handler))

    def bodies(self, path: str) -> list[dict[str, Any]]:
        """Return the bodies of all requests sent to a protocol path."""
        return [b for p, b in self.requests if p == path]

    def _wrap(self, path: str, handler: Any) -> Any:
        def side_effect(request: Request) -> Response:
            body = json.loads(request.content) if request.content else {}
            self.requests.append((path, body))
            if err := self.errors.get(path):
                return Response(200, json={"Err": err})
            return handler(body)

        return side_effect

    def _activate(self, body: dict[str, Any]) -> Response:
        return Response(200, json={"Implements": ["VolumeDriver"]})

    def _capabilities(self, body: dict[str, Any]) -> Response:
        capabilities = {"Scope": self.scope}
        return Response(200, json={"Capabilities": capabilities, "Err": ""})

    def _create(self, body: dict[str, Any]) -> Response:
        self.volumes[body["Name"]] = body.get("Opts") or {}
        return Response(200, json={"Err": ""})

    def _get(self, body: dict[str, Any]) -> Response:
        name = body["Name"]
        if name not in self.volumes:
            return self._not_found(name)
        volume = {"Name": name, "Mountpoint": f"/mnt/{name}"}
        return Response(200, json={"Volume": volume, "Err": ""})

    def _list(self, body: dict[str, Any]) -> Response:
        volumes = [
            {"Name": n, "Mountpoint": f"/mnt/{n}"} for n in self.volumes
        ]
        return Response(200, json={"Volumes": volumes, "Err": ""})

    def _mount(self, body: dict[str, Any]) -> Response:
        name = body["Name"]
        if name not in self.volumes:
            return self._not_found(name)
        return Response(200, json={"Mountpoint": f"/mnt/{name}", "Err": ""})

    def _remove(self, body: dict[str, Any]) -> Response:
        name = body["Name"]
        if name not in self.volumes:
            return self._not_found(name)
        del self.volumes[name]
        return Response(200, json={"Err": ""})

    def _unmount(self, body: dict[str, Any]) -> Response:
        name = body["Name"]
        if name not in self.volumes:
            return self._not_found(name)
        return Response(200, json={"Err": ""})

    def _not_found(self, name: str) -> Response:
        return Response(200, json={"Err": f"Unable to find volume {name}"})


class MockDockerEngine:
    """Docker engine plugin registry served over respx."""

    def __init__(self) -> None:
        self.plugins: list[dict[str, Any]] = []

    def add_plugin(
        self, name: str, plugin_id: str, *, enabled: bool = True
    ) -> None:
        self.plugins.append(
            {
                "Id": plugin_id,
                "Name": name,
                "Enabled": enabled,
                "Config": {
                    "Description": "Test volume plugin",
                    "Interface": {
                        "Socket": "nimble.sock",
                        "Types": ["docker.volumedriver/1.0"],
                    },
                },
            }
        )

    def install(self, respx_mock: respx.MockRouter) -> None:
        respx_mock.get(BASE_URL + "/plugins").mock(side_effect=self._list)

    def _list(self, request: Request) -> Response:
        return Response(200, json=self.plugins)
