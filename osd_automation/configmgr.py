"""
ConfigMgr AdminService connector.

Only the calls the packaging pipeline needs:
- resolve the site code of the provider
- create a package
- find/create a console folder
- move an object into a folder

Routes live under https://<site-server>/AdminService/wmi/ and mirror the
SMS Provider WMI classes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests

logger = logging.getLogger(__name__)

# SMS_ObjectContainerNode.ObjectType for SMS_Package
OBJECT_TYPE_PACKAGE = 2
# SMS_Package.PkgSourceFlag: STORAGE_DIRECT, content read straight from the source path
PKG_SOURCE_DIRECT = 2
ROOT_CONTAINER_NODE = 0


class ConfigMgrError(RuntimeError):
    """The AdminService rejected a request."""


class ConfigMgrConnectionError(ConfigMgrError):
    """The AdminService could not be reached or refused our credentials."""


@dataclass(frozen=True)
class PackageRecord:
    name: str
    description: str
    language: str
    version: str
    source_path: str
    manufacturer: str = "Microsoft"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "Name": self.name,
            "Description": self.description,
            "Language": self.language,
            "Version": self.version,
            "Manufacturer": self.manufacturer,
            "PkgSourcePath": self.source_path,
            "PkgSourceFlag": PKG_SOURCE_DIRECT,
        }


def _odata_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class AdminServiceConnector:
    def __init__(
        self,
        server: str,
        token: str = "",
        scheme: str = "https",
        verify_tls: bool = True,
        timeout: float = 60,
        session: Optional[requests.Session] = None,
    ):
        self.server = server
        self.base_url = f"{scheme}://{server}/AdminService/wmi"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.verify = verify_tls
        self.session.headers.update({"Accept": "application/json"})
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    # ---------- transport ----------
    def _request(self, method: str, route: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.base_url}/{route}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ConfigMgrConnectionError(f"{method} {url} failed: {e}") from e

        if resp.status_code in (401, 403):
            raise ConfigMgrConnectionError(f"{method} {url} not authorized (HTTP {resp.status_code})")
        if not resp.ok:
            raise ConfigMgrError(f"{method} {url} returned HTTP {resp.status_code}: {resp.text.strip()}")
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise ConfigMgrError(f"{method} {url} returned a non-JSON body") from e

    def _query(self, wmi_class: str, odata_filter: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"$filter": odata_filter} if odata_filter else None
        body = self._request("GET", wmi_class, params=params)
        return list(body.get("value") or [])

    # ---------- operations ----------
    def resolve_site_code(self) -> str:
        rows = self._query("SMS_ProviderLocation", "ProviderForLocalSite eq true")
        for row in rows:
            site_code = row.get("SiteCode")
            if site_code:
                logger.info("Site code detected: %s", site_code)
                return site_code
        raise ConfigMgrConnectionError(f"Unable to determine site code from provider on {self.server}")

    def create_package(self, record: PackageRecord) -> str:
        body = self._request("POST", "SMS_Package", json=record.to_payload())
        # POST answers with the created instance, sometimes wrapped in an OData value list
        created = body
        if isinstance(body.get("value"), list) and body["value"]:
            created = body["value"][0]
        package_id = created.get("PackageID")
        if not package_id:
            raise ConfigMgrError(f"Package '{record.name}' created without a PackageID in the response")
        return package_id

    def find_folder(self, name: str, parent_node_id: int, object_type: int = OBJECT_TYPE_PACKAGE) -> Optional[int]:
        rows = self._query(
            "SMS_ObjectContainerNode",
            f"Name eq {_odata_quote(name)} and ObjectType eq {object_type} "
            f"and ParentContainerNodeID eq {parent_node_id}",
        )
        if not rows:
            return None
        return int(rows[0]["ContainerNodeID"])

    def ensure_folder(self, path: Sequence[str], object_type: int = OBJECT_TYPE_PACKAGE) -> int:
        """Walk `path` from the console root, creating missing folders. Returns the leaf node id."""
        parent = ROOT_CONTAINER_NODE
        for name in path:
            node_id = self.find_folder(name, parent, object_type)
            if node_id is None:
                body = self._request(
                    "POST",
                    "SMS_ObjectContainerNode",
                    json={"Name": name, "ObjectType": object_type, "ParentContainerNodeID": parent},
                )
                if "ContainerNodeID" not in body:
                    raise ConfigMgrError(f"Folder '{name}' created without a ContainerNodeID in the response")
                node_id = int(body["ContainerNodeID"])
                logger.info("Created console folder '%s' (node %d)", name, node_id)
            parent = node_id
        return parent

    def move_object(
        self,
        instance_key: str,
        target_node_id: int,
        source_node_id: int = ROOT_CONTAINER_NODE,
        object_type: int = OBJECT_TYPE_PACKAGE,
    ) -> None:
        body = self._request(
            "POST",
            "SMS_ObjectContainerItem.MoveMembers",
            json={
                "InstanceKeys": [instance_key],
                "ContainerNodeID": source_node_id,
                "TargetContainerNodeID": target_node_id,
                "ObjectType": object_type,
            },
        )
        rc = body.get("ReturnValue", 0)
        if rc:
            raise ConfigMgrError(f"MoveMembers for {instance_key} returned {rc}")
