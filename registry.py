"""Resource registry, built once at startup and read-only afterwards."""

from types import MappingProxyType
from typing import Dict, Iterator, List, Optional

from fastapi import Request

from attachments import AttachmentCoordinator
from errors import ConfigurationError
from handlers import ResourceService
from schemas import ResourceConfig, ResourceDefinition, build_resource


class RegisteredResource:
    def __init__(self, service: ResourceService, path: str):
        self.service = service
        self.path = path

    @property
    def config(self) -> ResourceConfig:
        return self.service.resource

    def routes(self) -> List[str]:
        routes = [f"GET    {self.path}"]
        if self.config.filterable_fields:
            routes.append(f"GET    {self.path}/filters/:field")
        routes += [
            f"GET    {self.path}/:id",
            f"POST   {self.path}",
            f"PUT    {self.path}/:id",
            f"PATCH  {self.path}/:id",
            f"DELETE {self.path}/:id",
        ]
        return routes


class ResourceRegistry:
    def __init__(self, resources: Dict[str, RegisteredResource]):
        self._resources = MappingProxyType(dict(resources))

    @classmethod
    def build(cls, definitions: List[ResourceDefinition], store_factory, blob_store=None, prefix: str = "/api") -> "ResourceRegistry":
        resources: Dict[str, RegisteredResource] = {}
        for definition in definitions:
            config = build_resource(definition)
            if config.has_file_fields and blob_store is None:
                raise ConfigurationError(
                    f'Resource "{config.name}" has File fields but no blob store is configured.'
                )
            coordinator = AttachmentCoordinator(blob_store) if config.has_file_fields else None
            service = ResourceService(config, store_factory.create(config), coordinator)
            resources[config.name] = RegisteredResource(service, f"{prefix}/{config.name}")
        return cls(resources)

    def get(self, name: str) -> Optional[RegisteredResource]:
        return self._resources.get(name)

    def __iter__(self) -> Iterator[RegisteredResource]:
        return iter(self._resources.values())

    def __len__(self) -> int:
        return len(self._resources)


def get_registry(request: Request) -> ResourceRegistry:
    return request.app.state.registry
