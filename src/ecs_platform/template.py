"""In-memory CloudFormation template built up by the composers.

Resources are typed records; intrinsic functions are plain mappings
(``{"Ref": ...}``). Nothing is serialized until ``to_dict``/``to_yaml``
is called at the deployment boundary.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import yaml

from .exceptions import DuplicateResourceError, UnresolvedDependencyError

TEMPLATE_FORMAT_VERSION = "2010-09-09"


def ref(logical_id: str) -> dict[str, Any]:
    """``Ref`` intrinsic."""
    return {"Ref": logical_id}


def get_att(logical_id: str, attribute: str) -> dict[str, Any]:
    """``Fn::GetAtt`` intrinsic."""
    return {"Fn::GetAtt": [logical_id, attribute]}


def join(delimiter: str, values: list[Any]) -> dict[str, Any]:
    """``Fn::Join`` intrinsic."""
    return {"Fn::Join": [delimiter, values]}


@dataclass(frozen=True)
class Resource:
    """A single CloudFormation resource."""

    logical_id: str
    type: str
    properties: dict[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()

    @property
    def ref(self) -> dict[str, Any]:
        return ref(self.logical_id)

    def get_att(self, attribute: str) -> dict[str, Any]:
        return get_att(self.logical_id, attribute)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"Type": self.type}
        if self.properties:
            result["Properties"] = self.properties
        if self.depends_on:
            result["DependsOn"] = list(self.depends_on)
        return result


@dataclass(frozen=True)
class Parameter:
    """A template parameter. Secret values are passed as ``no_echo`` parameters."""

    name: str
    type: str = "String"
    no_echo: bool = False
    default: str | None = None
    description: str | None = None

    @property
    def ref(self) -> dict[str, Any]:
        return ref(self.name)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"Type": self.type}
        if self.no_echo:
            result["NoEcho"] = True
        if self.default is not None:
            result["Default"] = self.default
        if self.description:
            result["Description"] = self.description
        return result


@dataclass(frozen=True)
class Output:
    """A stack output."""

    name: str
    value: Any
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"Value": self.value}
        if self.description:
            result["Description"] = self.description
        return result


class Template:
    """
    Ordered collection of resources and outputs.

    Resources must be added in dependency order: a resource may only
    name earlier resources in ``depends_on``.
    """

    def __init__(self, description: str | None = None) -> None:
        self.description = description
        self._parameters: dict[str, Parameter] = {}
        self._resources: dict[str, Resource] = {}
        self._outputs: dict[str, Output] = {}

    def __contains__(self, logical_id: object) -> bool:
        return logical_id in self._resources

    def __len__(self) -> int:
        return len(self._resources)

    def __getitem__(self, logical_id: str) -> Resource:
        return self._resources[logical_id]

    @property
    def resources(self) -> list[Resource]:
        return list(self._resources.values())

    @property
    def outputs(self) -> list[Output]:
        return list(self._outputs.values())

    @property
    def parameters(self) -> list[Parameter]:
        return list(self._parameters.values())

    def add_parameter(self, parameter: Parameter) -> Parameter:
        if parameter.name in self._parameters or parameter.name in self._resources:
            raise DuplicateResourceError(parameter.name)
        self._parameters[parameter.name] = parameter
        return parameter

    def add(self, resource: Resource) -> Resource:
        """
        Add a resource.

        Raises:
            DuplicateResourceError: If the logical id is already present
            UnresolvedDependencyError: If a DependsOn target was not added yet
        """
        if resource.logical_id in self._resources:
            raise DuplicateResourceError(resource.logical_id)
        for dependency in resource.depends_on:
            if dependency not in self._resources:
                raise UnresolvedDependencyError(resource.logical_id, dependency)
        self._resources[resource.logical_id] = resource
        return resource

    def extend(self, resources: list[Resource]) -> None:
        for resource in resources:
            self.add(resource)

    def merge(self, other: Template) -> None:
        """Add every parameter, resource and output of ``other`` to this template."""
        for parameter in other.parameters:
            self.add_parameter(parameter)
        self.extend(other.resources)
        for output in other.outputs:
            self.add_output(output.name, output.value, output.description)

    def add_output(self, name: str, value: Any, description: str | None = None) -> Output:
        if name in self._outputs:
            raise DuplicateResourceError(name)
        output = Output(name=name, value=value, description=description)
        self._outputs[name] = output
        return output

    def of_type(self, resource_type: str) -> list[Resource]:
        return [r for r in self._resources.values() if r.type == resource_type]

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"AWSTemplateFormatVersion": TEMPLATE_FORMAT_VERSION}
        if self.description:
            result["Description"] = self.description
        if self._parameters:
            result["Parameters"] = {name: p.to_dict() for name, p in self._parameters.items()}
        result["Resources"] = {
            logical_id: resource.to_dict() for logical_id, resource in self._resources.items()
        }
        if self._outputs:
            result["Outputs"] = {name: output.to_dict() for name, output in self._outputs.items()}
        return result

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)
