"""CloudFormation stack management for ecs-platform deployments."""

import logging
from typing import Any, cast

import aioboto3
from botocore.exceptions import ClientError

from ..exceptions import StackDeploymentError
from ..naming import normalize_name
from ..template import Template

logger = logging.getLogger(__name__)

# Discovery tag keys
MANAGED_BY_TAG_KEY = "ManagedBy"
MANAGED_BY_TAG_VALUE = "ecs-platform"
VERSION_TAG_KEY = "ecs-platform:version"

CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"]

IN_PROGRESS_SUFFIX = "_IN_PROGRESS"
# A stack that failed its first create must be deleted before it can be recreated
UNRECOVERABLE_STATUSES = ("ROLLBACK_COMPLETE", "ROLLBACK_FAILED", "DELETE_FAILED")


class StackManager:
    """
    Creates, updates and deletes one CloudFormation stack.

    The platform template is generated in memory and sent as the template
    body. Secret values travel as ``NoEcho`` parameters, never inside the
    template.
    """

    def __init__(
        self,
        stack_name: str,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        """
        Initialize stack manager.

        Args:
            stack_name: CloudFormation stack name, validated by ``normalize_name``
            region: AWS region (default: use boto3 defaults)
            endpoint_url: Optional endpoint URL (for LocalStack or other AWS-compatible services)
        """
        self.stack_name = normalize_name(stack_name)
        self.region = region
        self.endpoint_url = endpoint_url
        self._session: aioboto3.Session | None = None
        self._client: Any = None

    async def _get_client(self) -> Any:
        """Get or create CloudFormation client."""
        if self._client is not None:
            return self._client

        if self._session is None:
            self._session = aioboto3.Session()

        kwargs: dict[str, Any] = {}
        if self.region:
            kwargs["region_name"] = self.region
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url

        session = self._session
        self._client = await session.client("cloudformation", **kwargs).__aenter__()
        return self._client

    def _format_parameters(self, parameters: dict[str, str] | None) -> list[dict[str, str]]:
        """Convert a parameter dict to CloudFormation's list form."""
        return [
            {"ParameterKey": key, "ParameterValue": str(value)}
            for key, value in (parameters or {}).items()
        ]

    def _get_all_tags(self, user_tags: dict[str, str] | None = None) -> list[dict[str, str]]:
        """
        Build the complete tag list for the stack.

        Managed tags take precedence over user tags with the same key.
        """
        from .. import __version__

        tag_dict: dict[str, str] = {}
        if user_tags:
            tag_dict.update(user_tags)
        tag_dict[MANAGED_BY_TAG_KEY] = MANAGED_BY_TAG_VALUE
        tag_dict[VERSION_TAG_KEY] = __version__
        return [{"Key": k, "Value": v} for k, v in tag_dict.items()]

    async def _describe(self, stack_name: str) -> dict[str, Any] | None:
        client = await self._get_client()
        try:
            response = await client.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ValidationError":
                # Stack doesn't exist
                return None
            raise
        stacks = response.get("Stacks", [])
        return cast(dict[str, Any], stacks[0]) if stacks else None

    async def get_stack_status(self, stack_name: str | None = None) -> str | None:
        """
        Get current status of a CloudFormation stack.

        Returns:
            Stack status string or None if stack doesn't exist
        """
        stack = await self._describe(stack_name or self.stack_name)
        if stack is None:
            return None
        return cast(str, stack["StackStatus"])

    async def stack_exists(self, stack_name: str | None = None) -> bool:
        """True if the stack exists and is not in DELETE_COMPLETE state."""
        status = await self.get_stack_status(stack_name)
        return status is not None and status != "DELETE_COMPLETE"

    async def get_outputs(self, stack_name: str | None = None) -> dict[str, str]:
        """Stack outputs keyed by output name. Empty if the stack doesn't exist."""
        stack = await self._describe(stack_name or self.stack_name)
        if stack is None:
            return {}
        return {o["OutputKey"]: o["OutputValue"] for o in stack.get("Outputs", [])}

    async def deploy(
        self,
        template: Template | str,
        parameters: dict[str, str] | None = None,
        tags: dict[str, str] | None = None,
        wait: bool = True,
    ) -> dict[str, Any]:
        """
        Create the stack, or update it if it already exists.

        Args:
            template: Platform template or a ready template body
            parameters: Template parameter values (secret values included)
            tags: User-defined stack tags
            wait: Wait for the create or update to finish

        Returns:
            Dict with stack_id, stack_name, operation and status

        Raises:
            StackDeploymentError: If the stack is busy or broken, or the
                create or update fails
        """
        stack_name = self.stack_name
        client = await self._get_client()
        body = template.to_json(indent=None) if isinstance(template, Template) else template

        existing = await self.get_stack_status(stack_name)
        if existing and existing.endswith(IN_PROGRESS_SUFFIX):
            raise StackDeploymentError(
                stack_name, f"Another operation is in progress (status: {existing})"
            )
        if existing in UNRECOVERABLE_STATUSES:
            raise StackDeploymentError(
                stack_name, f"Stack is in {existing}; delete it before deploying again"
            )

        create = existing is None or existing == "DELETE_COMPLETE"
        operation = "create" if create else "update"
        kwargs: dict[str, Any] = {
            "StackName": stack_name,
            "TemplateBody": body,
            "Parameters": self._format_parameters(parameters),
            "Capabilities": CAPABILITIES,
            "Tags": self._get_all_tags(tags),
        }

        logger.info("Starting stack %s for %s", operation, stack_name)
        try:
            if create:
                response = await client.create_stack(**kwargs)
            else:
                response = await client.update_stack(**kwargs)
        except ClientError as e:
            # "No updates are to be performed" is not an error
            if not create and "No updates" in str(e):
                logger.info("Stack %s is already up to date", stack_name)
                return {
                    "stack_id": stack_name,
                    "stack_name": stack_name,
                    "operation": operation,
                    "status": "unchanged",
                }
            raise StackDeploymentError(
                stack_name,
                f"CloudFormation API error: {e.response['Error']['Message']}",
            ) from e

        stack_id = response["StackId"]
        if not wait:
            return {
                "stack_id": stack_id,
                "stack_name": stack_name,
                "operation": operation,
                "status": f"{operation.upper()}{IN_PROGRESS_SUFFIX}",
            }

        waiter = client.get_waiter(f"stack_{operation}_complete")
        try:
            await waiter.wait(StackName=stack_name)
        except Exception as e:
            # Fetch stack events for debugging
            events = await self._get_stack_events(client, stack_name)
            logger.error("Stack %s failed for %s: %s", operation, stack_name, e)
            raise StackDeploymentError(
                stack_name, f"Stack {operation} failed: {e}", events=events
            ) from e

        return {
            "stack_id": stack_id,
            "stack_name": stack_name,
            "operation": operation,
            "status": f"{operation.upper()}_COMPLETE",
        }

    async def delete_stack(self, stack_name: str | None = None, wait: bool = True) -> None:
        """
        Delete CloudFormation stack.

        Raises:
            StackDeploymentError: If deletion fails
        """
        stack_name = stack_name or self.stack_name
        client = await self._get_client()

        try:
            await client.delete_stack(StackName=stack_name)

            if wait:
                waiter = client.get_waiter("stack_delete_complete")
                await waiter.wait(StackName=stack_name)

        except ClientError as e:
            error_code = e.response["Error"]["Code"]

            # Ignore if stack doesn't exist
            if error_code == "ValidationError" and "does not exist" in str(e):
                return

            raise StackDeploymentError(
                stack_name,
                f"Stack deletion failed: {e.response['Error']['Message']}",
            ) from e

    async def _get_stack_events(
        self, client: Any, stack_name: str, limit: int = 20
    ) -> list[dict[str, Any]]:
        """
        Fetch recent stack events for debugging.

        Returns an empty list if the events cannot be read; the caller is
        already reporting the original failure.
        """
        try:
            response = await client.describe_stack_events(StackName=stack_name)
        except ClientError as e:
            logger.warning("Could not read events for %s: %s", stack_name, e)
            return []

        return [
            {
                "timestamp": e.get("Timestamp"),
                "resource_type": e.get("ResourceType"),
                "logical_id": e.get("LogicalResourceId"),
                "status": e.get("ResourceStatus"),
                "reason": e.get("ResourceStatusReason"),
            }
            for e in response.get("StackEvents", [])[:limit]
        ]

    async def close(self) -> None:
        """Close the underlying client."""
        if self._client is not None:
            try:
                await self._client.__aexit__(None, None, None)
            finally:
                self._client = None
        self._session = None

    async def __aenter__(self) -> "StackManager":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()
