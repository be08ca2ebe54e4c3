"""Amazon EC2 provider backed by boto3.

Only the handful of EC2 calls the node lifecycle needs: run, start, stop,
describe and terminate, plus image resolution for templates.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError, WaiterError
from loguru import logger

from skynode.constants import (
    EC2_RUNNING_MAX_ATTEMPTS,
    EC2_RUNNING_WAIT_DELAY,
    InstanceState,
    SkynodeTag,
)
from skynode.exceptions import ConfigurationError, ProviderError
from skynode.types import InstanceDescription, InstanceHandle, InstanceTemplate, ResolvedImage

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

log = logger.bind(component="ec2", provider="ec2")

type ClientFactory = Callable[[str], Any]

_NOT_FOUND_CODES = frozenset({"InvalidInstanceID.NotFound", "InvalidInstanceID.Malformed"})


def _default_client_factory(region: str) -> EC2Client:
    import boto3

    return boto3.client("ec2", region_name=region)


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def _parse_instance(raw: dict[str, Any]) -> InstanceDescription:
    raw_state = raw.get("State", {}).get("Name", "")
    return InstanceDescription(
        instance_id=raw["InstanceId"],
        state=InstanceState.from_provider(raw_state),
        raw_state=raw_state,
        public_address=raw.get("PublicIpAddress") or raw.get("PublicDnsName") or None,
        private_address=raw.get("PrivateIpAddress"),
        instance_type=raw.get("InstanceType"),
    )


class EC2Provider:
    """CloudProvider implementation for Amazon EC2.

    boto3 clients are created lazily, one per region, and shared by every
    node using this provider.

    Example:
        >>> provider = EC2Provider(region="us-east-1")
        >>> node = Node.create(provider, "web-1", NodeConfig(instance_type="t2.micro", ...))

    Args:
        region: Default region for templates that don't name one.
        client_factory: Builds an EC2 client for a region. Defaults to boto3.client.
        running_wait_delay: Seconds between instance_running waiter polls.
        running_max_attempts: Waiter attempts before creation is considered failed.
    """

    human_readable_name = "Amazon EC2"

    def __init__(
        self,
        region: str = "us-east-1",
        *,
        client_factory: ClientFactory | None = None,
        running_wait_delay: int = EC2_RUNNING_WAIT_DELAY,
        running_max_attempts: int = EC2_RUNNING_MAX_ATTEMPTS,
    ) -> None:
        self.region = region
        self.running_wait_delay = running_wait_delay
        self.running_max_attempts = running_max_attempts
        self._client_factory = client_factory or _default_client_factory
        self._clients: dict[str, Any] = {}
        self._clients_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"EC2Provider(region={self.region!r})"

    def _client(self, region: str | None = None) -> EC2Client:
        key = region or self.region
        with self._clients_lock:
            if key not in self._clients:
                self._clients[key] = self._client_factory(key)
            return self._clients[key]

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    def resolve_image(
        self,
        region: str,
        image: str | None = None,
        image_id: str | None = None,
    ) -> ResolvedImage:
        """Resolve an image by id, or the newest image matching a name pattern.

        Raises:
            ConfigurationError: If neither is given or nothing matches.
            ProviderError: If the lookup itself fails.
        """
        ec2 = self._client(region)
        try:
            if image_id:
                images = ec2.describe_images(ImageIds=[image_id]).get("Images", [])
            elif image:
                images = ec2.describe_images(
                    Filters=[{"Name": "name", "Values": [image]}],
                ).get("Images", [])
            else:
                raise ConfigurationError("No image or image id was provided", field="image")
        except ClientError as e:
            raise ProviderError(f"Unable to resolve image {image_id or image}: {e}") from e

        if not images:
            raise ConfigurationError(
                f"No image matches {image_id or image!r} in {region}", field="image",
            )

        newest = max(images, key=lambda i: i.get("CreationDate", ""))
        return ResolvedImage(
            image_id=newest["ImageId"],
            name=newest.get("Name") or newest["ImageId"],
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def create_instance(self, template: InstanceTemplate) -> InstanceHandle:
        region = template.region or self.region
        ec2 = self._client(region)
        image = self.resolve_image(region, template.image, template.image_id)

        tags = {
            SkynodeTag.NAME: template.name,
            SkynodeTag.MANAGED: "true",
            SkynodeTag.NODE: template.name,
            **template.tags,
        }
        params: dict[str, Any] = {
            "ImageId": image.image_id,
            "InstanceType": template.instance_type,
            "MinCount": 1,
            "MaxCount": 1,
            "TagSpecifications": [
                {
                    "ResourceType": "instance",
                    "Tags": [{"Key": str(k), "Value": v} for k, v in tags.items()],
                }
            ],
        }
        if template.key_pair:
            params["KeyName"] = template.key_pair
        if template.security_groups:
            params["SecurityGroups"] = list(template.security_groups)
        if template.user_data is not None:
            # botocore base64-encodes raw bytes itself
            params["UserData"] = template.user_data

        log.debug(
            "Running instance from image {image} ({image_id}), type={itype}",
            image=image.name, image_id=image.image_id, itype=template.instance_type,
        )
        try:
            response = ec2.run_instances(**params)
            instance_id = response["Instances"][0]["InstanceId"]
            waiter = ec2.get_waiter("instance_running")
            waiter.wait(
                InstanceIds=[instance_id],
                WaiterConfig={
                    "Delay": self.running_wait_delay,
                    "MaxAttempts": self.running_max_attempts,
                },
            )
        except (ClientError, WaiterError) as e:
            raise ProviderError(
                f"Unable to create {self.human_readable_name} node from template {template}"
            ) from e

        description = self.describe_instance(region, instance_id)
        handle = InstanceHandle(
            provider_instance_id=instance_id,
            region=region,
            last_known_state=InstanceState.UNKNOWN,
            name=template.name,
            created_image_name=image.name,
        )
        return handle.with_description(description) if description else handle

    def start_instance(self, region: str, instance_id: str) -> None:
        try:
            self._client(region).start_instances(InstanceIds=[instance_id])
        except ClientError as e:
            raise ProviderError(f"Unable to start instance {instance_id}: {e}") from e

    def stop_instance(self, region: str, instance_id: str, force: bool) -> None:
        try:
            self._client(region).stop_instances(InstanceIds=[instance_id], Force=force)
        except ClientError as e:
            raise ProviderError(f"Unable to stop instance {instance_id}: {e}") from e

    def destroy_instance(self, region: str, instance_id: str) -> None:
        """Terminate an instance. Unlike kill(), it cannot be started again."""
        try:
            self._client(region).terminate_instances(InstanceIds=[instance_id])
        except ClientError as e:
            raise ProviderError(f"Unable to terminate instance {instance_id}: {e}") from e

    def describe_instance(self, region: str, instance_id: str) -> InstanceDescription | None:
        try:
            response = self._client(region).describe_instances(InstanceIds=[instance_id])
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise ProviderError(f"Unable to describe instance {instance_id}: {e}") from e

        for reservation in response.get("Reservations", []):
            for raw in reservation.get("Instances", []):
                return _parse_instance(raw)
        return None
