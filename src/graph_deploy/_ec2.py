"""
Amazon EC2 provider.

Network rule sets become security groups and compute instances become EC2
instances launched with the rendered bootstrap as user data. Throttling and
capacity errors are reported as transient, everything else as fatal.

Creation calls are safe to retry: instances are launched with a client
token derived from the resource name, and a security group that already
exists under the requested name is looked up instead of failing.
"""

import logging
import uuid
from collections.abc import Mapping, Sequence
from typing import Any

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    WaiterError,
)

from graph_deploy._errors import ProviderFatalError, ProviderTransientError
from graph_deploy._provider import InstanceInfo, Provider
from graph_deploy._types import NetworkRule

__all__ = ["Ec2Provider"]

LOG = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = {
    "RequestLimitExceeded",
    "Throttling",
    "ThrottlingException",
    "InsufficientInstanceCapacity",
    "InternalError",
    "ServiceUnavailable",
    "Unavailable",
}


class Ec2Provider(Provider):
    """Creates security groups and instances through the EC2 API.

    Args:
        client: A boto3 EC2 client. Created from ``region_name`` if omitted.
        region_name: Region used when creating the client.
        vpc_id: VPC to create security groups in. Defaults to the
            account's default VPC.
        key_name: Optional key pair name for SSH access.
    """

    def __init__(
        self,
        client: Any = None,
        region_name: str | None = None,
        vpc_id: str | None = None,
        key_name: str | None = None,
    ) -> None:
        if client is None:
            try:
                client = boto3.client("ec2", region_name=region_name)
            except BotoCoreError as e:
                raise ProviderFatalError(f"unable to create EC2 client: {e}") from e
        self.client = client
        self.vpc_id = vpc_id
        self.key_name = key_name
        self._run_id = uuid.uuid4().hex[:12]

    def create_network_rule_set(
        self, name: str, rules: Sequence[NetworkRule], description: str = ""
    ) -> str:
        kwargs = {"GroupName": name, "Description": description or f"graph-deploy {name}"}
        if self.vpc_id:
            kwargs["VpcId"] = self.vpc_id
        try:
            group_id = self._call("create_security_group", **kwargs)["GroupId"]
        except ProviderFatalError as e:
            if e.code != "InvalidGroup.Duplicate":
                raise
            group_id = self._find_group(name)
            LOG.debug("Security group %s already exists as %s", name, group_id)

        ingress = [_ip_permission(rule) for rule in rules if rule.direction == "ingress"]
        egress = [_ip_permission(rule) for rule in rules if rule.direction == "egress"]
        if ingress:
            self._authorize("authorize_security_group_ingress", group_id, ingress)
        if egress:
            self._authorize("authorize_security_group_egress", group_id, egress)
        LOG.debug("Security group %s ready as %s", name, group_id)
        return group_id

    def create_compute_instance(
        self,
        name: str,
        image: str,
        size: str,
        rule_set_ids: Sequence[str],
        bootstrap: str,
        tags: Mapping[str, str],
    ) -> InstanceInfo:
        instance_tags = [{"Key": "Name", "Value": name}]
        instance_tags.extend({"Key": k, "Value": v} for k, v in tags.items() if k != "Name")
        kwargs = {
            "ImageId": image,
            "InstanceType": size,
            "MinCount": 1,
            "MaxCount": 1,
            "SecurityGroupIds": list(rule_set_ids),
            "UserData": bootstrap,
            "ClientToken": f"{name}-{self._run_id}"[-64:],
            "TagSpecifications": [{"ResourceType": "instance", "Tags": instance_tags}],
        }
        if self.key_name:
            kwargs["KeyName"] = self.key_name
        response = self._call("run_instances", **kwargs)
        instance_id = response["Instances"][0]["InstanceId"]
        LOG.debug("Launched %s as %s, waiting until running", name, instance_id)

        try:
            self.client.get_waiter("instance_running").wait(InstanceIds=[instance_id])
        except WaiterError as e:
            raise ProviderFatalError(f"instance {instance_id} did not start: {e}", name) from e

        described = self._call("describe_instances", InstanceIds=[instance_id])
        instance = described["Reservations"][0]["Instances"][0]
        return InstanceInfo(
            instance_id=instance_id,
            private_address=instance.get("PrivateIpAddress", ""),
            public_address=instance.get("PublicIpAddress", ""),
        )

    def _authorize(self, operation: str, group_id: str, permissions: list[dict[str, Any]]) -> None:
        try:
            self._call(operation, GroupId=group_id, IpPermissions=permissions)
        except ProviderFatalError as e:
            if e.code != "InvalidPermission.Duplicate":
                raise

    def _find_group(self, name: str) -> str:
        filters = [{"Name": "group-name", "Values": [name]}]
        if self.vpc_id:
            filters.append({"Name": "vpc-id", "Values": [self.vpc_id]})
        groups = self._call("describe_security_groups", Filters=filters)["SecurityGroups"]
        if not groups:
            raise ProviderFatalError(f"security group {name!r} exists but cannot be found", name)
        return groups[0]["GroupId"]

    def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        try:
            return getattr(self.client, operation)(**kwargs)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            message = f"{operation} failed: {e}"
            if code in TRANSIENT_ERROR_CODES:
                raise ProviderTransientError(message, code=code) from e
            raise ProviderFatalError(message, code=code) from e
        except (EndpointConnectionError, ConnectionClosedError) as e:
            raise ProviderTransientError(f"{operation} failed: {e}") from e
        except BotoCoreError as e:
            # credentials, region and parameter validation problems
            raise ProviderFatalError(f"{operation} failed: {e}") from e


def _ip_permission(rule: NetworkRule) -> dict[str, Any]:
    permission: dict[str, Any] = {
        "IpProtocol": "-1" if rule.protocol == "all" else rule.protocol,
        "IpRanges": [{"CidrIp": cidr} for cidr in rule.cidrs],
    }
    if rule.protocol != "all":
        permission["FromPort"] = rule.from_port
        permission["ToPort"] = rule.to_port
    return permission
