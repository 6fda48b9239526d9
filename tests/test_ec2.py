"""Tests for the EC2 provider, against a fake client."""

from typing import Any

import pytest
from botocore.exceptions import (
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
    NoRegionError,
    ParamValidationError,
    WaiterError,
)

from graph_deploy import (
    Ec2Provider,
    NetworkRule,
    ProviderFatalError,
    ProviderTransientError,
)


def client_error(code: str, operation: str = "RunInstances") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeWaiter:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.waited: list[dict[str, Any]] = []

    def wait(self, **kwargs: Any) -> None:
        self.waited.append(kwargs)
        if self.error:
            raise self.error


class FakeEc2Client:
    """Records calls; ``errors`` maps an operation to exceptions to raise first."""

    def __init__(self, errors: dict[str, list[Exception]] | None = None) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.errors = errors or {}
        self.waiter = FakeWaiter()

    def _record(self, operation: str, kwargs: dict[str, Any]) -> None:
        self.calls.append((operation, kwargs))
        pending = self.errors.get(operation)
        if pending:
            raise pending.pop(0)

    def create_security_group(self, **kwargs: Any) -> dict[str, Any]:
        self._record("create_security_group", kwargs)
        return {"GroupId": "sg-0123"}

    def describe_security_groups(self, **kwargs: Any) -> dict[str, Any]:
        self._record("describe_security_groups", kwargs)
        return {"SecurityGroups": [{"GroupId": "sg-existing"}]}

    def authorize_security_group_ingress(self, **kwargs: Any) -> dict[str, Any]:
        self._record("authorize_security_group_ingress", kwargs)
        return {}

    def authorize_security_group_egress(self, **kwargs: Any) -> dict[str, Any]:
        self._record("authorize_security_group_egress", kwargs)
        return {}

    def run_instances(self, **kwargs: Any) -> dict[str, Any]:
        self._record("run_instances", kwargs)
        return {"Instances": [{"InstanceId": "i-0abc"}]}

    def describe_instances(self, **kwargs: Any) -> dict[str, Any]:
        self._record("describe_instances", kwargs)
        instance = {"InstanceId": "i-0abc", "PrivateIpAddress": "172.31.0.10", "PublicIpAddress": "54.1.2.3"}
        return {"Reservations": [{"Instances": [instance]}]}

    def get_waiter(self, name: str) -> FakeWaiter:
        assert name == "instance_running"
        return self.waiter

    def operations(self) -> list[str]:
        return [operation for operation, _ in self.calls]


class TestSecurityGroups:
    """Tests for create_network_rule_set."""

    def test_create_with_rules(self) -> None:
        """Rules should be split into ingress and egress permissions."""
        client = FakeEc2Client()
        provider = Ec2Provider(client=client, vpc_id="vpc-1")
        rules = [
            NetworkRule("ingress", "tcp", 27017, 27017, ("10.0.0.0/16",)),
            NetworkRule("egress", "all", 0, 65535),
        ]

        group_id = provider.create_network_rule_set("sg-db", rules, "database")

        assert group_id == "sg-0123"
        assert client.operations() == [
            "create_security_group",
            "authorize_security_group_ingress",
            "authorize_security_group_egress",
        ]
        assert client.calls[0][1] == {"GroupName": "sg-db", "Description": "database", "VpcId": "vpc-1"}
        assert client.calls[1][1]["IpPermissions"] == [
            {
                "IpProtocol": "tcp",
                "FromPort": 27017,
                "ToPort": 27017,
                "IpRanges": [{"CidrIp": "10.0.0.0/16"}],
            }
        ]
        assert client.calls[2][1]["IpPermissions"] == [
            {"IpProtocol": "-1", "IpRanges": [{"CidrIp": "0.0.0.0/0"}]}
        ]

    def test_existing_group_reused(self) -> None:
        """A duplicate group from an earlier attempt should be looked up."""
        client = FakeEc2Client(
            {
                "create_security_group": [client_error("InvalidGroup.Duplicate")],
                "authorize_security_group_ingress": [client_error("InvalidPermission.Duplicate")],
            }
        )
        provider = Ec2Provider(client=client)

        group_id = provider.create_network_rule_set("sg-db", [NetworkRule("ingress", "tcp", 22, 22)])

        assert group_id == "sg-existing"
        assert client.operations() == [
            "create_security_group",
            "describe_security_groups",
            "authorize_security_group_ingress",
        ]


class TestInstances:
    """Tests for create_compute_instance."""

    def test_run_instance(self) -> None:
        """Instances are launched with user data and tags, then described."""
        client = FakeEc2Client()
        provider = Ec2Provider(client=client, key_name="deployer")

        info = provider.create_compute_instance(
            "db", "ami-1", "t2.micro", ["sg-0123"], "#!/bin/bash\n", {"tier": "database"}
        )

        assert info.instance_id == "i-0abc"
        assert info.private_address == "172.31.0.10"
        assert info.public_address == "54.1.2.3"
        run = client.calls[0][1]
        assert run["ImageId"] == "ami-1"
        assert run["InstanceType"] == "t2.micro"
        assert run["SecurityGroupIds"] == ["sg-0123"]
        assert run["UserData"] == "#!/bin/bash\n"
        assert run["KeyName"] == "deployer"
        assert run["ClientToken"].startswith("db-")
        assert run["TagSpecifications"][0]["Tags"] == [
            {"Key": "Name", "Value": "db"},
            {"Key": "tier", "Value": "database"},
        ]
        assert client.waiter.waited == [{"InstanceIds": ["i-0abc"]}]

    def test_client_token_stable_per_provider(self) -> None:
        """Retries through one provider reuse the same idempotency token."""
        client = FakeEc2Client()
        provider = Ec2Provider(client=client)
        provider.create_compute_instance("db", "ami-1", "t2.micro", [], "", {})
        provider.create_compute_instance("db", "ami-1", "t2.micro", [], "", {})
        tokens = [kwargs["ClientToken"] for op, kwargs in client.calls if op == "run_instances"]
        assert tokens[0] == tokens[1]

    def test_waiter_failure_is_fatal(self) -> None:
        """An instance that never starts is a fatal error."""
        client = FakeEc2Client()
        client.waiter = FakeWaiter(WaiterError("InstanceRunning", "terminated", {}))
        provider = Ec2Provider(client=client)
        with pytest.raises(ProviderFatalError) as excinfo:
            provider.create_compute_instance("db", "ami-1", "t2.micro", [], "", {})
        assert excinfo.value.resource == "db"


class TestErrorMapping:
    """Tests for mapping botocore errors onto provider errors."""

    @pytest.mark.parametrize("code", ["RequestLimitExceeded", "InsufficientInstanceCapacity"])
    def test_transient_codes(self, code: str) -> None:
        """Throttling and capacity errors are transient."""
        provider = Ec2Provider(client=FakeEc2Client({"run_instances": [client_error(code)]}))
        with pytest.raises(ProviderTransientError) as excinfo:
            provider.create_compute_instance("db", "ami-1", "t2.micro", [], "", {})
        assert excinfo.value.code == code

    @pytest.mark.parametrize("code", ["InvalidAMIID.NotFound", "InstanceLimitExceeded"])
    def test_fatal_codes(self, code: str) -> None:
        """Other client errors are fatal."""
        provider = Ec2Provider(client=FakeEc2Client({"run_instances": [client_error(code)]}))
        with pytest.raises(ProviderFatalError) as excinfo:
            provider.create_compute_instance("db", "ami-1", "t2.micro", [], "", {})
        assert excinfo.value.code == code
        assert isinstance(excinfo.value.__cause__, ClientError)

    @pytest.mark.parametrize(
        "error",
        [NoCredentialsError(), ParamValidationError(report="Invalid type for parameter UserData")],
    )
    def test_botocore_errors_fatal(self, error: Exception) -> None:
        """Credential and validation problems are fatal."""
        provider = Ec2Provider(client=FakeEc2Client({"run_instances": [error]}))
        with pytest.raises(ProviderFatalError) as excinfo:
            provider.create_compute_instance("db", "ami-1", "t2.micro", [], "", {})
        assert excinfo.value.__cause__ is error

    def test_client_creation_failure_fatal(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A client that cannot be created, e.g. without a region, is fatal."""

        def no_region(*args: Any, **kwargs: Any) -> None:
            raise NoRegionError()

        monkeypatch.setattr("graph_deploy._ec2.boto3.client", no_region)
        with pytest.raises(ProviderFatalError):
            Ec2Provider()

    def test_connection_errors_transient(self) -> None:
        """Connection problems are transient."""
        error = EndpointConnectionError(endpoint_url="https://ec2.example")
        provider = Ec2Provider(client=FakeEc2Client({"create_security_group": [error]}))
        with pytest.raises(ProviderTransientError):
            provider.create_network_rule_set("sg", [])
