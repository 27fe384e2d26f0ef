import unittest
from unittest import mock

from botocore.exceptions import ClientError, NoCredentialsError, ProfileNotFound

from stack_deployer.backends.aws import AwsCloudAccount
from stack_deployer.config import CloudConfig
from stack_deployer.errors import CloudAPIError


def _session(region="us-east-1", sts=None, ec2=None):
    session = mock.Mock()
    session.region_name = region
    clients = {"sts": sts or mock.Mock(), "ec2": ec2 or mock.Mock()}
    session.client.side_effect = lambda name: clients[name]
    return session


class AwsCloudAccountTests(unittest.TestCase):
    def test_verify_identity_returns_arn(self) -> None:
        sts = mock.Mock()
        sts.get_caller_identity.return_value = {"Arn": "arn:aws:iam::1:user/ci", "Account": "1"}
        account = AwsCloudAccount(CloudConfig(), session_factory=lambda **kw: _session(sts=sts))
        self.assertEqual(account.verify_identity(), "arn:aws:iam::1:user/ci")

    def test_missing_credentials(self) -> None:
        sts = mock.Mock()
        sts.get_caller_identity.side_effect = NoCredentialsError()
        account = AwsCloudAccount(CloudConfig(), session_factory=lambda **kw: _session(sts=sts))
        with self.assertRaises(CloudAPIError) as ctx:
            account.verify_identity()
        self.assertIn("aws configure", ctx.exception.remediation)

    def test_rejected_credentials(self) -> None:
        sts = mock.Mock()
        sts.get_caller_identity.side_effect = ClientError(
            {"Error": {"Code": "InvalidClientTokenId", "Message": "bad token"}}, "GetCallerIdentity"
        )
        account = AwsCloudAccount(CloudConfig(), session_factory=lambda **kw: _session(sts=sts))
        with self.assertRaises(CloudAPIError):
            account.verify_identity()

    def test_missing_region(self) -> None:
        account = AwsCloudAccount(CloudConfig(), session_factory=lambda **kw: _session(region=None))
        with self.assertRaises(CloudAPIError) as ctx:
            account.verify_identity()
        self.assertIn("region", ctx.exception.cause)

    def test_unknown_profile(self) -> None:
        def factory(**kwargs):
            raise ProfileNotFound(profile=kwargs["profile_name"])

        account = AwsCloudAccount(CloudConfig(profile="ghost"), session_factory=factory)
        with self.assertRaises(CloudAPIError) as ctx:
            account.verify_identity()
        self.assertIn("ghost", ctx.exception.cause)

    def test_count_tagged_instances(self) -> None:
        paginator = mock.Mock()
        paginator.paginate.return_value = [
            {"Reservations": [{"Instances": [{"InstanceId": "i-1"}, {"InstanceId": "i-2"}]}]},
            {"Reservations": [{"Instances": [{"InstanceId": "i-3"}]}]},
        ]
        ec2 = mock.Mock()
        ec2.get_paginator.return_value = paginator
        account = AwsCloudAccount(CloudConfig(), session_factory=lambda **kw: _session(ec2=ec2))

        self.assertEqual(account.count_tagged_instances("*-Instance"), 3)
        filters = paginator.paginate.call_args.kwargs["Filters"]
        self.assertEqual(filters[0], {"Name": "tag:Name", "Values": ["*-Instance"]})

    def test_count_failure_is_cloud_api_error(self) -> None:
        ec2 = mock.Mock()
        ec2.get_paginator.side_effect = ClientError(
            {"Error": {"Code": "UnauthorizedOperation", "Message": "denied"}}, "DescribeInstances"
        )
        account = AwsCloudAccount(CloudConfig(), session_factory=lambda **kw: _session(ec2=ec2))
        with self.assertRaises(CloudAPIError):
            account.count_tagged_instances("*-Instance")


if __name__ == "__main__":
    unittest.main()
