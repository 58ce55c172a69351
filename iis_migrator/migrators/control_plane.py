"""
Cloud control plane used by the deployment state machine.

:class:`CloudControlPlane` lists the synchronous operations the deployer
needs.  :class:`BeanstalkControlPlane` implements them with ``boto3`` on top
of Elastic Beanstalk (application, environment, application version, health)
and S3 (the intermediate storage container).  Failures surface as exceptions,
never as status codes.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import boto3

from ..models.records import CloudApplication, CloudApplicationVersion, CloudEnvironment, HealthState
from ..utils.errors import AddressLimitError

# Normalized ACL grant: {"grantee": <uri or canonical id>, "permission": "READ" | ...}
Grant = Dict[str, str]


class CloudControlPlane:
    def create_application(self, name: str) -> CloudApplication:
        raise NotImplementedError

    def create_environment(
        self, application_name: str, environment_name: str, *, solution_stack: str, instance_type: str
    ) -> CloudEnvironment:
        raise NotImplementedError

    def create_storage_container(self, name: str) -> str:
        raise NotImplementedError

    def get_storage_container_grants(self, name: str) -> List[Grant]:
        raise NotImplementedError

    def upload_artifact(self, container: str, key: str, path: str) -> None:
        raise NotImplementedError

    def delete_storage_container(self, name: str) -> None:
        raise NotImplementedError

    def create_application_version(
        self, application_name: str, label: str, container: str, key: str
    ) -> CloudApplicationVersion:
        raise NotImplementedError

    def update_environment(self, environment_name: str, version_label: str) -> None:
        raise NotImplementedError

    def get_environment_health(self, environment_name: str) -> HealthState:
        raise NotImplementedError

    def get_environment_url(self, environment_name: str) -> Optional[str]:
        raise NotImplementedError


def _error_code(exc: Exception) -> str:
    response = getattr(exc, "response", None) or {}
    return (response.get("Error") or {}).get("Code", "")


class BeanstalkControlPlane(CloudControlPlane):
    """
    Elastic Beanstalk + S3 implementation.

    :param session: A ``boto3.session.Session``; a default session using the
        given profile and region is created when omitted.
    """

    def __init__(self, session=None, *, region: Optional[str] = None, profile: Optional[str] = None) -> None:
        if session is None:
            session = boto3.session.Session(profile_name=profile or None, region_name=region or None)
        self.region = region or session.region_name
        self.beanstalk = session.client("elasticbeanstalk", region_name=self.region)
        self.s3 = session.client("s3", region_name=self.region)

    def create_application(self, name: str) -> CloudApplication:
        self.beanstalk.create_application(
            ApplicationName=name,
            Description="Migrated from IIS",
        )
        return CloudApplication(name=name)

    def create_environment(
        self, application_name: str, environment_name: str, *, solution_stack: str, instance_type: str
    ) -> CloudEnvironment:
        try:
            resp = self.beanstalk.create_environment(
                ApplicationName=application_name,
                EnvironmentName=environment_name,
                SolutionStackName=solution_stack,
                OptionSettings=[
                    {
                        "Namespace": "aws:autoscaling:launchconfiguration",
                        "OptionName": "InstanceType",
                        "Value": instance_type,
                    },
                    {
                        "Namespace": "aws:elasticbeanstalk:environment",
                        "OptionName": "EnvironmentType",
                        "Value": "SingleInstance",
                    },
                ],
            )
        except Exception as e:
            if "AddressLimitExceeded" in _error_code(e) or "AddressLimitExceeded" in str(e):
                raise AddressLimitError(
                    "The account has no Elastic IP address left for a new environment"
                ) from e
            raise
        return CloudEnvironment(
            name=environment_name,
            application_name=application_name,
            environment_id=resp.get("EnvironmentId"),
            url=resp.get("CNAME"),
        )

    def create_storage_container(self, name: str) -> str:
        kwargs: Dict[str, Any] = {"Bucket": name}
        if self.region and self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        self.s3.create_bucket(**kwargs)
        return name

    def get_storage_container_grants(self, name: str) -> List[Grant]:
        acl = self.s3.get_bucket_acl(Bucket=name)
        grants: List[Grant] = []
        for grant in acl.get("Grants", []):
            grantee = grant.get("Grantee") or {}
            grants.append(
                {
                    "grantee": grantee.get("URI") or grantee.get("ID") or grantee.get("EmailAddress") or "",
                    "permission": grant.get("Permission", ""),
                }
            )
        return grants

    def upload_artifact(self, container: str, key: str, path: str) -> None:
        self.s3.upload_file(path, container, key)

    def delete_storage_container(self, name: str) -> None:
        paginator = self.s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=name):
            objects = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
            if objects:
                self.s3.delete_objects(Bucket=name, Delete={"Objects": objects, "Quiet": True})
        self.s3.delete_bucket(Bucket=name)

    def create_application_version(
        self, application_name: str, label: str, container: str, key: str
    ) -> CloudApplicationVersion:
        self.beanstalk.create_application_version(
            ApplicationName=application_name,
            VersionLabel=label,
            SourceBundle={"S3Bucket": container, "S3Key": key},
            Process=True,
        )
        return CloudApplicationVersion(
            application_name=application_name, label=label, storage_container=container, artifact_key=key
        )

    def update_environment(self, environment_name: str, version_label: str) -> None:
        self.beanstalk.update_environment(EnvironmentName=environment_name, VersionLabel=version_label)

    def _describe(self, environment_name: str) -> Dict[str, Any]:
        resp = self.beanstalk.describe_environments(EnvironmentNames=[environment_name], IncludeDeleted=False)
        environments = resp.get("Environments", [])
        if not environments:
            raise LookupError(f"Environment {environment_name} not found")
        return environments[0]

    def get_environment_health(self, environment_name: str) -> HealthState:
        return HealthState(self._describe(environment_name).get("Health", "Grey"))

    def get_environment_url(self, environment_name: str) -> Optional[str]:
        return self._describe(environment_name).get("CNAME")
