import os
import sys

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from iis_migrator.migrators.control_plane import BeanstalkControlPlane, CloudControlPlane
from iis_migrator.migrators.deployment import (
    PUBLIC_GRANTEES,
    CloudDeployer,
    DeploymentSettings,
    DeploymentState,
    poll_until_converged,
    storage_container_name,
    validate_resource_name,
)
from iis_migrator.models.records import (
    CloudApplication,
    CloudApplicationVersion,
    CloudEnvironment,
    HealthState,
)
from iis_migrator.utils.errors import AddressLimitError, PublicStorageError

G, Y, R, N = HealthState.GREEN, HealthState.YELLOW, HealthState.RED, HealthState.GREY


class FakeClock:
    """Clock whose sleep advances time instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeControlPlane(CloudControlPlane):
    def __init__(self, health=(G, G), grants=(), taken_names=(), update_failures=0, env_error=None):
        self.health = list(health)
        self.grants = list(grants)
        self.taken_names = set(taken_names)
        self.update_failures = update_failures
        self.env_error = env_error
        self.containers = set()
        self.deleted = []
        self.uploads = []
        self.updates = 0
        self.health_reads = 0

    def create_application(self, name):
        if name in self.taken_names:
            raise RuntimeError(f"Application {name} already exists")
        return CloudApplication(name=name)

    def create_environment(self, application_name, environment_name, *, solution_stack, instance_type):
        if self.env_error is not None:
            raise self.env_error
        if environment_name in self.taken_names:
            raise RuntimeError(f"Environment {environment_name} already exists")
        return CloudEnvironment(name=environment_name, application_name=application_name)

    def create_storage_container(self, name):
        self.containers.add(name)
        return name

    def get_storage_container_grants(self, name):
        return [{"grantee": "owner-id", "permission": "FULL_CONTROL"}] + self.grants

    def upload_artifact(self, container, key, path):
        self.uploads.append((container, key, path))

    def delete_storage_container(self, name):
        self.containers.discard(name)
        self.deleted.append(name)

    def create_application_version(self, application_name, label, container, key):
        return CloudApplicationVersion(
            application_name=application_name, label=label, storage_container=container, artifact_key=key
        )

    def update_environment(self, environment_name, version_label):
        self.updates += 1
        if self.updates <= self.update_failures:
            raise RuntimeError("Environment is in an invalid state for this operation")

    def get_environment_health(self, environment_name):
        self.health_reads += 1
        if len(self.health) > 1:
            return self.health.pop(0)
        return self.health[0]

    def get_environment_url(self, environment_name):
        return f"{environment_name}.example.com"


def silent(*args, **kwargs):
    pass


def make_settings(**overrides):
    settings = DeploymentSettings(
        application_name="shop-app",
        environment_name="shop-env",
        solution_stack="64bit Windows Server 2019 v2.11.0 running IIS 10.0",
    )
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


def make_deployer(control, clock, prompt=None, **settings):
    return CloudDeployer(
        control,
        make_settings(**settings),
        run_id="run-1",
        prompt=prompt or (lambda q: pytest.fail(f"unexpected prompt: {q}")),
        log=silent,
        progress=silent,
        sleep=clock.sleep,
        clock=clock,
        smoke_checker=lambda url: 200,
    )


@pytest.fixture
def bundle(tmp_path):
    path = tmp_path / "bundle.zip"
    path.write_bytes(b"PK\x05\x06" + b"\x00" * 18)
    return str(path)


@pytest.mark.parametrize(
    "sequence, state, polls",
    [
        ([N, N, G, G], DeploymentState.SUCCEEDED, 4),
        ([N, G, Y], DeploymentState.FAILED, 3),
        ([G, R], DeploymentState.FAILED, 2),
        ([G, N, G, G], DeploymentState.SUCCEEDED, 4),
    ],
)
def test_polling_sequences(sequence, state, polls):
    clock = FakeClock()
    samples = iter(sequence)
    result = poll_until_converged(lambda: next(samples), interval=30, timeout=1800, sleep=clock.sleep, clock=clock, log=silent)
    assert result.state == state
    assert len(result.polls) == polls
    assert result.timed_out is False


def test_polling_times_out_when_never_leaving_grey():
    clock = FakeClock()
    result = poll_until_converged(lambda: N, interval=30, timeout=1800, sleep=clock.sleep, clock=clock, log=silent)
    assert result.state == DeploymentState.FAILED
    assert result.timed_out is True
    assert len(result.polls) == 61
    assert clock.now == 1800


def test_successful_deploy(bundle):
    clock = FakeClock()
    control = FakeControlPlane(health=[N, N, G, G])
    deployer = make_deployer(control, clock)

    outcome = deployer.deploy(bundle)

    assert outcome.succeeded
    assert outcome.version.label == "shop-app-run-1"
    assert outcome.url == "shop-env.example.com"
    assert outcome.smoke_status == 200
    container, key, path = control.uploads[0]
    assert key == "run-1/bundle.zip"
    assert control.deleted == [container]
    assert control.containers == set()


def test_storage_kept_when_cleanup_disabled(bundle):
    control = FakeControlPlane()
    deployer = make_deployer(control, FakeClock(), delete_storage_after_deploy=False)
    deployer.deploy(bundle)
    assert control.deleted == []
    assert len(control.containers) == 1


def test_public_storage_is_deleted_and_fatal(bundle):
    control = FakeControlPlane(grants=[{"grantee": PUBLIC_GRANTEES[0], "permission": "READ"}])
    deployer = make_deployer(control, FakeClock())

    with pytest.raises(PublicStorageError):
        deployer.deploy(bundle)

    assert control.uploads == []
    assert len(control.deleted) == 1
    assert control.containers == set()


def test_failed_health_keeps_environment_and_reports(bundle):
    control = FakeControlPlane(health=[N, R])
    outcome = make_deployer(control, FakeClock()).deploy(bundle)
    assert outcome.state == DeploymentState.FAILED
    assert "Red" in outcome.reason
    assert outcome.url is None
    assert outcome.environment.name == "shop-env"


def test_update_window_exceeded_is_not_fatal(bundle):
    clock = FakeClock()
    control = FakeControlPlane(update_failures=100)
    deployer = make_deployer(control, clock, update_window_seconds=120, update_retry_interval_seconds=30)

    deployer.create_application()
    deployer.create_environment()
    deployer.register_version(deployer.upload_artifact(bundle))

    assert deployer.update_environment() is False
    # attempts at t=0, 30, 60, 90 and 120
    assert control.updates == 5
    assert deployer.poll_health().state == DeploymentState.SUCCEEDED


def test_update_accepted_after_retries(bundle):
    clock = FakeClock()
    control = FakeControlPlane(update_failures=2)
    deployer = make_deployer(control, clock)
    deployer.create_application()
    deployer.create_environment()
    deployer.register_version(deployer.upload_artifact(bundle))

    assert deployer.update_environment() is True
    assert control.updates == 3
    assert clock.sleeps == [30, 30]


def test_name_collision_prompts_for_new_name(bundle):
    answers = iter(["x", "shop-app-2"])
    questions = []

    def prompt(question):
        questions.append(question)
        return next(answers)

    control = FakeControlPlane(taken_names={"shop-app"})
    deployer = make_deployer(control, FakeClock(), prompt=prompt)

    application = deployer.create_application()

    assert application.name == "shop-app-2"
    assert deployer.settings.application_name == "shop-app-2"
    assert questions == ["Enter a different application name: "] * 2


def test_address_limit_is_fatal():
    control = FakeControlPlane(env_error=AddressLimitError("no addresses"))
    deployer = make_deployer(control, FakeClock())
    deployer.create_application()
    with pytest.raises(AddressLimitError):
        deployer.create_environment()


def test_storage_container_name_is_bucket_safe():
    name = storage_container_name("iis-migration", "Shop_App", "20240101T000000")
    assert name == "iis-migration-shop-app-20240101t000000"
    assert len(storage_container_name("p", "a" * 80, "r")) <= 63


def test_validate_resource_name():
    assert validate_resource_name(" shop-env ") == "shop-env"
    for bad in ("ab", "-shop", "shop env", "x" * 41):
        with pytest.raises(ValueError):
            validate_resource_name(bad)


class FakeClient:
    def __init__(self, **responses):
        self.responses = responses
        self.calls = []

    def __getattr__(self, name):
        def call(**kwargs):
            self.calls.append((name, kwargs))
            response = self.responses.get(name, {})
            if isinstance(response, Exception):
                raise response
            return response

        return call


class FakeSession:
    region_name = "eu-west-1"

    def __init__(self, beanstalk, s3):
        self.clients = {"elasticbeanstalk": beanstalk, "s3": s3}

    def client(self, name, region_name=None):
        return self.clients[name]


class FakeClientError(Exception):
    def __init__(self, code):
        super().__init__(code)
        self.response = {"Error": {"Code": code}}


def test_beanstalk_grants_are_normalized():
    s3 = FakeClient(
        get_bucket_acl={
            "Grants": [
                {"Grantee": {"Type": "CanonicalUser", "ID": "abc"}, "Permission": "FULL_CONTROL"},
                {"Grantee": {"Type": "Group", "URI": PUBLIC_GRANTEES[0]}, "Permission": "READ"},
            ]
        }
    )
    plane = BeanstalkControlPlane(FakeSession(FakeClient(), s3))
    assert plane.get_storage_container_grants("bucket") == [
        {"grantee": "abc", "permission": "FULL_CONTROL"},
        {"grantee": PUBLIC_GRANTEES[0], "permission": "READ"},
    ]


def test_beanstalk_bucket_outside_default_region_sets_location():
    s3 = FakeClient()
    BeanstalkControlPlane(FakeSession(FakeClient(), s3)).create_storage_container("bucket")
    assert s3.calls == [
        ("create_bucket", {"Bucket": "bucket", "CreateBucketConfiguration": {"LocationConstraint": "eu-west-1"}})
    ]


def test_beanstalk_address_limit_maps_to_fatal_error():
    beanstalk = FakeClient(create_environment=FakeClientError("AddressLimitExceeded"))
    plane = BeanstalkControlPlane(FakeSession(beanstalk, FakeClient()))
    with pytest.raises(AddressLimitError):
        plane.create_environment("app", "env", solution_stack="stack", instance_type="t3.small")


def test_beanstalk_health_and_url():
    beanstalk = FakeClient(describe_environments={"Environments": [{"Health": "Yellow", "CNAME": "env.elb.example"}]})
    plane = BeanstalkControlPlane(FakeSession(beanstalk, FakeClient()))
    assert plane.get_environment_health("env") == HealthState.YELLOW
    assert plane.get_environment_url("env") == "env.elb.example"
